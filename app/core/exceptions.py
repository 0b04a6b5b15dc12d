"""
Typed errors raised by the inventory core.

Every business failure is one of these. The HTTP layer turns them into a JSON
error body using ``status_code`` and ``code``; nothing is swallowed or turned
into a silent no-op.
"""
from typing import Any, Dict, Optional


class InventoryError(Exception):
    """Base exception for inventory ledger errors."""

    code = "inventory_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InsufficientStock(InventoryError):
    """A deducting movement would drive on-hand below zero."""
    code = "insufficient_stock"
    status_code = 409


class SameBranch(InventoryError):
    """Transfer source and destination are the same branch."""
    code = "same_branch"
    status_code = 400


class InvalidTransition(InventoryError):
    """Stock count state machine violation, including lost approval races."""
    code = "invalid_transition"
    status_code = 409


class CountNotEditable(InventoryError):
    """Line edit on a count that is no longer DRAFT."""
    code = "count_not_editable"
    status_code = 409


class NoActiveItems(InventoryError):
    """Stock count requested for a branch without active items."""
    code = "no_active_items"
    status_code = 400


class NotFound(InventoryError):
    """Unknown id."""
    code = "not_found"
    status_code = 404


class InvalidInput(InventoryError):
    """Input failed validation (quantity, movement type, unit or period)."""
    code = "invalid_input"
    status_code = 422


class ConcurrentUpdate(InventoryError):
    """A concurrent writer kept the operation from completing; safe to retry."""
    code = "concurrent_update"
    status_code = 409
