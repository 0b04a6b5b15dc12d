"""
Ledger Service: the append-only movement ledger and everything derived from it.

On-hand is never stored. It is the sum of signed movement quantities for an
(item, branch) pair, optionally bounded by a point in time. Every write goes
through ``_append_movement`` which derives the sign from the movement type,
converts to the base unit and, for deducting types, locks the item row before
checking that on-hand stays non-negative.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Tuple, Dict, Any
import uuid

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enum_utils import get_enum_value, to_enum
from app.core.exceptions import InsufficientStock, InvalidInput, NotFound
from app.models.inventory import (
    InventoryItem,
    LedgerMovement,
    MovementType,
    INBOUND_MOVEMENT_TYPES,
    DEDUCTING_MOVEMENT_TYPES,
)
from app.services.audit_service import AuditService
from app.services.inventory_service import InventoryService, to_quantity


logger = logging.getLogger(__name__)

# Types a caller may post directly. Transfer legs go through TransferService,
# count adjustments only through reconciliation.
RECORDABLE_MOVEMENT_TYPES = frozenset({
    MovementType.PURCHASE_RECEIPT,
    MovementType.ADJUSTMENT_IN,
    MovementType.ADJUSTMENT_OUT,
    MovementType.WASTE,
    MovementType.INITIAL_STOCK,
})


class LedgerService:
    """Service for ledger reads and movement recording."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.inventory_service = InventoryService(db)
        self.audit_service = AuditService(db)

    # ==================== VALUATION ====================

    async def get_on_hand(
        self,
        item_id: uuid.UUID,
        branch_id: uuid.UUID,
        as_of: Optional[datetime] = None,
    ) -> Decimal:
        """Sum of signed movements for the pair; zero when none exist."""
        query = select(func.coalesce(func.sum(LedgerMovement.quantity), 0)).where(
            and_(
                LedgerMovement.item_id == item_id,
                LedgerMovement.branch_id == branch_id,
            )
        )
        if as_of is not None:
            query = query.where(LedgerMovement.created_at <= as_of)

        return to_quantity(await self.db.scalar(query))

    # ==================== RECORDING ====================

    async def record_movement(
        self,
        item_id: uuid.UUID,
        branch_id: uuid.UUID,
        movement_type: MovementType,
        quantity: Decimal,
        notes: Optional[str] = None,
        unit_id: Optional[uuid.UUID] = None,
        unit_cost: Optional[Decimal] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> LedgerMovement:
        """
        Record a single movement.

        ``quantity`` is an unsigned magnitude; the stored sign comes from
        ``movement_type``. Raises InsufficientStock for deductions that would
        take on-hand below zero.
        """
        resolved_type = to_enum(movement_type, MovementType)
        if resolved_type not in RECORDABLE_MOVEMENT_TYPES:
            raise InvalidInput(
                f"Movement type '{movement_type}' cannot be recorded directly",
                {"allowed": sorted(t.value for t in RECORDABLE_MOVEMENT_TYPES)},
            )

        try:
            item = await self._get_branch_item(
                item_id,
                branch_id,
                lock=resolved_type in DEDUCTING_MOVEMENT_TYPES,
            )
            movement = await self._append_movement(
                item=item,
                branch_id=branch_id,
                movement_type=resolved_type,
                quantity=quantity,
                unit_id=unit_id,
                unit_cost=unit_cost,
                notes=notes,
                created_by=created_by,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Recorded {resolved_type.value} of {movement.quantity} for item {item_id} "
            f"in branch {branch_id}"
        )
        return movement

    async def post_purchase_receipt(
        self,
        branch_id: uuid.UUID,
        lines: List[Dict[str, Any]],
        receipt_no: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Post goods received as one PURCHASE_RECEIPT movement per line.

        Lines are dicts with ``item_id``, ``quantity`` and optional ``unit_id``
        and ``unit_cost``. All lines commit together or not at all.
        """
        if not lines:
            raise InvalidInput("A purchase receipt needs at least one line")

        reference_id = uuid.uuid4()
        if not receipt_no:
            date_part = datetime.now(timezone.utc).strftime("%Y%m%d")
            receipt_no = f"PR-{date_part}-{reference_id.hex[:6].upper()}"

        movements = []
        try:
            for line in lines:
                item = await self._get_branch_item(line["item_id"], branch_id)
                movement = await self._append_movement(
                    item=item,
                    branch_id=branch_id,
                    movement_type=MovementType.PURCHASE_RECEIPT,
                    quantity=line["quantity"],
                    unit_id=line.get("unit_id"),
                    unit_cost=line.get("unit_cost"),
                    reference_type="purchase_receipt",
                    reference_id=reference_id,
                    reference_number=receipt_no,
                    notes=notes,
                    created_by=created_by,
                )
                movements.append(movement)

            await self.audit_service.log_purchase_receipt(
                reference_id, receipt_no, branch_id, len(movements), user_id=created_by
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Posted purchase receipt {receipt_no} ({len(movements)} lines) in branch {branch_id}")
        return {
            "reference_id": reference_id,
            "receipt_no": receipt_no,
            "branch_id": branch_id,
            "movements": movements,
        }

    async def _get_branch_item(
        self,
        item_id: uuid.UUID,
        branch_id: uuid.UUID,
        lock: bool = False,
    ) -> InventoryItem:
        """Load an item owned by ``branch_id``; ``lock`` takes a row lock."""
        query = select(InventoryItem).where(InventoryItem.id == item_id)
        if lock:
            query = query.with_for_update()
        item = (await self.db.execute(query)).scalar_one_or_none()

        if not item or item.branch_id != branch_id:
            raise NotFound(
                "Inventory item not found in branch",
                {"item_id": str(item_id), "branch_id": str(branch_id)},
            )
        return item

    async def _append_movement(
        self,
        item: InventoryItem,
        branch_id: uuid.UUID,
        movement_type: MovementType,
        quantity: Decimal,
        unit_id: Optional[uuid.UUID] = None,
        unit_cost: Optional[Decimal] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[uuid.UUID] = None,
        reference_number: Optional[str] = None,
        stock_count_line_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> LedgerMovement:
        """
        Add one movement to the session without committing.

        STOCK_COUNT_ADJUSTMENT quantities arrive already signed and in base
        units; every other type takes a positive magnitude. Callers that pass
        a deducting type must have loaded ``item`` with ``lock=True``.
        """
        if quantity is None:
            raise InvalidInput("Quantity is required")
        quantity = Decimal(str(quantity))

        if movement_type == MovementType.STOCK_COUNT_ADJUSTMENT:
            if quantity == 0:
                raise InvalidInput("Count adjustment quantity cannot be zero")
            if item.base_unit_id is None:
                raise InvalidInput(
                    f"Item '{item.name}' has no base unit configured",
                    {"item_id": str(item.id)},
                )
            signed_quantity = to_quantity(quantity)
        else:
            if quantity <= 0:
                raise InvalidInput(
                    "Quantity must be a positive magnitude",
                    {"quantity": str(quantity)},
                )
            base_quantity = await self.inventory_service.convert_to_base(item, quantity, unit_id)
            if base_quantity <= 0:
                raise InvalidInput(
                    "Quantity rounds to zero in the item's base unit",
                    {"quantity": str(quantity)},
                )
            if movement_type in INBOUND_MOVEMENT_TYPES:
                signed_quantity = base_quantity
            else:
                signed_quantity = -base_quantity

        if movement_type in DEDUCTING_MOVEMENT_TYPES:
            available = await self.get_on_hand(item.id, branch_id)
            if available + signed_quantity < 0:
                raise InsufficientStock(
                    f"Insufficient stock for '{item.name}': available {available}, "
                    f"requested {-signed_quantity}",
                    {
                        "item_id": str(item.id),
                        "branch_id": str(branch_id),
                        "available": str(available),
                        "requested": str(-signed_quantity),
                    },
                )

        movement = LedgerMovement(
            item_id=item.id,
            branch_id=branch_id,
            movement_type=movement_type.value,
            quantity=signed_quantity,
            entered_quantity=quantity if unit_id else None,
            entered_unit_id=unit_id,
            unit_cost=unit_cost,
            reference_type=reference_type,
            reference_id=reference_id,
            reference_number=reference_number,
            stock_count_line_id=stock_count_line_id,
            notes=notes,
            created_by=created_by,
        )
        self.db.add(movement)
        await self.db.flush()
        return movement

    # ==================== HISTORY ====================

    async def list_movements(
        self,
        branch_id: Optional[uuid.UUID] = None,
        item_id: Optional[uuid.UUID] = None,
        movement_type: Optional[MovementType] = None,
        reference_id: Optional[uuid.UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[LedgerMovement], int]:
        """Get paginated movement history, newest first."""
        query = select(LedgerMovement)

        conditions = []
        if branch_id:
            conditions.append(LedgerMovement.branch_id == branch_id)
        if item_id:
            conditions.append(LedgerMovement.item_id == item_id)
        if movement_type:
            conditions.append(LedgerMovement.movement_type == get_enum_value(movement_type))
        if reference_id:
            conditions.append(LedgerMovement.reference_id == reference_id)
        if date_from:
            conditions.append(LedgerMovement.created_at >= date_from)
        if date_to:
            conditions.append(LedgerMovement.created_at <= date_to)

        if conditions:
            query = query.where(and_(*conditions))

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        query = query.order_by(LedgerMovement.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)

        return list(result.scalars().all()), total or 0
