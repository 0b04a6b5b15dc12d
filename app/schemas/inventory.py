"""Inventory schemas: units, items, ledger movements and stock levels."""
from pydantic import Field

from app.schemas.base import BaseResponseSchema, BaseCreateSchema
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from app.models.inventory import MovementType


# ==================== UNIT SCHEMAS ====================

class UnitCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=50)
    symbol: Optional[str] = Field(None, max_length=20)


class UnitResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    symbol: Optional[str] = None
    created_at: datetime


class UnitConversionCreate(BaseCreateSchema):
    """1 from_unit == multiplier to_unit."""
    from_unit_id: uuid.UUID
    to_unit_id: uuid.UUID
    multiplier: Decimal = Field(..., gt=0)


class UnitConversionResponse(BaseResponseSchema):
    id: uuid.UUID
    from_unit_id: uuid.UUID
    to_unit_id: uuid.UUID
    multiplier: Decimal
    created_at: datetime


# ==================== ITEM SCHEMAS ====================

class ItemCreate(BaseCreateSchema):
    """Inventory item creation schema."""
    branch_id: uuid.UUID
    name: str = Field(..., min_length=1, max_length=200)
    base_unit_id: uuid.UUID
    category: Optional[str] = Field(None, max_length=100)
    min_level: Decimal = Field(Decimal("0"), ge=0)
    reorder_point: Decimal = Field(Decimal("0"), ge=0)


class ItemActiveUpdate(BaseCreateSchema):
    is_active: bool


class ItemResponse(BaseResponseSchema):
    """Inventory item response schema. On-hand is not part of the item."""
    id: uuid.UUID
    branch_id: uuid.UUID
    name: str
    category: Optional[str] = None
    base_unit_id: Optional[uuid.UUID] = None
    min_level: Decimal
    reorder_point: Decimal
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None


class ItemListResponse(BaseResponseSchema):
    items: List[ItemResponse]
    total: int
    skip: int = 0
    limit: int = 100


# ==================== MOVEMENT SCHEMAS ====================

class MovementCreate(BaseCreateSchema):
    """
    Movement request. ``quantity`` is a positive magnitude; the stored sign
    follows from ``movement_type``.
    """
    item_id: uuid.UUID
    branch_id: uuid.UUID
    movement_type: MovementType
    quantity: Decimal = Field(..., gt=0)
    unit_id: Optional[uuid.UUID] = None
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class MovementResponse(BaseResponseSchema):
    """Ledger movement; ``quantity`` is signed and in the item's base unit."""
    id: uuid.UUID
    item_id: uuid.UUID
    branch_id: uuid.UUID
    movement_type: str
    quantity: Decimal
    entered_quantity: Optional[Decimal] = None
    entered_unit_id: Optional[uuid.UUID] = None
    unit_cost: Optional[Decimal] = None
    reference_type: Optional[str] = None
    reference_id: Optional[uuid.UUID] = None
    reference_number: Optional[str] = None
    stock_count_line_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime


class MovementListResponse(BaseResponseSchema):
    items: List[MovementResponse]
    total: int
    page: int
    size: int
    pages: int


class OnHandResponse(BaseResponseSchema):
    item_id: uuid.UUID
    branch_id: uuid.UUID
    as_of: Optional[datetime] = None
    on_hand: Decimal


class StockLevelResponse(BaseResponseSchema):
    item_id: uuid.UUID
    item_name: str
    category: Optional[str] = None
    unit: Optional[str] = None
    on_hand: Decimal
    min_level: Decimal
    reorder_point: Decimal
    is_low_stock: bool
    needs_reorder: bool


# ==================== PURCHASE RECEIPT SCHEMAS ====================

class PurchaseReceiptLine(BaseCreateSchema):
    item_id: uuid.UUID
    quantity: Decimal = Field(..., gt=0)
    unit_id: Optional[uuid.UUID] = None
    unit_cost: Optional[Decimal] = Field(None, ge=0)


class PurchaseReceiptCreate(BaseCreateSchema):
    """Goods received into a branch; one ledger movement per line."""
    branch_id: uuid.UUID
    receipt_no: Optional[str] = Field(None, max_length=100)
    lines: List[PurchaseReceiptLine] = Field(..., min_length=1)
    notes: Optional[str] = None


class PurchaseReceiptResponse(BaseResponseSchema):
    reference_id: uuid.UUID
    receipt_no: str
    branch_id: uuid.UUID
    movements: List[MovementResponse]
