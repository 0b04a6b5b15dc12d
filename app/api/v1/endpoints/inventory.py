"""Inventory API endpoints: units, items, ledger movements and stock levels."""
from typing import Optional, List
import uuid
from math import ceil
from datetime import datetime

from fastapi import APIRouter, status, Query

from app.api.deps import DB, CurrentUserId
from app.models.inventory import MovementType
from app.schemas.inventory import (
    UnitCreate,
    UnitResponse,
    UnitConversionCreate,
    UnitConversionResponse,
    ItemCreate,
    ItemActiveUpdate,
    ItemResponse,
    ItemListResponse,
    MovementCreate,
    MovementResponse,
    MovementListResponse,
    OnHandResponse,
    StockLevelResponse,
    PurchaseReceiptCreate,
    PurchaseReceiptResponse,
)
from app.services.inventory_service import InventoryService
from app.services.ledger_service import LedgerService


router = APIRouter(tags=["Inventory"])


# ==================== UNITS ====================

@router.post("/units", response_model=UnitResponse, status_code=status.HTTP_201_CREATED)
async def create_unit(data: UnitCreate, db: DB, current_user_id: CurrentUserId):
    unit = await InventoryService(db).create_unit(data.name, data.symbol)
    return UnitResponse.model_validate(unit)


@router.get("/units", response_model=List[UnitResponse])
async def list_units(db: DB):
    units = await InventoryService(db).list_units()
    return [UnitResponse.model_validate(u) for u in units]


@router.post(
    "/unit-conversions",
    response_model=UnitConversionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_unit_conversion(data: UnitConversionCreate, db: DB, current_user_id: CurrentUserId):
    """Register 1 from_unit = multiplier to_unit. The reverse is derived."""
    conversion = await InventoryService(db).create_conversion(
        data.from_unit_id, data.to_unit_id, data.multiplier
    )
    return UnitConversionResponse.model_validate(conversion)


# ==================== ITEMS ====================

@router.post("/items", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(data: ItemCreate, db: DB, current_user_id: CurrentUserId):
    item = await InventoryService(db).create_item(
        branch_id=data.branch_id,
        name=data.name,
        base_unit_id=data.base_unit_id,
        min_level=data.min_level,
        reorder_point=data.reorder_point,
        category=data.category,
    )
    return ItemResponse.model_validate(item)


@router.get("/items", response_model=ItemListResponse)
async def list_items(
    db: DB,
    branch_id: Optional[uuid.UUID] = Query(None),
    active_only: bool = Query(False),
    category: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    items, total = await InventoryService(db).list_items(
        branch_id=branch_id,
        active_only=active_only,
        category=category,
        skip=skip,
        limit=limit,
    )
    return ItemListResponse(
        items=[ItemResponse.model_validate(i) for i in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/items/{item_id}", response_model=ItemResponse)
async def get_item(item_id: uuid.UUID, db: DB):
    item = await InventoryService(db).get_item(item_id)
    return ItemResponse.model_validate(item)


@router.patch("/items/{item_id}/active", response_model=ItemResponse)
async def set_item_active(
    item_id: uuid.UUID,
    data: ItemActiveUpdate,
    db: DB,
    current_user_id: CurrentUserId,
):
    """Inactive items keep their history but are skipped by new stock counts."""
    item = await InventoryService(db).set_item_active(item_id, data.is_active)
    return ItemResponse.model_validate(item)


# ==================== LEDGER ====================

@router.post("/movements", response_model=MovementResponse, status_code=status.HTTP_201_CREATED)
async def record_movement(data: MovementCreate, db: DB, current_user_id: CurrentUserId):
    """
    Record a receipt, manual adjustment, waste or opening balance.

    Transfers use /transfers; count adjustments are only written by approving
    a stock count.
    """
    movement = await LedgerService(db).record_movement(
        item_id=data.item_id,
        branch_id=data.branch_id,
        movement_type=data.movement_type,
        quantity=data.quantity,
        notes=data.notes,
        unit_id=data.unit_id,
        unit_cost=data.unit_cost,
        created_by=current_user_id,
    )
    return MovementResponse.model_validate(movement)


@router.get("/movements", response_model=MovementListResponse)
async def list_movements(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    branch_id: Optional[uuid.UUID] = Query(None),
    item_id: Optional[uuid.UUID] = Query(None),
    movement_type: Optional[MovementType] = Query(None),
    reference_id: Optional[uuid.UUID] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
):
    """Movement history, newest first."""
    skip = (page - 1) * size
    movements, total = await LedgerService(db).list_movements(
        branch_id=branch_id,
        item_id=item_id,
        movement_type=movement_type,
        reference_id=reference_id,
        date_from=date_from,
        date_to=date_to,
        skip=skip,
        limit=size,
    )

    return MovementListResponse(
        items=[MovementResponse.model_validate(m) for m in movements],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/on-hand", response_model=OnHandResponse)
async def get_on_hand(
    db: DB,
    item_id: uuid.UUID = Query(...),
    branch_id: uuid.UUID = Query(...),
    as_of: Optional[datetime] = Query(None),
):
    on_hand = await LedgerService(db).get_on_hand(item_id, branch_id, as_of)
    return OnHandResponse(item_id=item_id, branch_id=branch_id, as_of=as_of, on_hand=on_hand)


@router.get("/stock-levels", response_model=List[StockLevelResponse])
async def get_stock_levels(db: DB, branch_id: uuid.UUID = Query(...)):
    levels = await InventoryService(db).get_stock_levels(branch_id)
    return [StockLevelResponse(**level) for level in levels]


@router.post(
    "/purchase-receipts",
    response_model=PurchaseReceiptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_purchase_receipt(
    data: PurchaseReceiptCreate,
    db: DB,
    current_user_id: CurrentUserId,
):
    """Post a goods receipt. Every line is written or none is."""
    receipt = await LedgerService(db).post_purchase_receipt(
        branch_id=data.branch_id,
        lines=[line.model_dump() for line in data.lines],
        receipt_no=data.receipt_no,
        notes=data.notes,
        created_by=current_user_id,
    )
    return PurchaseReceiptResponse(
        reference_id=receipt["reference_id"],
        receipt_no=receipt["receipt_no"],
        branch_id=receipt["branch_id"],
        movements=[MovementResponse.model_validate(m) for m in receipt["movements"]],
    )
