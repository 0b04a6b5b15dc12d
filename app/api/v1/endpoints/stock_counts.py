"""
Stock Count API endpoints.

A count is opened as DRAFT with one line per active item, filled in by the
counter, submitted (lines freeze), then approved (variances are posted to the
ledger) or cancelled.
"""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.api.deps import DB, CurrentUserId
from app.models.stock_count import StockCountStatus
from app.schemas.stock_count import (
    StockCountCreate,
    StockCountCancel,
    StockCountResponse,
    StockCountDetail,
    StockCountListResponse,
    CountLineUpdate,
    StockCountLineResponse,
    ApprovalResult,
)
from app.services.reconciliation_service import ReconciliationService
from app.services.stock_count_service import StockCountService

router = APIRouter(tags=["Stock Counts"])


# ============================================================================
# COUNTS
# ============================================================================

@router.post(
    "",
    response_model=StockCountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open Stock Count"
)
async def create_stock_count(data: StockCountCreate, db: DB, current_user_id: CurrentUserId):
    """Open a DRAFT count snapshotting on-hand for every active item."""
    service = StockCountService(db)
    stock_count = await service.create_stock_count(data.branch_id, current_user_id, data.notes)
    return StockCountResponse.model_validate(stock_count)


@router.get(
    "",
    response_model=StockCountListResponse,
    summary="List Stock Counts"
)
async def list_stock_counts(
    db: DB,
    branch_id: Optional[UUID] = Query(None),
    status: Optional[StockCountStatus] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
):
    service = StockCountService(db)
    counts, total = await service.list_stock_counts(branch_id, status, skip, limit)
    return StockCountListResponse(
        items=[StockCountResponse.model_validate(c) for c in counts],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/{stock_count_id}",
    response_model=StockCountDetail,
    summary="Get Stock Count"
)
async def get_stock_count(stock_count_id: UUID, db: DB):
    summary = await StockCountService(db).get_count_summary(stock_count_id)
    header = StockCountResponse.model_validate(summary["stock_count"])
    return StockCountDetail(
        **header.model_dump(),
        line_count=summary["line_count"],
        total_expected=summary["total_expected"],
        total_actual=summary["total_actual"],
        net_variance=summary["net_variance"],
    )


# ============================================================================
# LINES
# ============================================================================

@router.get(
    "/{stock_count_id}/lines",
    response_model=List[StockCountLineResponse],
    summary="Get Count Lines"
)
async def get_count_lines(stock_count_id: UUID, db: DB):
    lines = await StockCountService(db).get_count_lines(stock_count_id)
    response = []
    for line in lines:
        line_response = StockCountLineResponse.model_validate(line)
        line_response.item_name = line.item.name if line.item else None
        response.append(line_response)
    return response


@router.patch(
    "/lines/{line_id}",
    response_model=StockCountLineResponse,
    summary="Enter Counted Quantity"
)
async def update_count_line(
    line_id: UUID,
    data: CountLineUpdate,
    db: DB,
    current_user_id: CurrentUserId,
):
    """Only DRAFT counts accept edits; anything else is 409."""
    line = await StockCountService(db).update_count_line(line_id, data.actual_quantity, data.notes)
    return StockCountLineResponse.model_validate(line)


# ============================================================================
# TRANSITIONS
# ============================================================================

@router.post(
    "/{stock_count_id}/submit",
    response_model=StockCountResponse,
    summary="Submit Stock Count"
)
async def submit_stock_count(stock_count_id: UUID, db: DB, current_user_id: CurrentUserId):
    stock_count = await StockCountService(db).submit(stock_count_id, current_user_id)
    return StockCountResponse.model_validate(stock_count)


@router.post(
    "/{stock_count_id}/approve",
    response_model=ApprovalResult,
    summary="Approve Stock Count"
)
async def approve_stock_count(stock_count_id: UUID, db: DB, current_user_id: CurrentUserId):
    """
    Approve a SUBMITTED count and post one STOCK_COUNT_ADJUSTMENT per line
    with a non-trivial variance. A second approval gets 409.
    """
    result = await ReconciliationService(db).approve(stock_count_id, current_user_id)
    return ApprovalResult(**result)


@router.post(
    "/{stock_count_id}/cancel",
    response_model=StockCountResponse,
    summary="Cancel Stock Count"
)
async def cancel_stock_count(
    stock_count_id: UUID,
    db: DB,
    current_user_id: CurrentUserId,
    data: Optional[StockCountCancel] = None,
):
    stock_count = await StockCountService(db).cancel(
        stock_count_id,
        reason=data.reason if data else None,
        user_id=current_user_id,
    )
    return StockCountResponse.model_validate(stock_count)
