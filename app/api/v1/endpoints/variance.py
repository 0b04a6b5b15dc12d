"""Variance analytics API endpoints."""
from typing import Optional, List
from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.api.deps import DB, CurrentUserId
from app.schemas.variance import (
    ConsumptionReportRequest,
    ConsumptionReport,
    CountVarianceEntry,
    VarianceAlert,
    VarianceTagUpsert,
    VarianceTagResponse,
)
from app.services.variance_service import VarianceService

router = APIRouter(tags=["Variance Analytics"])


@router.post("/consumption", response_model=ConsumptionReport)
async def consumption_report(data: ConsumptionReportRequest, db: DB):
    """
    Actual vs theoretical consumption per item for a period.

    The body carries theoretical consumption per item; items left out are
    treated as zero.
    """
    report = await VarianceService(db).consumption_report(
        branch_id=data.branch_id,
        period_start=data.period_start,
        period_end=data.period_end,
        theoretical={row.item_id: row.quantity for row in data.theoretical},
    )
    return ConsumptionReport(**report)


@router.get("/count-history", response_model=List[CountVarianceEntry])
async def count_variance_history(
    db: DB,
    branch_id: UUID = Query(...),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
):
    history = await VarianceService(db).count_variance_history(branch_id, date_from, date_to)
    return [CountVarianceEntry(**entry) for entry in history]


@router.get("/alerts", response_model=List[VarianceAlert])
async def variance_alerts(db: DB, branch_id: Optional[UUID] = Query(None)):
    """Repeated, spiking and worsening count variances, critical first."""
    alerts = await VarianceService(db).variance_alerts(branch_id)
    return [VarianceAlert(**alert) for alert in alerts]


# ==================== TAGS ====================

@router.put("/tags", response_model=VarianceTagResponse)
async def upsert_variance_tag(data: VarianceTagUpsert, db: DB, current_user_id: CurrentUserId):
    tag = await VarianceService(db).upsert_variance_tag(
        item_id=data.item_id,
        branch_id=data.branch_id,
        period_start=data.period_start,
        period_end=data.period_end,
        root_cause=data.root_cause,
        notes=data.notes,
        variance_qty=data.variance_qty,
        tagged_by=current_user_id,
    )
    return VarianceTagResponse.model_validate(tag)


@router.get("/tags", response_model=List[VarianceTagResponse])
async def list_variance_tags(
    db: DB,
    branch_id: UUID = Query(...),
    period_start: Optional[date] = Query(None),
    period_end: Optional[date] = Query(None),
):
    tags = await VarianceService(db).list_variance_tags(branch_id, period_start, period_end)
    return [VarianceTagResponse.model_validate(t) for t in tags]


@router.delete("/tags/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_variance_tag(tag_id: UUID, db: DB, current_user_id: CurrentUserId):
    await VarianceService(db).delete_variance_tag(tag_id)
