"""Variance analytics schemas."""
from pydantic import Field

from app.schemas.base import BaseResponseSchema, BaseCreateSchema
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from decimal import Decimal
import uuid

from app.models.variance import RootCause


# ==================== CONSUMPTION ====================

class TheoreticalConsumption(BaseCreateSchema):
    item_id: uuid.UUID
    quantity: Decimal = Field(..., ge=0)


class ConsumptionReportRequest(BaseCreateSchema):
    """Theoretical consumption comes from recipe and sales data held elsewhere."""
    branch_id: uuid.UUID
    period_start: date
    period_end: date
    theoretical: List[TheoreticalConsumption] = Field(default_factory=list)


class ConsumptionVarianceItem(BaseResponseSchema):
    item_id: uuid.UUID
    item_name: str
    unit: Optional[str] = None
    theoretical_consumption: Decimal
    actual_consumption: Decimal
    variance: Decimal
    variance_percent: Decimal
    tag_id: Optional[uuid.UUID] = None
    root_cause: Optional[str] = None
    tag_notes: Optional[str] = None


class VarianceSummary(BaseResponseSchema):
    total_items: int
    items_with_variance: int
    positive_variance: Decimal
    negative_variance: Decimal = Field(..., description="Total shortage as a positive magnitude")
    net_variance: Decimal
    tagged_count: int
    untagged_count: int


class ConsumptionReport(BaseResponseSchema):
    branch_id: uuid.UUID
    period_start: date
    period_end: date
    items: List[ConsumptionVarianceItem]
    summary: VarianceSummary


# ==================== COUNT HISTORY ====================

class CountVarianceLine(BaseResponseSchema):
    line_id: uuid.UUID
    item_id: uuid.UUID
    item_name: str
    expected_quantity: Decimal
    actual_quantity: Decimal
    variance: Decimal


class CountVarianceEntry(BaseResponseSchema):
    stock_count_id: uuid.UUID
    count_number: str
    approved_at: Optional[datetime] = None
    approved_by: Optional[uuid.UUID] = None
    lines: List[CountVarianceLine]
    net_variance: Decimal


# ==================== ALERTS ====================

class VarianceAlert(BaseResponseSchema):
    type: str
    severity: str
    item_id: uuid.UUID
    item_name: str
    branch_id: uuid.UUID
    title: str
    data: Dict[str, Any]


# ==================== TAGS ====================

class VarianceTagUpsert(BaseCreateSchema):
    item_id: uuid.UUID
    branch_id: uuid.UUID
    period_start: date
    period_end: date
    root_cause: RootCause
    notes: Optional[str] = None
    variance_qty: Optional[Decimal] = None


class VarianceTagResponse(BaseResponseSchema):
    id: uuid.UUID
    item_id: uuid.UUID
    branch_id: uuid.UUID
    period_start: date
    period_end: date
    root_cause: str
    notes: Optional[str] = None
    variance_qty: Optional[Decimal] = None
    tagged_by: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime
