"""Stock count schemas for API requests/responses."""
from pydantic import Field, computed_field

from app.schemas.base import BaseResponseSchema, BaseCreateSchema
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid


# ==================== COUNT SCHEMAS ====================

class StockCountCreate(BaseCreateSchema):
    branch_id: uuid.UUID
    notes: Optional[str] = None


class StockCountCancel(BaseCreateSchema):
    reason: Optional[str] = Field(None, max_length=500)


class StockCountResponse(BaseResponseSchema):
    """Stock count header."""
    id: uuid.UUID
    count_number: str
    branch_id: uuid.UUID
    status: str
    notes: Optional[str] = None
    created_by: uuid.UUID
    created_at: datetime
    submitted_at: Optional[datetime] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None


class StockCountDetail(StockCountResponse):
    """Header with line totals."""
    line_count: int
    total_expected: Decimal
    total_actual: Decimal
    net_variance: Decimal


class StockCountListResponse(BaseResponseSchema):
    items: List[StockCountResponse]
    total: int
    skip: int = 0
    limit: int = 20


# ==================== LINE SCHEMAS ====================

class CountLineUpdate(BaseCreateSchema):
    actual_quantity: Decimal = Field(..., ge=0)
    notes: Optional[str] = None


class StockCountLineResponse(BaseResponseSchema):
    id: uuid.UUID
    stock_count_id: uuid.UUID
    item_id: uuid.UUID
    item_name: Optional[str] = None
    sequence: int
    expected_quantity: Decimal
    actual_quantity: Decimal
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def variance(self) -> Decimal:
        return self.actual_quantity - self.expected_quantity


# ==================== APPROVAL ====================

class ApprovalResult(BaseResponseSchema):
    """What an approval wrote to the ledger."""
    stock_count_id: uuid.UUID
    count_number: str
    total_lines: int
    items_with_variance: int
    adjustments_created: int
    positive_variance: Decimal = Field(..., description="Total overage, base units")
    negative_variance: Decimal = Field(..., description="Total shortage as a positive magnitude, base units")
    net_variance: Decimal
