"""Stock Transfer schemas for API requests/responses."""
from pydantic import Field

from app.schemas.base import BaseResponseSchema, BaseCreateSchema
from app.schemas.inventory import MovementResponse
from typing import Optional
from decimal import Decimal
import uuid


class StockTransferCreate(BaseCreateSchema):
    """Stock transfer creation schema. ``item_id`` is the source branch's item."""
    item_id: uuid.UUID
    from_branch_id: uuid.UUID
    to_branch_id: uuid.UUID
    quantity: Decimal = Field(..., gt=0)
    unit_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None


class StockTransferResponse(BaseResponseSchema):
    """Both legs of a transfer, linked by ``transfer_group_id``."""
    transfer_group_id: uuid.UUID
    out: MovementResponse
    in_: MovementResponse = Field(..., alias="in")
