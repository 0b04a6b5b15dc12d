"""Audit log schemas."""
from app.schemas.base import BaseResponseSchema
from typing import Optional, List, Dict, Any
from datetime import datetime
import uuid


class AuditLogResponse(BaseResponseSchema):
    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    action: str
    entity_type: str
    entity_id: Optional[uuid.UUID] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    created_at: datetime


class AuditLogListResponse(BaseResponseSchema):
    items: List[AuditLogResponse]
    total: int
    page: int
    size: int
    pages: int
