"""Root-cause tags for variance analytics. Never read by on-hand math."""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Text, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from app.database import Base
from app.db_types import QuantityType
from app.core.enum_utils import enum_comment


class RootCause(str, Enum):
    """Why an item's consumption or count drifted."""
    WASTE = "WASTE"
    THEFT = "THEFT"
    OVER_PORTIONING = "OVER_PORTIONING"
    DATA_ERROR = "DATA_ERROR"
    SUPPLIER_VARIANCE = "SUPPLIER_VARIANCE"
    UNKNOWN = "UNKNOWN"


class VarianceTag(Base):
    """Manual root-cause tag for one (item, branch, period) variance observation."""

    __tablename__ = "inventory_variance_tags"
    __table_args__ = (
        UniqueConstraint(
            "item_id", "branch_id", "period_start", "period_end",
            name="uq_variance_tag_item_period",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("inventory_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    branch_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    root_cause: Mapped[str] = mapped_column(String(30), nullable=False, comment=enum_comment(RootCause))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Snapshot of the figure that was tagged
    variance_qty: Mapped[Optional[Decimal]] = mapped_column(QuantityType, nullable=True)

    tagged_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    item = relationship("InventoryItem")

    def __repr__(self) -> str:
        return f"<VarianceTag(item='{self.item_id}', cause='{self.root_cause}')>"
