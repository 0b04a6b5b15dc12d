"""Physical stock count session and its lines."""
from enum import Enum
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, ForeignKey, DateTime, Integer, UniqueConstraint, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid

from app.database import Base
from app.db_types import QuantityType
from app.core.enum_utils import enum_comment


class StockCountStatus(str, Enum):
    """Stock count status enum."""
    DRAFT = "DRAFT"  # Counting in progress, lines editable
    SUBMITTED = "SUBMITTED"  # Lines frozen, waiting for approval
    APPROVED = "APPROVED"  # Variances posted to the ledger
    CANCELLED = "CANCELLED"  # Abandoned, no ledger effect


# Source states each transition may start from
STOCK_COUNT_TRANSITIONS = {
    "submit": (StockCountStatus.DRAFT,),
    "approve": (StockCountStatus.SUBMITTED,),
    "cancel": (StockCountStatus.DRAFT, StockCountStatus.SUBMITTED),
}


class StockCount(Base):
    """Stock count header."""

    __tablename__ = "stock_counts"
    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'APPROVED', 'CANCELLED')",
            name="ck_stock_count_status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    count_number = Column(String(50), unique=True, nullable=False, index=True)
    branch_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="DRAFT", index=True, comment=enum_comment(StockCountStatus))

    notes = Column(Text)

    # Users & dates
    created_by = Column(UUID(as_uuid=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    submitted_at = Column(DateTime(timezone=True))
    approved_by = Column(UUID(as_uuid=True))
    approved_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))
    cancel_reason = Column(Text)

    # Relationships
    lines = relationship(
        "StockCountLine",
        back_populates="stock_count",
        cascade="all, delete-orphan",
        order_by="StockCountLine.sequence",
    )

    def __repr__(self):
        return f"<StockCount {self.count_number} {self.status}>"


class StockCountLine(Base):
    """One item in a stock count: frozen expected vs counted actual."""

    __tablename__ = "stock_count_lines"
    __table_args__ = (
        UniqueConstraint("stock_count_id", "item_id", name="uq_stock_count_line_item"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    stock_count_id = Column(UUID(as_uuid=True), ForeignKey("stock_counts.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(UUID(as_uuid=True), ForeignKey("inventory_items.id"), nullable=False)
    sequence = Column(Integer, nullable=False, default=0)

    # Quantities in base unit
    expected_quantity = Column(QuantityType, nullable=False, default=0)  # On-hand snapshot at creation
    actual_quantity = Column(QuantityType, nullable=False, default=0)  # Entered by the counter

    notes = Column(Text)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    stock_count = relationship("StockCount", back_populates="lines")
    item = relationship("InventoryItem")

    @property
    def variance(self):
        """actual - expected; positive is an overage, negative a shortage."""
        return self.actual_quantity - self.expected_quantity

    def __repr__(self):
        return f"<StockCountLine {self.item_id} {self.expected_quantity}->{self.actual_quantity}>"
