"""Inventory models: units, branch items and the append-only movement ledger."""
from enum import Enum
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, Boolean, ForeignKey, DateTime, Numeric, Index
from sqlalchemy import UniqueConstraint, CheckConstraint, event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid

from app.database import Base
from app.db_types import QuantityType, MoneyType
from app.core.enum_utils import enum_comment


class MovementType(str, Enum):
    """Ledger movement type enum."""
    PURCHASE_RECEIPT = "PURCHASE_RECEIPT"  # Goods received from a supplier
    ADJUSTMENT_IN = "ADJUSTMENT_IN"  # Manual correction (increase)
    ADJUSTMENT_OUT = "ADJUSTMENT_OUT"  # Manual correction (decrease)
    WASTE = "WASTE"  # Spoiled, dropped, expired
    TRANSFER_OUT = "TRANSFER_OUT"  # Leaving this branch
    TRANSFER_IN = "TRANSFER_IN"  # Arriving from another branch
    INITIAL_STOCK = "INITIAL_STOCK"  # Opening balance
    STOCK_COUNT_ADJUSTMENT = "STOCK_COUNT_ADJUSTMENT"  # Approved physical count variance (signed)


INBOUND_MOVEMENT_TYPES = frozenset({
    MovementType.PURCHASE_RECEIPT,
    MovementType.ADJUSTMENT_IN,
    MovementType.TRANSFER_IN,
    MovementType.INITIAL_STOCK,
})

# Movements that reduce on-hand and must not drive it below zero
DEDUCTING_MOVEMENT_TYPES = frozenset({
    MovementType.ADJUSTMENT_OUT,
    MovementType.WASTE,
    MovementType.TRANSFER_OUT,
})


class InventoryUnit(Base):
    """Unit of measure (kg, g, L, piece...)."""

    __tablename__ = "inventory_units"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), unique=True, nullable=False)
    symbol = Column(String(20))

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self):
        return f"<InventoryUnit {self.name}>"


class UnitConversion(Base):
    """Multiplier converting a quantity in from_unit into to_unit."""

    __tablename__ = "inventory_unit_conversions"
    __table_args__ = (
        UniqueConstraint("from_unit_id", "to_unit_id", name="uq_unit_conversion"),
        CheckConstraint("multiplier > 0", name="ck_unit_conversion_multiplier_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    from_unit_id = Column(UUID(as_uuid=True), ForeignKey("inventory_units.id"), nullable=False)
    to_unit_id = Column(UUID(as_uuid=True), ForeignKey("inventory_units.id"), nullable=False)
    multiplier = Column(Numeric(18, 6), nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    from_unit = relationship("InventoryUnit", foreign_keys=[from_unit_id])
    to_unit = relationship("InventoryUnit", foreign_keys=[to_unit_id])


class InventoryItem(Base):
    """Stock-keeping item owned by one branch.

    There is no on-hand column: on-hand is always the sum of the
    item's ledger movements.
    """

    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint("branch_id", "name", name="uq_inventory_item_branch_name"),
        CheckConstraint("min_level >= 0", name="ck_inventory_item_min_level"),
        CheckConstraint("reorder_point >= 0", name="ck_inventory_item_reorder_point"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Owning branch (branch directory lives outside this service)
    branch_id = Column(UUID(as_uuid=True), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    category = Column(String(100))
    base_unit_id = Column(UUID(as_uuid=True), ForeignKey("inventory_units.id"))

    # Thresholds
    min_level = Column(QuantityType, nullable=False, default=0)
    reorder_point = Column(QuantityType, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    base_unit = relationship("InventoryUnit")

    def __repr__(self):
        return f"<InventoryItem {self.name}>"


class LedgerMovement(Base):
    """One immutable, signed quantity entry in the inventory ledger."""

    __tablename__ = "inventory_movements"
    __table_args__ = (
        Index("ix_inventory_movements_item_branch", "item_id", "branch_id"),
        CheckConstraint("quantity <> 0", name="ck_inventory_movement_nonzero"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    item_id = Column(UUID(as_uuid=True), ForeignKey("inventory_items.id"), nullable=False)
    branch_id = Column(UUID(as_uuid=True), nullable=False, index=True)

    movement_type = Column(
        String(50), nullable=False, index=True,
        comment=enum_comment(MovementType)
    )

    # Signed quantity in the item's base unit: positive in, negative out
    quantity = Column(QuantityType, nullable=False)

    # What the user typed, before conversion to the base unit
    entered_quantity = Column(QuantityType)
    entered_unit_id = Column(UUID(as_uuid=True), ForeignKey("inventory_units.id"))

    unit_cost = Column(MoneyType)

    # Back-reference to the document that produced the movement
    reference_type = Column(String(50))  # stock_count, transfer, purchase_receipt
    reference_id = Column(UUID(as_uuid=True), index=True)
    reference_number = Column(String(100))
    stock_count_line_id = Column(UUID(as_uuid=True), ForeignKey("stock_count_lines.id"))

    notes = Column(Text)
    created_by = Column(UUID(as_uuid=True))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    # Relationships
    item = relationship("InventoryItem")

    def __repr__(self):
        return f"<LedgerMovement {self.movement_type} {self.quantity}>"


@event.listens_for(LedgerMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ValueError("Ledger movements are append-only and cannot be updated")


@event.listens_for(LedgerMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ValueError("Ledger movements are append-only and cannot be deleted")
