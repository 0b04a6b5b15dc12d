"""Inventory Service for units, conversions, branch items and stock levels."""
import logging
from decimal import Decimal
from typing import Optional, List, Tuple, Dict, Any
import uuid

from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from app.core.exceptions import InvalidInput, NotFound
from app.models.inventory import (
    InventoryUnit,
    UnitConversion,
    InventoryItem,
    LedgerMovement,
)


logger = logging.getLogger(__name__)

QUANTITY_PLACES = Decimal("0.0001")


def to_quantity(value: Any) -> Decimal:
    """Coerce a database or user value to a 4-place Decimal quantity."""
    if value is None:
        return Decimal("0").quantize(QUANTITY_PLACES)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(QUANTITY_PLACES)


class InventoryService:
    """Service for the reference data the ledger hangs off."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== UNIT METHODS ====================

    async def create_unit(self, name: str, symbol: Optional[str] = None) -> InventoryUnit:
        existing = await self.db.scalar(
            select(InventoryUnit).where(func.lower(InventoryUnit.name) == name.strip().lower())
        )
        if existing:
            raise InvalidInput(f"Unit '{name}' already exists", {"unit_id": str(existing.id)})

        unit = InventoryUnit(name=name.strip(), symbol=symbol)
        self.db.add(unit)
        await self.db.commit()
        await self.db.refresh(unit)
        logger.info(f"Created unit {unit.name} ({unit.id})")
        return unit

    async def list_units(self) -> List[InventoryUnit]:
        result = await self.db.execute(select(InventoryUnit).order_by(InventoryUnit.name))
        return list(result.scalars().all())

    async def get_unit(self, unit_id: uuid.UUID) -> InventoryUnit:
        unit = await self.db.get(InventoryUnit, unit_id)
        if not unit:
            raise NotFound("Unit not found", {"unit_id": str(unit_id)})
        return unit

    async def create_conversion(
        self,
        from_unit_id: uuid.UUID,
        to_unit_id: uuid.UUID,
        multiplier: Decimal,
    ) -> UnitConversion:
        """
        Register ``1 from_unit == multiplier to_unit``.

        The reverse direction is derived at conversion time, so registering
        kg -> g also lets callers enter grams against a kilogram item.
        """
        if from_unit_id == to_unit_id:
            raise InvalidInput("A unit cannot be converted to itself")
        if multiplier is None or multiplier <= 0:
            raise InvalidInput("Conversion multiplier must be positive", {"multiplier": str(multiplier)})

        await self.get_unit(from_unit_id)
        await self.get_unit(to_unit_id)

        existing = await self._find_conversion(from_unit_id, to_unit_id)
        if existing:
            raise InvalidInput(
                "A conversion between these units already exists",
                {"conversion_id": str(existing.id)},
            )

        conversion = UnitConversion(
            from_unit_id=from_unit_id,
            to_unit_id=to_unit_id,
            multiplier=multiplier,
        )
        self.db.add(conversion)
        await self.db.commit()
        await self.db.refresh(conversion)
        logger.info(f"Created unit conversion {from_unit_id} -> {to_unit_id} x{multiplier}")
        return conversion

    async def _find_conversion(
        self,
        unit_a: uuid.UUID,
        unit_b: uuid.UUID,
    ) -> Optional[UnitConversion]:
        """Conversion between two units in either direction."""
        query = select(UnitConversion).where(
            or_(
                and_(UnitConversion.from_unit_id == unit_a, UnitConversion.to_unit_id == unit_b),
                and_(UnitConversion.from_unit_id == unit_b, UnitConversion.to_unit_id == unit_a),
            )
        )
        result = await self.db.execute(query)
        return result.scalars().first()

    async def convert_to_base(
        self,
        item: InventoryItem,
        quantity: Decimal,
        unit_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """Express ``quantity`` (entered in ``unit_id``) in the item's base unit."""
        if item.base_unit_id is None:
            raise InvalidInput(
                f"Item '{item.name}' has no base unit configured",
                {"item_id": str(item.id)},
            )
        if unit_id is None or unit_id == item.base_unit_id:
            return to_quantity(quantity)

        conversion = await self._find_conversion(unit_id, item.base_unit_id)
        if conversion is None:
            raise InvalidInput(
                "No conversion from the entered unit to the item's base unit",
                {"unit_id": str(unit_id), "base_unit_id": str(item.base_unit_id)},
            )

        multiplier = Decimal(str(conversion.multiplier))
        if conversion.from_unit_id == unit_id:
            return to_quantity(quantity * multiplier)
        return to_quantity(quantity / multiplier)

    # ==================== ITEM METHODS ====================

    async def create_item(
        self,
        branch_id: uuid.UUID,
        name: str,
        base_unit_id: uuid.UUID,
        min_level: Decimal = Decimal("0"),
        reorder_point: Decimal = Decimal("0"),
        category: Optional[str] = None,
    ) -> InventoryItem:
        """Create an item in a branch. Names are unique within a branch."""
        if min_level < 0 or reorder_point < 0:
            raise InvalidInput("Stock levels cannot be negative")

        await self.get_unit(base_unit_id)

        duplicate = await self.get_item_by_name(branch_id, name)
        if duplicate:
            raise InvalidInput(
                f"Item '{name}' already exists in this branch",
                {"item_id": str(duplicate.id)},
            )

        item = InventoryItem(
            branch_id=branch_id,
            name=name.strip(),
            category=category,
            base_unit_id=base_unit_id,
            min_level=min_level,
            reorder_point=reorder_point,
            is_active=True,
        )
        self.db.add(item)
        await self.db.commit()
        await self.db.refresh(item)
        logger.info(f"Created inventory item {item.name} ({item.id}) in branch {branch_id}")
        return item

    async def get_item(self, item_id: uuid.UUID) -> InventoryItem:
        item = await self.db.get(InventoryItem, item_id)
        if not item:
            raise NotFound("Inventory item not found", {"item_id": str(item_id)})
        return item

    async def get_item_by_name(self, branch_id: uuid.UUID, name: str) -> Optional[InventoryItem]:
        query = select(InventoryItem).where(
            and_(
                InventoryItem.branch_id == branch_id,
                func.lower(InventoryItem.name) == name.strip().lower(),
            )
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_items(
        self,
        branch_id: Optional[uuid.UUID] = None,
        active_only: bool = False,
        category: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[InventoryItem], int]:
        """Get paginated list of items."""
        query = select(InventoryItem)

        conditions = []
        if branch_id:
            conditions.append(InventoryItem.branch_id == branch_id)
        if active_only:
            conditions.append(InventoryItem.is_active == True)  # noqa: E712
        if category:
            conditions.append(InventoryItem.category == category)

        if conditions:
            query = query.where(and_(*conditions))

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        query = query.order_by(InventoryItem.name).offset(skip).limit(limit)
        result = await self.db.execute(query)

        return list(result.scalars().all()), total or 0

    async def set_item_active(self, item_id: uuid.UUID, is_active: bool) -> InventoryItem:
        """Deactivated items keep their ledger but are left out of new counts."""
        item = await self.get_item(item_id)
        item.is_active = is_active
        await self.db.commit()
        await self.db.refresh(item)
        logger.info(f"Item {item.name} ({item.id}) is_active={is_active}")
        return item

    # ==================== STOCK LEVEL METHODS ====================

    async def get_on_hand_by_item(
        self,
        branch_id: uuid.UUID,
        item_ids: Optional[List[uuid.UUID]] = None,
    ) -> Dict[uuid.UUID, Decimal]:
        """On-hand per item for a branch in one grouped query."""
        query = (
            select(LedgerMovement.item_id, func.sum(LedgerMovement.quantity))
            .where(LedgerMovement.branch_id == branch_id)
            .group_by(LedgerMovement.item_id)
        )
        if item_ids is not None:
            if not item_ids:
                return {}
            query = query.where(LedgerMovement.item_id.in_(item_ids))

        result = await self.db.execute(query)
        return {item_id: to_quantity(total) for item_id, total in result.all()}

    async def get_stock_levels(self, branch_id: uuid.UUID) -> List[Dict[str, Any]]:
        """On-hand against min level and reorder point for each active item."""
        query = (
            select(InventoryItem)
            .options(joinedload(InventoryItem.base_unit))
            .where(
                and_(
                    InventoryItem.branch_id == branch_id,
                    InventoryItem.is_active == True,  # noqa: E712
                )
            )
            .order_by(InventoryItem.name)
        )
        result = await self.db.execute(query)
        items = result.scalars().all()

        on_hand = await self.get_on_hand_by_item(branch_id, [item.id for item in items])

        levels = []
        for item in items:
            quantity = on_hand.get(item.id, to_quantity(0))
            min_level = to_quantity(item.min_level)
            reorder_point = to_quantity(item.reorder_point)
            levels.append({
                "item_id": item.id,
                "item_name": item.name,
                "category": item.category,
                "unit": item.base_unit.symbol or item.base_unit.name if item.base_unit else None,
                "on_hand": quantity,
                "min_level": min_level,
                "reorder_point": reorder_point,
                "is_low_stock": quantity <= min_level,
                "needs_reorder": quantity <= reorder_point,
            })
        return levels
