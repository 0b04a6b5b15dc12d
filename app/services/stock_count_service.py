"""Stock Count Service: count sessions, line entry and lifecycle transitions."""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Tuple, Dict, Any
import uuid

from sqlalchemy import select, func, and_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, joinedload

from app.core.enum_utils import get_enum_value
from app.core.exceptions import (
    ConcurrentUpdate,
    CountNotEditable,
    InvalidInput,
    InvalidTransition,
    NoActiveItems,
    NotFound,
)
from app.models.inventory import InventoryItem
from app.models.stock_count import (
    StockCount,
    StockCountLine,
    StockCountStatus,
    STOCK_COUNT_TRANSITIONS,
)
from app.services.audit_service import AuditService
from app.services.inventory_service import InventoryService, to_quantity


logger = logging.getLogger(__name__)

COUNT_NUMBER_ATTEMPTS = 5


class StockCountService:
    """Service for stock count sessions."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.inventory_service = InventoryService(db)
        self.audit_service = AuditService(db)

    # ==================== CREATE / READ ====================

    async def create_stock_count(
        self,
        branch_id: uuid.UUID,
        created_by: uuid.UUID,
        notes: Optional[str] = None,
    ) -> StockCount:
        """
        Open a DRAFT count with one line per active item in the branch.

        Each line's expected quantity is the item's on-hand at this moment;
        actual starts at zero until the counter enters it. Two counts opened
        at the same moment can pick the same number; the loser rolls back
        and retries with the next one.
        """
        for attempt in range(1, COUNT_NUMBER_ATTEMPTS + 1):
            try:
                stock_count, line_count = await self._open_count(branch_id, created_by, notes)
                await self.db.commit()
                break
            except IntegrityError as e:
                await self.db.rollback()
                logger.warning(f"Count number collision for branch {branch_id} (attempt {attempt}): {e}")
                if attempt == COUNT_NUMBER_ATTEMPTS:
                    raise ConcurrentUpdate(
                        "Could not allocate a stock count number, please retry",
                        {"branch_id": str(branch_id)},
                    )
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            f"Created stock count {stock_count.count_number} for branch {branch_id} "
            f"with {line_count} lines"
        )
        return stock_count

    async def _open_count(
        self,
        branch_id: uuid.UUID,
        created_by: uuid.UUID,
        notes: Optional[str],
    ) -> Tuple[StockCount, int]:
        """Snapshot the branch into a new count and flush it, without committing."""
        result = await self.db.execute(
            select(InventoryItem)
            .where(
                and_(
                    InventoryItem.branch_id == branch_id,
                    InventoryItem.is_active == True,  # noqa: E712
                )
            )
            .order_by(InventoryItem.name)
        )
        items = result.scalars().all()
        if not items:
            raise NoActiveItems(
                "Branch has no active inventory items to count",
                {"branch_id": str(branch_id)},
            )

        on_hand = await self.inventory_service.get_on_hand_by_item(
            branch_id, [item.id for item in items]
        )

        stock_count = StockCount(
            count_number=await self._generate_count_number(),
            branch_id=branch_id,
            status=StockCountStatus.DRAFT.value,
            notes=notes,
            created_by=created_by,
        )
        stock_count.lines = [
            StockCountLine(
                item_id=item.id,
                sequence=index,
                expected_quantity=on_hand.get(item.id, to_quantity(0)),
                actual_quantity=to_quantity(0),
            )
            for index, item in enumerate(items)
        ]
        self.db.add(stock_count)
        await self.db.flush()

        await self.audit_service.log_count_transition(
            stock_count.id,
            stock_count.count_number,
            old_status=None,
            new_status=StockCountStatus.DRAFT.value,
            user_id=created_by,
            extra={"branch_id": branch_id, "lines": len(items)},
        )
        return stock_count, len(items)

    async def get_stock_count(self, stock_count_id: uuid.UUID, include_lines: bool = False) -> StockCount:
        query = select(StockCount).where(StockCount.id == stock_count_id)
        if include_lines:
            query = query.options(selectinload(StockCount.lines))
        query = query.execution_options(populate_existing=True)

        stock_count = (await self.db.execute(query)).scalar_one_or_none()
        if not stock_count:
            raise NotFound("Stock count not found", {"stock_count_id": str(stock_count_id)})
        return stock_count

    async def get_count_summary(self, stock_count_id: uuid.UUID) -> Dict[str, Any]:
        """Header plus line count and expected/actual/variance totals."""
        stock_count = await self.get_stock_count(stock_count_id)

        query = select(
            func.count(StockCountLine.id),
            func.coalesce(func.sum(StockCountLine.expected_quantity), 0),
            func.coalesce(func.sum(StockCountLine.actual_quantity), 0),
        ).where(StockCountLine.stock_count_id == stock_count_id)
        line_count, total_expected, total_actual = (await self.db.execute(query)).one()

        total_expected = to_quantity(total_expected)
        total_actual = to_quantity(total_actual)
        return {
            "stock_count": stock_count,
            "line_count": line_count,
            "total_expected": total_expected,
            "total_actual": total_actual,
            "net_variance": total_actual - total_expected,
        }

    async def list_stock_counts(
        self,
        branch_id: Optional[uuid.UUID] = None,
        status: Optional[StockCountStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[StockCount], int]:
        """Get paginated list of stock counts, newest first."""
        query = select(StockCount)

        conditions = []
        if branch_id:
            conditions.append(StockCount.branch_id == branch_id)
        if status:
            conditions.append(StockCount.status == get_enum_value(status))

        if conditions:
            query = query.where(and_(*conditions))

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        query = query.order_by(StockCount.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)

        return list(result.scalars().all()), total or 0

    async def get_count_lines(self, stock_count_id: uuid.UUID) -> List[StockCountLine]:
        """Lines in sequence order, with their items loaded."""
        await self.get_stock_count(stock_count_id)

        query = (
            select(StockCountLine)
            .options(joinedload(StockCountLine.item))
            .where(StockCountLine.stock_count_id == stock_count_id)
            .order_by(StockCountLine.sequence)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ==================== LINE ENTRY ====================

    async def update_count_line(
        self,
        line_id: uuid.UUID,
        actual_quantity: Decimal,
        notes: Optional[str] = None,
    ) -> StockCountLine:
        """Set a line's counted quantity. Only DRAFT counts accept edits."""
        if actual_quantity is None or actual_quantity < 0:
            raise InvalidInput(
                "Counted quantity cannot be negative",
                {"actual_quantity": str(actual_quantity)},
            )

        try:
            line = await self.db.get(StockCountLine, line_id)
            if not line:
                raise NotFound("Stock count line not found", {"line_id": str(line_id)})

            # Row lock on the header serializes edits against submit/cancel
            header = (
                await self.db.execute(
                    select(StockCount)
                    .where(StockCount.id == line.stock_count_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
            ).scalar_one()
            if header.status != StockCountStatus.DRAFT.value:
                raise CountNotEditable(
                    f"Stock count {header.count_number} is {header.status}; lines are frozen",
                    {"stock_count_id": str(header.id), "status": header.status},
                )

            line.actual_quantity = to_quantity(actual_quantity)
            if notes is not None:
                line.notes = notes
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(line)
        return line

    # ==================== TRANSITIONS ====================

    async def submit(self, stock_count_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> StockCount:
        """DRAFT -> SUBMITTED. Lines are frozen from here on."""
        try:
            stock_count = await self.transition(
                stock_count_id,
                "submit",
                StockCountStatus.SUBMITTED,
                submitted_at=datetime.now(timezone.utc),
            )
            await self.audit_service.log_count_transition(
                stock_count.id,
                stock_count.count_number,
                old_status=StockCountStatus.DRAFT.value,
                new_status=StockCountStatus.SUBMITTED.value,
                user_id=user_id,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Stock count {stock_count.count_number} submitted")
        return stock_count

    async def cancel(
        self,
        stock_count_id: uuid.UUID,
        reason: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> StockCount:
        """DRAFT or SUBMITTED -> CANCELLED. No ledger effect."""
        values = {"cancelled_at": datetime.now(timezone.utc), "cancel_reason": reason}
        try:
            previous_status = await self._lock_status(stock_count_id)
            try:
                stock_count = await self.transition(
                    stock_count_id,
                    "cancel",
                    StockCountStatus.CANCELLED,
                    expected_status=previous_status,
                    **values,
                )
            except InvalidTransition:
                # Status moved between the read and the update
                previous_status = await self._lock_status(stock_count_id)
                stock_count = await self.transition(
                    stock_count_id,
                    "cancel",
                    StockCountStatus.CANCELLED,
                    expected_status=previous_status,
                    **values,
                )
            await self.audit_service.log_count_transition(
                stock_count.id,
                stock_count.count_number,
                old_status=previous_status,
                new_status=StockCountStatus.CANCELLED.value,
                user_id=user_id,
                extra={"reason": reason} if reason else None,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Stock count {stock_count.count_number} cancelled")
        return stock_count

    async def _lock_status(self, stock_count_id: uuid.UUID) -> str:
        """Current status read under a row lock."""
        status = await self.db.scalar(
            select(StockCount.status)
            .where(StockCount.id == stock_count_id)
            .with_for_update()
        )
        if status is None:
            raise NotFound("Stock count not found", {"stock_count_id": str(stock_count_id)})
        return status

    async def transition(
        self,
        stock_count_id: uuid.UUID,
        action: str,
        new_status: StockCountStatus,
        expected_status: Optional[str] = None,
        **values: Any,
    ) -> StockCount:
        """
        Conditionally move a count to ``new_status`` without committing.

        The UPDATE only matches rows still in one of the action's source
        states, so of two racing callers exactly one sees a row updated.
        The loser gets InvalidTransition. ``expected_status`` narrows the
        source states to the one the caller has already read.
        """
        allowed = [status.value for status in STOCK_COUNT_TRANSITIONS[action]]
        sources = [status for status in allowed if expected_status in (None, status)]
        stmt = (
            update(StockCount)
            .where(
                and_(
                    StockCount.id == stock_count_id,
                    StockCount.status.in_(sources),
                )
            )
            .values(status=new_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount != 1:
            current = await self.get_stock_count(stock_count_id)
            raise InvalidTransition(
                f"Cannot {action} stock count {current.count_number} in status {current.status}",
                {
                    "stock_count_id": str(stock_count_id),
                    "status": current.status,
                    "allowed_from": allowed,
                },
            )

        return await self.get_stock_count(stock_count_id)

    async def _generate_count_number(self) -> str:
        """Generate unique count number."""
        date_part = datetime.now(timezone.utc).strftime("%Y%m%d")
        query = select(func.count()).select_from(StockCount).where(
            StockCount.count_number.like(f"SC-{date_part}%")
        )
        count = await self.db.scalar(query)
        return f"SC-{date_part}-{(count or 0) + 1:04d}"
