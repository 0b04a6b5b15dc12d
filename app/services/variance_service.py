"""
Variance analytics over the movement ledger and approved stock counts.

Everything here is read-only except root-cause tags, and tags are never read
back by on-hand math.
"""
import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any
import uuid

from sqlalchemy import select, func, and_, case
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, joinedload

from app.config import settings
from app.core.enum_utils import to_enum
from app.core.exceptions import InvalidInput, NotFound
from app.models.inventory import InventoryItem, LedgerMovement, MovementType
from app.models.stock_count import StockCount, StockCountLine, StockCountStatus
from app.models.variance import RootCause, VarianceTag
from app.services.inventory_service import to_quantity


logger = logging.getLogger(__name__)

# Movement types that represent stock consumed outside recipes
CONSUMPTION_MOVEMENT_TYPES = (
    MovementType.WASTE.value,
    MovementType.ADJUSTMENT_OUT.value,
    MovementType.STOCK_COUNT_ADJUSTMENT.value,
)

PERCENT_PLACES = Decimal("0.01")


def _period_bounds(period_start: date, period_end: date) -> tuple[datetime, datetime]:
    if period_end < period_start:
        raise InvalidInput(
            "Period end is before period start",
            {"period_start": period_start.isoformat(), "period_end": period_end.isoformat()},
        )
    start = datetime.combine(period_start, time.min, tzinfo=timezone.utc)
    end = datetime.combine(period_end, time.max, tzinfo=timezone.utc)
    return start, end


def _variance_percent(actual: Decimal, theoretical: Decimal) -> Decimal:
    if theoretical > 0:
        return ((actual - theoretical) / theoretical * 100).quantize(PERCENT_PLACES)
    if actual > 0:
        return Decimal("100.00")
    return Decimal("0.00")


class VarianceService:
    """Service for consumption and count variance analytics."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== CONSUMPTION ====================

    async def consumption_report(
        self,
        branch_id: uuid.UUID,
        period_start: date,
        period_end: date,
        theoretical: Optional[Dict[uuid.UUID, Decimal]] = None,
    ) -> Dict[str, Any]:
        """
        Actual vs theoretical consumption per item for a period.

        Actual consumption is waste, manual decreases and negative count
        adjustments inside the window. Theoretical consumption comes from the
        caller (recipe and sales data live elsewhere) and defaults to zero.
        """
        start, end = _period_bounds(period_start, period_end)
        theoretical = {
            item_id: to_quantity(quantity) for item_id, quantity in (theoretical or {}).items()
        }

        # Positive count adjustments are found stock, not consumption
        consumed = case(
            (
                and_(
                    LedgerMovement.movement_type == MovementType.STOCK_COUNT_ADJUSTMENT.value,
                    LedgerMovement.quantity > 0,
                ),
                0,
            ),
            else_=LedgerMovement.quantity,
        )
        query = (
            select(LedgerMovement.item_id, func.sum(consumed))
            .where(
                and_(
                    LedgerMovement.branch_id == branch_id,
                    LedgerMovement.movement_type.in_(CONSUMPTION_MOVEMENT_TYPES),
                    LedgerMovement.created_at >= start,
                    LedgerMovement.created_at <= end,
                )
            )
            .group_by(LedgerMovement.item_id)
        )
        result = await self.db.execute(query)
        actual = {item_id: -to_quantity(total) for item_id, total in result.all()}

        item_ids = set(actual) | set(theoretical)
        items = {}
        if item_ids:
            item_result = await self.db.execute(
                select(InventoryItem)
                .options(joinedload(InventoryItem.base_unit))
                .where(InventoryItem.id.in_(item_ids))
            )
            items = {item.id: item for item in item_result.scalars().all()}

        tags = {
            tag.item_id: tag
            for tag in await self.list_variance_tags(branch_id, period_start, period_end)
        }

        rows = []
        for item_id in item_ids:
            item = items.get(item_id)
            if item is None or item.branch_id != branch_id:
                continue
            actual_qty = actual.get(item_id, to_quantity(0))
            theoretical_qty = theoretical.get(item_id, to_quantity(0))
            if actual_qty == 0 and theoretical_qty == 0:
                continue

            tag = tags.get(item_id)
            rows.append({
                "item_id": item_id,
                "item_name": item.name,
                "unit": (item.base_unit.symbol or item.base_unit.name) if item.base_unit else None,
                "theoretical_consumption": theoretical_qty,
                "actual_consumption": actual_qty,
                "variance": actual_qty - theoretical_qty,
                "variance_percent": _variance_percent(actual_qty, theoretical_qty),
                "tag_id": tag.id if tag else None,
                "root_cause": tag.root_cause if tag else None,
                "tag_notes": tag.notes if tag else None,
            })

        rows.sort(key=lambda row: (-abs(row["variance"]), row["item_name"]))

        return {
            "branch_id": branch_id,
            "period_start": period_start,
            "period_end": period_end,
            "items": rows,
            "summary": self.variance_summary(rows),
        }

    @staticmethod
    def variance_summary(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Totals over consumption rows; rows within epsilon are not variances."""
        epsilon = settings.VARIANCE_EPSILON
        with_variance = [row for row in rows if abs(row["variance"]) > epsilon]
        positive = sum((row["variance"] for row in with_variance if row["variance"] > 0), to_quantity(0))
        shortage = sum((-row["variance"] for row in with_variance if row["variance"] < 0), to_quantity(0))
        tagged = sum(1 for row in with_variance if row.get("root_cause"))

        return {
            "total_items": len(rows),
            "items_with_variance": len(with_variance),
            "positive_variance": positive,
            "negative_variance": shortage,
            "net_variance": positive - shortage,
            "tagged_count": tagged,
            "untagged_count": len(with_variance) - tagged,
        }

    # ==================== COUNT VARIANCE ====================

    async def _approved_counts(
        self,
        branch_id: Optional[uuid.UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[StockCount]:
        query = (
            select(StockCount)
            .options(selectinload(StockCount.lines).joinedload(StockCountLine.item))
            .where(StockCount.status == StockCountStatus.APPROVED.value)
        )
        if branch_id:
            query = query.where(StockCount.branch_id == branch_id)
        if date_from:
            query = query.where(StockCount.approved_at >= date_from)
        if date_to:
            query = query.where(StockCount.approved_at <= date_to)

        result = await self.db.execute(query.order_by(StockCount.approved_at))
        return list(result.scalars().unique().all())

    async def count_variance_history(
        self,
        branch_id: uuid.UUID,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Per approved count, the lines whose variance exceeds epsilon."""
        epsilon = settings.VARIANCE_EPSILON
        history = []
        for stock_count in await self._approved_counts(branch_id, date_from, date_to):
            lines = []
            for line in stock_count.lines:
                variance = to_quantity(line.actual_quantity) - to_quantity(line.expected_quantity)
                if abs(variance) <= epsilon:
                    continue
                lines.append({
                    "line_id": line.id,
                    "item_id": line.item_id,
                    "item_name": line.item.name,
                    "expected_quantity": to_quantity(line.expected_quantity),
                    "actual_quantity": to_quantity(line.actual_quantity),
                    "variance": variance,
                })
            history.append({
                "stock_count_id": stock_count.id,
                "count_number": stock_count.count_number,
                "approved_at": stock_count.approved_at,
                "approved_by": stock_count.approved_by,
                "lines": lines,
                "net_variance": sum((line["variance"] for line in lines), to_quantity(0)),
            })
        return history

    # ==================== ALERTS ====================

    async def variance_alerts(
        self,
        branch_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Pattern alerts over approved counts in the lookback window.

        Counts are analysed per branch. Critical alerts sort first.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=settings.ALERT_LOOKBACK_DAYS)
        counts = await self._approved_counts(branch_id, date_from=cutoff)

        by_branch: Dict[uuid.UUID, List[StockCount]] = defaultdict(list)
        for stock_count in counts:
            by_branch[stock_count.branch_id].append(stock_count)

        alerts = []
        for branch_counts in by_branch.values():
            alerts.extend(self._detect_repeated_high_variance(branch_counts))
            alerts.extend(self._detect_variance_spikes(branch_counts))
            alerts.extend(self._detect_worsening_trends(branch_counts))

        alerts.sort(key=lambda alert: (alert["severity"] != "critical", alert["type"], alert["item_name"]))
        return alerts

    def _detect_repeated_high_variance(self, counts: List[StockCount]) -> List[Dict[str, Any]]:
        minimum = settings.ALERT_MIN_VARIANCE_QTY
        occurrences: Dict[uuid.UUID, List[tuple]] = defaultdict(list)

        for stock_count in counts:
            for line in stock_count.lines:
                variance = to_quantity(line.actual_quantity) - to_quantity(line.expected_quantity)
                if abs(variance) >= minimum:
                    occurrences[line.item_id].append((variance, line.item, stock_count))

        alerts = []
        for item_id, hits in occurrences.items():
            if len(hits) < settings.ALERT_REPEATED_OCCURRENCES:
                continue
            _, item, latest_count = hits[-1]
            average = sum(abs(variance) for variance, _, _ in hits) / len(hits)
            shortages = sum(1 for variance, _, _ in hits if variance < 0)
            kind = "shortage" if shortages > len(hits) / 2 else "overage"

            alerts.append({
                "type": "REPEATED_HIGH_VARIANCE",
                "severity": "critical" if len(hits) >= 3 else "warning",
                "item_id": item_id,
                "item_name": item.name,
                "branch_id": latest_count.branch_id,
                "title": f"Repeated {kind} on {item.name}",
                "data": {
                    "occurrences": len(hits),
                    "counts_analysed": len(counts),
                    "average_variance": to_quantity(average),
                    "current_variance": abs(hits[-1][0]),
                },
            })
        return alerts

    def _detect_variance_spikes(self, counts: List[StockCount]) -> List[Dict[str, Any]]:
        if len(counts) < 2:
            return []

        minimum = settings.ALERT_MIN_VARIANCE_QTY
        latest, previous = counts[-1], counts[-2]
        previous_variance = {
            line.item_id: abs(to_quantity(line.actual_quantity) - to_quantity(line.expected_quantity))
            for line in previous.lines
        }

        alerts = []
        for line in latest.lines:
            current = abs(to_quantity(line.actual_quantity) - to_quantity(line.expected_quantity))
            if current < minimum:
                continue

            before = previous_variance.get(line.item_id, to_quantity(0))
            if before == 0:
                if current >= minimum * 3:
                    alerts.append({
                        "type": "VARIANCE_SPIKE",
                        "severity": "warning",
                        "item_id": line.item_id,
                        "item_name": line.item.name,
                        "branch_id": latest.branch_id,
                        "title": f"New variance detected on {line.item.name}",
                        "data": {
                            "current_variance": current,
                            "previous_variance": before,
                        },
                    })
                continue

            increase = (current - before) / before
            if increase >= settings.ALERT_SPIKE_PERCENT and current >= minimum * 2:
                percent = int((increase * 100).quantize(Decimal("1")))
                alerts.append({
                    "type": "VARIANCE_SPIKE",
                    "severity": "critical" if percent >= 100 else "warning",
                    "item_id": line.item_id,
                    "item_name": line.item.name,
                    "branch_id": latest.branch_id,
                    "title": f"Variance spike on {line.item.name} (+{percent}%)",
                    "data": {
                        "current_variance": current,
                        "previous_variance": before,
                        "percentage_change": percent,
                    },
                })
        return alerts

    def _detect_worsening_trends(self, counts: List[StockCount]) -> List[Dict[str, Any]]:
        if len(counts) < 3:
            return []

        minimum = settings.ALERT_MIN_VARIANCE_QTY
        weekly: Dict[uuid.UUID, Dict[date, List[Decimal]]] = defaultdict(lambda: defaultdict(list))
        names: Dict[uuid.UUID, str] = {}

        for stock_count in counts:
            approved_on = stock_count.approved_at.date()
            week_start = approved_on - timedelta(days=approved_on.weekday())
            for line in stock_count.lines:
                variance = abs(to_quantity(line.actual_quantity) - to_quantity(line.expected_quantity))
                if variance < minimum:
                    continue
                weekly[line.item_id][week_start].append(variance)
                names[line.item_id] = line.item.name

        alerts = []
        for item_id, weeks in weekly.items():
            recent = sorted(weeks.items())[-settings.ALERT_TREND_WEEKS:]
            if len(recent) < 3:
                continue

            averages = [sum(values) / len(values) for _, values in recent]
            worsening = sum(
                1
                for prev, curr in zip(averages, averages[1:])
                if prev > 0 and (curr - prev) / prev >= settings.ALERT_WORSENING_PERCENT
            )
            if worsening < 2:
                continue

            first, last = averages[0], averages[-1]
            total_increase = (last - first) / first * 100 if first > 0 else Decimal("0")
            alerts.append({
                "type": "WORSENING_TREND",
                "severity": "critical" if total_increase >= 100 else "warning",
                "item_id": item_id,
                "item_name": names[item_id],
                "branch_id": counts[-1].branch_id,
                "title": f"Worsening variance trend on {names[item_id]}",
                "data": {
                    "weeks": len(recent),
                    "current_variance": to_quantity(last),
                    "previous_variance": to_quantity(first),
                    "percentage_change": int(total_increase.quantize(Decimal("1"))),
                },
            })
        return alerts

    # ==================== TAGS ====================

    async def upsert_variance_tag(
        self,
        item_id: uuid.UUID,
        branch_id: uuid.UUID,
        period_start: date,
        period_end: date,
        root_cause: RootCause,
        notes: Optional[str] = None,
        variance_qty: Optional[Decimal] = None,
        tagged_by: Optional[uuid.UUID] = None,
    ) -> VarianceTag:
        """Create or replace the tag for one (item, branch, period)."""
        _period_bounds(period_start, period_end)
        cause = to_enum(root_cause, RootCause)
        if cause is None:
            raise InvalidInput(f"Unknown root cause '{root_cause}'")

        item = await self.db.get(InventoryItem, item_id)
        if not item or item.branch_id != branch_id:
            raise NotFound(
                "Inventory item not found in branch",
                {"item_id": str(item_id), "branch_id": str(branch_id)},
            )

        try:
            tag = (
                await self.db.execute(
                    select(VarianceTag).where(
                        and_(
                            VarianceTag.item_id == item_id,
                            VarianceTag.branch_id == branch_id,
                            VarianceTag.period_start == period_start,
                            VarianceTag.period_end == period_end,
                        )
                    )
                )
            ).scalar_one_or_none()

            if tag:
                tag.root_cause = cause.value
                tag.notes = notes
                tag.variance_qty = variance_qty
                tag.tagged_by = tagged_by
            else:
                tag = VarianceTag(
                    item_id=item_id,
                    branch_id=branch_id,
                    period_start=period_start,
                    period_end=period_end,
                    root_cause=cause.value,
                    notes=notes,
                    variance_qty=variance_qty,
                    tagged_by=tagged_by,
                )
                self.db.add(tag)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(tag)
        logger.info(f"Tagged variance for {item.name} {period_start}..{period_end} as {cause.value}")
        return tag

    async def delete_variance_tag(self, tag_id: uuid.UUID) -> None:
        tag = await self.db.get(VarianceTag, tag_id)
        if not tag:
            raise NotFound("Variance tag not found", {"tag_id": str(tag_id)})

        await self.db.delete(tag)
        await self.db.commit()
        logger.info(f"Deleted variance tag {tag_id}")

    async def list_variance_tags(
        self,
        branch_id: uuid.UUID,
        period_start: Optional[date] = None,
        period_end: Optional[date] = None,
    ) -> List[VarianceTag]:
        query = select(VarianceTag).where(VarianceTag.branch_id == branch_id)
        if period_start:
            query = query.where(VarianceTag.period_start == period_start)
        if period_end:
            query = query.where(VarianceTag.period_end == period_end)

        result = await self.db.execute(query.order_by(VarianceTag.created_at.desc()))
        return list(result.scalars().all())
