"""
Reconciliation Service: turns an approved stock count into ledger adjustments.

Approval is one transaction. The status flip SUBMITTED -> APPROVED runs first
as a conditional update, so a second approver blocks on the row and then
finds nothing to update. Every line whose variance exceeds the configured
epsilon becomes one signed STOCK_COUNT_ADJUSTMENT movement linked back to the
count and the line. Nothing is visible until the single commit at the end.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from app.config import settings
from app.models.inventory import MovementType
from app.models.stock_count import StockCountLine, StockCountStatus
from app.services.audit_service import AuditService
from app.services.inventory_service import to_quantity
from app.services.ledger_service import LedgerService
from app.services.stock_count_service import StockCountService


logger = logging.getLogger(__name__)


class ReconciliationService:
    """Service for approving stock counts into the ledger."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger_service = LedgerService(db)
        self.stock_count_service = StockCountService(db)
        self.audit_service = AuditService(db)

    async def approve(
        self,
        stock_count_id: uuid.UUID,
        approver_id: uuid.UUID,
        epsilon: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        """
        Approve a SUBMITTED count and post its variances.

        Returns the number of adjustments written and the variance totals in
        base units. ``negative_variance`` is the shortage as a positive
        magnitude, so ``net_variance`` is positive minus negative.
        """
        if epsilon is None:
            epsilon = settings.VARIANCE_EPSILON

        try:
            stock_count = await self.stock_count_service.transition(
                stock_count_id,
                "approve",
                StockCountStatus.APPROVED,
                approved_by=approver_id,
                approved_at=datetime.now(timezone.utc),
            )

            result = await self.db.execute(
                select(StockCountLine)
                .options(joinedload(StockCountLine.item))
                .where(StockCountLine.stock_count_id == stock_count_id)
                .order_by(StockCountLine.sequence)
                .execution_options(populate_existing=True)
            )
            lines = result.scalars().all()

            adjustments_created = 0
            positive_variance = to_quantity(0)
            negative_variance = to_quantity(0)

            for line in lines:
                variance = to_quantity(line.actual_quantity) - to_quantity(line.expected_quantity)
                if abs(variance) <= epsilon:
                    continue

                await self.ledger_service._append_movement(
                    item=line.item,
                    branch_id=stock_count.branch_id,
                    movement_type=MovementType.STOCK_COUNT_ADJUSTMENT,
                    quantity=variance,
                    reference_type="stock_count",
                    reference_id=stock_count.id,
                    reference_number=stock_count.count_number,
                    stock_count_line_id=line.id,
                    notes=f"Stock count {stock_count.count_number} variance",
                    created_by=approver_id,
                )
                adjustments_created += 1
                if variance > 0:
                    positive_variance += variance
                else:
                    negative_variance -= variance

            summary = {
                "stock_count_id": stock_count.id,
                "count_number": stock_count.count_number,
                "total_lines": len(lines),
                "items_with_variance": adjustments_created,
                "adjustments_created": adjustments_created,
                "positive_variance": positive_variance,
                "negative_variance": negative_variance,
                "net_variance": positive_variance - negative_variance,
            }

            await self.audit_service.log_count_transition(
                stock_count.id,
                stock_count.count_number,
                old_status=StockCountStatus.SUBMITTED.value,
                new_status=StockCountStatus.APPROVED.value,
                user_id=approver_id,
                extra={key: value for key, value in summary.items() if key != "stock_count_id"},
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Approved stock count {stock_count.count_number}: "
            f"{adjustments_created} adjustments, net variance {summary['net_variance']}"
        )
        return summary
