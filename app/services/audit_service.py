"""Audit trail for ledger-affecting actions."""
from typing import Optional, Dict, Any, List, Tuple
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog


class AuditService:
    """
    Writes and reads audit entries.

    Entries are only flushed here; the calling service owns the transaction,
    so an audit row commits or rolls back together with the change it records.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> AuditLog:
        """
        Add an audit entry to the current unit of work.

        Args:
            action: What happened (STOCK_COUNT_APPROVED, STOCK_TRANSFER, ...)
            entity_type: STOCK_COUNT, INVENTORY_ITEM or PURCHASE_RECEIPT
            entity_id: Row or reference the action applies to
            user_id: Acting user from the X-User-Id header
            old_values / new_values: JSON snapshots; Decimals and UUIDs are
                serialized by the engine's JSON encoder
        """
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            old_values=old_values,
            new_values=new_values,
            description=description,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def log_count_transition(
        self,
        stock_count_id: uuid.UUID,
        count_number: str,
        old_status: Optional[str],
        new_status: str,
        user_id: Optional[uuid.UUID] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """Log a stock count lifecycle step. ``old_status=None`` means creation."""
        new_values: Dict[str, Any] = {"status": new_status}
        if extra:
            new_values.update(extra)
        return await self.log(
            action=f"STOCK_COUNT_{new_status}" if old_status else "STOCK_COUNT_CREATED",
            entity_type="STOCK_COUNT",
            entity_id=stock_count_id,
            user_id=user_id,
            old_values={"status": old_status} if old_status else None,
            new_values=new_values,
            description=f"Stock count {count_number}: {old_status or 'NEW'} -> {new_status}",
        )

    async def log_transfer(
        self,
        transfer_group_id: uuid.UUID,
        source_item_id: uuid.UUID,
        item_name: str,
        destination_item_id: uuid.UUID,
        from_branch_id: uuid.UUID,
        to_branch_id: uuid.UUID,
        quantity: Decimal,
        user_id: Optional[uuid.UUID] = None,
    ) -> AuditLog:
        return await self.log(
            action="STOCK_TRANSFER",
            entity_type="INVENTORY_ITEM",
            entity_id=source_item_id,
            user_id=user_id,
            new_values={
                "transfer_group_id": transfer_group_id,
                "from_branch_id": from_branch_id,
                "to_branch_id": to_branch_id,
                "destination_item_id": destination_item_id,
                "quantity": quantity,
            },
            description=f"Transferred {quantity} of {item_name}",
        )

    async def log_purchase_receipt(
        self,
        reference_id: uuid.UUID,
        receipt_no: str,
        branch_id: uuid.UUID,
        line_count: int,
        user_id: Optional[uuid.UUID] = None,
    ) -> AuditLog:
        return await self.log(
            action="PURCHASE_RECEIPT_POSTED",
            entity_type="PURCHASE_RECEIPT",
            entity_id=reference_id,
            user_id=user_id,
            new_values={"receipt_no": receipt_no, "branch_id": branch_id, "lines": line_count},
            description=f"Purchase receipt {receipt_no} posted with {line_count} lines",
        )

    async def get_audit_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        action: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[AuditLog], int]:
        """Filtered audit entries, newest first, with the unpaged total."""
        conditions = []
        if entity_type:
            conditions.append(AuditLog.entity_type == entity_type)
        if entity_id:
            conditions.append(AuditLog.entity_id == entity_id)
        if user_id:
            conditions.append(AuditLog.user_id == user_id)
        if action:
            conditions.append(AuditLog.action == action)
        if start_date:
            conditions.append(AuditLog.created_at >= start_date)
        if end_date:
            conditions.append(AuditLog.created_at <= end_date)

        query = select(AuditLog)
        if conditions:
            query = query.where(and_(*conditions))

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))

        query = query.order_by(AuditLog.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0
