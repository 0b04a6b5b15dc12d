"""Stock Transfer Service for branch-to-branch movements."""
import logging
from decimal import Decimal
from typing import Optional, Dict, Any
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import SameBranch
from app.models.inventory import InventoryItem, MovementType
from app.services.audit_service import AuditService
from app.services.inventory_service import InventoryService
from app.services.ledger_service import LedgerService


logger = logging.getLogger(__name__)


class TransferService:
    """Service for stock transfer operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.inventory_service = InventoryService(db)
        self.ledger_service = LedgerService(db)
        self.audit_service = AuditService(db)

    async def transfer(
        self,
        item_id: uuid.UUID,
        from_branch_id: uuid.UUID,
        to_branch_id: uuid.UUID,
        quantity: Decimal,
        unit_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Move stock between branches as a TRANSFER_OUT / TRANSFER_IN pair.

        ``item_id`` is the source branch's item. The inbound leg lands on the
        destination branch's item of the same name, created on first transfer.
        When the two items use different base units the inbound quantity is
        converted, and a missing conversion rejects the transfer. Both legs
        share a transfer group id and are committed together.
        """
        if from_branch_id == to_branch_id:
            raise SameBranch(
                "Source and destination branches cannot be the same",
                {"branch_id": str(from_branch_id)},
            )

        transfer_group_id = uuid.uuid4()
        try:
            source_item = await self.ledger_service._get_branch_item(item_id, from_branch_id, lock=True)
            destination_item = await self._get_or_create_destination_item(source_item, to_branch_id)

            out_movement = await self.ledger_service._append_movement(
                item=source_item,
                branch_id=from_branch_id,
                movement_type=MovementType.TRANSFER_OUT,
                quantity=quantity,
                unit_id=unit_id,
                reference_type="transfer",
                reference_id=transfer_group_id,
                notes=notes,
                created_by=created_by,
            )
            # Inbound leg is the outbound base quantity re-expressed in the
            # destination item's base unit
            in_unit_id = None
            if destination_item.base_unit_id != source_item.base_unit_id:
                in_unit_id = source_item.base_unit_id
            in_movement = await self.ledger_service._append_movement(
                item=destination_item,
                branch_id=to_branch_id,
                movement_type=MovementType.TRANSFER_IN,
                quantity=-out_movement.quantity,
                unit_id=in_unit_id,
                reference_type="transfer",
                reference_id=transfer_group_id,
                notes=notes,
                created_by=created_by,
            )

            await self.audit_service.log_transfer(
                transfer_group_id,
                source_item_id=source_item.id,
                item_name=source_item.name,
                destination_item_id=destination_item.id,
                from_branch_id=from_branch_id,
                to_branch_id=to_branch_id,
                quantity=-out_movement.quantity,
                user_id=created_by,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Transfer {transfer_group_id}: {-out_movement.quantity} of {source_item.name} "
            f"from branch {from_branch_id} to {to_branch_id}"
        )
        return {
            "transfer_group_id": transfer_group_id,
            "out": out_movement,
            "in": in_movement,
        }

    async def _get_or_create_destination_item(
        self,
        source_item: InventoryItem,
        to_branch_id: uuid.UUID,
    ) -> InventoryItem:
        """Destination branch's item of the same name; flushed, never committed here."""
        destination = await self.inventory_service.get_item_by_name(to_branch_id, source_item.name)
        if destination:
            return destination

        destination = InventoryItem(
            branch_id=to_branch_id,
            name=source_item.name,
            category=source_item.category,
            base_unit_id=source_item.base_unit_id,
            min_level=source_item.min_level,
            reorder_point=source_item.reorder_point,
            is_active=True,
        )
        self.db.add(destination)
        await self.db.flush()
        logger.info(f"Created item {destination.name} in branch {to_branch_id} for incoming transfer")
        return destination
