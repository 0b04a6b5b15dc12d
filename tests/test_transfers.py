"""
Tests for branch-to-branch transfers
"""

from decimal import Decimal

import pytest
from sqlalchemy import select, func

from app.core.exceptions import InsufficientStock, InvalidInput, SameBranch
from app.models.inventory import LedgerMovement
from app.services.audit_service import AuditService
from app.services.inventory_service import InventoryService
from app.services.ledger_service import LedgerService
from app.services.transfer_service import TransferService


async def total_movements(db_session) -> int:
    return await db_session.scalar(select(func.count()).select_from(LedgerMovement))


class TestTransferService:

    async def test_transfer_moves_stock(self, db_session, make_item, branch_a, branch_b, user_id):
        """Test both legs are written and on-hand moves on each side"""
        source = await make_item(branch_a, "Olive Oil", opening_stock=Decimal("50"), min_level=Decimal("4"))

        result = await TransferService(db_session).transfer(
            source.id, branch_a, branch_b, Decimal("10"), notes="weekend rush", created_by=user_id
        )

        out_leg, in_leg = result["out"], result["in"]
        assert out_leg.movement_type == "TRANSFER_OUT"
        assert out_leg.quantity == Decimal("-10")
        assert out_leg.branch_id == branch_a
        assert in_leg.movement_type == "TRANSFER_IN"
        assert in_leg.quantity == Decimal("10")
        assert in_leg.branch_id == branch_b
        assert out_leg.reference_id == in_leg.reference_id == result["transfer_group_id"]

        ledger = LedgerService(db_session)
        assert await ledger.get_on_hand(source.id, branch_a) == Decimal("40")
        assert await ledger.get_on_hand(in_leg.item_id, branch_b) == Decimal("10")

    async def test_destination_item_created_from_source(self, db_session, make_item, branch_a, branch_b, kg):
        """Test the destination branch gets a matching item on first transfer"""
        source = await make_item(
            branch_a, "Parmesan", opening_stock=Decimal("8"),
            min_level=Decimal("1"), reorder_point=Decimal("2"),
        )

        result = await TransferService(db_session).transfer(source.id, branch_a, branch_b, Decimal("3"))

        destination = await InventoryService(db_session).get_item_by_name(branch_b, "Parmesan")
        assert destination is not None
        assert destination.id == result["in"].item_id
        assert destination.id != source.id
        assert destination.base_unit_id == kg.id
        assert destination.min_level == Decimal("1")
        assert destination.reorder_point == Decimal("2")

    async def test_existing_destination_item_is_reused(self, db_session, make_item, branch_a, branch_b):
        source = await make_item(branch_a, "Mozzarella", opening_stock=Decimal("8"))
        existing = await make_item(branch_b, "Mozzarella", opening_stock=Decimal("1"))

        result = await TransferService(db_session).transfer(source.id, branch_a, branch_b, Decimal("2"))

        assert result["in"].item_id == existing.id
        assert await LedgerService(db_session).get_on_hand(existing.id, branch_b) == Decimal("3")

    async def test_same_branch_is_rejected(self, db_session, make_item, branch_a):
        source = await make_item(branch_a, "Capers", opening_stock=Decimal("5"))
        before = await total_movements(db_session)

        with pytest.raises(SameBranch):
            await TransferService(db_session).transfer(source.id, branch_a, branch_a, Decimal("1"))

        assert await total_movements(db_session) == before

    async def test_insufficient_stock_writes_nothing(self, db_session, make_item, branch_a, branch_b):
        """Test a failed transfer leaves no movement on either side and no new item"""
        source_id = (await make_item(branch_a, "Anchovies", opening_stock=Decimal("5"))).id
        before = await total_movements(db_session)

        with pytest.raises(InsufficientStock):
            await TransferService(db_session).transfer(source_id, branch_a, branch_b, Decimal("6"))

        assert await total_movements(db_session) == before
        assert await InventoryService(db_session).get_item_by_name(branch_b, "Anchovies") is None
        assert await LedgerService(db_session).get_on_hand(source_id, branch_a) == Decimal("5")

    async def test_second_transfer_cannot_overdraw(self, db_session, make_item, branch_a, branch_b):
        source_id = (await make_item(branch_a, "Truffle", opening_stock=Decimal("50"))).id
        service = TransferService(db_session)

        await service.transfer(source_id, branch_a, branch_b, Decimal("30"))
        with pytest.raises(InsufficientStock):
            await service.transfer(source_id, branch_a, branch_b, Decimal("30"))

        assert await LedgerService(db_session).get_on_hand(source_id, branch_a) == Decimal("20")

    async def test_transfer_is_audited(self, db_session, make_item, branch_a, branch_b, user_id):
        source = await make_item(branch_a, "Prawns", opening_stock=Decimal("4"))
        result = await TransferService(db_session).transfer(
            source.id, branch_a, branch_b, Decimal("1"), created_by=user_id
        )

        logs, total = await AuditService(db_session).get_audit_logs(action="STOCK_TRANSFER")
        assert total == 1
        assert logs[0].user_id == user_id
        assert logs[0].new_values["transfer_group_id"] == str(result["transfer_group_id"])

    async def test_destination_in_other_base_unit_is_converted(
        self, db_session, make_item, branch_a, branch_b, kg, grams
    ):
        """Test the inbound leg is converted when the destination item counts in grams"""
        await InventoryService(db_session).create_conversion(kg.id, grams.id, Decimal("1000"))
        source = await make_item(branch_a, "Flour", opening_stock=Decimal("5"))
        destination = await make_item(branch_b, "Flour", base_unit_id=grams.id)

        result = await TransferService(db_session).transfer(source.id, branch_a, branch_b, Decimal("2"))

        assert result["out"].quantity == Decimal("-2")
        assert result["in"].item_id == destination.id
        assert result["in"].quantity == Decimal("2000")

        ledger = LedgerService(db_session)
        assert await ledger.get_on_hand(source.id, branch_a) == Decimal("3")
        assert await ledger.get_on_hand(destination.id, branch_b) == Decimal("2000")

    async def test_destination_unit_without_conversion_writes_nothing(
        self, db_session, make_item, branch_a, branch_b, grams
    ):
        source_id = (await make_item(branch_a, "Semolina", opening_stock=Decimal("5"))).id
        destination_id = (await make_item(branch_b, "Semolina", base_unit_id=grams.id)).id
        before = await total_movements(db_session)

        with pytest.raises(InvalidInput):
            await TransferService(db_session).transfer(source_id, branch_a, branch_b, Decimal("2"))

        assert await total_movements(db_session) == before
        ledger = LedgerService(db_session)
        assert await ledger.get_on_hand(source_id, branch_a) == Decimal("5")
        assert await ledger.get_on_hand(destination_id, branch_b) == Decimal("0")
