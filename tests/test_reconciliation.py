"""
Tests for approving stock counts into the ledger
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select, func, update

from app.core.exceptions import InvalidInput, InvalidTransition
from app.models.inventory import InventoryItem, LedgerMovement, MovementType
from app.models.stock_count import StockCountStatus
from app.services.audit_service import AuditService
from app.services.ledger_service import LedgerService
from app.services.reconciliation_service import ReconciliationService
from app.services.stock_count_service import StockCountService


async def adjustments_for(db_session, stock_count_id):
    result = await db_session.execute(
        select(LedgerMovement).where(
            LedgerMovement.movement_type == MovementType.STOCK_COUNT_ADJUSTMENT.value,
            LedgerMovement.reference_id == stock_count_id,
        )
    )
    return list(result.scalars().all())


async def submitted_count(db_session, branch_id, user_id, actuals):
    service = StockCountService(db_session)
    stock_count = await service.create_stock_count(branch_id, user_id)
    for line in await service.get_count_lines(stock_count.id):
        if line.item_id in actuals:
            await service.update_count_line(line.id, actuals[line.item_id])
        else:
            await service.update_count_line(line.id, line.expected_quantity)
    await service.submit(stock_count.id, user_id)
    return stock_count


class TestApproval:

    async def test_shortage_becomes_adjustment(self, db_session, make_item, branch_a, user_id):
        """Test a counted shortage posts one negative adjustment linked to its line"""
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        stock_count = await submitted_count(db_session, branch_a, user_id, {flour.id: Decimal("42")})
        line = (await StockCountService(db_session).get_count_lines(stock_count.id))[0]

        summary = await ReconciliationService(db_session).approve(stock_count.id, user_id)

        assert summary["adjustments_created"] == 1
        assert summary["net_variance"] == Decimal("-8")

        movements = await adjustments_for(db_session, stock_count.id)
        assert len(movements) == 1
        movement = movements[0]
        assert movement.quantity == Decimal("-8")
        assert movement.item_id == flour.id
        assert movement.branch_id == branch_a
        assert movement.reference_type == "stock_count"
        assert movement.reference_number == stock_count.count_number
        assert movement.stock_count_line_id == line.id
        assert movement.created_by == user_id

        assert await LedgerService(db_session).get_on_hand(flour.id, branch_a) == Decimal("42")

        approved = await StockCountService(db_session).get_stock_count(stock_count.id)
        assert approved.status == StockCountStatus.APPROVED.value
        assert approved.approved_by == user_id
        assert approved.approved_at is not None

    async def test_only_lines_beyond_epsilon_are_posted(self, db_session, make_item, branch_a, user_id):
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        sugar = await make_item(branch_a, "Sugar", opening_stock=Decimal("10"))
        salt = await make_item(branch_a, "Salt", opening_stock=Decimal("5"))
        stock_count = await submitted_count(
            db_session, branch_a, user_id,
            {flour.id: Decimal("42"), sugar.id: Decimal("13"), salt.id: Decimal("5.005")},
        )

        summary = await ReconciliationService(db_session).approve(stock_count.id, user_id)

        assert summary["total_lines"] == 3
        assert summary["adjustments_created"] == 2
        assert summary["items_with_variance"] == 2
        assert summary["positive_variance"] == Decimal("3")
        assert summary["negative_variance"] == Decimal("8")
        assert summary["net_variance"] == Decimal("-5")

        movements = {m.item_id: m.quantity for m in await adjustments_for(db_session, stock_count.id)}
        assert movements == {flour.id: Decimal("-8"), sugar.id: Decimal("3")}

        ledger = LedgerService(db_session)
        assert await ledger.get_on_hand(sugar.id, branch_a) == Decimal("13")
        assert await ledger.get_on_hand(salt.id, branch_a) == Decimal("5")

    async def test_explicit_epsilon(self, db_session, make_item, branch_a, user_id):
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        sugar = await make_item(branch_a, "Sugar", opening_stock=Decimal("10"))
        stock_count = await submitted_count(
            db_session, branch_a, user_id, {flour.id: Decimal("42"), sugar.id: Decimal("13")}
        )

        summary = await ReconciliationService(db_session).approve(
            stock_count.id, user_id, epsilon=Decimal("5")
        )

        assert summary["adjustments_created"] == 1
        assert summary["positive_variance"] == Decimal("0")

    async def test_count_without_variance_posts_nothing(self, db_session, make_item, branch_a, run_count):
        item = await make_item(branch_a, "Rice", opening_stock=Decimal("20"))

        summary = await run_count(branch_a, {})

        assert summary["adjustments_created"] == 0
        assert summary["net_variance"] == Decimal("0")
        assert await adjustments_for(db_session, summary["stock_count_id"]) == []
        assert await LedgerService(db_session).get_on_hand(item.id, branch_a) == Decimal("20")

    async def test_second_approval_is_rejected(self, db_session, make_item, branch_a, user_id):
        """Test approving twice never posts the variance twice"""
        flour_id = (await make_item(branch_a, "Flour", opening_stock=Decimal("50"))).id
        count_id = (await submitted_count(db_session, branch_a, user_id, {flour_id: Decimal("42")})).id
        service = ReconciliationService(db_session)
        await service.approve(count_id, user_id)

        with pytest.raises(InvalidTransition) as exc_info:
            await service.approve(count_id, user_id)

        assert exc_info.value.details["status"] == "APPROVED"
        assert len(await adjustments_for(db_session, count_id)) == 1
        assert await LedgerService(db_session).get_on_hand(flour_id, branch_a) == Decimal("42")

    async def test_expected_is_frozen_at_creation(self, db_session, make_item, branch_a, user_id):
        """Test movements after the snapshot do not change what the count compares against"""
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        service = StockCountService(db_session)
        stock_count = await service.create_stock_count(branch_a, user_id)
        ledger = LedgerService(db_session)
        await ledger.record_movement(flour.id, branch_a, MovementType.WASTE, Decimal("10"))

        line = (await service.get_count_lines(stock_count.id))[0]
        assert line.expected_quantity == Decimal("50")
        await service.update_count_line(line.id, Decimal("42"))
        await service.submit(stock_count.id, user_id)

        summary = await ReconciliationService(db_session).approve(stock_count.id, user_id)

        assert summary["net_variance"] == Decimal("-8")
        assert await ledger.get_on_hand(flour.id, branch_a) == Decimal("32")

    async def test_approval_is_audited(self, db_session, make_item, branch_a, user_id):
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        stock_count = await submitted_count(db_session, branch_a, user_id, {flour.id: Decimal("49")})

        await ReconciliationService(db_session).approve(stock_count.id, user_id)

        logs, total = await AuditService(db_session).get_audit_logs(
            entity_id=stock_count.id, action="STOCK_COUNT_APPROVED"
        )
        assert total == 1
        assert logs[0].user_id == user_id
        assert logs[0].old_values == {"status": "SUBMITTED"}
        assert logs[0].new_values["adjustments_created"] == 1

    async def test_cancelled_count_cannot_be_approved(self, db_session, make_item, branch_a, user_id):
        flour_id = (await make_item(branch_a, "Flour", opening_stock=Decimal("50"))).id
        count_id = (await submitted_count(db_session, branch_a, user_id, {flour_id: Decimal("40")})).id
        await StockCountService(db_session).cancel(count_id, user_id=user_id)
        before = await db_session.scalar(select(func.count()).select_from(LedgerMovement))

        with pytest.raises(InvalidTransition):
            await ReconciliationService(db_session).approve(count_id, user_id)

        assert await db_session.scalar(select(func.count()).select_from(LedgerMovement)) == before

    async def test_adjustment_may_drive_on_hand_negative(self, db_session, make_item, branch_a, user_id):
        """Test count adjustments skip the stock check that guards direct movements"""
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        service = StockCountService(db_session)
        stock_count = await service.create_stock_count(branch_a, user_id)
        ledger = LedgerService(db_session)
        await ledger.record_movement(flour.id, branch_a, MovementType.WASTE, Decimal("45"))

        line = (await service.get_count_lines(stock_count.id))[0]
        await service.update_count_line(line.id, Decimal("42"))
        await service.submit(stock_count.id, user_id)
        await ReconciliationService(db_session).approve(stock_count.id, user_id)

        assert await ledger.get_on_hand(flour.id, branch_a) == Decimal("-3")

    async def test_failed_adjustment_rolls_back_whole_approval(self, db_session, make_item, branch_a, user_id):
        """Test one unpostable line leaves the count SUBMITTED and the ledger untouched"""
        flour_id = (await make_item(branch_a, "Flour", opening_stock=Decimal("50"))).id
        sugar_id = (await make_item(branch_a, "Sugar", opening_stock=Decimal("10"))).id
        count_id = (await submitted_count(
            db_session, branch_a, user_id, {flour_id: Decimal("42"), sugar_id: Decimal("13")}
        )).id
        await db_session.execute(
            update(InventoryItem).where(InventoryItem.id == sugar_id).values(base_unit_id=None)
        )
        await db_session.commit()
        before = await db_session.scalar(select(func.count()).select_from(LedgerMovement))

        with pytest.raises(InvalidInput):
            await ReconciliationService(db_session).approve(count_id, user_id)

        assert await db_session.scalar(select(func.count()).select_from(LedgerMovement)) == before
        assert await adjustments_for(db_session, count_id) == []
        stock_count = await StockCountService(db_session).get_stock_count(count_id)
        assert stock_count.status == StockCountStatus.SUBMITTED.value
        assert stock_count.approved_by is None
        assert await LedgerService(db_session).get_on_hand(flour_id, branch_a) == Decimal("50")


class TestConcurrentApproval:

    async def test_racing_approvals_post_once(self, session_factory, seed_branch, branch_a, user_id):
        """Test two sessions approving together yield one approval and one set of adjustments"""
        item_ids = await seed_branch(branch_a, {"Flour": Decimal("50"), "Sugar": Decimal("10")})
        async with session_factory() as session:
            stock_count = await submitted_count(
                session, branch_a, user_id,
                {item_ids["Flour"]: Decimal("42"), item_ids["Sugar"]: Decimal("13")},
            )
            count_id = stock_count.id

        async def approve():
            async with session_factory() as session:
                return await ReconciliationService(session).approve(count_id, user_id)

        results = await asyncio.gather(approve(), approve(), return_exceptions=True)

        summaries = [result for result in results if isinstance(result, dict)]
        errors = [result for result in results if isinstance(result, Exception)]
        assert len(summaries) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidTransition)
        assert summaries[0]["adjustments_created"] == 2

        async with session_factory() as session:
            assert len(await adjustments_for(session, count_id)) == 2
            approved = await StockCountService(session).get_stock_count(count_id)
            assert approved.status == StockCountStatus.APPROVED.value
            ledger = LedgerService(session)
            assert await ledger.get_on_hand(item_ids["Flour"], branch_a) == Decimal("42")
            assert await ledger.get_on_hand(item_ids["Sugar"], branch_a) == Decimal("13")
