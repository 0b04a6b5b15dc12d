"""
Tests for variance analytics: consumption, count history, alerts and tags
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import update

from app.core.exceptions import InvalidInput, NotFound
from app.models.inventory import MovementType
from app.models.stock_count import StockCount
from app.models.variance import RootCause
from app.services.ledger_service import LedgerService
from app.services.variance_service import VarianceService


def today():
    return datetime.now(timezone.utc).date()


class TestConsumptionReport:

    async def test_actual_vs_theoretical(self, db_session, make_item, branch_a, run_count):
        """Test waste, manual decreases and count shortages all count as consumption"""
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        sugar = await make_item(branch_a, "Sugar", opening_stock=Decimal("10"))
        ledger = LedgerService(db_session)
        await ledger.record_movement(flour.id, branch_a, MovementType.WASTE, Decimal("3"))
        await ledger.record_movement(flour.id, branch_a, MovementType.ADJUSTMENT_OUT, Decimal("2"))
        await ledger.record_movement(flour.id, branch_a, MovementType.PURCHASE_RECEIPT, Decimal("20"))
        # flour: expected 65, counted 60; sugar: found 2 extra
        await run_count(branch_a, {flour.id: Decimal("60"), sugar.id: Decimal("12")})

        report = await VarianceService(db_session).consumption_report(
            branch_a, today(), today(),
            theoretical={flour.id: Decimal("8"), sugar.id: Decimal("4")},
        )

        rows = {row["item_id"]: row for row in report["items"]}
        assert rows[flour.id]["actual_consumption"] == Decimal("10")
        assert rows[flour.id]["theoretical_consumption"] == Decimal("8")
        assert rows[flour.id]["variance"] == Decimal("2")
        assert rows[flour.id]["variance_percent"] == Decimal("25.00")
        assert rows[flour.id]["unit"] == "kg"

        assert rows[sugar.id]["actual_consumption"] == Decimal("0")
        assert rows[sugar.id]["variance"] == Decimal("-4")
        assert rows[sugar.id]["variance_percent"] == Decimal("-100.00")

        # largest absolute variance first
        assert [row["item_name"] for row in report["items"]] == ["Sugar", "Flour"]

        summary = report["summary"]
        assert summary["total_items"] == 2
        assert summary["items_with_variance"] == 2
        assert summary["positive_variance"] == Decimal("2")
        assert summary["negative_variance"] == Decimal("4")
        assert summary["net_variance"] == Decimal("-2")
        assert summary["untagged_count"] == 2

    async def test_consumption_without_theoretical(self, db_session, make_item, branch_a):
        cheese = await make_item(branch_a, "Cheese", opening_stock=Decimal("6"))
        await LedgerService(db_session).record_movement(cheese.id, branch_a, MovementType.WASTE, Decimal("1.5"))

        report = await VarianceService(db_session).consumption_report(branch_a, today(), today())

        row = report["items"][0]
        assert row["actual_consumption"] == Decimal("1.5")
        assert row["theoretical_consumption"] == Decimal("0")
        assert row["variance_percent"] == Decimal("100.00")

    async def test_period_outside_movements(self, db_session, make_item, branch_a):
        cheese = await make_item(branch_a, "Cheese", opening_stock=Decimal("6"))
        await LedgerService(db_session).record_movement(cheese.id, branch_a, MovementType.WASTE, Decimal("1"))
        last_week = today() - timedelta(days=7)

        report = await VarianceService(db_session).consumption_report(
            branch_a, last_week, last_week + timedelta(days=1)
        )

        assert report["items"] == []
        assert report["summary"]["total_items"] == 0

    async def test_other_branch_is_ignored(self, db_session, make_item, branch_a, branch_b):
        remote = await make_item(branch_b, "Cheese", opening_stock=Decimal("6"))
        await LedgerService(db_session).record_movement(remote.id, branch_b, MovementType.WASTE, Decimal("2"))

        report = await VarianceService(db_session).consumption_report(branch_a, today(), today())

        assert report["items"] == []

    async def test_inverted_period(self, db_session, branch_a):
        with pytest.raises(InvalidInput):
            await VarianceService(db_session).consumption_report(
                branch_a, today(), today() - timedelta(days=1)
            )

    async def test_tag_is_attached_to_row(self, db_session, make_item, branch_a, user_id):
        cheese = await make_item(branch_a, "Cheese", opening_stock=Decimal("6"))
        await LedgerService(db_session).record_movement(cheese.id, branch_a, MovementType.WASTE, Decimal("2"))
        service = VarianceService(db_session)
        await service.upsert_variance_tag(
            cheese.id, branch_a, today(), today(), RootCause.WASTE, notes="dropped tray", tagged_by=user_id
        )

        report = await service.consumption_report(branch_a, today(), today())

        row = report["items"][0]
        assert row["root_cause"] == "WASTE"
        assert row["tag_notes"] == "dropped tray"
        assert report["summary"]["tagged_count"] == 1
        assert report["summary"]["untagged_count"] == 0


class TestCountVarianceHistory:

    async def test_history_lists_lines_with_variance(self, db_session, make_item, branch_a, run_count, user_id):
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        await make_item(branch_a, "Sugar", opening_stock=Decimal("10"))
        summary = await run_count(branch_a, {flour.id: Decimal("47")})

        history = await VarianceService(db_session).count_variance_history(branch_a)

        assert len(history) == 1
        entry = history[0]
        assert entry["stock_count_id"] == summary["stock_count_id"]
        assert entry["approved_by"] == user_id
        assert [line["item_name"] for line in entry["lines"]] == ["Flour"]
        assert entry["lines"][0]["variance"] == Decimal("-3")
        assert entry["net_variance"] == Decimal("-3")

    async def test_unapproved_counts_are_excluded(self, db_session, make_item, branch_a, user_id):
        from app.services.stock_count_service import StockCountService

        await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        await StockCountService(db_session).create_stock_count(branch_a, user_id)

        assert await VarianceService(db_session).count_variance_history(branch_a) == []


class TestVarianceAlerts:

    async def test_spike_and_repeated_variance(self, db_session, make_item, branch_a, run_count):
        """Test a shortage of 2 followed by 5 raises a critical spike and a repeated warning"""
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        await run_count(branch_a, {flour.id: Decimal("48")})
        await run_count(branch_a, {flour.id: Decimal("43")})

        alerts = await VarianceService(db_session).variance_alerts(branch_a)

        by_type = {alert["type"]: alert for alert in alerts}
        assert set(by_type) == {"VARIANCE_SPIKE", "REPEATED_HIGH_VARIANCE"}

        spike = by_type["VARIANCE_SPIKE"]
        assert spike["severity"] == "critical"
        assert spike["data"]["percentage_change"] == 150
        assert spike["data"]["previous_variance"] == Decimal("2")
        assert spike["data"]["current_variance"] == Decimal("5")
        assert spike["title"] == "Variance spike on Flour (+150%)"

        repeated = by_type["REPEATED_HIGH_VARIANCE"]
        assert repeated["severity"] == "warning"
        assert repeated["data"]["occurrences"] == 2
        assert repeated["title"] == "Repeated shortage on Flour"

        assert alerts[0]["severity"] == "critical"

    async def test_new_variance_after_clean_count(self, db_session, make_item, branch_a, run_count):
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        await run_count(branch_a, {})
        await run_count(branch_a, {flour.id: Decimal("45")})

        alerts = await VarianceService(db_session).variance_alerts(branch_a)

        spikes = [alert for alert in alerts if alert["type"] == "VARIANCE_SPIKE"]
        assert len(spikes) == 1
        assert spikes[0]["severity"] == "warning"
        assert spikes[0]["title"] == "New variance detected on Flour"

    async def test_small_variances_do_not_alert(self, db_session, make_item, branch_a, run_count):
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        await run_count(branch_a, {flour.id: Decimal("49.5")})
        await run_count(branch_a, {flour.id: Decimal("49")})

        assert await VarianceService(db_session).variance_alerts(branch_a) == []

    async def test_worsening_weekly_trend(self, db_session, make_item, branch_a, run_count):
        """Test shortages of 2, 3 and 4 in consecutive weeks raise a worsening trend"""
        flour = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        now = datetime.now(timezone.utc)
        for counted, days_ago in ((Decimal("48"), 14), (Decimal("45"), 7), (Decimal("41"), 0)):
            summary = await run_count(branch_a, {flour.id: counted})
            await db_session.execute(
                update(StockCount)
                .where(StockCount.id == summary["stock_count_id"])
                .values(approved_at=now - timedelta(days=days_ago))
            )
            await db_session.commit()

        alerts = await VarianceService(db_session).variance_alerts(branch_a, now=now)

        by_type = {alert["type"]: alert for alert in alerts}
        trend = by_type["WORSENING_TREND"]
        assert trend["severity"] == "critical"
        assert trend["data"]["weeks"] == 3
        assert trend["data"]["previous_variance"] == Decimal("2")
        assert trend["data"]["current_variance"] == Decimal("4")
        assert trend["data"]["percentage_change"] == 100

        assert by_type["REPEATED_HIGH_VARIANCE"]["severity"] == "critical"
        # 3 -> 4 is below the spike threshold
        assert "VARIANCE_SPIKE" not in by_type
        assert [alert["severity"] for alert in alerts] == ["critical", "critical"]

    async def test_branches_are_analysed_separately(
        self, db_session, make_item, branch_a, branch_b, run_count
    ):
        flour_a = await make_item(branch_a, "Flour", opening_stock=Decimal("50"))
        flour_b = await make_item(branch_b, "Flour", opening_stock=Decimal("50"))
        await run_count(branch_a, {flour_a.id: Decimal("45")})
        await run_count(branch_b, {flour_b.id: Decimal("45")})

        alerts = await VarianceService(db_session).variance_alerts()

        assert [alert for alert in alerts if alert["type"] == "REPEATED_HIGH_VARIANCE"] == []


class TestVarianceTags:

    async def test_upsert_replaces_existing_tag(self, db_session, make_item, branch_a, user_id):
        cheese = await make_item(branch_a, "Cheese")
        service = VarianceService(db_session)

        first = await service.upsert_variance_tag(cheese.id, branch_a, today(), today(), RootCause.UNKNOWN)
        second = await service.upsert_variance_tag(
            cheese.id, branch_a, today(), today(), "THEFT", notes="back door", tagged_by=user_id
        )

        assert second.id == first.id
        assert second.root_cause == "THEFT"
        assert second.notes == "back door"
        assert len(await service.list_variance_tags(branch_a)) == 1

    async def test_unknown_root_cause(self, db_session, make_item, branch_a):
        cheese = await make_item(branch_a, "Cheese")
        with pytest.raises(InvalidInput):
            await VarianceService(db_session).upsert_variance_tag(
                cheese.id, branch_a, today(), today(), "ALIENS"
            )

    async def test_item_must_belong_to_branch(self, db_session, make_item, branch_a, branch_b):
        cheese = await make_item(branch_a, "Cheese")
        with pytest.raises(NotFound):
            await VarianceService(db_session).upsert_variance_tag(
                cheese.id, branch_b, today(), today(), RootCause.WASTE
            )

    async def test_list_filters_by_period(self, db_session, make_item, branch_a):
        cheese = await make_item(branch_a, "Cheese")
        service = VarianceService(db_session)
        last_week = today() - timedelta(days=7)
        await service.upsert_variance_tag(cheese.id, branch_a, last_week, last_week, RootCause.WASTE)
        await service.upsert_variance_tag(cheese.id, branch_a, today(), today(), RootCause.DATA_ERROR)

        tags = await service.list_variance_tags(branch_a, period_start=today())

        assert [tag.root_cause for tag in tags] == ["DATA_ERROR"]

    async def test_delete(self, db_session, make_item, branch_a):
        cheese = await make_item(branch_a, "Cheese")
        service = VarianceService(db_session)
        tag = await service.upsert_variance_tag(cheese.id, branch_a, today(), today(), RootCause.WASTE)

        await service.delete_variance_tag(tag.id)

        assert await service.list_variance_tags(branch_a) == []
        with pytest.raises(NotFound):
            await service.delete_variance_tag(uuid.uuid4())
