"""
Tests for the external operations

Test strategy:
1. Primitive inputs (strings, ISO dates) are parsed at the edge
2. Malformed input is rejected as InvalidInputError before any mutation
3. create_app_components wires a working system without Gemini
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from walletwise.errors import InvalidInputError, NotFoundError
from walletwise.models import TransactionKind
from walletwise.orchestrator import (
    ConfidenceFlow,
    LedgerFlow,
    create_app_components,
    parse_date,
    parse_datetime,
)

from tests.conftest import NOW, PH_TIME, TODAY, USER


@pytest.fixture
def flow(store):
    return LedgerFlow(store)


class TestParsing:
    """Tests for input parsing helpers."""

    def test_naive_datetime_is_local_time(self):
        parsed = parse_datetime("2025-01-05T09:30:00", PH_TIME)
        assert parsed.tzinfo == PH_TIME
        assert parsed.hour == 9

    def test_offset_is_kept(self):
        parsed = parse_datetime("2025-01-05T09:30:00Z", PH_TIME)
        assert parsed.utcoffset() == timedelta(0)

    def test_bare_date_is_local_midnight(self):
        parsed = parse_datetime("2025-01-05", PH_TIME)
        assert parsed == datetime(2025, 1, 5, tzinfo=PH_TIME)

    def test_parse_date_accepts_datetimes(self):
        assert parse_date("2025-02-10T08:00:00+08:00").isoformat() == "2025-02-10"

    def test_malformed_values(self):
        with pytest.raises(InvalidInputError):
            parse_date("10/02/2025")
        with pytest.raises(InvalidInputError):
            parse_datetime("yesterday", timezone.utc)


class TestLedgerFlow:
    """Tests for the ledger operations."""

    @pytest.mark.asyncio
    async def test_create_transaction_from_strings(self, store, flow):
        wallet = await store.create_wallet(USER, "Cash", opening_balance=1000)

        row = await flow.create_transaction(
            USER, "expense", "150.50", str(wallet.id), "Food", date="2025-01-01T08:15:00"
        )

        assert row.kind == TransactionKind.EXPENSE
        assert row.amount == Decimal("150.50")
        assert row.date.utcoffset() == timedelta(hours=8)
        assert (await store.get_wallet(USER, wallet.id)).balance == Decimal("849.50")

    @pytest.mark.asyncio
    async def test_malformed_inputs_rejected(self, store, flow):
        wallet = await store.create_wallet(USER, "Cash", opening_balance=1000)

        with pytest.raises(InvalidInputError):
            await flow.create_transaction(USER, "expense", "10", "not-a-uuid", "Food")
        with pytest.raises(InvalidInputError):
            await flow.create_transaction(USER, "gift", "10", str(wallet.id), "Food")
        with pytest.raises(InvalidInputError):
            await flow.create_transaction(USER, "expense", "ten", str(wallet.id), "Food")

        assert (await store.get_wallet(USER, wallet.id)).balance == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_update_and_delete(self, store, flow):
        wallet = await store.create_wallet(USER, "Cash", opening_balance=1000)
        row = await flow.create_transaction(USER, "EXPENSE", 100, wallet.id, "Food")

        edited = await flow.update_transaction(USER, str(row.id), {"amount": "250", "note": "dinner"})
        assert edited.amount == Decimal("250.00")
        assert (await store.get_wallet(USER, wallet.id)).balance == Decimal("750.00")

        with pytest.raises(InvalidInputError):
            await flow.update_transaction(USER, row.id, {"balance": "1"})

        removed = await flow.delete_transaction(USER, str(row.id))
        assert removed == [row.id]
        assert (await store.get_wallet(USER, wallet.id)).balance == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_unlink_with_explicit_none(self, store, flow):
        wallet = await store.create_wallet(USER, "Cash", opening_balance=1000)
        plan = await store.create_planned_expense(USER, "Bike", 500, TODAY + timedelta(days=30), "Transport")
        row = await flow.create_transaction(
            USER, "EXPENSE", 100, wallet.id, "Transport", planned_expense_id=str(plan.id)
        )

        edited = await flow.update_transaction(USER, row.id, {"planned_expense_id": None})

        assert edited.planned_expense_id is None
        assert (await store.get_planned_expense(USER, plan.id)).spent_amount == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_create_transfer(self, store, flow):
        a = await store.create_wallet(USER, "A", opening_balance=2000)
        b = await store.create_wallet(USER, "B", opening_balance=500)

        result = await flow.create_transfer(USER, "1000", str(a.id), str(b.id), fee="15")

        assert len(result.rows) == 3
        assert (await store.get_wallet(USER, a.id)).balance == Decimal("985.00")

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, flow):
        with pytest.raises(NotFoundError):
            await flow.delete_transaction(USER, str(uuid4()))


class TestConfidenceFlow:
    """Tests for the confidence operations."""

    @pytest.mark.asyncio
    async def test_run_sweep(self, store, recalculator):
        await store.create_wallet(USER, "Cash", opening_balance=1000)
        await store.create_planned_expense(USER, "Goal", 500, TODAY + timedelta(days=30), "A")

        report = await ConfidenceFlow(recalculator).run_sweep()

        assert report.total_users == 1
        assert report.success_count == 1

    @pytest.mark.asyncio
    async def test_recalculate_one_user(self, store, recalculator):
        await store.create_wallet(USER, "Cash", opening_balance=1000)
        plan = await store.create_planned_expense(USER, "Goal", 500, TODAY + timedelta(days=30), "A")

        updated = await ConfidenceFlow(recalculator).recalculate_confidence(USER)

        assert updated == [plan.id]
        assert (await store.get_planned_expense(USER, plan.id)).last_confidence_update == NOW


class TestAppComponents:
    """Tests for the component factory."""

    @pytest.mark.asyncio
    async def test_wired_without_text_generation(self):
        components = create_app_components(use_text_generation=False)

        wallet = await components.store.create_wallet(USER, "Cash", opening_balance=5000)
        check = await components.affordability_flow.evaluate_immediate_affordability(
            USER, "1200", wallet_id=str(wallet.id), consider_timeframe=False
        )
        future = await components.affordability_flow.evaluate_future_affordability(
            USER, 1000, components.store.today()
        )
        await components.confidence_queue.close()

        assert components.bus.subscriber_count == 2
        assert check.can_afford is True
        assert check.remaining_balance == Decimal("3800.00")
        assert future.advisory_source == "fallback"
        assert future.can_afford is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
