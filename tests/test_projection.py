"""
Tests for the projection engine

Test strategy:
1. Recurrence and commitments as pure functions
2. Worked affordability scenarios on a fixed clock
3. Confidence rules compound and only ever lower the tier
4. Immediate checks across single and multiple wallets
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from walletwise.errors import InvalidInputError, InvalidRangeError
from walletwise.models import (
    ConfidenceLevel,
    IncomeFrequency,
    IncomeSource,
    PlannedExpense,
    PlannedExpenseStatus,
    Transaction,
    TransactionKind,
)
from walletwise.projection import CommitmentAggregator, OccurrenceSchedule, advisory, project_income
from walletwise.projection.affordability import CANNOT_AFFORD_SUGGESTIONS

from tests.conftest import TODAY, USER


def _plan(title, amount, target_date, spent=0, status=PlannedExpenseStatus.PLANNED):
    return PlannedExpense(
        user_id=USER,
        title=title,
        amount=Decimal(amount),
        spent_amount=Decimal(spent),
        category="General",
        target_date=target_date,
        status=status,
    )


class TestRecurrence:
    """Tests for OccurrenceSchedule and project_income."""

    def test_month_end_anchor_does_not_drift(self):
        dates = list(OccurrenceSchedule(
            date(2025, 1, 31), date(2025, 1, 30), date(2025, 4, 30), IncomeFrequency.MONTHLY
        ))
        assert dates == [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30)]

    def test_window_excludes_start_and_includes_end(self):
        schedule = OccurrenceSchedule(
            date(2025, 1, 1), date(2025, 1, 1), date(2025, 1, 15), IncomeFrequency.WEEKLY
        )
        assert list(schedule) == [date(2025, 1, 8), date(2025, 1, 15)]

    def test_weekly_and_biweekly(self):
        weekly = list(OccurrenceSchedule(
            date(2025, 1, 3), date(2025, 1, 1), date(2025, 1, 31), IncomeFrequency.WEEKLY
        ))
        biweekly = list(OccurrenceSchedule(
            date(2025, 1, 3), date(2025, 1, 1), date(2025, 1, 31), IncomeFrequency.BIWEEKLY
        ))
        assert len(weekly) == 5
        assert biweekly == [date(2025, 1, 3), date(2025, 1, 17), date(2025, 1, 31)]

    def test_quarterly_and_annual(self):
        quarterly = list(OccurrenceSchedule(
            date(2025, 1, 15), date(2025, 1, 1), date(2025, 12, 31), IncomeFrequency.QUARTERLY
        ))
        annual = list(OccurrenceSchedule(
            date(2024, 2, 29), date(2025, 1, 1), date(2026, 12, 31), IncomeFrequency.ANNUALLY
        ))
        assert len(quarterly) == 4
        assert annual == [date(2025, 2, 28), date(2026, 2, 28)]

    def test_anchor_in_the_past_steps_forward(self):
        dates = list(OccurrenceSchedule(
            date(2024, 12, 15), date(2025, 1, 1), date(2025, 2, 10), IncomeFrequency.MONTHLY
        ))
        assert dates == [date(2025, 1, 15)]

    def test_irregular_yields_only_the_anchor(self):
        inside = OccurrenceSchedule(date(2025, 1, 20), date(2025, 1, 1), date(2025, 6, 1), IncomeFrequency.IRREGULAR)
        outside = OccurrenceSchedule(date(2025, 7, 1), date(2025, 1, 1), date(2025, 6, 1), IncomeFrequency.IRREGULAR)
        assert list(inside) == [date(2025, 1, 20)]
        assert list(outside) == []

    def test_project_income_carries_the_source(self):
        source = IncomeSource(
            user_id=USER,
            name="Salary",
            amount=Decimal("20000"),
            frequency=IncomeFrequency.MONTHLY,
            next_pay_date=date(2025, 1, 11),
        )
        [payment] = project_income(source, TODAY, date(2025, 2, 10))
        assert payment.source_id == source.id
        assert payment.amount == Decimal("20000.00")
        assert payment.pay_date == date(2025, 1, 11)


class TestCommitments:
    """Tests for the CommitmentAggregator."""

    def test_split_around_cutoff(self):
        aggregator = CommitmentAggregator(Decimal("0.8"))
        partly_paid = _plan("Bike", 1000, date(2025, 1, 25), spent=400)
        plans = [
            _plan("Rent", 1000, date(2025, 1, 20)),
            partly_paid,
            _plan("Trip", 2000, date(2025, 3, 1)),
            _plan("Cancelled", 9999, date(2025, 1, 20), status=PlannedExpenseStatus.CANCELLED),
            _plan("Overdue", 9999, date(2024, 12, 20)),
        ]

        totals = aggregator.aggregate(plans, today=TODAY, cutoff=date(2025, 2, 1))

        assert totals.upcoming == Decimal("2000.00")
        assert totals.upcoming_items[1].amount == Decimal("1000.00")
        assert totals.later == Decimal("2000.00")
        assert totals.later_weighted == Decimal("1600.00")
        assert [d.title for d in totals.upcoming_items] == ["Rent", "Bike"]
        assert totals.later_items[0].weighted is True

        without_bike = aggregator.aggregate(
            plans, today=TODAY, cutoff=date(2025, 2, 1), exclude_id=partly_paid.id
        )
        assert without_bike.upcoming == Decimal("1000.00")

    def test_nothing_to_commit(self):
        totals = CommitmentAggregator().aggregate([], today=TODAY, cutoff=TODAY)
        assert totals.upcoming == Decimal("0.00")
        assert totals.later_weighted == Decimal("0.00")


class TestAdvisory:
    """Tests for deterministic recommendations."""

    def test_category_advice_is_case_insensitive(self):
        assert advisory.category_advice("LUXURY") == advisory.CATEGORY_ADVICE["luxury"]
        assert advisory.category_advice("groceries") is None
        assert advisory.category_advice(None) is None

    def test_short_horizon_shortfall_is_per_day(self):
        recs = advisory.outcome_recommendations(False, Decimal("1000"), Decimal("700"), 10)
        assert recs[0] == "You need an additional ₱300.00 to afford this expense"
        assert recs[1] == "Save an extra ₱30.00 per day to reach your goal"

    def test_small_and_large_buffers(self):
        small = advisory.outcome_recommendations(True, Decimal("1000"), Decimal("1100"), 10)
        large = advisory.outcome_recommendations(True, Decimal("1000"), Decimal("2000"), 10)
        assert small == [advisory.REC_SMALL_BUFFER]
        assert large == [advisory.REC_LARGE_BUFFER]


async def _scenario_ledger(store, opening=16000, spent=6000):
    wallet = await store.create_wallet(USER, "Cash", opening_balance=opening)
    if spent:
        await store.record_transaction(USER, TransactionKind.EXPENSE, spent, wallet.id, "Living")
    return wallet


class TestAffordability:
    """Tests for AffordabilityEngine.evaluate."""

    @pytest.mark.asyncio
    async def test_shortfall_scenario(self, store, engine):
        await _scenario_ledger(store)
        await store.create_income_source(USER, "Salary", 20000, IncomeFrequency.MONTHLY, date(2025, 1, 11))

        verdict = await engine.evaluate(USER, 25000, date(2025, 2, 10))

        b = verdict.breakdown
        assert b.current_balance == Decimal("10000.00")
        assert b.projected_income == Decimal("20000.00")
        assert b.trailing_expenses == Decimal("6000.00")
        assert b.routine_expenses == Decimal("8000.00")
        assert b.net_balance == Decimal("22000.00")
        assert b.days_until_target == 40
        assert verdict.can_afford is False
        assert verdict.shortfall == Decimal("3000.00")
        assert verdict.confidence == ConfidenceLevel.LOW
        assert advisory.RISK_SINGLE_INCOME in verdict.risk_factors
        assert advisory.RISK_SPENDING_PATTERN in verdict.risk_factors
        assert "You need an additional ₱3,000.00 to afford this expense" in verdict.recommendations
        assert "Save an extra ₱2,250.00 per month to reach your goal" in verdict.recommendations
        assert verdict.analysis.startswith("You are projected to be ₱3,000.00 short")

    @pytest.mark.asyncio
    async def test_same_day_affordable(self, store, engine):
        await _scenario_ledger(store)
        await store.create_income_source(USER, "Salary", 20000, IncomeFrequency.MONTHLY, date(2025, 1, 11))

        verdict = await engine.evaluate(USER, 5000, TODAY)

        assert verdict.can_afford is True
        assert verdict.breakdown.routine_expenses == Decimal("0.00")
        assert verdict.breakdown.projected_income == Decimal("0.00")
        assert verdict.confidence == ConfidenceLevel.MEDIUM
        assert advisory.RISK_SAME_DAY in verdict.risk_factors
        assert any("afford this expense today with your current balance" in r for r in verdict.recommendations)
        assert advisory.REC_LARGE_BUFFER in verdict.recommendations

    @pytest.mark.asyncio
    async def test_rules_compound_to_low(self, store, engine):
        await _scenario_ledger(store, opening=1_000_000, spent=0)

        verdict = await engine.evaluate(USER, 100, TODAY + timedelta(days=200))

        assert verdict.can_afford is True
        assert verdict.confidence == ConfidenceLevel.LOW
        assert advisory.RISK_NO_INCOME in verdict.risk_factors
        assert advisory.RISK_LOW_HORIZON in verdict.risk_factors
        assert advisory.REC_ADD_INCOME in verdict.recommendations

    @pytest.mark.asyncio
    async def test_long_horizon_caps_at_medium(self, store, engine):
        await _scenario_ledger(store, opening=100_000, spent=0)
        await store.create_income_source(USER, "Salary", 1000, IncomeFrequency.MONTHLY, date(2025, 1, 15))
        await store.create_income_source(USER, "Rent", 1000, IncomeFrequency.MONTHLY, date(2025, 1, 20))

        far = await engine.evaluate(USER, 1000, TODAY + timedelta(days=100))
        near = await engine.evaluate(USER, 1000, TODAY + timedelta(days=30))

        assert far.confidence == ConfidenceLevel.MEDIUM
        assert advisory.RISK_MEDIUM_HORIZON in far.risk_factors
        assert near.confidence == ConfidenceLevel.HIGH
        assert near.risk_factors == []

    @pytest.mark.asyncio
    async def test_later_commitments_are_weighted(self, store, engine):
        await _scenario_ledger(store, opening=20000, spent=0)
        await store.create_planned_expense(USER, "Trip", 10000, date(2025, 3, 1), "Travel")

        verdict = await engine.evaluate(USER, 1000, TODAY)

        assert verdict.breakdown.later_commitments == Decimal("10000.00")
        assert verdict.breakdown.later_commitments_weighted == Decimal("8000.00")
        assert verdict.breakdown.net_balance == Decimal("12000.00")
        assert advisory.RISK_FUTURE_CONFLICT in verdict.risk_factors

    @pytest.mark.asyncio
    async def test_partly_spent_plan_counts_in_full(self, store, engine):
        wallet = await _scenario_ledger(store, opening=10000, spent=0)
        plan = await store.create_planned_expense(USER, "Bike", 1000, TODAY + timedelta(days=5), "Transport")
        await store.record_transaction(
            USER, TransactionKind.EXPENSE, 400, wallet.id, "Transport", planned_expense_id=plan.id
        )

        verdict = await engine.evaluate(USER, 100, TODAY + timedelta(days=10))

        assert verdict.breakdown.current_balance == Decimal("9600.00")
        assert verdict.breakdown.upcoming_commitments == Decimal("1000.00")

    def test_trailing_window_uses_local_days(self, engine):
        wallet_id = uuid4()

        def expense(amount, moment):
            return Transaction(
                user_id=USER, amount=Decimal(amount), kind=TransactionKind.EXPENSE,
                category="Food", date=moment, wallet_id=wallet_id,
            )

        rows = [
            # 2024-12-03 01:00 local, inside the window
            expense(100, datetime(2024, 12, 2, 17, 0, tzinfo=timezone.utc)),
            # 2025-01-02 01:00 local, after today
            expense(200, datetime(2025, 1, 1, 17, 0, tzinfo=timezone.utc)),
            expense(400, datetime(2024, 12, 31, 20, 0, tzinfo=timezone.utc)),
        ]

        assert engine.trailing_expenses(rows, TODAY) == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_wallet_filter(self, store, engine):
        cash = await store.create_wallet(USER, "Cash", opening_balance=300)
        await store.create_wallet(USER, "Bank", opening_balance=5000)

        filtered = await engine.evaluate(USER, 100, TODAY, wallet_id=cash.id)
        missing = await engine.evaluate(USER, 100, TODAY, wallet_id=uuid4())

        assert filtered.breakdown.current_balance == Decimal("300.00")
        assert [w.name for w in filtered.wallet_breakdown] == ["Cash"]
        assert missing.wallet_not_found is True
        assert missing.breakdown.current_balance == Decimal("0.00")
        assert advisory.RISK_WALLET_NOT_FOUND in missing.risk_factors

    @pytest.mark.asyncio
    async def test_category_only_changes_advice(self, store, engine):
        await _scenario_ledger(store)

        plain = await engine.evaluate(USER, 1000, TODAY)
        luxury = await engine.evaluate(USER, 1000, TODAY, category="Luxury")

        assert plain.can_afford == luxury.can_afford
        assert plain.confidence == luxury.confidence
        assert advisory.CATEGORY_ADVICE["luxury"] in luxury.recommendations

    @pytest.mark.asyncio
    async def test_invalid_requests(self, engine):
        with pytest.raises(InvalidRangeError):
            await engine.evaluate(USER, 100, TODAY - timedelta(days=1))
        with pytest.raises(InvalidInputError):
            await engine.evaluate(USER, 0, TODAY)
        with pytest.raises(InvalidInputError):
            await engine.evaluate(USER, "lots", TODAY)

    @pytest.mark.asyncio
    async def test_evaluation_does_not_write(self, store, engine, bus):
        received = []
        await _scenario_ledger(store)
        bus.subscribe(received.append)

        await engine.evaluate(USER, 1000, TODAY + timedelta(days=10))

        assert received == []
        assert (await store.list_wallets(USER))[0].balance == Decimal("10000.00")


class TestImmediateAffordability:
    """Tests for AffordabilityEngine.evaluate_immediate."""

    @pytest.mark.asyncio
    async def test_no_wallets(self, engine):
        verdict = await engine.evaluate_immediate(USER, 100)
        assert verdict.can_afford is False
        assert verdict.message == "No active wallets found"

    @pytest.mark.asyncio
    async def test_total_check_suggests_wallets(self, store, engine):
        await store.create_wallet(USER, "Cash", opening_balance=300)
        await store.create_wallet(USER, "Bank", opening_balance=1000)

        verdict = await engine.evaluate_immediate(USER, 500)

        assert verdict.can_afford is True
        assert verdict.total_balance == Decimal("1300.00")
        assert [w.name for w in verdict.suggested_wallets] == ["Bank"]
        assert verdict.suggested_wallets[0].remaining_after_expense == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_total_check_needs_multiple_wallets(self, store, engine):
        await store.create_wallet(USER, "Cash", opening_balance=300)
        await store.create_wallet(USER, "Bank", opening_balance=1000)

        verdict = await engine.evaluate_immediate(USER, 1200)

        assert verdict.can_afford is True
        assert verdict.requires_multiple_wallets is True
        assert len(verdict.wallet_breakdown) == 2

    @pytest.mark.asyncio
    async def test_total_check_insufficient(self, store, engine):
        await store.create_wallet(USER, "Cash", opening_balance=300)

        verdict = await engine.evaluate_immediate(USER, 1000)

        assert verdict.can_afford is False
        assert verdict.shortfall == Decimal("700.00")
        assert verdict.suggestions == CANNOT_AFFORD_SUGGESTIONS

    @pytest.mark.asyncio
    async def test_wallet_short_but_another_can_pay(self, store, engine):
        cash = await store.create_wallet(USER, "Cash", opening_balance=300)
        await store.create_wallet(USER, "Bank", opening_balance=1000)

        verdict = await engine.evaluate_immediate(USER, 500, wallet_id=cash.id)

        assert verdict.can_afford is False
        assert verdict.shortfall == Decimal("200.00")
        assert verdict.can_afford_from_other_wallets is True
        assert [w.name for w in verdict.suggested_wallets] == ["Bank"]

    @pytest.mark.asyncio
    async def test_wallet_short_but_transfer_would_cover(self, store, engine):
        cash = await store.create_wallet(USER, "Cash", opening_balance=300)
        await store.create_wallet(USER, "Bank", opening_balance=300)

        verdict = await engine.evaluate_immediate(USER, 500, wallet_id=cash.id)

        assert verdict.can_afford_from_other_wallets is True
        assert verdict.suggestions == ["You can afford this by transferring funds between wallets"]

    @pytest.mark.asyncio
    async def test_budget_period_sets_the_daily_budget(self, store, engine):
        cash = await store.create_wallet(USER, "Cash", opening_balance=1400)
        await store.create_budget_period(USER, date(2024, 12, 16), date(2025, 1, 15))

        verdict = await engine.evaluate_immediate(USER, 500, wallet_id=cash.id)

        info = verdict.time_based_info
        assert info.basis == "budget_period"
        assert info.days == 14
        assert info.daily_budget == Decimal("100.00")
        assert verdict.budget_impact.daily_budget_used == Decimal("35.71")
        assert verdict.time_warning is not None

    @pytest.mark.asyncio
    async def test_next_paycheck_without_budget_period(self, store, engine):
        await store.create_wallet(USER, "Cash", opening_balance=1000)
        await store.create_income_source(USER, "Salary", 20000, IncomeFrequency.MONTHLY, date(2025, 1, 11))

        verdict = await engine.evaluate_immediate(USER, 50)
        plain = await engine.evaluate_immediate(USER, 50, consider_timeframe=False)

        assert verdict.time_based_info.basis == "next_paycheck"
        assert verdict.time_based_info.days == 10
        assert verdict.time_based_info.income_name == "Salary"
        assert verdict.time_warning is None
        assert plain.time_based_info is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
