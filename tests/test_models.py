"""
Tests for Walletwise models

Test strategy:
1. Unit tests for the money unit and the ledger records
2. Validators reject malformed records before the store sees them
3. Activity events render to plain structured-log dicts
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from walletwise.models import (
    BudgetPeriod,
    ConfidenceLevel,
    ExpensePriority,
    LedgerEventBuilder,
    LedgerEventType,
    PlannedExpense,
    PlannedExpenseStatus,
    Transaction,
    TransactionKind,
    TransactionUpdate,
    TransferDirection,
    Wallet,
)
from walletwise.models.money import format_money, money_sum, to_money


class TestMoney:
    """Tests for the Decimal money unit."""

    def test_float_goes_through_its_string_form(self):
        assert to_money(0.1) == Decimal("0.10")
        assert to_money(0.1) + to_money(0.2) == Decimal("0.30")

    def test_rounds_half_up_to_centavos(self):
        assert to_money("2.345") == Decimal("2.35")
        assert to_money("2.344") == Decimal("2.34")

    def test_rejects_non_numbers(self):
        for bad in ("abc", "NaN", "Infinity", None, True):
            with pytest.raises(ValueError):
                to_money(bad)

    def test_money_sum_of_nothing_is_zero(self):
        assert money_sum([]) == Decimal("0.00")
        assert money_sum([Decimal("1.10"), Decimal("2.20")]) == Decimal("3.30")

    def test_format_money(self):
        assert format_money(Decimal("3000")) == "₱3,000.00"
        assert format_money(Decimal("-12.5"), "$") == "-$12.50"


class TestLedgerRecords:
    """Tests for wallet, transaction and planned-expense models."""

    def test_wallet_strips_whitespace_and_defaults(self):
        wallet = Wallet(user_id="u", name="  GCash  ")
        assert wallet.name == "GCash"
        assert wallet.balance == Decimal("0.00")
        assert wallet.is_active is True

    def test_transaction_rejects_non_positive_amount(self):
        with pytest.raises(ValidationError):
            Transaction(
                user_id="u",
                amount=Decimal("0"),
                kind=TransactionKind.EXPENSE,
                category="Food",
                wallet_id=uuid4(),
            )

    def test_transfer_row_requires_direction_and_group(self):
        with pytest.raises(ValidationError, match="direction and a transfer group"):
            Transaction(
                user_id="u",
                amount=Decimal("100"),
                kind=TransactionKind.TRANSFER,
                category="Transfer Out",
                wallet_id=uuid4(),
            )

    def test_only_expenses_carry_a_plan_link(self):
        with pytest.raises(ValidationError, match="Only expenses"):
            Transaction(
                user_id="u",
                amount=Decimal("100"),
                kind=TransactionKind.INCOME,
                category="Salary",
                wallet_id=uuid4(),
                planned_expense_id=uuid4(),
            )

    def test_signed_effect(self):
        wallet_id = uuid4()
        group = uuid4()
        income = Transaction(user_id="u", amount=50, kind="INCOME", category="x", wallet_id=wallet_id)
        expense = Transaction(user_id="u", amount=50, kind="EXPENSE", category="x", wallet_id=wallet_id)
        out_leg = Transaction(
            user_id="u", amount=50, kind="TRANSFER", category="x", wallet_id=wallet_id,
            transfer_group_id=group, transfer_direction=TransferDirection.OUT,
        )
        in_leg = out_leg.model_copy(update={"transfer_direction": TransferDirection.IN})

        assert income.signed_effect == Decimal("50.00")
        assert expense.signed_effect == Decimal("-50.00")
        assert out_leg.signed_effect == Decimal("-50.00")
        assert in_leg.signed_effect == Decimal("50.00")

    def test_planned_expense_remaining(self):
        expense = PlannedExpense(
            user_id="u",
            title="Laptop",
            amount=Decimal("1000"),
            spent_amount=Decimal("800"),
            category="Gadgets",
            target_date=date(2025, 3, 1),
        )
        assert expense.remaining_amount == Decimal("200.00")
        assert expense.status == PlannedExpenseStatus.PLANNED
        assert expense.status.is_active

    def test_budget_period_dates(self):
        with pytest.raises(ValidationError, match="end cannot be before start"):
            BudgetPeriod(user_id="u", start_date=date(2025, 1, 15), end_date=date(2025, 1, 1))

        period = BudgetPeriod(user_id="u", start_date=date(2025, 1, 1), end_date=date(2025, 1, 15))
        assert period.covers(date(2025, 1, 15))
        assert not period.covers(date(2025, 1, 16))
        assert period.overlaps(date(2025, 1, 15), date(2025, 1, 31))
        assert not period.overlaps(date(2025, 1, 16), date(2025, 1, 31))


class TestEnums:
    """Tests for ordering helpers on enums."""

    def test_confidence_only_moves_down(self):
        assert ConfidenceLevel.HIGH.downgrade() == ConfidenceLevel.MEDIUM
        assert ConfidenceLevel.MEDIUM.downgrade() == ConfidenceLevel.LOW
        assert ConfidenceLevel.LOW.downgrade() == ConfidenceLevel.LOW

    def test_confidence_cap(self):
        assert ConfidenceLevel.HIGH.cap(ConfidenceLevel.MEDIUM) == ConfidenceLevel.MEDIUM
        assert ConfidenceLevel.LOW.cap(ConfidenceLevel.MEDIUM) == ConfidenceLevel.LOW

    def test_priority_rank(self):
        ranks = [p.rank for p in (ExpensePriority.LOW, ExpensePriority.MEDIUM,
                                  ExpensePriority.HIGH, ExpensePriority.URGENT)]
        assert ranks == sorted(ranks)

    def test_only_planned_and_saved_are_active(self):
        active = {s for s in PlannedExpenseStatus if s.is_active}
        assert active == {PlannedExpenseStatus.PLANNED, PlannedExpenseStatus.SAVED}


class TestTransactionUpdate:
    """Tests for partial updates."""

    def test_provided_tracks_explicit_fields(self):
        update = TransactionUpdate(note="lunch", planned_expense_id=None)
        assert update.provided() == {"note": "lunch", "planned_expense_id": None}

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            TransactionUpdate(balance=Decimal("10"))


class TestActivityModels:
    """Tests for activity events."""

    def test_log_dict_is_plain(self):
        wallet_id = uuid4()
        event = LedgerEventBuilder.transaction_recorded(
            user_id="u",
            transaction_id=uuid4(),
            kind="EXPENSE",
            amount=Decimal("150.00"),
            wallet_id=wallet_id,
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "transaction_recorded"
        assert log_dict["details"]["amount"] == "150.00"
        assert log_dict["details"]["wallet_id"] == str(wallet_id)

    def test_wallet_deactivation_has_its_own_type(self):
        event = LedgerEventBuilder.record_changed("u", "wallet", uuid4(), "deactivated")
        assert event.event_type == LedgerEventType.WALLET_DEACTIVATED

    def test_rejection_is_a_warning(self):
        event = LedgerEventBuilder.mutation_rejected("u", "record_transfer", "insufficient_funds", "no")
        assert event.severity.value == "warning"
        assert event.error_code == "insufficient_funds"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
