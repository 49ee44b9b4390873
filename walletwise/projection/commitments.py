"""
Commitment Aggregator

Splits the user's active planned expenses around a cutoff date:

- upcoming: due on or before the cutoff, counted in full
- later: due after the cutoff, counted at the reserve weight

Each plan counts at its full `amount`, whatever has already been spent
toward it. Plans with nothing left to pay still count until they leave
the active statuses.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from walletwise.models.affordability import CommitmentTotals, PlannedExpenseDetail
from walletwise.models.ledger import PlannedExpense
from walletwise.models.money import money_sum, to_money

DEFAULT_RESERVE_WEIGHT = Decimal("0.8")


class CommitmentAggregator:
    """Weights planned expenses by horizon."""

    def __init__(self, reserve_weight: Decimal = DEFAULT_RESERVE_WEIGHT):
        self.reserve_weight = Decimal(reserve_weight)

    def aggregate(
        self,
        expenses: Iterable[PlannedExpense],
        today: date,
        cutoff: date,
        exclude_id: Optional[UUID] = None,
    ) -> CommitmentTotals:
        """
        Partition active planned expenses due from `today` onwards.

        Args:
            expenses: The user's planned expenses (any status)
            today: Expenses due before this are ignored
            cutoff: Last day counted as "upcoming"
            exclude_id: A planned expense to leave out (the one being evaluated)
        """
        upcoming_items: list[PlannedExpenseDetail] = []
        later_items: list[PlannedExpenseDetail] = []

        for expense in expenses:
            if not expense.status.is_active or expense.target_date < today:
                continue
            if exclude_id is not None and expense.id == exclude_id:
                continue
            is_later = expense.target_date > cutoff
            detail = PlannedExpenseDetail(
                id=expense.id,
                title=expense.title,
                amount=expense.amount,
                target_date=expense.target_date,
                category=expense.category,
                priority=expense.priority,
                weighted=is_later,
            )
            (later_items if is_later else upcoming_items).append(detail)

        upcoming_items.sort(key=lambda d: (d.target_date, -d.priority.rank))
        later_items.sort(key=lambda d: (d.target_date, -d.priority.rank))

        later = money_sum(d.amount for d in later_items)
        return CommitmentTotals(
            upcoming=money_sum(d.amount for d in upcoming_items),
            later=later,
            later_weighted=to_money(later * self.reserve_weight),
            upcoming_items=upcoming_items,
            later_items=later_items,
        )
