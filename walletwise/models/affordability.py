"""
Projection and Affordability Models

These are the results the projection engine hands back. Every number
that went into a verdict is carried in the breakdown so a caller can
audit exactly why the answer came out the way it did.
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from walletwise.models.ledger import (
    ConfidenceLevel,
    ExpensePriority,
    WalletType,
    utc_now,
)
from walletwise.models.money import ZERO, Money


class ProjectedIncome(BaseModel):
    """One projected income occurrence."""

    source_id: UUID
    source_name: str
    amount: Money
    pay_date: date


class PlannedExpenseDetail(BaseModel):
    """A planned expense as seen by the commitment aggregator."""

    id: UUID
    title: str
    amount: Money
    target_date: date
    category: str
    priority: ExpensePriority
    weighted: bool = Field(
        default=False,
        description="True when the amount was discounted by the reserve weight"
    )


class WalletBalance(BaseModel):
    id: UUID
    name: str
    balance: Money
    wallet_type: WalletType


class AffordabilityBreakdown(BaseModel):
    """Every intermediate value of one evaluation."""

    current_balance: Money
    projected_income: Money
    gross_balance: Money
    trailing_expenses: Money = Field(
        ...,
        description="Sum of expenses over the trailing window"
    )
    routine_expenses: Money
    upcoming_commitments: Money
    later_commitments: Money
    later_commitments_weighted: Money
    projected_expenses: Money
    net_balance: Money
    days_until_target: int = Field(ge=0)


class AffordabilityVerdict(BaseModel):
    """
    Result of a future affordability evaluation.

    The verdict (`can_afford`) and `confidence` are decided by the
    engine alone. Advisory text may be replaced by generated text but
    never changes either of them.
    """

    target_amount: Money
    target_date: date
    evaluated_on: date
    category: Optional[str] = None
    can_afford: bool
    confidence: ConfidenceLevel
    risk_factors: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    breakdown: AffordabilityBreakdown
    income_breakdown: list[ProjectedIncome] = Field(default_factory=list)
    planned_expense_details: list[PlannedExpenseDetail] = Field(default_factory=list)
    wallet_breakdown: list[WalletBalance] = Field(default_factory=list)
    wallet_not_found: bool = Field(
        default=False,
        description="A wallet filter was given but matched no active wallet"
    )

    # Filled by the advisory step
    analysis: Optional[str] = None
    advisory_source: str = Field(
        default="fallback",
        pattern="^(generated|fallback|cache)$"
    )

    @property
    def shortfall(self):
        """How much is missing (zero when affordable)."""
        return max(ZERO, self.target_amount - self.breakdown.net_balance)


class TimeBasedInfo(BaseModel):
    """How long the current money has to last."""

    basis: str = Field(..., pattern="^(budget_period|next_paycheck)$")
    days: int = Field(ge=0)
    daily_budget: Money
    end_date: date
    next_pay_amount: Optional[Money] = None
    income_name: Optional[str] = None
    message: str


class BudgetImpact(BaseModel):
    daily_budget_used: Money
    daily_budget_remaining: Money
    percentage_of_daily_budget: float


class WalletSuggestion(BaseModel):
    id: UUID
    name: str
    balance: Money
    remaining_after_expense: Money


class ImmediateAffordabilityVerdict(BaseModel):
    """Result of a can-I-pay-for-this-right-now check."""

    amount: Money
    can_afford: bool
    message: str
    total_balance: Money = ZERO
    wallet_id: Optional[UUID] = None
    wallet_name: Optional[str] = None
    wallet_balance: Optional[Money] = None
    remaining_balance: Optional[Money] = None
    shortfall: Optional[Money] = None
    suggested_wallets: list[WalletSuggestion] = Field(default_factory=list)
    can_afford_from_other_wallets: Optional[bool] = None
    requires_multiple_wallets: bool = False
    wallet_breakdown: list[WalletBalance] = Field(default_factory=list)
    time_based_info: Optional[TimeBasedInfo] = None
    budget_impact: Optional[BudgetImpact] = None
    time_warning: Optional[str] = None
    suggestions: list[str] = Field(default_factory=list)


class CommitmentTotals(BaseModel):
    """Output of the commitment aggregator."""

    upcoming: Money = ZERO
    later: Money = ZERO
    later_weighted: Money = ZERO
    upcoming_items: list[PlannedExpenseDetail] = Field(default_factory=list)
    later_items: list[PlannedExpenseDetail] = Field(default_factory=list)


class UserRecalculationResult(BaseModel):
    """Outcome of recalculating one user's planned expenses."""

    user_id: str
    status: str = Field(..., pattern="^(success|error)$")
    updated_expense_ids: list[UUID] = Field(default_factory=list)
    error: Optional[str] = None


class SweepReport(BaseModel):
    """Outcome of a scheduled recalculation sweep across users."""

    total_users: int = Field(ge=0)
    success_count: int = Field(ge=0)
    error_count: int = Field(ge=0)
    timestamp: datetime = Field(default_factory=utc_now)
    results: list[UserRecalculationResult] = Field(default_factory=list)


class AdvisoryText(BaseModel):
    """Advice attached to a verdict."""

    analysis: str
    recommendations: list[str] = Field(default_factory=list)
    source: str = Field(default="fallback", pattern="^(generated|fallback|cache)$")
