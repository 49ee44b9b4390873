"""
Affordability Engine

Answers "can I afford this?" in two forms:

1. evaluate(): will I be able to afford X by a future date?
   Projects the current balance forward with expected income, routine
   spending extrapolated from the trailing window, and money reserved
   for planned expenses, then scores how much to trust the answer.

2. evaluate_immediate(): can I pay X right now, and from which wallet?

DESIGN DECISION: The engine is read-only. It takes one consistent
snapshot of the ledger per call and never writes, so a projection can
run alongside mutations without locks of its own.

CRITICAL: Confidence starts at HIGH and is only ever lowered within
one evaluation. Each rule can only lower it further, so rules compound
(no income sources AND a far-off date is LOW, never MEDIUM).
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

import structlog

from walletwise.audit import ActivityLogger
from walletwise.config.settings import LedgerSettings
from walletwise.errors import InvalidInputError, InvalidRangeError
from walletwise.models.affordability import (
    AffordabilityBreakdown,
    AffordabilityVerdict,
    BudgetImpact,
    ImmediateAffordabilityVerdict,
    TimeBasedInfo,
    WalletBalance,
    WalletSuggestion,
)
from walletwise.models.ledger import (
    BudgetPeriod,
    ConfidenceLevel,
    IncomeSource,
    PlannedExpense,
    Transaction,
    TransactionKind,
    Wallet,
)
from walletwise.models.money import MoneyInput, format_money, money_sum, to_money
from walletwise.projection import advisory
from walletwise.projection.commitments import CommitmentAggregator
from walletwise.projection.recurrence import project_income
from walletwise.services.storage.interface import LedgerStorageInterface

logger = structlog.get_logger(__name__)

SUGGESTED_WALLET_LIMIT = 3

CANNOT_AFFORD_SUGGESTIONS = [
    "Add more funds to your wallets",
    "Consider reducing the expense amount",
    "Review your budget and spending patterns",
]


def _positive(value: MoneyInput) -> Decimal:
    try:
        amount = to_money(value)
    except ValueError as e:
        raise InvalidInputError(f"Amount is not a valid amount: {value!r}") from e
    if amount <= 0:
        raise InvalidInputError("Amount must be positive")
    return amount


def _wallet_balance(wallet: Wallet) -> WalletBalance:
    return WalletBalance(
        id=wallet.id,
        name=wallet.name,
        balance=wallet.balance,
        wallet_type=wallet.wallet_type,
    )


class AffordabilityEngine:
    """
    Read-only affordability projection.

    Usage:
        engine = AffordabilityEngine(storage)
        verdict = await engine.evaluate("user-1", 25000, date(2025, 2, 10))
        if not verdict.can_afford:
            print(verdict.shortfall, verdict.recommendations)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
        activity: Optional[ActivityLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            storage: Ledger storage to read snapshots from
            settings: Projection heuristics (defaults if None)
            activity: Activity logger (a local one is created if None)
            clock: Returns the current local time
        """
        self._storage = storage
        self.settings = settings or LedgerSettings()
        self._activity = activity or ActivityLogger()
        self._clock = clock or self.settings.local_now
        self._commitments = CommitmentAggregator(self.settings.reserve_weight)

    def today(self) -> date:
        return self._clock().date()

    # =========================================================================
    # FUTURE AFFORDABILITY
    # =========================================================================

    async def evaluate(
        self,
        user_id: str,
        target_amount: MoneyInput,
        target_date: date,
        wallet_id: Optional[UUID] = None,
        category: Optional[str] = None,
        exclude_planned_expense_id: Optional[UUID] = None,
    ) -> AffordabilityVerdict:
        """
        Project whether `target_amount` is affordable on `target_date`.

        Args:
            user_id: Owner of the ledger
            target_amount: Amount to afford (> 0)
            target_date: When it is needed (today or later)
            wallet_id: Only count this wallet's balance
            category: Selects category-specific advice (never the verdict)
            exclude_planned_expense_id: Leave this plan out of commitments

        Raises:
            InvalidInputError: Non-positive amount
            InvalidRangeError: Target date before today
        """
        amount = _positive(target_amount)
        today = self.today()
        if target_date < today:
            raise InvalidRangeError(
                f"Target date {target_date.isoformat()} is before today ({today.isoformat()})"
            )

        async with self._storage.snapshot(user_id) as reader:
            wallets = await reader.list_wallets()
            transactions = await reader.list_transactions()
            sources = await reader.list_income_sources()
            planned = await reader.list_planned_expenses()

        verdict = self.project(
            today=today,
            target_amount=amount,
            target_date=target_date,
            wallets=wallets,
            transactions=transactions,
            income_sources=sources,
            planned_expenses=planned,
            wallet_id=wallet_id,
            category=category,
            exclude_planned_expense_id=exclude_planned_expense_id,
        )

        await self._activity.log_affordability_evaluated(
            user_id=user_id,
            target_amount=amount,
            can_afford=verdict.can_afford,
            confidence=verdict.confidence.value,
            net_balance=verdict.breakdown.net_balance,
        )
        return verdict

    def trailing_expenses(self, transactions: list[Transaction], today: date) -> Decimal:
        """Sum of expenses dated within the trailing window ending today."""
        window_start = today - timedelta(days=self.settings.trailing_window_days)
        return money_sum(
            t.amount for t in transactions
            if t.kind == TransactionKind.EXPENSE and window_start < self.local_day(t.date) <= today
        )

    def local_day(self, moment: datetime) -> date:
        """Calendar day of `moment` in local time; naive values are already local."""
        if moment.tzinfo is None:
            return moment.date()
        return moment.astimezone(self.settings.local_timezone).date()

    def project(
        self,
        today: date,
        target_amount: Decimal,
        target_date: date,
        wallets: list[Wallet],
        transactions: list[Transaction],
        income_sources: list[IncomeSource],
        planned_expenses: list[PlannedExpense],
        wallet_id: Optional[UUID] = None,
        category: Optional[str] = None,
        exclude_planned_expense_id: Optional[UUID] = None,
    ) -> AffordabilityVerdict:
        """The projection itself, over already-loaded ledger records."""
        s = self.settings
        risks: list[str] = []

        # 1. Current balance of the matching active wallets
        matching = [
            w for w in wallets
            if w.is_active and (wallet_id is None or w.id == wallet_id)
        ]
        wallet_not_found = wallet_id is not None and not matching
        if wallet_not_found:
            risks.append(advisory.RISK_WALLET_NOT_FOUND)
        current_balance = money_sum(w.balance for w in matching)

        # 2. Income expected after today, up to and including the target date
        active_sources = [src for src in income_sources if src.is_active]
        income_breakdown = []
        for source in active_sources:
            income_breakdown.extend(project_income(source, today, target_date))
        income_breakdown.sort(key=lambda p: (p.pay_date, p.source_name))
        projected_income = money_sum(p.amount for p in income_breakdown)

        # 3.
        gross_balance = current_balance + projected_income

        # 4. Run-rate extrapolation of recent spending
        days_until_target = max(0, (target_date - today).days)
        trailing = self.trailing_expenses(transactions, today)
        routine_expenses = to_money(trailing / s.trailing_window_days * days_until_target)

        # 5. Planned expenses, split around the target date
        commitments = self._commitments.aggregate(
            planned_expenses,
            today=today,
            cutoff=target_date,
            exclude_id=exclude_planned_expense_id,
        )

        # 6-8.
        projected_expenses = routine_expenses + commitments.upcoming
        net_balance = gross_balance - projected_expenses - commitments.later_weighted
        can_afford = net_balance >= target_amount

        # 9. Confidence, only ever lowered
        confidence = ConfidenceLevel.HIGH
        if not active_sources:
            confidence = ConfidenceLevel.LOW
            risks.append(advisory.RISK_NO_INCOME)
        elif len(active_sources) == 1:
            confidence = confidence.downgrade()
            risks.append(advisory.RISK_SINGLE_INCOME)

        if days_until_target == 0:
            risks.append(advisory.RISK_SAME_DAY)
            if commitments.later > 2 * target_amount:
                risks.append(advisory.RISK_FUTURE_CONFLICT)

        if days_until_target > s.medium_horizon_days:
            confidence = confidence.cap(ConfidenceLevel.MEDIUM)
            risks.append(advisory.RISK_MEDIUM_HORIZON)
        if days_until_target > s.low_horizon_days:
            confidence = ConfidenceLevel.LOW
            risks.append(advisory.RISK_LOW_HORIZON)

        if net_balance < target_amount:
            confidence = ConfidenceLevel.LOW
            risks.append(advisory.RISK_SPENDING_PATTERN)

        # 10. Deterministic advice
        recommendations = advisory.build_recommendations(
            can_afford=can_afford,
            target_amount=target_amount,
            net_balance=net_balance,
            days_until_target=days_until_target,
            income_source_count=len(active_sources),
            category=category,
            currency_symbol=s.currency_symbol,
        )

        verdict = AffordabilityVerdict(
            target_amount=target_amount,
            target_date=target_date,
            evaluated_on=today,
            category=category,
            can_afford=can_afford,
            confidence=confidence,
            risk_factors=risks,
            recommendations=recommendations,
            breakdown=AffordabilityBreakdown(
                current_balance=current_balance,
                projected_income=projected_income,
                gross_balance=gross_balance,
                trailing_expenses=trailing,
                routine_expenses=routine_expenses,
                upcoming_commitments=commitments.upcoming,
                later_commitments=commitments.later,
                later_commitments_weighted=commitments.later_weighted,
                projected_expenses=projected_expenses,
                net_balance=net_balance,
                days_until_target=days_until_target,
            ),
            income_breakdown=income_breakdown,
            planned_expense_details=commitments.upcoming_items + commitments.later_items,
            wallet_breakdown=[_wallet_balance(w) for w in matching],
            wallet_not_found=wallet_not_found,
        )
        verdict.analysis = advisory.summarize(verdict, s.currency_symbol)
        return verdict

    # =========================================================================
    # IMMEDIATE AFFORDABILITY
    # =========================================================================

    async def evaluate_immediate(
        self,
        user_id: str,
        amount: MoneyInput,
        wallet_id: Optional[UUID] = None,
        consider_timeframe: bool = True,
    ) -> ImmediateAffordabilityVerdict:
        """
        Check whether `amount` can be paid right now.

        With `wallet_id`, checks that wallet and suggests alternatives
        when it falls short. Without it, checks the total and suggests
        which wallets to pay from.
        """
        value = _positive(amount)
        today = self.today()
        symbol = self.settings.currency_symbol

        async with self._storage.snapshot(user_id) as reader:
            wallets = [w for w in await reader.list_wallets() if w.is_active]
            sources = await reader.list_income_sources()
            periods = await reader.list_budget_periods()

        considered = [w for w in wallets if wallet_id is None or w.id == wallet_id]
        if not considered:
            return ImmediateAffordabilityVerdict(
                amount=value,
                can_afford=False,
                message="No active wallets found",
                suggestions=["Add a wallet to track your expenses"],
            )

        balance = money_sum(w.balance for w in considered)
        time_info = None
        if consider_timeframe:
            time_info = self._time_based_info(balance, today, sources, periods)

        if wallet_id is not None:
            return self._from_wallet(value, considered[0], wallets, time_info, symbol)
        return self._from_any_wallet(value, considered, balance, time_info, symbol)

    def _time_based_info(
        self,
        balance: Decimal,
        today: date,
        sources: list[IncomeSource],
        periods: list[BudgetPeriod],
    ) -> Optional[TimeBasedInfo]:
        """How long the money has to last: to the budget period end, else to the next paycheck."""
        period = next(
            (p for p in sorted(periods, key=lambda p: p.start_date, reverse=True)
             if p.is_active and p.covers(today)),
            None,
        )
        if period is not None:
            days = (period.end_date - today).days
            return TimeBasedInfo(
                basis="budget_period",
                days=days,
                daily_budget=to_money(balance / max(days, 1)),
                end_date=period.end_date,
                message=f"You have {days} days until {period.end_date.isoformat()}",
            )

        upcoming = [s for s in sources if s.is_active and s.next_pay_date >= today]
        if not upcoming:
            return None
        source = min(upcoming, key=lambda s: s.next_pay_date)
        days = (source.next_pay_date - today).days
        return TimeBasedInfo(
            basis="next_paycheck",
            days=days,
            daily_budget=to_money(balance / max(days, 1)),
            end_date=source.next_pay_date,
            next_pay_amount=source.amount,
            income_name=source.name,
            message=(
                f"Next {source.name} payment in {days} days "
                f"({source.next_pay_date.isoformat()})"
            ),
        )

    @staticmethod
    def _attach_budget_impact(
        verdict: ImmediateAffordabilityVerdict,
        time_info: Optional[TimeBasedInfo],
        symbol: str,
    ) -> ImmediateAffordabilityVerdict:
        if time_info is None:
            return verdict

        verdict.time_based_info = time_info
        used = to_money(verdict.amount / max(time_info.days, 1))
        daily = time_info.daily_budget
        verdict.budget_impact = BudgetImpact(
            daily_budget_used=used,
            daily_budget_remaining=daily - used,
            percentage_of_daily_budget=float(used / daily * 100) if daily > 0 else 100.0,
        )
        if verdict.amount > daily:
            verdict.time_warning = (
                f"This expense ({format_money(verdict.amount, symbol)}) exceeds your "
                f"daily budget of {format_money(daily, symbol)}"
            )
        return verdict

    def _from_wallet(
        self,
        amount: Decimal,
        wallet: Wallet,
        all_wallets: list[Wallet],
        time_info: Optional[TimeBasedInfo],
        symbol: str,
    ) -> ImmediateAffordabilityVerdict:
        if wallet.balance >= amount:
            verdict = ImmediateAffordabilityVerdict(
                amount=amount,
                can_afford=True,
                message=f"You can afford this expense from your {wallet.name}",
                total_balance=wallet.balance,
                wallet_id=wallet.id,
                wallet_name=wallet.name,
                wallet_balance=wallet.balance,
                remaining_balance=wallet.balance - amount,
            )
            return self._attach_budget_impact(verdict, time_info, symbol)

        others = sorted(
            (w for w in all_wallets if w.id != wallet.id and w.balance >= amount),
            key=lambda w: w.balance,
            reverse=True,
        )
        total = money_sum(w.balance for w in all_wallets)
        verdict = ImmediateAffordabilityVerdict(
            amount=amount,
            can_afford=False,
            message=f"Insufficient funds in {wallet.name}",
            total_balance=total,
            wallet_id=wallet.id,
            wallet_name=wallet.name,
            wallet_balance=wallet.balance,
            shortfall=amount - wallet.balance,
            time_based_info=time_info,
        )

        if others:
            verdict.can_afford_from_other_wallets = True
            verdict.suggested_wallets = [
                WalletSuggestion(
                    id=w.id,
                    name=w.name,
                    balance=w.balance,
                    remaining_after_expense=w.balance - amount,
                )
                for w in others
            ]
        else:
            verdict.can_afford_from_other_wallets = total >= amount
            verdict.suggestions.append(
                "You can afford this by transferring funds between wallets"
                if total >= amount
                else "You cannot afford this expense with your current total balance"
            )
        return verdict

    def _from_any_wallet(
        self,
        amount: Decimal,
        wallets: list[Wallet],
        total: Decimal,
        time_info: Optional[TimeBasedInfo],
        symbol: str,
    ) -> ImmediateAffordabilityVerdict:
        by_balance = sorted(wallets, key=lambda w: w.balance, reverse=True)

        if total < amount:
            return ImmediateAffordabilityVerdict(
                amount=amount,
                can_afford=False,
                message="Insufficient total funds",
                total_balance=total,
                shortfall=amount - total,
                time_based_info=time_info,
                suggestions=list(CANNOT_AFFORD_SUGGESTIONS),
            )

        able = [w for w in by_balance if w.balance >= amount]
        if not able:
            return ImmediateAffordabilityVerdict(
                amount=amount,
                can_afford=True,
                message=(
                    "You can afford this expense, but you'll need to use multiple "
                    "wallets or transfer funds"
                ),
                total_balance=total,
                requires_multiple_wallets=True,
                wallet_breakdown=[_wallet_balance(w) for w in by_balance],
                time_based_info=time_info,
            )

        verdict = ImmediateAffordabilityVerdict(
            amount=amount,
            can_afford=True,
            message="You can afford this expense",
            total_balance=total,
            suggested_wallets=[
                WalletSuggestion(
                    id=w.id,
                    name=w.name,
                    balance=w.balance,
                    remaining_after_expense=w.balance - amount,
                )
                for w in able[:SUGGESTED_WALLET_LIMIT]
            ],
        )
        return self._attach_budget_impact(verdict, time_info, symbol)
