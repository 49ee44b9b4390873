"""
Deterministic Advisory Text

The plain-language risks and recommendations attached to every
affordability verdict. This text is always available: it is what the
user sees when text generation is switched off, unreachable, or returns
something unusable.

CRITICAL: Nothing here can change a verdict. These functions read the
numbers the engine already decided on.
"""

from decimal import Decimal
from typing import Optional

from walletwise.models.affordability import AffordabilityVerdict
from walletwise.models.money import ZERO, format_money, to_money

# Risk factors
RISK_NO_INCOME = "No income sources configured for projection"
RISK_SINGLE_INCOME = "Single income source creates dependency risk"
RISK_SAME_DAY = "Expense is due today and relies entirely on current funds"
RISK_FUTURE_CONFLICT = "Spending this today may conflict with larger planned expenses later"
RISK_MEDIUM_HORIZON = "Long-term projection (>3 months) has higher uncertainty"
RISK_LOW_HORIZON = "Very long-term projection (>6 months) is highly uncertain"
RISK_SPENDING_PATTERN = "Current spending patterns may prevent affordability"
RISK_WALLET_NOT_FOUND = "Selected wallet was not found or is inactive; its balance counts as zero"

# Recommendations
REC_ADD_INCOME = "Add your income sources for more accurate projections"
REC_DIVERSIFY_INCOME = "Consider diversifying your income sources"
REC_REDUCE_SPENDING = "Consider reducing daily expenses to meet your goal"
REC_AFFORD_TODAY = "You can afford this expense today with your current balance"
REC_SHORTFALL_TODAY = "Consider postponing this expense or moving funds from another wallet"
REC_SMALL_BUFFER = "Consider saving a bit more for unexpected expenses"
REC_LARGE_BUFFER = "You'll have plenty of buffer - this expense looks very affordable"

# Keyed by lower-cased category; add entries here, not branches
CATEGORY_ADVICE = {
    "emergency": "Consider building an emergency fund separate from this expense",
    "investment": "Ensure you have emergency funds before making investments",
    "luxury": "Consider if this aligns with your financial priorities",
}

SMALL_BUFFER_PERCENT = Decimal("20")
LARGE_BUFFER_PERCENT = Decimal("100")
DAYS_PER_MONTH = 30


def category_advice(category: Optional[str]) -> Optional[str]:
    if not category:
        return None
    return CATEGORY_ADVICE.get(category.strip().lower())


def buffer_percentage(target_amount: Decimal, net_balance: Decimal) -> Decimal:
    """How much is left over after the expense, as a percentage of it."""
    return (net_balance - target_amount) / target_amount * 100


def outcome_recommendations(
    can_afford: bool,
    target_amount: Decimal,
    net_balance: Decimal,
    days_until_target: int,
    currency_symbol: str = "₱",
) -> list[str]:
    """Shortfall or buffer guidance for one verdict."""
    recommendations = []

    if not can_afford:
        shortfall = to_money(target_amount - net_balance)
        recommendations.append(
            f"You need an additional {format_money(shortfall, currency_symbol)} to afford this expense"
        )
        if days_until_target == 0:
            recommendations.append(REC_SHORTFALL_TODAY)
        elif days_until_target > DAYS_PER_MONTH:
            monthly = to_money(shortfall / (Decimal(days_until_target) / DAYS_PER_MONTH))
            recommendations.append(
                f"Save an extra {format_money(monthly, currency_symbol)} per month to reach your goal"
            )
        else:
            daily = to_money(shortfall / days_until_target)
            recommendations.append(
                f"Save an extra {format_money(daily, currency_symbol)} per day to reach your goal"
            )
        return recommendations

    if days_until_target == 0:
        recommendations.append(REC_AFFORD_TODAY)

    buffer = buffer_percentage(target_amount, net_balance)
    if buffer >= LARGE_BUFFER_PERCENT:
        recommendations.append(REC_LARGE_BUFFER)
    elif buffer < SMALL_BUFFER_PERCENT:
        recommendations.append(REC_SMALL_BUFFER)
    return recommendations


def build_recommendations(
    can_afford: bool,
    target_amount: Decimal,
    net_balance: Decimal,
    days_until_target: int,
    income_source_count: int,
    category: Optional[str] = None,
    currency_symbol: str = "₱",
) -> list[str]:
    """
    The full ordered recommendation list.

    Order: income setup, spending, shortfall/buffer, category.
    """
    recommendations = []

    if income_source_count == 0:
        recommendations.append(REC_ADD_INCOME)
    elif income_source_count == 1:
        recommendations.append(REC_DIVERSIFY_INCOME)

    if net_balance < target_amount:
        recommendations.append(REC_REDUCE_SPENDING)

    recommendations.extend(outcome_recommendations(
        can_afford, target_amount, net_balance, days_until_target, currency_symbol
    ))

    advice = category_advice(category)
    if advice:
        recommendations.append(advice)
    return recommendations


def summarize(verdict: AffordabilityVerdict, currency_symbol: str = "₱") -> str:
    """One-paragraph analysis of a verdict, built from its numbers only."""
    b = verdict.breakdown
    amount = format_money(verdict.target_amount, currency_symbol)
    net = format_money(b.net_balance, currency_symbol)

    if b.days_until_target == 0:
        when = "today"
    else:
        when = f"by {verdict.target_date.isoformat()} ({b.days_until_target} days away)"

    if verdict.can_afford:
        opening = f"You can afford {amount} {when}."
    else:
        shortfall = format_money(max(ZERO, verdict.target_amount - b.net_balance), currency_symbol)
        opening = f"You are projected to be {shortfall} short of {amount} {when}."

    return (
        f"{opening} Starting from {format_money(b.current_balance, currency_symbol)} "
        f"with {format_money(b.projected_income, currency_symbol)} of expected income, "
        f"{format_money(b.routine_expenses, currency_symbol)} of routine spending and "
        f"{format_money(b.upcoming_commitments + b.later_commitments_weighted, currency_symbol)} "
        f"reserved for planned expenses, the projected balance is {net}. "
        f"Confidence: {verdict.confidence.value}."
    )
