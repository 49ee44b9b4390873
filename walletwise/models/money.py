"""
Money Unit

All amounts are `Decimal` values quantized to centavos. Binary floats
never enter the ledger: a float handed in is converted through its
string form first so that 0.1 stays 0.1.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Union

from pydantic import BeforeValidator, PlainSerializer

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyInput = Union[Decimal, int, float, str]


def to_money(value: MoneyInput) -> Decimal:
    """
    Convert a value to a Money amount (2 decimal places, half-up).

    Raises ValueError for anything that is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError("Booleans are not money")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value) if not isinstance(value, Decimal) else value
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Not a valid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def money_sum(amounts) -> Decimal:
    """Sum an iterable of amounts, returning ZERO for an empty one."""
    total = ZERO
    for amount in amounts:
        total += amount
    return to_money(total)


def format_money(amount: Decimal, symbol: str = "₱") -> str:
    """Plain display helper used in advisory text, e.g. ₱3,000.00."""
    amount = to_money(amount)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


# Pydantic field type: validates through to_money and serializes as a string
Money = Annotated[
    Decimal,
    BeforeValidator(to_money),
    PlainSerializer(lambda v: str(v), return_type=str, when_used="json"),
]
