"""
Core Ledger Models for Walletwise

These models define the records the ledger owns:
1. Wallets and the transactions that move their balances
2. Planned expenses (savings goals) fed by linked expense transactions
3. Income sources and budget periods read by the projection engine

DESIGN DECISION: Models validate shape only. Cross-record rules
(wallet must be active, remaining budget, sufficient funds) belong to
the LedgerStore because they need the rest of the ledger to check.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from walletwise.models.money import ZERO, Money


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class WalletType(str, Enum):
    """Kind of money container a wallet represents."""
    CASH = "CASH"
    BANK = "BANK"
    E_WALLET = "E_WALLET"
    CREDIT_CARD = "CREDIT_CARD"
    SAVINGS = "SAVINGS"
    INVESTMENT = "INVESTMENT"
    OTHER = "OTHER"


class TransactionKind(str, Enum):
    """
    Kind of money movement.

    TRANSFER rows are only ever created in pairs by a transfer.
    """
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class TransferDirection(str, Enum):
    """Which leg of a transfer a TRANSFER row is."""
    OUT = "OUT"
    IN = "IN"


class ExpensePriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    ExpensePriority.LOW: 0,
    ExpensePriority.MEDIUM: 1,
    ExpensePriority.HIGH: 2,
    ExpensePriority.URGENT: 3,
}


class ConfidenceLevel(str, Enum):
    """
    How reliable an affordability projection is.

    Ordered: HIGH > MEDIUM > LOW. Evaluation only ever moves down.
    """
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    def downgrade(self) -> "ConfidenceLevel":
        """One step down; LOW stays LOW."""
        if self is ConfidenceLevel.HIGH:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW

    def cap(self, ceiling: "ConfidenceLevel") -> "ConfidenceLevel":
        """The lower of this level and `ceiling`."""
        order = [ConfidenceLevel.LOW, ConfidenceLevel.MEDIUM, ConfidenceLevel.HIGH]
        return order[min(order.index(self), order.index(ceiling))]


class PlannedExpenseStatus(str, Enum):
    """
    Lifecycle of a planned expense.

    Only PLANNED and SAVED count as active commitments.
    """
    PLANNED = "PLANNED"
    SAVED = "SAVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    POSTPONED = "POSTPONED"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_PLAN_STATUSES


ACTIVE_PLAN_STATUSES = frozenset({PlannedExpenseStatus.PLANNED, PlannedExpenseStatus.SAVED})


class IncomeFrequency(str, Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    BIMONTHLY = "BIMONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUALLY = "ANNUALLY"
    IRREGULAR = "IRREGULAR"


# =============================================================================
# LEDGER RECORDS
# =============================================================================

class Wallet(BaseModel):
    """
    A named money balance.

    CRITICAL: `balance` is only ever changed by the LedgerStore, and
    always equals the signed sum of the wallet's transactions.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    wallet_type: WalletType = Field(default=WalletType.CASH)
    balance: Money = Field(default=ZERO)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Transaction(BaseModel):
    """
    A single money movement against one wallet.

    Amounts are always positive magnitudes; the kind (and, for
    transfers, the direction) decides the sign of the balance effect.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    amount: Money = Field(..., gt=0)
    kind: TransactionKind
    category: str = Field(..., min_length=1, max_length=100)
    note: Optional[str] = Field(default=None, max_length=500)
    date: datetime = Field(default_factory=utc_now)
    wallet_id: UUID

    # Transfer fields
    to_wallet_id: Optional[UUID] = None
    transfer_fee: Optional[Money] = None
    transfer_group_id: Optional[UUID] = None
    transfer_direction: Optional[TransferDirection] = None

    # Savings goal link (EXPENSE only)
    planned_expense_id: Optional[UUID] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_kind_fields(self) -> 'Transaction':
        """Transfer fields belong to transfers, links belong to expenses."""
        if self.kind == TransactionKind.TRANSFER:
            if self.transfer_direction is None or self.transfer_group_id is None:
                raise ValueError("Transfer rows need a direction and a transfer group")
        elif self.transfer_direction is not None:
            raise ValueError("Only transfer rows have a transfer direction")

        if self.planned_expense_id is not None and self.kind != TransactionKind.EXPENSE:
            raise ValueError("Only expenses can be linked to a planned expense")
        return self

    @property
    def signed_effect(self) -> Decimal:
        """Effect of this row on its wallet's balance."""
        if self.kind == TransactionKind.INCOME:
            return self.amount
        if self.kind == TransactionKind.EXPENSE:
            return -self.amount
        if self.transfer_direction == TransferDirection.IN:
            return self.amount
        return -self.amount


class PlannedExpense(BaseModel):
    """
    A savings goal with a target amount and date.

    Progress (`spent_amount`) is maintained by the ledger whenever a
    linked expense is recorded, edited or deleted.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    amount: Money = Field(..., gt=0)
    spent_amount: Money = Field(default=ZERO, ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    note: Optional[str] = Field(default=None, max_length=500)
    target_date: date
    priority: ExpensePriority = ExpensePriority.MEDIUM
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    status: PlannedExpenseStatus = PlannedExpenseStatus.PLANNED
    wallet_id: Optional[UUID] = None
    last_confidence_update: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def remaining_amount(self) -> Decimal:
        return self.amount - self.spent_amount


class IncomeSource(BaseModel):
    """A recurring (or one-off) income used for projection."""
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    amount: Money = Field(..., gt=0)
    frequency: IncomeFrequency
    next_pay_date: date
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True
    wallet_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class BudgetPeriod(BaseModel):
    """A budgeting window; at most one active period per overlapping range."""
    model_config = ConfigDict(validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    total_income: Money = Field(default=ZERO, ge=0)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_dates(self) -> 'BudgetPeriod':
        if self.end_date < self.start_date:
            raise ValueError("Budget period end cannot be before start")
        return self

    def overlaps(self, start: date, end: date) -> bool:
        return self.start_date <= end and self.end_date >= start

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


# =============================================================================
# MUTATION INPUTS AND RESULTS
# =============================================================================

class TransactionUpdate(BaseModel):
    """
    Partial update for a transaction.

    Only fields explicitly provided are applied (see `model_fields_set`),
    so `planned_expense_id=None` given explicitly means "unlink".
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    amount: Optional[Money] = Field(default=None, gt=0)
    kind: Optional[TransactionKind] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    note: Optional[str] = Field(default=None, max_length=500)
    date: Optional[datetime] = None
    wallet_id: Optional[UUID] = None
    planned_expense_id: Optional[UUID] = None

    def provided(self) -> dict:
        """The explicitly provided fields and their values."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class TransferResult(BaseModel):
    """The rows created by one transfer."""

    transfer_group_id: UUID
    outgoing: Transaction
    incoming: Transaction
    fee: Optional[Transaction] = None

    @property
    def rows(self) -> list[Transaction]:
        return [row for row in (self.outgoing, self.incoming, self.fee) if row is not None]


class TransferSummary(BaseModel):
    """A transfer reassembled from its rows for listing."""

    transfer_group_id: UUID
    amount: Money
    transfer_fee: Money = ZERO
    date: datetime
    note: Optional[str] = None
    from_wallet_id: Optional[UUID] = None
    to_wallet_id: Optional[UUID] = None
    transactions: list[Transaction] = Field(default_factory=list)
