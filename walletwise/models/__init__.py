"""
Data Models Package

This package contains all Pydantic models used by Walletwise.
All data flowing through the ledger and the projection engine must
conform to these schemas.
"""

from walletwise.models.money import (
    ZERO,
    Money,
    format_money,
    money_sum,
    to_money,
)
from walletwise.models.ledger import (
    ACTIVE_PLAN_STATUSES,
    BudgetPeriod,
    ConfidenceLevel,
    ExpensePriority,
    IncomeFrequency,
    IncomeSource,
    PlannedExpense,
    PlannedExpenseStatus,
    Transaction,
    TransactionKind,
    TransactionUpdate,
    TransferDirection,
    TransferResult,
    TransferSummary,
    Wallet,
    WalletType,
)
from walletwise.models.affordability import (
    AdvisoryText,
    AffordabilityBreakdown,
    AffordabilityVerdict,
    BudgetImpact,
    CommitmentTotals,
    ImmediateAffordabilityVerdict,
    PlannedExpenseDetail,
    ProjectedIncome,
    SweepReport,
    TimeBasedInfo,
    UserRecalculationResult,
    WalletBalance,
    WalletSuggestion,
)
from walletwise.models.activity import (
    EventSeverity,
    LedgerEvent,
    LedgerEventBuilder,
    LedgerEventType,
)

__all__ = [
    # Money
    "ZERO",
    "Money",
    "format_money",
    "money_sum",
    "to_money",
    # Ledger models
    "ACTIVE_PLAN_STATUSES",
    "BudgetPeriod",
    "ConfidenceLevel",
    "ExpensePriority",
    "IncomeFrequency",
    "IncomeSource",
    "PlannedExpense",
    "PlannedExpenseStatus",
    "Transaction",
    "TransactionKind",
    "TransactionUpdate",
    "TransferDirection",
    "TransferResult",
    "TransferSummary",
    "Wallet",
    "WalletType",
    # Projection models
    "AdvisoryText",
    "AffordabilityBreakdown",
    "AffordabilityVerdict",
    "BudgetImpact",
    "CommitmentTotals",
    "ImmediateAffordabilityVerdict",
    "PlannedExpenseDetail",
    "ProjectedIncome",
    "SweepReport",
    "TimeBasedInfo",
    "UserRecalculationResult",
    "WalletBalance",
    "WalletSuggestion",
    # Activity models
    "EventSeverity",
    "LedgerEvent",
    "LedgerEventBuilder",
    "LedgerEventType",
]
