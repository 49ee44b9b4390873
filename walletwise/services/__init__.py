"""Services package."""

from walletwise.services.cache import FinancialSnapshot, InsightCache
from walletwise.services.storage import (
    InMemoryLedgerStorage,
    LedgerReader,
    LedgerStorageInterface,
    LedgerUnitOfWork,
)

__all__ = [
    # Cache
    "FinancialSnapshot",
    "InsightCache",
    # Storage services
    "InMemoryLedgerStorage",
    "LedgerReader",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
]
