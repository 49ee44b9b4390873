"""
Storage Services Package

Provides the abstract unit-of-work interface and the in-memory backend.
"""

from walletwise.services.storage.interface import (
    LedgerReader,
    LedgerStorageInterface,
    LedgerUnitOfWork,
)
from walletwise.services.storage.memory import (
    InMemoryLedgerStorage,
    MemoryUnitOfWork,
)

__all__ = [
    # Interfaces
    "LedgerReader",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    # In-memory implementation
    "InMemoryLedgerStorage",
    "MemoryUnitOfWork",
]
