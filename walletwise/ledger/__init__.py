"""
Ledger Package

The LedgerStore owns every balance mutation; the MutationBus tells the
rest of the system that a user's ledger changed.
"""

from walletwise.ledger.events import MutationBus, RecomputeRequest
from walletwise.ledger.store import (
    OPENING_BALANCE_CATEGORY,
    TRANSFER_FEE_CATEGORY,
    TRANSFER_IN_CATEGORY,
    TRANSFER_OUT_CATEGORY,
    LedgerStore,
)

__all__ = [
    "LedgerStore",
    "MutationBus",
    "RecomputeRequest",
    "OPENING_BALANCE_CATEGORY",
    "TRANSFER_FEE_CATEGORY",
    "TRANSFER_IN_CATEGORY",
    "TRANSFER_OUT_CATEGORY",
]
