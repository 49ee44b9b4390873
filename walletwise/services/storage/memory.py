"""
In-Memory Ledger Storage

DESIGN DECISION: Each user's ledger is a small set of dicts keyed by
record id. A unit of work:
1. Acquires the user's asyncio.Lock (bounded by a timeout)
2. Works on a deep copy of the user's state
3. Swaps the copy in only if the block exits cleanly

So a failure anywhere inside the block leaves the committed state
exactly as it was, and two concurrent mutations for the same user can
never interleave (no lost updates on a balance).

Snapshot reads copy the committed state under the same lock and
release it immediately, so a projection never sees half a mutation.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional
from uuid import UUID

import structlog

from walletwise.errors import NotFoundError, StorageError, UnavailableError
from walletwise.models.ledger import (
    BudgetPeriod,
    IncomeSource,
    PlannedExpense,
    Transaction,
    Wallet,
)
from walletwise.services.storage.interface import (
    LedgerReader,
    LedgerStorageInterface,
    LedgerUnitOfWork,
)

logger = structlog.get_logger(__name__)


@dataclass
class _UserLedger:
    wallets: dict[UUID, Wallet] = field(default_factory=dict)
    transactions: dict[UUID, Transaction] = field(default_factory=dict)
    planned_expenses: dict[UUID, PlannedExpense] = field(default_factory=dict)
    income_sources: dict[UUID, IncomeSource] = field(default_factory=dict)
    budget_periods: dict[UUID, BudgetPeriod] = field(default_factory=dict)


class MemoryUnitOfWork(LedgerUnitOfWork):
    """Unit of work over a private copy of one user's ledger."""

    def __init__(self, user_id: str, state: _UserLedger, read_only: bool = False):
        self._user_id = user_id
        self._state = state
        self._read_only = read_only

    @property
    def user_id(self) -> str:
        return self._user_id

    def _check_writable(self) -> None:
        if self._read_only:
            raise StorageError("Snapshots are read-only")

    @staticmethod
    def _copy(record):
        return record.model_copy(deep=True) if record is not None else None

    @staticmethod
    def _remove(table: dict, record_id: UUID, label: str) -> None:
        if table.pop(record_id, None) is None:
            raise NotFoundError(f"{label} not found: {record_id}")

    # Wallets
    async def get_wallet(self, wallet_id: UUID) -> Optional[Wallet]:
        return self._copy(self._state.wallets.get(wallet_id))

    async def list_wallets(self) -> list[Wallet]:
        return [self._copy(w) for w in self._state.wallets.values()]

    async def save_wallet(self, wallet: Wallet) -> None:
        self._check_writable()
        self._state.wallets[wallet.id] = self._copy(wallet)

    # Transactions
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        return self._copy(self._state.transactions.get(transaction_id))

    async def list_transactions(self) -> list[Transaction]:
        return [self._copy(t) for t in self._state.transactions.values()]

    async def save_transaction(self, transaction: Transaction) -> None:
        self._check_writable()
        self._state.transactions[transaction.id] = self._copy(transaction)

    async def remove_transaction(self, transaction_id: UUID) -> None:
        self._check_writable()
        self._remove(self._state.transactions, transaction_id, "Transaction")

    # Planned expenses
    async def get_planned_expense(self, expense_id: UUID) -> Optional[PlannedExpense]:
        return self._copy(self._state.planned_expenses.get(expense_id))

    async def list_planned_expenses(self) -> list[PlannedExpense]:
        return [self._copy(p) for p in self._state.planned_expenses.values()]

    async def save_planned_expense(self, expense: PlannedExpense) -> None:
        self._check_writable()
        self._state.planned_expenses[expense.id] = self._copy(expense)

    async def remove_planned_expense(self, expense_id: UUID) -> None:
        self._check_writable()
        self._remove(self._state.planned_expenses, expense_id, "Planned expense")

    # Income sources
    async def get_income_source(self, source_id: UUID) -> Optional[IncomeSource]:
        return self._copy(self._state.income_sources.get(source_id))

    async def list_income_sources(self) -> list[IncomeSource]:
        return [self._copy(s) for s in self._state.income_sources.values()]

    async def save_income_source(self, source: IncomeSource) -> None:
        self._check_writable()
        self._state.income_sources[source.id] = self._copy(source)

    async def remove_income_source(self, source_id: UUID) -> None:
        self._check_writable()
        self._remove(self._state.income_sources, source_id, "Income source")

    # Budget periods
    async def get_budget_period(self, period_id: UUID) -> Optional[BudgetPeriod]:
        return self._copy(self._state.budget_periods.get(period_id))

    async def list_budget_periods(self) -> list[BudgetPeriod]:
        return [self._copy(b) for b in self._state.budget_periods.values()]

    async def save_budget_period(self, period: BudgetPeriod) -> None:
        self._check_writable()
        self._state.budget_periods[period.id] = self._copy(period)

    async def remove_budget_period(self, period_id: UUID) -> None:
        self._check_writable()
        self._remove(self._state.budget_periods, period_id, "Budget period")


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    Process-local ledger storage.

    Usage:
        storage = InMemoryLedgerStorage(timeout_seconds=5)
        async with storage.transaction("user-1") as uow:
            await uow.save_wallet(wallet)
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self._timeout = timeout_seconds
        self._ledgers: dict[str, _UserLedger] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def _acquire(self, user_id: str) -> asyncio.Lock:
        lock = self._lock_for(user_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("store_lock_timeout", user_id=user_id, timeout=self._timeout)
            raise UnavailableError(
                f"Ledger store busy for user {user_id}; gave up after {self._timeout}s"
            )
        return lock

    @asynccontextmanager
    async def transaction(self, user_id: str) -> AsyncIterator[LedgerUnitOfWork]:
        lock = await self._acquire(user_id)
        try:
            working = copy.deepcopy(self._ledgers.get(user_id) or _UserLedger())
            yield MemoryUnitOfWork(user_id, working)
            # Only reached when the block did not raise
            self._ledgers[user_id] = working
        finally:
            lock.release()

    @asynccontextmanager
    async def snapshot(self, user_id: str) -> AsyncIterator[LedgerReader]:
        lock = await self._acquire(user_id)
        try:
            frozen = copy.deepcopy(self._ledgers.get(user_id) or _UserLedger())
        finally:
            lock.release()
        yield MemoryUnitOfWork(user_id, frozen, read_only=True)

    async def list_users(self) -> list[str]:
        return sorted(self._ledgers)

    async def list_users_with_active_plans(self) -> list[str]:
        return sorted(
            user_id
            for user_id, ledger in self._ledgers.items()
            if any(p.status.is_active for p in ledger.planned_expenses.values())
        )
