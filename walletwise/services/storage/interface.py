"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the in-memory backend for a real database later
2. Keep ledger rules decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
All ledger access goes through a unit of work scoped to one user:

    async with storage.transaction(user_id) as uow:
        wallet = await uow.get_wallet(wallet_id)
        wallet.balance += amount
        await uow.save_wallet(wallet)

CRITICAL: A unit of work is all-or-nothing. If the block raises,
nothing it saved or removed becomes visible to anyone.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Optional
from uuid import UUID

from walletwise.models.ledger import (
    BudgetPeriod,
    IncomeSource,
    PlannedExpense,
    Transaction,
    Wallet,
)


class LedgerReader(ABC):
    """
    Read access to one user's ledger.

    Returned records are copies; mutating them changes nothing until
    they are saved through a LedgerUnitOfWork.
    """

    @property
    @abstractmethod
    def user_id(self) -> str:
        pass

    # Wallets
    @abstractmethod
    async def get_wallet(self, wallet_id: UUID) -> Optional[Wallet]:
        pass

    @abstractmethod
    async def list_wallets(self) -> list[Wallet]:
        pass

    # Transactions
    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def list_transactions(self) -> list[Transaction]:
        """
        All of the user's transactions, in no particular order.

        Callers sort and filter; the backend is not expected to index.
        """
        pass

    # Planned expenses
    @abstractmethod
    async def get_planned_expense(self, expense_id: UUID) -> Optional[PlannedExpense]:
        pass

    @abstractmethod
    async def list_planned_expenses(self) -> list[PlannedExpense]:
        pass

    # Income sources
    @abstractmethod
    async def get_income_source(self, source_id: UUID) -> Optional[IncomeSource]:
        pass

    @abstractmethod
    async def list_income_sources(self) -> list[IncomeSource]:
        pass

    # Budget periods
    @abstractmethod
    async def get_budget_period(self, period_id: UUID) -> Optional[BudgetPeriod]:
        pass

    @abstractmethod
    async def list_budget_periods(self) -> list[BudgetPeriod]:
        pass


class LedgerUnitOfWork(LedgerReader):
    """
    Read/write access to one user's ledger inside a transaction.

    `save_*` inserts or replaces by id, `remove_*` deletes by id.
    Removing a missing id raises NotFoundError.
    """

    @abstractmethod
    async def save_wallet(self, wallet: Wallet) -> None:
        pass

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> None:
        pass

    @abstractmethod
    async def remove_transaction(self, transaction_id: UUID) -> None:
        pass

    @abstractmethod
    async def save_planned_expense(self, expense: PlannedExpense) -> None:
        pass

    @abstractmethod
    async def remove_planned_expense(self, expense_id: UUID) -> None:
        pass

    @abstractmethod
    async def save_income_source(self, source: IncomeSource) -> None:
        pass

    @abstractmethod
    async def remove_income_source(self, source_id: UUID) -> None:
        pass

    @abstractmethod
    async def save_budget_period(self, period: BudgetPeriod) -> None:
        pass

    @abstractmethod
    async def remove_budget_period(self, period_id: UUID) -> None:
        pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage.

    Any storage implementation (in-memory, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    def transaction(self, user_id: str) -> AbstractAsyncContextManager[LedgerUnitOfWork]:
        """
        Open an all-or-nothing unit of work for one user.

        Units of work for the same user are serialized.

        Raises:
            UnavailableError: If the store cannot be reached in time
        """
        pass

    @abstractmethod
    def snapshot(self, user_id: str) -> AbstractAsyncContextManager[LedgerReader]:
        """
        Open a consistent read-only view of one user's ledger.

        Raises:
            UnavailableError: If the store cannot be reached in time
        """
        pass

    @abstractmethod
    async def list_users(self) -> list[str]:
        """Every user with any ledger state."""
        pass

    @abstractmethod
    async def list_users_with_active_plans(self) -> list[str]:
        """Users owning at least one PLANNED or SAVED planned expense."""
        pass
