"""
Ledger Store

The only component allowed to change a wallet balance or a planned
expense's spent amount.

DESIGN DECISION: Every operation runs inside one storage unit of work.
Balance changes, transaction rows and planned-expense progress commit
together or not at all, so at every observable point:

    wallet.balance == sum(t.signed_effect for t in wallet's transactions)

Edits and deletions never recompute a balance from scratch. They apply
the exact inverse of the prior effect and then the new effect, which
keeps Decimal arithmetic exact under any number of edits.

After a unit of work commits, a RecomputeRequest is published on the
mutation bus. Subscribers cannot roll back a committed mutation.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator, Callable, Optional
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError

from walletwise.audit import ActivityLogger
from walletwise.errors import (
    InsufficientFundsError,
    InvalidInputError,
    InvalidLinkError,
    NotFoundError,
    WalletwiseError,
)
from walletwise.ledger.events import MutationBus
from walletwise.models.ledger import (
    BudgetPeriod,
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
    utc_now,
)
from walletwise.models.money import ZERO, MoneyInput, to_money
from walletwise.services.storage.interface import (
    LedgerStorageInterface,
    LedgerUnitOfWork,
)

logger = structlog.get_logger(__name__)

TRANSFER_OUT_CATEGORY = "Transfer Out"
TRANSFER_IN_CATEGORY = "Transfer In"
TRANSFER_FEE_CATEGORY = "Transfer Fee"
OPENING_BALANCE_CATEGORY = "Opening Balance"

_REQUIRED_TRANSACTION_FIELDS = ("amount", "kind", "category", "date", "wallet_id")
_PLANNED_EXPENSE_FIELDS = frozenset({
    "title", "amount", "category", "note", "target_date",
    "priority", "status", "wallet_id",
})
_INCOME_SOURCE_FIELDS = frozenset({
    "name", "amount", "frequency", "next_pay_date",
    "description", "is_active", "wallet_id",
})
_BUDGET_PERIOD_FIELDS = frozenset({"start_date", "end_date", "total_income", "is_active"})


def _amount(value: MoneyInput, label: str = "Amount", allow_zero: bool = False) -> Decimal:
    """Parse a money input, rejecting malformed and non-positive values."""
    try:
        amount = to_money(value)
    except ValueError as e:
        raise InvalidInputError(f"{label} is not a valid amount: {value!r}") from e
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidInputError(f"{label} must be positive")
    return amount


def _linked_plan(row: Transaction) -> Optional[UUID]:
    """The planned expense a row spends toward, if any."""
    if row.kind == TransactionKind.EXPENSE:
        return row.planned_expense_id
    return None


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else first.get("msg", str(error))


def _rebuild(record, changes: dict, allowed: frozenset):
    """Copy of `record` with `changes` applied and fully revalidated."""
    unknown = set(changes) - allowed
    if unknown:
        raise InvalidInputError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    data = record.model_dump()
    data.update(changes)
    data["updated_at"] = utc_now()
    return type(record).model_validate(data)


class LedgerStore:
    """
    Atomic ledger mutations and reads for wallets, transactions,
    planned expenses, income sources and budget periods.

    Usage:
        store = LedgerStore(storage, bus)
        wallet = await store.create_wallet("user-1", "Cash", opening_balance=2000)
        await store.record_transaction("user-1", TransactionKind.EXPENSE, 150,
                                       wallet.id, "Food")
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        bus: Optional[MutationBus] = None,
        activity: Optional[ActivityLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            storage: Unit-of-work storage backend
            bus: Mutation bus notified after every commit
            activity: Activity logger (a local one is created if None)
            clock: Returns the current local time (defaults to UTC now)
        """
        self._storage = storage
        self._bus = bus or MutationBus()
        self._activity = activity or ActivityLogger()
        self._clock = clock or utc_now

    @property
    def bus(self) -> MutationBus:
        return self._bus

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().date()

    # =========================================================================
    # UNIT OF WORK PLUMBING
    # =========================================================================

    @asynccontextmanager
    async def _unit_of_work(
        self,
        user_id: str,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> AsyncIterator[LedgerUnitOfWork]:
        """
        Storage transaction that reports rejected mutations.

        Model validation failures surface as InvalidInputError.
        """
        try:
            async with self._storage.transaction(user_id) as uow:
                yield uow
        except (WalletwiseError, ValidationError) as e:
            error = e if isinstance(e, WalletwiseError) else InvalidInputError(_validation_message(e))
            await self._activity.log_mutation_rejected(
                user_id=user_id,
                operation=operation,
                error_code=error.code,
                error_message=error.message,
                correlation_id=correlation_id,
            )
            if error is e:
                raise
            raise error from e

    async def _publish(self, user_id: str, reason: str, entity_id: Optional[UUID] = None) -> None:
        await self._bus.publish(user_id, reason, entity_id)

    @staticmethod
    async def _active_wallet(uow: LedgerUnitOfWork, wallet_id: UUID) -> Wallet:
        wallet = await uow.get_wallet(wallet_id)
        if wallet is None or not wallet.is_active:
            raise NotFoundError(f"Wallet not found or inactive: {wallet_id}")
        return wallet

    @staticmethod
    async def _adjust_balance(uow: LedgerUnitOfWork, wallet_id: UUID, delta: Decimal) -> Wallet:
        """
        Add `delta` to a wallet balance.

        Reversals must reach deactivated wallets too, so activity is not
        checked here.
        """
        wallet = await uow.get_wallet(wallet_id)
        if wallet is None:
            raise NotFoundError(f"Wallet not found: {wallet_id}")
        wallet.balance = wallet.balance + delta
        wallet.updated_at = utc_now()
        await uow.save_wallet(wallet)
        return wallet

    @staticmethod
    async def _add_spending(uow: LedgerUnitOfWork, expense_id: UUID, amount: Decimal) -> PlannedExpense:
        """Validate a planned-expense link and count `amount` toward it."""
        expense = await uow.get_planned_expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Planned expense not found: {expense_id}")
        if not expense.status.is_active:
            raise InvalidLinkError(
                f"Planned expense '{expense.title}' is {expense.status.value} and cannot take spending"
            )
        if expense.remaining_amount < amount:
            raise InvalidLinkError(
                f"Amount {amount} exceeds the remaining budget {expense.remaining_amount} "
                f"of planned expense '{expense.title}'"
            )

        expense.spent_amount = expense.spent_amount + amount
        if expense.spent_amount >= expense.amount:
            expense.status = PlannedExpenseStatus.COMPLETED
        expense.updated_at = utc_now()
        await uow.save_planned_expense(expense)
        return expense

    @staticmethod
    async def _remove_spending(uow: LedgerUnitOfWork, expense_id: UUID, amount: Decimal) -> None:
        """Reverse spending on a planned expense (floored at zero)."""
        expense = await uow.get_planned_expense(expense_id)
        if expense is None:
            # Deleting a planned expense clears its links, so this only
            # happens for a link to a record that no longer exists.
            logger.warning("planned_expense_link_dangling", planned_expense_id=str(expense_id))
            return

        expense.spent_amount = max(ZERO, expense.spent_amount - amount)
        if expense.spent_amount < expense.amount:
            expense.status = PlannedExpenseStatus.PLANNED
        expense.updated_at = utc_now()
        await uow.save_planned_expense(expense)

    async def _reverse_row(self, uow: LedgerUnitOfWork, row: Transaction, spending: bool = True) -> None:
        await self._adjust_balance(uow, row.wallet_id, -row.signed_effect)
        if spending and _linked_plan(row) is not None:
            await self._remove_spending(uow, row.planned_expense_id, row.amount)

    async def _move_spending(self, uow: LedgerUnitOfWork, old: Transaction, new: Transaction) -> None:
        """
        Move a row's planned-expense spending from its old to its new values.

        A row that stays on the same plan only applies the difference, so
        an unchanged link never touches the plan and a closed plan only
        rejects added spending.
        """
        old_plan, new_plan = _linked_plan(old), _linked_plan(new)
        if old_plan is not None and old_plan == new_plan:
            delta = new.amount - old.amount
            if delta > 0:
                await self._add_spending(uow, new_plan, delta)
            elif delta < 0:
                await self._remove_spending(uow, old_plan, -delta)
            return

        if old_plan is not None:
            await self._remove_spending(uow, old_plan, old.amount)
        if new_plan is not None:
            await self._add_spending(uow, new_plan, new.amount)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def record_transaction(
        self,
        user_id: str,
        kind: TransactionKind,
        amount: MoneyInput,
        wallet_id: UUID,
        category: str,
        date: Optional[datetime] = None,
        note: Optional[str] = None,
        planned_expense_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record an income or expense against one wallet.

        Raises:
            InvalidInputError: Non-positive amount or kind TRANSFER
            NotFoundError: Wallet or linked planned expense missing
            InvalidLinkError: Link on a non-expense, inactive plan, or
                amount above the plan's remaining budget
        """
        async with self._unit_of_work(user_id, "record_transaction", correlation_id) as uow:
            try:
                kind = TransactionKind(kind)
            except ValueError as e:
                raise InvalidInputError(f"Unknown transaction kind: {kind!r}") from e
            if kind == TransactionKind.TRANSFER:
                raise InvalidInputError("Use record_transfer to move money between wallets")
            value = _amount(amount)

            await self._active_wallet(uow, wallet_id)
            if planned_expense_id is not None and kind != TransactionKind.EXPENSE:
                raise InvalidLinkError("Only expenses can be linked to a planned expense")

            transaction = Transaction(
                user_id=user_id,
                amount=value,
                kind=kind,
                category=category,
                note=note,
                date=date or self.now(),
                wallet_id=wallet_id,
                planned_expense_id=planned_expense_id,
            )

            await self._adjust_balance(uow, wallet_id, transaction.signed_effect)
            if planned_expense_id is not None:
                await self._add_spending(uow, planned_expense_id, value)
            await uow.save_transaction(transaction)

        await self._activity.log_transaction_recorded(
            user_id=user_id,
            transaction_id=transaction.id,
            kind=kind.value,
            amount=value,
            wallet_id=wallet_id,
            planned_expense_id=planned_expense_id,
            correlation_id=correlation_id,
        )
        await self._publish(user_id, "transaction_recorded", transaction.id)
        return transaction

    async def record_transfer(
        self,
        user_id: str,
        amount: MoneyInput,
        from_wallet_id: UUID,
        to_wallet_id: UUID,
        fee: Optional[MoneyInput] = None,
        date: Optional[datetime] = None,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TransferResult:
        """
        Move money between two of the user's wallets.

        Creates an outgoing row, an incoming row and, for a positive fee,
        an EXPENSE row on the source wallet. All share one transfer group.

        Raises:
            InvalidInputError: Non-positive amount, negative fee, same wallet
            NotFoundError: Either wallet missing or inactive
            InsufficientFundsError: Source balance below amount + fee
        """
        async with self._unit_of_work(user_id, "record_transfer", correlation_id) as uow:
            value = _amount(amount)
            fee_value = _amount(fee, "Transfer fee", allow_zero=True) if fee is not None else ZERO
            if from_wallet_id == to_wallet_id:
                raise InvalidInputError("Source and destination wallets must be different")

            source = await self._active_wallet(uow, from_wallet_id)
            destination = await self._active_wallet(uow, to_wallet_id)

            required = value + fee_value
            if source.balance < required:
                raise InsufficientFundsError(
                    f"Insufficient balance in '{source.name}': {source.balance} available, "
                    f"{required} required",
                    available=source.balance,
                    required=required,
                )

            group_id = uuid4()
            when = date or self.now()
            suffix = f" - {note}" if note else ""

            outgoing = Transaction(
                user_id=user_id,
                amount=value,
                kind=TransactionKind.TRANSFER,
                category=TRANSFER_OUT_CATEGORY,
                note=f"Transfer to {destination.name}{suffix}",
                date=when,
                wallet_id=source.id,
                to_wallet_id=destination.id,
                transfer_fee=fee_value if fee_value > 0 else None,
                transfer_group_id=group_id,
                transfer_direction=TransferDirection.OUT,
            )
            incoming = Transaction(
                user_id=user_id,
                amount=value,
                kind=TransactionKind.TRANSFER,
                category=TRANSFER_IN_CATEGORY,
                note=f"Transfer from {source.name}{suffix}",
                date=when,
                wallet_id=destination.id,
                to_wallet_id=source.id,
                transfer_group_id=group_id,
                transfer_direction=TransferDirection.IN,
            )
            fee_row = None
            if fee_value > 0:
                fee_row = Transaction(
                    user_id=user_id,
                    amount=fee_value,
                    kind=TransactionKind.EXPENSE,
                    category=TRANSFER_FEE_CATEGORY,
                    note=f"Transfer fee for {source.name} to {destination.name}",
                    date=when,
                    wallet_id=source.id,
                    transfer_group_id=group_id,
                )

            result = TransferResult(
                transfer_group_id=group_id,
                outgoing=outgoing,
                incoming=incoming,
                fee=fee_row,
            )
            for row in result.rows:
                await self._adjust_balance(uow, row.wallet_id, row.signed_effect)
                await uow.save_transaction(row)

        await self._activity.log_transfer_recorded(
            user_id=user_id,
            transfer_group_id=group_id,
            amount=value,
            fee=fee_value,
            from_wallet_id=from_wallet_id,
            to_wallet_id=to_wallet_id,
            correlation_id=correlation_id,
        )
        await self._publish(user_id, "transfer_recorded", group_id)
        return result

    async def edit_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
        update: TransactionUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Edit a transaction by reversing its effect and applying the new one.

        Only fields explicitly set on `update` are applied. A row that is
        no longer an EXPENSE loses its planned-expense link.

        Raises:
            NotFoundError: Transaction, new wallet or linked plan missing
            InvalidInputError: Kind change to/from TRANSFER, or a change
                other than the note on a transfer row
            InvalidLinkError: New link violates the link rules
        """
        async with self._unit_of_work(user_id, "edit_transaction", correlation_id) as uow:
            existing = await uow.get_transaction(transaction_id)
            if existing is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")

            changes = update.provided()
            changed = {
                name: value for name, value in changes.items()
                if getattr(existing, name) != value
            }

            if existing.transfer_group_id is not None:
                structural = set(changed) - {"note"}
                if structural:
                    raise InvalidInputError(
                        "Transfer rows only accept note changes; delete and re-create "
                        f"the transfer to change {', '.join(sorted(structural))}"
                    )
                edited = existing.model_copy(update={"note": changes.get("note", existing.note)})
                edited.updated_at = utc_now()
                await uow.save_transaction(edited)
            else:
                if changed.get("kind") == TransactionKind.TRANSFER:
                    raise InvalidInputError("Transactions cannot be converted into transfers")
                for name in _REQUIRED_TRANSACTION_FIELDS:
                    if name in changes and changes[name] is None:
                        raise InvalidInputError(f"Transaction {name} cannot be cleared")

                data = existing.model_dump()
                data.update(changes)
                if data["kind"] != TransactionKind.EXPENSE:
                    data["planned_expense_id"] = None
                data["updated_at"] = utc_now()
                edited = Transaction.model_validate(data)

                if edited.wallet_id != existing.wallet_id:
                    await self._active_wallet(uow, edited.wallet_id)

                await self._reverse_row(uow, existing, spending=False)
                await self._adjust_balance(uow, edited.wallet_id, edited.signed_effect)
                await self._move_spending(uow, existing, edited)
                await uow.save_transaction(edited)

        await self._activity.log_transaction_edited(
            user_id=user_id,
            transaction_id=transaction_id,
            changed_fields=list(changed),
            correlation_id=correlation_id,
        )
        await self._publish(user_id, "transaction_edited", transaction_id)
        return edited

    async def delete_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> list[UUID]:
        """
        Reverse and remove a transaction.

        Deleting any row of a transfer removes the whole transfer
        (both legs and the fee). Returns the ids of removed rows.
        """
        async with self._unit_of_work(user_id, "delete_transaction", correlation_id) as uow:
            existing = await uow.get_transaction(transaction_id)
            if existing is None:
                raise NotFoundError(f"Transaction not found: {transaction_id}")

            if existing.transfer_group_id is not None:
                rows = [
                    row for row in await uow.list_transactions()
                    if row.transfer_group_id == existing.transfer_group_id
                ]
            else:
                rows = [existing]

            for row in rows:
                await self._reverse_row(uow, row)
                await uow.remove_transaction(row.id)
            removed = [row.id for row in rows]

        await self._activity.log_transaction_deleted(
            user_id=user_id,
            transaction_id=transaction_id,
            removed_ids=removed,
            correlation_id=correlation_id,
        )
        await self._publish(user_id, "transaction_deleted", transaction_id)
        return removed

    async def get_transaction(self, user_id: str, transaction_id: UUID) -> Transaction:
        async with self._storage.snapshot(user_id) as reader:
            transaction = await reader.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return transaction

    async def list_transactions(
        self,
        user_id: str,
        wallet_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        """Transactions newest first, optionally for one wallet."""
        async with self._storage.snapshot(user_id) as reader:
            rows = await reader.list_transactions()
        if wallet_id is not None:
            rows = [row for row in rows if row.wallet_id == wallet_id]
        rows.sort(key=lambda row: (row.date, row.created_at), reverse=True)
        return rows[offset:offset + limit]

    async def list_transfers(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[TransferSummary]:
        """Transfers reassembled from their rows, newest first."""
        async with self._storage.snapshot(user_id) as reader:
            rows = await reader.list_transactions()

        groups: dict[UUID, list[Transaction]] = {}
        for row in rows:
            if row.transfer_group_id is not None:
                groups.setdefault(row.transfer_group_id, []).append(row)

        summaries = []
        for group_id, group_rows in groups.items():
            outgoing = next(
                (r for r in group_rows if r.transfer_direction == TransferDirection.OUT),
                None,
            )
            if outgoing is None:
                continue
            fee_row = next((r for r in group_rows if r.kind == TransactionKind.EXPENSE), None)
            summaries.append(TransferSummary(
                transfer_group_id=group_id,
                amount=outgoing.amount,
                transfer_fee=fee_row.amount if fee_row else ZERO,
                date=outgoing.date,
                note=outgoing.note,
                from_wallet_id=outgoing.wallet_id,
                to_wallet_id=outgoing.to_wallet_id,
                transactions=sorted(group_rows, key=lambda r: r.created_at),
            ))

        summaries.sort(key=lambda s: s.date, reverse=True)
        return summaries[offset:offset + limit]

    # =========================================================================
    # WALLETS
    # =========================================================================

    async def create_wallet(
        self,
        user_id: str,
        name: str,
        wallet_type: WalletType = WalletType.CASH,
        opening_balance: MoneyInput = 0,
    ) -> Wallet:
        """
        Create a wallet.

        A non-zero opening balance is recorded as an "Opening Balance"
        income so the wallet's balance always matches its transactions.
        """
        async with self._unit_of_work(user_id, "create_wallet") as uow:
            opening = _amount(opening_balance, "Opening balance", allow_zero=True)
            wallet = Wallet(user_id=user_id, name=name, wallet_type=wallet_type)
            await uow.save_wallet(wallet)

            if opening > 0:
                opening_row = Transaction(
                    user_id=user_id,
                    amount=opening,
                    kind=TransactionKind.INCOME,
                    category=OPENING_BALANCE_CATEGORY,
                    note=f"Opening balance for {wallet.name}",
                    date=self.now(),
                    wallet_id=wallet.id,
                )
                wallet = await self._adjust_balance(uow, wallet.id, opening_row.signed_effect)
                await uow.save_transaction(opening_row)

        await self._activity.log_wallet_created(user_id, wallet.id, wallet.name, opening)
        await self._publish(user_id, "wallet_created", wallet.id)
        return wallet

    async def update_wallet(
        self,
        user_id: str,
        wallet_id: UUID,
        name: Optional[str] = None,
        wallet_type: Optional[WalletType] = None,
        is_active: Optional[bool] = None,
    ) -> Wallet:
        """Rename, retype, deactivate or reactivate a wallet. Balance is not editable."""
        changes = {
            key: value for key, value in
            (("name", name), ("wallet_type", wallet_type), ("is_active", is_active))
            if value is not None
        }
        async with self._unit_of_work(user_id, "update_wallet") as uow:
            wallet = await uow.get_wallet(wallet_id)
            if wallet is None:
                raise NotFoundError(f"Wallet not found: {wallet_id}")
            wallet = _rebuild(wallet, changes, frozenset({"name", "wallet_type", "is_active"}))
            await uow.save_wallet(wallet)

        action = "deactivated" if is_active is False else "updated"
        await self._activity.log_record_changed(user_id, "wallet", wallet_id, action)
        await self._publish(user_id, f"wallet_{action}", wallet_id)
        return wallet

    async def deactivate_wallet(self, user_id: str, wallet_id: UUID) -> Wallet:
        """Soft-delete a wallet. Its transactions stay in the ledger."""
        return await self.update_wallet(user_id, wallet_id, is_active=False)

    async def get_wallet(self, user_id: str, wallet_id: UUID) -> Wallet:
        async with self._storage.snapshot(user_id) as reader:
            wallet = await reader.get_wallet(wallet_id)
        if wallet is None:
            raise NotFoundError(f"Wallet not found: {wallet_id}")
        return wallet

    async def list_wallets(self, user_id: str, include_inactive: bool = False) -> list[Wallet]:
        async with self._storage.snapshot(user_id) as reader:
            wallets = await reader.list_wallets()
        if not include_inactive:
            wallets = [w for w in wallets if w.is_active]
        return sorted(wallets, key=lambda w: w.created_at)

    # =========================================================================
    # PLANNED EXPENSES
    # =========================================================================

    async def create_planned_expense(
        self,
        user_id: str,
        title: str,
        amount: MoneyInput,
        target_date: date,
        category: str,
        priority: ExpensePriority = ExpensePriority.MEDIUM,
        note: Optional[str] = None,
        wallet_id: Optional[UUID] = None,
    ) -> PlannedExpense:
        async with self._unit_of_work(user_id, "create_planned_expense") as uow:
            if wallet_id is not None:
                await self._active_wallet(uow, wallet_id)
            expense = PlannedExpense(
                user_id=user_id,
                title=title,
                amount=_amount(amount),
                target_date=target_date,
                category=category,
                priority=priority,
                note=note,
                wallet_id=wallet_id,
            )
            await uow.save_planned_expense(expense)

        await self._activity.log_record_changed(user_id, "planned_expense", expense.id, "created")
        await self._publish(user_id, "planned_expense_created", expense.id)
        return expense

    async def update_planned_expense(self, user_id: str, expense_id: UUID, **changes) -> PlannedExpense:
        """
        Update a planned expense.

        Accepted fields: title, amount, category, note, target_date,
        priority, status, wallet_id. spent_amount is not editable.

        Raises:
            InvalidInputError: Amount below what is already spent
            NotFoundError: Expense or preferred wallet missing
        """
        async with self._unit_of_work(user_id, "update_planned_expense") as uow:
            expense = await uow.get_planned_expense(expense_id)
            if expense is None:
                raise NotFoundError(f"Planned expense not found: {expense_id}")

            if "amount" in changes:
                changes["amount"] = _amount(changes["amount"])
                if changes["amount"] < expense.spent_amount:
                    raise InvalidInputError(
                        f"Amount cannot be less than what is already spent ({expense.spent_amount})"
                    )
            if changes.get("wallet_id") is not None and changes["wallet_id"] != expense.wallet_id:
                await self._active_wallet(uow, changes["wallet_id"])

            updated = _rebuild(expense, changes, _PLANNED_EXPENSE_FIELDS)
            if "status" not in changes:
                if updated.spent_amount >= updated.amount and updated.status.is_active:
                    updated.status = PlannedExpenseStatus.COMPLETED
                elif updated.status == PlannedExpenseStatus.COMPLETED and updated.spent_amount < updated.amount:
                    updated.status = PlannedExpenseStatus.PLANNED
            await uow.save_planned_expense(updated)

        await self._activity.log_record_changed(user_id, "planned_expense", expense_id, "updated")
        await self._publish(user_id, "planned_expense_updated", expense_id)
        return updated

    async def delete_planned_expense(self, user_id: str, expense_id: UUID) -> list[UUID]:
        """
        Delete a planned expense and unlink the transactions that fed it.

        Returns the ids of the unlinked transactions.
        """
        async with self._unit_of_work(user_id, "delete_planned_expense") as uow:
            await uow.remove_planned_expense(expense_id)
            unlinked = []
            for row in await uow.list_transactions():
                if row.planned_expense_id == expense_id:
                    row.planned_expense_id = None
                    row.updated_at = utc_now()
                    await uow.save_transaction(row)
                    unlinked.append(row.id)

        await self._activity.log_record_changed(user_id, "planned_expense", expense_id, "deleted")
        await self._publish(user_id, "planned_expense_deleted", expense_id)
        return unlinked

    async def get_planned_expense(self, user_id: str, expense_id: UUID) -> PlannedExpense:
        async with self._storage.snapshot(user_id) as reader:
            expense = await reader.get_planned_expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Planned expense not found: {expense_id}")
        return expense

    async def list_planned_expenses(
        self,
        user_id: str,
        status: Optional[PlannedExpenseStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[PlannedExpense]:
        """Planned expenses by target date, then highest priority first."""
        async with self._storage.snapshot(user_id) as reader:
            expenses = await reader.list_planned_expenses()

        if status is not None:
            expenses = [e for e in expenses if e.status == status]
        if date_from is not None:
            expenses = [e for e in expenses if e.target_date >= date_from]
        if date_to is not None:
            expenses = [e for e in expenses if e.target_date <= date_to]
        return sorted(expenses, key=lambda e: (e.target_date, -e.priority.rank))

    async def list_available_planned_expenses(
        self,
        user_id: str,
        category: Optional[str] = None,
    ) -> list[PlannedExpense]:
        """Plans an expense can still be linked to: highest priority, then soonest."""
        async with self._storage.snapshot(user_id) as reader:
            expenses = await reader.list_planned_expenses()

        available = [
            e for e in expenses
            if e.status.is_active and e.remaining_amount > 0
            and (category is None or e.category.lower() == category.lower())
        ]
        return sorted(available, key=lambda e: (-e.priority.rank, e.target_date))

    # =========================================================================
    # INCOME SOURCES
    # =========================================================================

    async def create_income_source(
        self,
        user_id: str,
        name: str,
        amount: MoneyInput,
        frequency: IncomeFrequency,
        next_pay_date: date,
        description: Optional[str] = None,
        wallet_id: Optional[UUID] = None,
    ) -> IncomeSource:
        async with self._unit_of_work(user_id, "create_income_source") as uow:
            if wallet_id is not None:
                await self._active_wallet(uow, wallet_id)
            source = IncomeSource(
                user_id=user_id,
                name=name,
                amount=_amount(amount),
                frequency=frequency,
                next_pay_date=next_pay_date,
                description=description,
                wallet_id=wallet_id,
            )
            await uow.save_income_source(source)

        await self._activity.log_record_changed(user_id, "income_source", source.id, "created")
        await self._publish(user_id, "income_source_created", source.id)
        return source

    async def update_income_source(self, user_id: str, source_id: UUID, **changes) -> IncomeSource:
        async with self._unit_of_work(user_id, "update_income_source") as uow:
            source = await uow.get_income_source(source_id)
            if source is None:
                raise NotFoundError(f"Income source not found: {source_id}")
            if "amount" in changes:
                changes["amount"] = _amount(changes["amount"])
            if changes.get("wallet_id") is not None:
                await self._active_wallet(uow, changes["wallet_id"])
            source = _rebuild(source, changes, _INCOME_SOURCE_FIELDS)
            await uow.save_income_source(source)

        await self._activity.log_record_changed(user_id, "income_source", source_id, "updated")
        await self._publish(user_id, "income_source_updated", source_id)
        return source

    async def delete_income_source(self, user_id: str, source_id: UUID) -> None:
        async with self._unit_of_work(user_id, "delete_income_source") as uow:
            await uow.remove_income_source(source_id)

        await self._activity.log_record_changed(user_id, "income_source", source_id, "deleted")
        await self._publish(user_id, "income_source_deleted", source_id)

    async def list_income_sources(self, user_id: str, include_inactive: bool = False) -> list[IncomeSource]:
        """Income sources by next pay date."""
        async with self._storage.snapshot(user_id) as reader:
            sources = await reader.list_income_sources()
        if not include_inactive:
            sources = [s for s in sources if s.is_active]
        return sorted(sources, key=lambda s: s.next_pay_date)

    # =========================================================================
    # BUDGET PERIODS
    # =========================================================================

    @staticmethod
    async def _deactivate_overlapping(uow: LedgerUnitOfWork, period: BudgetPeriod) -> None:
        for other in await uow.list_budget_periods():
            if other.id != period.id and other.is_active and other.overlaps(period.start_date, period.end_date):
                other.is_active = False
                other.updated_at = utc_now()
                await uow.save_budget_period(other)

    async def create_budget_period(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
        total_income: MoneyInput = 0,
    ) -> BudgetPeriod:
        """Create an active budget period, deactivating any overlapping ones."""
        async with self._unit_of_work(user_id, "create_budget_period") as uow:
            period = BudgetPeriod(
                user_id=user_id,
                start_date=start_date,
                end_date=end_date,
                total_income=_amount(total_income, "Total income", allow_zero=True),
            )
            await self._deactivate_overlapping(uow, period)
            await uow.save_budget_period(period)

        await self._activity.log_record_changed(user_id, "budget_period", period.id, "created")
        await self._publish(user_id, "budget_period_created", period.id)
        return period

    async def update_budget_period(self, user_id: str, period_id: UUID, **changes) -> BudgetPeriod:
        async with self._unit_of_work(user_id, "update_budget_period") as uow:
            period = await uow.get_budget_period(period_id)
            if period is None:
                raise NotFoundError(f"Budget period not found: {period_id}")
            if "total_income" in changes:
                changes["total_income"] = _amount(changes["total_income"], "Total income", allow_zero=True)
            period = _rebuild(period, changes, _BUDGET_PERIOD_FIELDS)
            if period.is_active:
                await self._deactivate_overlapping(uow, period)
            await uow.save_budget_period(period)

        await self._activity.log_record_changed(user_id, "budget_period", period_id, "updated")
        await self._publish(user_id, "budget_period_updated", period_id)
        return period

    async def delete_budget_period(self, user_id: str, period_id: UUID) -> None:
        async with self._unit_of_work(user_id, "delete_budget_period") as uow:
            await uow.remove_budget_period(period_id)

        await self._activity.log_record_changed(user_id, "budget_period", period_id, "deleted")
        await self._publish(user_id, "budget_period_deleted", period_id)

    async def list_budget_periods(self, user_id: str) -> list[BudgetPeriod]:
        """Budget periods, newest start first."""
        async with self._storage.snapshot(user_id) as reader:
            periods = await reader.list_budget_periods()
        return sorted(periods, key=lambda p: p.start_date, reverse=True)

    async def get_active_budget_period(self, user_id: str, on: Optional[date] = None) -> Optional[BudgetPeriod]:
        """The active period covering `on` (today by default), if any."""
        day = on or self.today()
        for period in await self.list_budget_periods(user_id):
            if period.is_active and period.covers(day):
                return period
        return None
