"""
Confidence Recalculator

Keeps each active planned expense's confidence tier current. A tier is
the confidence the Affordability Engine gives for affording the plan's
amount by its target date, evaluated without the plan itself among the
commitments (otherwise it would compete with itself for the same money).

Recalculation is triggered two ways:
1. ConfidenceUpdateQueue, subscribed to the mutation bus, batches users
   whose ledger just changed and drains them shortly after.
2. sweep(), run by an external scheduler, covers every user with
   active plans.

CRITICAL: Both are best effort. A failure is logged and reported; it
never reaches the mutation that triggered it, and one user's failure
never stops the others.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import structlog

from walletwise.audit import ActivityLogger
from walletwise.errors import WalletwiseError
from walletwise.ledger.events import RecomputeRequest
from walletwise.models.affordability import SweepReport, UserRecalculationResult
from walletwise.models.ledger import ConfidenceLevel, utc_now
from walletwise.projection.affordability import AffordabilityEngine
from walletwise.services.storage.interface import LedgerStorageInterface

logger = structlog.get_logger(__name__)


class ConfidenceRecalculator:
    """Recomputes and stores planned-expense confidence tiers."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        engine: AffordabilityEngine,
        activity: Optional[ActivityLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._storage = storage
        self._engine = engine
        self._activity = activity or ActivityLogger()
        self._clock = clock or utc_now

    async def recalculate_user(self, user_id: str) -> list[UUID]:
        """
        Recalculate every PLANNED or SAVED expense of one user.

        An expense that fails to evaluate keeps its old tier.
        Returns the ids of the expenses that were updated.
        """
        today = self._engine.today()
        async with self._storage.snapshot(user_id) as reader:
            expenses = [e for e in await reader.list_planned_expenses() if e.status.is_active]

        tiers: dict[UUID, ConfidenceLevel] = {}
        failed = 0
        for expense in expenses:
            try:
                verdict = await self._engine.evaluate(
                    user_id,
                    target_amount=expense.amount,
                    target_date=max(expense.target_date, today),
                    wallet_id=expense.wallet_id,
                    category=expense.category,
                    exclude_planned_expense_id=expense.id,
                )
            except WalletwiseError as e:
                failed += 1
                logger.warning(
                    "confidence_evaluation_failed",
                    user_id=user_id,
                    planned_expense_id=str(expense.id),
                    error=e.message,
                )
                continue
            tiers[expense.id] = verdict.confidence

        updated: list[UUID] = []
        if tiers:
            stamp = self._clock()
            async with self._storage.transaction(user_id) as uow:
                for expense_id, confidence in tiers.items():
                    expense = await uow.get_planned_expense(expense_id)
                    # Deleted or closed while we were evaluating
                    if expense is None or not expense.status.is_active:
                        continue
                    expense.confidence = confidence
                    expense.last_confidence_update = stamp
                    await uow.save_planned_expense(expense)
                    updated.append(expense_id)

        await self._activity.log_confidence_recalculated(user_id, len(updated), failed)
        return updated

    async def sweep(self) -> SweepReport:
        """Recalculate every user with active plans, isolating failures."""
        users = await self._storage.list_users_with_active_plans()
        results: list[UserRecalculationResult] = []

        for user_id in users:
            try:
                updated = await self.recalculate_user(user_id)
            except Exception as e:
                await self._activity.log_error("confidence_sweep_user_failed", str(e), user_id=user_id)
                results.append(UserRecalculationResult(
                    user_id=user_id,
                    status="error",
                    error=str(e) or type(e).__name__,
                ))
                continue
            results.append(UserRecalculationResult(
                user_id=user_id,
                status="success",
                updated_expense_ids=updated,
            ))

        success_count = sum(1 for r in results if r.status == "success")
        report = SweepReport(
            total_users=len(users),
            success_count=success_count,
            error_count=len(results) - success_count,
            results=results,
        )
        await self._activity.log_sweep_completed(
            report.total_users, report.success_count, report.error_count
        )
        return report


class ConfidenceUpdateQueue:
    """
    Batches triggered recalculations.

    Subscribe `on_ledger_mutation` to the mutation bus. Each request
    queues the user; when an event loop is running, a background drain
    runs after `delay_seconds` so a burst of mutations costs one pass.
    """

    def __init__(self, recalculator: ConfidenceRecalculator, delay_seconds: float = 5.0):
        self._recalculator = recalculator
        self._delay = delay_seconds
        self._pending: set[str] = set()
        self._task: Optional[asyncio.Task] = None

    @property
    def pending_users(self) -> frozenset[str]:
        return frozenset(self._pending)

    def request(self, user_id: str) -> None:
        """Queue a user for recalculation."""
        self._pending.add(user_id)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: whoever owns the queue calls drain() explicitly
            return

        if self._task is None or self._task.done():
            self._task = loop.create_task(self._drain_later())

    async def on_ledger_mutation(self, request: RecomputeRequest) -> None:
        """Mutation bus subscriber."""
        self.request(request.user_id)

    async def _drain_later(self) -> None:
        await asyncio.sleep(self._delay)
        await self.drain()

    async def drain(self) -> list[UserRecalculationResult]:
        """Recalculate every queued user now, including ones queued meanwhile."""
        results: list[UserRecalculationResult] = []

        while self._pending:
            batch = sorted(self._pending)
            self._pending.clear()
            logger.info("confidence_queue_draining", users=len(batch))

            for user_id in batch:
                try:
                    updated = await self._recalculator.recalculate_user(user_id)
                except Exception as e:
                    logger.error("confidence_update_failed", user_id=user_id, error=str(e))
                    results.append(UserRecalculationResult(
                        user_id=user_id,
                        status="error",
                        error=str(e) or type(e).__name__,
                    ))
                    continue
                results.append(UserRecalculationResult(
                    user_id=user_id,
                    status="success",
                    updated_expense_ids=updated,
                ))

        return results

    async def wait_idle(self) -> None:
        """Wait for a scheduled background drain to finish."""
        if self._task is not None and not self._task.done():
            await self._task

    async def close(self) -> None:
        """Cancel a scheduled drain. Queued users stay queued."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
