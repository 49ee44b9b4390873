"""
Mutation Bus

After every committed ledger mutation the LedgerStore publishes a
RecomputeRequest for the affected user. Subscribers (the confidence
update queue, the insight cache) react to it on their own.

DESIGN DECISION: Publishing is explicit message passing, not shared
state. The ledger does not know who listens, and a listener cannot
reach back into a mutation that has already committed.

CRITICAL: A failing subscriber is logged and skipped. It never
propagates to the publisher and never stops other subscribers.
"""

import inspect
from datetime import datetime
from typing import Any, Awaitable, Callable, NamedTuple, Optional, Union
from uuid import UUID

import structlog

from walletwise.models.ledger import utc_now

logger = structlog.get_logger(__name__)


class RecomputeRequest(NamedTuple):
    """A user's ledger changed; derived data may be stale."""
    user_id: str
    reason: str
    entity_id: Optional[UUID] = None
    ts: Optional[datetime] = None


Handler = Callable[[RecomputeRequest], Union[None, Awaitable[Any]]]


class MutationBus:
    """
    Publish/subscribe bus for committed ledger mutations.

    Handlers may be plain functions or coroutine functions.
    """

    def __init__(self):
        self._subscribers: list[Handler] = []

    def subscribe(self, handler: Handler) -> None:
        if handler not in self._subscribers:
            self._subscribers.append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(
        self,
        user_id: str,
        reason: str,
        entity_id: Optional[UUID] = None,
    ) -> RecomputeRequest:
        """
        Deliver a request to every subscriber.

        Returns the request that was delivered.
        """
        request = RecomputeRequest(
            user_id=user_id,
            reason=reason,
            entity_id=entity_id,
            ts=utc_now(),
        )

        for handler in list(self._subscribers):
            try:
                result = handler(request)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "mutation_subscriber_failed",
                    user_id=user_id,
                    reason=reason,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                )

        return request
