"""
Insight Cache

Generated advisory text is slow and costs an API call, while the
numbers behind it change only when the ledger changes. The cache keeps
advisory text keyed by a hash of the financial snapshot it was
generated from.

DESIGN DECISION: An entry is served only when
1. It is younger than the TTL, and
2. The snapshot hash still matches (same counts, latest dates, balance,
   and the same request parameters)

Every committed ledger mutation also invalidates the user's entries
through the mutation bus, so the hash is a second line of defence.
"""

import hashlib
import json
import time
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from walletwise.models.affordability import AdvisoryText
from walletwise.models.money import ZERO, Money, money_sum
from walletwise.services.storage.interface import LedgerReader

logger = structlog.get_logger(__name__)


class FinancialSnapshot(BaseModel):
    """The data whose change should invalidate cached advice."""

    wallets_count: int = 0
    transactions_count: int = 0
    planned_expenses_count: int = 0
    income_sources_count: int = 0
    last_transaction_date: Optional[datetime] = None
    last_planned_expense_update: Optional[datetime] = None
    total_balance: Money = ZERO
    request: dict[str, Any] = Field(
        default_factory=dict,
        description="Parameters of the request the advice answers"
    )

    @classmethod
    async def capture(cls, reader: LedgerReader, **request: Any) -> "FinancialSnapshot":
        """Summarize a user's ledger as read through `reader`."""
        wallets = [w for w in await reader.list_wallets() if w.is_active]
        transactions = await reader.list_transactions()
        planned = await reader.list_planned_expenses()
        sources = [s for s in await reader.list_income_sources() if s.is_active]

        return cls(
            wallets_count=len(wallets),
            transactions_count=len(transactions),
            planned_expenses_count=len(planned),
            income_sources_count=len(sources),
            last_transaction_date=max((t.date for t in transactions), default=None),
            last_planned_expense_update=max((p.updated_at for p in planned), default=None),
            total_balance=money_sum(w.balance for w in wallets),
            request={key: _canonical(value) for key, value in request.items()},
        )

    def digest(self) -> str:
        """SHA-256 of the canonical JSON form."""
        payload = json.dumps(
            self.model_dump(mode="json"),
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _canonical(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


class _Entry:
    __slots__ = ("advice", "stored_at")

    def __init__(self, advice: AdvisoryText, stored_at: float):
        self.advice = advice
        self.stored_at = stored_at


class InsightCache:
    """
    Per-user cache of advisory text.

    Usage:
        key = (await FinancialSnapshot.capture(reader, amount=..)).digest()
        advice = cache.get(user_id, key)
        if advice is None:
            advice = await advisor.advise(...)
            cache.put(user_id, key, advice)
    """

    def __init__(
        self,
        ttl_seconds: int = 24 * 60 * 60,
        max_entries_per_user: int = 32,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._max_entries = max_entries_per_user
        self._clock = clock
        self._entries: dict[str, OrderedDict[str, _Entry]] = {}

    def get(self, user_id: str, snapshot_hash: str) -> Optional[AdvisoryText]:
        """Cached advice for this snapshot, or None if absent or expired."""
        user_entries = self._entries.get(user_id)
        if not user_entries:
            return None

        entry = user_entries.get(snapshot_hash)
        if entry is None:
            return None

        if self._clock() - entry.stored_at > self._ttl:
            del user_entries[snapshot_hash]
            return None

        return entry.advice.model_copy(update={"source": "cache"})

    def put(self, user_id: str, snapshot_hash: str, advice: AdvisoryText) -> None:
        user_entries = self._entries.setdefault(user_id, OrderedDict())
        user_entries[snapshot_hash] = _Entry(advice, self._clock())
        user_entries.move_to_end(snapshot_hash)

        while len(user_entries) > self._max_entries:
            user_entries.popitem(last=False)

    def invalidate(self, user_id: str) -> int:
        """Drop every entry for a user. Returns how many were dropped."""
        dropped = len(self._entries.pop(user_id, {}))
        if dropped:
            logger.debug("insight_cache_invalidated", user_id=user_id, dropped=dropped)
        return dropped

    def clear(self) -> None:
        self._entries.clear()

    async def on_ledger_mutation(self, request) -> None:
        """Mutation bus subscriber: any committed change invalidates advice."""
        self.invalidate(request.user_id)
