"""
Main Orchestrator for Walletwise

This module ties together all the components and defines the
external operations:
1. Ledger (create/update/delete transactions, transfers)
2. Affordability (future projection with advice, immediate check)
3. Confidence (per-user recalculation, all-user sweep)

DESIGN DECISION: The flows accept primitive values (string ids, ISO
dates, numbers or decimal strings) so any transport can call them.
Everything is parsed here; malformed input becomes InvalidInputError
before any component sees it.

This is the "glue" that wires storage, the mutation bus and the
engines together.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, NamedTuple, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError

from walletwise.agents import AffordabilityAdvisor, GeminiTextGenerator
from walletwise.audit import ActivityLogger, create_correlation_id
from walletwise.config import Settings, get_settings
from walletwise.errors import InvalidInputError
from walletwise.ledger import LedgerStore, MutationBus
from walletwise.models.affordability import (
    AffordabilityVerdict,
    ImmediateAffordabilityVerdict,
    SweepReport,
)
from walletwise.models.ledger import (
    Transaction,
    TransactionKind,
    TransactionUpdate,
    TransferResult,
)
from walletwise.models.money import to_money
from walletwise.projection import (
    AffordabilityEngine,
    ConfidenceRecalculator,
    ConfidenceUpdateQueue,
)
from walletwise.services.cache import FinancialSnapshot, InsightCache
from walletwise.services.storage import InMemoryLedgerStorage, LedgerStorageInterface

logger = structlog.get_logger(__name__)

IdInput = Union[str, UUID]
DateInput = Union[str, date]
AmountInput = Union[str, int, float, Decimal]


# =============================================================================
# INPUT PARSING
# =============================================================================

def parse_id(value: IdInput, label: str = "id") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError) as e:
        raise InvalidInputError(f"Malformed {label}: {value!r}") from e


def parse_optional_id(value: Optional[IdInput], label: str = "id") -> Optional[UUID]:
    if value is None or value == "":
        return None
    return parse_id(value, label)


def parse_amount(value: AmountInput, label: str = "amount") -> Decimal:
    try:
        return to_money(value)
    except ValueError as e:
        raise InvalidInputError(f"Malformed {label}: {value!r}") from e


def parse_date(value: DateInput, label: str = "date") -> date:
    """ISO date ('2025-02-10') or the date part of an ISO datetime."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        text = str(value).strip()
        if "T" in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError as e:
        raise InvalidInputError(f"Malformed {label}: {value!r}") from e


def parse_datetime(value: Union[str, date, datetime], tz, label: str = "date") -> datetime:
    """
    ISO datetime or date. Values without an offset are taken as local
    time in `tz`; a bare date means midnight local time.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidInputError(f"Malformed {label}: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def parse_kind(value: Union[str, TransactionKind]) -> TransactionKind:
    try:
        return TransactionKind(str(value.value if isinstance(value, TransactionKind) else value).upper())
    except ValueError as e:
        raise InvalidInputError(f"Unknown transaction kind: {value!r}") from e


# =============================================================================
# FLOWS
# =============================================================================

class LedgerFlow:
    """
    External ledger operations.

    Every call gets a correlation id so its activity events can be
    traced together.
    """

    def __init__(self, store: LedgerStore, settings: Optional[Settings] = None):
        self._store = store
        self._tz = (settings or get_settings()).ledger.local_timezone

    @property
    def store(self) -> LedgerStore:
        return self._store

    async def create_transaction(
        self,
        user_id: str,
        kind: Union[str, TransactionKind],
        amount: AmountInput,
        wallet_id: IdInput,
        category: str,
        date: Optional[Union[str, datetime]] = None,
        planned_expense_id: Optional[IdInput] = None,
        note: Optional[str] = None,
    ) -> Transaction:
        return await self._store.record_transaction(
            user_id,
            kind=parse_kind(kind),
            amount=parse_amount(amount),
            wallet_id=parse_id(wallet_id, "wallet id"),
            category=category,
            date=parse_datetime(date, self._tz) if date is not None else None,
            note=note,
            planned_expense_id=parse_optional_id(planned_expense_id, "planned expense id"),
            correlation_id=create_correlation_id(),
        )

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: IdInput,
        fields: dict[str, Any],
    ) -> Transaction:
        """
        Apply a partial update.

        `fields` may contain amount, kind, category, note, date,
        wallet_id and planned_expense_id. An explicit None for
        planned_expense_id removes the link.
        """
        parsed: dict[str, Any] = {}
        for name, value in fields.items():
            if value is None:
                parsed[name] = None
            elif name == "amount":
                parsed[name] = parse_amount(value)
            elif name == "kind":
                parsed[name] = parse_kind(value)
            elif name == "date":
                parsed[name] = parse_datetime(value, self._tz)
            elif name in ("wallet_id", "planned_expense_id"):
                parsed[name] = parse_id(value, name.replace("_", " "))
            else:
                parsed[name] = value

        try:
            update = TransactionUpdate.model_validate(parsed)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid transaction update: {e.errors()[0].get('msg')}") from e

        return await self._store.edit_transaction(
            user_id,
            parse_id(transaction_id, "transaction id"),
            update,
            correlation_id=create_correlation_id(),
        )

    async def delete_transaction(self, user_id: str, transaction_id: IdInput) -> list[UUID]:
        return await self._store.delete_transaction(
            user_id,
            parse_id(transaction_id, "transaction id"),
            correlation_id=create_correlation_id(),
        )

    async def create_transfer(
        self,
        user_id: str,
        amount: AmountInput,
        from_wallet_id: IdInput,
        to_wallet_id: IdInput,
        fee: Optional[AmountInput] = None,
        date: Optional[Union[str, datetime]] = None,
        note: Optional[str] = None,
    ) -> TransferResult:
        return await self._store.record_transfer(
            user_id,
            amount=parse_amount(amount),
            from_wallet_id=parse_id(from_wallet_id, "source wallet id"),
            to_wallet_id=parse_id(to_wallet_id, "destination wallet id"),
            fee=parse_amount(fee, "transfer fee") if fee is not None else None,
            date=parse_datetime(date, self._tz) if date is not None else None,
            note=note,
            correlation_id=create_correlation_id(),
        )


class AffordabilityFlow:
    """
    Affordability questions, with advisory text.

    Flow for a future check:
    1. Engine decides verdict and confidence (deterministic)
    2. Cache lookup by snapshot hash
    3. On a miss, the advisor generates text (or falls back)
    4. Text is attached; verdict and confidence are untouched
    """

    def __init__(
        self,
        engine: AffordabilityEngine,
        storage: LedgerStorageInterface,
        advisor: Optional[AffordabilityAdvisor] = None,
        cache: Optional[InsightCache] = None,
    ):
        self._engine = engine
        self._storage = storage
        self._advisor = advisor or AffordabilityAdvisor()
        self._cache = cache

    async def evaluate_future_affordability(
        self,
        user_id: str,
        amount: AmountInput,
        target_date: DateInput,
        wallet_id: Optional[IdInput] = None,
        category: Optional[str] = None,
        description: Optional[str] = None,
    ) -> AffordabilityVerdict:
        value = parse_amount(amount)
        target = parse_date(target_date, "target date")
        wallet = parse_optional_id(wallet_id, "wallet id")

        verdict = await self._engine.evaluate(
            user_id,
            target_amount=value,
            target_date=target,
            wallet_id=wallet,
            category=category,
        )

        advice = None
        cache_key = None
        if self._cache is not None:
            async with self._storage.snapshot(user_id) as reader:
                snapshot = await FinancialSnapshot.capture(
                    reader,
                    amount=value,
                    target_date=target,
                    wallet_id=wallet,
                    category=category,
                    description=description,
                    evaluated_on=verdict.evaluated_on,
                )
            cache_key = snapshot.digest()
            advice = self._cache.get(user_id, cache_key)

        if advice is None:
            advice = await self._advisor.advise(verdict, description)
            if self._cache is not None and advice.source == "generated":
                self._cache.put(user_id, cache_key, advice)

        return AffordabilityAdvisor.apply(verdict, advice)

    async def evaluate_immediate_affordability(
        self,
        user_id: str,
        amount: AmountInput,
        wallet_id: Optional[IdInput] = None,
        consider_timeframe: bool = True,
    ) -> ImmediateAffordabilityVerdict:
        return await self._engine.evaluate_immediate(
            user_id,
            amount=parse_amount(amount),
            wallet_id=parse_optional_id(wallet_id, "wallet id"),
            consider_timeframe=consider_timeframe,
        )


class ConfidenceFlow:
    """Planned-expense confidence maintenance."""

    def __init__(self, recalculator: ConfidenceRecalculator):
        self._recalculator = recalculator

    async def recalculate_confidence(self, user_id: str) -> list[UUID]:
        return await self._recalculator.recalculate_user(user_id)

    async def run_sweep(self) -> SweepReport:
        """Entry point for the external scheduler."""
        return await self._recalculator.sweep()


class AppComponents(NamedTuple):
    ledger_flow: LedgerFlow
    affordability_flow: AffordabilityFlow
    confidence_flow: ConfidenceFlow
    store: LedgerStore
    bus: MutationBus
    confidence_queue: ConfidenceUpdateQueue
    cache: InsightCache


def create_app_components(
    use_text_generation: bool = True,
    storage: Optional[LedgerStorageInterface] = None,
    settings: Optional[Settings] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_text_generation: Whether to initialize Gemini for advice.
                    Set to False to always use the deterministic text.
        storage: Storage backend (in-memory if None)
        settings: Settings (the cached global settings if None)
    """
    settings = settings or get_settings()
    ledger_settings = settings.ledger
    cache_settings = settings.cache
    clock = ledger_settings.local_now

    storage = storage or InMemoryLedgerStorage(timeout_seconds=ledger_settings.store_timeout_seconds)
    activity = ActivityLogger()
    bus = MutationBus()

    store = LedgerStore(storage, bus=bus, activity=activity, clock=clock)
    engine = AffordabilityEngine(storage, settings=ledger_settings, activity=activity, clock=clock)
    recalculator = ConfidenceRecalculator(storage, engine, activity=activity, clock=clock)
    queue = ConfidenceUpdateQueue(recalculator, delay_seconds=ledger_settings.confidence_batch_delay_seconds)
    cache = InsightCache(
        ttl_seconds=cache_settings.ttl_seconds,
        max_entries_per_user=cache_settings.max_entries_per_user,
    )

    bus.subscribe(queue.on_ledger_mutation)
    bus.subscribe(cache.on_ledger_mutation)

    generator = None
    if use_text_generation:
        try:
            generator = GeminiTextGenerator(settings.gemini)
        except Exception as e:
            # Gemini not configured - continue with deterministic advice
            logger.warning("text_generation_not_configured", error=str(e))
            generator = None

    advisor = AffordabilityAdvisor(
        generator, currency_symbol=ledger_settings.currency_symbol, activity=activity
    )

    return AppComponents(
        ledger_flow=LedgerFlow(store, settings),
        affordability_flow=AffordabilityFlow(engine, storage, advisor, cache),
        confidence_flow=ConfidenceFlow(recalculator),
        store=store,
        bus=bus,
        confidence_queue=queue,
        cache=cache,
    )
