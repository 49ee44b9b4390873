"""
Tests for advisory text and the insight cache

Test strategy:
1. No real API calls: a scripted TextGenerator stands in for Gemini
2. Whatever the generator returns, verdict and confidence never change
3. Cached advice is served only while fresh and while the snapshot matches
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from walletwise.agents import AffordabilityAdvisor, TextGenerator
from walletwise.errors import UnavailableError
from walletwise.models import AdvisoryText, IncomeFrequency, LedgerEventType, TransactionKind, Wallet
from walletwise.orchestrator import AffordabilityFlow
from walletwise.services.cache import FinancialSnapshot, InsightCache

from tests.conftest import TODAY, USER


class ScriptedGenerator(TextGenerator):
    """Returns a fixed answer, or raises UnavailableError."""

    def __init__(self, answer=None, fail=False):
        self.answer = answer
        self.fail = fail
        self.prompts = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if self.fail:
            raise UnavailableError("model offline")
        return self.answer


@pytest.fixture
def verdict(engine):
    return engine.project(
        today=TODAY,
        target_amount=Decimal("25000"),
        target_date=TODAY + timedelta(days=40),
        wallets=[Wallet(user_id=USER, name="Cash", balance=Decimal("10000"))],
        transactions=[],
        income_sources=[],
        planned_expenses=[],
    )


class TestAffordabilityAdvisor:
    """Tests for generated and fallback advice."""

    @pytest.mark.asyncio
    async def test_generated_advice(self, verdict):
        generator = ScriptedGenerator(
            'Sure! {"analysis": "You are short this time.", "recommendations": ["Save more", " "]}'
        )
        advisor = AffordabilityAdvisor(generator)

        advice = await advisor.advise(verdict, "New phone")

        assert advice.source == "generated"
        assert advice.analysis == "You are short this time."
        assert advice.recommendations == ["Save more"]
        assert "New phone" in generator.prompts[0]
        assert "NOT AFFORDABLE" in generator.prompts[0]

    @pytest.mark.asyncio
    async def test_unavailable_generator_falls_back(self, verdict, activity):
        advisor = AffordabilityAdvisor(ScriptedGenerator(fail=True), activity=activity)

        advice = await advisor.advise(verdict)

        assert advice.source == "fallback"
        assert activity.history[-1].event_type == LedgerEventType.EXTERNAL_SERVICE_ERROR
        assert advice.analysis == verdict.analysis
        assert advice.recommendations == verdict.recommendations

    @pytest.mark.asyncio
    async def test_garbage_answer_falls_back(self, verdict):
        for answer in ("no json here", '{"analysis": ""}', "{broken", ""):
            advice = await AffordabilityAdvisor(ScriptedGenerator(answer)).advise(verdict)
            assert advice.source == "fallback"

    @pytest.mark.asyncio
    async def test_no_generator_means_fallback(self, verdict):
        advice = await AffordabilityAdvisor().advise(verdict)
        assert advice.source == "fallback"

    @pytest.mark.asyncio
    async def test_apply_never_changes_the_verdict(self, verdict):
        generator = ScriptedGenerator(
            '{"analysis": "Good news, you can afford it!", "recommendations": ["Buy it"]}'
        )
        advice = await AffordabilityAdvisor(generator).advise(verdict)

        advised = AffordabilityAdvisor.apply(verdict, advice)

        assert advised.can_afford is verdict.can_afford is False
        assert advised.confidence == verdict.confidence
        assert advised.breakdown == verdict.breakdown
        assert advised.analysis == "Good news, you can afford it!"
        assert advised.advisory_source == "generated"


class TestInsightCache:
    """Tests for TTL, hash matching and invalidation."""

    def _cache(self, now, **kwargs):
        return InsightCache(clock=lambda: now[0], **kwargs)

    def test_hit_then_expiry(self):
        now = [1000.0]
        cache = self._cache(now, ttl_seconds=60)
        cache.put(USER, "abc", AdvisoryText(analysis="cached", source="generated"))

        hit = cache.get(USER, "abc")
        assert hit.analysis == "cached"
        assert hit.source == "cache"

        now[0] += 61
        assert cache.get(USER, "abc") is None

    def test_hash_mismatch_misses(self):
        cache = self._cache([0.0])
        cache.put(USER, "abc", AdvisoryText(analysis="cached"))
        assert cache.get(USER, "xyz") is None
        assert cache.get("other-user", "abc") is None

    def test_oldest_entries_evicted(self):
        cache = self._cache([0.0], max_entries_per_user=2)
        for key in ("a", "b", "c"):
            cache.put(USER, key, AdvisoryText(analysis=key))
        assert cache.get(USER, "a") is None
        assert cache.get(USER, "c").analysis == "c"

    @pytest.mark.asyncio
    async def test_mutation_invalidates_user(self, store, bus):
        cache = InsightCache()
        bus.subscribe(cache.on_ledger_mutation)
        cache.put(USER, "abc", AdvisoryText(analysis="cached"))
        cache.put("other-user", "abc", AdvisoryText(analysis="cached"))

        await store.create_wallet(USER, "Cash")

        assert cache.get(USER, "abc") is None
        assert cache.get("other-user", "abc") is not None

    @pytest.mark.asyncio
    async def test_snapshot_digest_tracks_ledger_and_request(self, store, storage):
        wallet = await store.create_wallet(USER, "Cash", opening_balance=1000)

        async def digest(**request):
            async with storage.snapshot(USER) as reader:
                return (await FinancialSnapshot.capture(reader, **request)).digest()

        first = await digest(amount=Decimal("100"), target_date=TODAY)
        assert first == await digest(amount=Decimal("100"), target_date=TODAY)
        assert first != await digest(amount=Decimal("200"), target_date=TODAY)

        await store.record_transaction(USER, TransactionKind.EXPENSE, 10, wallet.id, "Food")
        assert first != await digest(amount=Decimal("100"), target_date=TODAY)


class TestAffordabilityFlow:
    """Tests for advice caching in the affordability flow."""

    @pytest.mark.asyncio
    async def test_second_request_is_served_from_cache(self, store, storage, engine, bus):
        await store.create_wallet(USER, "Cash", opening_balance=10000)
        await store.create_income_source(USER, "Salary", 20000, IncomeFrequency.MONTHLY, date(2025, 1, 11))
        generator = ScriptedGenerator('{"analysis": "Looks fine.", "recommendations": ["Keep going"]}')
        cache = InsightCache()
        bus.subscribe(cache.on_ledger_mutation)
        flow = AffordabilityFlow(engine, storage, AffordabilityAdvisor(generator), cache)

        first = await flow.evaluate_future_affordability(USER, "5000", "2025-02-10")
        second = await flow.evaluate_future_affordability(USER, "5000", "2025-02-10")

        assert first.advisory_source == "generated"
        assert second.advisory_source == "cache"
        assert second.analysis == "Looks fine."
        assert second.can_afford == first.can_afford
        assert len(generator.prompts) == 1

        wallet = (await store.list_wallets(USER))[0]
        await store.record_transaction(USER, TransactionKind.EXPENSE, 100, wallet.id, "Food")
        third = await flow.evaluate_future_affordability(USER, "5000", "2025-02-10")

        assert third.advisory_source == "generated"
        assert len(generator.prompts) == 2

    @pytest.mark.asyncio
    async def test_fallback_advice_is_not_cached(self, store, storage, engine):
        await store.create_wallet(USER, "Cash", opening_balance=10000)
        generator = ScriptedGenerator(fail=True)
        flow = AffordabilityFlow(engine, storage, AffordabilityAdvisor(generator), InsightCache())

        await flow.evaluate_future_affordability(USER, 100, TODAY)
        result = await flow.evaluate_future_affordability(USER, 100, TODAY)

        assert result.advisory_source == "fallback"
        assert len(generator.prompts) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
