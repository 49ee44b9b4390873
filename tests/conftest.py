"""
Shared fixtures.

Every component runs on a fixed clock (2025-01-01 12:00, Philippine
time) so projections and trailing windows are reproducible.
"""

from datetime import datetime, timedelta, timezone

import pytest

from walletwise.audit import ActivityLogger
from walletwise.config.settings import LedgerSettings
from walletwise.ledger import LedgerStore, MutationBus
from walletwise.projection import AffordabilityEngine, ConfidenceRecalculator
from walletwise.services.storage import InMemoryLedgerStorage

PH_TIME = timezone(timedelta(hours=8))
NOW = datetime(2025, 1, 1, 12, 0, tzinfo=PH_TIME)
TODAY = NOW.date()
USER = "user-1"


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def storage():
    return InMemoryLedgerStorage(timeout_seconds=1.0)


@pytest.fixture
def bus():
    return MutationBus()


@pytest.fixture
def activity():
    return ActivityLogger(keep_history=True)


@pytest.fixture
def store(storage, bus, activity, clock):
    return LedgerStore(storage, bus=bus, activity=activity, clock=clock)


@pytest.fixture
def ledger_settings():
    return LedgerSettings()


@pytest.fixture
def engine(storage, ledger_settings, activity, clock):
    return AffordabilityEngine(storage, settings=ledger_settings, activity=activity, clock=clock)


@pytest.fixture
def recalculator(storage, engine, activity, clock):
    return ConfidenceRecalculator(storage, engine, activity=activity, clock=clock)
