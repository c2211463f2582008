import asyncio

import pytest

from macroview.models import CountryIdentity, IndicatorDefinition, ProviderAttempt
from macroview.services.cache_store import CacheStore
from macroview.services.orchestrator import IndicatorOrchestrator
from macroview.services.quota_guard import QuotaGuard
from macroview.services.storage import MemoryStorage


class FakeClock:
    def __init__(self, t=1_000_000.0):
        self.t = t

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds


class ScriptedProvider:
    """Stands in for a provider fetch: returns (or raises) a fixed outcome and counts calls."""

    def __init__(self, outcome, delay=0.0):
        self.outcome = outcome
        self.delay = delay
        self.calls = 0

    async def __call__(self, identity, year=None):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def _make_indicator(*attempts, id="growth", family="test", ttl=3600):
    chain = []
    for i, a in enumerate(attempts):
        if not isinstance(a, ProviderAttempt):
            a = ProviderAttempt(f"P{i}", a, 1.0)
        chain.append(a)
    return IndicatorDefinition(id=id, label=id, unit="percent", family=family, provider_chain=tuple(chain), ttl_seconds=ttl)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scripted():
    return ScriptedProvider


@pytest.fixture
def make_indicator():
    return _make_indicator


@pytest.fixture
def germany():
    return CountryIdentity(canonical_name="Germany", iso2="DE", iso3="DEU")


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def orchestrator(clock, storage):
    cache = CacheStore(storage, clock=clock)
    quota = QuotaGuard(storage, {"news": 2}, today_fn=lambda: "2026-10-19")
    return IndicatorOrchestrator(cache, quota)
