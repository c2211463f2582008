import asyncio
import math

from macroview.models import ErrorKind, IndicatorResult, ProviderAttempt, RawObservation
from macroview.utils.errors import ProviderError


def run(coro):
    return asyncio.run(coro)


def test_first_success_wins_and_is_cached(orchestrator, germany, scripted, make_indicator):
    a = scripted(RawObservation(2.5, "2023"))
    ind = make_indicator(a)

    res = run(orchestrator.fetch(germany, ind))
    assert res.ok
    assert res.value == 2.5
    assert res.year == "2023"
    assert res.source_label == "P0"
    assert res.from_cache is False
    assert orchestrator.cache.get("test:growth:DEU") is not None


def test_fresh_cache_hit_skips_providers(orchestrator, germany, scripted, make_indicator):
    a = scripted(RawObservation(2.5, "2023"))
    ind = make_indicator(a)
    orchestrator.cache.put("test:growth:DEU", IndicatorResult(1.1, "2022", "P9"), 3600)

    res = run(orchestrator.fetch(germany, ind))
    assert a.calls == 0
    assert res.value == 1.1
    assert res.source_label == "P9"
    assert res.from_cache is True


def test_falls_back_to_next_provider_without_retrying(orchestrator, germany, scripted, make_indicator):
    a = scripted(ProviderError("boom", provider="P0"))
    b = scripted(RawObservation(4.0, "2022"))
    ind = make_indicator(a, b)

    res = run(orchestrator.fetch(germany, ind))
    assert res.value == 4.0
    assert res.source_label == "P1"
    assert a.calls == 1
    assert b.calls == 1


def test_none_and_non_numeric_values_are_failures(orchestrator, germany, scripted, make_indicator):
    empty = scripted(None)
    nan = scripted(RawObservation(math.nan, "2023"))
    text = scripted(RawObservation("n/a", "2023"))
    good = scripted(RawObservation(7.0, "2023"))
    ind = make_indicator(empty, nan, text, good)

    res = run(orchestrator.fetch(germany, ind))
    assert res.value == 7.0
    assert res.source_label == "P3"


def test_zero_is_a_valid_value(orchestrator, germany, scripted, make_indicator):
    a = scripted(RawObservation(0.0, "2023"))
    b = scripted(RawObservation(9.0, "2023"))

    res = run(orchestrator.fetch(germany, make_indicator(a, b)))
    assert res.ok
    assert res.value == 0.0
    assert b.calls == 0


def test_timeout_moves_on_to_next_provider(orchestrator, germany, scripted, make_indicator):
    slow = scripted(RawObservation(1.0, "2023"), delay=1.0)
    fast = scripted(RawObservation(2.0, "2023"))
    ind = make_indicator(ProviderAttempt("slow", slow, timeout_s=0.05), fast)

    res = run(orchestrator.fetch(germany, ind))
    assert res.value == 2.0
    assert res.source_label == "P1"


def test_stale_entry_served_when_every_provider_fails(orchestrator, germany, clock, scripted, make_indicator):
    ind = make_indicator(scripted(ProviderError("down")), ttl=60)
    orchestrator.cache.put("test:growth:DEU", IndicatorResult(3.3, "2021", "P0"), 60)
    clock.advance(120)

    res = run(orchestrator.fetch(germany, ind))
    assert res.value == 3.3
    assert res.year == "2021"
    assert res.error is ErrorKind.STALE_FALLBACK
    assert res.from_cache is True


def test_unavailable_when_nothing_cached(orchestrator, germany, scripted, make_indicator):
    ind = make_indicator(scripted(ProviderError("down")), scripted(RuntimeError("bug")))

    res = run(orchestrator.fetch(germany, ind))
    assert res.value is None
    assert res.error is ErrorKind.UNAVAILABLE
    assert not res.ok


def test_year_cap_rejects_later_observations(orchestrator, germany, scripted, make_indicator):
    later = scripted(RawObservation(5.0, "2024"))
    ind = make_indicator(later)
    assert run(orchestrator.fetch(germany, ind, year=2020)).error is ErrorKind.UNAVAILABLE

    ok = scripted(RawObservation(4.0, "2019"))
    res = run(orchestrator.fetch(germany, make_indicator(later, ok), year=2020))
    assert res.value == 4.0
    assert res.year == "2019"
    assert orchestrator.cache.get("test:growth@2020:DEU") is not None


def test_year_pinned_and_latest_are_cached_separately(orchestrator, germany, scripted, make_indicator):
    a = scripted(RawObservation(1.0, "2019"))
    ind = make_indicator(a)
    run(orchestrator.fetch(germany, ind, year=2019))
    run(orchestrator.fetch(germany, ind))
    assert a.calls == 2


def test_concurrent_identical_fetches_run_one_chain(orchestrator, germany, scripted, make_indicator):
    a = scripted(RawObservation(1.5, "2023"), delay=0.05)
    ind = make_indicator(a)

    async def go():
        return await asyncio.gather(*(orchestrator.fetch(germany, ind) for _ in range(5)))

    results = run(go())
    assert a.calls == 1
    assert [r.value for r in results] == [1.5] * 5
    assert orchestrator.inflight() == 0


def test_independent_keys_do_not_share_failures(orchestrator, germany, scripted, make_indicator):
    bad = make_indicator(scripted(ProviderError("down")), id="bad")
    good = make_indicator(scripted(RawObservation(1.0, "2023")), id="good")

    async def go():
        return await asyncio.gather(orchestrator.fetch(germany, bad), orchestrator.fetch(germany, good))

    r_bad, r_good = run(go())
    assert r_bad.error is ErrorKind.UNAVAILABLE
    assert r_good.ok


def test_quota_exhaustion_skips_the_attempt(orchestrator, germany, scripted, make_indicator):
    news = scripted(RawObservation(3.0, "2023", items=({"title": "Markets rally"},)))
    attempt = ProviderAttempt("NewsAPI", news, 1.0, quota_provider="news")
    inds = [make_indicator(attempt, id=f"news_{t}", family="news") for t in ("a", "b", "c")]

    results = [run(orchestrator.fetch(germany, i)) for i in inds]
    assert [r.ok for r in results] == [True, True, False]
    assert results[0].items[0]["title"] == "Markets rally"
    assert news.calls == 2
    assert orchestrator.quota.today("news").count == 2


def test_failed_quota_attempt_gives_the_slot_back(orchestrator, germany, scripted, make_indicator):
    news = scripted(ProviderError("429", status=429))
    attempt = ProviderAttempt("NewsAPI", news, 1.0, quota_provider="news")

    for t in ("a", "b", "c"):
        run(orchestrator.fetch(germany, make_indicator(attempt, id=t, family="news")))
    assert news.calls == 3
    assert orchestrator.quota.today("news").count == 0
    assert orchestrator.quota.can_proceed("news")
