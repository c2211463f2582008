import asyncio
import math

import pytest

from macroview.models import CacheEntry, CountryIdentity, ErrorKind, IndicatorResult, PartialIdentity
from macroview.utils.errors import ProviderTimeout, error_kind_of
from macroview.utils.series_math import coerce_float, latest_up_to, scale_to_range, year_series
from macroview.utils.timeouts import with_timeout


def test_latest_up_to_picks_max_year_with_value():
    series = {"2019": 1.0, "2020": 0.0, "2021": float("nan"), "2030": 9.0}
    assert latest_up_to(series, 2025) == ("2020", 0.0)
    assert latest_up_to(series, 2019) == ("2019", 1.0)
    assert latest_up_to(series, 2000) is None
    assert latest_up_to({}, 2020) is None


def test_year_series_accepts_periods():
    rows = [("2020-Q4", "1.5"), ("2021", None), (2022, True), ("bad", 3.0), (2023, 4)]
    assert year_series(rows) == {"2020": 1.5, "2023": 4.0}


def test_coerce_float():
    assert coerce_float("2.5") == 2.5
    assert coerce_float(0) == 0.0
    assert coerce_float(False) is None
    assert coerce_float(math.inf) is None


def test_scale_to_range():
    assert scale_to_range(0.0, -2.5, 2.5) == 50.0
    assert scale_to_range(1.0, 1.0, 1.0) == 0.0


def test_with_timeout_raises_provider_timeout():
    async def slow():
        await asyncio.sleep(1)
        return 1

    with pytest.raises(ProviderTimeout) as exc:
        asyncio.run(with_timeout(slow(), 0.01, provider="imf"))
    assert error_kind_of(exc.value) is ErrorKind.TIMEOUT
    assert asyncio.run(with_timeout(asyncio.sleep(0, result=5), None)) == 5


def test_identity_validation():
    with pytest.raises(ValueError):
        CountryIdentity("Nowhere", iso2="usa")
    with pytest.raises(ValueError):
        CountryIdentity("  ")
    assert PartialIdentity.from_feature_properties({"NAME": "Chad", "ISO_A3": "TCD"}).iso3 == "TCD"


def test_cache_entry_serialization():
    entry = CacheEntry(
        key="news:news_trade:FRA",
        value=IndicatorResult(2.0, "2023", "NewsAPI", items=({"title": "x"},)),
        written_at=10.0,
        ttl_seconds=5,
    )
    again = CacheEntry.from_dict(entry.to_dict())
    assert again == entry
    assert again.is_fresh(14.9)
    assert not again.is_fresh(15.0)
    assert error_kind_of(RuntimeError()) is ErrorKind.PROVIDER_FAILURE
