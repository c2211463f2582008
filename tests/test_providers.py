import asyncio

import httpx
import pytest

from macroview.models import CountryIdentity
from macroview.providers.http_client import get_json
from macroview.providers.imf_provider import imf_datamapper, imf_sdmx, imf_sdmx_history, sdmx_series_from_payload
from macroview.providers.news_provider import news_search, topic_query
from macroview.providers.ninjas_provider import ninjas_population
from macroview.providers.wb_provider import regulatory_quality_score, wb_indicator
from macroview.utils.errors import ProviderError, ProviderUnavailable

USA = CountryIdentity("United States", "US", "USA")
WORLD = CountryIdentity("World", None, "WLD")


def call(handler, make_fetch, identity=USA, year=None):
    """Run a provider fetch against an httpx.MockTransport; returns (observation, requests)."""
    seen = []

    def recording(request):
        seen.append(request)
        return handler(request)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(recording)) as client:
            fetch = make_fetch(lambda: client)
            return await fetch(identity, year)

    return asyncio.run(go()), seen


# -----------------------------------------------------------------------------
# IMF
# -----------------------------------------------------------------------------

DM_NGDPD = {
    "values": {"NGDPD": {"USA": {"2021": 23.59, "2022": 25.46, "2023": 27.36, "2040": 50.0}}},
    "api": {"version": "1", "output-method": "json"},
}


def test_datamapper_scales_to_dollars_and_skips_projections():
    obs, seen = call(lambda r: httpx.Response(200, json=DM_NGDPD), lambda cf: imf_datamapper("NGDPD", client_factory=cf))
    assert seen[0].url.path.endswith("/NGDPD/USA")
    assert obs.year == "2023"
    assert obs.value == pytest.approx(27.36e9)


def test_datamapper_respects_requested_year():
    obs, _ = call(
        lambda r: httpx.Response(200, json=DM_NGDPD),
        lambda cf: imf_datamapper("NGDPD", client_factory=cf),
        year=2022,
    )
    assert obs.year == "2022"


def test_datamapper_missing_country_is_no_data():
    obs, _ = call(lambda r: httpx.Response(200, json={"values": {}}), lambda cf: imf_datamapper("LUR", client_factory=cf))
    assert obs is None


def test_datamapper_needs_iso3():
    with pytest.raises(ProviderUnavailable):
        call(lambda r: httpx.Response(200, json={}), lambda cf: imf_datamapper("LUR", client_factory=cf),
             identity=CountryIdentity("Kosovo", "XK", None))


def test_sdmx_series_and_obs_shapes():
    single = {"CompactData": {"DataSet": {"Series": {"Obs": {"@TIME_PERIOD": "2022", "@OBS_VALUE": "8.0"}}}}}
    assert sdmx_series_from_payload(single) == {"2022": 8.0}

    many = {"CompactData": {"DataSet": {"Series": [
        {"Obs": [{"@TIME_PERIOD": "2021", "@OBS_VALUE": "4.7"}, {"@TIME_PERIOD": "2022", "@OBS_VALUE": None}]},
        {"Obs": [{"@TIME_PERIOD": "2021", "@OBS_VALUE": "99"}]},
    ]}}}
    assert sdmx_series_from_payload(many) == {"2021": 4.7}


def test_sdmx_queries_by_iso2():
    payload = {"CompactData": {"DataSet": {"Series": {"Obs": [
        {"@TIME_PERIOD": "2022", "@OBS_VALUE": "8.0"},
        {"@TIME_PERIOD": "2023", "@OBS_VALUE": "4.1"},
    ]}}}}
    obs, seen = call(lambda r: httpx.Response(200, json=payload), lambda cf: imf_sdmx("IFS", "PCPIPCH", client_factory=cf))
    assert seen[0].url.path.endswith("/CompactData/IFS/A.US.PCPIPCH")
    assert (obs.year, obs.value) == ("2023", 4.1)


def test_sdmx_history_sends_period_range_and_returns_rows():
    payload = {"CompactData": {"DataSet": {"Series": {"Obs": [
        {"@TIME_PERIOD": "2021", "@OBS_VALUE": "99.0"},
        {"@TIME_PERIOD": "2023", "@OBS_VALUE": "104.8"},
        {"@TIME_PERIOD": "2022", "@OBS_VALUE": "100.9"},
        {"@TIME_PERIOD": "2024", "@OBS_VALUE": "110.0"},
    ]}}}}
    obs, seen = call(
        lambda r: httpx.Response(200, json=payload),
        lambda cf: imf_sdmx_history("WEO", "NGDPD", start=2022, scale=1e9, client_factory=cf),
        identity=WORLD,
        year=2023,
    )
    req = seen[0]
    assert req.url.path.endswith("/CompactData/WEO/A.WLD.NGDPD")
    assert req.url.params["startPeriod"] == "2022"
    assert req.url.params["endPeriod"] == "2023"

    assert [row["year"] for row in obs.items] == ["2022", "2023"]
    assert obs.items[0]["value"] == pytest.approx(100.9e9)
    assert (obs.year, obs.value) == ("2023", pytest.approx(104.8e9))


def test_sdmx_history_without_start_and_empty_range():
    empty = {"CompactData": {"DataSet": {}}}
    obs, seen = call(
        lambda r: httpx.Response(200, json=empty),
        lambda cf: imf_sdmx_history("WEO", "PCPIPCH", client_factory=cf),
        year=2020,
    )
    assert "startPeriod" not in seen[0].url.params
    assert seen[0].url.params["endPeriod"] == "2020"
    assert obs is None


# -----------------------------------------------------------------------------
# World Bank
# -----------------------------------------------------------------------------

WB_ROWS = [
    {"page": 1, "pages": 1, "per_page": 100, "total": 3},
    [
        {"date": "2023", "value": None},
        {"date": "2022", "value": 2.1},
        {"date": "2021", "value": 5.9},
    ],
]


def test_wb_latest_non_null_value():
    obs, seen = call(lambda r: httpx.Response(200, json=WB_ROWS), lambda cf: wb_indicator("NY.GDP.MKTP.KD.ZG", client_factory=cf))
    assert seen[0].url.path == "/v2/country/US/indicator/NY.GDP.MKTP.KD.ZG"
    assert seen[0].url.params["format"] == "json"
    assert (obs.year, obs.value) == ("2022", 2.1)


def test_wb_year_bounds_request_window():
    obs, seen = call(
        lambda r: httpx.Response(200, json=WB_ROWS),
        lambda cf: wb_indicator("NY.GDP.MKTP.KD.ZG", client_factory=cf),
        year=2021,
    )
    assert seen[0].url.params["date"].endswith(":2021")
    assert obs.year == "2021"


def test_wb_aggregate_uses_iso3():
    _, seen = call(lambda r: httpx.Response(200, json=WB_ROWS), lambda cf: wb_indicator("SP.POP.TOTL", client_factory=cf),
                   identity=WORLD)
    assert "/country/WLD/" in seen[0].url.path


def test_wb_error_payload_is_a_failure():
    err = [{"message": [{"id": "120", "key": "Invalid value", "value": "The provided parameter value is not valid"}]}]
    with pytest.raises(ProviderError):
        call(lambda r: httpx.Response(200, json=err), lambda cf: wb_indicator("FR.INR.RINR", client_factory=cf))


def test_wb_empty_data_is_no_data():
    obs, _ = call(lambda r: httpx.Response(200, json=[{"total": 0}, None]), lambda cf: wb_indicator("IC.BUS.EASE.XQ", client_factory=cf))
    assert obs is None


def test_regulatory_quality_rescaled():
    rows = [{"page": 1}, [{"date": "2022", "value": 0.0}]]
    obs, _ = call(
        lambda r: httpx.Response(200, json=rows),
        lambda cf: wb_indicator("GE.RQ.EST", transform=regulatory_quality_score, client_factory=cf),
    )
    assert obs.value == 50.0
    assert regulatory_quality_score(2.5) == 100.0
    assert regulatory_quality_score(-3.0) == 0.0


# -----------------------------------------------------------------------------
# NewsAPI / API Ninjas
# -----------------------------------------------------------------------------

ARTICLES = {
    "status": "ok",
    "totalResults": 120,
    "articles": [
        {"title": "Fed holds rates", "url": "https://x/1", "source": {"name": "Wire"}, "publishedAt": "2023-05-03T10:00:00Z"},
        {"title": None, "url": None, "source": None, "publishedAt": "2023-05-02T10:00:00Z"},
        {"title": "Jobs report", "url": "https://x/3", "source": {"name": "Daily"}, "publishedAt": "2023-05-01T10:00:00Z"},
        {"title": "Ignored", "url": "https://x/4", "source": {"name": "Daily"}, "publishedAt": "2023-04-30T10:00:00Z"},
    ],
}


def test_news_without_key_is_unavailable(monkeypatch):
    monkeypatch.delenv("NEWS_API_KEY", raising=False)
    with pytest.raises(ProviderUnavailable):
        call(lambda r: httpx.Response(200, json=ARTICLES), lambda cf: news_search("economy", client_factory=cf))


def test_news_headlines(monkeypatch):
    monkeypatch.setenv("NEWS_API_KEY", "k-123")
    obs, seen = call(lambda r: httpx.Response(200, json=ARTICLES), lambda cf: news_search("economy", page_size=3, client_factory=cf))

    req = seen[0]
    assert req.headers["X-Api-Key"] == "k-123"
    assert "k-123" not in str(req.url)
    assert req.url.params["q"] == "United States economy"
    assert req.url.params["pageSize"] == "3"

    assert obs.value == 3.0
    assert obs.year == "2023"
    assert [i["title"] for i in obs.items] == ["Fed holds rates", "No title available", "Jobs report"]
    assert obs.items[1]["source"] == "Unknown"


def test_news_error_status_and_rate_limit(monkeypatch):
    monkeypatch.setenv("NEWS_API_KEY", "k-123")
    err = {"status": "error", "code": "apiKeyInvalid", "message": "Your API key is invalid"}
    with pytest.raises(ProviderError):
        call(lambda r: httpx.Response(200, json=err), lambda cf: news_search("trade", client_factory=cf))

    with pytest.raises(ProviderError) as exc:
        call(lambda r: httpx.Response(429, json={}), lambda cf: news_search("trade", client_factory=cf))
    assert exc.value.status == 429


def test_world_news_query_is_global():
    assert topic_query("markets", WORLD) == "global stock market"


def test_ninjas_population(monkeypatch):
    monkeypatch.setenv("API_NINJAS_KEY", "n-1")
    payload = {
        "country_name": "United States",
        "historical_population": [
            {"year": 2023, "population": 339996563},
            {"year": 2020, "population": 335942003},
        ],
        "population_forecast": [{"year": 2050, "population": 375391963}],
    }
    obs, seen = call(lambda r: httpx.Response(200, json=payload), lambda cf: ninjas_population(client_factory=cf))
    assert seen[0].headers["X-Api-Key"] == "n-1"
    assert seen[0].url.params["country"] == "United States"
    assert (obs.year, obs.value) == ("2023", 339996563.0)


# -----------------------------------------------------------------------------
# shared HTTP helper
# -----------------------------------------------------------------------------

def test_get_json_retries_server_errors():
    statuses = iter([503, 502, 200])

    def handler(request):
        code = next(statuses)
        return httpx.Response(code, json={"ok": code == 200})

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await get_json("https://example.test/x", client_factory=lambda: client, retries=2, backoff=0)

    assert asyncio.run(go()) == {"ok": True}


def test_get_json_does_not_retry_client_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404, json={})

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await get_json("https://example.test/x", provider="wb", client_factory=lambda: client, retries=2, backoff=0)

    with pytest.raises(ProviderError) as exc:
        asyncio.run(go())
    assert exc.value.status == 404
    assert exc.value.provider == "wb"
    assert len(calls) == 1


def test_get_json_raises_last_error_when_retries_run_out():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, json={})

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await get_json("https://example.test/x", client_factory=lambda: client, retries=1, backoff=0)

    with pytest.raises(ProviderError) as exc:
        asyncio.run(go())
    assert exc.value.status == 503
    assert len(calls) == 2


def test_get_json_transport_error_without_retries():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await get_json("https://example.test/x", provider="imf_dm", client_factory=lambda: client, retries=0)

    with pytest.raises(ProviderError) as exc:
        asyncio.run(go())
    assert exc.value.status is None
    assert "transport error" in str(exc.value)
