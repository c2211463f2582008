# macroview/providers/imf_provider.py
from __future__ import annotations

"""
IMF provider for MacroView.

Two routes into the same IMF numbers:

- DataMapper (primary):  /external/datamapper/api/v1/{CODE}/{ISO3}
      -> {"values": {CODE: {ISO3: {"YYYY": float}}}}
- SDMX CompactData (secondary):  /CompactData/{DATASET}/A.{ISO2}.{CODE}
      -> {"CompactData": {"DataSet": {"Series": {"Obs": [...]}}}}

DataMapper publishes WEO projections several years ahead, which is why every
read goes through latest_up_to() with an explicit cutoff.
"""

from typing import Any, Dict, List, Optional
import os

from macroview.models import CountryIdentity, FetchFn, RawObservation
from macroview.providers.http_client import ClientFactory, get_http_client, get_json
from macroview.utils.errors import ProviderError, ProviderUnavailable
from macroview.utils.series_math import default_cutoff, latest_up_to, year_series

# ----------------------------
# Config
# ----------------------------
IMF_TIMEOUT = float(os.getenv("IMF_TIMEOUT", "15.0"))

_DATAMAPPER_BASE = "https://www.imf.org/external/datamapper/api/v1"
_SDMX_BASE = "https://dataservices.imf.org/REST/SDMX_JSON.svc/CompactData"

# DataMapper reports some series in billions / millions
DM_SCALES: Dict[str, float] = {
    "NGDPD": 1e9,  # GDP, current prices, billions of USD
    "LP": 1e6,     # population, millions
}


# ----------------------------
# DataMapper
# ----------------------------
def dm_series_from_payload(payload: Any, code: str, iso3: str) -> Dict[str, float]:
    """{YYYY: float} for one country out of a DataMapper response."""
    if not isinstance(payload, dict):
        return {}
    block = payload.get("values")
    if not isinstance(block, dict):
        # proxied responses use {"data": {ISO3: {...}}}
        by_country = payload.get("data")
    else:
        by_country = block.get(code)
    if not isinstance(by_country, dict):
        return {}
    rows = by_country.get(iso3) or by_country.get(iso3.upper())
    if not isinstance(rows, dict):
        return {}
    return year_series(rows.items())


async def fetch_dm_series(
    code: str,
    iso3: str,
    *,
    client_factory: ClientFactory = get_http_client,
) -> Dict[str, float]:
    url = f"{_DATAMAPPER_BASE}/{code}/{iso3}"
    data = await get_json(url, provider="imf_dm", client_factory=client_factory)
    return dm_series_from_payload(data, code, iso3)


def imf_datamapper(
    code: str,
    *,
    scale: Optional[float] = None,
    client_factory: ClientFactory = get_http_client,
) -> FetchFn:
    factor = DM_SCALES.get(code, 1.0) if scale is None else scale

    async def fetch(identity: CountryIdentity, year: Optional[int] = None) -> Optional[RawObservation]:
        if not identity.iso3:
            raise ProviderUnavailable("DataMapper needs an ISO3 code", provider="imf_dm")
        series = await fetch_dm_series(code, identity.iso3, client_factory=client_factory)
        hit = latest_up_to(series, year)
        if hit is None:
            return None
        period, value = hit
        return RawObservation(value=value * factor, year=period)

    fetch.__name__ = f"imf_dm_{code.lower()}"
    return fetch


# ----------------------------
# SDMX CompactData
# ----------------------------
def _as_list(x: Any) -> List[Any]:
    if x is None:
        return []
    return x if isinstance(x, list) else [x]


def sdmx_series_from_payload(payload: Any) -> Dict[str, float]:
    """First series' observations as {YYYY: float}. Series/Obs may be a dict or a list."""
    if not isinstance(payload, dict):
        return {}
    dataset = (payload.get("CompactData") or {}).get("DataSet") or {}
    if not isinstance(dataset, dict):
        return {}
    series = _as_list(dataset.get("Series"))
    if not series or not isinstance(series[0], dict):
        return {}
    obs = _as_list(series[0].get("Obs"))
    return year_series(
        (o.get("@TIME_PERIOD"), o.get("@OBS_VALUE")) for o in obs if isinstance(o, dict)
    )


async def fetch_sdmx_series(
    dataset: str,
    area: str,
    code: str,
    *,
    client_factory: ClientFactory = get_http_client,
) -> Dict[str, float]:
    url = f"{_SDMX_BASE}/{dataset}/A.{area}.{code}"
    data = await get_json(url, provider="imf_sdmx", client_factory=client_factory)
    if isinstance(data, dict) and "CompactData" not in data:
        raise ProviderError("unexpected SDMX payload", provider="imf_sdmx", endpoint=url)
    return sdmx_series_from_payload(data)


def imf_sdmx(
    dataset: str,
    code: str,
    *,
    scale: float = 1.0,
    client_factory: ClientFactory = get_http_client,
) -> FetchFn:
    # SDMX keys by ISO2; aggregates (WLD) have none and use their ISO3 code
    async def fetch(identity: CountryIdentity, year: Optional[int] = None) -> Optional[RawObservation]:
        area = identity.iso2 or identity.iso3
        if not area:
            raise ProviderUnavailable("SDMX needs an ISO code", provider="imf_sdmx")
        series = await fetch_sdmx_series(dataset, area, code, client_factory=client_factory)
        hit = latest_up_to(series, year)
        if hit is None:
            return None
        period, value = hit
        return RawObservation(value=value * scale, year=period)

    fetch.__name__ = f"imf_sdmx_{dataset.lower()}_{code.lower()}"
    return fetch


# ----------------------------
# SDMX range history
# ----------------------------
async def fetch_sdmx_history(
    dataset: str,
    area: str,
    code: str,
    *,
    start: Optional[int] = None,
    end: Optional[int] = None,
    client_factory: ClientFactory = get_http_client,
) -> Dict[str, float]:
    """
    Every observation of one series within [start, end], as {YYYY: float}.
    The range goes to the API as startPeriod/endPeriod and is applied again
    locally because the service does not always honour it.
    """
    cutoff = default_cutoff(end)
    params: Dict[str, Any] = {"endPeriod": cutoff}
    if start is not None:
        params["startPeriod"] = start
    url = f"{_SDMX_BASE}/{dataset}/A.{area}.{code}"
    data = await get_json(url, params=params, provider="imf_sdmx", client_factory=client_factory)
    if isinstance(data, dict) and "CompactData" not in data:
        raise ProviderError("unexpected SDMX payload", provider="imf_sdmx", endpoint=url)
    lo = start if start is not None else 0
    return {y: v for y, v in sdmx_series_from_payload(data).items() if lo <= int(y) <= cutoff}


def imf_sdmx_history(
    dataset: str,
    code: str,
    *,
    start: Optional[int] = None,
    scale: float = 1.0,
    client_factory: ClientFactory = get_http_client,
) -> FetchFn:
    """
    Like imf_sdmx, but the whole range comes back in `items` as
    {"year", "value"} rows, oldest first; value/year are the last row.
    """

    async def fetch(identity: CountryIdentity, year: Optional[int] = None) -> Optional[RawObservation]:
        area = identity.iso2 or identity.iso3
        if not area:
            raise ProviderUnavailable("SDMX needs an ISO code", provider="imf_sdmx")
        series = await fetch_sdmx_history(
            dataset, area, code, start=start, end=year, client_factory=client_factory
        )
        if not series:
            return None
        rows = tuple({"year": y, "value": v * scale} for y, v in sorted(series.items()))
        last = rows[-1]
        return RawObservation(value=last["value"], year=last["year"], items=rows)

    fetch.__name__ = f"imf_sdmx_history_{dataset.lower()}_{code.lower()}"
    return fetch


__all__ = [
    "DM_SCALES",
    "IMF_TIMEOUT",
    "dm_series_from_payload",
    "fetch_dm_series",
    "fetch_sdmx_history",
    "fetch_sdmx_series",
    "imf_datamapper",
    "imf_sdmx",
    "imf_sdmx_history",
    "sdmx_series_from_payload",
]
