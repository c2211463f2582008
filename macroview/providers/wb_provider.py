# macroview/providers/wb_provider.py
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional
import os

from macroview.models import CountryIdentity, FetchFn, RawObservation
from macroview.providers.http_client import ClientFactory, get_http_client, get_json
from macroview.utils.errors import ProviderError, ProviderUnavailable
from macroview.utils.series_math import default_cutoff, latest_up_to, scale_to_range

# -------------------------------------------------------------------
# CONFIG
# -------------------------------------------------------------------
WB_TIMEOUT = float(os.getenv("WB_TIMEOUT", "8.0"))
WB_PER_PAGE = int(os.getenv("WB_PER_PAGE", "100"))
WB_LOOKBACK_YEARS = int(os.getenv("WB_LOOKBACK_YEARS", "25"))

WB_BASE = "https://api.worldbank.org/v2"

def _build_url(country: str, code: str) -> str:
    return f"{WB_BASE}/country/{country}/indicator/{code}"


# -------------------------------------------------------------------
# RAW SERIES FETCH
# -------------------------------------------------------------------
async def fetch_wb_indicator_raw(
    country: str,
    code: str,
    *,
    cutoff: Optional[int] = None,
    client_factory: ClientFactory = get_http_client,
) -> List[Dict[str, Any]]:
    """
    Returns the raw World Bank data array:
       [ {date: "2023", value: 4.3, ...}, ... ]
    limited to [cutoff - WB_LOOKBACK_YEARS, cutoff].
    """
    y2 = default_cutoff(cutoff)
    y1 = max(1960, y2 - WB_LOOKBACK_YEARS)
    url = _build_url(country, code)
    data = await get_json(
        url,
        params={"format": "json", "per_page": WB_PER_PAGE, "date": f"{y1}:{y2}"},
        provider="wb",
        client_factory=client_factory,
    )

    # WB returns: [ {metadata}, [data...] ]  or  [ {"message": [...]} ] on error
    if not isinstance(data, list) or not data:
        raise ProviderError("unexpected payload shape", provider="wb", endpoint=url)
    if len(data) < 2:
        head = data[0] if isinstance(data[0], dict) else {}
        msg = head.get("message")
        raise ProviderError(f"api error: {msg!r}", provider="wb", endpoint=url)
    arr = data[1]
    if arr is None:
        return []
    if not isinstance(arr, list):
        raise ProviderError("unexpected data block", provider="wb", endpoint=url)
    return arr


# -------------------------------------------------------------------
# NORMALIZATION
# -------------------------------------------------------------------
def wb_year_dict_from_raw(raw: Optional[List[Dict[str, Any]]]) -> Dict[str, float]:
    """
    Converts raw WB list → { "YYYY": float }
    WB data is usually returned newest -> oldest.
    """
    out: Dict[str, float] = {}
    if not raw:
        return out

    for entry in raw:
        if not isinstance(entry, dict):
            continue
        y = entry.get("date")
        v = entry.get("value")
        if y is None or v is None or isinstance(v, bool):
            continue
        try:
            out[str(y)] = float(v)
        except (TypeError, ValueError):
            continue

    return dict(sorted(out.items(), key=lambda kv: kv[0]))


# -------------------------------------------------------------------
# ATTEMPT FACTORY
# -------------------------------------------------------------------
def wb_indicator(
    code: str,
    *,
    transform: Optional[Callable[[float], float]] = None,
    client_factory: ClientFactory = get_http_client,
) -> FetchFn:
    """
    Build a ProviderAttempt.fetch for one WB indicator, queried by ISO2
    (aggregates such as WLD have no ISO2 and go by ISO3, which the API accepts).
    """

    async def fetch(identity: CountryIdentity, year: Optional[int] = None) -> Optional[RawObservation]:
        country = identity.iso2 or identity.iso3
        if not country:
            raise ProviderUnavailable("no ISO code for country", provider="wb")
        raw = await fetch_wb_indicator_raw(country, code, cutoff=year, client_factory=client_factory)
        hit = latest_up_to(wb_year_dict_from_raw(raw), year)
        if hit is None:
            return None
        period, value = hit
        if transform is not None:
            value = transform(value)
        return RawObservation(value=value, year=period)

    fetch.__name__ = f"wb_{code.replace('.', '_').lower()}"
    return fetch


def regulatory_quality_score(estimate: float) -> float:
    """WGI estimate (-2.5..2.5) -> 0..100."""
    return scale_to_range(estimate, -2.5, 2.5)


__all__ = [
    "WB_TIMEOUT",
    "fetch_wb_indicator_raw",
    "regulatory_quality_score",
    "wb_indicator",
    "wb_year_dict_from_raw",
]
