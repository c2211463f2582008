# macroview/providers/ninjas_provider.py — API Ninjas population (last-resort source)
from __future__ import annotations

from typing import Any, Dict, Optional
import os

from macroview.models import CountryIdentity, FetchFn, RawObservation
from macroview.providers.http_client import ClientFactory, get_http_client, get_json
from macroview.utils.errors import ProviderUnavailable
from macroview.utils.series_math import latest_up_to, year_series

NINJAS_TIMEOUT = float(os.getenv("NINJAS_TIMEOUT", "8.0"))

_POPULATION_URL = "https://api.api-ninjas.com/v1/population"


def population_series_from_payload(payload: Any) -> Dict[str, float]:
    """
    {"historical_population": [{"year": 2023, "population": 331893745}, ...],
     "population_forecast": [...]}  ->  {YYYY: float}

    Forecast rows are ignored.
    """
    if not isinstance(payload, dict):
        return {}
    rows = payload.get("historical_population")
    if not isinstance(rows, list):
        return {}
    return year_series((r.get("year"), r.get("population")) for r in rows if isinstance(r, dict))


def ninjas_population(*, client_factory: ClientFactory = get_http_client) -> FetchFn:
    async def fetch(identity: CountryIdentity, year: Optional[int] = None) -> Optional[RawObservation]:
        key = os.getenv("API_NINJAS_KEY")
        if not key:
            raise ProviderUnavailable("API_NINJAS_KEY is not configured", provider="ninjas")
        data = await get_json(
            _POPULATION_URL,
            params={"country": identity.canonical_name},
            headers={"X-Api-Key": key},
            provider="ninjas",
            client_factory=client_factory,
        )
        hit = latest_up_to(population_series_from_payload(data), year)
        if hit is None:
            return None
        period, value = hit
        return RawObservation(value=value, year=period)

    fetch.__name__ = "ninjas_population"
    return fetch


__all__ = ["NINJAS_TIMEOUT", "ninjas_population", "population_series_from_payload"]
