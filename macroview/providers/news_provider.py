# macroview/providers/news_provider.py — NewsAPI "everything" search (daily-quota bound)
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
import os

from macroview.models import CountryIdentity, FetchFn, RawObservation
from macroview.providers.http_client import ClientFactory, get_http_client, get_json
from macroview.utils.errors import ProviderError, ProviderUnavailable
from macroview.utils.series_math import year_of

NEWS_TIMEOUT = float(os.getenv("NEWS_TIMEOUT", "8.0"))
NEWS_PAGE_SIZE = int(os.getenv("NEWS_PAGE_SIZE", "3"))

_NEWS_URL = "https://newsapi.org/v2/everything"

# topic -> search template; {place} is the country name or "global"
NEWS_TOPICS: Dict[str, str] = {
    "economy": "{place} economy",
    "markets": "{place} stock market",
    "trade": "{place} trade tariffs",
}


def news_api_key() -> Optional[str]:
    key = os.getenv("NEWS_API_KEY")
    if not key or key == "your_news_api_key_here":
        return None
    return key


def topic_query(topic: str, identity: CountryIdentity) -> str:
    place = "global" if identity.iso3 == "WLD" else identity.canonical_name
    template = NEWS_TOPICS.get(topic, "{place} " + topic)
    return template.format(place=place)


def headlines_from_payload(payload: Any, limit: int = NEWS_PAGE_SIZE) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict):
        raise ProviderError("unexpected NewsAPI payload", provider="news")
    if payload.get("status") == "error":
        raise ProviderError(
            f"NewsAPI error: {payload.get('code')}: {payload.get('message')}",
            provider="news",
        )
    articles = payload.get("articles")
    if not isinstance(articles, list):
        raise ProviderError("NewsAPI response without articles", provider="news")

    items: List[Dict[str, Any]] = []
    for a in articles[:limit]:
        if not isinstance(a, dict):
            continue
        source = a.get("source") if isinstance(a.get("source"), dict) else {}
        items.append({
            "title": a.get("title") or "No title available",
            "url": a.get("url") or "#",
            "source": source.get("name") or "Unknown",
            "published_at": a.get("publishedAt"),
            "description": a.get("description"),
        })
    return items


def _newest_year(items: List[Dict[str, Any]]) -> Optional[str]:
    years: List[Tuple[int, str]] = []
    for it in items:
        y = year_of(it.get("published_at") or "")
        if y is not None:
            years.append((y, str(y)))
    return max(years)[1] if years else None


def news_search(
    topic: str,
    *,
    page_size: Optional[int] = None,
    client_factory: ClientFactory = get_http_client,
) -> FetchFn:
    """
    Headlines for `topic` about a country. The observation value is the
    number of headlines; the headlines themselves travel in `items`.
    """

    async def fetch(identity: CountryIdentity, year: Optional[int] = None) -> Optional[RawObservation]:
        key = news_api_key()
        if key is None:
            raise ProviderUnavailable("NEWS_API_KEY is not configured", provider="news")
        size = page_size or NEWS_PAGE_SIZE
        params: Dict[str, Any] = {
            "q": topic_query(topic, identity),
            "language": "en",
            "sortBy": "publishedAt",
            "pageSize": size,
        }
        if year is not None:
            params["to"] = f"{int(year)}-12-31"
        # key goes in a header so it never shows up in logged URLs
        data = await get_json(
            _NEWS_URL,
            params=params,
            headers={"X-Api-Key": key},
            provider="news",
            client_factory=client_factory,
            retries=0,
        )
        items = headlines_from_payload(data, size)
        return RawObservation(value=float(len(items)), year=_newest_year(items), items=tuple(items))

    fetch.__name__ = f"news_{topic}"
    return fetch


__all__ = [
    "NEWS_PAGE_SIZE",
    "NEWS_TIMEOUT",
    "NEWS_TOPICS",
    "headlines_from_payload",
    "news_api_key",
    "news_search",
    "topic_query",
]
