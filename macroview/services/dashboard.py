# macroview/services/dashboard.py — query facade used by the HTTP layer
from __future__ import annotations

from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
import asyncio
import logging

from macroview.models import CountryIdentity, IndicatorDefinition, IndicatorResult, Unresolved
from macroview.providers.http_client import ClientFactory, get_http_client
from macroview.services.cache_store import CacheStore
from macroview.services.indicator_matrix import (
    DEFAULT_DASHBOARD,
    INDICATOR_MATRIX,
    NEWS_QUOTA,
    build_indicator_matrix,
    history_definition,
)
from macroview.services.orchestrator import IndicatorOrchestrator
from macroview.services.quota_guard import QuotaGuard
from macroview.services.storage import KeyValueStorage, open_storage
from macroview.utils.country_codes import CountryResolver, Reference, get_resolver

logger = logging.getLogger("macroview")


class DashboardQueryFacade:
    """Resolve a country reference once, then fan out indicator fetches."""

    def __init__(
        self,
        resolver: CountryResolver,
        orchestrator: IndicatorOrchestrator,
        catalog: Optional[Mapping[str, IndicatorDefinition]] = None,
        *,
        storage: Optional[KeyValueStorage] = None,
        client_factory: ClientFactory = get_http_client,
    ) -> None:
        self.resolver = resolver
        self.orchestrator = orchestrator
        self.catalog: Dict[str, IndicatorDefinition] = dict(INDICATOR_MATRIX if catalog is None else catalog)
        self._storage = storage
        self._client_factory = client_factory

    @property
    def cache(self) -> CacheStore:
        return self.orchestrator.cache

    @property
    def quota(self) -> QuotaGuard:
        return self.orchestrator.quota

    # ---- lookup --------------------------------------------------------------

    def resolve(self, reference: Reference) -> Union[CountryIdentity, Unresolved]:
        return self.resolver.resolve(reference)

    def definition(self, indicator_id: str) -> IndicatorDefinition:
        try:
            return self.catalog[indicator_id]
        except KeyError:
            raise KeyError(f"unknown indicator {indicator_id!r}") from None

    def _ids(self, indicator_ids: Optional[Iterable[str]]) -> List[str]:
        if indicator_ids is None:
            ids = [i for i in DEFAULT_DASHBOARD if i in self.catalog]
        else:
            ids = list(dict.fromkeys(indicator_ids))
        for i in ids:
            self.definition(i)
        return ids

    # ---- queries -------------------------------------------------------------

    async def get_indicator(
        self,
        reference: Reference,
        indicator_id: str,
        year: Optional[int] = None,
    ) -> IndicatorResult:
        definition = self.definition(indicator_id)
        identity = self.resolve(reference)
        if isinstance(identity, Unresolved):
            return IndicatorResult.unresolved()
        return await self.orchestrator.fetch(identity, definition, year)

    async def iter_indicators(
        self,
        reference: Reference,
        indicator_ids: Optional[Sequence[str]] = None,
        year: Optional[int] = None,
    ) -> AsyncIterator[Tuple[str, IndicatorResult]]:
        """Yield (indicator_id, result) in completion order, not request order."""
        ids = self._ids(indicator_ids)
        identity = self.resolve(reference)
        if isinstance(identity, Unresolved):
            logger.info("unresolved country reference %r (%s)", identity.reference, identity.reason)
            for i in ids:
                yield i, IndicatorResult.unresolved()
            return

        async def one(indicator_id: str) -> Tuple[str, IndicatorResult]:
            return indicator_id, await self.orchestrator.fetch(identity, self.catalog[indicator_id], year)

        for fut in asyncio.as_completed([one(i) for i in ids]):
            yield await fut

    async def get_indicators(
        self,
        reference: Reference,
        indicator_ids: Optional[Sequence[str]] = None,
        year: Optional[int] = None,
    ) -> Dict[str, IndicatorResult]:
        ids = self._ids(indicator_ids)
        got: Dict[str, IndicatorResult] = {}
        async for indicator_id, result in self.iter_indicators(reference, ids, year):
            got[indicator_id] = result
        return {i: got[i] for i in ids}

    async def get_history(
        self,
        reference: Reference,
        indicator_id: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> IndicatorResult:
        """Yearly rows in `items`, oldest first; value/year hold the last row."""
        if start is not None and end is not None and start > end:
            raise ValueError(f"start {start} is after end {end}")
        definition = history_definition(indicator_id, start, client_factory=self._client_factory)
        identity = self.resolve(reference)
        if isinstance(identity, Unresolved):
            return IndicatorResult.unresolved()
        return await self.orchestrator.fetch(identity, definition, end)

    # ---- news housekeeping ---------------------------------------------------

    def news_status(self) -> Dict[str, Any]:
        state = self.quota.today(NEWS_QUOTA)
        out = state.to_dict()
        out["cached_topics"] = self.cache.keys("news:")
        return out

    def clear_news_cache(self) -> int:
        """Drop cached headlines; the daily counter is left alone."""
        return self.cache.clear("news:")

    def close(self) -> None:
        close = getattr(self._storage, "close", None)
        if callable(close):
            close()


def build_default_facade(
    *,
    durable: Optional[bool] = None,
    db_path: Optional[str] = None,
    client_factory: ClientFactory = get_http_client,
) -> DashboardQueryFacade:
    """Process-lifetime wiring: one storage, one cache, one quota, one resolver."""
    storage = open_storage(durable, db_path)
    cache = CacheStore(storage)
    quota = QuotaGuard(storage)
    catalog = INDICATOR_MATRIX if client_factory is get_http_client else build_indicator_matrix(client_factory)
    orchestrator = IndicatorOrchestrator(cache, quota)
    logger.info("dashboard facade ready (%d indicators, storage=%s)", len(catalog), type(storage).__name__)
    return DashboardQueryFacade(
        get_resolver(), orchestrator, catalog, storage=storage, client_factory=client_factory
    )


__all__ = ["DashboardQueryFacade", "build_default_facade"]
