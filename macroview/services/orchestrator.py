# macroview/services/orchestrator.py — cache-first provider fallback with request coalescing
from __future__ import annotations

from typing import Dict, Optional
import asyncio
import logging

from macroview.models import (
    CountryIdentity,
    ErrorKind,
    IndicatorDefinition,
    IndicatorResult,
    ProviderAttempt,
    RawObservation,
)
from macroview.services.cache_store import CacheStore, cache_key, country_code_for
from macroview.services.quota_guard import QuotaGuard
from macroview.utils.errors import ProviderError, QuotaExceeded
from macroview.utils.series_math import coerce_float, default_cutoff, year_of
from macroview.utils.timeouts import with_timeout

logger = logging.getLogger("macroview")


def _accept(obs: Optional[RawObservation], year: Optional[int], provider: str) -> IndicatorResult:
    """Result for a usable observation; raises ProviderError otherwise."""
    if obs is None:
        raise ProviderError("no data", provider=provider)
    value = coerce_float(obs.value)
    if value is None:
        raise ProviderError(f"non-numeric value {obs.value!r}", provider=provider)
    period = str(obs.year) if obs.year is not None else None
    if period is not None:
        y = year_of(period)
        if y is not None and y > default_cutoff(year):
            raise ProviderError(f"observation {period} is after {default_cutoff(year)}", provider=provider)
    return IndicatorResult(value=value, year=period, source_label=provider, items=obs.items)


class IndicatorOrchestrator:
    """
    One `fetch` per (country, indicator, year):

      fresh cache -> provider chain in order -> stale cache -> unavailable

    Concurrent calls for the same key share a single chain run.
    """

    def __init__(self, cache: CacheStore, quota: QuotaGuard) -> None:
        self.cache = cache
        self.quota = quota
        self._inflight: Dict[str, "asyncio.Task[IndicatorResult]"] = {}

    @staticmethod
    def key_for(identity: CountryIdentity, indicator: IndicatorDefinition, year: Optional[int] = None) -> str:
        return cache_key(indicator.family, indicator.id, country_code_for(identity), year)

    def inflight(self) -> int:
        return len(self._inflight)

    async def fetch(
        self,
        identity: CountryIdentity,
        indicator: IndicatorDefinition,
        year: Optional[int] = None,
    ) -> IndicatorResult:
        key = self.key_for(identity, indicator, year)

        entry = self.cache.get(key)
        if entry is not None:
            return entry.value.with_flags(from_cache=True, error=None)

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run_chain(key, identity, indicator, year))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug("coalescing %s onto in-flight chain", key)

        # a caller giving up must not cancel the chain other callers wait on
        return await asyncio.shield(task)

    def _forget(self, key: str, task: "asyncio.Task[IndicatorResult]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    # ---- chain ---------------------------------------------------------------

    async def _attempt(
        self,
        attempt: ProviderAttempt,
        identity: CountryIdentity,
        year: Optional[int],
    ) -> IndicatorResult:
        bucket = attempt.quota_provider
        if bucket is not None and not self.quota.reserve(bucket):
            raise QuotaExceeded("daily quota exhausted", provider=attempt.provider_id)
        try:
            obs = await with_timeout(attempt.fetch(identity, year), attempt.timeout_s, provider=attempt.provider_id)
            result = _accept(obs, year, attempt.provider_id)
        except BaseException:
            if bucket is not None:
                self.quota.release(bucket)
            raise
        if bucket is not None:
            self.quota.record_use(bucket)
        return result

    async def _run_chain(
        self,
        key: str,
        identity: CountryIdentity,
        indicator: IndicatorDefinition,
        year: Optional[int],
    ) -> IndicatorResult:
        issued_at = self.cache.now()

        for attempt in indicator.provider_chain:
            try:
                result = await self._attempt(attempt, identity, year)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # providers are opaque; anything they raise is an attempt failure
                logger.warning(
                    "[%s] %s attempt failed for %s: %s (%s)",
                    attempt.provider_id,
                    indicator.id,
                    key,
                    e,
                    getattr(e, "kind", ErrorKind.PROVIDER_FAILURE).value,
                )
                continue

            self.cache.put(key, result, indicator.ttl_seconds, issued_at=issued_at)
            logger.debug("%s resolved by %s (%s)", key, attempt.provider_id, result.year)
            return result

        lookup = self.cache.get_fresh_or_stale(key)
        if lookup is None:
            logger.warning("%s: every provider failed and nothing is cached", key)
            return IndicatorResult.unavailable()
        if lookup.fresh:
            # another writer filled the key while this chain was running
            return lookup.entry.value.with_flags(from_cache=True, error=None)
        logger.info("%s: serving stale entry written at %.0f", key, lookup.entry.written_at)
        return lookup.entry.value.with_flags(from_cache=True, error=ErrorKind.STALE_FALLBACK)


__all__ = ["IndicatorOrchestrator"]
