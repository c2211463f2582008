# macroview/services/cache_store.py — two-tier indicator cache (in-process + durable)
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import json
import logging
import time

from macroview.models import CacheEntry, CountryIdentity, IndicatorResult
from macroview.services.storage import KeyValueStorage, MemoryStorage
from macroview.utils.country_codes import normalize_name

logger = logging.getLogger("macroview")

CACHE_PREFIX = "macroview:cache:"


def country_code_for(identity: CountryIdentity) -> str:
    return identity.iso3 or identity.iso2 or normalize_name(identity.canonical_name)


def cache_key(family: str, indicator_id: str, country_code: str, year: Optional[int] = None) -> str:
    """
    `{family}:{indicator}:{country}`; year-pinned queries get `@{year}` on the
    indicator segment so they never collide with the "latest" entry.
    """
    indicator = f"{indicator_id}@{int(year)}" if year is not None else indicator_id
    return f"{family}:{indicator}:{country_code.upper()}"


@dataclass(frozen=True)
class CacheLookup:
    entry: CacheEntry
    fresh: bool


class CacheStore:
    """
    In-process dict in front of a KeyValueStorage.

    Stale entries are kept (not evicted) so the orchestrator can serve them
    when every provider fails. Durable reads promote into memory; durable
    writes are best-effort.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        *,
        clock: Callable[[], float] = time.time,
        prefix: str = CACHE_PREFIX,
    ) -> None:
        self._storage = storage if storage is not None else MemoryStorage()
        self._clock = clock
        self._prefix = prefix
        self._memory: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._write_errors = 0

    # ---- tiers ---------------------------------------------------------------

    def _read_durable(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = self._storage.get_item(self._prefix + key)
        except Exception as e:
            logger.warning("cache: durable read failed for %s: %r", key, e)
            return None
        if raw is None:
            return None
        try:
            entry = CacheEntry.from_dict(json.loads(raw))
        except Exception as e:
            logger.warning("cache: dropping corrupt durable entry %s: %r", key, e)
            return None
        if entry.key != key:
            return None
        return entry

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._memory.get(key)
        if entry is not None:
            return entry
        entry = self._read_durable(key)
        if entry is not None:
            self._memory[key] = entry
        return entry

    # ---- public --------------------------------------------------------------

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[CacheEntry]:
        """Fresh entry or None."""
        lookup = self.get_fresh_or_stale(key)
        if lookup is None or not lookup.fresh:
            return None
        return lookup.entry

    def get_fresh_or_stale(self, key: str) -> Optional[CacheLookup]:
        """Entry plus freshness flag; None only when nothing was ever cached."""
        try:
            entry = self._lookup(key)
        except Exception as e:
            logger.warning("cache: lookup failed for %s: %r", key, e)
            entry = None
        if entry is None:
            self._misses += 1
            return None
        fresh = entry.is_fresh(self._clock())
        if fresh:
            self._hits += 1
        else:
            self._misses += 1
        return CacheLookup(entry=entry, fresh=fresh)

    def put(
        self,
        key: str,
        result: IndicatorResult,
        ttl_seconds: int,
        *,
        issued_at: Optional[float] = None,
    ) -> bool:
        """
        Store `result` under `key`. Returns False when the write was discarded
        because the key already holds an entry written after `issued_at`.
        """
        current = self._lookup(key)
        if issued_at is not None and current is not None and current.written_at > issued_at:
            logger.debug("cache: discarding late write for %s", key)
            return False

        entry = CacheEntry(
            key=key,
            value=result.with_flags(error=None, from_cache=False),
            written_at=self._clock(),
            ttl_seconds=int(ttl_seconds),
        )
        self._memory[key] = entry
        try:
            self._storage.set_item(self._prefix + key, json.dumps(entry.to_dict()))
        except Exception as e:
            # e.g. disk full / storage quota; the in-memory result still stands
            self._write_errors += 1
            logger.warning("cache: durable write failed for %s: %r", key, e)
        return True

    def invalidate(self, key: str) -> None:
        self._memory.pop(key, None)
        try:
            self._storage.remove_item(self._prefix + key)
        except Exception as e:
            logger.warning("cache: durable delete failed for %s: %r", key, e)

    def keys(self, prefix: str = "") -> list:
        found = {k for k in self._memory if k.startswith(prefix)}
        try:
            found.update(k[len(self._prefix):] for k in self._storage.keys(self._prefix + prefix))
        except Exception as e:
            logger.warning("cache: durable key listing failed: %r", e)
        return sorted(found)

    def clear(self, prefix: str = "") -> int:
        """Drop every entry whose key starts with `prefix` (all entries by default)."""
        doomed = self.keys(prefix)
        for key in doomed:
            self.invalidate(key)
        return len(doomed)

    def stats(self) -> Dict[str, Any]:
        return {
            "memory_entries": len(self._memory),
            "hits": self._hits,
            "misses": self._misses,
            "durable_write_errors": self._write_errors,
        }


__all__ = ["CACHE_PREFIX", "CacheLookup", "CacheStore", "cache_key", "country_code_for"]
