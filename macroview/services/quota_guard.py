# macroview/services/quota_guard.py — per-provider daily request budget
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional, Tuple
import logging
import os

from macroview.models import QuotaState
from macroview.services.storage import KeyValueStorage, MemoryStorage

logger = logging.getLogger("macroview")

QUOTA_PREFIX = "macroview:quota:"

# NewsAPI developer plan; everything else is unmetered
DEFAULT_LIMITS: Dict[str, int] = {
    "news": int(os.getenv("NEWS_MAX_DAILY_REQUESTS", "50")),
}


def utc_today() -> str:
    """Quota days roll over at UTC midnight."""
    return datetime.now(timezone.utc).date().isoformat()


class QuotaGuard:
    """
    Daily counters with lazy date rollover.

    The stored date is compared with today's on every call; a mismatch resets
    the count. `reserve` / `record_use` / `release` run without awaiting, so a
    check and its increment can never interleave with another coroutine.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        limits: Optional[Mapping[str, int]] = None,
        *,
        today_fn: Callable[[], str] = utc_today,
        prefix: str = QUOTA_PREFIX,
    ) -> None:
        self._storage = storage if storage is not None else MemoryStorage()
        self._limits: Dict[str, int] = dict(DEFAULT_LIMITS if limits is None else limits)
        self._today = today_fn
        self._prefix = prefix
        self._states: Dict[str, Tuple[str, int]] = {}
        self._reserved: Dict[str, int] = {}

    # ---- persistence ---------------------------------------------------------

    def _date_key(self, provider: str) -> str:
        return f"{self._prefix}{provider}:date"

    def _count_key(self, provider: str) -> str:
        return f"{self._prefix}{provider}:count"

    def _load(self, provider: str) -> Tuple[Optional[str], int]:
        try:
            date = self._storage.get_item(self._date_key(provider))
            raw = self._storage.get_item(self._count_key(provider))
        except Exception as e:
            logger.warning("quota: durable read failed for %s: %r", provider, e)
            return None, 0
        try:
            count = max(0, int(raw)) if raw is not None else 0
        except ValueError:
            logger.warning("quota: ignoring corrupt counter for %s: %r", provider, raw)
            count = 0
        return date, count

    def _save(self, provider: str, date: str, count: int) -> None:
        self._states[provider] = (date, count)
        try:
            self._storage.set_item(self._date_key(provider), date)
            self._storage.set_item(self._count_key(provider), str(count))
        except Exception as e:
            logger.warning("quota: durable write failed for %s: %r", provider, e)

    def _state(self, provider: str) -> Tuple[str, int]:
        today = self._today()
        if provider in self._states:
            date, count = self._states[provider]
        else:
            date, count = self._load(provider)
        if date != today:
            self._save(provider, today, 0)
            return today, 0
        self._states[provider] = (date, count)
        return date, count

    # ---- public --------------------------------------------------------------

    def limit(self, provider: str) -> Optional[int]:
        return self._limits.get(provider)

    def can_proceed(self, provider: str) -> bool:
        limit = self._limits.get(provider)
        if limit is None:
            return True
        _, count = self._state(provider)
        return count + self._reserved.get(provider, 0) < limit

    def reserve(self, provider: str) -> bool:
        """Claim one request slot up front; False when the day's budget is spent."""
        if not self.can_proceed(provider):
            return False
        if provider in self._limits:
            self._reserved[provider] = self._reserved.get(provider, 0) + 1
        return True

    def release(self, provider: str) -> None:
        """Give back a reserved slot whose request failed."""
        if self._reserved.get(provider, 0) > 0:
            self._reserved[provider] -= 1

    def record_use(self, provider: str) -> None:
        if provider not in self._limits:
            return
        date, count = self._state(provider)
        self.release(provider)
        self._save(provider, date, count + 1)

    def today(self, provider: str = "news") -> QuotaState:
        limit = self._limits.get(provider)
        if limit is None:
            raise KeyError(f"no quota configured for provider {provider!r}")
        date, count = self._state(provider)
        return QuotaState(provider=provider, date=date, count=count, max=limit)

    def reset(self, provider: str) -> None:
        self._reserved.pop(provider, None)
        self._save(provider, self._today(), 0)


__all__ = ["DEFAULT_LIMITS", "QUOTA_PREFIX", "QuotaGuard", "utc_today"]
