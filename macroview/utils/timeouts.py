# macroview/utils/timeouts.py — the one timeout combinator used for provider attempts
from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from macroview.utils.errors import ProviderTimeout

T = TypeVar("T")


async def with_timeout(aw: Awaitable[T], timeout_s: Optional[float], *, provider: Optional[str] = None) -> T:
    """
    Await `aw` for at most `timeout_s` seconds.

    On expiry the underlying task is cancelled and ProviderTimeout is raised, so
    whatever the late call would have returned never reaches the caller.
    A timeout of None or <= 0 waits indefinitely.
    """
    if timeout_s is None or timeout_s <= 0:
        return await aw
    try:
        return await asyncio.wait_for(aw, timeout=timeout_s)
    except asyncio.TimeoutError:
        raise ProviderTimeout(f"no response within {timeout_s:g}s", provider=provider) from None
