# macroview/providers/http_client.py — shared async HTTP client + JSON GET with retries
from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional
import asyncio
import logging
import os
import weakref

import httpx

from macroview.utils.errors import ProviderError

logger = logging.getLogger("macroview")

# -------------------------------------------------------------------
# CONFIG
# -------------------------------------------------------------------
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "20.0"))
HTTP_RETRIES = int(os.getenv("HTTP_RETRIES", "2"))
HTTP_BACKOFF = float(os.getenv("HTTP_BACKOFF", "0.4"))

_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "MacroView/1.0 (+indicator-engine)",
}

ClientFactory = Callable[[], httpx.AsyncClient]

# one client per event loop; an AsyncClient must not cross loops
_CLIENTS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, httpx.AsyncClient]" = weakref.WeakKeyDictionary()


def _timeout() -> httpx.Timeout:
    return httpx.Timeout(
        timeout=HTTP_TIMEOUT,
        connect=min(5.0, HTTP_TIMEOUT),
        read=HTTP_TIMEOUT,
        write=min(5.0, HTTP_TIMEOUT),
        pool=min(5.0, HTTP_TIMEOUT),
    )


def _new_client() -> httpx.AsyncClient:
    limits = httpx.Limits(
        max_connections=int(os.getenv("HTTP_MAX_CONNECTIONS", "40")),
        max_keepalive_connections=int(os.getenv("HTTP_MAX_KEEPALIVE", "20")),
        keepalive_expiry=float(os.getenv("HTTP_KEEPALIVE_EXPIRY", "30")),
    )
    return httpx.AsyncClient(
        timeout=_timeout(),
        headers=_HEADERS,
        follow_redirects=True,
        limits=limits,
    )


def get_http_client() -> httpx.AsyncClient:
    """Shared client for the running event loop (created lazily)."""
    loop = asyncio.get_running_loop()
    client = _CLIENTS.get(loop)
    if client is None or client.is_closed:
        client = _new_client()
        _CLIENTS[loop] = client
    return client


async def close_http_clients() -> None:
    clients = list(_CLIENTS.values())
    _CLIENTS.clear()
    for client in clients:
        if not client.is_closed:
            await client.aclose()


def _retryable(status: int) -> bool:
    return status >= 500 or status == 408


async def get_json(
    url: str,
    *,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    provider: Optional[str] = None,
    client_factory: ClientFactory = get_http_client,
    retries: int = HTTP_RETRIES,
    backoff: float = HTTP_BACKOFF,
) -> Any:
    """
    GET `url` and decode JSON.

    Transport errors and 5xx are retried `retries` times with linear backoff;
    429 and other 4xx fail immediately. Raises ProviderError on final failure.
    """
    client = client_factory()
    attempts = max(0, retries) + 1
    for attempt in range(1, attempts + 1):
        try:
            logger.debug("[http] GET %s (attempt %d)", url, attempt)
            r = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            err = ProviderError(f"transport error: {e!r}", provider=provider, endpoint=url)
        else:
            if r.status_code == 200:
                try:
                    return r.json()
                except ValueError as e:
                    raise ProviderError(f"invalid JSON: {e}", provider=provider, endpoint=url, status=200) from e
            if r.status_code == 429:
                raise ProviderError("rate limited", provider=provider, endpoint=url, status=429)
            err = ProviderError("unexpected status", provider=provider, endpoint=url, status=r.status_code)
            if not _retryable(r.status_code):
                raise err
        if attempt == attempts:
            raise err
        await asyncio.sleep(backoff * attempt)


__all__ = ["ClientFactory", "close_http_clients", "get_http_client", "get_json"]
