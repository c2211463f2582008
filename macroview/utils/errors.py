# macroview/utils/errors.py — provider-attempt exceptions
from __future__ import annotations

from typing import Optional

from macroview.models import ErrorKind


class ProviderError(Exception):
    """A single provider attempt failed (network, HTTP status, parse)."""

    kind: ErrorKind = ErrorKind.PROVIDER_FAILURE

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        endpoint: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.endpoint = endpoint
        self.status = status

    def __str__(self) -> str:
        base = super().__str__()
        bits = [b for b in (self.provider, self.endpoint) if b]
        if self.status is not None:
            bits.append(f"HTTP {self.status}")
        return f"{base} [{' '.join(bits)}]" if bits else base


class ProviderTimeout(ProviderError):
    kind = ErrorKind.TIMEOUT


class ProviderUnavailable(ProviderError):
    """Provider cannot be used at all (e.g. missing API credential)."""


class QuotaExceeded(ProviderError):
    kind = ErrorKind.QUOTA_EXCEEDED


def error_kind_of(exc: BaseException) -> ErrorKind:
    if isinstance(exc, ProviderError):
        return exc.kind
    return ErrorKind.PROVIDER_FAILURE


__all__ = [
    "ProviderError",
    "ProviderTimeout",
    "ProviderUnavailable",
    "QuotaExceeded",
    "error_kind_of",
]
