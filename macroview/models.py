# macroview/models.py — value types shared by resolver, cache, quota and orchestrator
from __future__ import annotations

from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Mapping, Optional, Tuple


class ErrorKind(str, Enum):
    UNRESOLVED = "unresolved"
    PROVIDER_FAILURE = "provider_failure"
    TIMEOUT = "timeout"
    QUOTA_EXCEEDED = "quota_exceeded"
    STALE_FALLBACK = "stale_fallback"
    UNAVAILABLE = "unavailable"


# -----------------------------------------------------------------------------
# country identity
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class CountryIdentity:
    canonical_name: str
    iso2: Optional[str] = None
    iso3: Optional[str] = None
    aliases: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not self.canonical_name or not self.canonical_name.strip():
            raise ValueError("canonical_name must not be empty")
        if self.iso2 is not None and not (len(self.iso2) == 2 and self.iso2.isalpha() and self.iso2.isupper()):
            raise ValueError(f"invalid iso2 code: {self.iso2!r}")
        if self.iso3 is not None and not (len(self.iso3) == 3 and self.iso3.isalpha() and self.iso3.isupper()):
            raise ValueError(f"invalid iso3 code: {self.iso3!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.canonical_name,
            "iso_alpha_2": self.iso2,
            "iso_alpha_3": self.iso3,
            "aliases": sorted(self.aliases),
        }


# Property names seen in Natural Earth / world-atlas style GeoJSON features.
_FEATURE_NAME_KEYS = ("name", "NAME", "ADMIN", "name_long", "NAME_LONG")
_FEATURE_ISO2_KEYS = ("ISO_A2", "iso_a2", "iso2", "ISO2", "ISO_A2_EH")
_FEATURE_ISO3_KEYS = ("ISO_A3", "iso_a3", "ADM0_A3", "WB_A3", "BRK_A3", "iso3", "ISO3", "ISO_A3_EH")


def _first_code(props: Mapping[str, Any], keys: Tuple[str, ...], length: int) -> Optional[str]:
    for key in keys:
        v = props.get(key)
        # Natural Earth uses "-99" for "no code"
        if isinstance(v, str) and len(v.strip()) == length and v.strip().isalpha():
            return v.strip().upper()
    return None


@dataclass(frozen=True)
class PartialIdentity:
    """Any subset of name / iso2 / iso3, e.g. lifted from map feature properties."""

    name: Optional[str] = None
    iso2: Optional[str] = None
    iso3: Optional[str] = None

    @classmethod
    def from_feature_properties(cls, props: Optional[Mapping[str, Any]], feature_id: Any = None) -> "PartialIdentity":
        props = props or {}
        name = None
        for key in _FEATURE_NAME_KEYS:
            v = props.get(key)
            if isinstance(v, str) and v.strip():
                name = v.strip()
                break
        iso2 = _first_code(props, _FEATURE_ISO2_KEYS, 2)
        iso3 = _first_code(props, _FEATURE_ISO3_KEYS, 3)
        # world-atlas features carry the ISO3 code as the feature id
        if iso3 is None and isinstance(feature_id, str) and len(feature_id) == 3 and feature_id.isalpha():
            iso3 = feature_id.upper()
        return cls(name=name, iso2=iso2, iso3=iso3)


@dataclass(frozen=True)
class Unresolved:
    reference: str
    reason: str = "no match"


# -----------------------------------------------------------------------------
# provider contract
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class RawObservation:
    value: float
    year: Optional[str] = None
    # headline records (news) or {"year", "value"} rows (history); empty otherwise
    items: Tuple[Dict[str, Any], ...] = ()


FetchFn = Callable[[CountryIdentity, Optional[int]], Awaitable[Optional[RawObservation]]]


@dataclass(frozen=True)
class ProviderAttempt:
    provider_id: str
    fetch: FetchFn
    timeout_s: float = 10.0
    # name of the QuotaGuard bucket this attempt draws from, if any
    quota_provider: Optional[str] = None


@dataclass(frozen=True)
class IndicatorDefinition:
    id: str
    label: str
    unit: str
    family: str
    provider_chain: Tuple[ProviderAttempt, ...]
    ttl_seconds: int = 86400

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "unit": self.unit,
            "family": self.family,
            "providers": [a.provider_id for a in self.provider_chain],
            "ttl_seconds": self.ttl_seconds,
        }


# -----------------------------------------------------------------------------
# results and persisted state
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class IndicatorResult:
    value: Optional[float] = None
    year: Optional[str] = None
    source_label: Optional[str] = None
    error: Optional[ErrorKind] = None
    items: Tuple[Dict[str, Any], ...] = ()
    from_cache: bool = False

    @classmethod
    def unavailable(cls) -> "IndicatorResult":
        return cls(error=ErrorKind.UNAVAILABLE)

    @classmethod
    def unresolved(cls) -> "IndicatorResult":
        return cls(error=ErrorKind.UNRESOLVED)

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "year": self.year,
            "source": self.source_label,
            "error": self.error.value if self.error else None,
            "items": [dict(i) for i in self.items],
            "from_cache": self.from_cache,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IndicatorResult":
        err = data.get("error")
        value = data.get("value")
        return cls(
            value=float(value) if value is not None else None,
            year=data.get("year"),
            source_label=data.get("source"),
            error=ErrorKind(err) if err else None,
            items=tuple(dict(i) for i in (data.get("items") or ())),
            from_cache=bool(data.get("from_cache", False)),
        )

    def with_flags(self, **changes: Any) -> "IndicatorResult":
        return replace(self, **changes)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: IndicatorResult
    written_at: float
    ttl_seconds: int

    def is_fresh(self, now: float) -> bool:
        return (now - self.written_at) < self.ttl_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value.to_dict(),
            "written_at": self.written_at,
            "ttl_seconds": self.ttl_seconds,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CacheEntry":
        return cls(
            key=str(data["key"]),
            value=IndicatorResult.from_dict(data["value"]),
            written_at=float(data["written_at"]),
            ttl_seconds=int(data["ttl_seconds"]),
        )


@dataclass(frozen=True)
class QuotaState:
    provider: str
    date: str
    count: int
    max: int

    @property
    def remaining(self) -> int:
        return max(0, self.max - self.count)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["remaining"] = self.remaining
        return out


__all__ = [
    "ErrorKind",
    "CountryIdentity",
    "PartialIdentity",
    "Unresolved",
    "RawObservation",
    "FetchFn",
    "ProviderAttempt",
    "IndicatorDefinition",
    "IndicatorResult",
    "CacheEntry",
    "QuotaState",
]
