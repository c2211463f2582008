from __future__ import annotations
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
from datetime import date
from math import isfinite


def coerce_float(x: Any) -> Optional[float]:
    """float(x) or None; bools, NaN and +/-inf are rejected."""
    if x is None or isinstance(x, bool):
        return None
    try:
        v = float(x)
    except Exception:
        return None
    return v if isfinite(v) else None


def year_of(period: Any) -> Optional[int]:
    # accepts "YYYY", "YYYY-MM", "YYYY-Qn", "YYYY-MM-DDTHH:MM:SSZ" and ints
    s = str(period).strip()
    if len(s) < 4 or not s[:4].isdigit():
        return None
    return int(s[:4])


def default_cutoff(year: Optional[int] = None) -> int:
    return int(year) if year is not None else date.today().year


def year_series(rows: Iterable[Tuple[Any, Any]]) -> Dict[str, float]:
    """(period, value) pairs -> {YYYY: float}, dropping null / non-numeric values."""
    out: Dict[str, float] = {}
    for period, raw in rows:
        y = year_of(period)
        v = coerce_float(raw)
        if y is None or v is None:
            continue
        out[str(y)] = v
    return out


def latest_up_to(series: Mapping[str, float], cutoff: Optional[int] = None) -> Optional[Tuple[str, float]]:
    """
    Latest (year, value) whose year is <= cutoff.

    Cutoff defaults to the current calendar year, so projected observations
    (IMF WEO publishes five years ahead) are never picked up by accident.
    """
    if not series:
        return None
    limit = default_cutoff(cutoff)
    best: Optional[Tuple[int, str, float]] = None
    for k, raw in series.items():
        y = year_of(k)
        v = coerce_float(raw)
        if y is None or v is None or y > limit:
            continue
        if best is None or y > best[0]:
            best = (y, str(k), v)
    if best is None:
        return None
    return best[1], best[2]


def scale_to_range(v: float, lo: float, hi: float, *, out_max: float = 100.0) -> float:
    """Linear rescale of v from [lo, hi] onto [0, out_max], clamped and rounded."""
    if hi == lo:
        return 0.0
    scaled = round(((v - lo) / (hi - lo)) * out_max)
    return float(max(0.0, min(out_max, scaled)))
