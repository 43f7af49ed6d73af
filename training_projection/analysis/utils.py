"""Small numeric and date helpers shared by the projection engine."""

import math
from datetime import date, datetime, timedelta
from typing import Union


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))


def clamp01(value: float) -> float:
    return clamp(value, 0.0, 1.0)


def lerp(low: float, high: float, t: float) -> float:
    """Linear interpolation with t clamped to [0, 1]."""
    return low + (high - low) * clamp01(t)


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round with halves going up (2.5 -> 3), unlike built-in round()."""
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def round_int(value: float) -> int:
    return int(math.floor(value + 0.5))


def is_finite(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def parse_date(value: Union[str, date, datetime]) -> date:
    """Parse an ISO date (YYYY-MM-DD) or pass through date objects."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def diff_days(start: date, end: date) -> int:
    return (end - start).days


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)
