"""
Date/time parsing and window arithmetic - framework-agnostic.

Every datetime that leaves this module is timezone-aware UTC. Window helpers
align to the Unix epoch so an hour window always starts at ``HH:00:00``.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (MongoDB returns naive values by default)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a date/time value into a timezone-aware UTC datetime.

    Accepts:
    - ``None`` → ``None``
    - ``datetime`` → normalised to UTC
    - ``int`` / ``float`` → treated as Unix epoch seconds
    - ``str`` ending in ``"Z"`` → converted to ``+00:00`` before parsing
    - Any ISO 8601 string (``datetime.fromisoformat``)

    Returns:
        A timezone-aware ``datetime`` in UTC, or ``None`` if *value* is ``None``
        or cannot be parsed.
    """
    if value is None:
        return None
    try:
        if isinstance(value, datetime):
            return ensure_utc(value)
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        raw = str(value)
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(raw))
    except (ValueError, OSError, OverflowError):
        return None


def window_bounds(now: datetime, window_seconds: int) -> tuple[datetime, datetime]:
    """Return the epoch-aligned ``[start, end)`` window containing *now*."""
    ts = int(ensure_utc(now).timestamp())
    start_ts = ts - (ts % window_seconds)
    start = datetime.fromtimestamp(start_ts, tz=timezone.utc)
    return start, start + timedelta(seconds=window_seconds)


def seconds_until(target: datetime, now: datetime) -> int:
    """Whole seconds from *now* until *target*, rounded up, never below 1."""
    delta = (ensure_utc(target) - ensure_utc(now)).total_seconds()
    return max(1, math.ceil(delta))


def to_epoch(value: Optional[datetime]) -> Optional[int]:
    """Unix timestamp (seconds) for *value*, ``None`` passthrough."""
    if value is None:
        return None
    return int(ensure_utc(value).timestamp())
