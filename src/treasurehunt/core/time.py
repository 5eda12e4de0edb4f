"""
Clock and timestamp helpers.

All stored timestamps are timezone-aware UTC datetimes. The game layer takes an
injectable millisecond clock so sensor timing and invite expiry are testable.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Wall-clock time in integer milliseconds (the sensor timestamp unit)."""
    return int(time.time() * 1000)


def ms_to_datetime(value_ms: int) -> datetime:
    return datetime.fromtimestamp(value_ms / 1000, tz=timezone.utc)


def datetime_to_ms(dt: datetime) -> int:
    return int(ensure_utc(dt).timestamp() * 1000)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp as returned by the store.

    Notes:
    - Accepts a trailing `Z` (UTC).
    - Accepts PocketBase's space separator (`2026-01-05 10:00:00.000Z`).
    - Naive values are treated as UTC.
    """
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    if len(value) > 10 and value[10] == " ":
        value = value[:10] + "T" + value[11:]
    return ensure_utc(datetime.fromisoformat(value))


def to_iso(dt: datetime) -> str:
    return ensure_utc(dt).isoformat()
