"""
Day / Time Utilities

Quota and activity rows are keyed by a calendar date in one fixed
reference timezone, never by a rolling 24h window.
"""

from __future__ import annotations
import time
from datetime import datetime
from zoneinfo import ZoneInfo

DEFAULT_TZ = "UTC"


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


def zone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or DEFAULT_TZ)


def day_key(ts_ms: int | None = None, tz_name: str | None = None) -> str:
    """
    Convert a millisecond timestamp to a date string (YYYY-MM-DD).

    Args:
        ts_ms: Unix timestamp in milliseconds, defaults to now
        tz_name: IANA timezone name, defaults to UTC

    Returns:
        Date string in YYYY-MM-DD format
    """
    if ts_ms is None:
        ts_ms = now_ms()
    dt = datetime.fromtimestamp(ts_ms / 1000, tz=zone(tz_name))
    return dt.strftime("%Y-%m-%d")
