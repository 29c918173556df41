"""Quiet-hours window arithmetic on a 24-hour minute-of-day clock.

A window is half-open, ``[start, end)``.  When ``start > end`` it wraps
past midnight (22:00-08:00 covers 22:00..23:59 and 00:00..07:59).  A window
with ``start == end`` is empty.
"""
import logging
import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

log = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
DEFAULT_START = "22:00"
DEFAULT_END = "08:00"

_CLOCK_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


def is_valid_clock(value: str) -> bool:
    return bool(_CLOCK_RE.match(value))


def parse_clock(value: str) -> int:
    """Parse ``HH:MM`` into minutes since midnight."""
    match = _CLOCK_RE.match(value)
    if match is None:
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")
    return int(match.group(1)) * 60 + int(match.group(2))


def in_window(minute: int, start: int, end: int) -> bool:
    minute %= MINUTES_PER_DAY
    if start == end:
        return False
    if start < end:
        return start <= minute < end
    return minute >= start or minute < end


def local_minute(now: datetime, tz_name: str) -> int:
    """Minute of day of *now* (naive UTC or aware) in *tz_name*."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        log.warning("Unknown timezone %r, using UTC for quiet hours", tz_name)
        tz = ZoneInfo("UTC")
    local = now.astimezone(tz)
    return local.hour * 60 + local.minute


def is_quiet_time(
    now: datetime,
    start: str | None,
    end: str | None,
    tz_name: str = "UTC",
) -> bool:
    start_minute = parse_clock(start or DEFAULT_START)
    end_minute = parse_clock(end or DEFAULT_END)
    return in_window(local_minute(now, tz_name), start_minute, end_minute)
