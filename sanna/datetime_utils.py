"""Shared datetime parsing and manipulation utilities."""

from __future__ import annotations

import re
import time
from datetime import datetime, tzinfo

_HH_MM_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")


def local_now() -> datetime:
    """Get current datetime in local timezone."""
    return datetime.now().astimezone()


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def from_epoch_ms(value: int, tz: tzinfo | None = None) -> datetime:
    """Convert epoch milliseconds to an aware datetime (local zone unless ``tz`` is given)."""
    if tz is None:
        return datetime.fromtimestamp(value / 1000).astimezone()
    return datetime.fromtimestamp(value / 1000, tz)


def to_epoch_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds. Naive values are treated as local time."""
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return int(dt.timestamp() * 1000)


def parse_time_string(value: str) -> tuple[int, int]:
    """Parse a strict ``HH:mm`` string into (hour, minute). Raises ValueError if invalid."""
    match = _HH_MM_PATTERN.match((value or "").strip())
    if not match:
        raise ValueError("Invalid time format")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError("Invalid time format")
    return hour, minute


def format_local(value_ms: int, tz: tzinfo | None = None) -> str:
    """Human-readable local timestamp, e.g. ``Mon 2025-01-13 08:00``."""
    return from_epoch_ms(value_ms, tz).strftime("%a %Y-%m-%d %H:%M")


def format_duration_ms(duration_ms: int) -> str:
    """Format a duration as ``1h 5m 3s`` style text."""
    total_seconds = max(0, int(duration_ms // 1000))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")
    return " ".join(parts)
