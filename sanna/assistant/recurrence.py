"""
Recurrence rules and next-trigger computation

A schedule repeats in one of four ways:

- once: fires a single time, there is no next trigger
- interval: every ``interval_ms`` milliseconds after the computation time
- daily: every day at ``HH:mm`` local time
- weekly: at ``HH:mm`` on the listed weekdays (1=Monday ... 7=Sunday)

``next_trigger`` always returns a time strictly after ``now_ms`` or None.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any, Literal

from sanna.datetime_utils import from_epoch_ms, parse_time_string, to_epoch_ms

RecurrenceType = Literal["once", "interval", "daily", "weekly"]

RECURRENCE_TYPES: tuple[str, ...] = ("once", "interval", "daily", "weekly")
MIN_INTERVAL_MS = 60_000
DEFAULT_INTERVAL_MS = 60_000
_WEEKDAY_LABELS = {1: "Mon", 2: "Tue", 3: "Wed", 4: "Thu", 5: "Fri", 6: "Sat", 7: "Sun"}


@dataclass(frozen=True)
class ScheduleRecurrence:
    type: RecurrenceType
    interval_ms: int | None = None
    time: str | None = None
    days_of_week: tuple[int, ...] | None = None

    def validate(self) -> None:
        """Raise ValueError when the rule is incomplete for its type."""
        if self.type not in RECURRENCE_TYPES:
            raise ValueError(f"Unknown recurrence type: {self.type}")
        if self.type == "interval":
            if self.interval_ms is None or self.interval_ms < MIN_INTERVAL_MS:
                raise ValueError("interval recurrence needs interval_ms of at least 60000 (1 minute)")
        if self.type in ("daily", "weekly"):
            if not self.time:
                raise ValueError(f"{self.type} recurrence needs a time in HH:mm format")
            parse_time_string(self.time)
        if self.type == "weekly":
            if not self.days_of_week:
                raise ValueError("weekly recurrence needs at least one weekday (1=Monday ... 7=Sunday)")
            if any(day < 1 or day > 7 for day in self.days_of_week):
                raise ValueError("weekdays must be between 1 (Monday) and 7 (Sunday)")

    def describe(self) -> str:
        if self.type == "once":
            return "once"
        if self.type == "interval":
            minutes = (self.interval_ms or DEFAULT_INTERVAL_MS) // 60_000
            return f"every {minutes} minute(s)"
        if self.type == "daily":
            return f"daily at {self.time}"
        days = ", ".join(_WEEKDAY_LABELS.get(day, str(day)) for day in sorted(self.days_of_week or ()))
        return f"weekly on {days} at {self.time}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.interval_ms is not None:
            data["intervalMs"] = self.interval_ms
        if self.time is not None:
            data["time"] = self.time
        if self.days_of_week is not None:
            data["daysOfWeek"] = list(self.days_of_week)
        return data

    @staticmethod
    def from_dict(data: Any) -> ScheduleRecurrence:
        if not isinstance(data, dict):
            raise ValueError("recurrence must be an object")
        kind = data.get("type")
        if kind not in RECURRENCE_TYPES:
            raise ValueError(f"Unknown recurrence type: {kind}")
        interval = data.get("intervalMs")
        time_value = data.get("time")
        days = data.get("daysOfWeek")
        return ScheduleRecurrence(
            type=kind,
            interval_ms=int(interval) if isinstance(interval, (int, float)) else None,
            time=time_value if isinstance(time_value, str) else None,
            days_of_week=normalize_days(days) if isinstance(days, list) else None,
        )


def normalize_days(days: Iterable[Any]) -> tuple[int, ...]:
    normalized = []
    for day in days:
        try:
            normalized.append(int(day))
        except (TypeError, ValueError):
            continue
    return tuple(sorted(set(normalized)))


def next_trigger(recurrence: ScheduleRecurrence, now_ms: int, tz: tzinfo | None = None) -> int | None:
    """Next fire time in epoch ms strictly after ``now_ms``, or None when nothing follows.

    Daily and weekly rules are evaluated in ``tz`` (the local zone by default).
    Calendar arithmetic runs on wall-clock time, so ``HH:mm`` holds across DST
    changes when ``tz`` is a ``zoneinfo.ZoneInfo`` or left unset.
    """
    if recurrence.type == "once":
        return None

    if recurrence.type == "interval":
        return now_ms + (recurrence.interval_ms or DEFAULT_INTERVAL_MS)

    if not recurrence.time:
        return None
    try:
        hour, minute = parse_time_string(recurrence.time)
    except ValueError:
        return None

    # naive local time; to_epoch_ms applies the offset in force on each date
    now = datetime.fromtimestamp(now_ms / 1000) if tz is None else from_epoch_ms(now_ms, tz)

    def at_time(days_ahead: int) -> datetime:
        return (now + timedelta(days=days_ahead)).replace(hour=hour, minute=minute, second=0, microsecond=0)

    if recurrence.type == "daily":
        candidate = at_time(0)
        if to_epoch_ms(candidate) <= now_ms:
            candidate = at_time(1)
        return to_epoch_ms(candidate)

    if recurrence.type == "weekly":
        if not recurrence.days_of_week:
            return None
        wanted = set(recurrence.days_of_week)
        for days_ahead in range(8):
            candidate = at_time(days_ahead)
            if candidate.isoweekday() in wanted and to_epoch_ms(candidate) > now_ms:
                return to_epoch_ms(candidate)
        return now_ms + 7 * 24 * 60 * 60 * 1000

    return None
