"""Countdown timers: persisted records and the timer tool."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sanna.datetime_utils import format_duration_ms, format_local, now_ms
from sanna.utils import coerce_str, make_id

from .tools import Tool, ToolResult
from .wake import WakeScheduler

LOGGER = logging.getLogger("sanna.timers")

MAX_TIMER_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class Timer:
    id: str
    label: str
    duration_ms: int
    start_time_ms: int
    enabled: bool
    created_at: int

    @property
    def fires_at_ms(self) -> int:
        return self.start_time_ms + self.duration_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "durationMs": self.duration_ms,
            "startTimeMs": self.start_time_ms,
            "enabled": self.enabled,
            "createdAt": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Timer:
        return Timer(
            id=str(data["id"]),
            label=str(data.get("label") or ""),
            duration_ms=int(data["durationMs"]),
            start_time_ms=int(data["startTimeMs"]),
            enabled=bool(data.get("enabled", True)),
            created_at=int(data.get("createdAt") or 0),
        )


class TimerStore:
    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = asyncio.Lock()

    async def get_timer(self, timer_id: str) -> Timer | None:
        return self._load().get(timer_id)

    async def get_all_timers(self) -> list[Timer]:
        return sorted(self._load().values(), key=lambda timer: timer.fires_at_ms)

    async def set_timer(self, timer: Timer) -> None:
        async with self._lock:
            timers = self._load()
            timers[timer.id] = timer
            self._persist(timers)

    async def remove_timer(self, timer_id: str) -> bool:
        async with self._lock:
            timers = self._load()
            if timers.pop(timer_id, None) is None:
                return False
            self._persist(timers)
            return True

    def _load(self) -> dict[str, Timer]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            LOGGER.warning("Failed to load timers file %s: %s", self._path, exc)
            return {}
        timers: dict[str, Timer] = {}
        for item in data.get("timers", []) if isinstance(data, dict) else []:
            try:
                timer = Timer.from_dict(item)
            except Exception:
                LOGGER.debug("Skipping invalid timer entry: %s", item, exc_info=True)
                continue
            timers[timer.id] = timer
        return timers

    def _persist(self, timers: dict[str, Timer]) -> None:
        payload = {"timers": [timer.to_dict() for timer in timers.values()]}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self._path)


class TimerTool(Tool):
    name = "timer"
    capability = "timer"
    description = "Start, list and cancel countdown timers. When a timer finishes the user is notified."
    parameters = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ["start", "list", "cancel"]},
            "duration_seconds": {"type": "number", "description": "start only: timer length in seconds"},
            "label": {"type": "string", "description": "start only: optional name, e.g. 'pasta'"},
            "timer_id": {"type": "string", "description": "cancel only: id of the timer"},
        },
        "required": ["action"],
    }

    def __init__(
        self,
        store: TimerStore,
        wake: WakeScheduler | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._wake = wake
        self._clock = clock

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        action = coerce_str(args.get("action"))
        if action == "start":
            return await self._start(args)
        if action == "list":
            return await self._list()
        if action == "cancel":
            return await self._cancel(args)
        return ToolResult.failure(f"Unknown action: {action or '(missing)'}")

    async def _start(self, args: dict[str, Any]) -> ToolResult:
        seconds = args.get("duration_seconds")
        if not isinstance(seconds, (int, float)) or isinstance(seconds, bool) or seconds <= 0:
            return ToolResult.failure("duration_seconds must be a positive number")
        duration_ms = int(seconds * 1000)
        if duration_ms > MAX_TIMER_MS:
            return ToolResult.failure("Timers are limited to 24 hours; use the scheduler for longer delays")
        now = self._clock()
        label = coerce_str(args.get("label")) or format_duration_ms(duration_ms)
        timer = Timer(
            id=make_id("timer"),
            label=label,
            duration_ms=duration_ms,
            start_time_ms=now,
            enabled=True,
            created_at=now,
        )
        await self._store.set_timer(timer)
        if self._wake is not None:
            self._wake.arm(timer.id, timer.fires_at_ms)
        LOGGER.info("[timer] Started %s (%s)", timer.id, label)
        return ToolResult.success(
            f'Timer "{label}" started (id {timer.id}), finishes at {format_local(timer.fires_at_ms)}.',
            f"Timer {label} started",
        )

    async def _list(self) -> ToolResult:
        now = self._clock()
        timers = [timer for timer in await self._store.get_all_timers() if timer.enabled]
        if not timers:
            return ToolResult.success("No timers are running.", "No timers running")
        lines = [
            f'- [{timer.id}] "{timer.label}": {format_duration_ms(max(0, timer.fires_at_ms - now))} left'
            for timer in timers
        ]
        return ToolResult.success(f"{len(timers)} timer(s):\n" + "\n".join(lines))

    async def _cancel(self, args: dict[str, Any]) -> ToolResult:
        timer_id = coerce_str(args.get("timer_id"))
        if not timer_id:
            return ToolResult.failure("timer_id is required")
        if self._wake is not None:
            self._wake.cancel(timer_id)
        if not await self._store.remove_timer(timer_id):
            return ToolResult.failure(f'Timer "{timer_id}" not found')
        return ToolResult.success(f'Timer "{timer_id}" cancelled.', "Timer cancelled")
