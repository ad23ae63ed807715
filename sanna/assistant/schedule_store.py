"""Persisted schedule records."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from .recurrence import ScheduleRecurrence

LOGGER = logging.getLogger("sanna.schedule_store")


@dataclass(frozen=True)
class Schedule:
    id: str
    instruction: str
    trigger_at_ms: int
    enabled: bool
    recurrence: ScheduleRecurrence
    created_at: int
    last_executed_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "instruction": self.instruction,
            "triggerAtMs": self.trigger_at_ms,
            "enabled": self.enabled,
            "recurrence": self.recurrence.to_dict(),
            "createdAt": self.created_at,
            "lastExecutedAt": self.last_executed_at,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Schedule:
        last = data.get("lastExecutedAt")
        return Schedule(
            id=str(data["id"]),
            instruction=str(data["instruction"]),
            trigger_at_ms=int(data["triggerAtMs"]),
            enabled=bool(data.get("enabled", True)),
            recurrence=ScheduleRecurrence.from_dict(data.get("recurrence")),
            created_at=int(data.get("createdAt") or 0),
            last_executed_at=int(last) if isinstance(last, (int, float)) else None,
        )


class ScheduleStore:
    """Schedules keyed by id in a single JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = asyncio.Lock()

    async def get_schedule(self, schedule_id: str) -> Schedule | None:
        return self._load().get(schedule_id)

    async def get_all_schedules(self) -> list[Schedule]:
        return sorted(self._load().values(), key=lambda item: item.trigger_at_ms)

    async def set_schedule(self, schedule: Schedule) -> None:
        async with self._lock:
            schedules = self._load()
            schedules[schedule.id] = schedule
            self._persist(schedules)

    async def update_trigger(self, schedule_id: str, trigger_at_ms: int) -> Schedule | None:
        return await self._update(schedule_id, trigger_at_ms=trigger_at_ms)

    async def mark_executed(self, schedule_id: str, executed_at_ms: int) -> Schedule | None:
        return await self._update(schedule_id, last_executed_at=executed_at_ms)

    async def set_enabled(self, schedule_id: str, enabled: bool) -> Schedule | None:
        return await self._update(schedule_id, enabled=enabled)

    async def remove_schedule(self, schedule_id: str) -> bool:
        async with self._lock:
            schedules = self._load()
            if schedules.pop(schedule_id, None) is None:
                return False
            self._persist(schedules)
            return True

    async def _update(self, schedule_id: str, **changes: Any) -> Schedule | None:
        async with self._lock:
            schedules = self._load()
            current = schedules.get(schedule_id)
            if current is None:
                return None
            updated = replace(current, **changes)
            schedules[schedule_id] = updated
            self._persist(schedules)
            return updated

    def _load(self) -> dict[str, Schedule]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            LOGGER.warning("Failed to load schedules file %s: %s", self._path, exc)
            return {}
        schedules: dict[str, Schedule] = {}
        for item in data.get("schedules", []) if isinstance(data, dict) else []:
            try:
                schedule = Schedule.from_dict(item)
            except Exception:
                LOGGER.debug("Skipping invalid schedule entry: %s", item, exc_info=True)
                continue
            schedules[schedule.id] = schedule
        return schedules

    def _persist(self, schedules: dict[str, Schedule]) -> None:
        payload = {"schedules": [schedule.to_dict() for schedule in schedules.values()]}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self._path)
