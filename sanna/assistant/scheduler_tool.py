"""Tool for creating and managing scheduled background tasks.

Each schedule stores a natural-language instruction that a background agent
executes when the wake trigger fires.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any

from sanna.datetime_utils import format_local, now_ms, to_epoch_ms
from sanna.utils import coerce_str, make_id

from .recurrence import RECURRENCE_TYPES, ScheduleRecurrence, normalize_days
from .schedule_store import Schedule, ScheduleStore
from .tools import Tool, ToolResult
from .wake import WakeScheduler

LOGGER = logging.getLogger("sanna.scheduler_tool")

SCHEDULER_ACTIONS = ("create", "list", "get", "update", "delete", "enable", "disable")


class SchedulerTool(Tool):
    name = "scheduler"
    capability = "scheduler"
    description = (
        "Plan and manage background tasks. At the scheduled time a background agent executes the "
        "stored instruction and may use any available tool. Supports one-time and recurring "
        "schedules (interval, daily, weekly). Actions: create, list, get, update, delete, enable, disable."
    )
    parameters = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": list(SCHEDULER_ACTIONS)},
            "schedule_id": {"type": "string", "description": "Schedule id (get/update/delete/enable/disable)"},
            "instruction": {
                "type": "string",
                "description": "What the background agent should do, e.g. 'Remind me to water the plants'",
            },
            "trigger_at_ms": {"type": "number", "description": "Next execution time as epoch milliseconds"},
            "trigger_at": {
                "type": "string",
                "description": "Next execution time as ISO 8601 local datetime (alternative to trigger_at_ms)",
            },
            "recurrence_type": {"type": "string", "enum": list(RECURRENCE_TYPES)},
            "recurrence_interval_ms": {"type": "number", "description": "interval only: milliseconds, >= 60000"},
            "recurrence_time": {"type": "string", "description": "daily/weekly only: 24h time as HH:mm"},
            "recurrence_days_of_week": {
                "type": "array",
                "items": {"type": "number"},
                "description": "weekly only: 1=Monday ... 7=Sunday",
            },
        },
        "required": ["action"],
    }

    def __init__(
        self,
        store: ScheduleStore,
        wake: WakeScheduler | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._wake = wake
        self._clock = clock

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        action = coerce_str(args.get("action"))
        if action == "create":
            return await self._create(args)
        if action == "list":
            return await self._list()
        if action == "get":
            return await self._get(args)
        if action == "update":
            return await self._update(args)
        if action == "delete":
            return await self._delete(args)
        if action in ("enable", "disable"):
            return await self._toggle(args, action == "enable")
        return ToolResult.failure(f"Unknown action: {action or '(missing)'}")

    async def _create(self, args: dict[str, Any]) -> ToolResult:
        instruction = coerce_str(args.get("instruction"))
        if not instruction:
            return ToolResult.failure("instruction is required: what should the background agent do?")
        try:
            trigger_at_ms = _trigger_from_args(args)
        except ValueError as exc:
            return ToolResult.failure(str(exc))
        if trigger_at_ms is None:
            return ToolResult.failure("trigger_at_ms or trigger_at is required: when should it run?")
        now = self._clock()
        if trigger_at_ms <= now:
            return ToolResult.failure(f"Trigger time is in the past. Now: {now}, given: {trigger_at_ms}")
        try:
            recurrence = _recurrence_from_args(args, ScheduleRecurrence(type="once"))
            recurrence.validate()
        except ValueError as exc:
            return ToolResult.failure(str(exc))

        schedule = Schedule(
            id=make_id("sched"),
            instruction=instruction,
            trigger_at_ms=trigger_at_ms,
            enabled=True,
            recurrence=recurrence,
            created_at=now,
        )
        await self._store.set_schedule(schedule)
        self._arm(schedule)
        LOGGER.info("[scheduler] Created %s (%s)", schedule.id, recurrence.describe())
        return ToolResult.success(
            f"Schedule created:\n{format_schedule_detail(schedule)}",
            f"Scheduled \"{instruction}\" for {format_local(trigger_at_ms)} ({recurrence.describe()})",
        )

    async def _list(self) -> ToolResult:
        schedules = await self._store.get_all_schedules()
        if not schedules:
            return ToolResult.success("No schedules exist.", "You have no scheduled tasks")
        lines = [format_schedule_line(schedule) for schedule in schedules]
        return ToolResult.success(
            f"{len(schedules)} schedule(s):\n" + "\n".join(lines),
            f"You have {len(schedules)} scheduled task(s)",
        )

    async def _get(self, args: dict[str, Any]) -> ToolResult:
        schedule_id = coerce_str(args.get("schedule_id"))
        if not schedule_id:
            return ToolResult.failure("schedule_id is required")
        schedule = await self._store.get_schedule(schedule_id)
        if schedule is None:
            return ToolResult.failure(f'Schedule "{schedule_id}" not found')
        return ToolResult.success(format_schedule_detail(schedule))

    async def _update(self, args: dict[str, Any]) -> ToolResult:
        schedule_id = coerce_str(args.get("schedule_id"))
        if not schedule_id:
            return ToolResult.failure("schedule_id is required")
        schedule = await self._store.get_schedule(schedule_id)
        if schedule is None:
            return ToolResult.failure(f'Schedule "{schedule_id}" not found')

        changes: dict[str, Any] = {}
        instruction = coerce_str(args.get("instruction"))
        if instruction:
            changes["instruction"] = instruction
        try:
            trigger_at_ms = _trigger_from_args(args)
            if trigger_at_ms is not None:
                if trigger_at_ms <= self._clock():
                    return ToolResult.failure("Trigger time is in the past")
                changes["trigger_at_ms"] = trigger_at_ms
            recurrence = _recurrence_from_args(args, schedule.recurrence)
            recurrence.validate()
        except ValueError as exc:
            return ToolResult.failure(str(exc))
        changes["recurrence"] = recurrence

        updated = replace(schedule, **changes)
        await self._store.set_schedule(updated)
        self._arm(updated)
        return ToolResult.success(f"Schedule updated:\n{format_schedule_detail(updated)}", "Schedule updated")

    async def _delete(self, args: dict[str, Any]) -> ToolResult:
        schedule_id = coerce_str(args.get("schedule_id"))
        if not schedule_id:
            return ToolResult.failure("schedule_id is required")
        removed = await self._store.remove_schedule(schedule_id)
        if self._wake is not None:
            self._wake.cancel(schedule_id)
        if not removed:
            return ToolResult.failure(f'Schedule "{schedule_id}" not found')
        return ToolResult.success(f'Schedule "{schedule_id}" deleted.', "Schedule deleted")

    async def _toggle(self, args: dict[str, Any], enabled: bool) -> ToolResult:
        schedule_id = coerce_str(args.get("schedule_id"))
        if not schedule_id:
            return ToolResult.failure("schedule_id is required")
        updated = await self._store.set_enabled(schedule_id, enabled)
        if updated is None:
            return ToolResult.failure(f'Schedule "{schedule_id}" not found')
        if enabled:
            self._arm(updated)
        elif self._wake is not None:
            self._wake.cancel(schedule_id)
        label = "enabled" if enabled else "disabled"
        return ToolResult.success(f'Schedule "{schedule_id}" {label}.', f"Schedule {label}")

    def _arm(self, schedule: Schedule) -> None:
        if self._wake is not None and schedule.enabled:
            self._wake.arm(schedule.id, schedule.trigger_at_ms)


def _trigger_from_args(args: dict[str, Any]) -> int | None:
    raw_ms = args.get("trigger_at_ms")
    if isinstance(raw_ms, (int, float)) and not isinstance(raw_ms, bool) and raw_ms > 0:
        return int(raw_ms)
    raw_iso = coerce_str(args.get("trigger_at"))
    if raw_iso:
        try:
            return to_epoch_ms(datetime.fromisoformat(raw_iso))
        except ValueError as exc:
            raise ValueError(f"trigger_at is not a valid ISO 8601 datetime: {raw_iso}") from exc
    return None


def _recurrence_from_args(args: dict[str, Any], base: ScheduleRecurrence) -> ScheduleRecurrence:
    kind = coerce_str(args.get("recurrence_type")) or base.type
    if kind not in RECURRENCE_TYPES:
        raise ValueError(f"Unknown recurrence type: {kind}")
    interval = args.get("recurrence_interval_ms")
    time_value = args.get("recurrence_time")
    days = args.get("recurrence_days_of_week")
    return ScheduleRecurrence(
        type=kind,  # type: ignore[arg-type]
        interval_ms=int(interval) if isinstance(interval, (int, float)) else base.interval_ms,
        time=time_value.strip() if isinstance(time_value, str) else base.time,
        days_of_week=normalize_days(days) if isinstance(days, list) else base.days_of_week,
    )


def format_schedule_detail(schedule: Schedule) -> str:
    lines = [
        f"ID: {schedule.id}",
        f'Instruction: "{schedule.instruction}"',
        f"Next run: {format_local(schedule.trigger_at_ms)}",
        f"Status: {'active' if schedule.enabled else 'disabled'}",
        f"Repeats: {schedule.recurrence.describe()}",
        f"Created: {format_local(schedule.created_at)}",
    ]
    if schedule.last_executed_at:
        lines.append(f"Last run: {format_local(schedule.last_executed_at)}")
    return "\n".join(lines)


def format_schedule_line(schedule: Schedule) -> str:
    status = "active" if schedule.enabled else "disabled"
    return (
        f'- [{schedule.id}] "{schedule.instruction}" at {format_local(schedule.trigger_at_ms)} '
        f"({schedule.recurrence.describe()}, {status})"
    )
