"""
Scheduled-task execution unit

Runs one schedule when its wake trigger fires, isolated from the interactive
session: fresh message history, a registry without the scheduling tool (a
background run must not create schedules) and its own iteration cap.

Every path that reaches a user ends the same way: the message is durably queued
first, and only then is the primary UI asked to come to the foreground;
the consumer drains the queue on that transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sanna.datetime_utils import from_epoch_ms
from sanna.utils import coerce_str

from .config import AgentConfig
from .context import AgentContext
from .errors import ConfigError, JobParseError
from .llm import LLMProvider, Message
from .recurrence import next_trigger
from .schedule_store import Schedule
from .system_prompt import build_background_instruction, build_system_prompt, formulate_error
from .tool_factory import create_tool_registry
from .tool_loop import ToolLoopConfig, run_tool_loop

LOGGER = logging.getLogger("sanna.schedule_runner")

ITERATION_LIMIT_MESSAGE = "The scheduled task reached its iteration limit before finishing: {instruction}"


@dataclass(frozen=True)
class ScheduleJob:
    schedule_id: str

    @staticmethod
    def from_payload(payload: Any) -> ScheduleJob:
        """Accept a bare id or a ``{"scheduleId": ...}`` mapping from the wake trigger."""
        if isinstance(payload, dict):
            payload = payload.get("scheduleId")
        schedule_id = coerce_str(payload)
        if not schedule_id:
            raise JobParseError("Wake payload carries no schedule id")
        return ScheduleJob(schedule_id)


async def run_scheduled_task(job: ScheduleJob, context: AgentContext) -> None:
    schedule = await context.schedules.get_schedule(job.schedule_id)
    if schedule is None:
        LOGGER.warning("[scheduler] Schedule %s not found; nothing to do", job.schedule_id)
        return
    if not schedule.enabled:
        LOGGER.info("[scheduler] Schedule %s is disabled; skipping", job.schedule_id)
        return

    LOGGER.info("[scheduler] Running %s: %s", schedule.id, schedule.instruction)
    try:
        config = context.config_loader()
    except ConfigError as exc:
        # schedule stays as it is so it can run once the agent is configured
        LOGGER.error("[scheduler] No usable agent configuration: %s", exc)
        await context.queue_output(f"Scheduled task could not be executed: {exc}")
        await context.bring_to_foreground(f"schedule:{schedule.id}")
        return

    provider: LLMProvider | None = None
    succeeded = False
    try:
        provider = context.provider_factory(config.llm)
        message = await _execute(schedule, config, provider, context)
        succeeded = True
    except Exception as exc:
        LOGGER.exception("[scheduler] Schedule %s failed", schedule.id)
        raw_error = f"Scheduled task failed: {exc}"
        if provider is not None:
            message = await formulate_error(
                provider,
                config.llm.resolved_model(),
                instruction=schedule.instruction,
                raw_error=raw_error,
                driving_mode=config.driving_mode,
                language=config.language,
                personal_memory=await _personal_memory(context),
            )
        else:
            message = raw_error

    await context.queue_output(message)
    try:
        if succeeded:
            await context.schedules.mark_executed(schedule.id, context.clock())
        await _advance(schedule, context)
    except Exception:
        LOGGER.exception("[scheduler] Could not update schedule %s after the run", schedule.id)
    await context.bring_to_foreground(f"schedule:{schedule.id}")


async def _execute(schedule: Schedule, config: AgentConfig, provider: LLMProvider, context: AgentContext) -> str:
    model = config.llm.resolved_model()
    registry = create_tool_registry(
        context,
        config,
        provider=provider,
        include_scheduler=False,
        include_memory_tool=False,
    )
    now = from_epoch_ms(context.clock())
    system_prompt = build_system_prompt(
        registry,
        enabled_capabilities=config.enabled_capabilities,
        driving_mode=config.driving_mode,
        language=config.language,
        personal_memory=await _personal_memory(context),
        now=now,
    )
    messages = [
        Message(role="system", content=system_prompt),
        Message(role="user", content=build_background_instruction(schedule.instruction, now)),
    ]
    result = await run_tool_loop(
        ToolLoopConfig(
            provider=provider,
            registry=registry,
            model=model,
            max_iterations=config.limits.scheduled,
        ),
        messages,
    )
    content = result.content.strip()
    if not content:
        if result.iteration_limit_reached:
            LOGGER.warning("[scheduler] Schedule %s hit the iteration limit", schedule.id)
            return ITERATION_LIMIT_MESSAGE.format(instruction=schedule.instruction)
        return f"Scheduled task completed: {schedule.instruction}"
    return content


async def _advance(schedule: Schedule, context: AgentContext) -> None:
    """Persist the next trigger or delete the schedule once a run has been attempted."""
    upcoming = next_trigger(schedule.recurrence, context.clock())
    if upcoming is None:
        await context.schedules.remove_schedule(schedule.id)
        LOGGER.info("[scheduler] Schedule %s has no next run; removed", schedule.id)
        return
    await context.schedules.update_trigger(schedule.id, upcoming)
    if context.schedule_wake is not None:
        context.schedule_wake.arm(schedule.id, upcoming)
    LOGGER.info("[scheduler] Schedule %s next runs at %d", schedule.id, upcoming)


async def _personal_memory(context: AgentContext) -> str:
    try:
        return await context.memory.get_memory()
    except Exception as exc:
        LOGGER.warning("[scheduler] Could not read personal memory: %s", exc)
        return ""
