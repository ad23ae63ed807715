"""Timer expiry execution unit."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sanna.utils import coerce_str

from .context import AgentContext
from .errors import ConfigError, JobParseError
from .system_prompt import formulate_response

LOGGER = logging.getLogger("sanna.timer_runner")


@dataclass(frozen=True)
class TimerJob:
    timer_id: str

    @staticmethod
    def from_payload(payload: Any) -> TimerJob:
        if isinstance(payload, dict):
            payload = payload.get("timerId")
        timer_id = coerce_str(payload)
        if not timer_id:
            raise JobParseError("Wake payload carries no timer id")
        return TimerJob(timer_id)


def finished_message(label: str) -> str:
    return f'Timer "{label or "Timer"}" has finished.'


async def run_timer_expired(job: TimerJob, context: AgentContext) -> None:
    label = ""
    queued = False
    try:
        timer = await context.timers.get_timer(job.timer_id)
        if timer is None:
            LOGGER.warning("[timer] Timer %s not found; nothing to do", job.timer_id)
            return
        label = timer.label
        if not timer.enabled:
            LOGGER.info("[timer] Timer %s is disabled; removing", job.timer_id)
            await context.timers.remove_timer(job.timer_id)
            return

        raw_message = finished_message(label)
        try:
            config = context.config_loader()
        except ConfigError as exc:
            LOGGER.error("[timer] No usable agent configuration: %s", exc)
            message = raw_message
        else:
            provider = context.provider_factory(config.llm)
            message = await formulate_response(
                provider,
                config.llm.resolved_model(),
                subject="timer",
                goal=f'Timer "{label or "Timer"}" expired',
                status="success",
                raw_message=raw_message,
                driving_mode=config.driving_mode,
                language=config.language,
            )

        await context.queue_output(message)
        queued = True
        await context.timers.remove_timer(job.timer_id)
        LOGGER.info("[timer] Timer %s delivered", job.timer_id)
    except Exception:
        LOGGER.exception("[timer] Timer %s expiry handling failed", job.timer_id)
        if not queued:
            await context.queue_output(finished_message(label))
        try:
            await context.timers.remove_timer(job.timer_id)
        except Exception:
            LOGGER.warning("[timer] Could not remove timer %s", job.timer_id, exc_info=True)
    await context.bring_to_foreground(f"timer:{job.timer_id}")
