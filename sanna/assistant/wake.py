"""
Wake triggers for background execution units

A wake trigger invokes an execution unit once at an absolute time, passing it an
opaque id (a schedule id or a timer id). On a phone the host OS alarm service
plays this role; ``LocalWakeScheduler`` provides the same contract inside a
running asyncio process using one sleeping task per armed id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from sanna.datetime_utils import now_ms

LOGGER = logging.getLogger("sanna.wake")

WakeHandler = Callable[[str], Awaitable[None]]


class WakeScheduler(Protocol):
    def arm(self, job_id: str, trigger_at_ms: int) -> None: ...

    def cancel(self, job_id: str) -> None: ...


@dataclass
class LocalWakeScheduler:
    handler: WakeHandler
    label: str = "wake"
    _tasks: dict[str, asyncio.Task] = field(default_factory=dict, init=False)

    def arm(self, job_id: str, trigger_at_ms: int) -> None:
        """(Re)arm ``job_id`` to fire at ``trigger_at_ms``; past times fire immediately."""
        self.cancel(job_id)
        delay = max(0.0, (trigger_at_ms - now_ms()) / 1000)
        task = asyncio.create_task(self._fire(job_id, delay))
        self._track(job_id, task)
        LOGGER.debug("[%s] Armed %s in %.1fs", self.label, job_id, delay)

    def cancel(self, job_id: str) -> None:
        task = self._tasks.pop(job_id, None)
        if task and not task.done():
            task.cancel()

    def armed(self) -> list[str]:
        return sorted(self._tasks)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _fire(self, job_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        # the handler may re-arm the same id
        self._tasks.pop(job_id, None)
        LOGGER.info("[%s] Firing %s", self.label, job_id)
        try:
            await self.handler(job_id)
        except Exception:
            LOGGER.exception("[%s] Handler for %s failed", self.label, job_id)

    def _track(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks[job_id] = task

        def _cleanup(_task: asyncio.Task) -> None:
            if self._tasks.get(job_id) is _task:
                self._tasks.pop(job_id, None)

        task.add_done_callback(_cleanup)
