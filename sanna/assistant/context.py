"""Collaborators shared by the interactive session and the background execution units.

Each execution unit receives an AgentContext instead of reaching for module-level
state: stores, the agent-config loader, the provider factory, wake schedulers,
the accessibility bridge and the foreground activator all travel here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

from sanna.datetime_utils import now_ms

from .accessibility import AccessibilityBridge, JobLauncher
from .config import AgentConfig, AssistantConfig, LLMConfig, load_agent_config
from .conversation_store import ConversationStore
from .foreground import ForegroundActivator, NullForegroundActivator
from .llm import LLMProvider, build_llm_provider
from .memory_store import HintStore, JsonKeyValueStore, PersonalMemoryStore
from .schedule_store import ScheduleStore
from .timers import TimerStore
from .wake import WakeScheduler

LOGGER = logging.getLogger("sanna.context")


@dataclass
class AgentContext:
    schedules: ScheduleStore
    timers: TimerStore
    conversation: ConversationStore
    hints: HintStore
    memory: PersonalMemoryStore
    config_loader: Callable[[], AgentConfig]
    provider_factory: Callable[[LLMConfig], LLMProvider] = build_llm_provider
    foreground: ForegroundActivator | None = None
    accessibility: AccessibilityBridge | None = None
    schedule_wake: WakeScheduler | None = None
    timer_wake: WakeScheduler | None = None
    job_launcher: JobLauncher | None = None
    clock: Callable[[], int] = now_ms
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    foreground_wait_ms: int = 10_000
    settle_delay_ms: int = 2_500
    tree_settle_delay_ms: int = 800

    @staticmethod
    def from_config(
        config: AssistantConfig,
        *,
        foreground: ForegroundActivator | None = None,
        accessibility: AccessibilityBridge | None = None,
    ) -> AgentContext:
        storage = config.storage
        return AgentContext(
            schedules=ScheduleStore(storage.schedules_path),
            timers=TimerStore(storage.timers_path),
            conversation=ConversationStore(storage.pending_path, storage.history_path),
            hints=HintStore(JsonKeyValueStore(storage.hints_path)),
            memory=PersonalMemoryStore(JsonKeyValueStore(storage.memory_path)),
            config_loader=partial(load_agent_config, storage.agent_config_path),
            foreground=foreground,
            accessibility=accessibility,
            foreground_wait_ms=config.foreground_wait_ms,
            settle_delay_ms=config.settle_delay_ms,
            tree_settle_delay_ms=config.tree_settle_delay_ms,
        )

    async def queue_output(self, text: str) -> bool:
        """Append an assistant entry to the pending-output queue; never raises."""
        return await self.conversation.append_pending("assistant", text)

    async def bring_to_foreground(self, reason: str) -> None:
        activator = self.foreground or NullForegroundActivator()
        try:
            await activator.bring_to_foreground(reason)
        except Exception as exc:
            LOGGER.warning("[foreground] Activation failed: %s", exc)

    async def deliver(self, text: str, reason: str) -> None:
        """Queue ``text`` first, then request the foreground."""
        await self.queue_output(text)
        await self.bring_to_foreground(reason)
