"""Standard tool set for each execution context."""

from __future__ import annotations

import logging

from .accessibility import AccessibilityTool
from .config import AgentConfig
from .context import AgentContext
from .llm import LLMProvider
from .memory_tool import PersonalMemoryTool
from .scheduler_tool import SchedulerTool
from .timers import TimerTool
from .tools import ToolRegistry

LOGGER = logging.getLogger("sanna.tool_factory")


def create_tool_registry(
    context: AgentContext,
    config: AgentConfig,
    *,
    provider: LLMProvider | None = None,
    include_scheduler: bool = True,
    include_memory_tool: bool = True,
) -> ToolRegistry:
    """Build the registry and drop tools whose capability group is disabled.

    Scheduled tasks pass ``include_scheduler=False`` so a background run cannot
    create further schedules; the memory tool is reserved for the interactive session.
    """
    registry = ToolRegistry()
    if include_scheduler:
        registry.register(SchedulerTool(context.schedules, context.schedule_wake, context.clock))
    registry.register(TimerTool(context.timers, context.timer_wake, context.clock))
    if include_memory_tool:
        registry.register(PersonalMemoryTool(context.memory, provider, config.llm.resolved_model()))
    if context.job_launcher is not None:
        registry.register(AccessibilityTool(context.job_launcher))
    removed = registry.remove_disabled_capability_tools(config.enabled_capabilities)
    LOGGER.debug("[tools] Registry ready: %s (disabled: %s)", registry.names(), removed)
    return registry
