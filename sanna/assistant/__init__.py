"""
Agent orchestration for the Sanna assistant

This package provides the core assistant functionality including:

- LLM providers: Claude (Anthropic Messages API) and OpenAI Chat Completions behind one interface
- Tools: Tool contract, registry, and the standard tool set (scheduler, timers, memory, accessibility)
- Agent loop: Bounded tool-calling loop shared by every execution context
- Conversation pipeline: Interactive state machine with history trimming
- Scheduling: Recurrence engine, schedule persistence, and the scheduled-task runner
- Accessibility: Sub-agent that drives third-party apps with per-app learned hints
- Background output: Pending-output queue and foreground activation signal

Key modules:
- config: Configuration management from environment variables and persisted JSON
- llm: Provider adapters and the neutral message model
- tool_loop: The agent loop
- conversation_pipeline: Interactive turn handling
- schedule_runner / timer_runner / accessibility_runner: Background execution units
"""

from __future__ import annotations

__all__ = [
    "config",
    "errors",
    "llm",
    "tools",
    "tool_loop",
    "conversation_pipeline",
    "recurrence",
    "schedule_runner",
    "accessibility",
]
