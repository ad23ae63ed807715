"""
Bounded tool-calling agent loop

Every execution context (interactive turns, scheduled tasks, the accessibility
sub-agent) drives the model through ``run_tool_loop``:

1. Send the conversation plus the registry's tool definitions to the provider.
2. A reply without tool calls ends the loop with that reply's text.
3. Otherwise record the assistant turn, run each tool call in order, and append
   one tool message per call (unknown tools and raising tools become error
   results so the model can correct itself).
4. Repeat until the iteration cap, or until ``should_exit`` says a tool has
   already produced the terminal outcome.

Provider failures are not caught here; they propagate to the caller.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from .llm import LLMOptions, LLMProvider, Message, ToolCall
from .tools import ToolRegistry, ToolResult

LOGGER = logging.getLogger("sanna.tool_loop")

UserMessageCallback = Callable[[str], "Awaitable[None] | None"]


@dataclass
class ToolLoopConfig:
    provider: LLMProvider
    registry: ToolRegistry
    model: str
    max_iterations: int = 10
    options: LLMOptions | None = None
    on_user_message: UserMessageCallback | None = None
    should_exit: Callable[[], bool] | None = None
    early_exit_content: Callable[[], str] | None = None


@dataclass
class ToolLoopResult:
    content: str
    iterations: int
    new_messages: list[Message] = field(default_factory=list)
    iteration_limit_reached: bool = False
    exited_early: bool = False


async def run_tool_loop(config: ToolLoopConfig, messages: Sequence[Message]) -> ToolLoopResult:
    """Run the agent loop over ``messages`` without mutating them."""
    if config.max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")

    conversation = list(messages)
    new_messages: list[Message] = []
    definitions = config.registry.definitions()
    content = ""

    for iteration in range(1, config.max_iterations + 1):
        LOGGER.debug("[loop] Iteration %d/%d (%d messages)", iteration, config.max_iterations, len(conversation))
        response = await config.provider.chat(conversation, definitions, config.model, config.options)
        content = response.content

        if not response.tool_calls:
            LOGGER.debug("[loop] Finished after %d iteration(s)", iteration)
            return ToolLoopResult(content=content, iterations=iteration, new_messages=new_messages)

        assistant = Message(role="assistant", content=response.content, tool_calls=list(response.tool_calls))
        conversation.append(assistant)
        new_messages.append(assistant)

        for call in response.tool_calls:
            result = await _execute_tool_call(config.registry, call)
            tool_message = Message(role="tool", content=result.for_llm, tool_call_id=call.id)
            conversation.append(tool_message)
            new_messages.append(tool_message)
            if result.ok and result.short_message and config.on_user_message is not None:
                await _notify_user(config.on_user_message, result.short_message)

        if config.should_exit is not None and config.should_exit():
            exit_content = config.early_exit_content() if config.early_exit_content is not None else content
            LOGGER.debug("[loop] Early exit after %d iteration(s)", iteration)
            return ToolLoopResult(
                content=exit_content,
                iterations=iteration,
                new_messages=new_messages,
                exited_early=True,
            )

    LOGGER.info("[loop] Iteration limit of %d reached", config.max_iterations)
    return ToolLoopResult(
        content=content,
        iterations=config.max_iterations,
        new_messages=new_messages,
        iteration_limit_reached=True,
    )


async def _execute_tool_call(registry: ToolRegistry, call: ToolCall) -> ToolResult:
    if call.name not in registry:
        LOGGER.warning("[loop] Model requested unknown tool %s", call.name)
    result = await registry.execute(call.name, call.arguments)
    LOGGER.debug("[loop] Tool %s -> %s", call.name, "ok" if result.ok else "error")
    return result


async def _notify_user(callback: UserMessageCallback, text: str) -> None:
    try:
        outcome = callback(text)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception:
        LOGGER.warning("[loop] User message callback failed", exc_info=True)
