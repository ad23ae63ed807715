"""
Interactive conversation pipeline

Turns one user utterance into an assistant reply:

    text -> system prompt + trimmed history -> agent loop -> history -> speech

State machine::

    idle -> listening -> processing -> (speaking | idle) -> idle
                              \\-> error -> idle

Only one turn is in flight at a time: ``process_utterance`` returns immediately
unless the pipeline is idle, and it leaves idle before its first await.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Literal, Protocol

from .config import AgentConfig
from .conversation_store import ConversationStore, DisplayMessage
from .llm import LLMProvider, Message
from .memory_store import PersonalMemoryStore
from .system_prompt import build_system_prompt
from .tool_loop import ToolLoopConfig, run_tool_loop
from .tools import ToolRegistry

LOGGER = logging.getLogger("sanna.pipeline")

PipelineState = Literal["idle", "listening", "processing", "speaking", "error"]

SPOKEN_ERROR = "An error has occurred."
EMPTY_REPLY = "Task started."


class Speaker(Protocol):
    async def speak(self, text: str, language: str) -> None: ...

    async def stop(self) -> None: ...


def trim_history(history: Sequence[Message], max_messages: int) -> list[Message]:
    """Keep roughly the last ``max_messages`` without splitting a tool exchange.

    After slicing, the start index moves forward past leading ``tool`` results
    and past assistant turns that carry tool calls, so the kept history always
    begins with a user message or a plain assistant message.
    """
    if len(history) <= max_messages:
        return list(history)
    start = max(0, len(history) - max_messages)
    while start < len(history):
        message = history[start]
        if message.role == "tool" or (message.role == "assistant" and message.tool_calls):
            start += 1
            continue
        break
    return list(history[start:])


class ConversationPipeline:
    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        config: AgentConfig,
        *,
        speaker: Speaker | None = None,
        memory: PersonalMemoryStore | None = None,
        on_state_change: Callable[[PipelineState], None] | None = None,
        on_transcript: Callable[[str, str], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        on_tool_message: Callable[[str], None] | None = None,
    ) -> None:
        self._provider = provider
        self._registry = registry
        self._config = config
        self._speaker = speaker
        self._memory = memory
        self._on_state_change = on_state_change
        self._on_transcript = on_transcript
        self._on_error = on_error
        self._on_tool_message = on_tool_message
        self._driving_mode = config.driving_mode
        self._state: PipelineState = "idle"
        self._history: list[Message] = []

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def driving_mode(self) -> bool:
        return self._driving_mode

    def set_driving_mode(self, enabled: bool) -> None:
        self._driving_mode = enabled

    @property
    def max_history_messages(self) -> int:
        return self._config.limits.history_messages

    def start_listening(self) -> None:
        if self._state in ("idle", "speaking"):
            self._set_state("listening")

    def stop_listening(self) -> None:
        if self._state == "listening":
            self._set_state("idle")

    def set_idle(self) -> None:
        self._set_state("idle")

    async def stop_speaking(self) -> None:
        if self._state != "speaking":
            return
        if self._speaker is not None:
            await self._speaker.stop()
        self._set_state("idle")

    async def process_utterance(self, text: str, *, silent: bool = False) -> str:
        """Run one turn; returns the reply, or "" when busy or on failure."""
        if self._state != "idle":
            LOGGER.debug("[pipeline] Ignoring utterance while %s", self._state)
            return ""
        self._set_state("processing")
        try:
            if not silent:
                self._emit_transcript("user", text)
            reply = await self._run_turn(text)
        except Exception as exc:
            await self._handle_failure(exc)
            return ""

        try:
            self._emit_transcript("assistant", reply)
            if self._driving_mode and self._speaker is not None:
                self._set_state("speaking")
                try:
                    await self._speaker.speak(reply, self._config.language)
                except Exception as exc:
                    LOGGER.warning("[pipeline] Speech output failed: %s", exc)
        finally:
            if self._state != "listening":
                self._set_state("idle")
        return reply

    async def _run_turn(self, text: str) -> str:
        memory = await self._memory.get_memory() if self._memory is not None else ""
        system_prompt = build_system_prompt(
            self._registry,
            enabled_capabilities=self._config.enabled_capabilities,
            driving_mode=self._driving_mode,
            language=self._config.language,
            personal_memory=memory,
        )
        user_message = Message(role="user", content=text)
        messages = [Message(role="system", content=system_prompt), *self._history, user_message]
        self._history.append(user_message)

        result = await run_tool_loop(
            ToolLoopConfig(
                provider=self._provider,
                registry=self._registry,
                model=self._config.llm.resolved_model(),
                max_iterations=self._config.limits.interactive,
                on_user_message=self._on_tool_message,
            ),
            messages,
        )
        reply = result.content or EMPTY_REPLY
        self._history.extend(result.new_messages)
        self._history.append(Message(role="assistant", content=reply))
        self._history = trim_history(self._history, self.max_history_messages)
        LOGGER.info("[pipeline] Turn finished after %d iteration(s)", result.iterations)
        return reply

    async def _handle_failure(self, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        LOGGER.error("[pipeline] Turn failed: %s", message, exc_info=True)
        self._set_state("error")
        if self._on_error is not None:
            try:
                self._on_error(message)
            except Exception:
                LOGGER.warning("[pipeline] Error callback failed", exc_info=True)
        self._history.append(Message(role="assistant", content=f"[Error: {message}] I was unable to process the request."))
        self._history = trim_history(self._history, self.max_history_messages)
        if self._driving_mode and self._speaker is not None:
            try:
                await self._speaker.speak(SPOKEN_ERROR, self._config.language)
            except Exception:
                LOGGER.debug("[pipeline] Could not speak the error notice", exc_info=True)
        self._set_state("idle")

    def clear_history(self) -> None:
        self._history = []

    def export_history(self) -> list[Message]:
        return list(self._history)

    def import_history(self, history: Sequence[Message]) -> None:
        self._history = trim_history(list(history), self.max_history_messages)

    def append_to_history(self, messages: Sequence[Message]) -> None:
        self._history.extend(messages)
        self._history = trim_history(self._history, self.max_history_messages)

    async def drain_pending(self, store: ConversationStore) -> list[DisplayMessage]:
        """Move queued background output into the history; returns it for display."""
        entries = await store.drain_pending()
        if entries:
            self.append_to_history([Message(role=entry.role, content=entry.text) for entry in entries])
            LOGGER.info("[pipeline] Restored %d background message(s)", len(entries))
        return entries

    def _set_state(self, state: PipelineState) -> None:
        self._state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                LOGGER.warning("[pipeline] State callback failed", exc_info=True)

    def _emit_transcript(self, role: str, text: str) -> None:
        if self._on_transcript is not None:
            try:
                self._on_transcript(role, text)
            except Exception:
                LOGGER.warning("[pipeline] Transcript callback failed", exc_info=True)
