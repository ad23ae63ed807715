"""Shared test fixtures and configuration for the Sanna test suite.

This module provides reusable fixtures for common test scenarios including:
- Scripted LLM providers that replay canned responses
- Agent configuration objects
- Background execution contexts backed by temporary storage
- MQTT client mocking
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import paho.mqtt.client as mqtt
import pytest
from sanna.assistant.config import AgentConfig, IterationLimits, LLMConfig, MqttConfig
from sanna.assistant.context import AgentContext
from sanna.assistant.conversation_store import ConversationStore
from sanna.assistant.llm import LLMOptions, LLMProvider, LLMResponse, Message, ToolCall, ToolDefinition
from sanna.assistant.memory_store import HintStore, JsonKeyValueStore, PersonalMemoryStore
from sanna.assistant.schedule_store import ScheduleStore
from sanna.assistant.timers import TimerStore

# 2026-03-02 09:00:00 UTC, a Monday
FIXED_NOW_MS = 1_772_442_000_000

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Returns a Mock with spec=logging.Logger to ensure only valid
    logger methods can be called.
    """
    return Mock(spec=logging.Logger)


# ============================================================================
# LLM Provider Fixtures
# ============================================================================


class ScriptedProvider(LLMProvider):
    """Provider that replays queued responses and records every request.

    Queue entries are LLMResponse objects or exceptions to raise. When the queue
    runs dry the provider keeps answering with ``fallback`` (or raises if unset).
    """

    name = "scripted"

    def __init__(self, responses: Sequence[LLMResponse | Exception] = (), fallback: LLMResponse | None = None):
        super().__init__(LLMConfig(provider="claude", api_key="test-key"))
        self.responses: list[LLMResponse | Exception] = list(responses)
        self.fallback = fallback
        self.calls: list[dict[str, Any]] = []

    async def chat(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] = (),
        model: str | None = None,
        options: LLMOptions | None = None,
    ) -> LLMResponse:
        self.calls.append({"messages": list(messages), "tools": [tool.name for tool in tools], "model": model})
        if self.responses:
            item = self.responses.pop(0)
        elif self.fallback is not None:
            item = self.fallback
        else:
            raise AssertionError("ScriptedProvider ran out of responses")
        if isinstance(item, Exception):
            raise item
        return item


def text_response(text: str) -> LLMResponse:
    return LLMResponse(content=text)


def tool_response(*calls: tuple[str, str, dict[str, Any]], content: str = "") -> LLMResponse:
    return LLMResponse(
        content=content,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=args) for call_id, name, args in calls],
        finish_reason="tool_calls",
    )


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedProvider instances.

    Usage:
        provider = scripted_provider([text_response("Hi")])
    """

    def _create(responses=(), fallback=None) -> ScriptedProvider:
        return ScriptedProvider(responses, fallback)

    return _create


@pytest.fixture
def text_reply():
    return text_response


@pytest.fixture
def tool_reply():
    return tool_response


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def agent_config():
    """Create a Claude-backed agent configuration with all capabilities enabled."""
    return AgentConfig(
        llm=LLMConfig(provider="claude", api_key="test-key"),
        limits=IterationLimits(interactive=5, scheduled=3, accessibility=4, history_messages=20),
    )


@pytest.fixture
def mqtt_config():
    """Create a basic MQTT configuration for testing."""
    return MqttConfig(
        host="localhost",
        port=1883,
        topic_base="sanna/test-device",
        username=None,
        password=None,
        tls_enabled=False,
        ca_cert=None,
        cert=None,
        key=None,
    )


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho MQTT client."""
    client = Mock(spec=mqtt.Client)
    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    message_info.mid = 1
    client.publish = Mock(return_value=message_info)
    client.subscribe = Mock(return_value=(mqtt.MQTT_ERR_SUCCESS, 1))
    client.is_connected = Mock(return_value=True)
    return client


# ============================================================================
# Background Context Fixtures
# ============================================================================


class RecordingForeground:
    """Foreground activator that snapshots the pending queue when it is called."""

    def __init__(self, conversation: ConversationStore) -> None:
        self._conversation = conversation
        self.reasons: list[str] = []
        self.pending_seen: list[int] = []

    async def bring_to_foreground(self, reason: str) -> None:
        self.reasons.append(reason)
        self.pending_seen.append(len(await self._conversation.peek_pending()))


class RecordingWake:
    def __init__(self) -> None:
        self.armed: dict[str, int] = {}
        self.cancelled: list[str] = []

    def arm(self, job_id: str, trigger_at_ms: int) -> None:
        self.armed[job_id] = trigger_at_ms

    def cancel(self, job_id: str) -> None:
        self.cancelled.append(job_id)
        self.armed.pop(job_id, None)


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def make_context(storage_dir: Path, agent_config: AgentConfig):
    """Factory for AgentContext objects backed by ``storage_dir``.

    ``config`` may be an AgentConfig or an exception instance the loader raises.
    """

    def _create(provider: LLMProvider | None = None, config: Any = agent_config, **overrides: Any) -> AgentContext:
        conversation = ConversationStore(storage_dir / "pending.json", storage_dir / "history.json")

        def _load() -> AgentConfig:
            if isinstance(config, Exception):
                raise config
            return config

        def _provider_factory(_llm: LLMConfig) -> LLMProvider:
            if provider is None:
                raise AssertionError("No provider expected in this test")
            return provider

        async def _no_sleep(_seconds: float) -> None:
            return None

        values: dict[str, Any] = {
            "schedules": ScheduleStore(storage_dir / "schedules.json"),
            "timers": TimerStore(storage_dir / "timers.json"),
            "conversation": conversation,
            "hints": HintStore(JsonKeyValueStore(storage_dir / "hints.json")),
            "memory": PersonalMemoryStore(JsonKeyValueStore(storage_dir / "memory.json")),
            "config_loader": _load,
            "provider_factory": _provider_factory,
            "foreground": RecordingForeground(conversation),
            "schedule_wake": RecordingWake(),
            "timer_wake": RecordingWake(),
            "clock": lambda: FIXED_NOW_MS,
            "sleep": _no_sleep,
            "tree_settle_delay_ms": 0,
        }
        values.update(overrides)
        return AgentContext(**values)

    return _create
