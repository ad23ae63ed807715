"""Configuration helpers for the Sanna assistant."""

from __future__ import annotations

import json
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from sanna.utils import parse_bool, parse_float, parse_int, split_csv

from .errors import ConfigError

ProviderName = Literal["claude", "openai"]

SUPPORTED_PROVIDERS: tuple[str, ...] = ("claude", "openai")
DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-6"
DEFAULT_OPENAI_MODEL = "gpt-5.2"
DEFAULT_CAPABILITIES: tuple[str, ...] = ("scheduler", "timer", "accessibility")


@dataclass(frozen=True)
class LLMConfig:
    provider: str
    api_key: str
    model: str | None = None
    claude_base_url: str = "https://api.anthropic.com/v1"
    openai_base_url: str = "https://api.openai.com/v1"
    timeout: float = 120.0
    max_tokens: int = 8192
    log_messages: bool = False

    def resolved_model(self) -> str:
        if self.model:
            return self.model
        return DEFAULT_CLAUDE_MODEL if self.provider == "claude" else DEFAULT_OPENAI_MODEL


@dataclass(frozen=True)
class IterationLimits:
    interactive: int = 10
    scheduled: int = 8
    accessibility: int = 12
    history_messages: int = 20


@dataclass(frozen=True)
class AgentConfig:
    llm: LLMConfig
    enabled_capabilities: tuple[str, ...] = DEFAULT_CAPABILITIES
    language: str = "en"
    driving_mode: bool = False
    limits: IterationLimits = field(default_factory=IterationLimits)

    @staticmethod
    def from_dict(payload: Any) -> AgentConfig:
        """Build a config from its persisted JSON form. Raises ConfigError if unusable."""
        if not isinstance(payload, dict):
            raise ConfigError("Agent configuration must be a JSON object")
        api_key = payload.get("apiKey")
        if not isinstance(api_key, str) or not api_key.strip():
            raise ConfigError("Agent configuration has no API key")
        provider = str(payload.get("provider") or "claude").strip().lower()
        if provider not in SUPPORTED_PROVIDERS:
            raise ConfigError(f"Unsupported provider: {provider}")
        model = payload.get("model")
        raw_limits = payload.get("limits") if isinstance(payload.get("limits"), dict) else {}
        defaults = IterationLimits()
        limits = IterationLimits(
            interactive=_positive_int(raw_limits.get("interactive"), defaults.interactive),
            scheduled=_positive_int(raw_limits.get("scheduled"), defaults.scheduled),
            accessibility=_positive_int(raw_limits.get("accessibility"), defaults.accessibility),
            history_messages=_positive_int(raw_limits.get("historyMessages"), defaults.history_messages),
        )
        capabilities = payload.get("enabledCapabilityNames")
        if isinstance(capabilities, list):
            enabled = tuple(str(name) for name in capabilities if isinstance(name, str) and name)
        else:
            enabled = DEFAULT_CAPABILITIES
        llm = LLMConfig(
            provider=provider,
            api_key=api_key.strip(),
            model=model.strip() if isinstance(model, str) and model.strip() else None,
            claude_base_url=str(payload.get("claudeBaseUrl") or "https://api.anthropic.com/v1"),
            openai_base_url=str(payload.get("openaiBaseUrl") or "https://api.openai.com/v1"),
            timeout=_positive_float(payload.get("timeoutSeconds"), 120.0),
            max_tokens=_positive_int(payload.get("maxTokens"), 8192),
        )
        return AgentConfig(
            llm=llm,
            enabled_capabilities=enabled,
            language=str(payload.get("language") or "en"),
            driving_mode=bool(payload.get("drivingMode", False)),
            limits=limits,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiKey": self.llm.api_key,
            "provider": self.llm.provider,
            "model": self.llm.model,
            "claudeBaseUrl": self.llm.claude_base_url,
            "openaiBaseUrl": self.llm.openai_base_url,
            "timeoutSeconds": self.llm.timeout,
            "maxTokens": self.llm.max_tokens,
            "enabledCapabilityNames": list(self.enabled_capabilities),
            "language": self.language,
            "drivingMode": self.driving_mode,
            "limits": {
                "interactive": self.limits.interactive,
                "scheduled": self.limits.scheduled,
                "accessibility": self.limits.accessibility,
                "historyMessages": self.limits.history_messages,
            },
        }


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class StorageConfig:
    data_dir: Path

    @property
    def agent_config_path(self) -> Path:
        return self.data_dir / "agent_config.json"

    @property
    def schedules_path(self) -> Path:
        return self.data_dir / "schedules.json"

    @property
    def timers_path(self) -> Path:
        return self.data_dir / "timers.json"

    @property
    def pending_path(self) -> Path:
        return self.data_dir / "pending_messages.json"

    @property
    def history_path(self) -> Path:
        return self.data_dir / "conversation_history.json"

    @property
    def hints_path(self) -> Path:
        return self.data_dir / "accessibility_hints.json"

    @property
    def memory_path(self) -> Path:
        return self.data_dir / "personal_memory.json"


@dataclass(frozen=True)
class AssistantConfig:
    hostname: str
    agent: AgentConfig | None
    mqtt: MqttConfig
    storage: StorageConfig
    foreground_wait_ms: int
    settle_delay_ms: int
    tree_settle_delay_ms: int

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> AssistantConfig:
        source = env or os.environ
        hostname = source.get("SANNA_HOSTNAME") or socket.gethostname()

        data_dir = Path(source.get("SANNA_DATA_DIR") or Path.home() / ".local" / "share" / "sanna").expanduser()

        mqtt = MqttConfig(
            host=source.get("MQTT_HOST"),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=source.get("MQTT_USER"),
            password=source.get("MQTT_PASS"),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=source.get("MQTT_CERT"),
            key=source.get("MQTT_KEY"),
            ca_cert=source.get("MQTT_CA_CERT"),
            topic_base=source.get("SANNA_TOPIC_BASE") or f"sanna/{hostname}",
        )

        return AssistantConfig(
            hostname=hostname,
            agent=_agent_from_env(source),
            mqtt=mqtt,
            storage=StorageConfig(data_dir=data_dir),
            foreground_wait_ms=parse_int(source.get("SANNA_FOREGROUND_WAIT_MS"), 10_000),
            settle_delay_ms=parse_int(source.get("SANNA_SETTLE_DELAY_MS"), 2_500),
            tree_settle_delay_ms=parse_int(source.get("SANNA_TREE_SETTLE_DELAY_MS"), 800),
        )


def _agent_from_env(source: Any) -> AgentConfig | None:
    provider = (source.get("SANNA_LLM_PROVIDER") or "claude").strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigError(f"Unsupported provider: {provider}")
    if provider == "claude":
        api_key = source.get("ANTHROPIC_API_KEY") or source.get("SANNA_API_KEY")
    else:
        api_key = source.get("OPENAI_API_KEY") or source.get("SANNA_API_KEY")
    if not api_key:
        return None

    llm = LLMConfig(
        provider=provider,
        api_key=api_key,
        model=source.get("SANNA_LLM_MODEL") or None,
        claude_base_url=source.get("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1"),
        openai_base_url=source.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        timeout=parse_float(source.get("SANNA_LLM_TIMEOUT"), 120.0),
        max_tokens=parse_int(source.get("SANNA_LLM_MAX_TOKENS"), 8192),
        log_messages=parse_bool(source.get("SANNA_LOG_LLM_MESSAGES"), False),
    )
    capabilities = split_csv(source.get("SANNA_CAPABILITIES"))
    limits = IterationLimits(
        interactive=parse_int(source.get("SANNA_MAX_ITERATIONS"), 10),
        scheduled=parse_int(source.get("SANNA_SCHEDULED_MAX_ITERATIONS"), 8),
        accessibility=parse_int(source.get("SANNA_ACCESSIBILITY_MAX_ITERATIONS"), 12),
        history_messages=parse_int(source.get("SANNA_MAX_HISTORY"), 20),
    )
    return AgentConfig(
        llm=llm,
        enabled_capabilities=tuple(capabilities) if capabilities else DEFAULT_CAPABILITIES,
        language=source.get("SANNA_LANGUAGE") or "en",
        driving_mode=parse_bool(source.get("SANNA_DRIVING_MODE"), False),
        limits=limits,
    )


def load_agent_config(path: Path) -> AgentConfig:
    """Read the agent configuration persisted by the interactive session."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError("No agent configuration found") from exc
    except OSError as exc:
        raise ConfigError(f"Could not read agent configuration: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError("Agent configuration is not valid JSON") from exc
    return AgentConfig.from_dict(payload)


def save_agent_config(path: Path, config: AgentConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
    tmp_path.replace(path)


def _positive_int(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _positive_float(value: Any, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default
