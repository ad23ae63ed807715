"""Tests for sanna.assistant.config: environment parsing and the persisted agent config."""

from __future__ import annotations

import json

import pytest
from sanna.assistant.config import (
    DEFAULT_CAPABILITIES,
    DEFAULT_CLAUDE_MODEL,
    DEFAULT_OPENAI_MODEL,
    AgentConfig,
    AssistantConfig,
    LLMConfig,
    load_agent_config,
    save_agent_config,
)
from sanna.assistant.errors import ConfigError

_BASE_ENV: dict[str, str] = {
    "SANNA_HOSTNAME": "kitchen",
    "ANTHROPIC_API_KEY": "sk-ant-test",
}


def _from_env(overrides: dict[str, str] | None = None) -> AssistantConfig:
    env = dict(_BASE_ENV)
    if overrides:
        env.update(overrides)
    return AssistantConfig.from_env(env)


# ===================================================================
# AssistantConfig.from_env
# ===================================================================


class TestFromEnv:
    def test_defaults(self):
        config = _from_env()

        assert config.hostname == "kitchen"
        assert config.mqtt.topic_base == "sanna/kitchen"
        assert config.mqtt.port == 1883
        assert config.agent.llm.provider == "claude"
        assert config.agent.llm.resolved_model() == DEFAULT_CLAUDE_MODEL
        assert config.agent.enabled_capabilities == DEFAULT_CAPABILITIES
        assert config.agent.limits.interactive == 10
        assert config.foreground_wait_ms == 10_000
        assert config.settle_delay_ms == 2_500

    def test_openai_provider(self):
        config = _from_env({"SANNA_LLM_PROVIDER": "OpenAI", "OPENAI_API_KEY": "sk-openai"})

        assert config.agent.llm.provider == "openai"
        assert config.agent.llm.api_key == "sk-openai"
        assert config.agent.llm.resolved_model() == DEFAULT_OPENAI_MODEL

    def test_missing_key_means_no_agent(self):
        config = AssistantConfig.from_env({"SANNA_HOSTNAME": "kitchen"})
        assert config.agent is None

    def test_unsupported_provider(self):
        with pytest.raises(ConfigError):
            _from_env({"SANNA_LLM_PROVIDER": "gemini"})

    def test_overrides(self, tmp_path):
        config = _from_env(
            {
                "SANNA_DATA_DIR": str(tmp_path),
                "SANNA_CAPABILITIES": "timer, scheduler",
                "SANNA_MAX_ITERATIONS": "4",
                "SANNA_DRIVING_MODE": "true",
                "SANNA_LANGUAGE": "de-DE",
                "SANNA_LLM_TIMEOUT": "30",
                "SANNA_TOPIC_BASE": "home/sanna",
            }
        )

        assert config.storage.schedules_path == tmp_path / "schedules.json"
        assert config.agent.enabled_capabilities == ("timer", "scheduler")
        assert config.agent.limits.interactive == 4
        assert config.agent.driving_mode is True
        assert config.agent.language == "de-DE"
        assert config.agent.llm.timeout == 30.0
        assert config.mqtt.topic_base == "home/sanna"


# ===================================================================
# Persisted agent configuration
# ===================================================================


class TestAgentConfigPersistence:
    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "agent_config.json"
        config = AgentConfig(
            llm=LLMConfig(provider="openai", api_key="sk-1", model="gpt-test", timeout=45.0),
            enabled_capabilities=("timer",),
            language="fr",
            driving_mode=True,
        )

        save_agent_config(path, config)

        assert load_agent_config(path) == config
        assert not path.with_suffix(".tmp").exists()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="No agent configuration found"):
            load_agent_config(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "agent_config.json"
        path.write_text("{oops", encoding="utf-8")
        with pytest.raises(ConfigError, match="not valid JSON"):
            load_agent_config(path)

    @pytest.mark.parametrize(
        "payload",
        [[], {"provider": "claude"}, {"apiKey": "  "}, {"apiKey": "k", "provider": "mistral"}],
    )
    def test_unusable_payloads(self, payload):
        with pytest.raises(ConfigError):
            AgentConfig.from_dict(payload)

    def test_invalid_limits_fall_back_to_defaults(self):
        config = AgentConfig.from_dict({"apiKey": "k", "limits": {"interactive": 0, "scheduled": "x"}})

        assert config.limits.interactive == 10
        assert config.limits.scheduled == 8
        assert config.llm.provider == "claude"

    def test_capability_names(self, tmp_path):
        path = tmp_path / "agent_config.json"
        path.write_text(json.dumps({"apiKey": "k", "enabledCapabilityNames": ["timer", 3, ""]}), encoding="utf-8")

        assert load_agent_config(path).enabled_capabilities == ("timer",)
