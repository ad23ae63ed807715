"""
LLM provider abstractions

Both providers speak a neutral message model (Message, ToolCall, ToolDefinition)
and translate it to and from their vendor wire formats:

- ClaudeProvider: Anthropic Messages API. The system prompt is sent separately,
  assistant tool calls become ``tool_use`` blocks and consecutive tool results are
  merged into a single user turn of ``tool_result`` blocks.
- OpenAIProvider: Chat Completions API. Tool results are ``tool`` messages keyed by
  ``tool_call_id`` and tool-call arguments travel as JSON strings.

Non-2xx responses raise ProviderError carrying the status code and body. Nothing
is retried here; callers decide what a failed turn means.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from sanna.utils import truncate

from .config import LLMConfig

LOGGER = logging.getLogger("sanna.llm")

Role = Literal["system", "user", "assistant", "tool"]
FinishReason = Literal["stop", "tool_calls", "length", "error"]

ANTHROPIC_VERSION = "2023-06-01"
_OPENAI_COMPLETION_TOKENS_MODELS = re.compile(r"^(gpt-4\.[1-9]|gpt-[5-9]|o[1-9])")


class ProviderError(RuntimeError):
    """Raised when the LLM endpoint rejects a request or cannot be reached."""

    def __init__(self, provider: str, status: int | None, body: str) -> None:
        label = status if status is not None else "network"
        super().__init__(f"{provider} API error {label}: {truncate(body, 500)}")
        self.provider = provider
        self.status = status
        self.body = body


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ToolCall:
        arguments = data.get("arguments")
        return ToolCall(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            arguments=arguments if isinstance(arguments, dict) else {},
        )


@dataclass
class Message:
    role: Role
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["toolCalls"] = [call.to_dict() for call in self.tool_calls]
        if self.tool_call_id:
            data["toolCallId"] = self.tool_call_id
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Message:
        role = data.get("role")
        if role not in ("system", "user", "assistant", "tool"):
            raise ValueError(f"Invalid message role: {role!r}")
        raw_calls = data.get("toolCalls") or []
        return Message(
            role=role,
            content=str(data.get("content") or ""),
            tool_calls=[ToolCall.from_dict(item) for item in raw_calls if isinstance(item, dict)],
            tool_call_id=data.get("toolCallId") or None,
        )


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class LLMResponse:
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: FinishReason = "stop"
    usage: LLMUsage | None = None


@dataclass(frozen=True)
class LLMOptions:
    max_tokens: int | None = None
    temperature: float | None = None


class LLMProvider:
    """Base class for chat providers."""

    name = "llm"

    def __init__(
        self,
        config: LLMConfig,
        logger: logging.Logger | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._logger = logger or LOGGER
        self._client = client

    @property
    def default_model(self) -> str:
        return self.config.resolved_model()

    async def chat(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] = (),
        model: str | None = None,
        options: LLMOptions | None = None,
    ) -> LLMResponse:
        raise NotImplementedError

    async def _post_json(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> dict[str, Any]:
        if self.config.log_messages:
            self._logger.debug("[llm] %s request: %s", self.name, json.dumps(payload)[:4000])
        try:
            if self._client is not None:
                response = await self._client.post(url, headers=headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                    response = await client.post(url, headers=headers, json=payload)
        except httpx.RequestError as exc:
            raise ProviderError(self.name, None, str(exc)) from exc
        if not response.is_success:
            raise ProviderError(self.name, response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(self.name, response.status_code, "Response was not valid JSON") from exc
        if not isinstance(data, dict):
            raise ProviderError(self.name, response.status_code, "Unexpected response payload")
        return data

    def _log_response(self, result: LLMResponse) -> None:
        usage = result.usage or LLMUsage()
        self._logger.debug(
            "[llm] %s finish=%s tools=%s tokens=%d/%d",
            self.name,
            result.finish_reason,
            [call.name for call in result.tool_calls],
            usage.prompt_tokens,
            usage.completion_tokens,
        )


class ClaudeProvider(LLMProvider):
    """Call the Anthropic Messages API."""

    name = "claude"

    async def chat(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] = (),
        model: str | None = None,
        options: LLMOptions | None = None,
    ) -> LLMResponse:
        payload = self._build_payload(messages, tools, model or self.default_model, options)
        headers = {
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        url = f"{self.config.claude_base_url.rstrip('/')}/messages"
        data = await self._post_json(url, headers, payload)
        result = self._parse_response(data)
        self._log_response(result)
        return result

    def _build_payload(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        model: str,
        options: LLMOptions | None,
    ) -> dict[str, Any]:
        system_parts: list[str] = []
        wire: list[dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                if message.content:
                    system_parts.append(message.content)
                continue
            if message.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id or "",
                    "content": message.content,
                }
                previous = wire[-1] if wire else None
                if previous and previous["role"] == "user" and isinstance(previous["content"], list):
                    previous["content"].append(block)
                else:
                    wire.append({"role": "user", "content": [block]})
                continue
            if message.role == "assistant" and message.tool_calls:
                blocks: list[dict[str, Any]] = []
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                for call in message.tool_calls:
                    blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
                wire.append({"role": "assistant", "content": blocks})
                continue
            if message.role == "assistant" and not message.content:
                # the API rejects empty text turns
                continue
            wire.append({"role": message.role, "content": message.content})

        opts = options or LLMOptions()
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": opts.max_tokens or self.config.max_tokens,
            "messages": wire,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if opts.temperature is not None:
            payload["temperature"] = opts.temperature
        if tools:
            payload["tools"] = [
                {"name": tool.name, "description": tool.description, "input_schema": tool.parameters}
                for tool in tools
            ]
        return payload

    @staticmethod
    def _parse_response(data: dict[str, Any]) -> LLMResponse:
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in data.get("content") or []:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text":
                text_parts.append(str(block.get("text") or ""))
            elif block.get("type") == "tool_use":
                arguments = block.get("input")
                tool_calls.append(
                    ToolCall(
                        id=str(block.get("id") or f"toolu_{uuid.uuid4().hex[:12]}"),
                        name=str(block.get("name") or ""),
                        arguments=arguments if isinstance(arguments, dict) else {},
                    )
                )
        stop_reason = data.get("stop_reason")
        if stop_reason == "tool_use" or tool_calls:
            finish: FinishReason = "tool_calls"
        elif stop_reason == "max_tokens":
            finish = "length"
        else:
            finish = "stop"
        usage_data = data.get("usage") or {}
        usage = LLMUsage(
            prompt_tokens=int(usage_data.get("input_tokens") or 0),
            completion_tokens=int(usage_data.get("output_tokens") or 0),
        )
        return LLMResponse(content="".join(text_parts), tool_calls=tool_calls, finish_reason=finish, usage=usage)


class OpenAIProvider(LLMProvider):
    """Call OpenAI-compatible chat completion endpoints."""

    name = "openai"

    async def chat(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] = (),
        model: str | None = None,
        options: LLMOptions | None = None,
    ) -> LLMResponse:
        payload = self._build_payload(messages, tools, model or self.default_model, options)
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.config.openai_base_url.rstrip('/')}/chat/completions"
        data = await self._post_json(url, headers, payload)
        result = self._parse_response(data)
        self._log_response(result)
        return result

    def _build_payload(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        model: str,
        options: LLMOptions | None,
    ) -> dict[str, Any]:
        wire: list[dict[str, Any]] = []
        for message in messages:
            if message.role == "tool":
                wire.append({"role": "tool", "tool_call_id": message.tool_call_id or "", "content": message.content})
            elif message.role == "assistant" and message.tool_calls:
                wire.append(
                    {
                        "role": "assistant",
                        "content": message.content or None,
                        "tool_calls": [
                            {
                                "id": call.id,
                                "type": "function",
                                "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                            }
                            for call in message.tool_calls
                        ],
                    }
                )
            else:
                wire.append({"role": message.role, "content": message.content})

        opts = options or LLMOptions()
        payload: dict[str, Any] = {"model": model, "messages": wire}
        max_tokens = opts.max_tokens or self.config.max_tokens
        if _OPENAI_COMPLETION_TOKENS_MODELS.match(model):
            payload["max_completion_tokens"] = max_tokens
        else:
            payload["max_tokens"] = max_tokens
        if opts.temperature is not None:
            payload["temperature"] = opts.temperature
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {"name": tool.name, "description": tool.description, "parameters": tool.parameters},
                }
                for tool in tools
            ]
            payload["tool_choice"] = "auto"
        return payload

    def _parse_response(self, data: dict[str, Any]) -> LLMResponse:
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise ProviderError(self.name, 200, "Response contained no choices")
        choice = choices[0]
        message = choice.get("message") or {}
        tool_calls: list[ToolCall] = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function") or {}
            tool_calls.append(
                ToolCall(
                    id=str(raw.get("id") or f"call_{uuid.uuid4().hex[:12]}"),
                    name=str(function.get("name") or ""),
                    arguments=self._parse_arguments(function.get("arguments")),
                )
            )
        finish_reason = choice.get("finish_reason")
        if finish_reason == "tool_calls" or tool_calls:
            finish: FinishReason = "tool_calls"
        elif finish_reason == "length":
            finish = "length"
        else:
            finish = "stop"
        usage_data = data.get("usage") or {}
        usage = LLMUsage(
            prompt_tokens=int(usage_data.get("prompt_tokens") or 0),
            completion_tokens=int(usage_data.get("completion_tokens") or 0),
        )
        return LLMResponse(
            content=str(message.get("content") or ""),
            tool_calls=tool_calls,
            finish_reason=finish,
            usage=usage,
        )

    def _parse_arguments(self, raw: Any) -> dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            self._logger.warning("[llm] Discarding malformed tool arguments: %s", truncate(str(raw), 200))
            return {}
        return parsed if isinstance(parsed, dict) else {}


def build_llm_provider(
    config: LLMConfig,
    logger: logging.Logger | None = None,
    client: httpx.AsyncClient | None = None,
) -> LLMProvider:
    provider = (config.provider or "claude").lower()
    if provider == "claude":
        return ClaudeProvider(config, logger, client)
    if provider == "openai":
        return OpenAIProvider(config, logger, client)
    raise ValueError(f"Unsupported LLM provider: {config.provider}")
