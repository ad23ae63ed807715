"""Tool contract and registry."""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .llm import ToolDefinition

LOGGER = logging.getLogger("sanna.tools")


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool execution.

    ``message`` is what the model sees; ``short_message`` (success only) is an
    optional line that may be surfaced to the user directly.
    """

    ok: bool
    message: str
    short_message: str | None = None

    @staticmethod
    def success(message: str, short_message: str | None = None) -> ToolResult:
        return ToolResult(ok=True, message=message, short_message=short_message)

    @staticmethod
    def failure(message: str) -> ToolResult:
        return ToolResult(ok=False, message=message)

    @property
    def for_llm(self) -> str:
        if self.ok:
            return self.message
        return f"Error: {self.message}"


class Tool:
    """Base class for tools the model may call.

    Subclasses set ``name``, ``description`` and ``parameters`` (a JSON-schema
    object) and implement ``execute``. ``capability`` names the group the tool
    belongs to; tools without one are always available.
    """

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {"type": "object", "properties": {}}
    capability: str | None = None

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        raise NotImplementedError

    def definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, parameters=copy.deepcopy(self.parameters))


class ToolRegistry:
    def __init__(self, tools: Iterable[Tool] = (), logger: logging.Logger | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        self._logger = logger or LOGGER
        self._summaries: str | None = None
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Add a tool, replacing any existing tool with the same name."""
        if not tool.name:
            raise ValueError("Tool name must not be empty")
        if tool.name in self._tools:
            self._logger.debug("[tools] Replacing tool %s", tool.name)
        self._tools[tool.name] = tool
        self._summaries = None

    def unregister(self, name: str) -> bool:
        removed = self._tools.pop(name, None) is not None
        if removed:
            self._summaries = None
        return removed

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list(self) -> list[Tool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def remove_disabled_capability_tools(self, enabled_capabilities: Iterable[str]) -> list[str]:
        """Drop tools whose capability group is not enabled; returns the removed names."""
        enabled = set(enabled_capabilities)
        removed = [
            name for name, tool in self._tools.items() if tool.capability is not None and tool.capability not in enabled
        ]
        for name in removed:
            del self._tools[name]
        if removed:
            self._summaries = None
            self._logger.debug("[tools] Removed tools for disabled capabilities: %s", removed)
        return removed

    def summaries(self) -> str:
        """Markdown bullet list of tools for the system prompt."""
        if self._summaries is None:
            lines = [f"- **{tool.name}**: {tool.description}" for tool in sorted(self.list(), key=lambda t: t.name)]
            self._summaries = "\n".join(lines)
        return self._summaries

    async def execute(self, name: str, args: dict[str, Any]) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.failure(f"Unknown tool: {name}")
        try:
            return await tool.execute(args)
        except Exception as exc:
            self._logger.warning("[tools] Tool %s raised: %s", name, exc, exc_info=True)
            return ToolResult.failure(f"Tool execution failed: {exc}")

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
