"""
Accessibility automation sub-agent

Drives a third-party app through the host accessibility service to reach a
natural-language goal:

- The system prompt carries only instructions, the goal, learned per-app hints
  and read-only personal memory. The UI tree is state, so the first snapshot is
  sent as the first user message and refreshed snapshots arrive as tool results.
- ``finish_task`` is the only way to end a run. It records the outcome in a
  shared Termination and the loop stops after that batch of tool results.
- After a run the transcript is narrated without element identifiers and
  condensed by the model into hint text for the next run on the same app.

Element ids (``node_12``) are only valid for the snapshot they came from, so they
never appear in stored hints.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from sanna.utils import coerce_str, truncate

from .errors import JobParseError
from .llm import LLMProvider, Message
from .tool_loop import ToolLoopConfig, run_tool_loop
from .tools import Tool, ToolRegistry, ToolResult

LOGGER = logging.getLogger("sanna.accessibility")

AutomationStatus = Literal["success", "failed", "timeout"]

ACCESSIBILITY_ACTIONS = ("click", "long_click", "type", "clear", "focus", "scroll_forward", "scroll_backward")
TIMEOUT_MESSAGE = "The automation reached the iteration limit without completing the task."
_ELEMENT_ID_PATTERN = re.compile(r"\bnode_\d+\b")


class AccessibilityBridge(Protocol):
    """Host accessibility service."""

    async def is_service_enabled(self) -> bool: ...

    async def send_intent(self, action: str | None, uri: str | None, package_name: str) -> None: ...

    async def wait_for_app(self, package_name: str, timeout_ms: int) -> bool: ...

    async def get_tree(self) -> str: ...

    async def perform_action(self, action: str, node_id: str, text: str | None) -> str: ...


@dataclass(frozen=True)
class AccessibilityJob:
    package_name: str
    goal: str
    intent_action: str | None = None
    intent_uri: str | None = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "packageName": self.package_name,
                "goal": self.goal,
                "intentAction": self.intent_action,
                "intentUri": self.intent_uri,
            }
        )

    @staticmethod
    def from_json(raw: str) -> AccessibilityJob:
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            raise JobParseError("Invalid job data") from exc
        if not isinstance(data, dict):
            raise JobParseError("Invalid job data")
        package_name = coerce_str(data.get("packageName"))
        goal = coerce_str(data.get("goal"))
        if not package_name or not goal:
            raise JobParseError("Job is missing packageName or goal")
        return AccessibilityJob(
            package_name=package_name,
            goal=goal,
            intent_action=coerce_str(data.get("intentAction")) or None,
            intent_uri=coerce_str(data.get("intentUri")) or None,
        )


@dataclass
class Termination:
    done: bool = False
    status: Literal["success", "failed"] = "success"
    message: str = ""


@dataclass
class AccessibilitySubAgentResult:
    message: str
    status: AutomationStatus
    iterations: int
    transcript: list[Message] = field(default_factory=list)


class AccessibilityActionTool(Tool):
    name = "accessibility_action"
    description = (
        "Perform one UI action in the open app (click, type text, scroll, ...) on a node id from the "
        "latest accessibility tree. Never navigate away from the target app."
    )
    parameters = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": list(ACCESSIBILITY_ACTIONS)},
            "node_id": {"type": "string", "description": 'Node id from the latest tree, e.g. "node_5"'},
            "text": {"type": "string", "description": 'Text to enter; required when action is "type"'},
        },
        "required": ["action", "node_id"],
    }

    def __init__(self, bridge: AccessibilityBridge) -> None:
        self._bridge = bridge

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        action = coerce_str(args.get("action"))
        node_id = coerce_str(args.get("node_id"))
        text = args.get("text") if isinstance(args.get("text"), str) else None
        if action not in ACCESSIBILITY_ACTIONS:
            return ToolResult.failure(f"action must be one of: {', '.join(ACCESSIBILITY_ACTIONS)}")
        if not node_id:
            return ToolResult.failure('"node_id" is required; pick a node from the accessibility tree')
        if action == "type" and not text:
            return ToolResult.failure('"text" is required when action is "type"')
        try:
            outcome = await self._bridge.perform_action(action, node_id, text)
        except Exception as exc:
            return ToolResult.failure(f"Accessibility action failed: {exc}")
        return ToolResult.success(outcome or f"{action} performed on {node_id}")


class GetAccessibilityTreeTool(Tool):
    name = "get_accessibility_tree"
    description = (
        "Capture the current UI tree of the open app after the screen changed. Node ids from older "
        "trees become invalid. If three refreshes bring no progress, call finish_task with status failed."
    )
    parameters = {
        "type": "object",
        "properties": {"reason": {"type": "string", "description": "Why a refresh is needed"}},
        "required": [],
    }

    def __init__(
        self,
        bridge: AccessibilityBridge,
        settle_delay_ms: int = 800,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._bridge = bridge
        self._settle_delay_ms = settle_delay_ms
        self._sleep = sleep

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        await self._sleep(self._settle_delay_ms / 1000)
        try:
            tree = await self._bridge.get_tree()
        except Exception as exc:
            return ToolResult.failure(f"Failed to refresh accessibility tree: {exc}")
        LOGGER.debug("[accessibility] Refreshed tree (%d chars)", len(tree))
        return ToolResult.success(tree)


class FinishTaskTool(Tool):
    name = "finish_task"
    description = (
        'End the task. Use status "success" once the goal is achieved, or "failed" when stuck. '
        "This is the only way to finish."
    )
    parameters = {
        "type": "object",
        "properties": {
            "status": {"type": "string", "enum": ["success", "failed"]},
            "message": {"type": "string", "description": "Short summary of what was done or what went wrong"},
        },
        "required": ["status", "message"],
    }

    def __init__(self, termination: Termination) -> None:
        self._termination = termination

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        status = "success" if coerce_str(args.get("status")) == "success" else "failed"
        message = coerce_str(args.get("message"))
        self._termination.done = True
        self._termination.status = status
        self._termination.message = message
        return ToolResult.success(f'finish_task recorded status="{status}": {message}')


def build_sub_agent_prompt(package_name: str, goal: str, hints: str = "", personal_memory: str = "") -> str:
    parts = [
        f"""You are the accessibility sub-agent of the Sanna assistant.
You control the UI of the app "{package_name}" to reach one goal.

## Goal
{goal}

## Rules
1. Read the accessibility tree in the conversation and find the nodes you need.
2. Act with `accessibility_action`.
3. After anything that changes the screen, call `get_accessibility_tree` and use only the newest node ids.
4. Never press Home or Back or leave "{package_name}" unless the goal requires it.
5. When the goal is reached, immediately call `finish_task` with status "success".
6. If the screen is loading, refresh the tree. After three refreshes without progress, call
   `finish_task` with status "failed" and explain why."""
    ]
    if hints.strip():
        parts.append(f"## Hints from earlier runs on this app\n{hints.strip()}")
    if personal_memory.strip():
        parts.append(f"## Personal memory (read-only)\n{personal_memory.strip()}")
    return "\n\n".join(parts)


async def run_accessibility_sub_agent(
    provider: LLMProvider,
    model: str,
    bridge: AccessibilityBridge,
    *,
    package_name: str,
    goal: str,
    tree: str,
    hints: str = "",
    personal_memory: str = "",
    max_iterations: int = 12,
    tree_settle_delay_ms: int = 800,
) -> AccessibilitySubAgentResult:
    termination = Termination()
    registry = ToolRegistry(
        [
            AccessibilityActionTool(bridge),
            GetAccessibilityTreeTool(bridge, tree_settle_delay_ms),
            FinishTaskTool(termination),
        ]
    )
    messages = [
        Message(role="system", content=build_sub_agent_prompt(package_name, goal, hints, personal_memory)),
        Message(
            role="user",
            content=f'Current accessibility tree of "{package_name}":\n\n```\n{tree}\n```\n\nAchieve the goal: {goal}',
        ),
    ]
    LOGGER.info("[accessibility] Starting sub-agent for %s (tree %d chars)", package_name, len(tree))
    result = await run_tool_loop(
        ToolLoopConfig(
            provider=provider,
            registry=registry,
            model=model,
            max_iterations=max_iterations,
            should_exit=lambda: termination.done,
            early_exit_content=lambda: termination.message,
        ),
        messages,
    )
    transcript = messages[1:] + result.new_messages
    if not termination.done:
        return AccessibilitySubAgentResult(TIMEOUT_MESSAGE, "timeout", result.iterations, transcript)
    return AccessibilitySubAgentResult(
        termination.message or "Task finished without a summary.",
        termination.status,
        result.iterations,
        transcript,
    )


def strip_element_ids(text: str) -> str:
    return _ELEMENT_ID_PATTERN.sub("an element", text)


def _describe_node(tree: str, node_id: str) -> str:
    pattern = re.compile(rf"\b{re.escape(node_id)}\b")
    for line in tree.splitlines():
        if pattern.search(line):
            label = _ELEMENT_ID_PATTERN.sub("", line).strip(" -:[]()\t")
            if label:
                return f'"{truncate(label, 120)}"'
    return "an element"


def render_transcript_for_hints(transcript: Sequence[Message], initial_tree: str = "") -> str:
    """Narrate an automation run as plain steps without element ids."""
    tree = initial_tree
    calls_by_id: dict[str, tuple[str, dict[str, Any]]] = {}
    lines: list[str] = []
    for message in transcript:
        if message.role == "assistant":
            if message.content.strip():
                lines.append(f"Thought: {strip_element_ids(message.content.strip())}")
            for call in message.tool_calls:
                calls_by_id[call.id] = (call.name, call.arguments)
                if call.name == "accessibility_action":
                    action = call.arguments.get("action", "?")
                    target = _describe_node(tree, str(call.arguments.get("node_id", "")))
                    typed = call.arguments.get("text")
                    suffix = f' with text "{typed}"' if action == "type" and typed else ""
                    lines.append(f"Action: {action} on {target}{suffix}")
                elif call.name == "get_accessibility_tree":
                    lines.append("Action: refreshed the screen")
                elif call.name == "finish_task":
                    lines.append(
                        f"Finished: {call.arguments.get('status', '?')} - "
                        f"{strip_element_ids(str(call.arguments.get('message', '')))}"
                    )
        elif message.role == "tool":
            name, _args = calls_by_id.get(message.tool_call_id or "", ("", {}))
            if name == "get_accessibility_tree" and not message.content.startswith("Error:"):
                tree = message.content
                lines.append(f"Screen now shows: {truncate(strip_element_ids(' '.join(tree.split())), 300)}")
            elif message.content.startswith("Error:"):
                lines.append(f"Result: {strip_element_ids(message.content)}")
    return "\n".join(lines)


_CONDENSE_PROMPT = """You write short navigation hints for an automation agent that operates one Android app.
Merge the previous hints with what the latest run revealed.
- Describe screens, button labels and the order of steps that worked, plus pitfalls to avoid.
- Never include element ids such as node_5; they change on every run.
- At most 10 concise bullet points in English. Return only the bullets."""


async def condense_hints(
    provider: LLMProvider,
    model: str,
    *,
    package_name: str,
    goal: str,
    result: AccessibilitySubAgentResult,
    previous_hint: str = "",
    initial_tree: str = "",
) -> str:
    """Return new hint text for ``package_name``; provider errors propagate."""
    narration = render_transcript_for_hints(result.transcript, initial_tree)
    user_prompt = (
        f"App: {package_name}\nGoal: {goal}\nOutcome: {result.status} - {result.message}\n\n"
        f"Previous hints:\n{previous_hint.strip() or '(none)'}\n\nLatest run:\n{narration or '(no steps)'}"
    )
    response = await provider.chat(
        [Message(role="system", content=_CONDENSE_PROMPT), Message(role="user", content=user_prompt)],
        [],
        model,
    )
    condensed = strip_element_ids(response.content.strip())
    return condensed or previous_hint


class JobLauncher(Protocol):
    async def launch(self, job: AccessibilityJob) -> None: ...


class AccessibilityTool(Tool):
    name = "accessibility_automation"
    capability = "accessibility"
    description = (
        "Operate another app on the device in the background to reach a goal, e.g. send a message in "
        "a messenger. Runs asynchronously; the result is reported when it finishes."
    )
    parameters = {
        "type": "object",
        "properties": {
            "package_name": {"type": "string", "description": 'App id, e.g. "com.whatsapp"'},
            "goal": {"type": "string", "description": "What to achieve inside the app, in plain language"},
            "intent_action": {"type": "string", "description": "Optional intent action that opens the app"},
            "intent_uri": {"type": "string", "description": "Optional intent data URI"},
        },
        "required": ["package_name", "goal"],
    }

    def __init__(self, launcher: JobLauncher) -> None:
        self._launcher = launcher

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        package_name = coerce_str(args.get("package_name"))
        goal = coerce_str(args.get("goal"))
        if not package_name or not goal:
            return ToolResult.failure("package_name and goal are required")
        job = AccessibilityJob(
            package_name=package_name,
            goal=goal,
            intent_action=coerce_str(args.get("intent_action")) or None,
            intent_uri=coerce_str(args.get("intent_uri")) or None,
        )
        await self._launcher.launch(job)
        return ToolResult.success(
            f"Background automation for {package_name} started. The result will be reported when it finishes.",
            "Working on it in the background",
        )
