"""Tests for the accessibility automation loop and its execution unit."""

from __future__ import annotations

import json

import pytest
from sanna.assistant.accessibility import (
    TIMEOUT_MESSAGE,
    AccessibilityJob,
    AccessibilitySubAgentResult,
    AccessibilityTool,
    condense_hints,
    render_transcript_for_hints,
    run_accessibility_sub_agent,
    strip_element_ids,
)
from sanna.assistant.accessibility_runner import LocalAccessibilityLauncher, run_accessibility_job
from sanna.assistant.errors import ConfigError, JobParseError
from sanna.assistant.llm import Message, ProviderError, ToolCall

pytestmark = pytest.mark.anyio

CHAT_TREE = """[node_1] EditText "Type a message"
[node_2] Button "Send"
[node_3] TextView "Anna"
"""


class FakeBridge:
    """In-memory accessibility service."""

    def __init__(self, enabled=True, visible=True, tree=CHAT_TREE, refreshed="[node_7] TextView \"Sent\""):
        self.enabled = enabled
        self.visible = visible
        self.tree = tree
        self.refreshed = refreshed
        self.intents = []
        self.actions = []
        self.tree_reads = 0

    async def is_service_enabled(self):
        return self.enabled

    async def send_intent(self, action, uri, package_name):
        self.intents.append((action, uri, package_name))

    async def wait_for_app(self, package_name, timeout_ms):
        return self.visible

    async def get_tree(self):
        self.tree_reads += 1
        return self.tree if self.tree_reads == 1 else self.refreshed

    async def perform_action(self, action, node_id, text):
        self.actions.append((action, node_id, text))
        return f"{action} ok"


def finish(status="success", message="Message sent to Anna", call_id="f1"):
    return (call_id, "finish_task", {"status": status, "message": message})


def job_json(**overrides):
    data = {"packageName": "com.whatsapp", "goal": "Send 'hi' to Anna"}
    data.update(overrides)
    return json.dumps(data)


# ============================================================================
# Sub-agent
# ============================================================================


class TestSubAgent:
    """Test the restricted automation loop."""

    async def test_finish_task_ends_loop_immediately(self, scripted_provider, tool_reply):
        bridge = FakeBridge()
        provider = scripted_provider(
            [
                tool_reply(("a1", "accessibility_action", {"action": "type", "node_id": "node_1", "text": "hi"})),
                tool_reply(("a2", "accessibility_action", {"action": "click", "node_id": "node_2"}), finish()),
            ]
        )

        result = await run_accessibility_sub_agent(
            provider, "m", bridge, package_name="com.whatsapp", goal="Send hi", tree=CHAT_TREE, tree_settle_delay_ms=0
        )

        assert result.status == "success"
        assert result.message == "Message sent to Anna"
        assert result.iterations == 2
        assert len(provider.calls) == 2
        assert bridge.actions == [("type", "node_1", "hi"), ("click", "node_2", None)]

    async def test_tree_is_first_user_message(self, scripted_provider, tool_reply):
        provider = scripted_provider([tool_reply(finish())])

        await run_accessibility_sub_agent(
            provider,
            "m",
            FakeBridge(),
            package_name="com.whatsapp",
            goal="Send hi",
            tree=CHAT_TREE,
            hints="- The send button is bottom right",
            personal_memory="- Anna is my sister",
        )

        system, user = provider.calls[0]["messages"]
        assert "node_2" not in system.content
        assert "The send button is bottom right" in system.content
        assert "Anna is my sister" in system.content
        assert '[node_2] Button "Send"' in user.content
        assert sorted(provider.calls[0]["tools"]) == ["accessibility_action", "finish_task", "get_accessibility_tree"]

    async def test_cap_without_finish_is_timeout(self, scripted_provider, tool_reply):
        provider = scripted_provider(fallback=tool_reply(("r", "get_accessibility_tree", {"reason": "loading"})))

        result = await run_accessibility_sub_agent(
            provider,
            "m",
            FakeBridge(),
            package_name="com.whatsapp",
            goal="Send hi",
            tree=CHAT_TREE,
            max_iterations=3,
            tree_settle_delay_ms=0,
        )

        assert result.status == "timeout"
        assert result.message == TIMEOUT_MESSAGE
        assert len(provider.calls) == 3

    async def test_invalid_action_reported_to_model(self, scripted_provider, tool_reply):
        provider = scripted_provider(
            [tool_reply(("a1", "accessibility_action", {"action": "type", "node_id": "node_1"})), tool_reply(finish())]
        )

        result = await run_accessibility_sub_agent(
            provider, "m", FakeBridge(), package_name="com.whatsapp", goal="Send hi", tree=CHAT_TREE
        )

        tool_message = [m for m in result.transcript if m.role == "tool"][0]
        assert tool_message.content.startswith("Error:")


class TestHintCondensation:
    """Test transcript narration and hint condensation."""

    TRANSCRIPT = [
        Message(role="user", content="tree"),
        Message(
            role="assistant",
            content="I will click node_2 now.",
            tool_calls=[
                ToolCall(id="a1", name="accessibility_action", arguments={"action": "click", "node_id": "node_2"})
            ],
        ),
        Message(role="tool", content="click ok", tool_call_id="a1"),
        Message(role="assistant", content="", tool_calls=[ToolCall(id="r1", name="get_accessibility_tree")]),
        Message(role="tool", content='[node_9] TextView "Delivered"', tool_call_id="r1"),
        Message(
            role="assistant",
            content="",
            tool_calls=[ToolCall(id="f1", name="finish_task", arguments={"status": "success", "message": "sent"})],
        ),
    ]

    def test_narration_has_no_element_ids(self):
        narration = render_transcript_for_hints(self.TRANSCRIPT, CHAT_TREE)

        assert "node_" not in narration
        assert 'Action: click on "Button "Send""' in narration
        assert "Action: refreshed the screen" in narration
        assert 'Screen now shows: [an element] TextView "Delivered"' in narration
        assert "Finished: success - sent" in narration

    def test_strip_element_ids(self):
        assert strip_element_ids("tap node_12 then node_3") == "tap an element then an element"

    async def test_condense_strips_ids_and_sends_previous_hint(self, scripted_provider, text_reply):
        provider = scripted_provider([text_reply("- Tap node_2 labelled Send")])
        result = AccessibilitySubAgentResult("sent", "success", 3, list(self.TRANSCRIPT))

        hint = await condense_hints(
            provider,
            "m",
            package_name="com.whatsapp",
            goal="Send hi",
            result=result,
            previous_hint="- Chats list opens first",
            initial_tree=CHAT_TREE,
        )

        assert hint == "- Tap an element labelled Send"
        prompt = provider.calls[0]["messages"][1].content
        assert "- Chats list opens first" in prompt
        assert "node_" not in prompt

    async def test_condense_propagates_provider_errors(self, scripted_provider):
        provider = scripted_provider([ProviderError("claude", 500, "down")])
        result = AccessibilitySubAgentResult("sent", "success", 1, [])

        with pytest.raises(ProviderError):
            await condense_hints(provider, "m", package_name="p", goal="g", result=result)


# ============================================================================
# Execution unit
# ============================================================================


class TestAccessibilityJob:
    """Test job parsing."""

    def test_round_trip(self):
        job = AccessibilityJob("com.whatsapp", "Send hi", "android.intent.action.VIEW", "https://wa.me/1")
        assert AccessibilityJob.from_json(job.to_json()) == job

    @pytest.mark.parametrize("raw", ["{not json", "[]", json.dumps({"packageName": "com.x"})])
    def test_invalid(self, raw):
        with pytest.raises(JobParseError):
            AccessibilityJob.from_json(raw)


class TestRunAccessibilityJob:
    """Test the background execution unit end to end."""

    async def test_success_saves_hint_and_delivers(self, make_context, scripted_provider, tool_reply, text_reply):
        bridge = FakeBridge()
        provider = scripted_provider(
            [
                tool_reply(("a1", "accessibility_action", {"action": "click", "node_id": "node_2"}), finish()),
                text_reply("- Send button is at the bottom"),
                text_reply("Your message to Anna was sent."),
            ]
        )
        context = make_context(provider, accessibility=bridge)

        await run_accessibility_job(job_json(intentAction="android.intent.action.VIEW"), context)

        assert bridge.intents == [("android.intent.action.VIEW", None, "com.whatsapp")]
        assert await context.hints.get_hint("com.whatsapp") == "- Send button is at the bottom"
        [entry] = await context.conversation.peek_pending()
        assert entry.text == "Your message to Anna was sent."
        assert context.foreground.pending_seen == [1]
        assert "Status: success" in provider.calls[2]["messages"][1].content

    async def test_timeout_skips_hint_condensation(self, make_context, scripted_provider, tool_reply, text_reply):
        loop_reply = tool_reply(("a", "accessibility_action", {"action": "click", "node_id": "node_2"}))
        # agent_config caps the accessibility loop at 4 iterations
        provider = scripted_provider([loop_reply] * 4 + [text_reply("I could not finish sending the message.")])
        context = make_context(provider, accessibility=FakeBridge())
        await context.hints.save_hint("com.whatsapp", "old hint")

        await run_accessibility_job(job_json(), context)

        assert len(provider.calls) == 5
        assert await context.hints.get_hint("com.whatsapp") == "old hint"
        assert "Status: timeout" in provider.calls[4]["messages"][1].content

    async def test_condensation_failure_is_not_fatal(self, make_context, scripted_provider, tool_reply, text_reply):
        provider = scripted_provider(
            [tool_reply(finish()), ProviderError("claude", 500, "down"), text_reply("Message sent.")]
        )
        context = make_context(provider, accessibility=FakeBridge())

        await run_accessibility_job(job_json(), context)

        [entry] = await context.conversation.peek_pending()
        assert entry.text == "Message sent."
        assert await context.hints.get_hint("com.whatsapp") == ""

    async def test_service_disabled(self, make_context, scripted_provider, text_reply):
        provider = scripted_provider([text_reply("Please enable the accessibility service.")])
        bridge = FakeBridge(enabled=False)
        context = make_context(provider, accessibility=bridge)

        await run_accessibility_job(job_json(), context)

        assert bridge.tree_reads == 0
        assert "not enabled" in provider.calls[0]["messages"][1].content
        [entry] = await context.conversation.peek_pending()
        assert entry.text == "Please enable the accessibility service."

    async def test_app_not_in_foreground(self, make_context, scripted_provider, text_reply):
        provider = scripted_provider([text_reply("WhatsApp did not open.")])
        context = make_context(provider, accessibility=FakeBridge(visible=False), foreground_wait_ms=1_000)

        await run_accessibility_job(job_json(), context)

        prompt = provider.calls[0]["messages"][1].content
        assert "Status: failed" in prompt
        assert "did not come to the foreground within 1000 ms" in prompt

    async def test_no_active_window(self, make_context, scripted_provider, text_reply):
        provider = scripted_provider([text_reply("The app does not seem to be open.")])
        context = make_context(provider, accessibility=FakeBridge(tree="No active window found"))

        await run_accessibility_job(job_json(), context)

        assert "No active window found" in provider.calls[0]["messages"][1].content
        assert len(provider.calls) == 1

    async def test_invalid_job_queues_raw_message(self, make_context):
        context = make_context(None)

        await run_accessibility_job("{broken", context)

        [entry] = await context.conversation.peek_pending()
        assert entry.text == "UI automation failed: Invalid job data."
        assert context.foreground.pending_seen == [1]

    async def test_missing_config_queues_raw_message(self, make_context):
        context = make_context(None, config=ConfigError("No API key configured"))

        await run_accessibility_job(job_json(), context)

        [entry] = await context.conversation.peek_pending()
        assert entry.text == "UI automation failed: No API key configured"


class TestAccessibilityTool:
    """Test the interactive tool that launches background jobs."""

    async def test_launches_job(self, make_context, scripted_provider, tool_reply, text_reply):
        provider = scripted_provider([tool_reply(finish()), text_reply("- hint"), text_reply("Sent.")])
        context = make_context(provider, accessibility=FakeBridge())
        launcher = LocalAccessibilityLauncher(context)

        result = await AccessibilityTool(launcher).execute({"package_name": "com.whatsapp", "goal": "Send hi"})
        await launcher.wait_idle()

        assert result.ok
        assert result.short_message == "Working on it in the background"
        [entry] = await context.conversation.peek_pending()
        assert entry.text == "Sent."

    async def test_requires_package_and_goal(self):
        result = await AccessibilityTool(launcher=None).execute({"goal": "x"})
        assert result.ok is False
