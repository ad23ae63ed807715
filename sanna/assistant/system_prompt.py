"""System prompt assembly and one-shot text formulation helpers.

Prompts are always written in English; the reply language is enforced by an
explicit rule naming the configured language.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from sanna.datetime_utils import local_now

from .llm import LLMProvider, Message
from .tools import ToolRegistry

LOGGER = logging.getLogger("sanna.system_prompt")

_LANGUAGE_NAMES = {
    "de": "German (Deutsch)",
    "en": "English",
    "fr": "French (Français)",
    "es": "Spanish (Español)",
    "it": "Italian (Italiano)",
}

_DRIVING_STYLE = """**DRIVING MODE ACTIVE**
- Headline style: no articles, filler words or preamble.
- At most one sentence, two only when a follow-up question is required.
- No Markdown of any kind.
- Write times so they read naturally when spoken aloud.
- End statements with a period and questions with a question mark."""

_NORMAL_STYLE = """**Normal Mode**
- Markdown formatting is allowed.
- Answer in detail when it helps the user."""


def resolve_language_name(language: str | None) -> str:
    """Map a BCP-47 tag to a readable language name; unknown tags pass through."""
    tag = (language or "en").strip().lower()
    for prefix, name in _LANGUAGE_NAMES.items():
        if tag.startswith(prefix):
            return name
    return language or "English"


def output_style(driving_mode: bool) -> str:
    return _DRIVING_STYLE if driving_mode else _NORMAL_STYLE


def build_system_prompt(
    registry: ToolRegistry,
    *,
    enabled_capabilities: Iterable[str] = (),
    driving_mode: bool = False,
    language: str = "en",
    personal_memory: str = "",
    now: datetime | None = None,
) -> str:
    current = now or local_now()
    language_name = resolve_language_name(language)
    parts = [
        f"""# Sanna - Personal AI Assistant

You are Sanna, a personal assistant operated mostly by voice.

## Current Time
{current.strftime("%A, %B %d, %Y %H:%M")}
**Today is: {current.strftime("%Y-%m-%d")}** (use this date for all date calculations)

## Operating Mode
{output_style(driving_mode)}

## Important Rules
1. **Always use tools** to perform actions. Never only say you would do something.
2. **Language**: you MUST reply in **{language_name}** unless the user explicitly asks to switch.
3. **Errors**: when something goes wrong, tell the user plainly what happened."""
    ]

    memory = personal_memory.strip()
    has_memory_tool = "memory_personal_upsert" in registry
    if memory or has_memory_tool:
        if has_memory_tool:
            rule = (
                "When the user mentions a stable personal fact (family, work, location, birthdays, "
                "preferences), call `memory_personal_upsert` first, then continue with the request."
            )
        else:
            rule = "This context is read-only here; do not try to modify it."
        parts.append(
            f"## Personal Memory\n\nDurable context about the user.\n{rule}\n\n{memory or '(No personal facts stored yet.)'}"
        )

    summaries = registry.summaries()
    if summaries:
        parts.append(f"## Available Tools\n\nExecute actions with tools instead of describing them.\n\n{summaries}")

    capabilities = sorted(set(enabled_capabilities))
    if capabilities:
        parts.append("## Enabled Capabilities\n\n" + "\n".join(f"- {name}" for name in capabilities))

    return "\n\n---\n\n".join(parts)


def build_background_instruction(instruction: str, now: datetime | None = None) -> str:
    """User message for a scheduled task executed without a user present."""
    current = now or local_now()
    return (
        f"[SCHEDULED TASK - automatic execution at {current.strftime('%H:%M')} on {current.strftime('%Y-%m-%d')}]\n"
        f"Execute the following instruction: {instruction}\n\n"
        "IMPORTANT: You are running in the background. Nobody is available to answer questions. "
        "Carry out the instruction directly without asking for clarification."
    )


def _reporting_prompt(intro: str, rules: list[str], driving_mode: bool, language: str, personal_memory: str) -> str:
    language_name = resolve_language_name(language)
    numbered = [f"1. **Language**: you MUST reply in **{language_name}**."]
    numbered.extend(f"{index}. {rule}" for index, rule in enumerate(rules, start=2))
    parts = [intro, f"## Operating Mode\n{output_style(driving_mode)}", "## Important Rules\n" + "\n".join(numbered)]
    memory = personal_memory.strip()
    if memory:
        parts.append(f"## Personal Memory (read-only)\n\n{memory}")
    return "\n\n".join(parts)


async def _formulate(provider: LLMProvider, model: str, system_prompt: str, user_prompt: str, fallback: str) -> str:
    try:
        response = await provider.chat(
            [Message(role="system", content=system_prompt), Message(role="user", content=user_prompt)],
            [],
            model,
        )
    except Exception as exc:
        LOGGER.warning("[prompt] Formulation call failed, using raw text: %s", exc)
        return fallback
    return response.content.strip() or fallback


async def formulate_error(
    provider: LLMProvider,
    model: str,
    *,
    instruction: str,
    raw_error: str,
    driving_mode: bool,
    language: str,
    personal_memory: str = "",
) -> str:
    """Rephrase a background failure for the user; falls back to ``raw_error``."""
    system_prompt = _reporting_prompt(
        "You are Sanna, reporting the outcome of a scheduled background task that failed.",
        [
            "Refer to what the user originally asked for, not to technical internals.",
            "Explain in plain words what did not work. No stack traces or error codes.",
            "If possible, suggest what the user could do about it.",
        ],
        driving_mode,
        language,
        personal_memory,
    )
    user_prompt = f"Scheduled instruction: {instruction}\nError: {raw_error}"
    return await _formulate(provider, model, system_prompt, user_prompt, raw_error)


async def formulate_response(
    provider: LLMProvider,
    model: str,
    *,
    subject: str,
    goal: str,
    status: str,
    raw_message: str,
    driving_mode: bool,
    language: str,
    personal_memory: str = "",
) -> str:
    """Turn a background result into a natural reply; falls back to ``raw_message``."""
    system_prompt = _reporting_prompt(
        "You are Sanna, confirming the outcome of a background task.",
        [
            "Describe the result in terms of what the user wanted (the goal), not the steps taken.",
            "Never mention taps, clicks, node ids or other UI internals.",
            "On success confirm the goal in one short sentence; on failure say what did not work.",
            "Refer to apps by their common name (com.whatsapp is WhatsApp).",
        ],
        driving_mode,
        language,
        personal_memory,
    )
    user_prompt = f"Subject: {subject}\nGoal: {goal}\nStatus: {status}\nRaw result: {raw_message}"
    return await _formulate(provider, model, system_prompt, user_prompt, raw_message)
