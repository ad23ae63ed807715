"""Tool that folds stable personal facts into the personal-memory document."""

from __future__ import annotations

import logging
import re
from typing import Any

from .llm import LLMProvider, Message
from .memory_store import PersonalMemoryStore
from .tools import Tool, ToolResult

LOGGER = logging.getLogger("sanna.memory_tool")

CATEGORY_HEADERS = {
    "identity": "Identity",
    "family": "Family",
    "work": "Work",
    "location": "Location",
    "hobby": "Hobbies",
    "favorites": "Favorites",
    "anniversaries": "Anniversaries",
    "important_dates": "Important Dates",
    "important_events": "Important Events",
    "other": "Other",
}

EMPTY_MEMORY = "# Personal Memory\n\n" + "\n\n".join(f"## {header}" for header in CATEGORY_HEADERS.values()) + "\n"

_CURATOR_PROMPT = f"""You maintain a markdown document of personal facts about the user.

You receive the current document (possibly empty) and new facts, each with a category.
Return the updated document:
- Put each new fact under the matching ## section as a concise "- " bullet in English.
- Replace a similar or conflicting existing fact with the new one; drop duplicates.
- Keep every other fact and every section header unchanged.
- Return only the markdown document, without commentary.

Sections: {", ".join(CATEGORY_HEADERS.values())}"""


class PersonalMemoryTool(Tool):
    name = "memory_personal_upsert"
    description = (
        "Store stable personal facts about the user (identity, family, work, location, hobbies, "
        "favorites, birthdays and other important dates or events) in long-term memory."
    )
    parameters = {
        "type": "object",
        "properties": {
            "facts": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "fact": {"type": "string"},
                        "category": {"type": "string", "enum": list(CATEGORY_HEADERS)},
                    },
                    "required": ["fact", "category"],
                },
                "description": 'e.g. [{"fact": "Sister is Karla", "category": "family"}]',
            }
        },
        "required": ["facts"],
    }

    def __init__(self, store: PersonalMemoryStore, provider: LLMProvider | None = None, model: str | None = None) -> None:
        self._store = store
        self._provider = provider
        self._model = model

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        facts = _valid_facts(args.get("facts"))
        if not facts:
            return ToolResult.failure('No valid facts given. Each item needs "fact" and a known "category".')
        current = await self._store.get_memory() or EMPTY_MEMORY
        updated = await self._curate(current, facts)
        await self._store.save_memory(updated)
        LOGGER.info("[memory] Stored %d fact(s)", len(facts))
        return ToolResult.success(f"Stored {len(facts)} personal fact(s).", "Noted")

    async def _curate(self, current: str, facts: list[tuple[str, str]]) -> str:
        if self._provider is not None:
            listing = "\n".join(f'{index}. "{fact}" (category: {category})' for index, (fact, category) in enumerate(facts, 1))
            try:
                response = await self._provider.chat(
                    [
                        Message(role="system", content=_CURATOR_PROMPT),
                        Message(role="user", content=f"Current document:\n{current}\n\nNew facts:\n{listing}"),
                    ],
                    [],
                    self._model,
                )
                curated = response.content.strip()
                if curated.startswith("#"):
                    return curated
                LOGGER.warning("[memory] Curator returned no markdown document; merging locally")
            except Exception as exc:
                LOGGER.warning("[memory] Curator call failed, merging locally: %s", exc)
        return merge_facts(current, facts)


def _valid_facts(raw: Any) -> list[tuple[str, str]]:
    if not isinstance(raw, list):
        return []
    facts = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        fact = item.get("fact")
        category = item.get("category")
        if isinstance(fact, str) and fact.strip() and category in CATEGORY_HEADERS:
            facts.append((fact.strip(), category))
    return facts


def merge_facts(document: str, facts: list[tuple[str, str]]) -> str:
    """Append each fact as a bullet under its section, skipping exact duplicates."""
    text = document if document.strip() else EMPTY_MEMORY
    for fact, category in facts:
        bullet = f"- {fact}"
        if bullet in text.splitlines():
            continue
        header = f"## {CATEGORY_HEADERS[category]}"
        match = re.search(rf"^{re.escape(header)}[ \t]*$", text, flags=re.MULTILINE)
        if match is None:
            text = text.rstrip("\n") + f"\n\n{header}\n{bullet}\n"
            continue
        next_header = re.search(r"^## ", text[match.end() :], flags=re.MULTILINE)
        section_end = match.end() + next_header.start() if next_header else len(text)
        section = text[match.end() : section_end].rstrip("\n")
        replacement = f"{section}\n{bullet}\n\n" if next_header else f"{section}\n{bullet}\n"
        text = text[: match.end()] + replacement + text[section_end:]
    return text
