"""Small JSON-file stores for accessibility hints and personal memory."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger("sanna.memory_store")

HINT_KEY_PREFIX = "accessibility_hint_"
MEMORY_KEY = "personal_memory"


class JsonKeyValueStore:
    """String values keyed by name, persisted as one JSON object with atomic replace."""

    def __init__(self, path: Path) -> None:
        self._path = path

    async def get(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    async def delete(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)

    async def items(self, prefix: str = "") -> dict[str, str]:
        return {key: value for key, value in self._read().items() if key.startswith(prefix) and isinstance(value, str)}

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            LOGGER.warning("Failed to load store %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self._path)


def hint_key(package_name: str) -> str:
    return HINT_KEY_PREFIX + package_name


class HintStore:
    """One condensed hint text per app id; saving overwrites."""

    def __init__(self, store: JsonKeyValueStore) -> None:
        self._store = store

    async def get_hint(self, package_name: str) -> str:
        return await self._store.get(hint_key(package_name)) or ""

    async def save_hint(self, package_name: str, hint: str) -> None:
        await self._store.set(hint_key(package_name), hint.strip())

    async def all_hints(self) -> dict[str, str]:
        items = await self._store.items(HINT_KEY_PREFIX)
        return {key[len(HINT_KEY_PREFIX) :]: value for key, value in items.items()}

    async def clear_hints(self) -> None:
        for key in await self._store.items(HINT_KEY_PREFIX):
            await self._store.delete(key)


class PersonalMemoryStore:
    """The user's personal-memory markdown document."""

    def __init__(self, store: JsonKeyValueStore) -> None:
        self._store = store

    async def get_memory(self) -> str:
        return await self._store.get(MEMORY_KEY) or ""

    async def save_memory(self, markdown: str) -> None:
        await self._store.set(MEMORY_KEY, markdown.strip())

    async def clear_memory(self) -> None:
        await self._store.delete(MEMORY_KEY)
