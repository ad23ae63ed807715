"""Pending-output queue and persisted display history.

Background execution units append finished outputs to the pending queue; the
interactive front end drains it when it comes to the foreground. Queue writes
never raise: a failed write is logged and reported through the return value.
"""

from __future__ import annotations

import fcntl
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from sanna.datetime_utils import now_ms

LOGGER = logging.getLogger("sanna.conversation_store")

MAX_PENDING = 10
MAX_HISTORY = 50
LOCK_FILE_SUFFIX = ".lock"

DisplayRole = Literal["user", "assistant"]


@dataclass(frozen=True)
class DisplayMessage:
    role: DisplayRole
    text: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "text": self.text, "timestamp": self.timestamp}

    @staticmethod
    def from_dict(data: Any) -> DisplayMessage | None:
        if not isinstance(data, dict):
            return None
        role = data.get("role")
        text = data.get("text")
        if role not in ("user", "assistant") or not isinstance(text, str):
            return None
        timestamp = data.get("timestamp")
        return DisplayMessage(role=role, text=text, timestamp=int(timestamp) if isinstance(timestamp, int) else 0)


class ConversationStore:
    def __init__(self, pending_path: Path, history_path: Path) -> None:
        self._pending_path = pending_path
        self._history_path = history_path

    async def append_pending(self, role: DisplayRole, text: str) -> bool:
        """Queue an output for the foreground session. Returns False if the write failed."""
        try:
            with self._pending_lock():
                entries = self._read_list(self._pending_path)
                entries.append(DisplayMessage(role=role, text=text, timestamp=now_ms()).to_dict())
                self._write_list(self._pending_path, entries[-MAX_PENDING:])
        except Exception as exc:
            LOGGER.error("[queue] Failed to append pending message: %s", exc)
            return False
        LOGGER.debug("[queue] Appended pending %s message (%d chars)", role, len(text))
        return True

    async def peek_pending(self) -> list[DisplayMessage]:
        return self._decode(self._read_list(self._pending_path))

    async def drain_pending(self) -> list[DisplayMessage]:
        """Return queued outputs in write order and clear the queue."""
        with self._pending_lock():
            entries = self._read_list(self._pending_path)
            try:
                self._pending_path.unlink(missing_ok=True)
            except OSError as exc:
                LOGGER.warning("[queue] Failed to clear pending queue: %s", exc)
        return self._decode(entries)

    @contextmanager
    def _pending_lock(self) -> Iterator[None]:
        """Hold an exclusive lock shared by every process using this queue."""
        lock_path = self._pending_path.with_name(self._pending_path.name + LOCK_FILE_SUFFIX)
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_path.touch(exist_ok=True)
        lock_fd = open(lock_path, "w")
        try:
            try:
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX)
            except OSError as exc:
                LOGGER.warning("[queue] Failed to acquire lock on %s: %s", lock_path, exc)
            yield
        finally:
            try:
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)
            except OSError:
                pass
            lock_fd.close()

    async def save_history(self, messages: list[DisplayMessage]) -> None:
        self._write_list(self._history_path, [message.to_dict() for message in messages[-MAX_HISTORY:]])

    async def load_history(self) -> list[DisplayMessage]:
        return self._decode(self._read_list(self._history_path))

    async def clear_history(self) -> None:
        self._history_path.unlink(missing_ok=True)

    @staticmethod
    def _decode(entries: list[Any]) -> list[DisplayMessage]:
        decoded = [DisplayMessage.from_dict(item) for item in entries]
        return [item for item in decoded if item is not None]

    @staticmethod
    def _read_list(path: Path) -> list[Any]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            LOGGER.warning("Failed to load %s: %s", path, exc)
            return []
        return data if isinstance(data, list) else []

    @staticmethod
    def _write_list(path: Path, entries: list[Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(entries, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(path)
