"""
Shared utility functions for parsing and data manipulation

Provides common helpers for:
- String parsing: Environment variable conversion (parse_bool, parse_int, parse_float, split_csv)
- Identifiers: Short random ids for schedules and timers
- Data coercion: Safe type conversion with fallback defaults

These utilities are used throughout Sanna for configuration parsing and data handling.
"""

from __future__ import annotations

import secrets
import string
import time
from typing import Any

_ID_ALPHABET = string.ascii_lowercase + string.digits


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret env-style booleans."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    """Best-effort int parser with fallback."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_float(value: str | None, default: float) -> float:
    """Best-effort float parser with fallback."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def split_csv(value: str | None) -> list[str]:
    """Split comma-separated strings into trimmed tokens."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def make_id(prefix: str) -> str:
    """Return ``<prefix>_<epoch ms>_<4 random chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(4))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def coerce_str(value: Any) -> str:
    """Return a stripped string for str inputs, empty string otherwise."""
    if isinstance(value, str):
        return value.strip()
    return ""


def truncate(text: str, limit: int) -> str:
    """Clip text for log lines."""
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)] + "..."
