"""Error taxonomy for the assistant core."""

from __future__ import annotations


class SannaError(RuntimeError):
    """Base class for assistant failures."""


class JobParseError(SannaError):
    """Raised when a background job payload cannot be decoded."""


class ConfigError(SannaError):
    """Raised when the persisted agent configuration is missing or invalid."""


class AccessibilityServiceDisabledError(SannaError):
    """Raised when the host accessibility service is not enabled."""


class AppForegroundTimeoutError(SannaError):
    """Raised when the target app does not reach the foreground in time."""

    def __init__(self, package_name: str, timeout_ms: int) -> None:
        super().__init__(f"App {package_name} did not come to the foreground within {timeout_ms} ms")
        self.package_name = package_name
        self.timeout_ms = timeout_ms


class ToolExecutionError(SannaError):
    """Raised by tools that prefer to signal failure with an exception."""
