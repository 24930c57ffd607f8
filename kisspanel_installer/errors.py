"""Error types and formatting utilities for consistent error messages.

Every fatal condition the installer can hit is one of the exception classes
below. The CLI maps each class to its own exit code; anything raised before
the first mutating step leaves the host untouched.

Error Style Guide:
- User-facing errors use 'Error: ' prefix
- Field errors use structured format: '<entity> field '<field>' <issue>'
- Use present tense: 'must be', 'is required'
- Include actionable hints where helpful
"""

from typing import Any


class InstallerError(Exception):
    """Base class for all fatal installer errors."""


class ConfigError(InstallerError):
    """Raised when bundled data or a persisted defaults file is malformed."""


class ValidationError(InstallerError):
    """Raised when a request field is invalid. Caught before any mutation."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class UnsupportedPlatformError(InstallerError):
    """Raised when the OS family or version is not in the allow-list."""


class PlanError(InstallerError):
    """Raised when the component catalog cannot be turned into a plan."""


class DeployError(InstallerError):
    """Raised when a config bundle cannot be fetched or has the wrong shape."""

    def __init__(self, message: str, records: list[Any] | None = None):
        self.records = list(records or [])
        super().__init__(message)


class ConcurrentRunError(InstallerError):
    """Raised when another installer run holds the target root lock."""


class ExecutionError(InstallerError):
    """Raised when a required step fails.

    Carries the failing step, the command that failed, its output and every
    record collected so far, so the caller can report them together.
    """

    def __init__(
        self,
        step: str,
        message: str,
        command: str | None = None,
        output: str = "",
        records: list[Any] | None = None,
    ):
        self.step = step
        self.command = command
        self.output = output
        self.records = list(records or [])
        super().__init__(message)

    def __str__(self) -> str:
        parts = [f"step '{self.step}' failed: {self.args[0]}"]
        if self.command:
            parts.append(f"command: {self.command}")
        if self.output:
            parts.append(f"output: {self.output}")
        return "\n".join(parts)


class VerificationWarning(UserWarning):
    """Post-install finding. Collected into the report, never raised."""


def format_error(message: str) -> str:
    """Format an error message with consistent prefix.

    Examples:
        >>> format_error("lock is held")
        'Error: lock is held'
    """
    return f"Error: {message}"


__all__ = [
    "InstallerError",
    "ConfigError",
    "ValidationError",
    "UnsupportedPlatformError",
    "PlanError",
    "DeployError",
    "ConcurrentRunError",
    "ExecutionError",
    "VerificationWarning",
    "format_error",
]
