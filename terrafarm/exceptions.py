"""Custom exception hierarchy for terrafarm.

All terrafarm-specific exceptions inherit from TerrafarmError, so the CLI
can report every expected failure with a single except clause.
"""

from __future__ import annotations

from collections.abc import Sequence


class TerrafarmError(Exception):
    """Base exception for all terrafarm errors."""


class ConfigurationError(TerrafarmError):
    """Raised for invalid preferences or a broken environment.

    Carries every problem found so the user can fix them in one pass.
    """

    def __init__(self, errors: str | Sequence[str]) -> None:
        self.errors: tuple[str, ...] = (errors,) if isinstance(errors, str) else tuple(errors)
        super().__init__("\n".join(self.errors))


class ProvisioningError(TerrafarmError):
    """Raised when the terraform process fails."""

    def __init__(self, action: str, returncode: int | None, stderr: str = "") -> None:
        self.action = action
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"terraform {action} failed: {detail}")


class StateError(TerrafarmError):
    """Base class for state file errors."""


class StateNotFoundError(StateError):
    """Raised when a state file does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"State file {path} does not exist")


class StateCorruptedError(StateError):
    """Raised when a state file can't be decoded."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"State file {path} is malformed: {reason}")


class ProbeError(TerrafarmError):
    """Raised when build nodes can't be probed at all."""


class MonitorError(TerrafarmError):
    """Raised when the monitor process can't be controlled."""


class MonitorStartupError(MonitorError):
    """Raised when a launched monitor doesn't report itself alive in time."""
