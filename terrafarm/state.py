"""Farm and monitor state files.

Two JSON records shared between the interactive CLI and the detached
monitor process. Writes replace the whole file atomically (temp file +
rename); a missing file is reported as StateNotFoundError so callers can
read it as "not running".

Only the monitor writes the monitor state after creation, and only
create/destroy/prolong touch the farm state. Nothing enforces this beyond
the order in which commands run.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any

import psutil

from terrafarm.constants import FARM_STATE_FILE, MONITOR_STATE_FILE, TERRAFORM_STATE_FILE
from terrafarm.exceptions import StateCorruptedError, StateNotFoundError
from terrafarm.preferences import Preferences


@dataclass(frozen=True, slots=True)
class FarmState:
    """Snapshot of a created farm.

    Attributes:
        preferences: Redacted preferences the farm was created with.
        started: Unix time the farm was created.
    """

    preferences: Preferences = field(default_factory=Preferences)
    started: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"preferences": self.preferences.to_dict(), "started": self.started}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FarmState:
        return cls(
            preferences=Preferences.from_dict(data["preferences"]),
            started=int(data["started"]),
        )


@dataclass(frozen=True, slots=True)
class MonitorState:
    """Persisted monitor deadline.

    Attributes:
        pid: Pid of the current monitor process.
        started: Unix time the monitor was first started.
        destroy_after: Unix time after which the farm may be destroyed.
        max_wait: Grace period in seconds for active builds.
    """

    pid: int
    started: int
    destroy_after: int
    max_wait: int = 0

    @property
    def destroy_not_later(self) -> int:
        return self.destroy_after + self.max_wait

    def prolonged(self, seconds: int) -> MonitorState:
        """Copy with the deadline moved forward; it never moves back."""
        return replace(self, destroy_after=self.destroy_after + max(seconds, 0))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonitorState:
        return cls(
            pid=int(data["pid"]),
            started=int(data["started"]),
            destroy_after=int(data["destroy_after"]),
            max_wait=int(data.get("max_wait", 0)),
        )


def _write_json(path: Path, data: dict[str, Any]) -> None:
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}-", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def _read_json(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text()
    except FileNotFoundError:
        raise StateNotFoundError(str(path)) from None
    except OSError as e:
        raise StateCorruptedError(str(path), str(e)) from e

    try:
        data = json.loads(text)
    except ValueError as e:
        raise StateCorruptedError(str(path), str(e)) from e

    if not isinstance(data, dict):
        raise StateCorruptedError(str(path), "top-level value is not an object")
    return data


def pid_alive(pid: int) -> bool:
    if pid <= 0 or not psutil.pid_exists(pid):
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.Error:
        return False


class StateStore:
    """File-based store for farm and monitor state in the data dir."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir

    @property
    def farm_state_file(self) -> Path:
        return self.data_dir / FARM_STATE_FILE

    @property
    def monitor_state_file(self) -> Path:
        return self.data_dir / MONITOR_STATE_FILE

    @property
    def terraform_state_file(self) -> Path:
        return self.data_dir / TERRAFORM_STATE_FILE

    # =========================================================================
    # Farm State
    # =========================================================================

    def save_farm_state(self, state: FarmState) -> None:
        _write_json(self.farm_state_file, state.to_dict())

    def read_farm_state(self) -> FarmState:
        data = _read_json(self.farm_state_file)
        try:
            return FarmState.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StateCorruptedError(str(self.farm_state_file), f"bad record: {e}") from e

    def delete_farm_state(self) -> None:
        self.farm_state_file.unlink(missing_ok=True)

    # =========================================================================
    # Monitor State
    # =========================================================================

    def save_monitor_state(self, state: MonitorState) -> None:
        _write_json(self.monitor_state_file, state.to_dict())

    def read_monitor_state(self) -> MonitorState:
        data = _read_json(self.monitor_state_file)
        try:
            return MonitorState.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StateCorruptedError(str(self.monitor_state_file), f"bad record: {e}") from e

    def delete_monitor_state(self) -> None:
        self.monitor_state_file.unlink(missing_ok=True)

    def is_monitor_active(self) -> bool:
        """True when the monitor state names a live process."""
        try:
            state = self.read_monitor_state()
        except (StateNotFoundError, StateCorruptedError):
            return False
        return pid_alive(state.pid)
