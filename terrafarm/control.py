"""Monitor process control.

The monitor runs as a detached ``python -m terrafarm monitor run`` process.
These helpers start it, signal it and move its deadline from the CLI side.
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import psutil
from loguru import logger
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from terrafarm.constants import MONITOR_STARTUP_TIMEOUT, MONITOR_STOP_TIMEOUT, EnvVar
from terrafarm.exceptions import (
    MonitorError,
    MonitorStartupError,
    StateCorruptedError,
    StateNotFoundError,
)
from terrafarm.preferences import Preferences
from terrafarm.state import MonitorState, StateStore, pid_alive


class _MonitorNotReadyError(Exception):
    """Monitor state not written yet - retry."""


@dataclass(frozen=True, slots=True)
class LaunchMode:
    """How a monitor process starts.

    Attributes:
        resume: Take the deadline from the existing monitor state.
        ttl: Minutes until destroy, fresh start only.
        max_wait: Grace period in minutes, fresh start only.
    """

    resume: bool = False
    ttl: int = 0
    max_wait: int = 0

    def args(self) -> list[str]:
        if self.resume:
            return ["--resume"]
        return ["--fresh", "--ttl", str(self.ttl), "--max-wait", str(self.max_wait)]


def monitor_command(mode: LaunchMode) -> list[str]:
    return [sys.executable, "-m", "terrafarm", "monitor", "run", *mode.args()]


def monitor_env(
    prefs: Preferences,
    data_dir: Path,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Child environment: secrets travel here, never on the command line."""
    env = dict(os.environ if base is None else base)
    env[EnvVar.DATA] = str(data_dir)
    if prefs.token:
        env[EnvVar.TOKEN] = prefs.token
    if prefs.password:
        env[EnvVar.PASSWORD] = prefs.password
    return env


def wait_for_monitor(
    store: StateStore,
    proc: subprocess.Popen[bytes],
    timeout: float = MONITOR_STARTUP_TIMEOUT,
) -> MonitorState:
    """Wait until the child has written its monitor state.

    Raises:
        MonitorStartupError: If the child exits or stays silent for ``timeout``.
    """

    @retry(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(0.2),
        retry=retry_if_exception_type(_MonitorNotReadyError),
        reraise=False,
    )
    def _check() -> MonitorState:
        if proc.poll() is not None:
            raise MonitorStartupError(f"Monitor exited with code {proc.returncode}")
        try:
            state = store.read_monitor_state()
        except (StateNotFoundError, StateCorruptedError):
            raise _MonitorNotReadyError() from None
        if state.pid != proc.pid or not pid_alive(state.pid):
            raise _MonitorNotReadyError()
        return state

    try:
        return _check()
    except RetryError as e:
        raise MonitorStartupError(f"Monitor didn't start within {timeout:g}s") from e


def launch_monitor(
    store: StateStore,
    prefs: Preferences,
    mode: LaunchMode,
    *,
    timeout: float = MONITOR_STARTUP_TIMEOUT,
) -> MonitorState:
    """Start a detached monitor and wait for it to take over the state."""
    cmd = monitor_command(mode)
    logger.debug(f"EXEC → {' '.join(cmd[1:])}")

    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            env=monitor_env(prefs, store.data_dir),
            start_new_session=True,
        )
    except OSError as e:
        raise MonitorStartupError(f"Can't start monitor: {e}") from e

    try:
        state = wait_for_monitor(store, proc, timeout)
    except MonitorStartupError:
        if proc.poll() is None:
            proc.terminate()
        raise

    logger.info(f"Monitor started with pid {state.pid}")
    return state


def _running_pid(store: StateStore) -> int | None:
    try:
        state = store.read_monitor_state()
    except (StateNotFoundError, StateCorruptedError):
        return None
    return state.pid if pid_alive(state.pid) else None


def _runs_terraform(proc: psutil.Process) -> bool:
    try:
        return any(child.name() == "terraform" for child in proc.children(recursive=True))
    except psutil.Error:
        return False


def stop_monitor(store: StateStore, *, timeout: float = MONITOR_STOP_TIMEOUT) -> bool:
    """Ask the monitor to shut down and wait for it to exit.

    Returns:
        True if a live monitor was stopped, False if none was running.

    Raises:
        MonitorError: If the process outlives ``timeout``.
    """
    pid = _running_pid(store)
    if pid is None:
        return False

    try:
        proc = psutil.Process(pid)
        proc.send_signal(signal.SIGTERM)
        proc.wait(timeout=timeout)
    except psutil.NoSuchProcess:
        pass  # exited on its own between the check and the signal
    except psutil.TimeoutExpired as e:
        if _runs_terraform(proc):
            raise MonitorError(f"Monitor (pid {pid}) is destroying the farm, try again later") from e
        raise MonitorError(f"Monitor (pid {pid}) didn't stop within {timeout:g}s") from e

    logger.info(f"Monitor (pid {pid}) stopped")
    return True


def restart_monitor(store: StateStore) -> bool:
    """Make the monitor re-read its state; False if none is running."""
    pid = _running_pid(store)
    if pid is None:
        return False

    try:
        os.kill(pid, signal.SIGHUP)
    except ProcessLookupError:
        return False

    logger.info(f"Restart signal sent to monitor (pid {pid})")
    return True


def prolong(
    store: StateStore,
    prefs: Preferences,
    minutes: int,
    *,
    timeout: float = MONITOR_STARTUP_TIMEOUT,
) -> MonitorState:
    """Move the destroy deadline forward and hand it to a fresh monitor.

    Raises:
        ValueError: If ``minutes`` is not positive.
        MonitorError: If no monitor state exists or it can't be read.
    """
    if minutes <= 0:
        raise ValueError("Prolong time must be positive")

    try:
        state = store.read_monitor_state()
    except StateNotFoundError as e:
        raise MonitorError("Monitor is not running, nothing to prolong") from e
    except StateCorruptedError as e:
        raise MonitorError(f"Can't read monitor state: {e}") from e

    stop_monitor(store)

    prolonged = state.prolonged(minutes * 60)
    store.save_monitor_state(prolonged)
    logger.info(f"Destroy deadline moved from {state.destroy_after} to {prolonged.destroy_after}")

    return launch_monitor(store, prefs, LaunchMode(resume=True), timeout=timeout)
