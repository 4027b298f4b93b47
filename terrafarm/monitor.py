"""Farm lifecycle monitor.

A detached process that destroys the farm once its TTL runs out, but
gives active builds a bounded grace period first::

    starting → waiting → polling → destroying → terminated
        ↑                                     │
        └──────────── restarting ←── SIGHUP   │ (failed destroy: retry next tick)

Rules, evaluated on entry and then once per minute:

- terraform tracks no resources: the farm was destroyed by hand, exit.
- before ``destroy_after``: wait.
- after ``destroy_after`` with no grace period: destroy.
- after ``destroy_after + max_wait``: destroy, even with active builds.
- otherwise poll the nodes and destroy only when none is building.

SIGHUP re-reads the monitor state and keeps going with the same deadline;
SIGTERM/SIGINT remove the monitor state and exit, leaving the farm alone.
The deadline lives in the monitor state file, never only in memory.
"""

from __future__ import annotations

import os
import signal
import threading
import time
from collections.abc import Callable
from dataclasses import replace
from enum import StrEnum
from types import FrameType

from loguru import logger

from terrafarm import __version__
from terrafarm.constants import LOG_SEPARATOR, POLL_INTERVAL_SECONDS
from terrafarm.digitalocean.client import DigitalOceanClient
from terrafarm.exceptions import (
    ConfigurationError,
    MonitorError,
    ProbeError,
    ProvisioningError,
    StateCorruptedError,
    StateNotFoundError,
)
from terrafarm.logging import aux
from terrafarm.nodes import NodeProber, active_node_names
from terrafarm.preferences import Preferences
from terrafarm.pricing import estimate_usage
from terrafarm.state import FarmState, MonitorState, StateStore
from terrafarm.terraform.runner import TerraformRunner
from terrafarm.terraform.state import is_farm_active, read_nodes
from terrafarm.utils.timeutil import format_timestamp


class Phase(StrEnum):
    STARTING = "starting"
    WAITING = "waiting"
    POLLING = "polling"
    DESTROYING = "destroying"
    RESTARTING = "restarting"
    TERMINATED = "terminated"


# =============================================================================
# Transition rules
# =============================================================================


def deadline_phase(now: float, destroy_after: int, max_wait: int) -> Phase:
    """Phase dictated by the clock alone."""
    if now < destroy_after:
        return Phase.WAITING
    if max_wait == 0 or now > destroy_after + max_wait:
        return Phase.DESTROYING
    return Phase.POLLING


def evaluate(now: float, destroy_after: int, max_wait: int, active_nodes: list[str] | None = None) -> Phase:
    """Next phase given the clock and, inside the grace window, the active nodes.

    ``active_nodes`` is None when the nodes haven't been (or couldn't be)
    probed; the monitor then keeps polling.
    """
    phase = deadline_phase(now, destroy_after, max_wait)
    if phase is not Phase.POLLING:
        return phase
    if active_nodes is None or active_nodes:
        return Phase.POLLING
    return Phase.DESTROYING


def preferences_for_destroy(farm: FarmState, live: Preferences) -> Preferences:
    """Combine the farm's recorded preferences with live secrets.

    The farm state keeps the template, region, size, user and key the farm
    was created with, but its token and password are redacted. Secrets come
    from the monitor's own environment and must belong to the same token.

    Raises:
        ConfigurationError: If the live token is missing or differs.
    """
    recorded = farm.preferences

    if not live.token:
        raise ConfigurationError("Token is not available to the monitor")

    if recorded.token and not live.matches_redacted_token(recorded.token):
        raise ConfigurationError("Token doesn't match the one the farm was created with")

    return replace(recorded, token=live.token, password=live.password)


# =============================================================================
# Monitor
# =============================================================================


class LifecycleMonitor:
    """Long-lived loop that decides when to destroy the farm.

    Args:
        store: Farm and monitor state files.
        runner: Terraform runner in unattended mode.
        prober: Build node prober.
        live_preferences: Resolves preferences from the monitor's environment
            and config files; only secrets are taken from it.
        cloud: Builds an API client for the cost estimate; None skips it.
        clock: Current unix time.
        interval: Seconds between ticks.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        runner: TerraformRunner,
        prober: NodeProber,
        live_preferences: Callable[[], Preferences],
        cloud: Callable[[str], DigitalOceanClient] | None = DigitalOceanClient,
        clock: Callable[[], float] = time.time,
        interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self._store = store
        self._runner = runner
        self._prober = prober
        self._live_preferences = live_preferences
        self._cloud = cloud
        self._clock = clock
        self._interval = interval

        self._restart = threading.Event()
        self._shutdown = threading.Event()
        self._wake = threading.Event()

        self.phase = Phase.STARTING
        self.state: MonitorState | None = None

    # =========================================================================
    # Control
    # =========================================================================

    def request_restart(self) -> None:
        self._restart.set()
        self._wake.set()

    def request_shutdown(self) -> None:
        self._shutdown.set()
        self._wake.set()

    def install_signal_handlers(self) -> None:
        def on_restart(signum: int, frame: FrameType | None) -> None:
            self.request_restart()

        def on_shutdown(signum: int, frame: FrameType | None) -> None:
            self.request_shutdown()

        signal.signal(signal.SIGHUP, on_restart)
        signal.signal(signal.SIGTERM, on_shutdown)
        signal.signal(signal.SIGINT, on_shutdown)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_fresh(self, ttl: int, max_wait: int) -> MonitorState:
        """Create the monitor state from TTL and max wait, both in minutes."""
        now = int(self._clock())
        state = MonitorState(
            pid=os.getpid(),
            started=now,
            destroy_after=now + ttl * 60,
            max_wait=max_wait * 60,
        )
        return self._own(state)

    def resume(self) -> MonitorState:
        """Take over the persisted monitor state.

        Raises:
            MonitorError: If the state is missing or unreadable.
        """
        try:
            state = self._store.read_monitor_state()
        except StateNotFoundError as e:
            raise MonitorError(f"Can't resume monitoring: {e}") from e
        except StateCorruptedError as e:
            raise MonitorError(f"Can't read monitor state: {e}") from e
        return self._own(replace(state, pid=os.getpid()))

    def _own(self, state: MonitorState) -> MonitorState:
        try:
            self._store.save_monitor_state(state)
        except OSError as e:
            raise MonitorError(f"Can't save monitor state to file: {e}") from e
        self.state = state
        return state

    def _announce(self, state: MonitorState) -> None:
        if state.max_wait > 0:
            logger.info(
                f"Farm will be destroyed during the period "
                f"{format_timestamp(state.destroy_after)} - {format_timestamp(state.destroy_not_later)}"
            )
        else:
            logger.info(f"Farm will be destroyed after {format_timestamp(state.destroy_after)}")

    def run(self, *, resume: bool, ttl: int = 0, max_wait: int = 0) -> int:
        """Run until the farm is gone or shutdown is requested; returns the exit code."""
        aux(LOG_SEPARATOR)
        aux(f"terrafarm {__version__} monitor started (pid {os.getpid()})")

        try:
            state = self.resume() if resume else self.start_fresh(ttl, max_wait)
            self._announce(state)

            while True:
                if self._shutdown.is_set():
                    return self._stop()

                if self._restart.is_set():
                    self._restart.clear()
                    self.phase = Phase.RESTARTING
                    aux("Restart requested")
                    self._announce(self.resume())

                self.phase = self.tick()
                if self.phase is Phase.TERMINATED:
                    return 0

                self._wake.wait(self._interval)
                self._wake.clear()
        except MonitorError as e:
            logger.critical(str(e))
            return 1
        except Exception:
            logger.exception("Monitor crashed, farm is left as is")
            return 1

    def _stop(self) -> int:
        self._store.delete_monitor_state()
        self.phase = Phase.TERMINATED
        logger.info("Monitor stopped, farm is left as is")
        return 0

    # =========================================================================
    # Tick
    # =========================================================================

    def tick(self) -> Phase:
        """Evaluate the transition rules once."""
        state = self.state
        if state is None:
            raise MonitorError("Monitor state is not loaded")

        if not is_farm_active(self._store.terraform_state_file):
            logger.info("Farm destroyed manually. Shutdown monitor...")
            self._store.delete_monitor_state()
            return Phase.TERMINATED

        now = self._clock()
        phase = deadline_phase(now, state.destroy_after, state.max_wait)

        if phase is Phase.POLLING:
            phase = evaluate(now, state.destroy_after, state.max_wait, self._active_nodes())
        elif phase is Phase.DESTROYING and state.max_wait > 0:
            logger.info("Max wait time is over, farm will be destroyed regardless of active builds")

        if phase is not Phase.DESTROYING:
            return phase

        self.phase = Phase.DESTROYING
        if self._destroy():
            return Phase.TERMINATED
        return Phase.DESTROYING

    def _read_farm_state(self) -> FarmState:
        try:
            return self._store.read_farm_state()
        except (StateNotFoundError, StateCorruptedError) as e:
            raise MonitorError(f"Can't read farm state file: {e}") from e

    def _active_nodes(self) -> list[str] | None:
        farm = self._read_farm_state()
        try:
            nodes = self._prober.probe(farm.preferences)
        except ProbeError as e:
            logger.error(f"Can't check build nodes: {e}")
            return None
        except Exception:
            logger.exception("Unexpected error while checking build nodes")
            return None

        active = active_node_names(nodes)
        if active:
            logger.info(f"{', '.join(active)} still have active build processes, waiting...")
        return active

    def _destroy(self) -> bool:
        logger.info("Starting farm destroying...")

        farm = self._read_farm_state()
        try:
            prefs = preferences_for_destroy(farm, self._live_preferences())
        except ConfigurationError as e:
            logger.error(f"Can't prepare farm destroying: {e}")
            return False

        state_file = self._store.terraform_state_file
        try:
            nodes = len(read_nodes(state_file))
        except StateCorruptedError:
            nodes = 0

        try:
            self._runner.destroy(prefs.template_dir(self._store.data_dir), prefs.variables(), state_file)
        except ProvisioningError as e:
            logger.error(f"Can't destroy farm - terraform returned error: {e}")
            return False

        self._store.delete_farm_state()
        self._store.delete_monitor_state()

        self._log_usage(prefs, farm, nodes)
        logger.info("Farm successfully destroyed!")
        return True

    def _log_usage(self, prefs: Preferences, farm: FarmState, nodes: int) -> None:
        if self._cloud is None or not farm.started:
            return

        estimate = estimate_usage(self._cloud(prefs.token), prefs.node_size, nodes, farm.started, self._clock())
        if estimate is None:
            logger.info("Usage cost estimate is not available")
        else:
            logger.info(f"Estimated usage cost: {estimate}")
