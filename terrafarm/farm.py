"""Farm operations: create, destroy, status and templates.

These are the actions behind the CLI commands. They print nothing; the
CLI renders what they return and asks for confirmations first.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from loguru import logger

from terrafarm.constants import BUILDER_TEMPLATE_PATTERN, FARM_DROPLET_PREFIX
from terrafarm.control import LaunchMode, launch_monitor, stop_monitor
from terrafarm.digitalocean.client import DigitalOceanClient, DigitalOceanError, Droplet, ValidationStatus
from terrafarm.exceptions import (
    ProbeError,
    StateCorruptedError,
    StateNotFoundError,
    TerrafarmError,
)
from terrafarm.export import export_node_list
from terrafarm.monitor import preferences_for_destroy
from terrafarm.nodes import NodeInfo, NodeProber
from terrafarm.preferences import Preferences
from terrafarm.state import FarmState, MonitorState, StateStore, pid_alive
from terrafarm.terraform.runner import TerraformRunner
from terrafarm.terraform.state import is_farm_active, read_nodes

type CloudFactory = Callable[[str], DigitalOceanClient]


class FarmActiveError(TerrafarmError):
    """Raised when creating a farm while one is already running."""


class DestroyOutcome(StrEnum):
    DESTROYED = "destroyed"
    NOTHING_TO_DESTROY = "nothing-to-destroy"


# =============================================================================
# Templates
# =============================================================================


@dataclass(frozen=True, slots=True)
class TemplateInfo:
    name: str
    build_nodes: int


def count_build_nodes(template_dir: Path) -> int:
    if not template_dir.is_dir():
        return 0
    return sum(1 for _ in template_dir.glob(BUILDER_TEMPLATE_PATTERN))


def list_templates(data_dir: Path) -> list[TemplateInfo]:
    """Readable template directories in the data dir, sorted by name."""
    if not data_dir.is_dir():
        return []

    return [
        TemplateInfo(entry.name, count_build_nodes(entry))
        for entry in sorted(data_dir.iterdir())
        if entry.is_dir() and not entry.name.startswith(".") and os.access(entry, os.R_OK | os.X_OK)
    ]


# =============================================================================
# Create
# =============================================================================


@dataclass(frozen=True, slots=True)
class CreateResult:
    farm: FarmState
    monitor: MonitorState | None = None
    export_path: Path | None = None
    export_error: str | None = None


def create_farm(
    store: StateStore,
    prefs: Preferences,
    *,
    runner: TerraformRunner,
    launch: Callable[[StateStore, Preferences, LaunchMode], MonitorState] = launch_monitor,
    clock: Callable[[], float] = time.time,
) -> CreateResult:
    """Provision the farm, export the node list and start the monitor.

    The farm state is written before the monitor starts, since the monitor
    reads the template and key from it.

    Raises:
        FarmActiveError: If terraform already tracks resources.
        ProvisioningError: If ``terraform apply`` fails.
        MonitorStartupError: If the monitor doesn't come up.
    """
    state_file = store.terraform_state_file
    if is_farm_active(state_file):
        raise FarmActiveError("Terrafarm already works")

    started = int(clock())
    runner.apply(prefs.template_dir(store.data_dir), prefs.variables(), state_file)

    farm = FarmState(preferences=prefs.redacted(), started=started)
    store.save_farm_state(farm)
    logger.info(f"Farm created from template {prefs.template}")

    export_path = None
    export_error = None
    if prefs.output:
        try:
            export_path = export_node_list(prefs.output, prefs.user, prefs.password, read_nodes(state_file))
        except TerrafarmError as e:
            logger.error(f"Can't export node list: {e}")
            export_error = str(e)

    monitor = None
    if prefs.ttl > 0:
        monitor = launch(store, prefs, LaunchMode(ttl=prefs.ttl, max_wait=prefs.max_wait))

    return CreateResult(farm=farm, monitor=monitor, export_path=export_path, export_error=export_error)


# =============================================================================
# Destroy
# =============================================================================


def _destroy_preferences(store: StateStore, prefs: Preferences) -> Preferences:
    try:
        farm = store.read_farm_state()
    except StateNotFoundError:
        return prefs
    return preferences_for_destroy(farm, prefs)


def cleanup_droplets(client: DigitalOceanClient, prefix: str = FARM_DROPLET_PREFIX) -> list[Droplet]:
    """Destroy droplets terraform lost track of; failures are logged, not raised."""
    try:
        return client.destroy_farm_droplets(prefix)
    except DigitalOceanError as e:
        logger.warning(f"Can't remove leftover droplets: {e}")
        return []


def destroy_farm(
    store: StateStore,
    prefs: Preferences,
    *,
    runner: TerraformRunner,
    cloud: CloudFactory | None = DigitalOceanClient,
) -> DestroyOutcome:
    """Stop the monitor and tear the farm down.

    Uses the template the farm was created with when the farm state exists.
    Calling it again after a successful destroy is a no-op.

    Raises:
        ConfigurationError: If the token doesn't match the farm's.
        MonitorError: If the monitor refuses to stop.
        ProvisioningError: If ``terraform destroy`` fails.
    """
    state_file = store.terraform_state_file
    if not is_farm_active(state_file):
        return DestroyOutcome.NOTHING_TO_DESTROY

    prefs = _destroy_preferences(store, prefs)

    stop_monitor(store)
    runner.destroy(prefs.template_dir(store.data_dir), prefs.variables(), state_file)

    store.delete_farm_state()
    store.delete_monitor_state()
    logger.info("Farm destroyed")

    if cloud is not None and prefs.token:
        for droplet in cleanup_droplets(cloud(prefs.token)):
            logger.info(f"Leftover droplet {droplet.name} removed")

    return DestroyOutcome.DESTROYED


# =============================================================================
# Status
# =============================================================================


@dataclass(frozen=True, slots=True)
class Validation:
    token: ValidationStatus | None = None
    fingerprint: ValidationStatus | None = None
    region: ValidationStatus | None = None
    size: ValidationStatus | None = None


def validate_preferences(client: DigitalOceanClient, prefs: Preferences) -> Validation:
    return Validation(
        token=client.validate_token(),
        fingerprint=client.validate_fingerprint(prefs.fingerprint),
        region=client.validate_region(prefs.region),
        size=client.validate_size(prefs.node_size),
    )


@dataclass(frozen=True, slots=True)
class FarmStatus:
    """Everything the status command shows.

    Attributes:
        preferences: Live preferences, or the farm's recorded ones when active.
        build_nodes: Number of builder definitions in the template.
        active: Whether terraform tracks resources.
        farm: Farm state, if readable.
        monitor: Monitor state, if readable.
        monitor_alive: Whether the monitor pid is a live process.
        validation: API validation results, None when skipped.
        nodes: Probe results when active.
        probe_error: Why probing failed, if it did.
    """

    preferences: Preferences
    build_nodes: int
    active: bool
    farm: FarmState | None = None
    monitor: MonitorState | None = None
    monitor_alive: bool = False
    validation: Validation | None = None
    nodes: list[NodeInfo] = field(default_factory=list)
    probe_error: str | None = None

    def seconds_to_destroy(self, now: float) -> float | None:
        if self.monitor is None:
            return None
        return self.monitor.destroy_after - now


def farm_status(
    store: StateStore,
    prefs: Preferences,
    *,
    prober: NodeProber,
    cloud: CloudFactory | None = DigitalOceanClient,
    validate: bool = True,
) -> FarmStatus:
    """Collect farm status; API validation is skipped while a farm is active."""
    active = is_farm_active(store.terraform_state_file)

    farm = None
    try:
        farm = store.read_farm_state()
    except StateNotFoundError:
        pass  # no farm created yet
    except StateCorruptedError as e:
        logger.error(f"Can't read farm state: {e}")

    monitor = None
    try:
        monitor = store.read_monitor_state()
    except StateNotFoundError:
        pass  # monitor not running
    except StateCorruptedError as e:
        logger.error(f"Can't read monitor state: {e}")

    shown = prefs
    if active and farm is not None:
        shown = farm.preferences
        validate = False

    validation = None
    if validate and cloud is not None and prefs.token:
        validation = validate_preferences(cloud(prefs.token), prefs)

    nodes: list[NodeInfo] = []
    probe_error = None
    if active:
        try:
            nodes = prober.probe(shown)
        except ProbeError as e:
            probe_error = str(e)

    return FarmStatus(
        preferences=shown,
        build_nodes=count_build_nodes(shown.template_dir(store.data_dir)),
        active=active,
        farm=farm,
        monitor=monitor,
        monitor_alive=monitor is not None and pid_alive(monitor.pid),
        validation=validation,
        nodes=nodes,
        probe_error=probe_error,
    )
