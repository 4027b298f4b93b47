"""Build node prober.

Checks every farm droplet over SSH for the build lock file. A node whose
lock exists is building (Active), a node that answers without a lock is
idle (Inactive), and a node that can't be reached is Down.

The lock file is a heuristic: a build that hangs while holding it keeps
the node Active until the monitor's grace period runs out.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

import paramiko
from loguru import logger

from terrafarm.constants import (
    ADMIN_USER,
    BUILD_LOCK_COMMAND,
    PROBE_CONCURRENCY,
    SSH_PORT,
    SSH_TIMEOUT_SECONDS,
)
from terrafarm.exceptions import ProbeError, StateCorruptedError
from terrafarm.preferences import Preferences
from terrafarm.terraform.state import NodeRecord, read_nodes
from terrafarm.utils.conc import map_async


class NodeState(StrEnum):
    UNKNOWN = "unknown"
    INACTIVE = "inactive"
    ACTIVE = "active"
    DOWN = "down"


@dataclass(frozen=True, slots=True)
class NodeInfo:
    """Point-in-time observation of a build node."""

    name: str
    ip: str
    arch: str
    state: NodeState = NodeState.UNKNOWN


def node_arch(name: str) -> str:
    if name.endswith("-x32"):
        return "i386"
    if name.endswith("-x48"):
        return "i686"
    return "x86_64"


def active_node_names(nodes: Iterable[NodeInfo]) -> list[str]:
    return [n.name for n in nodes if n.state is NodeState.ACTIVE]


def load_private_key(path: str) -> paramiko.PKey:
    """Load a private key of any supported type.

    Raises:
        ProbeError: If the key can't be read or parsed.
    """
    try:
        return paramiko.PKey.from_path(path)
    except (OSError, ValueError, TypeError, paramiko.SSHException) as e:
        raise ProbeError(f"Can't load private key {path}: {e}") from e


class NodeProber:
    """Probe farm nodes for in-flight builds.

    Args:
        state_file: Terraform state listing the nodes.
        timeout: Connect, banner, auth and command timeout in seconds.
        concurrency: Max nodes probed at once.
        client_factory: SSH client constructor.

    Example:
        prober = NodeProber(data_dir / "terraform.tfstate")
        busy = active_node_names(prober.probe(prefs))
    """

    def __init__(
        self,
        state_file: Path,
        *,
        timeout: float = SSH_TIMEOUT_SECONDS,
        concurrency: int = PROBE_CONCURRENCY,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> None:
        self._state_file = state_file
        self._timeout = timeout
        self._concurrency = concurrency
        self._client_factory = client_factory

    def nodes(self) -> list[NodeRecord]:
        try:
            return read_nodes(self._state_file)
        except StateCorruptedError as e:
            raise ProbeError(f"Can't get node list: {e}") from e

    def probe(self, prefs: Preferences, nodes: Sequence[NodeRecord] | None = None) -> list[NodeInfo]:
        """Probe every node and return results in node order.

        Nodes are read from the terraform state unless given.

        Raises:
            ProbeError: If the key or the node list is unusable; the
                aggregate is then unknown rather than inactive.
        """
        if nodes is None:
            nodes = self.nodes()
        if not nodes:
            return []

        key = load_private_key(prefs.key)
        command = BUILD_LOCK_COMMAND.format(user=prefs.user)

        return list(
            map_async(
                lambda node: self.probe_node(node, key, command),
                nodes,
                concurrency=self._concurrency,
            )
        )

    def probe_node(self, node: NodeRecord, key: paramiko.PKey, command: str) -> NodeInfo:
        arch = node_arch(node.name)
        client = self._client_factory()
        try:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                client.connect(
                    hostname=node.ip,
                    port=SSH_PORT,
                    username=ADMIN_USER,
                    pkey=key,
                    timeout=self._timeout,
                    banner_timeout=self._timeout,
                    auth_timeout=self._timeout,
                    allow_agent=False,
                    look_for_keys=False,
                )
            except (OSError, EOFError, paramiko.SSHException) as e:
                logger.warning(f"Can't connect to {node.name} ({node.ip}): {e}")
                return NodeInfo(node.name, node.ip, arch, NodeState.DOWN)

            try:
                _, stdout, _ = client.exec_command(command, timeout=self._timeout)
                # recv_exit_status() waits without a timeout
                if not stdout.channel.status_event.wait(self._timeout):
                    logger.warning(f"Build lock check on {node.name} ({node.ip}) timed out")
                    return NodeInfo(node.name, node.ip, arch, NodeState.DOWN)
                code = stdout.channel.recv_exit_status()
            except (OSError, EOFError, paramiko.SSHException) as e:
                logger.warning(f"Can't check build lock on {node.name} ({node.ip}): {e}")
                return NodeInfo(node.name, node.ip, arch, NodeState.DOWN)

            state = NodeState.ACTIVE if code == 0 else NodeState.INACTIVE
            logger.debug(f"{node.name} ({node.ip}) is {state}")
            return NodeInfo(node.name, node.ip, arch, state)
        finally:
            client.close()


def summarize(nodes: Sequence[NodeInfo]) -> dict[NodeState, int]:
    counts = {state: 0 for state in NodeState}
    for node in nodes:
        counts[node.state] += 1
    return counts
