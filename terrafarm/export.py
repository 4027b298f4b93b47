"""Node list export for rpmbuilder.

One line per node, ``user:password@ip`` with an ``~arch`` suffix for the
32-bit builders; i386 nodes come first, then i686, then the rest.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from pathlib import Path

from terrafarm.exceptions import TerrafarmError
from terrafarm.nodes import node_arch
from terrafarm.terraform.state import NodeRecord

_ARCH_ORDER = {"i386": 0, "i686": 1}


class ExportError(TerrafarmError):
    """Raised when the node list can't be written."""


def node_line(user: str, password: str, node: NodeRecord) -> str:
    line = f"{user}:{password}@{node.ip}"
    arch = node_arch(node.name)
    if arch in _ARCH_ORDER:
        line += f"~{arch}"
    return line


def render_node_list(user: str, password: str, nodes: Sequence[NodeRecord]) -> str:
    ordered = sorted(nodes, key=lambda n: (_ARCH_ORDER.get(node_arch(n.name), len(_ARCH_ORDER)), n.name))
    return "".join(node_line(user, password, node) + "\n" for node in ordered)


def export_node_list(output: str | Path, user: str, password: str, nodes: Sequence[NodeRecord]) -> Path:
    """Write the node list, replacing any existing file.

    Raises:
        ExportError: If the path is a directory or can't be written.
    """
    path = Path(output).expanduser()

    if path.is_dir():
        raise ExportError("Output path must be path to file")

    if path.exists() and not os.access(path, os.W_OK):
        raise ExportError("Output path must be path to writable file")

    try:
        path.write_text(render_node_list(user, password, nodes))
    except OSError as e:
        raise ExportError(f"Can't save node list to {path}: {e}") from e

    return path
