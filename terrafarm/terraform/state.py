"""Terraform state file reader.

Extracts the droplets of a farm from ``terraform.tfstate``. Both the
legacy layout (``modules[].resources{}.primary.attributes``) and the
current one (``resources[].instances[].attributes``) are understood.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from terrafarm.constants import DROPLET_RESOURCE_TYPE
from terrafarm.exceptions import StateCorruptedError


@dataclass(frozen=True, slots=True)
class NodeRecord:
    """A provisioned droplet as recorded by terraform."""

    name: str
    ip: str


def _load(state_file: Path) -> dict[str, Any] | None:
    if not state_file.exists():
        return None

    try:
        data = json.loads(state_file.read_text())
    except (OSError, ValueError) as e:
        raise StateCorruptedError(str(state_file), str(e)) from e

    if not isinstance(data, dict):
        raise StateCorruptedError(str(state_file), "top-level value is not an object")

    return data


def _resources(data: dict[str, Any]) -> Iterator[tuple[str, dict[str, Any]]]:
    """Yield (type, attributes) for every managed resource instance."""
    if "modules" in data:
        for module in data.get("modules") or []:
            for resource in (module.get("resources") or {}).values():
                attrs = (resource.get("primary") or {}).get("attributes") or {}
                yield resource.get("type", ""), attrs
        return

    for resource in data.get("resources") or []:
        if resource.get("mode", "managed") != "managed":
            continue
        for instance in resource.get("instances") or []:
            yield resource.get("type", ""), instance.get("attributes") or {}


def count_resources(state_file: Path) -> int:
    """Number of managed resources terraform tracks; 0 when there is no state.

    Raises:
        StateCorruptedError: If the file can't be decoded.
    """
    data = _load(state_file)
    if data is None:
        return 0

    try:
        return sum(1 for _ in _resources(data))
    except (AttributeError, TypeError) as e:
        raise StateCorruptedError(str(state_file), f"unexpected layout: {e}") from e


def read_nodes(state_file: Path) -> list[NodeRecord]:
    """Read the droplets recorded in a terraform state file.

    Returns:
        Nodes sorted by name; empty when the file doesn't exist.

    Raises:
        StateCorruptedError: If the file can't be decoded.
    """
    data = _load(state_file)
    if data is None:
        return []

    try:
        nodes = [
            NodeRecord(name=attrs.get("name", ""), ip=attrs.get("ipv4_address", ""))
            for kind, attrs in _resources(data)
            if kind == DROPLET_RESOURCE_TYPE
        ]
    except (AttributeError, TypeError) as e:
        raise StateCorruptedError(str(state_file), f"unexpected layout: {e}") from e

    return sorted(nodes, key=lambda n: n.name)


def is_farm_active(state_file: Path) -> bool:
    """True while terraform still tracks resources.

    A malformed state file counts as active: it doesn't prove the farm
    is gone.
    """
    try:
        return count_resources(state_file) != 0
    except StateCorruptedError as e:
        logger.error(f"Can't read terraform state: {e}")
        return True
