"""Terminal rendering for the CLI.

Model objects come from terrafarm.farm; this module only turns them into
rich renderables and prints them.
"""

from __future__ import annotations

import time
from collections.abc import Iterable

from rich.console import Console
from rich.prompt import Confirm
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from terrafarm.digitalocean.client import ValidationStatus
from terrafarm.farm import FarmStatus, TemplateInfo
from terrafarm.nodes import NodeInfo, NodeState, summarize
from terrafarm.utils.timeutil import format_timestamp, pretty_duration

DIM = "dim"

_MARKERS: dict[ValidationStatus, Text] = {
    ValidationStatus.OK: Text(" ✔", style="green"),
    ValidationStatus.NOT_OK: Text(" ✖", style="red"),
    ValidationStatus.ERROR: Text(" ?", style="yellow"),
}

_NODE_STYLES: dict[NodeState, str] = {
    NodeState.ACTIVE: "green",
    NodeState.INACTIVE: DIM,
    NodeState.DOWN: "red",
    NodeState.UNKNOWN: "yellow",
}


def make_console(*, no_color: bool = False) -> Console:
    return Console(highlight=False, no_color=no_color)


def print_error(console: Console, message: str) -> None:
    console.print(Text(message, style="red"))


def print_warning(console: Console, message: str) -> None:
    console.print(Text(message, style="yellow"))


def print_success(console: Console, message: str) -> None:
    console.print(Text(message, style="green"))


def separator(console: Console, title: str = "") -> None:
    console.print(Rule(title, style=DIM, align="left"))


def confirm(console: Console, question: str) -> bool:
    return Confirm.ask(question, console=console, default=False)


def plural(count: int, one: str, many: str) -> str:
    return f"{count} {one if count == 1 else many}"


# =============================================================================
# Status
# =============================================================================


def _marker(status: ValidationStatus | None) -> Text:
    if status is None:
        return Text()
    return _MARKERS[status]


def ttl_text(minutes: int) -> Text:
    if minutes <= 0:
        return Text("disabled", style="red")
    duration = pretty_duration(minutes * 60)
    if minutes > 360:
        return Text(duration, style="red")
    if minutes > 120:
        return Text(duration, style="yellow")
    return Text(duration, style="green")


def _monitor_text(status: FarmStatus, now: float) -> Text:
    if not status.monitor_alive or status.monitor is None:
        return Text("stopped", style="red")

    text = Text("works", style="green")
    left = status.seconds_to_destroy(now)
    if left is not None and left < 0:
        text.append(" (destroying)", style="yellow")
    elif left is not None:
        text.append(f" ({pretty_duration(left)} to destroy)", style=DIM)
    return text


def status_table(status: FarmStatus, now: float | None = None) -> Table:
    now = time.time() if now is None else now
    prefs = status.preferences
    checks = status.validation

    table = Table.grid(padding=(0, 1))
    table.add_column(style="bold", min_width=16)
    table.add_column()

    def row(name: str, value: Text | str, marker: ValidationStatus | None = None) -> None:
        cell = value if isinstance(value, Text) else Text(value)
        table.add_row(f"  {name}:", cell + _marker(marker))

    template = Text(prefs.template)
    template.append(f" ({plural(status.build_nodes, 'build node', 'build nodes')})", style=DIM)
    row("Template", template)
    row("Token", prefs.masked_token, checks.token if checks else None)
    row("Private Key", prefs.key)
    row("Public Key", prefs.public_key)
    row("Fingerprint", prefs.fingerprint, checks.fingerprint if checks else None)
    row("TTL", ttl_text(prefs.ttl))
    if prefs.max_wait > 0:
        row("Max Wait", pretty_duration(prefs.max_wait * 60))
    row("Region", prefs.region, checks.region if checks else None)
    row("Node size", prefs.node_size, checks.size if checks else None)
    row("User", prefs.user)
    if prefs.output:
        row("Output", prefs.output)

    if not status.active:
        row("State", Text("stopped", style=DIM))
        return table

    state = Text("works", style="green")
    if status.farm is not None and status.farm.started:
        state.append(f" (since {format_timestamp(status.farm.started)})", style=DIM)
    row("State", state)
    row("Monitor", _monitor_text(status, now))

    return table


def nodes_table(nodes: Iterable[NodeInfo]) -> Table:
    table = Table.grid(padding=(0, 2))
    table.add_column()
    table.add_column()
    table.add_column(style=DIM)
    table.add_column()
    for node in nodes:
        table.add_row(f"  {node.name}", node.ip, node.arch, Text(node.state, style=_NODE_STYLES[node.state]))
    return table


def print_status(console: Console, status: FarmStatus) -> None:
    separator(console, "TERRAFARM")
    console.print(status_table(status))

    if status.active and status.probe_error:
        separator(console, "NODES")
        print_warning(console, f"  Can't check build nodes: {status.probe_error}")
    elif status.nodes:
        counts = summarize(status.nodes)
        separator(console, f"NODES ({counts[NodeState.ACTIVE]} active, {counts[NodeState.DOWN]} down)")
        console.print(nodes_table(status.nodes))

    separator(console)


def print_templates(console: Console, templates: list[TemplateInfo]) -> None:
    if not templates:
        print_warning(console, "No templates found")
        return

    separator(console, "TEMPLATES")
    for template in templates:
        line = Text(f"  {template.name}")
        line.append(f" ({plural(template.build_nodes, 'build node', 'build nodes')})", style=DIM)
        console.print(line)
    separator(console)
