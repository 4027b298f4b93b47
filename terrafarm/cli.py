"""Command-line interface.

Usage:
    terrafarm [options] create|destroy|status|templates
    terrafarm [options] prolong <duration>
    terrafarm monitor run|restart|stop|status
"""

from __future__ import annotations

import argparse
import difflib
import signal
import sys
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from types import FrameType
from typing import Any

from rich.console import Console

from terrafarm import __version__
from terrafarm.config import check_environment, get_data_dir, parse_minutes, resolve_preferences
from terrafarm.console import (
    confirm,
    make_console,
    print_error,
    print_status,
    print_success,
    print_templates,
    print_warning,
    separator,
)
from terrafarm.constants import APP, DESCRIPTION, MONITOR_LOG_FILE
from terrafarm.control import prolong, restart_monitor, stop_monitor
from terrafarm.exceptions import (
    ConfigurationError,
    StateCorruptedError,
    StateNotFoundError,
    TerrafarmError,
)
from terrafarm.farm import DestroyOutcome, create_farm, destroy_farm, farm_status, list_templates
from terrafarm.logging import LogConfig, _setup_logging, _teardown_logging
from terrafarm.monitor import LifecycleMonitor
from terrafarm.nodes import NodeProber
from terrafarm.preferences import Preferences
from terrafarm.state import StateStore, pid_alive
from terrafarm.terraform.runner import TerraformRunner
from terrafarm.terraform.state import is_farm_active
from terrafarm.utils.timeutil import format_timestamp, pretty_duration

# Command -> aliases
COMMANDS: dict[str, tuple[str, ...]] = {
    "create": ("apply", "start"),
    "destroy": ("delete", "stop"),
    "status": ("info", "state"),
    "templates": (),
    "prolong": (),
    "monitor": (),
}

# Global flag -> Preferences field
_PREFERENCE_FLAGS: dict[str, str] = {
    "--ttl": "ttl",
    "--max-wait": "max_wait",
    "--output": "output",
    "--token": "token",
    "--key": "key",
    "--region": "region",
    "--node-size": "node_size",
    "--user": "user",
    "--password": "password",
    "--template": "template",
}

_SWITCHES = (
    ("--force", "-f", "Skip confirmations"),
    ("--no-validate", "-nv", "Don't validate preferences against the API"),
    ("--no-color", "-nc", "Disable colors in output"),
    ("--debug", "-D", "Show debug output"),
)


@dataclass(frozen=True, slots=True)
class Context:
    args: argparse.Namespace
    console: Console
    data_dir: Path
    store: StateStore

    def overrides(self) -> dict[str, Any]:
        return {name: getattr(self.args, name, None) for name in _PREFERENCE_FLAGS.values()}

    def preferences(self, *, validate: bool = True) -> Preferences:
        return resolve_preferences(self.overrides(), data_dir=self.data_dir, validate=validate)


type Handler = Callable[[Context], int]


# =============================================================================
# Command correction
# =============================================================================


def command_names() -> list[str]:
    return [name for command, aliases in COMMANDS.items() for name in (command, *aliases)]


def find_command(argv: Sequence[str]) -> str | None:
    """First positional token, skipping global options and their values."""
    tokens = iter(argv)
    for token in tokens:
        if token in _PREFERENCE_FLAGS:
            next(tokens, None)
        elif not token.startswith("-"):
            return token
    return None


def suggest_command(name: str) -> str | None:
    matches = difflib.get_close_matches(name.lower(), command_names(), n=1, cutoff=0.6)
    return matches[0] if matches else None


# =============================================================================
# Signals
# =============================================================================


@contextmanager
def uninterruptible(console: Console) -> Iterator[None]:
    """Refuse SIGINT/SIGTERM while terraform changes infrastructure."""

    def refuse(signum: int, frame: FrameType | None) -> None:
        print_warning(console, "\nYou can't cancel command execution in this time")

    previous = {sig: signal.signal(sig, refuse) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


# =============================================================================
# Farm commands
# =============================================================================


def _prober(ctx: Context) -> NodeProber:
    return NodeProber(ctx.store.terraform_state_file)


def cmd_create(ctx: Context) -> int:
    check_environment(ctx.data_dir)

    if is_farm_active(ctx.store.terraform_state_file):
        print_warning(ctx.console, "Terrafarm already works")
        return 1

    prefs = ctx.preferences()
    print_status(ctx.console, farm_status(ctx.store, prefs, prober=_prober(ctx), validate=not ctx.args.no_validate))

    if not ctx.args.force:
        if not confirm(ctx.console, "Create farm with these preferences?"):
            return 0
        separator(ctx.console)

    runner = TerraformRunner(console=ctx.console)
    with uninterruptible(ctx.console):
        result = create_farm(ctx.store, prefs, runner=runner)

    separator(ctx.console)

    if result.export_path is not None:
        print_success(ctx.console, f"Info about build nodes saved as {result.export_path}")
    elif result.export_error is not None:
        print_error(ctx.console, f"Error while exporting info: {result.export_error}")

    if result.monitor is not None:
        print_success(
            ctx.console,
            f"Monitoring process successfully started! Farm will be destroyed after "
            f"{format_timestamp(result.monitor.destroy_after)}",
        )

    return 0


def cmd_destroy(ctx: Context) -> int:
    check_environment(ctx.data_dir)

    if not is_farm_active(ctx.store.terraform_state_file):
        print_warning(ctx.console, "Terrafarm does not work, nothing to destroy")
        return 0

    prefs = ctx.preferences(validate=False)
    if not prefs.token:
        raise ConfigurationError("Property token must be set")

    if not ctx.args.force and not confirm(ctx.console, "Destroy farm?"):
        return 0

    separator(ctx.console)
    runner = TerraformRunner(console=ctx.console)
    with uninterruptible(ctx.console):
        outcome = destroy_farm(ctx.store, prefs, runner=runner)
    separator(ctx.console)

    if outcome is DestroyOutcome.DESTROYED:
        print_success(ctx.console, "Farm successfully destroyed")
    return 0


def cmd_status(ctx: Context) -> int:
    check_environment(ctx.data_dir)
    prefs = ctx.preferences(validate=False)
    status = farm_status(ctx.store, prefs, prober=_prober(ctx), validate=not ctx.args.no_validate)
    print_status(ctx.console, status)
    return 0


def cmd_templates(ctx: Context) -> int:
    print_templates(ctx.console, list_templates(ctx.data_dir))
    return 0


def cmd_prolong(ctx: Context) -> int:
    minutes = parse_minutes(ctx.args.duration, "prolong duration")
    if minutes <= 0:
        raise ConfigurationError("Prolong duration must be at least one minute")

    if not is_farm_active(ctx.store.terraform_state_file):
        print_warning(ctx.console, "Terrafarm does not work, nothing to prolong")
        return 1

    state = prolong(ctx.store, ctx.preferences(validate=False), minutes)
    print_success(
        ctx.console,
        f"Farm TTL prolonged by {pretty_duration(minutes * 60)}, "
        f"farm will be destroyed after {format_timestamp(state.destroy_after)}",
    )
    return 0


# =============================================================================
# Monitor commands
# =============================================================================


def cmd_monitor_run(ctx: Context) -> int:
    def live_preferences() -> Preferences:
        return resolve_preferences(data_dir=ctx.data_dir, validate=False)

    monitor = LifecycleMonitor(
        ctx.store,
        runner=TerraformRunner(unattended=True),
        prober=_prober(ctx),
        live_preferences=live_preferences,
    )
    monitor.install_signal_handlers()
    return monitor.run(resume=ctx.args.resume, ttl=ctx.args.monitor_ttl, max_wait=ctx.args.monitor_max_wait)


def cmd_monitor_restart(ctx: Context) -> int:
    if not restart_monitor(ctx.store):
        print_warning(ctx.console, "Monitor is not running")
        return 1
    print_success(ctx.console, "Monitor restarted")
    return 0


def cmd_monitor_stop(ctx: Context) -> int:
    if not stop_monitor(ctx.store):
        print_warning(ctx.console, "Monitor is not running")
        return 0
    print_success(ctx.console, "Monitor stopped, farm is left as is")
    return 0


def cmd_monitor_status(ctx: Context) -> int:
    try:
        state = ctx.store.read_monitor_state()
    except StateNotFoundError:
        print_warning(ctx.console, "Monitor is not running")
        return 0
    except StateCorruptedError as e:
        print_error(ctx.console, str(e))
        return 1

    if not pid_alive(state.pid):
        print_warning(ctx.console, f"Monitor (pid {state.pid}) is not running")
        return 0

    left = state.destroy_after - time.time()
    when = "destroying" if left < 0 else f"{pretty_duration(left)} to destroy"
    ctx.console.print(f"Monitor works (pid {state.pid}, {when})")
    ctx.console.print(f"Destroy after: {format_timestamp(state.destroy_after)}")
    if state.max_wait:
        ctx.console.print(f"Destroy not later than: {format_timestamp(state.destroy_not_later)}")
    return 0


# =============================================================================
# Parser
# =============================================================================


def _add_global_options(parser: argparse.ArgumentParser, *, suppress: bool) -> None:
    """Global options, accepted before and after the command.

    Subcommand copies default to SUPPRESS so they don't reset values given
    before the command.
    """
    default = argparse.SUPPRESS if suppress else None
    for flag, name in _PREFERENCE_FLAGS.items():
        parser.add_argument(flag, dest=name, metavar=name.upper(), default=default)
    for flag, short, help_text in _SWITCHES:
        parser.add_argument(
            flag, short, action="store_true", help=help_text,
            default=argparse.SUPPRESS if suppress else False,
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP, description=DESCRIPTION)
    parser.add_argument("--version", "-v", action="version", version=f"{APP} {__version__}")
    _add_global_options(parser, suppress=False)

    commands = parser.add_subparsers(dest="command", metavar="command")

    def add(name: str, handler: Handler, help_text: str) -> argparse.ArgumentParser:
        sub = commands.add_parser(name, aliases=list(COMMANDS.get(name, ())), help=help_text)
        _add_global_options(sub, suppress=True)
        sub.set_defaults(handler=handler)
        return sub

    add("create", cmd_create, "Create and run farm")
    add("destroy", cmd_destroy, "Destroy farm")
    add("status", cmd_status, "Show info about terrafarm")
    add("templates", cmd_templates, "List farm templates")
    prolong_parser = add("prolong", cmd_prolong, "Increase TTL of the running farm")
    prolong_parser.add_argument("duration", help="Time to add, e.g. 90m or 2h")

    monitor = commands.add_parser("monitor", help="Control the farm monitor")
    actions = monitor.add_subparsers(dest="action", metavar="action", required=True)

    run = actions.add_parser("run", help=argparse.SUPPRESS)
    mode = run.add_mutually_exclusive_group(required=True)
    mode.add_argument("--fresh", action="store_true")
    mode.add_argument("--resume", action="store_true")
    run.add_argument("--ttl", dest="monitor_ttl", type=int, default=0)
    run.add_argument("--max-wait", dest="monitor_max_wait", type=int, default=0)
    run.set_defaults(handler=cmd_monitor_run, monitor_process=True)

    actions.add_parser("restart", help="Make the monitor re-read its state").set_defaults(handler=cmd_monitor_restart)
    actions.add_parser("stop", help="Stop the monitor, leaving the farm running").set_defaults(handler=cmd_monitor_stop)
    actions.add_parser("status", help="Show monitor state").set_defaults(handler=cmd_monitor_status)

    return parser


def _log_config(args: argparse.Namespace, data_dir: Path) -> LogConfig:
    if getattr(args, "monitor_process", False):
        return LogConfig(file=str(data_dir / MONITOR_LOG_FILE), console=False)
    return LogConfig(level="DEBUG" if args.debug else "WARNING")


def main(argv: Sequence[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()

    command = find_command(argv)
    if command is not None and command not in command_names():
        console = make_console()
        suggestion = suggest_command(command)
        if suggestion is None:
            print_error(console, f"Unknown command {command}")
        else:
            print_error(console, f"Unknown command {command}, did you mean {suggestion}?")
        return 1

    args = parser.parse_args(argv)
    if getattr(args, "handler", None) is None:
        parser.print_help()
        return 0

    data_dir = get_data_dir()
    ctx = Context(
        args=args,
        console=make_console(no_color=args.no_color),
        data_dir=data_dir,
        store=StateStore(data_dir),
    )

    handler_ids = _setup_logging(_log_config(args, data_dir))
    try:
        return args.handler(ctx)
    except ConfigurationError as e:
        for error in e.errors:
            print_error(ctx.console, error)
        return 1
    except TerrafarmError as e:
        print_error(ctx.console, str(e))
        return 1
    finally:
        _teardown_logging(handler_ids)


if __name__ == "__main__":
    sys.exit(main())
