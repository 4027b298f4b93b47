"""Terraform process runner.

Runs ``terraform apply``/``terraform destroy`` inside a template directory.
Variables go through a temporary JSON var-file so secrets never appear in
the process argument list. Stdout is drained on a separate thread while the
caller waits for the exit, stderr is captured and becomes the error detail.
"""

from __future__ import annotations

import json
import os
import subprocess
import tempfile
import threading
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import IO

from loguru import logger
from rich.console import Console
from rich.text import Text

from terrafarm.constants import TERRAFORM_BINARY
from terrafarm.exceptions import ProvisioningError

type LineSink = Callable[[str], None]

_GARBAGE = "\x1b[0m\x1b[0m"

# remote-exec output of each build node gets its own color
_NODE_STYLES = (
    ("-x32 (remote-exec)", "cyan"),
    ("-x48 (remote-exec)", "blue"),
    ("-x64 (remote-exec)", "magenta"),
)


def colorize_line(line: str) -> Text:
    """Console rendering of a terraform output line."""
    line = line.replace(_GARBAGE, "")
    for marker, style in _NODE_STYLES:
        if marker in line:
            return Text(line, style=style)
    return Text(line)


def log_sink(line: str) -> None:
    """Unattended sink: log non-blank lines."""
    line = line.replace(_GARBAGE, "").rstrip()
    if line.strip():
        logger.info(line)


def console_sink(console: Console) -> LineSink:
    """Interactive sink: print every line, colored by build node."""

    def sink(line: str) -> None:
        console.print(Text("  ").append_text(colorize_line(line.rstrip("\n"))), highlight=False)

    return sink


def _drain(stream: IO[str], sink: LineSink) -> None:
    for line in stream:
        try:
            sink(line.rstrip("\n"))
        except Exception as e:  # noqa: BLE001
            # A broken sink must not stop draining, or terraform blocks on a full pipe
            logger.warning(f"Can't process terraform output line: {e}")


def write_var_file(variables: Mapping[str, str], directory: Path | None = None) -> Path:
    """Write variables to a private ``.tfvars.json`` file and return its path."""
    fd, path = tempfile.mkstemp(prefix="terrafarm-", suffix=".tfvars.json", dir=directory)
    try:
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(dict(variables), f)
    except BaseException:
        Path(path).unlink(missing_ok=True)
        raise
    return Path(path)


class TerraformRunner:
    """Invoke terraform actions against a template directory.

    Args:
        unattended: Log output instead of printing it, and disable colors.
        console: Console used in interactive mode.
        binary: Terraform executable.

    Example:
        runner = TerraformRunner(unattended=True)
        runner.destroy(data_dir / "c6-multiarch", prefs.variables(), state_file)
    """

    def __init__(
        self,
        *,
        unattended: bool = False,
        console: Console | None = None,
        binary: str = TERRAFORM_BINARY,
    ) -> None:
        self._unattended = unattended
        self._binary = binary
        self._sink: LineSink = log_sink if unattended else console_sink(console or Console())

    def apply(self, template_dir: Path, variables: Mapping[str, str], state_file: Path) -> None:
        self._run("apply", template_dir, variables, state_file)

    def destroy(self, template_dir: Path, variables: Mapping[str, str], state_file: Path) -> None:
        self._run("destroy", template_dir, variables, state_file)

    def command(self, action: str, var_file: Path, state_file: Path) -> list[str]:
        cmd = [
            self._binary,
            action,
            "-input=false",
            "-auto-approve",
            f"-state={state_file}",
            f"-var-file={var_file}",
        ]
        if self._unattended:
            cmd.append("-no-color")
        return cmd

    def _run(
        self,
        action: str,
        template_dir: Path,
        variables: Mapping[str, str],
        state_file: Path,
    ) -> None:
        var_file = write_var_file(variables)
        try:
            cmd = self.command(action, var_file, state_file)
            logger.debug(f"EXEC → {' '.join(cmd[:2])} (in {template_dir})")

            try:
                proc = subprocess.Popen(
                    cmd,
                    cwd=template_dir,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                )
            except OSError as e:
                raise ProvisioningError(action, None, f"Can't start {self._binary}: {e}") from e

            assert proc.stdout is not None and proc.stderr is not None
            reader = threading.Thread(
                target=_drain,
                args=(proc.stdout, self._sink),
                name=f"terraform-{action}-stdout",
                daemon=True,
            )
            reader.start()

            stderr = proc.stderr.read()
            returncode = proc.wait()
            reader.join()
            proc.stdout.close()
            proc.stderr.close()
        finally:
            var_file.unlink(missing_ok=True)

        if returncode != 0:
            raise ProvisioningError(action, returncode, stderr)

        logger.debug(f"terraform {action} finished")
