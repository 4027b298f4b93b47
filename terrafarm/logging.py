"""Logging configuration for terrafarm.

Structured logging via loguru. Logging is disabled by default (library
behavior) and enabled by the CLI: interactive commands log warnings to
stderr, while the detached monitor writes everything to ``monitor.log``
in the data directory, since it has no terminal.

Example:
    from terrafarm.logging import LogConfig, _setup_logging

    handler_ids = _setup_logging(LogConfig(file="/var/lib/terrafarm/monitor.log"))
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from loguru import logger

logger.disable("terrafarm")

type LogLevel = Literal["DEBUG", "AUX", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Auxiliary messages (banners, separators, subprocess chatter) sit between
# DEBUG and INFO.
AUX_LEVEL = "AUX"
AUX_LEVEL_NO = 15

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<level>{message}</level>"
)

FILE_FORMAT = "{time:YYYY/MM/DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum console log level.
        file: Path to log file. If provided, everything is written there.
        console: Whether to log to stderr.
        rotation: File rotation policy (e.g., "10 MB", "1 week").
        retention: Number of old log files to keep.
    """

    level: LogLevel = "WARNING"
    file: str | None = None
    console: bool = True
    rotation: str = "10 MB"
    retention: int = 5


def _ensure_aux_level() -> None:
    try:
        logger.level(AUX_LEVEL)
    except ValueError:
        logger.level(AUX_LEVEL, no=AUX_LEVEL_NO, color="<dim>")


def aux(message: str, *args: object, **kwargs: object) -> None:
    """Log an auxiliary message (separators, banners)."""
    _ensure_aux_level()
    logger.opt(depth=1).log(AUX_LEVEL, message, *args, **kwargs)


def _setup_logging(config: LogConfig) -> list[int]:
    """Configure logging and return handler IDs for cleanup.

    Args:
        config: Logging configuration.

    Returns:
        List of handler IDs that were added (for later removal).
    """
    # Drop loguru's default stderr handler, it ignores our filter
    logger.remove()
    _ensure_aux_level()
    logger.enable("terrafarm")
    handler_ids: list[int] = []

    if config.console:
        hid = logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter="terrafarm",
        )
        handler_ids.append(hid)

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        hid = logger.add(
            config.file,
            level="DEBUG",
            format=FILE_FORMAT,
            rotation=config.rotation,
            retention=config.retention,
            diagnose=False,  # Don't expose tokens in tracebacks
            enqueue=False,
            filter="terrafarm",
        )
        handler_ids.append(hid)

    return handler_ids


def _teardown_logging(handler_ids: list[int]) -> None:
    """Remove handlers and disable logging.

    Args:
        handler_ids: List of handler IDs to remove.
    """
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("terrafarm")
