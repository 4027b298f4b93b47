"""Duration parsing and formatting."""

from __future__ import annotations

import re
import time

_DURATION_PATTERN = re.compile(
    r"(?:(\d+)\s*w)?\s*(?:(\d+)\s*d)?\s*(?:(\d+)\s*h)?\s*(?:(\d+)\s*m)?\s*(?:(\d+)\s*s)?$",
    re.IGNORECASE,
)

_UNITS = (
    ("week", 604800),
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
)


def parse_duration(value: str) -> int:
    """Parse a human-readable duration string into seconds.

    Supports plain integers (treated as seconds) and combinations of
    weeks (w), days (d), hours (h), minutes (m) and seconds (s).
    Examples: '300', '3h', '90m', '1h30m', '2d', '1w2d'.

    Raises:
        ValueError: If the string is not a duration.
    """
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"Invalid duration: '{value}' (empty string)")

    if stripped.isdigit():
        return int(stripped)

    match = _DURATION_PATTERN.match(stripped)
    if match is None or match.group(0) == "":
        raise ValueError(f"Invalid duration: '{value}'. Expected format like '3h', '90m', '1h30m', '2d'.")

    weeks, days, hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
    return weeks * 604800 + days * 86400 + hours * 3600 + minutes * 60 + seconds


def pretty_duration(seconds: int | float) -> str:
    """Format seconds as '2 hours 5 minutes'. Values under a second become '< 1 second'."""
    remaining = int(seconds)
    if remaining <= 0:
        return "< 1 second"

    parts: list[str] = []
    for name, size in _UNITS:
        count, remaining = divmod(remaining, size)
        if count:
            parts.append(f"{count} {name}" + ("" if count == 1 else "s"))
    return " ".join(parts)


def format_timestamp(timestamp: int | float) -> str:
    return time.strftime("%Y/%m/%d %H:%M:%S", time.localtime(timestamp))
