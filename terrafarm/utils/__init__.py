"""Utils module - concurrency and time helpers."""

from terrafarm.utils.conc import map_async
from terrafarm.utils.timeutil import format_timestamp, parse_duration, pretty_duration

__all__ = [
    # Concurrency
    "map_async",
    # Time
    "parse_duration",
    "pretty_duration",
    "format_timestamp",
]
