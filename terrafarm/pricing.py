"""Farm usage cost estimate."""

from __future__ import annotations

import math
from dataclasses import dataclass

from loguru import logger

from terrafarm.digitalocean.client import DigitalOceanClient, DigitalOceanError


@dataclass(frozen=True, slots=True)
class UsageEstimate:
    """Cost of running a farm.

    DigitalOcean bills droplets per started hour, so partial hours are
    rounded up.
    """

    nodes: int
    hourly_rate: float
    elapsed_seconds: float

    @property
    def billed_hours(self) -> int:
        return max(1, math.ceil(self.elapsed_seconds / 3600))

    @property
    def cost(self) -> float:
        return self.nodes * self.hourly_rate * self.billed_hours

    def __str__(self) -> str:
        return (
            f"${self.cost:.2f} ({self.nodes} x ${self.hourly_rate:.5f}/h x {self.billed_hours}h)"
        )


def estimate_usage(
    client: DigitalOceanClient,
    size: str,
    nodes: int,
    started: float,
    finished: float,
) -> UsageEstimate | None:
    """Estimate the cost of a farm; None if the size price is unknown."""
    try:
        rate = client.size_hourly_price(size)
    except DigitalOceanError as e:
        logger.warning(f"Can't fetch price of {size} droplets: {e}")
        return None

    if rate is None:
        return None

    return UsageEstimate(nodes=nodes, hourly_rate=rate, elapsed_seconds=max(finished - started, 0.0))
