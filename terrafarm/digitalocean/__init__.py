"""DigitalOcean capability for terrafarm.

Example:
    from terrafarm.digitalocean import DigitalOceanClient, ValidationStatus

    client = DigitalOceanClient(token)
    client.validate_token() is ValidationStatus.OK
"""

from terrafarm.digitalocean.client import (
    DigitalOceanClient,
    DigitalOceanError,
    Droplet,
    ValidationStatus,
)
from terrafarm.digitalocean.ssh import compute_fingerprint, read_fingerprint

__all__ = [
    "DigitalOceanClient",
    "DigitalOceanError",
    "Droplet",
    "ValidationStatus",
    "compute_fingerprint",
    "read_fingerprint",
]
