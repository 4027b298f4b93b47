"""DigitalOcean API client wrapper using pydo SDK.

Validation calls return a tri-state ValidationStatus instead of a boolean,
because "could not reach the API" must not be confused with "definitely
invalid".
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from azure.core.exceptions import AzureError, HttpResponseError
from loguru import logger
from pydo import Client

from terrafarm.exceptions import TerrafarmError

_AUTH_FAILURE_CODES = frozenset({401, 403})
_PAGE_SIZE = 200


class ValidationStatus(StrEnum):
    OK = "ok"
    NOT_OK = "not-ok"
    ERROR = "error"


class DigitalOceanError(TerrafarmError):
    """Error from DigitalOcean API."""


@dataclass(frozen=True, slots=True)
class Droplet:
    id: int
    name: str


def get_client(token: str) -> Client:
    """Create authenticated pydo client.

    Args:
        token: DigitalOcean API token.

    Returns:
        Authenticated pydo Client instance.
    """
    return Client(token=token)


class DigitalOceanClient:
    """Synchronous DigitalOcean capability used by status and destroy.

    Example:
        client = DigitalOceanClient(token)
        if client.validate_region("fra1") is ValidationStatus.NOT_OK:
            ...
    """

    def __init__(self, token: str, client: Client | None = None) -> None:
        self._client = client if client is not None else get_client(token)

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_token(self) -> ValidationStatus:
        """Check that the token is accepted and the account is active."""
        return self._validate(
            "token",
            lambda: self._client.account.get(),
            lambda resp: (resp.get("account") or {}).get("status") == "active",
        )

    def validate_fingerprint(self, fingerprint: str) -> ValidationStatus:
        """Check that a key with this fingerprint is registered on the account."""
        return self._validate(
            "fingerprint",
            lambda: self._client.ssh_keys.list(per_page=_PAGE_SIZE),
            lambda resp: any(k.get("fingerprint") == fingerprint for k in resp.get("ssh_keys", [])),
        )

    def validate_region(self, slug: str) -> ValidationStatus:
        return self._validate(
            "region",
            lambda: self._client.regions.list(per_page=_PAGE_SIZE),
            lambda resp: any(r.get("slug") == slug for r in resp.get("regions", [])),
        )

    def validate_size(self, slug: str) -> ValidationStatus:
        return self._validate(
            "size",
            lambda: self._client.sizes.list(per_page=_PAGE_SIZE),
            lambda resp: any(s.get("slug") == slug for s in resp.get("sizes", [])),
        )

    def _validate(
        self,
        what: str,
        fetch: Callable[[], dict[str, Any]],
        check: Callable[[dict[str, Any]], bool],
    ) -> ValidationStatus:
        try:
            resp = fetch()
        except HttpResponseError as e:
            if e.status_code in _AUTH_FAILURE_CODES:
                return ValidationStatus.NOT_OK
            logger.warning(f"Can't validate {what}: {e}")
            return ValidationStatus.ERROR
        except AzureError as e:
            logger.warning(f"Can't reach DigitalOcean API to validate {what}: {e}")
            return ValidationStatus.ERROR

        return ValidationStatus.OK if check(resp) else ValidationStatus.NOT_OK

    # =========================================================================
    # Sizes
    # =========================================================================

    def size_hourly_price(self, slug: str) -> float | None:
        """Hourly price of a droplet size, None if unknown."""
        try:
            resp = self._client.sizes.list(per_page=_PAGE_SIZE)
        except AzureError as e:
            raise DigitalOceanError(f"Failed to list sizes: {e}") from e

        for size in resp.get("sizes", []):
            if size.get("slug") == slug:
                price = size.get("price_hourly")
                return float(price) if price is not None else None
        return None

    # =========================================================================
    # Droplet Management
    # =========================================================================

    def list_farm_droplets(self, prefix: str) -> list[Droplet]:
        """List droplets whose name starts with prefix (case-insensitive)."""
        droplets: list[Droplet] = []
        page = 1

        try:
            while True:
                resp = self._client.droplets.list(page=page, per_page=_PAGE_SIZE)
                droplets.extend(
                    Droplet(id=int(d["id"]), name=d.get("name", ""))
                    for d in resp.get("droplets", [])
                    if d.get("name", "").lower().startswith(prefix.lower())
                )

                pages = (resp.get("links") or {}).get("pages") or {}
                if not pages.get("next"):
                    break
                page += 1
        except AzureError as e:
            raise DigitalOceanError(f"Failed to list droplets: {e}") from e

        return droplets

    def destroy_droplet(self, droplet: Droplet) -> None:
        try:
            self._client.droplets.destroy(droplet_id=droplet.id)
        except AzureError as e:
            raise DigitalOceanError(f"Can't destroy droplet {droplet.name}: {e}") from e

    def destroy_farm_droplets(self, prefix: str) -> list[Droplet]:
        """Destroy every droplet matching prefix and return what was destroyed."""
        droplets = self.list_farm_droplets(prefix)
        for droplet in droplets:
            logger.info(f"Destroying droplet {droplet.name} ({droplet.id})")
            self.destroy_droplet(droplet)
        return droplets


__all__ = [
    "DigitalOceanClient",
    "DigitalOceanError",
    "Droplet",
    "ValidationStatus",
    "get_client",
]
