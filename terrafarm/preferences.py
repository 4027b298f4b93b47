"""Farm preferences record.

Preferences are resolved once per run (see terrafarm.config) and never
mutated afterwards; redacted copies are what gets persisted in the farm
state file.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

from passlib.hash import sha512_crypt

from terrafarm.constants import PASSWORD_HASH_ROUNDS, TOKEN_LENGTH

_TOKEN_MASK = "X" * (TOKEN_LENGTH - 16)


@dataclass(frozen=True, slots=True)
class Preferences:
    """Farm preferences.

    Attributes:
        ttl: Farm time to live in minutes, 0 disables the monitor.
        max_wait: Grace period in minutes for active builds, 0 disables it.
        output: Path of the node list export, empty to skip it.
        token: DigitalOcean API token.
        key: Path to the private SSH key; the public key is ``<key>.pub``.
        fingerprint: MD5 fingerprint of the public key.
        region: DigitalOcean region slug.
        node_size: DigitalOcean droplet size slug.
        user: Build node user name.
        password: Build node user password.
        template: Name of the template directory in the data dir.
    """

    ttl: int = 0
    max_wait: int = 0
    output: str = ""
    token: str = ""
    key: str = ""
    fingerprint: str = ""
    region: str = ""
    node_size: str = ""
    user: str = ""
    password: str = ""
    template: str = ""

    @property
    def public_key(self) -> str:
        return self.key + ".pub"

    @property
    def masked_token(self) -> str:
        """First and last 8 characters of the token, for display."""
        if len(self.token) != TOKEN_LENGTH:
            return ""
        return f"{self.token[:8]}...{self.token[-8:]}"

    def redacted(self) -> Preferences:
        """Copy safe to persist: token middle masked, password dropped."""
        token = ""
        if len(self.token) == TOKEN_LENGTH:
            token = self.token[:8] + _TOKEN_MASK + self.token[-8:]
        return replace(self, token=token, password="")

    def matches_redacted_token(self, redacted_token: str) -> bool:
        return self.redacted().token == redacted_token

    def template_dir(self, data_dir: Path) -> Path:
        return data_dir / self.template

    def variables(self) -> dict[str, str]:
        """Terraform input variables for this farm."""
        auth = sha512_crypt.using(rounds=PASSWORD_HASH_ROUNDS).hash(self.password)

        result = {
            "token": self.token,
            "auth": auth,
            "fingerprint": self.fingerprint,
            "key": self.key,
            "user": self.user,
            "password": self.password,
        }

        if self.region:
            result["region"] = self.region

        if self.node_size:
            result["node_size"] = self.node_size

        return result

    def validate(self, data_dir: Path) -> list[str]:
        """Return every problem with these preferences, empty if none."""
        errors: list[str] = []

        if not self.token:
            errors.append("Property token must be set")
        elif len(self.token) != TOKEN_LENGTH:
            errors.append("Property token is misformatted")

        if not self.region:
            errors.append("Property region must be set")

        if not self.node_size:
            errors.append("Property node-size must be set")

        if not self.user:
            errors.append("Property user must be set")

        if not self.key:
            errors.append("Property key must be set")
        else:
            errors.extend(_check_key_file(Path(self.key), "Private"))
            errors.extend(_check_key_file(Path(self.public_key), "Public"))

        if not self.template:
            errors.append("Property template must be set")
        else:
            errors.extend(_check_template_dir(self.template_dir(data_dir), self.template))

        return errors

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Preferences:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def _check_key_file(path: Path, kind: str) -> list[str]:
    if not path.exists():
        return [f"{kind} key file {path} does not exist"]

    errors = []
    if not os.access(path, os.R_OK):
        errors.append(f"{kind} key file {path} must be readable")
    if path.is_file() and path.stat().st_size == 0:
        errors.append(f"{kind} key file {path} does not contain any data")
    return errors


def _check_template_dir(path: Path, template: str) -> list[str]:
    if not path.exists():
        return [f"Directory with template {template} does not exist"]

    if not path.is_dir():
        return [f"Target {path} is not a directory"]

    if not os.access(path, os.R_OK | os.X_OK):
        return [f"Directory with template {template} is not readable"]

    if not any(path.iterdir()):
        return [f"Directory with template {template} is empty"]

    return []
