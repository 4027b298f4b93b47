"""SSH public key fingerprints in DigitalOcean format."""

from __future__ import annotations

import base64
import binascii
import hashlib
from pathlib import Path


def compute_fingerprint(public_key: str) -> str:
    """Compute MD5 fingerprint of an SSH public key.

    This matches the format used by DigitalOcean (colon-separated MD5).

    Args:
        public_key: The public key content (e.g., "ssh-rsa AAAA... user@host")

    Returns:
        Fingerprint in format "aa:bb:cc:dd:..."

    Raises:
        ValueError: If the key can't be parsed.
    """
    # Extract the base64-encoded key data (second field)
    parts = public_key.split()
    if len(parts) < 2:
        raise ValueError(f"Invalid SSH public key format: {public_key[:50]}...")

    try:
        decoded = base64.b64decode(parts[1], validate=True)
    except binascii.Error as e:
        raise ValueError(f"Could not decode SSH key: {e}") from e

    md5_hash = hashlib.md5(decoded).hexdigest()

    return ":".join(md5_hash[i : i + 2] for i in range(0, len(md5_hash), 2))


def read_fingerprint(public_key_path: str | Path) -> str:
    """Read a public key file and return its fingerprint.

    Raises:
        OSError: If the file can't be read.
        ValueError: If the key can't be parsed.
    """
    return compute_fingerprint(Path(public_key_path).read_text().strip())
