"""
Verifier signing keypair on disk.

The file is a JSON array of the 64-byte Ed25519 secret key (32-byte seed
followed by the 32-byte public key), the layout ledger tooling expects.
It is created on first start with owner-only permissions.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from nacl.encoding import Base64Encoder
from nacl.signing import SigningKey

from ..census.exceptions import ConfigError

logger = logging.getLogger(__name__)

SEED_BYTES = 32
SECRET_KEY_BYTES = 64


def encode_keypair(signing_key: SigningKey) -> list[int]:
    """64-byte secret key as a list of ints."""
    return list(bytes(signing_key) + bytes(signing_key.verify_key))


def decode_keypair(data: object) -> SigningKey:
    """
    Rebuild a signing key from its JSON array form.

    A bare 32-byte seed is accepted too.

    Raises:
        ConfigError: If the array is malformed or the embedded public key
            does not match the seed
    """
    if not isinstance(data, list) or len(data) not in (SEED_BYTES, SECRET_KEY_BYTES):
        raise ConfigError("keypair must be a JSON array of 32 or 64 bytes")
    if not all(isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255 for b in data):
        raise ConfigError("keypair entries must be integers in [0, 255]")

    raw = bytes(data)
    signing_key = SigningKey(raw[:SEED_BYTES])
    if len(raw) == SECRET_KEY_BYTES and raw[SEED_BYTES:] != bytes(signing_key.verify_key):
        raise ConfigError("keypair public key does not match its seed")
    return signing_key


def write_keypair(path: Path, signing_key: SigningKey) -> None:
    """Write the keypair with mode 0600, refusing to overwrite."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        json.dump(encode_keypair(signing_key), fh)


def load_signing_key(path: Path) -> SigningKey:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as exc:
        raise ConfigError(f"cannot read keypair {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"keypair {path} is not valid JSON: {exc}") from exc
    return decode_keypair(data)


def load_or_create_signing_key(path: Path) -> SigningKey:
    """
    Load the verifier keypair, generating it on first start.

    Args:
        path: Location of verifier-keypair.json

    Returns:
        SigningKey

    Raises:
        ConfigError: If an existing file cannot be used
    """
    path = Path(path)
    if path.exists():
        signing_key = load_signing_key(path)
        logger.info(
            "Loaded verifier keypair %s",
            signing_key.verify_key.encode(Base64Encoder).decode("ascii"),
        )
        return signing_key

    signing_key = SigningKey.generate()
    try:
        write_keypair(path, signing_key)
    except OSError as exc:
        raise ConfigError(f"cannot write keypair {path}: {exc}") from exc
    logger.warning(
        "Generated new verifier keypair %s at %s",
        signing_key.verify_key.encode(Base64Encoder).decode("ascii"),
        path,
    )
    return signing_key
