"""
Two-input field hash used by the commitment tree and identity model.

Exactly one hasher is designated per deployment; the tree root, identity
commitments and nullifier hashes must all use it, and it must match the
hash inside the membership circuit. The default is circomlib Poseidon;
``sha256`` exists for tests and tooling that never meets a circuit, and any
``module:callable`` import path can be plugged in.
"""

from __future__ import annotations

import hashlib
import importlib
from typing import Callable, Final

from .config import DEFAULT_HASHER, FIELD_ELEMENT_BYTES, FIELD_MODULUS

FieldHasher = Callable[[int, int], int]

HASHER_REGISTRY: Final[dict[str, str]] = {
    "poseidon": "census_verifier.census.poseidon.poseidon2",
    "sha256": "census_verifier.census.hashing.sha256_field_hash",
}


def sha256_field_hash(left: int, right: int) -> int:
    """
    Hash two field elements with SHA-256 and reduce into the field.

    Args:
        left: Left input in [0, FIELD_MODULUS)
        right: Right input in [0, FIELD_MODULUS)

    Returns:
        Integer in [0, FIELD_MODULUS)

    Note:
        Fixed-width big-endian input encoding keeps the hash deterministic
        across implementations.
    """
    h = hashlib.sha256()
    for value in (left, right):
        h.update(int(value).to_bytes(FIELD_ELEMENT_BYTES, "big", signed=False))
    return int.from_bytes(h.digest(), "big") % FIELD_MODULUS


def sha256_to_field(*parts: bytes) -> int:
    """Hash arbitrary byte strings into the field."""
    h = hashlib.sha256()
    for part in parts:
        h.update(part)
    return int.from_bytes(h.digest(), "big") % FIELD_MODULUS


def _format_valid_options() -> str:
    return ", ".join(sorted(HASHER_REGISTRY.keys()))


def _import_callable(import_path: str) -> FieldHasher:
    if ":" in import_path:
        module_path, _, attr = import_path.partition(":")
    else:
        module_path, _, attr = import_path.rpartition(".")
    if not module_path or not attr:
        raise ValueError(f"Invalid hasher import path: {import_path!r}")

    try:
        module = importlib.import_module(module_path)
    except ModuleNotFoundError as exc:
        raise ImportError(f"Unable to import hasher module {module_path!r}") from exc

    try:
        hasher = getattr(module, attr)
    except AttributeError as exc:
        raise ImportError(
            f"Hasher {attr!r} not found in module {module_path!r}"
        ) from exc

    if not callable(hasher):
        raise TypeError(f"Hasher reference {import_path!r} is not callable")
    return hasher


def load_hasher(name: str | None = None) -> FieldHasher:
    """
    Resolve a hasher by registry name or ``module:callable`` path.

    Args:
        name: Registry name or import path. Defaults to Poseidon.

    Returns:
        Two-input field hash.

    Raises:
        ValueError: If the name is neither registered nor an import path.
        ImportError: If the hasher cannot be imported.
    """
    resolved = name or DEFAULT_HASHER
    if resolved in HASHER_REGISTRY:
        return _import_callable(HASHER_REGISTRY[resolved])
    if "." in resolved or ":" in resolved:
        return _import_callable(resolved)
    raise ValueError(
        f"Invalid hasher name: {resolved!r}. Valid options: {_format_valid_options()}"
    )
