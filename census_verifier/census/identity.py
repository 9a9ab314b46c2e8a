"""
Identity, commitment and nullifier derivation.

An identity is a pair of private field elements. Only its commitment
``H(nullifier, trapdoor)`` is ever published (as a tree leaf); per scope the
holder reveals ``H(scope, nullifier)``, which is unique per identity and
scope but unlinkable across scopes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .config import DOMAIN_SEPARATORS
from .field import FieldElement, FieldLike
from .hashing import FieldHasher, load_hasher, sha256_to_field
from .security import RandomnessSource, default_randomness


@dataclass(frozen=True)
class Identity:
    """
    Private identity secrets. Never persisted server-side.

    Attributes:
        nullifier: identityNullifier, feeds per-scope nullifier hashes
        trapdoor: identityTrapdoor, blinds the commitment
    """

    nullifier: FieldElement
    trapdoor: FieldElement

    def __post_init__(self) -> None:
        object.__setattr__(self, "nullifier", FieldElement.parse(self.nullifier))
        object.__setattr__(self, "trapdoor", FieldElement.parse(self.trapdoor))

    def __repr__(self) -> str:
        return "Identity(nullifier=<hidden>, trapdoor=<hidden>)"

    @classmethod
    def generate(cls, rng: Optional[RandomnessSource] = None) -> "Identity":
        """Sample both secrets uniformly from the scalar field."""
        rng = rng or default_randomness()
        return cls(
            nullifier=FieldElement(rng.get_random_field_element()),
            trapdoor=FieldElement(rng.get_random_field_element()),
        )

    def commitment(self, hasher: Optional[FieldHasher] = None) -> FieldElement:
        return commitment(self, hasher)

    def nullifier_hash(
        self, scope: FieldLike, hasher: Optional[FieldHasher] = None
    ) -> FieldElement:
        return nullifier_hash(scope, self.nullifier, hasher)

    def to_dict(self) -> dict:
        return {
            "identityNullifier": str(self.nullifier),
            "identityTrapdoor": str(self.trapdoor),
        }


def commitment(identity: Identity, hasher: Optional[FieldHasher] = None) -> FieldElement:
    """Public leaf value ``H(identityNullifier, identityTrapdoor)``."""
    hasher = hasher or load_hasher()
    return FieldElement(hasher(int(identity.nullifier), int(identity.trapdoor)))


def nullifier_hash(
    scope: FieldLike,
    identity_nullifier: FieldLike,
    hasher: Optional[FieldHasher] = None,
) -> FieldElement:
    """Per-scope replay key ``H(externalNullifier, identityNullifier)``."""
    hasher = hasher or load_hasher()
    scope_value = FieldElement.parse(scope)
    secret = FieldElement.parse(identity_nullifier)
    return FieldElement(hasher(int(scope_value), int(secret)))


def _as_bytes(value: Union[str, bytes, bytearray]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def derive_identity(
    seed: Union[str, bytes, bytearray],
    account: str,
    salt: Union[str, bytes, bytearray, None] = None,
) -> Identity:
    """
    Deterministically derive identity secrets from issuance material.

    The same seed (e.g. an upstream identity attestation commitment) and
    account always give the same identity; the optional salt rotates the
    trapdoor without changing the nullifier.

    Args:
        seed: Issuance attestation bytes or hex string
        account: Account the identity is bound to
        salt: Optional trapdoor salt

    Returns:
        Derived Identity
    """
    if isinstance(seed, str):
        text = seed[2:] if seed.startswith("0x") else seed
        try:
            seed_bytes = bytes.fromhex(text)
        except ValueError:
            seed_bytes = seed.encode("utf-8")
    else:
        seed_bytes = bytes(seed)
    if not seed_bytes:
        raise ValueError("seed cannot be empty")
    if not account:
        raise ValueError("account cannot be empty")

    account_bytes = account.encode("utf-8")
    salt_bytes = _as_bytes(salt) if salt else b""

    nullifier = sha256_to_field(
        seed_bytes, account_bytes, DOMAIN_SEPARATORS["identity_nullifier"]
    )
    trapdoor = sha256_to_field(
        salt_bytes or account_bytes,
        seed_bytes,
        DOMAIN_SEPARATORS["identity_trapdoor"],
    )
    return Identity(nullifier=FieldElement(nullifier), trapdoor=FieldElement(trapdoor))


def signal_hash(signal: Union[str, bytes, bytearray]) -> FieldElement:
    """Map an arbitrary signal to a field element."""
    return FieldElement(sha256_to_field(DOMAIN_SEPARATORS["signal"], _as_bytes(signal)))
