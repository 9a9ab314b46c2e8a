"""Public API for the census protocol core.

Everything a verifier deployment or a client needs to build trees,
derive identities, verify proofs and check attestations. HTTP and storage
concerns live in ``census_verifier.server``.
"""
from __future__ import annotations

from .attestation import (
    Attestation,
    AttestationSigner,
    decode_attestation_message,
    encode_attestation_message,
    scope_to_external_nullifier,
    verify_attestation,
)
from .exceptions import (
    CensusError,
    ConfigError,
    CryptoVerificationError,
    InputError,
    InternalError,
    ReplayError,
)
from .factory import get_verifier
from .field import FieldElement, decode_u256_le, encode_u256_le
from .hashing import load_hasher
from .identity import Identity, commitment, derive_identity, nullifier_hash, signal_hash
from .merkle import (
    IncrementalMerkleTree,
    MerkleProof,
    MerkleSnapshot,
    build_proof,
    compute_root,
    verify_proof,
)
from .nullifiers import (
    MemoryNullifierRegistry,
    NullifierKey,
    NullifierRegistry,
    SqlNullifierRegistry,
    registry_from_url,
)
from .verification import ServiceContext, VerificationResult, VerificationService

__all__ = [
    "Attestation",
    "AttestationSigner",
    "decode_attestation_message",
    "encode_attestation_message",
    "scope_to_external_nullifier",
    "verify_attestation",
    "CensusError",
    "ConfigError",
    "CryptoVerificationError",
    "InputError",
    "InternalError",
    "ReplayError",
    "get_verifier",
    "FieldElement",
    "decode_u256_le",
    "encode_u256_le",
    "load_hasher",
    "Identity",
    "commitment",
    "derive_identity",
    "nullifier_hash",
    "signal_hash",
    "IncrementalMerkleTree",
    "MerkleProof",
    "MerkleSnapshot",
    "build_proof",
    "compute_root",
    "verify_proof",
    "MemoryNullifierRegistry",
    "NullifierKey",
    "NullifierRegistry",
    "SqlNullifierRegistry",
    "registry_from_url",
    "ServiceContext",
    "VerificationResult",
    "VerificationService",
]
