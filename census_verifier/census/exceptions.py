"""
Custom exceptions for the census verifier.

Every error surfaced to a caller carries a stable machine-readable ``code``
and the HTTP status the API maps it to. ``retryable`` tells the caller
whether resubmitting the same request can succeed.
"""


class CensusError(Exception):
    """Base exception for census verifier errors."""

    code = "census_error"
    status = 500
    retryable = False

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message}


class InputError(CensusError):
    """Missing or malformed proof or public signals."""

    code = "invalid_input"
    status = 400


class ConfigError(CensusError):
    """Verification key or signer keypair not loaded."""

    code = "not_configured"
    status = 500


class ReplayError(CensusError):
    """Nullifier already consumed for this scope."""

    code = "nullifier_replay"
    status = 400


class CryptoVerificationError(CensusError):
    """Proof is structurally invalid or fails the cryptographic check."""

    code = "invalid_proof"
    status = 400


class InternalError(CensusError):
    """Unexpected failure, e.g. storage I/O."""

    code = "internal_error"
    status = 500
    retryable = True


class FieldEncodingError(InputError):
    """Value does not fit the fixed-width field encoding."""

    code = "field_encoding"


class LeafIndexError(InputError, IndexError):
    """Leaf index outside the populated part of the tree."""

    code = "leaf_index_out_of_bounds"
    status = 404


class TreeFullError(CensusError):
    """Merkle tree reached its 2^depth capacity."""

    code = "tree_full"
    status = 409


class DuplicateLeafError(InputError):
    """Commitment is already a leaf of the tree."""

    code = "duplicate_commitment"
    status = 409


class AttestationError(CensusError):
    """Attestation failed a consumer-side check."""

    code = "invalid_attestation"
    status = 400


class AttestationSignatureError(AttestationError):
    """Signature does not match the message and signer key."""

    code = "invalid_attestation_signature"


class AttestationExpiredError(AttestationError):
    """Attestation timestamp is outside the freshness window."""

    code = "attestation_expired"


class AttestationMismatchError(AttestationError):
    """Attestation is bound to a different root or scope."""

    code = "attestation_mismatch"
