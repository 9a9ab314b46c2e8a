"""
Signed attestations of successful proof verification.

A downstream consumer checks one Ed25519 signature over a fixed 136-byte
message instead of re-running the Groth16 verifier:

    timestamp (u64 LE, 8) || root (32) || nullifierHash (32)
        || externalNullifier (32) || signalHash (32)

Field elements are encoded as 32 little-endian bytes.
"""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from nacl.encoding import Base64Encoder, HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .config import (
    ATTESTATION_MAX_AGE_SECONDS,
    ATTESTATION_MESSAGE_BYTES,
    FIELD_ELEMENT_BYTES,
    PUBLIC_KEY_BYTES,
    SIGNATURE_BYTES,
    TIMESTAMP_BYTES,
)
from .exceptions import (
    AttestationError,
    AttestationExpiredError,
    AttestationMismatchError,
    AttestationSignatureError,
    FieldEncodingError,
)
from .field import FieldElement, FieldLike, decode_u256_le, encode_u256_le

_TIMESTAMP_FORMAT = "<Q"


def encode_attestation_message(
    timestamp: int,
    root: int,
    nullifier_hash: int,
    external_nullifier: int,
    signal_hash: int,
) -> bytes:
    """
    Build the 136-byte message that is signed.

    Raises:
        FieldEncodingError: If the timestamp is not a u64 or a field value
            does not fit in 256 bits
    """
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise FieldEncodingError("timestamp must be an integer")
    if timestamp < 0 or timestamp >= 1 << 64:
        raise FieldEncodingError("timestamp does not fit in 64 bits")

    message = b"".join(
        (
            struct.pack(_TIMESTAMP_FORMAT, timestamp),
            encode_u256_le(int(root)),
            encode_u256_le(int(nullifier_hash)),
            encode_u256_le(int(external_nullifier)),
            encode_u256_le(int(signal_hash)),
        )
    )
    return message


def decode_attestation_message(message: bytes) -> Dict[str, int]:
    """Split a 136-byte message back into its fields."""
    if len(message) != ATTESTATION_MESSAGE_BYTES:
        raise FieldEncodingError(
            f"attestation message must be {ATTESTATION_MESSAGE_BYTES} bytes"
        )
    (timestamp,) = struct.unpack(_TIMESTAMP_FORMAT, message[:TIMESTAMP_BYTES])
    fields = []
    offset = TIMESTAMP_BYTES
    for _ in range(4):
        fields.append(decode_u256_le(message[offset : offset + FIELD_ELEMENT_BYTES]))
        offset += FIELD_ELEMENT_BYTES
    root, nullifier_hash, external_nullifier, signal_hash = fields
    return {
        "timestamp": timestamp,
        "root": root,
        "nullifierHash": nullifier_hash,
        "externalNullifier": external_nullifier,
        "signalHash": signal_hash,
    }


def scope_to_external_nullifier(scope: int) -> FieldElement:
    """
    External nullifier for an integer census scope.

    The ledger stores the scope as a u64 and compares it against the first
    eight little-endian bytes of the 32-byte externalNullifier, i.e. the
    integer value itself.
    """
    if isinstance(scope, bool) or not isinstance(scope, int) or scope < 0 or scope >= 1 << 64:
        raise FieldEncodingError("scope must be a u64")
    return FieldElement(scope)


@dataclass(frozen=True)
class Attestation:
    """Signed statement that a census proof was verified."""

    timestamp: int
    root: FieldElement
    nullifier_hash: FieldElement
    external_nullifier: FieldElement
    signal_hash: FieldElement
    signature: bytes
    signer_public_key: bytes
    message: bytes

    def expected_message(self) -> bytes:
        return encode_attestation_message(
            self.timestamp,
            self.root,
            self.nullifier_hash,
            self.external_nullifier,
            self.signal_hash,
        )

    def to_dict(self) -> Dict[str, Any]:
        verify_key = VerifyKey(self.signer_public_key)
        return {
            "timestamp": self.timestamp,
            "merkleRoot": str(self.root),
            "nullifierHash": str(self.nullifier_hash),
            "externalNullifier": str(self.external_nullifier),
            "signalHash": str(self.signal_hash),
            "signature": list(self.signature),
            "signatureBase64": Base64Encoder.encode(self.signature).decode("ascii"),
            "verifierPubkey": verify_key.encode(Base64Encoder).decode("ascii"),
            "verifierPubkeyHex": verify_key.encode(HexEncoder).decode("ascii"),
            "verifierPubkeyBytes": list(self.signer_public_key),
            "message": list(self.message),
            "rootBytes": list(encode_u256_le(int(self.root))),
            "nullifierHashBytes": list(encode_u256_le(int(self.nullifier_hash))),
            "externalNullifierBytes": list(encode_u256_le(int(self.external_nullifier))),
            "signalHashBytes": list(encode_u256_le(int(self.signal_hash))),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attestation":
        """
        Rebuild an attestation from its JSON form.

        Raises:
            AttestationError: If required fields are missing or malformed
        """
        try:
            signature = bytes(data["signature"])
            public_key = bytes(data["verifierPubkeyBytes"])
            message = bytes(data["message"])
            return cls(
                timestamp=int(data["timestamp"]),
                root=FieldElement.parse(data["merkleRoot"]),
                nullifier_hash=FieldElement.parse(data["nullifierHash"]),
                external_nullifier=FieldElement.parse(data["externalNullifier"]),
                signal_hash=FieldElement.parse(data["signalHash"]),
                signature=signature,
                signer_public_key=public_key,
                message=message,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise AttestationError(f"malformed attestation: {exc}") from exc


class AttestationSigner:
    """
    Ed25519 signer held by the verifier service.

    Example:
        >>> signer = AttestationSigner(SigningKey.generate())
        >>> att = signer.sign(root=1, nullifier_hash=2,
        ...                   external_nullifier=3, signal_hash=4)
        >>> len(att.message)
        136
    """

    def __init__(self, signing_key: SigningKey) -> None:
        if not isinstance(signing_key, SigningKey):
            raise TypeError("signing_key must be a nacl.signing.SigningKey")
        self._signing_key = signing_key

    @property
    def verify_key(self) -> VerifyKey:
        return self._signing_key.verify_key

    @property
    def public_key(self) -> bytes:
        return bytes(self._signing_key.verify_key)

    def sign(
        self,
        root: FieldLike,
        nullifier_hash: FieldLike,
        external_nullifier: FieldLike,
        signal_hash: FieldLike,
        timestamp: Optional[int] = None,
    ) -> Attestation:
        """
        Sign an attestation over the given public signals.

        Args:
            timestamp: Unix seconds; defaults to now

        Returns:
            Attestation carrying the detached signature and raw message
        """
        if timestamp is None:
            timestamp = int(time.time())
        fields = (
            FieldElement.parse(root),
            FieldElement.parse(nullifier_hash),
            FieldElement.parse(external_nullifier),
            FieldElement.parse(signal_hash),
        )
        message = encode_attestation_message(timestamp, *fields)
        signature = self._signing_key.sign(message).signature
        return Attestation(
            timestamp=timestamp,
            root=fields[0],
            nullifier_hash=fields[1],
            external_nullifier=fields[2],
            signal_hash=fields[3],
            signature=bytes(signature),
            signer_public_key=self.public_key,
            message=message,
        )


def verify_attestation(
    attestation: Attestation,
    public_key: bytes,
    *,
    now: Optional[int] = None,
    max_age_seconds: int = ATTESTATION_MAX_AGE_SECONDS,
    expected_root: Optional[FieldLike] = None,
    expected_external_nullifier: Optional[FieldLike] = None,
) -> bool:
    """
    Consumer-side attestation check.

    Recomputes the message from the attestation fields, checks it matches
    the message that was returned, verifies the signature against the
    independently obtained verifier key, and enforces the freshness
    window. Replay tracking of the nullifier is the consumer's job.

    Args:
        attestation: Attestation to check
        public_key: Trusted 32-byte verifier public key
        now: Current unix time (defaults to time.time())
        max_age_seconds: Freshness window
        expected_root: Root the consumer currently accepts
        expected_external_nullifier: Scope the consumer currently counts

    Returns:
        True when every check passes

    Raises:
        AttestationSignatureError: Bad signature, key or message
        AttestationExpiredError: Timestamp outside the window
        AttestationMismatchError: Root or scope mismatch
    """
    if len(public_key) != PUBLIC_KEY_BYTES:
        raise AttestationSignatureError("verifier public key must be 32 bytes")
    if len(attestation.signature) != SIGNATURE_BYTES:
        raise AttestationSignatureError("signature must be 64 bytes")
    if bytes(attestation.signer_public_key) != bytes(public_key):
        raise AttestationSignatureError("attestation was signed by an unknown verifier")

    message = attestation.expected_message()
    if message != attestation.message:
        raise AttestationSignatureError("message does not match attestation fields")

    try:
        VerifyKey(bytes(public_key)).verify(message, bytes(attestation.signature))
    except BadSignatureError as exc:
        raise AttestationSignatureError("signature verification failed") from exc

    current = int(time.time()) if now is None else int(now)
    age = current - attestation.timestamp
    if age < 0 or age >= max_age_seconds:
        raise AttestationExpiredError(f"attestation age {age}s outside window")

    if expected_root is not None and attestation.root != FieldElement.parse(expected_root):
        raise AttestationMismatchError("attestation root does not match current root")
    if expected_external_nullifier is not None and (
        attestation.external_nullifier != FieldElement.parse(expected_external_nullifier)
    ):
        raise AttestationMismatchError("attestation scope does not match current scope")

    return True
