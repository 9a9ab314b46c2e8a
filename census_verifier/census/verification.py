"""
Proof verification service.

Pipeline for one submission:

1. readiness: verification key and signer must be loaded (ConfigError)
2. structure: proof present, exactly four public signals (InputError)
3. binding: root is current or recent, scope matches if pinned (InputError)
4. replay peek: registry read, no write (ReplayError)
5. cryptographic check via the external verifier (CryptoVerificationError)
6. sign the attestation
7. ``try_consume`` on the registry; losing the race is a ReplayError and
   the signed attestation is dropped

``try_consume`` is the last step and the only write, so a failed or
rejected submission never changes state, and two concurrent submissions
with the same nullifier can never both receive an attestation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Sequence

import trio

from .attestation import Attestation, AttestationSigner
from .config import PUBLIC_SIGNAL_COUNT, PUBLIC_SIGNAL_NAMES, ROOT_HISTORY_SIZE, TREE_DEPTH
from .exceptions import (
    CensusError,
    ConfigError,
    CryptoVerificationError,
    InputError,
    InternalError,
    ReplayError,
)
from .field import FieldElement, FieldLike
from .hashing import FieldHasher
from .nullifiers import NullifierKey, NullifierRegistry
from .snark.base import ProofVerifier

logger = logging.getLogger(__name__)


def _short(value: int) -> str:
    text = str(value)
    return text if len(text) <= 20 else text[:20] + "..."


# ============================================================================
# CONTEXT
# ============================================================================


@dataclass(frozen=True)
class ServiceContext:
    """
    Immutable process-wide configuration, built once at startup.

    ``verification_key`` is whatever the verifier's
    ``prepare_verification_key`` returned; None means it failed to load.
    """

    verifier: ProofVerifier
    verification_key: Any = None
    signer: Optional[AttestationSigner] = None
    hasher: Optional[FieldHasher] = None
    tree_depth: int = TREE_DEPTH
    scope: Optional[FieldElement] = None
    root_history_size: int = ROOT_HISTORY_SIZE

    @property
    def has_verification_key(self) -> bool:
        return self.verification_key is not None

    @property
    def ready(self) -> bool:
        return self.verification_key is not None and self.signer is not None

    def missing(self) -> list[str]:
        missing = []
        if self.verification_key is None:
            missing.append("verification key")
        if self.signer is None:
            missing.append("signer keypair")
        return missing

    def require_ready(self) -> None:
        if not self.ready:
            raise ConfigError(f"{' and '.join(self.missing())} not loaded")


# ============================================================================
# INPUT
# ============================================================================


@dataclass(frozen=True)
class PublicSignals:
    """Public inputs in circuit order."""

    root: FieldElement
    nullifier_hash: FieldElement
    signal_hash: FieldElement
    external_nullifier: FieldElement

    @classmethod
    def parse(cls, values: Sequence[FieldLike]) -> "PublicSignals":
        if isinstance(values, (str, bytes, bytearray)) or not isinstance(values, Sequence):
            raise InputError("publicSignals must be a list")
        if len(values) != PUBLIC_SIGNAL_COUNT:
            raise InputError(
                f"publicSignals must have exactly {PUBLIC_SIGNAL_COUNT} entries "
                f"({', '.join(PUBLIC_SIGNAL_NAMES)}), got {len(values)}"
            )
        parsed = []
        for name, value in zip(PUBLIC_SIGNAL_NAMES, values):
            try:
                parsed.append(FieldElement.parse(value))
            except InputError as exc:
                raise InputError(f"invalid {name}: {exc}") from exc
        return cls(*parsed)

    def as_list(self) -> list[int]:
        return [
            int(self.root),
            int(self.nullifier_hash),
            int(self.signal_hash),
            int(self.external_nullifier),
        ]

    @property
    def key(self) -> NullifierKey:
        return NullifierKey(self.external_nullifier, self.nullifier_hash)


@dataclass(frozen=True)
class ProofBundle:
    """A submitted proof with its public signals. Never persisted."""

    proof: Mapping[str, Any]
    public_signals: PublicSignals

    @classmethod
    def from_payload(cls, payload: Any) -> "ProofBundle":
        """
        Validate a ``{proof, publicSignals}`` request body.

        Raises:
            InputError: If either part is missing or malformed
        """
        if not isinstance(payload, Mapping):
            raise InputError("request body must be a JSON object")
        proof = payload.get("proof")
        signals = payload.get("publicSignals")
        if not proof or signals is None or (isinstance(signals, Sequence) and not signals):
            raise InputError("Missing proof or publicSignals")
        if not isinstance(proof, Mapping):
            raise InputError("proof must be a JSON object")
        return cls(proof=proof, public_signals=PublicSignals.parse(signals))


@dataclass(frozen=True)
class VerificationResult:
    attestation: Attestation
    verification_time_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "attestation": self.attestation.to_dict(),
            "verificationTimeMs": self.verification_time_ms,
        }


class RootView(Protocol):
    def is_known_root(self, root: FieldLike) -> bool:
        ...


# ============================================================================
# SERVICE
# ============================================================================


class VerificationService:
    """
    Verifies census proofs and issues attestations.

    Args:
        context: Ready (or not yet ready) service context
        registry: Nullifier registry shared by every request
        roots: Source of acceptable roots; None disables the root check
        clock: Unix time source for attestation timestamps
    """

    def __init__(
        self,
        context: ServiceContext,
        registry: NullifierRegistry,
        roots: Optional[RootView] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._context = context
        self._registry = registry
        self._roots = roots
        self._clock = clock

    @property
    def context(self) -> ServiceContext:
        return self._context

    @property
    def registry(self) -> NullifierRegistry:
        return self._registry

    def verify(self, payload: Any) -> VerificationResult:
        """
        Run the full pipeline for one ``{proof, publicSignals}`` payload.

        Returns:
            VerificationResult with the signed attestation

        Raises:
            ConfigError, InputError, ReplayError, CryptoVerificationError,
            InternalError
        """
        self._context.require_ready()
        bundle = ProofBundle.from_payload(payload)
        signals = bundle.public_signals
        key = signals.key

        logger.info(
            "Verification request root=%s nullifierHash=%s scope=%s",
            _short(signals.root),
            _short(signals.nullifier_hash),
            _short(signals.external_nullifier),
        )

        self._check_binding(signals)

        if self._guard(self._registry.is_consumed, key):
            logger.info("Rejected replay for nullifier %s", _short(signals.nullifier_hash))
            raise ReplayError(
                "This identity has already submitted a census proof for this scope"
            )

        elapsed_ms = self._verify_proof(bundle)

        attestation = self._guard(
            self._context.signer.sign,
            signals.root,
            signals.nullifier_hash,
            signals.external_nullifier,
            signals.signal_hash,
            int(self._clock()),
        )

        if not self._guard(self._registry.try_consume, key):
            logger.warning(
                "Nullifier %s consumed by a concurrent request; dropping attestation",
                _short(signals.nullifier_hash),
            )
            raise ReplayError(
                "This identity has already submitted a census proof for this scope"
            )

        logger.info(
            "Issued attestation for nullifier %s (%d ms)",
            _short(signals.nullifier_hash),
            elapsed_ms,
        )
        return VerificationResult(attestation=attestation, verification_time_ms=elapsed_ms)

    async def verify_async(self, payload: Any) -> VerificationResult:
        """Run ``verify`` on a worker thread so the event loop stays free."""
        return await trio.to_thread.run_sync(self.verify, payload)

    def _check_binding(self, signals: PublicSignals) -> None:
        scope = self._context.scope
        if scope is not None and signals.external_nullifier != scope:
            raise InputError(
                "externalNullifier does not match the current census scope",
                code="scope_mismatch",
            )
        if self._roots is not None and not self._guard(self._roots.is_known_root, signals.root):
            raise InputError(
                "Merkle root is not the current census root", code="unknown_root"
            )

    def _verify_proof(self, bundle: ProofBundle) -> int:
        start = time.perf_counter()
        try:
            valid = self._context.verifier.verify(
                self._context.verification_key,
                bundle.public_signals.as_list(),
                bundle.proof,
            )
        except Exception as exc:
            logger.info("Verifier rejected malformed proof: %s", exc)
            raise CryptoVerificationError(f"Proof verification error: {exc}") from exc
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        if not valid:
            logger.info("Proof failed cryptographic verification (%d ms)", elapsed_ms)
            raise CryptoVerificationError(
                "Invalid ZK proof - cryptographic verification failed"
            )
        return elapsed_ms

    @staticmethod
    def _guard(func: Callable[..., Any], *args: Any) -> Any:
        try:
            return func(*args)
        except CensusError:
            raise
        except Exception as exc:
            logger.exception("Unexpected failure in verification pipeline")
            raise InternalError(str(exc) or type(exc).__name__) from exc
