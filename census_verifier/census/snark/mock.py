"""
Mock verifier for tests and local development.

WARNING: a mock proof is a digest of the public signals; anyone can make
one. Never select this backend where attestations are trusted.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict, Mapping, Sequence

from .base import ProofVerifier

_DOMAIN = b"ZK_CENSUS_MOCK_PROOF_V1"


def _digest(public_signals: Sequence[int]) -> str:
    payload = ",".join(str(int(s)) for s in public_signals).encode("ascii")
    return hashlib.sha256(_DOMAIN + payload).hexdigest()


def make_mock_proof(public_signals: Sequence[int]) -> Dict[str, Any]:
    """Build a proof the mock verifier accepts for these signals."""
    return {"protocol": "mock", "digest": _digest(public_signals)}


class MockVerifier(ProofVerifier):
    """Accepts proofs produced by ``make_mock_proof``."""

    name = "mock"

    def verify(
        self,
        verification_key: Any,
        public_signals: Sequence[int],
        proof: Mapping[str, Any],
    ) -> bool:
        if verification_key is None:
            raise ValueError("verification key required")
        if not isinstance(proof, Mapping) or proof.get("protocol") != "mock":
            raise ValueError("not a mock proof")
        digest = proof.get("digest")
        if not isinstance(digest, str):
            raise ValueError("mock proof digest must be a string")
        return hmac.compare_digest(digest, _digest(public_signals))

    def get_backend_info(self) -> Dict[str, Any]:
        return {"name": self.name, "warning": "testing only"}
