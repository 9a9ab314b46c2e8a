"""Interface for external proof verifiers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Sequence


class ProofVerifier(ABC):
    """
    Cryptographic proof verifier.

    ``verify`` returns a boolean for well-formed inputs and may raise on
    malformed ones; callers treat both a False result and an exception as
    a failed verification.
    """

    name: str = "abstract"

    def prepare_verification_key(self, verification_key: Mapping[str, Any]) -> Any:
        """Parse a verification key once at startup. Defaults to identity."""
        return verification_key

    @abstractmethod
    def verify(
        self,
        verification_key: Any,
        public_signals: Sequence[int],
        proof: Mapping[str, Any],
    ) -> bool:
        ...

    def get_backend_info(self) -> Dict[str, Any]:
        return {"name": self.name}
