"""External proof verifier backends."""

from .base import ProofVerifier

__all__ = ["ProofVerifier"]
