"""
Randomness for identity secrets.

Secrets must carry full field entropy: a weak source breaks unlinkability
and makes commitments guessable.
"""

from __future__ import annotations

import os
import secrets

from .config import FIELD_MODULUS


class RandomnessSource:
    """
    Cryptographically secure randomness with fork detection.

    Prevents randomness reuse if the process forks after the source was
    created.

    Example:
        >>> rng = RandomnessSource()
        >>> secret = rng.get_random_field_element()
    """

    def __init__(self):
        self._pid = os.getpid()
        self._rng = secrets.SystemRandom()

    def _check_fork(self) -> None:
        if os.getpid() != self._pid:
            self.__init__()

    def get_random_scalar(self, max_value: int) -> int:
        """
        Get random scalar in [0, max_value).

        Args:
            max_value: Upper bound (exclusive), must be > 1

        Returns:
            Random scalar in [0, max_value)
        """
        if max_value <= 1:
            raise ValueError(f"max_value must be > 1, got {max_value}")
        self._check_fork()
        return self._rng.randrange(0, max_value)

    def get_random_bytes(self, n: int) -> bytes:
        """Get n cryptographically secure random bytes."""
        self._check_fork()
        return secrets.token_bytes(n)

    def get_random_field_element(self) -> int:
        """Uniform element of the BN254 scalar field."""
        return self.get_random_scalar(FIELD_MODULUS)


_default_source: RandomnessSource | None = None


def default_randomness() -> RandomnessSource:
    global _default_source
    if _default_source is None:
        _default_source = RandomnessSource()
    return _default_source
