"""
Field elements of the BN254 scalar field and their byte encoding.

Values arrive as decimal strings (snarkjs), hex strings, ints or raw
little-endian bytes. Everything is range checked on the way in; nothing is
silently reduced or truncated.
"""

from __future__ import annotations

from typing import Union

from .config import FIELD_ELEMENT_BYTES, FIELD_MODULUS, U256_LIMIT
from .exceptions import FieldEncodingError, InputError

FieldLike = Union[int, str, bytes, bytearray, "FieldElement"]


class FieldElement(int):
    """
    Integer constrained to ``[0, FIELD_MODULUS)``.

    Arithmetic helpers reduce explicitly modulo the field; plain ``int``
    operators keep their unbounded semantics and return ``int``.

    Example:
        >>> x = FieldElement.parse("12345")
        >>> x.to_bytes32().hex()[:6]
        '393000'
    """

    def __new__(cls, value: int) -> "FieldElement":
        if isinstance(value, bool) or not isinstance(value, int):
            raise InputError(f"field element must be an integer, got {type(value).__name__}")
        if value < 0 or value >= FIELD_MODULUS:
            raise InputError("value is outside the scalar field")
        return super().__new__(cls, value)

    @classmethod
    def reduce(cls, value: int) -> "FieldElement":
        """Map an arbitrary integer into the field."""
        return cls(value % FIELD_MODULUS)

    @classmethod
    def parse(cls, value: FieldLike) -> "FieldElement":
        """
        Parse a field element from an int, decimal/hex string or 32 LE bytes.

        Raises:
            InputError: If the value is malformed or outside the field
        """
        if isinstance(value, FieldElement):
            return value
        if isinstance(value, (bytes, bytearray)):
            return cls(decode_u256_le(bytes(value)))
        if isinstance(value, str):
            text = value.strip()
            if not text:
                raise InputError("empty field element")
            try:
                if text.lower().startswith("0x"):
                    parsed = int(text, 16)
                else:
                    if not text.isdigit():
                        raise ValueError(text)
                    parsed = int(text, 10)
            except ValueError as exc:
                raise InputError(f"malformed field element: {value!r}") from exc
            return cls(parsed)
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        raise InputError(f"unsupported field element type: {type(value).__name__}")

    def add(self, other: int) -> "FieldElement":
        return FieldElement((int(self) + int(other)) % FIELD_MODULUS)

    def mul(self, other: int) -> "FieldElement":
        return FieldElement((int(self) * int(other)) % FIELD_MODULUS)

    def to_bytes32(self) -> bytes:
        return encode_u256_le(int(self))

    def __repr__(self) -> str:
        return f"FieldElement({int(self)})"

    def __str__(self) -> str:
        return str(int(self))


def encode_u256_le(value: int) -> bytes:
    """
    Encode a non-negative integer as exactly 32 little-endian bytes.

    Args:
        value: Integer in [0, 2^256)

    Returns:
        32-byte little-endian encoding

    Raises:
        FieldEncodingError: If the value is negative or needs more than 256 bits
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise FieldEncodingError(f"expected an integer, got {type(value).__name__}")
    if value < 0:
        raise FieldEncodingError("negative values cannot be encoded")
    if value >= U256_LIMIT:
        raise FieldEncodingError("value does not fit in 256 bits")

    out = bytearray(FIELD_ELEMENT_BYTES)
    remaining = value
    for i in range(FIELD_ELEMENT_BYTES):
        out[i] = remaining & 0xFF
        remaining >>= 8
    return bytes(out)


def decode_u256_le(data: bytes) -> int:
    """Decode exactly 32 little-endian bytes into an integer."""
    if not isinstance(data, (bytes, bytearray)):
        raise FieldEncodingError("encoded value must be bytes")
    if len(data) != FIELD_ELEMENT_BYTES:
        raise FieldEncodingError(
            f"encoded value must be {FIELD_ELEMENT_BYTES} bytes, got {len(data)}"
        )
    return int.from_bytes(bytes(data), "little")
