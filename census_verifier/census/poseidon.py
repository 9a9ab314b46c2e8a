"""
Poseidon hash over the BN254 scalar field, compatible with circomlib.

Parameters for two inputs (width t = 3): x^5 S-box, 8 full rounds and 57
partial rounds. The round constants are regenerated from the Grain LFSR
the Poseidon reference parameters are derived from (field=1, sbox=0,
n=254, t=3, R_F=8, R_P=57); the MDS matrix is circomlib's published one.

Usage:
    poseidon2(1, 2)
    # 7853200120776062878684798364095072458815029376092732009249414926327459813530
"""

from __future__ import annotations

from functools import lru_cache
from typing import Iterator, List, Sequence, Tuple

from .config import FIELD_MODULUS

WIDTH = 3
FULL_ROUNDS = 8
PARTIAL_ROUNDS = 57
ALPHA = 5
FIELD_BITS = 254

# circomlibjs poseidon_constants M for t = 3; mixing is new[i] = sum_j M[i][j] * s[j]
MDS_MATRIX: Tuple[Tuple[int, ...], ...] = (
    (
        0x109B7F411BA0E4C9B2B70CAF5C36A7B194BE7C11AD24378BFEDB68592BA8118B,
        0x16ED41E13BB9C0C66AE119424FDDBCBC9314DC9FDBDEEA55D6C64543DC4903E0,
        0x2B90BBA00FCA0589F617E7DCBFE82E0DF706AB640CEB247B791A93B74E36736D,
    ),
    (
        0x2969F27EED31A480B9C36C764379DBCA2CC8FDD1415C3DDED62940BCDE0BD771,
        0x2E2419F9EC02EC394C9871C832963DC1B89D743C8C7B964029B2311687B1FE23,
        0x101071F0032379B697315876690F053D148D4E109F5FB065C8AACC55A0F89BFA,
    ),
    (
        0x143021EC686A3F330D5F9E654638065CE6CD79E28C5B3753326244EE65A1B1A7,
        0x176CC029695AD02582A70EFF08A6FD99D057E12E58E7D7B6B16CDFABC8EE2911,
        0x19A3FC0A56702BF417BA7FEE3802593FA644470307043F7773279CD71D25D5E0,
    ),
)

_GRAIN_STATE_BITS = 80
_GRAIN_TAPS = (62, 51, 38, 23, 13, 0)


def _grain_seed(field: int, sbox: int, n: int, t: int, r_f: int, r_p: int) -> int:
    # Register position 0 is the first (most significant) bit written.
    bits = "".join(
        (
            format(field, "02b"),
            format(sbox, "04b"),
            format(n, "012b"),
            format(t, "012b"),
            format(r_f, "010b"),
            format(r_p, "010b"),
            "1" * 30,
        )
    )
    state = 0
    for position, bit in enumerate(bits):
        if bit == "1":
            state |= 1 << position
    return state


def _grain_bits(state: int) -> Iterator[int]:
    """Self-shrinking Grain LFSR output."""
    top = _GRAIN_STATE_BITS - 1

    def clock() -> int:
        nonlocal state
        bit = 0
        for tap in _GRAIN_TAPS:
            bit ^= (state >> tap) & 1
        state = (state >> 1) | (bit << top)
        return bit

    for _ in range(160):
        clock()
    while True:
        if clock():
            yield clock()
        else:
            clock()


def _take(bits: Iterator[int], count: int) -> int:
    value = 0
    for _ in range(count):
        value = (value << 1) | next(bits)
    return value


@lru_cache(maxsize=1)
def round_constants() -> Tuple[int, ...]:
    """Additive round constants, ``WIDTH`` per round."""
    bits = _grain_bits(
        _grain_seed(1, 0, FIELD_BITS, WIDTH, FULL_ROUNDS, PARTIAL_ROUNDS)
    )
    constants: List[int] = []
    for _ in range((FULL_ROUNDS + PARTIAL_ROUNDS) * WIDTH):
        value = _take(bits, FIELD_BITS)
        while value >= FIELD_MODULUS:
            value = _take(bits, FIELD_BITS)
        constants.append(value)
    return tuple(constants)


def permute(state: Sequence[int]) -> List[int]:
    """Apply the Poseidon permutation to a width-3 state."""
    if len(state) != WIDTH:
        raise ValueError(f"state must have {WIDTH} elements")
    p = FIELD_MODULUS
    constants = round_constants()
    half_full = FULL_ROUNDS // 2
    current = [int(x) % p for x in state]

    for r in range(FULL_ROUNDS + PARTIAL_ROUNDS):
        current = [(x + constants[r * WIDTH + i]) % p for i, x in enumerate(current)]
        if r < half_full or r >= half_full + PARTIAL_ROUNDS:
            current = [pow(x, ALPHA, p) for x in current]
        else:
            current[0] = pow(current[0], ALPHA, p)
        current = [
            sum(m * x for m, x in zip(row, current)) % p for row in MDS_MATRIX
        ]
    return current


def poseidon2(left: int, right: int) -> int:
    """circomlib ``Poseidon(2)`` of two field elements."""
    for value in (left, right):
        if not 0 <= int(value) < FIELD_MODULUS:
            raise ValueError("Poseidon inputs must be field elements")
    return permute([0, int(left), int(right)])[0]
