"""
Groth16 verification over BN254 using py_ecc.

Accepts the snarkjs JSON layouts:

- verification key: ``vk_alpha_1``, ``vk_beta_2``, ``vk_gamma_2``,
  ``vk_delta_2`` and ``IC`` (``nPublic + 1`` G1 points)
- proof: ``pi_a`` (G1), ``pi_b`` (G2), ``pi_c`` (G1)

G1 points are ``[x, y, z]`` decimal strings, G2 points ``[[x0, x1],
[y0, y1], [z0, z1]]`` with coefficients in (c0, c1) order, all in
projective coordinates.

The check is ``e(-A, B) · e(alpha, beta) · e(vk_x, gamma) · e(C, delta) == 1``
with ``vk_x = IC[0] + sum(s_i · IC[i+1])``, computed as a product of Miller
loops with a single final exponentiation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Sequence, Tuple

from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    add,
    b,
    b2,
    curve_order,
    field_modulus,
    final_exponentiate,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    pairing,
)

from .base import ProofVerifier

G1Point = Tuple[FQ, FQ, FQ]
G2Point = Tuple[FQ2, FQ2, FQ2]


def _coordinate(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("coordinate must be a number")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        parsed = int(value, 16) if value.lower().startswith("0x") else int(value, 10)
    else:
        raise ValueError(f"coordinate must be a string or int, got {type(value).__name__}")
    if parsed < 0 or parsed >= field_modulus:
        raise ValueError("coordinate outside the base field")
    return parsed


def parse_g1(value: Any) -> G1Point:
    if not isinstance(value, (list, tuple)) or len(value) not in (2, 3):
        raise ValueError("G1 point must be [x, y] or [x, y, z]")
    coords = [_coordinate(c) for c in value]
    if len(coords) == 2:
        coords.append(1)
    point = (FQ(coords[0]), FQ(coords[1]), FQ(coords[2]))
    if not is_on_curve(point, b):
        raise ValueError("G1 point is not on the curve")
    return point


def parse_g2(value: Any) -> G2Point:
    if not isinstance(value, (list, tuple)) or len(value) not in (2, 3):
        raise ValueError("G2 point must be [x, y] or [x, y, z]")
    coords = []
    for pair in value:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValueError("G2 coordinate must be a pair")
        coords.append(FQ2([_coordinate(pair[0]), _coordinate(pair[1])]))
    if len(coords) == 2:
        coords.append(FQ2.one())
    point = (coords[0], coords[1], coords[2])
    if not is_on_curve(point, b2):
        raise ValueError("G2 point is not on the twist curve")
    if not is_inf(multiply(point, curve_order)):
        raise ValueError("G2 point is not in the prime-order subgroup")
    return point


@dataclass(frozen=True)
class PreparedVerificationKey:
    alpha_1: G1Point
    beta_2: G2Point
    gamma_2: G2Point
    delta_2: G2Point
    ic: Tuple[G1Point, ...]

    @property
    def n_public(self) -> int:
        return len(self.ic) - 1


def prepare_verification_key(vk: Mapping[str, Any]) -> PreparedVerificationKey:
    """
    Parse and validate a snarkjs Groth16 verification key.

    Raises:
        ValueError: If the key is not a BN254 Groth16 key or is malformed
    """
    if not isinstance(vk, Mapping):
        raise ValueError("verification key must be a JSON object")
    protocol = vk.get("protocol", "groth16")
    if protocol != "groth16":
        raise ValueError(f"unsupported protocol {protocol!r}")
    curve = vk.get("curve", "bn128")
    if curve not in ("bn128", "bn254", "alt_bn128"):
        raise ValueError(f"unsupported curve {curve!r}")

    try:
        ic = tuple(parse_g1(p) for p in vk["IC"])
        prepared = PreparedVerificationKey(
            alpha_1=parse_g1(vk["vk_alpha_1"]),
            beta_2=parse_g2(vk["vk_beta_2"]),
            gamma_2=parse_g2(vk["vk_gamma_2"]),
            delta_2=parse_g2(vk["vk_delta_2"]),
            ic=ic,
        )
    except KeyError as exc:
        raise ValueError(f"verification key missing {exc.args[0]!r}") from exc

    if not prepared.ic:
        raise ValueError("verification key has no IC points")
    n_public = vk.get("nPublic")
    if n_public is not None and int(n_public) != prepared.n_public:
        raise ValueError("nPublic does not match IC length")
    return prepared


def verify_groth16(
    vk: PreparedVerificationKey,
    public_signals: Sequence[int],
    proof: Mapping[str, Any],
) -> bool:
    """
    Verify a Groth16 proof.

    Returns:
        True if the pairing equation holds

    Raises:
        ValueError: If the proof or signals are malformed
    """
    if len(public_signals) != vk.n_public:
        raise ValueError(
            f"expected {vk.n_public} public signals, got {len(public_signals)}"
        )
    signals = []
    for signal in public_signals:
        value = int(signal)
        if value < 0 or value >= curve_order:
            raise ValueError("public signal outside the scalar field")
        signals.append(value)

    try:
        a = parse_g1(proof["pi_a"])
        b_point = parse_g2(proof["pi_b"])
        c = parse_g1(proof["pi_c"])
    except KeyError as exc:
        raise ValueError(f"proof missing {exc.args[0]!r}") from exc

    vk_x = vk.ic[0]
    for signal, point in zip(signals, vk.ic[1:]):
        if signal:
            vk_x = add(vk_x, multiply(point, signal))

    product = (
        pairing(b_point, neg(a), final_exponentiate=False)
        * pairing(vk.beta_2, vk.alpha_1, final_exponentiate=False)
        * pairing(vk.gamma_2, vk_x, final_exponentiate=False)
        * pairing(vk.delta_2, c, final_exponentiate=False)
    )
    return final_exponentiate(product) == FQ12.one()


class Groth16Verifier(ProofVerifier):
    """snarkjs-compatible Groth16 verifier on BN254."""

    name = "groth16"

    def prepare_verification_key(self, verification_key: Mapping[str, Any]) -> PreparedVerificationKey:
        return prepare_verification_key(verification_key)

    def verify(
        self,
        verification_key: Any,
        public_signals: Sequence[int],
        proof: Mapping[str, Any],
    ) -> bool:
        if not isinstance(verification_key, PreparedVerificationKey):
            verification_key = prepare_verification_key(verification_key)
        if not isinstance(proof, Mapping):
            raise ValueError("proof must be a JSON object")
        protocol = proof.get("protocol", "groth16")
        if protocol != "groth16":
            raise ValueError(f"unsupported proof protocol {protocol!r}")
        return verify_groth16(verification_key, public_signals, proof)

    def get_backend_info(self) -> Dict[str, Any]:
        return {"name": self.name, "curve": "bn128", "library": "py_ecc"}
