"""
Tests for the Groth16 verifier.

There is no circuit here, so the verification key is synthetic: every
group element is a known multiple of the generator, which makes it
possible to pick a proof that satisfies the pairing equation

    a·b = alpha·beta + vk_x·gamma + c·delta  (mod r)

directly in the exponent.
"""

import pytest
from fastapi.testclient import TestClient
from nacl.signing import SigningKey
from py_ecc.optimized_bn128 import G1, G2, add, curve_order, multiply, neg, normalize

from census_verifier.census.attestation import AttestationSigner, verify_attestation
from census_verifier.census.exceptions import CryptoVerificationError
from census_verifier.census.hashing import sha256_field_hash
from census_verifier.census.nullifiers import MemoryNullifierRegistry
from census_verifier.census.snark.groth16 import (
    Groth16Verifier,
    PreparedVerificationKey,
    parse_g1,
    parse_g2,
    prepare_verification_key,
    verify_groth16,
)
from census_verifier.census.verification import ServiceContext, VerificationService
from census_verifier.server.app import create_app
from census_verifier.server.context import Runtime
from census_verifier.server.settings import ServiceSettings
from census_verifier.server.storage import CitizenStore

R = curve_order
ALPHA, BETA, GAMMA, DELTA = 5, 7, 11, 13
IC = [17, 19, 23, 29, 31]
SIGNALS = [1001, 2002, 3003, 1]


def _coeff(value):
    return value.n if hasattr(value, "n") else int(value)


def g1_json(point):
    x, y = normalize(point)
    return [str(_coeff(x)), str(_coeff(y)), "1"]


def g2_json(point):
    x, y = normalize(point)
    return [
        [str(_coeff(c)) for c in x.coeffs],
        [str(_coeff(c)) for c in y.coeffs],
        ["1", "0"],
    ]


def make_vk():
    return {
        "protocol": "groth16",
        "curve": "bn128",
        "nPublic": len(IC) - 1,
        "vk_alpha_1": g1_json(multiply(G1, ALPHA)),
        "vk_beta_2": g2_json(multiply(G2, BETA)),
        "vk_gamma_2": g2_json(multiply(G2, GAMMA)),
        "vk_delta_2": g2_json(multiply(G2, DELTA)),
        "IC": [g1_json(multiply(G1, k)) for k in IC],
    }


def make_proof(signals, a=3, b=4):
    vk_x = (IC[0] + sum(s * k for s, k in zip(signals, IC[1:]))) % R
    c = (a * b - ALPHA * BETA - vk_x * GAMMA) * pow(DELTA, -1, R) % R
    return {
        "protocol": "groth16",
        "curve": "bn128",
        "pi_a": g1_json(multiply(G1, a)),
        "pi_b": g2_json(multiply(G2, b)),
        "pi_c": g1_json(multiply(G1, c)),
    }


@pytest.fixture(scope="module")
def verifier():
    return Groth16Verifier()


@pytest.fixture(scope="module")
def prepared_vk(verifier):
    return verifier.prepare_verification_key(make_vk())


@pytest.fixture(scope="module")
def valid_proof():
    return make_proof(SIGNALS)


class TestPointParsing:
    def test_g1_round_trip(self):
        point = multiply(G1, 9)
        assert normalize(parse_g1(g1_json(point))) == normalize(point)

    def test_g1_affine_form_accepted(self):
        assert parse_g1(g1_json(G1)[:2])

    def test_g1_off_curve_rejected(self):
        with pytest.raises(ValueError, match="not on the curve"):
            parse_g1(["1", "3", "1"])

    def test_g1_malformed_rejected(self):
        with pytest.raises(ValueError):
            parse_g1(["1"])
        with pytest.raises(ValueError):
            parse_g1(["x", "2", "1"])

    def test_g2_off_curve_rejected(self):
        with pytest.raises(ValueError):
            parse_g2([["1", "0"], ["2", "0"], ["1", "0"]])


class TestPrepareVerificationKey:
    def test_prepared(self, prepared_vk):
        assert isinstance(prepared_vk, PreparedVerificationKey)
        assert prepared_vk.n_public == 4

    def test_rejects_other_protocol(self):
        with pytest.raises(ValueError, match="unsupported protocol"):
            prepare_verification_key({**make_vk(), "protocol": "plonk"})

    def test_rejects_n_public_mismatch(self):
        with pytest.raises(ValueError, match="nPublic"):
            prepare_verification_key({**make_vk(), "nPublic": 3})

    def test_rejects_missing_field(self):
        vk = make_vk()
        del vk["vk_delta_2"]
        with pytest.raises(ValueError, match="vk_delta_2"):
            prepare_verification_key(vk)


class TestVerify:
    """Test the pairing check"""

    def test_accepts_valid_proof(self, verifier, prepared_vk, valid_proof):
        assert verifier.verify(prepared_vk, SIGNALS, valid_proof) is True

    def test_rejects_tampered_signal(self, verifier, prepared_vk, valid_proof):
        tampered = list(SIGNALS)
        tampered[1] += 1
        assert verifier.verify(prepared_vk, tampered, valid_proof) is False

    def test_rejects_tampered_proof(self, prepared_vk, valid_proof):
        forged = dict(valid_proof)
        forged["pi_c"] = g1_json(add(parse_g1(valid_proof["pi_c"]), G1))
        assert verify_groth16(prepared_vk, SIGNALS, forged) is False

    def test_rejects_wrong_signal_count(self, verifier, prepared_vk, valid_proof):
        with pytest.raises(ValueError, match="public signals"):
            verifier.verify(prepared_vk, SIGNALS[:3], valid_proof)

    def test_rejects_signal_outside_field(self, verifier, prepared_vk, valid_proof):
        with pytest.raises(ValueError, match="scalar field"):
            verifier.verify(prepared_vk, [R] + SIGNALS[1:], valid_proof)

    def test_rejects_missing_proof_part(self, verifier, prepared_vk, valid_proof):
        proof = dict(valid_proof)
        del proof["pi_b"]
        with pytest.raises(ValueError, match="pi_b"):
            verifier.verify(prepared_vk, SIGNALS, proof)

    def test_rejects_other_proof_protocol(self, verifier, prepared_vk, valid_proof):
        with pytest.raises(ValueError, match="protocol"):
            verifier.verify(prepared_vk, SIGNALS, {**valid_proof, "protocol": "plonk"})

    def test_negated_a_is_rejected(self, prepared_vk, valid_proof):
        forged = dict(valid_proof)
        forged["pi_a"] = g1_json(neg(parse_g1(valid_proof["pi_a"])))
        assert verify_groth16(prepared_vk, SIGNALS, forged) is False


def test_backend_info(verifier):
    info = verifier.get_backend_info()
    assert info["name"] == "groth16"
    assert info["curve"] == "bn128"


def flip_last_digit(proof, part, coordinate):
    tampered = dict(proof)
    tampered[part] = list(proof[part])
    digits = tampered[part][coordinate]
    tampered[part][coordinate] = digits[:-1] + str((int(digits[-1]) + 1) % 10)
    return tampered


def payload(proof, signals=SIGNALS):
    return {"proof": proof, "publicSignals": [str(s) for s in signals]}


@pytest.fixture
def groth16_context(verifier, prepared_vk):
    return ServiceContext(
        verifier=verifier,
        verification_key=prepared_vk,
        signer=AttestationSigner(SigningKey.generate()),
        hasher=sha256_field_hash,
    )


class TestVerificationPipeline:
    """Test the verification service with real pairing checks"""

    @pytest.mark.parametrize("part, coordinate", [("pi_a", 0), ("pi_c", 1)])
    def test_tampered_digit_consumes_nothing(
        self, groth16_context, valid_proof, part, coordinate
    ):
        registry = MemoryNullifierRegistry()
        service = VerificationService(groth16_context, registry)

        with pytest.raises(CryptoVerificationError) as exc_info:
            service.verify(payload(flip_last_digit(valid_proof, part, coordinate)))

        assert exc_info.value.code == "invalid_proof"
        assert registry.count() == 0

        result = service.verify(payload(valid_proof))
        assert registry.count() == 1
        assert verify_attestation(
            result.attestation,
            groth16_context.signer.public_key,
            now=result.attestation.timestamp,
            expected_root=SIGNALS[0],
            expected_external_nullifier=SIGNALS[3],
        )

    def test_tampered_signal_consumes_nothing(self, groth16_context, valid_proof):
        registry = MemoryNullifierRegistry()
        service = VerificationService(groth16_context, registry)
        signals = list(SIGNALS)
        signals[2] += 1

        with pytest.raises(CryptoVerificationError):
            service.verify(payload(valid_proof, signals))
        assert registry.count() == 0

    def test_verify_endpoint(self, groth16_context, valid_proof, tmp_path):
        registry = MemoryNullifierRegistry()
        runtime = Runtime(
            settings=ServiceSettings(data_dir=tmp_path, verifier_backend="groth16"),
            context=groth16_context,
            store=CitizenStore(None, depth=4, hasher=sha256_field_hash),
            registry=registry,
            service=VerificationService(groth16_context, registry),
        )
        client = TestClient(create_app(runtime), backend="trio")

        response = client.post("/verify", json=payload(flip_last_digit(valid_proof, "pi_a", 0)))
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_proof"
        assert registry.count() == 0

        response = client.post("/verify", json=payload(valid_proof))
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert registry.count() == 1

        response = client.post("/verify", json=payload(valid_proof))
        assert response.json()["code"] == "nullifier_replay"
