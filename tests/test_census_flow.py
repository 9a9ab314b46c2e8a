"""
End-to-end census flow against a runtime built from settings.

Registration, inclusion proof, proof submission, attestation check by a
consumer, and replay protection surviving a restart.
"""
import base64
import json

import pytest
from fastapi.testclient import TestClient

from census_verifier.census.attestation import Attestation, verify_attestation
from census_verifier.census.exceptions import AttestationMismatchError
from census_verifier.census.hashing import sha256_field_hash
from census_verifier.census.identity import derive_identity, signal_hash
from census_verifier.census.merkle import verify_proof
from census_verifier.census.snark.mock import make_mock_proof
from census_verifier.server.app import create_app
from census_verifier.server.context import build_runtime
from census_verifier.server.settings import load_settings

SCOPE = 1


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("CENSUS_CONFIG", "CENSUS_HASHER", "CENSUS_VERIFIER_BACKEND", "CENSUS_REGISTRY_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "verification_key.json").write_text(json.dumps({"protocol": "mock"}))
    return load_settings(
        env={},
        data_dir=data_dir,
        verifier_backend="mock",
        hasher="sha256",
        tree_depth=8,
        scope=SCOPE,
    )


def start(settings):
    runtime = build_runtime(settings)
    return runtime, TestClient(create_app(runtime), backend="trio")


def submit(client, identity, commitment, vote="yes"):
    proof = client.get(f"/proof-by-commitment/{commitment}").json()
    signals = [
        int(proof["root"]),
        int(identity.nullifier_hash(SCOPE, sha256_field_hash)),
        int(signal_hash(vote)),
        SCOPE,
    ]
    return client.post(
        "/verify",
        json={"proof": make_mock_proof(signals), "publicSignals": [str(s) for s in signals]},
    )


class TestCensusFlow:
    def test_first_start_creates_keypair(self, settings):
        runtime, client = start(settings)

        assert settings.signer_keypair_path.exists()
        health = client.get("/health").json()
        assert health["status"] == "ok"
        assert health["consumedNullifierCount"] == 0
        assert runtime.registry.durable

    def test_register_prove_and_attest(self, settings):
        runtime, client = start(settings)
        alice = derive_identity("0xa11ce0", "alice")
        bob = derive_identity("0xb0b0", "bob")
        alice_commitment = str(alice.commitment(sha256_field_hash))
        bob_commitment = str(bob.commitment(sha256_field_hash))

        client.post("/citizens", json={"commitment": alice_commitment})
        client.post("/citizens", json={"commitment": bob_commitment})

        proof = client.get(f"/proof-by-commitment/{bob_commitment}").json()
        assert verify_proof(
            proof["leaf"],
            proof["pathElements"],
            proof["pathIndices"],
            proof["root"],
            sha256_field_hash,
        )

        response = submit(client, bob, bob_commitment)
        assert response.status_code == 200, response.json()

        pubkey = base64.b64decode(client.get("/verifier-pubkey").json()["pubkey"])
        attestation = Attestation.from_dict(response.json()["attestation"])
        root = client.get("/root").json()["root"]
        assert verify_attestation(
            attestation,
            pubkey,
            now=attestation.timestamp + 1,
            expected_root=root,
            expected_external_nullifier=SCOPE,
        )
        with pytest.raises(AttestationMismatchError):
            verify_attestation(
                attestation, pubkey, now=attestation.timestamp, expected_external_nullifier=SCOPE + 1
            )

    def test_one_vote_per_identity_per_scope(self, settings):
        runtime, client = start(settings)
        carol = derive_identity("0xca401", "carol")
        commitment = str(carol.commitment(sha256_field_hash))
        client.post("/citizens", json={"commitment": commitment})

        assert submit(client, carol, commitment, "yes").status_code == 200
        second = submit(client, carol, commitment, "no")

        assert second.status_code == 400
        assert second.json()["code"] == "nullifier_replay"
        assert runtime.registry.count() == 1

    def test_state_survives_restart(self, settings):
        runtime, client = start(settings)
        dave = derive_identity("0xda7e", "dave")
        commitment = str(dave.commitment(sha256_field_hash))
        client.post("/citizens", json={"commitment": commitment})
        assert submit(client, dave, commitment).status_code == 200
        pubkey = client.get("/verifier-pubkey").json()["pubkey"]
        root = client.get("/root").json()["root"]

        _, restarted = start(settings)

        assert restarted.get("/verifier-pubkey").json()["pubkey"] == pubkey
        assert restarted.get("/root").json()["root"] == root
        replay = submit(restarted, dave, commitment)
        assert replay.status_code == 400
        assert replay.json()["code"] == "nullifier_replay"

    def test_proof_against_stale_tree_rejected_after_history(self, settings):
        small = load_settings(
            env={},
            data_dir=settings.data_dir,
            verifier_backend="mock",
            hasher="sha256",
            tree_depth=8,
            scope=SCOPE,
            root_history_size=1,
        )
        _, client = start(small)
        erin = derive_identity("0xe714", "erin")
        commitment = str(erin.commitment(sha256_field_hash))
        client.post("/citizens", json={"commitment": commitment})
        proof = client.get(f"/proof-by-commitment/{commitment}").json()

        client.post("/citizens", json={"commitment": "12345"})

        signals = [
            int(proof["root"]),
            int(erin.nullifier_hash(SCOPE, sha256_field_hash)),
            int(signal_hash("yes")),
            SCOPE,
        ]
        response = client.post(
            "/verify",
            json={"proof": make_mock_proof(signals), "publicSignals": [str(s) for s in signals]},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "unknown_root"

    def test_degraded_without_verification_key(self, settings):
        settings.vk_path.unlink()
        _, client = start(settings)

        assert client.get("/health").json()["status"] == "degraded"
        response = client.post("/verify", json={"proof": {}, "publicSignals": []})
        assert response.status_code == 500
        assert response.json()["code"] == "not_configured"
