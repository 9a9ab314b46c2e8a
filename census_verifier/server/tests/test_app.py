"""HTTP API tests on the trio backend"""

import pytest
import trio
from fastapi.testclient import TestClient
from nacl.signing import SigningKey

from census_verifier.census.attestation import Attestation, AttestationSigner, verify_attestation
from census_verifier.census.hashing import sha256_field_hash
from census_verifier.census.merkle import verify_proof
from census_verifier.census.nullifiers import MemoryNullifierRegistry
from census_verifier.census.snark.mock import MockVerifier, make_mock_proof
from census_verifier.census.verification import ServiceContext, VerificationService
from census_verifier.server.app import create_app
from census_verifier.server.context import Runtime
from census_verifier.server.settings import ServiceSettings
from census_verifier.server.storage import CitizenStore

H = sha256_field_hash
SCOPE = 1


def make_runtime(tmp_path, verification_key=None, signer=True):
    settings = ServiceSettings(data_dir=tmp_path, tree_depth=4)
    context = ServiceContext(
        verifier=MockVerifier(),
        verification_key=verification_key,
        signer=AttestationSigner(SigningKey.generate()) if signer else None,
        hasher=H,
        tree_depth=4,
    )
    store = CitizenStore(settings.citizens_file, depth=4, hasher=H)
    registry = MemoryNullifierRegistry()
    return Runtime(
        settings=settings,
        context=context,
        store=store,
        registry=registry,
        service=VerificationService(context, registry, roots=store),
    )


@pytest.fixture
def runtime(tmp_path):
    return make_runtime(tmp_path, verification_key={"protocol": "mock"})


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime), backend="trio")


def on_event_loop():
    try:
        trio.lowlevel.current_trio_token()
    except RuntimeError:
        return False
    return True


def record_loop_calls(monkeypatch, obj, name, calls):
    original = getattr(obj, name)

    def wrapper(*args, **kwargs):
        calls.append(on_event_loop())
        return original(*args, **kwargs)

    monkeypatch.setattr(obj, name, wrapper)


def proof_payload(root, nullifier_hash=555, signal_hash=777, external_nullifier=SCOPE):
    signals = [int(root), nullifier_hash, signal_hash, external_nullifier]
    return {
        "proof": make_mock_proof(signals),
        "publicSignals": [str(s) for s in signals],
    }


class TestTreeEndpoints:
    def test_empty_root(self, client):
        assert client.get("/root").json() == {"root": "0", "leafCount": 0}

    def test_register_and_root(self, client):
        response = client.post("/citizens", json={"commitment": "11"})
        assert response.status_code == 201
        body = response.json()
        assert body["created"] is True
        assert body["leafIndex"] == 0

        root = client.get("/root").json()
        assert root["leafCount"] == 1
        assert root["root"] == body["root"]

    def test_register_is_idempotent(self, client):
        client.post("/citizens", json={"commitment": "11"})
        response = client.post("/citizens", json={"commitment": "11"})
        assert response.status_code == 200
        assert response.json()["created"] is False
        assert response.json()["leafIndex"] == 0

    def test_register_requires_commitment(self, client):
        response = client.post("/citizens", json={})
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_input"

    def test_register_rejects_bad_json(self, client):
        response = client.post(
            "/citizens", content=b"{", headers={"content-type": "application/json"}
        )
        assert response.status_code == 400

    def test_register_full_tree(self, tmp_path):
        rt = make_runtime(tmp_path)
        rt = Runtime(
            settings=rt.settings,
            context=rt.context,
            store=CitizenStore(None, depth=1, hasher=H),
            registry=rt.registry,
            service=rt.service,
        )
        client = TestClient(create_app(rt), backend="trio")
        client.post("/citizens", json={"commitment": "1"})
        client.post("/citizens", json={"commitment": "2"})
        response = client.post("/citizens", json={"commitment": "3"})
        assert response.status_code == 409
        assert response.json()["code"] == "tree_full"

    def test_proof_by_index(self, client):
        for c in ("11", "22", "33"):
            client.post("/citizens", json={"commitment": c})
        proof = client.get("/proof/1").json()

        assert proof["leafIndex"] == 1
        assert proof["leaf"] == "22"
        assert len(proof["pathElements"]) == 4
        assert proof["root"] == client.get("/root").json()["root"]
        assert verify_proof(
            proof["leaf"], proof["pathElements"], proof["pathIndices"], proof["root"], H
        )

    def test_proof_out_of_bounds(self, client):
        response = client.get("/proof/0")
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_proof_by_commitment(self, client):
        client.post("/citizens", json={"commitment": "11"})
        body = client.get("/proof-by-commitment/11").json()
        assert body["leafIndex"] == 0
        assert body["citizen"]["commitment"] == "11"

    def test_proof_by_unknown_commitment(self, client):
        assert client.get("/proof-by-commitment/99").status_code == 404

    def test_citizens(self, client):
        client.post("/citizens", json={"commitment": "11", "metadata": {"region": "n"}})
        listing = client.get("/citizens").json()
        assert listing["count"] == 1
        assert listing["citizens"][0]["metadata"] == {"region": "n"}
        assert client.get("/citizens/0").json()["commitment"] == "11"
        assert client.get("/citizens/1").status_code == 404

    def test_tree_info(self, client):
        client.post("/citizens", json={"commitment": "11"})
        info = client.get("/tree-info").json()
        assert info == {
            "leafCount": 1,
            "root": client.get("/root").json()["root"],
            "treeDepth": 4,
            "leaves": ["11"],
        }


class TestServiceEndpoints:
    def test_health_ok(self, client, runtime):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["hasVerificationKey"] is True
        assert body["consumedNullifierCount"] == 0
        assert body["verifierPubkey"]

    def test_health_degraded_without_key(self, tmp_path):
        client = TestClient(create_app(make_runtime(tmp_path)), backend="trio")
        body = client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["hasVerificationKey"] is False
        assert body["error"]["code"] == "not_configured"

    def test_verifier_pubkey(self, client, runtime):
        body = client.get("/verifier-pubkey").json()
        assert body["pubkeyBytes"] == list(runtime.context.signer.public_key)
        assert bytes.fromhex(body["pubkeyHex"]) == runtime.context.signer.public_key

    def test_verifier_pubkey_without_signer(self, tmp_path):
        client = TestClient(create_app(make_runtime(tmp_path, signer=False)), backend="trio")
        response = client.get("/verifier-pubkey")
        assert response.status_code == 500
        assert response.json()["code"] == "not_configured"

    def test_stats(self, client):
        stats = client.get("/stats").json()
        assert stats["leafCount"] == 0
        assert stats["consumedNullifiers"] == 0
        assert stats["verifierBackend"] == "mock"
        assert stats["durableRegistry"] is False


class TestVerifyEndpoint:
    """Test POST /verify"""

    def _register(self, client):
        client.post("/citizens", json={"commitment": "11"})
        return client.get("/root").json()["root"]

    def test_valid_proof(self, client, runtime):
        root = self._register(client)
        response = client.post("/verify", json=proof_payload(root))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["verificationTimeMs"] >= 0

        attestation = Attestation.from_dict(body["attestation"])
        assert verify_attestation(
            attestation,
            runtime.context.signer.public_key,
            now=attestation.timestamp,
            expected_root=root,
            expected_external_nullifier=SCOPE,
        )
        assert client.get("/health").json()["consumedNullifierCount"] == 1

    def test_replay(self, client):
        root = self._register(client)
        client.post("/verify", json=proof_payload(root))
        response = client.post("/verify", json=proof_payload(root))

        assert response.status_code == 400
        body = response.json()
        assert body == {
            "success": False,
            "error": "This identity has already submitted a census proof for this scope",
            "code": "nullifier_replay",
        }

    def test_invalid_proof(self, client, runtime):
        root = self._register(client)
        payload = proof_payload(root)
        payload["proof"]["digest"] = "00" * 32

        response = client.post("/verify", json=payload)

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_proof"
        assert runtime.registry.count() == 0

    def test_missing_fields(self, client):
        response = client.post("/verify", json={"proof": {"protocol": "mock"}})
        assert response.status_code == 400
        assert response.json()["error"] == "Missing proof or publicSignals"

    def test_unknown_root(self, client):
        self._register(client)
        response = client.post("/verify", json=proof_payload(12345))
        assert response.status_code == 400
        assert response.json()["code"] == "unknown_root"

    def test_not_configured(self, tmp_path):
        client = TestClient(create_app(make_runtime(tmp_path)), backend="trio")
        response = client.post("/verify", json=proof_payload(1))
        assert response.status_code == 500
        assert response.json()["code"] == "not_configured"


class TestBlockingWork:
    """File and database work runs on worker threads, not the event loop"""

    def test_register_runs_off_loop(self, client, runtime, monkeypatch):
        calls = []
        record_loop_calls(monkeypatch, runtime.store, "register", calls)

        response = client.post("/citizens", json={"commitment": "11"})

        assert response.status_code == 201
        assert calls == [False]
        assert len(runtime.store) == 1

    def test_registry_count_runs_off_loop(self, client, runtime, monkeypatch):
        calls = []
        record_loop_calls(monkeypatch, runtime.registry, "count", calls)

        assert client.get("/health").json()["consumedNullifierCount"] == 0
        assert client.get("/stats").json()["consumedNullifiers"] == 0
        assert calls == [False, False]
