"""
HTTP API for the census verifier.

Usage:
    runtime = build_runtime(load_settings())
    app = create_app(runtime)
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict

import trio
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from nacl.encoding import Base64Encoder, HexEncoder

from .. import __version__
from ..census.exceptions import CensusError, ConfigError, InputError, LeafIndexError
from .context import Runtime

logger = logging.getLogger(__name__)


def _error_response(exc: CensusError) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": exc.message, "code": exc.code}
    if exc.retryable:
        body["retryable"] = True
    return JSONResponse(body, status_code=exc.status)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise InputError("request body must be valid JSON") from exc


def create_app(runtime: Runtime) -> FastAPI:
    """Build the FastAPI app around a started runtime."""
    app = FastAPI(title="census-verifier", version=__version__)
    app.state.runtime = runtime

    store = runtime.store
    context = runtime.context
    registry = runtime.registry

    @app.exception_handler(CensusError)
    async def census_error_handler(request: Request, exc: CensusError):
        if exc.status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return _error_response(exc)

    @app.get("/root")
    async def merkle_root():
        return {"root": str(store.root), "leafCount": len(store)}

    @app.get("/proof/{leaf_index}")
    async def merkle_proof(leaf_index: int):
        return store.proof(leaf_index).to_dict()

    @app.get("/proof-by-commitment/{commitment}")
    async def merkle_proof_by_commitment(commitment: str):
        citizen = store.find(commitment)
        if citizen is None:
            raise LeafIndexError("Commitment not found")
        proof = store.proof(citizen.leaf_index).to_dict()
        proof["citizen"] = citizen.to_dict()
        return proof

    @app.get("/citizens")
    async def list_citizens():
        citizens = store.citizens()
        return {"citizens": [c.to_dict() for c in citizens], "count": len(citizens)}

    @app.get("/citizens/{index}")
    async def get_citizen(index: int):
        return store.get(index).to_dict()

    @app.post("/citizens")
    async def register_citizen(request: Request):
        data = await _json_body(request)
        if not isinstance(data, dict) or not data.get("commitment"):
            raise InputError("Missing commitment")
        metadata = data.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise InputError("metadata must be an object")

        citizen, created = await trio.to_thread.run_sync(
            store.register, data["commitment"], metadata
        )
        return JSONResponse(
            {
                "success": True,
                "created": created,
                "leafIndex": citizen.leaf_index,
                "root": str(store.root),
                "citizen": citizen.to_dict(),
            },
            status_code=201 if created else 200,
        )

    @app.get("/tree-info")
    async def tree_info():
        return store.snapshot().to_dict()

    @app.get("/health")
    async def health():
        body: Dict[str, Any] = {
            "status": "ok",
            "timestamp": int(time.time() * 1000),
            "verifierPubkey": None,
            "hasVerificationKey": context.has_verification_key,
            "consumedNullifierCount": None,
            "leafCount": len(store),
        }
        if context.signer is not None:
            body["verifierPubkey"] = context.signer.verify_key.encode(Base64Encoder).decode("ascii")
        try:
            context.require_ready()
            body["consumedNullifierCount"] = await trio.to_thread.run_sync(registry.count)
        except CensusError as exc:
            body["status"] = "degraded"
            body["error"] = exc.to_dict()
        return body

    @app.get("/verifier-pubkey")
    async def verifier_pubkey():
        if context.signer is None:
            raise ConfigError("signer keypair not loaded")
        verify_key = context.signer.verify_key
        return {
            "pubkey": verify_key.encode(Base64Encoder).decode("ascii"),
            "pubkeyHex": verify_key.encode(HexEncoder).decode("ascii"),
            "pubkeyBytes": list(bytes(verify_key)),
        }

    @app.post("/verify")
    async def verify(request: Request):
        payload = await _json_body(request)
        result = await runtime.service.verify_async(payload)
        return result.to_dict()

    @app.get("/stats")
    async def stats():
        try:
            consumed = await trio.to_thread.run_sync(registry.count)
        except CensusError as exc:
            logger.warning("Nullifier registry unavailable for stats, reporting 0: %s", exc)
            consumed = 0
        return {
            "leafCount": len(store),
            "root": str(store.root),
            "treeDepth": store.tree.depth,
            "recentRoots": len(store.tree.recent_roots()),
            "consumedNullifiers": consumed,
            "verifierBackend": context.verifier.name,
            "durableRegistry": bool(getattr(registry, "durable", False)),
            "ready": context.ready,
        }

    return app
