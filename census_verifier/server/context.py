"""
Startup phase: turn settings into a ready service.

Everything is loaded once here and handed to request handlers as immutable
objects. A missing verification key does not abort startup; the service
comes up degraded and ``/verify`` answers with ConfigError until it is
restarted with a key in place.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..census.attestation import AttestationSigner, scope_to_external_nullifier
from ..census.exceptions import CensusError, ConfigError
from ..census.factory import get_verifier
from ..census.hashing import load_hasher
from ..census.nullifiers import NullifierRegistry, registry_from_url
from ..census.snark.base import ProofVerifier
from ..census.verification import ServiceContext, VerificationService
from .keystore import load_or_create_signing_key
from .settings import ServiceSettings
from .storage import CitizenStore

logger = logging.getLogger(__name__)


def load_verification_key(settings: ServiceSettings, verifier: ProofVerifier) -> Optional[Any]:
    """Read and prepare the verification key; None if unavailable."""
    path = settings.vk_path
    if not path.exists():
        logger.warning("Verification key not found at %s; /verify is disabled", path)
        return None
    try:
        with open(path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
        prepared = verifier.prepare_verification_key(raw)
    except (OSError, ValueError) as exc:
        logger.error("Cannot load verification key %s: %s", path, exc)
        return None
    logger.info("Loaded %s verification key from %s", verifier.name, path)
    return prepared


def load_context(settings: ServiceSettings) -> ServiceContext:
    """
    Build the immutable service context.

    Raises:
        ConfigError: If the backend, hasher or signer keypair is unusable
    """
    try:
        verifier = get_verifier(settings.verifier_backend)
        hasher = load_hasher(settings.hasher)
    except (ValueError, ImportError, TypeError) as exc:
        raise ConfigError(str(exc)) from exc

    signer = AttestationSigner(load_or_create_signing_key(settings.signer_keypair_path))
    scope = scope_to_external_nullifier(settings.scope) if settings.scope is not None else None

    return ServiceContext(
        verifier=verifier,
        verification_key=load_verification_key(settings, verifier),
        signer=signer,
        hasher=hasher,
        tree_depth=settings.tree_depth,
        scope=scope,
        root_history_size=settings.root_history_size,
    )


@dataclass
class Runtime:
    """Everything a running verifier needs."""

    settings: ServiceSettings
    context: ServiceContext
    store: CitizenStore
    registry: NullifierRegistry
    service: VerificationService


def build_runtime(settings: ServiceSettings) -> Runtime:
    context = load_context(settings)
    store = CitizenStore(
        settings.citizens_file,
        depth=context.tree_depth,
        hasher=context.hasher,
        root_history_size=context.root_history_size,
    )
    try:
        registry = registry_from_url(settings.nullifier_registry_url)
    except CensusError:
        raise
    except Exception as exc:
        raise ConfigError(f"cannot open nullifier registry: {exc}") from exc

    if not context.ready:
        logger.warning("Verifier starting degraded: %s missing", ", ".join(context.missing()))
    return Runtime(
        settings=settings,
        context=context,
        store=store,
        registry=registry,
        service=VerificationService(context, registry, roots=store),
    )
