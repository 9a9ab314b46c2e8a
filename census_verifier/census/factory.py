"""
Verifier backend registry.

Backends are imported lazily so the Groth16 pairing library is only loaded
when it is actually selected. Selection itself is a deployment setting
(``ServiceSettings.verifier_backend``); this module only maps names to
classes.
"""

from __future__ import annotations

import importlib
from typing import Final

from .config import DEFAULT_BACKEND
from .snark.base import ProofVerifier

BACKEND_REGISTRY: Final[dict[str, str]] = {
    "groth16": "census_verifier.census.snark.groth16.Groth16Verifier",
    "mock": "census_verifier.census.snark.mock.MockVerifier",
}


def backend_names() -> tuple[str, ...]:
    return tuple(sorted(BACKEND_REGISTRY))


def check_backend_name(name: str) -> str:
    """
    Raises:
        ValueError: If ``name`` is not a registered backend.
    """
    if name not in BACKEND_REGISTRY:
        raise ValueError(
            f"Invalid verifier backend: {name!r}. Valid options: {', '.join(backend_names())}"
        )
    return name


def _import_backend(name: str) -> type[ProofVerifier]:
    module_path, _, class_name = BACKEND_REGISTRY[name].rpartition(".")
    try:
        module = importlib.import_module(module_path)
    except ModuleNotFoundError as exc:
        raise ImportError(
            f"Unable to import verifier module {module_path!r} for {name!r}"
        ) from exc

    backend_cls = getattr(module, class_name, None)
    if backend_cls is None:
        raise ImportError(f"Verifier class {class_name!r} not found in {module_path!r}")
    if not isinstance(backend_cls, type) or not issubclass(backend_cls, ProofVerifier):
        raise TypeError(f"{BACKEND_REGISTRY[name]!r} does not implement ProofVerifier")
    return backend_cls


def get_verifier(name: str | None = None) -> ProofVerifier:
    """
    Instantiate a verifier backend by name.

    Args:
        name: Registered backend name; defaults to ``groth16``.

    Raises:
        ValueError: If the name is not registered.
        ImportError: If the backend module or class cannot be imported.
        TypeError: If the registered class is not a ProofVerifier.
    """
    backend_cls = _import_backend(check_backend_name(name or DEFAULT_BACKEND))
    return backend_cls()
