"""HTTP service, storage and startup for the census verifier."""

from .app import create_app
from .context import Runtime, build_runtime, load_context
from .settings import ServiceSettings, load_settings

__all__ = [
    "create_app",
    "Runtime",
    "build_runtime",
    "load_context",
    "ServiceSettings",
    "load_settings",
]
