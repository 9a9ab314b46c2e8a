"""
Deployment settings for the verifier service.

Resolved in order: built-in defaults, then an optional YAML file, then
``CENSUS_*`` environment variables, then explicit overrides (CLI flags).

Example YAML::

    data_dir: /var/lib/census
    verification_key_path: /etc/census/verification_key.json
    registry_url: postgresql+psycopg://census@db/census
    scope: 1
    port: 3001
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ..census.config import MAX_TREE_DEPTH, ROOT_HISTORY_SIZE, TREE_DEPTH
from ..census.exceptions import ConfigError
from ..census.factory import check_backend_name

CONFIG_ENV_VAR = "CENSUS_CONFIG"

# setting name -> environment variable
ENV_VARS: Dict[str, str] = {
    "data_dir": "CENSUS_DATA_DIR",
    "verification_key_path": "CENSUS_VK_PATH",
    "keypair_path": "CENSUS_KEYPAIR_PATH",
    "citizens_path": "CENSUS_CITIZENS_PATH",
    "registry_url": "CENSUS_REGISTRY_URL",
    "verifier_backend": "CENSUS_VERIFIER_BACKEND",
    "hasher": "CENSUS_HASHER",
    "tree_depth": "CENSUS_TREE_DEPTH",
    "root_history_size": "CENSUS_ROOT_HISTORY",
    "scope": "CENSUS_SCOPE",
    "host": "CENSUS_HOST",
    "port": "CENSUS_PORT",
    "log_level": "CENSUS_LOG_LEVEL",
}

_PATH_FIELDS = ("data_dir", "verification_key_path", "keypair_path", "citizens_path")
_INT_FIELDS = ("tree_depth", "root_history_size", "scope", "port")


@dataclass(frozen=True)
class ServiceSettings:
    """
    Verifier deployment settings.

    Paths left as None are derived from ``data_dir``.
    """

    data_dir: Path = Path("data")
    verification_key_path: Optional[Path] = None
    keypair_path: Optional[Path] = None
    citizens_path: Optional[Path] = None
    registry_url: Optional[str] = None
    verifier_backend: Optional[str] = None
    hasher: Optional[str] = None
    tree_depth: int = TREE_DEPTH
    root_history_size: int = ROOT_HISTORY_SIZE
    scope: Optional[int] = None
    host: str = "127.0.0.1"
    port: int = 3001
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 1 <= self.tree_depth <= MAX_TREE_DEPTH:
            raise ConfigError(f"tree_depth must be in [1, {MAX_TREE_DEPTH}]")
        if self.root_history_size < 1:
            raise ConfigError("root_history_size must be >= 1")
        if self.scope is not None and not 0 <= self.scope < 1 << 64:
            raise ConfigError("scope must be a u64")
        if not 0 <= self.port <= 65535:
            raise ConfigError("port must be in [0, 65535]")
        if self.verifier_backend is not None:
            try:
                check_backend_name(self.verifier_backend)
            except ValueError as exc:
                raise ConfigError(str(exc)) from exc

    @property
    def vk_path(self) -> Path:
        return self.verification_key_path or self.data_dir / "verification_key.json"

    @property
    def signer_keypair_path(self) -> Path:
        return self.keypair_path or self.data_dir / "verifier-keypair.json"

    @property
    def citizens_file(self) -> Path:
        return self.citizens_path or self.data_dir / "citizens.json"

    @property
    def nullifier_registry_url(self) -> str:
        if self.registry_url:
            return self.registry_url
        return f"sqlite:///{self.data_dir / 'nullifiers.db'}"


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _PATH_FIELDS:
        return Path(value).expanduser()
    if name in _INT_FIELDS:
        if isinstance(value, bool):
            raise ConfigError(f"{name} must be an integer")
        try:
            return int(value, 0) if isinstance(value, str) else int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{name} must be an integer, got {value!r}") from exc
    if name == "log_level":
        return str(value).upper()
    return str(value)


def read_settings_file(path: Path) -> Dict[str, Any]:
    """
    Parse a YAML settings file.

    Raises:
        ConfigError: If the file is unreadable, not a mapping, or has
            unknown keys
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as exc:
        raise ConfigError(f"cannot read settings file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"settings file {path} must contain a mapping")

    known = {f.name for f in fields(ServiceSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown settings in {path}: {', '.join(unknown)}")
    return data


def load_settings(
    path: Optional[os.PathLike] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> ServiceSettings:
    """
    Build settings from file, environment and overrides.

    Args:
        path: YAML file; defaults to ``$CENSUS_CONFIG`` when set
        env: Environment mapping (defaults to ``os.environ``)
        **overrides: Explicit values; None entries are ignored

    Returns:
        ServiceSettings
    """
    env = os.environ if env is None else env
    values: Dict[str, Any] = {}

    config_path = path or env.get(CONFIG_ENV_VAR)
    if config_path:
        values.update(read_settings_file(Path(config_path)))

    for name, var in ENV_VARS.items():
        raw = env.get(var)
        if raw not in (None, ""):
            values[name] = raw

    for name, value in overrides.items():
        if name not in ENV_VARS:
            raise ConfigError(f"unknown setting {name!r}")
        if value is not None:
            values[name] = value

    return ServiceSettings(
        **{name: _coerce(name, value) for name, value in values.items() if value is not None}
    )
