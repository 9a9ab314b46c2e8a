"""Tests for settings resolution: defaults, YAML, environment, overrides"""

from pathlib import Path

import pytest

from census_verifier.census.exceptions import ConfigError
from census_verifier.server.settings import ServiceSettings, load_settings


def test_defaults():
    settings = load_settings(env={})
    assert settings == ServiceSettings()
    assert settings.tree_depth == 20
    assert settings.port == 3001
    assert settings.vk_path == Path("data") / "verification_key.json"
    assert settings.signer_keypair_path == Path("data") / "verifier-keypair.json"
    assert settings.citizens_file == Path("data") / "citizens.json"
    assert settings.nullifier_registry_url == f"sqlite:///{Path('data') / 'nullifiers.db'}"


def test_yaml_file(tmp_path):
    config = tmp_path / "census.yaml"
    config.write_text("data_dir: /srv/census\nscope: 7\nregistry_url: memory://\n")

    settings = load_settings(config, env={})

    assert settings.data_dir == Path("/srv/census")
    assert settings.scope == 7
    assert settings.nullifier_registry_url == "memory://"
    assert settings.vk_path == Path("/srv/census/verification_key.json")


def test_config_path_from_env(tmp_path):
    config = tmp_path / "census.yaml"
    config.write_text("port: 4000\n")
    assert load_settings(env={"CENSUS_CONFIG": str(config)}).port == 4000


def test_env_overrides_yaml(tmp_path):
    config = tmp_path / "census.yaml"
    config.write_text("port: 4000\nlog_level: debug\n")

    settings = load_settings(config, env={"CENSUS_PORT": "5000"})

    assert settings.port == 5000
    assert settings.log_level == "DEBUG"


def test_overrides_win_and_none_is_ignored():
    settings = load_settings(env={"CENSUS_PORT": "5000"}, port=6000, host=None)
    assert settings.port == 6000
    assert settings.host == "127.0.0.1"


def test_hex_scope_from_env():
    assert load_settings(env={"CENSUS_SCOPE": "0x10"}).scope == 16


def test_explicit_paths():
    settings = load_settings(
        env={"CENSUS_VK_PATH": "/keys/vk.json", "CENSUS_KEYPAIR_PATH": "/keys/signer.json"}
    )
    assert settings.vk_path == Path("/keys/vk.json")
    assert settings.signer_keypair_path == Path("/keys/signer.json")


def test_empty_yaml_is_defaults(tmp_path):
    config = tmp_path / "census.yaml"
    config.write_text("")
    assert load_settings(config, env={}) == ServiceSettings()


@pytest.mark.parametrize(
    "env",
    [
        {"CENSUS_PORT": "http"},
        {"CENSUS_PORT": "70000"},
        {"CENSUS_TREE_DEPTH": "0"},
        {"CENSUS_TREE_DEPTH": "33"},
        {"CENSUS_ROOT_HISTORY": "0"},
        {"CENSUS_SCOPE": "-1"},
        {"CENSUS_VERIFIER_BACKEND": "plonk"},
    ],
)
def test_invalid_values(env):
    with pytest.raises(ConfigError):
        load_settings(env=env)


def test_unknown_yaml_key(tmp_path):
    config = tmp_path / "census.yaml"
    config.write_text("colour: blue\n")
    with pytest.raises(ConfigError, match="colour"):
        load_settings(config, env={})


def test_yaml_must_be_mapping(tmp_path):
    config = tmp_path / "census.yaml"
    config.write_text("- a\n- b\n")
    with pytest.raises(ConfigError):
        load_settings(config, env={})


def test_invalid_yaml(tmp_path):
    config = tmp_path / "census.yaml"
    config.write_text("port: [\n")
    with pytest.raises(ConfigError, match="invalid YAML"):
        load_settings(config, env={})


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "absent.yaml", env={})


def test_unknown_override():
    with pytest.raises(ConfigError):
        load_settings(env={}, colour="blue")


def test_backend_from_env():
    settings = load_settings(env={"CENSUS_VERIFIER_BACKEND": "mock"})
    assert settings.verifier_backend == "mock"
