import os
from pathlib import Path

import pytest
import yaml

from stackup.config import StackupConfig, default_config_dict, get_stackup_home, load_config
from stackup.errors import ConfigError


def test_get_stackup_home_default(monkeypatch):
    monkeypatch.delenv("STACKUP_HOME", raising=False)
    home = get_stackup_home()
    assert home == Path("~/.config/stackup").expanduser()


def test_get_stackup_home_env_var(monkeypatch, tmp_path):
    custom_home = tmp_path / "custom_home"
    monkeypatch.setenv("STACKUP_HOME", str(custom_home))
    assert get_stackup_home() == custom_home


def test_load_config_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("STACKUP_HOME", str(tmp_path))
    with pytest.raises(FileNotFoundError, match="stackup config.yaml not found"):
        load_config()


def test_load_config_valid(monkeypatch, tmp_path):
    monkeypatch.setenv("STACKUP_HOME", str(tmp_path))
    config_path = tmp_path / "config.yaml"

    config_data = {
        "project_name": "shop",
        "docker_bin": "/usr/local/bin/docker",
        "max_workers": 8,
        "probe_ports": False,
        "log_format": "pretty",
    }
    config_path.write_text(yaml.dump(config_data))

    cfg = load_config()
    assert isinstance(cfg, StackupConfig)
    assert cfg.project_name == "shop"
    assert cfg.docker_bin == "/usr/local/bin/docker"
    assert cfg.max_workers == 8
    assert cfg.probe_ports is False
    assert cfg.log_level == "INFO"


def test_load_config_explicit_path(tmp_path):
    config_path = tmp_path / "other.yaml"
    config_path.write_text("max_workers: 2\n")
    assert load_config(config_path).max_workers == 2


def test_load_config_empty_file(monkeypatch, tmp_path):
    monkeypatch.setenv("STACKUP_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("")
    assert load_config() == StackupConfig()


def test_load_config_with_env_file(monkeypatch, tmp_path):
    monkeypatch.setenv("STACKUP_HOME", str(tmp_path))
    env_file = tmp_path / ".env.test"
    env_file.write_text("TEST_VAR=loaded_from_env\n")
    (tmp_path / "config.yaml").write_text(yaml.dump({"env_file": str(env_file)}))

    # Pre-clean env var
    monkeypatch.delenv("TEST_VAR", raising=False)

    try:
        load_config()
        assert os.environ.get("TEST_VAR") == "loaded_from_env"
    finally:
        os.environ.pop("TEST_VAR", None)


def test_env_file_can_set_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("STACKUP_HOME", str(tmp_path))
    env_file = tmp_path / ".env"
    env_file.write_text("STACKUP_PROJECT_NAME=from-dotenv\n")
    (tmp_path / "config.yaml").write_text(yaml.dump({"env_file": str(env_file)}))

    try:
        assert load_config().project_name == "from-dotenv"
    finally:
        os.environ.pop("STACKUP_PROJECT_NAME", None)


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("STACKUP_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text(yaml.dump({"project_name": "file", "max_workers": 2}))
    monkeypatch.setenv("STACKUP_PROJECT_NAME", "env")
    monkeypatch.setenv("STACKUP_MAX_WORKERS", "6")
    monkeypatch.setenv("STACKUP_DOCKER_BIN", "podman")

    cfg = load_config()
    assert cfg.project_name == "env"
    assert cfg.max_workers == 6
    assert cfg.docker_bin == "podman"


def test_env_override_not_an_integer(monkeypatch):
    monkeypatch.setenv("STACKUP_MAX_WORKERS", "many")
    with pytest.raises(ConfigError, match="STACKUP_MAX_WORKERS"):
        StackupConfig().apply_env_overrides()


def test_invalid_yaml(monkeypatch, tmp_path):
    monkeypatch.setenv("STACKUP_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("max_workers: [1\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config()


def test_config_must_be_mapping(monkeypatch, tmp_path):
    monkeypatch.setenv("STACKUP_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("- a\n- b\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_config()


def test_unknown_keys_rejected():
    with pytest.raises(ConfigError, match="Unknown config keys: colour"):
        StackupConfig.from_dict({"colour": "blue"})


@pytest.mark.parametrize("field, value", [
    ("max_workers", 0),
    ("max_workers", "4"),
    ("log_format", "xml"),
    ("log_level", "LOUD"),
    ("docker_bin", ""),
])
def test_validation(field, value):
    with pytest.raises(ConfigError):
        StackupConfig(**{field: value})


def test_state_dir_defaults_under_home(monkeypatch, tmp_path):
    monkeypatch.setenv("STACKUP_HOME", str(tmp_path))
    assert StackupConfig().get_state_dir() == tmp_path / "state"
    assert StackupConfig(state_dir=str(tmp_path / "elsewhere")).get_state_dir() == tmp_path / "elsewhere"


def test_log_file_date_interpolation(tmp_path):
    cfg = StackupConfig(log_file=str(tmp_path / "run-{date}.log"))
    path = cfg.get_log_file_path()
    assert "{date}" not in str(path)
    assert path.parent == tmp_path
    assert path.name.startswith("run-20")


def test_default_config_round_trips(tmp_path):
    data = default_config_dict(tmp_path)
    cfg = StackupConfig.from_dict(data)
    assert cfg.state_dir == str(tmp_path / "state")
    assert cfg.to_dict() == data
