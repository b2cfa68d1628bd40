"""
Configuration management for stackup.

Loads <STACKUP_HOME>/config.yaml into a StackupConfig. Every field has a
default, so the CLI can run without a config file; `stackup init` writes
one with the defaults spelled out.
"""

import os
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from stackup.errors import ConfigError


def get_stackup_home() -> Path:
    """
    Get the stackup home directory.

    Returns:
        Path: $STACKUP_HOME, or ~/.config/stackup
    """
    home = os.environ.get("STACKUP_HOME")
    if home:
        return Path(home)
    return Path("~/.config/stackup").expanduser()


@dataclass
class StackupConfig:
    """
    Runtime configuration.

    Attributes:
        project_name: Prefix for container and network names
                      (None: derived from the manifest directory)
        state_dir: Root for persisted build records
        docker_bin: Container tool executable
        max_workers: Services processed in parallel per batch
        probe_ports: Check host-port availability with a test bind
        log_level: DEBUG, INFO, WARNING or ERROR
        log_format: "structured" (JSON) or "pretty"
        log_file: Log path; "{date}" is replaced with today's date
        log_console: Mirror log records to stderr
        env_file: Dotenv file loaded into the process environment
    """
    project_name: Optional[str] = None
    state_dir: Optional[str] = None
    docker_bin: str = "docker"
    max_workers: int = 4
    probe_ports: bool = True
    log_level: str = "INFO"
    log_format: str = "structured"
    log_file: Optional[str] = None
    log_console: bool = False
    env_file: Optional[str] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate field values."""
        if not isinstance(self.max_workers, int) or self.max_workers < 1:
            raise ConfigError(f"max_workers must be a positive integer, got {self.max_workers!r}")
        if self.log_format not in ("structured", "pretty"):
            raise ConfigError(f"log_format must be 'structured' or 'pretty', got {self.log_format!r}")
        if str(self.log_level).upper() not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ConfigError(f"Invalid log_level: {self.log_level!r}")
        if not self.docker_bin:
            raise ConfigError("docker_bin must not be empty")

    def get_state_dir(self) -> Path:
        """Directory holding persisted build records."""
        if self.state_dir:
            return Path(self.state_dir).expanduser()
        return get_stackup_home() / "state"

    def get_log_file_path(self) -> Path:
        """Get log file path with date interpolation."""
        log_output = self.log_file or str(get_stackup_home() / "logs" / "stackup-{date}.log")
        log_output = log_output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        return Path(log_output).expanduser()

    def apply_env_overrides(self) -> "StackupConfig":
        """Apply STACKUP_* environment variable overrides in place."""
        if os.environ.get("STACKUP_PROJECT_NAME"):
            self.project_name = os.environ["STACKUP_PROJECT_NAME"]
        if os.environ.get("STACKUP_DOCKER_BIN"):
            self.docker_bin = os.environ["STACKUP_DOCKER_BIN"]
        if os.environ.get("STACKUP_MAX_WORKERS"):
            try:
                self.max_workers = int(os.environ["STACKUP_MAX_WORKERS"])
            except ValueError:
                raise ConfigError(
                    f"STACKUP_MAX_WORKERS must be an integer, got {os.environ['STACKUP_MAX_WORKERS']!r}"
                )
        self.validate()
        return self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StackupConfig":
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**data)


def load_config(config_path: Optional[Path] = None) -> StackupConfig:
    """
    Load stackup configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to <STACKUP_HOME>/config.yaml

    Returns:
        StackupConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the config is invalid
    """
    if config_path is None:
        config_path = get_stackup_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(f"stackup config.yaml not found at {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {config_path}")

    config = StackupConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    return config.apply_env_overrides()


def default_config_dict(home: Path) -> dict[str, Any]:
    """Defaults written by `stackup init`."""
    return {
        "project_name": None,
        "state_dir": str(home / "state"),
        "docker_bin": "docker",
        "max_workers": 4,
        "probe_ports": True,
        "log_level": "INFO",
        "log_format": "structured",
        "log_file": str(home / "logs" / "stackup-{date}.log"),
        "log_console": False,
        "env_file": str(home / ".env"),
    }
