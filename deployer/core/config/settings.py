"""
Deployer settings — where state lives, which binaries to call, how long to wait.

Settings come from an optional ``deployer.yml`` (searched upward from the
working directory, like git does) and a few environment variables:

    DEPLOYER_DATA_DIR         overrides data_dir
    DEPLOYER_BUILD_DIR        overrides build_dir
    DEPLOYER_MAX_CONCURRENT   overrides max_concurrent_pipelines

Relative directories are resolved against the directory holding the
settings file (or the cwd when there is none).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from deployer.core.errors import ConfigError

logger = logging.getLogger(__name__)

SETTINGS_FILE = "deployer.yml"


class ToolBinaries(BaseModel):
    """Executable names (or paths) of the external tools."""

    tofu: str = "tofu"
    ansible_playbook: str = "ansible-playbook"
    lxc: str = "lxc"
    ssh: str = "ssh"
    docker: str = "docker"


class DeployerSettings(BaseModel):
    """Runtime settings shared by every lifecycle handler."""

    data_dir: Path = Path("data")
    build_dir: Path = Path("build")
    templates_dir: Path | None = None

    binaries: ToolBinaries = Field(default_factory=ToolBinaries)

    # Process executor
    command_timeout: float = Field(default=600.0, gt=0)

    # Remote shell readiness (exponential backoff between probes)
    ssh_connect_timeout: int = Field(default=5, ge=1)
    ssh_max_attempts: int = Field(default=30, ge=1)
    ssh_retry_delay: float = Field(default=2.0, ge=0)
    ssh_retry_max_delay: float = Field(default=30.0, ge=0)

    # Destroy steps (linear backoff between attempts)
    destroy_max_attempts: int = Field(default=3, ge=1)
    destroy_retry_delay: float = Field(default=5.0, ge=0)

    # Configuring / verifying
    playbooks: list[str] = Field(
        default_factory=lambda: ["install-docker.yml", "install-docker-compose.yml"],
    )
    smoke_command: str = "docker --version && docker compose version"

    # LXD image used when the instance manager creates instances directly
    instance_image: str = "ubuntu:24.04"

    max_concurrent_pipelines: int = Field(default=4, ge=1)

    def env_data_dir(self, name: str) -> Path:
        return self.data_dir / name

    def env_build_dir(self, name: str) -> Path:
        return self.build_dir / name

    def tofu_dir(self, name: str) -> Path:
        return self.env_build_dir(name) / "tofu"

    def ansible_dir(self, name: str) -> Path:
        return self.env_build_dir(name) / "ansible"


def find_settings_file(start_dir: Path | None = None) -> Path | None:
    """Search for deployer.yml starting from ``start_dir``, walking up."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / SETTINGS_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_settings(path: Path | None = None) -> DeployerSettings:
    """Load settings from ``path`` (or the nearest deployer.yml), then env vars.

    Raises:
        ConfigError: The file exists but is unreadable or invalid.
    """
    if path is None:
        path = find_settings_file()

    data: dict[str, Any] = {}
    base_dir = Path.cwd()

    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Settings file not found: {path}")
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot load {path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigError(f"Expected a YAML mapping in {path}, got {type(loaded).__name__}")
        data = loaded
        base_dir = path.parent.resolve()
        logger.debug("Loaded settings from %s", path)

    for env_var, key in (
        ("DEPLOYER_DATA_DIR", "data_dir"),
        ("DEPLOYER_BUILD_DIR", "build_dir"),
        ("DEPLOYER_MAX_CONCURRENT", "max_concurrent_pipelines"),
    ):
        value = os.environ.get(env_var)
        if value:
            data[key] = value

    try:
        settings = DeployerSettings.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid deployer settings: {e}") from e

    return _resolve_dirs(settings, base_dir)


def _resolve_dirs(settings: DeployerSettings, base_dir: Path) -> DeployerSettings:
    updates: dict[str, Path] = {}
    for key in ("data_dir", "build_dir", "templates_dir"):
        value: Path | None = getattr(settings, key)
        if value is not None:
            value = value.expanduser()
            updates[key] = value if value.is_absolute() else base_dir / value
    return settings.model_copy(update=updates)
