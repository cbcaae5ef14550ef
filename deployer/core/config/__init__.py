"""Configuration — environment creation configs and deployer settings."""

from deployer.core.config.creation import (
    EnvironmentCreationConfig,
    HetznerProvider,
    LxdProvider,
    SshCredentials,
    load_creation_config,
)
from deployer.core.config.settings import DeployerSettings, load_settings

__all__ = [
    "DeployerSettings",
    "EnvironmentCreationConfig",
    "HetznerProvider",
    "LxdProvider",
    "SshCredentials",
    "load_creation_config",
    "load_settings",
]
