"""
Environment creation config — the validated input of a Create command.

Environment files are YAML:

    environment:
      name: staging
      instance_name: deployer-vm-staging   # optional
    ssh_credentials:
      private_key_path: ~/.ssh/id_ed25519
      public_key_path: ~/.ssh/id_ed25519.pub
      username: deployer
      port: 22
    provider:
      provider: lxd                        # or: hetzner
      profile_name: deployer-staging
    domain: tracker.example.com            # optional
    admin_email: admin@example.com         # optional
    admin_password: "..."                  # optional, secret
    health_check: https://tracker.example.com/health_check   # optional

The whole bundle is validated at once by ``EnvironmentCreationConfig.from_raw``.
If any field is invalid, no config object is produced.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict

from deployer.core.errors import ConfigError, ValidationError
from deployer.core.models.values import (
    ApiToken,
    DomainName,
    Email,
    EnvironmentName,
    InstanceName,
    Password,
    ProfileName,
    ServiceEndpoint,
    Username,
)

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22
INSTANCE_NAME_PREFIX = "deployer-vm"


class SshCredentials(BaseModel):
    """Key pair and login used for every SSH and Ansible connection."""

    model_config = ConfigDict(frozen=True)

    private_key_path: Path
    public_key_path: Path
    username: Username
    port: int = DEFAULT_SSH_PORT

    def public_key(self) -> str:
        """Contents of the public key (not a secret)."""
        return self.public_key_path.read_text(encoding="utf-8").strip()


class LxdProvider(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Literal["lxd"] = "lxd"
    profile_name: ProfileName

    def tofu_vars(self) -> dict[str, Any]:
        return {"lxd_profile_name": self.profile_name.value}

    def snapshot(self) -> dict[str, Any]:
        return {"provider": self.provider, "profile_name": self.profile_name.value}


class HetznerProvider(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Literal["hetzner"] = "hetzner"
    api_token: ApiToken
    server_type: str
    location: str
    image: str

    def tofu_vars(self) -> dict[str, Any]:
        return {
            "hcloud_token": self.api_token.reveal(),
            "server_type": self.server_type,
            "location": self.location,
            "image": self.image,
        }

    def snapshot(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "api_token": self.api_token.redacted(),
            "server_type": self.server_type,
            "location": self.location,
            "image": self.image,
        }


ProviderConfig = LxdProvider | HetznerProvider


class EnvironmentCreationConfig(BaseModel):
    """Immutable, fully-validated bundle for creating one environment."""

    model_config = ConfigDict(frozen=True)

    name: EnvironmentName
    instance_name: InstanceName
    ssh: SshCredentials
    provider: ProviderConfig
    domain: DomainName | None = None
    admin_email: Email | None = None
    admin_password: Password | None = None
    health_check: ServiceEndpoint | None = None

    @property
    def provider_name(self) -> str:
        return self.provider.provider

    @classmethod
    def from_raw(cls, data: Mapping[str, Any]) -> EnvironmentCreationConfig:
        """Validate a raw mapping (e.g. parsed YAML) into a config.

        Raises:
            ValidationError: naming the first invalid field (dotted path).
        """
        if not isinstance(data, Mapping):
            raise ValidationError("config", f"expected a mapping, got {type(data).__name__}")

        env = _section(data, "environment")
        name = EnvironmentName.parse(env.get("name"), field="environment.name")

        raw_instance = env.get("instance_name")
        if raw_instance is None:
            instance_name = InstanceName.for_environment(name, INSTANCE_NAME_PREFIX)
        else:
            instance_name = InstanceName.parse(raw_instance, field="environment.instance_name")

        return cls(
            name=name,
            instance_name=instance_name,
            ssh=_parse_ssh(_section(data, "ssh_credentials")),
            provider=_parse_provider(_section(data, "provider")),
            domain=_optional(DomainName, data, "domain"),
            admin_email=_optional(Email, data, "admin_email"),
            admin_password=_optional(Password, data, "admin_password"),
            health_check=_optional(ServiceEndpoint, data, "health_check"),
        )

    def snapshot(self) -> dict[str, Any]:
        """Plain-data copy for persistence. Secrets are redacted."""
        return {
            "name": self.name.value,
            "instance_name": self.instance_name.value,
            "ssh_credentials": {
                "private_key_path": str(self.ssh.private_key_path),
                "public_key_path": str(self.ssh.public_key_path),
                "username": self.ssh.username.value,
                "port": self.ssh.port,
            },
            "provider": self.provider.snapshot(),
            "domain": self.domain.value if self.domain else None,
            "admin_email": self.admin_email.value if self.admin_email else None,
            "admin_password": self.admin_password.redacted() if self.admin_password else None,
            "health_check": self.health_check.value if self.health_check else None,
        }

    def summary(self) -> dict[str, Any]:
        """What a validated file describes, without any values that could be secret."""
        return {
            "name": self.name.value,
            "instance_name": self.instance_name.value,
            "provider": self.provider_name,
            "ssh_user": self.ssh.username.value,
            "ssh_port": self.ssh.port,
            "has_domain": self.domain is not None,
            "has_admin_email": self.admin_email is not None,
            "has_admin_password": self.admin_password is not None,
            "has_health_check": self.health_check is not None,
        }


# ── Parsing helpers ─────────────────────────────────────────────


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        raise ValidationError(key, "section is required")
    if not isinstance(value, Mapping):
        raise ValidationError(key, f"expected a mapping, got {type(value).__name__}")
    return value


def _optional(kind, data: Mapping[str, Any], key: str):
    raw = data.get(key)
    if raw is None:
        return None
    return kind.parse(raw, field=key)


def _require_text(section: Mapping[str, Any], key: str, field: str) -> str:
    value = section.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "must be a non-empty string")
    return value.strip()


def _parse_ssh(section: Mapping[str, Any]) -> SshCredentials:
    keys = {}
    for key in ("private_key_path", "public_key_path"):
        field = f"ssh_credentials.{key}"
        path = Path(_require_text(section, key, field)).expanduser()
        if not path.is_file():
            raise ValidationError(field, f"file not found: {path}")
        keys[key] = path

    username = Username.parse(section.get("username"), field="ssh_credentials.username")

    port = section.get("port", DEFAULT_SSH_PORT)
    if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
        raise ValidationError("ssh_credentials.port", f"must be an integer 1-65535, got {port!r}")

    return SshCredentials(username=username, port=port, **keys)


def _parse_provider(section: Mapping[str, Any]) -> ProviderConfig:
    kind = section.get("provider")
    if kind == "lxd":
        return LxdProvider(
            profile_name=ProfileName.parse(section.get("profile_name"), field="provider.profile_name"),
        )
    if kind == "hetzner":
        return HetznerProvider(
            api_token=ApiToken.parse(section.get("api_token"), field="provider.api_token"),
            server_type=_require_text(section, "server_type", "provider.server_type"),
            location=_require_text(section, "location", "provider.location"),
            image=_require_text(section, "image", "provider.image"),
        )
    raise ValidationError("provider.provider", f"unknown provider {kind!r} (expected 'lxd' or 'hetzner')")


# ── Loading ─────────────────────────────────────────────────────


def load_creation_config(path: Path) -> EnvironmentCreationConfig:
    """Load and validate an environment file.

    Raises:
        ConfigError: The file is missing or not valid YAML.
        ValidationError: A field is invalid.
    """
    if not path.is_file():
        raise ConfigError(f"Environment file not found: {path}")

    logger.debug("Loading environment config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    config = EnvironmentCreationConfig.from_raw(data)
    logger.info("Loaded environment config '%s' (provider: %s)", config.name, config.provider_name)
    return config
