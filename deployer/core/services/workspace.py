"""
Environment workspace — the per-environment build directory.

    <build_dir>/<name>/
        tofu/        provider templates, var file, saved plan, tofu state
        ansible/     playbooks and the generated inventory.yml

Templates are copied from ``<templates_dir>/tofu/<provider>/`` and
``<templates_dir>/ansible/`` when a templates directory is configured.
The tofu directory holds the infrastructure state, so it must survive
until the environment is destroyed.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

import yaml

from deployer.core.config.creation import EnvironmentCreationConfig, SshCredentials
from deployer.core.config.settings import DeployerSettings

logger = logging.getLogger(__name__)

INVENTORY_FILE = "inventory.yml"


class Workspace:
    """Build directory of one environment."""

    def __init__(self, root: Path, templates_dir: Path | None = None):
        self.root = root
        self.templates_dir = templates_dir

    @classmethod
    def for_environment(cls, settings: DeployerSettings, name: str) -> Workspace:
        return cls(settings.env_build_dir(name), settings.templates_dir)

    @property
    def tofu_dir(self) -> Path:
        return self.root / "tofu"

    @property
    def ansible_dir(self) -> Path:
        return self.root / "ansible"

    @property
    def inventory_path(self) -> Path:
        return self.ansible_dir / INVENTORY_FILE

    def has_infrastructure(self) -> bool:
        """Whether a tofu working directory was ever prepared."""
        return self.tofu_dir.is_dir()

    # ── Preparation ─────────────────────────────────────────────

    def prepare_tofu(self, provider: str) -> Path:
        self.tofu_dir.mkdir(parents=True, exist_ok=True)
        if self.templates_dir is not None:
            self._copy_templates(self.templates_dir / "tofu" / provider, self.tofu_dir)
        return self.tofu_dir

    def prepare_ansible(self) -> Path:
        self.ansible_dir.mkdir(parents=True, exist_ok=True)
        if self.templates_dir is not None:
            self._copy_templates(self.templates_dir / "ansible", self.ansible_dir)
        return self.ansible_dir

    def write_inventory(self, host_alias: str, address: str, credentials: SshCredentials) -> Path:
        """Write a single-host Ansible inventory for the instance."""
        inventory = {
            "all": {
                "hosts": {
                    host_alias: {
                        "ansible_host": address,
                        "ansible_port": credentials.port,
                        "ansible_user": str(credentials.username),
                        "ansible_ssh_private_key_file": str(credentials.private_key_path),
                        "ansible_python_interpreter": "/usr/bin/python3",
                    },
                },
            },
        }
        self.ansible_dir.mkdir(parents=True, exist_ok=True)
        self.inventory_path.write_text(
            yaml.dump(inventory, default_flow_style=False, sort_keys=False),
            encoding="utf-8",
        )
        logger.debug("Wrote inventory %s", self.inventory_path)
        return self.inventory_path

    def playbook(self, name: str) -> Path:
        return self.ansible_dir / name

    def remove(self) -> bool:
        """Delete the whole build directory. Returns False if it was absent."""
        if not self.root.exists():
            return False
        shutil.rmtree(self.root)
        logger.info("Removed workspace %s", self.root)
        return True

    @staticmethod
    def _copy_templates(source: Path, target: Path) -> None:
        if not source.is_dir():
            logger.warning("Template directory %s not found, nothing copied", source)
            return
        shutil.copytree(str(source), str(target), dirs_exist_ok=True)
        logger.debug("Copied templates %s -> %s", source, target)


def tofu_variables(config: EnvironmentCreationConfig) -> dict[str, Any]:
    """Variables handed to the provisioner for this environment."""
    variables: dict[str, Any] = {
        "instance_name": config.instance_name.value,
        "ssh_username": config.ssh.username.value,
        "ssh_public_key": config.ssh.public_key(),
    }
    variables.update(config.provider.tofu_vars())
    return variables


def playbook_variables(config: EnvironmentCreationConfig) -> dict[str, Any]:
    """Extra variables passed to every playbook."""
    variables: dict[str, Any] = {"environment_name": config.name.value}
    if config.domain is not None:
        variables["domain"] = config.domain.value
    if config.admin_email is not None:
        variables["admin_email"] = config.admin_email.value
    if config.admin_password is not None:
        variables["admin_password"] = config.admin_password.reveal()
    return variables
