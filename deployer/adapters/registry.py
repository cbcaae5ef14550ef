"""
Toolchain — the closed set of adapters a lifecycle run works with.

There is exactly one adapter per role; handlers receive the whole bundle
and never look adapters up by name. Production bundles are built from
settings, tests build one from fakes (see ``mock.fake_toolchain``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any

from deployer.adapters.base import (
    ConfigurationManager,
    InstanceManager,
    Provisioner,
    RemoteShell,
    TestContainerManager,
)
from deployer.adapters.containers.docker import DockerTestContainers
from deployer.adapters.infra.ansible import AnsibleConfigurationManager
from deployer.adapters.infra.lxd import LxdInstanceManager
from deployer.adapters.infra.tofu import OpenTofuProvisioner
from deployer.adapters.shell.command import ProcessExecutor
from deployer.adapters.shell.ssh import SshRemoteShell
from deployer.core.config.settings import DeployerSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Toolchain:
    """One adapter per role."""

    provisioner: Provisioner
    configuration_manager: ConfigurationManager
    instance_manager: InstanceManager
    remote_shell: RemoteShell
    test_containers: TestContainerManager

    @classmethod
    def from_settings(
        cls,
        settings: DeployerSettings,
        executor: ProcessExecutor | None = None,
    ) -> Toolchain:
        """Build the production adapters around one shared executor."""
        executor = executor or ProcessExecutor(default_timeout=settings.command_timeout)
        binaries = settings.binaries
        return cls(
            provisioner=OpenTofuProvisioner(executor, binaries.tofu),
            configuration_manager=AnsibleConfigurationManager(executor, binaries.ansible_playbook),
            instance_manager=LxdInstanceManager(executor, binaries.lxc),
            remote_shell=SshRemoteShell(
                executor,
                binaries.ssh,
                connect_timeout=settings.ssh_connect_timeout,
            ),
            test_containers=DockerTestContainers(executor, binaries.docker),
        )

    def availability(self) -> dict[str, dict[str, Any]]:
        """Whether each role's tool can be found, keyed by role."""
        status = {}
        for f in fields(self):
            adapter = getattr(self, f.name)
            check = getattr(adapter, "is_available", None)
            status[f.name] = {
                "type": adapter.__class__.__name__,
                "binary": getattr(adapter, "binary", None),
                "available": bool(check()) if check is not None else True,
            }
        return status
