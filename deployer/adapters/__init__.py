"""Adapters — bindings for the external tools the deployer drives.

Public re-exports for convenient access.
"""

from deployer.adapters.base import (
    ConfigurationManager,
    InstanceManager,
    Provisioner,
    RemoteShell,
    TestContainerManager,
)
from deployer.adapters.registry import Toolchain

__all__ = [
    "ConfigurationManager",
    "InstanceManager",
    "Provisioner",
    "RemoteShell",
    "TestContainerManager",
    "Toolchain",
]
