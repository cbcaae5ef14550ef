"""Infrastructure adapters — OpenTofu, Ansible and LXD."""

from deployer.adapters.infra.ansible import AnsibleConfigurationManager
from deployer.adapters.infra.lxd import LxdInstanceManager
from deployer.adapters.infra.tofu import OpenTofuProvisioner

__all__ = ["AnsibleConfigurationManager", "LxdInstanceManager", "OpenTofuProvisioner"]
