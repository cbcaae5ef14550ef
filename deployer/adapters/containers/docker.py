"""
Docker test containers — throwaway containers for verification flows.

Uses the docker CLI, never the Docker API directly. Containers run
detached; a host port of 0 asks Docker for a free port, which is then
read back with ``docker port``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from deployer.adapters.base import TestContainer, TestContainerManager, ToolAdapter
from deployer.core.errors import AdapterError

logger = logging.getLogger(__name__)

_NO_SUCH_CONTAINER = "No such container"


class DockerTestContainers(ToolAdapter, TestContainerManager):
    """Test-container role backed by the ``docker`` CLI."""

    tool = "docker"
    default_binary = "docker"

    def start(self, image: str, port_bindings: Mapping[int, int] | None = None) -> TestContainer:
        bindings = dict(port_bindings or {})
        args = ["run", "-d"]
        for container_port, host_port in sorted(bindings.items()):
            args += ["-p", f"{host_port}:{container_port}"]
        args.append(image)

        result = self._run("start", args)
        lines = result.stdout.strip().splitlines()
        if not lines:
            raise self._error("start", result, detail="docker run printed no container id")
        container_id = lines[-1].strip()
        logger.info("Started container %s from %s", container_id[:12], image)

        try:
            ports = {
                container_port: host_port or self._host_port(container_id, container_port)
                for container_port, host_port in bindings.items()
            }
        except AdapterError:
            self.stop(container_id)
            raise

        return TestContainer(id=container_id, image=image, ports=ports)

    def stop(self, container_id: str) -> None:
        result = self._invoke(["rm", "-f", container_id])
        if result.ok or _NO_SUCH_CONTAINER in result.stderr:
            logger.info("Removed container %s", container_id[:12])
            return
        raise self._error("stop", result)

    def _host_port(self, container_id: str, container_port: int) -> int:
        """Read the host port Docker picked for ``container_port``."""
        result = self._run("port", ["port", container_id, str(container_port)])
        # e.g. "0.0.0.0:49153\n[::]:49153"
        for line in result.stdout.splitlines():
            _, _, port = line.strip().rpartition(":")
            if port.isdigit():
                return int(port)
        raise self._error("port", result, detail=f"no host port bound for {container_port}")
