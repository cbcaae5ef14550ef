"""
Adapter base — the role contracts between lifecycle handlers and tools.

Handlers only talk to the five roles defined here, never to external
tools directly:

    Provisioner             creates and destroys infrastructure (OpenTofu)
    ConfigurationManager    runs playbooks against hosts (Ansible)
    InstanceManager         manages local VM/container instances (LXD)
    RemoteShell             runs commands on a host, waits for readiness (SSH)
    TestContainerManager    starts throwaway containers for checks (Docker)

Each role has exactly one production implementation and one test double
(see mock.py). Production adapters share ``ToolAdapter``, which turns a
non-zero exit status into an ``AdapterError``. Process-level failures
(``LaunchFailed``, ``TimedOut``) propagate from the executor unchanged.
"""

from __future__ import annotations

import logging
import shutil
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

from deployer.adapters.shell.command import ProcessExecutor
from deployer.core.config.creation import SshCredentials
from deployer.core.errors import AdapterError, stderr_excerpt
from deployer.core.models.invocation import AdapterInvocationResult

logger = logging.getLogger(__name__)


# ── Results ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class PlanSummary:
    """Resource counts from a provisioner plan."""

    add: int = 0
    change: int = 0
    destroy: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.add or self.change or self.destroy)


@dataclass(frozen=True)
class InstanceInfo:
    """Facts about a provisioned instance."""

    name: str
    ip_address: str | None
    image: str = ""
    status: str = ""


@dataclass(frozen=True)
class HostRecap:
    """One host's line of an Ansible PLAY RECAP."""

    host: str
    ok: int = 0
    changed: int = 0
    unreachable: int = 0
    failed: int = 0
    skipped: int = 0
    rescued: int = 0
    ignored: int = 0

    @property
    def succeeded(self) -> bool:
        return self.failed == 0 and self.unreachable == 0


@dataclass(frozen=True)
class TestContainer:
    """A running throwaway container and its host port mappings."""

    __test__ = False  # not a pytest class

    id: str
    image: str
    ports: dict[int, int] = field(default_factory=dict)  # container port -> host port


# ── Shared tool plumbing ────────────────────────────────────────


class ToolAdapter:
    """Common base for adapters that drive one CLI through the executor.

    Args:
        executor: Process executor used for every invocation.
        binary: Executable name or path; defaults to ``default_binary``.
        timeout: Per-invocation timeout; ``None`` uses the executor default.
    """

    tool: ClassVar[str] = ""
    default_binary: ClassVar[str] = ""

    def __init__(
        self,
        executor: ProcessExecutor,
        binary: str | None = None,
        timeout: float | None = None,
    ):
        self.executor = executor
        self.binary = binary or self.default_binary
        self.timeout = timeout

    def is_available(self) -> bool:
        """Whether the tool's binary can be found on PATH."""
        return shutil.which(self.binary) is not None

    def _invoke(
        self,
        args: Sequence[str],
        working_dir: Path | None = None,
        env_overrides: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> AdapterInvocationResult:
        result = self.executor.execute(
            self.binary,
            args,
            env_overrides=env_overrides,
            working_dir=working_dir,
            timeout=timeout if timeout is not None else self.timeout,
        )
        if result.stdout.strip():
            logger.debug("%s stdout:\n%s", self.tool, result.stdout.rstrip())
        if result.stderr.strip():
            logger.debug("%s stderr:\n%s", self.tool, result.stderr.rstrip())
        return result

    def _run(
        self,
        operation: str,
        args: Sequence[str],
        working_dir: Path | None = None,
        env_overrides: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> AdapterInvocationResult:
        """Invoke the tool; raise AdapterError on a non-zero exit."""
        result = self._invoke(args, working_dir, env_overrides, timeout)
        if not result.ok:
            raise self._error(operation, result)
        return result

    def _error(
        self,
        operation: str,
        result: AdapterInvocationResult | None = None,
        detail: str = "",
        failed_hosts: list[str] | None = None,
    ) -> AdapterError:
        return AdapterError(
            tool=self.tool,
            operation=operation,
            exit_code=result.exit_status if result is not None else None,
            stderr_excerpt=stderr_excerpt(result.stderr) if result is not None else "",
            failed_hosts=failed_hosts,
            detail=detail,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} binary={self.binary!r}>"


# ── Roles ───────────────────────────────────────────────────────


class Provisioner(ABC):
    """Creates and tears down the infrastructure of one working directory."""

    @abstractmethod
    def init(self, workdir: Path) -> None:
        """Initialise the working directory (providers, modules)."""

    @abstractmethod
    def plan(self, workdir: Path, variables: Mapping[str, Any]) -> PlanSummary:
        """Compute and save a plan for ``variables``."""

    @abstractmethod
    def apply(self, workdir: Path) -> None:
        """Apply the saved plan."""

    @abstractmethod
    def destroy(self, workdir: Path) -> None:
        """Destroy every resource managed by the working directory."""

    @abstractmethod
    def output(self, workdir: Path) -> InstanceInfo:
        """Read the provisioned instance's facts from the outputs."""


class ConfigurationManager(ABC):
    @abstractmethod
    def run_playbook(
        self,
        inventory: Path,
        playbook: Path,
        extra_vars: Mapping[str, Any] | None = None,
    ) -> dict[str, HostRecap]:
        """Run one playbook; return the per-host recap.

        Raises:
            AdapterError: The run failed; ``failed_hosts`` names the hosts.
        """


class InstanceManager(ABC):
    @abstractmethod
    def create(self, name: str, image: str, profile: str | None = None, vm: bool = False) -> None:
        ...

    @abstractmethod
    def start(self, name: str) -> None:
        ...

    @abstractmethod
    def stop(self, name: str, force: bool = False) -> None:
        ...

    @abstractmethod
    def delete(self, name: str) -> None:
        """Delete the instance. Deleting a missing instance is not an error."""

    @abstractmethod
    def info(self, name: str) -> InstanceInfo | None:
        """Instance facts, or None if no such instance exists."""


class RemoteShell(ABC):
    @abstractmethod
    def connect_and_run(
        self,
        host: str,
        port: int,
        credentials: SshCredentials,
        command: str,
        timeout: float | None = None,
    ) -> str:
        """Run ``command`` on the host and return its stdout."""

    @abstractmethod
    def wait_for_ready(
        self,
        host: str,
        port: int,
        max_attempts: int,
        backoff: Callable[[int], float],
        credentials: SshCredentials | None = None,
    ) -> int:
        """Block until the host accepts connections; return the attempt count.

        Raises:
            ConnectivityTimeout: ``max_attempts`` probes all failed.
        """


class TestContainerManager(ABC):
    __test__ = False

    @abstractmethod
    def start(self, image: str, port_bindings: Mapping[int, int] | None = None) -> TestContainer:
        """Start a detached container; host port 0 picks a free port."""

    @abstractmethod
    def stop(self, container_id: str) -> None:
        """Remove the container. A container that is already gone is fine."""
