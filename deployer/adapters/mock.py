"""
Test doubles — a scripted process executor and one fake per adapter role.

``ScriptedExecutor`` stands in for the process executor when testing the
production adapters: it records every invocation and replays scripted
results, so tests can assert exact command lines without the tools.

The role fakes stand in for whole adapters when testing the lifecycle
handlers. They succeed by default, record every call, and can be told
to fail a given operation (always, or for the next N calls). Fakes
built by ``fake_toolchain()`` share one journal, so tests can assert the
order of operations across roles.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from deployer.adapters.base import (
    ConfigurationManager,
    HostRecap,
    InstanceInfo,
    InstanceManager,
    PlanSummary,
    Provisioner,
    RemoteShell,
    TestContainer,
    TestContainerManager,
)
from deployer.adapters.registry import Toolchain
from deployer.adapters.shell.command import ProcessExecutor
from deployer.core.config.creation import SshCredentials
from deployer.core.models.invocation import AdapterInvocationResult

# ── Scripted executor ───────────────────────────────────────────


@dataclass
class RecordedCall:
    """One invocation seen by ScriptedExecutor."""

    program: str
    args: tuple[str, ...]
    env_overrides: dict[str, str] = field(default_factory=dict)
    working_dir: Path | None = None
    timeout: float | None = None

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]


class ScriptedExecutor(ProcessExecutor):
    """Process executor that replays queued results instead of spawning.

    Results are consumed in order; once the queue is empty every call
    succeeds with empty output. A queued exception is raised instead of
    returning, and a queued callable is called with the RecordedCall.
    """

    def __init__(self) -> None:
        super().__init__(default_timeout=None)
        self.calls: list[RecordedCall] = []
        self._script: deque[Any] = deque()

    def push(self, exit_status: int = 0, stdout: str = "", stderr: str = "") -> ScriptedExecutor:
        self._script.append((exit_status, stdout, stderr))
        return self

    def push_error(self, error: BaseException) -> ScriptedExecutor:
        self._script.append(error)
        return self

    def push_handler(
        self, handler: Callable[[RecordedCall], AdapterInvocationResult]
    ) -> ScriptedExecutor:
        self._script.append(handler)
        return self

    @property
    def last_call(self) -> RecordedCall:
        return self.calls[-1]

    @property
    def pending(self) -> int:
        return len(self._script)

    def execute(
        self,
        program: str,
        args: Sequence[str] = (),
        env_overrides: Mapping[str, str] | None = None,
        working_dir: Path | str | None = None,
        timeout: float | None = None,
    ) -> AdapterInvocationResult:
        call = RecordedCall(
            program=program,
            args=tuple(str(a) for a in args),
            env_overrides=dict(env_overrides or {}),
            working_dir=Path(working_dir) if working_dir is not None else None,
            timeout=timeout,
        )
        self.calls.append(call)

        if not self._script:
            return AdapterInvocationResult(program=program, args=call.args)

        entry = self._script.popleft()
        if isinstance(entry, BaseException):
            raise entry
        if callable(entry):
            return entry(call)
        exit_status, stdout, stderr = entry
        return AdapterInvocationResult(
            program=program,
            args=call.args,
            exit_status=exit_status,
            stdout=stdout,
            stderr=stderr,
        )


# ── Role fakes ──────────────────────────────────────────────────


class _FakeRole:
    """Call recording and failure injection shared by the role fakes."""

    role = "fake"

    def __init__(self, journal: list[str] | None = None):
        self.call_log: list[tuple[str, tuple[Any, ...]]] = []
        self.journal = journal if journal is not None else []
        self._failures: dict[str, list[Any]] = {}

    @property
    def call_count(self) -> int:
        return len(self.call_log)

    def calls(self, operation: str) -> list[tuple[Any, ...]]:
        """Arguments of every call to ``operation``, oldest first."""
        return [args for op, args in self.call_log if op == operation]

    def set_failure(self, operation: str, error: BaseException, times: int | None = None) -> None:
        """Make ``operation`` raise ``error``: always, or for the next ``times`` calls."""
        self._failures[operation] = [error, times]

    def clear_failure(self, operation: str) -> None:
        self._failures.pop(operation, None)

    def reset(self) -> None:
        self.call_log.clear()
        self._failures.clear()

    def _record(self, operation: str, *args: Any) -> None:
        self.call_log.append((operation, args))
        self.journal.append(f"{self.role}.{operation}")

        failure = self._failures.get(operation)
        if failure is None:
            return
        error, remaining = failure
        if remaining is not None:
            remaining -= 1
            if remaining <= 0:
                del self._failures[operation]
            else:
                failure[1] = remaining
        raise error


class FakeProvisioner(_FakeRole, Provisioner):
    role = "provisioner"

    def __init__(
        self,
        journal: list[str] | None = None,
        ip_address: str = "10.140.190.14",
        plan_summary: PlanSummary | None = None,
    ):
        super().__init__(journal)
        self.ip_address = ip_address
        self.plan_summary = plan_summary or PlanSummary(add=1)
        self.variables: dict[str, Any] = {}

    def init(self, workdir: Path) -> None:
        self._record("init", workdir)

    def plan(self, workdir: Path, variables: Mapping[str, Any]) -> PlanSummary:
        self._record("plan", workdir, dict(variables))
        self.variables = dict(variables)
        return self.plan_summary

    def apply(self, workdir: Path) -> None:
        self._record("apply", workdir)

    def destroy(self, workdir: Path) -> None:
        self._record("destroy", workdir)

    def output(self, workdir: Path) -> InstanceInfo:
        self._record("output", workdir)
        name = str(self.variables.get("instance_name", "fake-instance"))
        return InstanceInfo(name=name, ip_address=self.ip_address, image="ubuntu:24.04", status="Running")


class FakeConfigurationManager(_FakeRole, ConfigurationManager):
    role = "configuration_manager"

    def run_playbook(
        self,
        inventory: Path,
        playbook: Path,
        extra_vars: Mapping[str, Any] | None = None,
    ) -> dict[str, HostRecap]:
        self._record("run_playbook", inventory, playbook, dict(extra_vars or {}))
        return {"instance": HostRecap(host="instance", ok=1)}

    @property
    def playbooks_run(self) -> list[str]:
        return [Path(args[1]).name for args in self.calls("run_playbook")]


class FakeInstanceManager(_FakeRole, InstanceManager):
    role = "instance_manager"

    def __init__(self, journal: list[str] | None = None):
        super().__init__(journal)
        self.instances: dict[str, InstanceInfo] = {}

    def create(self, name: str, image: str, profile: str | None = None, vm: bool = False) -> None:
        self._record("create", name, image, profile, vm)
        self.instances[name] = InstanceInfo(name=name, ip_address=None, image=image, status="Stopped")

    def start(self, name: str) -> None:
        self._record("start", name)
        if name in self.instances:
            info = self.instances[name]
            self.instances[name] = InstanceInfo(
                name=name, ip_address="10.140.190.14", image=info.image, status="Running"
            )

    def stop(self, name: str, force: bool = False) -> None:
        self._record("stop", name, force)
        if name in self.instances:
            info = self.instances[name]
            self.instances[name] = InstanceInfo(name=name, ip_address=None, image=info.image, status="Stopped")

    def delete(self, name: str) -> None:
        self._record("delete", name)
        self.instances.pop(name, None)

    def info(self, name: str) -> InstanceInfo | None:
        self._record("info", name)
        return self.instances.get(name)


class FakeRemoteShell(_FakeRole, RemoteShell):
    role = "remote_shell"

    def __init__(self, journal: list[str] | None = None, responses: Mapping[str, str] | None = None):
        super().__init__(journal)
        self.responses = dict(responses or {})

    def connect_and_run(
        self,
        host: str,
        port: int,
        credentials: SshCredentials,
        command: str,
        timeout: float | None = None,
    ) -> str:
        self._record("connect_and_run", host, port, command)
        return self.responses.get(command, "")

    def wait_for_ready(
        self,
        host: str,
        port: int,
        max_attempts: int,
        backoff: Callable[[int], float],
        credentials: SshCredentials | None = None,
    ) -> int:
        self._record("wait_for_ready", host, port, max_attempts)
        return 1

    @property
    def commands_run(self) -> list[str]:
        return [args[2] for args in self.calls("connect_and_run")]


class FakeTestContainers(_FakeRole, TestContainerManager):
    role = "test_containers"

    def __init__(self, journal: list[str] | None = None):
        super().__init__(journal)
        self.running: dict[str, TestContainer] = {}
        self._counter = 0

    def start(self, image: str, port_bindings: Mapping[int, int] | None = None) -> TestContainer:
        self._record("start", image, dict(port_bindings or {}))
        self._counter += 1
        ports = {
            container_port: host_port or 49152 + self._counter
            for container_port, host_port in (port_bindings or {}).items()
        }
        container = TestContainer(id=f"fake-{self._counter:04d}", image=image, ports=ports)
        self.running[container.id] = container
        return container

    def stop(self, container_id: str) -> None:
        self._record("stop", container_id)
        self.running.pop(container_id, None)


def fake_toolchain(journal: list[str] | None = None) -> Toolchain:
    """A Toolchain of fakes sharing one journal."""
    journal = journal if journal is not None else []
    return Toolchain(
        provisioner=FakeProvisioner(journal),
        configuration_manager=FakeConfigurationManager(journal),
        instance_manager=FakeInstanceManager(journal),
        remote_shell=FakeRemoteShell(journal),
        test_containers=FakeTestContainers(journal),
    )
