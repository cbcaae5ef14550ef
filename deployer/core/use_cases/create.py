"""
Create — provision, configure and verify a new environment.

    created → provisioning → provisioned → configuring → configured
            → verifying → running

The environment's lock is held for the whole run. Each phase is a run of
steps; the first failing step moves the environment to FAILED at that
phase and ends the run. There is no automatic rollback: a failed
environment is inspected and then destroyed explicitly.
"""

from __future__ import annotations

import logging
import shlex

from deployer.adapters.registry import Toolchain
from deployer.core.config.creation import EnvironmentCreationConfig
from deployer.core.config.settings import DeployerSettings
from deployer.core.errors import AdapterError, AlreadyExists, InvalidTransition
from deployer.core.engine.executor import LifecycleRun
from deployer.core.models.environment import Environment, ProvisioningState
from deployer.core.persistence.audit import AuditWriter
from deployer.core.persistence.state_store import EnvironmentStateStore
from deployer.core.reliability.retry import exponential_backoff
from deployer.core.services.workspace import Workspace, playbook_variables, tofu_variables

logger = logging.getLogger(__name__)

S = ProvisioningState


def smoke_command(config: EnvironmentCreationConfig, settings: DeployerSettings) -> str:
    """Command run on the instance to prove it is serving."""
    if config.health_check is not None:
        return f"curl -fsS {shlex.quote(config.health_check.value)}"
    return settings.smoke_command


class CreateHandler:
    def __init__(
        self,
        store: EnvironmentStateStore,
        toolchain: Toolchain,
        settings: DeployerSettings,
        audit: AuditWriter,
    ):
        self.store = store
        self.tools = toolchain
        self.settings = settings
        self.audit = audit

    def execute(self, config: EnvironmentCreationConfig) -> Environment:
        """Create the environment described by ``config``.

        Raises:
            EnvironmentBusy: Another operation holds the environment's lock.
            AlreadyExists: A record with this name exists.
            InvalidTransition: The existing record is failed (destroy it first).
            StepFailed: A step failed; the failure is already persisted.
        """
        with self.store.lock(config.name.value):
            return self._create(config)

    def _create(self, config: EnvironmentCreationConfig) -> Environment:
        name = config.name.value
        existing = self.store.find(name)
        if existing is not None:
            if existing.is_failed:
                raise InvalidTransition(
                    name, existing.state.value, S.CREATED.value, "destroy the failed environment first"
                )
            raise AlreadyExists(name, existing.state.value)

        env = Environment(
            name=name,
            instance_name=config.instance_name.value,
            provider=config.provider_name,
            config=config.snapshot(),
        )
        self.store.save(env)
        logger.info("Creating environment '%s' (provider: %s)", name, config.provider_name)

        run = LifecycleRun("create", env, self.store, self.audit)
        workspace = Workspace.for_environment(self.settings, name)

        self._provision(run, config, workspace)
        self._configure(run, config, workspace)
        self._verify(run, config)

        run.finish(instance_ip=env.instance_ip)
        return env

    # ── Phases ──────────────────────────────────────────────────

    def _provision(self, run: LifecycleRun, config: EnvironmentCreationConfig, workspace: Workspace) -> None:
        at = S.PROVISIONING.value
        provisioner = self.tools.provisioner
        run.advance(S.PROVISIONING)

        tofu_dir = run.step("prepare_workspace", lambda: workspace.prepare_tofu(config.provider_name), at=at)
        run.step("init", lambda: provisioner.init(tofu_dir), at=at)
        run.step("plan", lambda: provisioner.plan(tofu_dir, tofu_variables(config)), at=at)
        run.step("apply", lambda: provisioner.apply(tofu_dir), at=at)

        def read_address() -> str:
            info = provisioner.output(tofu_dir)
            if not info.ip_address:
                raise AdapterError("tofu", "output", None, detail="instance has no IP address")
            return info.ip_address

        run.env.instance_ip = run.step("output", read_address, at=at)
        self.store.save(run.env)

        run.step("wait_for_ready", lambda: self._wait(run.env.instance_ip, config), at=at)
        run.advance(S.PROVISIONED)

    def _configure(self, run: LifecycleRun, config: EnvironmentCreationConfig, workspace: Workspace) -> None:
        at = S.CONFIGURING.value
        run.advance(S.CONFIGURING)

        run.step("prepare_ansible", workspace.prepare_ansible, at=at)
        inventory = run.step(
            "inventory",
            lambda: workspace.write_inventory(config.instance_name.value, run.env.instance_ip, config.ssh),
            at=at,
        )

        extra_vars = playbook_variables(config)
        for playbook in self.settings.playbooks:
            run.step(
                f"playbook:{playbook}",
                lambda playbook=playbook: self.tools.configuration_manager.run_playbook(
                    inventory, workspace.playbook(playbook), extra_vars
                ),
                at=at,
            )

        run.advance(S.CONFIGURED)

    def _verify(self, run: LifecycleRun, config: EnvironmentCreationConfig) -> None:
        at = S.VERIFYING.value
        run.advance(S.VERIFYING)

        host = run.env.instance_ip
        run.step("wait_for_ready", lambda: self._wait(host, config), at=at)
        command = smoke_command(config, self.settings)
        run.step(
            "smoke",
            lambda: self.tools.remote_shell.connect_and_run(host, config.ssh.port, config.ssh, command),
            at=at,
        )

        run.advance(S.RUNNING)

    def _wait(self, host: str, config: EnvironmentCreationConfig) -> int:
        return self.tools.remote_shell.wait_for_ready(
            host,
            config.ssh.port,
            self.settings.ssh_max_attempts,
            exponential_backoff(self.settings.ssh_retry_delay, self.settings.ssh_retry_max_delay),
            credentials=config.ssh,
        )
