"""
Destroy — tear an environment down in reverse creation order.

    running | configured | provisioned | failed → destroying → destroyed

Any other state can only be found under the lock when the run that set it
died (Ctrl-C, a killed process). Such a record is first marked failed, so
an interrupted create or destroy is always destroyable.

Steps, each retried with linear backoff:

    infrastructure    tofu destroy (skipped if no tofu workdir was prepared)
    instance          lxc delete --force (LXD environments only)
    workspace         remove build/<name>

Every step is idempotent, so a destroy that failed part-way can simply
be run again. On success the record is deleted; the audit ledger keeps
the history.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from deployer.adapters.registry import Toolchain
from deployer.core.config.settings import DeployerSettings
from deployer.core.engine.executor import LifecycleRun
from deployer.core.errors import AdapterError, Interrupted, TimedOut
from deployer.core.models.environment import DESTROYABLE_STATES, Environment, ProvisioningState
from deployer.core.persistence.audit import AuditWriter
from deployer.core.persistence.state_store import EnvironmentStateStore
from deployer.core.reliability.retry import linear_backoff, retry_call
from deployer.core.services.workspace import Workspace

logger = logging.getLogger(__name__)

S = ProvisioningState

# LaunchFailed aborts a destroy step on the first attempt
RETRYABLE = (AdapterError, TimedOut, OSError)


class DestroyHandler:
    def __init__(
        self,
        store: EnvironmentStateStore,
        toolchain: Toolchain,
        settings: DeployerSettings,
        audit: AuditWriter,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.tools = toolchain
        self.settings = settings
        self.audit = audit
        self._sleep = sleep

    def execute(self, name: str) -> Environment | None:
        """Destroy ``name``; return the destroyed environment, or None if absent.

        Raises:
            EnvironmentBusy: Another operation holds the environment's lock.
            StepFailed: A step ran out of attempts; the record is kept as failed.
        """
        with self.store.lock(name):
            env = self.store.find(name)
            if env is None:
                logger.info("Environment '%s' does not exist, nothing to destroy", name)
                return None
            if env.state == S.DESTROYED:
                # Teardown finished but the process died before deleting the record
                self.store.delete(name)
                return env
            if env.state not in DESTROYABLE_STATES:
                self._abandon(env)
            return self._destroy(env)

    def _abandon(self, env: Environment) -> None:
        # Under the lock, so the run that left this state is gone
        state = env.state.value
        logger.warning("Environment '%s' was left %s by an interrupted run, destroying it", env.name, state)
        env.fail(state, Interrupted(f"Run stopped while '{state}'"))
        self.store.save(env)

    def _destroy(self, env: Environment) -> Environment:
        run = LifecycleRun("destroy", env, self.store, self.audit)
        run.advance(S.DESTROYING)
        workspace = Workspace.for_environment(self.settings, env.name)

        if workspace.has_infrastructure():
            self._step(run, "infrastructure", lambda: self.tools.provisioner.destroy(workspace.tofu_dir))
        else:
            logger.info("No tofu workdir for '%s', skipping infrastructure destroy", env.name)

        if env.provider == "lxd" and env.instance_name:
            self._step(run, "instance", lambda: self.tools.instance_manager.delete(env.instance_name))

        self._step(run, "workspace", workspace.remove)

        run.advance(S.DESTROYED)
        self.store.delete(env.name)
        run.finish()
        return env

    def _step(self, run: LifecycleRun, step: str, fn: Callable[[], Any]) -> None:
        run.step(
            step,
            lambda: retry_call(
                fn,
                max_attempts=self.settings.destroy_max_attempts,
                backoff=linear_backoff(self.settings.destroy_retry_delay),
                retry_on=RETRYABLE,
                sleep=self._sleep,
                label=f"destroy {step} of '{run.env.name}'",
            ),
            at=f"{S.DESTROYING.value}:{step}",
        )
