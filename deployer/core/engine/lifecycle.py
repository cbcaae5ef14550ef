"""
Lifecycle — the handler API.

One object owns the state store, the audit ledger and the toolchain, and
exposes the operations callers use:

    with Lifecycle.open(settings) as lifecycle:
        env = lifecycle.create(config)
        lifecycle.status(env.name)
        lifecycle.destroy(env.name)

Names passed as plain strings are validated as EnvironmentName first, so
nothing outside the naming rules ever reaches the filesystem.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from deployer.adapters.registry import Toolchain
from deployer.core.config.creation import EnvironmentCreationConfig
from deployer.core.config.settings import DeployerSettings
from deployer.core.engine.executor import PipelineOutcome, run_concurrently
from deployer.core.models.environment import Environment
from deployer.core.models.values import EnvironmentName
from deployer.core.persistence.audit import AuditWriter
from deployer.core.persistence.state_store import EnvironmentStateStore
from deployer.core.use_cases.create import CreateHandler
from deployer.core.use_cases.destroy import DestroyHandler
from deployer.core.use_cases.status import StatusHandler

logger = logging.getLogger(__name__)


def _name(name: str | EnvironmentName) -> str:
    if isinstance(name, EnvironmentName):
        return name.value
    return EnvironmentName.parse(name, field="name").value


class Lifecycle:
    """Create, destroy and inspect environments."""

    def __init__(
        self,
        settings: DeployerSettings,
        store: EnvironmentStateStore,
        toolchain: Toolchain,
        audit: AuditWriter | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.store = store
        self.toolchain = toolchain
        self.audit = audit or AuditWriter.for_data_dir(store.data_dir)

        self._create = CreateHandler(store, toolchain, settings, self.audit)
        self._destroy = DestroyHandler(store, toolchain, settings, self.audit, sleep=sleep)
        self._status = StatusHandler(store)

    @classmethod
    def open(
        cls,
        settings: DeployerSettings,
        toolchain: Toolchain | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Lifecycle:
        """Open the store under ``settings.data_dir`` and wire the handlers."""
        store = EnvironmentStateStore(settings.data_dir).open()
        toolchain = toolchain or Toolchain.from_settings(settings)
        return cls(settings, store, toolchain, sleep=sleep)

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> Lifecycle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ── Single environment ──────────────────────────────────────

    def create(self, config: EnvironmentCreationConfig) -> Environment:
        return self._create.execute(config)

    def destroy(self, name: str | EnvironmentName) -> Environment | None:
        return self._destroy.execute(_name(name))

    def status(self, name: str | EnvironmentName) -> Environment:
        return self._status.execute(_name(name))

    def list_environments(self) -> list[Environment]:
        return self._status.list_environments()

    # ── Many environments ───────────────────────────────────────

    def create_many(self, configs: Iterable[EnvironmentCreationConfig]) -> list[PipelineOutcome]:
        """Create independent environments in parallel."""
        jobs = [
            (config.name.value, lambda config=config: self.create(config))
            for config in configs
        ]
        return run_concurrently(jobs, self.settings.max_concurrent_pipelines)

    def destroy_many(self, names: Iterable[str]) -> list[PipelineOutcome]:
        jobs = [(str(name), lambda name=name: self.destroy(name)) for name in names]
        return run_concurrently(jobs, self.settings.max_concurrent_pipelines)
