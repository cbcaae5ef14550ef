"""Status — inspect one environment or list them all."""

from __future__ import annotations

import logging

from deployer.core.errors import StateCorrupted
from deployer.core.models.environment import Environment
from deployer.core.persistence.state_store import EnvironmentStateStore

logger = logging.getLogger(__name__)


class StatusHandler:
    def __init__(self, store: EnvironmentStateStore):
        self.store = store

    def execute(self, name: str) -> Environment:
        """Current record of ``name``, read under its lock.

        Raises:
            EnvironmentBusy: A create or destroy is in progress.
            NotFound: No such environment.
        """
        with self.store.lock(name):
            return self.store.load(name)

    def list_environments(self) -> list[Environment]:
        """All records, without locking. Corrupt records are reported and skipped."""
        environments = []
        for name in self.store.list_names():
            try:
                env = self.store.find(name)
            except StateCorrupted as e:
                logger.warning("%s", e)
                continue
            if env is not None:
                environments.append(env)
        return environments
