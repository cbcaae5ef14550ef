"""Use cases — the create, destroy and status command handlers."""

from deployer.core.use_cases.create import CreateHandler
from deployer.core.use_cases.destroy import DestroyHandler
from deployer.core.use_cases.status import StatusHandler

__all__ = ["CreateHandler", "DestroyHandler", "StatusHandler"]
