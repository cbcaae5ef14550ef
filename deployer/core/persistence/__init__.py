"""Persistence — environment records, per-name locks and the audit ledger."""

from deployer.core.persistence.audit import AuditEntry, AuditWriter
from deployer.core.persistence.file_lock import FileLock
from deployer.core.persistence.state_store import EnvironmentStateStore

__all__ = ["AuditEntry", "AuditWriter", "EnvironmentStateStore", "FileLock"]
