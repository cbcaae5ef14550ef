"""
Audit ledger — append-only lifecycle history.

Every create and destroy outcome appends one line to an NDJSON
(newline-delimited JSON) file at ``<data_dir>/audit.ndjson``. Entries are
never modified or deleted, so the ledger still tells what happened to an
environment after its record has been removed.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single audit log entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    operation: str = ""            # create, destroy

    environment: str = ""
    provider: str = ""

    # Outcome
    status: str = ""               # ok, failed
    from_state: str = ""
    to_state: str = ""
    failed_step: str = ""
    steps_completed: list[str] = Field(default_factory=list)
    duration_ms: int = 0

    errors: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Append-only audit ledger writer.

    Safe to share between pipeline threads: each entry is written as one
    line under a lock. A failed write is logged, never raised, so the
    ledger cannot turn a successful operation into a failed one.
    """

    def __init__(self, path: Path):
        self._path = path
        self._lock = threading.Lock()

    @classmethod
    def for_data_dir(cls, data_dir: Path) -> AuditWriter:
        return cls(data_dir / AUDIT_FILE)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        data = entry.model_dump(mode="json")
        line = json.dumps(data, ensure_ascii=False) + "\n"

        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as e:
                logger.error("Failed to write audit entry: %s", e)
                return
        logger.debug("Audit entry written: %s/%s", entry.operation, entry.environment)

    def read_all(self) -> list[AuditEntry]:
        """Read all entries, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        with self._path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(AuditEntry.model_validate_json(line))
                except ValueError as e:
                    logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        return entries

    def read_recent(self, n: int = 20, environment: str | None = None) -> list[AuditEntry]:
        entries = self.read_all()
        if environment is not None:
            entries = [e for e in entries if e.environment == environment]
        return entries[-n:]
