"""
Environment state store — durable, per-name environment records.

Layout under ``data_dir``:

    <name>/environment.json     one record per environment
    .locks/<name>.lock          exclusive lock per environment
    audit.ndjson                lifecycle ledger (see audit.py)

Writes are atomic (write to temp file, then rename) so a crash mid-write
never leaves a half-written record. Unlike a cache, a corrupt record is
an error: losing track of an environment would orphan real infrastructure.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

from pydantic import ValidationError as PydanticValidationError

from deployer.core.errors import NotFound, StateCorrupted
from deployer.core.models.environment import Environment
from deployer.core.persistence.file_lock import FileLock

logger = logging.getLogger(__name__)

RECORD_FILE = "environment.json"
LOCK_DIR = ".locks"

T = TypeVar("T")


class EnvironmentStateStore:
    """File-backed store of Environment records with per-name locking.

    Open it once at process start and close it at shutdown (or use it
    as a context manager). Closing releases any locks still held.
    """

    def __init__(self, data_dir: Path):
        self._data_dir = Path(data_dir)
        self._held: dict[str, FileLock] = {}
        self._guard = threading.Lock()
        self._opened = False

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    # ── Lifecycle ───────────────────────────────────────────────

    def open(self) -> EnvironmentStateStore:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        (self._data_dir / LOCK_DIR).mkdir(exist_ok=True)
        self._opened = True
        logger.debug("State store opened at %s", self._data_dir)
        return self

    def close(self) -> None:
        with self._guard:
            leftovers = list(self._held.values())
            self._held.clear()
        for lock in leftovers:
            logger.warning("Releasing lock for '%s' at store shutdown", lock.name)
            lock.release()
        self._opened = False

    def __enter__(self) -> EnvironmentStateStore:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ── Paths ───────────────────────────────────────────────────

    def record_path(self, name: str) -> Path:
        return self._data_dir / name / RECORD_FILE

    def lock_path(self, name: str) -> Path:
        return self._data_dir / LOCK_DIR / f"{name}.lock"

    # ── Records ─────────────────────────────────────────────────

    def exists(self, name: str) -> bool:
        return self.record_path(name).is_file()

    def find(self, name: str) -> Environment | None:
        """Load a record, or None if there is none."""
        path = self.record_path(name)
        if not path.is_file():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StateCorrupted(path, f"invalid JSON: {e}") from e
        except OSError as e:
            raise StateCorrupted(path, str(e)) from e

        try:
            env = Environment.model_validate(data)
        except PydanticValidationError as e:
            raise StateCorrupted(path, f"schema mismatch: {e.error_count()} error(s)") from e

        logger.debug("Loaded '%s' from %s (state=%s)", name, path, env.state)
        return env

    def load(self, name: str) -> Environment:
        """Load a record or raise NotFound."""
        env = self.find(name)
        if env is None:
            raise NotFound(name)
        return env

    def save(self, env: Environment) -> None:
        """Write a record atomically."""
        path = self.record_path(env.name)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = env.model_dump(mode="json")
        content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".env_", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            with open(fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.replace(path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        logger.debug("Saved '%s' (state=%s)", env.name, env.state)

    def delete(self, name: str) -> None:
        """Remove a record and its directory. Missing records are ignored."""
        env_dir = self._data_dir / name
        if env_dir.is_dir():
            shutil.rmtree(env_dir)
            logger.info("Removed environment record '%s'", name)

    def list_names(self) -> list[str]:
        if not self._data_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self._data_dir.iterdir()
            if entry.is_dir() and (entry / RECORD_FILE).is_file()
        )

    # ── Locking ─────────────────────────────────────────────────

    @contextmanager
    def lock(self, name: str) -> Iterator[None]:
        """Hold the exclusive lock for ``name``; EnvironmentBusy if taken."""
        lock = FileLock(self.lock_path(name), name)
        lock.acquire()
        with self._guard:
            self._held[name] = lock
        try:
            yield
        finally:
            with self._guard:
                self._held.pop(name, None)
            lock.release()

    def with_exclusive_lock(self, name: str, fn: Callable[[], T]) -> T:
        """Run ``fn`` while holding the lock for ``name``."""
        with self.lock(name):
            return fn()
