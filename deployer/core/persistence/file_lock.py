"""
Per-environment exclusive lock backed by ``fcntl.flock``.

Each lock is an open file description holding ``LOCK_EX | LOCK_NB`` on
``<lock_dir>/<name>.lock``. Two threads or two processes asking for the
same name conflict. The kernel drops the lock if the holder dies, so a
crashed run never leaves an environment locked. The holder's pid is
written into the file for diagnostics only.
"""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path

from deployer.core.errors import EnvironmentBusy

logger = logging.getLogger(__name__)


class FileLock:
    """Non-blocking exclusive lock on one lock file."""

    def __init__(self, path: Path, name: str):
        self.path = path
        self.name = name
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """Take the lock or raise EnvironmentBusy immediately."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            logger.info("Lock for '%s' is held elsewhere", self.name)
            raise EnvironmentBusy(self.name) from None
        except BaseException:
            os.close(fd)
            raise

        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        self._fd = fd
        logger.debug("Acquired lock %s", self.path)

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Released lock %s", self.path)

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
