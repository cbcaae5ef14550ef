"""
SSH remote shell — run commands on provisioned hosts and wait for them.

Instances are freshly created, so their host keys are never known in
advance: host key checking is off and nothing is written to
known_hosts. ``BatchMode`` makes ssh fail instead of prompting.

Readiness is a bounded probe loop. With credentials the probe is a real
login (``echo ok``), otherwise a plain TCP connect to the SSH port.
"""

from __future__ import annotations

import logging
import socket
import time
from collections.abc import Callable, Sequence

from deployer.adapters.base import RemoteShell, ToolAdapter
from deployer.adapters.shell.command import ProcessExecutor
from deployer.core.config.creation import SshCredentials
from deployer.core.errors import ConnectivityTimeout, TimedOut, stderr_excerpt

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5
DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_RETRY_INTERVAL = 2.0

PROBE_COMMAND = "echo ok"

_KNOWN_HOSTS_NOTICE = "Permanently added"


class SshRemoteShell(ToolAdapter, RemoteShell):
    """Remote-shell role backed by the OpenSSH client."""

    tool = "ssh"
    default_binary = "ssh"

    def __init__(
        self,
        executor: ProcessExecutor,
        binary: str | None = None,
        timeout: float | None = None,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(executor, binary, timeout)
        self.connect_timeout = connect_timeout
        self._sleep = sleep

    def build_args(
        self,
        host: str,
        port: int,
        credentials: SshCredentials,
        command: str,
        extra_options: Sequence[str] = (),
    ) -> list[str]:
        args = [
            "-i", str(credentials.private_key_path),
            "-p", str(port),
            "-o", "StrictHostKeyChecking=no",
            "-o", "UserKnownHostsFile=/dev/null",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "BatchMode=yes",
        ]
        for option in extra_options:
            args += ["-o", option]
        args.append(f"{credentials.username}@{host}")
        args.append(command)
        return args

    def connect_and_run(
        self,
        host: str,
        port: int,
        credentials: SshCredentials,
        command: str,
        timeout: float | None = None,
    ) -> str:
        logger.debug("ssh %s@%s:%d: %s", credentials.username, host, port, command)
        result = self._invoke(self.build_args(host, port, credentials, command), timeout=timeout)
        self._log_warnings(result.stderr)
        if not result.ok:
            raise self._error("connect_and_run", result, detail=f"command: {command}")
        return result.stdout

    def check(self, host: str, port: int, credentials: SshCredentials, command: str) -> bool:
        """Run ``command`` and report only whether it exited 0."""
        result = self._invoke(self.build_args(host, port, credentials, command))
        self._log_warnings(result.stderr)
        return result.ok

    def wait_for_ready(
        self,
        host: str,
        port: int,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: Callable[[int], float] = lambda attempt: DEFAULT_RETRY_INTERVAL,
        credentials: SshCredentials | None = None,
    ) -> int:
        logger.info("Waiting for %s:%d (up to %d attempts)", host, port, max_attempts)
        last_error = ""

        for attempt in range(1, max_attempts + 1):
            if credentials is not None:
                ready, last_error = self._probe_login(host, port, credentials)
            else:
                ready, last_error = self._probe_tcp(host, port)

            if ready:
                logger.info("%s:%d ready after %d attempt(s)", host, port, attempt)
                return attempt

            logger.debug("%s:%d not ready (attempt %d/%d): %s", host, port, attempt, max_attempts, last_error)
            if attempt < max_attempts:
                self._sleep(backoff(attempt))

        raise ConnectivityTimeout(host, port, max_attempts, last_error)

    # ── Probes ──────────────────────────────────────────────────

    def _probe_login(self, host: str, port: int, credentials: SshCredentials) -> tuple[bool, str]:
        # LaunchFailed propagates: a missing ssh binary will not appear by waiting
        try:
            result = self._invoke(
                self.build_args(host, port, credentials, PROBE_COMMAND),
                timeout=self.connect_timeout + 10,
            )
        except TimedOut as e:
            return False, str(e)
        if result.ok:
            return True, ""
        return False, stderr_excerpt(result.stderr) or f"exit code {result.exit_status}"

    def _probe_tcp(self, host: str, port: int) -> tuple[bool, str]:
        try:
            with socket.create_connection((host, port), timeout=self.connect_timeout):
                return True, ""
        except OSError as e:
            return False, str(e)

    @staticmethod
    def _log_warnings(stderr: str) -> None:
        for line in stderr.splitlines():
            line = line.strip()
            if not line.startswith("Warning:"):
                continue
            if _KNOWN_HOSTS_NOTICE in line:
                logger.debug("ssh: %s", line)
            else:
                logger.warning("ssh: %s", line)
