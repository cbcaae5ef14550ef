"""
Process executor — run one external command and capture its output.

This is the most fundamental piece of the deployer: every tool adapter
builds its invocations on top of it. Output is always captured, never
streamed to the terminal, and returned whatever the exit status.
Failing to start the program and running past the timeout are the only
conditions reported as exceptions.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from deployer.core.errors import LaunchFailed, TimedOut
from deployer.core.models.invocation import AdapterInvocationResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0


class ProcessExecutor:
    """Run external commands with captured output and a hard timeout.

    Args:
        default_timeout: Timeout in seconds used when a call passes none.
            ``None`` disables the timeout entirely.
    """

    def __init__(self, default_timeout: float | None = DEFAULT_TIMEOUT):
        self.default_timeout = default_timeout

    def execute(
        self,
        program: str,
        args: Sequence[str] = (),
        env_overrides: Mapping[str, str] | None = None,
        working_dir: Path | str | None = None,
        timeout: float | None = None,
    ) -> AdapterInvocationResult:
        """Run ``program`` with ``args`` and wait for it to finish.

        Returns:
            AdapterInvocationResult with exit status, stdout and stderr.

        Raises:
            LaunchFailed: The program or working directory is unusable.
            TimedOut: The timeout elapsed; the process group was killed.
        """
        args = tuple(str(a) for a in args)
        timeout = self.default_timeout if timeout is None else timeout

        if working_dir is not None and not Path(working_dir).is_dir():
            raise LaunchFailed(program, f"working directory does not exist: {working_dir}")

        env = None
        if env_overrides:
            env = {**os.environ, **{k: str(v) for k, v in env_overrides.items()}}

        logger.debug("Executing: %s (cwd=%s)", _display(program, args), working_dir or ".")

        try:
            proc = subprocess.Popen(
                [program, *args],
                cwd=working_dir,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except FileNotFoundError:
            raise LaunchFailed(program, "program not found") from None
        except PermissionError as e:
            raise LaunchFailed(program, f"permission denied ({e.strerror})") from None
        except OSError as e:
            raise LaunchFailed(program, str(e)) from None

        start = time.monotonic()
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_group(proc)
            proc.communicate()
            logger.warning("Killed %s after %ss", program, timeout)
            raise TimedOut(program, timeout) from None
        except BaseException:
            _kill_group(proc)
            proc.wait()
            raise

        elapsed = time.monotonic() - start
        result = AdapterInvocationResult(
            program=program,
            args=args,
            exit_status=proc.returncode,
            stdout=stdout,
            stderr=stderr,
            duration=elapsed,
        )

        logger.debug(
            "%s exited with %d in %dms",
            program,
            result.exit_status,
            result.duration_ms,
        )
        return result


def _kill_group(proc: subprocess.Popen[str]) -> None:
    """Kill the child and anything it spawned."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError:
        proc.kill()


def _display(program: str, args: tuple[str, ...]) -> str:
    return " ".join([program, *args])
