"""
Error taxonomy — every failure the deployer can report.

Errors are grouped by where they originate:

    ValidationError        config construction (never reaches a handler)
    ExecutionError         process executor (LaunchFailed, TimedOut)
    AdapterError           a tool ran and reported failure
    ConnectivityTimeout    remote shell exhausted readiness attempts
    LifecycleError         state-machine and store guards
    Interrupted            a run that stopped before recording an outcome

Every error can be flattened with ``to_dict()`` so it can be persisted
into an environment's failure record and printed as JSON by the CLI.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

# Longest stderr tail kept on an AdapterError
STDERR_EXCERPT_LINES = 20
STDERR_EXCERPT_CHARS = 2000


def stderr_excerpt(stderr: str) -> str:
    """Return the diagnostic tail of a tool's stderr."""
    lines = [line for line in stderr.strip().splitlines() if line.strip()]
    tail = "\n".join(lines[-STDERR_EXCERPT_LINES:])
    if len(tail) > STDERR_EXCERPT_CHARS:
        tail = "…" + tail[-STDERR_EXCERPT_CHARS:]
    return tail


class DeployerError(Exception):
    """Base class for all deployer errors."""

    kind = "deployer_error"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": str(self)}


# ── Validation ──────────────────────────────────────────────────


class ValidationError(DeployerError, ValueError):
    """A raw value failed its value-object invariants."""

    kind = "validation_error"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "field": self.field, "reason": self.reason}


class ConfigError(DeployerError):
    """Raised when a configuration file is missing or unreadable."""

    kind = "config_error"


# ── Process execution ───────────────────────────────────────────


class ExecutionError(DeployerError):
    """The process executor could not run a command to completion."""

    kind = "execution_error"

    def __init__(self, program: str, message: str):
        self.program = program
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "tool": self.program}


class LaunchFailed(ExecutionError):
    """The program could not be started (missing binary, permissions, cwd)."""

    kind = "launch_failed"

    def __init__(self, program: str, reason: str):
        self.reason = reason
        super().__init__(program, f"Cannot launch '{program}': {reason}")


class TimedOut(ExecutionError):
    """The program ran longer than its timeout and was killed."""

    kind = "timed_out"

    def __init__(self, program: str, timeout: float):
        self.timeout = timeout
        super().__init__(program, f"'{program}' timed out after {timeout:g}s and was killed")


# ── Adapters ────────────────────────────────────────────────────


class AdapterError(DeployerError):
    """A tool ran but reported failure (non-zero exit or unparseable output)."""

    kind = "adapter_error"

    def __init__(
        self,
        tool: str,
        operation: str,
        exit_code: int | None,
        stderr_excerpt: str = "",
        failed_hosts: list[str] | None = None,
        detail: str = "",
    ):
        self.tool = tool
        self.operation = operation
        self.exit_code = exit_code
        self.stderr_excerpt = stderr_excerpt
        self.failed_hosts = failed_hosts or []
        self.detail = detail

        parts = [f"{tool} {operation} failed"]
        if exit_code is not None:
            parts[0] += f" with exit code {exit_code}"
        if self.failed_hosts:
            parts.append(f"failed hosts: {', '.join(self.failed_hosts)}")
        if detail:
            parts.append(detail)
        if stderr_excerpt:
            parts.append(stderr_excerpt)
        super().__init__(": ".join(parts))

    def to_dict(self) -> dict[str, Any]:
        data = {
            **super().to_dict(),
            "tool": self.tool,
            "operation": self.operation,
            "exit_code": self.exit_code,
            "stderr_excerpt": self.stderr_excerpt,
        }
        if self.failed_hosts:
            data["failed_hosts"] = list(self.failed_hosts)
        return data


class ConnectivityTimeout(DeployerError):
    """The remote host never became reachable within the attempt budget."""

    kind = "connectivity_timeout"

    def __init__(self, host: str, port: int, attempts: int, last_error: str = ""):
        self.host = host
        self.port = port
        self.attempts = attempts
        self.last_error = last_error
        message = f"{host}:{port} not reachable after {attempts} attempts"
        if last_error:
            message += f" (last error: {last_error})"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "tool": "ssh",
            "host": self.host,
            "port": self.port,
            "attempts": self.attempts,
        }


# ── Lifecycle ───────────────────────────────────────────────────


class LifecycleError(DeployerError):
    """Base for state-machine and store guard violations."""

    kind = "lifecycle_error"


class EnvironmentBusy(LifecycleError):
    """Another operation holds the environment's lock."""

    kind = "environment_busy"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Environment '{name}' is busy: another operation holds its lock")


class AlreadyExists(LifecycleError):
    kind = "already_exists"

    def __init__(self, name: str, state: str):
        self.name = name
        self.state = state
        super().__init__(f"Environment '{name}' already exists (state: {state})")


class NotFound(LifecycleError):
    kind = "not_found"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Environment '{name}' not found")


class InvalidTransition(LifecycleError):
    """The requested state change is not an edge of the lifecycle graph."""

    kind = "invalid_transition"

    def __init__(self, name: str, current: str, target: str, hint: str = ""):
        self.name = name
        self.current = current
        self.target = target
        message = f"Environment '{name}' cannot move from '{current}' to '{target}'"
        if hint:
            message += f": {hint}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "current": self.current, "target": self.target}


class StepFailed(LifecycleError):
    """A lifecycle step failed; wraps the classified cause with the step."""

    kind = "step_failed"

    def __init__(self, name: str, step: str, cause: DeployerError):
        self.name = name
        self.step = step
        self.cause = cause
        super().__init__(f"Environment '{name}' failed at '{step}': [{cause.kind}] {cause}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "step": self.step, "cause": self.cause.to_dict()}


class StateCorrupted(LifecycleError):
    """A persisted environment record could not be parsed."""

    kind = "state_corrupted"

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt environment record {path}: {reason}")


class InternalError(DeployerError):
    """An unexpected exception inside a lifecycle step."""

    kind = "internal_error"

    @classmethod
    def from_exception(cls, exc: BaseException) -> InternalError:
        return cls(f"{type(exc).__name__}: {exc}")


class Interrupted(DeployerError):
    """A run stopped mid-step without failing (Ctrl-C, SystemExit, a killed process)."""

    kind = "interrupted"

    @classmethod
    def from_exception(cls, exc: BaseException) -> Interrupted:
        return cls(f"Run interrupted by {type(exc).__name__}")
