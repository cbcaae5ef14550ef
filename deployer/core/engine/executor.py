"""
Engine executor — step tracking for lifecycle runs and concurrent pipelines.

A ``LifecycleRun`` wraps one create or destroy of one environment. Handlers
call ``step()`` for every unit of work and ``advance()`` to move the state
machine. When a step raises, the run:

    1. classifies the error (unknown exceptions become InternalError)
    2. moves the environment to FAILED with a FailureRecord
    3. saves the record and writes an audit entry
    4. raises StepFailed, chained to the original exception

so by the time a caller sees the error it is already durable. A step stopped
by KeyboardInterrupt or SystemExit is persisted the same way (as an
Interrupted failure) and then re-raised unchanged.

``run_concurrently`` runs independent pipelines on a bounded thread pool.
Per-environment exclusion is the state store's lock, not the pool.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, NoReturn, TypeVar

from deployer.core.errors import DeployerError, InternalError, Interrupted, StepFailed
from deployer.core.models.environment import Environment, ProvisioningState
from deployer.core.persistence.audit import AuditEntry, AuditWriter
from deployer.core.persistence.state_store import EnvironmentStateStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def classify(exc: BaseException) -> DeployerError:
    """Map any exception to a member of the error taxonomy."""
    if isinstance(exc, DeployerError):
        return exc
    return InternalError.from_exception(exc)


class LifecycleRun:
    """Tracks the steps of one operation on one environment."""

    def __init__(
        self,
        operation: str,
        env: Environment,
        store: EnvironmentStateStore,
        audit: AuditWriter,
    ):
        self.operation = operation
        self.env = env
        self.store = store
        self.audit = audit
        self.operation_id = uuid.uuid4().hex[:12]
        self.from_state = env.state
        self.steps_completed: list[str] = []
        self._start = time.monotonic()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    def advance(self, state: ProvisioningState) -> None:
        """Transition and persist."""
        self.env.transition_to(state)
        self.store.save(self.env)
        logger.info("Environment '%s' is now %s", self.env.name, state.value)

    def step(self, name: str, fn: Callable[[], T], at: str | None = None) -> T:
        """Run one step; on failure persist it at ``at`` (default: ``name``)."""
        logger.debug("[%s] %s: step %s", self.operation_id, self.env.name, name)
        started = time.monotonic()
        try:
            result = fn()
        except Exception as e:
            self.fail(at or name, e)
        except BaseException as e:
            self.interrupt(at or name, e)
            raise
        self.steps_completed.append(name)
        logger.debug(
            "[%s] %s: step %s done in %dms",
            self.operation_id,
            self.env.name,
            name,
            int((time.monotonic() - started) * 1000),
        )
        return result

    def fail(self, at: str, exc: BaseException) -> NoReturn:
        cause = classify(exc)
        if isinstance(cause, InternalError):
            logger.exception("Unexpected error in '%s' at %s", self.env.name, at)

        self.env.fail(at, cause)
        self.store.save(self.env)
        logger.error("Environment '%s' failed at %s: %s", self.env.name, at, cause)

        self.record("failed", failed_step=at, errors=[str(cause)])
        raise StepFailed(self.env.name, at, cause) from exc

    def interrupt(self, at: str, exc: BaseException) -> None:
        """Persist a step stopped by ``exc`` as FAILED; the caller re-raises it."""
        cause = Interrupted.from_exception(exc)
        self.env.fail(at, cause)
        self.store.save(self.env)
        logger.error("Environment '%s' interrupted at %s", self.env.name, at)
        self.record("failed", failed_step=at, errors=[str(cause)])

    def finish(self, **context: Any) -> None:
        self.record("ok", context=context)
        logger.info(
            "%s of '%s' finished in %dms",
            self.operation.capitalize(),
            self.env.name,
            self.elapsed_ms,
        )

    def record(
        self,
        status: str,
        failed_step: str = "",
        errors: list[str] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.audit.write(
            AuditEntry(
                operation_id=self.operation_id,
                operation=self.operation,
                environment=self.env.name,
                provider=self.env.provider,
                status=status,
                from_state=self.from_state.value,
                to_state=self.env.state.value,
                failed_step=failed_step,
                steps_completed=list(self.steps_completed),
                duration_ms=self.elapsed_ms,
                errors=errors or [],
                context=context or {},
            )
        )


# ── Concurrent pipelines ────────────────────────────────────────


@dataclass
class PipelineOutcome:
    """Result of one pipeline: an environment or the error it ended with."""

    name: str
    environment: Environment | None = None
    error: DeployerError | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "ok": self.ok, "duration_ms": self.duration_ms}
        if self.environment is not None:
            data["environment"] = self.environment.summary()
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass
class _Job:
    name: str
    fn: Callable[[], Environment | None]
    outcome: PipelineOutcome = field(init=False)


def run_concurrently(
    jobs: Sequence[tuple[str, Callable[[], Environment | None]]],
    max_workers: int,
) -> list[PipelineOutcome]:
    """Run pipelines in parallel; one outcome per job, in input order.

    Never raises for a failed pipeline: every error is captured in its
    outcome so one environment cannot abort the others.
    """
    if not jobs:
        return []

    pending = [_Job(name, fn) for name, fn in jobs]

    def _exec(job: _Job) -> PipelineOutcome:
        started = time.monotonic()
        outcome = PipelineOutcome(name=job.name)
        try:
            outcome.environment = job.fn()
        except Exception as e:
            outcome.error = classify(e)
            if isinstance(outcome.error, InternalError):
                logger.exception("Pipeline for '%s' raised unexpectedly", job.name)
        outcome.duration_ms = int((time.monotonic() - started) * 1000)
        return outcome

    workers = max(1, min(max_workers, len(pending)))
    logger.info("Running %d pipeline(s) on %d worker(s)", len(pending), workers)

    with concurrent.futures.ThreadPoolExecutor(
        max_workers=workers,
        thread_name_prefix="pipeline",
    ) as pool:
        futures = {pool.submit(_exec, job): job for job in pending}
        for future in concurrent.futures.as_completed(futures):
            job = futures[future]
            job.outcome = future.result()
            logger.info(
                "Pipeline '%s' %s",
                job.name,
                "succeeded" if job.outcome.ok else f"failed: {job.outcome.error}",
            )

    return [job.outcome for job in pending]
