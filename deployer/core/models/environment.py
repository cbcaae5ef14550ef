"""
Environment — the aggregate tracked through the lifecycle state machine.

One record per environment name, serialized to
``<data_dir>/<name>/environment.json``. Only lifecycle handlers mutate it,
and only through ``transition_to()`` / ``fail()``, which enforce the
state graph:

    created → provisioning → provisioned → configuring → configured
            → verifying → running

    running | configured | provisioned | failed → destroying → destroyed

    any state except destroyed/failed → failed
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from deployer.core.errors import DeployerError, InvalidTransition


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ProvisioningState(StrEnum):
    """Lifecycle states of an environment."""

    CREATED = "created"
    PROVISIONING = "provisioning"
    PROVISIONED = "provisioned"
    CONFIGURING = "configuring"
    CONFIGURED = "configured"
    VERIFYING = "verifying"
    RUNNING = "running"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"
    FAILED = "failed"


S = ProvisioningState

# Forward edges. FAILED is reachable from every state not listed in
# _NO_FAILURE and is handled separately.
TRANSITIONS: dict[ProvisioningState, frozenset[ProvisioningState]] = {
    S.CREATED: frozenset({S.PROVISIONING}),
    S.PROVISIONING: frozenset({S.PROVISIONED}),
    S.PROVISIONED: frozenset({S.CONFIGURING, S.DESTROYING}),
    S.CONFIGURING: frozenset({S.CONFIGURED}),
    S.CONFIGURED: frozenset({S.VERIFYING, S.DESTROYING}),
    S.VERIFYING: frozenset({S.RUNNING}),
    S.RUNNING: frozenset({S.DESTROYING}),
    S.DESTROYING: frozenset({S.DESTROYED}),
    S.DESTROYED: frozenset(),
    S.FAILED: frozenset({S.DESTROYING}),
}

_NO_FAILURE = frozenset({S.DESTROYED, S.FAILED})

DESTROYABLE_STATES = frozenset(
    state for state, targets in TRANSITIONS.items() if S.DESTROYING in targets
)


def can_transition(current: ProvisioningState, target: ProvisioningState) -> bool:
    """Whether ``current → target`` is an edge of the lifecycle graph."""
    if target == S.FAILED:
        return current not in _NO_FAILURE
    return target in TRANSITIONS[current]


class FailureRecord(BaseModel):
    """Why and where an environment entered the failed state."""

    at: str                                   # step label, e.g. "configuring"
    previous_state: ProvisioningState         # last state before failing
    cause: dict[str, Any] = Field(default_factory=dict)
    failed_at: str = Field(default_factory=_now_iso)

    @property
    def kind(self) -> str:
        return self.cause.get("kind", "")

    @property
    def message(self) -> str:
        return self.cause.get("message", "")


class Environment(BaseModel):
    """Root record of one deployed environment."""

    schema_version: int = 1

    # ── Identity ─────────────────────────────────────────────────
    name: str
    instance_name: str = ""
    provider: str = ""

    # ── Lifecycle ────────────────────────────────────────────────
    state: ProvisioningState = ProvisioningState.CREATED
    last_error: FailureRecord | None = None

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    transitioned_at: str = Field(default_factory=_now_iso)

    # ── Configuration snapshot + connectivity facts ──────────────
    config: dict[str, Any] = Field(default_factory=dict)
    instance_ip: str | None = None

    @property
    def is_failed(self) -> bool:
        return self.state == ProvisioningState.FAILED

    @property
    def ssh_port(self) -> int:
        return int(self.config.get("ssh_credentials", {}).get("port", 22))

    def transition_to(self, target: ProvisioningState) -> None:
        """Move to ``target`` or raise InvalidTransition (state unchanged)."""
        target = ProvisioningState(target)
        if target == ProvisioningState.FAILED:
            raise InvalidTransition(
                self.name, self.state.value, target.value, "use fail() to record a failure"
            )
        if not can_transition(self.state, target):
            raise InvalidTransition(self.name, self.state.value, target.value)
        self.state = target
        self.transitioned_at = _now_iso()

    def fail(self, at: str, cause: DeployerError) -> FailureRecord:
        """Record a failure at step ``at`` and move to FAILED."""
        if not can_transition(self.state, ProvisioningState.FAILED):
            raise InvalidTransition(self.name, self.state.value, ProvisioningState.FAILED.value)
        record = FailureRecord(at=at, previous_state=self.state, cause=cause.to_dict())
        self.last_error = record
        self.state = ProvisioningState.FAILED
        self.transitioned_at = record.failed_at
        return record

    def summary(self) -> dict[str, Any]:
        """Compact view for listings."""
        data: dict[str, Any] = {
            "name": self.name,
            "state": self.state.value,
            "provider": self.provider,
            "instance_ip": self.instance_ip,
            "transitioned_at": self.transitioned_at,
        }
        if self.last_error is not None:
            data["failed_at_step"] = self.last_error.at
            data["error"] = self.last_error.message
        return data
