"""
AdapterInvocationResult — what one external process produced.

Ephemeral: produced by the process executor and consumed by the adapter
that asked for it. Never persisted.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field


@dataclass(frozen=True)
class AdapterInvocationResult:
    """Exit status and captured output of one process run."""

    program: str
    args: tuple[str, ...] = field(default_factory=tuple)
    exit_status: int = 0
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0  # seconds

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def command_line(self) -> str:
        """Shell-quoted command line, for logs and error messages."""
        return shlex.join([self.program, *self.args])

    @property
    def duration_ms(self) -> int:
        return int(self.duration * 1000)
