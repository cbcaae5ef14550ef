"""
Bounded retry — explicit retry loops with pluggable backoff.

A backoff policy is a callable taking the 1-based number of the attempt
that just failed and returning the delay in seconds before the next one:

    retry_call(step, max_attempts=3, backoff=linear_backoff(5.0),
               retry_on=(AdapterError,))

Only exceptions listed in ``retry_on`` are retried; anything else
propagates on first occurrence. When attempts run out, the last error
propagates unchanged.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Backoff = Callable[[int], float]


def fixed_backoff(delay: float) -> Backoff:
    return lambda attempt: delay


def linear_backoff(step: float, max_delay: float | None = None) -> Backoff:
    """``step * attempt``, optionally capped."""

    def policy(attempt: int) -> float:
        delay = step * attempt
        return min(delay, max_delay) if max_delay is not None else delay

    return policy


def exponential_backoff(
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: float = 0.0,
) -> Backoff:
    """``base_delay * 2**(attempt-1)`` capped at ``max_delay``, plus optional jitter.

    ``jitter`` is a fraction of the delay added at random (0.3 = up to +30%).
    """

    def policy(attempt: int) -> float:
        delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
        if jitter:
            delay += random.uniform(0, delay * jitter)
        return delay

    return policy


def retry_call(
    fn: Callable[[], T],
    max_attempts: int,
    backoff: Backoff,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    label: str = "",
) -> T:
    """Call ``fn`` until it succeeds or ``max_attempts`` calls have failed."""
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    name = label or getattr(fn, "__name__", "call")
    attempt = 1
    while True:
        try:
            return fn()
        except retry_on as e:
            if attempt >= max_attempts:
                logger.warning("%s failed after %d attempt(s): %s", name, attempt, e)
                raise
            delay = backoff(attempt)
            logger.info(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                name,
                attempt,
                max_attempts,
                delay,
                e,
            )
            sleep(delay)
            attempt += 1
