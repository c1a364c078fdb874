"""Per-feed retry bookkeeping.

A feed is either *eligible* (no recorded failures) or in *backoff* until
``next_eligible_at``. Transitions are pure functions over frozen values and
take the current time as an argument, so they can be exercised without real
timers.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential delay between retries, capped at ``max_seconds``."""

    base_seconds: float = 60.0
    max_seconds: float = 3600.0

    def __post_init__(self):
        if self.base_seconds <= 0:
            raise ValueError("backoff base must be positive")
        if self.max_seconds < self.base_seconds:
            raise ValueError("backoff ceiling must not be below the base delay")

    def delay(self, attempts: int) -> timedelta:
        """Return the wait imposed after ``attempts`` consecutive failures."""
        if attempts <= 0:
            return timedelta(0)
        # the ceiling is reached long before the exponent grows this large
        exponent = min(attempts - 1, 64)
        seconds = min(self.base_seconds * (2**exponent), self.max_seconds)
        return timedelta(seconds=seconds)


@dataclass(frozen=True)
class RetryState:
    """Attempt counter, backoff deadline and last error of one feed."""

    attempts: int = 0
    next_eligible_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def __post_init__(self):
        if self.attempts < 0:
            raise ValueError("attempts must be non-negative")
        if (self.attempts == 0) != (self.next_eligible_at is None):
            raise ValueError("a backoff deadline is set exactly when attempts > 0")

    @property
    def in_backoff(self) -> bool:
        return self.attempts > 0


def should_attempt(state: RetryState, now: datetime) -> bool:
    """Return True if the feed may be fetched at ``now``."""
    if state.attempts == 0:
        return True
    return now >= state.next_eligible_at


def on_success(state: RetryState) -> RetryState:
    """Reset the feed to the eligible state."""
    if state.attempts == 0 and state.last_error is None:
        return state
    return RetryState()


def on_failure(
    state: RetryState,
    now: datetime,
    error: str,
    policy: BackoffPolicy = BackoffPolicy(),
) -> RetryState:
    """Record a failed fetch and push the next attempt out."""
    attempts = state.attempts + 1
    return replace(
        state,
        attempts=attempts,
        last_error=error,
        next_eligible_at=now + policy.delay(attempts),
    )
