"""Retry schedule for publishing: an explicit attempt state machine.

    Attempting(n) -> Success
                  -> Retrying(delay) -> Attempting(n + 1)
                  -> PermanentFailure

The schedule holds no I/O; the pipeline drives it and does the sleeping.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional


class AttemptState(Enum):
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PublishAttempt:
    """Per-message retry state. Lives only as long as one publish call."""

    attempt_count: int = 0
    last_error: Optional[Exception] = None
    next_retry_at: Optional[datetime] = None
    state: AttemptState = AttemptState.ATTEMPTING
    total_delay: float = 0.0


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.1  # fraction of the delay, applied both ways

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")
        if not 0 <= self.jitter < 1:
            raise ValueError(f"jitter must be in [0, 1), got {self.jitter}")

    def delay_for(
        self,
        attempt: int,
        retry_after: Optional[float] = None,
        rand: Callable[[], float] = random.random,
    ) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.base_delay * (self.factor ** max(attempt - 1, 0))
        if self.jitter:
            delay *= 1 + self.jitter * (2 * rand() - 1)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.max_delay)


class RetrySchedule:
    """Drives a PublishAttempt through the attempt state machine."""

    def __init__(
        self,
        policy: RetryPolicy,
        rand: Callable[[], float] = random.random,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.policy = policy
        self._rand = rand
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.attempt = PublishAttempt()

    @property
    def state(self) -> AttemptState:
        return self.attempt.state

    def begin(self) -> int:
        """Enter Attempting(n+1). Returns the new attempt number."""
        if self.attempt.state in (AttemptState.SUCCEEDED, AttemptState.FAILED):
            raise RuntimeError(f"attempt sequence already {self.attempt.state.value}")
        self.attempt.attempt_count += 1
        self.attempt.state = AttemptState.ATTEMPTING
        self.attempt.next_retry_at = None
        return self.attempt.attempt_count

    def succeed(self):
        self.attempt.state = AttemptState.SUCCEEDED
        self.attempt.last_error = None

    def fail(self, error: Exception):
        """Permanent failure: no further attempts."""
        self.attempt.last_error = error
        self.attempt.state = AttemptState.FAILED

    @property
    def exhausted(self) -> bool:
        return self.attempt.attempt_count >= self.policy.max_attempts

    def retry_now(self, error: Exception) -> bool:
        """Schedule an immediate retry (no backoff). False if out of attempts."""
        return self._schedule(error, 0.0) is not None

    def retry_later(self, error: Exception, retry_after: Optional[float] = None) -> Optional[float]:
        """Enter Retrying(delay). Returns the delay, or None when exhausted."""
        delay = self.policy.delay_for(self.attempt.attempt_count, retry_after, self._rand)
        return self._schedule(error, delay)

    def _schedule(self, error: Exception, delay: float) -> Optional[float]:
        self.attempt.last_error = error
        if self.exhausted:
            self.attempt.state = AttemptState.FAILED
            return None
        self.attempt.state = AttemptState.RETRYING
        self.attempt.next_retry_at = self._clock() + timedelta(seconds=delay)
        self.attempt.total_delay += delay
        return delay
