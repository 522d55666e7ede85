"""Retry policy: whether to retry a failure and how long to wait.

Pure functions of (error, attempt count, policy); no I/O.

Delays follow exponential backoff with a ceiling:

    delay(n) = min(initial * multiplier ** (n - 1), max_delay)

With initial=2s, multiplier=2, max=60s:

    Attempt | 1  | 2  | 3  | 4   | 5   | 6   | 7
    Delay   | 2s | 4s | 8s | 16s | 32s | 60s | 60s
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import NamedTuple

from .faults import FailureKind, classify


class RetryDecision(NamedTuple):
    """Outcome of RetryPolicy.decide()."""

    should_retry: bool
    failure_kind: FailureKind
    delay: timedelta


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry limits and exponential backoff parameters.

    Attributes:
        max_retry_attempts: Attempts after which a message is dead-lettered.
        initial_retry_delay: Delay before the first retry.
        backoff_multiplier: Growth factor per further attempt (>= 1).
        max_retry_delay: Ceiling for any single delay.

    Example:
        policy = RetryPolicy(max_retry_attempts=5)

        policy.should_retry(TimeoutError(), attempt_count=1)  # True
        policy.should_retry(ValueError(), attempt_count=1)    # False (permanent)
        policy.retry_delay(3)                                 # 8 seconds
    """

    max_retry_attempts: int = 3
    initial_retry_delay: timedelta = timedelta(seconds=2)
    backoff_multiplier: float = 2.0
    max_retry_delay: timedelta = timedelta(seconds=300)

    def __post_init__(self) -> None:
        if self.max_retry_attempts < 1:
            msg = f"max_retry_attempts must be >= 1, got {self.max_retry_attempts}"
            raise ValueError(msg)
        if self.backoff_multiplier < 1.0:
            msg = f"backoff_multiplier must be >= 1.0, got {self.backoff_multiplier}"
            raise ValueError(msg)
        if self.initial_retry_delay < timedelta(0):
            msg = "initial_retry_delay must not be negative"
            raise ValueError(msg)
        if self.max_retry_delay < self.initial_retry_delay:
            msg = (
                f"max_retry_delay ({self.max_retry_delay}) must be >= "
                f"initial_retry_delay ({self.initial_retry_delay})"
            )
            raise ValueError(msg)

    def should_retry(self, error: BaseException, attempt_count: int) -> bool:
        """Decide whether a failed message should be retried.

        Once attempt_count reaches max_retry_attempts the answer is always
        False. Below the limit, transient failures are retried, permanent and
        critical ones are not, and unknown failures get half of the budget
        (``attempt_count < max_retry_attempts // 2``).
        """
        return self._should_retry(classify(error), attempt_count)

    def _should_retry(self, kind: FailureKind, attempt_count: int) -> bool:
        if attempt_count >= self.max_retry_attempts:
            return False

        match kind:
            case FailureKind.TRANSIENT:
                return True
            case FailureKind.PERMANENT | FailureKind.CRITICAL:
                return False
            case _:
                return attempt_count < self.max_retry_attempts // 2

    def retry_delay(self, attempt_count: int) -> timedelta:
        """Delay before retrying after the given (1-based) attempt.

        Attempt counts below 1 are treated as 1; float overflow on very large
        attempt counts saturates at max_retry_delay.
        """
        exponent = max(attempt_count, 1) - 1
        initial = self.initial_retry_delay.total_seconds()
        ceiling = self.max_retry_delay.total_seconds()
        if initial == 0:
            return timedelta(0)
        try:
            seconds = initial * self.backoff_multiplier**exponent
        except OverflowError:
            return self.max_retry_delay
        if seconds >= ceiling:
            return self.max_retry_delay
        return timedelta(seconds=seconds)

    def decide(self, error: BaseException, attempt_count: int) -> RetryDecision:
        """Classify once and return both the retry decision and the delay."""
        kind = classify(error)
        return RetryDecision(
            should_retry=self._should_retry(kind, attempt_count),
            failure_kind=kind,
            delay=self.retry_delay(attempt_count),
        )


__all__ = ["RetryDecision", "RetryPolicy"]
