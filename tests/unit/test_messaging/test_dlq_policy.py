"""Unit tests for the retry policy."""

from __future__ import annotations

from datetime import timedelta

import pytest

from deadletter_service.infra.messaging.dlq.faults import FailureKind
from deadletter_service.infra.messaging.dlq.policy import RetryPolicy


class UnknownError(Exception):
    pass


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(
        max_retry_attempts=5,
        initial_retry_delay=timedelta(seconds=2),
        backoff_multiplier=2.0,
        max_retry_delay=timedelta(seconds=60),
    )


@pytest.mark.unit
class TestShouldRetry:
    """Retry decisions by failure kind and attempt count."""

    def test_transient_retried_below_limit(self, policy):
        for attempt in range(1, 5):
            assert policy.should_retry(TimeoutError(), attempt) is True

    def test_nothing_retried_at_limit(self, policy):
        assert policy.should_retry(TimeoutError(), 5) is False
        assert policy.should_retry(TimeoutError(), 6) is False
        assert policy.should_retry(UnknownError(), 5) is False

    def test_permanent_never_retried(self, policy):
        assert policy.should_retry(ValueError("bad"), 1) is False

    def test_critical_never_retried(self, policy):
        assert policy.should_retry(MemoryError(), 1) is False

    def test_unknown_gets_half_the_budget(self, policy):
        # max 5 -> 5 // 2 == 2: retried only while attempt_count < 2
        assert policy.should_retry(UnknownError(), 1) is True
        assert policy.should_retry(UnknownError(), 2) is False
        assert policy.should_retry(UnknownError(), 3) is False

    def test_unknown_never_retried_with_single_attempt_budget(self):
        policy = RetryPolicy(max_retry_attempts=1)
        assert policy.should_retry(UnknownError(), 0) is False
        assert policy.should_retry(TimeoutError(), 0) is True

    def test_decide_returns_kind_and_delay(self, policy):
        decision = policy.decide(TimeoutError(), 2)
        assert decision.should_retry is True
        assert decision.failure_kind is FailureKind.TRANSIENT
        assert decision.delay == timedelta(seconds=4)


@pytest.mark.unit
class TestRetryDelay:
    """Exponential backoff with a ceiling."""

    @pytest.mark.parametrize(
        ("attempt", "seconds"),
        [(1, 2), (2, 4), (3, 8), (4, 16), (5, 32), (6, 60), (7, 60)],
    )
    def test_backoff_sequence(self, policy, attempt, seconds):
        assert policy.retry_delay(attempt) == timedelta(seconds=seconds)

    def test_delay_is_monotonic_and_capped(self, policy):
        delays = [policy.retry_delay(n) for n in range(1, 30)]
        assert delays == sorted(delays)
        assert max(delays) == timedelta(seconds=60)

    def test_attempts_below_one_use_initial_delay(self, policy):
        assert policy.retry_delay(0) == timedelta(seconds=2)
        assert policy.retry_delay(-3) == timedelta(seconds=2)

    def test_huge_attempt_count_saturates(self, policy):
        assert policy.retry_delay(100_000) == timedelta(seconds=60)

    def test_multiplier_of_one_is_constant(self):
        policy = RetryPolicy(
            initial_retry_delay=timedelta(seconds=3),
            backoff_multiplier=1.0,
            max_retry_delay=timedelta(seconds=30),
        )
        assert {policy.retry_delay(n) for n in range(1, 10)} == {timedelta(seconds=3)}

    def test_zero_initial_delay(self):
        policy = RetryPolicy(initial_retry_delay=timedelta(0), max_retry_delay=timedelta(0))
        assert policy.retry_delay(10) == timedelta(0)


@pytest.mark.unit
class TestPolicyValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retry_attempts": 0},
            {"backoff_multiplier": 0.5},
            {"initial_retry_delay": timedelta(seconds=-1)},
            {"initial_retry_delay": timedelta(seconds=10), "max_retry_delay": timedelta(seconds=5)},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_policy_is_immutable(self, policy):
        with pytest.raises(AttributeError):
            policy.max_retry_attempts = 10  # type: ignore[misc]
