"""Dead-letter statistics models and the in-process handler tally.

Statistics are recomputed on demand and never persisted. Queue depths come
from the broker; per-handler failure rates come from StatisticsAggregator,
which the retry executor feeds as messages succeed or fail.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime

from pydantic import BaseModel, Field, computed_field, model_validator


class FailureRate(BaseModel):
    """Processing outcome counts for one handler."""

    total_messages: int = Field(default=0, ge=0)
    failed_messages: int = Field(default=0, ge=0)
    last_failure: datetime | None = None

    @model_validator(mode="after")
    def _validate_counts(self) -> FailureRate:
        if self.failed_messages > self.total_messages:
            msg = (
                f"failed_messages ({self.failed_messages}) cannot exceed "
                f"total_messages ({self.total_messages})"
            )
            raise ValueError(msg)
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failure_percentage(self) -> float:
        """Failed share of processed messages, 0-100 (0 when nothing was processed)."""
        if self.total_messages == 0:
            return 0.0
        return self.failed_messages / self.total_messages * 100


class DeadLetterStatistics(BaseModel):
    """Point-in-time view of the dead-letter store."""

    total_dead_letter_messages: int = 0
    messages_by_queue: dict[str, int] = Field(default_factory=dict)
    messages_by_exception_type: dict[str, int] = Field(default_factory=dict)
    oldest_message_by_queue: dict[str, datetime] = Field(default_factory=dict)
    failure_rate_by_handler: dict[str, FailureRate] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))


class StatisticsAggregator:
    """Thread-safe per-handler success/failure counters.

    Example:
        aggregator = StatisticsAggregator()
        aggregator.record_success("UserCreatedHandler")
        aggregator.record_failure("UserCreatedHandler")
        aggregator.snapshot()["UserCreatedHandler"].failure_percentage  # 50.0
    """

    def __init__(self) -> None:
        self._totals: dict[str, int] = {}
        self._failures: dict[str, int] = {}
        self._last_failure: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def record_success(self, handler_identity: str) -> None:
        with self._lock:
            self._totals[handler_identity] = self._totals.get(handler_identity, 0) + 1

    def record_failure(self, handler_identity: str, at: datetime | None = None) -> None:
        """Count one message the handler ultimately failed to process."""
        with self._lock:
            self._totals[handler_identity] = self._totals.get(handler_identity, 0) + 1
            self._failures[handler_identity] = self._failures.get(handler_identity, 0) + 1
            self._last_failure[handler_identity] = at or datetime.now(UTC)

    def snapshot(self) -> dict[str, FailureRate]:
        with self._lock:
            return {
                handler: FailureRate(
                    total_messages=total,
                    failed_messages=self._failures.get(handler, 0),
                    last_failure=self._last_failure.get(handler),
                )
                for handler, total in self._totals.items()
            }

    def reset(self) -> None:
        with self._lock:
            self._totals.clear()
            self._failures.clear()
            self._last_failure.clear()


__all__ = ["DeadLetterStatistics", "FailureRate", "StatisticsAggregator"]
