"""Transport headers written on dead-letter and reprocessed messages.

Header values are plain strings (or ints) so they survive both AMQP header
tables and SQS message attributes.

Design decisions:
- Uses frozen dataclasses with slots for the parsed forms
- Error text is truncated to prevent header bloat
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .envelope import FailedMessageInfo

# ─────────────────────────────────────────────────────
# Dead-letter headers
# ─────────────────────────────────────────────────────
ORIGINAL_MESSAGE_TYPE_HEADER = "original-message-type"
FAILURE_REASON_HEADER = "failure-reason"
ATTEMPT_COUNT_HEADER = "attempt-count"
SOURCE_QUEUE_HEADER = "source-queue"
HANDLER_TYPE_HEADER = "handler-type"
FAILED_AT_HEADER = "failed-at"

# ─────────────────────────────────────────────────────
# Reprocessing headers
# ─────────────────────────────────────────────────────
REPROCESSED_FROM_DLQ_HEADER = "reprocessed-from-dlq"
ORIGINAL_MESSAGE_ID_HEADER = "original-message-id"
REPROCESSED_AT_HEADER = "reprocessed-at"
PAYLOAD_ENCODING_HEADER = "payload-encoding"

MAX_HEADER_VALUE_LENGTH = 500


@dataclass(frozen=True, slots=True)
class DeadLetterHeaders:
    """Headers describing why a message was dead-lettered.

    Attributes:
        original_message_type: Fully-qualified payload type.
        failure_reason: Fully-qualified type name of the final error.
        attempt_count: Attempt count reported by the consumer.
        source_queue: Queue the message failed on.
        handler_type: Handler identity that failed.
        failed_at: When the message was dead-lettered (UTC).
    """

    original_message_type: str
    failure_reason: str
    attempt_count: int
    source_queue: str
    handler_type: str
    failed_at: datetime

    @classmethod
    def for_envelope(
        cls,
        envelope: FailedMessageInfo,
        attempt_count: int,
        handler_identity: str,
    ) -> DeadLetterHeaders:
        latest = envelope.latest_failure
        return cls(
            original_message_type=envelope.message_type,
            failure_reason=latest.failure_kind_name if latest else "",
            attempt_count=attempt_count,
            source_queue=envelope.source_queue,
            handler_type=handler_identity,
            failed_at=envelope.last_attempt_at,
        )

    @classmethod
    def from_headers(cls, headers: dict[str, Any] | None) -> DeadLetterHeaders:
        """Parse headers leniently; missing values fall back to defaults."""
        headers = headers or {}
        return cls(
            original_message_type=str(headers.get(ORIGINAL_MESSAGE_TYPE_HEADER, "")),
            failure_reason=str(headers.get(FAILURE_REASON_HEADER, "")),
            attempt_count=_safe_int(headers.get(ATTEMPT_COUNT_HEADER)),
            source_queue=str(headers.get(SOURCE_QUEUE_HEADER, "")),
            handler_type=str(headers.get(HANDLER_TYPE_HEADER, "")),
            failed_at=_safe_datetime(headers.get(FAILED_AT_HEADER)),
        )

    def to_headers(self) -> dict[str, Any]:
        return {
            ORIGINAL_MESSAGE_TYPE_HEADER: self.original_message_type,
            FAILURE_REASON_HEADER: self.failure_reason[:MAX_HEADER_VALUE_LENGTH],
            ATTEMPT_COUNT_HEADER: self.attempt_count,
            SOURCE_QUEUE_HEADER: self.source_queue,
            HANDLER_TYPE_HEADER: self.handler_type,
            FAILED_AT_HEADER: self.failed_at.isoformat(),
        }


def reprocessed_headers(
    original_message_id: str,
    reprocessed_at: datetime | None = None,
) -> dict[str, Any]:
    """Headers marking a message re-published from a dead-letter queue."""
    return {
        REPROCESSED_FROM_DLQ_HEADER: "true",
        ORIGINAL_MESSAGE_ID_HEADER: original_message_id,
        REPROCESSED_AT_HEADER: (reprocessed_at or datetime.now(UTC)).isoformat(),
    }


def is_reprocessed(headers: dict[str, Any] | None) -> bool:
    """Whether a delivery was replayed from a dead-letter queue."""
    if not headers:
        return False
    return str(headers.get(REPROCESSED_FROM_DLQ_HEADER, "")).lower() == "true"


# ─────────────────────────────────────────────────────
# Helper functions
# ─────────────────────────────────────────────────────


def _safe_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def _safe_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return datetime.fromtimestamp(0, tz=UTC)


__all__ = [
    "ATTEMPT_COUNT_HEADER",
    "FAILED_AT_HEADER",
    "FAILURE_REASON_HEADER",
    "HANDLER_TYPE_HEADER",
    "ORIGINAL_MESSAGE_ID_HEADER",
    "ORIGINAL_MESSAGE_TYPE_HEADER",
    "PAYLOAD_ENCODING_HEADER",
    "REPROCESSED_AT_HEADER",
    "REPROCESSED_FROM_DLQ_HEADER",
    "SOURCE_QUEUE_HEADER",
    "DeadLetterHeaders",
    "is_reprocessed",
    "reprocessed_headers",
]
