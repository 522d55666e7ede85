"""Dead-letter envelope models.

A FailedMessageInfo wraps the original message body together with its
failure history and the environment it failed in, so an operator can see why
a message ended up in a dead-letter queue and replay it later.

Wire format (JSON, snake_case keys):

    {
        "message_id": "7c1d0f6e-...",
        "message_type": "app.events.UserRegistered",
        "original_message": "{\"user_id\": 42}",
        "payload_encoding": "utf-8",
        "source_queue": "users-events",
        "first_attempt_at": "2025-01-01T00:00:00Z",
        "last_attempt_at": "2025-01-01T00:00:14Z",
        "attempt_count": 3,
        "last_failure_reason": "connection reset",
        "last_stack_trace": "Traceback ...",
        "failure_history": [{"attempt_number": 1, "exception_type": "ConnectionResetError", ...}],
        "message_headers": {},
        "environment": {"machine_name": "worker-1", "environment_name": "production", ...}
    }
"""

from __future__ import annotations

import base64
import dataclasses
import json
import socket
import traceback
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, model_validator

from .faults import qualified_name

if TYPE_CHECKING:
    from deadletter_service.core.settings.app import AppSettings

PayloadEncoding = Literal["utf-8", "base64"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FailureAttempt(BaseModel):
    """One failed processing attempt (immutable)."""

    attempt_number: int = Field(ge=1, description="1-based attempt number")
    attempted_at: datetime = Field(description="When the attempt failed (UTC)")
    failure_kind_name: str = Field(
        alias="exception_type",
        description="Fully-qualified type name of the error",
    )
    failure_message: str = Field(
        alias="exception_message",
        description="Error message",
    )
    stack_trace: str = Field(default="", description="Formatted traceback")
    handler_identity: str = Field(
        alias="handler_type",
        description="Handler that processed the message",
    )
    processing_duration: timedelta = Field(
        default=timedelta(0),
        description="Time spent in the handler before it failed",
    )

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @classmethod
    def from_exception(
        cls,
        error: BaseException,
        *,
        attempt_number: int,
        handler_identity: str,
        processing_duration: timedelta = timedelta(0),
        attempted_at: datetime | None = None,
    ) -> FailureAttempt:
        """Record an error as a failure attempt."""
        return cls(
            attempt_number=attempt_number,
            attempted_at=attempted_at or _utcnow(),
            failure_kind_name=qualified_name(error),
            failure_message=str(error),
            stack_trace="".join(traceback.format_exception(error)),
            handler_identity=handler_identity,
            processing_duration=processing_duration,
        )


class EnvironmentMetadata(BaseModel):
    """Where and when the envelope was written."""

    machine_name: str
    environment_name: str
    application_version: str
    created_at: datetime = Field(default_factory=_utcnow)
    service_instance: str

    @classmethod
    def capture(cls, app_settings: AppSettings | None = None) -> EnvironmentMetadata:
        """Snapshot the current host and application identity."""
        if app_settings is None:
            from deadletter_service.core.settings import get_app_settings

            app_settings = get_app_settings()

        return cls(
            machine_name=socket.gethostname(),
            environment_name=app_settings.environment,
            application_version=app_settings.version,
            service_instance=app_settings.service_instance,
        )


class FailedMessageInfo(BaseModel):
    """Dead-letter envelope.

    ``attempt_count`` always equals ``len(failure_history)``; the invariant is
    checked when an envelope is built or read back from a queue, and kept by
    add_failure_attempt(). An envelope read back from a queue must carry at
    least one failure.

    ``original_payload`` is text. Bodies that are not valid UTF-8 are stored
    base64-encoded with ``payload_encoding="base64"``; payload_bytes() returns
    the exact original bytes either way.
    """

    message_id: str = Field(default_factory=lambda: str(uuid4()))
    message_type: str = Field(min_length=1)
    original_payload: str = Field(alias="original_message")
    payload_encoding: PayloadEncoding = "utf-8"
    source_queue: str = Field(min_length=1)
    first_attempt_at: datetime = Field(default_factory=_utcnow)
    last_attempt_at: datetime = Field(default_factory=_utcnow)
    attempt_count: int = Field(default=0, ge=0)
    last_failure_reason: str = ""
    last_stack_trace: str = ""
    failure_history: list[FailureAttempt] = Field(default_factory=list)
    headers: dict[str, Any] = Field(default_factory=dict, alias="message_headers")
    environment: EnvironmentMetadata

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _validate_history(self, info: ValidationInfo) -> FailedMessageInfo:
        if info.context and info.context.get("stored") and not self.failure_history:
            msg = "a stored envelope must record at least one failure"
            raise ValueError(msg)
        if self.attempt_count != len(self.failure_history):
            msg = (
                f"attempt_count ({self.attempt_count}) does not match "
                f"failure_history length ({len(self.failure_history)})"
            )
            raise ValueError(msg)
        numbers = [attempt.attempt_number for attempt in self.failure_history]
        if any(later <= earlier for earlier, later in zip(numbers, numbers[1:])):
            msg = f"failure_history attempt numbers must increase strictly, got {numbers}"
            raise ValueError(msg)
        return self

    # ─────────────────────────────────────────────────────
    # Construction
    # ─────────────────────────────────────────────────────
    @classmethod
    def from_failure(
        cls,
        message: Any,
        error: BaseException,
        *,
        handler_identity: str,
        source_queue: str,
        environment: EnvironmentMetadata,
        prior_failures: Iterable[FailureAttempt] = (),
        headers: dict[str, Any] | None = None,
        processing_duration: timedelta = timedelta(0),
    ) -> FailedMessageInfo:
        """Build a new envelope for a message that is being dead-lettered.

        The history is ``prior_failures`` followed by one attempt for ``error``.
        """
        payload, encoding = encode_payload(message)
        envelope = cls(
            message_type=qualified_name(message),
            original_payload=payload,
            payload_encoding=encoding,
            source_queue=source_queue,
            headers=dict(headers or {}),
            environment=environment,
        )
        for attempt in prior_failures:
            envelope._append(attempt)
        envelope.add_failure_attempt(
            error,
            handler_identity=handler_identity,
            processing_duration=processing_duration,
        )
        return envelope

    # ─────────────────────────────────────────────────────
    # Mutation
    # ─────────────────────────────────────────────────────
    def add_failure_attempt(
        self,
        error: BaseException,
        handler_identity: str,
        processing_duration: timedelta = timedelta(0),
    ) -> FailureAttempt:
        """Append a failure for ``error`` and refresh the summary fields."""
        attempt = FailureAttempt.from_exception(
            error,
            attempt_number=self._next_attempt_number(),
            handler_identity=handler_identity,
            processing_duration=processing_duration,
        )
        self._append(attempt)
        return attempt

    def _next_attempt_number(self) -> int:
        if not self.failure_history:
            return 1
        return self.failure_history[-1].attempt_number + 1

    def _append(self, attempt: FailureAttempt) -> None:
        if attempt.attempt_number < self._next_attempt_number():
            attempt = attempt.model_copy(update={"attempt_number": self._next_attempt_number()})
        if not self.failure_history:
            self.first_attempt_at = attempt.attempted_at
        self.failure_history.append(attempt)
        self.attempt_count = len(self.failure_history)
        self.last_attempt_at = attempt.attempted_at
        self.last_failure_reason = attempt.failure_message
        self.last_stack_trace = attempt.stack_trace

    # ─────────────────────────────────────────────────────
    # Serialization
    # ─────────────────────────────────────────────────────
    def to_json(self) -> str:
        """Serialize with wire field names."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, data: str | bytes) -> FailedMessageInfo:
        """Parse an envelope read from a queue.

        Raises:
            pydantic.ValidationError: Malformed JSON, a broken attempt-count
                invariant, or an empty failure history.
        """
        return cls.model_validate_json(data, context={"stored": True})

    def payload_bytes(self) -> bytes:
        """The original message body exactly as it was dead-lettered."""
        if self.payload_encoding == "base64":
            return base64.b64decode(self.original_payload, validate=True)
        return self.original_payload.encode("utf-8")

    @property
    def latest_failure(self) -> FailureAttempt | None:
        return self.failure_history[-1] if self.failure_history else None


def encode_payload(message: Any) -> tuple[str, PayloadEncoding]:
    """Serialize a message body to text for storage in an envelope.

    Strings are stored as-is. Bytes are decoded as UTF-8 when they are valid
    UTF-8 and base64-encoded otherwise. Pydantic models, dataclasses and other
    JSON-compatible values are stored as JSON.

    Returns:
        The stored text and how to turn it back into bytes.
    """
    if isinstance(message, (bytes, bytearray)):
        raw = bytes(message)
        try:
            return raw.decode("utf-8"), "utf-8"
        except UnicodeDecodeError:
            return base64.b64encode(raw).decode("ascii"), "base64"
    if isinstance(message, str):
        text = message
    elif isinstance(message, BaseModel):
        text = message.model_dump_json()
    elif dataclasses.is_dataclass(message) and not isinstance(message, type):
        text = json.dumps(dataclasses.asdict(message), default=str)
    else:
        text = json.dumps(message, default=str)
    return text, "utf-8"


__all__ = [
    "EnvironmentMetadata",
    "FailedMessageInfo",
    "FailureAttempt",
    "PayloadEncoding",
    "encode_payload",
]
