"""Custom exception classes for the application."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    All custom exceptions should inherit from this class.
    Follows RFC 7807 Problem Details so errors can be rendered uniformly by
    the CLI and by any HTTP surface embedding the service.

    Attributes:
        status_code: HTTP-style status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short, human-readable summary of the problem type.
        instance: URI reference that identifies the specific occurrence of the problem.
        extra: Additional context-specific information about the error.

    Example:
        raise AppException(
            status_code=503,
            detail="Broker unavailable",
            type="broker-unavailable",
            extra={"broker": "rabbitmq"},
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            status_code: HTTP-style status code.
            detail: Human-readable error message.
            type: Error type identifier.
            title: Short summary of the problem type.
            instance: URI reference identifying this specific occurrence.
            extra: Additional context about the error.
        """
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        """Get default title for a status code."""
        titles = {
            400: "Bad Request",
            404: "Not Found",
            409: "Conflict",
            422: "Unprocessable Entity",
            500: "Internal Server Error",
            502: "Bad Gateway",
            503: "Service Unavailable",
            504: "Gateway Timeout",
        }
        return titles.get(status_code, "Error")

    def to_dict(self) -> dict[str, Any]:
        """Render the error as an RFC 7807 problem document."""
        problem: dict[str, Any] = {
            "type": self.type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }
        if self.instance:
            problem["instance"] = self.instance
        problem.update(self.extra)
        return problem


class ConfigurationException(AppException):
    """Exception raised when settings fail validation at startup.

    Example:
        raise ConfigurationException(
            detail="max_retry_delay_seconds must be >= initial_retry_delay_seconds",
            extra={"setting": "DLQ_MAX_RETRY_DELAY_SECONDS"},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "configuration-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=500,
            detail=detail,
            type=type,
            title="Configuration Error",
            extra=extra,
        )


# ============================================================================
# Dead-letter exceptions
# ============================================================================
# Raised for infrastructure failures only. Retry decisions are return values
# and never surface as exceptions.


class DeadLetterError(AppException):
    """Base exception for all dead-letter infrastructure errors.

    Attributes:
        code: Error code identifier for programmatic handling.
        message: Human-readable error message.

    Example:
        raise DeadLetterError(
            message="Dead-letter store unavailable",
            code="DLQ_UNAVAILABLE",
            status_code=503,
            metadata={"backend": "rabbitmq"},
        )
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 500,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Initialize dead-letter error.

        Args:
            message: Human-readable error message.
            code: Error code for programmatic handling.
            status_code: HTTP-style status code (default: 500).
            metadata: Additional error context.
        """
        self.code = code
        self.message = message
        super().__init__(
            status_code=status_code,
            detail=message,
            type=code.lower().replace("_", "-"),
            extra=metadata or {},
        )


class BrokerConnectionError(DeadLetterError):
    """Raised when the broker connection or client cannot be established.

    Example:
        raise BrokerConnectionError(
            "Could not connect to RabbitMQ",
            metadata={"backend": "rabbitmq", "timeout": 10.0},
        ) from exc
    """

    def __init__(
        self,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="DLQ_BROKER_UNAVAILABLE",
            status_code=503,
            metadata=metadata,
        )


class DeadLetterPublishError(DeadLetterError):
    """Raised when a failed message could not be written to the dead-letter store.

    The original infrastructure error is chained as ``__cause__``.

    Attributes:
        message_id: Identifier of the envelope that failed to publish.
        message_type: Fully-qualified type name of the payload.
        attempt_count: Attempt count reported by the caller.
        handler_identity: Handler that failed to process the message.
    """

    def __init__(
        self,
        message: str,
        *,
        message_id: str,
        message_type: str,
        attempt_count: int,
        handler_identity: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.message_id = message_id
        self.message_type = message_type
        self.attempt_count = attempt_count
        self.handler_identity = handler_identity
        super().__init__(
            message=message,
            code="DLQ_PUBLISH_FAILED",
            status_code=502,
            metadata={
                "message_id": message_id,
                "message_type": message_type,
                "attempt_count": attempt_count,
                "handler_identity": handler_identity,
                **(metadata or {}),
            },
        )


class DeadLetterOperationError(DeadLetterError):
    """Raised when an administrative operation (list, reprocess, purge, stats) fails.

    Attributes:
        operation: Name of the operation that failed.
        queue_name: Dead-letter queue the operation targeted.
        message_id: Target message, when the operation has one.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        queue_name: str | None = None,
        message_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.operation = operation
        self.queue_name = queue_name
        self.message_id = message_id
        extra: dict[str, Any] = {"operation": operation}
        if queue_name is not None:
            extra["queue_name"] = queue_name
        if message_id is not None:
            extra["message_id"] = message_id
        extra.update(metadata or {})
        super().__init__(
            message=message,
            code="DLQ_OPERATION_FAILED",
            status_code=502,
            metadata=extra,
        )


__all__ = [
    "AppException",
    "BrokerConnectionError",
    "ConfigurationException",
    "DeadLetterError",
    "DeadLetterOperationError",
    "DeadLetterPublishError",
]
