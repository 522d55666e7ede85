"""Backend selection for the dead-letter service.

The backend is chosen once at startup:

    DLQ_ENABLED=false          -> noop
    DLQ_BACKEND=<kind>         -> <kind>
    APP_ENVIRONMENT=test(ing)  -> noop
    local / development / dev  -> rabbitmq
    anything else              -> sqs
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from deadletter_service.core.exceptions import ConfigurationException
from deadletter_service.core.settings import (
    BackendKind,
    get_app_settings,
    get_dlq_settings,
)

if TYPE_CHECKING:
    from deadletter_service.core.settings import DeadLetterSettings

    from .service import BaseDeadLetterService

logger = logging.getLogger(__name__)

_TEST_ENVIRONMENTS = frozenset({"testing", "test"})
_DEVELOPMENT_ENVIRONMENTS = frozenset({"local", "development", "dev"})


def backend_for_environment(environment: str) -> BackendKind:
    """Map a deployment environment name to a backend (case-insensitive)."""
    name = environment.strip().lower()
    if name in _TEST_ENVIRONMENTS:
        return BackendKind.NOOP
    if name in _DEVELOPMENT_ENVIRONMENTS:
        return BackendKind.RABBITMQ
    return BackendKind.SQS


def resolve_backend(
    settings: DeadLetterSettings,
    environment: str | None = None,
) -> BackendKind:
    """Backend for the given settings, falling back to the environment mapping."""
    if not settings.enabled:
        return BackendKind.NOOP
    if settings.backend is not None:
        return settings.backend
    if environment is None:
        environment = get_app_settings().environment
    return backend_for_environment(environment)


def create_dead_letter_service(
    kind: BackendKind | str | None = None,
    *,
    settings: DeadLetterSettings | None = None,
    **kwargs: Any,
) -> BaseDeadLetterService:
    """Build a dead-letter service.

    Args:
        kind: Backend to build; resolved from settings and environment if None.
        settings: Dead-letter settings; defaults to get_dlq_settings().
        **kwargs: Passed to the backend constructor (policy, notifier, ...).

    Raises:
        ConfigurationException: If ``kind`` is not a known backend.

    Example:
        service = create_dead_letter_service()
        if not service.should_retry(error, attempt_count):
            await service.send_to_dead_letter(message, error, handler, queue, attempt_count)
    """
    settings = settings or get_dlq_settings()
    try:
        backend = BackendKind(kind) if kind is not None else resolve_backend(settings)
    except ValueError as exc:
        raise ConfigurationException(
            detail=f"Unsupported dead-letter backend: {kind}. "
            f"Supported backends: {', '.join(k.value for k in BackendKind)}",
            extra={"backend": str(kind)},
        ) from exc

    match backend:
        case BackendKind.RABBITMQ:
            from .backends.rabbitmq import RabbitMQDeadLetterService

            service: BaseDeadLetterService = RabbitMQDeadLetterService(settings, **kwargs)
        case BackendKind.SQS:
            from .backends.sqs import SQSDeadLetterService

            service = SQSDeadLetterService(settings, **kwargs)
        case _:
            from .backends.noop import NoOpDeadLetterService

            service = NoOpDeadLetterService(settings, **kwargs)

    logger.info(
        "Dead-letter service created",
        extra={"backend": backend.value, "max_retry_attempts": service.policy.max_retry_attempts},
    )
    return service


@lru_cache(maxsize=1)
def get_dead_letter_service() -> BaseDeadLetterService:
    """Process-wide dead-letter service built from cached settings."""
    return create_dead_letter_service()


def reset_dead_letter_service() -> None:
    """Forget the cached service (call aclose() on it first)."""
    get_dead_letter_service.cache_clear()


__all__ = [
    "backend_for_environment",
    "create_dead_letter_service",
    "get_dead_letter_service",
    "reset_dead_letter_service",
    "resolve_backend",
]
