"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings defaults so tests never reach real brokers
    - Settings Fixtures: dead-letter and application settings
    - Envelope Fixtures: sample messages and failures
    - Service Fixtures: a broker-less dead-letter service for orchestration tests
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("DLQ_ENABLE_ADMIN_NOTIFICATIONS", "false")

from deadletter_service.core.settings import (  # noqa: E402
    AppSettings,
    BackendKind,
    DeadLetterSettings,
    clear_all_caches,
)
from deadletter_service.infra.messaging.dlq import (  # noqa: E402
    BaseDeadLetterService,
    FailedMessageInfo,
    clear_registered_faults,
    reset_dead_letter_service,
)
from deadletter_service.infra.messaging.dlq.notifications import AdminNotifier  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_global_state():
    """Clear cached settings, the cached service and registered fault types."""
    clear_all_caches()
    reset_dead_letter_service()
    clear_registered_faults()
    yield
    clear_all_caches()
    reset_dead_letter_service()
    clear_registered_faults()


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def dlq_settings() -> DeadLetterSettings:
    """Dead-letter settings with two source queues and sampling enabled."""
    return DeadLetterSettings(
        source_queues=["users-events", "documents-events"],
        default_queue="default",
        statistics_sample_size=5,
        fetch_timeout_seconds=0.5,
    )


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(
        service_name="dead-letter-service",
        version="2.3.4",
        environment="testing",
        instance_id="worker-7",
    )


# ============================================================================
# Envelope Fixtures
# ============================================================================


@dataclass
class UserRegistered:
    """Sample event used as a message payload."""

    user_id: int
    email: str


@pytest.fixture
def sample_message() -> UserRegistered:
    return UserRegistered(user_id=42, email="ada@example.com")


@pytest.fixture
def sample_error() -> TimeoutError:
    """An error that has been raised, so it carries a traceback."""
    try:
        raise TimeoutError("upstream did not answer")
    except TimeoutError as exc:
        return exc


# ============================================================================
# Service Fixtures
# ============================================================================


class InMemoryDeadLetterService(BaseDeadLetterService):
    """Dead-letter service keeping queues in memory.

    ``failures`` maps a primitive name (``publish``, ``list``, ``depth``, ...)
    to an exception that primitive raises.
    """

    backend = BackendKind.NOOP

    def __init__(self, settings: DeadLetterSettings, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        self.queues: dict[str, list[FailedMessageInfo]] = {}
        self.published_headers: list[dict[str, Any]] = []
        self.replayed: list[tuple[str, str]] = []
        self.failures: dict[str, BaseException] = {}
        self.closed = False

    def _maybe_fail(self, primitive: str, queue_name: str | None = None) -> None:
        error = self.failures.get(primitive) or self.failures.get(f"{primitive}:{queue_name}")
        if error is not None:
            raise error

    def dead_letter_queue_name(self, source_queue: str) -> str:
        return f"mem.{source_queue}"

    async def _ensure_queue(self, source_queue: str) -> None:
        self._maybe_fail("ensure")
        self.queues.setdefault(self.dead_letter_queue_name(source_queue), [])

    async def _publish(self, envelope: FailedMessageInfo, headers: dict[str, Any]) -> None:
        self._maybe_fail("publish")
        await self._ensure_queue(envelope.source_queue)
        self.queues[self.dead_letter_queue_name(envelope.source_queue)].append(envelope)
        self.published_headers.append(headers)

    async def _list(self, queue_name: str, max_count: int) -> list[FailedMessageInfo]:
        self._maybe_fail("list", queue_name)
        return list(self.queues.get(queue_name, [])[:max_count])

    async def _reprocess(self, queue_name: str, message_id: str) -> bool:
        self._maybe_fail("reprocess")
        queue = self.queues.get(queue_name, [])
        if not queue or queue[0].message_id != message_id:
            return False
        envelope = queue.pop(0)
        self.replayed.append((envelope.source_queue, envelope.original_payload))
        return True

    async def _purge(self, queue_name: str, message_id: str) -> bool:
        self._maybe_fail("purge")
        queue = self.queues.get(queue_name, [])
        if not queue or queue[0].message_id != message_id:
            return False
        queue.pop(0)
        return True

    async def _queue_depth(self, queue_name: str) -> int:
        self._maybe_fail("depth", queue_name)
        return len(self.queues.get(queue_name, []))

    async def _close(self) -> None:
        self.closed = True


@pytest.fixture
def mock_notifier() -> MagicMock:
    notifier = MagicMock(spec=AdminNotifier)
    notifier.aclose = AsyncMock()
    return notifier


@pytest.fixture
def memory_service(dlq_settings, app_settings, mock_notifier) -> InMemoryDeadLetterService:
    """In-memory service with fast retries."""
    from deadletter_service.infra.messaging.dlq import RetryPolicy

    return InMemoryDeadLetterService(
        dlq_settings,
        app_settings=app_settings,
        notifier=mock_notifier,
        policy=RetryPolicy(
            max_retry_attempts=3,
            initial_retry_delay=timedelta(milliseconds=10),
            backoff_multiplier=2.0,
            max_retry_delay=timedelta(seconds=1),
        ),
    )
