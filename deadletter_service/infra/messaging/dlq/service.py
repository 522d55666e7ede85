"""Dead-letter service interface and shared orchestration.

DeadLetterService is the contract every broker adapter fulfils.
BaseDeadLetterService implements everything that does not depend on the
broker (retry decisions, envelope building, headers, metrics, logging, error
wrapping, notifications and statistics assembly) and leaves a small set of
broker primitives to subclasses:

    _ensure_queue(source_queue)         create the dead-letter destination
    _publish(envelope, headers)         write an envelope
    _list(queue_name, max_count)        read envelopes without removing them
    _reprocess(queue_name, message_id)  replay the head envelope on id match
    _purge(queue_name, message_id)      remove the head envelope on id match
    _queue_depth(queue_name)            count messages in a queue
    _close()                            release broker resources
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Iterable
from datetime import timedelta
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, Self, TypeVar, runtime_checkable

from deadletter_service.core.exceptions import (
    DeadLetterError,
    DeadLetterOperationError,
    DeadLetterPublishError,
)
from deadletter_service.infra.logging import log_context

from .envelope import EnvironmentMetadata, FailedMessageInfo, FailureAttempt
from .faults import classify
from .headers import DeadLetterHeaders
from .metrics import (
    record_dead_letter,
    record_operation,
    record_publish_failure,
    record_queue_depth,
)
from .notifications import AdminNotifier
from .statistics import DeadLetterStatistics, StatisticsAggregator

if TYPE_CHECKING:
    from deadletter_service.core.settings.app import AppSettings
    from deadletter_service.core.settings.dead_letter import BackendKind, DeadLetterSettings

    from .policy import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class DeadLetterService(Protocol):
    """Failure handling contract shared by all dead-letter backends."""

    async def send_to_dead_letter(
        self,
        message: Any,
        error: BaseException,
        handler_identity: str,
        source_queue: str,
        attempt_count: int,
        *,
        prior_failures: Iterable[FailureAttempt] = (),
        headers: dict[str, Any] | None = None,
        processing_duration: timedelta = timedelta(0),
    ) -> FailedMessageInfo: ...

    def should_retry(self, error: BaseException, attempt_count: int) -> bool: ...

    def retry_delay(self, attempt_count: int) -> timedelta: ...

    async def reprocess_dead_letter_message(self, queue_name: str, message_id: str) -> bool: ...

    async def list_dead_letter_messages(
        self,
        queue_name: str,
        max_count: int = 50,
    ) -> list[FailedMessageInfo]: ...

    async def purge_dead_letter_message(self, queue_name: str, message_id: str) -> bool: ...

    async def get_dead_letter_statistics(self) -> DeadLetterStatistics: ...

    def dead_letter_queue_name(self, source_queue: str) -> str: ...

    async def aclose(self) -> None: ...


class BaseDeadLetterService(ABC):
    """Broker-independent part of the dead-letter service.

    Args:
        settings: Dead-letter settings.
        policy: Retry policy; defaults to ``settings.retry_policy()``.
        app_settings: Identity recorded in envelopes; loaded lazily if omitted.
        notifier: Admin notifier; built from settings if omitted.
        aggregator: Per-handler outcome counters used in statistics.
    """

    backend: ClassVar[BackendKind]

    def __init__(
        self,
        settings: DeadLetterSettings,
        *,
        policy: RetryPolicy | None = None,
        app_settings: AppSettings | None = None,
        notifier: AdminNotifier | None = None,
        aggregator: StatisticsAggregator | None = None,
    ) -> None:
        self.settings = settings
        self.policy = policy or settings.retry_policy()
        self.notifier = notifier or AdminNotifier.from_settings(settings)
        self.aggregator = aggregator or StatisticsAggregator()
        self._app_settings = app_settings

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ─────────────────────────────────────────────────────
    # Retry decisions
    # ─────────────────────────────────────────────────────
    def should_retry(self, error: BaseException, attempt_count: int) -> bool:
        """Whether the consumer should redeliver the message."""
        return self.policy.should_retry(error, attempt_count)

    def retry_delay(self, attempt_count: int) -> timedelta:
        """How long the consumer should wait before redelivering."""
        return self.policy.retry_delay(attempt_count)

    def validate_configuration(self) -> dict[str, Any]:
        """Exercise the retry policy with a sample error.

        Intended for startup checks; raises if the policy cannot be evaluated.
        """
        sample = RuntimeError("dead-letter configuration check")
        report = {
            "backend": self.backend.value,
            "should_retry": self.should_retry(sample, 1),
            "retry_delay_seconds": self.retry_delay(1).total_seconds(),
            "max_retry_attempts": self.policy.max_retry_attempts,
            "known_queues": [self.dead_letter_queue_name(q) for q in self.settings.known_queues],
        }
        logger.info("Dead-letter configuration validated", extra={"dlq_check": report})
        return report

    # ─────────────────────────────────────────────────────
    # Dead-lettering
    # ─────────────────────────────────────────────────────
    async def send_to_dead_letter(
        self,
        message: Any,
        error: BaseException,
        handler_identity: str,
        source_queue: str,
        attempt_count: int,
        *,
        prior_failures: Iterable[FailureAttempt] = (),
        headers: dict[str, Any] | None = None,
        processing_duration: timedelta = timedelta(0),
    ) -> FailedMessageInfo:
        """Wrap a failed message in an envelope and publish it to the dead-letter store.

        The failure is counted against ``handler_identity`` in the statistics
        whether or not the publish succeeds.

        Raises:
            DeadLetterPublishError: The broker rejected or could not take the write.
        """
        envelope = FailedMessageInfo.from_failure(
            message,
            error,
            handler_identity=handler_identity,
            source_queue=source_queue,
            environment=self._capture_environment(),
            prior_failures=prior_failures,
            headers=headers,
            processing_duration=processing_duration,
        )
        transport_headers = DeadLetterHeaders.for_envelope(
            envelope,
            attempt_count=attempt_count,
            handler_identity=handler_identity,
        ).to_headers()
        dead_letter_queue = self.dead_letter_queue_name(source_queue)

        with log_context(
            message_id=envelope.message_id,
            source_queue=source_queue,
            handler=handler_identity,
        ):
            self.aggregator.record_failure(handler_identity, at=envelope.last_attempt_at)
            try:
                await self._publish(envelope, transport_headers)
            except Exception as exc:
                record_publish_failure(source_queue, self.backend.value)
                logger.exception(
                    "Failed to send message to dead-letter queue",
                    extra={"dead_letter_queue": dead_letter_queue},
                )
                raise DeadLetterPublishError(
                    f"Failed to send message {envelope.message_id} to {dead_letter_queue}",
                    message_id=envelope.message_id,
                    message_type=envelope.message_type,
                    attempt_count=attempt_count,
                    handler_identity=handler_identity,
                    metadata={"dead_letter_queue": dead_letter_queue},
                ) from exc

            failure_kind = classify(error)
            record_dead_letter(
                source_queue,
                failure_kind.value,
                self.backend.value,
                attempt_count,
            )
            extra: dict[str, Any] = {
                "dead_letter_queue": dead_letter_queue,
                "message_type": envelope.message_type,
                "failure_kind": failure_kind.value,
                "failure_type": envelope.failure_history[-1].failure_kind_name,
                "attempt_count": attempt_count,
            }
            if self.settings.enable_detailed_logging:
                extra["payload_size"] = len(envelope.original_payload)
                extra["stack_trace"] = envelope.last_stack_trace
            logger.warning("Message sent to dead-letter queue", extra=extra)

            if self.settings.enable_admin_notifications:
                self.notifier.dispatch(envelope, attempt_count, handler_identity)

        return envelope

    def _capture_environment(self) -> EnvironmentMetadata:
        return EnvironmentMetadata.capture(self._app_settings)

    # ─────────────────────────────────────────────────────
    # Administrative operations
    # ─────────────────────────────────────────────────────
    async def ensure_infrastructure(self) -> list[str]:
        """Create the dead-letter destination for every known source queue.

        Returns:
            Names of the dead-letter queues that were ensured.
        """
        ensured = []
        for source_queue in self.settings.known_queues:
            await self._guard(
                "ensure",
                self._ensure_queue(source_queue),
                queue_name=self.dead_letter_queue_name(source_queue),
            )
            ensured.append(self.dead_letter_queue_name(source_queue))
        logger.info("Dead-letter infrastructure ensured", extra={"queues": ensured})
        return ensured

    async def list_dead_letter_messages(
        self,
        queue_name: str,
        max_count: int = 50,
    ) -> list[FailedMessageInfo]:
        """Read up to ``max_count`` envelopes; every message stays in the queue."""
        if max_count <= 0:
            return []
        messages = await self._guard(
            "list",
            self._list(queue_name, max_count),
            queue_name=queue_name,
        )
        record_operation("list", "done")
        return messages

    async def reprocess_dead_letter_message(self, queue_name: str, message_id: str) -> bool:
        """Replay the head envelope to its source queue if its id matches.

        Returns:
            True if the message was re-published and removed, False otherwise.
        """
        reprocessed = await self._guard(
            "reprocess",
            self._reprocess(queue_name, message_id),
            queue_name=queue_name,
            message_id=message_id,
        )
        self._log_outcome("reprocess", reprocessed, queue_name, message_id)
        return reprocessed

    async def purge_dead_letter_message(self, queue_name: str, message_id: str) -> bool:
        """Remove the head envelope if its id matches.

        Returns:
            True if the message was removed, False otherwise.
        """
        purged = await self._guard(
            "purge",
            self._purge(queue_name, message_id),
            queue_name=queue_name,
            message_id=message_id,
        )
        self._log_outcome("purge", purged, queue_name, message_id)
        return purged

    async def get_dead_letter_statistics(self) -> DeadLetterStatistics:
        """Queue depths for every known dead-letter queue plus handler failure rates.

        Queues that cannot be inspected are logged and left out.
        """
        stats = DeadLetterStatistics(failure_rate_by_handler=self.aggregator.snapshot())
        by_exception: Counter[str] = Counter()

        for source_queue in self.settings.known_queues:
            queue_name = self.dead_letter_queue_name(source_queue)
            try:
                depth = await self._queue_depth(queue_name)
            except Exception:
                logger.warning(
                    "Could not read dead-letter queue depth",
                    exc_info=True,
                    extra={"queue_name": queue_name},
                )
                continue

            stats.messages_by_queue[queue_name] = depth
            stats.total_dead_letter_messages += depth
            record_queue_depth(queue_name, depth)

            sample_size = min(self.settings.statistics_sample_size, depth)
            if sample_size <= 0:
                continue
            try:
                sample = await self._list(queue_name, sample_size)
            except Exception:
                logger.warning(
                    "Could not sample dead-letter queue",
                    exc_info=True,
                    extra={"queue_name": queue_name},
                )
                continue
            for envelope in sample:
                latest = envelope.latest_failure
                if latest is not None:
                    by_exception[latest.failure_kind_name] += 1
            if sample:
                stats.oldest_message_by_queue[queue_name] = min(
                    envelope.first_attempt_at for envelope in sample
                )

        stats.messages_by_exception_type = dict(by_exception)
        return stats

    async def aclose(self) -> None:
        """Wait for pending notifications and release broker resources."""
        await self.notifier.aclose()
        await self._close()

    async def _guard(
        self,
        operation: str,
        awaitable: Any,
        *,
        queue_name: str | None = None,
        message_id: str | None = None,
    ) -> T:
        """Await a broker primitive, wrapping infrastructure errors."""
        try:
            return await awaitable
        except DeadLetterError:
            record_operation(operation, "error")
            raise
        except Exception as exc:
            record_operation(operation, "error")
            logger.exception(
                "Dead-letter %s failed",
                operation,
                extra={"queue_name": queue_name, "message_id": message_id},
            )
            raise DeadLetterOperationError(
                f"Dead-letter {operation} failed for queue {queue_name}",
                operation=operation,
                queue_name=queue_name,
                message_id=message_id,
                metadata={"backend": self.backend.value},
            ) from exc

    def _log_outcome(self, operation: str, done: bool, queue_name: str, message_id: str) -> None:
        record_operation(operation, "done" if done else "not_found")
        extra = {"queue_name": queue_name, "message_id": message_id}
        if done:
            logger.info("Dead-letter %s succeeded", operation, extra=extra)
        else:
            logger.warning(
                "Dead-letter message not at head of queue; nothing to %s",
                operation,
                extra=extra,
            )

    # ─────────────────────────────────────────────────────
    # Broker primitives
    # ─────────────────────────────────────────────────────
    @abstractmethod
    def dead_letter_queue_name(self, source_queue: str) -> str:
        """Dead-letter queue name for a source queue."""

    @abstractmethod
    async def _ensure_queue(self, source_queue: str) -> None: ...

    @abstractmethod
    async def _publish(self, envelope: FailedMessageInfo, headers: dict[str, Any]) -> None: ...

    @abstractmethod
    async def _list(self, queue_name: str, max_count: int) -> list[FailedMessageInfo]: ...

    @abstractmethod
    async def _reprocess(self, queue_name: str, message_id: str) -> bool: ...

    @abstractmethod
    async def _purge(self, queue_name: str, message_id: str) -> bool: ...

    @abstractmethod
    async def _queue_depth(self, queue_name: str) -> int: ...

    async def _close(self) -> None:
        return None


__all__ = ["BaseDeadLetterService", "DeadLetterService"]
