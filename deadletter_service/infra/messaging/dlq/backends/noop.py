"""No-op dead-letter backend for tests.

Applies the same classification and retry rules as the real backends with a
fixed policy, and only logs what it would have done.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from deadletter_service.core.settings import BackendKind

from ..policy import RetryPolicy
from ..service import BaseDeadLetterService
from ..statistics import DeadLetterStatistics

if TYPE_CHECKING:
    from deadletter_service.core.settings import DeadLetterSettings

    from ..envelope import FailedMessageInfo

logger = logging.getLogger(__name__)

NOOP_RETRY_POLICY = RetryPolicy(
    max_retry_attempts=3,
    initial_retry_delay=timedelta(seconds=2),
    backoff_multiplier=2.0,
    max_retry_delay=timedelta(seconds=300),
)


class NoOpDeadLetterService(BaseDeadLetterService):
    """Dead-letter service that never touches a broker."""

    backend = BackendKind.NOOP

    def __init__(self, settings: DeadLetterSettings, **kwargs: Any) -> None:
        kwargs["policy"] = NOOP_RETRY_POLICY
        super().__init__(settings, **kwargs)

    def dead_letter_queue_name(self, source_queue: str) -> str:
        return f"{self.settings.dead_letter_queue_prefix}.{source_queue}"

    async def _ensure_queue(self, source_queue: str) -> None:
        logger.debug(
            "NoOp: would ensure dead-letter queue",
            extra={"queue_name": self.dead_letter_queue_name(source_queue)},
        )

    async def _publish(self, envelope: FailedMessageInfo, headers: dict[str, Any]) -> None:
        logger.warning(
            "NoOp: would send message %s to dead-letter queue %s",
            envelope.message_id,
            self.dead_letter_queue_name(envelope.source_queue),
            extra={"failure_reason": envelope.last_failure_reason, "headers": headers},
        )

    async def _list(self, queue_name: str, max_count: int) -> list[FailedMessageInfo]:
        logger.debug("NoOp: no dead-letter messages in %s", queue_name)
        return []

    async def _reprocess(self, queue_name: str, message_id: str) -> bool:
        logger.info(
            "NoOp: would reprocess dead-letter message",
            extra={"queue_name": queue_name, "message_id": message_id},
        )
        return False

    async def _purge(self, queue_name: str, message_id: str) -> bool:
        logger.info(
            "NoOp: would purge dead-letter message",
            extra={"queue_name": queue_name, "message_id": message_id},
        )
        return False

    async def _queue_depth(self, queue_name: str) -> int:
        return 0

    async def get_dead_letter_statistics(self) -> DeadLetterStatistics:
        return DeadLetterStatistics(failure_rate_by_handler=self.aggregator.snapshot())


__all__ = ["NOOP_RETRY_POLICY", "NoOpDeadLetterService"]
