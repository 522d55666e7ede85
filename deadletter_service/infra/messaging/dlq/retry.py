"""In-process retry loop for message handlers.

Wraps a handler call with the dead-letter service's retry policy: failures are
retried after the policy's backoff delay while should_retry() holds, and the
message is dead-lettered with its full failure history once it does not.

Example:
    executor = MessageRetryExecutor(service, "UserCreatedHandler", "users-events")

    async def on_message(body: bytes) -> None:
        processed = await executor.execute_with_retry(body, handle_user_created)
        # processed is False when the message went to the dead-letter queue
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TYPE_CHECKING, Any, TypeAlias, TypeVar

from deadletter_service.infra.logging import log_context

from .envelope import FailureAttempt
from .faults import classify, qualified_name
from .metrics import record_retry

if TYPE_CHECKING:
    from .service import BaseDeadLetterService

logger = logging.getLogger(__name__)

T = TypeVar("T")

MessageHandler: TypeAlias = Callable[[T], Awaitable[Any]]


class MessageRetryExecutor:
    """Run a handler with retries and dead-letter routing.

    Args:
        service: Dead-letter service providing the policy and the store.
        handler_identity: Name recorded in failure attempts and headers.
        source_queue: Queue the messages were consumed from.
        sleep: Coroutine used to wait between attempts.
    """

    def __init__(
        self,
        service: BaseDeadLetterService,
        handler_identity: str,
        source_queue: str,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.handler_identity = handler_identity
        self.source_queue = source_queue
        self._sleep = sleep

    async def execute_with_retry(self, message: T, handler: MessageHandler[T]) -> bool:
        """Process ``message``, retrying failures per the service policy.

        Returns:
            True if the handler eventually succeeded, False if the message
            was dead-lettered.

        Raises:
            asyncio.CancelledError: Propagated immediately; never counted as a failure.
            DeadLetterPublishError: The message could not be dead-lettered.
        """
        message_type = qualified_name(message)
        history: list[FailureAttempt] = []
        attempt_count = 0

        with log_context(handler=self.handler_identity, source_queue=self.source_queue):
            while True:
                attempt_count += 1
                logger.debug(
                    "Processing %s, attempt %d",
                    message_type,
                    attempt_count,
                )
                started = time.perf_counter()
                try:
                    await handler(message)
                except Exception as exc:
                    duration = timedelta(seconds=time.perf_counter() - started)
                    logger.warning(
                        "Failed to process %s on attempt %d: %s",
                        message_type,
                        attempt_count,
                        exc,
                        exc_info=True,
                    )

                    if not self.service.should_retry(exc, attempt_count):
                        logger.error(
                            "%s failed permanently after %d attempts; sending to dead-letter queue",
                            message_type,
                            attempt_count,
                        )
                        await self.service.send_to_dead_letter(
                            message,
                            exc,
                            self.handler_identity,
                            self.source_queue,
                            attempt_count,
                            prior_failures=history,
                            processing_duration=duration,
                        )
                        return False

                    history.append(
                        FailureAttempt.from_exception(
                            exc,
                            attempt_number=attempt_count,
                            handler_identity=self.handler_identity,
                            processing_duration=duration,
                        ),
                    )
                    delay = self.service.retry_delay(attempt_count)
                    record_retry(self.source_queue, classify(exc).value, delay.total_seconds())
                    logger.info(
                        "Will retry %s in %.0fms (attempt %d)",
                        message_type,
                        delay.total_seconds() * 1000,
                        attempt_count,
                    )
                    await self._sleep(delay.total_seconds())
                    continue

                if attempt_count > 1:
                    logger.info(
                        "%s processed successfully on attempt %d",
                        message_type,
                        attempt_count,
                    )
                self.service.aggregator.record_success(self.handler_identity)
                return True


__all__ = ["MessageHandler", "MessageRetryExecutor"]
