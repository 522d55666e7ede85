"""Admin notifications for dead-lettered messages.

This module provides best-effort notifications when a message lands in a
dead-letter queue:
- Alert channels: structured log (always available) and webhook (httpx)
- Severity derived from the attempt count
- Rate limiting per (queue, failure type) to prevent alert storms
- Fire-and-forget dispatch: notification failures are logged, never raised

Example:
    notifier = AdminNotifier.from_settings(get_dlq_settings())
    notifier.dispatch(envelope, attempt_count=5, handler_identity="UserCreatedHandler")
    ...
    await notifier.aclose()  # waits for in-flight notifications
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import httpx

from .metrics import record_notification

if TYPE_CHECKING:
    from deadletter_service.core.settings.dead_letter import DeadLetterSettings

    from .envelope import FailedMessageInfo

logger = logging.getLogger(__name__)


class NotificationSeverity(StrEnum):
    """Notification severity levels."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class NotificationChannel(StrEnum):
    """Available notification channels."""

    LOG = "log"
    WEBHOOK = "webhook"


@dataclass
class NotificationConfig:
    """Configuration for admin notifications.

    Attributes:
        enabled: Whether notifications are sent at all.
        channels: Channels to notify.
        webhook_url: URL for webhook notifications.
        rate_limit_seconds: Minimum seconds between notifications per key.
        warning_threshold: Attempt count from which severity is WARNING.
        critical_threshold: Attempt count from which severity is CRITICAL.
        max_preview_length: Maximum length of the payload preview.
        webhook_timeout: Timeout for the webhook request in seconds.
    """

    enabled: bool = True
    channels: list[NotificationChannel] = field(
        default_factory=lambda: [NotificationChannel.LOG],
    )
    webhook_url: str | None = None
    rate_limit_seconds: int = 300
    warning_threshold: int = 3
    critical_threshold: int = 5
    max_preview_length: int = 500
    webhook_timeout: float = 10.0


@dataclass
class DeadLetterNotification:
    """A notification about one dead-lettered message."""

    timestamp: datetime
    severity: NotificationSeverity
    message_id: str
    message_type: str
    source_queue: str
    failure_type: str
    failure_message: str
    attempt_count: int
    handler_identity: str
    payload_preview: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "message_id": self.message_id,
            "message_type": self.message_type,
            "source_queue": self.source_queue,
            "failure_type": self.failure_type,
            "failure_message": self.failure_message,
            "attempt_count": self.attempt_count,
            "handler_identity": self.handler_identity,
            "payload_preview": self.payload_preview,
        }

    def format_subject(self) -> str:
        return (
            f"Dead-letter [{self.severity.value.upper()}]: "
            f"{self.source_queue} - {self.failure_type}"
        )


class RateLimiter:
    """Per-key minimum interval between notifications."""

    def __init__(self, min_interval_seconds: int = 300) -> None:
        self._last_sent: dict[str, datetime] = {}
        self._min_interval = min_interval_seconds

    def should_send(self, key: str) -> bool:
        """Check (and record) whether a notification may be sent for ``key``."""
        now = datetime.now(UTC)
        last = self._last_sent.get(key)
        if last is not None and (now - last).total_seconds() < self._min_interval:
            return False
        self._last_sent[key] = now
        return True

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._last_sent.clear()
        else:
            self._last_sent.pop(key, None)


class AdminNotifier:
    """Notifies administrators when messages are dead-lettered.

    Example:
        config = NotificationConfig(
            channels=[NotificationChannel.LOG, NotificationChannel.WEBHOOK],
            webhook_url="https://hooks.example.com/dlq",
        )
        notifier = AdminNotifier(config)
        await notifier.notify(envelope, attempt_count=5, handler_identity="OrderHandler")
    """

    def __init__(
        self,
        config: NotificationConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or NotificationConfig()
        self._rate_limiter = RateLimiter(self.config.rate_limit_seconds)
        self._http_client = http_client
        self._owns_client = http_client is None
        self._pending: set[asyncio.Task[bool]] = set()

    @classmethod
    def from_settings(cls, settings: DeadLetterSettings) -> AdminNotifier:
        """Build a notifier from DeadLetterSettings."""
        channels = [NotificationChannel.LOG]
        if settings.admin_webhook_url:
            channels.append(NotificationChannel.WEBHOOK)
        return cls(
            NotificationConfig(
                enabled=settings.enable_admin_notifications,
                channels=channels,
                webhook_url=settings.admin_webhook_url,
                rate_limit_seconds=settings.notification_rate_limit_seconds,
                critical_threshold=settings.max_retry_attempts,
            ),
        )

    def _determine_severity(self, attempt_count: int) -> NotificationSeverity:
        if attempt_count >= self.config.critical_threshold:
            return NotificationSeverity.CRITICAL
        if attempt_count >= self.config.warning_threshold:
            return NotificationSeverity.WARNING
        return NotificationSeverity.INFO

    def _truncate(self, text: str) -> str:
        limit = self.config.max_preview_length
        if len(text) <= limit:
            return text
        return text[: limit - 3] + "..."

    # ─────────────────────────────────────────────────────
    # Dispatch
    # ─────────────────────────────────────────────────────
    def dispatch(
        self,
        envelope: FailedMessageInfo,
        attempt_count: int,
        handler_identity: str,
    ) -> asyncio.Task[bool] | None:
        """Schedule notify() in the background and return immediately.

        The task is tracked until it finishes so aclose() can wait for it.
        """
        if not self.config.enabled:
            return None
        task = asyncio.create_task(
            self.notify(envelope, attempt_count, handler_identity),
            name=f"dlq-notify-{envelope.message_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[bool]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Admin notification failed",
                exc_info=exc,
                extra={"task": task.get_name()},
            )

    async def notify(
        self,
        envelope: FailedMessageInfo,
        attempt_count: int,
        handler_identity: str,
    ) -> bool:
        """Send a notification to all configured channels.

        Returns:
            True if the notification was sent, False if disabled or rate limited.
        """
        if not self.config.enabled:
            return False

        latest = envelope.latest_failure
        failure_type = latest.failure_kind_name if latest else "unknown"
        rate_key = f"{envelope.source_queue}:{failure_type}"
        if not self._rate_limiter.should_send(rate_key):
            logger.debug(
                "Admin notification rate limited",
                extra={"source_queue": envelope.source_queue, "failure_type": failure_type},
            )
            record_notification("all", "rate_limited")
            return False

        notification = DeadLetterNotification(
            timestamp=datetime.now(UTC),
            severity=self._determine_severity(attempt_count),
            message_id=envelope.message_id,
            message_type=envelope.message_type,
            source_queue=envelope.source_queue,
            failure_type=failure_type,
            failure_message=self._truncate(envelope.last_failure_reason)[:200],
            attempt_count=attempt_count,
            handler_identity=handler_identity,
            payload_preview=self._truncate(envelope.original_payload),
        )

        senders = {
            NotificationChannel.LOG: self._send_log,
            NotificationChannel.WEBHOOK: self._send_webhook,
        }
        channels = list(self.config.channels)
        results = await asyncio.gather(
            *(senders[channel](notification) for channel in channels),
            return_exceptions=True,
        )
        for channel, result in zip(channels, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Failed to send admin notification via %s",
                    channel.value,
                    exc_info=result,
                    extra={"message_id": notification.message_id},
                )
                record_notification(channel.value, "failed")
            else:
                record_notification(channel.value, "sent")

        return True

    async def _send_log(self, notification: DeadLetterNotification) -> None:
        log_method = {
            NotificationSeverity.INFO: logger.info,
            NotificationSeverity.WARNING: logger.warning,
            NotificationSeverity.CRITICAL: logger.critical,
        }[notification.severity]

        log_method(
            "Message dead-lettered: %s from %s",
            notification.failure_type,
            notification.source_queue,
            extra={
                "dlq_notification": notification.to_dict(),
                "notification_severity": notification.severity.value,
            },
        )

    async def _send_webhook(self, notification: DeadLetterNotification) -> None:
        if not self.config.webhook_url:
            logger.debug("No webhook URL configured for admin notifications")
            return

        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.webhook_timeout)

        payload = {
            "text": notification.format_subject(),
            "notification": notification.to_dict(),
        }
        response = await self._http_client.post(self.config.webhook_url, json=payload)
        response.raise_for_status()

        logger.debug(
            "Admin webhook notification sent",
            extra={"message_id": notification.message_id},
        )

    async def aclose(self) -> None:
        """Wait for in-flight notifications, then close the HTTP client."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None


__all__ = [
    "AdminNotifier",
    "DeadLetterNotification",
    "NotificationChannel",
    "NotificationConfig",
    "NotificationSeverity",
    "RateLimiter",
]
