"""Amazon SQS dead-letter backend (aioboto3).

Each source queue gets a dead-letter queue named ``{source_queue}{suffix}``,
created on first write with a retention period matching the dead-letter TTL.
Messages are inspected by receiving them with a visibility timeout and are
made visible again (visibility timeout 0) unless they are being removed.

Transport headers travel as SQS message attributes. SQS allows at most ten
attributes per message, so extra headers are dropped on replay.

SQS bodies are text, so a payload stored base64-encoded is replayed as its
base64 text with a ``payload-encoding: base64`` attribute.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from deadletter_service.core.exceptions import BrokerConnectionError
from deadletter_service.core.settings import BackendKind, get_sqs_settings

from ..envelope import FailedMessageInfo
from ..headers import PAYLOAD_ENCODING_HEADER, reprocessed_headers
from ..service import BaseDeadLetterService

if TYPE_CHECKING:
    from deadletter_service.core.settings import DeadLetterSettings, SQSSettings

logger = logging.getLogger(__name__)

# SQS limits
MIN_RETENTION_SECONDS = 60
MAX_RETENTION_SECONDS = 1_209_600
MAX_RECEIVE_BATCH = 10
MAX_MESSAGE_ATTRIBUTES = 10

_NON_EXISTENT_QUEUE_CODES = frozenset(
    {"AWS.SimpleQueueService.NonExistentQueue", "QueueDoesNotExist"},
)


def to_message_attributes(headers: dict[str, Any]) -> dict[str, dict[str, str]]:
    """Convert transport headers to SQS message attributes."""
    attributes: dict[str, dict[str, str]] = {}
    for name, value in headers.items():
        if value is None or len(attributes) >= MAX_MESSAGE_ATTRIBUTES:
            continue
        if isinstance(value, bool) or not isinstance(value, int | float):
            attributes[name] = {"DataType": "String", "StringValue": str(value)}
        else:
            attributes[name] = {"DataType": "Number", "StringValue": str(value)}
    return attributes


class SQSDeadLetterService(BaseDeadLetterService):
    """Dead-letter service backed by Amazon SQS.

    Example:
        service = SQSDeadLetterService(get_dlq_settings())
        await service.list_dead_letter_messages("users-events-dlq", max_count=10)
        await service.aclose()
    """

    backend = BackendKind.SQS

    def __init__(
        self,
        settings: DeadLetterSettings,
        *,
        sqs_settings: SQSSettings | None = None,
        session: aioboto3.Session | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(settings, **kwargs)
        self.sqs_settings = sqs_settings or get_sqs_settings()
        self._session = session or aioboto3.Session()
        self._client: Any = None
        self._exit_stack: AsyncExitStack | None = None
        self._queue_urls: dict[str, str] = {}
        self._lock = asyncio.Lock()

    def dead_letter_queue_name(self, source_queue: str) -> str:
        return f"{source_queue}{self.settings.dead_letter_queue_suffix}"

    # ─────────────────────────────────────────────────────
    # Client lifecycle
    # ─────────────────────────────────────────────────────
    async def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is not None:
                return self._client

            stack = AsyncExitStack()
            try:
                self._client = await stack.enter_async_context(
                    self._session.client("sqs", **self.sqs_settings.get_boto3_config()),
                )
            except (BotoCoreError, ClientError) as exc:
                await stack.aclose()
                logger.exception(
                    "Failed to create SQS client",
                    extra={"region": self.sqs_settings.region},
                )
                raise BrokerConnectionError(
                    f"Could not create SQS client for region {self.sqs_settings.region}",
                    metadata={"backend": self.backend.value},
                ) from exc

            self._exit_stack = stack
            logger.info(
                "SQS dead-letter client created",
                extra={"region": self.sqs_settings.region, "endpoint": self.sqs_settings.endpoint},
            )
            return self._client

    async def _close(self) -> None:
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
        self._exit_stack = None
        self._client = None
        self._queue_urls.clear()

    async def _queue_url(self, queue_name: str) -> str | None:
        """Look up a queue URL; None if the queue does not exist."""
        if queue_name in self._queue_urls:
            return self._queue_urls[queue_name]

        client = await self._get_client()
        try:
            response = await client.get_queue_url(QueueName=queue_name)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _NON_EXISTENT_QUEUE_CODES:
                logger.debug("Queue does not exist", extra={"queue_name": queue_name})
                return None
            raise

        self._queue_urls[queue_name] = response["QueueUrl"]
        return response["QueueUrl"]

    # ─────────────────────────────────────────────────────
    # Broker primitives
    # ─────────────────────────────────────────────────────
    async def _ensure_queue(self, source_queue: str) -> None:
        await self._dead_letter_queue_url(source_queue)

    async def _dead_letter_queue_url(self, source_queue: str) -> str:
        queue_name = self.dead_letter_queue_name(source_queue)
        if queue_name in self._queue_urls:
            return self._queue_urls[queue_name]

        client = await self._get_client()
        retention = int(self.settings.dead_letter_ttl.total_seconds())
        retention = max(MIN_RETENTION_SECONDS, min(retention, MAX_RETENTION_SECONDS))
        response = await client.create_queue(
            QueueName=queue_name,
            Attributes={"MessageRetentionPeriod": str(retention)},
        )
        self._queue_urls[queue_name] = response["QueueUrl"]

        logger.debug(
            "Ensured dead-letter queue",
            extra={"queue_name": queue_name, "retention_seconds": retention},
        )
        return response["QueueUrl"]

    async def _publish(self, envelope: FailedMessageInfo, headers: dict[str, Any]) -> None:
        queue_url = await self._dead_letter_queue_url(envelope.source_queue)
        client = await self._get_client()
        await client.send_message(
            QueueUrl=queue_url,
            MessageBody=envelope.to_json(),
            MessageAttributes=to_message_attributes(headers),
        )

    async def _list(self, queue_name: str, max_count: int) -> list[FailedMessageInfo]:
        queue_url = await self._queue_url(queue_name)
        if queue_url is None:
            return []

        client = await self._get_client()
        held: list[str] = []
        envelopes: list[FailedMessageInfo] = []
        try:
            while len(held) < max_count:
                response = await client.receive_message(
                    QueueUrl=queue_url,
                    MaxNumberOfMessages=min(MAX_RECEIVE_BATCH, max_count - len(held)),
                    VisibilityTimeout=self.sqs_settings.visibility_timeout_seconds,
                    WaitTimeSeconds=self.sqs_settings.wait_time_seconds,
                )
                batch = response.get("Messages", [])
                if not batch:
                    break
                for raw in batch:
                    held.append(raw["ReceiptHandle"])
                    envelope = self._decode(raw, queue_name)
                    if envelope is not None:
                        envelopes.append(envelope)
        finally:
            for receipt_handle in held:
                await asyncio.shield(self._release(client, queue_url, receipt_handle))

        return envelopes

    async def _reprocess(self, queue_name: str, message_id: str) -> bool:
        head = await self._take_head(queue_name, message_id)
        if head is None:
            return False
        client, queue_url, receipt_handle, envelope = head

        try:
            target_url = await self._queue_url(envelope.source_queue)
            if target_url is None:
                msg = f"Source queue {envelope.source_queue} does not exist"
                raise LookupError(msg)
            # Markers first so the attribute limit never drops them
            markers = reprocessed_headers(envelope.message_id)
            if envelope.payload_encoding != "utf-8":
                markers[PAYLOAD_ENCODING_HEADER] = envelope.payload_encoding
            carried = {k: v for k, v in envelope.headers.items() if k not in markers}
            await client.send_message(
                QueueUrl=target_url,
                MessageBody=envelope.original_payload,
                MessageAttributes=to_message_attributes({**markers, **carried}),
            )
        except BaseException:
            await asyncio.shield(self._release(client, queue_url, receipt_handle))
            raise

        await client.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle)
        return True

    async def _purge(self, queue_name: str, message_id: str) -> bool:
        head = await self._take_head(queue_name, message_id)
        if head is None:
            return False
        client, queue_url, receipt_handle, _ = head
        await client.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle)
        return True

    async def _queue_depth(self, queue_name: str) -> int:
        queue_url = await self._queue_url(queue_name)
        if queue_url is None:
            return 0
        client = await self._get_client()
        response = await client.get_queue_attributes(
            QueueUrl=queue_url,
            AttributeNames=["ApproximateNumberOfMessages"],
        )
        return int(response.get("Attributes", {}).get("ApproximateNumberOfMessages", 0))

    # ─────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────
    async def _take_head(
        self,
        queue_name: str,
        message_id: str,
    ) -> tuple[Any, str, str, FailedMessageInfo] | None:
        """Receive the next message if it carries ``message_id``; otherwise release it."""
        queue_url = await self._queue_url(queue_name)
        if queue_url is None:
            return None

        client = await self._get_client()
        response = await client.receive_message(
            QueueUrl=queue_url,
            MaxNumberOfMessages=1,
            VisibilityTimeout=self.sqs_settings.visibility_timeout_seconds,
            WaitTimeSeconds=self.sqs_settings.wait_time_seconds,
        )
        messages = response.get("Messages", [])
        if not messages:
            return None

        raw = messages[0]
        envelope = self._decode(raw, queue_name)
        if envelope is None or envelope.message_id != message_id:
            await asyncio.shield(self._release(client, queue_url, raw["ReceiptHandle"]))
            return None
        return client, queue_url, raw["ReceiptHandle"], envelope

    async def _release(self, client: Any, queue_url: str, receipt_handle: str) -> None:
        """Make a received message visible again."""
        try:
            await client.change_message_visibility(
                QueueUrl=queue_url,
                ReceiptHandle=receipt_handle,
                VisibilityTimeout=0,
            )
        except (BotoCoreError, ClientError):
            logger.warning(
                "Could not release dead-letter message; it reappears after the visibility timeout",
                exc_info=True,
                extra={"queue_url": queue_url},
            )

    def _decode(self, raw: dict[str, Any], queue_name: str) -> FailedMessageInfo | None:
        try:
            return FailedMessageInfo.from_json(raw.get("Body", ""))
        except ValidationError:
            logger.warning(
                "Skipping unreadable dead-letter message",
                extra={"queue_name": queue_name, "sqs_message_id": raw.get("MessageId")},
            )
            return None


__all__ = ["SQSDeadLetterService", "to_message_attributes"]
