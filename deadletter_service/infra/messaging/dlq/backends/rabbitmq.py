"""RabbitMQ dead-letter backend (aio-pika).

Topology:
    exchange  ``{dead_letter_exchange}`` (topic, durable)
    queue     ``{dead_letter_queue_prefix}.{source_queue}`` (durable, x-message-ttl)
    binding   ``{dead_letter_routing_key}.{source_queue}``

Dead-letter writes go through a long-lived channel. Administrative operations
(list, reprocess, purge, depth) each open a short-lived channel so a passive
declare on a missing queue, which closes its channel, never affects
publishing, and so any message left unsettled is returned to the queue when
the channel closes.

Replays are published mandatory on a confirming channel: a replay the broker
returns or rejects raises, and the dead-letter copy is requeued.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import aio_pika
from aio_pika import DeliveryMode, ExchangeType
from aio_pika.exceptions import ChannelNotFoundEntity
from pydantic import ValidationError

from deadletter_service.core.exceptions import BrokerConnectionError
from deadletter_service.core.settings import BackendKind, get_rabbit_settings

from ..envelope import FailedMessageInfo
from ..headers import reprocessed_headers
from ..service import BaseDeadLetterService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from aio_pika.abc import (
        AbstractChannel,
        AbstractExchange,
        AbstractIncomingMessage,
        AbstractQueue,
        AbstractRobustConnection,
    )

    from deadletter_service.core.settings import DeadLetterSettings, RabbitSettings

logger = logging.getLogger(__name__)


class RabbitMQDeadLetterService(BaseDeadLetterService):
    """Dead-letter service backed by a RabbitMQ topic exchange.

    Example:
        async with RabbitMQDeadLetterService(get_dlq_settings()) as service:
            await service.send_to_dead_letter(
                message, error, "UserCreatedHandler", "users-events", attempt_count=3
            )
    """

    backend = BackendKind.RABBITMQ

    def __init__(
        self,
        settings: DeadLetterSettings,
        *,
        rabbit_settings: RabbitSettings | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(settings, **kwargs)
        self.rabbit_settings = rabbit_settings or get_rabbit_settings()
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._declared: set[str] = set()
        self._lock = asyncio.Lock()

    def dead_letter_queue_name(self, source_queue: str) -> str:
        return f"{self.settings.dead_letter_queue_prefix}.{source_queue}"

    def routing_key(self, source_queue: str) -> str:
        return f"{self.settings.dead_letter_routing_key}.{source_queue}"

    # ─────────────────────────────────────────────────────
    # Connection management
    # ─────────────────────────────────────────────────────
    async def _get_channel(self) -> AbstractChannel:
        """Return the publishing channel, connecting on first use."""
        if self._channel is not None and not self._channel.is_closed:
            return self._channel

        async with self._lock:
            if self._channel is not None and not self._channel.is_closed:
                return self._channel

            try:
                if self._connection is None or self._connection.is_closed:
                    self._connection = await aio_pika.connect_robust(
                        self.rabbit_settings.url,
                        timeout=self.rabbit_settings.connection_timeout,
                        client_properties={
                            "connection_name": self.rabbit_settings.connection_name,
                        },
                    )
                self._channel = await self._connection.channel(
                    publisher_confirms=self.rabbit_settings.publisher_confirms,
                )
                self._exchange = await self._channel.declare_exchange(
                    self.settings.dead_letter_exchange,
                    ExchangeType.TOPIC,
                    durable=True,
                )
                self._declared.clear()
            except Exception as exc:
                logger.exception(
                    "Failed to connect to RabbitMQ",
                    extra={"host": self.rabbit_settings.host, "port": self.rabbit_settings.port},
                )
                raise BrokerConnectionError(
                    f"Could not connect to RabbitMQ at {self.rabbit_settings.host}:"
                    f"{self.rabbit_settings.port}",
                    metadata={"backend": self.backend.value},
                ) from exc

            logger.info(
                "RabbitMQ dead-letter channel opened",
                extra={"exchange": self.settings.dead_letter_exchange},
            )
            return self._channel

    @asynccontextmanager
    async def _admin_channel(
        self,
        *,
        confirm_delivery: bool = False,
    ) -> AsyncIterator[AbstractChannel]:
        """Short-lived channel for one administrative operation.

        With ``confirm_delivery`` every publish waits for the broker, and an
        unroutable mandatory publish raises PublishError.
        """
        await self._get_channel()
        if self._connection is None:
            raise BrokerConnectionError(
                "RabbitMQ connection is not open",
                metadata={"backend": self.backend.value},
            )
        channel = await self._connection.channel(
            publisher_confirms=confirm_delivery,
            on_return_raises=confirm_delivery,
        )
        try:
            yield channel
        finally:
            if not channel.is_closed:
                await channel.close()

    async def _open_queue(self, channel: AbstractChannel, queue_name: str) -> AbstractQueue | None:
        """Passively declare a queue; None if it does not exist."""
        try:
            return await channel.declare_queue(queue_name, passive=True)
        except ChannelNotFoundEntity:
            logger.debug("Dead-letter queue does not exist", extra={"queue_name": queue_name})
            return None

    async def _close(self) -> None:
        if self._connection is not None and not self._connection.is_closed:
            await self._connection.close()
        self._connection = None
        self._channel = None
        self._exchange = None
        self._declared.clear()

    # ─────────────────────────────────────────────────────
    # Broker primitives
    # ─────────────────────────────────────────────────────
    async def _ensure_queue(self, source_queue: str) -> None:
        queue_name = self.dead_letter_queue_name(source_queue)
        if queue_name in self._declared:
            return

        channel = await self._get_channel()
        ttl_ms = int(self.settings.dead_letter_ttl.total_seconds() * 1000)
        queue = await channel.declare_queue(
            queue_name,
            durable=True,
            arguments={"x-message-ttl": ttl_ms},
        )
        await queue.bind(self._exchange, routing_key=self.routing_key(source_queue))
        self._declared.add(queue_name)

        logger.debug(
            "Declared dead-letter queue",
            extra={"queue_name": queue_name, "routing_key": self.routing_key(source_queue)},
        )

    async def _publish(self, envelope: FailedMessageInfo, headers: dict[str, Any]) -> None:
        await self._ensure_queue(envelope.source_queue)
        if self._exchange is None:
            raise BrokerConnectionError(
                f"Dead-letter exchange {self.settings.dead_letter_exchange} is not declared",
                metadata={"backend": self.backend.value},
            )

        delivery_mode = (
            DeliveryMode.PERSISTENT
            if self.settings.enable_persistence
            else DeliveryMode.NOT_PERSISTENT
        )
        message = aio_pika.Message(
            body=envelope.to_json().encode("utf-8"),
            content_type="application/json",
            content_encoding="utf-8",
            message_id=envelope.message_id,
            type=envelope.message_type,
            timestamp=envelope.last_attempt_at,
            headers=headers,
            delivery_mode=delivery_mode,
            expiration=self.settings.dead_letter_ttl,
        )
        await self._exchange.publish(message, routing_key=self.routing_key(envelope.source_queue))

    async def _list(self, queue_name: str, max_count: int) -> list[FailedMessageInfo]:
        async with self._admin_channel() as channel:
            queue = await self._open_queue(channel, queue_name)
            if queue is None:
                return []

            held: list[AbstractIncomingMessage] = []
            envelopes: list[FailedMessageInfo] = []
            try:
                while len(held) < max_count:
                    incoming = await queue.get(
                        no_ack=False,
                        fail=False,
                        timeout=self.settings.fetch_timeout_seconds,
                    )
                    if incoming is None:
                        break
                    held.append(incoming)
                    envelope = self._decode(incoming, queue_name)
                    if envelope is not None:
                        envelopes.append(envelope)
            finally:
                # Unsettled messages go back to the queue in their original order
                for incoming in held:
                    if not channel.is_closed:
                        await asyncio.shield(incoming.nack(requeue=True))

            return envelopes

    async def _reprocess(self, queue_name: str, message_id: str) -> bool:
        async with self._admin_channel(confirm_delivery=True) as channel:
            head = await self._take_head(channel, queue_name, message_id)
            if head is None:
                return False
            incoming, envelope = head

            try:
                replay = aio_pika.Message(
                    body=envelope.payload_bytes(),
                    message_id=str(uuid4()),
                    headers={**envelope.headers, **reprocessed_headers(envelope.message_id)},
                    delivery_mode=DeliveryMode.PERSISTENT,
                )
                await channel.default_exchange.publish(
                    replay,
                    routing_key=envelope.source_queue,
                    mandatory=True,
                )
            except BaseException:
                if not channel.is_closed:
                    await asyncio.shield(incoming.nack(requeue=True))
                raise

            await incoming.ack()
            return True

    async def _purge(self, queue_name: str, message_id: str) -> bool:
        async with self._admin_channel() as channel:
            head = await self._take_head(channel, queue_name, message_id)
            if head is None:
                return False
            incoming, _ = head
            await incoming.ack()
            return True

    async def _queue_depth(self, queue_name: str) -> int:
        async with self._admin_channel() as channel:
            queue = await self._open_queue(channel, queue_name)
            if queue is None:
                return 0
            return queue.declaration_result.message_count or 0

    # ─────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────
    async def _take_head(
        self,
        channel: AbstractChannel,
        queue_name: str,
        message_id: str,
    ) -> tuple[AbstractIncomingMessage, FailedMessageInfo] | None:
        """Fetch the head message if it carries ``message_id``; otherwise return it."""
        queue = await self._open_queue(channel, queue_name)
        if queue is None:
            return None

        incoming = await queue.get(
            no_ack=False,
            fail=False,
            timeout=self.settings.fetch_timeout_seconds,
        )
        if incoming is None:
            return None

        envelope = self._decode(incoming, queue_name)
        if envelope is None or envelope.message_id != message_id:
            await asyncio.shield(incoming.nack(requeue=True))
            return None
        return incoming, envelope

    def _decode(
        self,
        incoming: AbstractIncomingMessage,
        queue_name: str,
    ) -> FailedMessageInfo | None:
        try:
            return FailedMessageInfo.from_json(incoming.body)
        except ValidationError:
            logger.warning(
                "Skipping unreadable dead-letter message",
                extra={"queue_name": queue_name, "amqp_message_id": incoming.message_id},
            )
            return None


__all__ = ["RabbitMQDeadLetterService"]
