"""
Kafka-backed channel and queue.

KafkaChannel: the channel name is the topic; source and detail type travel in
message headers next to the W3C trace context, and the envelope is the value.
Messages are keyed by userName so one user's messages stay ordered.

Consumers commit offsets manually, only after every matching target has
succeeded. A failing target makes the consumer wait out the redelivery delay
and seek back to the same offset, so the message is delivered again
(at-least-once). A record that keeps failing goes to the dead-letter topic
once it has been delivered max_deliveries times.
"""

import asyncio
import logging
from typing import Any

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, TopicPartition
from aiokafka.errors import KafkaError
from opentelemetry import trace
from opentelemetry.propagate import extract, inject
from pydantic import ValidationError

from shared.channel import EventPattern, PublishReceipt, Target
from shared.errors import ChannelUnavailableError
from shared.events import Envelope
from shared.queue import DEFAULT_VISIBILITY_TIMEOUT, QueueMessage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _headers_to_dict(headers) -> dict[str, str]:
    return {k: v.decode() for k, v in headers} if headers else {}


async def send_to_dead_letter(producer: AIOKafkaProducer, topic: str, body: bytes, reason: str) -> None:
    await producer.send_and_wait(topic, value=body, headers=[("dlq-reason", reason.encode())])
    logger.error("Message forwarded to dead-letter topic", extra={"topic": topic, "reason": reason})


class KafkaChannel:
    def __init__(
        self,
        name: str,
        producer: AIOKafkaProducer,
        redelivery_delay: float = DEFAULT_VISIBILITY_TIMEOUT,
        max_deliveries: int | None = None,
    ):
        self.name = name
        self._producer = producer
        self._redelivery_delay = redelivery_delay
        self._max_deliveries = max_deliveries
        self._subscriptions: list[tuple[EventPattern, Target]] = []
        self._deliveries: dict[tuple[TopicPartition, int], int] = {}

    @property
    def dead_letter_topic(self) -> str:
        return f"{self.name}.dlq"

    def subscribe(self, pattern: EventPattern, target: Target) -> None:
        self._subscriptions.append((pattern, target))

    async def publish(self, source: str, detail_type: str, detail: dict[str, Any]) -> PublishReceipt:
        envelope = Envelope(source=source, detail_type=detail_type, detail=detail)

        headers: dict[str, str] = {"source": source, "detail-type": detail_type}
        inject(headers)
        key = detail.get("userName")

        try:
            await self._producer.send_and_wait(
                self.name,
                key=key.encode() if key else None,
                value=envelope.model_dump_json(by_alias=True).encode(),
                headers=[(k, v.encode()) for k, v in headers.items()],
            )
        except KafkaError as exc:
            raise ChannelUnavailableError(f"Publish to {self.name} failed: {exc}") from exc

        logger.info(
            "Published envelope",
            extra={"topic": self.name, "message_id": envelope.message_id, "detail_type": detail_type},
        )
        return PublishReceipt(message_id=envelope.message_id, channel=self.name)

    async def run_subscriber(self, consumer: AIOKafkaConsumer) -> None:
        """Main consumer loop — runs until cancelled."""
        async for msg in consumer:
            await self._handle_message(msg, consumer)

    async def _handle_message(self, msg, consumer: AIOKafkaConsumer) -> None:
        ctx = extract(_headers_to_dict(msg.headers))
        tp = TopicPartition(msg.topic, msg.partition)

        with tracer.start_as_current_span(f"kafka.consume.{msg.topic}", context=ctx):
            try:
                envelope = Envelope.model_validate_json(msg.value)
            except ValidationError as exc:
                logger.error(
                    "Failed to parse envelope — sending to DLQ",
                    extra={"error": str(exc), "offset": msg.offset, "partition": msg.partition},
                )
                await send_to_dead_letter(self._producer, self.dead_letter_topic, msg.value, "unparseable")
                await consumer.commit({tp: msg.offset + 1})
                return

            position = (tp, msg.offset)
            deliveries = self._deliveries.get(position, 0) + 1

            for pattern, target in self._subscriptions:
                if not pattern.matches(envelope):
                    continue
                try:
                    await target(envelope)
                except Exception as exc:
                    await self._redeliver_or_dead_letter(msg, consumer, envelope, deliveries, exc)
                    return

            # --- Commit offset only after every target succeeded ---
            self._deliveries.pop(position, None)
            await consumer.commit({tp: msg.offset + 1})

    async def _redeliver_or_dead_letter(
        self,
        msg,
        consumer: AIOKafkaConsumer,
        envelope: Envelope,
        deliveries: int,
        exc: Exception,
    ) -> None:
        tp = TopicPartition(msg.topic, msg.partition)
        context = {
            "message_id": envelope.message_id,
            "offset": msg.offset,
            "partition": msg.partition,
            "deliveries": deliveries,
            "error": str(exc),
        }

        if self._max_deliveries is not None and deliveries >= self._max_deliveries:
            logger.error("Delivery limit reached — sending to DLQ", extra=context)
            self._deliveries.pop((tp, msg.offset), None)
            await send_to_dead_letter(self._producer, self.dead_letter_topic, msg.value, "max_deliveries")
            await consumer.commit({tp: msg.offset + 1})
            return

        logger.warning("Delivery failed — seeking back for redelivery", extra=context)
        self._deliveries[(tp, msg.offset)] = deliveries
        await asyncio.sleep(self._redelivery_delay)
        consumer.seek(tp, msg.offset)


class KafkaQueue:
    """
    Queue view over a consumer group: receive() polls one record at a time,
    delete() commits past it, abandon() waits out the visibility timeout and
    rewinds to it.
    """

    def __init__(
        self,
        name: str,
        consumer: AIOKafkaConsumer,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT,
        wait_seconds: float = 1.0,
    ):
        self.name = name
        self._consumer = consumer
        self._visibility_timeout = visibility_timeout
        self._wait_ms = int(wait_seconds * 1000)
        self._in_flight: dict[str, tuple[TopicPartition, int]] = {}
        self._receive_counts: dict[tuple[TopicPartition, int], int] = {}

    async def receive(self, max_messages: int = 1) -> list[QueueMessage]:
        batches = await self._consumer.getmany(timeout_ms=self._wait_ms, max_records=max_messages)
        received: list[QueueMessage] = []
        for tp, records in batches.items():
            for record in records:
                position = (tp, record.offset)
                count = self._receive_counts.get(position, 0) + 1
                self._receive_counts[position] = count
                receipt = f"{tp.topic}:{tp.partition}:{record.offset}"
                self._in_flight[receipt] = position
                received.append(QueueMessage(receipt=receipt, body=record.value, receive_count=count))
        return received

    async def delete(self, message: QueueMessage) -> None:
        tp, offset = self._in_flight.pop(message.receipt)
        self._receive_counts.pop((tp, offset), None)
        await self._consumer.commit({tp: offset + 1})

    async def abandon(self, message: QueueMessage) -> None:
        tp, offset = self._in_flight.pop(message.receipt)
        await asyncio.sleep(self._visibility_timeout)
        self._consumer.seek(tp, offset)
