"""
Ingress adapters for checkout events.

Two delivery paths feed the same handler, CheckoutOrchestrator.on_checkout_event:
  - direct: a channel subscription invoked on pattern match
  - queue:  a poller over the buffered queue the channel rule also targets

Guarantees:
  - Retryable failures (store/publish) are never acknowledged: the direct path
    raises RedeliveryRequested, the queue path abandons the message
  - Unparseable messages, and queue messages received too many times, go to
    the dead-letter target and are acknowledged
"""

import asyncio
import logging

from pydantic import ValidationError

from checkout_service.metrics import CHECKOUT_EVENTS_CONSUMED
from checkout_service.orchestrator import CheckoutOrchestrator, CheckoutOutcome
from shared.channel import Channel, EventPattern
from shared.errors import RedeliveryRequested
from shared.events import CHECKOUT_DETAIL_TYPE, CHECKOUT_SOURCE, CheckoutEvent, Envelope
from shared.queue import DeadLetter, Queue, QueueMessage
from shared.results import Result

logger = logging.getLogger(__name__)

CHECKOUT_PATTERN = EventPattern(source=CHECKOUT_SOURCE, detail_type=CHECKOUT_DETAIL_TYPE)


def _status(result: Result[CheckoutOutcome]) -> str:
    if result.ok:
        return "duplicate" if result.value.duplicate else "processed"
    return "failed" if result.retryable else "rejected"


class CheckoutIngress:
    def __init__(
        self,
        orchestrator: CheckoutOrchestrator,
        dead_letter: DeadLetter,
        max_receive_count: int | None = None,
    ):
        self._orchestrator = orchestrator
        self._dead_letter = dead_letter
        self._max_receive_count = max_receive_count

    async def _handle(self, event: CheckoutEvent, ingress: str) -> Result[CheckoutOutcome]:
        result = await self._orchestrator.on_checkout_event(event)
        CHECKOUT_EVENTS_CONSUMED.labels(ingress, _status(result)).inc()
        return result

    # ------------------------------------------------------------------
    # Direct dispatch
    # ------------------------------------------------------------------

    async def handle_direct(self, envelope: Envelope) -> None:
        try:
            event = CheckoutEvent.model_validate(envelope.detail)
        except ValidationError as exc:
            logger.error(
                "Failed to parse checkout event — sending to DLQ",
                extra={"message_id": envelope.message_id, "error": str(exc)},
            )
            await self._dead_letter(envelope.model_dump_json(by_alias=True).encode(), "unparseable")
            CHECKOUT_EVENTS_CONSUMED.labels("direct", "dlq").inc()
            return

        result = await self._handle(event, "direct")
        if result.retryable:
            raise RedeliveryRequested(result.error.message)

    def subscribe(self, event_channel: Channel) -> None:
        event_channel.subscribe(CHECKOUT_PATTERN, self.handle_direct)

    # ------------------------------------------------------------------
    # Buffered queue
    # ------------------------------------------------------------------

    async def poll_once(self, queue: Queue, max_messages: int = 1) -> int:
        """Receive and handle one batch. Returns the number of messages received."""
        messages = await queue.receive(max_messages)
        for message in messages:
            await self._handle_queued(queue, message)
        return len(messages)

    async def _handle_queued(self, queue: Queue, message: QueueMessage) -> None:
        if self._max_receive_count is not None and message.receive_count > self._max_receive_count:
            logger.error(
                "Message exceeded max receive count — sending to DLQ",
                extra={"queue": queue.name, "receive_count": message.receive_count},
            )
            await self._dead_letter(message.body, "max_receive_count")
            await queue.delete(message)
            CHECKOUT_EVENTS_CONSUMED.labels("queue", "dlq").inc()
            return

        try:
            envelope = Envelope.model_validate_json(message.body)
            event = CheckoutEvent.model_validate(envelope.detail)
        except ValidationError as exc:
            logger.error(
                "Failed to parse queued checkout event — sending to DLQ",
                extra={"queue": queue.name, "error": str(exc)},
            )
            await self._dead_letter(message.body, "unparseable")
            await queue.delete(message)
            CHECKOUT_EVENTS_CONSUMED.labels("queue", "dlq").inc()
            return

        result = await self._handle(event, "queue")
        if result.retryable:
            logger.warning(
                "Leaving queued checkout event for redelivery",
                extra={
                    "queue": queue.name,
                    "message_id": envelope.message_id,
                    "receive_count": message.receive_count,
                    "error": result.error.message,
                },
            )
            await queue.abandon(message)
            return

        # --- Delete only after the order is persisted and acknowledged ---
        await queue.delete(message)

    async def run_queue_poller(self, queue: Queue, idle_delay: float = 0.5) -> None:
        """Main poller loop — runs until cancelled."""
        logger.info("Queue poller started", extra={"queue": queue.name})
        while True:
            received = await self.poll_once(queue)
            if not received:
                await asyncio.sleep(idle_delay)
