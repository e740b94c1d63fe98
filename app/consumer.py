"""
Acknowledgment consumer for the cart service.

Listens for CheckoutAck messages and clears the acknowledged cart. A storage
failure leaves the message unacknowledged so the channel delivers it again;
a duplicate acknowledgment finds no cart and is a no-op.
"""

import logging

from pydantic import ValidationError

from app.metrics import ACKS_CONSUMED
from app.services.cart_service import CartService
from shared.channel import Channel, EventPattern, Target
from shared.errors import RedeliveryRequested
from shared.events import ACK_DETAIL_TYPE, ACK_SOURCE, Acknowledgment, Envelope

logger = logging.getLogger(__name__)

ACK_PATTERN = EventPattern(source=ACK_SOURCE, detail_type=ACK_DETAIL_TYPE)


def acknowledgment_target(service: CartService) -> Target:
    async def handle(envelope: Envelope) -> None:
        try:
            ack = Acknowledgment.model_validate(envelope.detail)
        except ValidationError as exc:
            logger.error(
                "Failed to parse acknowledgment — dropped",
                extra={"message_id": envelope.message_id, "error": str(exc)},
            )
            ACKS_CONSUMED.labels("parse_error").inc()
            return

        result = await service.on_acknowledgment(ack)
        if result.retryable:
            raise RedeliveryRequested(result.error.message)

    return handle


def subscribe_acknowledgments(ack_channel: Channel, service: CartService) -> None:
    ack_channel.subscribe(ACK_PATTERN, acknowledgment_target(service))
