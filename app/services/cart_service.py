import logging
import uuid
from collections.abc import Iterable
from decimal import Decimal
from enum import Enum

from pydantic import Field

from app.metrics import ACKS_CONSUMED, CHECKOUTS_INITIATED
from app.repositories.cart_store import CartStore
from shared.channel import Channel
from shared.config import SagaConfig
from shared.errors import ChannelUnavailableError, StoreUnavailableError
from shared.events import (
    CHECKOUT_DETAIL_TYPE,
    CHECKOUT_SOURCE,
    Acknowledgment,
    Cart,
    CartItem,
    CheckoutEvent,
    CheckoutRequest,
    WireModel,
)
from shared.results import ErrorKind, Result
from shared.validation import validate_cart, validate_checkout_request

logger = logging.getLogger(__name__)


def cart_total(items: Iterable[CartItem]) -> Decimal:
    """Sum of price x quantity in Decimal arithmetic, so item order cannot change it."""
    return sum((item.subtotal for item in items), Decimal("0"))


class CheckoutReceipt(WireModel):
    checkout_id: str = Field(alias="checkoutId")
    message_id: str = Field(alias="messageId")
    user_name: str = Field(alias="userName")
    total_price: Decimal = Field(alias="totalPrice")


class AckOutcome(str, Enum):
    CLEARED = "cleared"  # cart deleted
    KEPT = "kept"  # cart absent already, or belongs to a newer checkout
    IGNORED = "ignored"  # negative acknowledgment


class CartService:
    """
    Owns cart rows and starts checkouts.

    A checkout never clears the cart itself: the cart stays until the
    orchestrator acknowledges that the order is durably recorded.
    """

    def __init__(self, store: CartStore, event_channel: Channel, config: SagaConfig):
        self._store = store
        self._event_channel = event_channel
        self._config = config

    # ------------------------------------------------------------------
    # Cart rows
    # ------------------------------------------------------------------

    async def get_cart(self, user_name: str) -> Result[Cart | None]:
        try:
            return Result.success(await self._store.get(user_name))
        except StoreUnavailableError as exc:
            logger.error("Reading cart failed", extra={"user_name": user_name, "error": str(exc)})
            return Result.failure(ErrorKind.STORAGE, str(exc))

    async def list_carts(self) -> Result[list[Cart]]:
        try:
            return Result.success(await self._store.scan())
        except StoreUnavailableError as exc:
            logger.error("Scanning carts failed", extra={"error": str(exc)})
            return Result.failure(ErrorKind.STORAGE, str(exc))

    async def add_items(self, cart: Cart) -> Result[Cart]:
        checked = validate_cart(cart)
        if not checked.ok:
            logger.info("Rejected cart", extra={"user_name": cart.user_name, "error": checked.error.message})
            return checked

        # A replaced cart is no longer the one any in-flight checkout was taken from.
        stored = cart.model_copy(update={"pending_checkout_id": None})
        try:
            await self._store.put(stored)
        except StoreUnavailableError as exc:
            logger.error("Writing cart failed", extra={"user_name": cart.user_name, "error": str(exc)})
            return Result.failure(ErrorKind.STORAGE, str(exc))

        logger.info("Cart stored", extra={"user_name": cart.user_name, "item_count": len(cart.items)})
        return Result.success(stored)

    async def delete_cart(self, user_name: str) -> Result[str]:
        try:
            deleted = await self._store.delete(user_name)
        except StoreUnavailableError as exc:
            logger.error("Deleting cart failed", extra={"user_name": user_name, "error": str(exc)})
            return Result.failure(ErrorKind.STORAGE, str(exc))

        logger.info("Cart deleted", extra={"user_name": user_name, "existed": deleted})
        return Result.success(f"Cart Deleted for user {user_name}")

    # ------------------------------------------------------------------
    # Checkout saga
    # ------------------------------------------------------------------

    async def initiate_checkout(self, request: CheckoutRequest) -> Result[CheckoutReceipt]:
        result = await self._initiate_checkout(request)
        CHECKOUTS_INITIATED.labels("published" if result.ok else result.error.kind.value).inc()
        return result

    async def _initiate_checkout(self, request: CheckoutRequest) -> Result[CheckoutReceipt]:
        # 1. Validate request
        checked = validate_checkout_request(request)
        if not checked.ok:
            return checked
        user_name = request.user_name

        # 2. Load cart
        try:
            cart = await self._store.get(user_name)
        except StoreUnavailableError as exc:
            logger.error("Reading cart for checkout failed", extra={"user_name": user_name, "error": str(exc)})
            return Result.failure(ErrorKind.STORAGE, str(exc))

        if cart is None or not cart.items:
            logger.info("Checkout of empty cart rejected", extra={"user_name": user_name})
            return Result.failure(ErrorKind.EMPTY_CART, f"No items in cart for user {user_name}")

        # 3. Build event; the total is computed here and nowhere downstream
        event = CheckoutEvent(
            checkout_id=str(uuid.uuid4()),
            user_name=user_name,
            first_name=request.first_name,
            last_name=request.last_name,
            email=request.email,
            total_price=cart_total(cart.items),
            items=cart.items,
        )

        # 4. Remember which checkout the cart belongs to, then publish
        try:
            await self._store.mark_checkout(user_name, event.checkout_id)
        except StoreUnavailableError as exc:
            logger.error("Marking cart checkout failed", extra={"user_name": user_name, "error": str(exc)})
            return Result.failure(ErrorKind.STORAGE, str(exc))

        try:
            receipt = await self._event_channel.publish(CHECKOUT_SOURCE, CHECKOUT_DETAIL_TYPE, event.to_wire())
        except ChannelUnavailableError as exc:
            logger.error(
                "Publishing checkout event failed",
                extra={"user_name": user_name, "checkout_id": event.checkout_id, "error": str(exc)},
            )
            return Result.failure(ErrorKind.PUBLISH, str(exc))

        logger.info(
            "Published checkout event",
            extra={
                "user_name": user_name,
                "checkout_id": event.checkout_id,
                "message_id": receipt.message_id,
                "total_price": str(event.total_price),
                "channel": self._config.event_channel_name,
            },
        )

        # 5. Cart stays until the acknowledgment arrives
        return Result.success(
            CheckoutReceipt(
                checkout_id=event.checkout_id,
                message_id=receipt.message_id,
                user_name=user_name,
                total_price=event.total_price,
            )
        )

    async def on_acknowledgment(self, ack: Acknowledgment) -> Result[AckOutcome]:
        if not ack.acknowledged:
            logger.warning(
                "Acknowledgment not received — cart left intact",
                extra={"user_name": ack.user_name, "checkout_id": ack.checkout_id, "processed": ack.processed},
            )
            ACKS_CONSUMED.labels(AckOutcome.IGNORED.value).inc()
            return Result.success(AckOutcome.IGNORED)

        try:
            deleted = await self._store.delete(ack.user_name, checkout_id=ack.checkout_id)
        except StoreUnavailableError as exc:
            logger.error(
                "Clearing acknowledged cart failed",
                extra={"user_name": ack.user_name, "checkout_id": ack.checkout_id, "error": str(exc)},
            )
            ACKS_CONSUMED.labels("failed").inc()
            return Result.failure(ErrorKind.STORAGE, str(exc))

        outcome = AckOutcome.CLEARED if deleted else AckOutcome.KEPT
        logger.info(
            "Acknowledgment applied",
            extra={"user_name": ack.user_name, "checkout_id": ack.checkout_id, "outcome": outcome.value},
        )
        ACKS_CONSUMED.labels(outcome.value).inc()
        return Result.success(outcome)
