"""
Checkout orchestrator: turns a checkout event into a durable order and
acknowledges it back to the cart service.

Per checkout attempt:

    Requested -> Persisted -> Acknowledged      (success)
    Requested -> Failed                         (store failure)
    Persisted -> Failed                         (ack publish failure)

There is no retry loop in here. A failed attempt is reported to the
ingress adapter, which leaves the message to the channel's redelivery.

Idempotency: events carry a request-scoped checkoutId. A delivery whose
checkoutId already has an order writes nothing and re-publishes the
acknowledgment, so a crash between persist and publish heals on redelivery.
Events without a checkoutId get a new order per delivery.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from checkout_service.metrics import CHECKOUT_HANDLING_TIME, ORDERS_PERSISTED
from checkout_service.order_store import OrderStore
from shared.channel import Channel
from shared.config import SagaConfig
from shared.errors import ChannelUnavailableError, DuplicateCheckoutError, StoreUnavailableError
from shared.events import ACK_DETAIL_TYPE, ACK_SOURCE, Acknowledgment, CheckoutEvent, Order, OrderStatus
from shared.results import ErrorKind, Result

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_order_date(moment: datetime) -> str:
    """ISO-8601 in UTC with microseconds and a Z suffix, e.g. 2024-05-01T10:00:00.000123Z."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class CheckoutState(str, Enum):
    REQUESTED = "Requested"
    PERSISTED = "Persisted"
    ACKNOWLEDGED = "Acknowledged"
    FAILED = "Failed"


_TRANSITIONS: dict[CheckoutState, frozenset[CheckoutState]] = {
    CheckoutState.REQUESTED: frozenset({CheckoutState.PERSISTED, CheckoutState.FAILED}),
    CheckoutState.PERSISTED: frozenset({CheckoutState.ACKNOWLEDGED, CheckoutState.FAILED}),
    CheckoutState.ACKNOWLEDGED: frozenset(),
    CheckoutState.FAILED: frozenset(),
}


class InvalidTransitionError(Exception):
    pass


@dataclass
class CheckoutAttempt:
    user_name: str
    checkout_id: str | None
    state: CheckoutState = CheckoutState.REQUESTED
    history: list[CheckoutState] = field(default_factory=lambda: [CheckoutState.REQUESTED])

    def advance(self, target: CheckoutState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"{self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self.state]


@dataclass
class CheckoutOutcome:
    order: Order
    attempt: CheckoutAttempt
    duplicate: bool = False


class CheckoutOrchestrator:
    def __init__(
        self,
        store: OrderStore,
        ack_channel: Channel,
        config: SagaConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._ack_channel = ack_channel
        self._config = config
        self._clock = clock

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def on_checkout_event(self, event: CheckoutEvent) -> Result[CheckoutOutcome]:
        start = time.perf_counter()
        attempt = CheckoutAttempt(user_name=event.user_name, checkout_id=event.checkout_id)
        logger.info(
            "Received checkout event",
            extra={"user_name": event.user_name, "checkout_id": event.checkout_id},
        )

        try:
            result = await self._process(event, attempt)
        finally:
            CHECKOUT_HANDLING_TIME.observe(time.perf_counter() - start)
        return result

    async def _process(self, event: CheckoutEvent, attempt: CheckoutAttempt) -> Result[CheckoutOutcome]:
        # --- Idempotency check ---
        if event.checkout_id is not None:
            try:
                existing = await self._store.get_by_checkout_id(event.checkout_id)
            except StoreUnavailableError as exc:
                return self._fail(attempt, ErrorKind.STORAGE, str(exc))
            if existing is not None:
                logger.info(
                    "Order already recorded — re-acknowledging (idempotency)",
                    extra={"user_name": event.user_name, "checkout_id": event.checkout_id},
                )
                return await self._acknowledge_duplicate(existing, attempt)

        # --- Persist order ---
        order = Order(
            user_name=event.user_name,
            order_date=format_order_date(self._clock()),
            checkout_id=event.checkout_id,
            first_name=event.first_name,
            last_name=event.last_name,
            email=event.email,
            total_price=event.total_price,
            items=event.items,
            status=OrderStatus.COMMITTED,
        )
        try:
            await self._store.create(order)
        except DuplicateCheckoutError:
            # Lost a race with a concurrent delivery of the same event.
            try:
                existing = await self._store.get_by_checkout_id(event.checkout_id)
            except StoreUnavailableError as exc:
                return self._fail(attempt, ErrorKind.STORAGE, str(exc))
            if existing is None:
                return self._fail(attempt, ErrorKind.STORAGE, f"Order for checkout {event.checkout_id} vanished")
            return await self._acknowledge_duplicate(existing, attempt)
        except StoreUnavailableError as exc:
            return self._fail(attempt, ErrorKind.STORAGE, str(exc))

        attempt.advance(CheckoutState.PERSISTED)
        ORDERS_PERSISTED.inc()
        logger.info(
            "Order persisted",
            extra={
                "user_name": order.user_name,
                "order_date": order.order_date,
                "checkout_id": order.checkout_id,
                "total_price": str(order.total_price),
                "table": self._config.order_table_name,
            },
        )

        # --- Publish acknowledgment ---
        return await self._acknowledge(order, attempt)

    async def _acknowledge_duplicate(self, order: Order, attempt: CheckoutAttempt) -> Result[CheckoutOutcome]:
        attempt.advance(CheckoutState.PERSISTED)
        return await self._acknowledge(order, attempt, duplicate=True)

    async def _acknowledge(
        self,
        order: Order,
        attempt: CheckoutAttempt,
        duplicate: bool = False,
    ) -> Result[CheckoutOutcome]:
        ack = Acknowledgment(
            user_name=order.user_name,
            acknowledged=True,
            processed=True,
            checkout_id=order.checkout_id,
        )
        try:
            await self._ack_channel.publish(ACK_SOURCE, ACK_DETAIL_TYPE, ack.to_wire())
        except ChannelUnavailableError as exc:
            return self._fail(attempt, ErrorKind.PUBLISH, str(exc))

        attempt.advance(CheckoutState.ACKNOWLEDGED)
        logger.info(
            "Published checkout acknowledgment",
            extra={
                "user_name": order.user_name,
                "order_date": order.order_date,
                "checkout_id": order.checkout_id,
                "duplicate": duplicate,
                "channel": self._config.ack_channel_name,
            },
        )
        return Result.success(CheckoutOutcome(order=order, attempt=attempt, duplicate=duplicate))

    def _fail(self, attempt: CheckoutAttempt, kind: ErrorKind, message: str) -> Result[CheckoutOutcome]:
        previous = attempt.state
        attempt.advance(CheckoutState.FAILED)
        logger.error(
            "Checkout attempt failed",
            extra={
                "user_name": attempt.user_name,
                "checkout_id": attempt.checkout_id,
                "failed_after": previous.value,
                "error_kind": kind.value,
                "error": message,
            },
        )
        return Result.failure(kind, message)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, user_name: str, order_date: str) -> Result[Order | None]:
        try:
            return Result.success(await self._store.get(user_name, order_date))
        except StoreUnavailableError as exc:
            logger.error("Reading order failed", extra={"user_name": user_name, "error": str(exc)})
            return Result.failure(ErrorKind.STORAGE, str(exc))

    async def list_orders(self) -> Result[list[Order]]:
        try:
            return Result.success(await self._store.scan())
        except StoreUnavailableError as exc:
            logger.error("Scanning orders failed", extra={"error": str(exc)})
            return Result.failure(ErrorKind.STORAGE, str(exc))

    async def list_orders_for_user(self, user_name: str) -> Result[list[Order]]:
        try:
            return Result.success(await self._store.scan(user_name=user_name))
        except StoreUnavailableError as exc:
            logger.error("Reading user orders failed", extra={"user_name": user_name, "error": str(exc)})
            return Result.failure(ErrorKind.STORAGE, str(exc))
