import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.consumer import subscribe_acknowledgments
from app.repositories.cart_store import InMemoryCartStore
from app.services.cart_service import CartService
from checkout_service.consumer import CheckoutIngress
from checkout_service.order_store import InMemoryOrderStore
from checkout_service.orchestrator import CheckoutOrchestrator
from shared.channel import InMemoryChannel
from shared.config import SagaConfig
from shared.events import Cart, CartItem
from shared.queue import InMemoryDeadLetter


def run(coro):
    return asyncio.run(coro)


class StepClock:
    """Deterministic clock: every call is one millisecond after the previous one."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(milliseconds=1)
        return self.current


def make_cart(user_name: str = "alice", items: list[tuple[str, str, str, int]] | None = None) -> Cart:
    items = items if items is not None else [("p1", "Phone", "10.0", 2), ("p2", "Case", "5.0", 1)]
    return Cart(
        user_name=user_name,
        items=[
            CartItem(product_id=pid, name=name, price=Decimal(price), quantity=qty)
            for pid, name, price, qty in items
        ],
    )


@pytest.fixture
def config() -> SagaConfig:
    return SagaConfig()


@pytest.fixture
def event_channel(config) -> InMemoryChannel:
    return InMemoryChannel(config.event_channel_name)


@pytest.fixture
def ack_channel(config) -> InMemoryChannel:
    return InMemoryChannel(config.ack_channel_name)


@pytest.fixture
def cart_store() -> InMemoryCartStore:
    return InMemoryCartStore()


@pytest.fixture
def order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def cart_service(cart_store, event_channel, config) -> CartService:
    return CartService(cart_store, event_channel, config)


@pytest.fixture
def orchestrator(order_store, ack_channel, config, clock) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(order_store, ack_channel, config, clock=clock)


@pytest.fixture
def dead_letter() -> InMemoryDeadLetter:
    return InMemoryDeadLetter()


@pytest.fixture
def ingress(orchestrator, dead_letter) -> CheckoutIngress:
    return CheckoutIngress(orchestrator, dead_letter, max_receive_count=3)


@pytest.fixture
def saga(cart_service, ingress, event_channel, ack_channel):
    """Direct ingress wired both ways through in-memory channels."""
    ingress.subscribe(event_channel)
    subscribe_acknowledgments(ack_channel, cart_service)
    return cart_service
