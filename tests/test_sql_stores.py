import asyncio
from decimal import Decimal

import pytest
from conftest import make_cart, run

from app.repositories.cart_store import SqlCartStore
from checkout_service.order_store import SqlOrderStore
from shared.database import build_engine, create_tables
from shared.errors import DuplicateCheckoutError
from shared.events import Order, OrderStatus


def with_stores(scenario):
    async def wrapper():
        engine = build_engine("sqlite+aiosqlite:///:memory:")
        carts = SqlCartStore(engine, "test_carts")
        orders = SqlOrderStore(engine, "test_orders")
        await create_tables(engine, carts.metadata)
        await create_tables(engine, orders.metadata)
        try:
            return await scenario(carts, orders)
        finally:
            await engine.dispose()

    return run(wrapper())


def _order(order_date: str, checkout_id: str | None, user_name: str = "alice") -> Order:
    cart = make_cart(user_name)
    return Order(
        user_name=user_name,
        order_date=order_date,
        checkout_id=checkout_id,
        total_price=Decimal("25.00"),
        items=cart.items,
        status=OrderStatus.COMMITTED,
    )


def test_cart_round_trip_and_replace():
    async def scenario(carts, orders):
        assert await carts.get("alice") is None
        await carts.put(make_cart("alice"))
        await carts.put(make_cart("alice", items=[("p3", "Cable", "2.50", 4)]))
        await carts.put(make_cart("bob"))

        alice = await carts.get("alice")
        assert [item.product_id for item in alice.items] == ["p3"]
        assert alice.items[0].price == Decimal("2.50")
        assert [c.user_name for c in await carts.scan()] == ["alice", "bob"]

    with_stores(scenario)


def test_cart_correlated_delete():
    async def scenario(carts, orders):
        await carts.put(make_cart("alice"))
        assert await carts.mark_checkout("alice", "chk-1")
        assert not await carts.mark_checkout("ghost", "chk-1")

        assert not await carts.delete("alice", checkout_id="chk-0")
        assert (await carts.get("alice")).pending_checkout_id == "chk-1"
        assert await carts.delete("alice", checkout_id="chk-1")
        assert not await carts.delete("alice")

    with_stores(scenario)


def test_unconditional_delete():
    async def scenario(carts, orders):
        await carts.put(make_cart("alice"))
        await carts.mark_checkout("alice", "chk-1")
        assert await carts.delete("alice")
        assert await carts.get("alice") is None

    with_stores(scenario)


def test_orders_keyed_by_user_and_date():
    async def scenario(carts, orders):
        await orders.create(_order("2024-05-01T10:00:00.000001Z", "a1"))
        await orders.create(_order("2024-05-01T10:00:00.000002Z", "a2"))
        await orders.create(_order("2024-05-01T10:00:00.000001Z", "b1", user_name="bob"))

        found = await orders.get("alice", "2024-05-01T10:00:00.000002Z")
        assert found.checkout_id == "a2"
        assert found.total_price == Decimal("25.00")
        assert found.status is OrderStatus.COMMITTED
        assert len(found.items) == 2

        assert await orders.get("alice", "2024-05-01T10:00:00.000003Z") is None
        assert (await orders.get_by_checkout_id("b1")).user_name == "bob"
        assert len(await orders.scan()) == 3
        assert [o.checkout_id for o in await orders.scan(user_name="alice")] == ["a1", "a2"]

    with_stores(scenario)


def test_duplicate_checkout_id_is_rejected():
    async def scenario(carts, orders):
        await orders.create(_order("2024-05-01T10:00:00.000001Z", "a1"))
        with pytest.raises(DuplicateCheckoutError):
            await orders.create(_order("2024-05-01T10:00:00.000009Z", "a1"))
        # Orders without a checkout id are not deduplicated.
        await orders.create(_order("2024-05-01T10:00:00.000010Z", None))
        await orders.create(_order("2024-05-01T10:00:00.000011Z", None))
        return await orders.scan()

    assert len(with_stores(scenario)) == 3


def test_order_total_is_stored_exactly():
    async def scenario(carts, orders):
        cart = make_cart("alice", items=[("p1", "Sticker", "0.125", 1)])
        await orders.create(
            Order(
                user_name="alice",
                order_date="2024-05-01T10:00:00.000001Z",
                checkout_id="a1",
                total_price=Decimal("0.125"),
                items=cart.items,
            )
        )
        return await orders.get("alice", "2024-05-01T10:00:00.000001Z")

    found = with_stores(scenario)
    assert found.total_price == Decimal("0.125")
    assert found.items[0].price == Decimal("0.125")
    assert found.status is OrderStatus.COMMITTED


def test_concurrent_first_writes_for_one_user():
    async def scenario(carts, orders):
        await asyncio.gather(
            carts.put(make_cart("alice")),
            carts.put(make_cart("alice", items=[("p3", "Cable", "2.50", 4)])),
        )
        await carts.mark_checkout("alice", "chk-1")
        # A replacing write overwrites the pending checkout id as well.
        await carts.put(make_cart("alice", items=[("p4", "Charger", "9.99", 1)]))
        return await carts.scan()

    stored = with_stores(scenario)
    assert len(stored) == 1
    assert [item.product_id for item in stored[0].items] == ["p4"]
    assert stored[0].pending_checkout_id is None
