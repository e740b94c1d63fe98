import pytest
from conftest import make_cart, run

from app.services.cart_service import cart_total
from shared.errors import RedeliveryRequested
from shared.events import CheckoutEvent, Envelope
from shared.queue import InMemoryQueue


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _envelope(checkout_id: str = "chk-1") -> Envelope:
    cart = make_cart()
    event = CheckoutEvent(checkout_id=checkout_id, user_name="alice", total_price=cart_total(cart.items), items=cart.items)
    return Envelope(source="cart.cartCheckout", detail_type="CartCheckout", detail=event.to_wire())


def test_direct_path_persists_order(ingress, order_store):
    run(ingress.handle_direct(_envelope()))
    assert len(run(order_store.scan())) == 1


def test_direct_path_requests_redelivery_on_storage_failure(ingress, order_store):
    order_store.unavailable = True
    with pytest.raises(RedeliveryRequested):
        run(ingress.handle_direct(_envelope()))


def test_direct_path_dead_letters_malformed_event(ingress, order_store, dead_letter):
    bad = Envelope(source="cart.cartCheckout", detail_type="CartCheckout", detail={"items": "nope"})
    run(ingress.handle_direct(bad))
    assert run(order_store.scan()) == []
    assert [reason for _, reason in dead_letter.messages] == ["unparseable"]


def test_queue_path_deletes_after_success(ingress, order_store):
    queue = InMemoryQueue("checkout")

    async def scenario():
        await queue.send(_envelope())
        return await ingress.poll_once(queue)

    assert run(scenario()) == 1
    assert len(queue) == 0
    assert len(run(order_store.scan())) == 1


def test_queue_path_leaves_failed_message_for_redelivery(ingress, order_store):
    clock = FakeClock()
    queue = InMemoryQueue("checkout", visibility_timeout=30.0, clock=clock)

    async def scenario():
        await queue.send(_envelope())
        order_store.unavailable = True
        await ingress.poll_once(queue)
        assert len(queue) == 1
        # Still invisible: nothing to poll yet.
        assert await ingress.poll_once(queue) == 0
        order_store.unavailable = False
        clock.now = 31.0
        await ingress.poll_once(queue)

    run(scenario())
    assert len(queue) == 0
    assert len(run(order_store.scan())) == 1


def test_queue_path_dead_letters_after_max_receive_count(ingress, order_store, dead_letter):
    clock = FakeClock()
    queue = InMemoryQueue("checkout", visibility_timeout=1.0, clock=clock)
    order_store.unavailable = True

    async def scenario():
        await queue.send(_envelope())
        for step in range(5):
            clock.now = step * 2.0
            await ingress.poll_once(queue)

    run(scenario())
    assert len(queue) == 0
    assert [reason for _, reason in dead_letter.messages] == ["max_receive_count"]


def test_queue_path_dead_letters_garbage(ingress, dead_letter):
    queue = InMemoryQueue("checkout")

    async def scenario():
        await queue.send_raw(b"not json")
        await ingress.poll_once(queue)

    run(scenario())
    assert len(queue) == 0
    assert dead_letter.messages == [(b"not json", "unparseable")]


def test_both_paths_converge_on_one_order(ingress, order_store, ack_channel):
    queue = InMemoryQueue("checkout")
    envelope = _envelope()

    async def scenario():
        await ingress.handle_direct(envelope)
        await queue.send(envelope)
        await ingress.poll_once(queue)

    run(scenario())
    assert len(run(order_store.scan())) == 1
    assert len(ack_channel.published) == 2
