import pytest
from conftest import make_cart, run
from fastapi.testclient import TestClient

from app.config import Settings as CartSettings
from app.main import create_app as create_cart_app
from checkout_service.config import Settings as CheckoutSettings
from checkout_service.main import create_app as create_checkout_app


@pytest.fixture
def cart_client(cart_service):
    app = create_cart_app(CartSettings(otlp_endpoint=None))
    app.state.cart_service = cart_service
    return TestClient(app)


@pytest.fixture
def checkout_client(orchestrator):
    app = create_checkout_app(CheckoutSettings(otlp_endpoint=None))
    app.state.orchestrator = orchestrator
    return TestClient(app)


ALICE = {
    "userName": "alice",
    "items": [
        {"productId": "p1", "name": "Phone", "price": 10.0, "quantity": 2},
        {"productId": "p2", "name": "Case", "price": 5.0, "quantity": 1, "image": "case.png"},
    ],
}


def test_health(cart_client, checkout_client):
    assert cart_client.get("/health").json() == {"status": "ok"}
    assert checkout_client.get("/health").json() == {"status": "ok"}


def test_cart_crud(cart_client):
    res = cart_client.post("/cart", json=ALICE)
    assert res.status_code == 200
    assert res.json()["message"] == "SUCCESS - POST"
    assert "X-Request-ID" in res.headers

    res = cart_client.get("/cart/alice")
    assert res.status_code == 200
    body = res.json()["body"]
    assert body["userName"] == "alice"
    assert body["items"][1]["image"] == "case.png"

    assert [c["userName"] for c in cart_client.get("/cart").json()["body"]] == ["alice"]

    assert cart_client.delete("/cart/alice").status_code == 200
    assert cart_client.delete("/cart/alice").status_code == 200
    assert cart_client.get("/cart/alice").json()["body"] is None


def test_invalid_cart_is_client_error(cart_client):
    res = cart_client.post("/cart", json={"userName": "alice", "items": []})
    assert res.status_code == 400
    assert res.json() == {"errorKind": "ValidationError", "message": "Cart Items is missing"}


def test_checkout_endpoint(cart_client, event_channel):
    cart_client.post("/cart", json=ALICE)

    res = cart_client.post("/cart/checkout", json={"userName": "alice", "firstName": "Alice"})
    assert res.status_code == 200
    body = res.json()["body"]
    assert body["userName"] == "alice"
    assert float(body["totalPrice"]) == 25.0
    assert len(event_channel.published) == 1

    # Cart survives until the acknowledgment.
    assert cart_client.get("/cart/alice").json()["body"] is not None


def test_checkout_errors(cart_client, cart_store, event_channel):
    res = cart_client.post("/cart/checkout", json={"firstName": "Nobody"})
    assert res.status_code == 400
    assert res.json()["errorKind"] == "ValidationError"

    res = cart_client.post("/cart/checkout", json={"userName": "ghost"})
    assert res.status_code == 400
    assert res.json()["errorKind"] == "EmptyCartError"

    cart_client.post("/cart", json=ALICE)
    event_channel.unavailable = True
    res = cart_client.post("/cart/checkout", json={"userName": "alice"})
    assert res.status_code == 502
    assert res.json()["errorKind"] == "PublishError"

    cart_store.unavailable = True
    res = cart_client.get("/cart/alice")
    assert res.status_code == 500
    assert res.json()["errorKind"] == "StorageError"


def test_order_lookup(checkout_client, orchestrator):
    from shared.events import CheckoutEvent

    cart = make_cart("alice")
    event = CheckoutEvent(checkout_id="a1", user_name="alice", total_price="25.0", items=cart.items)
    order = run(orchestrator.on_checkout_event(event)).value.order

    res = checkout_client.get("/checkout")
    assert res.status_code == 200
    assert [o["userName"] for o in res.json()["body"]] == ["alice"]

    res = checkout_client.get("/checkout/alice", params={"orderDate": order.order_date})
    body = res.json()["body"]
    assert body["orderDate"] == order.order_date
    assert body["status"] == "Committed"
    assert body["checkoutId"] == "a1"

    assert checkout_client.get("/checkout/bob", params={"orderDate": order.order_date}).json()["body"] is None
    assert len(checkout_client.get("/checkout/alice").json()["body"]) == 1


def test_request_metrics_use_route_template(cart_client):
    from prometheus_client import REGISTRY

    labels = {"service": "cart-service", "method": "GET", "path": "/cart/{userName}", "status": "200"}
    before = REGISTRY.get_sample_value("http_requests_total", labels) or 0.0

    cart_client.get("/cart/alice")
    cart_client.get("/cart/bob")

    assert REGISTRY.get_sample_value("http_requests_total", labels) == before + 2


def test_malformed_body_is_validation_error(cart_client, checkout_client):
    bad_price = {"userName": "alice", "items": [{"productId": "p1", "name": "Phone", "price": "abc", "quantity": 1}]}
    res = cart_client.post("/cart", json=bad_price)
    assert res.status_code == 400
    body = res.json()
    assert body["errorKind"] == "ValidationError"
    assert "items.0.price" in body["message"]

    bad_quantity = {"userName": "alice", "items": [{"productId": "p1", "name": "Phone", "price": 1, "quantity": 1.5}]}
    res = cart_client.post("/cart", json=bad_quantity)
    assert res.status_code == 400
    assert res.json()["errorKind"] == "ValidationError"

    res = cart_client.post("/cart/checkout", content=b"{not json", headers={"Content-Type": "application/json"})
    assert res.status_code == 400
    assert res.json()["errorKind"] == "ValidationError"


def test_every_declared_route_is_served(cart_client, checkout_client):
    cart_client.post("/cart", json=ALICE)
    assert cart_client.get("/cart").status_code == 200
    assert cart_client.get("/cart/alice").status_code == 200
    assert cart_client.post("/cart/checkout", json={"userName": "alice"}).status_code == 200
    assert cart_client.delete("/cart/alice").status_code == 200
    assert checkout_client.get("/checkout").status_code == 200
    assert checkout_client.get("/checkout/alice").status_code == 200
