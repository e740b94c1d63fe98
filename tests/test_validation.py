from decimal import Decimal

from shared.events import Cart, CartItem, CheckoutRequest
from shared.results import ErrorKind
from shared.validation import validate_cart, validate_checkout_request


def _item(**overrides) -> CartItem:
    fields = {"product_id": "p1", "name": "Phone", "price": Decimal("10"), "quantity": 1}
    fields.update(overrides)
    return CartItem(**fields)


def test_cart_without_user_name_is_rejected():
    result = validate_cart(Cart(items=[_item()]))
    assert result.error.kind is ErrorKind.VALIDATION
    assert result.error.message == "User Name is missing"


def test_cart_without_items_is_rejected():
    for items in (None, []):
        result = validate_cart(Cart(user_name="alice", items=items))
        assert result.error.kind is ErrorKind.VALIDATION
        assert result.error.message == "Cart Items is missing"


def test_item_fields_are_checked():
    cases = [
        ({"product_id": None}, "Product Id of item 1 is missing"),
        ({"name": ""}, "Name of item 1 is missing"),
        ({"price": None}, "Price of item 1 is missing"),
        ({"price": Decimal("-1")}, "Price of item 1 must be >= 0"),
        ({"quantity": None}, "Quantity of item 1 is missing"),
        ({"quantity": 0}, "Quantity of item 1 must be >= 1"),
    ]
    for overrides, message in cases:
        result = validate_cart(Cart(user_name="alice", items=[_item(**overrides)]))
        assert not result.ok
        assert result.error.message == message
        assert not result.retryable


def test_free_item_is_valid():
    result = validate_cart(Cart(user_name="alice", items=[_item(price=Decimal("0"))]))
    assert result.ok


def test_checkout_request_needs_user_name():
    assert validate_checkout_request(CheckoutRequest(user_name="alice")).ok
    result = validate_checkout_request(CheckoutRequest(email="a@example.com"))
    assert result.error.kind is ErrorKind.VALIDATION


def test_wire_aliases_are_accepted():
    cart = Cart.model_validate(
        {"userName": "bob", "items": [{"productId": "p9", "name": "Mug", "price": 3.5, "quantity": 2, "image": "m.png"}]}
    )
    assert validate_cart(cart).ok
    assert cart.items[0].product_id == "p9"
    assert cart.items[0].subtotal == Decimal("7.0")
