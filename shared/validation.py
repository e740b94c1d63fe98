"""
Schema-level checks on inbound carts and checkout requests.

Failures are local and final: they are never retried and always come back
as ValidationError results naming the missing field.
"""

from decimal import Decimal

from shared.events import Cart, CartItem, CheckoutRequest
from shared.results import ErrorKind, Result


def _missing(field: str) -> Result:
    return Result.failure(ErrorKind.VALIDATION, f"{field} is missing")


def validate_item(item: CartItem, position: int) -> Result[CartItem]:
    if not item.product_id:
        return _missing(f"Product Id of item {position}")
    if not item.name:
        return _missing(f"Name of item {position}")
    if item.price is None:
        return _missing(f"Price of item {position}")
    if Decimal(item.price) < 0:
        return Result.failure(ErrorKind.VALIDATION, f"Price of item {position} must be >= 0")
    if item.quantity is None:
        return _missing(f"Quantity of item {position}")
    if item.quantity < 1:
        return Result.failure(ErrorKind.VALIDATION, f"Quantity of item {position} must be >= 1")
    return Result.success(item)


def validate_cart(cart: Cart) -> Result[Cart]:
    if not cart.user_name:
        return _missing("User Name")
    if not cart.items:
        return _missing("Cart Items")
    for position, item in enumerate(cart.items, start=1):
        checked = validate_item(item, position)
        if not checked.ok:
            return checked
    return Result.success(cart)


def validate_checkout_request(request: CheckoutRequest) -> Result[CheckoutRequest]:
    if not request.user_name:
        return _missing("User Name")
    return Result.success(request)
