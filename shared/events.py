"""
Pydantic schemas shared by the cart service and the checkout orchestrator.
Wire names are camelCase (userName, totalPrice, eventAck); Python attributes
are snake_case. Unknown fields are ignored so older producers keep working.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

CHECKOUT_SOURCE = "cart.cartCheckout"
CHECKOUT_DETAIL_TYPE = "CartCheckout"
ACK_SOURCE = "checkout.checkoutAck"
ACK_DETAIL_TYPE = "CheckoutAck"


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CartItem(WireModel):
    product_id: str | None = Field(default=None, alias="productId")
    name: str | None = None
    price: Decimal | None = None
    quantity: int | None = None
    image: str | None = None

    @property
    def subtotal(self) -> Decimal:
        return Decimal(self.price) * self.quantity


class Cart(WireModel):
    user_name: str | None = Field(default=None, alias="userName")
    items: list[CartItem] | None = None
    pending_checkout_id: str | None = Field(default=None, alias="pendingCheckoutId")


class CheckoutRequest(WireModel):
    user_name: str | None = Field(default=None, alias="userName")
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    email: str | None = None


class CheckoutEvent(WireModel):
    checkout_id: str | None = Field(default=None, alias="checkoutId")
    user_name: str = Field(alias="userName")
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    email: str | None = None
    total_price: Decimal = Field(alias="totalPrice")
    items: list[CartItem]


class OrderStatus(str, Enum):
    PENDING = "Pending"
    COMMITTED = "Committed"


class Order(WireModel):
    user_name: str = Field(alias="userName")
    order_date: str = Field(alias="orderDate")
    checkout_id: str | None = Field(default=None, alias="checkoutId")
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    email: str | None = None
    total_price: Decimal = Field(alias="totalPrice")
    items: list[CartItem]
    status: OrderStatus = OrderStatus.COMMITTED


class Acknowledgment(WireModel):
    user_name: str = Field(alias="userName")
    acknowledged: bool = Field(default=False, alias="eventAck")
    processed: bool = Field(default=False, alias="eventProcessed")
    checkout_id: str | None = Field(default=None, alias="checkoutId")


class Envelope(BaseModel):
    """A message as it travels on a channel: routing tags plus a JSON detail."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="messageId")
    source: str
    detail_type: str = Field(alias="detailType")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    detail: dict[str, Any]

    model_config = ConfigDict(extra="ignore", populate_by_name=True)
