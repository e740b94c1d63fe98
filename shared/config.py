from pydantic import BaseModel, ConfigDict


class SagaConfig(BaseModel):
    """Names handed to every saga component at construction time."""

    cart_table_name: str = "carts"
    order_table_name: str = "orders"
    event_channel_name: str = "cart.checkout"
    ack_channel_name: str = "checkout.ack"

    model_config = ConfigDict(frozen=True, extra="forbid")
