from pydantic_settings import BaseSettings

from shared.config import SagaConfig


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://postgres:postgres@db:5432/carts"
    log_level: str = "INFO"

    # Saga names
    cart_table_name: str = "carts"
    order_table_name: str = "orders"
    event_channel_name: str = "cart.checkout"
    ack_channel_name: str = "checkout.ack"

    # Kafka
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_consumer_group: str = "cart-service"
    # Failed acknowledgments are retried after this delay, then dead-lettered
    ack_redelivery_delay: float = 30.0
    ack_max_deliveries: int = 5

    # Observability
    otlp_endpoint: str | None = "http://jaeger:4318/v1/traces"

    model_config = {"env_file": ".env"}

    def saga_config(self) -> SagaConfig:
        return SagaConfig(
            cart_table_name=self.cart_table_name,
            order_table_name=self.order_table_name,
            event_channel_name=self.event_channel_name,
            ack_channel_name=self.ack_channel_name,
        )
