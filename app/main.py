import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import make_asgi_app

from app.config import Settings
from app.consumer import subscribe_acknowledgments
from app.repositories.cart_store import SqlCartStore
from app.routers import cart
from app.services.cart_service import CartService
from shared.database import build_engine, create_tables
from shared.http import request_validation_handler
from shared.kafka import KafkaChannel
from shared.middleware.metrics import MetricsMiddleware
from shared.middleware.request_id import RequestIDMiddleware
from shared.tracing import setup_tracing
from shared.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    config = settings.saga_config()

    logger.info("Starting up — creating cart table", extra={"table": config.cart_table_name})
    engine = build_engine(settings.database_url)
    store = SqlCartStore(engine, config.cart_table_name)
    await create_tables(engine, store.metadata)
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

    producer = AIOKafkaProducer(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        enable_idempotence=True,
    )
    await producer.start()

    event_channel = KafkaChannel(config.event_channel_name, producer)
    ack_channel = KafkaChannel(
        config.ack_channel_name,
        producer,
        redelivery_delay=settings.ack_redelivery_delay,
        max_deliveries=settings.ack_max_deliveries,
    )
    service = CartService(store, event_channel, config)
    subscribe_acknowledgments(ack_channel, service)
    app.state.cart_service = service

    consumer = AIOKafkaConsumer(
        config.ack_channel_name,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=settings.kafka_consumer_group,
        enable_auto_commit=False,
        auto_offset_reset="earliest",
    )
    await consumer.start()
    ack_task = asyncio.create_task(ack_channel.run_subscriber(consumer))
    logger.info("Startup complete", extra={"ack_channel": config.ack_channel_name})

    yield

    ack_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await ack_task
    await consumer.stop()
    await producer.stop()
    await engine.dispose()
    logger.info("Shutting down")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    setup_logging(settings.log_level, service_name="cart-service")
    setup_tracing("cart-service", settings.otlp_endpoint)

    app = FastAPI(
        title="Shopping Cart Service",
        description="Cart storage and asynchronous checkout",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    FastAPIInstrumentor.instrument_app(app)
    app.add_middleware(MetricsMiddleware, service="cart-service")
    app.add_middleware(RequestIDMiddleware)
    app.include_router(cart.router, prefix="/cart", tags=["cart"])

    # Expose Prometheus metrics at /metrics
    app.mount("/metrics", make_asgi_app())

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return app
