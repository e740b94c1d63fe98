"""
Checkout service entry point.

Serves the order lookup API and, inside the same lifespan, runs the checkout
ingress: the queue poller, the direct subscriber, or both (settings.checkout_ingress).
"""

import asyncio
import contextlib
import functools
import logging
from contextlib import asynccontextmanager

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import make_asgi_app

from checkout_service.config import Settings
from checkout_service.consumer import CheckoutIngress
from checkout_service.order_store import SqlOrderStore
from checkout_service.orchestrator import CheckoutOrchestrator
from checkout_service.routers import router
from shared.database import build_engine, create_tables
from shared.http import request_validation_handler
from shared.kafka import KafkaChannel, KafkaQueue, send_to_dead_letter
from shared.middleware.metrics import MetricsMiddleware
from shared.middleware.request_id import RequestIDMiddleware
from shared.tracing import setup_tracing
from shared.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def _consumer(settings: Settings, topic: str, group_suffix: str) -> AIOKafkaConsumer:
    return AIOKafkaConsumer(
        topic,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=f"{settings.kafka_consumer_group}-{group_suffix}",
        enable_auto_commit=False,
        auto_offset_reset="earliest",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    config = settings.saga_config()

    logger.info("Starting up — creating order table", extra={"table": config.order_table_name})
    engine = build_engine(settings.database_url)
    store = SqlOrderStore(engine, config.order_table_name)
    await create_tables(engine, store.metadata)
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

    producer = AIOKafkaProducer(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        enable_idempotence=True,
    )
    await producer.start()

    event_channel = KafkaChannel(
        config.event_channel_name,
        producer,
        redelivery_delay=settings.queue_visibility_timeout,
        max_deliveries=settings.queue_max_receive_count,
    )
    ack_channel = KafkaChannel(config.ack_channel_name, producer)
    orchestrator = CheckoutOrchestrator(store, ack_channel, config)
    ingress = CheckoutIngress(
        orchestrator,
        dead_letter=functools.partial(send_to_dead_letter, producer, event_channel.dead_letter_topic),
        max_receive_count=settings.queue_max_receive_count,
    )
    app.state.orchestrator = orchestrator

    consumers: list[AIOKafkaConsumer] = []
    tasks: list[asyncio.Task] = []

    if settings.checkout_ingress in ("queue", "both"):
        consumer = _consumer(settings, config.event_channel_name, "queue")
        await consumer.start()
        consumers.append(consumer)
        queue = KafkaQueue(
            config.event_channel_name,
            consumer,
            visibility_timeout=settings.queue_visibility_timeout,
        )
        tasks.append(asyncio.create_task(ingress.run_queue_poller(queue)))

    if settings.checkout_ingress in ("direct", "both"):
        consumer = _consumer(settings, config.event_channel_name, "direct")
        await consumer.start()
        consumers.append(consumer)
        ingress.subscribe(event_channel)
        tasks.append(asyncio.create_task(event_channel.run_subscriber(consumer)))

    logger.info(
        "Startup complete",
        extra={"ingress": settings.checkout_ingress, "event_channel": config.event_channel_name},
    )

    yield

    for task in tasks:
        task.cancel()
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task
    for consumer in consumers:
        await consumer.stop()
    await producer.stop()
    await engine.dispose()
    logger.info("Shutting down")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    setup_logging(settings.log_level, service_name="checkout-service")
    setup_tracing("checkout-service", settings.otlp_endpoint)

    app = FastAPI(
        title="Checkout Service",
        description="Order recording for asynchronous cart checkout",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    FastAPIInstrumentor.instrument_app(app)
    app.add_middleware(MetricsMiddleware, service="checkout-service")
    app.add_middleware(RequestIDMiddleware)
    app.include_router(router, prefix="/checkout", tags=["checkout"])

    # Expose Prometheus metrics at /metrics
    app.mount("/metrics", make_asgi_app())

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return app
