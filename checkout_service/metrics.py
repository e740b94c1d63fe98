from prometheus_client import Counter, Histogram

CHECKOUT_EVENTS_CONSUMED = Counter(
    "checkout_events_consumed_total",
    "Checkout events handled by the orchestrator",
    ["ingress", "status"],  # ingress: direct | queue; status: processed | duplicate | failed | rejected | dlq
)

ORDERS_PERSISTED = Counter(
    "orders_persisted_total",
    "Orders written to the order store",
)

CHECKOUT_HANDLING_TIME = Histogram(
    "checkout_handling_duration_seconds",
    "Time from delivery to acknowledgment publish",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
