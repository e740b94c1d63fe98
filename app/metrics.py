from prometheus_client import Counter

CHECKOUTS_INITIATED = Counter(
    "checkouts_initiated_total",
    "Checkout requests handled by the cart service",
    ["outcome"],  # published | ValidationError | EmptyCartError | StorageError | PublishError
)

ACKS_CONSUMED = Counter(
    "acks_consumed_total",
    "Checkout acknowledgments consumed by the cart service",
    ["outcome"],  # cleared | kept | ignored | parse_error | failed
)
