import re
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["service", "method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# User names in paths would explode label cardinality.
_PATH_PATTERNS = [
    (re.compile(r"^/cart/(?!checkout$)[^/]+$"), "/cart/{userName}"),
    (re.compile(r"^/checkout/[^/]+$"), "/checkout/{userName}"),
]


def route_label(path: str) -> str:
    """Collapse per-user paths to their route template, e.g. /cart/alice -> /cart/{userName}."""
    for pattern, replacement in _PATH_PATTERNS:
        path = pattern.sub(replacement, path)
    return path


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, service: str):
        super().__init__(app)
        self.service = service

    async def dispatch(self, request: Request, call_next) -> Response:
        path = route_label(request.url.path)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        REQUEST_COUNT.labels(self.service, request.method, path, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(self.service, request.method, path).observe(elapsed)
        return response
