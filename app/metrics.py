from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from starlette.requests import Request
from starlette.responses import Response
import time

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

db_pool_checked_out = Gauge(
    "db_pool_checked_out",
    "Number of database connections currently checked out"
)

db_pool_size = Gauge(
    "db_pool_size",
    "Total database connection pool size"
)

entries_submitted_total = Counter(
    "entries_submitted_total",
    "Entry submissions by outcome",
    ["outcome"]
)

referral_validation_failures_total = Counter(
    "referral_validation_failures_total",
    "Referral code checks that failed with a database error"
)

referral_debug_failures_total = Counter(
    "referral_debug_failures_total",
    "Referral debug records that could not be written"
)

integration_errors_total = Counter(
    "integration_errors_total",
    "Failed calls to third-party APIs",
    ["integration"]
)

KNOWN_PATHS = {
    "/submit-entry",
    "/entries",
    "/entries/summary",
    "/everflow-webhook",
    "/sync-to-sheets",
    "/beehiiv/subscriber",
    "/admin/webhook-status",
    "/admin/stream",
    "/health",
    "/ready",
}


def get_metrics_response() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


class MetricsMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        method = request.method
        path = request.url.path

        if path == "/metrics":
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration = time.time() - start_time
            endpoint = self._normalize_path(path)
            http_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status=str(status_code)
            ).inc()
            http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(duration)

    def _normalize_path(self, path: str) -> str:
        if path in KNOWN_PATHS:
            return path
        # Keep label cardinality bounded for id-bearing paths
        if path.startswith("/entries/"):
            return "/entries/{id}"
        if path.startswith("/referral-link/"):
            return "/referral-link/{code}"
        return "other"
