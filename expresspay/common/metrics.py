"""Prometheus metric definitions for provider calls and the checkout registry."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


provider_requests_total = Counter(
    "provider_requests_total",
    "Total NVP provider calls",
    ["method", "outcome"],
)
provider_request_duration_seconds = Histogram(
    "provider_request_duration_seconds",
    "NVP provider call duration seconds",
    ["method"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
active_transactions = Gauge("checkout_active_transactions", "Pending checkouts held in the registry")
registry_evictions_total = Counter("checkout_registry_evictions_total", "Stale pending checkouts evicted")
rate_limited_total = Counter("checkout_rate_limited_total", "Checkout registrations rejected per origin limit")
checkout_completed_total = Counter("checkout_completed_total", "Checkouts confirmed with the provider")
checkout_failed_total = Counter("checkout_failed_total", "Checkouts that ended in the failure callback")


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
