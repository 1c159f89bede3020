"""Prometheus metric definitions for the push delivery pipeline."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


notifications_enqueued_total = Counter(
    "notifications_enqueued_total",
    "Logical notifications persisted",
    ["service"],
)
deliveries_enqueued_total = Counter(
    "deliveries_enqueued_total",
    "Delivery rows created by fan-out",
    ["service"],
)
deliveries_claimed_total = Counter("deliveries_claimed_total", "Delivery rows leased by a worker", ["service"])
deliveries_sent_total = Counter("deliveries_sent_total", "Deliveries accepted by the push provider", ["service"])
delivery_failures_total = Counter(
    "delivery_failures_total",
    "Per-attempt delivery failures",
    ["service", "kind"],
)
deliveries_dead_total = Counter(
    "deliveries_dead_total",
    "Deliveries that reached the terminal failed state",
    ["service"],
)
subscriptions_removed_total = Counter(
    "subscriptions_removed_total",
    "Push subscriptions removed after the provider reported them gone",
    ["service"],
)
worker_loop_errors_total = Counter(
    "worker_loop_errors_total",
    "Systemic dequeue loop failures (claim errors)",
    ["service"],
)
push_send_seconds = Histogram("push_send_seconds", "Push provider send latency seconds", ["service"])
delivery_pending_total = Gauge(
    "delivery_pending_total",
    "Current count of deliveries not yet in a terminal state",
    ["service"],
)
delivery_oldest_pending_age_seconds = Gauge(
    "delivery_oldest_pending_age_seconds",
    "Age in seconds of the oldest non-terminal delivery",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
