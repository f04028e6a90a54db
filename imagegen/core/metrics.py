"""Prometheus metrics for the generation gateway."""

from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest

from imagegen import __version__

APP_INFO = Info("imagegen", "Image generation gateway info")
APP_INFO.info({"version": __version__, "name": "imagegen_gateway"})

GENERATION_REQUESTS = Counter(
    "imagegen_generation_requests_total",
    "Generation requests resolved by the gateway",
    ["backend", "outcome"],
)

GENERATION_DURATION = Histogram(
    "imagegen_generation_duration_seconds",
    "Time spent inside the backend adapter",
    ["backend"],
    buckets=[0.5, 1, 2.5, 5, 10, 20, 30, 60, 120],
)

QUEUE_WAIT = Histogram(
    "imagegen_queue_wait_seconds",
    "Time a request waited in its backend queue before dispatch",
    ["backend"],
    buckets=[0.01, 0.1, 1, 5, 15, 30, 60, 120, 300],
)

QUEUE_DEPTH = Gauge(
    "imagegen_queue_depth",
    "Pending requests per backend queue",
    ["backend"],
)

RATE_LIMIT_DEFERRALS = Counter(
    "imagegen_rate_limit_deferrals_total",
    "Ticks where a backend had queued work but no free admission slot",
    ["backend"],
)


def metrics_snapshot() -> bytes:
    """Render all registered metrics in the Prometheus text format."""
    return generate_latest()
