"""
Prometheus metrics for the submission tracker.

Exposed on ``GET /metrics`` by the HTTP server.
"""

from prometheus_client import Counter, Gauge, Histogram

webhook_requests_total = Counter(
    "tracker_webhook_requests_total",
    "Completion notifications received, by response status",
    ["http_status"],
)

task_merges_total = Counter(
    "tracker_task_merges_total",
    "Task state merges by carrier and outcome",
    ["carrier", "outcome"],
)

task_dispatches_total = Counter(
    "tracker_task_dispatches_total",
    "Carrier dispatch attempts by carrier and result",
    ["carrier", "result"],
)

store_errors_total = Counter(
    "tracker_store_errors_total",
    "Store operations that failed",
    ["operation"],
)

poller_fetch_failures_total = Counter(
    "tracker_poller_fetch_failures_total",
    "Status fetches by the client poller that failed",
)

active_pollers = Gauge(
    "tracker_active_pollers",
    "Client pollers currently in the polling state",
)

webhook_duration_seconds = Histogram(
    "tracker_webhook_duration_seconds",
    "Time to validate and persist a completion notification",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)


def record_webhook(http_status: int) -> None:
    webhook_requests_total.labels(http_status=str(http_status)).inc()


def record_merge(carrier: str, outcome: str) -> None:
    task_merges_total.labels(carrier=carrier, outcome=outcome).inc()


def record_dispatch(carrier: str, result: str) -> None:
    task_dispatches_total.labels(carrier=carrier, result=result).inc()


def record_store_error(operation: str) -> None:
    store_errors_total.labels(operation=operation).inc()


__all__ = [
    "active_pollers",
    "poller_fetch_failures_total",
    "record_dispatch",
    "record_merge",
    "record_store_error",
    "record_webhook",
    "webhook_duration_seconds",
]
