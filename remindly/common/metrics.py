"""Prometheus metric definitions for the notification engine."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


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
notifications_requested_total = Counter(
    "notifications_requested_total",
    "Total notification requests submitted to the orchestrator",
    ["service", "kind"],
)
notifications_sent_total = Counter(
    "notifications_sent_total",
    "Total notifications delivered",
    ["service", "kind", "channel"],
)
notifications_failed_total = Counter(
    "notifications_failed_total",
    "Total notification requests that exhausted every channel",
    ["service", "kind"],
)
delivery_attempt_failures_total = Counter(
    "delivery_attempt_failures_total",
    "Failed channel attempts recorded in delivery history",
    ["service", "channel", "error_type"],
)
quota_skips_total = Counter(
    "quota_skips_total",
    "Channel steps skipped because a send cap was reached",
    ["service", "channel"],
)
duplicate_notifications_skipped_total = Counter(
    "duplicate_notifications_skipped_total",
    "Requests short-circuited because their dedup key was already sent",
    ["service", "kind"],
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
provider_send_seconds = Histogram(
    "provider_send_seconds",
    "Provider send call duration seconds",
    ["service", "channel"],
)
reminder_scan_seconds = Histogram(
    "reminder_scan_seconds",
    "Duration of one reminder scan",
    ["service"],
)
reminder_scan_items_total = Counter(
    "reminder_scan_items_total",
    "Appointments processed by the reminder scanner by outcome",
    ["service", "outcome"],
)
reminder_last_scan_timestamp = Gauge(
    "reminder_last_scan_timestamp",
    "Unix timestamp of the last completed reminder scan",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
