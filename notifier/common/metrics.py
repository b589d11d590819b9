"""Prometheus metric definitions for the notification service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


notifications_requested_total = Counter(
    "notifications_requested_total",
    "Dispatch calls that passed validation",
    ["service", "channel"],
)
notifications_sent_total = Counter(
    "notifications_sent_total",
    "Notifications that reached SENT",
    ["service", "channel", "provider"],
)
notifications_failed_total = Counter(
    "notifications_failed_total",
    "Notifications that reached FAILED",
    ["service", "channel", "error_code"],
)
notifications_rejected_total = Counter(
    "notifications_rejected_total",
    "Dispatch calls rejected before a log row was created",
    ["service", "channel", "error_code"],
)
notification_retries_total = Counter(
    "notification_retries_total",
    "Retry attempts (attempt number >= 2)",
    ["service", "channel"],
)
notification_dispatch_seconds = Histogram(
    "notification_dispatch_seconds",
    "End-to-end dispatch duration seconds including retries",
    ["service", "channel"],
)
notification_caller_runs_total = Counter(
    "notification_caller_runs_total",
    "Async dispatches executed on the submitting thread because the pool was saturated",
    ["service"],
)
recovery_replays_total = Counter(
    "recovery_replays_total",
    "Failed-notification replays by outcome",
    ["service", "outcome"],
)
stats_updates_lost_total = Counter(
    "stats_updates_lost_total",
    "In-app stats updates that could not be applied",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
