"""Prometheus metric definitions shared across services."""

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
webhook_events_total = Counter(
    "webhook_events_total",
    "Processed webhook events by event type and result",
    ["service", "event", "result"],
)
webhook_event_record_failures_total = Counter(
    "webhook_event_record_failures_total",
    "Webhooks processed without an audit row because the event log write failed",
    ["service"],
)
webhook_rejections_total = Counter(
    "webhook_rejections_total",
    "Webhooks rejected before processing, by error code",
    ["service", "code"],
)
signature_verifications_total = Counter(
    "signature_verifications_total",
    "Successful signature verifications by mode",
    ["service", "mode"],
)
notification_requests_total = Counter(
    "notification_requests_total",
    "Outbound notification POSTs by outcome",
    ["service", "outcome"],
)
notification_tokens_total = Counter(
    "notification_tokens_total",
    "Tokens classified by delivery providers",
    ["service", "classification"],
)
notification_request_seconds = Histogram(
    "notification_request_seconds",
    "Outbound notification POST latency seconds",
    ["service"],
)
retries_total = Counter("retries_total", "Delivery retries scheduled", ["service", "reason"])
scheduled_tasks_pending_total = Gauge(
    "scheduled_tasks_pending_total",
    "Current count of scheduled tasks not yet done",
    ["service"],
)
scheduled_tasks_oldest_due_age_seconds = Gauge(
    "scheduled_tasks_oldest_due_age_seconds",
    "Seconds the oldest due scheduled task has been waiting",
    ["service"],
)
scheduled_task_failures_total = Counter(
    "scheduled_task_failures_total",
    "Scheduled task handler failures",
    ["service", "kind"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
