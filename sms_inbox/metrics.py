"""
Prometheus metrics for the SMS inbox.

This module provides:
- HTTP request counter (method, path, status)
- Webhook outcome counter (result)
- Request latency histogram (method, path)
- Gauge of messages currently held in the store

Metrics are stored in-memory using prometheus-client.
"""

from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: created, duplicate, invalid_signature, validation_error, error
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook processing outcomes",
    labelnames=["result"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

messages_stored = Gauge(
    "messages_stored",
    "Number of messages currently held in memory"
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_webhook_outcome(result: str) -> None:
    """
    Record a webhook processing outcome.

    Args:
        result: Processing result - one of:
            - "created": New message stored
            - "duplicate": MessageSid already stored (acknowledged, nothing inserted)
            - "invalid_signature": X-Twilio-Signature check failed
            - "validation_error": Payload missing fields or malformed
            - "error": Store failure
    """
    webhook_requests_total.labels(result=result).inc()


def track_messages_stored(count: Callable[[], int]) -> None:
    """
    Report the size of the store served by the application.

    The gauge is process-wide and reads the last registered store at scrape time.
    """
    messages_stored.set_function(count)


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
