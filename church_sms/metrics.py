"""
Prometheus metrics for the SMS service.

This module provides:
- HTTP request counter (method, path, status)
- Inbound webhook outcome counter (result)
- Conversation match counter (source)
- Request latency histogram (method, path)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: recorded, duplicate, validation_error, error
sms_webhook_requests_total = Counter(
    "sms_webhook_requests_total",
    "Total inbound SMS webhook outcomes",
    labelnames=["result"]
)

# source: group, multi_recipient, direct, new, none
sms_conversation_matches_total = Counter(
    "sms_conversation_matches_total",
    "How inbound messages were attached to a conversation",
    labelnames=["source"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
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
    # Normalize path to avoid high-cardinality labels
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
    sms_webhook_requests_total.labels(result=result).inc()


def record_conversation_match(source: str) -> None:
    sms_conversation_matches_total.labels(source=source).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
