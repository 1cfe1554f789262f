"""
Prometheus metrics for the SkillSwap realtime service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Realtime event outcome counter (kind, result)
- Push counter per client-facing event name
- Gauge of registered socket connections

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Request latency histogram in seconds
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# kind: chat_message, typing, notification
# result: delivered, no_recipient, validation_error, persistence_error
realtime_events_total = Counter(
    "realtime_events_total",
    "Realtime events handled by the dispatcher",
    labelnames=["kind", "result"]
)

realtime_pushes_total = Counter(
    "realtime_pushes_total",
    "Frames pushed to client connections",
    labelnames=["event"]
)

realtime_connections = Gauge(
    "realtime_connections",
    "Open socket connections"
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


def record_event_outcome(kind: str, result: str) -> None:
    """Record how the dispatcher finished with one event."""
    realtime_events_total.labels(kind=kind, result=result).inc()


def record_push(event: str) -> None:
    realtime_pushes_total.labels(event=event).inc()


def connection_opened() -> None:
    realtime_connections.inc()


def connection_closed() -> None:
    realtime_connections.dec()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """
    Get the content type for Prometheus metrics.
    """
    return CONTENT_TYPE_LATEST
