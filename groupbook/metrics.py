"""
Prometheus metrics for the groupbook API.

This module provides:
- HTTP request counter (method, path, status)
- Record operation counter (resource, operation, result)
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

# resource: messages, transactions
# operation: list, create, delete
# result: listed, created, deleted, not_found, unauthorized, error
record_operations_total = Counter(
    "record_operations_total",
    "Total record operations by outcome",
    labelnames=["resource", "operation", "result"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def normalize_path(path: str) -> str:
    """
    Collapse numeric path segments so /api/messages/17 and /api/messages/18
    share one label value.
    """
    path = path.split("?")[0]
    return "/".join(":id" if segment.isdigit() else segment for segment in path.split("/"))


def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = normalize_path(path)

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_operation(resource: str, operation: str, result: str) -> None:
    record_operations_total.labels(
        resource=resource,
        operation=operation,
        result=result
    ).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
