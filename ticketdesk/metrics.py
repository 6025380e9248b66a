"""
Prometheus metrics for the ticketdesk API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Message query counter (mode)
- Application error counter (code)
- Groups-per-aggregation histogram

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

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# mode: tickets, ticket, search, daily_contacts
message_queries_total = Counter(
    "message_queries_total",
    "Total message queries by mode",
    labelnames=["mode"]
)

app_errors_total = Counter(
    "app_errors_total",
    "Application errors by code",
    labelnames=["code"]
)

daily_contact_groups = Histogram(
    "daily_contact_groups",
    "Contact groups emitted per daily aggregation",
    buckets=(0, 1, 2, 5, 10, 25, 50, 100, 250)
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template, e.g. /tickets/{ticket_id}/messages
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    http_requests_total.labels(
        method=method,
        path=path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=path
    ).observe(latency_seconds)


def record_message_query(mode: str, groups: int = None) -> None:
    """
    Record a completed message query.

    Args:
        mode: One of "tickets", "ticket", "search", "daily_contacts"
        groups: Number of contact groups emitted (daily_contacts only)
    """
    message_queries_total.labels(mode=mode).inc()
    if groups is not None:
        daily_contact_groups.observe(groups)


def record_app_error(code: str) -> None:
    """Record an application error by its code."""
    app_errors_total.labels(code=code).inc()


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

    Returns:
        Content type string for Prometheus exposition format
    """
    return CONTENT_TYPE_LATEST
