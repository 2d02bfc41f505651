"""
Prometheus metrics for the bot.

This module provides:
- HTTP request counter and latency histogram (method, path)
- Webhook result counter (result)
- Pipeline outcome counter (outcome)
- Rate-limit denial, send failure and connection-loss counters
- Generation latency histogram

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

# result: accepted, invalid_signature, validation_error, error
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook processing results",
    labelnames=["result"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# outcome: delivered, dropped, errored
pipeline_outcomes_total = Counter(
    "pipeline_outcomes_total",
    "Terminal states of inbound message processing",
    labelnames=["outcome"]
)

rate_limited_total = Counter(
    "rate_limited_total",
    "Inbound messages denied by the rate limiter"
)

send_failures_total = Counter(
    "send_failures_total",
    "Replies the transport failed to deliver"
)

transport_connection_lost_total = Counter(
    "transport_connection_lost_total",
    "Times the transport reported a lost connection"
)

# result: ok, error
generation_latency_seconds = Histogram(
    "generation_latency_seconds",
    "Generative engine call latency in seconds",
    labelnames=["result"],
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0)
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


def record_webhook_result(result: str) -> None:
    webhook_requests_total.labels(result=result).inc()


def record_pipeline_outcome(outcome: str) -> None:
    pipeline_outcomes_total.labels(outcome=outcome).inc()


def record_rate_limited() -> None:
    rate_limited_total.inc()


def record_send_failure() -> None:
    send_failures_total.inc()


def record_connection_lost() -> None:
    transport_connection_lost_total.inc()


def record_generation(result: str, latency_seconds: float) -> None:
    generation_latency_seconds.labels(result=result).observe(latency_seconds)


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
