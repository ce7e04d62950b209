"""
Prometheus metrics for the intake bot.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Inbound WhatsApp message outcome counter (result)
- Conversation turn counter (step written)

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

# result: processed, ignored, error, invalid_secret
inbound_messages_total = Counter(
    "inbound_messages_total",
    "Inbound WhatsApp messages by handling outcome",
    labelnames=["result"]
)

# step: the step stored by the turn, or "none" when nothing was stored
conversation_turns_total = Counter(
    "conversation_turns_total",
    "Conversation turns by stored step",
    labelnames=["step"]
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


def record_inbound_outcome(result: str) -> None:
    """Record how an inbound message was handled (processed, ignored, error, invalid_secret)."""
    inbound_messages_total.labels(result=result).inc()


def record_turn(step) -> None:
    """Record a conversation turn; step is None when no record was stored."""
    conversation_turns_total.labels(step="none" if step is None else str(int(step))).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
