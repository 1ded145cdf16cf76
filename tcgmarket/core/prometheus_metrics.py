"""
Prometheus metrics for the TCG marketplace.

Exports metrics in Prometheus format for monitoring and alerting.
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)

# HTTP Metrics
http_requests_total = Counter(
    "tcgmarket_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "tcgmarket_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Lifecycle Metrics
state_transitions_total = Counter(
    "tcgmarket_state_transitions_total",
    "Guarded state transitions by outcome",
    ["entity", "transition", "outcome"],  # outcome: applied, conflict, blocked, not_found
)

trade_offers_expired_total = Counter(
    "tcgmarket_trade_offers_expired_total",
    "Trade offers moved to EXPIRED by lazy expiration",
    ["mode"],  # mode: single, batch
)

# Rate Limiting Metrics
report_rate_limiter_requests_total = Counter(
    "tcgmarket_report_rate_limiter_requests_total",
    "Report rate limiter checks",
    ["backend", "allowed"],
)

# Redis Metrics
redis_operations_total = Counter(
    "tcgmarket_redis_operations_total",
    "Total Redis operations",
    ["operation", "status"],
)


def get_metrics_response():
    """
    Get Prometheus metrics in text format.

    Returns:
        Tuple of (metrics_text, content_type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
