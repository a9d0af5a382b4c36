"""
Prometheus metrics for the control panel

Metrics Categories:
- Requests: count and duration per method/status
- Cache: hits, misses and connection failures
- Enrichment: pipeline stages that degraded or aborted
- Audit: control panel log writes that failed
"""
import time
from typing import Optional
from prometheus_client import (
    Counter, Histogram,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

# Custom registry (allows multiple app instances in tests)
registry = CollectorRegistry()

# ============================================================
# Request Metrics
# ============================================================

http_requests_total = Counter(
    'cpanel_http_requests_total',
    'Total HTTP requests handled',
    ['method', 'status_code'],
    registry=registry
)

http_request_duration_seconds = Histogram(
    'cpanel_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=registry
)

http_response_bytes_total = Counter(
    'cpanel_http_response_bytes_total',
    'Total response body bytes written',
    [],
    registry=registry
)

# ============================================================
# Cache Metrics
# ============================================================

cache_requests_total = Counter(
    'cpanel_cache_requests_total',
    'Cache lookups by result',
    ['result'],
    registry=registry
)

cache_connection_errors_total = Counter(
    'cpanel_cache_connection_errors_total',
    'Failures acquiring a redis client from the pool',
    [],
    registry=registry
)

# ============================================================
# Pipeline Metrics
# ============================================================

enrichment_failures_total = Counter(
    'cpanel_enrichment_failures_total',
    'Request context enrichment steps that failed',
    ['stage'],
    registry=registry
)

audit_write_failures_total = Counter(
    'cpanel_audit_write_failures_total',
    'Control panel log entries that could not be written',
    [],
    registry=registry
)


def track_request(method: str, status_code: int, duration: Optional[float] = None, sent_bytes: int = 0):
    """Track a finished HTTP request"""
    http_requests_total.labels(method=method, status_code=str(status_code)).inc()
    if duration is not None:
        http_request_duration_seconds.labels(method=method).observe(duration)
    if sent_bytes:
        http_response_bytes_total.inc(sent_bytes)


def track_cache_lookup(hit: bool):
    cache_requests_total.labels(result="hit" if hit else "miss").inc()


def track_cache_connection_error():
    cache_connection_errors_total.inc()


def track_enrichment_failure(stage: str):
    enrichment_failures_total.labels(stage=stage).inc()


def track_audit_failure():
    audit_write_failures_total.inc()


class Timer:
    """Monotonic stopwatch used by the access log"""

    def __init__(self):
        self.started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started


def get_metrics_text() -> bytes:
    """Get metrics in Prometheus text format"""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """Get Prometheus content type"""
    return CONTENT_TYPE_LATEST
