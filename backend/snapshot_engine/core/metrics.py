"""
Prometheus metrics for the snapshot engine.

All collectors live on a private REGISTRY, exposed by GET /metrics. The
extraction collectors are fed by the coordinator, the upload counter by
every code path that hands bytes to an uploader, and the HTTP collectors
by RequestLoggingMiddleware.
"""
import re
import time
import logging
from typing import Optional
from prometheus_client import (
    Counter, Histogram, Gauge, Info,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

logger = logging.getLogger(__name__)

# Private so test runs and re-imports never collide with default collectors
REGISTRY = CollectorRegistry()

# ============================================================================
# Application Info
# ============================================================================

app_info = Info(
    'app',
    'Application information',
    registry=REGISTRY
)

_start_time: Optional[float] = None

app_uptime_seconds = Gauge(
    'app_uptime_seconds',
    'Application uptime in seconds',
    registry=REGISTRY
)

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status_code'],
    registry=REGISTRY
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0],
    registry=REGISTRY
)

# ============================================================================
# Extraction Metrics
# ============================================================================

extraction_sessions_total = Counter(
    'snapshot_extraction_sessions_total',
    'Extraction sessions by terminal outcome',
    ['outcome'],  # succeeded, manual_fallback, error
    registry=REGISTRY
)

extraction_manual_fallbacks_total = Counter(
    'snapshot_extraction_manual_fallbacks_total',
    'Extraction sessions routed to manual capture',
    ['reason'],  # exhausted, decode_error, timeout, fault
    registry=REGISTRY
)

extraction_attempts_total = Counter(
    'snapshot_extraction_attempts_total',
    'Extraction attempts by outcome',
    ['outcome'],  # black, upload_failed, accepted
    registry=REGISTRY
)

extraction_duration_seconds = Histogram(
    'snapshot_extraction_duration_seconds',
    'Time from session start to terminal outcome',
    ['outcome'],
    buckets=[0.5, 1.0, 2.0, 3.0, 5.0, 8.0, 12.0, 15.0, 20.0],
    registry=REGISTRY
)

extraction_sessions_active = Gauge(
    'snapshot_extraction_sessions_active',
    'Extraction sessions currently running',
    registry=REGISTRY
)

# ============================================================================
# Upload Metrics
# ============================================================================

snapshot_uploads_total = Counter(
    'snapshot_uploads_total',
    'Snapshot uploads by origin and status',
    ['origin', 'status'],  # origin: automatic, manual_capture, external_image
    registry=REGISTRY
)


def init_metrics(version: str = "1.0.0"):
    """Publish app_info and start the uptime clock."""
    global _start_time
    _start_time = time.time()
    app_info.info({'name': 'snapshot-engine', 'version': version})
    logger.info("Prometheus metrics initialized", extra={"version": version})


def record_request_metrics(
    method: str,
    path: str,
    status_code: int,
    response_time_seconds: float
):
    """Count one HTTP request and observe its latency under a normalized path."""
    label_path = _normalize_path(path)
    http_requests_total.labels(
        method=method, path=label_path, status_code=str(status_code)
    ).inc()
    http_request_duration_seconds.labels(method=method, path=label_path).observe(
        response_time_seconds
    )


def record_session_started():
    """Record an extraction session entering the running set."""
    extraction_sessions_active.inc()


def record_session_finished(outcome: str, duration_seconds: float, reason: Optional[str] = None):
    """
    Record a session reaching its terminal state.

    Args:
        outcome: Terminal state (succeeded, manual_fallback, error)
        duration_seconds: Time since the session started
        reason: Manual fallback reason, when outcome is not a success
    """
    extraction_sessions_active.dec()
    extraction_sessions_total.labels(outcome=outcome).inc()
    extraction_duration_seconds.labels(outcome=outcome).observe(duration_seconds)
    if reason:
        extraction_manual_fallbacks_total.labels(reason=reason).inc()


def record_session_superseded():
    """Record a running session dropped before reaching a terminal state."""
    extraction_sessions_active.dec()


def record_attempt(outcome: str):
    """
    Record the outcome of one extraction attempt.

    Args:
        outcome: Attempt outcome (black, upload_failed, accepted)
    """
    extraction_attempts_total.labels(outcome=outcome).inc()


def record_upload(origin: str, status: str):
    """
    Record a snapshot upload.

    Args:
        origin: automatic, manual_capture or external_image
        status: success or failure
    """
    snapshot_uploads_total.labels(origin=origin, status=status).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus metrics output.

    Returns:
        Prometheus text format metrics
    """
    if _start_time:
        app_uptime_seconds.set(time.time() - _start_time)
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


_UUID_SEGMENT = re.compile(
    r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', re.IGNORECASE
)
_NUMERIC_SEGMENT = re.compile(r'/\d+')


def _normalize_path(path: str) -> str:
    """Collapse UUID and numeric path segments to {id} to bound label cardinality."""
    return _NUMERIC_SEGMENT.sub('/{id}', _UUID_SEGMENT.sub('{id}', path))
