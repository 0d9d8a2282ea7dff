"""
Per-request correlation id, access logging and HTTP metrics.

The id comes from the caller's X-Request-ID header when it is short and
printable, otherwise a fresh UUID4. It is bound to the logging context for
the duration of the request and echoed on the response.
"""
import time
import uuid
import logging
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from snapshot_engine.core.logging_config import set_request_id, clear_request_id
from snapshot_engine.core.metrics import record_request_metrics

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 64

# Scraped or polled often enough to drown the log
QUIET_PATHS = frozenset({'/health', '/metrics', '/docs', '/redoc', '/openapi.json'})


def resolve_request_id(request: Request) -> str:
    supplied = request.headers.get(REQUEST_ID_HEADER, "")
    if supplied and len(supplied) <= MAX_REQUEST_ID_LENGTH and supplied.isprintable():
        return supplied
    return str(uuid.uuid4())


def _level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each request with its duration and records it in Prometheus.

    An extract call can block for the whole session deadline, so
    response_time_ms on request_complete is the quickest way to find slow
    video sources.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request)
        request.state.request_id = request_id
        token = set_request_id(request_id)

        path = request.url.path
        fields = {
            "method": request.method,
            "path": path,
            "client_ip": request.client.host if request.client else "unknown",
        }
        verbose = path not in QUIET_PATHS
        started = time.perf_counter()

        if verbose:
            logger.info("Request started", extra={"event_type": "request_start", **fields})

        try:
            try:
                response = await call_next(request)
            except Exception as e:
                elapsed = time.perf_counter() - started
                logger.error(
                    f"Request failed: {type(e).__name__}",
                    extra={
                        "event_type": "request_error",
                        **fields,
                        "response_time_ms": round(elapsed * 1000, 2),
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                    exc_info=True
                )
                record_request_metrics(request.method, path, 500, elapsed)
                raise

            elapsed = time.perf_counter() - started
            response.headers[REQUEST_ID_HEADER] = request_id

            if verbose:
                logger.log(
                    _level_for_status(response.status_code),
                    "Request completed",
                    extra={
                        "event_type": "request_complete",
                        **fields,
                        "status_code": response.status_code,
                        "response_time_ms": round(elapsed * 1000, 2),
                    }
                )
            record_request_metrics(request.method, path, response.status_code, elapsed)
            return response
        finally:
            clear_request_id(token)
