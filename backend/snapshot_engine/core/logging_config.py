"""
Structured JSON logging

Every record is written as one JSON object carrying two correlation ids:
- request_id: set by RequestLoggingMiddleware for the HTTP request being served
- session_id: set by the extraction coordinator inside a session's task

Handlers: console, app.log (100MB x 7 rotations) and error.log (ERROR and
above, 50MB x 5 rotations), all under settings.LOG_DIR or backend/data/logs.
"""
import contextvars
import logging
import logging.handlers
import os
import re
from datetime import datetime, timezone
from typing import Dict, Optional

from pythonjsonlogger import jsonlogger

from snapshot_engine.core.config import settings

request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'request_id', default=None
)
session_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'session_id', default=None
)

# Record attribute -> context variable it is filled from
CORRELATION_VARS: Dict[str, contextvars.ContextVar] = {
    'request_id': request_id_var,
    'session_id': session_id_var,
}

APP_VERSION = "1.0.0"

LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), 'data', 'logs')

MAX_LOGGED_VALUE_LENGTH = 10000

_LINE_BREAKS = re.compile(r'\r\n|\r|\n')


def _strip_line_breaks(text: str) -> str:
    return _LINE_BREAKS.sub(' ', text)


class RequestIdFilter(logging.Filter):
    """
    Stamps request_id and session_id onto every record.

    A value already on the record (passed through `extra`) is kept; the
    deadline timer logs outside the session task and supplies its
    session_id that way. Missing ids are written as "-".
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for attribute, var in CORRELATION_VARS.items():
            if not getattr(record, attribute, None):
                setattr(record, attribute, var.get() or "-")
        return True


class SanitizingFilter(logging.Filter):
    """
    Replaces CR/LF in messages and string args with spaces.

    Video URLs and uploaded filenames are user supplied and end up in log
    messages; a line break in one must not start a forged log entry.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _strip_line_breaks(record.msg)
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                _strip_line_breaks(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding the standard fields.

    Example line:
    {
        "timestamp": "2025-11-23T10:30:00.000000+00:00",
        "level": "INFO",
        "message": "Extraction attempt 2/4 at 5.0s",
        "logger": "snapshot_engine.services.extraction_coordinator",
        "module": "extraction_coordinator",
        "request_id": "...",
        "session_id": "...",
        "event_type": "extraction_attempt_started",
        ...extra fields...
    }
    """

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record.setdefault('message', record.getMessage())

        log_record.update({
            'level': record.levelname,
            'logger': record.name,
            'module': record.module,
            'request_id': getattr(record, 'request_id', '-'),
            'session_id': getattr(record, 'session_id', '-'),
        })
        if record.funcName:
            log_record['function'] = record.funcName
        if record.lineno:
            log_record['line'] = record.lineno


def _attach(
    root: logging.Logger,
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter,
) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SanitizingFilter())
    root.addHandler(handler)


def setup_logging(
    log_level: Optional[str] = None,
    log_dir: Optional[str] = None,
    app_version: Optional[str] = None
) -> logging.Logger:
    """
    Configure root logging for the service.

    Replaces any handlers already on the root logger, so calling it again
    (e.g. from tests) reconfigures rather than duplicates output.

    Args:
        log_level: Level name (default settings.LOG_LEVEL)
        log_dir: Directory for app.log and error.log
            (default settings.LOG_DIR, else backend/data/logs)
        app_version: Version recorded in APP_VERSION

    Returns:
        The root logger
    """
    global APP_VERSION
    if app_version:
        APP_VERSION = app_version

    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)
    directory = log_dir or settings.LOG_DIR or LOG_DIR
    os.makedirs(directory, exist_ok=True)

    formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    _attach(root_logger, logging.StreamHandler(), level, formatter)
    _attach(
        root_logger,
        logging.handlers.RotatingFileHandler(
            os.path.join(directory, 'app.log'),
            maxBytes=100 * 1024 * 1024,
            backupCount=7,
            encoding='utf-8',
        ),
        level,
        formatter,
    )
    _attach(
        root_logger,
        logging.handlers.RotatingFileHandler(
            os.path.join(directory, 'error.log'),
            maxBytes=50 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8',
        ),
        logging.ERROR,
        formatter,
    )

    # Per-request access logs duplicate RequestLoggingMiddleware; FFmpeg is chatty
    for name, quiet_level in (
        ('uvicorn.access', logging.WARNING),
        ('httpx', logging.WARNING),
        ('httpcore', logging.WARNING),
        ('libav', logging.ERROR),
    ):
        logging.getLogger(name).setLevel(quiet_level)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Return the named logger (handlers live on the root logger)."""
    return logging.getLogger(name)


def set_request_id(request_id: Optional[str]) -> contextvars.Token:
    """
    Set the request ID for the current context.

    Returns:
        Token for clear_request_id
    """
    return request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def clear_request_id(token: contextvars.Token) -> None:
    request_id_var.reset(token)


def set_session_id(session_id: Optional[str]) -> contextvars.Token:
    """
    Set the extraction session ID for the current context.

    asyncio tasks copy the context they are created in, so setting this at
    the top of a session task tags every log line the session emits.

    Returns:
        Token for clear_session_id
    """
    return session_id_var.set(session_id)


def get_session_id() -> Optional[str]:
    return session_id_var.get()


def clear_session_id(token: contextvars.Token) -> None:
    session_id_var.reset(token)


def sanitize_log_value(value) -> str:
    """
    Make an arbitrary value safe to embed in a log message.

    Line breaks become spaces and anything longer than
    MAX_LOGGED_VALUE_LENGTH is truncated.
    """
    sanitized = _strip_line_breaks(value if isinstance(value, str) else str(value))
    if len(sanitized) > MAX_LOGGED_VALUE_LENGTH:
        sanitized = sanitized[:MAX_LOGGED_VALUE_LENGTH] + '...[truncated]'
    return sanitized
