"""
Structured logging configuration.

Called from create_app() and from the RQ worker entry point (worker.py).
Supports text (human-readable) and JSON formats via LOG_FORMAT env var.
LOG_LEVEL defaults to INFO.

Records carry a correlation_id: inside a request it comes from the
X-Correlation-ID header, otherwise callers pass it with extra={...}.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import has_request_context, request

CORRELATION_HEADER = 'X-Correlation-ID'


class CorrelationIdFilter(logging.Filter):
    """Stamp each record with the current request's correlation id (or None)."""

    def filter(self, record):
        if getattr(record, 'correlation_id', None) is None:
            record.correlation_id = (
                request.headers.get(CORRELATION_HEADER) if has_request_context() else None
            )
        return True


class JSONFormatter(logging.Formatter):
    """Single-line JSON log formatter for production log aggregators."""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        correlation_id = getattr(record, 'correlation_id', None)
        if correlation_id:
            entry['correlation_id'] = correlation_id
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry)


class TextFormatter(logging.Formatter):
    """Human-readable lines; the correlation id is appended when there is one."""

    def __init__(self):
        super().__init__('[%(asctime)s] %(levelname)s %(name)s: %(message)s', datefmt='%Y-%m-%d %H:%M:%S')

    def format(self, record):
        line = super().format(record)
        correlation_id = getattr(record, 'correlation_id', None)
        return f'{line} [cid={correlation_id}]' if correlation_id else line


# Third-party loggers that are noisy at INFO
_NOISY_LOGGERS = [
    'urllib3',
    'rq.worker',
    'sqlalchemy.engine',
    'werkzeug',
]


def configure_logging(app=None):
    """
    Set up root logger with format/level from env vars.

    Environment variables:
        LOG_LEVEL  - Python log level name (default: INFO)
        LOG_FORMAT - "text" (default) or "json"
    """
    level_name = os.getenv('LOG_LEVEL', 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    log_format = os.getenv('LOG_FORMAT', 'text').lower()

    root = logging.getLogger()
    root.setLevel(level)

    # Remove any existing handlers to avoid duplicates on re-init
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(JSONFormatter() if log_format == 'json' else TextFormatter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if app is not None:
        app.logger.debug("Logging configured (level=%s, format=%s)", level_name, log_format)
