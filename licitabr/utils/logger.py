"""
Centralized logging configuration for the LicitaBR service.
Provides structured logging with per-request correlation IDs.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

from ..core.config import config

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="none")
_log_stream = sys.stdout

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage',
    'correlation_id', 'exc_info', 'exc_text', 'stack_info', 'taskName',
}


class CorrelationFilter(logging.Filter):
    """Filter to add correlation ID to log records"""

    def filter(self, record):
        if not hasattr(record, 'correlation_id'):
            record.correlation_id = _correlation_id.get()
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', 'none'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        # Add any extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with proper configuration.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(f"licitabr.{name}")

    # Only configure the logger once
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, config.monitoring.log_level.upper(), logging.INFO))

    console_handler = logging.StreamHandler(_log_stream)
    console_handler.setLevel(logging.DEBUG)

    if config.monitoring.log_format == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s'
        ))

    console_handler.addFilter(CorrelationFilter())
    logger.addHandler(console_handler)

    # Prevent propagation to avoid duplicate logs
    logger.propagate = False

    return logger


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:12]


def get_correlation_id() -> str:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID for the current request context"""
    _correlation_id.set(correlation_id)


class LoggerContext:
    """Context manager for temporarily setting correlation ID"""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or new_correlation_id()
        self._token = None

    def __enter__(self):
        self._token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)


def with_correlation_id(correlation_id: Optional[str] = None) -> LoggerContext:
    """Create a context manager for temporary correlation ID setting"""
    return LoggerContext(correlation_id)


def set_log_stream(stream) -> None:
    """Point every configured licitabr handler (and future ones) at another stream"""
    global _log_stream
    _log_stream = stream
    for name, logger in logging.root.manager.loggerDict.items():
        if not name.startswith("licitabr.") or not isinstance(logger, logging.Logger):
            continue
        for handler in logger.handlers:
            if isinstance(handler, logging.StreamHandler):
                handler.setStream(stream)
