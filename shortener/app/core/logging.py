"""Structured logging configuration for the shortener.

This module provides a structured logging setup using Python's standard
logging module with JSON formatting for production environments.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from shortener.app.core.config import Settings, settings


# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "asctime", "taskName",
))


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for consumption by log aggregation
    systems like ELK Stack or Grafana Loki.
    """

    # Contextual fields for request and job tracking
    CONTEXT_FIELDS = [
        "request_id",    # Request ID from X-Request-ID header
        "alias",         # Short URL alias being handled
        "job",           # Scheduled job name
        "rate",          # Limiter window count
        "path",          # Request path
        "method",        # HTTP method
        "status_code",   # HTTP response status
        "duration_ms",   # Request duration in milliseconds
    ]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation of the log record
        """
        record.message = record.getMessage()

        log_data: Dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None and value != "-":
                log_data[field] = value

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key in self.CONTEXT_FIELDS:
                continue
            log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds contextual fields to log records.

    Ensures the structured format string never fails on a missing attribute.
    """

    CONTEXT_DEFAULTS = {field: None for field in JSONFormatter.CONTEXT_FIELDS}

    def filter(self, record: logging.LogRecord) -> bool:
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


def get_logging_config(app_settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    app_settings = app_settings or settings
    log_format = app_settings.log_format.lower()
    log_level = app_settings.log_level.upper()

    formatters = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - request_id=%(request_id)s - job=%(job)s - rate=%(rate)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "shortener.app.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": default_formatter,
            "stream": sys.stdout,
            "filters": ["context"],
        },
        "error_console": {
            "class": "logging.StreamHandler",
            "level": "ERROR",
            "formatter": default_formatter,
            "stream": sys.stderr,
            "filters": ["context"],
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "shortener.app.core.logging.ContextFilter",
            },
        },
        "handlers": handlers,
        "loggers": {
            "shortener": {
                "level": log_level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def setup_logging(app_settings: Optional[Settings] = None) -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config(app_settings))

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str = "shortener") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    alias: Optional[str] = None,
    job: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Create a log context dictionary for use with extra parameter.

    Example:
        >>> logger.info(
        ...     "URL saved",
        ...     extra=get_log_context(request_id="abc123", alias="xYz123")
        ... )
    """
    context = {
        "request_id": request_id,
        "alias": alias,
        "job": job,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
