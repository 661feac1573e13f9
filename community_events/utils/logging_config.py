"""
Logging configuration for the Community Events API.
"""

import json
import logging
import logging.config
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .request_context import request_id_var

APP_LOGGER = "community_events"


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_json_logging: bool = False,
    separate_error_log: bool = False
) -> None:
    """
    Configure logging for the application, uvicorn, SQLAlchemy and Celery.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path, rotated at 10MB
        enable_json_logging: Emit one JSON object per line instead of text
        separate_error_log: Also write ERROR records to ``<log_file>_errors.log``
    """
    formatter = "json" if enable_json_logging else "detailed"
    filters = ["request_id", "sensitive_data"]

    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": formatter,
            "stream": sys.stdout,
            "filters": filters
        }
    }

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": formatter,
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "filters": filters
        }
        if separate_error_log:
            handlers["error_file"] = {
                "class": "logging.handlers.RotatingFileHandler",
                "level": "ERROR",
                "formatter": formatter,
                "filename": log_file.replace(".log", "_errors.log"),
                "maxBytes": 10 * 1024 * 1024,
                "backupCount": 10,
                "filters": filters
            }

    handler_names = list(handlers)

    def _logger(level: str) -> Dict[str, Any]:
        return {"level": level, "handlers": handler_names, "propagate": False}

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d "
                    "[%(request_id)s] %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
            "json": {
                "()": "community_events.utils.logging_config.JSONFormatter"
            }
        },
        "filters": {
            "request_id": {
                "()": "community_events.utils.logging_config.RequestIDFilter"
            },
            "sensitive_data": {
                "()": "community_events.utils.logging_config.SensitiveDataFilter"
            }
        },
        "handlers": handlers,
        "loggers": {
            APP_LOGGER: _logger(log_level),
            "uvicorn": _logger("INFO"),
            "uvicorn.access": _logger("INFO"),
            "sqlalchemy.engine": _logger("WARNING"),
            "sqlalchemy.pool": _logger("WARNING"),
            "redis": _logger("WARNING"),
            "celery": _logger("INFO"),
            "httpx": _logger("WARNING"),
        },
        "root": {
            "level": log_level,
            "handlers": handler_names
        }
    }

    logging.config.dictConfig(config)


class RequestIDFilter(logging.Filter):
    """Filter to add the current request ID to log records."""

    def filter(self, record):
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get()
        return True


class SensitiveDataFilter(logging.Filter):
    """Filter to mask credentials and tokens in log records."""

    SENSITIVE_KEYS = {
        "password", "password_hash", "token", "secret", "authorization",
        "cookie", "access_token", "refresh_token", "smtp_password"
    }

    _TOKEN_PATTERN = re.compile(r"\b[A-Za-z0-9_\-]{32,}\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\b")

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = self._sanitize_string(record.msg)

        for key, value in list(record.__dict__.items()):
            if isinstance(value, dict):
                setattr(record, key, self._sanitize_data(value))

        return True

    def _sanitize_string(self, text: str) -> str:
        # JWTs are three dot-separated base64url segments
        return self._TOKEN_PATTERN.sub("***MASKED***", text)

    def _sanitize_data(self, data):
        if isinstance(data, dict):
            return {
                key: "***MASKED***" if str(key).lower() in self.SENSITIVE_KEYS
                else self._sanitize_data(value)
                for key, value in data.items()
            }
        if isinstance(data, str):
            return self._sanitize_string(data)
        if isinstance(data, (list, tuple)):
            return type(data)(self._sanitize_data(item) for item in data)
        return data


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    RESERVED = {
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "lineno", "funcName", "created",
        "msecs", "relativeCreated", "thread", "threadName", "taskName",
        "processName", "process", "exc_info", "exc_text", "stack_info",
        "request_id", "message", "asctime"
    }

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "request_id": getattr(record, "request_id", None),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in self.RESERVED
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def log_business_event(event_type: str, details: Dict[str, Any], user_id: Optional[str] = None):
    """Log business events (registrations, cancellations, check-ins)."""
    logger = logging.getLogger(f"{APP_LOGGER}.business")
    logger.info(
        f"Business event: {event_type}",
        extra={
            "event_type": event_type,
            "business_event": True,
            "user_id": user_id,
            **details
        }
    )
