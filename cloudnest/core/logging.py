"""
Structured logging configuration with JSON formatter.

This module provides:
- JSONFormatter for structured JSON logging
- Redaction of credential-like extra fields
- setup_logging() used by the application entrypoint
"""
import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Standard LogRecord attributes that are never copied as extra fields
_RESERVED_ATTRS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'taskName', 'message',
})

# Extra fields whose names contain one of these are masked
_SECRET_MARKERS = ("secret", "password", "credential", "access_key", "token")


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Example output:
    {
        "timestamp": "2025-01-19T10:30:45.123456+00:00",
        "level": "WARNING",
        "logger": "cloudnest.storage.registry",
        "message": "Backend 'primary-s3' transitioned healthy -> unhealthy",
        "backend_id": "5f0c..."
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON string.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
            "thread_name": record.threadName,
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        if record.stack_info:
            log_entry["stack_info"] = record.stack_info

        # Custom fields passed via extra={...}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            log_entry[key] = self._serialize_value(key, value)

        return json.dumps(log_entry, default=str, ensure_ascii=False)

    def _serialize_value(self, key: str, value: Any) -> Any:
        """
        Serialize value for JSON output, masking anything that looks like a secret.
        """
        lowered = key.lower()
        if any(marker in lowered for marker in _SECRET_MARKERS):
            return "***"

        if isinstance(value, datetime):
            return value.isoformat()

        if isinstance(value, bytes):
            return f"<binary data: {len(value)} bytes>"

        if isinstance(value, Exception):
            return {"type": type(value).__name__, "message": str(value)}

        return value


def setup_json_logging(
    level: str = "INFO",
    logger_name: Optional[str] = None
) -> logging.Logger:
    """
    Setup JSON logging for a logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of logger to configure (None for root logger)

    Returns:
        Configured logger with JSON formatter
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter())
    logger.addHandler(console_handler)

    if logger_name is not None:
        logger.propagate = False

    return logger


def setup_logging(level: str = "INFO", log_format: str = "text") -> None:
    """Configure root logging in either plain text or JSON format."""
    if log_format == "json":
        setup_json_logging(level)
        return

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
