"""Structured JSON logging for bookmark-insights.

Every log line is a single JSON object so enrichment runs can be grepped and
aggregated. Lines emitted while a bookmark is being enriched carry its
``bookmark_id``; batch-level lines can carry ``batch`` and counters via
``extra``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord has; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JSONFormatter(logging.Formatter):
    """Formats log records as JSON objects.

    Output format:
        {
            "ts": "2026-10-18T10:30:00.123456+00:00",
            "level": "INFO",
            "msg": "Enrichment complete",
            "logger": "bookmark_insights.enrichment.worker",
            "bookmark_id": "42",
            ...extra fields...
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="microseconds"),
            "level": record.levelname,
            "msg": record.getMessage(),
        }

        if record.name and record.name != "root":
            log_entry["logger"] = record.name

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class BookmarkLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps ``bookmark_id`` on every message.

    Usage:
        log = get_bookmark_logger(__name__, record.id)
        log.info("Probing %s", record.url)
    """

    def __init__(self, logger: logging.Logger, bookmark_id: str):
        super().__init__(logger, {"bookmark_id": bookmark_id})

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["bookmark_id"] = self.extra["bookmark_id"]
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(level: str = "INFO", stream: Any = None) -> None:
    """Configure the root logger with JSON formatting.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        stream: Output stream (defaults to sys.stderr).
    """
    if stream is None:
        stream = sys.stderr

    root_logger = logging.getLogger()

    # Remove existing handlers to avoid duplicate lines
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    # httpx logs every request at INFO; keep it quiet unless debugging
    logging.getLogger("httpx").setLevel(
        logging.DEBUG if level.upper() == "DEBUG" else logging.WARNING
    )


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger instance (typically ``get_logger(__name__)``)."""
    return logging.getLogger(name)


def get_bookmark_logger(name: str, bookmark_id: str) -> BookmarkLoggerAdapter:
    """Get a logger adapter that includes ``bookmark_id`` in all messages.

    Args:
        name: Logger name (typically __name__).
        bookmark_id: The bookmark being enriched.

    Returns:
        A BookmarkLoggerAdapter bound to ``bookmark_id``.
    """
    return BookmarkLoggerAdapter(get_logger(name), bookmark_id)


_logging_configured: bool = False


def ensure_logging_configured(level: str = "INFO") -> None:
    """Configure logging once; later calls are no-ops."""
    global _logging_configured
    if not _logging_configured:
        setup_logging(level)
        _logging_configured = True


def reset_logging() -> None:
    """Drop all root handlers and forget prior configuration (for tests)."""
    global _logging_configured
    _logging_configured = False

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
