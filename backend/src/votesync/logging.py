"""Structured logging configuration for votesync.

Provides JSON-formatted logs for production and human-readable
logs for development.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import get_settings

# Attributes present on every LogRecord; anything else came in via ``extra``
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Fields passed through ``extra=``
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.funcName:
            log_data["function"] = record.funcName
        if record.lineno:
            log_data["line"] = record.lineno

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure logging based on settings."""
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)

    if settings.log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.WARNING)

    logger = get_logger(__name__)
    logger.info(
        "Logging initialized",
        extra={
            "environment": settings.environment,
            "log_level": settings.log_level,
            "log_format": settings.log_format,
        },
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds context to all log messages."""

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        """Process the logging message and add extra context."""
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def get_context_logger(name: str, **context: Any) -> LoggerAdapter:
    """Get a logger with additional context.

    Args:
        name: Logger name
        **context: Context fields to add to all log messages

    Returns:
        Logger adapter with context

    Usage:
        logger = get_context_logger(__name__, source="news", run_id="abc123")
        logger.info("Processing item")  # Includes source and run_id
    """
    return LoggerAdapter(get_logger(name), context)


# =========================
# Convenience functions
# =========================


def log_sync_start(source: str, run_id: str) -> None:
    """Log the start of a sync run."""
    logger = get_logger("votesync.sync")
    logger.info(
        f"Starting sync for {source}",
        extra={"source": source, "run_id": run_id, "event": "sync_start"},
    )


def log_sync_complete(
    source: str,
    run_id: str,
    records_processed: int,
    duration_ms: int,
) -> None:
    """Log the completion of a sync run."""
    logger = get_logger("votesync.sync")
    logger.info(
        f"Completed sync for {source}",
        extra={
            "source": source,
            "run_id": run_id,
            "records_processed": records_processed,
            "duration_ms": duration_ms,
            "event": "sync_complete",
        },
    )


def log_sync_error(source: str, run_id: str, error: str) -> None:
    """Log a sync run failure."""
    logger = get_logger("votesync.sync")
    logger.error(
        f"Sync error for {source}: {error}",
        extra={
            "source": source,
            "run_id": run_id,
            "error": error,
            "event": "sync_error",
        },
    )


def log_queue_event(
    action: str,
    task_id: str,
    source: str,
    attempts: int | None = None,
    error: str | None = None,
) -> None:
    """Log a retry queue transition.

    Args:
        action: Transition name (enqueued, claimed, completed, retry, failed, requeued)
        task_id: Queue task identifier
        source: Source the task belongs to
        attempts: Attempts consumed so far
        error: Error message for failure transitions
    """
    logger = get_logger("votesync.queue")
    level = logging.WARNING if action == "failed" else logging.DEBUG
    logger.log(
        level,
        f"Queue task {task_id} {action}",
        extra={
            "task_id": task_id,
            "source": source,
            "action": action,
            "attempts": attempts,
            "error": error,
            "event": "queue_transition",
        },
    )


def log_resolution_event(
    kind: str,
    raw_name: str,
    matched_id: str | None,
    match_kind: str,
    similarity: float,
) -> None:
    """Log an entity resolution event.

    Args:
        kind: Entity kind being resolved (party, district, candidate)
        raw_name: Name as it appeared upstream
        matched_id: Canonical identifier (if found)
        match_kind: exact, fuzzy or none
        similarity: Name similarity of the chosen match
    """
    logger = get_logger("votesync.resolution")
    logger.debug(
        f"Resolution {kind}: {raw_name} -> {matched_id or 'no match'}",
        extra={
            "kind": kind,
            "raw_name": raw_name,
            "matched_id": matched_id,
            "match_kind": match_kind,
            "similarity": similarity,
            "event": "entity_resolution",
        },
    )
