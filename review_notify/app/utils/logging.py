"""
Structured logging for the review notification backend.

This module provides:
- Structured logging through structlog with key/value event fields
- Rich console output for development, JSON output for deployments
- Correlation IDs scoped per WebSocket session and per HTTP request
- Performance timing for store and delivery operations
- Specialised loggers for WebSocket and database events
"""

import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from review_notify.config.settings import get_settings


# Correlation ID for the current task/request
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Rich console for enhanced output
console = Console()


class CorrelationIDProcessor:
    """Structlog processor to add correlation IDs to log records."""

    def __call__(self, logger, method_name, event_dict):
        """Add correlation ID to the log event."""
        correlation_id = get_correlation_id()
        if correlation_id:
            event_dict.setdefault("correlation_id", correlation_id)
        return event_dict


class TimestampProcessor:
    """Structlog processor to add ISO timestamps to log records."""

    def __call__(self, logger, method_name, event_dict):
        """Add ISO timestamp to the log event."""
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
        return event_dict


class ConsoleLogFormatter:
    """
    Human-readable console renderer.

    Produces one line per event with level colouring and the remaining
    context fields appended as key=value pairs.
    """

    level_colors = {
        "DEBUG": "dim white",
        "INFO": "blue",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "bold red"
    }

    def __call__(self, _, __, event_dict):
        """Format the log event for output."""
        timestamp = event_dict.pop("timestamp", "")
        level = str(event_dict.pop("level", "info")).upper()
        logger_name = event_dict.pop("logger", "")
        correlation_id = event_dict.pop("correlation_id", "")
        event = event_dict.pop("event", "")

        parts = []
        if timestamp:
            parts.append(f"[dim]{timestamp[:19]}[/dim]")

        level_color = self.level_colors.get(level, "white")
        parts.append(f"[{level_color}]{level:8}[/{level_color}]")

        if logger_name:
            parts.append(f"[cyan]{logger_name}[/cyan]")
        if correlation_id:
            parts.append(f"[magenta]{correlation_id[:8]}[/magenta]")

        parts.append(f"[white]{escape(str(event))}[/white]")

        if event_dict:
            context_str = " ".join(f"{k}={v}" for k, v in event_dict.items())
            parts.append(f"[dim]{escape(context_str)}[/dim]")

        return " ".join(parts)


def setup_logging(
    level: str = "INFO",
    use_json: bool = False,
    log_file: Optional[Path] = None,
    enable_correlation_ids: bool = True
) -> None:
    """
    Setup structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: Output structured JSON logs
        log_file: Optional file path for log output
        enable_correlation_ids: Enable correlation ID tracking
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        TimestampProcessor(),
    ]

    if enable_correlation_ids:
        processors.append(CorrelationIDProcessor())

    if use_json:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        processors.append(ConsoleLogFormatter())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if not use_json:
        rich_handler = RichHandler(
            console=console,
            show_time=False,  # timestamp comes from structlog
            show_path=False,
            rich_tracebacks=True,
            markup=True
        )
        rich_handler.setLevel(numeric_level)
        root_logger.addHandler(rich_handler)
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(numeric_level)
        root_logger.addHandler(handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog bound logger
    """
    return structlog.get_logger(name)


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Set correlation ID for the current task/request.

    Args:
        correlation_id: Optional correlation ID, generates UUID if None

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the correlation ID for the current task/request."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID for the current task/request."""
    _correlation_id.set(None)


@contextmanager
def performance_context(operation: str, **context: Any):
    """
    Context manager for performance monitoring.

    Logs at debug level on success and at error level on failure,
    with the elapsed duration in milliseconds.

    Usage:
        with performance_context("mongodb_create_notification", recipient="u1"):
            ...
    """
    start_time = time.perf_counter()
    logger = get_logger("performance")

    try:
        yield context
    except Exception as e:
        logger.error(
            "Operation failed",
            operation=operation,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            error=str(e),
            **context
        )
        raise
    else:
        logger.debug(
            "Operation completed",
            operation=operation,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            **context
        )


class WebSocketLogger:
    """Specialized logger for WebSocket connections and events."""

    def __init__(self):
        self.logger = get_logger("websocket")

    def connection_established(
        self,
        connection_id: str,
        user_id: Optional[str] = None,
        user_connections: Optional[int] = None
    ):
        """Log WebSocket connection establishment."""
        self.logger.info(
            "WebSocket connection established",
            connection_id=connection_id,
            user_id=user_id,
            user_connections=user_connections,
            event_type="connection_established"
        )

    def connection_closed(
        self,
        connection_id: str,
        user_id: Optional[str] = None,
        reason: Optional[str] = None
    ):
        """Log WebSocket connection closure."""
        self.logger.info(
            "WebSocket connection closed",
            connection_id=connection_id,
            user_id=user_id,
            reason=reason,
            event_type="connection_closed"
        )

    def connection_rejected(self, raw_user_id: Optional[str], reason: str):
        """Log a channel open that was refused before registration."""
        self.logger.warning(
            "WebSocket connection rejected",
            user_id=raw_user_id,
            reason=reason,
            event_type="connection_rejected"
        )

    def message_sent(
        self,
        connection_id: str,
        message_type: str,
        message_size: Optional[int] = None
    ):
        """Log WebSocket message sending."""
        self.logger.debug(
            "WebSocket message sent",
            connection_id=connection_id,
            message_type=message_type,
            message_size=message_size,
            event_type="message_sent"
        )

    def push_failed(
        self,
        connection_id: str,
        user_id: str,
        message_type: str,
        error: str
    ):
        """Log a push that could not be written to a connection."""
        self.logger.warning(
            "WebSocket push failed, dropping connection",
            connection_id=connection_id,
            user_id=user_id,
            message_type=message_type,
            error=error,
            event_type="push_failed"
        )

    def connection_evicted(self, connection_id: str, user_id: str, reason: str):
        """Log a heartbeat eviction."""
        self.logger.info(
            "WebSocket connection evicted",
            connection_id=connection_id,
            user_id=user_id,
            reason=reason,
            event_type="connection_evicted"
        )


class DatabaseLogger:
    """Specialized logger for database operations."""

    def __init__(self):
        self.logger = get_logger("database")

    def query_executed(
        self,
        database_type: str,
        operation: str,
        collection: Optional[str] = None,
        result_count: Optional[int] = None
    ):
        """Log database query execution."""
        self.logger.debug(
            "Database query executed",
            database_type=database_type,
            operation=operation,
            collection=collection,
            result_count=result_count,
            event_type="query_executed"
        )

    def connection_established(self, database_type: str, database_name: str):
        """Log database connection establishment."""
        self.logger.info(
            "Database connection established",
            database_type=database_type,
            database_name=database_name,
            event_type="connection_established"
        )

    def connection_failed(self, database_type: str, error: str):
        """Log database connection failures."""
        self.logger.error(
            "Database connection failed",
            database_type=database_type,
            error=error,
            event_type="connection_failed"
        )


def initialize_logging_from_settings() -> None:
    """Initialize logging using application settings."""
    settings = get_settings()

    log_file = None
    if settings.logging.enable_file_logging:
        log_file = Path(settings.logging.log_file_path)

    setup_logging(
        level=settings.logging.level,
        use_json=settings.logging.format.lower() == "json",
        log_file=log_file,
        enable_correlation_ids=settings.logging.enable_correlation_ids
    )

    logger = get_logger(__name__)
    logger.info(
        "Logging system initialized",
        level=settings.logging.level,
        format=settings.logging.format,
        correlation_ids_enabled=settings.logging.enable_correlation_ids
    )


def log_notification_event(
    event: str,
    notification_id: Optional[str] = None,
    recipient: Optional[str] = None,
    notification_type: Optional[str] = None,
    **extra: Any
) -> None:
    """Log a notification lifecycle event with standard fields."""
    logger = get_logger("notifications")
    fields: Dict[str, Any] = {
        "notification_id": notification_id,
        "recipient": recipient,
        "notification_type": notification_type,
        "event_type": "notification_event",
    }
    fields.update(extra)
    logger.info(event, **fields)


def dump_event_payload(payload: Dict[str, Any]) -> str:
    """Serialise a wire payload the same way it is sent, for size accounting."""
    return json.dumps(payload, default=str)


# Global logger instances for common use cases
websocket_logger = WebSocketLogger()
database_logger = DatabaseLogger()
