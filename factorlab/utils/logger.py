"""
Structured Logging Module

This module provides structured logging for the engine with:
- JSON or console output
- Contextual logging with bound variables
- Run ID propagation through a ContextVar
- Execution timing for engine stages
- A bridge so modules using logging.getLogger() land in the same stream
"""

from __future__ import annotations

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from factorlab.config.settings import Settings

# Context variable for run tracing
_run_id: ContextVar[str] = ContextVar("run_id", default="")

_LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def get_run_id() -> str:
    """Get current run ID."""
    return _run_id.get()


def set_run_id(run_id: str) -> None:
    """Set current run ID."""
    _run_id.set(run_id)


def generate_run_id() -> str:
    """Generate a new unique run ID."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    unique_id = uuid.uuid4().hex[:8]
    return f"run_{timestamp}_{unique_id}"


def add_timestamp(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add ISO 8601 timestamp to log entry."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_run_id(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add run ID to log entry."""
    run_id = _run_id.get()
    if run_id:
        event_dict["run_id"] = run_id
    return event_dict


def add_log_level(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add log level to event dict."""
    event_dict["level"] = method_name.upper()
    return event_dict


def setup_logging(
    settings: "Settings | None" = None,
    json_format: bool = False,
    level: str = "INFO",
) -> None:
    """
    Configure structured logging for the engine.

    Args:
        settings: Optional settings instance (overrides level/json_format)
        json_format: Whether to use JSON format
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    if settings is not None:
        level = settings.logging.level
        json_format = settings.logging.json_format

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        add_log_level,
        add_timestamp,
        add_run_id,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors = shared_processors + [
            structlog.processors.JSONRenderer(serializer=json.dumps, default=str)
        ]
    else:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=False)]

    log_level = _LOG_LEVELS.get(level.upper(), logging.INFO)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    setup_standard_logging_bridge(level=level)


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)
        **initial_values: Initial bound values

    Returns:
        Configured structlog BoundLogger
    """
    logger = structlog.get_logger(name)

    if initial_values:
        logger = logger.bind(**initial_values)

    return logger


class LogContext:
    """
    Context manager for adding temporary log context.

    Example:
        >>> with LogContext(stage="factor_runtime", factor="momentum"):
        ...     logger.info("evaluating")
    """

    def __init__(self, **context: Any) -> None:
        self.context = context

    def __enter__(self) -> "LogContext":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())


class TimedOperation:
    """
    Context manager for timing operations.

    Example:
        >>> with TimedOperation("factor_evaluation") as timer:
        ...     run_factors()
        >>> print(f"Duration: {timer.duration_ms}ms")
    """

    def __init__(self, operation_name: str, logger: structlog.BoundLogger | None = None) -> None:
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_ms: float = 0.0

    def __enter__(self) -> "TimedOperation":
        self.start_time = datetime.now(timezone.utc)
        self.logger.debug(f"{self.operation_name}_started")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.end_time = datetime.now(timezone.utc)
        if self.start_time:
            self.duration_ms = (self.end_time - self.start_time).total_seconds() * 1000

        status = "success" if exc_type is None else "error"
        self.logger.info(
            f"{self.operation_name}_completed",
            status=status,
            duration_ms=round(self.duration_ms, 2),
            error=str(exc_val) if exc_val else None,
        )


# =============================================================================
# Standard logging -> structlog bridge
# =============================================================================


class StructlogHandler(logging.Handler):
    """
    Standard logging handler that forwards records to structlog.

    Modules that use logging.getLogger(__name__) end up in the same
    structured stream as the structlog-native ones.
    """

    def emit(self, record: logging.LogRecord) -> None:
        """Forward a log record to structlog."""
        logger = structlog.get_logger(record.name)

        level_method_map = {
            logging.DEBUG: logger.debug,
            logging.INFO: logger.info,
            logging.WARNING: logger.warning,
            logging.ERROR: logger.error,
            logging.CRITICAL: logger.critical,
        }
        log_method = level_method_map.get(record.levelno, logger.info)

        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            self.handleError(record)
            return

        log_method(
            message,
            component=record.name,
            exc_info=record.exc_info if record.exc_info else None,
        )


def setup_standard_logging_bridge(level: str = "INFO") -> None:
    """
    Configure standard logging to forward to structlog.

    Args:
        level: Minimum log level to capture (DEBUG, INFO, WARNING, ERROR)
    """
    log_level = _LOG_LEVELS.get(level.upper(), logging.INFO)

    root_logger = logging.getLogger("factorlab")
    root_logger.setLevel(log_level)
    root_logger.propagate = False

    if not any(isinstance(h, StructlogHandler) for h in root_logger.handlers):
        root_logger.addHandler(StructlogHandler())
