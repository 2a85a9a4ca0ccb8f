"""Utility modules."""

from factorlab.utils.logger import (
    LogContext,
    TimedOperation,
    generate_run_id,
    get_logger,
    get_run_id,
    set_run_id,
    setup_logging,
)

__all__ = [
    "LogContext",
    "TimedOperation",
    "generate_run_id",
    "get_logger",
    "get_run_id",
    "set_run_id",
    "setup_logging",
]
