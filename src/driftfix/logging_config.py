"""
Structured logging configuration for DriftFix.

Every log line is a JSON object with standard fields (timestamp, level,
logger, run_id, message) plus any context fields passed by the caller.
The run ID ties together all lines emitted during one engine invocation
(normalize → classify → remediate), which is what an operator greps for
when a scheduled drift run misbehaves.

Log Format:
    {
        "timestamp": "2026-03-02T07:00:00.123+00:00",
        "level": "INFO",
        "logger": "driftfix.executor",
        "run_id": "5f0c...",
        "message": "Applied change",
        "address": "aws_s3_bucket.assets",
        "outcome": "applied"
    }

Usage:
    from driftfix.logging_config import RunContext, get_logger, log_with_context

    logger = get_logger(__name__)

    with RunContext() as run_id:
        log_with_context(logger, "info", "Starting drift run", resources=12)
"""

import json
import logging
import sys
import uuid
from collections.abc import Callable
from contextvars import ContextVar
from datetime import UTC, datetime
from types import TracebackType
from typing import override

_run_id: ContextVar[str | None] = ContextVar("run_id", default=None)

# LogRecord attributes that are not user supplied context
_STANDARD_ATTRS = frozenset(
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
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


class StructuredFormatter(logging.Formatter):
    """
    Formatter that renders log records as single-line JSON.

    Extra fields attached through ``log_with_context`` become top-level
    keys. Values that are not JSON serializable are rendered with ``str``.
    """

    @override
    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation of log record
        """
        log_entry: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "run_id": _run_id.get(),
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for DriftFix.

    Sends JSON logs to stderr so that stdout stays free for reports
    printed by the CLI. Call once at startup.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(console_handler)

    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get logger for a module."""
    return logging.getLogger(name)


def generate_run_id() -> str:
    """
    Generate a new run ID.

    Returns:
        UUID string identifying one engine invocation
    """
    return str(uuid.uuid4())


def set_run_id(run_id: str | None) -> None:
    """Set run ID for the current context."""
    _ = _run_id.set(run_id)


def get_run_id() -> str | None:
    """
    Get the run ID of the current context.

    Returns:
        Current run ID or None outside of a run
    """
    return _run_id.get()


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: object,
) -> None:
    """
    Log message with additional structured context.

    Args:
        logger: Logger instance
        level: Log level (debug, info, warning, error, critical)
        message: Human-readable log message
        **context: Additional context fields as keyword arguments

    Example:
        >>> log_with_context(
        ...     logger,
        ...     "info",
        ...     "Classified change",
        ...     address="aws_s3_bucket.assets",
        ...     category="SafeAutoRemediate",
        ... )
    """
    log_func: Callable[..., None] = getattr(logger, level.lower())
    log_func(message, extra=dict(context))


class RunContext:
    """
    Context manager scoping a run ID to one engine invocation.

    Restores whatever run ID was active before entering, so nested
    invocations (a CLI command wrapping the engine facade) keep the
    outer ID once the inner block ends.

    Example:
        >>> with RunContext() as run_id:
        ...     report = run_remediation(plan, config, applier)
    """

    def __init__(self, run_id: str | None = None) -> None:
        """
        Initialize run context.

        Args:
            run_id: Optional run ID to use (generates a new one if None)
        """
        self.run_id: str = run_id or generate_run_id()
        self._previous: str | None = None

    def __enter__(self) -> str:
        """
        Enter context and set run ID.

        Returns:
            Run ID for this context
        """
        self._previous = get_run_id()
        set_run_id(self.run_id)
        return self.run_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context and restore the previous run ID."""
        set_run_id(self._previous)
