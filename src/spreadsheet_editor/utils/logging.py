"""Structured logging utilities for the spreadsheet editor.

This module provides:
- Request ID tracking using contextvars for correlation across a request
- Document ID tracking so every engine log line names the open document
- Structured logging with consistent format and metadata
- Performance metrics logging helpers

Usage:
    from spreadsheet_editor.utils.logging import (
        get_logger,
        set_request_id,
        LogContext,
    )

    logger = get_logger(__name__)

    # Set request ID for correlation
    set_request_id("abc-123")

    # Log with context
    with LogContext(document_id="doc-456", sheet="Sheet1"):
        logger.info("Projecting sheet")

    # Time an operation
    with timed_operation(logger, "projection") as metrics:
        metrics.cells_evaluated = 12
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# Context variables for request tracking
_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_document_id_var: ContextVar[str | None] = ContextVar("document_id", default=None)
_extra_context_var: ContextVar[dict[str, Any] | None] = ContextVar(
    "extra_context", default=None
)


def get_request_id() -> str | None:
    """Get the current request ID from context.

    Returns:
        The current request ID or None if not set.
    """
    return _request_id_var.get()


def set_request_id(request_id: str | None) -> None:
    """Set the request ID in context.

    Args:
        request_id: The request ID to set, or None to clear.
    """
    _request_id_var.set(request_id)


def get_document_id() -> str | None:
    """Get the current document ID from context.

    Returns:
        The current document ID or None if not set.
    """
    return _document_id_var.get()


def set_document_id(document_id: str | None) -> None:
    """Set the document ID in context.

    Args:
        document_id: The document ID to set, or None to clear.
    """
    _document_id_var.set(document_id)


def get_extra_context() -> dict[str, Any]:
    """Get additional context from context vars.

    Returns:
        Dictionary of extra context values.
    """
    ctx = _extra_context_var.get()
    return ctx if ctx is not None else {}


def set_extra_context(context: dict[str, Any]) -> None:
    """Set additional context in context vars.

    Args:
        context: Dictionary of extra context values.
    """
    _extra_context_var.set(context)


def clear_context() -> None:
    """Clear all context variables."""
    _request_id_var.set(None)
    _document_id_var.set(None)
    _extra_context_var.set(None)


@dataclass
class PerformanceMetrics:
    """Container for performance metrics during processing.

    Attributes:
        operation: Name of the operation being measured.
        start_time: When the operation started.
        end_time: When the operation ended.
        duration_seconds: Duration in seconds.
        sheets_processed: Number of sheets materialized or decoded.
        cells_evaluated: Number of formula cells the engine computed.
        evaluation_failures: Number of formula cells that kept cached values.
        attempts: Number of I/O attempts made.
        custom_metrics: Additional custom metrics.
    """

    operation: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    duration_seconds: float = 0.0
    sheets_processed: int = 0
    cells_evaluated: int = 0
    evaluation_failures: int = 0
    attempts: int = 0
    custom_metrics: dict[str, Any] = field(default_factory=dict)

    def finish(self) -> None:
        """Mark the operation as complete and calculate duration."""
        self.end_time = datetime.now(UTC)
        self.duration_seconds = (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging.

        Returns:
            Dictionary with all non-zero metrics.
        """
        result: dict[str, Any] = {
            "operation": self.operation,
            "duration_seconds": self.duration_seconds,
        }
        if self.sheets_processed > 0:
            result["sheets_processed"] = self.sheets_processed
        if self.cells_evaluated > 0:
            result["cells_evaluated"] = self.cells_evaluated
        if self.evaluation_failures > 0:
            result["evaluation_failures"] = self.evaluation_failures
        if self.attempts > 0:
            result["attempts"] = self.attempts
        if self.custom_metrics:
            result["custom_metrics"] = self.custom_metrics
        return result


class StructuredLogFormatter(logging.Formatter):
    """Custom log formatter that includes context variables.

    This formatter adds request_id and document_id to log records when
    available, creating a consistent structured format for all log messages.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with context information.

        Args:
            record: The log record to format.

        Returns:
            Formatted log message string.
        """
        request_id = get_request_id()
        document_id = get_document_id()

        prefix_parts = []
        if request_id:
            prefix_parts.append(f"request_id={request_id}")
        if document_id:
            prefix_parts.append(f"document_id={document_id}")

        extra = get_extra_context()
        for key, value in extra.items():
            prefix_parts.append(f"{key}={value}")

        prefix = f"[{' '.join(prefix_parts)}] " if prefix_parts else ""

        original_msg = record.msg
        record.msg = f"{prefix}{original_msg}"
        result = super().format(record)
        record.msg = original_msg

        return result


class StructuredLogger:
    """Enhanced logger with structured logging capabilities.

    Wraps a standard Python logger with additional methods for:
    - Logging with automatic key=value formatting
    - Performance metrics logging
    - Structured error logging with exception details
    """

    def __init__(self, name: str) -> None:
        """Initialize the structured logger.

        Args:
            name: Logger name (typically __name__ of the module).
        """
        self._logger = logging.getLogger(name)
        self._name = name

    @property
    def logger(self) -> logging.Logger:
        """Access the underlying Python logger."""
        return self._logger

    def _build_message(
        self,
        message: str,
        **kwargs: Any,
    ) -> str:
        """Build a message with structured key-value pairs.

        Args:
            message: Base message.
            **kwargs: Additional key-value pairs to include.

        Returns:
            Formatted message string.
        """
        if not kwargs:
            return message

        parts = [f"{k}={v}" for k, v in kwargs.items()]
        return f"{message} | {', '.join(parts)}"

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log a debug message."""
        self._logger.debug(self._build_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        """Log an info message."""
        self._logger.info(self._build_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log a warning message."""
        self._logger.warning(self._build_message(message, **kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Log an error message.

        Args:
            message: Log message.
            exc_info: Whether to include exception info.
            **kwargs: Additional structured data.
        """
        self._logger.error(self._build_message(message, **kwargs), exc_info=exc_info)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log an exception with traceback."""
        self._logger.exception(self._build_message(message, **kwargs))

    def log_performance(self, metrics: PerformanceMetrics) -> None:
        """Log performance metrics.

        Args:
            metrics: Performance metrics to log.
        """
        self.info(
            f"Performance: {metrics.operation}",
            **metrics.to_dict(),
        )


class LogContext:
    """Context manager for adding temporary context to logs.

    Usage:
        with LogContext(document_id="123", sheet="Sheet1"):
            logger.info("Flushing...")  # Will include document_id and sheet
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize with context values.

        Args:
            **kwargs: Key-value pairs to add to log context.
        """
        self._new_context = kwargs
        self._old_context: dict[str, Any] = {}
        self._old_document_id: str | None = None
        self._old_request_id: str | None = None

    def __enter__(self) -> "LogContext":
        """Enter the context, saving old values and setting new ones."""
        self._old_context = get_extra_context().copy()
        self._old_document_id = get_document_id()
        self._old_request_id = get_request_id()

        new_context = dict(self._new_context)
        document_id = new_context.pop("document_id", None)
        request_id = new_context.pop("request_id", None)

        if document_id is not None:
            set_document_id(document_id)
        if request_id is not None:
            set_request_id(request_id)

        merged = self._old_context.copy()
        merged.update(new_context)
        set_extra_context(merged)

        return self

    def __exit__(self, *args: Any) -> None:
        """Exit the context, restoring old values."""
        set_extra_context(self._old_context)
        set_document_id(self._old_document_id)
        set_request_id(self._old_request_id)


@contextmanager
def timed_operation(
    logger: StructuredLogger,
    operation: str,
) -> Generator[PerformanceMetrics, None, None]:
    """Context manager for timing operations.

    Usage:
        with timed_operation(logger, "projection") as metrics:
            metrics.cells_evaluated = 10

        # Automatically logs: "Performance: projection | duration_seconds=..."

    Args:
        logger: Logger to use for output.
        operation: Name of the operation.

    Yields:
        PerformanceMetrics instance for tracking.
    """
    metrics = PerformanceMetrics(operation=operation)
    try:
        yield metrics
    finally:
        metrics.finish()
        logger.log_performance(metrics)


def configure_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
    use_structured_formatter: bool = True,
) -> None:
    """Configure logging for the application.

    Args:
        level: Log level (int or string like "INFO").
        format_string: Custom format string (uses default if None).
        use_structured_formatter: Whether to use the structured formatter.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(level)

    formatter: logging.Formatter
    if use_structured_formatter:
        formatter = StructuredLogFormatter(format_string)
    else:
        formatter = logging.Formatter(format_string)

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module.

    This is the primary way to get a logger in the application.

    Args:
        name: Logger name (typically __name__).

    Returns:
        StructuredLogger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("Sheet switched", from_index=0, to_index=2)
    """
    return StructuredLogger(name)
