"""Utilities package for the spreadsheet editor.

This package provides:
- Centralized exception classes (exceptions.py)
- Structured logging utilities (logging.py)
"""

from spreadsheet_editor.utils.exceptions import (
    DocumentNotFoundError,
    DocumentShapeError,
    ErrorCode,
    EvaluationError,
    FileError,
    HTTPStatusMixin,
    SheetIntegrityError,
    SpreadsheetEditorError,
    StorageError,
    UnsupportedFormatError,
    ValidationError,
)
from spreadsheet_editor.utils.logging import (
    LogContext,
    StructuredLogger,
    get_logger,
    get_request_id,
    set_request_id,
)

__all__ = [
    # Exceptions
    "DocumentNotFoundError",
    "DocumentShapeError",
    "ErrorCode",
    "EvaluationError",
    "FileError",
    "HTTPStatusMixin",
    "SheetIntegrityError",
    "SpreadsheetEditorError",
    "StorageError",
    "UnsupportedFormatError",
    "ValidationError",
    # Logging
    "LogContext",
    "StructuredLogger",
    "get_logger",
    "get_request_id",
    "set_request_id",
]
