"""Centralized exception classes for the spreadsheet editor.

This module provides a hierarchy of custom exceptions with error codes,
HTTP status code mapping, and structured error details for consistent
error handling throughout the application.

Exception Hierarchy:
    SpreadsheetEditorError (base)
    ├── FileError
    │   ├── FileTooLargeError
    │   └── UnsupportedFormatError
    ├── DocumentShapeError
    ├── DocumentNotFoundError
    ├── StorageError
    │   ├── StorageReadError
    │   └── StorageWriteError
    ├── EvaluationError
    ├── SheetIntegrityError
    │   ├── LastSheetDeletionError
    │   ├── SheetIndexError
    │   ├── SheetNameError
    │   └── NoSelectionError
    └── ValidationError

Error Codes:
    All errors have a unique error code (e.g., "E1001") that can be used
    for programmatic error handling and documentation.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Enumeration of all error codes used in the application.

    Error codes are grouped by category:
    - E1xxx: File/upload errors
    - E2xxx: Document shape errors
    - E3xxx: Document storage errors
    - E4xxx: Formula evaluation errors
    - E5xxx: Sheet integrity errors
    - E9xxx: Internal/unexpected errors
    """

    # File errors (E1xxx)
    FILE_TOO_LARGE = "E1001"
    UNSUPPORTED_FORMAT = "E1002"
    FILE_READ_ERROR = "E1003"
    DECODE_FAILED = "E1004"

    # Document shape errors (E2xxx)
    INVALID_DOCUMENT_SHAPE = "E2001"
    INVALID_SHEET_SHAPE = "E2002"
    EMPTY_DOCUMENT = "E2003"

    # Storage errors (E3xxx)
    DOCUMENT_NOT_FOUND = "E3001"
    STORAGE_READ_FAILED = "E3002"
    STORAGE_WRITE_FAILED = "E3003"
    SESSION_NOT_OPEN = "E3004"

    # Evaluation errors (E4xxx)
    EVALUATION_FAILED = "E4001"
    UNSUPPORTED_FORMULA = "E4002"
    CIRCULAR_REFERENCE = "E4003"
    INVALID_REFERENCE = "E4004"

    # Sheet integrity errors (E5xxx)
    LAST_SHEET_DELETION = "E5001"
    SHEET_INDEX_OUT_OF_RANGE = "E5002"
    INVALID_SHEET_NAME = "E5003"
    NO_SELECTION = "E5004"

    # Internal errors (E9xxx)
    INTERNAL_ERROR = "E9001"
    CONFIGURATION_ERROR = "E9002"
    VALIDATION_FAILED = "E9003"
    UNEXPECTED_ERROR = "E9999"


class HTTPStatusMixin:
    """Mixin that provides HTTP status code for exceptions.

    This mixin allows exceptions to declare their appropriate HTTP status code
    for API responses. Subclasses should set the `http_status` class attribute.
    """

    http_status: int = 500

    def get_http_status(self) -> int:
        """Get the HTTP status code for this exception.

        Returns:
            HTTP status code appropriate for this error.
        """
        return self.http_status


class SpreadsheetEditorError(Exception, HTTPStatusMixin):
    """Base exception for all spreadsheet editor errors.

    All custom exceptions in the application should inherit from this class.
    It provides:
    - Unique error codes for programmatic handling
    - HTTP status code mapping for API responses
    - Structured error details for logging and debugging

    Attributes:
        message: Human-readable error message.
        error_code: Unique error code from ErrorCode enum.
        details: Optional dictionary with additional error details.
        http_status: HTTP status code for API responses (default 500).
    """

    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Error code from ErrorCode enum.
            details: Optional additional details about the error.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for API responses.

        Returns:
            Dictionary with error information.
        """
        result: dict[str, Any] = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code.value}] {self.message}"


# =============================================================================
# File Errors (E1xxx)
# =============================================================================


class FileError(SpreadsheetEditorError):
    """Base class for file-related errors."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.FILE_READ_ERROR,
        file_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with file name information.

        Args:
            message: Error message.
            error_code: Error code.
            file_name: Name of the problematic file.
            details: Additional details.
        """
        details = details or {}
        if file_name:
            details["file_name"] = file_name
        super().__init__(message, error_code, details)
        self.file_name = file_name


class FileTooLargeError(FileError):
    """Raised when an upload exceeds the maximum allowed size."""

    http_status: int = 413

    def __init__(
        self,
        file_size: int,
        max_size: int,
        file_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with size information.

        Args:
            file_size: Actual file size in bytes.
            max_size: Maximum allowed size in bytes.
            file_name: Optional file name.
            details: Additional details.
        """
        details = details or {}
        details["file_size_bytes"] = file_size
        details["max_size_bytes"] = max_size
        message = (
            f"File size ({file_size} bytes) exceeds maximum "
            f"allowed size ({max_size} bytes)"
        )
        super().__init__(
            message=message,
            error_code=ErrorCode.FILE_TOO_LARGE,
            file_name=file_name,
            details=details,
        )
        self.file_size = file_size
        self.max_size = max_size


class UnsupportedFormatError(FileError):
    """Raised when raw file bytes are not a decodable tabular format."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        file_type: str | None = None,
        file_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with format information.

        Args:
            message: Error message.
            file_type: Declared or detected file type.
            file_name: Optional file name.
            details: Additional details.
        """
        details = details or {}
        if file_type:
            details["file_type"] = file_type
        super().__init__(
            message=message,
            error_code=ErrorCode.UNSUPPORTED_FORMAT,
            file_name=file_name,
            details=details,
        )
        self.file_type = file_type


# =============================================================================
# Document Shape Errors (E2xxx)
# =============================================================================


class DocumentShapeError(SpreadsheetEditorError):
    """Raised when persisted or decoded data does not match an expected shape.

    Reconciliation catches this locally and falls through to the next
    candidate source; it never reaches API callers from that path.
    """

    http_status: int = 422

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INVALID_DOCUMENT_SHAPE,
        source: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the source that produced the malformed data.

        Args:
            message: Error message.
            error_code: Error code.
            source: Name of the reconciliation source being attempted.
            details: Additional details.
        """
        details = details or {}
        if source:
            details["source"] = source
        super().__init__(message, error_code, details)
        self.source = source


# =============================================================================
# Storage Errors (E3xxx)
# =============================================================================


class DocumentNotFoundError(SpreadsheetEditorError):
    """Raised when a document record does not exist."""

    http_status: int = 404

    def __init__(
        self,
        document_id: str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with document ID.

        Args:
            document_id: The document ID that was not found.
            message: Optional custom message.
            details: Additional details.
        """
        details = details or {}
        details["document_id"] = document_id
        message = message or f"Document not found: {document_id}"
        super().__init__(message, ErrorCode.DOCUMENT_NOT_FOUND, details)
        self.document_id = document_id


class SessionNotOpenError(SpreadsheetEditorError):
    """Raised when an editing operation targets a document that is not open."""

    http_status: int = 409

    def __init__(
        self,
        document_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        details["document_id"] = document_id
        super().__init__(
            f"Document {document_id} is not open for editing",
            ErrorCode.SESSION_NOT_OPEN,
            details,
        )
        self.document_id = document_id


class StorageError(SpreadsheetEditorError):
    """Base class for persistence I/O failures.

    Storage errors are recoverable: the in-memory workbook is unaffected and
    the caller may retry the operation.
    """

    http_status: int = 503
    retryable: bool = True

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        document_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with document ID.

        Args:
            message: Error message.
            error_code: Error code.
            document_id: ID of the affected document.
            details: Additional details.
        """
        details = details or {}
        if document_id:
            details["document_id"] = document_id
        details["retryable"] = self.retryable
        super().__init__(message, error_code, details)
        self.document_id = document_id


class StorageReadError(StorageError):
    """Raised when a document record or raw blob cannot be read."""

    def __init__(
        self,
        message: str,
        document_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code=ErrorCode.STORAGE_READ_FAILED,
            document_id=document_id,
            details=details,
        )


class StorageWriteError(StorageError):
    """Raised when a document record or raw blob cannot be written."""

    def __init__(
        self,
        message: str,
        document_id: str | None = None,
        attempts: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the number of attempts made.

        Args:
            message: Error message.
            document_id: ID of the affected document.
            attempts: How many write attempts were made before giving up.
            details: Additional details.
        """
        details = details or {}
        if attempts is not None:
            details["attempts"] = attempts
        super().__init__(
            message=message,
            error_code=ErrorCode.STORAGE_WRITE_FAILED,
            document_id=document_id,
            details=details,
        )
        self.attempts = attempts


# =============================================================================
# Evaluation Errors (E4xxx)
# =============================================================================


class EvaluationError(SpreadsheetEditorError):
    """Raised when a single formula cannot be evaluated.

    The projection layer logs these and keeps the cell's cached value.
    """

    http_status: int = 422

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.EVALUATION_FAILED,
        sheet_name: str | None = None,
        address: str | None = None,
        formula: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the failing cell location.

        Args:
            message: Error message.
            error_code: Error code.
            sheet_name: Sheet holding the failing formula.
            address: A1 address of the failing cell.
            formula: The formula text.
            details: Additional details.
        """
        details = details or {}
        if sheet_name:
            details["sheet_name"] = sheet_name
        if address:
            details["address"] = address
        if formula:
            details["formula"] = formula
        super().__init__(message, error_code, details)
        self.sheet_name = sheet_name
        self.address = address
        self.formula = formula


# =============================================================================
# Sheet Integrity Errors (E5xxx)
# =============================================================================


class SheetIntegrityError(SpreadsheetEditorError):
    """Base class for operations rejected because they would break invariants.

    Raised before any mutation; the editor state is unchanged.
    """

    http_status: int = 409

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code, details)


class LastSheetDeletionError(SheetIntegrityError):
    """Raised when deleting the only remaining sheet."""

    def __init__(self, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            "Cannot delete the last sheet",
            ErrorCode.LAST_SHEET_DELETION,
            details,
        )


class SheetIndexError(SheetIntegrityError):
    """Raised when a sheet index is outside the workbook."""

    http_status: int = 404

    def __init__(
        self,
        index: int,
        sheet_count: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with index bounds.

        Args:
            index: The requested sheet index.
            sheet_count: Number of sheets in the workbook.
            details: Additional details.
        """
        details = details or {}
        details["index"] = index
        details["sheet_count"] = sheet_count
        super().__init__(
            f"Sheet index {index} is out of range (0-{sheet_count - 1})",
            ErrorCode.SHEET_INDEX_OUT_OF_RANGE,
            details,
        )
        self.index = index
        self.sheet_count = sheet_count


class SheetNameError(SheetIntegrityError):
    """Raised when a sheet name is empty or already used."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if name is not None:
            details["name"] = name
        super().__init__(message, ErrorCode.INVALID_SHEET_NAME, details)
        self.name = name


class NoSelectionError(SheetIntegrityError):
    """Raised when a formula-bar edit arrives with no selected cell."""

    http_status: int = 400

    def __init__(self, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            "Select a cell before editing from the formula bar",
            ErrorCode.NO_SELECTION,
            details,
        )


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(SpreadsheetEditorError):
    """General validation error for input data."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with validation details.

        Args:
            message: Main error message.
            field: Field that failed validation.
            errors: List of validation errors.
            details: Additional details.
        """
        details = details or {}
        if field:
            details["field"] = field
        if errors:
            details["validation_errors"] = errors
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_FAILED,
            details=details,
        )
