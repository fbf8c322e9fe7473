"""Tests for the centralized exception classes."""

import pytest

from spreadsheet_editor.utils.exceptions import (
    DocumentNotFoundError,
    DocumentShapeError,
    ErrorCode,
    EvaluationError,
    FileError,
    FileTooLargeError,
    LastSheetDeletionError,
    NoSelectionError,
    SessionNotOpenError,
    SheetIndexError,
    SheetIntegrityError,
    SheetNameError,
    SpreadsheetEditorError,
    StorageError,
    StorageReadError,
    StorageWriteError,
    UnsupportedFormatError,
    ValidationError,
)


class TestErrorCode:
    """Tests for ErrorCode enum."""

    def test_error_codes_are_unique(self) -> None:
        values = [code.value for code in ErrorCode]
        assert len(values) == len(set(values))

    def test_error_code_format(self) -> None:
        for code in ErrorCode:
            assert code.value.startswith("E")
            assert len(code.value) == 5
            assert code.value[1:].isdigit()

    @pytest.mark.parametrize(
        ("codes", "prefix"),
        [
            (
                [ErrorCode.FILE_TOO_LARGE, ErrorCode.UNSUPPORTED_FORMAT, ErrorCode.DECODE_FAILED],
                "E1",
            ),
            ([ErrorCode.INVALID_DOCUMENT_SHAPE, ErrorCode.EMPTY_DOCUMENT], "E2"),
            ([ErrorCode.DOCUMENT_NOT_FOUND, ErrorCode.STORAGE_WRITE_FAILED], "E3"),
            ([ErrorCode.EVALUATION_FAILED, ErrorCode.CIRCULAR_REFERENCE], "E4"),
            ([ErrorCode.LAST_SHEET_DELETION, ErrorCode.NO_SELECTION], "E5"),
        ],
    )
    def test_code_groups(self, codes: list[ErrorCode], prefix: str) -> None:
        for code in codes:
            assert code.value.startswith(prefix)


class TestSpreadsheetEditorError:
    """Tests for the base exception class."""

    def test_basic_initialization(self) -> None:
        error = SpreadsheetEditorError("Something broke")
        assert error.message == "Something broke"
        assert error.error_code is ErrorCode.INTERNAL_ERROR
        assert error.details == {}
        assert str(error) == "[E9001] Something broke"

    def test_to_dict(self) -> None:
        error = SpreadsheetEditorError(
            "Bad", ErrorCode.VALIDATION_FAILED, details={"field": "name"}
        )
        assert error.to_dict() == {
            "error_code": "E9003",
            "message": "Bad",
            "details": {"field": "name"},
        }

    def test_to_dict_without_details(self) -> None:
        assert "details" not in SpreadsheetEditorError("Bad").to_dict()


class TestFileErrors:
    """Tests for upload and decode errors."""

    def test_file_too_large_error(self) -> None:
        error = FileTooLargeError(file_size=20, max_size=10, file_name="big.xlsx")
        assert error.error_code is ErrorCode.FILE_TOO_LARGE
        assert error.details == {
            "file_size_bytes": 20,
            "max_size_bytes": 10,
            "file_name": "big.xlsx",
        }

    def test_unsupported_format_error(self) -> None:
        error = UnsupportedFormatError("Nope", file_type="image/png")
        assert error.error_code is ErrorCode.UNSUPPORTED_FORMAT
        assert error.details["file_type"] == "image/png"

    def test_decode_failure(self) -> None:
        error = FileError("Corrupt", error_code=ErrorCode.DECODE_FAILED, file_name="a.xlsx")
        assert error.to_dict()["error_code"] == "E1004"
        assert error.file_name == "a.xlsx"


class TestStorageErrors:
    """Tests for persistence errors."""

    def test_storage_errors_are_retryable(self) -> None:
        error = StorageReadError("Gone", document_id="doc-1")
        assert error.retryable is True
        assert error.details == {"document_id": "doc-1", "retryable": True}

    def test_write_error_records_attempts(self) -> None:
        error = StorageWriteError("Failed", document_id="doc-1", attempts=3)
        assert error.error_code is ErrorCode.STORAGE_WRITE_FAILED
        assert error.attempts == 3
        assert error.details["attempts"] == 3

    def test_not_found_and_session_errors(self) -> None:
        assert DocumentNotFoundError("doc-1").message == "Document not found: doc-1"
        assert SessionNotOpenError("doc-1").details == {"document_id": "doc-1"}


class TestSheetIntegrityErrors:
    """Tests for rejected sheet operations."""

    def test_sheet_index_error(self) -> None:
        error = SheetIndexError(index=5, sheet_count=3)
        assert error.message == "Sheet index 5 is out of range (0-2)"
        assert error.details == {"index": 5, "sheet_count": 3}

    def test_sheet_name_error(self) -> None:
        error = SheetNameError("Taken", name="Sheet1")
        assert error.error_code is ErrorCode.INVALID_SHEET_NAME
        assert error.name == "Sheet1"

    def test_last_sheet_and_selection_errors(self) -> None:
        assert LastSheetDeletionError().error_code is ErrorCode.LAST_SHEET_DELETION
        assert NoSelectionError().error_code is ErrorCode.NO_SELECTION


class TestEvaluationError:
    def test_location_details(self) -> None:
        error = EvaluationError(
            "Cycle",
            ErrorCode.CIRCULAR_REFERENCE,
            sheet_name="Sheet1",
            address="B1",
            formula="=A1",
        )
        assert error.details == {"sheet_name": "Sheet1", "address": "B1", "formula": "=A1"}


class TestValidationError:
    def test_validation_error(self) -> None:
        error = ValidationError("Bad alignment", field="alignment", errors=["x"])
        assert error.error_code is ErrorCode.VALIDATION_FAILED
        assert error.details == {"field": "alignment", "validation_errors": ["x"]}


class TestHTTPStatusMapping:
    """Tests for HTTP status code mapping."""

    def test_http_status_codes(self) -> None:
        # 400 Bad Request
        assert FileError("test").http_status == 400
        assert UnsupportedFormatError("test").http_status == 400
        assert SheetNameError("test").http_status == 400
        assert NoSelectionError().http_status == 400
        assert ValidationError("test").http_status == 400

        # 404 Not Found
        assert DocumentNotFoundError("doc").http_status == 404
        assert SheetIndexError(3, 1).http_status == 404

        # 409 Conflict
        assert SessionNotOpenError("doc").http_status == 409
        assert LastSheetDeletionError().http_status == 409

        # 413 Payload Too Large
        assert FileTooLargeError(10, 5).get_http_status() == 413

        # 422 Unprocessable
        assert DocumentShapeError("test").http_status == 422
        assert EvaluationError("test").http_status == 422

        # 500 / 503
        assert SpreadsheetEditorError("test").http_status == 500
        assert StorageWriteError("test").http_status == 503


class TestExceptionInheritance:
    """Tests for exception inheritance hierarchy."""

    def test_all_exceptions_inherit_from_base(self) -> None:
        for exc_class in [
            FileError,
            DocumentShapeError,
            DocumentNotFoundError,
            SessionNotOpenError,
            StorageError,
            EvaluationError,
            SheetIntegrityError,
            ValidationError,
        ]:
            assert issubclass(exc_class, SpreadsheetEditorError)

    def test_grouped_hierarchy(self) -> None:
        assert issubclass(FileTooLargeError, FileError)
        assert issubclass(UnsupportedFormatError, FileError)
        assert issubclass(StorageReadError, StorageError)
        assert issubclass(StorageWriteError, StorageError)
        for exc_class in [
            LastSheetDeletionError,
            SheetIndexError,
            SheetNameError,
            NoSelectionError,
        ]:
            assert issubclass(exc_class, SheetIntegrityError)
