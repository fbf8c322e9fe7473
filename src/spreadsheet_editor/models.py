"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from spreadsheet_editor.utils.exceptions import ErrorCode


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: str
    version: str


class DocumentResponse(BaseModel):
    """Metadata of a stored document."""

    id: str = Field(..., description="Unique identifier of the document")
    file_name: str = Field(..., description="Original file name")
    file_type: str | None = Field(default=None, description="Declared file type")
    has_raw_file: bool = Field(..., description="Whether the raw upload is stored")
    parsed: bool = Field(
        ..., description="Whether the upload was parsed into sheets on arrival"
    )
    created_at: datetime = Field(..., description="When the document was created")
    updated_at: datetime = Field(..., description="When the document was last saved")


class RenameDocumentRequest(BaseModel):
    file_name: str = Field(..., min_length=1)


class SheetTab(BaseModel):
    """One entry of the sheet-tab bar."""

    index: int
    name: str
    row_count: int
    column_count: int


class SelectionModel(BaseModel):
    row: int = Field(..., ge=0)
    col: int = Field(..., ge=0)


class DisplayResponse(BaseModel):
    """The editor's current live surface."""

    document_id: str
    active_sheet_index: int
    sheets: list[SheetTab]
    grid: list[list[str]] = Field(..., description="Display text of the used range")
    selection: SelectionModel | None = None
    formula_bar_value: str = ""
    has_unsaved_changes: bool = False
    notice: str | None = Field(
        default=None, description="Non-fatal message produced when opening"
    )


class CellEdit(BaseModel):
    row: int = Field(..., ge=0)
    col: int = Field(..., ge=0)
    value: str | int | float | bool | None = None


class CellEditRequest(BaseModel):
    """Grid edits, or a formula-bar edit of the selected cell."""

    edits: list[CellEdit] = Field(default_factory=list)
    formula_bar_value: str | None = Field(
        default=None, description="Formula-bar input for the selected cell"
    )

    @model_validator(mode="after")
    def check_not_empty(self) -> "CellEditRequest":
        if not self.edits and self.formula_bar_value is None:
            raise ValueError("Provide 'edits' or 'formula_bar_value'")
        return self


class SelectionResponse(BaseModel):
    selection: SelectionModel
    formula_bar_value: str
    changed: bool


class AddSheetRequest(BaseModel):
    name: str | None = Field(default=None, description="Name; generated when omitted")


class RenameSheetRequest(BaseModel):
    name: str = Field(..., min_length=1)


class CellRangeModel(BaseModel):
    start_row: int = Field(..., ge=0)
    start_col: int = Field(..., ge=0)
    end_row: int | None = Field(default=None, ge=0)
    end_col: int | None = Field(default=None, ge=0)


class StyleAction(BaseModel):
    """A formatting action on a range (or the selection when omitted)."""

    action: str = Field(
        ...,
        description=(
            "toggle_bold, toggle_italic, toggle_strikethrough, "
            "set_background_color, set_text_color, set_alignment, "
            "set_borders or clear_formatting"
        ),
    )
    value: str | bool | None = None
    range: CellRangeModel | None = None


class ResolvedStyleModel(BaseModel):
    background_color: str | None = None
    text_color: str | None = None
    bold: bool = False
    italic: bool = False
    strikethrough: bool = False
    alignment: str | None = None
    border: str | None = None


class StyleResponse(BaseModel):
    row: int
    col: int
    style: ResolvedStyleModel
    css: dict[str, str]


class SaveResponse(BaseModel):
    document_id: str
    saved_at: datetime
    sheet_count: int


class ErrorDetail(BaseModel):
    """Error detail model for API error responses.

    This model provides structured error responses with:
    - Human-readable error message
    - Machine-readable error code
    - Optional additional details for debugging
    - Optional request ID for correlation
    """

    detail: str = Field(..., description="Human-readable error message")
    error_code: str | None = Field(
        default=None,
        description="Machine-readable error code (e.g., 'E5001')",
    )
    details: dict[str, Any] | None = Field(
        default=None,
        description="Additional error details for debugging",
    )
    request_id: str | None = Field(
        default=None,
        description="Request ID for error correlation",
    )

    @classmethod
    def from_error_code(
        cls,
        error_code: ErrorCode,
        detail: str,
        details: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> "ErrorDetail":
        """Create an ErrorDetail from an ErrorCode enum value.

        Args:
            error_code: The error code enum.
            detail: Human-readable error message.
            details: Optional additional details.
            request_id: Optional request ID.

        Returns:
            ErrorDetail instance.
        """
        return cls(
            detail=detail,
            error_code=error_code.value,
            details=details,
            request_id=request_id,
        )
