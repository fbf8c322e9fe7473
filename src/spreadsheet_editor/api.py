"""FastAPI application for the spreadsheet editor."""

import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import (
    FastAPI,
    File,
    HTTPException,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from spreadsheet_editor.config import settings, validate_settings_on_startup
from spreadsheet_editor.models import (
    AddSheetRequest,
    CellEditRequest,
    CellRangeModel,
    DisplayResponse,
    DocumentResponse,
    ErrorDetail,
    HealthResponse,
    RenameDocumentRequest,
    RenameSheetRequest,
    ResolvedStyleModel,
    SaveResponse,
    SelectionModel,
    SelectionResponse,
    SheetTab,
    StyleAction,
    StyleResponse,
)
from spreadsheet_editor.services.autosave import Autosaver
from spreadsheet_editor.services.document_service import DocumentService
from spreadsheet_editor.services.document_store import DocumentRecord, DocumentStore
from spreadsheet_editor.services.exporter import XLSX_MEDIA_TYPE
from spreadsheet_editor.services.sheet_editor import CellRange, SheetEditor
from spreadsheet_editor.utils.exceptions import (
    ErrorCode,
    SessionNotOpenError,
    SpreadsheetEditorError,
    ValidationError,
)
from spreadsheet_editor.utils.logging import (
    LogContext,
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    set_request_id,
)

# Configure structured logging using settings
configure_logging(
    level=settings.log_level_int,
    use_structured_formatter=True,
)
logger = get_logger(__name__)

TOGGLE_ACTIONS = {"toggle_bold", "toggle_italic", "toggle_strikethrough"}
COLOR_ACTIONS = {"set_background_color", "set_text_color", "set_alignment"}


def _document_response(record: DocumentRecord) -> DocumentResponse:
    return DocumentResponse(
        id=record.id,
        file_name=record.file_name,
        file_type=record.file_type,
        has_raw_file=record.raw_file_ref is not None,
        parsed=record.edited_data is not None,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _display_response(document_id: str, editor: SheetEditor) -> DisplayResponse:
    selection = editor.selection
    return DisplayResponse(
        document_id=document_id,
        active_sheet_index=editor.active_sheet_index,
        sheets=[
            SheetTab(
                index=sheet.index,
                name=sheet.name,
                row_count=sheet.config.row_count if sheet.config else 0,
                column_count=sheet.config.column_count if sheet.config else 0,
            )
            for sheet in editor.workbook.sheets
        ],
        grid=editor.display_grid(),
        selection=(
            SelectionModel(row=selection.row, col=selection.col) if selection else None
        ),
        formula_bar_value=editor.formula_bar_value,
        has_unsaved_changes=editor.has_unsaved_changes,
        notice=editor.notice,
    )


def _style_response(editor: SheetEditor, row: int, col: int) -> StyleResponse:
    resolved = editor.resolve_cell_style(row, col)
    return StyleResponse(
        row=row,
        col=col,
        style=ResolvedStyleModel(
            background_color=resolved.background_color,
            text_color=resolved.text_color,
            bold=resolved.bold,
            italic=resolved.italic,
            strikethrough=resolved.strikethrough,
            alignment=resolved.alignment,
            border=resolved.border,
        ),
        css=resolved.to_css(),
    )


def _cell_range(model: CellRangeModel | None) -> CellRange | None:
    if model is None:
        return None
    return CellRange(
        start_row=model.start_row,
        start_col=model.start_col,
        end_row=model.end_row if model.end_row is not None else model.start_row,
        end_col=model.end_col if model.end_col is not None else model.start_col,
    )


def apply_style_action(editor: SheetEditor, action: StyleAction) -> None:
    """Dispatch a formatting request to the editor.

    Raises:
        ValidationError: If the action is unknown or its value has the wrong type.
    """
    cell_range = _cell_range(action.range)
    if action.action in TOGGLE_ACTIONS:
        getattr(editor, action.action)(cell_range)
    elif action.action in COLOR_ACTIONS:
        if action.value is not None and not isinstance(action.value, str):
            raise ValidationError(
                f"'{action.action}' expects a string value", field="value"
            )
        getattr(editor, action.action)(action.value, cell_range)
    elif action.action == "set_borders":
        editor.set_borders(bool(action.value), cell_range)
    elif action.action == "clear_formatting":
        editor.clear_formatting(cell_range)
    else:
        raise ValidationError(
            f"Unknown formatting action: {action.action}", field="action"
        )


def create_app(document_service: DocumentService | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        try:
            yield
        finally:
            for autosaver in app.state.autosavers.values():
                await autosaver.close()
            app.state.autosavers.clear()
            app.state.sessions.clear()

    app = FastAPI(
        title="Spreadsheet Editor API",
        description=(
            "Upload tabular files, edit them sheet by sheet with live formula "
            "evaluation and formatting, and save or export the result."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.document_service = document_service or DocumentService(
        DocumentStore(settings.storage_dir)
    )
    app.state.sessions = {}
    app.state.autosavers = {}

    # Configure CORS using settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Validate settings on startup
    validate_settings_on_startup(settings)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next: Any) -> Any:
        """Middleware to assign and track request IDs.

        This middleware:
        1. Generates a unique request ID for each request
        2. Sets it in context for logging correlation
        3. Adds it to the response headers
        4. Clears context after request completes
        """
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        set_request_id(request_id)

        request.state.request_id = request_id

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()

    @app.exception_handler(SpreadsheetEditorError)
    async def editor_exception_handler(
        request: Request, exc: SpreadsheetEditorError
    ) -> JSONResponse:
        """Return structured error responses for application exceptions."""
        request_id = getattr(request.state, "request_id", get_request_id())
        logger.error(
            f"Editor Error: {exc.message}",
            error_code=exc.error_code.value,
            http_status=exc.http_status,
        )
        return JSONResponse(
            status_code=exc.http_status,
            content=ErrorDetail(
                detail=exc.message,
                error_code=exc.error_code.value,
                details=exc.details if exc.details else None,
                request_id=request_id,
            ).model_dump(exclude_none=True),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        """Custom exception handler for HTTP exceptions."""
        request_id = getattr(request.state, "request_id", get_request_id())
        logger.warning(
            f"HTTP Error: {exc.detail}",
            status_code=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorDetail(
                detail=str(exc.detail),
                request_id=request_id,
            ).model_dump(exclude_none=True),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all exception handler for unexpected errors.

        Logs the full exception and returns a generic error response
        to avoid leaking internal details.
        """
        request_id = getattr(request.state, "request_id", get_request_id())
        logger.exception(
            f"Unexpected error: {type(exc).__name__}",
            error_type=type(exc).__name__,
        )
        if settings.debug:
            detail = f"Internal server error: {type(exc).__name__}: {exc}"
        else:
            detail = "Internal server error. Please try again later."

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorDetail(
                detail=detail,
                error_code=ErrorCode.INTERNAL_ERROR.value,
                request_id=request_id,
            ).model_dump(exclude_none=True),
        )

    def get_service(request: Request) -> DocumentService:
        service: DocumentService = request.app.state.document_service
        return service

    def get_session(request: Request, document_id: str) -> SheetEditor:
        editor: SheetEditor | None = request.app.state.sessions.get(document_id)
        if editor is None:
            raise SessionNotOpenError(document_id)
        return editor

    def note_change(request: Request, document_id: str, editor: SheetEditor) -> None:
        """Restart the session's autosave countdown after a change."""
        autosaver: Autosaver | None = request.app.state.autosavers.get(document_id)
        if autosaver is not None and editor.has_unsaved_changes:
            autosaver.schedule()

    async def close_autosaver(request: Request, document_id: str) -> None:
        autosaver: Autosaver | None = request.app.state.autosavers.pop(
            document_id, None
        )
        if autosaver is not None:
            await autosaver.close()

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request) -> dict[str, Any]:
        """Check the health status of the service."""
        request_id = getattr(request.state, "request_id", None)
        logger.debug("Health check requested", request_id=request_id)
        return {
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": "0.1.0",
        }

    @app.post(
        "/documents",
        response_model=DocumentResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Documents"],
        responses={
            400: {"model": ErrorDetail, "description": "Missing or unsupported file"},
            413: {"model": ErrorDetail, "description": "File too large"},
        },
    )
    async def upload_document(
        request: Request,
        file: Annotated[UploadFile, File(description="xlsx, xlsm or csv file")],
    ) -> DocumentResponse:
        """Upload a tabular file and parse it into sheets."""
        if file.filename is None or file.filename == "":
            logger.warning("Upload request missing file")
            raise ValidationError(
                message="A file must be provided",
                field="file",
            )
        content = await file.read()
        record = await get_service(request).create_document(
            file.filename, content, file_type=file.content_type
        )
        return _document_response(record)

    @app.get(
        "/documents/{document_id}",
        response_model=DocumentResponse,
        tags=["Documents"],
    )
    async def get_document(request: Request, document_id: str) -> DocumentResponse:
        record = await get_service(request).get_document(document_id)
        return _document_response(record)

    @app.patch(
        "/documents/{document_id}",
        response_model=DocumentResponse,
        tags=["Documents"],
    )
    async def rename_document(
        request: Request, document_id: str, body: RenameDocumentRequest
    ) -> DocumentResponse:
        record = await get_service(request).rename_document(
            document_id, body.file_name
        )
        return _document_response(record)

    @app.delete(
        "/documents/{document_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        tags=["Documents"],
    )
    async def delete_document(request: Request, document_id: str) -> Response:
        await get_service(request).delete_document(document_id)
        await close_autosaver(request, document_id)
        request.app.state.sessions.pop(document_id, None)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post(
        "/documents/{document_id}/open",
        response_model=DisplayResponse,
        tags=["Editing"],
    )
    async def open_document(request: Request, document_id: str) -> DisplayResponse:
        """Open a document for editing, replacing any existing session."""
        service = get_service(request)
        editor = await service.open_document(document_id)
        await close_autosaver(request, document_id)
        request.app.state.sessions[document_id] = editor
        request.app.state.autosavers[document_id] = service.autosaver_for(
            document_id, editor
        )
        return _display_response(document_id, editor)

    @app.get(
        "/documents/{document_id}/display",
        response_model=DisplayResponse,
        tags=["Editing"],
    )
    async def get_display(request: Request, document_id: str) -> DisplayResponse:
        editor = get_session(request, document_id)
        return _display_response(document_id, editor)

    @app.put(
        "/documents/{document_id}/cells",
        response_model=DisplayResponse,
        tags=["Editing"],
    )
    async def edit_cells(
        request: Request, document_id: str, body: CellEditRequest
    ) -> DisplayResponse:
        """Apply grid edits and/or a formula-bar edit to the active sheet."""
        editor = get_session(request, document_id)
        with LogContext(document_id=document_id):
            for edit in body.edits:
                editor.edit_cell(edit.row, edit.col, edit.value)
            if body.formula_bar_value is not None:
                editor.edit_from_formula_bar(body.formula_bar_value)
        note_change(request, document_id, editor)
        return _display_response(document_id, editor)

    @app.post(
        "/documents/{document_id}/selection",
        response_model=SelectionResponse,
        tags=["Editing"],
    )
    async def select_cell(
        request: Request, document_id: str, body: SelectionModel
    ) -> SelectionResponse:
        editor = get_session(request, document_id)
        changed = editor.select_cell(body.row, body.col)
        return SelectionResponse(
            selection=body,
            formula_bar_value=editor.formula_bar_value,
            changed=changed,
        )

    @app.post(
        "/documents/{document_id}/recalculate",
        response_model=DisplayResponse,
        tags=["Editing"],
    )
    async def recalculate(request: Request, document_id: str) -> DisplayResponse:
        editor = get_session(request, document_id)
        with LogContext(document_id=document_id):
            editor.recalculate()
        return _display_response(document_id, editor)

    @app.post(
        "/documents/{document_id}/sheets",
        response_model=DisplayResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Sheets"],
    )
    async def add_sheet(
        request: Request, document_id: str, body: AddSheetRequest | None = None
    ) -> DisplayResponse:
        editor = get_session(request, document_id)
        with LogContext(document_id=document_id):
            editor.add_sheet(body.name if body else None)
        note_change(request, document_id, editor)
        return _display_response(document_id, editor)

    @app.post(
        "/documents/{document_id}/sheets/{index}/activate",
        response_model=DisplayResponse,
        tags=["Sheets"],
    )
    async def activate_sheet(
        request: Request, document_id: str, index: int
    ) -> DisplayResponse:
        editor = get_session(request, document_id)
        with LogContext(document_id=document_id):
            editor.switch_sheet(index)
        return _display_response(document_id, editor)

    @app.patch(
        "/documents/{document_id}/sheets/{index}",
        response_model=DisplayResponse,
        tags=["Sheets"],
    )
    async def rename_sheet(
        request: Request, document_id: str, index: int, body: RenameSheetRequest
    ) -> DisplayResponse:
        editor = get_session(request, document_id)
        with LogContext(document_id=document_id):
            editor.rename_sheet(index, body.name)
        note_change(request, document_id, editor)
        return _display_response(document_id, editor)

    @app.delete(
        "/documents/{document_id}/sheets/{index}",
        response_model=DisplayResponse,
        tags=["Sheets"],
        responses={409: {"model": ErrorDetail, "description": "Last sheet"}},
    )
    async def delete_sheet(
        request: Request, document_id: str, index: int
    ) -> DisplayResponse:
        editor = get_session(request, document_id)
        with LogContext(document_id=document_id):
            editor.delete_sheet(index)
        note_change(request, document_id, editor)
        return _display_response(document_id, editor)

    @app.post(
        "/documents/{document_id}/styles",
        response_model=StyleResponse,
        tags=["Formatting"],
    )
    async def apply_style(
        request: Request, document_id: str, body: StyleAction
    ) -> StyleResponse:
        """Apply a formatting action; returns the first cell's resolved style."""
        editor = get_session(request, document_id)
        apply_style_action(editor, body)
        note_change(request, document_id, editor)
        if body.range is not None:
            row, col = body.range.start_row, body.range.start_col
        else:
            assert editor.selection is not None
            row, col = editor.selection.row, editor.selection.col
        return _style_response(editor, row, col)

    @app.get(
        "/documents/{document_id}/cells/{row}/{col}/style",
        response_model=StyleResponse,
        tags=["Formatting"],
    )
    async def get_cell_style(
        request: Request, document_id: str, row: int, col: int
    ) -> StyleResponse:
        editor = get_session(request, document_id)
        return _style_response(editor, row, col)

    @app.post(
        "/documents/{document_id}/save",
        response_model=SaveResponse,
        tags=["Documents"],
        responses={503: {"model": ErrorDetail, "description": "Write failed"}},
    )
    async def save_document(request: Request, document_id: str) -> SaveResponse:
        editor = get_session(request, document_id)
        autosaver: Autosaver | None = request.app.state.autosavers.get(document_id)
        if autosaver is not None:
            autosaver.cancel()
        record = await get_service(request).save_document(document_id, editor)
        return SaveResponse(
            document_id=document_id,
            saved_at=record.updated_at,
            sheet_count=len(editor.workbook.sheets),
        )

    @app.get("/documents/{document_id}/export", tags=["Documents"])
    async def export_document(request: Request, document_id: str) -> Response:
        """Download the workbook as xlsx (values and formulas only)."""
        editor = get_session(request, document_id)
        content, file_name = await get_service(request).export_document(
            document_id, editor
        )
        return Response(
            content=content,
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
        )

    return app


app = create_app()
