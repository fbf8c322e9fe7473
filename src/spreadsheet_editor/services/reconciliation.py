"""Build a valid workbook from whatever a document has stored.

A document reaches the editor in one of several shapes depending on its
history: freshly parsed ``{"sheets": [...]}``, a legacy flat list of records,
only the raw uploaded bytes, or nothing at all. :func:`reconcile` tries each
candidate source in a fixed order and returns the first workbook that can be
built; the last candidate always succeeds.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from spreadsheet_editor.services.raw_file_decoder import RawFileDecoder
from spreadsheet_editor.utils.exceptions import DocumentShapeError, ErrorCode
from spreadsheet_editor.utils.logging import get_logger
from spreadsheet_editor.workbook_document import (
    Cell,
    Sheet,
    SheetConfig,
    Workbook,
    blank_sheet,
    coerce_cell,
    normalize_sheet,
    unique_sheet_names,
)

logger = get_logger(__name__)

EMPTY_DOCUMENT_NOTICE = (
    "No data found in file. Please re-upload or start with a blank sheet."
)


class ReconciliationSource(str, Enum):
    """Which stored form produced the workbook."""

    PERSISTED_SHEETS = "persisted_sheets"
    LEGACY_TABLE = "legacy_table"
    RAW_FILE = "raw_file"
    EMPTY = "empty"


@dataclass
class ReconciliationResult:
    """Outcome of reconciling a document's stored state."""

    workbook: Workbook
    source: ReconciliationSource
    notice: str | None = None


@dataclass
class ReconciliationInput:
    """Everything a candidate source may look at."""

    persisted_blob: Any
    raw_file_bytes: bytes | None
    file_type: str | None
    file_name: str | None
    default_rows: int
    default_cols: int


# A candidate returns a workbook, returns None to pass, or raises to pass.
Attempt = Callable[[ReconciliationInput], Workbook | None]


def _finish(sheets: list[Sheet]) -> Workbook:
    """Normalize sheets, reset indices and settle names."""
    names = unique_sheet_names([sheet.name for sheet in sheets])
    normalized = []
    for position, (sheet, name) in enumerate(zip(sheets, names, strict=True)):
        sheet.name = name
        sheet.index = position
        normalized.append(normalize_sheet(sheet))
    return Workbook(sheets=normalized)


def from_persisted_sheets(source: ReconciliationInput) -> Workbook | None:
    """Accept ``{"sheets": [...]}`` as written by the editor's save path."""
    blob = source.persisted_blob
    if not isinstance(blob, dict):
        return None
    raw_sheets = blob.get("sheets")
    if raw_sheets is None:
        return None
    if not isinstance(raw_sheets, list):
        raise DocumentShapeError(
            "Persisted 'sheets' is not a list",
            source=ReconciliationSource.PERSISTED_SHEETS.value,
        )
    if not raw_sheets:
        return None

    sheets = [
        Sheet.from_json(record, position)
        for position, record in enumerate(raw_sheets)
    ]
    return _finish(sheets)


def from_legacy_table(source: ReconciliationInput) -> Workbook | None:
    """Accept a flat list of records with shared keys.

    The header row is the first record's keys in insertion order; every
    record contributes one row of its values in that order.
    """
    blob = source.persisted_blob
    if not isinstance(blob, list) or not blob:
        return None
    if not all(isinstance(record, dict) for record in blob):
        raise DocumentShapeError(
            "Legacy data contains non-record entries",
            error_code=ErrorCode.INVALID_DOCUMENT_SHAPE,
            source=ReconciliationSource.LEGACY_TABLE.value,
        )

    headers = [str(key) for key in blob[0]]
    keys = list(blob[0])
    if not headers:
        return None

    rows: list[list[Cell]] = [list(headers)]
    for record in blob:
        rows.append([_legacy_value(record.get(key, "")) for key in keys])

    sheet = Sheet(
        name="Sheet1",
        index=0,
        data=rows,
        config=SheetConfig(row_count=len(rows), column_count=len(headers)),
    )
    return _finish([sheet])


def _legacy_value(raw: Any) -> Cell:
    cell = coerce_cell(raw)
    return "" if cell is None else cell


def from_raw_file(source: ReconciliationInput) -> Workbook | None:
    """Decode the originally uploaded bytes."""
    if not source.raw_file_bytes:
        return None
    sheets = RawFileDecoder().decode(
        source.raw_file_bytes,
        file_type=source.file_type,
        file_name=source.file_name,
    )
    return _finish(sheets)


def empty_workbook(source: ReconciliationInput) -> Workbook:
    """One blank sheet of the default size."""
    return Workbook(
        sheets=[
            blank_sheet("Sheet1", 0, source.default_rows, source.default_cols)
        ]
    )


DEFAULT_ATTEMPTS: tuple[tuple[ReconciliationSource, Attempt], ...] = (
    (ReconciliationSource.PERSISTED_SHEETS, from_persisted_sheets),
    (ReconciliationSource.LEGACY_TABLE, from_legacy_table),
    (ReconciliationSource.RAW_FILE, from_raw_file),
)


def first_success(
    attempts: Sequence[tuple[ReconciliationSource, Attempt]],
    source: ReconciliationInput,
) -> tuple[Workbook, ReconciliationSource] | None:
    """Run attempts in order and return the first usable workbook.

    An attempt that raises or yields a workbook without sheets is logged
    and skipped.
    """
    for tag, attempt in attempts:
        try:
            workbook = attempt(source)
        except Exception as e:
            logger.warning(
                "Reconciliation candidate failed",
                source=tag.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            continue
        if workbook is not None and workbook.sheets:
            return workbook, tag
        logger.debug("Reconciliation candidate not applicable", source=tag.value)
    return None


def reconcile(
    persisted_blob: Any,
    raw_file_bytes: bytes | None = None,
    file_type: str | None = None,
    *,
    file_name: str | None = None,
    default_rows: int = 50,
    default_cols: int = 26,
    attempts: Sequence[tuple[ReconciliationSource, Attempt]] = DEFAULT_ATTEMPTS,
) -> ReconciliationResult:
    """Produce a non-empty workbook from a document's stored state.

    Never raises for malformed input; the worst outcome is a single blank
    sheet together with a notice for the caller.

    Args:
        persisted_blob: The document's ``edited_data`` in whatever shape.
        raw_file_bytes: Originally uploaded bytes, when available.
        file_type: Declared type of the raw bytes (extension or MIME type).
        file_name: Original file name, used for format detection.
        default_rows: Rows of the blank fallback sheet.
        default_cols: Columns of the blank fallback sheet.
        attempts: Ordered candidate sources; the blank fallback always ends
            the chain.

    Returns:
        ReconciliationResult naming the source that produced the workbook.
    """
    source = ReconciliationInput(
        persisted_blob=persisted_blob,
        raw_file_bytes=raw_file_bytes,
        file_type=file_type,
        file_name=file_name,
        default_rows=default_rows,
        default_cols=default_cols,
    )

    found = first_success(attempts, source)
    if found is not None:
        workbook, tag = found
        logger.info(
            "Reconciled document",
            source=tag.value,
            sheets=len(workbook.sheets),
        )
        return ReconciliationResult(workbook=workbook, source=tag)

    logger.warning("No usable document data; starting with a blank sheet")
    return ReconciliationResult(
        workbook=empty_workbook(source),
        source=ReconciliationSource.EMPTY,
        notice=EMPTY_DOCUMENT_NOTICE,
    )
