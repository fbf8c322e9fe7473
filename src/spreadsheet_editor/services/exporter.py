"""Export a workbook to a standalone xlsx document.

Only values and formulas are written. Neither live formatting nor styles
imported from the original file are carried into the export.
"""

from __future__ import annotations

import io
import re
from datetime import date, datetime
from typing import Any

from openpyxl import Workbook as XlsxWorkbook

from spreadsheet_editor.utils.logging import get_logger
from spreadsheet_editor.workbook_document import (
    TYPE_DATE,
    RichCell,
    Workbook,
    is_empty_value,
    unique_sheet_names,
)

logger = get_logger(__name__)

MAX_SHEET_TITLE_LENGTH = 31
_INVALID_TITLE_CHARS = re.compile(r"[\[\]:*?/\\]")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def sanitize_sheet_title(name: str, position: int) -> str:
    """Make ``name`` acceptable as an xlsx worksheet title."""
    title = _INVALID_TITLE_CHARS.sub("_", name).strip().strip("'")
    title = title[:MAX_SHEET_TITLE_LENGTH]
    return title or f"Sheet{position + 1}"


def export_value(cell: Any) -> Any:
    """Value written to the exported cell."""
    if isinstance(cell, RichCell):
        if cell.f:
            return f"={cell.f}"
        value = cell.v
        if cell.t == TYPE_DATE and isinstance(value, str):
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                return value
        return None if is_empty_value(value) else value
    if isinstance(cell, (datetime, date)):
        return cell
    return None if is_empty_value(cell) else cell


def _is_literal_formula_text(cell: Any, value: Any) -> bool:
    """Text that openpyxl would otherwise write as a formula."""
    has_formula = isinstance(cell, RichCell) and bool(cell.f)
    return not has_formula and isinstance(value, str) and value.startswith("=")


def export_workbook(workbook: Workbook) -> bytes:
    """Build xlsx bytes from the sheets' stored values and formulas."""
    output = XlsxWorkbook()
    output.remove(output.active)

    titles = unique_sheet_names(
        [
            sanitize_sheet_title(sheet.name, position)
            for position, sheet in enumerate(workbook.sheets)
        ],
        max_length=MAX_SHEET_TITLE_LENGTH,
    )

    for sheet, title in zip(workbook.sheets, titles, strict=True):
        worksheet = output.create_sheet(title=title)
        for r, row in enumerate(sheet.data):
            for c, cell in enumerate(row or []):
                value = export_value(cell)
                if value is None:
                    continue
                target = worksheet.cell(row=r + 1, column=c + 1, value=value)
                if _is_literal_formula_text(cell, value):
                    target.data_type = "s"

    buffer = io.BytesIO()
    output.save(buffer)
    logger.info("Exported workbook", sheets=len(workbook.sheets))
    return buffer.getvalue()
