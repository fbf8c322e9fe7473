"""Project a workbook sheet into the grid of strings the user sees."""

from __future__ import annotations

from typing import Any

from spreadsheet_editor.services.evaluation import (
    CalcBook,
    CalculationEngine,
    cell_address,
    evaluate_workbook,
)
from spreadsheet_editor.utils.exceptions import SheetIndexError
from spreadsheet_editor.utils.logging import get_logger, timed_operation
from spreadsheet_editor.workbook_document import (
    Sheet,
    Workbook,
    display_text,
    is_empty_cell,
    is_empty_value,
)

logger = get_logger(__name__)


def used_range(sheet: Sheet) -> tuple[int, int]:
    """Rows and columns from A1 through the last non-empty cell.

    An entirely empty sheet has a 1 x 1 used range.
    """
    last_row = last_col = 0
    for r, row in enumerate(sheet.data):
        for c, cell in enumerate(row or []):
            if not is_empty_cell(cell):
                last_row = max(last_row, r + 1)
                last_col = max(last_col, c + 1)
    return max(last_row, 1), max(last_col, 1)


def display_for(record: dict[str, Any] | None) -> str:
    """Display text of one calculation record: ``w``, then ``v``, then ``""``."""
    if record is None:
        return ""
    text = record.get("w")
    if not is_empty_value(text):
        return str(text)
    return display_text(record.get("v"))


def display_grid(book: CalcBook, sheet: Sheet) -> list[list[str]]:
    """Read the used range of ``sheet`` out of an evaluated calculation book."""
    cells = book.get(sheet.name, {})
    rows, cols = used_range(sheet)
    return [
        [display_for(cells.get(cell_address(r, c))) for c in range(cols)]
        for r in range(rows)
    ]


def project(
    workbook: Workbook,
    active_sheet_index: int,
    engine: CalculationEngine | None = None,
) -> list[list[str]]:
    """Evaluate the whole workbook and return the active sheet's display grid.

    Safe to call on every render: the workbook is not mutated and nothing
    is cached between calls.

    Raises:
        SheetIndexError: If ``active_sheet_index`` does not name a sheet.
    """
    if not 0 <= active_sheet_index < len(workbook.sheets):
        raise SheetIndexError(active_sheet_index, len(workbook.sheets))

    sheet = workbook.sheets[active_sheet_index]
    with timed_operation(logger, "projection") as metrics:
        book, report = evaluate_workbook(workbook, engine)
        metrics.sheets_processed = len(book)
        metrics.cells_evaluated = report.evaluated
        metrics.evaluation_failures = len(report.failures)
        grid = display_grid(book, sheet)
    return grid
