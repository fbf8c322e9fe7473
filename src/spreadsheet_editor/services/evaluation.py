"""Formula evaluation over a whole workbook.

The workbook is first materialized into the calculation book: a mapping of
sheet name to A1 address to a ``{v, f, t, w, s}`` record, with the ``=``
marker restored on formulas. An engine then computes every formula cell and
writes ``v``/``w`` back into those records in place.

Formula cells never carry their cached ``w`` into the calculation book; the
shown text of a formula cell is either freshly computed or, when evaluation
fails, derived from its cached ``v``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import formulas
import numpy as np
from openpyxl.utils import get_column_letter
from openpyxl.utils.cell import range_boundaries

from spreadsheet_editor.utils.exceptions import ErrorCode, EvaluationError
from spreadsheet_editor.utils.logging import get_logger
from spreadsheet_editor.workbook_document import (
    TYPE_BOOLEAN,
    TYPE_ERROR,
    TYPE_NUMBER,
    TYPE_STRING,
    RichCell,
    Workbook,
    display_text,
    is_empty_value,
    value_type_tag,
)

logger = get_logger(__name__)

CalcCell = dict[str, Any]
CalcBook = dict[str, dict[str, CalcCell]]


def cell_address(row: int, col: int) -> str:
    """Encode a 0-based position as an A1 address: ``(0, 0) -> "A1"``."""
    return f"{get_column_letter(col + 1)}{row + 1}"


def address_position(address: str) -> tuple[int, int]:
    """Decode an A1 address into a 0-based ``(row, col)``."""
    min_col, min_row, _, _ = range_boundaries(address.replace("$", ""))
    if min_col is None or min_row is None:
        raise ValueError(f"Not a cell address: {address}")
    return min_row - 1, min_col - 1


def build_calc_workbook(workbook: Workbook) -> CalcBook:
    """Materialize every sheet into the calculation book.

    Cells are copied; the workbook itself is never touched. Empty cells are
    omitted.
    """
    book: CalcBook = {}
    for sheet in workbook.sheets:
        cells: dict[str, CalcCell] = {}
        for r, row in enumerate(sheet.data):
            for c, cell in enumerate(row or []):
                record = _calc_record(cell)
                if record is not None:
                    cells[cell_address(r, c)] = record
        book[sheet.name] = cells
    return book


def _calc_record(cell: Any) -> CalcCell | None:
    if isinstance(cell, RichCell):
        if cell.f:
            return {
                "v": cell.v,
                "f": f"={cell.f}",
                "t": cell.t,
                "w": None,
                "s": cell.s,
            }
        if is_empty_value(cell.v) and is_empty_value(cell.w) and not cell.s:
            return None
        return {"v": cell.v, "f": None, "t": cell.t, "w": cell.w, "s": cell.s}
    if is_empty_value(cell):
        return None
    return {"v": cell, "f": None, "t": value_type_tag(cell), "w": None, "s": None}


@dataclass
class EvaluationReport:
    """What an engine run computed and what it had to leave cached."""

    evaluated: int = 0
    failures: list[EvaluationError] = field(default_factory=list)


class CalculationEngine(Protocol):
    """Anything that can compute formula cells of a calculation book."""

    def calculate(self, book: CalcBook) -> EvaluationReport:
        """Compute formula cells, mutating their ``v``/``w`` in place."""
        ...


class FormulasEngine:
    """Calculation engine backed by the ``formulas`` package.

    Each formula is compiled on its own and its inputs are resolved from the
    calculation book on demand, so evaluation order follows references and a
    failing cell only affects the cells that depend on it.
    """

    def __init__(self) -> None:
        self._parser = formulas.Parser()

    def calculate(self, book: CalcBook) -> EvaluationReport:
        run = _EngineRun(self._parser, book)
        for sheet_name, cells in book.items():
            for address, record in cells.items():
                if record.get("f"):
                    run.evaluate(sheet_name, address)
        return run.report


class _EngineRun:
    """State for a single ``calculate`` call."""

    def __init__(self, parser: Any, book: CalcBook) -> None:
        self.parser = parser
        self.book = book
        self.sheet_lookup = {name.casefold(): name for name in book}
        self.report = EvaluationReport()
        self._done: set[tuple[str, str]] = set()
        self._failed: set[tuple[str, str]] = set()
        self._in_progress: set[tuple[str, str]] = set()
        self._compiled: dict[str, Any] = {}

    def evaluate(self, sheet_name: str, address: str) -> Any:
        """Value of a cell, computing it first when it holds a formula."""
        key = (sheet_name, address)
        record = self.book[sheet_name].get(address)
        if record is None:
            return None
        if not record.get("f") or key in self._done or key in self._failed:
            return record.get("v")
        if key in self._in_progress:
            raise EvaluationError(
                f"Circular reference through {sheet_name}!{address}",
                error_code=ErrorCode.CIRCULAR_REFERENCE,
                sheet_name=sheet_name,
                address=address,
                formula=record["f"],
            )

        self._in_progress.add(key)
        try:
            value = self._compute(sheet_name, record)
        except Exception as e:
            self._failed.add(key)
            if _inside_cycle(e, key):
                # Every cell on the loop keeps its cached value
                raise
            failure = (
                e
                if isinstance(e, EvaluationError)
                else EvaluationError(
                    f"Could not evaluate formula: {e}",
                    error_code=ErrorCode.UNSUPPORTED_FORMULA,
                    sheet_name=sheet_name,
                    address=address,
                    formula=record["f"],
                )
            )
            self.report.failures.append(failure)
            logger.warning(
                "Formula evaluation failed; keeping cached value",
                sheet=sheet_name,
                address=address,
                formula=record["f"],
                error=failure.message,
            )
            return record.get("v")
        finally:
            self._in_progress.discard(key)

        record["v"] = value
        record["w"] = display_text(value)
        record["t"] = _result_tag(value)
        self._done.add(key)
        self.report.evaluated += 1
        return value

    def _compute(self, sheet_name: str, record: CalcCell) -> Any:
        formula = record["f"]
        func = self._compiled.get(formula)
        if func is None:
            func = self.parser.ast(formula)[1].compile()
            self._compiled[formula] = func
        args = [self._resolve_input(str(name), sheet_name) for name in func.inputs]
        return _unwrap(func(*args))

    def _resolve_input(self, name: str, current_sheet: str) -> Any:
        sheet_name, ref = self._split_reference(name, current_sheet)
        ref = ref.replace("$", "")
        if ":" not in ref:
            value = self.evaluate(sheet_name, ref)
            return 0 if is_empty_value(value) else value

        min_col, min_row, max_col, max_row = range_boundaries(ref)
        last_row, last_col = self._extent(sheet_name)
        min_row = min_row or 1
        min_col = min_col or 1
        max_row = max_row or max(last_row, min_row)
        max_col = max_col or max(last_col, min_col)

        rows = []
        for r in range(min_row - 1, max_row):
            row = []
            for c in range(min_col - 1, max_col):
                value = self.evaluate(sheet_name, cell_address(r, c))
                row.append("" if is_empty_value(value) else value)
            rows.append(row)
        return np.array(rows, dtype=object)

    def _split_reference(self, name: str, current_sheet: str) -> tuple[str, str]:
        if "!" not in name:
            return current_sheet, name
        sheet_part, ref = name.rsplit("!", 1)
        sheet_part = sheet_part.strip("'")
        if sheet_part.startswith("["):
            sheet_part = sheet_part.split("]", 1)[-1]
        resolved = self.sheet_lookup.get(sheet_part.replace("''", "'").casefold())
        if resolved is None:
            raise EvaluationError(
                f"Reference to unknown sheet: {sheet_part}",
                error_code=ErrorCode.INVALID_REFERENCE,
                sheet_name=current_sheet,
            )
        return resolved, ref

    def _extent(self, sheet_name: str) -> tuple[int, int]:
        """1-based last row and column holding data."""
        last_row = last_col = 0
        for address in self.book[sheet_name]:
            r, c = address_position(address)
            last_row = max(last_row, r + 1)
            last_col = max(last_col, c + 1)
        return last_row, last_col


def _inside_cycle(error: Exception, key: tuple[str, str]) -> bool:
    """True when ``error`` is a circular reference that started at another cell."""
    if not isinstance(error, EvaluationError):
        return False
    if error.error_code is not ErrorCode.CIRCULAR_REFERENCE:
        return False
    start = (error.details.get("sheet_name"), error.details.get("address"))
    return start != key


def _unwrap(result: Any) -> Any:
    """Reduce an engine result to a plain Python scalar."""
    if isinstance(result, np.ndarray):
        result = result.ravel()[0] if result.size else None
    if isinstance(result, np.generic):
        result = result.item()
    if isinstance(result, str) and type(result) is not str:
        # Engine error tokens subclass str
        return str(result)
    return result


def _result_tag(value: Any) -> str:
    if isinstance(value, bool):
        return TYPE_BOOLEAN
    if isinstance(value, (int, float)):
        return TYPE_NUMBER
    if isinstance(value, str) and value.startswith("#"):
        return TYPE_ERROR
    return TYPE_STRING


def evaluate_workbook(
    workbook: Workbook,
    engine: CalculationEngine | None = None,
) -> tuple[CalcBook, EvaluationReport]:
    """Materialize and evaluate ``workbook``; engine-wide failures are logged.

    Returns:
        The evaluated calculation book and the engine's report. When the
        engine itself blows up, every formula cell keeps its cached value.
    """
    book = build_calc_workbook(workbook)
    calc_engine = engine or FormulasEngine()
    try:
        report = calc_engine.calculate(book)
    except Exception as e:
        logger.warning(
            "Calculation engine failed; showing cached values",
            error_type=type(e).__name__,
            error=str(e),
        )
        book = build_calc_workbook(workbook)
        report = EvaluationReport()
    return book, report or EvaluationReport()
