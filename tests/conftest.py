from __future__ import annotations

import io
from typing import Any

import pytest
from openpyxl import Workbook as XlsxWorkbook

from spreadsheet_editor.services.evaluation import CalcBook, EvaluationReport
from spreadsheet_editor.workbook_document import (
    RichCell,
    Sheet,
    SheetConfig,
    Workbook,
    display_text,
)


class StaticEngine:
    """Engine that writes fixed results into chosen formula cells."""

    def __init__(self, results: dict[tuple[str, str], Any] | None = None) -> None:
        self.results = results or {}
        self.calls = 0

    def calculate(self, book: CalcBook) -> EvaluationReport:
        self.calls += 1
        report = EvaluationReport()
        for (sheet_name, address), value in self.results.items():
            record = book.get(sheet_name, {}).get(address)
            if record is not None and record.get("f"):
                record["v"] = value
                record["w"] = display_text(value)
                report.evaluated += 1
        return report


class FailingEngine:
    """Engine that blows up on every run."""

    def calculate(self, book: CalcBook) -> EvaluationReport:
        raise RuntimeError("engine unavailable")


def make_sheet(name: str, rows: list[list[Any]], index: int = 0) -> Sheet:
    cols = max((len(r) for r in rows), default=0)
    return Sheet(
        name=name,
        index=index,
        data=[list(r) + [None] * (cols - len(r)) for r in rows],
        config=SheetConfig(row_count=len(rows), column_count=cols),
    )


def xlsx_bytes(book: XlsxWorkbook) -> bytes:
    buffer = io.BytesIO()
    book.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def static_engine() -> StaticEngine:
    return StaticEngine()


@pytest.fixture
def three_sheet_workbook() -> Workbook:
    return Workbook(
        sheets=[
            make_sheet("S0", [["zero"]], 0),
            make_sheet("S1", [["one"]], 1),
            make_sheet("S2", [["two"]], 2),
        ]
    )


@pytest.fixture
def formula_workbook() -> Workbook:
    """A1=3, A2=4, A3 holds A1+A2 with a stale cached value of 10."""
    return Workbook(
        sheets=[
            make_sheet(
                "Sheet1",
                [[3], [4], [RichCell(v=10, f="A1+A2", t="n")]],
            )
        ]
    )


@pytest.fixture
def styled_xlsx() -> bytes:
    from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

    book = XlsxWorkbook()
    ws = book.active
    ws.title = "Data"
    ws["A1"] = "Name"
    ws["B1"] = "Amount"
    ws["A2"] = "Alice"
    ws["B2"] = 3
    ws["B3"] = 4
    ws["B4"] = "=B2+B3"
    ws["A1"].font = Font(bold=True, color="FFFF0000")
    ws["A2"].fill = PatternFill(fill_type="solid", fgColor="FF00FF00")
    ws["B1"].alignment = Alignment(horizontal="center")
    ws["C5"].border = Border(top=Side(style="thin"))

    second = book.create_sheet("Other")
    second["A1"] = "Secondary"
    return xlsx_bytes(book)


@pytest.fixture
def failing_engine() -> FailingEngine:
    return FailingEngine()


@pytest.fixture
def build_xlsx() -> Any:
    """Serialize an openpyxl workbook to bytes."""
    return xlsx_bytes


@pytest.fixture
def build_sheet() -> Any:
    """Build a rectangular sheet from row lists."""
    return make_sheet
