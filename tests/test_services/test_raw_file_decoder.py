"""Tests for raw spreadsheet decoding."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest
from openpyxl import Workbook as XlsxWorkbook

from spreadsheet_editor.services.raw_file_decoder import (
    DecodeOptions,
    RawFileDecoder,
    TabularFormat,
    detect_format,
)
from spreadsheet_editor.utils.exceptions import (
    DocumentShapeError,
    FileError,
    UnsupportedFormatError,
)
from spreadsheet_editor.workbook_document import RichCell


class TestDetectFormat:
    def test_zip_signature_wins(self) -> None:
        assert detect_format(b"PK\x03\x04rest", file_type="text/csv") is (
            TabularFormat.XLSX
        )

    def test_declared_csv(self) -> None:
        assert detect_format(b"a,b\n1,2", file_type="text/csv") is TabularFormat.CSV
        assert detect_format(b"a,b", file_name="data.CSV") is TabularFormat.CSV

    def test_declared_xlsx_without_zip_is_rejected(self) -> None:
        with pytest.raises(UnsupportedFormatError):
            detect_format(b"not a zip", file_type="xlsx")

    def test_undeclared_text_is_csv(self) -> None:
        assert detect_format(b"a,b\n") is TabularFormat.CSV

    def test_binary_garbage_is_rejected(self) -> None:
        with pytest.raises(UnsupportedFormatError):
            detect_format(b"\xff\xfe\x00\x81", file_name="image.png")


class TestXlsxDecoding:
    def test_decodes_every_sheet(self, styled_xlsx: bytes) -> None:
        sheets = RawFileDecoder().decode(styled_xlsx, file_name="book.xlsx")

        assert [s.name for s in sheets] == ["Data", "Other"]
        assert [s.index for s in sheets] == [0, 1]
        assert sheets[1].cell(0, 0).v == "Secondary"

    def test_cell_values_types_and_formulas(self, styled_xlsx: bytes) -> None:
        sheet = RawFileDecoder().decode(styled_xlsx)[0]

        name = sheet.cell(1, 0)
        assert isinstance(name, RichCell)
        assert (name.v, name.t, name.w) == ("Alice", "s", "Alice")

        amount = sheet.cell(1, 1)
        assert (amount.v, amount.t) == (3, "n")

        formula = sheet.cell(3, 1)
        assert formula.f == "B2+B3"

    def test_styles_are_carried(self, styled_xlsx: bytes) -> None:
        sheet = RawFileDecoder().decode(styled_xlsx)[0]

        header = sheet.cell(0, 0)
        assert header.s["font"]["bold"] is True
        assert header.s["font"]["color"]["rgb"] == "FFFF0000"

        filled = sheet.cell(1, 0)
        assert filled.s["fill"]["fgColor"]["rgb"] == "FF00FF00"

        assert sheet.cell(0, 1).s["alignment"] == {"horizontal": "center"}

    def test_styled_empty_cell_is_kept(self, styled_xlsx: bytes) -> None:
        sheet = RawFileDecoder().decode(styled_xlsx)[0]
        bordered = sheet.cell(4, 2)
        assert isinstance(bordered, RichCell)
        assert bordered.v is None
        assert bordered.s["border"]["top"]["style"] == "thin"

    def test_dates_become_iso_text(self, build_xlsx: Any) -> None:
        book = XlsxWorkbook()
        book.active["A1"] = datetime(2024, 1, 15)
        cell = RawFileDecoder().decode(build_xlsx(book))[0].cell(0, 0)
        assert cell.t == "d"
        assert cell.v == "2024-01-15T00:00:00"
        assert cell.w == "2024-01-15"

    def test_row_limit(self, styled_xlsx: bytes) -> None:
        sheet = RawFileDecoder().decode(styled_xlsx, options=DecodeOptions(max_rows=2))[0]
        assert len(sheet.data) == 2
        assert sheet.config.row_count == 2

    def test_corrupt_zip_raises_decode_error(self) -> None:
        with pytest.raises(FileError):
            RawFileDecoder().decode(b"PK\x03\x04garbage", file_name="bad.xlsx")


class TestCsvDecoding:
    def test_numeric_fields_become_numbers(self) -> None:
        sheet = RawFileDecoder().decode(
            b"Name,Score\nAlice,007\nBob,2.5\n", file_type="text/csv"
        )[0]

        assert sheet.name == "Sheet1"
        assert sheet.cell(0, 0).v == "Name"
        score = sheet.cell(1, 1)
        assert (score.v, score.t, score.w) == (7, "n", "007")
        assert sheet.cell(2, 1).v == 2.5

    def test_blank_fields_are_empty(self) -> None:
        sheet = RawFileDecoder().decode(b"a,,c\n", file_type="csv")[0]
        assert sheet.cell(0, 1) is None

    def test_empty_csv_raises_shape_error(self) -> None:
        with pytest.raises(DocumentShapeError):
            RawFileDecoder().decode(b"", file_type="csv")
