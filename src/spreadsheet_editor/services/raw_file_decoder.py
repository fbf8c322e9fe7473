"""Decode uploaded spreadsheet bytes into workbook sheets.

This is the single point where an external reader's output enters the
document model: xlsx/xlsm files are read with openpyxl, CSV files with
pandas. Every decoded cell is a :class:`RichCell` carrying ``v``, ``f``,
``t``, ``w`` and ``s`` as read from the file.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from pathlib import PurePath
from typing import Any

import pandas as pd
from openpyxl import load_workbook
from openpyxl.cell import Cell as XlsxCell
from openpyxl.worksheet.worksheet import Worksheet

from spreadsheet_editor.utils.exceptions import (
    DocumentShapeError,
    ErrorCode,
    FileError,
    UnsupportedFormatError,
)
from spreadsheet_editor.utils.logging import get_logger
from spreadsheet_editor.workbook_document import (
    TYPE_BOOLEAN,
    TYPE_DATE,
    TYPE_EMPTY,
    TYPE_ERROR,
    TYPE_NUMBER,
    TYPE_STRING,
    Cell,
    RichCell,
    Sheet,
    SheetConfig,
    display_text,
    parse_number,
)

logger = get_logger(__name__)

ZIP_SIGNATURE = b"PK\x03\x04"



class TabularFormat(str, Enum):
    """Raw file formats the decoder understands."""

    XLSX = "xlsx"
    CSV = "csv"


# Declared file types (extensions or MIME types) mapped to a format
DECLARED_TYPE_TO_FORMAT: dict[str, TabularFormat] = {
    "xlsx": TabularFormat.XLSX,
    "xlsm": TabularFormat.XLSX,
    "xltx": TabularFormat.XLSX,
    "xltm": TabularFormat.XLSX,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": (
        TabularFormat.XLSX
    ),
    "application/vnd.ms-excel.sheet.macroenabled.12": TabularFormat.XLSX,
    "csv": TabularFormat.CSV,
    "text/csv": TabularFormat.CSV,
    "application/csv": TabularFormat.CSV,
}


def _normalize_declared_type(file_type: str | None) -> str | None:
    if not file_type:
        return None
    return file_type.strip().lower().lstrip(".") or None


def detect_format(
    content: bytes,
    file_type: str | None = None,
    file_name: str | None = None,
) -> TabularFormat:
    """Work out how to decode ``content``.

    The zip signature wins over any declared type; otherwise the declared
    type, then the file name's extension, then "looks like UTF-8 text"
    decide.

    Raises:
        UnsupportedFormatError: If no supported format matches.
    """
    if content.startswith(ZIP_SIGNATURE):
        return TabularFormat.XLSX

    declared = _normalize_declared_type(file_type)
    if declared is None and file_name:
        declared = _normalize_declared_type(PurePath(file_name).suffix)

    detected = DECLARED_TYPE_TO_FORMAT.get(declared) if declared else None
    if detected is TabularFormat.XLSX:
        raise UnsupportedFormatError(
            "File is declared as a workbook but is not a zip container",
            file_type=file_type,
            file_name=file_name,
        )
    if detected is TabularFormat.CSV:
        return detected

    if declared is None:
        try:
            content.decode("utf-8")
        except UnicodeDecodeError:
            pass
        else:
            return TabularFormat.CSV

    raise UnsupportedFormatError(
        f"Unsupported file type: {file_type or declared or 'unknown'}",
        file_type=file_type,
        file_name=file_name,
    )


@dataclass
class DecodeOptions:
    """Options controlling raw file decoding."""

    include_styles: bool = True
    max_rows: int | None = None
    max_columns: int | None = None


class RawFileDecoder:
    """Decode spreadsheet bytes into a list of sheets."""

    def decode(
        self,
        content: bytes,
        file_type: str | None = None,
        file_name: str | None = None,
        options: DecodeOptions | None = None,
    ) -> list[Sheet]:
        """Decode every sheet contained in ``content``.

        Raises:
            UnsupportedFormatError: If the bytes are not a supported format.
            DocumentShapeError: If the file decodes to no sheets.
        """
        opts = options or DecodeOptions()
        fmt = detect_format(content, file_type=file_type, file_name=file_name)

        try:
            if fmt is TabularFormat.XLSX:
                sheets = self._decode_xlsx(content, opts)
            else:
                sheets = self._decode_csv(content, opts)
        except (UnsupportedFormatError, DocumentShapeError):
            raise
        except Exception as e:
            raise FileError(
                f"Failed to decode {fmt.value} file: {e}",
                error_code=ErrorCode.DECODE_FAILED,
                file_name=file_name,
                details={"format": fmt.value},
            ) from e

        if not sheets:
            raise DocumentShapeError(
                "Decoded file contains no sheets",
                error_code=ErrorCode.EMPTY_DOCUMENT,
                source="raw_file",
            )

        logger.info(
            "Decoded raw file",
            format=fmt.value,
            sheets=len(sheets),
            file_name=file_name,
        )
        return sheets

    # ------------------------------------------------------------------ #
    # xlsx
    # ------------------------------------------------------------------ #

    def _decode_xlsx(self, content: bytes, opts: DecodeOptions) -> list[Sheet]:
        # Load twice: once to capture formulas, once for cached values
        workbook = load_workbook(io.BytesIO(content), data_only=False)
        computed_wb = load_workbook(io.BytesIO(content), data_only=True)

        return [
            self._decode_worksheet(
                workbook[name], computed_wb[name], position=position, opts=opts
            )
            for position, name in enumerate(workbook.sheetnames)
        ]

    def _decode_worksheet(
        self,
        sheet: Worksheet,
        computed_sheet: Worksheet,
        *,
        position: int,
        opts: DecodeOptions,
    ) -> Sheet:
        max_row = sheet.max_row
        max_col = sheet.max_column
        if opts.max_rows is not None:
            max_row = min(max_row, opts.max_rows)
        if opts.max_columns is not None:
            max_col = min(max_col, opts.max_columns)

        rows: list[list[Cell]] = []
        row_iter = sheet.iter_rows(min_row=1, max_row=max_row, max_col=max_col)
        computed_iter = computed_sheet.iter_rows(
            min_row=1, max_row=max_row, max_col=max_col, values_only=True
        )
        for row_cells, computed_values in zip(row_iter, computed_iter, strict=True):
            rows.append(
                [
                    self._build_cell(
                        cell,
                        computed_value=computed_value,
                        include_styles=opts.include_styles,
                    )
                    for cell, computed_value in zip(
                        row_cells, computed_values, strict=True
                    )
                ]
            )

        return Sheet(
            name=sheet.title,
            index=position,
            data=rows,
            config=SheetConfig(row_count=max_row, column_count=max_col),
        )

    def _build_cell(
        self,
        cell: XlsxCell,
        *,
        computed_value: Any,
        include_styles: bool,
    ) -> Cell:
        """Create a rich cell preserving formula, type, text and style."""
        style = self._extract_style(cell) if include_styles else None
        formula: str | None = None
        value = cell.value

        if cell.data_type == "f":
            formula = self._formula_text(cell.value)
            value = computed_value

        if value is None and formula is None:
            if style:
                return RichCell(t=TYPE_EMPTY, w="", s=style)
            return None

        tag = self._type_tag(cell, value)
        stored, text = self._stored_value(value)
        return RichCell(v=stored, f=formula, t=tag, w=text, s=style)

    @staticmethod
    def _formula_text(raw: Any) -> str | None:
        text = getattr(raw, "text", raw)
        if not isinstance(text, str):
            return None
        text = text[1:] if text.startswith("=") else text
        return text or None

    @staticmethod
    def _type_tag(cell: XlsxCell, value: Any) -> str:
        """Map openpyxl data types to value-type tags."""
        if cell.data_type == "e" or (
            isinstance(value, str) and cell.data_type == "f" and value.startswith("#")
        ):
            return TYPE_ERROR
        if isinstance(value, bool):
            return TYPE_BOOLEAN
        if isinstance(value, (datetime, date, time, timedelta)):
            return TYPE_DATE
        if isinstance(value, (int, float)):
            return TYPE_NUMBER
        if value is None:
            return TYPE_EMPTY
        return TYPE_STRING

    @staticmethod
    def _stored_value(value: Any) -> tuple[Any, str | None]:
        """JSON-safe stored value plus its formatted text."""
        if isinstance(value, datetime):
            if value.time() == time(0, 0):
                return value.isoformat(), value.strftime("%Y-%m-%d")
            return value.isoformat(), value.strftime("%Y-%m-%d %H:%M:%S")
        if isinstance(value, (date, time)):
            return value.isoformat(), value.isoformat()
        if isinstance(value, timedelta):
            return value.total_seconds(), str(value)
        if value is None:
            return None, None
        return value, display_text(value)

    @classmethod
    def _extract_style(cls, cell: XlsxCell) -> dict[str, Any] | None:
        """Collect the non-default parts of a cell's style."""
        if not cell.has_style:
            return None

        style: dict[str, Any] = {}

        font: dict[str, Any] = {}
        if cell.font is not None:
            if cell.font.b:
                font["bold"] = True
            if cell.font.i:
                font["italic"] = True
            if cell.font.strike:
                font["strike"] = True
            font_rgb = cls._color_rgb(cell.font.color)
            if font_rgb:
                font["color"] = {"rgb": font_rgb}
        if font:
            style["font"] = font

        fill = cell.fill
        if fill is not None and getattr(fill, "fill_type", None):
            fill_rgb = cls._color_rgb(getattr(fill, "fgColor", None))
            if fill_rgb:
                style["fill"] = {"fgColor": {"rgb": fill_rgb}}

        horizontal = cell.alignment.horizontal if cell.alignment else None
        if horizontal and horizontal != "general":
            style["alignment"] = {"horizontal": horizontal}

        border: dict[str, Any] = {}
        if cell.border is not None:
            for side_name in ("top", "bottom", "left", "right"):
                side = getattr(cell.border, side_name, None)
                if side is None or not side.style:
                    continue
                side_payload: dict[str, Any] = {"style": side.style}
                side_rgb = cls._color_rgb(side.color)
                if side_rgb:
                    side_payload["color"] = {"rgb": side_rgb}
                border[side_name] = side_payload
        if border:
            style["border"] = border

        if cell.number_format and cell.number_format != "General":
            style["numFmt"] = cell.number_format

        return style or None

    @staticmethod
    def _color_rgb(color: Any) -> str | None:
        """ARGB hex of an explicit RGB color; theme/indexed colors are skipped."""
        if color is None or getattr(color, "type", None) != "rgb":
            return None
        rgb = getattr(color, "rgb", None)
        if not isinstance(rgb, str) or len(rgb) not in (6, 8):
            return None
        return rgb.upper()

    # ------------------------------------------------------------------ #
    # csv
    # ------------------------------------------------------------------ #

    def _decode_csv(self, content: bytes, opts: DecodeOptions) -> list[Sheet]:
        try:
            frame = pd.read_csv(
                io.BytesIO(content),
                header=None,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,
                encoding="utf-8-sig",
            )
        except pd.errors.EmptyDataError as e:
            raise DocumentShapeError(
                "CSV file is empty",
                error_code=ErrorCode.EMPTY_DOCUMENT,
                source="raw_file",
            ) from e

        if opts.max_rows is not None:
            frame = frame.iloc[: opts.max_rows]
        if opts.max_columns is not None:
            frame = frame.iloc[:, : opts.max_columns]

        rows: list[list[Cell]] = [
            [self._csv_cell(text) for text in record]
            for record in frame.itertuples(index=False, name=None)
        ]
        row_count, column_count = frame.shape
        return [
            Sheet(
                name="Sheet1",
                index=0,
                data=rows,
                config=SheetConfig(row_count=row_count, column_count=column_count),
            )
        ]

    @staticmethod
    def _csv_cell(text: Any) -> Cell:
        if text is None or text == "":
            return None
        raw = str(text)
        number = parse_number(raw)
        if number is None:
            return RichCell(v=raw, t=TYPE_STRING, w=raw)
        return RichCell(v=number, t=TYPE_NUMBER, w=raw)
