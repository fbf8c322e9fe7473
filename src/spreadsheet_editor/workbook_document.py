"""Dataclasses representing an editable multi-sheet workbook.

A cell is either a primitive (``str``, ``int``, ``float``, ``bool`` or
``None``) or a :class:`RichCell` carrying the raw value, an optional formula,
a value-type tag, cached display text and a style payload. The JSON shape of
a rich cell uses the short keys ``v``, ``f``, ``t``, ``w`` and ``s`` so that
documents persisted by earlier versions load unchanged.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field, replace
from typing import Any, TypeAlias

from spreadsheet_editor.utils.exceptions import DocumentShapeError, ErrorCode

Primitive: TypeAlias = str | int | float | bool | None

# Value-type tags
TYPE_STRING = "s"
TYPE_NUMBER = "n"
TYPE_BOOLEAN = "b"
TYPE_DATE = "d"
TYPE_ERROR = "e"
TYPE_EMPTY = "z"

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")


@dataclass
class RichCell:
    """A cell with value, formula, type, cached text and style metadata.

    When ``f`` is set, ``v`` and ``w`` are cached results from the last
    evaluation and are stale relative to the formula.
    """

    v: Any = None
    f: str | None = None
    t: str | None = None
    w: str | None = None
    s: dict[str, Any] | None = None

    @property
    def has_formula(self) -> bool:
        return bool(self.f)

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> RichCell:
        """Build a rich cell from its persisted dictionary form."""
        formula = payload.get("f")
        if isinstance(formula, str):
            formula = formula[1:] if formula.startswith("=") else formula
        else:
            formula = None

        text = payload.get("w")
        if text is not None and not isinstance(text, str):
            text = str(text)

        style = payload.get("s")
        tag = payload.get("t")
        return cls(
            v=payload.get("v"),
            f=formula or None,
            t=tag if isinstance(tag, str) else None,
            w=text,
            s=style if isinstance(style, dict) else None,
        )

    def to_json(self) -> dict[str, Any]:
        """Return the persisted dictionary form, omitting unset keys."""
        payload: dict[str, Any] = {}
        if self.t is not None:
            payload["t"] = self.t
        if self.v is not None:
            payload["v"] = self.v
        if self.w is not None:
            payload["w"] = self.w
        if self.f:
            payload["f"] = self.f
        if self.s:
            payload["s"] = copy.deepcopy(self.s)
        return payload

    def clone(self) -> RichCell:
        return replace(self, s=copy.deepcopy(self.s))


Cell: TypeAlias = RichCell | Primitive


@dataclass
class SheetConfig:
    """Declared dimensions of a sheet."""

    row_count: int
    column_count: int

    @classmethod
    def from_json(cls, payload: Any) -> SheetConfig | None:
        if not isinstance(payload, dict):
            return None
        rows = payload.get("rowCount")
        cols = payload.get("columnCount")
        if not isinstance(rows, int) or not isinstance(cols, int):
            return None
        if isinstance(rows, bool) or isinstance(cols, bool):
            return None
        return cls(row_count=max(rows, 0), column_count=max(cols, 0))

    def to_json(self) -> dict[str, int]:
        return {"columnCount": self.column_count, "rowCount": self.row_count}


@dataclass
class Sheet:
    """A single named grid of cells within a workbook."""

    name: str
    index: int
    data: list[list[Cell]] = field(default_factory=list)
    config: SheetConfig | None = None

    def cell(self, row: int, col: int) -> Cell:
        """Read a cell, tolerating ragged rows and out-of-range positions."""
        if row < 0 or col < 0 or row >= len(self.data):
            return None
        cells = self.data[row]
        if cells is None or col >= len(cells):
            return None
        return cells[col]

    def set_cell(self, row: int, col: int, value: Cell) -> None:
        """Overwrite a cell, growing the grid when the position is outside it."""
        while len(self.data) <= row:
            self.data.append([])
        cells = self.data[row]
        if cells is None:
            cells = []
            self.data[row] = cells
        while len(cells) <= col:
            cells.append(None)
        cells[col] = value

    @property
    def extents(self) -> tuple[int, int]:
        """Actual (rows, columns) spanned by the stored grid."""
        rows = len(self.data)
        cols = max((len(r) for r in self.data if r), default=0)
        return rows, cols

    @classmethod
    def from_json(cls, payload: Any, position: int) -> Sheet:
        """Parse a persisted sheet record.

        Raises:
            DocumentShapeError: If the record is not sheet-shaped.
        """
        if not isinstance(payload, dict):
            raise DocumentShapeError(
                f"Sheet record at position {position} is not an object",
                error_code=ErrorCode.INVALID_SHEET_SHAPE,
            )
        raw_rows = payload.get("data")
        if raw_rows is None:
            raw_rows = []
        if not isinstance(raw_rows, list):
            raise DocumentShapeError(
                f"Sheet record at position {position} has non-list data",
                error_code=ErrorCode.INVALID_SHEET_SHAPE,
            )

        rows: list[list[Cell]] = []
        for raw_row in raw_rows:
            if isinstance(raw_row, list):
                rows.append([coerce_cell(value) for value in raw_row])
            else:
                rows.append([])

        name = payload.get("name")
        return cls(
            name=name.strip() if isinstance(name, str) and name.strip() else "",
            index=position,
            data=rows,
            config=SheetConfig.from_json(payload.get("config")),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "index": self.index,
            "data": [[cell_to_json(c) for c in row] for row in self.data],
            "config": self.config.to_json() if self.config else None,
        }


@dataclass
class Workbook:
    """An ordered collection of sheets; order is the sheet-tab order."""

    sheets: list[Sheet] = field(default_factory=list)

    @property
    def sheet_names(self) -> list[str]:
        return [sheet.name for sheet in self.sheets]

    def reindex(self) -> None:
        for position, sheet in enumerate(self.sheets):
            sheet.index = position

    def find_sheet(self, name: str) -> Sheet | None:
        """Look up a sheet by name, ignoring case."""
        wanted = name.casefold()
        for sheet in self.sheets:
            if sheet.name.casefold() == wanted:
                return sheet
        return None


@dataclass(frozen=True)
class Selection:
    """The last cell the user focused."""

    row: int
    col: int


@dataclass(frozen=True)
class StyleOverride:
    """Formatting applied through the editor UI for one cell.

    ``None`` means the attribute was never set in this session, which lets
    the original imported style show through.
    """

    bg_color: str | None = None
    text_color: str | None = None
    bold: bool | None = None
    italic: bool | None = None
    strikethrough: bool | None = None
    alignment: str | None = None
    borders: str | None = None

    def is_empty(self) -> bool:
        return self == StyleOverride()

    def merged(self, **changes: Any) -> StyleOverride:
        return replace(self, **changes)


def is_empty_value(value: Any) -> bool:
    return value is None or value == ""


def is_empty_cell(cell: Cell) -> bool:
    """Whether a cell has no value, formula or display text."""
    if isinstance(cell, RichCell):
        if cell.f:
            return False
        return is_empty_value(cell.v) and is_empty_value(cell.w)
    return is_empty_value(cell)


def coerce_cell(raw: Any) -> Cell:
    """Convert a loosely-typed JSON value into a cell.

    Unknown shapes (lists, nested arrays, arbitrary objects) become empty.
    """
    if raw is None or isinstance(raw, (str, bool, int, float)):
        return raw
    if isinstance(raw, dict):
        return RichCell.from_json(raw)
    return None


def cell_to_json(cell: Cell) -> Any:
    if isinstance(cell, RichCell):
        return cell.to_json()
    return cell


def clone_cell(cell: Cell) -> Cell:
    if isinstance(cell, RichCell):
        return cell.clone()
    return cell


def value_type_tag(value: Any) -> str:
    """Value-type tag for a primitive value."""
    if is_empty_value(value):
        return TYPE_EMPTY
    if isinstance(value, bool):
        return TYPE_BOOLEAN
    if isinstance(value, (int, float)):
        return TYPE_NUMBER
    return TYPE_STRING


def parse_number(text: str) -> int | float | None:
    """Number spelled by ``text``, or ``None`` when it is not numeric."""
    stripped = text.strip()
    if _INT_RE.match(stripped):
        return int(stripped)
    if _FLOAT_RE.match(stripped):
        return float(stripped)
    return None


def coerce_input(value: Any) -> Any:
    """Typed value of user input: numeric strings become numbers."""
    if isinstance(value, str):
        number = parse_number(value)
        return value if number is None else number
    return value


def display_text(value: Any) -> str:
    """Render a raw or evaluated value the way the grid shows it.

    Booleans use spreadsheet spelling, integral floats drop the fractional
    part and other floats are limited to 15 significant digits.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if value != value:  # NaN
            return ""
        if value.is_integer() and abs(value) < 1e15:
            return str(int(value))
        return format(value, ".15g")
    return str(value)


def empty_grid(rows: int, cols: int) -> list[list[Cell]]:
    """Create an all-empty rectangular grid."""
    return [[None] * cols for _ in range(rows)]


def blank_sheet(name: str, index: int, rows: int, cols: int) -> Sheet:
    return Sheet(
        name=name,
        index=index,
        data=empty_grid(rows, cols),
        config=SheetConfig(row_count=rows, column_count=cols),
    )


def normalize_sheet(sheet: Sheet) -> Sheet:
    """Return a rectangular copy of ``sheet`` whose config matches its grid.

    Ragged rows are padded to ``config.column_count`` and the grid is padded
    to ``config.row_count``. A missing config is recomputed from the actual
    extents; a config smaller than the stored data grows to fit it. Every
    sheet keeps at least one row and one column.
    """
    actual_rows, actual_cols = sheet.extents
    declared_rows = sheet.config.row_count if sheet.config else 0
    declared_cols = sheet.config.column_count if sheet.config else 0
    rows = max(actual_rows, declared_rows, 1)
    cols = max(actual_cols, declared_cols, 1)

    data: list[list[Cell]] = []
    for r in range(rows):
        source = sheet.data[r] if r < len(sheet.data) and sheet.data[r] else []
        row = [clone_cell(cell) for cell in source]
        row.extend([None] * (cols - len(row)))
        data.append(row)

    return Sheet(
        name=sheet.name,
        index=sheet.index,
        data=data,
        config=SheetConfig(row_count=rows, column_count=cols),
    )


def unique_sheet_names(
    names: list[str], max_length: int | None = None
) -> list[str]:
    """Fill in missing names and de-duplicate the rest, keeping order.

    Empty names become ``Sheet{position+1}``; repeated names (compared
    case-insensitively) get a ``" (2)"``, ``" (3)"`` ... suffix. With
    ``max_length`` the base is shortened so the suffix always fits.
    """
    seen: set[str] = set()
    result: list[str] = []
    for position, name in enumerate(names):
        candidate = name or f"Sheet{position + 1}"
        base = candidate
        counter = 2
        while candidate.casefold() in seen:
            suffix = f" ({counter})"
            stem = base if max_length is None else base[: max_length - len(suffix)]
            candidate = f"{stem}{suffix}"
            counter += 1
        seen.add(candidate.casefold())
        result.append(candidate)
    return result
