"""Serialize a workbook into the persisted ``{"sheets": [...]}`` form.

Sheets are normalized to rectangles before they are written and empty cells
are compacted to ``null``. When requested, live formatting is baked into the
style payload of the serialized copy; the in-memory cells are never changed.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from spreadsheet_editor.utils.logging import get_logger
from spreadsheet_editor.workbook_document import (
    TYPE_EMPTY,
    Cell,
    RichCell,
    Sheet,
    StyleOverride,
    Workbook,
    is_empty_value,
    normalize_sheet,
    value_type_tag,
)

logger = get_logger(__name__)

StyleKey = tuple[int, int, int]

BORDER_SIDES = ("top", "bottom", "left", "right")


@dataclass
class PersistedForm:
    """Result of serializing a workbook for storage."""

    payload: dict[str, Any]
    sheet_count: int
    cell_count: int
    styles_baked: int = 0

    def to_dict(self) -> dict[str, Any]:
        return self.payload


def compact_cell(cell: Cell) -> Any:
    """Persisted form of a single cell; empty cells become ``None``."""
    if isinstance(cell, RichCell):
        if not cell.f and not cell.s and is_empty_value(cell.v) and is_empty_value(
            cell.w
        ):
            return None
        return cell.to_json()
    if is_empty_value(cell):
        return None
    return cell


def _argb(color: str) -> str:
    hex_part = color.strip().lstrip("#").upper()
    return hex_part if len(hex_part) == 8 else f"FF{hex_part}"


def bake_style(cell: Cell, override: StyleOverride) -> Cell:
    """Return a copy of ``cell`` whose style payload carries ``override``."""
    if isinstance(cell, RichCell):
        baked = cell.clone()
    elif is_empty_value(cell):
        baked = RichCell(t=TYPE_EMPTY)
    else:
        baked = RichCell(v=cell, t=value_type_tag(cell))

    style: dict[str, Any] = copy.deepcopy(baked.s) if baked.s else {}
    font = dict(style.get("font") or {})

    if override.bold is not None:
        font["bold"] = override.bold
    if override.italic is not None:
        font["italic"] = override.italic
    if override.strikethrough is not None:
        font["strike"] = override.strikethrough
    if override.text_color:
        font["color"] = {"rgb": _argb(override.text_color)}
    if font:
        style["font"] = font

    if override.bg_color:
        style["fill"] = {
            "patternType": "solid",
            "fgColor": {"rgb": _argb(override.bg_color)},
        }
    if override.alignment:
        style["alignment"] = {"horizontal": override.alignment}
    if override.borders is not None:
        if override.borders:
            style["border"] = {side: {"style": "thin"} for side in BORDER_SIDES}
        else:
            style.pop("border", None)

    baked.s = style or None
    return baked


def serialize_sheet(
    sheet: Sheet,
    overrides: Mapping[tuple[int, int], StyleOverride] | None = None,
) -> dict[str, Any]:
    """Normalize, optionally bake styles into, and compact one sheet."""
    normalized = normalize_sheet(sheet)
    for (row, col), override in (overrides or {}).items():
        if override.is_empty():
            continue
        normalized.set_cell(row, col, bake_style(normalized.cell(row, col), override))

    # Baking may reach outside the declared grid; re-normalize afterwards
    normalized = normalize_sheet(normalized)
    payload = normalized.to_json()
    payload["data"] = [[compact_cell(cell) for cell in row] for row in normalized.data]
    return payload


def serialize_workbook(
    workbook: Workbook,
    style_overrides: Mapping[StyleKey, StyleOverride] | None = None,
    persist_live_styles: bool = False,
) -> PersistedForm:
    """Build the persisted form of ``workbook``.

    Args:
        workbook: Workbook to serialize; it is not modified.
        style_overrides: Live formatting keyed by ``(sheet_index, row, col)``.
        persist_live_styles: Bake ``style_overrides`` into the output.

    Returns:
        PersistedForm whose payload is ``{"sheets": [...]}``.
    """
    per_sheet: dict[int, dict[tuple[int, int], StyleOverride]] = {}
    if persist_live_styles and style_overrides:
        for (sheet_index, row, col), override in style_overrides.items():
            per_sheet.setdefault(sheet_index, {})[(row, col)] = override

    sheets = []
    cell_count = 0
    for position, sheet in enumerate(workbook.sheets):
        record = serialize_sheet(sheet, per_sheet.get(position))
        record["index"] = position
        cell_count += sum(
            1 for row in record["data"] for cell in row if cell is not None
        )
        sheets.append(record)

    styles_baked = sum(len(v) for v in per_sheet.values())
    logger.debug(
        "Serialized workbook",
        sheets=len(sheets),
        non_empty_cells=cell_count,
        styles_baked=styles_baked,
    )
    return PersistedForm(
        payload={"sheets": sheets},
        sheet_count=len(sheets),
        cell_count=cell_count,
        styles_baked=styles_baked,
    )
