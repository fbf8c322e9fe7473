"""Merge live formatting with formatting imported from the original file.

Resolution order for every attribute: the live override set through the
editor, then the cell's original style payload, then nothing (the grid's
default appearance).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from spreadsheet_editor.workbook_document import StyleOverride

IMPORTED_BORDER = "1px solid #000"


@dataclass(frozen=True)
class ResolvedStyle:
    """Final presentation attributes of one rendered cell."""

    background_color: str | None = None
    text_color: str | None = None
    bold: bool = False
    italic: bool = False
    strikethrough: bool = False
    alignment: str | None = None
    border: str | None = None

    def to_css(self) -> dict[str, str]:
        """Inline CSS properties for a grid renderer."""
        css: dict[str, str] = {}
        if self.background_color:
            css["background-color"] = self.background_color
        if self.text_color:
            css["color"] = self.text_color
        if self.bold:
            css["font-weight"] = "bold"
        if self.italic:
            css["font-style"] = "italic"
        if self.strikethrough:
            css["text-decoration"] = "line-through"
        if self.alignment:
            css["text-align"] = self.alignment
        if self.border:
            css["border"] = self.border
        return css


def normalize_color(raw: Any) -> str | None:
    """Turn a stored color into ``#rrggbb``.

    Accepts 6-digit RGB or 8-digit ARGB hex, with or without a leading
    ``#``; the alpha pair of ARGB is dropped.
    """
    if not isinstance(raw, str):
        return None
    color = raw.strip().lstrip("#")
    if len(color) == 8:
        color = color[2:]
    if len(color) != 6:
        return None
    try:
        int(color, 16)
    except ValueError:
        return None
    return f"#{color.lower()}"


def _nested(payload: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(payload, dict):
            return None
        payload = payload.get(key)
    return payload


def original_background(style: dict[str, Any] | None) -> str | None:
    raw = _nested(style, "fill", "fgColor", "rgb") or _nested(style, "fgColor", "rgb")
    return normalize_color(raw)


def original_text_color(style: dict[str, Any] | None) -> str | None:
    return normalize_color(_nested(style, "font", "color", "rgb"))


def original_border(style: dict[str, Any] | None) -> str | None:
    border = _nested(style, "border")
    if isinstance(border, dict) and any(border.values()):
        return IMPORTED_BORDER
    return None


def resolve_style(
    live_meta: StyleOverride | None,
    original_style: dict[str, Any] | None,
) -> ResolvedStyle:
    """Resolve a cell's presentation from its live and imported formatting.

    Imported bold/italic/strikethrough flags only switch a flag on; a live
    override can switch it either way.
    """
    live = live_meta or StyleOverride()
    style = original_style if isinstance(original_style, dict) else None

    def flag(live_value: bool | None, *path: str) -> bool:
        if live_value is not None:
            return live_value
        return bool(_nested(style, *path))

    alignment = live.alignment
    if alignment is None:
        imported = _nested(style, "alignment", "horizontal")
        alignment = imported if isinstance(imported, str) and imported else None

    return ResolvedStyle(
        background_color=normalize_color(live.bg_color) or original_background(style),
        text_color=normalize_color(live.text_color) or original_text_color(style),
        bold=flag(live.bold, "font", "bold"),
        italic=flag(live.italic, "font", "italic"),
        strikethrough=flag(live.strikethrough, "font", "strike"),
        alignment=alignment,
        border=live.borders if live.borders is not None else original_border(style),
    )
