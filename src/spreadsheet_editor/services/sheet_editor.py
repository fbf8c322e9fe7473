"""Editing session over one open workbook.

The editor owns the active-sheet pointer, the live editing surface, the live
formatting side-table and the current selection. Edits land on the live
surface first and are committed into the workbook at flush points: switching
sheets, saving, exporting and recalculating.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from spreadsheet_editor.output.persisted_form import serialize_workbook
from spreadsheet_editor.services.evaluation import CalculationEngine
from spreadsheet_editor.services.exporter import export_workbook
from spreadsheet_editor.services.projection import project
from spreadsheet_editor.services.reconciliation import ReconciliationResult
from spreadsheet_editor.services.style_resolver import (
    IMPORTED_BORDER,
    ResolvedStyle,
    resolve_style,
)
from spreadsheet_editor.utils.exceptions import (
    LastSheetDeletionError,
    NoSelectionError,
    SheetIndexError,
    SheetNameError,
    ValidationError,
)
from spreadsheet_editor.utils.logging import get_logger
from spreadsheet_editor.workbook_document import (
    TYPE_EMPTY,
    Cell,
    RichCell,
    Selection,
    Sheet,
    StyleOverride,
    Workbook,
    blank_sheet,
    coerce_input,
    display_text,
    is_empty_value,
    normalize_sheet,
    value_type_tag,
)

logger = get_logger(__name__)

ALIGNMENTS = frozenset({"left", "center", "right", "justify"})


class EditSource(str, Enum):
    """Where a live edit came from."""

    GRID = "grid"
    FORMULA_BAR = "formula_bar"


@dataclass(frozen=True)
class LiveEdit:
    """An uncommitted edit on the active sheet."""

    value: Any
    source: EditSource


@dataclass(frozen=True)
class CellRange:
    """Inclusive rectangle of cells on the active sheet."""

    start_row: int
    start_col: int
    end_row: int
    end_col: int

    @classmethod
    def single(cls, row: int, col: int) -> CellRange:
        return cls(row, col, row, col)

    def positions(self) -> Iterator[tuple[int, int]]:
        top, bottom = sorted((self.start_row, self.end_row))
        left, right = sorted((self.start_col, self.end_col))
        for row in range(top, bottom + 1):
            for col in range(left, right + 1):
                yield row, col


def _check_position(row: int, col: int) -> None:
    if row < 0 or col < 0:
        raise ValidationError(
            f"Cell position must not be negative: ({row}, {col})",
            field="position",
        )


def _literal_cell(existing: Cell, value: Any) -> Cell:
    """Cell holding a literal value typed over ``existing``.

    Any formula is dropped; the original style payload is kept.
    """
    style = existing.s if isinstance(existing, RichCell) else None
    if is_empty_value(value):
        if style:
            return RichCell(t=TYPE_EMPTY, w="", s=style)
        return None
    typed = coerce_input(value)
    text = value if isinstance(value, str) else display_text(typed)
    return RichCell(v=typed, t=value_type_tag(typed), w=text, s=style)


def apply_edit(existing: Cell, edit: LiveEdit) -> Cell:
    """Commit one live edit onto the stored cell.

    * Formula bar input starting with ``=`` sets the formula; the previous
      value stays as the cached result until the next evaluation.
    * Grid input on a formula cell only replaces the cached result; the
      formula itself can only be changed from the formula bar.
    * Anything else is stored as a literal and clears the formula.
    """
    value = edit.value
    if (
        edit.source is EditSource.FORMULA_BAR
        and isinstance(value, str)
        and value.startswith("=")
        and len(value) > 1
    ):
        if isinstance(existing, RichCell):
            cell = existing.clone()
        else:
            cell = RichCell(v=existing, t=value_type_tag(existing))
        cell.f = value[1:]
        cell.w = None
        return cell

    if (
        edit.source is EditSource.GRID
        and isinstance(existing, RichCell)
        and existing.f
    ):
        cell = existing.clone()
        typed = None if is_empty_value(value) else coerce_input(value)
        cell.v = typed
        cell.t = value_type_tag(typed)
        cell.w = None
        return cell

    return _literal_cell(existing, value)


class SheetEditor:
    """Editing session for one workbook.

    Args:
        workbook: The workbook to edit; it must contain at least one sheet.
        active_sheet_index: Sheet shown first.
        engine: Calculation engine used for projection.
        default_rows: Rows of newly added sheets.
        default_cols: Columns of newly added sheets.
        persist_live_styles: Bake live formatting into saved payloads.
        notice: Non-fatal message to show when the session opens.
    """

    def __init__(
        self,
        workbook: Workbook,
        *,
        active_sheet_index: int = 0,
        engine: CalculationEngine | None = None,
        default_rows: int = 50,
        default_cols: int = 26,
        persist_live_styles: bool = False,
        notice: str | None = None,
    ) -> None:
        if not workbook.sheets:
            raise ValidationError(
                "A workbook must contain at least one sheet", field="sheets"
            )
        if not 0 <= active_sheet_index < len(workbook.sheets):
            raise SheetIndexError(active_sheet_index, len(workbook.sheets))

        self.workbook = workbook
        self.engine = engine
        self.default_rows = default_rows
        self.default_cols = default_cols
        self.persist_live_styles = persist_live_styles
        self.notice = notice

        self._revision = 0
        self._saved_revision = 0

        self._active = active_sheet_index
        self._pending: dict[tuple[int, int], LiveEdit] = {}
        self._styles: dict[tuple[int, int, int], StyleOverride] = {}
        self._selection: Selection | None = None
        self._formula_bar_value = ""
        self._display: list[list[str]] = self._project()

    @classmethod
    def from_reconciliation(
        cls, result: ReconciliationResult, **kwargs: Any
    ) -> SheetEditor:
        return cls(result.workbook, notice=result.notice, **kwargs)

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def active_sheet_index(self) -> int:
        return self._active

    @property
    def active_sheet(self) -> Sheet:
        return self.workbook.sheets[self._active]

    @property
    def selection(self) -> Selection | None:
        return self._selection

    @property
    def formula_bar_value(self) -> str:
        return self._formula_bar_value

    @property
    def pending_edits(self) -> Mapping[tuple[int, int], LiveEdit]:
        return MappingProxyType(self._pending)

    @property
    def style_overrides(self) -> Mapping[tuple[int, int, int], StyleOverride]:
        return MappingProxyType(self._styles)

    @property
    def revision(self) -> int:
        """Counter bumped by every change to the workbook or its formatting."""
        return self._revision

    @property
    def has_unsaved_changes(self) -> bool:
        return self._revision != self._saved_revision

    @property
    def sheet_names(self) -> list[str]:
        return self.workbook.sheet_names

    def display_grid(self) -> list[list[str]]:
        """The live surface: last projection with uncommitted edits on top."""
        grid = [list(row) for row in self._display]
        for (row, col), edit in self._pending.items():
            while len(grid) <= row:
                grid.append([""] * len(grid[0]) if grid else [])
            cells = grid[row]
            while len(cells) <= col:
                cells.append("")
            cells[col] = display_text(edit.value)
        width = max((len(row) for row in grid), default=0)
        for row in grid:
            row.extend([""] * (width - len(row)))
        return grid

    def _project(self) -> list[list[str]]:
        return project(self.workbook, self._active, engine=self.engine)

    def _check_sheet_index(self, index: int) -> None:
        if not 0 <= index < len(self.workbook.sheets):
            raise SheetIndexError(index, len(self.workbook.sheets))

    # ------------------------------------------------------------------ #
    # Flush
    # ------------------------------------------------------------------ #

    def flush(self) -> int:
        """Commit pending edits into the active sheet's data.

        Returns:
            Number of cells committed.
        """
        if not self._pending:
            return 0

        sheet = self.active_sheet
        for (row, col), edit in sorted(self._pending.items()):
            sheet.set_cell(row, col, apply_edit(sheet.cell(row, col), edit))
        committed = len(self._pending)
        self._pending.clear()

        self.workbook.sheets[self._active] = normalize_sheet(sheet)
        self._display = self._project()
        logger.debug("Flushed live edits", sheet=sheet.name, cells=committed)
        return committed

    def recalculate(self) -> list[list[str]]:
        """Flush and re-project the active sheet."""
        if not self.flush():
            self._display = self._project()
        return self.display_grid()

    # ------------------------------------------------------------------ #
    # Sheets
    # ------------------------------------------------------------------ #

    def switch_sheet(self, new_index: int) -> None:
        """Make another sheet active, committing the current sheet's edits first.

        Raises:
            SheetIndexError: If ``new_index`` does not name a sheet.
        """
        self._check_sheet_index(new_index)
        if new_index == self._active:
            return

        self.flush()
        previous = self._active
        self._active = new_index
        self._reset_selection()
        self._display = self._project()
        logger.info("Switched sheet", from_index=previous, to_index=new_index)

    def _next_sheet_name(self) -> str:
        n = len(self.workbook.sheets) + 1
        while self.workbook.find_sheet(f"Sheet{n}") is not None:
            n += 1
        return f"Sheet{n}"

    def _validate_sheet_name(self, name: str, ignore_index: int | None = None) -> str:
        cleaned = name.strip() if isinstance(name, str) else ""
        if not cleaned:
            raise SheetNameError("Sheet name must not be empty", name=name)
        existing = self.workbook.find_sheet(cleaned)
        if existing is not None and existing.index != ignore_index:
            raise SheetNameError(
                f"A sheet named '{cleaned}' already exists", name=cleaned
            )
        return cleaned

    def add_sheet(self, name: str | None = None) -> int:
        """Append a blank sheet and make it active.

        Returns:
            Index of the new sheet.
        """
        sheet_name = (
            self._validate_sheet_name(name) if name is not None else self._next_sheet_name()
        )
        self.flush()

        index = len(self.workbook.sheets)
        self.workbook.sheets.append(
            blank_sheet(sheet_name, index, self.default_rows, self.default_cols)
        )
        self._active = index
        self._reset_selection()
        self._display = self._project()
        self._revision += 1
        logger.info("Added sheet", name=sheet_name, index=index)
        return index

    def delete_sheet(self, index: int) -> None:
        """Remove a sheet, keeping the active pointer on the same logical sheet.

        Raises:
            SheetIndexError: If ``index`` does not name a sheet.
            LastSheetDeletionError: If it is the only sheet.
        """
        self._check_sheet_index(index)
        if len(self.workbook.sheets) == 1:
            raise LastSheetDeletionError(details={"index": index})

        deleting_active = index == self._active
        if deleting_active:
            self._pending.clear()
        else:
            self.flush()

        removed = self.workbook.sheets.pop(index)
        self.workbook.reindex()

        shifted: dict[tuple[int, int, int], StyleOverride] = {}
        for (sheet_index, row, col), override in self._styles.items():
            if sheet_index == index:
                continue
            new_index = sheet_index - 1 if sheet_index > index else sheet_index
            shifted[(new_index, row, col)] = override
        self._styles = shifted

        if deleting_active:
            self._active = 0
            self._reset_selection()
        elif index < self._active:
            self._active -= 1

        self._display = self._project()
        self._revision += 1
        logger.info(
            "Deleted sheet",
            name=removed.name,
            index=index,
            active_index=self._active,
        )

    def rename_sheet(self, index: int, name: str) -> None:
        """Rename a sheet.

        Raises:
            SheetIndexError: If ``index`` does not name a sheet.
            SheetNameError: If the name is empty or used by another sheet.
        """
        self._check_sheet_index(index)
        cleaned = self._validate_sheet_name(name, ignore_index=index)
        sheet = self.workbook.sheets[index]
        if sheet.name == cleaned:
            return
        old_name = sheet.name
        sheet.name = cleaned
        self._display = self._project()
        self._revision += 1
        logger.info("Renamed sheet", index=index, old_name=old_name, new_name=cleaned)

    # ------------------------------------------------------------------ #
    # Cells and selection
    # ------------------------------------------------------------------ #

    def _reset_selection(self) -> None:
        self._selection = None
        self._formula_bar_value = ""

    def _formula_bar_text(self, row: int, col: int) -> str:
        edit = self._pending.get((row, col))
        if edit is not None:
            return display_text(edit.value)
        cell = self.active_sheet.cell(row, col)
        if isinstance(cell, RichCell):
            if cell.f:
                return f"={cell.f}"
            return cell.w if cell.w is not None else display_text(cell.v)
        if cell is not None:
            return display_text(cell)
        if row < len(self._display) and col < len(self._display[row]):
            return self._display[row][col]
        return ""

    def select_cell(self, row: int, col: int) -> bool:
        """Focus a cell and load its content into the formula bar.

        Returns:
            False when the cell was already selected and nothing changed.
        """
        _check_position(row, col)
        selection = Selection(row=row, col=col)
        if selection == self._selection:
            return False
        self._selection = selection
        self._formula_bar_value = self._formula_bar_text(row, col)
        return True

    def edit_cell(self, row: int, col: int, value: Any) -> None:
        """Grid edit on the active sheet; committed at the next flush."""
        _check_position(row, col)
        self._pending[(row, col)] = LiveEdit(value=value, source=EditSource.GRID)
        self._revision += 1
        if self._selection == Selection(row=row, col=col):
            self._formula_bar_value = display_text(value)

    def edit_from_formula_bar(self, value: str) -> None:
        """Formula-bar edit of the selected cell.

        Raises:
            NoSelectionError: If no cell is selected.
        """
        if self._selection is None:
            raise NoSelectionError()
        key = (self._selection.row, self._selection.col)
        self._pending[key] = LiveEdit(value=value, source=EditSource.FORMULA_BAR)
        self._formula_bar_value = value
        self._revision += 1

    # ------------------------------------------------------------------ #
    # Formatting
    # ------------------------------------------------------------------ #

    def _target_range(self, cell_range: CellRange | None) -> CellRange:
        if cell_range is not None:
            _check_position(cell_range.start_row, cell_range.start_col)
            _check_position(cell_range.end_row, cell_range.end_col)
            return cell_range
        if self._selection is None:
            raise NoSelectionError()
        return CellRange.single(self._selection.row, self._selection.col)

    def _update_styles(self, cell_range: CellRange, **changes: Any) -> None:
        for row, col in cell_range.positions():
            key = (self._active, row, col)
            override = self._styles.get(key, StyleOverride()).merged(**changes)
            if override.is_empty():
                self._styles.pop(key, None)
            else:
                self._styles[key] = override
        self._revision += 1

    def resolve_cell_style(
        self, row: int, col: int, sheet_index: int | None = None
    ) -> ResolvedStyle:
        """Presentation of one cell; live formatting wins over imported style."""
        index = self._active if sheet_index is None else sheet_index
        self._check_sheet_index(index)
        cell = self.workbook.sheets[index].cell(row, col)
        original = cell.s if isinstance(cell, RichCell) else None
        return resolve_style(self._styles.get((index, row, col)), original)

    def _toggle(self, attribute: str, cell_range: CellRange | None) -> bool:
        target_range = self._target_range(cell_range)
        first = next(target_range.positions())
        enabled = not getattr(self.resolve_cell_style(*first), attribute)
        self._update_styles(target_range, **{attribute: enabled})
        return enabled

    def toggle_bold(self, cell_range: CellRange | None = None) -> bool:
        return self._toggle("bold", cell_range)

    def toggle_italic(self, cell_range: CellRange | None = None) -> bool:
        return self._toggle("italic", cell_range)

    def toggle_strikethrough(self, cell_range: CellRange | None = None) -> bool:
        return self._toggle("strikethrough", cell_range)

    def set_background_color(
        self, color: str | None, cell_range: CellRange | None = None
    ) -> None:
        self._update_styles(self._target_range(cell_range), bg_color=color or None)

    def set_text_color(
        self, color: str | None, cell_range: CellRange | None = None
    ) -> None:
        self._update_styles(self._target_range(cell_range), text_color=color or None)

    def set_alignment(
        self, alignment: str | None, cell_range: CellRange | None = None
    ) -> None:
        if alignment is not None and alignment not in ALIGNMENTS:
            raise ValidationError(
                f"Unsupported alignment: {alignment}",
                field="alignment",
                errors=[f"expected one of {sorted(ALIGNMENTS)}"],
            )
        self._update_styles(self._target_range(cell_range), alignment=alignment)

    def set_borders(
        self, enabled: bool, cell_range: CellRange | None = None
    ) -> None:
        self._update_styles(
            self._target_range(cell_range),
            borders=IMPORTED_BORDER if enabled else "",
        )

    def clear_formatting(self, cell_range: CellRange | None = None) -> None:
        """Drop live formatting; imported styles show through again."""
        target_range = self._target_range(cell_range)
        for row, col in target_range.positions():
            self._styles.pop((self._active, row, col), None)
        self._revision += 1

    # ------------------------------------------------------------------ #
    # Save and export
    # ------------------------------------------------------------------ #

    def save(self) -> dict[str, Any]:
        """Flush and return the persisted form ``{"sheets": [...]}``."""
        self.flush()
        persisted = serialize_workbook(
            self.workbook,
            style_overrides=self._styles,
            persist_live_styles=self.persist_live_styles,
        )
        return persisted.payload

    def mark_saved(self, revision: int | None = None) -> None:
        """Record that the workbook as of ``revision`` has been persisted.

        Changes made after that revision keep the session dirty.
        """
        saved = self._revision if revision is None else revision
        self._saved_revision = max(self._saved_revision, saved)

    def export(self) -> bytes:
        """Flush and build an xlsx file from stored values and formulas."""
        self.flush()
        return export_workbook(self.workbook)
