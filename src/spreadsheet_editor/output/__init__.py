"""Output package: persisted form and tabular views of a workbook."""

from spreadsheet_editor.output.dataframe import sheet_to_dataframe
from spreadsheet_editor.output.persisted_form import (
    PersistedForm,
    bake_style,
    compact_cell,
    serialize_workbook,
)

__all__ = [
    "PersistedForm",
    "bake_style",
    "compact_cell",
    "serialize_workbook",
    "sheet_to_dataframe",
]
