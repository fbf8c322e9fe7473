"""Tests for the reconciliation fallback chain."""

from __future__ import annotations

from typing import Any

import pytest

from spreadsheet_editor.services.reconciliation import (
    EMPTY_DOCUMENT_NOTICE,
    ReconciliationInput,
    ReconciliationSource,
    first_success,
    reconcile,
)
from spreadsheet_editor.workbook_document import RichCell, Workbook, blank_sheet


def _is_normalized(workbook: Workbook) -> bool:
    for sheet in workbook.sheets:
        if sheet.config is None or len(sheet.data) != sheet.config.row_count:
            return False
        if any(len(row) != sheet.config.column_count for row in sheet.data):
            return False
    return True


class TestPersistedSheets:
    def test_sheets_are_normalized(self) -> None:
        blob = {
            "sheets": [
                {
                    "name": "First",
                    "index": 7,
                    "data": [["a"], ["b", "c", {"v": 1, "f": "=A1"}]],
                    "config": {"rowCount": 4, "columnCount": 2},
                },
                {"name": "Second", "data": [[1, 2]]},
            ]
        }

        result = reconcile(blob)

        assert result.source is ReconciliationSource.PERSISTED_SHEETS
        assert result.notice is None
        assert _is_normalized(result.workbook)
        first, second = result.workbook.sheets
        assert (first.config.row_count, first.config.column_count) == (4, 3)
        assert first.index == 0
        assert second.index == 1
        assert isinstance(first.data[1][2], RichCell)
        assert first.data[1][2].f == "A1"

    def test_missing_and_duplicate_names_are_settled(self) -> None:
        blob = {"sheets": [{"data": [[1]]}, {"name": "Sheet2", "data": []}]}
        names = reconcile(blob).workbook.sheet_names
        assert names == ["Sheet1", "Sheet2"]

    def test_malformed_sheet_falls_through_to_raw(self, styled_xlsx: bytes) -> None:
        result = reconcile({"sheets": ["garbage"]}, styled_xlsx, "xlsx")
        assert result.source is ReconciliationSource.RAW_FILE

    def test_empty_sheets_list_falls_through(self) -> None:
        result = reconcile({"sheets": []})
        assert result.source is ReconciliationSource.EMPTY


class TestLegacyTable:
    def test_records_become_header_and_rows(self) -> None:
        result = reconcile([{"Name": "A", "Val": 1}, {"Name": "B", "Val": 2}])

        assert result.source is ReconciliationSource.LEGACY_TABLE
        sheet = result.workbook.sheets[0]
        assert sheet.name == "Sheet1"
        assert sheet.data == [["Name", "Val"], ["A", 1], ["B", 2]]

    def test_missing_keys_become_empty_strings(self) -> None:
        result = reconcile([{"a": 1, "b": 2}, {"a": 3}])
        assert result.workbook.sheets[0].data[2] == [3, ""]

    def test_non_record_entries_fall_through(self) -> None:
        result = reconcile([{"a": 1}, "oops"])
        assert result.source is ReconciliationSource.EMPTY


class TestRawFileFallback:
    def test_decodes_raw_bytes_when_blob_missing(self, styled_xlsx: bytes) -> None:
        result = reconcile(None, styled_xlsx, "xlsx")

        assert result.source is ReconciliationSource.RAW_FILE
        assert result.workbook.sheet_names == ["Data", "Other"]
        assert _is_normalized(result.workbook)

    def test_undecodable_bytes_fall_through(self) -> None:
        result = reconcile(None, b"PK\x03\x04broken", "xlsx")
        assert result.source is ReconciliationSource.EMPTY


class TestEmptyFallback:
    @pytest.mark.parametrize("blob", [None, {}, [], "text", 42, {"sheets": "x"}])
    def test_nothing_usable_gives_blank_sheet(self, blob: Any) -> None:
        result = reconcile(blob)

        assert result.source is ReconciliationSource.EMPTY
        assert result.notice == EMPTY_DOCUMENT_NOTICE
        assert len(result.workbook.sheets) == 1
        sheet = result.workbook.sheets[0]
        assert len(sheet.data) == 50
        assert all(len(row) == 26 for row in sheet.data)
        assert all(cell is None for row in sheet.data for cell in row)

    def test_custom_default_size(self) -> None:
        result = reconcile(None, default_rows=3, default_cols=2)
        sheet = result.workbook.sheets[0]
        assert (sheet.config.row_count, sheet.config.column_count) == (3, 2)


def test_first_success_skips_failures_in_order() -> None:
    calls: list[str] = []

    def boom(_: ReconciliationInput) -> Workbook | None:
        calls.append("boom")
        raise ValueError("broken")

    def nothing(_: ReconciliationInput) -> Workbook | None:
        calls.append("nothing")
        return None

    def works(_: ReconciliationInput) -> Workbook | None:
        calls.append("works")
        return Workbook(sheets=[blank_sheet("X", 0, 1, 1)])

    def never(_: ReconciliationInput) -> Workbook | None:
        calls.append("never")
        return None

    found = first_success(
        [
            (ReconciliationSource.PERSISTED_SHEETS, boom),
            (ReconciliationSource.LEGACY_TABLE, nothing),
            (ReconciliationSource.RAW_FILE, works),
            (ReconciliationSource.EMPTY, never),
        ],
        ReconciliationInput(None, None, None, None, 50, 26),
    )

    assert found is not None
    assert found[1] is ReconciliationSource.RAW_FILE
    assert calls == ["boom", "nothing", "works"]
