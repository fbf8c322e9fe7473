"""Tests for the directory-backed document store."""

from __future__ import annotations

from pathlib import Path

import pytest

from spreadsheet_editor.services.document_store import DocumentStore
from spreadsheet_editor.utils.exceptions import (
    DocumentNotFoundError,
    StorageReadError,
    StorageWriteError,
)


@pytest.fixture
def store(tmp_path: Path) -> DocumentStore:
    return DocumentStore(tmp_path / "docs")


class TestCreateAndGet:
    def test_round_trip(self, store: DocumentStore) -> None:
        record = store.create("book.xlsx", "xlsx", b"PK\x03\x04", {"sheets": []})

        loaded = store.get(record.id)

        assert loaded.file_name == "book.xlsx"
        assert loaded.edited_data == {"sheets": []}
        assert loaded.raw_file_ref == f"{record.id}.bin"
        assert store.read_raw(loaded) == b"PK\x03\x04"

    def test_without_raw_bytes(self, store: DocumentStore) -> None:
        record = store.create("notes.csv")
        assert record.raw_file_ref is None
        assert store.read_raw(record) is None

    def test_no_temporary_files_are_left(self, store: DocumentStore) -> None:
        store.create("book.xlsx", raw_bytes=b"data")
        assert not list(store.base_dir.glob("*.tmp"))

    def test_list_ids(self, store: DocumentStore) -> None:
        assert store.list_ids() == []
        first = store.create("a.csv")
        second = store.create("b.csv")
        assert store.list_ids() == sorted([first.id, second.id])


class TestFailures:
    @pytest.mark.parametrize("document_id", ["missing", "../etc/passwd", ".hidden", ""])
    def test_unknown_ids(self, store: DocumentStore, document_id: str) -> None:
        with pytest.raises(DocumentNotFoundError):
            store.get(document_id)

    def test_corrupt_record(self, store: DocumentStore) -> None:
        record = store.create("book.xlsx")
        (store.base_dir / f"{record.id}.json").write_text("{not json")

        with pytest.raises(StorageReadError) as exc_info:
            store.get(record.id)
        assert exc_info.value.retryable is True

    def test_missing_raw_blob(self, store: DocumentStore) -> None:
        record = store.create("book.xlsx", raw_bytes=b"data")
        (store.base_dir / f"{record.id}.bin").unlink()

        with pytest.raises(StorageReadError):
            store.read_raw(record)

    def test_unwritable_directory(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        with pytest.raises(StorageWriteError):
            DocumentStore(blocker / "docs").create("book.xlsx")


class TestUpdates:
    def test_update_edited_data(self, store: DocumentStore) -> None:
        record = store.create("book.xlsx")

        updated = store.update_edited_data(record.id, {"sheets": [{"name": "A"}]})

        assert store.get(record.id).edited_data == {"sheets": [{"name": "A"}]}
        assert updated.updated_at >= record.updated_at

    def test_rename(self, store: DocumentStore) -> None:
        record = store.create("book.xlsx")
        store.rename(record.id, "renamed.xlsx")
        assert store.get(record.id).file_name == "renamed.xlsx"

    def test_delete_removes_record_and_blob(self, store: DocumentStore) -> None:
        record = store.create("book.xlsx", raw_bytes=b"data")

        store.delete(record.id)

        assert list(store.base_dir.iterdir()) == []
        with pytest.raises(DocumentNotFoundError):
            store.get(record.id)
