"""Directory-backed storage for document records and raw uploads.

Each document is a JSON record ``<id>.json`` plus, when the upload is kept,
a raw blob ``<id>.bin`` next to it. Writes go to a temporary file first and
are moved into place so a failed write never leaves a half-written record.
"""

from __future__ import annotations

import contextlib
import os
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from spreadsheet_editor.utils.exceptions import (
    DocumentNotFoundError,
    StorageReadError,
    StorageWriteError,
)
from spreadsheet_editor.utils.logging import get_logger

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


class DocumentRecord(BaseModel):
    """A stored document: metadata plus its edited data in any stored shape."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    file_name: str
    file_type: str | None = None
    raw_file_ref: str | None = None
    edited_data: Any = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class DocumentStore:
    """Thread-safe store of :class:`DocumentRecord` files in one directory."""

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)
        self._lock = threading.RLock()

    def _record_path(self, document_id: str) -> Path:
        if not document_id or "/" in document_id or document_id.startswith("."):
            raise DocumentNotFoundError(document_id)
        return self.base_dir / f"{document_id}.json"

    def _raw_path(self, raw_ref: str) -> Path:
        return self.base_dir / raw_ref

    def _write_atomic(self, path: Path, data: bytes, document_id: str) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            raise StorageWriteError(
                f"Failed to write {path.name}: {e}", document_id=document_id
            ) from e

    def _save_record(self, record: DocumentRecord) -> None:
        self._write_atomic(
            self._record_path(record.id),
            record.model_dump_json().encode("utf-8"),
            record.id,
        )

    def create(
        self,
        file_name: str,
        file_type: str | None = None,
        raw_bytes: bytes | None = None,
        edited_data: Any = None,
    ) -> DocumentRecord:
        """Store a new document and, when given, its raw upload."""
        record = DocumentRecord(
            file_name=file_name,
            file_type=file_type,
            edited_data=edited_data,
        )
        with self._lock:
            if raw_bytes is not None:
                raw_ref = f"{record.id}.bin"
                self._write_atomic(self._raw_path(raw_ref), raw_bytes, record.id)
                record.raw_file_ref = raw_ref
            self._save_record(record)

        logger.info(
            "Document created",
            document_id=record.id,
            file_name=file_name,
            has_raw=raw_bytes is not None,
        )
        return record

    def get(self, document_id: str) -> DocumentRecord:
        """Load a document record.

        Raises:
            DocumentNotFoundError: If no such record exists.
            StorageReadError: If the record exists but cannot be read.
        """
        path = self._record_path(document_id)
        with self._lock:
            if not path.exists():
                raise DocumentNotFoundError(document_id)
            try:
                return DocumentRecord.model_validate_json(path.read_bytes())
            except (OSError, PydanticValidationError) as e:
                raise StorageReadError(
                    f"Failed to read document record: {e}", document_id=document_id
                ) from e

    def read_raw(self, record: DocumentRecord) -> bytes | None:
        """Raw uploaded bytes of a document, or None when none are referenced.

        Raises:
            StorageReadError: If the referenced blob cannot be read.
        """
        if not record.raw_file_ref:
            return None
        path = self._raw_path(record.raw_file_ref)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageReadError(
                f"Failed to read raw file: {e}", document_id=record.id
            ) from e

    def update_edited_data(self, document_id: str, edited_data: Any) -> DocumentRecord:
        """Replace a document's edited data."""
        with self._lock:
            record = self.get(document_id)
            record.edited_data = edited_data
            record.updated_at = _now()
            self._save_record(record)
        return record

    def rename(self, document_id: str, file_name: str) -> DocumentRecord:
        with self._lock:
            record = self.get(document_id)
            record.file_name = file_name
            record.updated_at = _now()
            self._save_record(record)
        logger.info("Document renamed", document_id=document_id, file_name=file_name)
        return record

    def delete(self, document_id: str) -> None:
        """Remove a document record and its raw blob."""
        with self._lock:
            record = self.get(document_id)
            try:
                if record.raw_file_ref:
                    self._raw_path(record.raw_file_ref).unlink(missing_ok=True)
                self._record_path(document_id).unlink(missing_ok=True)
            except OSError as e:
                raise StorageWriteError(
                    f"Failed to delete document: {e}", document_id=document_id
                ) from e
        logger.info("Document deleted", document_id=document_id)

    def list_ids(self) -> list[str]:
        if not self.base_dir.exists():
            return []
        return sorted(path.stem for path in self.base_dir.glob("*.json"))
