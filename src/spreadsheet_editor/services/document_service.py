"""Document lifecycle: upload, open, save, export, rename and delete.

Blocking storage calls, decoding and reconciliation run in worker threads. An
open editor is only ever touched from the calling coroutine. A save flushes
and serializes the editor synchronously before the first write is attempted,
so the in-memory workbook is final regardless of how the write turns out.
Changes made while the write is in flight keep the session dirty.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from functools import partial
from pathlib import PurePath
from typing import Any

from spreadsheet_editor.config import Settings, settings
from spreadsheet_editor.output.persisted_form import serialize_workbook
from spreadsheet_editor.services.autosave import Autosaver
from spreadsheet_editor.services.document_store import DocumentRecord, DocumentStore
from spreadsheet_editor.services.evaluation import CalculationEngine
from spreadsheet_editor.services.raw_file_decoder import RawFileDecoder, detect_format
from spreadsheet_editor.services.reconciliation import reconcile
from spreadsheet_editor.services.sheet_editor import SheetEditor
from spreadsheet_editor.utils.exceptions import (
    DocumentShapeError,
    FileError,
    FileTooLargeError,
    StorageError,
    StorageWriteError,
    ValidationError,
)
from spreadsheet_editor.utils.logging import LogContext, get_logger, timed_operation
from spreadsheet_editor.workbook_document import Workbook

logger = get_logger(__name__)


class DocumentService:
    """Coordinates the document store, reconciliation and editing sessions."""

    def __init__(
        self,
        store: DocumentStore,
        config: Settings | None = None,
        engine: CalculationEngine | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.config = config or settings
        self.engine = engine
        self._sleep = sleep

    async def create_document(
        self,
        file_name: str,
        content: bytes,
        file_type: str | None = None,
    ) -> DocumentRecord:
        """Store an upload and parse it into the multi-sheet form right away.

        A file that cannot be decoded is still stored; its ``edited_data``
        stays empty and opening it falls back to the raw bytes.

        Raises:
            ValidationError: If no file name is given.
            FileTooLargeError: If the upload exceeds the size limit.
            UnsupportedFormatError: If the bytes are not a supported format.
        """
        if not file_name:
            raise ValidationError("A file name must be provided", field="file")
        if len(content) > self.config.max_file_size_bytes:
            raise FileTooLargeError(
                file_size=len(content),
                max_size=self.config.max_file_size_bytes,
                file_name=file_name,
            )
        detect_format(content, file_type=file_type, file_name=file_name)

        edited_data: dict[str, Any] | None = None
        with timed_operation(logger, "parse_upload") as metrics:
            try:
                sheets = await asyncio.to_thread(
                    RawFileDecoder().decode,
                    content,
                    file_type=file_type,
                    file_name=file_name,
                )
            except (FileError, DocumentShapeError) as e:
                logger.warning(
                    "Upload could not be parsed; keeping raw bytes only",
                    file_name=file_name,
                    error=e.message,
                )
            else:
                metrics.sheets_processed = len(sheets)
                persisted = await asyncio.to_thread(
                    serialize_workbook, Workbook(sheets=sheets)
                )
                edited_data = persisted.payload

        return await asyncio.to_thread(
            self.store.create,
            file_name,
            file_type,
            content,
            edited_data,
        )

    async def get_document(self, document_id: str) -> DocumentRecord:
        return await asyncio.to_thread(self.store.get, document_id)

    async def open_document(self, document_id: str) -> SheetEditor:
        """Load a document and start an editing session on it.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            StorageReadError: If the record itself cannot be read.
        """
        with LogContext(document_id=document_id):
            with timed_operation(logger, "open_document") as metrics:
                record = await asyncio.to_thread(self.store.get, document_id)

                raw_bytes: bytes | None = None
                try:
                    raw_bytes = await asyncio.to_thread(self.store.read_raw, record)
                except StorageError as e:
                    logger.warning("Raw file unavailable", error=e.message)

                result = await asyncio.to_thread(
                    reconcile,
                    record.edited_data,
                    raw_bytes,
                    record.file_type,
                    file_name=record.file_name,
                    default_rows=self.config.default_row_count,
                    default_cols=self.config.default_column_count,
                )
                metrics.sheets_processed = len(result.workbook.sheets)
                metrics.custom_metrics["source"] = result.source.value

            return await asyncio.to_thread(
                partial(
                    SheetEditor.from_reconciliation,
                    result,
                    engine=self.engine,
                    default_rows=self.config.default_row_count,
                    default_cols=self.config.default_column_count,
                    persist_live_styles=self.config.persist_live_styles,
                )
            )

    async def save_document(
        self, document_id: str, editor: SheetEditor
    ) -> DocumentRecord:
        """Flush the editor and write its persisted form, retrying on failure.

        Raises:
            StorageWriteError: If every attempt failed.
            DocumentNotFoundError: If the document no longer exists.
        """
        revision = editor.revision
        payload = editor.save()
        max_attempts = self.config.save_max_attempts
        last_error: StorageError | None = None

        with LogContext(document_id=document_id):
            with timed_operation(logger, "save_document") as metrics:
                for attempt in range(1, max_attempts + 1):
                    metrics.attempts = attempt
                    try:
                        record = await asyncio.to_thread(
                            self.store.update_edited_data, document_id, payload
                        )
                    except StorageError as e:
                        last_error = e
                        logger.warning(
                            "Save attempt failed",
                            attempt=attempt,
                            max_attempts=max_attempts,
                            error=e.message,
                        )
                        if attempt < max_attempts:
                            await self._sleep(
                                self.config.save_retry_delay_seconds * attempt
                            )
                        continue

                    editor.mark_saved(revision)
                    logger.info(
                        "Document saved",
                        attempt=attempt,
                        has_unsaved_changes=editor.has_unsaved_changes,
                    )
                    return record

        raise StorageWriteError(
            f"Failed to save document after {max_attempts} attempts",
            document_id=document_id,
            attempts=max_attempts,
        ) from last_error

    def autosaver_for(self, document_id: str, editor: SheetEditor) -> Autosaver:
        """Debounced saver for an open session, configured from settings."""

        async def save() -> None:
            await self.save_document(document_id, editor)

        return Autosaver(
            save, self.config.autosave_interval_seconds, sleep=self._sleep
        )

    async def export_document(
        self, document_id: str, editor: SheetEditor
    ) -> tuple[bytes, str]:
        """Export the editor's workbook; returns the bytes and a file name."""
        content = editor.export()
        record = await asyncio.to_thread(self.store.get, document_id)
        stem = PurePath(record.file_name).stem if record.file_name else ""
        file_name = f"{stem}.xlsx" if stem else self.config.export_file_name
        return content, file_name

    async def rename_document(self, document_id: str, file_name: str) -> DocumentRecord:
        cleaned = file_name.strip()
        if not cleaned:
            raise ValidationError("File name must not be empty", field="file_name")
        return await asyncio.to_thread(self.store.rename, document_id, cleaned)

    async def delete_document(self, document_id: str) -> None:
        await asyncio.to_thread(self.store.delete, document_id)
