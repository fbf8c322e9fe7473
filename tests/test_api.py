"""Tests for the FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi import status

from spreadsheet_editor.api import create_app
from spreadsheet_editor.config import Settings
from spreadsheet_editor.services.document_service import DocumentService
from spreadsheet_editor.services.document_store import DocumentStore
from spreadsheet_editor.services.exporter import XLSX_MEDIA_TYPE

CSV_TYPE = "text/csv"


@asynccontextmanager
async def create_test_client(storage_dir: Path) -> AsyncIterator[httpx.AsyncClient]:
    """Create an async test client backed by a temporary document store."""
    service = DocumentService(
        DocumentStore(storage_dir),
        config=Settings(_env_file=None, save_retry_delay_seconds=0),
    )
    app = create_app(service)
    async with (
        app.router.lifespan_context(app),
        httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://test",
        ) as client,
    ):
        client.app = app  # type: ignore[attr-defined]
        yield client


@pytest.fixture
async def client(tmp_path: Path) -> AsyncIterator[httpx.AsyncClient]:
    async with create_test_client(tmp_path) as ac:
        yield ac


async def upload(
    client: httpx.AsyncClient,
    content: bytes,
    file_name: str = "book.xlsx",
    content_type: str = XLSX_MEDIA_TYPE,
) -> dict[str, Any]:
    response = await client.post(
        "/documents", files={"file": (file_name, content, content_type)}
    )
    assert response.status_code == status.HTTP_201_CREATED, response.text
    body: dict[str, Any] = response.json()
    return body


async def upload_and_open(
    client: httpx.AsyncClient, content: bytes, **kwargs: Any
) -> tuple[str, dict[str, Any]]:
    document = await upload(client, content, **kwargs)
    response = await client.post(f"/documents/{document['id']}/open")
    assert response.status_code == status.HTTP_200_OK, response.text
    return document["id"], response.json()


class TestHealthEndpoint:
    async def test_health_check(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        datetime.fromisoformat(data["timestamp"])

    async def test_request_id_is_echoed(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health", headers={"X-Request-ID": "req-1"})
        assert response.headers["X-Request-ID"] == "req-1"


class TestDocuments:
    async def test_upload_xlsx(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document = await upload(client, styled_xlsx)

        assert document["file_name"] == "book.xlsx"
        assert document["has_raw_file"] is True
        assert document["parsed"] is True

    async def test_upload_unsupported_format(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/documents",
            files={"file": ("logo.png", b"\x89PNG\r\n\x1a\n\xff", "image/png")},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["error_code"] == "E1002"
        assert "request_id" in body

    async def test_get_rename_and_delete(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document = await upload(client, styled_xlsx)
        url = f"/documents/{document['id']}"

        assert (await client.get(url)).json()["id"] == document["id"]

        renamed = await client.patch(url, json={"file_name": "q3.xlsx"})
        assert renamed.json()["file_name"] == "q3.xlsx"

        assert (await client.delete(url)).status_code == status.HTTP_204_NO_CONTENT
        missing = await client.get(url)
        assert missing.status_code == status.HTTP_404_NOT_FOUND
        assert missing.json()["error_code"] == "E3001"


class TestEditingSession:
    async def test_open_shows_evaluated_grid(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        _, display = await upload_and_open(client, styled_xlsx)

        assert [tab["name"] for tab in display["sheets"]] == ["Data", "Other"]
        assert display["active_sheet_index"] == 0
        assert display["grid"][3][1] == "7"
        assert display["has_unsaved_changes"] is False

    async def test_editing_requires_open_session(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document = await upload(client, styled_xlsx)

        response = await client.get(f"/documents/{document['id']}/display")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "E3004"

    async def test_edit_and_recalculate(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)

        edited = await client.put(
            f"/documents/{document_id}/cells",
            json={"edits": [{"row": 1, "col": 1, "value": "10"}]},
        )
        assert edited.json()["grid"][1][1] == "10"
        assert edited.json()["has_unsaved_changes"] is True

        recalculated = await client.post(f"/documents/{document_id}/recalculate")
        assert recalculated.json()["grid"][3][1] == "14"

    async def test_formula_bar_edit(
        self, client: httpx.AsyncClient
    ) -> None:
        document_id, _ = await upload_and_open(
            client, b"2\n3\n", file_name="n.csv", content_type=CSV_TYPE
        )

        selected = await client.post(
            f"/documents/{document_id}/selection", json={"row": 2, "col": 0}
        )
        assert selected.json()["changed"] is True

        await client.put(
            f"/documents/{document_id}/cells",
            json={"formula_bar_value": "=A1*A2"},
        )
        display = (await client.post(f"/documents/{document_id}/recalculate")).json()

        assert display["grid"] == [["2"], ["3"], ["6"]]

    async def test_formula_bar_without_selection(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)

        response = await client.put(
            f"/documents/{document_id}/cells", json={"formula_bar_value": "=1"}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "E5004"

    async def test_empty_edit_request_is_rejected(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)
        response = await client.put(f"/documents/{document_id}/cells", json={})
        assert response.status_code == 422


class TestSheets:
    async def test_add_switch_rename_delete(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)
        base = f"/documents/{document_id}/sheets"

        added = await client.post(base, json={"name": "Summary"})
        assert added.status_code == status.HTTP_201_CREATED
        assert added.json()["active_sheet_index"] == 2

        activated = await client.post(f"{base}/1/activate")
        assert activated.json()["grid"] == [["Secondary"]]

        renamed = await client.patch(f"{base}/1", json={"name": "Notes"})
        assert [t["name"] for t in renamed.json()["sheets"]] == ["Data", "Notes", "Summary"]

        deleted = await client.delete(f"{base}/0")
        body = deleted.json()
        assert [t["index"] for t in body["sheets"]] == [0, 1]
        assert body["active_sheet_index"] == 0
        assert body["grid"] == [["Secondary"]]

    async def test_last_sheet_cannot_be_deleted(self, client: httpx.AsyncClient) -> None:
        document_id, _ = await upload_and_open(
            client, b"a\n", file_name="one.csv", content_type=CSV_TYPE
        )

        response = await client.delete(f"/documents/{document_id}/sheets/0")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "E5001"

    async def test_unknown_sheet_index(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)
        response = await client.post(f"/documents/{document_id}/sheets/9/activate")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    async def test_duplicate_sheet_name(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)
        response = await client.patch(
            f"/documents/{document_id}/sheets/0", json={"name": "other"}
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "E5003"


class TestFormatting:
    async def test_imported_style_is_resolved(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)

        response = await client.get(f"/documents/{document_id}/cells/1/0/style")

        assert response.json()["style"]["background_color"] == "#00ff00"

    async def test_live_style_wins(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)

        response = await client.post(
            f"/documents/{document_id}/styles",
            json={
                "action": "set_background_color",
                "value": "#ff00ff",
                "range": {"start_row": 1, "start_col": 0},
            },
        )

        body = response.json()
        assert body["style"]["background_color"] == "#ff00ff"
        assert body["css"]["background-color"] == "#ff00ff"

    async def test_toggle_on_selection(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)
        await client.post(f"/documents/{document_id}/selection", json={"row": 0, "col": 0})

        response = await client.post(
            f"/documents/{document_id}/styles", json={"action": "toggle_bold"}
        )

        assert response.json()["style"]["bold"] is False

    async def test_unknown_action(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)
        response = await client.post(
            f"/documents/{document_id}/styles",
            json={"action": "sparkle", "range": {"start_row": 0, "start_col": 0}},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "E9003"


class TestSaveAndExport:
    async def test_saved_edits_survive_reopen(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)
        await client.put(
            f"/documents/{document_id}/cells",
            json={"edits": [{"row": 0, "col": 0, "value": "Customer"}]},
        )

        saved = await client.post(f"/documents/{document_id}/save")
        assert saved.status_code == status.HTTP_200_OK
        assert saved.json()["sheet_count"] == 2

        reopened = await client.post(f"/documents/{document_id}/open")
        assert reopened.json()["grid"][0][0] == "Customer"
        assert reopened.json()["has_unsaved_changes"] is False

    async def test_export(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx, file_name="q3.xlsx")

        response = await client.get(f"/documents/{document_id}/export")

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == XLSX_MEDIA_TYPE
        assert 'filename="q3.xlsx"' in response.headers["content-disposition"]
        assert response.content.startswith(b"PK")


class TestAutosave:
    async def test_edits_schedule_an_autosave(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)
        autosaver = client.app.state.autosavers[document_id]  # type: ignore[attr-defined]
        assert autosaver.scheduled is False

        await client.put(
            f"/documents/{document_id}/cells",
            json={"edits": [{"row": 0, "col": 0, "value": "x"}]},
        )
        assert autosaver.scheduled is True

        await client.post(f"/documents/{document_id}/save")
        assert autosaver.scheduled is False

    async def test_deleting_a_document_stops_its_autosave(
        self, client: httpx.AsyncClient, styled_xlsx: bytes
    ) -> None:
        document_id, _ = await upload_and_open(client, styled_xlsx)
        await client.post(f"/documents/{document_id}/sheets", json={"name": "New"})

        await client.delete(f"/documents/{document_id}")

        assert document_id not in client.app.state.autosavers  # type: ignore[attr-defined]
