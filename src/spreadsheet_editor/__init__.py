"""Spreadsheet Editor - multi-sheet workbook editing engine and API."""

from spreadsheet_editor.api import app, create_app

__all__ = ["app", "create_app"]
__version__ = "0.1.0"


def main() -> None:
    """Run the FastAPI server using uvicorn."""
    import uvicorn

    from spreadsheet_editor.config import settings

    uvicorn.run(
        "spreadsheet_editor.api:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.debug,
    )
