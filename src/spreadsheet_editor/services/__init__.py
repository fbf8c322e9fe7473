"""Services for the spreadsheet editor."""

from spreadsheet_editor.services.reconciliation import (
    ReconciliationResult,
    ReconciliationSource,
    reconcile,
)
from spreadsheet_editor.services.sheet_editor import SheetEditor

__all__ = ["ReconciliationResult", "ReconciliationSource", "SheetEditor", "reconcile"]
