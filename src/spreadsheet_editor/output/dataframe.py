"""Display-level pandas view of a sheet."""

from __future__ import annotations

import pandas as pd

from spreadsheet_editor.services.evaluation import CalculationEngine
from spreadsheet_editor.services.projection import project
from spreadsheet_editor.workbook_document import Workbook


def sheet_to_dataframe(
    workbook: Workbook,
    sheet_index: int = 0,
    *,
    header: bool = True,
    engine: CalculationEngine | None = None,
) -> pd.DataFrame:
    """Return the displayed text of a sheet as a DataFrame.

    With ``header`` the first displayed row becomes the column labels;
    otherwise columns are numbered from 0.
    """
    grid = project(workbook, sheet_index, engine=engine)
    if header:
        return pd.DataFrame(grid[1:], columns=grid[0])
    return pd.DataFrame(grid)
