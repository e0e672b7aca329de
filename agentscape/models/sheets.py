"""Typed views of spreadsheet-service payloads."""

from __future__ import annotations

from pydantic import BaseModel, Field


DEFAULT_ROW_COUNT = 1000
DEFAULT_COLUMN_COUNT = 26


class SheetProperties(BaseModel):
    sheet_id: int
    title: str
    index: int = 0
    row_count: int = DEFAULT_ROW_COUNT
    """Grid size; writes outside it are rejected by the service."""
    column_count: int = DEFAULT_COLUMN_COUNT


class SpreadsheetInfo(BaseModel):
    """Spreadsheet metadata returned by ``get_spreadsheet``."""

    spreadsheet_id: str
    title: str = ""
    sheets: list[SheetProperties] = Field(default_factory=list)

    def find_sheet(self, title: str) -> SheetProperties | None:
        """Look a sheet up by title, case-insensitively."""
        wanted = title.lower()
        for sheet in self.sheets:
            if sheet.title.lower() == wanted:
                return sheet
        return None


class ValueRange(BaseModel):
    """One rectangle of values addressed in A1 notation."""

    range: str
    values: list[list[str]] = Field(default_factory=list)


class UpdateResult(BaseModel):
    updated_range: str
    updated_rows: int = 0
    updated_columns: int = 0
    updated_cells: int = 0
