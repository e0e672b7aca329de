"""File-store layout: detection and slot addressing.

The container sheet stores one file per *slot*.  In the ``column`` layout
the 12 labels run down column A and each further column is a file; in the
legacy ``row`` layout the labels form row 1 and each further row is a file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from agentscape import schema
from agentscape.errors import SheetsAPIError, is_missing_range_error
from agentscape.models.enums import Dimension, Layout
from agentscape.sheets.a1 import a1, cell, column_letter

if TYPE_CHECKING:
    from agentscape.workspace import Workspace

DETECTION_RANGE = f"A1:{column_letter(schema.SCAN_COLUMNS - 1)}{schema.FIELD_COUNT}"


@dataclass(frozen=True)
class Slot:
    """One file's position: 0-based column (column layout) or 0-based row (row layout)."""

    layout: Layout
    position: int

    @property
    def dimension(self) -> Dimension:
        return Dimension.COLUMNS if self.layout == Layout.COLUMN else Dimension.ROWS

    def cell(self, field: int) -> str:
        """A1 reference of one field (0-based label index)."""
        if self.layout == Layout.COLUMN:
            return cell(self.position, field + 1)
        return cell(field, self.position + 1)

    def span(self) -> str:
        """A1 reference covering all 12 fields."""
        return f"{self.cell(0)}:{self.cell(schema.FIELD_COUNT - 1)}"

    def describe(self) -> str:
        if self.layout == Layout.COLUMN:
            return f"column {column_letter(self.position)}"
        return f"row {self.position + 1}"


def derived_formulas(layout: Layout) -> tuple[str, str]:
    """(ContextLen, Hash) formulas referencing the slot's own content cell.

    Position-relative, so they stay correct when slots shift after a delete.
    """
    if layout == Layout.COLUMN:
        content = f"INDIRECT(ADDRESS({schema.CONTENT_IDX + 1},COLUMN()))"
    else:
        content = f"INDIRECT(ADDRESS(ROW(),{schema.CONTENT_IDX + 1}))"
    return f"=INT(LEN({content})/4)", f'=IF({content}="","",SHA256({content}))'


# -- Label lines ---------------------------------------------------------------


def column_labels(grid: list[list[str]]) -> list[str]:
    """Column A, rows 1-12, padded with ``""``."""
    return [(grid[r][0] if r < len(grid) and grid[r] else "") for r in range(schema.FIELD_COUNT)]


def row_labels(grid: list[list[str]]) -> list[str]:
    """Row 1, columns A-L, padded with ``""``."""
    first = grid[0] if grid else []
    return [(first[c] if c < len(first) else "") for c in range(schema.FIELD_COUNT)]


def label_matches(found: list[str]) -> int:
    return sum(1 for got, want in zip(found, schema.FILE_LABELS, strict=False) if got.strip() == want)


def classify(grid: list[list[str]]) -> Layout | None:
    """Layout whose label line is exactly right, ``None`` if neither is."""
    if column_labels(grid) == list(schema.FILE_LABELS):
        return Layout.COLUMN
    if row_labels(grid) == list(schema.FILE_LABELS):
        return Layout.ROW
    return None


def repair_axis(grid: list[list[str]]) -> Layout:
    """Axis that already holds more of the labels (column wins ties)."""
    if label_matches(row_labels(grid)) > label_matches(column_labels(grid)):
        return Layout.ROW
    return Layout.COLUMN


# -- Remote --------------------------------------------------------------------


async def read_detection_grid(workspace: Workspace, title: str) -> list[list[str]] | None:
    """Top-left block used for layout decisions, ``None`` if the sheet is unreadable."""
    range_ = a1(title, DETECTION_RANGE)
    try:
        return await workspace.call("read file-store labels", workspace.backend.get_values, range_)
    except SheetsAPIError as exc:
        if is_missing_range_error(exc):
            return None
        raise


async def detect_layout(workspace: Workspace) -> Layout:
    """Column A holding the exact labels means ``column``; anything else is ``row``.

    A missing container resolves to ``column``, which is what bootstrap creates.
    """
    title = await workspace.sheet_title(schema.FILE_STORE_SHEET)
    if title is None:
        return Layout.COLUMN
    grid = await read_detection_grid(workspace, title)
    if grid is None:
        return Layout.COLUMN
    return Layout.COLUMN if column_labels(grid) == list(schema.FILE_LABELS) else Layout.ROW
