"""In-process spreadsheet backend.

Behaves like the remote service for everything the engine relies on:

* A1 ranges (cells, rectangles, ``A:L``, ``1:12``, whole sheets, quoted titles);
  an unknown sheet is a 400 ``Unable to parse range`` error;
* reads trim trailing empty cells and rows;
* ``USER_ENTERED`` input treats ``=...`` as a formula and strips one leading
  apostrophe (forcing literal text); ``RAW`` stores values verbatim;
* the engine's own derived-field formulas (token estimate, content hash) are
  evaluated on formatted reads, anything else renders as ``#NAME?``;
* a grid size per sheet (1000 x 26 by default); writes outside it fail with
  400 ``exceeds grid limits`` while appends grow the grid;
* ``addSheet``, ``appendDimension`` and ``deleteDimension`` structural
  requests, with cells shifted on delete.

Used by the test suite and handy for offline experiments.  State lives only in
the instance.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from agentscape.errors import SheetsAPIError
from agentscape.models.enums import Dimension, ValueInputOption, ValueRenderOption
from agentscape.models.sheets import (
    DEFAULT_COLUMN_COUNT,
    DEFAULT_ROW_COUNT,
    SheetProperties,
    SpreadsheetInfo,
    UpdateResult,
    ValueRange,
)
from agentscape.sheets.a1 import GridRange, a1, cell, column_index, parse_range

_NAME_ERROR = "#NAME?"

_REF_COLUMN_RE = re.compile(r"INDIRECT\(ADDRESS\((\d+),COLUMN\(\)\)\)")
_REF_ROW_RE = re.compile(r"INDIRECT\(ADDRESS\(ROW\(\),(\d+)\)\)")
_REF_CELL_RE = re.compile(r"(?<![A-Z])([A-Z]{1,3})(\d+)(?![\d(])")
_LEN_RE = re.compile(r"^INT\(LEN\((@\d+)\)/4\)$")
_HASH_RE = re.compile(r'^IF\((@\d+)="","",SHA256\((@\d+)\)\)$')


@dataclass
class _Cell:
    value: str
    formula: bool = False


@dataclass
class _Sheet:
    sheet_id: int
    title: str
    index: int
    row_count: int = DEFAULT_ROW_COUNT
    column_count: int = DEFAULT_COLUMN_COUNT
    cells: dict[tuple[int, int], _Cell] = field(default_factory=dict)

    def extent(self) -> tuple[int, int]:
        """(rows, cols) spanned by non-empty cells."""
        if not self.cells:
            return 0, 0
        return max(r for r, _ in self.cells) + 1, max(c for _, c in self.cells) + 1


def _bad_range(range_: str) -> SheetsAPIError:
    return SheetsAPIError(400, f"Unable to parse range: {range_}", reason="badRequest")


class InMemorySpreadsheet:
    """In-memory implementation of the ``SheetsBackend`` protocol."""

    def __init__(
        self,
        spreadsheet_id: str = "memory-spreadsheet",
        *,
        title: str = "Untitled spreadsheet",
        sheets: tuple[str, ...] = ("Sheet1",),
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.title = title
        self._sheets: dict[str, _Sheet] = {}
        self._next_sheet_id = 0
        for name in sheets:
            self.add_sheet(name)

    # -- Direct access (synchronous, not part of the protocol) -----------------

    def add_sheet(self, title: str, *, rows: int = DEFAULT_ROW_COUNT, columns: int = DEFAULT_COLUMN_COUNT) -> int:
        if self._find(title) is not None:
            msg = f'A sheet with the name "{title}" already exists. Please enter another name.'
            raise SheetsAPIError(400, msg, reason="badRequest")
        sheet_id = self._next_sheet_id
        self._next_sheet_id += 1
        self._sheets[title] = _Sheet(
            sheet_id=sheet_id,
            title=title,
            index=len(self._sheets),
            row_count=rows,
            column_count=columns,
        )
        return sheet_id

    def set_values(self, range_: str, values: list[list[Any]]) -> None:
        """Seed cells as if typed by a user (``USER_ENTERED``); the grid grows to fit."""
        self._write(range_, values, ValueInputOption.USER_ENTERED, grow=True)

    def grid_size(self, sheet: str) -> tuple[int, int]:
        """(rows, columns) of the sheet's grid."""
        found = self._find(sheet)
        if found is None:
            raise _bad_range(sheet)
        return found.row_count, found.column_count

    def grid(self, sheet: str, render: ValueRenderOption = ValueRenderOption.FORMATTED_VALUE) -> list[list[str]]:
        """Whole sheet as a trimmed grid."""
        return self._read(a1(sheet), render)

    def value(self, sheet: str, ref: str) -> str:
        """Formatted value of one cell, ``""`` when empty."""
        rows = self._read(a1(sheet, ref), ValueRenderOption.FORMATTED_VALUE)
        return rows[0][0] if rows and rows[0] else ""

    def formula(self, sheet: str, ref: str) -> str:
        rows = self._read(a1(sheet, ref), ValueRenderOption.FORMULA)
        return rows[0][0] if rows and rows[0] else ""

    def has_sheet(self, title: str) -> bool:
        return self._find(title) is not None

    # -- Protocol: metadata ----------------------------------------------------

    async def get_spreadsheet(self) -> SpreadsheetInfo:
        sheets = sorted(self._sheets.values(), key=lambda s: s.index)
        return SpreadsheetInfo(
            spreadsheet_id=self.spreadsheet_id,
            title=self.title,
            sheets=[
                SheetProperties(
                    sheet_id=s.sheet_id,
                    title=s.title,
                    index=s.index,
                    row_count=s.row_count,
                    column_count=s.column_count,
                )
                for s in sheets
            ],
        )

    # -- Protocol: values ------------------------------------------------------

    async def get_values(
        self,
        range_: str,
        render: ValueRenderOption = ValueRenderOption.FORMATTED_VALUE,
    ) -> list[list[str]]:
        return self._read(range_, render)

    async def batch_get_values(self, ranges: list[str]) -> list[list[list[str]]]:
        return [self._read(r, ValueRenderOption.FORMATTED_VALUE) for r in ranges]

    async def update_values(
        self,
        range_: str,
        values: list[list[Any]],
        input_option: ValueInputOption = ValueInputOption.USER_ENTERED,
    ) -> UpdateResult:
        return self._write(range_, values, input_option)

    async def append_values(
        self,
        range_: str,
        values: list[list[Any]],
        input_option: ValueInputOption = ValueInputOption.USER_ENTERED,
    ) -> UpdateResult:
        sheet, grid = self._resolve(range_)
        start_col = grid.start_col or 0
        end_col = grid.end_col
        occupied = [r for (r, c) in sheet.cells if c >= start_col and (end_col is None or c < end_col)]
        next_row = max(occupied) + 1 if occupied else (grid.start_row or 0)
        # Appends insert rows as needed
        return self._write(a1(sheet.title, cell(start_col, next_row + 1)), values, input_option, grow=True)

    async def batch_update_values(
        self,
        data: list[ValueRange],
        input_option: ValueInputOption = ValueInputOption.USER_ENTERED,
    ) -> int:
        # Validate every range before touching anything
        for item in data:
            sheet, grid = self._resolve(item.range)
            _check_bounds(sheet, grid, item.values, item.range)
        return sum(self._write(item.range, item.values, input_option).updated_cells for item in data)

    async def clear_values(self, range_: str) -> str:
        sheet, grid = self._resolve(range_)
        for key in [k for k in sheet.cells if _contains(grid, *k)]:
            del sheet.cells[key]
        return range_

    # -- Protocol: structure ---------------------------------------------------

    async def batch_update(self, requests: list[dict[str, Any]]) -> list[dict[str, Any]]:
        replies: list[dict[str, Any]] = []
        for request in requests:
            if "addSheet" in request:
                props = request["addSheet"].get("properties", {})
                title = props.get("title", f"Sheet{self._next_sheet_id + 1}")
                size = props.get("gridProperties", {})
                sheet_id = self.add_sheet(
                    title,
                    rows=size.get("rowCount", DEFAULT_ROW_COUNT),
                    columns=size.get("columnCount", DEFAULT_COLUMN_COUNT),
                )
                sheet = self._sheets[title]
                replies.append({
                    "addSheet": {
                        "properties": {
                            "sheetId": sheet_id,
                            "title": title,
                            "index": sheet.index,
                            "gridProperties": {"rowCount": sheet.row_count, "columnCount": sheet.column_count},
                        }
                    }
                })
            elif "appendDimension" in request:
                self._append_dimension(request["appendDimension"])
                replies.append({})
            elif "deleteDimension" in request:
                self._delete_dimension(request["deleteDimension"]["range"])
                replies.append({})
            else:
                msg = f"Unsupported request: {', '.join(request)}"
                raise SheetsAPIError(400, msg, reason="badRequest")
        return replies

    # -- Internals -------------------------------------------------------------

    def _find(self, title: str) -> _Sheet | None:
        wanted = title.lower()
        for sheet in self._sheets.values():
            if sheet.title.lower() == wanted:
                return sheet
        return None

    def _resolve(self, range_: str) -> tuple[_Sheet, GridRange]:
        try:
            grid = parse_range(range_)
        except ValueError:
            raise _bad_range(range_) from None
        sheet = self._find(grid.sheet)
        if sheet is None:
            raise _bad_range(range_)
        return sheet, grid

    def _read(self, range_: str, render: ValueRenderOption) -> list[list[str]]:
        sheet, grid = self._resolve(range_)
        rows, cols = sheet.extent()
        start_row = grid.start_row or 0
        start_col = grid.start_col or 0
        end_row = min(grid.end_row if grid.end_row is not None else rows, rows)
        end_col = min(grid.end_col if grid.end_col is not None else cols, cols)

        out: list[list[str]] = []
        for r in range(start_row, end_row):
            row = [self._render(sheet, r, c, render) for c in range(start_col, end_col)]
            while row and row[-1] == "":
                row.pop()
            out.append(row)
        while out and not out[-1]:
            out.pop()
        return out

    def _render(self, sheet: _Sheet, row: int, col: int, render: ValueRenderOption) -> str:
        stored = sheet.cells.get((row, col))
        if stored is None:
            return ""
        if not stored.formula or render == ValueRenderOption.FORMULA:
            return stored.value
        return self._evaluate(sheet, row, col, stored.value)

    def _write(
        self,
        range_: str,
        values: list[list[Any]],
        input_option: ValueInputOption,
        *,
        grow: bool = False,
    ) -> UpdateResult:
        sheet, grid = self._resolve(range_)
        if grow:
            rows, columns = _needed(grid, values)
            sheet.row_count = max(sheet.row_count, rows)
            sheet.column_count = max(sheet.column_count, columns)
        _check_bounds(sheet, grid, values, range_)
        start_row = grid.start_row or 0
        start_col = grid.start_col or 0
        updated = 0
        width = 0
        for dr, row in enumerate(values):
            width = max(width, len(row))
            for dc, raw in enumerate(row):
                if raw is None:
                    continue
                key = (start_row + dr, start_col + dc)
                stored = _coerce(raw, input_option)
                if stored is None:
                    sheet.cells.pop(key, None)
                else:
                    sheet.cells[key] = stored
                updated += 1
        end_ref = cell(start_col + max(width, 1) - 1, start_row + max(len(values), 1))
        return UpdateResult(
            updated_range=a1(sheet.title, f"{cell(start_col, start_row + 1)}:{end_ref}"),
            updated_rows=len(values),
            updated_columns=width,
            updated_cells=updated,
        )

    def _by_id(self, sheet_id: Any) -> _Sheet:
        sheet = next((s for s in self._sheets.values() if s.sheet_id == sheet_id), None)
        if sheet is None:
            msg = f"No grid with id: {sheet_id}"
            raise SheetsAPIError(400, msg, reason="badRequest")
        return sheet

    def _append_dimension(self, spec: dict[str, Any]) -> None:
        sheet = self._by_id(spec.get("sheetId"))
        length = int(spec.get("length", 0))
        if length <= 0:
            msg = "Invalid appendDimension length"
            raise SheetsAPIError(400, msg, reason="badRequest")
        if spec["dimension"] == Dimension.ROWS:
            sheet.row_count += length
        else:
            sheet.column_count += length
        logger.debug("Appended {} {} to {}", length, spec["dimension"], sheet.title)

    def _delete_dimension(self, spec: dict[str, Any]) -> None:
        sheet = self._by_id(spec.get("sheetId"))
        start, end = int(spec["startIndex"]), int(spec["endIndex"])
        if end <= start:
            msg = "Invalid deleteDimension range"
            raise SheetsAPIError(400, msg, reason="badRequest")
        by_rows = spec["dimension"] == Dimension.ROWS
        if by_rows:
            sheet.row_count -= max(min(end, sheet.row_count) - start, 0)
        else:
            sheet.column_count -= max(min(end, sheet.column_count) - start, 0)
        shifted: dict[tuple[int, int], _Cell] = {}
        for (r, c), value in sheet.cells.items():
            pos = r if by_rows else c
            if start <= pos < end:
                continue
            if pos >= end:
                pos -= end - start
            shifted[(pos, c) if by_rows else (r, pos)] = value
        sheet.cells = shifted
        logger.debug("Deleted {} {}-{} from {}", spec["dimension"], start, end, sheet.title)

    # -- Formula evaluation ----------------------------------------------------

    def _evaluate(self, sheet: _Sheet, row: int, col: int, formula: str) -> str:
        refs: list[tuple[int, int]] = []

        def _ref(r: int, c: int) -> str:
            if (r, c) not in refs:
                refs.append((r, c))
            return f"@{refs.index((r, c))}"

        expr = formula[1:].replace(" ", "")
        expr = _REF_COLUMN_RE.sub(lambda m: _ref(int(m.group(1)) - 1, col), expr)
        expr = _REF_ROW_RE.sub(lambda m: _ref(row, int(m.group(1)) - 1), expr)
        expr = _REF_CELL_RE.sub(lambda m: _ref(int(m.group(2)) - 1, column_index(m.group(1))), expr)

        def _text(token: str) -> str:
            r, c = refs[int(token[1:])]
            if (r, c) == (row, col):
                return "#REF!"
            return self._render(sheet, r, c, ValueRenderOption.FORMATTED_VALUE)

        if match := _LEN_RE.match(expr):
            return str(len(_text(match.group(1))) // 4)
        if (match := _HASH_RE.match(expr)) and match.group(1) == match.group(2):
            text = _text(match.group(1))
            return hashlib.sha256(text.encode()).hexdigest() if text else ""
        return _NAME_ERROR


def _contains(grid: GridRange, row: int, col: int) -> bool:
    return (
        (grid.start_row is None or row >= grid.start_row)
        and (grid.end_row is None or row < grid.end_row)
        and (grid.start_col is None or col >= grid.start_col)
        and (grid.end_col is None or col < grid.end_col)
    )


def _needed(grid: GridRange, values: list[list[Any]]) -> tuple[int, int]:
    """(rows, columns) the grid must have to hold ``values`` written at ``grid``."""
    start_row = grid.start_row or 0
    start_col = grid.start_col or 0
    width = max((len(row) for row in values), default=0)
    rows = max(start_row + len(values), grid.end_row or 0)
    columns = max(start_col + width, grid.end_col or 0)
    return rows, columns


def _check_bounds(sheet: _Sheet, grid: GridRange, values: list[list[Any]], range_: str) -> None:
    rows, columns = _needed(grid, values)
    if rows > sheet.row_count or columns > sheet.column_count:
        msg = (
            f"Range ({range_}) exceeds grid limits. "
            f"Max rows: {sheet.row_count}, max columns: {sheet.column_count}"
        )
        raise SheetsAPIError(400, msg, reason="badRequest")


def _coerce(raw: Any, input_option: ValueInputOption) -> _Cell | None:
    if isinstance(raw, bool):
        text = "TRUE" if raw else "FALSE"
    else:
        text = str(raw)
    if text == "":
        return None
    if input_option == ValueInputOption.RAW:
        return _Cell(text)
    if text.startswith("'"):
        return _Cell(text[1:]) if len(text) > 1 else None
    if text.startswith("="):
        return _Cell(text, formula=True)
    return _Cell(text)
