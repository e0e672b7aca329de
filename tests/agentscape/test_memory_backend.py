"""In-memory backend behaves like the remote service where the engine relies on it."""

from __future__ import annotations

import hashlib

import pytest

from agentscape.errors import SheetsAPIError
from agentscape.managers.layout import derived_formulas
from agentscape.models.enums import Dimension, Layout, ValueInputOption, ValueRenderOption
from agentscape.models.sheets import ValueRange
from agentscape.sheets.base import SheetsBackend
from agentscape.sheets.memory import InMemorySpreadsheet


def test_satisfies_protocol(sheet: InMemorySpreadsheet) -> None:
    assert isinstance(sheet, SheetsBackend)


async def test_reads_trim_trailing_empties(sheet: InMemorySpreadsheet) -> None:
    sheet.set_values("Sheet1!A1", [["a", "", "c"], ["", ""], ["", "b"]])
    assert await sheet.get_values("Sheet1!A1:Z10") == [["a", "", "c"], [], ["", "b"]]
    assert await sheet.get_values("Sheet1!A1:B2") == [["a"]]
    assert await sheet.get_values("Sheet1!D5:F9") == []


async def test_user_entered_vs_raw(sheet: InMemorySpreadsheet) -> None:
    await sheet.update_values("Sheet1!A1", [["'=1+1", "=SUM(A2:A3)"]])
    await sheet.update_values("Sheet1!A2", [["=raw text"]], ValueInputOption.RAW)

    assert sheet.value("Sheet1", "A1") == "=1+1"
    assert sheet.value("Sheet1", "B1") == "#NAME?"
    assert sheet.formula("Sheet1", "B1") == "=SUM(A2:A3)"
    assert sheet.value("Sheet1", "A2") == "=raw text"


async def test_empty_string_clears(sheet: InMemorySpreadsheet) -> None:
    sheet.set_values("Sheet1!A1", [["x", "y"]])
    await sheet.update_values("Sheet1!A1", [["", None]])
    assert sheet.grid("Sheet1") == [["", "y"]]


async def test_column_formulas_evaluate(sheet: InMemorySpreadsheet) -> None:
    length, digest = derived_formulas(Layout.COLUMN)
    sheet.set_values("Sheet1!B9", [[length], [""], [digest], ["abcdefghij"]])

    assert sheet.value("Sheet1", "B9") == "2"
    assert sheet.value("Sheet1", "B11") == hashlib.sha256(b"abcdefghij").hexdigest()
    assert sheet.formula("Sheet1", "B9") == length


async def test_row_formulas_evaluate(sheet: InMemorySpreadsheet) -> None:
    length, digest = derived_formulas(Layout.ROW)
    sheet.set_values("Sheet1!I3", [[length, "", digest, "hello world!"]])

    assert sheet.value("Sheet1", "I3") == "3"
    assert sheet.value("Sheet1", "K3") == hashlib.sha256(b"hello world!").hexdigest()


async def test_hash_of_empty_content_is_empty(sheet: InMemorySpreadsheet) -> None:
    _, digest = derived_formulas(Layout.COLUMN)
    sheet.set_values("Sheet1!C11", [[digest]])
    assert sheet.value("Sheet1", "C11") == ""


async def test_explicit_cell_reference(sheet: InMemorySpreadsheet) -> None:
    sheet.set_values("Sheet1!A1", [["=INT(LEN(B1)/4)", "12345678"]])
    assert sheet.value("Sheet1", "A1") == "2"


async def test_append_after_last_row(sheet: InMemorySpreadsheet) -> None:
    sheet.set_values("Sheet1!A1", [["FILE", "DESC"], ["a.md", "first"]])
    result = await sheet.append_values("Sheet1!A:L", [["b.md", "second"]])

    assert result.updated_range == "Sheet1!A3:B3"
    assert sheet.grid("Sheet1") == [["FILE", "DESC"], ["a.md", "first"], ["b.md", "second"]]


async def test_batch_update_values(sheet: InMemorySpreadsheet) -> None:
    updated = await sheet.batch_update_values(
        [ValueRange(range="Sheet1!A1", values=[["x"]]), ValueRange(range="Sheet1!C3", values=[["y", "z"]])],
        ValueInputOption.RAW,
    )
    assert updated == 3
    assert await sheet.batch_get_values(["Sheet1!A1", "Sheet1!C3:D3"]) == [[["x"]], [["y", "z"]]]


async def test_batch_update_values_is_all_or_nothing(sheet: InMemorySpreadsheet) -> None:
    with pytest.raises(SheetsAPIError):
        await sheet.batch_update_values(
            [ValueRange(range="Sheet1!A1", values=[["x"]]), ValueRange(range="Nope!A1", values=[["y"]])]
        )
    assert sheet.grid("Sheet1") == []


async def test_clear_values(sheet: InMemorySpreadsheet) -> None:
    sheet.set_values("Sheet1!A1", [["a", "b"], ["c", "d"]])
    await sheet.clear_values("Sheet1!B1:B2")
    assert sheet.grid("Sheet1") == [["a"], ["c"]]


async def test_delete_columns_shifts_cells(sheet: InMemorySpreadsheet) -> None:
    sheet.set_values("Sheet1!A1", [["label", "first", "second", "third"]])
    info = await sheet.get_spreadsheet()
    sheet_id = info.sheets[0].sheet_id

    await sheet.batch_update([
        {
            "deleteDimension": {
                "range": {"sheetId": sheet_id, "dimension": Dimension.COLUMNS, "startIndex": 1, "endIndex": 2}
            }
        }
    ])
    assert sheet.grid("Sheet1") == [["label", "second", "third"]]


async def test_delete_rows_shifts_cells(sheet: InMemorySpreadsheet) -> None:
    sheet.set_values("Sheet1!A1", [["h"], ["r2"], ["r3"]])
    await sheet.batch_update([
        {"deleteDimension": {"range": {"sheetId": 0, "dimension": "ROWS", "startIndex": 1, "endIndex": 2}}}
    ])
    assert sheet.grid("Sheet1") == [["h"], ["r3"]]


async def test_add_sheet(sheet: InMemorySpreadsheet) -> None:
    replies = await sheet.batch_update([{"addSheet": {"properties": {"title": "AGENT_BASE"}}}])
    assert replies[0]["addSheet"]["properties"]["title"] == "AGENT_BASE"

    info = await sheet.get_spreadsheet()
    assert [s.title for s in info.sheets] == ["Sheet1", "AGENT_BASE"]
    assert info.find_sheet("agent_base") is not None


async def test_duplicate_sheet_is_rejected(sheet: InMemorySpreadsheet) -> None:
    with pytest.raises(SheetsAPIError) as exc_info:
        await sheet.batch_update([{"addSheet": {"properties": {"title": "sheet1"}}}])
    assert exc_info.value.status_code == 400
    assert "already exists" in exc_info.value.message


async def test_unknown_sheet_is_bad_request(sheet: InMemorySpreadsheet) -> None:
    with pytest.raises(SheetsAPIError) as exc_info:
        await sheet.get_values("Missing!A1")
    assert exc_info.value.status_code == 400
    assert exc_info.value.message.startswith("Unable to parse range")


async def test_formula_render_returns_source(sheet: InMemorySpreadsheet) -> None:
    sheet.set_values("Sheet1!A1", [["=INT(LEN(B1)/4)", "abcd"]])
    assert await sheet.get_values("Sheet1!A1", ValueRenderOption.FORMULA) == [["=INT(LEN(B1)/4)"]]


async def test_write_past_grid_is_rejected(sheet: InMemorySpreadsheet) -> None:
    assert sheet.grid_size("Sheet1") == (1000, 26)

    with pytest.raises(SheetsAPIError) as exc_info:
        await sheet.update_values("Sheet1!AA1:AA2", [["x"], ["y"]])
    assert exc_info.value.status_code == 400
    assert "exceeds grid limits" in exc_info.value.message
    assert sheet.grid("Sheet1") == []

    with pytest.raises(SheetsAPIError):
        await sheet.batch_update_values([
            ValueRange(range="Sheet1!A1", values=[["ok"]]),
            ValueRange(range="Sheet1!A1001", values=[["too far"]]),
        ])
    assert sheet.grid("Sheet1") == []


async def test_append_dimension_grows_grid(sheet: InMemorySpreadsheet) -> None:
    await sheet.batch_update([{"appendDimension": {"sheetId": 0, "dimension": "COLUMNS", "length": 2}}])
    assert sheet.grid_size("Sheet1") == (1000, 28)

    await sheet.update_values("Sheet1!AB1", [["last"]])
    assert sheet.value("Sheet1", "AB1") == "last"

    info = await sheet.get_spreadsheet()
    assert info.sheets[0].column_count == 28


async def test_delete_dimension_shrinks_grid(sheet: InMemorySpreadsheet) -> None:
    await sheet.batch_update([
        {"deleteDimension": {"range": {"sheetId": 0, "dimension": "COLUMNS", "startIndex": 3, "endIndex": 5}}}
    ])
    assert sheet.grid_size("Sheet1") == (1000, 24)


async def test_append_grows_rows(sheet: InMemorySpreadsheet) -> None:
    sheet.add_sheet("Small", rows=2, columns=3)
    sheet.set_values("Small!A1", [["h"], ["r2"]])

    await sheet.append_values("Small!A:C", [["r3", "x", "y"]])

    assert sheet.value("Small", "A3") == "r3"
    assert sheet.grid_size("Small") == (3, 3)
