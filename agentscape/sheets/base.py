"""Spreadsheet service interface.

A backend is bound to one spreadsheet and exposes the handful of value and
structural operations the engine needs.  Every method is a single remote call;
retrying is the caller's business (see ``agentscape.retry``).

Error contract:
    * an error response from the service raises ``SheetsAPIError``;
    * a transport failure raises the transport's own exception unchanged
      (``httpx.TransportError``, ``OSError``).
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from agentscape.models.enums import ValueInputOption, ValueRenderOption
from agentscape.models.sheets import SpreadsheetInfo, UpdateResult, ValueRange


@runtime_checkable
class SheetsBackend(Protocol):
    """Async protocol over one spreadsheet.

    Value grids are lists of rows.  Trailing empty cells and rows are trimmed
    by the service, so callers must treat short rows as padded with ``""``.
    """

    spreadsheet_id: str

    async def get_spreadsheet(self) -> SpreadsheetInfo:
        """Spreadsheet metadata including every sheet's id and title."""
        ...

    async def get_values(
        self,
        range_: str,
        render: ValueRenderOption = ValueRenderOption.FORMATTED_VALUE,
    ) -> list[list[str]]:
        """Values in ``range_``; ``[]`` when the range is empty."""
        ...

    async def batch_get_values(self, ranges: list[str]) -> list[list[list[str]]]:
        """One grid per requested range, in request order."""
        ...

    async def update_values(
        self,
        range_: str,
        values: list[list[Any]],
        input_option: ValueInputOption = ValueInputOption.USER_ENTERED,
    ) -> UpdateResult:
        ...

    async def append_values(
        self,
        range_: str,
        values: list[list[Any]],
        input_option: ValueInputOption = ValueInputOption.USER_ENTERED,
    ) -> UpdateResult:
        """Append rows after the last non-empty row of the table in ``range_``."""
        ...

    async def batch_update_values(
        self,
        data: list[ValueRange],
        input_option: ValueInputOption = ValueInputOption.USER_ENTERED,
    ) -> int:
        """Write several ranges in one call.  Returns the number of updated cells."""
        ...

    async def clear_values(self, range_: str) -> str:
        """Clear ``range_``.  Returns the cleared range."""
        ...

    async def batch_update(self, requests: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Structural changes (``addSheet``, ``deleteDimension``).  Returns one reply per request."""
        ...
