"""Spreadsheet backend over the Sheets REST API v4.

One ``httpx.AsyncClient`` per backend.  Error responses become
``SheetsAPIError`` (status, service message, ``Retry-After`` hint); transport
failures propagate as ``httpx.TransportError`` so the retry layer can classify
them.

Authentication is the caller's: pass a bearer ``access_token`` or any
``httpx.Auth`` (e.g. one that refreshes service-account tokens).
"""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from agentscape.errors import SheetsAPIError
from agentscape.models.enums import ValueInputOption, ValueRenderOption
from agentscape.models.sheets import (
    DEFAULT_COLUMN_COUNT,
    DEFAULT_ROW_COUNT,
    SheetProperties,
    SpreadsheetInfo,
    UpdateResult,
    ValueRange,
)
from agentscape.settings import AgentscapeSettings

_SHEET_FIELDS = (
    "spreadsheetId,properties.title,sheets.properties(sheetId,title,index,gridProperties(rowCount,columnCount))"
)


class _BearerAuth(httpx.Auth):
    def __init__(self, token: str) -> None:
        self._token = token

    def auth_flow(self, request: httpx.Request):
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request


def parse_retry_after(value: str | None) -> float | None:
    """``Retry-After`` as seconds (delta-seconds or HTTP-date), ``None`` if absent/unparseable."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max((when - datetime.now(UTC)).total_seconds(), 0.0)


def _error_from_response(response: httpx.Response) -> SheetsAPIError:
    message = response.reason_phrase or "Request failed"
    reason = None
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        error = payload["error"]
        message = error.get("message") or message
        reason = error.get("status")
    return SheetsAPIError(
        response.status_code,
        message,
        reason=reason,
        retry_after=parse_retry_after(response.headers.get("Retry-After")),
    )


def _grid(payload: dict[str, Any]) -> list[list[str]]:
    return [["" if v is None else str(v) for v in row] for row in payload.get("values", [])]


def _sheet_properties(props: dict[str, Any]) -> SheetProperties:
    grid = props.get("gridProperties", {})
    return SheetProperties(
        sheet_id=props.get("sheetId", 0),
        title=props.get("title", ""),
        index=props.get("index", 0),
        row_count=grid.get("rowCount", DEFAULT_ROW_COUNT),
        column_count=grid.get("columnCount", DEFAULT_COLUMN_COUNT),
    )


def _update_result(payload: dict[str, Any]) -> UpdateResult:
    return UpdateResult(
        updated_range=payload.get("updatedRange", ""),
        updated_rows=payload.get("updatedRows", 0),
        updated_columns=payload.get("updatedColumns", 0),
        updated_cells=payload.get("updatedCells", 0),
    )


class HttpSheetsBackend:
    """``SheetsBackend`` talking to the remote service over HTTPS.

    Usage::

        async with HttpSheetsBackend(spreadsheet_id, access_token=token) as backend:
            info = await backend.get_spreadsheet()
    """

    def __init__(
        self,
        spreadsheet_id: str,
        *,
        access_token: str | None = None,
        auth: httpx.Auth | None = None,
        base_url: str = "https://sheets.googleapis.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if auth is None and access_token:
            auth = _BearerAuth(access_token)
        self.spreadsheet_id = spreadsheet_id
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            auth=auth,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        spreadsheet_id: str,
        settings: AgentscapeSettings,
        *,
        auth: httpx.Auth | None = None,
    ) -> HttpSheetsBackend:
        token = settings.access_token.get_secret_value() if settings.access_token else None
        return cls(
            spreadsheet_id,
            access_token=token,
            auth=auth,
            base_url=settings.api_base_url,
            timeout=settings.request_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpSheetsBackend:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- Transport -------------------------------------------------------------

    def _path(self, suffix: str = "") -> str:
        return f"/v4/spreadsheets/{quote(self.spreadsheet_id, safe='')}{suffix}"

    def _values_path(self, range_: str, action: str = "") -> str:
        return self._path(f"/values/{quote(range_, safe='')}{action}")

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._client.request(method, url, **kwargs)
        if response.is_error:
            error = _error_from_response(response)
            logger.debug("{} {} -> {}", method, url, error)
            raise error
        if not response.content:
            return {}
        return response.json()

    # -- Metadata --------------------------------------------------------------

    async def get_spreadsheet(self) -> SpreadsheetInfo:
        payload = await self._request("GET", self._path(), params={"fields": _SHEET_FIELDS})
        sheets = [_sheet_properties(sheet.get("properties", {})) for sheet in payload.get("sheets", [])]
        return SpreadsheetInfo(
            spreadsheet_id=payload.get("spreadsheetId", self.spreadsheet_id),
            title=payload.get("properties", {}).get("title", ""),
            sheets=sheets,
        )

    # -- Values ----------------------------------------------------------------

    async def get_values(
        self,
        range_: str,
        render: ValueRenderOption = ValueRenderOption.FORMATTED_VALUE,
    ) -> list[list[str]]:
        payload = await self._request("GET", self._values_path(range_), params={"valueRenderOption": render.value})
        return _grid(payload)

    async def batch_get_values(self, ranges: list[str]) -> list[list[list[str]]]:
        payload = await self._request(
            "GET",
            self._path("/values:batchGet"),
            params=[("ranges", r) for r in ranges],
        )
        return [_grid(item) for item in payload.get("valueRanges", [])]

    async def update_values(
        self,
        range_: str,
        values: list[list[Any]],
        input_option: ValueInputOption = ValueInputOption.USER_ENTERED,
    ) -> UpdateResult:
        payload = await self._request(
            "PUT",
            self._values_path(range_),
            params={"valueInputOption": input_option.value},
            json={"range": range_, "majorDimension": "ROWS", "values": values},
        )
        return _update_result(payload)

    async def append_values(
        self,
        range_: str,
        values: list[list[Any]],
        input_option: ValueInputOption = ValueInputOption.USER_ENTERED,
    ) -> UpdateResult:
        payload = await self._request(
            "POST",
            self._values_path(range_, ":append"),
            params={"valueInputOption": input_option.value, "insertDataOption": "INSERT_ROWS"},
            json={"range": range_, "majorDimension": "ROWS", "values": values},
        )
        return _update_result(payload.get("updates", {}))

    async def batch_update_values(
        self,
        data: list[ValueRange],
        input_option: ValueInputOption = ValueInputOption.USER_ENTERED,
    ) -> int:
        payload = await self._request(
            "POST",
            self._path("/values:batchUpdate"),
            json={
                "valueInputOption": input_option.value,
                "data": [{"range": item.range, "majorDimension": "ROWS", "values": item.values} for item in data],
            },
        )
        return payload.get("totalUpdatedCells", 0)

    async def clear_values(self, range_: str) -> str:
        payload = await self._request("POST", self._values_path(range_, ":clear"), json={})
        return payload.get("clearedRange", range_)

    # -- Structure -------------------------------------------------------------

    async def batch_update(self, requests: list[dict[str, Any]]) -> list[dict[str, Any]]:
        payload = await self._request("POST", self._path(":batchUpdate"), json={"requests": requests})
        return payload.get("replies", [])
