"""Workspace handle and bootstrap.

``attach()`` connects to a spreadsheet and makes sure the baseline structure
exists:

1. probe the spreadsheet (one metadata call, also caching sheet ids);
2. create ``AGENT_BASE`` if missing;
3. seed the system-context and plan markers that are absent;
4. load the system context;
5. run the file store's self-repair bootstrap.

Every step is check-then-write, so attaching to an initialized workspace
performs reads only.

The returned ``Workspace`` owns three lazily resolved caches (sheet ids with
grid sizes, file-store layout, plan location).  They are never refreshed
behind the caller's back; structural changes made by *this* handle keep
them current, changes made elsewhere require a new handle.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from loguru import logger

from agentscape import schema
from agentscape.errors import InvalidInputError, SheetsAPIError, WorkspacePermissionError, is_missing_range_error
from agentscape.managers.files import FileStore
from agentscape.managers.layout import detect_layout
from agentscape.managers.plan import PlanLocation, PlanManager
from agentscape.models.enums import Dimension, Layout, ValueInputOption
from agentscape.models.sheets import DEFAULT_COLUMN_COUNT, DEFAULT_ROW_COUNT, SheetProperties
from agentscape.retry import RetryExecutor, RetryPolicy
from agentscape.settings import AgentscapeSettings, get_settings
from agentscape.sheets.a1 import a1
from agentscape.sheets.base import SheetsBackend
from agentscape.sheets.http import HttpSheetsBackend

T = TypeVar("T")

_ACCESS_DENIED_STATUSES = (401, 403, 404)


def _append_dimension(sheet_id: int, dimension: Dimension, length: int) -> dict[str, Any]:
    return {"appendDimension": {"sheetId": sheet_id, "dimension": dimension.value, "length": length}}


class Workspace:
    """Attached workspace.  Create with ``attach()``."""

    def __init__(
        self,
        backend: SheetsBackend,
        *,
        settings: AgentscapeSettings | None = None,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.settings = settings or get_settings()
        self.executor = RetryExecutor(policy or RetryPolicy.from_settings(self.settings), sleep=sleep)
        self.log = logger.bind(spreadsheet=backend.spreadsheet_id)
        self.system: str = ""
        """System-context body (``AGENT.md``) loaded at attach."""

        self._sheet_props: dict[str, SheetProperties] | None = None
        self._layout: Layout | None = None
        self._plan_location: PlanLocation | None = None

        self.plan = PlanManager(self)
        self.files = FileStore(self)

    @property
    def spreadsheet_id(self) -> str:
        return self.backend.spreadsheet_id

    async def call(self, description: str, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run one backend call through the retry wrapper."""
        return await self.executor.execute(lambda: fn(*args, **kwargs), description)

    # -- Sheet cache -----------------------------------------------------------

    async def refresh_sheets(self) -> None:
        """(Re)load sheet titles, ids and grid sizes.  Access failures become ``WorkspacePermissionError``."""
        try:
            info = await self.call("get spreadsheet", self.backend.get_spreadsheet)
        except SheetsAPIError as exc:
            if exc.status_code in _ACCESS_DENIED_STATUSES:
                raise WorkspacePermissionError(self.spreadsheet_id, reason=exc.message) from exc
            raise
        self._sheet_props = {sheet.title.lower(): sheet for sheet in info.sheets}
        self.log.debug("Sheets: {}", ", ".join(sheet.title for sheet in info.sheets) or "(none)")

    async def _sheets(self) -> dict[str, SheetProperties]:
        if self._sheet_props is None:
            await self.refresh_sheets()
        if self._sheet_props is None:
            self._sheet_props = {}
        return self._sheet_props

    async def sheet_id(self, title: str) -> int | None:
        """Id of the sheet named ``title`` (case-insensitive), ``None`` if absent."""
        props = (await self._sheets()).get(title.lower())
        return props.sheet_id if props else None

    async def sheet_title(self, title: str) -> str | None:
        """Actual title of the sheet matching ``title`` (case-insensitive)."""
        props = (await self._sheets()).get(title.lower())
        return props.title if props else None

    async def create_sheets(self, titles: list[str]) -> None:
        """Add sheets in one structural call and cache their ids."""
        if not titles:
            return
        requests = [{"addSheet": {"properties": {"title": title}}} for title in titles]
        replies = await self.call("add sheets", self.backend.batch_update, requests)
        sheets = await self._sheets()
        for title, reply in zip(titles, replies, strict=False):
            props = reply.get("addSheet", {}).get("properties", {})
            grid = props.get("gridProperties", {})
            sheets[title.lower()] = SheetProperties(
                sheet_id=props.get("sheetId", 0),
                title=props.get("title", title),
                index=props.get("index", 0),
                row_count=grid.get("rowCount", DEFAULT_ROW_COUNT),
                column_count=grid.get("columnCount", DEFAULT_COLUMN_COUNT),
            )
            self.log.info("Created sheet {}", title)

    async def ensure_grid(self, title: str, *, rows: int = 0, columns: int = 0) -> None:
        """Grow sheet ``title`` so it has at least ``rows`` x ``columns`` cells.

        Uses the cached grid size; issues one ``appendDimension`` request per
        short dimension and nothing when the grid is already big enough.
        """
        props = (await self._sheets()).get(title.lower())
        if props is None:
            return
        requests: list[dict[str, Any]] = []
        if rows > props.row_count:
            requests.append(_append_dimension(props.sheet_id, Dimension.ROWS, rows - props.row_count))
        if columns > props.column_count:
            requests.append(_append_dimension(props.sheet_id, Dimension.COLUMNS, columns - props.column_count))
        if not requests:
            return
        await self.call("grow grid", self.backend.batch_update, requests)
        props.row_count = max(props.row_count, rows)
        props.column_count = max(props.column_count, columns)
        self.log.debug("Grew {} to {} rows x {} columns", props.title, props.row_count, props.column_count)

    def dimension_deleted(self, title: str, dimension: Dimension, count: int = 1) -> None:
        """Shrink the cached grid after this handle deleted rows or columns."""
        props = (self._sheet_props or {}).get(title.lower())
        if props is None:
            return
        if dimension == Dimension.ROWS:
            props.row_count = max(props.row_count - count, 0)
        else:
            props.column_count = max(props.column_count - count, 0)

    # -- Resolve-once caches ---------------------------------------------------

    async def resolve_layout(self) -> Layout:
        """File-store layout, detected on first use and then cached."""
        if self._layout is None:
            self._layout = await detect_layout(self)
            self.log.debug("File store layout: {}", self._layout)
        return self._layout

    def remember_layout(self, layout: Layout) -> None:
        self._layout = layout

    async def resolve_plan_location(self) -> PlanLocation:
        """Plan document location, resolved on first use and then cached.

        The file store's ``PLAN.md`` slot wins when it exists; otherwise the
        plan lives in the workspace base pair.
        """
        if self._plan_location is None:
            location = await self.files.plan_location()
            if location is None:
                location = PlanLocation(
                    marker_range=a1(schema.AGENT_BASE_SHEET, schema.PLAN_MARKER_CELL),
                    body_range=a1(schema.AGENT_BASE_SHEET, schema.PLAN_BODY_CELL),
                    sentinel=schema.PLAN_MARKER,
                )
            self._plan_location = location
            self.log.debug("Plan location: {}", location.body_range)
        return self._plan_location

    def forget_plan_location(self) -> None:
        """Drop the plan location after this handle moved or created the slot."""
        self._plan_location = None

    # -- Bootstrap -------------------------------------------------------------

    async def _read_cell(self, range_: str) -> str:
        """One cell's formatted value; an unreadable range counts as empty."""
        try:
            rows = await self.call(f"read {range_}", self.backend.get_values, range_)
        except SheetsAPIError as exc:
            if is_missing_range_error(exc):
                return ""
            raise
        return rows[0][0] if rows and rows[0] else ""

    async def _ensure_marker(self, marker_cell: str, body_cell: str, sentinel: str, body: str) -> bool:
        if await self._read_cell(a1(schema.AGENT_BASE_SHEET, marker_cell)) == sentinel:
            return False
        await self.call(
            "seed marker",
            self.backend.update_values,
            a1(schema.AGENT_BASE_SHEET, f"{marker_cell}:{body_cell}"),
            [[sentinel], [body]],
            ValueInputOption.RAW,
        )
        self.log.info("Seeded {} in {}", sentinel, schema.AGENT_BASE_SHEET)
        return True

    async def bootstrap(self, *, init_files: bool = True) -> None:
        """Idempotently create the baseline structure.  See module docstring."""
        await self.refresh_sheets()

        if await self.sheet_id(schema.AGENT_BASE_SHEET) is None:
            await self.create_sheets([schema.AGENT_BASE_SHEET])

        await self._ensure_marker(
            schema.SYSTEM_MARKER_CELL,
            schema.SYSTEM_BODY_CELL,
            schema.SYSTEM_MARKER,
            schema.DEFAULT_AGENT_CONTEXT,
        )
        await self._ensure_marker(
            schema.PLAN_MARKER_CELL,
            schema.PLAN_BODY_CELL,
            schema.PLAN_MARKER,
            schema.STARTER_PLAN,
        )

        self.system = await self._read_cell(a1(schema.AGENT_BASE_SHEET, schema.SYSTEM_BODY_CELL))

        if init_files:
            result = await self.files.init()
            self.log.debug("File store: {} ({} layout)", result.action, result.layout)


async def attach(
    spreadsheet_id: str | None = None,
    *,
    backend: SheetsBackend | None = None,
    settings: AgentscapeSettings | None = None,
    policy: RetryPolicy | None = None,
    init_files: bool = True,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Workspace:
    """Connect to a workspace, bootstrapping it on first use.

    Without ``backend`` an ``HttpSheetsBackend`` is built from settings; the
    caller owns it and should ``aclose()`` it (``workspace.backend``).

    Raises ``WorkspacePermissionError`` if the spreadsheet cannot be reached.
    """
    settings = settings or get_settings()
    if backend is None:
        spreadsheet_id = spreadsheet_id or settings.spreadsheet_id
        if not spreadsheet_id:
            raise InvalidInputError("spreadsheet_id is required (argument or AGENTSCAPE_SPREADSHEET_ID)")
        backend = HttpSheetsBackend.from_settings(spreadsheet_id, settings)
    elif spreadsheet_id and spreadsheet_id != backend.spreadsheet_id:
        msg = f"spreadsheet_id '{spreadsheet_id}' does not match backend '{backend.spreadsheet_id}'"
        raise InvalidInputError(msg)

    workspace = Workspace(backend, settings=settings, policy=policy, sleep=sleep)
    await workspace.bootstrap(init_files=init_files)
    workspace.log.info("Attached workspace")
    return workspace
