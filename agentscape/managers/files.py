"""Virtual file store.

Named markdown documents kept in the ``AGENTSCAPE`` sheet, one slot per file
(see ``managers.layout``).  ``PLAN.md`` is special: reads and writes go
through the plan engine, and it can never be deleted.

Derived fields (ContextLen, Hash) are written as live formulas so that edits
made directly in the spreadsheet keep them correct; with
``derived_fields="computed"`` they are computed here instead.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from agentscape import schema
from agentscape.errors import AgentscapeError, InvalidInputError, StructuralIncompatibilityError
from agentscape.managers.layout import (
    Slot,
    classify,
    column_labels,
    derived_formulas,
    label_matches,
    read_detection_grid,
    repair_axis,
    row_labels,
)
from agentscape.managers.plan import PlanLocation, utc_now
from agentscape.models.enums import FileStatus, InitAction, Layout, ValueInputOption
from agentscape.models.files import FileStoreInitResult, FileStoreReport, VirtualFile
from agentscape.sheets.a1 import a1, column_letter

if TYPE_CHECKING:
    from agentscape.workspace import Workspace

_Scan = list[tuple[Slot, list[str]]]

# Whole-width row range used by the row layout
_ROW_TABLE = f"A:{column_letter(schema.FIELD_COUNT - 1)}"


def literal(value: Any) -> str:
    """Cell value that the service stores verbatim under ``USER_ENTERED``."""
    text = "" if value is None else str(value)
    return f"'{text}" if text else ""


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest() if content else ""


def _pad(values: list[str]) -> list[str]:
    return (list(values) + [""] * schema.FIELD_COUNT)[: schema.FIELD_COUNT]


def _key(values: list[str]) -> str:
    return values[schema.FILE_IDX].strip()


def _check_name(name: str) -> str:
    if not name or not name.strip():
        raise InvalidInputError("file name must not be empty")
    if "\n" in name:
        raise InvalidInputError("file name must be a single line")
    return name.strip()


def _to_file(values: list[str]) -> VirtualFile:
    return VirtualFile(
        file=_key(values),
        desc=values[schema.DESC_IDX],
        tags=values[schema.TAGS_IDX],
        path=values[schema.PATH_IDX],
        created_ts=values[schema.CREATED_IDX],
        updated_ts=values[schema.UPDATED_IDX],
        status=values[schema.STATUS_IDX],
        depends_on=values[schema.DEPENDS_IDX],
        context_len=values[schema.CONTEXT_LEN_IDX],
        max_ctx_len=values[schema.MAX_CTX_IDX],
        hash=values[schema.HASH_IDX],
        content=values[schema.CONTENT_IDX],
    )


class FileStore:
    """File operations bound to one workspace handle."""

    def __init__(self, workspace: Workspace) -> None:
        self._ws = workspace

    # -- Scan ------------------------------------------------------------------

    async def _title(self) -> str | None:
        return await self._ws.sheet_title(schema.FILE_STORE_SHEET)

    async def _scan(self, title: str) -> tuple[Layout, _Scan, int]:
        """Every slot after the label line, plus the next unused position."""
        layout = await self._ws.resolve_layout()
        if layout == Layout.COLUMN:
            grid = await self._ws.call(
                "scan files", self._ws.backend.get_values, a1(title, f"1:{schema.FIELD_COUNT}")
            )
            width = max((len(row) for row in grid), default=0)
            slots = [
                (
                    Slot(layout, col),
                    _pad([row[col] if col < len(row) else "" for row in grid]),
                )
                for col in range(1, width)
            ]
            return layout, slots, max(width, 1)

        grid = await self._ws.call("scan files", self._ws.backend.get_values, a1(title, _ROW_TABLE))
        slots = [(Slot(layout, row), _pad(grid[row])) for row in range(1, len(grid))]
        return layout, slots, max(len(grid), 1)

    @staticmethod
    def _is_file(values: list[str]) -> bool:
        key = _key(values)
        return bool(key) and key not in schema.FILE_LABELS

    @staticmethod
    def _find(slots: _Scan, name: str) -> tuple[Slot, list[str]] | None:
        return next(((slot, values) for slot, values in slots if _key(values) == name), None)

    # -- Read ------------------------------------------------------------------

    async def list_files(self) -> list[VirtualFile]:
        """All files in slot order.  Empty slots and stray label cells are skipped."""
        title = await self._title()
        if title is None:
            return []
        _, slots, _ = await self._scan(title)
        return [_to_file(values) for _, values in slots if self._is_file(values)]

    async def read_file(self, name: str) -> VirtualFile | None:
        """File by name, ``None`` if absent.  ``PLAN.md`` is read through the plan engine."""
        name = _check_name(name)
        if name == schema.PLAN_FILE:
            return await self._read_plan_file()

        title = await self._title()
        if title is None:
            return None
        _, slots, _ = await self._scan(title)
        found = self._find(slots, name)
        return _to_file(found[1]) if found else None

    async def _read_plan_file(self) -> VirtualFile | None:
        raw = await self._ws.plan.read_raw()
        return self._plan_file(raw) if raw is not None else None

    def _plan_file(self, raw: str) -> VirtualFile:
        """``PLAN.md`` as a file; metadata is synthesized from the plan text."""
        return VirtualFile(
            file=schema.PLAN_FILE,
            desc=schema.PLAN_DESC,
            tags=schema.PLAN_TAGS,
            path=self._default_path(schema.PLAN_FILE),
            status=FileStatus.ACTIVE,
            depends_on=[schema.AGENTS_FILE],
            context_len=len(raw) // 4,
            hash=content_hash(raw),
            content=raw,
        )

    async def plan_location(self) -> PlanLocation | None:
        """Cells of the ``PLAN.md`` slot, ``None`` if the store has none."""
        title = await self._title()
        if title is None:
            return None
        _, slots, _ = await self._scan(title)
        found = self._find(slots, schema.PLAN_FILE)
        if found is None:
            return None
        slot = found[0]
        return PlanLocation(
            marker_range=a1(title, slot.cell(schema.FILE_IDX)),
            body_range=a1(title, slot.cell(schema.CONTENT_IDX)),
            sentinel=schema.PLAN_FILE,
            updated_range=a1(title, slot.cell(schema.UPDATED_IDX)),
        )

    # -- Write -----------------------------------------------------------------

    def _default_path(self, name: str) -> str:
        return f"{self._ws.settings.virtual_root.rstrip('/')}/{name}"

    def _slot_values(self, file: VirtualFile, layout: Layout, existing: list[str] | None) -> list[str]:
        now = utc_now()
        created = (existing[schema.CREATED_IDX].strip() if existing else "") or file.created_ts or now
        if self._ws.settings.derived_fields == "computed":
            context_len, digest = literal(len(file.content) // 4), literal(content_hash(file.content))
        else:
            context_len, digest = derived_formulas(layout)

        values = [
            literal(file.file),
            literal(file.desc),
            literal(",".join(file.tags)),
            literal(file.path or self._default_path(file.file)),
            literal(created),
            literal(now),
            literal(file.status or FileStatus.ACTIVE),
            literal(",".join(file.depends_on)),
            context_len,
            literal(file.max_ctx_len if file.max_ctx_len is not None else ""),
            digest,
            literal(file.content),
        ]
        return values

    async def _fit(self, title: str, slot: Slot) -> None:
        """Grow the container so all 12 cells of ``slot`` exist."""
        if slot.layout == Layout.COLUMN:
            await self._ws.ensure_grid(title, rows=schema.FIELD_COUNT, columns=slot.position + 1)
        else:
            await self._ws.ensure_grid(title, rows=slot.position + 1, columns=schema.FIELD_COUNT)

    async def _write_slot(self, title: str, file: VirtualFile) -> Slot | None:
        """Write ``file`` into its slot, a reclaimable one, or a new one.

        Returns the slot, or ``None`` when the row layout appended a row.
        """
        layout, slots, next_position = await self._scan(title)
        found = self._find(slots, file.file)
        if found is not None:
            slot, existing = found
        else:
            existing = None
            slot = next((s for s, values in slots if not _key(values)), None)
            if slot is None and layout == Layout.COLUMN:
                slot = Slot(layout, next_position)

        values = self._slot_values(file, layout, existing)
        if slot is None:
            await self._ws.ensure_grid(title, columns=schema.FIELD_COUNT)
            await self._ws.call(
                "append file",
                self._ws.backend.append_values,
                a1(title, _ROW_TABLE),
                [values],
                ValueInputOption.USER_ENTERED,
            )
            self._ws.log.info("Appended file {}", file.file)
            return None

        rows = [[v] for v in values] if layout == Layout.COLUMN else [values]
        await self._fit(title, slot)
        await self._ws.call(
            "write file",
            self._ws.backend.update_values,
            a1(title, slot.span()),
            rows,
            ValueInputOption.USER_ENTERED,
        )
        self._ws.log.info("Wrote file {} ({})", file.file, slot.describe())
        return slot

    async def write_file(self, file: VirtualFile | dict[str, Any]) -> VirtualFile:
        """Create or update a file.  ``PLAN.md`` replaces the plan document."""
        if not isinstance(file, VirtualFile):
            try:
                file = VirtualFile.model_validate(file)
            except ValidationError as exc:
                details = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
                raise InvalidInputError("invalid file", details) from None
        name = _check_name(file.file)
        file = file.model_copy(update={"file": name})

        if name == schema.PLAN_FILE:
            await self._ws.plan.write_raw(file.content)
            return self._plan_file(file.content)

        title = await self._title()
        if title is None:
            await self.init()
            title = await self._title() or schema.FILE_STORE_SHEET
        await self._write_slot(title, file)
        stored = await self.read_file(name)
        if stored is None:
            raise AgentscapeError(
                f"File '{name}' is missing right after it was written",
                fix="Another writer may have removed it; write the file again.",
            )
        return stored

    async def delete_file(self, name: str) -> bool:
        """Remove a file's slot.  ``False`` if no such file; ``PLAN.md`` is refused."""
        name = _check_name(name)
        if name == schema.PLAN_FILE:
            raise InvalidInputError("Cannot delete PLAN.md - protected file")

        title = await self._title()
        if title is None:
            return False
        _, slots, _ = await self._scan(title)
        found = self._find(slots, name)
        if found is None:
            return False

        slot = found[0]
        sheet_id = await self._ws.sheet_id(title)
        request = {
            "deleteDimension": {
                "range": {
                    "sheetId": sheet_id,
                    "dimension": slot.dimension.value,
                    "startIndex": slot.position,
                    "endIndex": slot.position + 1,
                }
            }
        }
        await self._ws.call("delete file", self._ws.backend.batch_update, [request])
        self._ws.dimension_deleted(title, slot.dimension)
        # Later slots shifted; the plan slot may be one of them
        self._ws.forget_plan_location()
        self._ws.log.info("Deleted file {} ({})", name, slot.describe())
        return True

    # -- Bootstrap -------------------------------------------------------------

    async def _write_labels(self, title: str, layout: Layout) -> None:
        labels = list(schema.FILE_LABELS)
        rows = [[label] for label in labels] if layout == Layout.COLUMN else [labels]
        await self._fit(title, Slot(layout, 0))
        await self._ws.call(
            "write labels",
            self._ws.backend.update_values,
            a1(title, Slot(layout, 0).span()),
            rows,
            ValueInputOption.RAW,
        )
        self._ws.log.info("Wrote file-store labels ({} layout)", layout)

    async def _overflow(self, title: str, layout: Layout) -> int:
        """Non-empty entries on the label line beyond the 12 labels."""
        line = "A:A" if layout == Layout.COLUMN else "1:1"
        grid = await self._ws.call("read label line", self._ws.backend.get_values, a1(title, line))
        entries = [row[0] if row else "" for row in grid] if layout == Layout.COLUMN else (grid[0] if grid else [])
        return sum(1 for value in entries[schema.FIELD_COUNT :] if value.strip())

    async def _check_repairable(self, title: str, grid: list[list[str]], layout: Layout) -> None:
        """Refuse to relabel a sheet that holds something other than a damaged file store.

        The sheet is foreign when neither axis carries a single label, or
        when a label line (the repair axis, or the other axis while the
        label count is tied) runs past the 12 expected entries.
        """
        other = Layout.ROW if layout == Layout.COLUMN else Layout.COLUMN
        matches = label_matches(_label_line(grid, layout))
        if matches == 0:
            raise StructuralIncompatibilityError(
                title,
                "no file-store labels found in column A or row 1",
                list(schema.FILE_LABELS),
            )

        suspects = [layout]
        if label_matches(_label_line(grid, other)) == matches:
            suspects.append(other)
        for axis in suspects:
            overflow = await self._overflow(title, axis)
            if overflow:
                where = "column A" if axis == Layout.COLUMN else "row 1"
                raise StructuralIncompatibilityError(
                    title,
                    f"{overflow} unexpected entries in {where} beyond the {schema.FIELD_COUNT} labels",
                    list(schema.FILE_LABELS),
                )

    async def init(self) -> FileStoreInitResult:
        """Self-repair bootstrap: create, repair or accept the container, then seed reserved files.

        Raises ``StructuralIncompatibilityError`` (before any write) when the
        container looks like someone else's table rather than a damaged file
        store.
        """
        title = await self._title()
        if title is None:
            await self._ws.create_sheets([schema.FILE_STORE_SHEET])
            title = await self._title() or schema.FILE_STORE_SHEET
            action, layout = InitAction.CREATED, Layout.COLUMN
            await self._write_labels(title, layout)
        else:
            grid = await read_detection_grid(self._ws, title) or []
            detected = classify(grid)
            if not grid:
                action, layout = InitAction.REPAIRED, Layout.COLUMN
                await self._write_labels(title, layout)
            elif detected is not None:
                action, layout = InitAction.ALREADY_VALID, detected
            else:
                layout = repair_axis(grid)
                await self._check_repairable(title, grid, layout)
                action = InitAction.REPAIRED
                await self._write_labels(title, layout)

        self._ws.remember_layout(layout)
        seeded = await self._seed(title)
        return FileStoreInitResult(action=action, layout=layout, seeded=seeded)

    async def _seed(self, title: str) -> list[str]:
        _, slots, _ = await self._scan(title)
        present = {_key(values) for _, values in slots}
        seeded: list[str] = []

        if schema.AGENTS_FILE not in present:
            await self._write_slot(
                title,
                VirtualFile(
                    file=schema.AGENTS_FILE,
                    desc=schema.AGENTS_DESC,
                    tags=schema.AGENTS_TAGS,
                    content=self._ws.system or schema.DEFAULT_AGENT_CONTEXT,
                ),
            )
            seeded.append(schema.AGENTS_FILE)

        if schema.PLAN_FILE not in present:
            plan_text = await self._ws.plan.read_raw() or schema.STARTER_PLAN
            await self._write_slot(
                title,
                VirtualFile(
                    file=schema.PLAN_FILE,
                    desc=schema.PLAN_DESC,
                    tags=schema.PLAN_TAGS,
                    depends_on=[schema.AGENTS_FILE],
                    content=plan_text,
                ),
            )
            seeded.append(schema.PLAN_FILE)
            # The plan now lives in its slot
            self._ws.forget_plan_location()

        for name in seeded:
            self._ws.log.info("Seeded {}", name)
        return seeded

    # -- Validation ------------------------------------------------------------

    async def validate(self) -> FileStoreReport:
        """Read-only health report; never writes."""
        title = await self._title()
        if title is None:
            return FileStoreReport(valid=False, errors=[f'Sheet "{schema.FILE_STORE_SHEET}" not found'])

        grid = await read_detection_grid(self._ws, title) or []
        errors: list[str] = []
        warnings: list[str] = []

        layout = classify(grid)
        if layout is None:
            layout = repair_axis(grid)
            found = _label_line(grid, layout)
            for index, (got, want) in enumerate(zip(found, schema.FILE_LABELS, strict=False)):
                if got.strip() != want:
                    errors.append(f"Label {index + 1}: expected '{want}', found '{got}'")
            return FileStoreReport(valid=False, layout=layout, errors=errors)

        self._ws.remember_layout(layout)
        _, slots, _ = await self._scan(title)
        files: list[str] = []
        for slot, values in slots:
            key = _key(values)
            if not key:
                continue
            if key in schema.FILE_LABELS:
                warnings.append(f"{slot.describe()}: label '{key}' found where a filename belongs")
                continue
            files.append(key)
            if not key.endswith(".md"):
                warnings.append(f"{slot.describe()}: '{key}' is not a .md file")
            if not values[schema.DESC_IDX].strip():
                warnings.append(f"{key}: missing description")
            if not values[schema.CONTENT_IDX].strip():
                warnings.append(f"{key}: empty content")

        for position, required in enumerate(schema.RESERVED_FILES, start=1):
            if required not in files:
                expected = Slot(layout, position).describe()
                errors.append(f"Required file {required} missing (expected in {expected})")

        return FileStoreReport(valid=not errors, layout=layout, errors=errors, warnings=warnings, files=files)


def _label_line(grid: list[list[str]], layout: Layout) -> list[str]:
    return column_labels(grid) if layout == Layout.COLUMN else row_labels(grid)
