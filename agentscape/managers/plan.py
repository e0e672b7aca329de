"""Plan state machine.

The plan is one markdown document; its raw text is the only state.  Every
operation reads the document, derives the structure with ``parse_plan`` and,
for mutations, writes back text that differs from the original only on the
affected line(s).

Status transitions (todo -> doing -> done | blocked | review, blocked/review
-> doing) are advisory: ``update_task`` applies the requested status and logs
a warning for anything off that path.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from agentscape.errors import (
    InvalidInputError,
    PlanNotFoundError,
    SheetsAPIError,
    TaskNotFoundError,
    is_missing_range_error,
)
from agentscape.managers.plan_markdown import append_note, parse_plan, render_plan, rewrite_task_line
from agentscape.models.enums import TaskStatus, ValueInputOption
from agentscape.models.plan import PhaseInput, Plan, PlanTask, TaskUpdate
from agentscape.models.sheets import ValueRange

if TYPE_CHECKING:
    from agentscape.workspace import Workspace

_EXPECTED_TRANSITIONS: dict[TaskStatus, tuple[TaskStatus, ...]] = {
    TaskStatus.TODO: (TaskStatus.DOING,),
    TaskStatus.DOING: (TaskStatus.DONE, TaskStatus.BLOCKED, TaskStatus.REVIEW),
    TaskStatus.BLOCKED: (TaskStatus.DOING,),
    TaskStatus.REVIEW: (TaskStatus.DOING,),
    TaskStatus.DONE: (),
}


@dataclass(frozen=True)
class PlanLocation:
    """Where the plan document lives for one workspace handle."""

    marker_range: str
    body_range: str
    sentinel: str
    updated_range: str | None = None
    """UpdatedTS cell stamped on every write (file-store slot only)."""


def utc_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, ``Z`` suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_today() -> str:
    return datetime.now(UTC).date().isoformat()


def _validation_details(exc: ValidationError) -> list[str]:
    return [f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in exc.errors()]


class PlanManager:
    """Plan operations bound to one workspace handle."""

    def __init__(self, workspace: Workspace) -> None:
        self._ws = workspace

    # -- Read ------------------------------------------------------------------

    async def read_raw(self) -> str | None:
        """Raw plan markdown, ``None`` when the marker is absent or the body empty."""
        location = await self._ws.resolve_plan_location()
        try:
            marker, body = await self._ws.call(
                "read plan",
                self._ws.backend.batch_get_values,
                [location.marker_range, location.body_range],
            )
        except SheetsAPIError as exc:
            if is_missing_range_error(exc):
                return None
            raise

        marker_value = marker[0][0] if marker and marker[0] else ""
        if marker_value != location.sentinel:
            return None
        text = body[0][0] if body and body[0] else ""
        return text or None

    async def get_plan(self) -> Plan | None:
        raw = await self.read_raw()
        return parse_plan(raw) if raw is not None else None

    async def get_next_task(self) -> PlanTask | None:
        """First ``todo`` task in document order; blocked and review tasks are skipped."""
        plan = await self.get_plan()
        if plan is None:
            return None
        return next((task for task in plan.tasks if task.status == TaskStatus.TODO), None)

    async def get_review_tasks(self) -> list[PlanTask]:
        plan = await self.get_plan()
        if plan is None:
            return []
        return [task for task in plan.tasks if task.status == TaskStatus.REVIEW]

    # -- Write -----------------------------------------------------------------

    async def write_raw(self, markdown: str) -> None:
        """Replace the whole plan document."""
        location = await self._ws.resolve_plan_location()
        data = [
            ValueRange(range=location.marker_range, values=[[location.sentinel]]),
            ValueRange(range=location.body_range, values=[[markdown]]),
        ]
        if location.updated_range:
            data.append(ValueRange(range=location.updated_range, values=[[utc_now()]]))
        await self._ws.call("write plan", self._ws.backend.batch_update_values, data, ValueInputOption.RAW)

    async def create_plan(self, title: str, goal: str, phases: list[PhaseInput | dict[str, Any]]) -> Plan:
        """Replace the plan with a fresh document built from ``phases``.

        Step ids are assigned ``<phase>.<n>`` from 1.  Raises
        ``InvalidInputError`` for a missing title/goal, no phases, or a phase
        without steps.
        """
        details: list[str] = []
        if not title or not title.strip():
            details.append("title: must not be empty")
        if not goal or not goal.strip():
            details.append("goal: must not be empty")

        parsed: list[PhaseInput] = []
        try:
            parsed = [p if isinstance(p, PhaseInput) else PhaseInput.model_validate(p) for p in phases or []]
        except ValidationError as exc:
            details.extend(f"phases.{d}" for d in _validation_details(exc))
        if not phases:
            details.append("phases: at least one phase is required")
        for number, phase in enumerate(parsed, start=1):
            if not phase.name.strip():
                details.append(f"phases[{number}].name: must not be empty")
            if not phase.steps:
                details.append(f"phases[{number}].steps: at least one step is required")
            elif any(not step.strip() for step in phase.steps):
                details.append(f"phases[{number}].steps: step titles must not be empty")
        if details:
            raise InvalidInputError("invalid plan", details)

        cleaned = [
            PhaseInput(name=" ".join(p.name.split()), steps=[" ".join(s.split()) for s in p.steps]) for p in parsed
        ]
        markdown = render_plan(" ".join(title.split()), " ".join(goal.split()), cleaned)
        await self.write_raw(markdown)
        self._ws.log.info("Created plan '{}' ({} phases)", title.strip(), len(cleaned))
        return parse_plan(markdown)

    async def update_task(self, step: str, update: TaskUpdate | dict[str, Any]) -> PlanTask:
        """Set the status of task ``step``, rewriting only its line.

        Raises ``PlanNotFoundError`` without a plan, ``TaskNotFoundError``
        when no task carries ``step``.
        """
        if not step or not step.strip():
            raise InvalidInputError("step must not be empty")
        if not isinstance(update, TaskUpdate):
            try:
                update = TaskUpdate.model_validate(update)
            except ValidationError as exc:
                raise InvalidInputError("invalid task update", _validation_details(exc)) from None

        raw = await self.read_raw()
        if raw is None:
            raise PlanNotFoundError
        plan = parse_plan(raw)
        task = plan.find_task(step.strip())
        if task is None:
            raise TaskNotFoundError(step, [t.step for t in plan.tasks])

        if update.status not in _EXPECTED_TRANSITIONS[task.status]:
            self._ws.log.warning("Task {}: unusual transition {} -> {}", task.step, task.status, update.status)

        lines = raw.split("\n")
        lines[task.line] = rewrite_task_line(
            lines[task.line],
            update.status,
            annotation=update.annotation,
            today=utc_today(),
        )
        updated = "\n".join(lines)
        await self.write_raw(updated)
        self._ws.log.info("Task {}: {} -> {}", task.step, task.status, update.status)

        result = parse_plan(updated).find_task(task.step)
        if result is None:
            raise TaskNotFoundError(task.step)
        return result

    async def append_notes(self, line: str) -> None:
        """Append ``line`` to the Notes section (created at the end if missing)."""
        raw = await self.read_raw()
        if raw is None:
            raise PlanNotFoundError
        await self.write_raw(append_note(raw, line))
