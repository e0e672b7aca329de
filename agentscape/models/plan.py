"""Plan data models.

The parsed structure is always derived from ``Plan.raw``; nothing here is
written back directly.  Mutations go through ``PlanManager``, which rewrites
the raw text line by line.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from agentscape.models.enums import TaskStatus

# -- Parsed plan -------------------------------------------------------------


class PlanTask(BaseModel):
    line: int = Field(description="0-based line index in the raw markdown")
    phase: int
    step: str = Field(description='"<phase>.<index>", e.g. "1.2"')
    status: TaskStatus = TaskStatus.TODO
    title: str
    completed_date: str | None = None
    blocked_reason: str | None = None
    review_note: str | None = None


class Phase(BaseModel):
    number: int
    name: str
    tasks: list[PlanTask] = Field(default_factory=list)


class TargetRanges(BaseModel):
    read: list[str] = Field(default_factory=list)
    write: list[str] = Field(default_factory=list)


class PlanAnalysis(BaseModel):
    spreadsheet: str
    key_sheets: list[str] = Field(default_factory=list)
    target_ranges: TargetRanges = Field(default_factory=TargetRanges)
    current_state: str | None = None


class Plan(BaseModel):
    title: str
    goal: str
    analysis: PlanAnalysis | None = None
    questions: list[str] | None = None
    phases: list[Phase] = Field(default_factory=list)
    notes: str = ""
    raw: str

    @property
    def tasks(self) -> list[PlanTask]:
        """All tasks in document order."""
        return [task for phase in self.phases for task in phase.tasks]

    def find_task(self, step: str) -> PlanTask | None:
        for task in self.tasks:
            if task.step == step:
                return task
        return None


# -- Inputs ------------------------------------------------------------------


class PhaseInput(BaseModel):
    name: str
    steps: list[str] = Field(default_factory=list)


_UPDATABLE = (TaskStatus.DOING, TaskStatus.DONE, TaskStatus.BLOCKED, TaskStatus.REVIEW)


class TaskUpdate(BaseModel):
    """Requested status change for one task.

    ``reason`` is recorded for ``blocked``, ``note`` for ``review``; both are
    ignored for other statuses.
    """

    status: TaskStatus
    reason: str | None = None
    note: str | None = None

    @field_validator("status")
    @classmethod
    def _status_is_updatable(cls, value: TaskStatus) -> TaskStatus:
        if value not in _UPDATABLE:
            msg = f"status must be one of {', '.join(_UPDATABLE)}, got '{value}'"
            raise ValueError(msg)
        return value

    @property
    def annotation(self) -> str | None:
        if self.status == TaskStatus.BLOCKED:
            return self.reason
        if self.status == TaskStatus.REVIEW:
            return self.note
        return None
