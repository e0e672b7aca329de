"""Data models for the workspace engine."""

from agentscape.models.enums import (
    Dimension,
    FileStatus,
    InitAction,
    Layout,
    TaskStatus,
    ValueInputOption,
    ValueRenderOption,
)
from agentscape.models.files import FileStoreInitResult, FileStoreReport, VirtualFile
from agentscape.models.plan import (
    Phase,
    PhaseInput,
    Plan,
    PlanAnalysis,
    PlanTask,
    TargetRanges,
    TaskUpdate,
)
from agentscape.models.sheets import SheetProperties, SpreadsheetInfo, UpdateResult, ValueRange

__all__ = [
    # Enums
    "Dimension",
    # Files
    "FileStatus",
    "FileStoreInitResult",
    "FileStoreReport",
    "InitAction",
    "Layout",
    # Plan
    "Phase",
    "PhaseInput",
    "Plan",
    "PlanAnalysis",
    "PlanTask",
    # Sheets
    "SheetProperties",
    "SpreadsheetInfo",
    "TargetRanges",
    "TaskStatus",
    "TaskUpdate",
    "UpdateResult",
    "ValueInputOption",
    "ValueRange",
    "ValueRenderOption",
    "VirtualFile",
]
