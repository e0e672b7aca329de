"""Spreadsheet-backed agent workspace engine."""

from agentscape.errors import (
    AgentscapeError,
    InvalidInputError,
    NetworkError,
    PlanNotFoundError,
    SheetsAPIError,
    StructuralIncompatibilityError,
    TaskNotFoundError,
    WorkspacePermissionError,
)
from agentscape.retry import RetryExecutor, RetryPolicy, with_retry
from agentscape.settings import AgentscapeSettings, get_settings
from agentscape.workspace import Workspace, attach

__version__ = "0.1.0"

__all__ = [
    "AgentscapeError",
    "AgentscapeSettings",
    "InvalidInputError",
    "NetworkError",
    "PlanNotFoundError",
    "RetryExecutor",
    "RetryPolicy",
    "SheetsAPIError",
    "StructuralIncompatibilityError",
    "TaskNotFoundError",
    "Workspace",
    "WorkspacePermissionError",
    "__version__",
    "attach",
    "get_settings",
    "with_retry",
]
