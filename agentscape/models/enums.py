"""Shared enumerations used across the workspace engine."""

from __future__ import annotations

from enum import StrEnum

# -- Plan --------------------------------------------------------------------


class TaskStatus(StrEnum):
    """Task status, encoded in plan markdown as a single marker character."""

    TODO = "todo"
    DOING = "doing"
    DONE = "done"
    BLOCKED = "blocked"
    REVIEW = "review"


# -- File store --------------------------------------------------------------


class Layout(StrEnum):
    """Physical arrangement of the file-store container."""

    COLUMN = "column"
    """One file per column; the 12 labels are pinned to column A."""

    ROW = "row"
    """One file per row; the 12 labels are pinned to row 1 (legacy)."""


class FileStatus(StrEnum):
    ACTIVE = "active"
    DRAFT = "draft"
    ARCHIVED = "archived"


class InitAction(StrEnum):
    """Outcome of the file-store self-repair bootstrap."""

    CREATED = "created"
    REPAIRED = "repaired"
    ALREADY_VALID = "already_valid"


# -- Remote service ----------------------------------------------------------


class ValueInputOption(StrEnum):
    RAW = "RAW"
    USER_ENTERED = "USER_ENTERED"


class ValueRenderOption(StrEnum):
    FORMATTED_VALUE = "FORMATTED_VALUE"
    UNFORMATTED_VALUE = "UNFORMATTED_VALUE"
    FORMULA = "FORMULA"


class Dimension(StrEnum):
    ROWS = "ROWS"
    COLUMNS = "COLUMNS"
