"""Virtual file store models."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from agentscape.models.enums import FileStatus, InitAction, Layout


def _split_csv(value: object) -> object:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class VirtualFile(BaseModel):
    """One named markdown document plus its 11 metadata fields.

    ``context_len`` and ``hash`` are derived from ``content`` by the store on
    every write; values supplied by the caller are ignored.
    """

    file: str
    desc: str = ""
    tags: list[str] = Field(default_factory=list)
    path: str = ""
    created_ts: str = ""
    updated_ts: str = ""
    status: str = FileStatus.ACTIVE
    """``active`` / ``draft`` / ``archived``; other text is kept as-is."""

    depends_on: list[str] = Field(default_factory=list)
    context_len: int | None = None
    max_ctx_len: int | None = None
    hash: str = ""
    content: str = ""

    @field_validator("tags", "depends_on", mode="before")
    @classmethod
    def _csv_list(cls, value: object) -> object:
        return _split_csv(value)

    @field_validator("context_len", "max_ctx_len", mode="before")
    @classmethod
    def _optional_int(cls, value: object) -> object:
        if value is None or isinstance(value, int):
            return value
        text = str(value).strip()
        if not text:
            return None
        try:
            return int(float(text))
        except ValueError:
            return None

    @field_validator("status", mode="before")
    @classmethod
    def _status_default(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return FileStatus.ACTIVE
        return value


class FileStoreInitResult(BaseModel):
    action: InitAction
    layout: Layout
    seeded: list[str] = Field(default_factory=list)
    """Reserved files written during this bootstrap."""


class FileStoreReport(BaseModel):
    """Read-only health report produced by ``FileStore.validate()``."""

    valid: bool
    layout: Layout | None = None
    """``None`` when the container does not exist."""

    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
