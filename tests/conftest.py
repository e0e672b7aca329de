"""Shared test fixtures: in-memory spreadsheet, call recording, fault injection.

Every test runs against ``InMemorySpreadsheet``; nothing touches the network.
``RecordingBackend`` wraps it to count calls (mutating calls in particular),
``FlakyBackend`` additionally raises queued failures before delegating.
Backoff sleeps are captured by ``SleepRecorder`` instead of waiting.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from agentscape.settings import AgentscapeSettings, _get_settings_cached
from agentscape.sheets.memory import InMemorySpreadsheet
from agentscape.workspace import Workspace, attach

MUTATING = frozenset({"update_values", "append_values", "batch_update_values", "clear_values", "batch_update"})


class RecordingBackend:
    """Delegates to a backend and records ``(method, args)`` for every call."""

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    @property
    def spreadsheet_id(self) -> str:
        return self.inner.spreadsheet_id

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self.inner, name)
        if not callable(attr):
            return attr

        async def _call(*args: Any, **kwargs: Any) -> Any:
            self.calls.append((name, args))
            self.before_call(name)
            return await attr(*args, **kwargs)

        return _call

    def before_call(self, name: str) -> None:
        """Hook for subclasses."""

    @property
    def writes(self) -> list[tuple[str, tuple[Any, ...]]]:
        return [call for call in self.calls if call[0] in MUTATING]

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def reset(self) -> None:
        self.calls.clear()


class FlakyBackend(RecordingBackend):
    """``RecordingBackend`` that raises queued failures per method."""

    def __init__(self, inner: Any) -> None:
        super().__init__(inner)
        self.failures: dict[str, list[BaseException]] = {}

    def fail(self, name: str, *errors: BaseException) -> None:
        self.failures.setdefault(name, []).extend(errors)

    def before_call(self, name: str) -> None:
        queue = self.failures.get(name)
        if queue:
            raise queue.pop(0)


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ---------------------------------------------------------------------------
# Settings isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Strip AGENTSCAPE_* env vars and reset the settings cache around each test."""
    for key in list(os.environ):
        if key.startswith("AGENTSCAPE_"):
            monkeypatch.delenv(key)
    _get_settings_cached.cache_clear()
    yield
    _get_settings_cached.cache_clear()


@pytest.fixture
def settings() -> AgentscapeSettings:
    return AgentscapeSettings(_env_file=None)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


@pytest.fixture
def sheet() -> InMemorySpreadsheet:
    return InMemorySpreadsheet("test-spreadsheet")


@pytest.fixture
def backend(sheet: InMemorySpreadsheet) -> FlakyBackend:
    return FlakyBackend(sheet)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_workspace(
    backend: FlakyBackend,
    settings: AgentscapeSettings,
    sleeper: SleepRecorder,
) -> Callable[..., Any]:
    """Factory attaching a fresh handle to the shared test spreadsheet."""

    async def _make(**kwargs: Any) -> Workspace:
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("sleep", sleeper)
        return await attach(backend=kwargs.pop("backend", backend), **kwargs)

    return _make


@pytest.fixture
async def workspace(make_workspace: Callable[..., Any]) -> Workspace:
    """A freshly bootstrapped workspace."""
    return await make_workspace()
