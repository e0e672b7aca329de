"""Unit tests for the execution wrapper (classification, backoff, budget)."""

from __future__ import annotations

import errno
import socket
from typing import TYPE_CHECKING

import httpx
import pytest

from agentscape.errors import InvalidInputError, NetworkError, SheetsAPIError
from agentscape.retry import (
    RetryExecutor,
    RetryPolicy,
    backoff_delay,
    get_error_code,
    get_retry_after,
    is_retryable,
    with_retry,
)
from agentscape.settings import AgentscapeSettings

if TYPE_CHECKING:
    from tests.conftest import SleepRecorder


class _Op:
    """Callable that fails with queued errors, then returns ``result``."""

    def __init__(self, *errors: BaseException, result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class _AlwaysFails:
    def __init__(self, error_factory) -> None:
        self.error_factory = error_factory
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        raise self.error_factory()


# -- Classification ------------------------------------------------------------


@pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
def test_transient_statuses_are_retryable(status: int) -> None:
    assert is_retryable(SheetsAPIError(status, "busy"))


@pytest.mark.parametrize("status", [400, 401, 403, 404])
def test_client_errors_are_terminal(status: int) -> None:
    assert not is_retryable(SheetsAPIError(status, "nope"))


def test_httpx_status_error_uses_response_status() -> None:
    request = httpx.Request("GET", "https://example.test")
    error = httpx.HTTPStatusError("server", request=request, response=httpx.Response(503, request=request))
    assert is_retryable(error)


def test_transport_errors_are_retryable() -> None:
    assert is_retryable(httpx.ConnectError("refused"))
    assert is_retryable(httpx.ReadTimeout("slow"))
    assert is_retryable(ConnectionResetError())
    assert is_retryable(BrokenPipeError())


def test_error_code_from_errno_and_chain() -> None:
    assert get_error_code(OSError(errno.ECONNRESET, "reset")) == "ECONNRESET"
    assert get_error_code(socket.gaierror(socket.EAI_AGAIN, "try again")) == "EAI_AGAIN"

    wrapped = httpx.ConnectError("connect failed")
    wrapped.__cause__ = OSError(errno.ENETUNREACH, "unreachable")
    assert get_error_code(wrapped) == "ENETUNREACH"


def test_string_code_attribute() -> None:
    error = RuntimeError("socket hang up")
    error.code = "ECONNABORTED"  # type: ignore[attr-defined]
    assert get_error_code(error) == "ECONNABORTED"
    assert is_retryable(error)


def test_code_outside_the_configured_set_is_terminal() -> None:
    assert not is_retryable(ConnectionResetError(), retryable_errors=("ETIMEDOUT",))


def test_status_in_message_is_retryable() -> None:
    assert is_retryable(RuntimeError("upstream returned 502 Bad Gateway"))
    assert not is_retryable(RuntimeError("row 5020 is invalid"))


def test_network_error_is_retryable() -> None:
    assert is_retryable(NetworkError("flaky"))


def test_caller_errors_are_terminal() -> None:
    assert not is_retryable(ValueError("bad"))
    assert not is_retryable(InvalidInputError("bad"))


def test_retry_after() -> None:
    assert get_retry_after(SheetsAPIError(429, "slow down", retry_after=7)) == 7.0
    request = httpx.Request("GET", "https://example.test")
    response = httpx.Response(429, headers={"Retry-After": "3"}, request=request)
    assert get_retry_after(httpx.HTTPStatusError("x", request=request, response=response)) == 3.0
    assert get_retry_after(SheetsAPIError(503, "busy")) is None


# -- Backoff -------------------------------------------------------------------


def test_backoff_delay_bounds() -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=30.0)
    for attempt, base in [(0, 1.0), (1, 2.0), (2, 4.0), (5, 30.0), (10, 30.0)]:
        for _ in range(20):
            delay = backoff_delay(attempt, policy)
            assert base <= delay <= base * 1.1


def test_policy_from_settings() -> None:
    settings = AgentscapeSettings(
        _env_file=None,
        retry_max_attempts=5,
        retry_base_delay=0.5,
        retry_max_delay=4,
        retryable_errors=["ETIMEDOUT"],
    )
    policy = RetryPolicy.from_settings(settings)
    assert policy == RetryPolicy(
        enabled=True, max_attempts=5, base_delay=0.5, max_delay=4.0, retryable_errors=("ETIMEDOUT",)
    )


# -- Execution -----------------------------------------------------------------


async def test_success_after_transient_failures(sleeper: SleepRecorder) -> None:
    op = _Op(SheetsAPIError(503, "busy"), httpx.ReadError("reset"))
    assert await with_retry(op, RetryPolicy(), sleep=sleeper) == "ok"
    assert op.calls == 3
    assert len(sleeper.delays) == 2


async def test_budget_is_exact_and_delays_non_decreasing(sleeper: SleepRecorder) -> None:
    op = _AlwaysFails(lambda: SheetsAPIError(503, "unavailable"))
    policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=60.0)

    with pytest.raises(SheetsAPIError) as exc_info:
        await with_retry(op, policy, sleep=sleeper)

    assert exc_info.value.status_code == 503
    assert op.calls == 5
    # No sleep after the last attempt
    assert len(sleeper.delays) == 4
    assert sleeper.delays == sorted(sleeper.delays)


async def test_transport_failure_becomes_network_error(sleeper: SleepRecorder) -> None:
    op = _AlwaysFails(lambda: ConnectionResetError(errno.ECONNRESET, "Connection reset by peer"))

    with pytest.raises(NetworkError) as exc_info:
        await with_retry(op, RetryPolicy(max_attempts=3), sleep=sleeper)

    error = exc_info.value
    assert op.calls == 3
    assert error.attempt == 3
    assert error.max_attempts == 3
    assert "(attempt 3/3)" in str(error)
    assert isinstance(error.__cause__, ConnectionResetError)
    assert isinstance(error, ConnectionError)


async def test_terminal_error_is_not_retried(sleeper: SleepRecorder) -> None:
    op = _AlwaysFails(lambda: SheetsAPIError(403, "forbidden"))

    with pytest.raises(SheetsAPIError):
        await with_retry(op, RetryPolicy(), sleep=sleeper)

    assert op.calls == 1
    assert sleeper.delays == []


async def test_retry_after_overrides_backoff(sleeper: SleepRecorder) -> None:
    op = _Op(SheetsAPIError(429, "quota", retry_after=12))
    await with_retry(op, RetryPolicy(base_delay=1.0), sleep=sleeper)
    assert sleeper.delays == [12.0]


async def test_disabled_policy_runs_once(sleeper: SleepRecorder) -> None:
    op = _Op(SheetsAPIError(503, "busy"))
    with pytest.raises(SheetsAPIError):
        await with_retry(op, RetryPolicy(enabled=False), sleep=sleeper)
    assert op.calls == 1


async def test_executor_binds_policy(sleeper: SleepRecorder) -> None:
    executor = RetryExecutor(RetryPolicy(max_attempts=2), sleep=sleeper)
    op = _AlwaysFails(lambda: httpx.ConnectTimeout("timed out"))

    with pytest.raises(NetworkError):
        await executor.execute(op)
    assert op.calls == 2
    assert len(sleeper.delays) == 1


async def test_plain_callable_returning_awaitable_is_retried(sleeper: SleepRecorder) -> None:
    op = _Op(SheetsAPIError(503, "busy"), SheetsAPIError(503, "busy"))

    result = await with_retry(lambda: op(), RetryPolicy(max_attempts=3), sleep=sleeper)

    assert result == "ok"
    assert op.calls == 3
    assert len(sleeper.delays) == 2


async def test_executor_awaits_bound_call_arguments(sleeper: SleepRecorder) -> None:
    async def fetch(range_: str, *, render: str) -> list[str]:
        return [range_, render]

    executor = RetryExecutor(RetryPolicy(), sleep=sleeper)

    assert await executor.execute(lambda: fetch("A1", render="FORMULA")) == ["A1", "FORMULA"]
    assert sleeper.delays == []


async def test_plain_callable_terminal_error_propagates(sleeper: SleepRecorder) -> None:
    op = _AlwaysFails(lambda: SheetsAPIError(404, "missing"))

    with pytest.raises(SheetsAPIError):
        await with_retry(lambda: op(), RetryPolicy(), sleep=sleeper)
    assert op.calls == 1
