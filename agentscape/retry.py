"""Execution wrapper: classify remote-call failures and retry transient ones.

Every remote operation the engine performs goes through ``with_retry`` (or a
``RetryExecutor``), a tenacity ``AsyncRetrying`` loop configured from a
``RetryPolicy``.  A failure is transient when it carries a transient HTTP
status (429, 5xx gateway family) or a transport error code from the policy's
set; anything else (bad request, auth, not found, caller bugs) propagates on
the first attempt.

Backoff for attempt ``n`` (0-based) is ``min(max_delay, base_delay * 2**n)``
plus up to 10% jitter.  A ``Retry-After`` hint from the service replaces the
computed delay.  The wrapper never sleeps after the last attempt.

When the budget runs out on a transport failure the caller gets a
``NetworkError`` (chained from the original); any other error is re-raised
as-is.
"""

from __future__ import annotations

import asyncio
import errno
import random
import re
import socket
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from agentscape.errors import NetworkError
from agentscape.settings import DEFAULT_RETRYABLE_ERRORS, AgentscapeSettings

T = TypeVar("T")

RETRYABLE_STATUS_CODES: tuple[int, ...] = (429, 500, 502, 503, 504)

_STATUS_IN_TEXT_RE = re.compile(r"\b(" + "|".join(str(code) for code in RETRYABLE_STATUS_CODES) + r")\b")

_JITTER_RATIO = 0.1

# httpx raises its own exception types; map them to the transport code they stand for.
# Order matters: subclasses before their bases.
_HTTPX_CODES: tuple[tuple[type[BaseException], str], ...] = (
    (httpx.TimeoutException, "ETIMEDOUT"),
    (httpx.ConnectError, "ECONNREFUSED"),
    (httpx.ReadError, "ECONNRESET"),
    (httpx.WriteError, "EPIPE"),
    (httpx.RemoteProtocolError, "ECONNRESET"),
    (httpx.CloseError, "ECONNABORTED"),
)

_BUILTIN_CODES: tuple[tuple[type[BaseException], str], ...] = (
    (ConnectionResetError, "ECONNRESET"),
    (ConnectionRefusedError, "ECONNREFUSED"),
    (ConnectionAbortedError, "ECONNABORTED"),
    (BrokenPipeError, "EPIPE"),
    (TimeoutError, "ETIMEDOUT"),
)

_GAI_CODES: dict[int, str] = {
    socket.EAI_AGAIN: "EAI_AGAIN",
    socket.EAI_NONAME: "ENOTFOUND",
}


@dataclass(frozen=True)
class RetryPolicy:
    enabled: bool = True
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    retryable_errors: tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS

    @classmethod
    def from_settings(cls, settings: AgentscapeSettings) -> RetryPolicy:
        return cls(
            enabled=settings.retry_enabled,
            max_attempts=max(settings.retry_max_attempts, 1),
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            retryable_errors=tuple(settings.retryable_errors),
        )


# -- Classification ------------------------------------------------------------


def _chain(exc: BaseException) -> Iterator[BaseException]:
    """The error followed by its causes/contexts, each visited once."""
    seen: set[int] = set()
    pending = [exc]
    while pending:
        current = pending.pop(0)
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        for linked in (current.__cause__, current.__context__):
            if linked is not None:
                pending.append(linked)


def get_status_code(exc: BaseException) -> int | None:
    """HTTP status carried by the error, if any."""
    for candidate in (
        getattr(exc, "status_code", None),
        getattr(getattr(exc, "response", None), "status_code", None),
        getattr(exc, "status", None),
        getattr(exc, "code", None),
    ):
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            return candidate
    return None


def get_error_code(exc: BaseException) -> str | None:
    """Symbolic transport error code (``ECONNRESET`` ...) for the error or anything it wraps."""
    errors = list(_chain(exc))

    for err in errors:
        code = getattr(err, "code", None)
        if isinstance(code, str) and code.startswith("E"):
            return code
        if isinstance(err, socket.gaierror) and err.errno in _GAI_CODES:
            return _GAI_CODES[err.errno]
        if isinstance(err, OSError) and isinstance(err.errno, int) and err.errno in errno.errorcode:
            return errno.errorcode[err.errno]

    for err in errors:
        for cls, code in (*_HTTPX_CODES, *_BUILTIN_CODES):
            if isinstance(err, cls):
                return code
    return None


def get_retry_after(exc: BaseException) -> float | None:
    """Server-provided retry delay in seconds, if the error carries one."""
    value = getattr(exc, "retry_after", None)
    if isinstance(value, int | float) and not isinstance(value, bool):
        return max(float(value), 0.0)
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is not None:
        raw = headers.get("Retry-After")
        if raw:
            try:
                return max(float(raw), 0.0)
            except ValueError:
                return None
    return None


def is_retryable(exc: BaseException, retryable_errors: tuple[str, ...] | list[str] = DEFAULT_RETRYABLE_ERRORS) -> bool:
    """Whether a failed attempt is worth repeating."""
    if isinstance(exc, NetworkError):
        return True
    if get_status_code(exc) in RETRYABLE_STATUS_CODES:
        return True
    code = get_error_code(exc)
    if code is not None and code in retryable_errors:
        return True
    return bool(_STATUS_IN_TEXT_RE.search(str(exc)))


def backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """Delay before retrying after 0-based ``attempt`` failed."""
    delay = min(policy.max_delay, policy.base_delay * (2**attempt))
    return delay + random.uniform(0, delay * _JITTER_RATIO)


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


# -- Execution -----------------------------------------------------------------


def _retrying(
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[Any]],
    description: str,
) -> AsyncRetrying:
    def wait(state: RetryCallState) -> float:
        exc = state.outcome.exception() if state.outcome else None
        hinted = get_retry_after(exc) if exc is not None else None
        return hinted if hinted is not None else backoff_delay(state.attempt_number - 1, policy)

    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            "{} failed (attempt {}/{}), retrying in {:.2f}s: {}",
            description,
            state.attempt_number,
            policy.max_attempts,
            delay,
            _describe(exc) if exc is not None else "-",
        )

    def exhausted(state: RetryCallState) -> Any:
        if state.outcome is None or state.outcome.exception() is None:
            msg = f"{description}: retry budget exhausted without a recorded failure"
            raise RuntimeError(msg)
        exc = state.outcome.exception()
        logger.error("{} failed after {} attempts: {}", description, policy.max_attempts, _describe(exc))
        if get_error_code(exc) in policy.retryable_errors:
            raise NetworkError(_describe(exc), policy.max_attempts, policy.max_attempts) from exc
        raise exc

    return AsyncRetrying(
        sleep=sleep,
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait,
        retry=retry_if_exception(lambda exc: is_retryable(exc, policy.retryable_errors)),
        before_sleep=before_sleep,
        retry_error_callback=exhausted,
    )


async def with_retry(
    op: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    description: str = "remote call",
) -> T:
    """Run ``op`` until it succeeds, fails terminally, or exhausts the policy."""
    policy = policy or RetryPolicy()
    if not policy.enabled:
        return await op()

    # tenacity awaits only coroutine functions; op may be a plain callable returning an awaitable
    async def _attempt() -> T:
        return await op()

    return await _retrying(policy, sleep, description)(_attempt)


class RetryExecutor:
    """Binds a policy (and sleep function) so call sites only pass the operation."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def execute(self, op: Callable[[], Awaitable[T]], description: str = "remote call") -> T:
        return await with_retry(op, self.policy, sleep=self._sleep, description=description)
