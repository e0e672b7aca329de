"""Error taxonomy for the workspace engine.

Every engine error carries two strings: the diagnostic message (``str(exc)``)
and a short remediation hint (``exc.fix``) meant to be shown to whoever has to
act on it.  Each class also derives from the closest builtin exception so
callers can catch ``LookupError`` / ``ValueError`` / ... without importing
this module.

``SheetsAPIError`` is deliberately *not* an ``AgentscapeError``: it is the raw
failure reported by a backend and is what the retry layer classifies.
"""

from __future__ import annotations

from typing import ClassVar


class AgentscapeError(Exception):
    """Base class for all engine errors."""

    code: ClassVar[str] = "AGENTSCAPE_ERROR"

    def __init__(self, message: str, fix: str) -> None:
        super().__init__(message)
        self.fix = fix


class InvalidInputError(AgentscapeError, ValueError):
    """Malformed caller input.  Never retried."""

    code: ClassVar[str] = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        self.details = list(details or [])
        if self.details:
            message = "Validation failed:\n  " + "\n  ".join(self.details)
        else:
            message = f"Validation failed: {message}"
        super().__init__(
            message,
            fix="Check the input parameters and ensure they match the expected types and formats.",
        )


class WorkspacePermissionError(AgentscapeError, PermissionError):
    """The workspace cannot be reached at all (missing, forbidden, unauthenticated)."""

    code: ClassVar[str] = "PERMISSION_ERROR"

    def __init__(self, spreadsheet_id: str, service_account: str | None = None, reason: str | None = None) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.service_account = service_account
        message = f"Cannot access spreadsheet '{spreadsheet_id}'"
        if reason:
            message = f"{message}: {reason}"
        if service_account:
            fix = f"Share the spreadsheet with {service_account} (Editor role) or verify the spreadsheet ID."
        else:
            fix = "Share the spreadsheet with the service account (Editor role) or verify the spreadsheet ID."
        super().__init__(message, fix=fix)


class NetworkError(AgentscapeError, ConnectionError):
    """Transient transport failure that outlived the retry budget."""

    code: ClassVar[str] = "NETWORK_ERROR"

    def __init__(self, original_error: str, attempt: int | None = None, max_attempts: int | None = None) -> None:
        self.original_error = original_error
        self.attempt = attempt
        self.max_attempts = max_attempts
        retry_info = f" (attempt {attempt}/{max_attempts})" if attempt and max_attempts else ""
        super().__init__(
            f"Connection failed: {original_error}{retry_info}",
            fix="Check your network connection. The request will be retried automatically.",
        )


class StructuralIncompatibilityError(AgentscapeError, RuntimeError):
    """An existing file-store container conflicts with the expected schema."""

    code: ClassVar[str] = "STRUCTURE_ERROR"

    def __init__(self, sheet: str, problem: str, expected_labels: list[str]) -> None:
        self.sheet = sheet
        self.problem = problem
        self.remediation = [
            f'Delete or rename the "{sheet}" sheet so a new one can be created',
            "Use a different spreadsheet",
            f'Manually set the "{sheet}" labels to: {", ".join(expected_labels)}',
        ]
        numbered = " ".join(f"{i}) {choice}." for i, choice in enumerate(self.remediation, start=1))
        super().__init__(
            f'Sheet "{sheet}" exists but has an incompatible structure ({problem}).',
            fix=f"Please either: {numbered}",
        )


class PlanNotFoundError(AgentscapeError, LookupError):
    """A plan mutation was attempted while no plan exists."""

    code: ClassVar[str] = "PLAN_NOT_FOUND"

    def __init__(self) -> None:
        super().__init__("No plan found", fix="Create a plan first using create_plan()")


class TaskNotFoundError(AgentscapeError, LookupError):
    """No task line carries the requested step id."""

    code: ClassVar[str] = "TASK_NOT_FOUND"

    def __init__(self, step: str, available_tasks: list[str] | None = None) -> None:
        self.step = step
        self.available_tasks = list(available_tasks or [])
        if self.available_tasks:
            fix = f"Use one of the existing step ids: {', '.join(self.available_tasks)}"
        else:
            fix = "The plan has no tasks; create a plan with phases and steps first."
        super().__init__(f"Task '{step}' not found in plan", fix=fix)


class SheetsAPIError(Exception):
    """Error response returned by the spreadsheet service.

    ``status_code`` is the HTTP status; ``retry_after`` holds the parsed
    ``Retry-After`` hint in seconds when the service sent one.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        reason: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.reason = reason
        self.retry_after = retry_after


def is_missing_range_error(exc: BaseException) -> bool:
    """True for service errors meaning "nothing there yet" (unparseable range, not found)."""
    return isinstance(exc, SheetsAPIError) and exc.status_code in (400, 404)
