"""Engine configuration loaded from AGENTSCAPE_* environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RETRYABLE_ERRORS: tuple[str, ...] = (
    "ECONNRESET",
    "ETIMEDOUT",
    "ENOTFOUND",
    "ECONNREFUSED",
    "ECONNABORTED",
    "EPIPE",
    "ENETUNREACH",
    "EAI_AGAIN",
)


class AgentscapeSettings(BaseSettings):
    """Workspace engine settings.

    All fields are read from environment variables with the ``AGENTSCAPE_``
    prefix.  For example, ``AGENTSCAPE_RETRY_MAX_ATTEMPTS=5`` maps to
    ``retry_max_attempts``.

    Credentials are **not** resolved here beyond a ready-made bearer token --
    producing that token (service account, OAuth flow, ...) is the caller's
    job.
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTSCAPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Remote service --------------------------------------------------------
    spreadsheet_id: str | None = None
    """Default workspace for ``attach()`` when no id is passed."""

    access_token: SecretStr | None = None
    """OAuth bearer token used by the HTTP backend."""

    api_base_url: str = "https://sheets.googleapis.com"
    request_timeout: float = 30.0

    # -- Retry -----------------------------------------------------------------
    retry_enabled: bool = True
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    """Seconds.  Attempt ``n`` waits ``base * 2**n`` (capped) plus jitter."""

    retry_max_delay: float = 30.0
    retryable_errors: list[str] = list(DEFAULT_RETRYABLE_ERRORS)
    """Transport error codes treated as transient."""

    # -- File store ------------------------------------------------------------
    derived_fields: Literal["formula", "computed"] = "formula"
    """How ContextLen/Hash are stored.

    ``formula`` writes live formulas so edits made directly in the spreadsheet
    keep both fields correct; ``computed`` writes precomputed values for
    backends that cannot evaluate them.
    """

    virtual_root: str = "/opt/agentscape"
    """Prefix for the default virtual path of a file."""


def get_settings() -> AgentscapeSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> AgentscapeSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return AgentscapeSettings()


from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
