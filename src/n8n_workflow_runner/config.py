"""Application configuration management using Pydantic Settings.

This module defines the `Settings` class, which loads configuration parameters
from environment variables and a `.env` file. It centralizes everything the
runner needs to talk to an n8n instance: the API root and key, the live/test
webhook roots, and the time budgets used while waiting for chat replies.

The `get_settings` function provides a cached, singleton instance of the
configuration, ensuring consistent settings throughout the application.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict as _SettingsConfigDict


class Settings(BaseSettings):
    """Defines all application configuration parameters.

    Values come from environment variables or a `.env` file. Webhook roots
    are derived from `N8N_BASE_URL` when they are not overridden explicitly,
    mirroring how n8n itself serves `/webhook` (active workflows) and
    `/webhook-test` (workflows open in the editor).
    """

    model_config = _SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # n8n instance
    N8N_BASE_URL: str = Field(default="", description="Root URL of the n8n instance")
    N8N_API_KEY: str = Field(default="", description="n8n public API key (X-N8N-API-KEY)")
    N8N_WEBHOOK_URL: Optional[str] = Field(
        default=None,
        description="Live webhook root override (defaults to <N8N_BASE_URL>/webhook)",
    )
    N8N_WEBHOOK_TEST_URL: Optional[str] = Field(
        default=None,
        description="Test webhook root override (defaults to <N8N_BASE_URL>/webhook-test)",
    )
    N8N_API_TIMEOUT: float = Field(
        default=10.0, description="Timeout (seconds) for a single n8n HTTP request"
    )
    N8N_WEBHOOK_TIMEOUT: float = Field(
        default=30.0,
        description=(
            "Timeout (seconds) for webhook deliveries; workflows with a "
            "Respond to Webhook node answer only after they finish"
        ),
    )
    USER_AGENT: str = Field(
        default="n8n-workflow-runner/0.1", description="User-Agent sent to n8n"
    )

    # ---------------- Chat reply polling -----------------
    CHAT_REPLY_TIMEOUT_MS: int = Field(
        default=8000,
        description="Default wall-clock budget (ms) for waiting on a chat reply",
    )
    EXECUTE_CHAT_TIMEOUT_MS: int = Field(
        default=9000,
        description="Chat reply budget (ms) when a chat trigger is reached via the execute route",
    )
    CHAT_ROUTE_TIMEOUT_MS: int = Field(
        default=60000,
        description="Chat reply budget (ms) for the dedicated AI agent chat route",
    )
    CHAT_POLL_INTERVAL_MS: int = Field(
        default=700, description="Sleep (ms) between execution history polls"
    )
    CHAT_DEFAULT_USER: str = Field(
        default="executive-dashboard", description="Caller identity embedded in chat payloads"
    )
    CHAT_SOURCE: str = Field(
        default="automation-dashboard", description="`source` field embedded in chat payloads"
    )
    CHAT_CORRELATE_SESSION: bool = Field(
        default=False,
        description=(
            "If true, only accept executions whose runData echoes the sessionId "
            "sent with the chat message. Requires the workflow to pass sessionId "
            "through (n8n chat triggers do by default)."
        ),
    )

    # Logging & serving
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    API_HOST: str = Field(default="127.0.0.1", description="Bind host for `serve`")
    API_PORT: int = Field(default=8000, description="Bind port for `serve`")

    @field_validator("N8N_BASE_URL", "N8N_WEBHOOK_URL", "N8N_WEBHOOK_TEST_URL", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: Any) -> Any:
        """Trim whitespace and trailing slashes."""
        if v is None:
            return None
        if isinstance(v, str):
            trimmed = v.strip().rstrip("/")
            return trimmed
        return v

    @model_validator(mode="after")
    def derive_webhook_roots(self) -> "Settings":
        """Fill live/test webhook roots from `N8N_BASE_URL` when not set.

        Returns:
            The validated `Settings` instance with webhook roots populated
            whenever a base URL is known.
        """
        if not self.N8N_WEBHOOK_URL and self.N8N_BASE_URL:
            self.N8N_WEBHOOK_URL = f"{self.N8N_BASE_URL}/webhook"
        if not self.N8N_WEBHOOK_TEST_URL and self.N8N_BASE_URL:
            self.N8N_WEBHOOK_TEST_URL = f"{self.N8N_BASE_URL}/webhook-test"
        return self

    @property
    def api_root(self) -> str:
        return f"{self.N8N_BASE_URL}/api/v1"


@lru_cache(maxsize=1)
def get_settings() -> Settings:  # pragma: no cover - trivial
    """Return a cached, singleton instance of the application settings."""
    return Settings()


__all__ = ["Settings", "get_settings"]
