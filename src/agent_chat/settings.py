"""Application settings using pydantic-settings.

Loads configuration from environment variables with .env file support.
"""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AGENT_CHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,  # Allow both field name and alias
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Agent API
    api_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the agent API",
        validation_alias=AliasChoices("api_base_url", "agent_chat_api_base_url", "api_url"),
    )
    agent_path: str = Field(
        default="/chat/agent",
        description="Path of the streaming agent endpoint",
    )
    api_token: SecretStr = Field(
        default=SecretStr(""),
        description="Bearer token used by StaticTokenAuth (empty = no credential)",
        validation_alias=AliasChoices("api_token", "agent_chat_api_token"),
    )
    agent_mode: str | None = Field(
        default=None,
        description="Optional agent mode forwarded with every turn",
    )
    default_user_name: str = Field(
        default="User",
        description="Name sent when the caller has no display name",
    )

    # Timeouts (seconds)
    connect_timeout: float = Field(default=10.0, gt=0)
    stream_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Read timeout between two chunks of the event stream",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for non-streaming calls (undo, history)",
    )

    # Conversation limits
    max_chat_messages: int = Field(
        default=20,
        ge=2,
        le=200,
        description="Maximum messages kept in a conversation and sent as history",
    )

    # Collaborator routes
    history_path: str = Field(default="/users/history")
    user_api_path: str = Field(
        default="/api/v1/users",
        description="Prefix for card, credit and component mutation routes used by undo",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded once and reused.
    """
    return Settings()
