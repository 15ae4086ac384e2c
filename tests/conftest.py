"""Shared test fixtures for the agent chat client.

Provides settings and collaborator doubles used across the unit tests.
"""

from unittest.mock import AsyncMock

import pytest
from pydantic import SecretStr

from agent_chat.collaborators import InMemoryHistoryStore, StaticTokenAuth
from agent_chat.settings import Settings


# =============================================================================
# SETTINGS
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Provide test settings with safe defaults."""
    return Settings(
        api_base_url="http://agent.test",
        api_token=SecretStr("test-token"),
        max_chat_messages=20,
        default_user_name="Tester",
    )


@pytest.fixture
def mock_settings(test_settings: Settings, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Mock get_settings() to return test settings."""
    from agent_chat import settings

    settings.get_settings.cache_clear()
    monkeypatch.setattr(settings, "get_settings", lambda: test_settings)
    return test_settings


# =============================================================================
# COLLABORATORS
# =============================================================================


@pytest.fixture
def auth() -> StaticTokenAuth:
    return StaticTokenAuth("test-token")


@pytest.fixture
def history_store() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def mock_history_store() -> AsyncMock:
    """History store double recording every call."""
    store = AsyncMock()
    store.create_conversation.return_value.chat_id = "chat-42"
    store.create_conversation.return_value.chat_description = ""
    store.generate_title.return_value = "Grocery card"
    return store
