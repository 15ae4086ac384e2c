"""Chat message schemas.

Pydantic schemas for conversation messages, turn requests and the
"data changed" flags the agent reports after mutating user data.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import StrEnum
from uuid import uuid4

from pydantic import Field

from agent_chat.models.components import ChatComponentBlock, WireModel


class ChatSource(StrEnum):
    """Who produced a message."""

    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"


class ChatMessage(WireModel):
    """A finished chat message. Immutable once appended to history."""

    id: str = Field(default_factory=lambda: f"msg-{uuid4().hex}")
    chat_source: ChatSource
    chat_message: str
    component_block: ChatComponentBlock | None = None
    is_error: bool | None = None
    timestamp: str | None = None

    @classmethod
    def from_user(cls, prompt: str) -> ChatMessage:
        return cls(chat_source=ChatSource.USER, chat_message=prompt)


class DataChanged(WireModel):
    """Which server-side data the agent mutated during a turn."""

    credits: bool | None = None
    cards: bool | None = None
    preferences: bool | None = None

    @property
    def has_changes(self) -> bool:
        return bool(self.credits or self.cards or self.preferences)

    def merged_with(self, other: DataChanged | None) -> DataChanged:
        if other is None:
            return self
        return DataChanged(
            credits=(self.credits or other.credits) or None,
            cards=(self.cards or other.cards) or None,
            preferences=(self.preferences or other.preferences) or None,
        )


class TurnRequest(WireModel):
    """Body of one streaming agent request."""

    name: str
    prompt: str
    chat_history: tuple[ChatMessage, ...] = ()
    conversation_id: str | None = None
    agent_mode: str | None = None

    def to_payload(self) -> dict:
        """Serialize with the server's camelCase keys, omitting unset fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def filter_messages_for_api(messages: Iterable[ChatMessage]) -> list[ChatMessage]:
    """Keep only user and assistant messages that are not errors."""
    return [
        msg
        for msg in messages
        if msg.chat_source in (ChatSource.USER, ChatSource.ASSISTANT) and not msg.is_error
    ]


def trim_history(messages: Sequence[ChatMessage], limit: int) -> list[ChatMessage]:
    """Return the last ``limit`` messages."""
    if limit <= 0:
        return []
    return list(messages[-limit:])
