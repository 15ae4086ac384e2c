"""External collaborators of the chat session.

The session depends on these only through the protocols below, passed in
explicitly so several sessions (or tests) can run side by side:

- ``AuthProvider`` supplies the bearer credential for each turn.
- ``HistoryStore`` persists finished conversations at turn boundaries
  and reads stored ones back.
- ``CardDirectory`` resolves card ids to display names.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
from pydantic import TypeAdapter, ValidationError

from agent_chat.exceptions import AuthError, HistoryStoreError
from agent_chat.models.chat import ChatMessage

if TYPE_CHECKING:
    from agent_chat.models.components import ChatComponentBlock
    from agent_chat.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationRef:
    """Identity of a stored conversation."""

    chat_id: str
    chat_description: str = ""


@dataclass(frozen=True)
class StoredConversation:
    """A conversation read back from the history store."""

    chat_id: str
    chat_description: str = ""
    messages: tuple[ChatMessage, ...] = ()


@runtime_checkable
class AuthProvider(Protocol):
    async def get_token(self) -> str: ...


@runtime_checkable
class HistoryStore(Protocol):
    async def create_conversation(
        self,
        messages: Sequence[ChatMessage],
        component_blocks: Sequence[ChatComponentBlock],
    ) -> ConversationRef: ...

    async def update_conversation(
        self,
        chat_id: str,
        messages: Sequence[ChatMessage],
        component_blocks: Sequence[ChatComponentBlock],
    ) -> None: ...

    async def get_conversation(self, chat_id: str) -> StoredConversation: ...

    async def generate_title(self, chat_id: str) -> str: ...

    async def mark_action_undone(self, chat_id: str, action_id: str, is_undone: bool) -> None: ...


@runtime_checkable
class CardDirectory(Protocol):
    def card_name(self, card_id: str) -> str | None: ...


# =============================================================================
# AUTH
# =============================================================================


class StaticTokenAuth:
    """Serves a fixed token (from settings or the caller)."""

    def __init__(self, token: str) -> None:
        self._token = token

    @classmethod
    def from_settings(cls, settings: Settings) -> StaticTokenAuth:
        return cls(settings.api_token.get_secret_value())

    async def get_token(self) -> str:
        if not self._token:
            raise AuthError("No API token configured (set AGENT_CHAT_API_TOKEN)")
        return self._token


async def auth_headers(auth: AuthProvider) -> dict[str, str]:
    """JSON request headers with the bearer credential attached."""
    token = await auth.get_token()
    return {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "Authorization": f"Bearer {token}",
    }


# =============================================================================
# HISTORY
# =============================================================================


def _history_body(
    messages: Sequence[ChatMessage],
    component_blocks: Sequence[ChatComponentBlock],
) -> dict[str, Any]:
    return {
        "chatHistory": [m.model_dump(mode="json", by_alias=True, exclude_none=True) for m in messages],
        "componentBlocks": [
            b.model_dump(mode="json", by_alias=True, exclude_none=True) for b in component_blocks
        ],
    }


_MESSAGES_ADAPTER = TypeAdapter(list[ChatMessage])


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as e:
        raise HistoryStoreError(f"Invalid JSON response: {e}") from e
    if not isinstance(body, dict):
        raise HistoryStoreError("Invalid JSON response: expected an object")
    return body


class HttpHistoryStore:
    """History store backed by the user history API.

    Every failure, including a credential the auth provider cannot
    supply, is raised as ``HistoryStoreError``.
    """

    def __init__(
        self,
        settings: Settings,
        auth: AuthProvider,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.auth = auth
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)
        self._base = f"{settings.api_base_url.rstrip('/')}{settings.history_path}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            headers = await auth_headers(self.auth)
        except Exception as e:
            raise HistoryStoreError(f"Could not obtain a credential: {e}") from e
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise HistoryStoreError(f"HTTP {e.response.status_code} from {url}") from e
        except httpx.HTTPError as e:
            raise HistoryStoreError(f"History request failed: {e}") from e

    async def create_conversation(
        self,
        messages: Sequence[ChatMessage],
        component_blocks: Sequence[ChatComponentBlock],
    ) -> ConversationRef:
        response = await self._request("POST", self._base, json=_history_body(messages, component_blocks))
        body = _json_object(response)
        chat_id = body.get("chatId") or body.get("id")
        if not chat_id:
            raise HistoryStoreError("History store did not return a chat id")
        return ConversationRef(chat_id=str(chat_id), chat_description=str(body.get("chatDescription") or ""))

    async def update_conversation(
        self,
        chat_id: str,
        messages: Sequence[ChatMessage],
        component_blocks: Sequence[ChatComponentBlock],
    ) -> None:
        await self._request(
            "PUT", f"{self._base}/{chat_id}", json=_history_body(messages, component_blocks)
        )

    async def get_conversation(self, chat_id: str) -> StoredConversation:
        response = await self._request("GET", f"{self._base}/{chat_id}")
        body = _json_object(response)
        raw_messages = body.get("conversation", body.get("chatHistory", []))
        try:
            messages = _MESSAGES_ADAPTER.validate_python(raw_messages)
        except ValidationError as e:
            raise HistoryStoreError(f"Unreadable conversation {chat_id}: {e.error_count()} invalid message(s)") from e
        return StoredConversation(
            chat_id=str(body.get("chatId") or chat_id),
            chat_description=str(body.get("chatDescription") or ""),
            messages=tuple(messages),
        )

    async def generate_title(self, chat_id: str) -> str:
        response = await self._request("POST", f"{self._base}/{chat_id}/generate_title")
        try:
            body = response.json()
        except ValueError:
            return ""
        if not isinstance(body, dict):
            return ""
        return str(body.get("chatDescription") or body.get("title") or "")

    async def mark_action_undone(self, chat_id: str, action_id: str, is_undone: bool) -> None:
        await self._request(
            "PATCH", f"{self._base}/{chat_id}/actions/{action_id}", json={"isUndone": is_undone}
        )


@dataclass
class InMemoryHistoryStore:
    """History store kept in process memory (tests, offline CLI)."""

    conversations: dict[str, list[ChatMessage]] = field(default_factory=dict)
    blocks: dict[str, list[ChatComponentBlock]] = field(default_factory=dict)
    titles: dict[str, str] = field(default_factory=dict)
    undone: dict[str, dict[str, bool]] = field(default_factory=dict)

    async def create_conversation(
        self,
        messages: Sequence[ChatMessage],
        component_blocks: Sequence[ChatComponentBlock],
    ) -> ConversationRef:
        chat_id = f"chat-{len(self.conversations) + 1}"
        self.conversations[chat_id] = list(messages)
        self.blocks[chat_id] = list(component_blocks)
        first_prompt = next((m.chat_message for m in messages), "")
        return ConversationRef(chat_id=chat_id, chat_description=first_prompt[:40])

    async def update_conversation(
        self,
        chat_id: str,
        messages: Sequence[ChatMessage],
        component_blocks: Sequence[ChatComponentBlock],
    ) -> None:
        if chat_id not in self.conversations:
            raise HistoryStoreError(f"Unknown conversation: {chat_id}")
        self.conversations[chat_id] = list(messages)
        self.blocks[chat_id] = list(component_blocks)

    async def get_conversation(self, chat_id: str) -> StoredConversation:
        if chat_id not in self.conversations:
            raise HistoryStoreError(f"Unknown conversation: {chat_id}")
        return StoredConversation(
            chat_id=chat_id,
            chat_description=self.titles.get(chat_id, ""),
            messages=tuple(self.conversations[chat_id]),
        )

    async def generate_title(self, chat_id: str) -> str:
        messages = self.conversations.get(chat_id, [])
        title = messages[0].chat_message[:40] if messages else "New chat"
        self.titles[chat_id] = title
        return title

    async def mark_action_undone(self, chat_id: str, action_id: str, is_undone: bool) -> None:
        self.undone.setdefault(chat_id, {})[action_id] = is_undone


# =============================================================================
# CARD DIRECTORY
# =============================================================================


class InMemoryCardDirectory:
    """Card id to name lookup built from known cards."""

    def __init__(self, names: dict[str, str] | None = None) -> None:
        self._names = dict(names or {})

    def add(self, card_id: str, name: str) -> None:
        self._names[card_id] = name

    def card_name(self, card_id: str) -> str | None:
        return self._names.get(card_id)
