"""Stream event types for the agent streaming protocol.

Every frame the agent endpoint emits decodes into exactly one of the
models below. ``StreamEvent`` is a closed union discriminated on
``type``; consumers dispatch with ``isinstance`` and end with
``assert_never`` so a new event kind is flagged everywhere it is consumed.
Anything the client does not recognize becomes an ``UnknownEvent``.

Field names accept both the server's camelCase keys and the older
aliases it has used (``content`` for token text, ``textResponse`` for
the final message, ...).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
)

from agent_chat.models.chat import DataChanged
from agent_chat.models.components import ChatComponentBlock, first_error

logger = logging.getLogger(__name__)


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


@dataclass(frozen=True)
class RawFrame:
    """One undecoded frame read from the wire.

    Attributes:
        data: The frame payload (the SSE ``data`` field).
        event: The SSE ``event`` field (``message`` when absent).
        id: The SSE ``id`` field, if any.
    """

    data: str
    event: str = "message"
    id: str | None = None


class EventModel(BaseModel):
    """Immutable base for decoded events."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class NodeStartEvent(EventModel):
    """A processing node of the agent graph started."""

    type: Literal["node_start"] = "node_start"
    node: str
    message: str = ""
    node_id: str | None = Field(default=None, validation_alias=_aliases("node_id", "nodeId", "id", "runId"))
    ts: float = 0.0


class ToolStartEvent(EventModel):
    """A tool invocation started inside the current node."""

    type: Literal["tool_start"] = "tool_start"
    tool: str
    parent_node: str | None = Field(
        default=None, validation_alias=_aliases("parent_node", "parentNode", "node")
    )
    active_message: str | None = Field(
        default=None, validation_alias=_aliases("active_message", "activeMessage", "message")
    )
    tool_id: str | None = Field(default=None, validation_alias=_aliases("tool_id", "toolId", "id", "runId"))
    ts: float = 0.0


class TokenEvent(EventModel):
    """One fragment of streamed assistant text."""

    type: Literal["token"] = "token"
    text: str = Field(default="", validation_alias=_aliases("text", "content"))
    node: str | None = None


class ToolEndEvent(EventModel):
    """A tool invocation finished. Matched by ``tool_id`` when present, else by name."""

    type: Literal["tool_end"] = "tool_end"
    tool: str = ""
    tool_id: str | None = Field(default=None, validation_alias=_aliases("tool_id", "toolId", "id", "runId"))
    result_message: str | None = Field(
        default=None, validation_alias=_aliases("result_message", "resultMessage", "message")
    )
    success: bool | None = None
    ts: float = 0.0


class NodeEndEvent(EventModel):
    """A processing node finished."""

    type: Literal["node_end"] = "node_end"
    node: str
    node_id: str | None = Field(default=None, validation_alias=_aliases("node_id", "nodeId", "id", "runId"))
    ts: float = 0.0


class ComponentBlockEvent(EventModel):
    """A component block sent ahead of the final payload."""

    type: Literal["component_block"] = "component_block"
    block: ChatComponentBlock = Field(validation_alias=_aliases("block", "componentBlock", "component_block"))


class DataChangedEvent(EventModel):
    """The agent mutated user data on the server."""

    type: Literal["data_changed"] = "data_changed"
    credits: bool | None = None
    cards: bool | None = None
    preferences: bool | None = None

    def flags(self) -> DataChanged:
        return DataChanged(credits=self.credits, cards=self.cards, preferences=self.preferences)


class FinalEvent(EventModel):
    """Terminal event carrying the authoritative reply."""

    type: Literal["final"] = "final"
    message: str = Field(
        default="", validation_alias=_aliases("message", "textResponse", "text_response", "text")
    )
    component_block: ChatComponentBlock | None = Field(
        default=None, validation_alias=_aliases("component_block", "componentBlock", "block")
    )
    message_id: str | None = Field(default=None, validation_alias=_aliases("message_id", "messageId"))
    timestamp: str | None = None
    agent_type: str | None = Field(default=None, validation_alias=_aliases("agent_type", "agentType"))
    data_changed: DataChanged | None = Field(
        default=None, validation_alias=_aliases("data_changed", "dataChanged")
    )
    success: bool | None = None
    ts: float = 0.0

    @field_validator("component_block", mode="wrap")
    @classmethod
    def _drop_unreadable_block(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> ChatComponentBlock | None:
        # The reply text stays valid when its block cannot be read
        try:
            return handler(value)
        except ValidationError as e:
            logger.warning("Dropping unreadable component block on final event: %s", first_error(e))
            return None


class ErrorEvent(EventModel):
    """Terminal event reporting a failed turn.

    ``message`` is raw server (or transport) text; it is logged and
    classified, never shown to the user as is.
    """

    type: Literal["error"] = "error"
    message: str = ""
    code: str | int | None = None
    status_code: int | None = Field(default=None, validation_alias=_aliases("status_code", "statusCode"))
    ts: float = 0.0


StreamEvent = Annotated[
    NodeStartEvent
    | ToolStartEvent
    | TokenEvent
    | ToolEndEvent
    | NodeEndEvent
    | ComponentBlockEvent
    | DataChangedEvent
    | FinalEvent
    | ErrorEvent,
    Field(discriminator="type"),
]

STREAM_EVENT_ADAPTER: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)

KNOWN_EVENT_TYPES = frozenset(
    {
        "node_start",
        "tool_start",
        "token",
        "tool_end",
        "node_end",
        "component_block",
        "data_changed",
        "final",
        "error",
    }
)

# Event types that carry a receipt timestamp
TIMESTAMPED_EVENT_TYPES = frozenset({"node_start", "tool_start", "tool_end", "node_end", "final", "error"})


class UnknownEvent(EventModel):
    """A frame that did not decode into a known StreamEvent.

    Attributes:
        raw: The undecoded frame payload.
        event_type: The type the frame claimed, if one could be read.
        error: Parse or validation error, None for a well-formed frame of
            an unrecognized type.
    """

    type: Literal["unknown"] = "unknown"
    raw: str
    event_type: str | None = None
    error: str | None = None


def is_terminal(event: StreamEvent | UnknownEvent) -> bool:
    """True for events that end a turn (``final`` and ``error``)."""
    return isinstance(event, FinalEvent | ErrorEvent)
