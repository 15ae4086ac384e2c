"""Message assembler: build the reply from token and terminal events.

Tokens are concatenated verbatim in arrival order. The first terminal
event produces the turn's single ``ChatMessage``; everything after it is
ignored. A cancelled turn never reaches a terminal event and so never
produces a message.
"""

from __future__ import annotations

from typing import assert_never

from pydantic import BaseModel, ConfigDict

from agent_chat.models.chat import ChatMessage, ChatSource, DataChanged
from agent_chat.models.components import ChatComponentBlock
from agent_chat.streaming.errors import AgentErrorInfo, classify_error
from agent_chat.streaming.events import (
    ComponentBlockEvent,
    DataChangedEvent,
    ErrorEvent,
    FinalEvent,
    NodeEndEvent,
    NodeStartEvent,
    StreamEvent,
    TokenEvent,
    ToolEndEvent,
    ToolStartEvent,
    UnknownEvent,
)


class AssemblyState(BaseModel):
    """Accumulated reply of one turn.

    Attributes:
        streamed_text: Token text exactly as received.
        component_block: Blocks received so far, merged.
        data_changed: Union of every data-changed signal of the turn.
        message: The terminal message, once produced.
        error: Classification of the failure for error turns.
        raw_error: Unclassified failure text, for logs only.
    """

    model_config = ConfigDict(frozen=True)

    streamed_text: str = ""
    component_block: ChatComponentBlock | None = None
    data_changed: DataChanged | None = None
    agent_type: str | None = None
    message: ChatMessage | None = None
    error: AgentErrorInfo | None = None
    raw_error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.message is not None


INITIAL_ASSEMBLY = AssemblyState()


def assemble_message(state: AssemblyState, event: StreamEvent | UnknownEvent) -> AssemblyState:
    """Apply one event to the reply under construction."""
    if state.is_terminal:
        return state

    if isinstance(event, TokenEvent):
        if not event.text:
            return state
        return state.model_copy(update={"streamed_text": state.streamed_text + event.text})
    if isinstance(event, ComponentBlockEvent):
        return state.model_copy(update={"component_block": _merge_blocks(state.component_block, event.block)})
    if isinstance(event, DataChangedEvent):
        return state.model_copy(update={"data_changed": _merge_flags(state.data_changed, event.flags())})
    if isinstance(event, FinalEvent):
        return _finish(state, event)
    if isinstance(event, ErrorEvent):
        info = classify_error(event.message, status_code=event.status_code, code=event.code)
        return fail(state, info, raw_error=event.message)
    if isinstance(event, NodeStartEvent | NodeEndEvent | ToolStartEvent | ToolEndEvent | UnknownEvent):
        return state
    assert_never(event)


def fail(state: AssemblyState, info: AgentErrorInfo, *, raw_error: str | None = None) -> AssemblyState:
    """Terminate the reply with an error message built from ``info``."""
    if state.is_terminal:
        return state
    message = ChatMessage(
        chat_source=ChatSource.ERROR,
        chat_message=info.message,
        is_error=True,
    )
    return state.model_copy(update={"message": message, "error": info, "raw_error": raw_error})


def _finish(state: AssemblyState, event: FinalEvent) -> AssemblyState:
    block = _merge_blocks(state.component_block, event.component_block)
    fields: dict = {
        "chat_source": ChatSource.ASSISTANT,
        # The server's final text is authoritative over the streamed tokens
        "chat_message": event.message or state.streamed_text,
        "component_block": block,
        "timestamp": event.timestamp,
    }
    if event.message_id:
        fields["id"] = event.message_id
    return state.model_copy(
        update={
            "component_block": block,
            "data_changed": _merge_flags(state.data_changed, event.data_changed),
            "agent_type": event.agent_type,
            "message": ChatMessage(**fields),
        }
    )


def _merge_blocks(
    current: ChatComponentBlock | None, incoming: ChatComponentBlock | None
) -> ChatComponentBlock | None:
    if current is None:
        return incoming
    if incoming is None:
        return current
    return current.merged_with(incoming)


def _merge_flags(current: DataChanged | None, incoming: DataChanged | None) -> DataChanged | None:
    if current is None:
        return incoming
    return current.merged_with(incoming)
