"""Timeline reducer: fold stream events into an execution timeline.

``reduce_timeline`` is a pure function: the same event sequence always
yields the same ``TimelineState``. Ids are derived from arrival position
and times come from the events themselves, so replaying a recorded
stream reproduces the timeline exactly.

Protocol drift (tool ends without a start, node ends for unknown nodes,
events after completion) is absorbed as a no-op rather than raised.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum
from functools import reduce
from typing import assert_never

from pydantic import BaseModel, ConfigDict

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
from agent_chat.streaming.tool_labels import active_label, result_label


class ItemStatus(StrEnum):
    """Lifecycle of a timeline node or tool call."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class TimelineToolCall(_Frozen):
    """A tool invocation nested under exactly one node.

    Attributes:
        call_id: Server-side invocation id, when the protocol sent one.
        result_message: None when the call was force-completed by its node.
    """

    id: str
    tool: str
    parent_node: str
    active_message: str
    result_message: str | None = None
    status: ItemStatus = ItemStatus.ACTIVE
    start_time: float
    end_time: float | None = None
    call_id: str | None = None


class TimelineNode(_Frozen):
    """One execution of a named node of the agent graph.

    Attributes:
        instance_id: Server-side run id, when the protocol sent one.
    """

    id: str
    node: str
    message: str
    status: ItemStatus = ItemStatus.ACTIVE
    start_time: float
    end_time: float | None = None
    tool_calls: tuple[TimelineToolCall, ...] = ()
    instance_id: str | None = None


class TimelineState(_Frozen):
    """Ordered execution timeline of one turn.

    Nodes appear in first-seen order and are never reordered or removed.
    ``is_collapsed`` is presentation only.
    """

    nodes: tuple[TimelineNode, ...] = ()
    is_complete: bool = False
    is_collapsed: bool = False

    @property
    def active_node(self) -> TimelineNode | None:
        """Most recently started node that has not ended."""
        index = _last_active_index(self.nodes)
        return None if index is None else self.nodes[index]

    @property
    def active_tool(self) -> TimelineToolCall | None:
        """Most recent running tool call of the active node."""
        node = self.active_node
        if node is None:
            return None
        for call in reversed(node.tool_calls):
            if call.status is ItemStatus.ACTIVE:
                return call
        return None


INITIAL_TIMELINE = TimelineState()


def reduce_timeline(state: TimelineState, event: StreamEvent | UnknownEvent) -> TimelineState:
    """Apply one event to the timeline.

    Args:
        state: Timeline before the event.
        event: Next event in arrival order.

    Returns:
        The new timeline (``state`` itself when the event is a no-op).
    """
    if state.is_complete:
        return state

    if isinstance(event, NodeStartEvent):
        return _start_node(state, event)
    if isinstance(event, ToolStartEvent):
        return _start_tool(state, event)
    if isinstance(event, ToolEndEvent):
        return _end_tool(state, event)
    if isinstance(event, NodeEndEvent):
        return _end_node(state, event)
    if isinstance(event, FinalEvent | ErrorEvent):
        return state.model_copy(update={"is_complete": True, "is_collapsed": True})
    if isinstance(event, TokenEvent | ComponentBlockEvent | DataChangedEvent | UnknownEvent):
        return state
    assert_never(event)


def fold_timeline(
    events: Iterable[StreamEvent | UnknownEvent],
    initial: TimelineState = INITIAL_TIMELINE,
) -> TimelineState:
    """Reduce a whole event sequence."""
    return reduce(reduce_timeline, events, initial)


def toggle_collapsed(state: TimelineState) -> TimelineState:
    return state.model_copy(update={"is_collapsed": not state.is_collapsed})


# =============================================================================
# TRANSITIONS
# =============================================================================


def _start_node(state: TimelineState, event: NodeStartEvent) -> TimelineState:
    # A repeated start for a run id that is still active is a duplicate frame;
    # without a run id every start is a new execution (graph cycles).
    if event.node_id is not None and any(
        n.status is ItemStatus.ACTIVE and n.instance_id == event.node_id for n in state.nodes
    ):
        return state

    node = TimelineNode(
        id=f"node-{len(state.nodes)}-{event.node}",
        node=event.node,
        message=event.message,
        start_time=event.ts,
        instance_id=event.node_id,
    )
    return state.model_copy(update={"nodes": (*state.nodes, node), "is_collapsed": False})


def _start_tool(state: TimelineState, event: ToolStartEvent) -> TimelineState:
    index = _last_active_index(state.nodes)
    if index is None:
        return state

    node = state.nodes[index]
    call = TimelineToolCall(
        id=f"tool-{index}-{len(node.tool_calls)}-{event.tool}",
        tool=event.tool,
        parent_node=node.node,
        active_message=event.active_message or active_label(event.tool),
        start_time=event.ts,
        call_id=event.tool_id,
    )
    updated = node.model_copy(update={"tool_calls": (*node.tool_calls, call)})
    return _replace_node(state, index, updated)


def _end_tool(state: TimelineState, event: ToolEndEvent) -> TimelineState:
    index = _last_active_index(state.nodes)
    if index is None:
        return state

    node = state.nodes[index]
    call_index = _find_open_call(node.tool_calls, event)
    if call_index is None:
        return state

    call = node.tool_calls[call_index]
    finished = call.model_copy(
        update={
            "status": ItemStatus.COMPLETED,
            "result_message": event.result_message or result_label(call.tool),
            "end_time": event.ts,
        }
    )
    calls = list(node.tool_calls)
    calls[call_index] = finished
    return _replace_node(state, index, node.model_copy(update={"tool_calls": tuple(calls)}))


def _end_node(state: TimelineState, event: NodeEndEvent) -> TimelineState:
    index = _find_open_node(state.nodes, event)
    if index is None:
        return state

    node = state.nodes[index]
    calls = tuple(
        call.model_copy(update={"status": ItemStatus.COMPLETED, "end_time": event.ts})
        if call.status is ItemStatus.ACTIVE
        else call
        for call in node.tool_calls
    )
    finished = node.model_copy(
        update={"status": ItemStatus.COMPLETED, "end_time": event.ts, "tool_calls": calls}
    )
    return _replace_node(state, index, finished)


# =============================================================================
# LOOKUPS
# =============================================================================


def _last_active_index(nodes: tuple[TimelineNode, ...]) -> int | None:
    for index in range(len(nodes) - 1, -1, -1):
        if nodes[index].status is ItemStatus.ACTIVE:
            return index
    return None


def _find_open_node(nodes: tuple[TimelineNode, ...], event: NodeEndEvent) -> int | None:
    if event.node_id is not None:
        for index in range(len(nodes) - 1, -1, -1):
            node = nodes[index]
            if node.status is ItemStatus.ACTIVE and node.instance_id == event.node_id:
                return index
    for index in range(len(nodes) - 1, -1, -1):
        node = nodes[index]
        if node.status is ItemStatus.ACTIVE and node.node == event.node:
            return index
    return None


def _find_open_call(calls: tuple[TimelineToolCall, ...], event: ToolEndEvent) -> int | None:
    if event.tool_id is not None:
        for index in range(len(calls) - 1, -1, -1):
            if calls[index].status is ItemStatus.ACTIVE and calls[index].call_id == event.tool_id:
                return index
    if event.tool:
        for index in range(len(calls) - 1, -1, -1):
            if calls[index].status is ItemStatus.ACTIVE and calls[index].tool == event.tool:
                return index
    return None


def _replace_node(state: TimelineState, index: int, node: TimelineNode) -> TimelineState:
    nodes = list(state.nodes)
    nodes[index] = node
    return state.model_copy(update={"nodes": tuple(nodes)})
