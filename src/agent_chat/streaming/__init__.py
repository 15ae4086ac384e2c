"""Streaming module: the agent stream protocol pipeline.

Transport reads raw frames, the decoder turns them into typed events,
and two pure folds build the execution timeline and the reply message.
"""

from agent_chat.streaming.assembler import INITIAL_ASSEMBLY, AssemblyState, assemble_message
from agent_chat.streaming.decoder import decode
from agent_chat.streaming.errors import AgentErrorCode, AgentErrorInfo, classify_error
from agent_chat.streaming.events import RawFrame, StreamEvent, UnknownEvent, is_terminal
from agent_chat.streaming.timeline import (
    INITIAL_TIMELINE,
    TimelineState,
    fold_timeline,
    reduce_timeline,
)
from agent_chat.streaming.transport import AbortSignal, SSETransport

__all__ = [
    "INITIAL_ASSEMBLY",
    "INITIAL_TIMELINE",
    "AbortSignal",
    "AgentErrorCode",
    "AgentErrorInfo",
    "AssemblyState",
    "RawFrame",
    "SSETransport",
    "StreamEvent",
    "TimelineState",
    "UnknownEvent",
    "assemble_message",
    "classify_error",
    "decode",
    "fold_timeline",
    "is_terminal",
    "reduce_timeline",
]
