"""Agent chat client.

Streams agent turns over SSE, folds protocol events into an execution
timeline and a reply message, and tracks undoable component actions.
"""

from agent_chat.session import AgentChatSession, SessionCallbacks, StreamingState, TurnOutcome, TurnPhase

__version__ = "0.1.0"

__all__ = [
    "AgentChatSession",
    "SessionCallbacks",
    "StreamingState",
    "TurnOutcome",
    "TurnPhase",
    "__version__",
]
