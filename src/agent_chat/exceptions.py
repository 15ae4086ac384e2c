"""Agent chat exception hierarchy.

Base exceptions for the streaming client with correlation ID support.

Usage:
    from agent_chat.exceptions import TurnInProgressError

    try:
        await session.send_message("Which card for groceries?")
    except TurnInProgressError as e:
        logger.warning("Turn rejected (correlation_id=%s)", e.correlation_id)
"""

import uuid


class AgentChatError(Exception):
    """Base exception for all agent chat errors.

    Carries a correlation_id for tracing errors across layers.
    """

    def __init__(self, message: str, *, correlation_id: str | None = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        super().__init__(message)


class AuthError(AgentChatError):
    """Bearer credential could not be obtained before opening a stream."""

    pass


class TurnInProgressError(AgentChatError):
    """A turn was started while another one is still streaming."""

    pass


class TurnLimitError(AgentChatError):
    """The conversation already holds the maximum number of messages."""

    def __init__(self, message: str, *, limit: int, **kwargs):
        self.limit = limit
        super().__init__(message, **kwargs)


class UndoError(AgentChatError):
    """Errors from undoing a single component action."""

    def __init__(self, message: str, *, action_id: str | None = None, **kwargs):
        self.action_id = action_id
        super().__init__(message, **kwargs)


class HistoryStoreError(AgentChatError):
    """Errors from the conversation history store."""

    pass
