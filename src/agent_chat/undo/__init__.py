"""Undo support for component actions."""

from agent_chat.undo.client import UndoClient, UndoResult
from agent_chat.undo.display import describe_action, format_period
from agent_chat.undo.ledger import UndoLedger

__all__ = [
    "UndoClient",
    "UndoLedger",
    "UndoResult",
    "describe_action",
    "format_period",
]
