"""Chat and component block schemas."""

from agent_chat.models.chat import (
    ChatMessage,
    ChatSource,
    DataChanged,
    TurnRequest,
    filter_messages_for_api,
    trim_history,
)
from agent_chat.models.components import (
    AnyAction,
    BaseAction,
    CardAction,
    CardActionType,
    CardComponentItem,
    ChatComponentBlock,
    ChatComponentCard,
    ComponentType,
    CreditAction,
    CreditActionType,
    CreditComponentItem,
    MultiplierAction,
    MultiplierComponentItem,
    PerkAction,
    PerkComponentItem,
    TrackingActionType,
)

__all__ = [
    "AnyAction",
    "BaseAction",
    "CardAction",
    "CardActionType",
    "CardComponentItem",
    "ChatComponentBlock",
    "ChatComponentCard",
    "ChatMessage",
    "ChatSource",
    "ComponentType",
    "CreditAction",
    "CreditActionType",
    "CreditComponentItem",
    "DataChanged",
    "MultiplierAction",
    "MultiplierComponentItem",
    "PerkAction",
    "PerkComponentItem",
    "TrackingActionType",
    "TurnRequest",
    "filter_messages_for_api",
    "trim_history",
]
