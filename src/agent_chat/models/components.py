"""Chat component block schemas.

Pydantic models for the structured payload attached to an assistant
reply: cards, credits, perks and multipliers, each optionally carrying
the action the agent performed on it. Field names follow the server's
camelCase (card data uses the catalogue's PascalCase keys).
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class WireModel(BaseModel):
    """Immutable model that reads and writes camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class ComponentType(StrEnum):
    """Component type discriminator."""

    CARD = "card"
    CREDIT = "credit"
    PERK = "perk"
    MULTIPLIER = "multiplier"


class CardActionType(StrEnum):
    ADD = "add"
    REMOVE = "remove"
    SET_PREFERRED = "set_preferred"
    FROZEN = "frozen"
    UNFROZEN = "unfrozen"
    ACTIVATION = "activation"
    SET_OPEN_DATE = "set_open_date"


class CreditActionType(StrEnum):
    UPDATE_USAGE = "update_usage"


class TrackingActionType(StrEnum):
    """Binary track/untrack actions shared by perks and multipliers."""

    TRACK = "track"
    UNTRACK = "untrack"


# =============================================================================
# DISPLAY DATA
# =============================================================================


class ChatComponentCard(BaseModel):
    """Card data as hydrated by the backend."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str
    card_name: str = Field(default="", alias="CardName")
    card_issuer: str | None = Field(default=None, alias="CardIssuer")
    card_network: str | None = Field(default=None, alias="CardNetwork")
    rewards_currency: str | None = Field(default=None, alias="RewardsCurrency")
    card_primary_color: str | None = Field(default=None, alias="CardPrimaryColor")
    card_secondary_color: str | None = Field(default=None, alias="CardSecondaryColor")
    annual_fee: float | None = Field(default=None, alias="AnnualFee")
    frozen: bool | None = None
    preferred: bool | None = None


class ChatComponentCredit(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str
    title: str = Field(default="", alias="Title")
    value: float = Field(default=0, alias="Value")
    time_period: str = Field(default="", alias="TimePeriod")
    description: str | None = Field(default=None, alias="Description")


class ChatComponentUserCredit(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    is_anniversary_based: bool | None = Field(default=None, alias="isAnniversaryBased")
    associated_period: str = Field(default="", alias="AssociatedPeriod")


class ChatComponentPerk(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str
    title: str = Field(default="", alias="Title")
    description: str | None = Field(default=None, alias="Description")


class ChatComponentMultiplier(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str
    name: str = Field(default="", alias="Name")
    category: str = Field(default="", alias="Category")
    sub_category: str | None = Field(default=None, alias="SubCategory")
    multiplier: float | None = Field(default=None, alias="Multiplier")
    description: str | None = Field(default=None, alias="Description")


# =============================================================================
# ACTIONS
# =============================================================================


class BaseAction(WireModel):
    """Fields shared by every recorded action.

    Attributes:
        id: Action ID (unique within a conversation).
        timestamp: When the server performed the mutation.
        is_undone: True once a successful undo has been confirmed.
    """

    id: str
    timestamp: str = ""
    is_undone: bool = False


class CardAction(BaseAction):
    component_type: Literal["card"] = "card"
    action_type: CardActionType
    card_id: str
    new_value: str | None = None
    previous_preferred_card_id: str | None = None
    previous_open_date: str | None = None


class CreditAction(BaseAction):
    component_type: Literal["credit"] = "credit"
    action_type: CreditActionType = CreditActionType.UPDATE_USAGE
    card_id: str
    credit_id: str
    period_number: int
    year: int
    period_type: str | None = None
    from_value: float
    to_value: float
    from_usage: str | None = None
    to_usage: str | None = None
    is_anniversary_based: bool | None = None
    anniversary_date: str | None = None


class PerkAction(BaseAction):
    component_type: Literal["perk"] = "perk"
    action_type: TrackingActionType
    card_id: str
    perk_id: str


class MultiplierAction(BaseAction):
    component_type: Literal["multiplier"] = "multiplier"
    action_type: TrackingActionType
    card_id: str
    multiplier_id: str


# =============================================================================
# ITEMS
# =============================================================================


class BaseItem(WireModel):
    """A single displayable component.

    An item without an action is purely informational.
    """

    id: str
    display_order: int = 0


class CardComponentItem(BaseItem):
    component_type: Literal["card"] = "card"
    card: ChatComponentCard
    action: CardAction | None = None


class CreditComponentItem(BaseItem):
    component_type: Literal["credit"] = "credit"
    user_credit: ChatComponentUserCredit = Field(default_factory=ChatComponentUserCredit)
    card_credit: ChatComponentCredit
    card: ChatComponentCard
    credit_max_value: float = 0
    current_value_used: float = 0
    action: CreditAction | None = None


class PerkComponentItem(BaseItem):
    component_type: Literal["perk"] = "perk"
    perk: ChatComponentPerk
    card: ChatComponentCard
    action: PerkAction | None = None


class MultiplierComponentItem(BaseItem):
    component_type: Literal["multiplier"] = "multiplier"
    multiplier: ChatComponentMultiplier
    card: ChatComponentCard
    action: MultiplierAction | None = None


ChatComponentItem = Annotated[
    CardComponentItem | CreditComponentItem | PerkComponentItem | MultiplierComponentItem,
    Field(discriminator="component_type"),
]

_ITEM_ADAPTER: TypeAdapter[ChatComponentItem] = TypeAdapter(ChatComponentItem)


def _read_item(raw: Any) -> ChatComponentItem | None:
    """Validate one item; an unreadable action is dropped, keeping the item."""
    try:
        return _ITEM_ADAPTER.validate_python(raw)
    except ValidationError as e:
        error = e

    if isinstance(raw, dict) and raw.get("action") is not None:
        try:
            item = _ITEM_ADAPTER.validate_python({**raw, "action": None})
        except ValidationError:
            pass
        else:
            logger.warning("Dropping unreadable action on component item %s: %s", item.id, first_error(error))
            return item

    item_id = raw.get("id", "?") if isinstance(raw, dict) else "?"
    logger.warning("Dropping unreadable component item %s: %s", item_id, first_error(error))
    return None


def first_error(error: ValidationError) -> str:
    """``loc: msg`` of the first error, for log lines."""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', '')}" if location else str(first.get("msg", ""))


class ChatComponentBlock(WireModel):
    """Component payload attached to one assistant message.

    Items are kept in arrival order; ``ordered_items()`` gives display order.
    """

    id: str
    message_id: str | None = None
    timestamp: str | None = None
    items: tuple[ChatComponentItem, ...] = ()

    @field_validator("items", mode="before")
    @classmethod
    def _skip_unreadable_items(cls, value: Any) -> Any:
        # Item kinds and action kinds added on the server must not void the block
        if not isinstance(value, list | tuple):
            return value
        return [item for item in map(_read_item, value) if item is not None]

    def ordered_items(self) -> list[ChatComponentItem]:
        """Items sorted by ``display_order`` (stable for equal orders)."""
        return sorted(self.items, key=lambda item: item.display_order)

    def actions(self) -> Iterator[AnyAction]:
        """Yield every action carried by the block, in display order."""
        for item in self.ordered_items():
            if item.action is not None:
                yield item.action

    def merged_with(self, other: ChatComponentBlock) -> ChatComponentBlock:
        """Combine two blocks; items of ``other`` replace same-id items.

        The first block's id is kept so the UI does not see the block
        identity change when the final payload arrives.
        """
        by_id: dict[str, ChatComponentItem] = {item.id: item for item in self.items}
        for item in other.items:
            by_id[item.id] = item
        return self.model_copy(
            update={
                "items": tuple(by_id.values()),
                "message_id": other.message_id or self.message_id,
                "timestamp": other.timestamp or self.timestamp,
            }
        )


AnyAction = CardAction | CreditAction | PerkAction | MultiplierAction
