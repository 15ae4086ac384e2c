"""Human-readable text for component actions."""

from __future__ import annotations

from typing import TYPE_CHECKING, assert_never

from agent_chat.models.components import (
    AnyAction,
    CardAction,
    CardActionType,
    CreditAction,
    MultiplierAction,
    PerkAction,
    TrackingActionType,
)

if TYPE_CHECKING:
    from agent_chat.collaborators import CardDirectory

CARD_ACTION_LABELS: dict[CardActionType, str] = {
    CardActionType.ADD: "Added to wallet",
    CardActionType.REMOVE: "Removed from wallet",
    CardActionType.SET_PREFERRED: "Set as preferred",
    CardActionType.FROZEN: "Frozen",
    CardActionType.UNFROZEN: "Unfrozen",
    CardActionType.ACTIVATION: "Activated",
    CardActionType.SET_OPEN_DATE: "Set open date",
}

TRACKING_ACTION_LABELS: dict[TrackingActionType, str] = {
    TrackingActionType.TRACK: "Now tracking",
    TrackingActionType.UNTRACK: "Stopped tracking",
}

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def describe_action(action: AnyAction, directory: CardDirectory | None = None) -> str:
    """Label for an action, prefixed with the card name when it is known.

    Examples:
        >>> describe_action(CardAction(id="a1", action_type="add", card_id="c1"))
        'Added to wallet'
    """
    if isinstance(action, CardAction):
        label = format_card_action(action)
    elif isinstance(action, CreditAction):
        label = format_credit_action(action)
    elif isinstance(action, PerkAction | MultiplierAction):
        label = TRACKING_ACTION_LABELS[action.action_type]
    else:
        assert_never(action)

    name = directory.card_name(action.card_id) if directory is not None else None
    return f"{name}: {label}" if name else label


def format_card_action(action: CardAction) -> str:
    label = CARD_ACTION_LABELS[action.action_type]
    if action.action_type is CardActionType.SET_OPEN_DATE and action.new_value:
        return f"{label} to {action.new_value}"
    return label


def format_credit_action(action: CreditAction) -> str:
    """E.g. ``Set from $1 to $6 (Jan 2025)``."""
    period = format_period(
        action.period_number,
        action.period_type,
        action.year,
        is_anniversary_based=bool(action.is_anniversary_based),
        anniversary_date=action.anniversary_date,
    )
    return f"Set from ${_amount(action.from_value)} to ${_amount(action.to_value)} ({period})"


def format_period(
    period_number: int,
    period_type: str | None = None,
    year: int | None = None,
    *,
    is_anniversary_based: bool = False,
    anniversary_date: str | None = None,
) -> str:
    """Display text for a credit period.

    Args:
        period_number: 1-12 for monthly, 1-4 for quarterly, 1-2 for semiannual.
        period_type: monthly, quarterly, semiannually or annually.
        year: Calendar (or anniversary) year of the period.
        is_anniversary_based: Periods run from the card's open date.
        anniversary_date: ``MM-DD`` or ``MM/DD`` for anniversary credits.
    """
    if is_anniversary_based:
        if anniversary_date and year:
            return f"{_short_date(anniversary_date)}, {year}"
        if year:
            return f"Year {year}"
        return "Anniversary"

    match (period_type or "").lower():
        case "monthly":
            text = _MONTHS[period_number - 1] if 1 <= period_number <= 12 else f"Period {period_number}"
        case "quarterly":
            text = f"Q{period_number}"
        case "semiannually":
            text = "H1" if period_number == 1 else "H2"
        case "annually":
            text = "Annual"
        case _:
            text = f"Period {period_number}"

    return f"{text} {year}" if year else text


def _short_date(anniversary_date: str) -> str:
    separator = "-" if "-" in anniversary_date else "/"
    parts = anniversary_date.split(separator)
    if len(parts) >= 2 and parts[0].isdigit() and parts[1].isdigit():
        month, day = int(parts[0]), int(parts[1])
        if 1 <= month <= 12:
            return f"{_MONTHS[month - 1]} {day}"
    return anniversary_date


def _amount(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
