"""Reverse component actions through the user API.

Each action kind maps onto the mutation route that restores the state
recorded in the action. Failures are returned in the ``UndoResult``
rather than raised; the ledger decides how to surface them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, assert_never

import httpx

from agent_chat.collaborators import auth_headers
from agent_chat.exceptions import AgentChatError
from agent_chat.models.components import (
    AnyAction,
    CardAction,
    CardActionType,
    ComponentType,
    CreditAction,
    MultiplierAction,
    PerkAction,
    TrackingActionType,
)

if TYPE_CHECKING:
    from agent_chat.collaborators import AuthProvider
    from agent_chat.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UndoResult:
    """Outcome of one undo call."""

    success: bool
    action: AnyAction
    error: str | None = None


class UndoClient:
    """Executes undo operations against the user API."""

    def __init__(
        self,
        settings: Settings,
        auth: AuthProvider,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.auth = auth
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)
        self._base = f"{settings.api_base_url.rstrip('/')}{settings.user_api_path}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def undo_action(self, action: AnyAction) -> UndoResult:
        """Undo one action. Never raises for network or HTTP failures."""
        try:
            if isinstance(action, CardAction):
                request = self._card_request(action)
            elif isinstance(action, CreditAction):
                request = self._credit_request(action)
            elif isinstance(action, PerkAction | MultiplierAction):
                request = self._tracking_request(action)
            else:
                assert_never(action)
        except ValueError as e:
            return UndoResult(success=False, action=action, error=str(e))

        method, path, body = request
        try:
            headers = await auth_headers(self.auth)
            response = await self._client.request(method, f"{self._base}{path}", json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return UndoResult(success=False, action=action, error=_error_message(e.response))
        except (httpx.HTTPError, AgentChatError) as e:
            return UndoResult(success=False, action=action, error=str(e))

        logger.info("Undid %s action %s (%s)", action.component_type, action.id, action.action_type)
        return UndoResult(success=True, action=action)

    def _card_request(self, action: CardAction) -> tuple[str, str, dict[str, Any]]:
        card_id = action.card_id
        match action.action_type:
            case CardActionType.ADD:
                return "DELETE", "/cards", {"cardIds": [card_id]}
            case CardActionType.REMOVE:
                return "POST", "/cards", {"cardIds": [card_id]}
            case CardActionType.SET_PREFERRED:
                # No previous preferred card: clear the flag on this one
                if action.previous_preferred_card_id is None:
                    return "PATCH", f"/cards/{card_id}/preferred", {"preferred": False}
                return "PATCH", f"/cards/{action.previous_preferred_card_id}/preferred", {"preferred": True}
            case CardActionType.FROZEN | CardActionType.UNFROZEN:
                frozen = action.action_type is CardActionType.UNFROZEN
                return "PATCH", f"/cards/{card_id}/frozen", {"frozen": frozen}
            case CardActionType.SET_OPEN_DATE:
                return "PATCH", f"/cards/{card_id}/open-date", {"openDate": action.previous_open_date}
            case CardActionType.ACTIVATION:
                raise ValueError("Activation cannot be undone")
        raise ValueError(f"Unknown card action type: {action.action_type}")

    def _credit_request(self, action: CreditAction) -> tuple[str, str, dict[str, Any]]:
        # The maximum value is unknown here; the server validates the amount
        status = "not_used" if action.from_value == 0 else "partially_used"
        return (
            "PATCH",
            f"/credits/{action.credit_id}/usage",
            {
                "year": action.year,
                "periodNumber": action.period_number,
                "status": status,
                "amountUsed": action.from_value,
            },
        )

    def _tracking_request(self, action: PerkAction | MultiplierAction) -> tuple[str, str, dict[str, Any]]:
        if isinstance(action, PerkAction):
            component_id, component_type = action.perk_id, ComponentType.PERK
        else:
            component_id, component_type = action.multiplier_id, ComponentType.MULTIPLIER
        return (
            "PATCH",
            f"/components/{component_id}/tracking",
            {
                "cardId": action.card_id,
                "componentType": str(component_type),
                # Undoing "track" disables tracking again, and vice versa
                "disabled": action.action_type is TrackingActionType.TRACK,
            },
        )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return f"HTTP {response.status_code}"
