"""Action/undo ledger.

Tracks which component actions can still be undone and runs undo calls.
Only actions of the most recent assistant turn are undoable, and only
until the next prompt is sent: ``begin_turn`` expires every open action
at once, including actions whose undo call is still in flight. Such a
call is allowed to finish and its result is still recorded.

Undo is optimistic: ``is_undo_pending`` is true while the call runs.
The action is reported undone only after the server confirmed it; on
failure it reverts and the error stays local to that action.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agent_chat.exceptions import HistoryStoreError, UndoError

if TYPE_CHECKING:
    from agent_chat.collaborators import HistoryStore
    from agent_chat.models.chat import ChatMessage
    from agent_chat.models.components import AnyAction
    from agent_chat.undo.client import UndoClient

logger = logging.getLogger(__name__)


class UndoLedger:
    """Undo bookkeeping for one conversation.

    Args:
        client: Executes the undo network calls.
        history_store: When set, confirmed undos are persisted in the
            stored conversation identified by ``chat_id``.
    """

    def __init__(self, client: UndoClient, *, history_store: HistoryStore | None = None) -> None:
        self.client = client
        self.history_store = history_store
        self.chat_id: str | None = None
        self._open: set[str] = set()
        self._pending: set[str] = set()
        self._undone: set[str] = set()
        self._errors: dict[str, str] = {}
        self._turn_ids: frozenset[str] = frozenset()
        self._previous_turn_ids: frozenset[str] = frozenset()

    def begin_turn(self) -> None:
        """Expire every open action. Called when a new prompt is sent.

        Undo state is kept only for the last two registered turns and for
        undo calls still in flight.
        """
        if self._open:
            logger.debug("Expiring %d undoable action(s)", len(self._open))
        self._open.clear()
        kept = self._turn_ids | self._previous_turn_ids | self._pending
        self._undone &= kept
        self._errors = {action_id: error for action_id, error in self._errors.items() if action_id in kept}

    def register_turn(self, message: ChatMessage) -> list[AnyAction]:
        """Open the actions of a completed assistant message for undo.

        Returns:
            The actions that became undoable, in display order.
        """
        self._open.clear()
        block = message.component_block
        self._previous_turn_ids = self._turn_ids
        self._turn_ids = frozenset(a.id for a in block.actions()) if block is not None else frozenset()
        if block is None:
            return []
        actions = [a for a in block.actions() if not a.is_undone]
        self._open.update(a.id for a in actions)
        for action in block.actions():
            if action.is_undone:
                self._undone.add(action.id)
        return actions

    def can_undo(self, action: AnyAction) -> bool:
        return action.id in self._open and not self.is_undone(action) and not self.is_undo_pending(action)

    def is_undo_pending(self, action: AnyAction) -> bool:
        return action.id in self._pending

    def is_undone(self, action: AnyAction) -> bool:
        return action.is_undone or action.id in self._undone

    def last_error(self, action: AnyAction) -> str | None:
        """Error of the most recent failed undo of ``action``, if any."""
        return self._errors.get(action.id)

    def resolve(self, action: AnyAction) -> AnyAction:
        """``action`` with ``is_undone`` reflecting confirmed undos."""
        if self.is_undone(action) and not action.is_undone:
            return action.model_copy(update={"is_undone": True})
        return action

    async def undo(self, action: AnyAction) -> AnyAction:
        """Undo one action.

        Returns:
            The action with ``is_undone`` set.

        Raises:
            UndoError: The action is not undoable or the server rejected it.
        """
        if not self.can_undo(action):
            raise UndoError(f"Action {action.id} can no longer be undone", action_id=action.id)

        self._pending.add(action.id)
        self._errors.pop(action.id, None)
        try:
            result = await self.client.undo_action(action)
        finally:
            self._pending.discard(action.id)

        if not result.success:
            error = result.error or "Undo failed"
            self._errors[action.id] = error
            logger.warning("Undo of action %s failed: %s", action.id, error)
            raise UndoError(error, action_id=action.id)

        self._undone.add(action.id)
        self._open.discard(action.id)
        await self._persist(action)
        return action.model_copy(update={"is_undone": True})

    async def _persist(self, action: AnyAction) -> None:
        if self.history_store is None or self.chat_id is None:
            return
        try:
            await self.history_store.mark_action_undone(self.chat_id, action.id, True)
        except HistoryStoreError as e:
            logger.warning("Could not persist undo of action %s: %s", action.id, e)
