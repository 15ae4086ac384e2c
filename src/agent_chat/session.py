"""Session orchestrator for chat turns against the agent stream.

One ``AgentChatSession`` owns a conversation: its append-only history,
the undo ledger and at most one open stream. Each turn moves through
``IDLE -> STREAMING -> COMPLETED | CANCELLED | FAILED`` and returns to
``IDLE`` before the next one may start.

Usage::

    session = AgentChatSession(SSETransport(settings), auth, settings=settings)
    outcome = await session.send_message("Which card should I use for groceries?")
    if outcome.phase is TurnPhase.COMPLETED:
        print(outcome.message.chat_message)
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from agent_chat.collaborators import AuthProvider, HistoryStore, StoredConversation
from agent_chat.exceptions import HistoryStoreError, TurnInProgressError, TurnLimitError
from agent_chat.models.chat import (
    ChatMessage,
    DataChanged,
    TurnRequest,
    filter_messages_for_api,
    trim_history,
)
from agent_chat.models.components import ChatComponentBlock
from agent_chat.settings import Settings, get_settings
from agent_chat.streaming.assembler import INITIAL_ASSEMBLY, AssemblyState, assemble_message, fail
from agent_chat.streaming.decoder import decode, log_unknown
from agent_chat.streaming.errors import AgentErrorCode, AgentErrorInfo, error_info
from agent_chat.streaming.events import ErrorEvent, UnknownEvent
from agent_chat.streaming.timeline import (
    INITIAL_TIMELINE,
    TimelineNode,
    TimelineState,
    TimelineToolCall,
    reduce_timeline,
)
from agent_chat.streaming.transport import AbortSignal, SSETransport
from agent_chat.undo.ledger import UndoLedger

logger = logging.getLogger(__name__)


class TurnPhase(StrEnum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class StreamingState(BaseModel):
    """Snapshot of the turn in progress, published after every event."""

    model_config = ConfigDict(frozen=True)

    phase: TurnPhase = TurnPhase.IDLE
    streamed_text: str = ""
    component_block: ChatComponentBlock | None = None
    timeline: TimelineState = INITIAL_TIMELINE
    error: AgentErrorInfo | None = None

    @property
    def is_streaming(self) -> bool:
        return self.phase is TurnPhase.STREAMING

    @property
    def active_node(self) -> TimelineNode | None:
        return self.timeline.active_node

    @property
    def active_tool(self) -> TimelineToolCall | None:
        return self.timeline.active_tool


IDLE_STATE = StreamingState()


@dataclass
class SessionCallbacks:
    """Optional hooks invoked by the session. All are synchronous."""

    on_message_complete: Callable[[ChatMessage], None] | None = None
    on_error: Callable[[AgentErrorInfo], None] | None = None
    on_data_changed: Callable[[DataChanged], None] | None = None
    on_state_change: Callable[[StreamingState], None] | None = None


@dataclass(frozen=True)
class TurnOutcome:
    """Result of one ``send_message`` call.

    Attributes:
        phase: COMPLETED, CANCELLED or FAILED.
        message: The assistant or error message appended to history
            (None when cancelled).
        error: Classification of the failure for FAILED turns.
        data_changed: Data-changed flags of a completed turn.
        timeline: Final timeline (empty when cancelled).
    """

    phase: TurnPhase
    message: ChatMessage | None = None
    error: AgentErrorInfo | None = None
    data_changed: DataChanged | None = None
    timeline: TimelineState = INITIAL_TIMELINE


class AgentChatSession:
    """Orchestrates the turns of one conversation.

    Args:
        transport: Opens the agent stream of each turn.
        auth: Supplies the bearer credential, fetched before every turn.
        settings: Client settings (defaults to ``get_settings()``).
        history_store: Persists the conversation after completed turns.
        ledger: Undo ledger; expired on every send, opened on completion.
        callbacks: Hooks for completion, errors, data changes and state.
        user_name: Name sent with each turn.
        conversation_id: Stored conversation to continue, if any.
        history: Messages of that conversation.
    """

    def __init__(
        self,
        transport: SSETransport,
        auth: AuthProvider,
        *,
        settings: Settings | None = None,
        history_store: HistoryStore | None = None,
        ledger: UndoLedger | None = None,
        callbacks: SessionCallbacks | None = None,
        user_name: str | None = None,
        conversation_id: str | None = None,
        history: Sequence[ChatMessage] = (),
    ) -> None:
        self.settings = settings or get_settings()
        self.transport = transport
        self.auth = auth
        self.history_store = history_store
        self.ledger = ledger
        self.callbacks = callbacks or SessionCallbacks()
        self.user_name = user_name or self.settings.default_user_name
        self.conversation_id = conversation_id
        self.title: str | None = None
        self.last_outcome: TurnOutcome | None = None

        self._history: list[ChatMessage] = list(history)
        self._state = IDLE_STATE
        self._signal: AbortSignal | None = None

        if self.ledger is not None and conversation_id is not None:
            self.ledger.chat_id = conversation_id

    @property
    def history(self) -> tuple[ChatMessage, ...]:
        return tuple(self._history)

    @property
    def state(self) -> StreamingState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._signal is not None

    async def send_message(
        self,
        prompt: str,
        prior_history: Sequence[ChatMessage] | None = None,
    ) -> TurnOutcome:
        """Run one turn to completion, cancellation or failure.

        In-stream failures do not raise; they end the turn as FAILED.

        Args:
            prompt: The user's message.
            prior_history: Replaces the session history before the turn
                (e.g. when the caller owns the conversation).

        Raises:
            TurnInProgressError: Another turn is still streaming.
            TurnLimitError: The conversation is at ``max_chat_messages``.
        """
        if self._signal is not None:
            raise TurnInProgressError("A response is still streaming")
        if prior_history is not None:
            self._history = list(prior_history)

        limit = self.settings.max_chat_messages
        if len(self._history) >= limit:
            raise TurnLimitError(f"Conversation reached the limit of {limit} messages", limit=limit)

        signal = AbortSignal()
        self._signal = signal
        outcome: TurnOutcome | None = None
        try:
            if self.ledger is not None:
                self.ledger.begin_turn()

            request = TurnRequest(
                name=self.user_name,
                prompt=prompt,
                chat_history=tuple(filter_messages_for_api(trim_history(self._history, limit))),
                conversation_id=self.conversation_id,
                agent_mode=self.settings.agent_mode,
            )
            self._history.append(ChatMessage.from_user(prompt))
            self._publish(StreamingState(phase=TurnPhase.STREAMING))

            outcome = await self._run_turn(request, signal)
        finally:
            self._signal = None
            if outcome is None:
                self._publish(IDLE_STATE)

        self.last_outcome = outcome
        try:
            await self._finish(outcome)
        finally:
            self._publish(IDLE_STATE)
        return outcome

    def cancel(self) -> None:
        """Abort the turn in progress. No-op when nothing is streaming."""
        if self._signal is not None and not self._signal.aborted:
            logger.info("Cancelling agent stream")
            self._signal.abort("cancelled by user")

    def reset_state(self) -> None:
        """Cancel any open stream and clear the conversation."""
        self.cancel()
        self._history.clear()
        self.conversation_id = None
        self.title = None
        self.last_outcome = None
        if self.ledger is not None:
            self.ledger.begin_turn()
            self.ledger.chat_id = None
        self._publish(IDLE_STATE)

    def resume(self, conversation: StoredConversation) -> None:
        """Continue a stored conversation.

        Later saves update the stored record with the full history, so the
        stored messages must be loaded before the first turn.

        Raises:
            TurnInProgressError: A turn is still streaming.
        """
        if self._signal is not None:
            raise TurnInProgressError("Cannot switch conversations while a response is streaming")
        self._history = list(conversation.messages)
        self.conversation_id = conversation.chat_id
        self.title = conversation.chat_description or None
        self.last_outcome = None
        if self.ledger is not None:
            self.ledger.begin_turn()
            self.ledger.chat_id = conversation.chat_id
        self._publish(IDLE_STATE)

    async def aclose(self) -> None:
        self.cancel()
        await self.transport.aclose()

    # -------------------------------------------------------------------------
    # Turn execution
    # -------------------------------------------------------------------------

    async def _run_turn(self, request: TurnRequest, signal: AbortSignal) -> TurnOutcome:
        try:
            token = await self.auth.get_token()
        except Exception as e:
            logger.warning("Could not obtain a credential for the turn: %r", e)
            return self._failed(fail(INITIAL_ASSEMBLY, error_info(AgentErrorCode.UNAUTHORIZED), raw_error=str(e)))

        timeline, assembly = INITIAL_TIMELINE, INITIAL_ASSEMBLY
        async with contextlib.aclosing(self.transport.open_stream(request, signal, token=token)) as frames:
            async for frame in frames:
                if signal.aborted:
                    break
                event = decode(frame)
                if isinstance(event, UnknownEvent):
                    log_unknown(event)
                    continue

                timeline = reduce_timeline(timeline, event)
                assembly = assemble_message(assembly, event)
                self._publish(self._snapshot(TurnPhase.STREAMING, timeline, assembly))
                if assembly.is_terminal:
                    break

        # A terminal event already received wins over a late cancel
        if signal.aborted and not assembly.is_terminal:
            logger.info("Turn cancelled (%s)", signal.reason)
            return TurnOutcome(phase=TurnPhase.CANCELLED)

        if not assembly.is_terminal:
            logger.warning("Agent stream ended without a final or error event")
            interrupted = ErrorEvent(message="Stream ended unexpectedly", code=AgentErrorCode.STREAM_INTERRUPTED.value)
            timeline = reduce_timeline(timeline, interrupted)
            assembly = assemble_message(assembly, interrupted)

        if assembly.error is not None:
            return self._failed(assembly, timeline)

        return TurnOutcome(
            phase=TurnPhase.COMPLETED,
            message=assembly.message,
            data_changed=assembly.data_changed,
            timeline=timeline,
        )

    def _failed(self, assembly: AssemblyState, timeline: TimelineState = INITIAL_TIMELINE) -> TurnOutcome:
        logger.error("Agent turn failed (%s): %s", assembly.error.code, assembly.raw_error)
        return TurnOutcome(
            phase=TurnPhase.FAILED,
            message=assembly.message,
            error=assembly.error,
            timeline=timeline,
        )

    async def _finish(self, outcome: TurnOutcome) -> None:
        if outcome.phase is TurnPhase.CANCELLED:
            self._publish(StreamingState(phase=TurnPhase.CANCELLED))
            return

        self._history.append(outcome.message)
        self._publish(
            StreamingState(
                phase=outcome.phase,
                streamed_text=outcome.message.chat_message,
                component_block=outcome.message.component_block,
                timeline=outcome.timeline,
                error=outcome.error,
            )
        )

        if outcome.phase is TurnPhase.FAILED:
            if self.callbacks.on_error is not None:
                self.callbacks.on_error(outcome.error)
            return

        if self.ledger is not None:
            self.ledger.register_turn(outcome.message)
        if self.callbacks.on_message_complete is not None:
            self.callbacks.on_message_complete(outcome.message)
        if outcome.data_changed is not None and outcome.data_changed.has_changes:
            logger.info("Agent changed user data: %s", outcome.data_changed.model_dump(exclude_none=True))
            if self.callbacks.on_data_changed is not None:
                self.callbacks.on_data_changed(outcome.data_changed)

        await self._save_history()

    async def _save_history(self) -> None:
        if self.history_store is None:
            return
        blocks = [m.component_block for m in self._history if m.component_block is not None]
        try:
            if self.conversation_id is None:
                ref = await self.history_store.create_conversation(self._history, blocks)
                self.conversation_id = ref.chat_id
                if self.ledger is not None:
                    self.ledger.chat_id = ref.chat_id
                self.title = await self.history_store.generate_title(ref.chat_id) or ref.chat_description
            else:
                await self.history_store.update_conversation(self.conversation_id, self._history, blocks)
        except HistoryStoreError as e:
            logger.warning("Could not save conversation %s: %s", self.conversation_id, e)

    def _snapshot(self, phase: TurnPhase, timeline: TimelineState, assembly: AssemblyState) -> StreamingState:
        return StreamingState(
            phase=phase,
            streamed_text=assembly.streamed_text,
            component_block=assembly.component_block,
            timeline=timeline,
            error=assembly.error,
        )

    def _publish(self, state: StreamingState) -> None:
        self._state = state
        if self.callbacks.on_state_change is not None:
            self.callbacks.on_state_change(state)
