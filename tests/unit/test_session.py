"""Unit tests for AgentChatSession.

Turns run against an in-process SSE server (httpx.MockTransport) or a
scripted transport when the test needs to hold the stream open.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from agent_chat.collaborators import HttpHistoryStore, StaticTokenAuth
from agent_chat.exceptions import HistoryStoreError, TurnInProgressError, TurnLimitError
from agent_chat.models.chat import ChatMessage, ChatSource
from agent_chat.session import AgentChatSession, SessionCallbacks, StreamingState, TurnPhase
from agent_chat.streaming.errors import AgentErrorCode
from agent_chat.streaming.timeline import ItemStatus
from agent_chat.streaming.transport import SSETransport
from agent_chat.undo.ledger import UndoLedger
from tests.helpers.streaming import (
    CARD_X_BLOCK,
    LITERAL_SCENARIO,
    ScriptedTransport,
    envelope,
    frame,
    mock_client,
    sse_body,
    sse_response,
)


def _sse_transport(settings, *payloads):
    body = sse_body(*payloads)
    return SSETransport(settings, client=mock_client(lambda request: sse_response(body)))


def _callbacks(**overrides) -> SessionCallbacks:
    return SessionCallbacks(
        on_message_complete=overrides.get("on_message_complete", MagicMock()),
        on_error=overrides.get("on_error", MagicMock()),
        on_data_changed=overrides.get("on_data_changed", MagicMock()),
        on_state_change=overrides.get("on_state_change"),
    )


class TestCompletedTurn:
    @pytest.mark.asyncio
    async def test_literal_scenario(self, test_settings, auth):
        states: list[StreamingState] = []
        callbacks = _callbacks(on_state_change=states.append)
        session = AgentChatSession(
            _sse_transport(test_settings, *LITERAL_SCENARIO), auth, settings=test_settings, callbacks=callbacks
        )

        outcome = await session.send_message("Find card")

        assert outcome.phase is TurnPhase.COMPLETED
        assert outcome.message.chat_message == "Find card: use Card X"
        assert len(outcome.message.component_block.items) == 1
        assert [(n.node, n.status) for n in outcome.timeline.nodes] == [("router_node", ItemStatus.COMPLETED)]
        callbacks.on_message_complete.assert_called_once_with(outcome.message)
        callbacks.on_error.assert_not_called()

        # A snapshot after every event, then the terminal state, then idle
        streaming = [s for s in states if s.is_streaming]
        assert len(streaming) == 1 + len(LITERAL_SCENARIO)
        assert [s.streamed_text for s in streaming[1:4]] == ["", "Find", "Find card"]
        assert states[-2].phase is TurnPhase.COMPLETED
        assert states[-1].phase is TurnPhase.IDLE
        assert session.state.phase is TurnPhase.IDLE

    @pytest.mark.asyncio
    async def test_history_holds_user_and_assistant_messages(self, test_settings, auth):
        session = AgentChatSession(
            _sse_transport(test_settings, envelope("final", textResponse="Use Card X")), auth, settings=test_settings
        )

        await session.send_message("Which card?")

        assert [m.chat_source for m in session.history] == [ChatSource.USER, ChatSource.ASSISTANT]
        assert session.last_outcome.phase is TurnPhase.COMPLETED
        assert not session.is_streaming

    @pytest.mark.asyncio
    async def test_request_carries_filtered_history(self, test_settings):
        prior = [
            ChatMessage.from_user("hi"),
            ChatMessage(chat_source=ChatSource.ASSISTANT, chat_message="hello"),
            ChatMessage(chat_source=ChatSource.ERROR, chat_message="oops", is_error=True),
        ]
        transport = ScriptedTransport([frame("final", textResponse="ok")])
        session = AgentChatSession(
            transport,
            StaticTokenAuth("secret"),
            settings=test_settings,
            conversation_id="chat-9",
            history=prior,
        )

        await session.send_message("next")

        request = transport.requests[0]
        assert [m.chat_message for m in request.chat_history] == ["hi", "hello"]
        assert request.prompt == "next"
        assert request.name == "Tester"
        assert request.conversation_id == "chat-9"
        assert transport.tokens == ["secret"]

    @pytest.mark.asyncio
    async def test_data_changed_callback(self, test_settings, auth):
        callbacks = _callbacks()
        session = AgentChatSession(
            _sse_transport(
                test_settings,
                envelope("data_changed", cards=True),
                envelope("final", textResponse="Added", dataChanged={"credits": True}),
            ),
            auth,
            settings=test_settings,
            callbacks=callbacks,
        )

        await session.send_message("Add my card")

        callbacks.on_data_changed.assert_called_once()
        changed = callbacks.on_data_changed.call_args.args[0]
        assert changed.cards is True
        assert changed.credits is True

    @pytest.mark.asyncio
    async def test_no_data_changed_callback_without_changes(self, test_settings, auth):
        callbacks = _callbacks()
        session = AgentChatSession(
            _sse_transport(test_settings, envelope("final", textResponse="Nothing changed")),
            auth,
            settings=test_settings,
            callbacks=callbacks,
        )

        await session.send_message("hello")

        callbacks.on_data_changed.assert_not_called()


class TestFailedTurn:
    @pytest.mark.asyncio
    async def test_server_error_event(self, test_settings, auth):
        callbacks = _callbacks()
        session = AgentChatSession(
            _sse_transport(test_settings, envelope("token", content="Let me"), envelope("error", message="rate limit hit")),
            auth,
            settings=test_settings,
            callbacks=callbacks,
        )

        outcome = await session.send_message("hi")

        assert outcome.phase is TurnPhase.FAILED
        assert outcome.error.code is AgentErrorCode.RATE_LIMIT
        assert outcome.message.is_error is True
        assert session.history[-1] == outcome.message
        callbacks.on_error.assert_called_once_with(outcome.error)
        callbacks.on_message_complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_http_error(self, test_settings, auth):
        client = mock_client(lambda request: httpx.Response(401, json={"detail": "token expired"}))
        session = AgentChatSession(SSETransport(test_settings, client=client), auth, settings=test_settings)

        outcome = await session.send_message("hi")

        assert outcome.error.code is AgentErrorCode.UNAUTHORIZED
        assert "token expired" not in outcome.message.chat_message

    @pytest.mark.asyncio
    async def test_stream_without_terminal_event_is_interrupted(self, test_settings, auth):
        session = AgentChatSession(
            _sse_transport(test_settings, envelope("node_start", node="router_node"), envelope("token", content="Half")),
            auth,
            settings=test_settings,
        )

        outcome = await session.send_message("hi")

        assert outcome.phase is TurnPhase.FAILED
        assert outcome.error.code is AgentErrorCode.STREAM_INTERRUPTED
        assert outcome.timeline.is_complete

    @pytest.mark.asyncio
    async def test_missing_credential_fails_before_streaming(self, test_settings):
        transport = ScriptedTransport([frame("final", textResponse="never")])
        callbacks = _callbacks()
        session = AgentChatSession(transport, StaticTokenAuth(""), settings=test_settings, callbacks=callbacks)

        outcome = await session.send_message("hi")

        assert outcome.phase is TurnPhase.FAILED
        assert outcome.error.code is AgentErrorCode.UNAUTHORIZED
        assert transport.requests == []
        callbacks.on_error.assert_called_once()

    @pytest.mark.asyncio
    async def test_history_store_untouched_on_failure(self, test_settings, auth, mock_history_store):
        session = AgentChatSession(
            _sse_transport(test_settings, envelope("error", message="boom")),
            auth,
            settings=test_settings,
            history_store=mock_history_store,
        )

        await session.send_message("hi")

        mock_history_store.create_conversation.assert_not_called()
        mock_history_store.update_conversation.assert_not_called()


    @pytest.mark.asyncio
    async def test_auth_provider_failure_fails_before_streaming(self, test_settings):
        auth = AsyncMock()
        auth.get_token.side_effect = httpx.ConnectError("token endpoint down")
        transport = ScriptedTransport([frame("final", textResponse="never")])
        states: list[StreamingState] = []
        callbacks = _callbacks(on_state_change=states.append)
        session = AgentChatSession(transport, auth, settings=test_settings, callbacks=callbacks)

        outcome = await session.send_message("hi")

        assert outcome.phase is TurnPhase.FAILED
        assert outcome.error.code is AgentErrorCode.UNAUTHORIZED
        assert "token endpoint down" not in outcome.message.chat_message
        assert [m.chat_source for m in session.history] == [ChatSource.USER, ChatSource.ERROR]
        assert transport.requests == []
        callbacks.on_error.assert_called_once_with(outcome.error)
        assert session.state.phase is TurnPhase.IDLE
        assert not session.is_streaming

    @pytest.mark.asyncio
    async def test_unexpected_error_still_returns_to_idle(self, test_settings, auth):
        def on_message_complete(message: ChatMessage) -> None:
            raise RuntimeError("render failed")

        callbacks = _callbacks(on_message_complete=on_message_complete)
        session = AgentChatSession(
            _sse_transport(test_settings, envelope("final", textResponse="ok")),
            auth,
            settings=test_settings,
            callbacks=callbacks,
        )

        with pytest.raises(RuntimeError):
            await session.send_message("hi")

        assert session.state.phase is TurnPhase.IDLE
        assert not session.is_streaming


class TestMalformedFrames:
    @pytest.mark.asyncio
    async def test_malformed_frame_between_tokens(self, test_settings, auth):
        callbacks = _callbacks()
        session = AgentChatSession(
            _sse_transport(
                test_settings,
                envelope("token", content="Hello"),
                '{"type": "token", "data": {"content": ',
                envelope("token", content=" world"),
                envelope("final"),
            ),
            auth,
            settings=test_settings,
            callbacks=callbacks,
        )

        outcome = await session.send_message("hi")

        assert outcome.phase is TurnPhase.COMPLETED
        assert outcome.message.chat_message == "Hello world"
        callbacks.on_error.assert_not_called()


    @pytest.mark.asyncio
    async def test_unrecognized_component_item_keeps_reply(self, test_settings, auth):
        block = {
            **CARD_X_BLOCK,
            "items": [
                *CARD_X_BLOCK["items"],
                {"id": "item-o", "componentType": "offer"},
                {
                    "id": "item-y",
                    "componentType": "card",
                    "card": {"id": "card-y", "CardName": "Card Y"},
                    "action": {"id": "act-y", "componentType": "card", "actionType": "upgrade", "cardId": "card-y"},
                },
            ],
        }
        callbacks = _callbacks()
        session = AgentChatSession(
            _sse_transport(test_settings, envelope("final", textResponse="Use Card X", componentBlock=block)),
            auth,
            settings=test_settings,
            callbacks=callbacks,
        )

        outcome = await session.send_message("Which card?")

        assert outcome.phase is TurnPhase.COMPLETED
        assert outcome.message.chat_message == "Use Card X"
        assert [item.id for item in outcome.message.component_block.items] == ["item-x", "item-y"]
        assert list(outcome.message.component_block.actions()) == []
        callbacks.on_message_complete.assert_called_once_with(outcome.message)
        callbacks.on_error.assert_not_called()


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_after_tool_start(self, test_settings, auth, mock_history_store):
        callbacks = _callbacks()
        session = AgentChatSession(
            _sse_transport(test_settings, *LITERAL_SCENARIO),
            auth,
            settings=test_settings,
            history_store=mock_history_store,
            callbacks=callbacks,
        )

        def on_state_change(state: StreamingState) -> None:
            if state.active_tool is not None:
                session.cancel()

        callbacks.on_state_change = on_state_change

        outcome = await session.send_message("Find card")

        assert outcome.phase is TurnPhase.CANCELLED
        assert outcome.message is None
        assert [m.chat_source for m in session.history] == [ChatSource.USER]
        callbacks.on_message_complete.assert_not_called()
        callbacks.on_error.assert_not_called()
        mock_history_store.create_conversation.assert_not_called()
        mock_history_store.update_conversation.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_discards_streaming_state(self, test_settings, auth):
        gate = asyncio.Event()
        transport = ScriptedTransport(
            [frame("node_start", node="router_node"), frame("token", content="Hi"), frame("final")],
            gate=gate,
            gate_at=2,
        )
        states: list[StreamingState] = []
        session = AgentChatSession(
            transport, auth, settings=test_settings, callbacks=_callbacks(on_state_change=states.append)
        )

        task = asyncio.create_task(session.send_message("hi"))
        while not any(s.streamed_text == "Hi" for s in states):
            await asyncio.sleep(0.001)
        session.cancel()
        outcome = await task

        assert outcome.phase is TurnPhase.CANCELLED
        cancelled = next(s for s in states if s.phase is TurnPhase.CANCELLED)
        assert cancelled.streamed_text == ""
        assert cancelled.timeline.nodes == ()

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, test_settings, auth):
        session = AgentChatSession(
            _sse_transport(test_settings, envelope("final", textResponse="ok")), auth, settings=test_settings
        )

        session.cancel()
        outcome = await session.send_message("hi")
        session.cancel()
        session.cancel()

        assert outcome.phase is TurnPhase.COMPLETED
        assert session.last_outcome is outcome
        assert len(session.history) == 2


    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_response_headers(self, test_settings, auth):
        released = asyncio.Event()
        handler_cancelled = asyncio.Event()

        async def slow_handler(request: httpx.Request) -> httpx.Response:
            try:
                await released.wait()
            except asyncio.CancelledError:
                handler_cancelled.set()
                raise
            return sse_response(sse_body(envelope("final", textResponse="too late")))

        callbacks = _callbacks()
        session = AgentChatSession(
            SSETransport(test_settings, client=mock_client(slow_handler)),
            auth,
            settings=test_settings,
            callbacks=callbacks,
        )

        task = asyncio.create_task(session.send_message("hi"))
        await asyncio.sleep(0.05)
        session.cancel()
        outcome = await asyncio.wait_for(task, timeout=1)

        assert outcome.phase is TurnPhase.CANCELLED
        assert handler_cancelled.is_set()
        assert [m.chat_source for m in session.history] == [ChatSource.USER]
        assert session.state.phase is TurnPhase.IDLE
        callbacks.on_message_complete.assert_not_called()
        callbacks.on_error.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_during_stalled_http_stream(self, test_settings, auth):
        stalled = asyncio.Event()

        async def body():
            yield sse_body(envelope("node_start", node="router_node"), envelope("token", content="Hi"))
            await stalled.wait()
            yield sse_body(envelope("final", textResponse="never"))

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body())

        states: list[StreamingState] = []
        session = AgentChatSession(
            SSETransport(test_settings, client=mock_client(handler)),
            auth,
            settings=test_settings,
            callbacks=_callbacks(on_state_change=states.append),
        )

        task = asyncio.create_task(session.send_message("hi"))
        while not any(s.streamed_text == "Hi" for s in states):
            await asyncio.sleep(0.001)
        session.cancel()
        outcome = await asyncio.wait_for(task, timeout=1)

        assert outcome.phase is TurnPhase.CANCELLED
        assert outcome.message is None
        assert states[-1].phase is TurnPhase.IDLE


class TestGuards:
    @pytest.mark.asyncio
    async def test_concurrent_send_is_rejected(self, test_settings, auth):
        gate = asyncio.Event()
        transport = ScriptedTransport([frame("token", content="a"), frame("final")], gate=gate, gate_at=1)
        session = AgentChatSession(transport, auth, settings=test_settings)

        task = asyncio.create_task(session.send_message("first"))
        while not session.is_streaming:
            await asyncio.sleep(0)

        with pytest.raises(TurnInProgressError):
            await session.send_message("second")

        gate.set()
        outcome = await task

        assert outcome.phase is TurnPhase.COMPLETED
        assert len(transport.requests) == 1
        assert [m.chat_message for m in session.history] == ["first", "a"]

    @pytest.mark.asyncio
    async def test_turn_limit(self, test_settings, auth):
        settings = test_settings.model_copy(update={"max_chat_messages": 2})
        history = [ChatMessage.from_user("q"), ChatMessage(chat_source=ChatSource.ASSISTANT, chat_message="a")]
        transport = ScriptedTransport([frame("final")])
        session = AgentChatSession(transport, auth, settings=settings, history=history)

        with pytest.raises(TurnLimitError) as exc_info:
            await session.send_message("one more")

        assert exc_info.value.limit == 2
        assert transport.requests == []
        assert len(session.history) == 2


class TestHistoryStore:
    @pytest.mark.asyncio
    async def test_first_turn_creates_conversation_and_title(self, test_settings, auth, mock_history_store):
        session = AgentChatSession(
            _sse_transport(test_settings, envelope("final", textResponse="Use Card X")),
            auth,
            settings=test_settings,
            history_store=mock_history_store,
        )

        await session.send_message("Which card for groceries?")

        mock_history_store.create_conversation.assert_awaited_once()
        mock_history_store.generate_title.assert_awaited_once_with("chat-42")
        assert session.conversation_id == "chat-42"
        assert session.title == "Grocery card"

    @pytest.mark.asyncio
    async def test_later_turns_update_conversation(self, test_settings, auth, history_store):
        transport = ScriptedTransport([frame("final", textResponse="ok", componentBlock=CARD_X_BLOCK)])
        session = AgentChatSession(transport, auth, settings=test_settings, history_store=history_store)

        await session.send_message("first")
        await session.send_message("second")

        assert list(history_store.conversations) == ["chat-1"]
        assert len(history_store.conversations["chat-1"]) == 4
        assert len(history_store.blocks["chat-1"]) == 2
        assert transport.requests[1].conversation_id == "chat-1"

    @pytest.mark.asyncio
    async def test_history_store_failure_keeps_outcome(self, test_settings, auth):
        store = AsyncMock()
        store.create_conversation.side_effect = HistoryStoreError("down")
        session = AgentChatSession(
            _sse_transport(test_settings, envelope("final", textResponse="ok")),
            auth,
            settings=test_settings,
            history_store=store,
        )

        outcome = await session.send_message("hi")

        assert outcome.phase is TurnPhase.COMPLETED
        assert session.conversation_id is None


    @pytest.mark.asyncio
    async def test_resumed_conversation_is_saved_in_full(self, test_settings, auth, history_store):
        ref = await history_store.create_conversation(
            [ChatMessage.from_user("first"), ChatMessage(chat_source=ChatSource.ASSISTANT, chat_message="one")], []
        )
        stored = await history_store.get_conversation(ref.chat_id)
        transport = ScriptedTransport([frame("final", textResponse="two")])
        session = AgentChatSession(transport, auth, settings=test_settings, history_store=history_store)

        session.resume(stored)
        await session.send_message("second")

        assert [m.chat_message for m in history_store.conversations[ref.chat_id]] == ["first", "one", "second", "two"]
        assert [m.chat_message for m in transport.requests[0].chat_history] == ["first", "one"]
        assert transport.requests[0].conversation_id == ref.chat_id

    @pytest.mark.asyncio
    async def test_resume_is_rejected_while_streaming(self, test_settings, auth, history_store):
        gate = asyncio.Event()
        transport = ScriptedTransport([frame("token", content="Hi"), frame("final")], gate=gate, gate_at=1)
        session = AgentChatSession(transport, auth, settings=test_settings)
        ref = await history_store.create_conversation([ChatMessage.from_user("first")], [])
        stored = await history_store.get_conversation(ref.chat_id)

        task = asyncio.create_task(session.send_message("hi"))
        while not session.is_streaming:
            await asyncio.sleep(0.001)

        with pytest.raises(TurnInProgressError):
            session.resume(stored)

        gate.set()
        await task

    @pytest.mark.parametrize(
        ("store_auth", "reply"),
        [
            (StaticTokenAuth(""), httpx.Response(200, json={"chatId": "chat-1"})),
            (StaticTokenAuth("t"), httpx.Response(200, json=["chat-1"])),
        ],
        ids=["missing-credential", "non-object-body"],
    )
    @pytest.mark.asyncio
    async def test_http_store_failure_keeps_outcome(self, test_settings, auth, store_auth, reply):
        store = HttpHistoryStore(test_settings, store_auth, client=mock_client(lambda request: reply))
        session = AgentChatSession(
            _sse_transport(test_settings, envelope("final", textResponse="ok")),
            auth,
            settings=test_settings,
            history_store=store,
        )

        outcome = await session.send_message("hi")

        assert outcome.phase is TurnPhase.COMPLETED
        assert session.conversation_id is None
        assert session.state.phase is TurnPhase.IDLE


class TestLedgerIntegration:
    @pytest.mark.asyncio
    async def test_actions_expire_on_next_send(self, test_settings, auth):
        block = {
            "id": "block-1",
            "items": [
                {
                    "id": "item-1",
                    "componentType": "card",
                    "card": {"id": "card-x", "CardName": "Card X"},
                    "action": {"id": "act-1", "componentType": "card", "actionType": "add", "cardId": "card-x"},
                }
            ],
        }
        transport = ScriptedTransport([frame("final", textResponse="Added", componentBlock=block)])
        ledger = UndoLedger(AsyncMock())
        session = AgentChatSession(transport, auth, settings=test_settings, ledger=ledger)

        first = await session.send_message("Add Card X")
        action = next(first.message.component_block.actions())
        assert ledger.can_undo(action)

        await session.send_message("Thanks")

        assert not ledger.can_undo(action)

    @pytest.mark.asyncio
    async def test_reset_state_clears_conversation(self, test_settings, auth):
        session = AgentChatSession(
            ScriptedTransport([frame("final", textResponse="ok")]),
            auth,
            settings=test_settings,
            conversation_id="chat-1",
        )
        await session.send_message("hi")

        session.reset_state()

        assert session.history == ()
        assert session.conversation_id is None
        assert session.state.phase is TurnPhase.IDLE
