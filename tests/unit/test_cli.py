"""Unit tests for CLI commands."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from agent_chat.cli.main import app
from agent_chat.collaborators import StoredConversation
from agent_chat.exceptions import HistoryStoreError
from agent_chat.models.chat import ChatMessage, ChatSource
from tests.helpers.streaming import LITERAL_SCENARIO, envelope, sse_body


@pytest.fixture
def runner():
    """CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def no_logging_setup():
    """Keep the CLI from reconfiguring the root logger during tests."""
    with patch("agent_chat.cli.main.configure_logging") as mock_configure:
        yield mock_configure


class TestReplay:
    def test_replays_recorded_stream(self, runner, tmp_path):
        transcript = tmp_path / "turn.sse"
        transcript.write_bytes(sse_body(*LITERAL_SCENARIO))

        result = runner.invoke(app, ["replay", str(transcript)])

        assert result.exit_code == 0, result.output
        assert "Find card: use Card X" in result.output
        assert "Routing your request" in result.output

    def test_failed_stream_exits_non_zero(self, runner, tmp_path):
        transcript = tmp_path / "failed.sse"
        transcript.write_bytes(sse_body(envelope("error", message="upstream 503")))

        result = runner.invoke(app, ["replay", str(transcript)])

        assert result.exit_code == 1
        assert "SERVICE_UNAVAILABLE" in result.output
        assert "upstream" not in result.output

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(app, ["replay", str(tmp_path / "nope.sse")])

        assert result.exit_code != 0


class TestMainCallback:
    def test_log_level_option(self, runner, no_logging_setup):
        result = runner.invoke(app, ["--log-level", "debug", "version"])

        assert result.exit_code == 0
        no_logging_setup.assert_called_once_with("DEBUG")

    def test_invalid_log_level(self, runner):
        result = runner.invoke(app, ["--log-level", "chatty", "version"])

        assert result.exit_code != 0

    def test_version(self, runner):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "agent-chat" in result.output


class TestRendering:
    def test_card_directory_from_history(self):
        from agent_chat.cli.utils import card_directory
        from tests.factories import AssistantMessageFactory, CardComponentItemFactory, ChatComponentBlockFactory

        item = CardComponentItemFactory()
        message = AssistantMessageFactory(component_block=ChatComponentBlockFactory(items=(item,)))

        directory = card_directory([message])

        assert directory.card_name(item.card.id) == item.card.card_name

    def test_render_actions_shows_undo_state(self):
        from rich.console import Console

        from agent_chat.cli.utils import render_actions
        from agent_chat.undo.ledger import UndoLedger
        from tests.factories import CardActionFactory

        action = CardActionFactory()
        ledger = UndoLedger(AsyncMock())
        console = Console(width=120, record=True)

        console.print(render_actions([action], ledger))

        text = console.export_text()
        assert "Added to wallet" in text
        assert "expired" in text


class TestChatContinue:
    @staticmethod
    def _store(**get_conversation):
        store = MagicMock()
        store.get_conversation = AsyncMock(**get_conversation)
        store.aclose = AsyncMock()
        return store

    def test_loads_stored_conversation_before_first_turn(self, runner):
        stored = StoredConversation(
            chat_id="chat-7",
            chat_description="Grocery card",
            messages=(
                ChatMessage.from_user("Which card for groceries?"),
                ChatMessage(chat_source=ChatSource.ASSISTANT, chat_message="Use Card X"),
            ),
        )
        store = self._store(return_value=stored)

        with (
            patch("agent_chat.cli.commands.chat.HttpHistoryStore", return_value=store),
            patch("agent_chat.cli.commands.chat.Prompt.ask", side_effect=EOFError),
        ):
            result = runner.invoke(app, ["chat", "--continue", "chat-7"])

        assert result.exit_code == 0, result.output
        store.get_conversation.assert_awaited_once_with("chat-7")
        assert "Continuing Grocery card (2 messages)" in result.output

    def test_unloadable_conversation_exits_non_zero(self, runner):
        store = self._store(side_effect=HistoryStoreError("HTTP 404"))

        with patch("agent_chat.cli.commands.chat.HttpHistoryStore", return_value=store):
            result = runner.invoke(app, ["chat", "--continue", "chat-404"])

        assert result.exit_code == 1
        assert "Could not load conversation chat-404" in result.output
        store.aclose.assert_awaited_once()
