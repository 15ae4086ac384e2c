"""Chat command."""

import asyncio
from typing import Annotated

import typer
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt

from agent_chat.cli.utils import card_directory, console, render_actions, render_state, render_timeline
from agent_chat.collaborators import HttpHistoryStore, StaticTokenAuth
from agent_chat.exceptions import HistoryStoreError, TurnLimitError, UndoError
from agent_chat.models.chat import DataChanged
from agent_chat.models.components import AnyAction
from agent_chat.session import AgentChatSession, SessionCallbacks, StreamingState, TurnOutcome, TurnPhase
from agent_chat.settings import get_settings
from agent_chat.streaming.transport import SSETransport
from agent_chat.undo.client import UndoClient
from agent_chat.undo.ledger import UndoLedger


def chat(
    message: Annotated[
        str | None,
        typer.Argument(help="Initial message (or leave empty for interactive mode)"),
    ] = None,
    conversation_id: Annotated[
        str | None,
        typer.Option("--continue", "-c", help="Continue a stored conversation"),
    ] = None,
    save: Annotated[
        bool,
        typer.Option("--save/--no-save", help="Save the conversation to the history store"),
    ] = True,
) -> None:
    """Interactive chat with the agent.

    Examples:
        agent-chat chat "Which card should I use for groceries?"
        agent-chat chat  # Interactive mode
    """
    asyncio.run(_chat_interactive(message, conversation_id, save))


async def _chat_interactive(
    initial_message: str | None,
    conversation_id: str | None,
    save: bool,
) -> None:
    """Run interactive chat session."""
    settings = get_settings()
    auth = StaticTokenAuth.from_settings(settings)
    # Continuing a conversation reads it back even when new turns are not saved
    history_store = HttpHistoryStore(settings, auth) if save or conversation_id else None
    undo_client = UndoClient(settings, auth)
    ledger = UndoLedger(undo_client, history_store=history_store)

    console.print(
        Panel(
            "[bold blue]Agent Chat[/bold blue]\n\n"
            f"Connected to [cyan]{settings.api_base_url}[/cyan]\n"
            "Type [cyan]'undo <n>'[/cyan] to undo an action of the last reply.\n"
            "Type [cyan]'exit'[/cyan] or [cyan]'quit'[/cyan] to end.",
            title="💬 Agent Chat",
            border_style="blue",
        )
    )

    live: Live | None = None

    def on_state_change(state: StreamingState) -> None:
        if live is not None and state.is_streaming:
            live.update(render_state(state))

    def on_data_changed(changed: DataChanged) -> None:
        kinds = [name for name, flag in changed.model_dump().items() if flag]
        console.print(f"[dim]Updated: {', '.join(kinds)}[/dim]")

    session = AgentChatSession(
        SSETransport(settings),
        auth,
        settings=settings,
        history_store=history_store if save else None,
        ledger=ledger,
        callbacks=SessionCallbacks(on_state_change=on_state_change, on_data_changed=on_data_changed),
    )
    last_actions: list[AnyAction] = []

    async def run_turn(prompt: str) -> None:
        nonlocal live, last_actions
        try:
            with Live(console=console, refresh_per_second=12, transient=True) as live:
                outcome = await session.send_message(prompt)
        except TurnLimitError as e:
            console.print(f"[red]{e}[/red] Start a new chat to continue.")
            return
        finally:
            live = None
        last_actions = _print_outcome(outcome, session, ledger)

    try:
        if conversation_id is not None:
            try:
                stored = await history_store.get_conversation(conversation_id)
            except HistoryStoreError as e:
                console.print(f"[red]Could not load conversation {conversation_id}:[/red] {e}")
                raise typer.Exit(1) from e
            session.resume(stored)
            console.print(
                f"[dim]Continuing {stored.chat_description or stored.chat_id} "
                f"({len(stored.messages)} messages)[/dim]\n"
            )

        if initial_message:
            console.print(f"[bold cyan]You:[/bold cyan] {initial_message}\n")
            await run_turn(initial_message)

        while True:
            try:
                user_input = Prompt.ask("[bold cyan]You[/bold cyan]")
            except (KeyboardInterrupt, EOFError):
                console.print("\n[dim]Goodbye![/dim]")
                break

            text = user_input.strip()
            if not text:
                continue
            if text.lower() in ("exit", "quit"):
                console.print("[dim]Goodbye![/dim]")
                break
            if text.lower().startswith("undo"):
                await _undo(text, last_actions, ledger)
                continue

            await run_turn(text)
    finally:
        await session.aclose()
        await undo_client.aclose()
        if history_store is not None:
            await history_store.aclose()


def _print_outcome(outcome: TurnOutcome, session: AgentChatSession, ledger: UndoLedger) -> list[AnyAction]:
    if outcome.phase is TurnPhase.CANCELLED:
        console.print("[dim]Cancelled.[/dim]\n")
        return []

    if outcome.timeline.nodes:
        console.print(render_timeline(outcome.timeline))

    if outcome.phase is TurnPhase.FAILED:
        retry = " You can try again." if outcome.error and outcome.error.retryable else ""
        console.print(f"[red]{outcome.message.chat_message}[/red]{retry}\n")
        return []

    console.print("[bold green]Agent:[/bold green]")
    console.print(Markdown(outcome.message.chat_message))

    block = outcome.message.component_block
    actions = list(block.actions()) if block is not None else []
    if actions:
        console.print(render_actions(actions, ledger, card_directory(session.history)))
    if session.title:
        console.print(f"[dim]Saved as: {session.title}[/dim]")
    console.print()
    return actions


async def _undo(command: str, actions: list[AnyAction], ledger: UndoLedger) -> None:
    _, _, arg = command.partition(" ")
    if not arg.strip().isdigit():
        console.print("[yellow]Usage: undo <n>[/yellow]")
        return
    index = int(arg)
    if not 1 <= index <= len(actions):
        console.print(f"[yellow]No action #{index} in the last reply.[/yellow]")
        return

    action = actions[index - 1]
    if not ledger.can_undo(action):
        console.print(f"[yellow]Action #{index} can no longer be undone.[/yellow]")
        return
    try:
        await ledger.undo(action)
    except UndoError as e:
        console.print(f"[red]Undo failed:[/red] {e}")
        return
    console.print(f"[green]Undone:[/green] #{index}")
