"""Shared console and rendering helpers for CLI commands."""

from rich.console import Console, Group, RenderableType
from rich.markdown import Markdown
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from agent_chat.collaborators import InMemoryCardDirectory
from agent_chat.models.chat import ChatMessage
from agent_chat.models.components import AnyAction
from agent_chat.session import StreamingState
from agent_chat.streaming.timeline import ItemStatus, TimelineState
from agent_chat.undo.display import describe_action
from agent_chat.undo.ledger import UndoLedger

console = Console()

_STATUS_ICONS = {
    ItemStatus.PENDING: "[dim]○[/dim]",
    ItemStatus.ACTIVE: "[yellow]●[/yellow]",
    ItemStatus.COMPLETED: "[green]✓[/green]",
}


def render_timeline(timeline: TimelineState) -> Tree:
    """Tree of nodes and their tool calls."""
    tree = Tree("[bold]Timeline[/bold]", hide_root=timeline.is_collapsed)
    if timeline.is_collapsed:
        completed = sum(1 for node in timeline.nodes if node.status is ItemStatus.COMPLETED)
        tree.add(f"[dim]{completed}/{len(timeline.nodes)} steps completed[/dim]")
        return tree

    for node in timeline.nodes:
        branch = tree.add(f"{_STATUS_ICONS[node.status]} {node.message or node.node}")
        for call in node.tool_calls:
            text = call.result_message if call.status is ItemStatus.COMPLETED and call.result_message else call.active_message
            branch.add(f"{_STATUS_ICONS[call.status]} [dim]{text}[/dim]")
    return tree


def render_state(state: StreamingState) -> RenderableType:
    """Live view of a streaming turn."""
    parts: list[RenderableType] = []
    if state.timeline.nodes:
        parts.append(render_timeline(state.timeline))
    if state.streamed_text:
        parts.append(Markdown(state.streamed_text))
    elif state.is_streaming:
        parts.append(Text("Thinking...", style="dim"))
    return Group(*parts)


def card_directory(messages: list[ChatMessage] | tuple[ChatMessage, ...]) -> InMemoryCardDirectory:
    """Card names seen in the component blocks of ``messages``."""
    directory = InMemoryCardDirectory()
    for message in messages:
        if message.component_block is None:
            continue
        for item in message.component_block.items:
            if item.card.card_name:
                directory.add(item.card.id, item.card.card_name)
    return directory


def render_actions(
    actions: list[AnyAction],
    ledger: UndoLedger | None,
    directory: InMemoryCardDirectory | None = None,
) -> Table:
    """Numbered table of actions, with their undo state."""
    table = Table(show_header=True, header_style="bold", box=None)
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Action")
    table.add_column("Undo", style="dim")

    for index, action in enumerate(actions, start=1):
        if ledger is None:
            undo = ""
        elif ledger.is_undone(action):
            undo = "undone"
        elif ledger.is_undo_pending(action):
            undo = "undoing..."
        elif ledger.can_undo(action):
            undo = f"undo {index}"
        else:
            undo = "expired"
        table.add_row(str(index), describe_action(action, directory), undo)
    return table
