"""Replay a recorded event stream through the client offline."""

import asyncio
from pathlib import Path
from typing import Annotated

import httpx
import typer
from rich.markdown import Markdown

from agent_chat.cli.utils import console, render_actions, render_timeline
from agent_chat.collaborators import StaticTokenAuth
from agent_chat.session import AgentChatSession, TurnOutcome, TurnPhase
from agent_chat.settings import get_settings
from agent_chat.streaming.transport import SSETransport


def replay(
    path: Annotated[
        Path,
        typer.Argument(help="Recorded SSE transcript (text/event-stream body)", exists=True, dir_okay=False),
    ],
    prompt: Annotated[
        str,
        typer.Option("--prompt", "-p", help="Prompt to attach to the replayed turn"),
    ] = "(replay)",
) -> None:
    """Replay a recorded agent stream and print the resulting turn.

    The transcript is served by an in-process transport, so decoding,
    the timeline and the reply are built exactly as for a live stream.

    Examples:
        agent-chat replay tests/fixtures/turn.sse
    """
    body = path.read_bytes()
    outcome = asyncio.run(_replay(body, prompt))
    _print_outcome(outcome)
    if outcome.phase is not TurnPhase.COMPLETED:
        raise typer.Exit(code=1)


async def _replay(body: bytes, prompt: str) -> TurnOutcome:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

    settings = get_settings()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = SSETransport(settings, client=client)
    session = AgentChatSession(transport, StaticTokenAuth("replay"), settings=settings)
    try:
        return await session.send_message(prompt)
    finally:
        await client.aclose()


def _print_outcome(outcome: TurnOutcome) -> None:
    console.print(render_timeline(outcome.timeline.model_copy(update={"is_collapsed": False})))
    if outcome.message is None:
        console.print(f"[dim]{outcome.phase}[/dim]")
        return
    if outcome.phase is TurnPhase.FAILED:
        console.print(f"[red]{outcome.message.chat_message}[/red] ({outcome.error.code})")
        return

    console.print(Markdown(outcome.message.chat_message))
    block = outcome.message.component_block
    if block is not None:
        actions = list(block.actions())
        if actions:
            console.print(render_actions(actions, None))
