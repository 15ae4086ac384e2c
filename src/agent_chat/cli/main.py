"""CLI entry point and base commands.

Provides the main CLI application with commands for:
- chat: Interactive chat with the agent
- replay: Replay a recorded agent stream offline
"""

from typing import Annotated, Optional

import typer
from rich.panel import Panel

from agent_chat.cli.commands.chat import chat
from agent_chat.cli.commands.replay import replay
from agent_chat.cli.utils import console
from agent_chat.logging_config import configure_logging

app = typer.Typer(
    name="agent-chat",
    help="Streaming client for the card assistant agent",
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def main(
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", "-l", help="Override AGENT_CHAT_LOG_LEVEL (DEBUG, INFO, ...)"),
    ] = None,
) -> None:
    """Configure logging before any command runs."""
    if log_level is not None and log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        raise typer.BadParameter(f"Unknown log level: {log_level}", param_hint="--log-level")
    configure_logging(log_level.upper() if log_level else None)


app.command()(chat)
app.command()(replay)


@app.command()
def version() -> None:
    """Show agent-chat version information."""
    from agent_chat import __version__

    console.print(
        Panel(
            f"[bold]agent-chat[/bold] v{__version__}\n"
            "Streaming client for the card assistant agent",
            title="💬 Version",
            border_style="blue",
        )
    )


# Entry point for: python -m agent_chat.cli.main
if __name__ == "__main__":
    app()
