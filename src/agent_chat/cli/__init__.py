"""CLI application setup using Typer.

Provides the command-line interface for the agent chat client.
"""

from agent_chat.cli.main import app

__all__ = ["app"]
