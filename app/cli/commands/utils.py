"""
Shared helpers for CLI commands.
"""
from typing import Optional

import typer
from rich.console import Console

from app.core.database import init_db
from app.integrations.engine import SyncEngine

console = Console()

_engine: Optional[SyncEngine] = None


def get_engine() -> SyncEngine:
    """Build the engine once per CLI invocation, after making sure the tables exist."""
    global _engine
    if _engine is None:
        init_db()
        _engine = SyncEngine()
    return _engine


def fail(message: str, code: int = 1) -> None:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code=code)
