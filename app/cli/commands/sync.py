"""
Scheduler commands.
"""
import asyncio
from typing import List, Optional, Tuple

import typer
from rich.table import Table

from app.cli.commands.utils import console, get_engine
from app.core.http_client import close_http_client
from app.integrations.poller import PollResult
from app.integrations.scheduler import INLINE

app = typer.Typer(help="Run polls outside the API process")


async def _scan_and_drain(limit: Optional[int]) -> Tuple[int, List[PollResult]]:
    engine = get_engine()
    try:
        enqueued = engine.scheduler.scan_due(limit=limit)
        results: List[PollResult] = []
        if engine.scheduler.backend == INLINE:
            results = await engine.scheduler.drain()
        return enqueued, results
    finally:
        await close_http_client()


@app.command("scan")
def scan(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum stale entries to enqueue"),
):
    """
    Enqueue every stale cache entry once.

    With the inline backend the polls run before the command exits; with the
    celery backend they are handed to the workers.
    """
    enqueued, results = asyncio.run(_scan_and_drain(limit))
    console.print(f"Enqueued {enqueued} stale entr{'y' if enqueued == 1 else 'ies'}")
    if not results:
        return

    table = Table(title="Poll results")
    table.add_column("Status")
    table.add_column("Version", justify="right")
    table.add_column("Attempts", justify="right")
    table.add_column("Error")
    for result in results:
        table.add_row(result.status, str(result.version or "-"), str(result.attempts), result.error or "")
    console.print(table)
