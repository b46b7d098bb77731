"""
Credential encryption maintenance commands.
"""
from typing import Optional

import typer
from rich.table import Table

from app.cli.commands.utils import console, get_engine

app = typer.Typer(help="Maintain stored integration credentials")


@app.command("status")
def status():
    """Count stored credentials by encryption key version."""
    stats = get_engine().vault.rotation_stats()

    table = Table(title="Credential encryption")
    table.add_column("Key version")
    table.add_column("Credentials", justify="right")
    table.add_row("current", str(stats["current"]))
    table.add_row("previous", str(stats["outdated"]))
    table.add_row("unreadable", str(stats["unreadable"]))
    table.add_row("total", str(stats["total"]))
    console.print(table)


@app.command("rotate")
def rotate(
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", min=1, help="Credentials per batch"),
    background: bool = typer.Option(False, "--background", help="Queue the rotation on Celery workers instead"),
):
    """Re-encrypt every stored credential with the current SECRET_KEY."""
    if background:
        from app.integrations.tasks import rotate_credential_encryption_task

        rotate_credential_encryption_task.delay(batch_size)
        console.print("[green]Credential rotation queued[/green]")
        return

    result = get_engine().vault.rotate_all(batch_size)
    console.print(
        f"[green]Rotated {result.rotated}[/green], "
        f"skipped {result.skipped} already current, "
        f"{result.errors} unreadable"
    )
    if result.errors:
        console.print(
            "[yellow]Unreadable credentials were left as they are. "
            "Their integrations need to be reconnected.[/yellow]"
        )
        raise typer.Exit(code=1)
