"""
Main CLI application using Typer.

Entry point: python -m app.cli
CLI Name: widget-sync-admin
"""
import typer

from app.core.config import settings

app = typer.Typer(
    name="widget-sync-admin",
    help="Widget Sync Admin CLI - Integration and scheduler tools for operators",
)

@app.command()
def version():
    """Show CLI version information."""
    typer.echo(f"Widget Sync CLI version {settings.app_version}")

# Register command groups
from app.cli.commands import credentials, integrations, sync
app.add_typer(credentials.app, name="credentials")
app.add_typer(integrations.app, name="integrations")
app.add_typer(sync.app, name="sync")
