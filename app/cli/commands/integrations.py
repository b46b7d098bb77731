"""
Integration definition commands.
"""
import json
import uuid
from pathlib import Path
from typing import List, Optional

import typer
from rich.table import Table

from app.cli.commands.utils import console, fail, get_engine
from app.core.exceptions import SchemaValidationError, WidgetSyncException
from app.models.integration import IntegrationDefinition

app = typer.Typer(help="Manage integration definitions")


def _load_definitions(path: Path) -> List[dict]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        fail(f"Could not read {path}: {e}")
    if isinstance(raw, dict):
        return [raw]
    if isinstance(raw, list) and all(isinstance(item, dict) for item in raw):
        return raw
    fail("Definition file must hold a JSON object or a list of objects")


def _integration_table(integrations: List[IntegrationDefinition], title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Widget type")
    table.add_column("Name")
    table.add_column("Mode")
    table.add_column("Fetcher")
    table.add_column("Interval (s)", justify="right")
    table.add_column("Active")
    for integration in integrations:
        table.add_row(
            str(integration.id),
            integration.widget_type,
            integration.name,
            str(integration.mode),
            integration.fetcher or "-",
            str(integration.pull_interval_seconds or "-"),
            "yes" if integration.is_active else "no",
        )
    return table


@app.command("register")
def register(
    definition_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file with one or more definitions"),
):
    """Register integration definitions from a JSON file."""
    engine = get_engine()
    created = []
    for payload in _load_definitions(definition_file):
        try:
            created.append(engine.registry.create(payload))
        except SchemaValidationError as e:
            for error in e.errors:
                console.print(f"  [yellow]-[/yellow] {error}")
            fail(f"{payload.get('name', '<unnamed>')}: {e}")
        except WidgetSyncException as e:
            fail(f"{payload.get('name', '<unnamed>')}: {e}")
    console.print(_integration_table(created, "Registered integrations"))


@app.command("list")
def list_integrations(
    widget_type: Optional[str] = typer.Option(None, "--widget-type", "-w", help="Only this widget type"),
):
    """List registered integrations."""
    integrations = get_engine().registry.list(widget_type=widget_type)
    if not integrations:
        console.print("No integrations registered.")
        return
    console.print(_integration_table(integrations, "Integrations"))


def _set_active(integration_id: uuid.UUID, active: bool) -> None:
    try:
        integration = get_engine().registry.set_active(integration_id, active)
    except WidgetSyncException as e:
        fail(str(e))
    state = "activated" if integration.is_active else "deactivated"
    console.print(f"[green]Integration {integration.name} {state}[/green]")


@app.command("activate")
def activate(integration_id: uuid.UUID = typer.Argument(..., help="Integration ID")):
    """Activate an integration."""
    _set_active(integration_id, True)


@app.command("deactivate")
def deactivate(integration_id: uuid.UUID = typer.Argument(..., help="Integration ID")):
    """Deactivate an integration. Its entries stay cached but are no longer polled."""
    _set_active(integration_id, False)


@app.command("entries")
def entries(integration_id: uuid.UUID = typer.Argument(..., help="Integration ID")):
    """Show cache entry health for an integration."""
    engine = get_engine()
    try:
        engine.registry.get(integration_id)
    except WidgetSyncException as e:
        fail(str(e))

    table = Table(title="Cache entries")
    table.add_column("Discriminator", style="cyan")
    table.add_column("Status")
    table.add_column("Version", justify="right")
    table.add_column("Fetched at")
    table.add_column("Refresh at")
    table.add_column("Error")
    for entry in engine.cache_store.list_for_integration(integration_id):
        table.add_row(
            entry.discriminator_key,
            str(entry.status),
            str(entry.version),
            entry.fetched_at.isoformat() if entry.fetched_at else "-",
            entry.refresh_at.isoformat() if entry.refresh_at else "-",
            entry.error_message or "",
        )
    console.print(table)
