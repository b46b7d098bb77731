"""
CLI commands run against the test engine.
"""
import json
import uuid
from unittest.mock import patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from app.cli.cli import app
from app.core.encryption import OrganizationKeyProvider
from app.integrations import tasks
from app.integrations.discriminator import build_discriminator
from app.integrations.vault import CredentialVault

runner = CliRunner()

DEFINITION = {
    "widget_type": "stocks",
    "name": "Quotes",
    "mode": "pull",
    "fetcher": "stub",
    "pull_interval_seconds": 60,
}


@pytest.fixture
def cli_engine(sync_engine):
    """Route commands to the test engine; a wide console keeps table cells on one line."""
    wide = Console(width=200)
    with patch("app.cli.commands.credentials.get_engine", return_value=sync_engine), \
         patch("app.cli.commands.integrations.get_engine", return_value=sync_engine), \
         patch("app.cli.commands.sync.get_engine", return_value=sync_engine), \
         patch("app.cli.commands.credentials.console", wide), \
         patch("app.cli.commands.integrations.console", wide), \
         patch("app.cli.commands.sync.console", wide):
        yield sync_engine


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "Widget Sync CLI version" in result.output


class TestIntegrationCommands:
    def test_register_from_file(self, cli_engine, tmp_path):
        path = tmp_path / "definitions.json"
        path.write_text(json.dumps([DEFINITION, {**DEFINITION, "name": "Indices"}]))

        result = runner.invoke(app, ["integrations", "register", str(path)])

        assert result.exit_code == 0, result.output
        assert "Registered integrations" in result.output
        assert sorted(i.name for i in cli_engine.registry.list()) == ["Indices", "Quotes"]

    def test_register_invalid_definition(self, cli_engine, tmp_path):
        path = tmp_path / "definitions.json"
        path.write_text(json.dumps({**DEFINITION, "fetcher": "missing"}))

        result = runner.invoke(app, ["integrations", "register", str(path)])

        assert result.exit_code == 1
        assert "Unknown fetcher" in result.output
        assert cli_engine.registry.list() == []

    def test_register_unreadable_file(self, cli_engine, tmp_path):
        path = tmp_path / "definitions.json"
        path.write_text("not json")

        result = runner.invoke(app, ["integrations", "register", str(path)])

        assert result.exit_code == 1
        assert "Could not read" in result.output

    def test_list_empty(self, cli_engine):
        result = runner.invoke(app, ["integrations", "list"])

        assert result.exit_code == 0
        assert "No integrations registered." in result.output

    def test_list(self, cli_engine, make_integration):
        make_integration(widget_type="rss", name="News")

        result = runner.invoke(app, ["integrations", "list", "--widget-type", "rss"])

        assert result.exit_code == 0
        assert "Integrations" in result.output
        assert "News" in result.output

    def test_deactivate_and_activate(self, cli_engine, make_integration):
        integration = make_integration()

        off = runner.invoke(app, ["integrations", "deactivate", str(integration.id)])
        assert off.exit_code == 0
        assert not cli_engine.registry.is_active(integration.id)

        on = runner.invoke(app, ["integrations", "activate", str(integration.id)])
        assert on.exit_code == 0
        assert cli_engine.registry.is_active(integration.id)

    def test_activate_unknown(self, cli_engine):
        result = runner.invoke(app, ["integrations", "activate", str(uuid.uuid4())])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_entries(self, cli_engine, make_integration):
        integration = make_integration()
        discriminator = build_discriminator(integration, {}, organization_id=uuid.uuid4())
        cli_engine.cache_store.upsert(discriminator, {"v": 1}, pull_interval=300)

        result = runner.invoke(app, ["integrations", "entries", str(integration.id)])

        assert result.exit_code == 0
        assert "Cache entries" in result.output


class TestSyncScan:
    def test_nothing_due(self, cli_engine):
        result = runner.invoke(app, ["sync", "scan"])

        assert result.exit_code == 0
        assert "Enqueued 0 stale entries" in result.output

    def test_stale_entries_polled(self, cli_engine, make_integration, frozen_clock):
        integration = make_integration()
        discriminator = build_discriminator(integration, {}, organization_id=uuid.uuid4())
        cli_engine.cache_store.upsert(discriminator, {"v": 1}, pull_interval=300)
        frozen_clock.advance(301)

        result = runner.invoke(app, ["sync", "scan"])

        assert result.exit_code == 0, result.output
        assert "Enqueued 1 stale entry" in result.output
        assert "Poll results" in result.output
        assert cli_engine.cache_store.get(discriminator).version == 2


OLD_SECRET = "previous-secret-key-for-cli-tests-0000001"
NEW_SECRET = "current-secret-key-for-cli-tests-00000002"
API_KEY_SCHEMA = {
    "auth_type": "api_key",
    "fields": {"api_key": {"type": "string", "required": True, "sensitive": True}},
}


class TestCredentialCommands:
    @pytest.fixture
    def stored(self, cli_engine, session_factory, frozen_clock, make_integration):
        """Two credentials under OLD_SECRET, one under a secret nobody knows any more."""
        integration = make_integration(credential_schema=API_KEY_SCHEMA)

        def vault(secret, previous=()):
            return CredentialVault(
                session_factory, key_provider=OrganizationKeyProvider(secret, list(previous)), clock=frozen_clock
            )

        for _ in range(2):
            vault(OLD_SECRET).store_credentials(integration, {"api_key": "k"}, organization_id=uuid.uuid4())
        cli_engine.vault = vault(NEW_SECRET, [OLD_SECRET])
        return vault

    def test_status(self, cli_engine, stored):
        result = runner.invoke(app, ["credentials", "status"])

        assert result.exit_code == 0, result.output
        assert "Credential encryption" in result.output
        assert cli_engine.vault.rotation_stats()["outdated"] == 2

    def test_rotate(self, cli_engine, stored):
        result = runner.invoke(app, ["credentials", "rotate", "--batch-size", "1"])

        assert result.exit_code == 0, result.output
        assert "Rotated 2" in result.output
        assert cli_engine.vault.rotation_stats() == {"current": 2, "outdated": 0, "unreadable": 0, "total": 2}

    def test_rotate_reports_unreadable(self, cli_engine, stored, make_integration):
        stranger = make_integration(credential_schema=API_KEY_SCHEMA)
        stored("unrelated-secret-key-for-cli-tests-00003").store_credentials(
            stranger, {"api_key": "k"}, organization_id=uuid.uuid4()
        )

        result = runner.invoke(app, ["credentials", "rotate"])

        assert result.exit_code == 1
        assert "Rotated 2" in result.output
        assert "1 unreadable" in result.output
        assert "need to be reconnected" in result.output

    def test_rotate_in_background(self, cli_engine):
        with patch.object(tasks, "rotate_credential_encryption_task") as task:
            result = runner.invoke(app, ["credentials", "rotate", "--background", "--batch-size", "50"])

        assert result.exit_code == 0, result.output
        assert "Credential rotation queued" in result.output
        task.delay.assert_called_once_with(50)
