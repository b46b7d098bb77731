"""
Celery task bodies, run in-process against the test engine.
"""
import uuid
from unittest.mock import patch

import pytest

from app.core.encryption import OrganizationKeyProvider
from app.integrations import tasks
from app.integrations.vault import CredentialVault

OLD_SECRET = "previous-secret-key-for-task-tests-000001"
NEW_SECRET = "current-secret-key-for-task-tests-0000002"

API_KEY_SCHEMA = {
    "auth_type": "api_key",
    "fields": {"api_key": {"type": "string", "required": True, "sensitive": True}},
}


@pytest.fixture
def rotating_engine(sync_engine, session_factory, frozen_clock, make_integration):
    """Three credentials written under OLD_SECRET; the engine's vault now uses NEW_SECRET."""
    integration = make_integration(credential_schema=API_KEY_SCHEMA)
    old_vault = CredentialVault(session_factory, key_provider=OrganizationKeyProvider(OLD_SECRET, []), clock=frozen_clock)
    for n in range(3):
        old_vault.store_credentials(integration, {"api_key": f"KEY_{n}"}, organization_id=uuid.uuid4())

    sync_engine.vault = CredentialVault(
        session_factory,
        key_provider=OrganizationKeyProvider(NEW_SECRET, [OLD_SECRET]),
        clock=frozen_clock,
    )
    with patch.object(tasks, "get_worker_engine", return_value=sync_engine):
        yield sync_engine


class TestRotateCredentialEncryptionTask:
    def test_full_batch_queues_next_batch(self, rotating_engine):
        task = tasks.rotate_credential_encryption_task

        with patch.object(tasks, "rotate_credential_encryption_task") as queued:
            result = task(2)

        assert result["rotated"] == 2
        assert result["next_after_id"] is not None
        queued.delay.assert_called_once_with(2, result["next_after_id"])

    def test_last_batch_stops(self, rotating_engine):
        task = tasks.rotate_credential_encryption_task
        with patch.object(tasks, "rotate_credential_encryption_task"):
            first = task(2)

        with patch.object(tasks, "rotate_credential_encryption_task") as queued:
            result = task(2, first["next_after_id"])

        assert result == {"rotated": 1, "skipped": 0, "errors": 0, "next_after_id": None}
        queued.delay.assert_not_called()
        assert rotating_engine.vault.rotation_stats()["current"] == 3

    def test_default_batch_size_covers_everything(self, rotating_engine):
        task = tasks.rotate_credential_encryption_task

        with patch.object(tasks, "rotate_credential_encryption_task") as queued:
            result = task()

        assert result["rotated"] == 3
        queued.delay.assert_not_called()
