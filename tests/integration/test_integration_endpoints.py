"""
Operator endpoints: definitions, credentials, test fetches and cache health.
"""
import uuid

import pytest

from app.integrations.discriminator import build_discriminator
from app.integrations.fetchers.base import FetchError

RSS_PAYLOAD = {
    "widget_type": "rss",
    "name": "RSS Feed",
    "mode": "pull",
    "fetcher": "rss",
    "pull_interval_seconds": 900,
    "discriminator_type": "widget_option",
    "discriminator_keys": ["feed_url"],
    "config_schema": {
        "feed_url": {"type": "url", "required": True},
        "max_items": {"type": "number", "default": 10},
    },
}

API_KEY_SCHEMA = {
    "auth_type": "api_key",
    "fields": {
        "api_key": {"type": "string", "required": True, "sensitive": True},
        "region": {"type": "string", "default": "eu"},
    },
}


class TestDefinitions:
    def test_create_and_get(self, client, api):
        created = client.post(api("/integrations"), json=RSS_PAYLOAD)

        assert created.status_code == 201
        body = created.json()
        assert body["fetcher"] == "rss"
        assert body["discriminator_keys"] == ["feed_url"]
        assert body["is_active"] is True

        fetched = client.get(api(f"/integrations/{body['id']}"))
        assert fetched.status_code == 200
        assert fetched.json()["name"] == "RSS Feed"

    def test_duplicate_name_conflicts(self, client, api):
        client.post(api("/integrations"), json=RSS_PAYLOAD)

        response = client.post(api("/integrations"), json=RSS_PAYLOAD)

        assert response.status_code == 409
        assert response.json()["error"] == "IntegrationAlreadyExistsError"

    def test_unknown_fetcher_rejected(self, client, api):
        response = client.post(api("/integrations"), json={**RSS_PAYLOAD, "fetcher": "nope"})

        assert response.status_code == 422
        assert "Unknown fetcher" in response.json()["message"]

    def test_missing_fields_rejected(self, client, api):
        response = client.post(api("/integrations"), json={"name": "x"})

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_list_filters(self, client, api, make_integration):
        make_integration(widget_type="weather", name="Weather")
        make_integration(widget_type="stocks", name="Stocks", is_active=False)

        everything = client.get(api("/integrations")).json()
        weather = client.get(api("/integrations"), params={"widget_type": "weather"}).json()
        inactive = client.get(api("/integrations"), params={"active": False}).json()

        assert len(everything) == 2
        assert [i["name"] for i in weather] == ["Weather"]
        assert [i["name"] for i in inactive] == ["Stocks"]

    def test_unknown_integration(self, client, api):
        response = client.get(api(f"/integrations/{uuid.uuid4()}"))

        assert response.status_code == 404

    def test_toggle_active(self, client, api, sync_engine, make_integration):
        integration = make_integration()

        response = client.patch(api(f"/integrations/{integration.id}/active"), json={"is_active": False})

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert not sync_engine.registry.is_active(integration.id)


class TestCredentials:
    @pytest.fixture
    def integration(self, make_integration):
        return make_integration(credential_schema=API_KEY_SCHEMA)

    def test_store_returns_metadata_only(self, client, api, integration):
        org = uuid.uuid4()

        response = client.post(
            api(f"/integrations/{integration.id}/credentials"),
            json={"credentials": {"api_key": "FAKE_KEY"}, "organization_id": str(org)},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["metadata"] == {"region": "eu"}
        assert body["organization_id"] == str(org)
        assert body["is_valid"] is True
        assert "FAKE_KEY" not in response.text

    def test_replace_keeps_single_credential(self, client, api, sync_engine, integration):
        org = uuid.uuid4()
        url = api(f"/integrations/{integration.id}/credentials")

        first = client.post(url, json={"credentials": {"api_key": "one"}, "organization_id": str(org)})
        second = client.put(url, json={"credentials": {"api_key": "two", "region": "us"}, "organization_id": str(org)})

        assert first.json()["id"] == second.json()["id"]
        assert second.json()["metadata"] == {"region": "us"}
        assert sync_engine.vault.load_values(integration.id, organization_id=org)["api_key"] == "two"

    def test_schema_violation(self, client, api, integration):
        response = client.post(
            api(f"/integrations/{integration.id}/credentials"),
            json={"credentials": {}, "organization_id": str(uuid.uuid4())},
        )

        assert response.status_code == 422
        assert response.json()["errors"]

    def test_scope_must_be_exactly_one(self, client, api, integration):
        response = client.post(
            api(f"/integrations/{integration.id}/credentials"),
            json={
                "credentials": {"api_key": "k"},
                "organization_id": str(uuid.uuid4()),
                "widget_instance_id": str(uuid.uuid4()),
            },
        )

        assert response.status_code == 400
        assert response.json()["error"] == "CredentialError"

    def test_delete(self, client, api, integration):
        org = uuid.uuid4()
        url = api(f"/integrations/{integration.id}/credentials")
        client.post(url, json={"credentials": {"api_key": "k"}, "organization_id": str(org)})

        deleted = client.delete(url, params={"organization_id": str(org)})
        again = client.delete(url, params={"organization_id": str(org)})

        assert deleted.status_code == 204
        assert again.status_code == 404


class TestTestFetch:
    def test_success(self, client, api, make_integration):
        integration = make_integration()

        response = client.post(api(f"/integrations/{integration.id}/test"), json={"options": {"city": "Oslo"}})

        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"value": 1}, "error": None, "retryable": None}

    def test_upstream_failure_reported(self, client, api, stub_fetcher, make_integration):
        integration = make_integration()
        stub_fetcher.queue(FetchError("Upstream API returned HTTP 503", status_code=503))

        response = client.post(api(f"/integrations/{integration.id}/test"), json={})

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is False
        assert body["error"] == "Upstream API returned HTTP 503"
        assert body["retryable"] is True


class TestCacheEntries:
    def test_entries_exclude_payload(self, client, api, sync_engine, make_integration):
        integration = make_integration()
        discriminator = build_discriminator(integration, {}, organization_id=uuid.uuid4())
        sync_engine.cache_store.upsert(discriminator, {"secret_ish": 1}, pull_interval=300)

        response = client.get(api(f"/integrations/{integration.id}/entries"))

        entries = response.json()
        assert response.status_code == 200
        assert len(entries) == 1
        assert entries[0]["discriminator_key"] == discriminator.key
        assert entries[0]["version"] == 1
        assert entries[0]["status"] == "success"
        assert "data" not in entries[0]


class TestOAuthEndpoints:
    def test_authorize_needs_one_scope(self, client, api, make_integration):
        integration = make_integration()

        response = client.get(
            api(f"/integrations/{integration.id}/oauth/authorize"),
            params={"redirect_uri": "https://dashboard.example.com/cb"},
        )

        assert response.status_code == 422

    def test_authorize_without_oauth_config(self, client, api, make_integration):
        integration = make_integration()

        response = client.get(
            api(f"/integrations/{integration.id}/oauth/authorize"),
            params={"redirect_uri": "https://dashboard.example.com/cb", "organization_id": str(uuid.uuid4())},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "CredentialError"

    def test_callback_with_bad_state(self, client, api):
        response = client.get(api("/integrations/oauth/callback"), params={"code": "c", "state": "forged.state"})

        assert response.status_code == 400
        assert response.json()["error"] == "CredentialError"
