"""
Widget data and refresh endpoints.
"""
import uuid

import pytest

from app.integrations.discriminator import for_widget_instance


@pytest.fixture
def integration(make_integration):
    return make_integration(config_schema={"city": {"type": "string", "default": "Oslo"}})


@pytest.fixture
def widget(make_widget):
    return make_widget(options={"city": "Bergen"})


def seed(sync_engine, integration, widget, data):
    options = sync_engine.registry.validate_options(integration, widget.options)
    discriminator = for_widget_instance(integration, widget, options)
    return sync_engine.cache_store.upsert(discriminator, data, pull_interval=integration.pull_interval_seconds)


class TestGetWidgetData:
    """GET /widget-instances/{id}/data"""

    def test_served_from_cache(self, client, api, sync_engine, integration, widget):
        seed(sync_engine, integration, widget, {"temp": 4})

        response = client.get(api(f"/widget-instances/{widget.id}/data"))

        assert response.status_code == 200
        body = response.json()
        assert body["data"] == {"temp": 4}
        assert body["version"] == 1
        assert body["status"] == "success"
        assert body["fetched_at"] is not None

    def test_not_modified_for_current_version(self, client, api, sync_engine, integration, widget):
        seed(sync_engine, integration, widget, {"temp": 4})
        seed(sync_engine, integration, widget, {"temp": 5})

        current = client.get(api(f"/widget-instances/{widget.id}/data"), params={"version": 2})
        older = client.get(api(f"/widget-instances/{widget.id}/data"), params={"version": 1})

        assert current.status_code == 304
        assert current.headers["etag"] == '"2"'
        assert older.status_code == 200
        assert older.json()["data"] == {"temp": 5}

    def test_cold_cache_queues_poll(self, client, api, sync_engine, integration, widget):
        response = client.get(api(f"/widget-instances/{widget.id}/data"))

        assert response.status_code == 404
        assert response.json()["detail"] == "No data available yet"
        assert sync_engine.scheduler.pending == 1

    def test_unknown_widget(self, client, api, integration):
        response = client.get(api(f"/widget-instances/{uuid.uuid4()}/data"))

        assert response.status_code == 404
        assert response.json()["error"] == "WidgetInstanceNotFoundError"
        assert "request_id" in response.json()

    def test_invalid_widget_options(self, client, api, integration, make_widget):
        widget = make_widget(options={"city": 12})

        response = client.get(api(f"/widget-instances/{widget.id}/data"))

        assert response.status_code == 422
        assert response.json()["error"] == "SchemaValidationError"
        assert response.json()["errors"]

    @pytest.mark.parametrize("version", [-1, 0, 99])
    def test_any_other_version_served(self, client, api, sync_engine, integration, widget, version):
        seed(sync_engine, integration, widget, {"temp": 4})

        response = client.get(api(f"/widget-instances/{widget.id}/data"), params={"version": version})

        assert response.status_code == 200
        assert response.json()["version"] == 1
        assert response.json()["data"] == {"temp": 4}

    def test_non_integer_version_rejected(self, client, api, widget):
        response = client.get(api(f"/widget-instances/{widget.id}/data"), params={"version": "latest"})

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"


class TestRefresh:
    """POST /widget-instances/{id}/refresh"""

    def test_refresh_enqueues_once(self, client, api, sync_engine, integration, widget):
        first = client.post(api(f"/widget-instances/{widget.id}/refresh"))
        second = client.post(api(f"/widget-instances/{widget.id}/refresh"))

        assert first.status_code == 202
        assert first.json()["enqueued"] is True
        assert first.json()["integration_id"] == str(integration.id)
        assert first.json()["discriminator"] == f"org-{widget.organization_id}"
        assert second.json()["enqueued"] is False
        assert sync_engine.scheduler.pending == 1

    def test_refresh_push_integration(self, client, api, make_integration, make_widget):
        make_integration(
            widget_type="deploys",
            mode="push",
            fetcher=None,
            pull_interval_seconds=None,
            push_path="/hooks/deploys",
        )
        widget = make_widget(widget_type="deploys")

        response = client.post(api(f"/widget-instances/{widget.id}/refresh"))

        assert response.status_code == 400
        assert response.json()["error"] == "IntegrationModeError"
