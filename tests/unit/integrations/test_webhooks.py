"""
Unit tests for the webhook receiver.
"""
import json
import uuid

import pytest

from app.core.exceptions import (
    IntegrationModeError,
    IntegrationNotFoundError,
    SchemaValidationError,
    SignatureError,
    WidgetInstanceNotFoundError,
)
from app.core.signing import compute_body_signature
from app.integrations.discriminator import for_widget_instance

SECRET = "whsec-test"

HMAC_SCHEMA = {
    "auth_type": "custom",
    "fields": {"webhook_secret": {"type": "string", "required": True, "sensitive": True}},
}
API_KEY_SCHEMA = {
    "auth_type": "api_key",
    "fields": {"api_key": {"type": "string", "required": True, "sensitive": True}},
}


@pytest.fixture
def make_push(make_integration):
    def _create(push_config=None, credential_schema=HMAC_SCHEMA, **overrides):
        return make_integration(
            widget_type="deploys",
            mode="push",
            fetcher=None,
            pull_interval_seconds=None,
            push_path="/hooks/deploys",
            push_config=push_config or {},
            credential_schema=credential_schema,
            **overrides,
        )

    return _create


@pytest.fixture
def org():
    return uuid.uuid4()


@pytest.fixture
def widget(make_widget, org):
    return make_widget(widget_type="deploys", organization_id=org)


def signed(payload):
    body = json.dumps(payload).encode()
    return body, {"X-Webhook-Signature": compute_body_signature(body, SECRET)}


class TestHmac:
    def setup_method(self):
        self.payload = {"data": {"status": "green", "build": 42}}

    def test_valid_signature_stored(self, sync_engine, make_push, widget, org):
        integration = make_push()
        sync_engine.vault.store_credentials(integration, {"webhook_secret": SECRET}, organization_id=org)
        body, headers = signed(self.payload)

        entry = sync_engine.webhooks.receive(integration.id, widget.id, body, headers)

        assert entry.version == 1
        assert entry.data == {"status": "green", "build": 42}
        assert entry.refresh_at is None

    def test_each_push_bumps_version(self, sync_engine, make_push, widget, org):
        integration = make_push()
        sync_engine.vault.store_credentials(integration, {"webhook_secret": SECRET}, organization_id=org)

        sync_engine.webhooks.receive(integration.id, widget.id, *signed(self.payload))
        entry = sync_engine.webhooks.receive(integration.id, widget.id, *signed({"data": {"status": "red"}}))

        assert entry.version == 2
        assert entry.data == {"status": "red"}

    def test_invalid_signature_leaves_cache_untouched(self, sync_engine, make_push, widget, org):
        integration = make_push()
        sync_engine.vault.store_credentials(integration, {"webhook_secret": SECRET}, organization_id=org)
        sync_engine.webhooks.receive(integration.id, widget.id, *signed(self.payload))
        body = json.dumps({"data": {"status": "forged"}}).encode()

        with pytest.raises(SignatureError):
            sync_engine.webhooks.receive(integration.id, widget.id, body, {"X-Webhook-Signature": "0" * 64})

        discriminator = for_widget_instance(integration, widget, {})
        entry = sync_engine.cache_store.get(discriminator)
        assert entry.version == 1
        assert entry.data == {"status": "green", "build": 42}

    def test_missing_secret_rejected(self, sync_engine, make_push, widget):
        integration = make_push()
        body, headers = signed(self.payload)

        with pytest.raises(SignatureError):
            sync_engine.webhooks.receive(integration.id, widget.id, body, headers)

    def test_custom_signature_header(self, sync_engine, make_push, widget, org):
        integration = make_push(push_config={"signature_header": "X-Hub-Signature-256"})
        sync_engine.vault.store_credentials(integration, {"webhook_secret": SECRET}, organization_id=org)
        body = json.dumps(self.payload).encode()
        headers = {"X-Hub-Signature-256": "sha256=" + compute_body_signature(body, SECRET)}

        entry = sync_engine.webhooks.receive(integration.id, widget.id, body, headers)

        assert entry.version == 1

    def test_signature_checked_before_json_parsing(self, sync_engine, make_push, widget, org):
        integration = make_push()
        sync_engine.vault.store_credentials(integration, {"webhook_secret": SECRET}, organization_id=org)

        with pytest.raises(SignatureError):
            sync_engine.webhooks.receive(integration.id, widget.id, b"not json", {})

    def test_invalid_json_rejected(self, sync_engine, make_push, widget, org):
        integration = make_push()
        sync_engine.vault.store_credentials(integration, {"webhook_secret": SECRET}, organization_id=org)
        body = b"not json"

        with pytest.raises(SchemaValidationError):
            sync_engine.webhooks.receive(
                integration.id, widget.id, body, {"X-Webhook-Signature": compute_body_signature(body, SECRET)}
            )


class TestOtherAuthMethods:
    def test_api_key(self, sync_engine, make_push, widget, org):
        integration = make_push(push_config={"auth_method": "api_key"}, credential_schema=API_KEY_SCHEMA)
        sync_engine.vault.store_credentials(integration, {"api_key": "k-123"}, organization_id=org)
        body = json.dumps({"data": {"ok": True}}).encode()

        entry = sync_engine.webhooks.receive(integration.id, widget.id, body, {"X-API-Key": "k-123"})

        assert entry.data == {"ok": True}
        with pytest.raises(SignatureError):
            sync_engine.webhooks.receive(integration.id, widget.id, body, {"X-API-Key": "wrong"})

    def test_ip_allowlist(self, sync_engine, make_push, widget):
        integration = make_push(
            push_config={"auth_method": "ip_allowlist", "allowed_ips": ["10.0.0.0/8", "192.168.1.5"]},
            credential_schema={"auth_type": "none"},
        )
        body = json.dumps({"data": {"ok": True}}).encode()

        assert sync_engine.webhooks.receive(integration.id, widget.id, body, {}, client_ip="10.1.2.3").version == 1
        assert sync_engine.webhooks.receive(integration.id, widget.id, body, {}, client_ip="192.168.1.5").version == 2
        with pytest.raises(SignatureError):
            sync_engine.webhooks.receive(integration.id, widget.id, body, {}, client_ip="172.16.0.1")
        with pytest.raises(SignatureError):
            sync_engine.webhooks.receive(integration.id, widget.id, body, {}, client_ip=None)


class TestTransforms:
    def receive(self, sync_engine, integration, widget, payload):
        return sync_engine.webhooks.receive(
            integration.id, widget.id, json.dumps(payload).encode(), {}, client_ip="127.0.0.1"
        )

    def make(self, make_push, **push_config):
        return make_push(
            push_config={"auth_method": "ip_allowlist", "allowed_ips": ["127.0.0.1"], **push_config},
            credential_schema={"auth_type": "none"},
        )

    def test_body_transform_keeps_everything(self, sync_engine, make_push, widget):
        integration = self.make(make_push, transform="body")

        entry = self.receive(sync_engine, integration, widget, {"data": {"a": 1}, "meta": "x"})

        assert entry.data == {"data": {"a": 1}, "meta": "x"}

    def test_event_payload_transform(self, sync_engine, make_push, widget):
        integration = self.make(make_push, transform="event_payload")

        entry = self.receive(sync_engine, integration, widget, {"event": "deploy", "payload": {"sha": "abc"}})

        assert entry.data == {"sha": "abc", "event": "deploy"}

    def test_mapping(self, sync_engine, make_push, widget):
        integration = self.make(make_push, mapping={"state": "deployment.status", "by": "sender.login"})

        entry = self.receive(
            sync_engine, integration, widget, {"deployment": {"status": "ok"}, "sender": {"login": "octo"}}
        )

        assert entry.data == {"state": "ok", "by": "octo"}

    def test_default_without_data_member_keeps_body(self, sync_engine, make_push, widget):
        integration = self.make(make_push)

        entry = self.receive(sync_engine, integration, widget, {"status": "ok"})

        assert entry.data == {"status": "ok"}


class TestRouting:
    def test_pull_integration_rejected(self, sync_engine, make_integration, make_widget):
        integration = make_integration()
        widget = make_widget()

        with pytest.raises(IntegrationModeError):
            sync_engine.webhooks.receive(integration.id, widget.id, b"{}", {})

    def test_inactive_integration_not_found(self, sync_engine, make_push, widget):
        integration = make_push()
        sync_engine.registry.set_active(integration.id, False)

        with pytest.raises(IntegrationNotFoundError):
            sync_engine.webhooks.receive(integration.id, widget.id, b"{}", {})

    def test_unknown_integration(self, sync_engine, widget):
        with pytest.raises(IntegrationNotFoundError):
            sync_engine.webhooks.receive(uuid.uuid4(), widget.id, b"{}", {})

    def test_widget_of_other_type_rejected(self, sync_engine, make_push, make_widget):
        integration = make_push()
        other = make_widget(widget_type="weather")

        with pytest.raises(WidgetInstanceNotFoundError):
            sync_engine.webhooks.receive(integration.id, other.id, b"{}", {})

    def test_unknown_widget_rejected(self, sync_engine, make_push):
        integration = make_push()

        with pytest.raises(WidgetInstanceNotFoundError):
            sync_engine.webhooks.receive(integration.id, uuid.uuid4(), b"{}", {})
