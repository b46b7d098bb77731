"""
Unit tests for discriminator construction.
"""
import uuid

import pytest

from app.core.exceptions import SchemaValidationError
from app.integrations.discriminator import Discriminator, build_discriminator, options_digest
from app.models.enums import DiscriminatorType
from app.models.integration import IntegrationDefinition


def make_definition(discriminator_type="organization", keys=None, auth_type="none"):
    return IntegrationDefinition(
        id=uuid.uuid4(),
        widget_type="rss",
        name="RSS",
        mode="pull",
        discriminator_type=discriminator_type,
        discriminator_keys=keys or [],
        credential_schema={"auth_type": auth_type},
        fetcher="rss",
        pull_interval_seconds=300,
    )


class TestBuildDiscriminator:
    def test_organization(self):
        org = uuid.uuid4()
        discriminator = build_discriminator(make_definition(), {"city": "Berlin"}, organization_id=org)

        assert discriminator.kind == DiscriminatorType.ORGANIZATION
        assert discriminator.key == f"org-{org}"
        assert discriminator.options == {"city": "Berlin"}

    def test_organization_requires_org(self):
        with pytest.raises(SchemaValidationError):
            build_discriminator(make_definition(), {}, widget_instance_id=uuid.uuid4())

    def test_widget(self):
        widget = uuid.uuid4()
        discriminator = build_discriminator(
            make_definition("widget"), {}, organization_id=uuid.uuid4(), widget_instance_id=widget
        )

        assert discriminator.key == f"widget-{widget}"
        assert discriminator.widget_instance_id == widget

    def test_widget_requires_widget_instance(self):
        with pytest.raises(SchemaValidationError):
            build_discriminator(make_definition("widget"), {}, organization_id=uuid.uuid4())

    def test_widget_option_shared_across_organizations_without_credentials(self):
        definition = make_definition("widget_option", ["feed_url"])
        options = {"feed_url": "https://example.com/feed.xml", "max_items": 5}

        first = build_discriminator(definition, options, organization_id=uuid.uuid4(), widget_instance_id=uuid.uuid4())
        second = build_discriminator(
            definition, {**options, "max_items": 20}, organization_id=uuid.uuid4(), widget_instance_id=uuid.uuid4()
        )

        assert first.key == second.key
        assert first.key.startswith("opt-")
        assert first.options == {"feed_url": "https://example.com/feed.xml"}
        assert first.organization_id is None
        assert first.widget_instance_id is None

    def test_widget_option_differs_by_keyed_value(self):
        definition = make_definition("widget_option", ["feed_url"])

        first = build_discriminator(definition, {"feed_url": "https://a.example/rss"})
        second = build_discriminator(definition, {"feed_url": "https://b.example/rss"})

        assert first.key != second.key

    def test_widget_option_with_credentials_is_per_organization(self):
        definition = make_definition("widget_option", ["symbols"], auth_type="api_key")
        options = {"symbols": "AAPL"}

        first = build_discriminator(definition, options, organization_id=uuid.uuid4())
        second = build_discriminator(definition, options, organization_id=uuid.uuid4())

        assert first.key != second.key
        assert first.organization_id is not None

    def test_widget_option_with_credentials_requires_org(self):
        definition = make_definition("widget_option", ["symbols"], auth_type="api_key")

        with pytest.raises(SchemaValidationError):
            build_discriminator(definition, {"symbols": "AAPL"})


class TestOptionsDigest:
    def test_key_order_does_not_matter(self):
        assert options_digest({"a": 1, "b": 2}, ["a", "b"]) == options_digest({"b": 2, "a": 1}, ["b", "a"])

    def test_unkeyed_options_ignored(self):
        assert options_digest({"a": 1, "z": 9}, ["a"]) == options_digest({"a": 1}, ["a"])


class TestPayload:
    def test_roundtrip_for_task_queue(self):
        discriminator = Discriminator(
            integration_id=uuid.uuid4(),
            kind=DiscriminatorType.WIDGET,
            key="widget-1",
            organization_id=uuid.uuid4(),
            widget_instance_id=uuid.uuid4(),
            options={"city": "Oslo"},
        )

        restored = Discriminator.from_payload(discriminator.to_payload())

        assert restored == discriminator
        assert restored.options == {"city": "Oslo"}

    def test_scope_id(self):
        integration_id = uuid.uuid4()
        discriminator = Discriminator(integration_id=integration_id, kind=DiscriminatorType.ORGANIZATION, key="org-1")

        assert discriminator.scope_id == f"{integration_id}.org-1"
