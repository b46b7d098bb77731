"""
Cache-sharing keys.

A discriminator decides how broadly one fetched payload is shared:

    organization   org-<organization_id>       every widget in the organization
    widget         widget-<widget_instance_id> one widget instance
    widget_option  opt-<sha256>                every widget with the same option subset

It also carries what a poll needs to run without the request that created
it: the owning organization and widget instance (for credential lookup) and
the fetch options.
"""
import hashlib
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from app.core.exceptions import SchemaValidationError
from app.models.cache_entry import IntegrationData
from app.models.enums import AuthType, DiscriminatorType
from app.models.integration import IntegrationDefinition
from app.models.widget_instance import WidgetInstance


@dataclass(frozen=True)
class Discriminator:
    integration_id: uuid.UUID
    kind: DiscriminatorType
    key: str
    organization_id: Optional[uuid.UUID] = None
    widget_instance_id: Optional[uuid.UUID] = None
    options: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def scope_id(self) -> str:
        """Identifier used for dedupe and lock keys."""
        return f"{self.integration_id}.{self.key}"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "integration_id": str(self.integration_id),
            "kind": DiscriminatorType(self.kind).value,
            "key": self.key,
            "organization_id": str(self.organization_id) if self.organization_id else None,
            "widget_instance_id": str(self.widget_instance_id) if self.widget_instance_id else None,
            "options": self.options,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Discriminator":
        return cls(
            integration_id=uuid.UUID(payload["integration_id"]),
            kind=DiscriminatorType(payload["kind"]),
            key=payload["key"],
            organization_id=uuid.UUID(payload["organization_id"]) if payload.get("organization_id") else None,
            widget_instance_id=uuid.UUID(payload["widget_instance_id"]) if payload.get("widget_instance_id") else None,
            options=payload.get("options") or {},
        )


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def options_digest(options: Dict[str, Any], keys: list[str], organization_id: Optional[uuid.UUID] = None) -> str:
    """
    sha256 over the canonical JSON of the option subset.

    When the integration needs credentials the owning organization is part of
    the digest, so payloads fetched with one organization's secret are never
    served to another.
    """
    material: Dict[str, Any] = {"options": {key: options.get(key) for key in sorted(keys)}}
    if organization_id is not None:
        material["organization_id"] = str(organization_id)
    return hashlib.sha256(canonical_json(material).encode("utf-8")).hexdigest()


def build_discriminator(
    integration: IntegrationDefinition,
    options: Dict[str, Any],
    organization_id: Optional[uuid.UUID] = None,
    widget_instance_id: Optional[uuid.UUID] = None,
) -> Discriminator:
    """
    Build the discriminator for one consumer of an integration.

    ``options`` must already be validated against the integration's
    config_schema.

    Raises:
        SchemaValidationError: If the scope the discriminator needs is missing
    """
    kind = DiscriminatorType(integration.discriminator_type)

    if kind == DiscriminatorType.ORGANIZATION:
        if organization_id is None:
            raise SchemaValidationError("organization_id is required for organization-shared integrations")
        return Discriminator(
            integration_id=integration.id,
            kind=kind,
            key=f"org-{organization_id}",
            organization_id=organization_id,
            widget_instance_id=widget_instance_id,
            options=dict(options),
        )

    if kind == DiscriminatorType.WIDGET:
        if widget_instance_id is None:
            raise SchemaValidationError("widget_instance_id is required for widget-scoped integrations")
        return Discriminator(
            integration_id=integration.id,
            kind=kind,
            key=f"widget-{widget_instance_id}",
            organization_id=organization_id,
            widget_instance_id=widget_instance_id,
            options=dict(options),
        )

    keys = list(integration.discriminator_keys or [])
    subset = {key: options.get(key) for key in keys}
    needs_credentials = AuthType(integration.auth_type) != AuthType.NONE
    if needs_credentials and organization_id is None:
        raise SchemaValidationError("organization_id is required for integrations with credentials")
    digest = options_digest(options, keys, organization_id if needs_credentials else None)
    return Discriminator(
        integration_id=integration.id,
        kind=kind,
        key=f"opt-{digest}",
        # The entry is shared, so only the keyed options drive the fetch
        organization_id=organization_id if needs_credentials else None,
        widget_instance_id=None,
        options=subset,
    )


def for_widget_instance(
    integration: IntegrationDefinition,
    widget_instance: WidgetInstance,
    options: Dict[str, Any],
) -> Discriminator:
    return build_discriminator(
        integration,
        options,
        organization_id=widget_instance.organization_id,
        widget_instance_id=widget_instance.id,
    )


def from_cache_entry(integration: IntegrationDefinition, entry: IntegrationData) -> Discriminator:
    """Rebuild the discriminator that wrote ``entry`` so it can be re-polled."""
    return Discriminator(
        integration_id=entry.integration_id,
        kind=DiscriminatorType(integration.discriminator_type),
        key=entry.discriminator_key,
        organization_id=entry.organization_id,
        widget_instance_id=entry.widget_instance_id,
        options=dict(entry.fetch_options or {}),
    )
