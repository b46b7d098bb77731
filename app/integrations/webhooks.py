"""
Webhook receiver for push integrations.

A webhook is addressed by (integration_id, widget_instance_id). The request
is authenticated according to ``push_config.auth_method`` before anything
else is read; a failure raises SignatureError and never touches the cache.

push_config:
    auth_method: hmac (default) | api_key | ip_allowlist
    signature_header: header carrying the hex HMAC-SHA256 of the raw body
        (default X-Webhook-Signature; an optional "sha256=" prefix is accepted)
    api_key_header: header carrying the API key (default X-API-Key)
    allowed_ips: addresses or CIDR networks for ip_allowlist
    transform: name of an entry in WEBHOOK_TRANSFORMS
    mapping: path mapping applied to the body (see transform.py)

The HMAC secret is the credential field ``webhook_secret``; the API key is the
credential field ``api_key``.
"""
import ipaddress
import json
import logging
import uuid
from typing import Any, Callable, Dict, Mapping, Optional

from sqlmodel import Session

from app.core.database import get_session_context
from app.core.exceptions import (
    IntegrationModeError,
    IntegrationNotFoundError,
    SchemaValidationError,
    SignatureError,
    WidgetInstanceNotFoundError,
)
from app.core.logging_config import log_webhook
from app.core.signing import constant_time_equals, verify_body_signature
from app.core.time_utils import Clock, utc_now
from app.integrations.cache_store import CacheStore
from app.integrations.discriminator import for_widget_instance
from app.integrations.transform import PathError, apply_mapping, as_object
from app.models.cache_entry import IntegrationData
from app.models.enums import CredentialScope, DataStatus, WebhookAuthMethod
from app.models.integration import IntegrationDefinition
from app.models.widget_instance import WidgetInstance

DEFAULT_SIGNATURE_HEADER = "X-Webhook-Signature"
DEFAULT_API_KEY_HEADER = "X-API-Key"


def _data_member(body: Any) -> Dict[str, Any]:
    if isinstance(body, dict) and isinstance(body.get("data"), dict):
        return body["data"]
    return as_object(body)


def _event_payload(body: Any) -> Dict[str, Any]:
    """Unwrap ``{"event": ..., "payload": {...}}`` envelopes, keeping the event name."""
    if not isinstance(body, dict) or not isinstance(body.get("payload"), dict):
        return as_object(body)
    return {**body["payload"], "event": body.get("event")}


WEBHOOK_TRANSFORMS: Dict[str, Callable[[Any], Dict[str, Any]]] = {
    "body": as_object,
    "data": _data_member,
    "event_payload": _event_payload,
}


def _ip_allowed(client_ip: Optional[str], allowed: list) -> bool:
    if not client_ip:
        return False
    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        return False
    for entry in allowed:
        try:
            if address in ipaddress.ip_network(str(entry), strict=False):
                return True
        except ValueError:
            continue
    return False


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


class WebhookReceiver:
    """Authenticates push payloads and writes them through CacheStore.upsert."""

    def __init__(
        self,
        registry,
        vault,
        cache_store: CacheStore,
        session_factory: Callable[[], Session] = get_session_context,
        clock: Clock = utc_now,
    ):
        self.registry = registry
        self.vault = vault
        self.cache_store = cache_store
        self._session_factory = session_factory
        self._clock = clock

    def _load_instance(self, integration: IntegrationDefinition, widget_instance_id: uuid.UUID) -> WidgetInstance:
        with self._session_factory() as session:
            instance = session.get(WidgetInstance, widget_instance_id)
        if instance is None or instance.widget_type != integration.widget_type:
            raise WidgetInstanceNotFoundError(f"Widget instance {widget_instance_id} not found for this integration")
        return instance

    def _credential_values(self, integration: IntegrationDefinition, instance: WidgetInstance) -> Dict[str, Any]:
        if CredentialScope(integration.credential_scope) == CredentialScope.WIDGET:
            credential = self.vault.get_credential(integration.id, widget_instance_id=instance.id)
        else:
            credential = self.vault.get_credential(integration.id, organization_id=instance.organization_id)
        if credential is None or not credential.is_valid:
            return {}
        return self.vault.load_values(
            integration.id,
            organization_id=credential.organization_id,
            widget_instance_id=credential.widget_instance_id,
        ) or {}

    def authenticate(
        self,
        integration: IntegrationDefinition,
        instance: WidgetInstance,
        body: bytes,
        headers: Mapping[str, str],
        client_ip: Optional[str],
    ) -> None:
        """
        Raises:
            SignatureError: If the request does not pass the configured check
        """
        push_config = integration.push_config or {}
        method = WebhookAuthMethod(push_config.get("auth_method", WebhookAuthMethod.HMAC.value))

        if method == WebhookAuthMethod.IP_ALLOWLIST:
            if not _ip_allowed(client_ip, push_config.get("allowed_ips") or []):
                raise SignatureError("Source address is not allowed")
            return

        values = self._credential_values(integration, instance)
        if method == WebhookAuthMethod.API_KEY:
            expected = values.get("api_key")
            provided = _header(headers, push_config.get("api_key_header", DEFAULT_API_KEY_HEADER))
            if not expected or not constant_time_equals(str(expected), provided):
                raise SignatureError("Invalid API key")
            return

        secret = values.get("webhook_secret")
        signature = _header(headers, push_config.get("signature_header", DEFAULT_SIGNATURE_HEADER))
        if not secret or not verify_body_signature(body, signature, str(secret)):
            raise SignatureError("Invalid webhook signature")

    @staticmethod
    def transform(integration: IntegrationDefinition, body: Any) -> Dict[str, Any]:
        push_config = integration.push_config or {}
        name = push_config.get("transform")
        if name:
            return WEBHOOK_TRANSFORMS[name](body)
        if push_config.get("mapping"):
            try:
                return apply_mapping(body, push_config["mapping"])
            except PathError as e:
                raise SchemaValidationError(f"Webhook body does not match mapping: {e}") from e
        return _data_member(body)

    def receive(
        self,
        integration_id: uuid.UUID,
        widget_instance_id: uuid.UUID,
        body: bytes,
        headers: Mapping[str, str],
        client_ip: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> IntegrationData:
        """
        Authenticate, transform and store a push payload.

        Raises:
            IntegrationNotFoundError: Unknown or inactive integration
            IntegrationModeError: Integration is not in push mode
            WidgetInstanceNotFoundError: Unknown widget instance
            SignatureError: Authentication failed
            SchemaValidationError: Body is not JSON or does not fit the mapping
        """
        integration = self.registry.get(integration_id)
        if not integration.is_active:
            raise IntegrationNotFoundError(f"Integration {integration_id} is not active")
        if not integration.is_push:
            raise IntegrationModeError("This integration does not accept webhooks")

        instance = self._load_instance(integration, widget_instance_id)

        try:
            self.authenticate(integration, instance, body, headers, client_ip)
        except SignatureError:
            log_webhook(
                "Webhook authentication failed",
                level=logging.WARNING,
                request_id=request_id,
                integration_id=str(integration_id),
                widget_instance_id=str(widget_instance_id),
            )
            raise

        try:
            payload = json.loads(body or b"{}")
        except ValueError as e:
            raise SchemaValidationError("Webhook body must be JSON") from e

        data = self.transform(integration, payload)
        options = self.registry.validate_options(integration, instance.options)
        discriminator = for_widget_instance(integration, instance, options)
        entry = self.cache_store.upsert(discriminator, data, DataStatus.SUCCESS)
        log_webhook(
            "Webhook stored",
            request_id=request_id,
            integration_id=str(integration_id),
            discriminator=discriminator.key,
            version=entry.version,
        )
        return entry
