"""
Operator flows that span several engine components.

- test_fetch: run an integration's fetcher once without persisting anything
- start_oauth / complete_oauth: OAuth 2.0 authorization-code connect flow

The connect flow expects the operator to have stored ``client_id`` and
``client_secret`` for the scope first. The callback merges the issued tokens
into those values and stores them through the vault.
"""
import uuid
from typing import Any, Dict, Optional

from app.core.exceptions import CredentialError, IntegrationModeError
from app.core.logging_config import log_info
from app.integrations import oauth
from app.integrations.engine import SyncEngine
from app.integrations.fetchers.base import FetchContext, FetchResult
from app.integrations.field_schema import validate_values
from app.models.credential import IntegrationCredential
from app.models.enums import DiscriminatorType


async def test_fetch(
    engine: SyncEngine,
    integration_id: uuid.UUID,
    credentials: Dict[str, Any],
    options: Dict[str, Any],
) -> FetchResult:
    """
    Call the fetcher once with operator-supplied values.

    Raises:
        IntegrationModeError: If the integration is push-only
        SchemaValidationError: If credentials or options do not match their schemas
    """
    integration = engine.registry.get(integration_id)
    if not integration.is_pull:
        raise IntegrationModeError("Only pull integrations can be test fetched")

    schema = engine.registry.credential_schema(integration)
    values = validate_values(schema.fields, credentials)
    validated_options = engine.registry.validate_options(integration, options)
    fetcher = engine.registry.resolve_fetcher(integration)

    http = await engine.poller.http_client()
    context = FetchContext(
        integration=integration,
        http=http,
        clock=engine.clock,
        refresh_margin_seconds=oauth.refresh_margin_for(schema.oauth2),
    )
    # Shared entries fetch with the keyed option subset only
    if integration.discriminator_type == DiscriminatorType.WIDGET_OPTION:
        validated_options = {key: validated_options.get(key) for key in integration.discriminator_keys or []}
    result = await fetcher.fetch(values, validated_options, context)
    log_info("Test fetch finished", integration_id=str(integration_id), ok=result.ok)
    return result


def _stored_client(
    engine: SyncEngine,
    integration_id: uuid.UUID,
    organization_id: Optional[uuid.UUID],
    widget_instance_id: Optional[uuid.UUID],
) -> Dict[str, Any]:
    values = engine.vault.load_values(integration_id, organization_id, widget_instance_id) or {}
    if not values.get("client_id") or not values.get("client_secret"):
        raise CredentialError("Store client_id and client_secret for this scope before connecting")
    return values


def start_oauth(
    engine: SyncEngine,
    integration_id: uuid.UUID,
    redirect_uri: str,
    organization_id: Optional[uuid.UUID] = None,
    widget_instance_id: Optional[uuid.UUID] = None,
) -> Dict[str, str]:
    """
    Build the provider authorization URL and its signed state.

    Raises:
        CredentialError: If the integration has no OAuth config or no client is stored
    """
    integration = engine.registry.get(integration_id)
    config = oauth.get_oauth_config(integration)
    values = _stored_client(engine, integration.id, organization_id, widget_instance_id)
    state = oauth.create_state(
        integration.id,
        redirect_uri,
        organization_id=organization_id,
        widget_instance_id=widget_instance_id,
        now=engine.clock().timestamp(),
    )
    return {
        "authorization_url": oauth.build_authorization_url(config, values["client_id"], redirect_uri, state),
        "state": state,
    }


async def complete_oauth(engine: SyncEngine, code: str, state: str) -> IntegrationCredential:
    """
    Exchange the authorization code and store the resulting tokens.

    Raises:
        CredentialError: On an invalid or expired state, or a rejected code
    """
    payload = oauth.parse_state(state, now=engine.clock().timestamp())
    integration = engine.registry.get(uuid.UUID(payload["integration_id"]))
    organization_id = uuid.UUID(payload["organization_id"]) if payload.get("organization_id") else None
    widget_instance_id = uuid.UUID(payload["widget_instance_id"]) if payload.get("widget_instance_id") else None

    config = oauth.get_oauth_config(integration)
    values = _stored_client(engine, integration.id, organization_id, widget_instance_id)
    http = await engine.poller.http_client()
    tokens = await oauth.exchange_code(
        http,
        config,
        code,
        values["client_id"],
        values["client_secret"],
        payload["redirect_uri"],
        clock=engine.clock,
    )
    credential = engine.vault.store_credentials(
        integration,
        {**values, **tokens},
        organization_id=organization_id,
        widget_instance_id=widget_instance_id,
    )
    log_info("OAuth connection completed", integration_id=str(integration.id))
    return credential
