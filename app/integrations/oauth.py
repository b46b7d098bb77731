"""
OAuth 2.0 support for integrations.

Two concerns live here:

1. Token rotation during fetches. Before the primary call a fetcher asks
   ensure_fresh_token() whether the access token expires within the refresh
   margin. If so the token endpoint is called and the new access/refresh
   tokens and ``expires_at`` are merged into the credentials, which the
   fetcher returns with its result. A failed refresh raises StaleCredential.

2. The authorization-code connect flow: a signed, time-limited ``state``
   token binds the redirect to the integration and the scope that started
   it, and exchange_code() trades the code for tokens.

Credential layout (all in the encrypted credential):
    client_id, client_secret, access_token, refresh_token, expires_at (unix seconds)
"""
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx

from app.core.config import settings
from app.core.exceptions import CredentialError, StaleCredential
from app.core.logging_config import log_info, log_warning
from app.core.signing import sign_state, verify_state
from app.core.time_utils import Clock, parse_datetime, utc_now
from app.integrations.field_schema import OAuth2Config, parse_credential_schema
from app.models.integration import IntegrationDefinition


def get_oauth_config(integration: IntegrationDefinition) -> OAuth2Config:
    """
    Return the integration's OAuth settings.

    Raises:
        CredentialError: If the integration does not declare an oauth2 block
    """
    schema = parse_credential_schema(integration.credential_schema)
    if schema.oauth2 is None:
        raise CredentialError(f"Integration {integration.id} has no OAuth configuration")
    return schema.oauth2


def refresh_margin_for(config: Optional[OAuth2Config], default: Optional[int] = None) -> int:
    if config is not None and config.refresh_margin_seconds is not None:
        return config.refresh_margin_seconds
    return default if default is not None else settings.oauth_refresh_margin_seconds


def _expires_at(credentials: Dict[str, Any]) -> Optional[float]:
    value = credentials.get("expires_at")
    if value is None or value == "":
        return None
    try:
        return parse_datetime(value).timestamp()
    except ValueError:
        return None


def needs_refresh(credentials: Dict[str, Any], now: datetime, margin_seconds: int) -> bool:
    """True once now >= expires_at - margin, or when the expiry is unknown."""
    if not credentials.get("access_token"):
        return True
    expires_at = _expires_at(credentials)
    if expires_at is None:
        return True
    return now.timestamp() >= expires_at - margin_seconds


def _client_auth(
    config: OAuth2Config,
    body: Dict[str, str],
    client_id: str,
    client_secret: str,
) -> Tuple[Dict[str, str], Optional[httpx.BasicAuth]]:
    if config.client_auth == "post":
        return {**body, "client_id": client_id, "client_secret": client_secret}, None
    return body, httpx.BasicAuth(client_id, client_secret)


def _parse_token_response(payload: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    access_token = payload.get("access_token")
    if not access_token:
        raise ValueError("Token response did not include an access_token")
    tokens = {
        "access_token": access_token,
        "expires_at": int(now.timestamp()) + int(payload.get("expires_in") or 3600),
        "token_type": payload.get("token_type") or "Bearer",
    }
    if payload.get("refresh_token"):
        tokens["refresh_token"] = payload["refresh_token"]
    if payload.get("scope"):
        tokens["scope"] = payload["scope"]
    return tokens


async def _token_request(
    http: httpx.AsyncClient,
    config: OAuth2Config,
    body: Dict[str, str],
    client_id: str,
    client_secret: str,
) -> Dict[str, Any]:
    data, auth = _client_auth(config, body, client_id, client_secret)
    kwargs: Dict[str, Any] = {"data": data, "headers": {"Accept": "application/json"}}
    if auth is not None:
        kwargs["auth"] = auth
    response = await http.post(config.token_url, **kwargs)
    if response.status_code != 200:
        raise ValueError(f"Token endpoint returned HTTP {response.status_code}")
    return response.json()


async def refresh_access_token(
    http: httpx.AsyncClient,
    config: OAuth2Config,
    credentials: Dict[str, Any],
    now: datetime,
) -> Dict[str, Any]:
    """
    Exchange the refresh token for a new access token.

    Returns:
        The input credentials merged with the new tokens. A refresh token that
        the provider does not rotate is carried forward.

    Raises:
        StaleCredential: On any refresh failure
    """
    refresh_token = credentials.get("refresh_token")
    client_id = credentials.get("client_id")
    client_secret = credentials.get("client_secret")
    if not refresh_token or not client_id or not client_secret:
        raise StaleCredential("Cannot refresh token: refresh_token, client_id and client_secret are required")

    try:
        payload = await _token_request(
            http,
            config,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            client_id,
            client_secret,
        )
        tokens = _parse_token_response(payload, now)
    except (httpx.HTTPError, ValueError) as e:
        log_warning("OAuth token refresh failed", token_url=config.token_url, error=type(e).__name__)
        raise StaleCredential(f"Token refresh failed: {e}") from e

    log_info("OAuth token refreshed", token_url=config.token_url)
    return {**credentials, **tokens}


async def ensure_fresh_token(
    http: httpx.AsyncClient,
    config: OAuth2Config,
    credentials: Dict[str, Any],
    *,
    clock: Clock = utc_now,
    margin_seconds: Optional[int] = None,
) -> Tuple[Dict[str, Any], bool]:
    """
    Refresh the access token if it is inside the refresh margin.

    Returns:
        (credentials, refreshed)
    """
    margin = refresh_margin_for(config, margin_seconds)
    if not needs_refresh(credentials, clock(), margin):
        return credentials, False
    return await refresh_access_token(http, config, credentials, clock()), True


# ============================================================================
# Authorization-code connect flow
# ============================================================================

def create_state(
    integration_id: uuid.UUID,
    redirect_uri: str,
    organization_id: Optional[uuid.UUID] = None,
    widget_instance_id: Optional[uuid.UUID] = None,
    now: Optional[float] = None,
) -> str:
    payload = {
        "integration_id": str(integration_id),
        "redirect_uri": redirect_uri,
        "organization_id": str(organization_id) if organization_id else None,
        "widget_instance_id": str(widget_instance_id) if widget_instance_id else None,
    }
    return sign_state(payload, settings.secret_key, now=now)


def parse_state(state: str, now: Optional[float] = None) -> Dict[str, Any]:
    """
    Verify a state token.

    Raises:
        CredentialError: If the state is tampered with or older than OAUTH_STATE_TTL_SECONDS
    """
    try:
        return verify_state(
            state,
            settings.secret_key,
            settings.oauth_state_ttl_seconds,
            now=now if now is not None else time.time(),
        )
    except ValueError as e:
        raise CredentialError(f"Invalid OAuth state: {e}") from e


def build_authorization_url(config: OAuth2Config, client_id: str, redirect_uri: str, state: str) -> str:
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
        **config.extra_authorize_params,
    }
    if config.scopes:
        params["scope"] = " ".join(config.scopes)
    separator = "&" if "?" in config.authorization_url else "?"
    return f"{config.authorization_url}{separator}{urlencode(params)}"


async def exchange_code(
    http: httpx.AsyncClient,
    config: OAuth2Config,
    code: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    clock: Clock = utc_now,
) -> Dict[str, Any]:
    """
    Trade an authorization code for tokens.

    Raises:
        CredentialError: If the provider rejects the code
    """
    try:
        payload = await _token_request(
            http,
            config,
            {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
            client_id,
            client_secret,
        )
        return _parse_token_response(payload, clock())
    except (httpx.HTTPError, ValueError) as e:
        raise CredentialError(f"Authorization code exchange failed: {e}") from e
