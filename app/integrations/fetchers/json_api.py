"""
Generic JSON API fetcher.

Calls ``pull_endpoint`` with GET. ``{{name}}`` placeholders in the endpoint
and in ``pull_config.headers`` are filled from the widget options first,
then from the credentials. Values are URL-encoded in the endpoint.

``pull_config``:
    headers: {name: template}
    query: {name: template}
    mapping: path mapping applied to the response (see transform.py)
    list_key: key used when the (mapped) response is not an object, default "items"

Integrations with auth_type ``api_key`` and no explicit header templates send
the key as ``X-API-Key``; ``basic`` uses HTTP basic auth; ``oauth2`` sends a
bearer token refreshed through app.integrations.oauth.
"""
import re
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from app.core.exceptions import StaleCredential
from app.integrations import oauth
from app.integrations.fetchers.base import (
    CREDENTIAL,
    INVALID_OPTIONS,
    STALE_CREDENTIAL,
    FetchContext,
    FetchError,
    Fetcher,
    FetchOk,
    FetchResult,
    error_from_response,
    error_from_transport,
)
from app.integrations.transform import PathError, apply_mapping, as_object
from app.models.enums import AuthType

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")


class MissingPlaceholder(KeyError):
    pass


def render_template(template: str, options: Dict[str, Any], credentials: Dict[str, Any], url_encode: bool = False) -> str:
    """
    Replace ``{{name}}`` placeholders.

    Raises:
        MissingPlaceholder: If a placeholder has no value in options or credentials
    """
    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name in options and options[name] is not None:
            value = options[name]
        elif name in credentials and credentials[name] is not None:
            value = credentials[name]
        else:
            raise MissingPlaceholder(name)
        text = str(value)
        return quote(text, safe="") if url_encode else text

    return _PLACEHOLDER_RE.sub(_replace, template)


class JsonApiFetcher(Fetcher):
    name = "json_api"

    async def _auth(
        self,
        context: FetchContext,
        credentials: Dict[str, Any],
        headers: Dict[str, str],
        explicit_headers: bool,
    ) -> tuple[Dict[str, Any], Optional[httpx.BasicAuth]]:
        auth_type = context.integration.auth_type
        if auth_type == AuthType.OAUTH2:
            config = oauth.get_oauth_config(context.integration)
            credentials, _ = await oauth.ensure_fresh_token(
                context.http,
                config,
                credentials,
                clock=context.clock,
                margin_seconds=context.refresh_margin_seconds,
            )
            headers["Authorization"] = f"Bearer {credentials['access_token']}"
        elif auth_type == AuthType.BASIC:
            return credentials, httpx.BasicAuth(credentials.get("username", ""), credentials.get("password", ""))
        elif auth_type == AuthType.API_KEY and not explicit_headers and credentials.get("api_key"):
            headers["X-API-Key"] = str(credentials["api_key"])
        return credentials, None

    async def fetch(self, credentials: Dict[str, Any], options: Dict[str, Any], context: FetchContext) -> FetchResult:
        integration = context.integration
        pull_config = integration.pull_config or {}
        if not integration.pull_endpoint:
            return FetchError("Integration has no pull_endpoint", credentials, kind=INVALID_OPTIONS)

        try:
            url = render_template(integration.pull_endpoint, options, credentials, url_encode=True)
            header_templates = pull_config.get("headers") or {}
            headers = {"Accept": "application/json"}
            headers.update({
                name: render_template(str(value), options, credentials)
                for name, value in header_templates.items()
            })
            params = {
                name: render_template(str(value), options, credentials)
                for name, value in (pull_config.get("query") or {}).items()
            }
        except MissingPlaceholder as e:
            return FetchError(f"No value for placeholder {e.args[0]!r}", credentials, kind=INVALID_OPTIONS)

        try:
            credentials, auth = await self._auth(context, credentials, headers, bool(header_templates))
        except StaleCredential as e:
            return FetchError(str(e), credentials, kind=STALE_CREDENTIAL)
        except (KeyError, ValueError) as e:
            return FetchError(f"Incomplete credentials: {e}", credentials, kind=CREDENTIAL)

        try:
            kwargs: Dict[str, Any] = {"headers": headers}
            if params:
                kwargs["params"] = params
            if auth is not None:
                kwargs["auth"] = auth
            response = await context.http.get(url, **kwargs)
        except httpx.HTTPError as e:
            return error_from_transport(e, credentials, "Upstream API")

        if not 200 <= response.status_code < 300:
            return error_from_response(response, credentials, "Upstream API")

        try:
            payload = response.json()
        except ValueError:
            return FetchError("Upstream API returned malformed JSON", credentials)

        mapping = pull_config.get("mapping")
        if mapping:
            try:
                payload = apply_mapping(payload, mapping)
            except PathError as e:
                return FetchError(f"Invalid response mapping: {e}", credentials, kind=INVALID_OPTIONS)

        return FetchOk(as_object(payload, pull_config.get("list_key", "items")), credentials)
