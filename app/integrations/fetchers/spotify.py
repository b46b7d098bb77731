"""
Spotify "now playing" fetcher (OAuth 2.0).

Credentials:
    client_id, client_secret, access_token, refresh_token, expires_at

The access token is refreshed proactively when it is inside the refresh
margin. If Spotify still answers 401 (token revoked early), the token is
refreshed once and the call retried. Rotated credentials are returned with
the result for the caller to persist.
"""
from typing import Any, Dict, Optional

import httpx

from app.core.exceptions import StaleCredential
from app.core.logging_config import log_info
from app.integrations import oauth
from app.integrations.fetchers.base import (
    STALE_CREDENTIAL,
    FetchContext,
    FetchError,
    Fetcher,
    FetchOk,
    FetchResult,
    error_from_response,
    error_from_transport,
)
from app.integrations.field_schema import OAuth2Config, parse_credential_schema

API_BASE = "https://api.spotify.com/v1"

DEFAULT_OAUTH = OAuth2Config(
    authorization_url="https://accounts.spotify.com/authorize",
    token_url="https://accounts.spotify.com/api/token",
    scopes=["user-read-currently-playing", "user-read-playback-state"],
    client_auth="basic",
)


def format_duration(ms: Optional[int]) -> str:
    total_seconds = int(ms or 0) // 1000
    return f"{total_seconds // 60}:{total_seconds % 60:02d}"


def _no_track(timestamp_ms: int) -> Dict[str, Any]:
    return {
        "track_name": "No track playing",
        "artist_name": "Spotify",
        "album_name": "",
        "album_art_url": None,
        "duration_ms": 0,
        "duration_formatted": "0:00",
        "progress_ms": 0,
        "progress_formatted": "0:00",
        "progress_percent": "0%",
        "is_playing": False,
        "timestamp": timestamp_ms,
    }


def transform_playback(payload: Dict[str, Any], timestamp_ms: int) -> Dict[str, Any]:
    item = payload.get("item") or {}
    album = item.get("album") or {}
    images = sorted(album.get("images") or [], key=lambda image: image.get("height") or 0, reverse=True)
    duration_ms = item.get("duration_ms") or 0
    progress_ms = payload.get("progress_ms") or 0
    percent = round(progress_ms / duration_ms * 100, 1) if duration_ms else 0
    return {
        "track_name": item.get("name", ""),
        "artist_name": ", ".join(artist.get("name", "") for artist in item.get("artists") or []),
        "album_name": album.get("name", ""),
        "album_art_url": images[0].get("url") if images else None,
        "duration_ms": duration_ms,
        "duration_formatted": format_duration(duration_ms),
        "progress_ms": progress_ms,
        "progress_formatted": format_duration(progress_ms),
        "progress_percent": f"{percent}%",
        "is_playing": bool(payload.get("is_playing")),
        # Lets players interpolate progress between polls
        "timestamp": timestamp_ms,
    }


class SpotifyFetcher(Fetcher):
    name = "spotify"

    def __init__(self, api_base: str = API_BASE):
        self.api_base = api_base

    def _oauth_config(self, context: FetchContext) -> OAuth2Config:
        schema = parse_credential_schema(context.integration.credential_schema)
        return schema.oauth2 or DEFAULT_OAUTH

    async def _currently_playing(self, http: httpx.AsyncClient, access_token: str) -> httpx.Response:
        return await http.get(
            f"{self.api_base}/me/player/currently-playing",
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )

    async def fetch(self, credentials: Dict[str, Any], options: Dict[str, Any], context: FetchContext) -> FetchResult:
        config = self._oauth_config(context)
        try:
            credentials, _ = await oauth.ensure_fresh_token(
                context.http,
                config,
                credentials,
                clock=context.clock,
                margin_seconds=context.refresh_margin_seconds,
            )
            response = await self._currently_playing(context.http, credentials["access_token"])
            if response.status_code == 401:
                log_info("Spotify rejected access token, refreshing", integration_id=str(context.integration.id))
                credentials = await oauth.refresh_access_token(context.http, config, credentials, context.clock())
                response = await self._currently_playing(context.http, credentials["access_token"])
        except StaleCredential as e:
            return FetchError(str(e), credentials, kind=STALE_CREDENTIAL)
        except httpx.HTTPError as e:
            return error_from_transport(e, credentials, "Spotify")

        timestamp_ms = int(context.clock().timestamp() * 1000)

        # 204 means nothing is playing
        if response.status_code == 204:
            return FetchOk(_no_track(timestamp_ms), credentials)
        if response.status_code != 200:
            return error_from_response(response, credentials, "Spotify")

        try:
            payload = response.json()
        except ValueError:
            return FetchError("Spotify returned malformed JSON", credentials)

        if not payload or not payload.get("item"):
            return FetchOk(_no_track(timestamp_ms), credentials)
        return FetchOk(transform_playback(payload, timestamp_ms), credentials)
