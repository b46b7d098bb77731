"""
Shared HTTP client for outbound third-party calls.

Provides a singleton httpx.AsyncClient for connection pooling and efficient resource usage.
"""
import asyncio
from typing import Optional

import httpx
from app.core.config import settings
from app.core.logging_config import log_info

_client: Optional[httpx.AsyncClient] = None
_client_lock: Optional[asyncio.Lock] = None

USER_AGENT = "widget-sync/1.0"


def _get_lock() -> asyncio.Lock:
    """Get or create the client lock."""
    global _client_lock
    if _client_lock is None:
        _client_lock = asyncio.Lock()
    return _client_lock


async def get_http_client() -> httpx.AsyncClient:
    """
    Get the shared AsyncClient instance.

    Creates a new instance if one doesn't exist or is closed.
    Lifecycle management (cleanup) is handled by the sync engine's shutdown.
    """
    global _client
    if _client is None or _client.is_closed:
        async with _get_lock():
            if _client is None or _client.is_closed:
                _client = httpx.AsyncClient(
                    timeout=settings.fetch_timeout_seconds,
                    follow_redirects=True,
                    headers={"User-Agent": USER_AGENT},
                )
                log_info("HTTP client created", timeout=settings.fetch_timeout_seconds)
    return _client


async def close_http_client():
    """Close the shared client if it exists."""
    global _client, _client_lock
    async with _get_lock():
        if _client and not _client.is_closed:
            await _client.aclose()
            log_info("HTTP client closed")
        _client = None
    # asyncio.run creates a fresh loop per Celery task; drop the loop-bound lock
    _client_lock = None
