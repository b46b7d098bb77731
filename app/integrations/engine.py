"""
Sync engine.

Owns the registry, vault, cache store, poller, scheduler, webhook receiver
and data API for one process. The FastAPI lifespan (or a Celery worker)
creates it, calls start() once and shutdown() on exit; routes receive it
through app.state.
"""
import asyncio
from typing import Awaitable, Callable, Optional

import httpx
from sqlmodel import Session

from app.core.cache import create_cache
from app.core.config import settings
from app.core.database import get_session_context
from app.core.http_client import close_http_client, get_http_client
from app.core.logging_config import log_info
from app.core.scoped_cache import ScopedCache
from app.core.time_utils import Clock, utc_now
from app.integrations.cache_store import CacheStore
from app.integrations.data_api import DataAPI
from app.integrations.fetchers import FetcherRegistry
from app.integrations.poller import Poller
from app.integrations.registry import IntegrationRegistry
from app.integrations.scheduler import Scheduler
from app.integrations.vault import CredentialVault
from app.integrations.webhooks import WebhookReceiver

COORDINATION_NAMESPACE = "widget_sync"


class SyncEngine:
    def __init__(
        self,
        session_factory: Callable[[], Session] = get_session_context,
        fetchers: Optional[FetcherRegistry] = None,
        cache_backend=None,
        clock: Clock = utc_now,
        scheduler_backend: Optional[str] = None,
        http_client_factory: Optional[Callable[[], Awaitable[httpx.AsyncClient]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.clock = clock
        self._owns_http_client = http_client_factory is None
        self.coordination = ScopedCache(
            namespace=COORDINATION_NAMESPACE,
            cache_backend=cache_backend or create_cache(settings.redis_url),
        )

        self.fetchers = fetchers or FetcherRegistry()
        self.registry = IntegrationRegistry(session_factory, self.fetchers)
        self.vault = CredentialVault(session_factory, clock=clock)
        self.cache_store = CacheStore(session_factory, clock=clock)
        self.poller = Poller(
            self.registry,
            self.vault,
            self.cache_store,
            lock_cache=self.coordination,
            http_client_factory=http_client_factory or get_http_client,
            clock=clock,
            sleep=sleep,
        )
        self.scheduler = Scheduler(
            self.poller,
            self.cache_store,
            self.registry,
            dedupe_cache=self.coordination,
            backend=scheduler_backend,
            clock=clock,
        )
        self.webhooks = WebhookReceiver(self.registry, self.vault, self.cache_store, session_factory, clock)
        self.data_api = DataAPI(self.registry, self.cache_store, self.scheduler, session_factory, clock)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, run_scan_loop: bool = True) -> None:
        """Validate stored definitions against the fetcher registry and start scheduling."""
        if self._started:
            return
        self.registry.validate_registered_fetchers()
        await self.scheduler.start(run_scan_loop=run_scan_loop)
        self._started = True
        log_info("Sync engine started", fetchers=",".join(self.fetchers.names()), backend=self.scheduler.backend)

    async def shutdown(self) -> None:
        if not self._started:
            return
        await self.scheduler.shutdown()
        if self._owns_http_client:
            await close_http_client()
        self._started = False
        log_info("Sync engine stopped")
