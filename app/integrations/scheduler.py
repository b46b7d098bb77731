"""
Work queue of discriminators due for refresh.

Two dispatch backends:

- inline: an asyncio queue drained by SYNC_MAX_CONCURRENCY worker tasks in
  this process, plus a periodic scan loop.
- celery: enqueue() sends poll_integration_task; Celery beat runs
  scan_stale_integrations_task.

Both dedupe through the shared cache: a discriminator enqueued again inside
its debounce window is dropped, so one discriminator never has two fetches
in flight. The poller's execution lock covers polls that outlive the window.
"""
import asyncio
from datetime import datetime
from typing import Dict, List, Optional

from app.core.config import settings
from app.core.exceptions import IntegrationNotFoundError
from app.core.logging_config import log_error, log_sync
from app.core.scoped_cache import ScopedCache
from app.core.time_utils import Clock, utc_now
from app.integrations.cache_store import CacheStore
from app.integrations.discriminator import Discriminator, from_cache_entry
from app.integrations.poller import Poller, PollResult
from app.integrations.registry import IntegrationRegistry
from app.models.integration import IntegrationDefinition

DEDUPE_CACHE_TYPE = "enqueued"

INLINE = "inline"
CELERY = "celery"


def debounce_window(pull_interval: Optional[int], floor: Optional[int] = None) -> int:
    """min(pull_interval, floor); push or unknown intervals use the floor."""
    floor = floor if floor is not None else settings.sync_debounce_seconds
    if not pull_interval:
        return floor
    return max(1, min(pull_interval, floor))


class Scheduler:
    def __init__(
        self,
        poller: Poller,
        cache_store: CacheStore,
        registry: IntegrationRegistry,
        dedupe_cache: Optional[ScopedCache] = None,
        backend: Optional[str] = None,
        max_concurrency: Optional[int] = None,
        debounce_seconds: Optional[int] = None,
        scan_interval_seconds: Optional[float] = None,
        clock: Clock = utc_now,
    ):
        self.poller = poller
        self.cache_store = cache_store
        self.registry = registry
        self._dedupe = dedupe_cache or ScopedCache(namespace="widget_sync")
        self.backend = backend or settings.scheduler_backend
        self.max_concurrency = max_concurrency or settings.sync_max_concurrency
        self.debounce_seconds = debounce_seconds if debounce_seconds is not None else settings.sync_debounce_seconds
        self.scan_interval_seconds = (
            scan_interval_seconds if scan_interval_seconds is not None else settings.sync_scan_interval_seconds
        )
        self._clock = clock
        self._queue: asyncio.Queue = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._scan_task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, run_scan_loop: bool = True) -> None:
        if self._running:
            return
        self._running = True
        if self.backend != INLINE:
            log_sync("Scheduler started", backend=self.backend)
            return
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"widget-sync-worker-{index}")
            for index in range(self.max_concurrency)
        ]
        if run_scan_loop and self.scan_interval_seconds > 0:
            self._scan_task = asyncio.create_task(self._scan_loop(), name="widget-sync-scan")
        log_sync("Scheduler started", backend=self.backend, workers=self.max_concurrency)

    async def shutdown(self) -> None:
        if not self._running:
            return
        self._running = False
        tasks = list(self._workers)
        if self._scan_task is not None:
            tasks.append(self._scan_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._scan_task = None
        log_sync("Scheduler stopped", dropped=self._queue.qsize())

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue(self, discriminator: Discriminator, pull_interval: Optional[int] = None) -> bool:
        """
        Schedule a zero-delay poll.

        Returns:
            False if the discriminator was already enqueued inside its debounce window
        """
        window = debounce_window(pull_interval, self.debounce_seconds)
        claimed = self._dedupe.claim(
            discriminator.scope_id,
            DEDUPE_CACHE_TYPE,
            {"enqueued_at": self._clock().isoformat()},
            window,
        )
        if not claimed:
            return False

        if self.backend == CELERY:
            from app.integrations.tasks import poll_integration_task

            poll_integration_task.delay(discriminator.to_payload())
        else:
            self._queue.put_nowait(discriminator)
        log_sync("Poll enqueued", discriminator=discriminator.key, backend=self.backend)
        return True

    def scan_due(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        """Enqueue every stale entry of an active pull integration. Returns the number enqueued."""
        now = now or self._clock()
        integrations: Dict[object, Optional[IntegrationDefinition]] = {}
        enqueued = 0
        for entry in self.cache_store.list_stale(now, limit):
            if entry.integration_id not in integrations:
                try:
                    integrations[entry.integration_id] = self.registry.get(entry.integration_id)
                except IntegrationNotFoundError:
                    integrations[entry.integration_id] = None
            integration = integrations[entry.integration_id]
            if integration is None or not integration.is_pull:
                continue
            if self.enqueue(from_cache_entry(integration, entry), integration.pull_interval_seconds):
                enqueued += 1
        if enqueued:
            log_sync("Stale entries enqueued", count=enqueued)
        return enqueued

    async def drain(self) -> List[PollResult]:
        """Run every queued poll in the current task (used by the CLI and tests)."""
        results = []
        while not self._queue.empty():
            discriminator = self._queue.get_nowait()
            try:
                results.append(await self.poller.poll(discriminator))
            finally:
                self._queue.task_done()
        return results

    # ------------------------------------------------------------------
    # Inline backend loops
    # ------------------------------------------------------------------

    async def _worker(self, index: int) -> None:
        while True:
            discriminator = await self._queue.get()
            try:
                await self.poller.poll(discriminator)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_error(e, worker=index, discriminator=discriminator.key)
            finally:
                self._queue.task_done()

    async def _scan_loop(self) -> None:
        while True:
            await asyncio.sleep(self.scan_interval_seconds)
            try:
                self.scan_due()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_error(e, task="scan_due")
