"""
Executes one poll of a pull integration for one discriminator.

    lock -> load definition -> resolve credentials -> pre-flight re-check
         -> fetch (retried) -> upsert (+ credential rotation)

Upstream failures and rate limits are retried with exponential backoff
(honoring Retry-After). Credential and option errors are recorded without
retrying. A failed OAuth refresh marks the credential invalid so it is not
polled again until an operator reconnects it.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings
from app.core.exceptions import (
    CredentialError,
    IntegrationNotFoundError,
    RateLimited,
    SchemaValidationError,
    StaleCredential,
    UpstreamError,
)
from app.core.http_client import get_http_client
from app.core.logging_config import log_error, log_sync
from app.core.scoped_cache import ScopedCache
from app.core.time_utils import Clock, utc_now
from app.integrations import oauth
from app.integrations.cache_store import CacheStore
from app.integrations.discriminator import Discriminator
from app.integrations.fetchers.base import FetchContext, FetchOk
from app.integrations.registry import IntegrationRegistry
from app.integrations.vault import CredentialVault, ResolvedCredentials
from app.models.enums import AuthType, DataStatus
from app.models.integration import IntegrationDefinition

LOCK_CACHE_TYPE = "poll_lock"

# PollResult.status values
SUCCESS = "success"
ERROR = "error"
SKIPPED = "skipped"
LOCKED = "locked"


class PollAborted(Exception):
    """Pre-flight check failed; the third party must not be called."""


@dataclass
class PollResult:
    status: str
    version: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS


class Poller:
    def __init__(
        self,
        registry: IntegrationRegistry,
        vault: CredentialVault,
        cache_store: CacheStore,
        lock_cache: Optional[ScopedCache] = None,
        http_client_factory: Callable[[], Awaitable[httpx.AsyncClient]] = get_http_client,
        clock: Clock = utc_now,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        lock_ttl_seconds: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.vault = vault
        self.cache_store = cache_store
        self._locks = lock_cache or ScopedCache(namespace="widget_sync")
        self._http_client_factory = http_client_factory
        self._clock = clock
        self.max_attempts = max_attempts or settings.sync_max_attempts
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.sync_backoff_seconds
        self.backoff_max_seconds = (
            backoff_max_seconds if backoff_max_seconds is not None else settings.sync_backoff_max_seconds
        )
        self.lock_ttl_seconds = lock_ttl_seconds or settings.sync_lock_ttl_seconds
        self._sleep = sleep

    async def http_client(self) -> httpx.AsyncClient:
        return await self._http_client_factory()

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------

    def _wait(self, retry_state: RetryCallState) -> float:
        delay = wait_exponential(multiplier=self.backoff_seconds, max=self.backoff_max_seconds)(retry_state)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimited) and exc.retry_after:
            delay = max(delay, min(exc.retry_after, self.backoff_max_seconds))
        return delay

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(UpstreamError),
            sleep=self._sleep,
            reraise=True,
        )

    # ------------------------------------------------------------------
    # Poll
    # ------------------------------------------------------------------

    def _preflight(self, integration_id: uuid.UUID, credential_id: Optional[uuid.UUID]) -> None:
        if not self.registry.is_active(integration_id):
            raise PollAborted("integration is inactive")
        if credential_id is not None and not self.vault.is_valid(credential_id):
            raise PollAborted("credential is invalid")

    def _rotation(self, credential_id: Optional[uuid.UUID], values: Dict[str, Any]):
        if credential_id is None:
            return None
        return lambda session: self.vault.stage_rotation(session, credential_id, values)

    def _invalidation(self, credential_id: Optional[uuid.UUID]):
        if credential_id is None:
            return None
        return lambda session: self.vault.stage_invalidation(session, credential_id)

    async def poll(self, discriminator: Discriminator) -> PollResult:
        scope_id = discriminator.scope_id
        # The token makes release a no-op once the lock expired and another poll claimed it
        claim = {"token": uuid.uuid4().hex, "started_at": self._clock().isoformat()}
        if not self._locks.claim(scope_id, LOCK_CACHE_TYPE, claim, self.lock_ttl_seconds):
            log_sync("Poll already running, skipping", discriminator=discriminator.key)
            return PollResult(status=LOCKED)
        try:
            return await self._poll_locked(discriminator)
        finally:
            if not self._locks.release(scope_id, LOCK_CACHE_TYPE, claim):
                log_sync(
                    "Poll outlived its lock",
                    level=logging.WARNING,
                    discriminator=discriminator.key,
                    lock_ttl_seconds=self.lock_ttl_seconds,
                )

    async def _poll_locked(self, discriminator: Discriminator) -> PollResult:
        try:
            integration = self.registry.get(discriminator.integration_id)
        except IntegrationNotFoundError:
            return PollResult(status=SKIPPED, error="integration not found")
        if not integration.is_active or not integration.is_pull:
            return PollResult(status=SKIPPED, error="integration is not an active pull integration")

        context_log = {"integration_id": str(integration.id), "discriminator": discriminator.key}

        try:
            fetcher = self.registry.resolve_fetcher(integration)
            resolved = self.vault.resolve(integration, discriminator)
        except (CredentialError, SchemaValidationError) as e:
            log_sync("Poll cannot start", level=logging.ERROR, error=str(e), **context_log)
            self.cache_store.upsert(
                discriminator, None, DataStatus.ERROR, str(e), pull_interval=integration.pull_interval_seconds
            )
            return PollResult(status=ERROR, error=str(e))

        if not resolved.is_valid:
            log_sync("Credential invalid, poll aborted", **context_log)
            return PollResult(status=SKIPPED, error="credential is invalid")

        http = await self._http_client_factory()
        context = FetchContext(
            integration=integration,
            http=http,
            clock=self._clock,
            refresh_margin_seconds=self._refresh_margin(integration),
        )
        current = dict(resolved.values)
        attempts = 0

        try:
            async for attempt in self._retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self._preflight(integration.id, resolved.credential_id)
                    result = await fetcher.fetch(current, discriminator.options, context)
                    current = result.credentials or current
                    if not isinstance(result, FetchOk):
                        log_sync(
                            "Fetch attempt failed",
                            level=logging.WARNING,
                            attempt=attempts,
                            reason=result.reason,
                            **context_log,
                        )
                        raise result.to_exception()
        except PollAborted as e:
            log_sync("Poll aborted before calling the third party", reason=str(e), **context_log)
            return PollResult(status=SKIPPED, error=str(e), attempts=attempts)
        except StaleCredential as e:
            log_sync("OAuth refresh failed, credential invalidated", level=logging.WARNING, **context_log)
            self.cache_store.upsert(
                discriminator,
                None,
                DataStatus.ERROR,
                str(e),
                pull_interval=integration.pull_interval_seconds,
                credential_update=self._invalidation(resolved.credential_id),
            )
            return PollResult(status=ERROR, error=str(e), attempts=attempts)
        except (UpstreamError, CredentialError, SchemaValidationError) as e:
            log_sync("Poll failed", level=logging.WARNING, attempts=attempts, error=str(e), **context_log)
            self.cache_store.upsert(
                discriminator,
                None,
                DataStatus.ERROR,
                str(e),
                pull_interval=integration.pull_interval_seconds,
                credential_update=self._rotation_if_changed(resolved, current),
            )
            return PollResult(status=ERROR, error=str(e), attempts=attempts)
        except Exception as e:
            log_error(e, **context_log)
            raise

        entry = self.cache_store.upsert(
            discriminator,
            result.data,
            DataStatus.SUCCESS,
            pull_interval=integration.pull_interval_seconds,
            credential_update=self._rotation_if_changed(resolved, current),
        )
        log_sync("Poll succeeded", version=entry.version, attempts=attempts, **context_log)
        return PollResult(status=SUCCESS, version=entry.version, attempts=attempts)

    def _rotation_if_changed(self, resolved: ResolvedCredentials, current: Dict[str, Any]):
        if current == resolved.values:
            return None
        log_sync("Persisting rotated credentials", credential_id=str(resolved.credential_id))
        return self._rotation(resolved.credential_id, current)

    def _refresh_margin(self, integration: IntegrationDefinition) -> int:
        if AuthType(integration.auth_type) != AuthType.OAUTH2:
            return settings.oauth_refresh_margin_seconds
        return oauth.refresh_margin_for(self.registry.credential_schema(integration).oauth2)
