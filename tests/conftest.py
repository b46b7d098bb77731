"""
Pytest fixtures shared by the unit, integration and CLI suites.

The environment is pinned before any ``app`` module is imported: an
in-memory SQLite database, a fixed SECRET_KEY and rate limiting disabled.
Components are built against a FrozenClock, an in-memory coordination cache
and an httpx MockTransport, so no test touches the network or waits on a
real timer.
"""
from __future__ import annotations

import os
import tempfile
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "widget-sync-test-secret-key-0123456789abcdef")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="widget-sync-logs-"))
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("SKIP_DB_INIT", "true")

import httpx
import pytest
from sqlmodel import Session, SQLModel

import app.models  # noqa: F401  (registers tables on the metadata)
from app.core import database
from app.core.cache import InMemoryCache
from app.core.time_utils import FrozenClock
from app.integrations.engine import SyncEngine
from app.integrations.fetchers import FetcherRegistry
from app.integrations.fetchers.base import FetchContext, Fetcher, FetchOk, FetchResult
from app.models.integration import IntegrationDefinition
from app.models.widget_instance import WidgetInstance

START = datetime(2026, 3, 2, 15, 0, 0, tzinfo=timezone.utc)


class StubFetcher(Fetcher):
    """
    Fetcher returning queued results.

    Without queued results every call succeeds with ``{"value": <call number>}``.
    """

    name = "stub"

    def __init__(self):
        self.results: List[FetchResult] = []
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *results: FetchResult) -> None:
        self.results.extend(results)

    async def fetch(self, credentials: Dict[str, Any], options: Dict[str, Any], context: FetchContext) -> FetchResult:
        self.calls.append({"credentials": dict(credentials), "options": dict(options)})
        if self.results:
            return self.results.pop(0)
        return FetchOk({"value": len(self.calls)}, credentials)


class MockUpstream:
    """Records outbound requests and answers them with ``responder``."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(404)
        self._client: Optional[httpx.AsyncClient] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(transport=httpx.MockTransport(self))
        return self._client

    async def client_factory(self) -> httpx.AsyncClient:
        return self.client()


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def db_engine():
    """Fresh tables on the in-memory engine for every test."""
    SQLModel.metadata.create_all(database.engine)
    yield database.engine
    SQLModel.metadata.drop_all(database.engine)


@pytest.fixture
def session_factory(db_engine) -> Callable[[], Session]:
    return lambda: Session(db_engine)


@pytest.fixture
def frozen_clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def memory_cache(frozen_clock) -> InMemoryCache:
    """Coordination cache whose expiry follows the frozen clock."""
    return InMemoryCache(clock=lambda: frozen_clock().timestamp())


@pytest.fixture
def stub_fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def upstream() -> MockUpstream:
    return MockUpstream()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def sync_engine(session_factory, frozen_clock, memory_cache, stub_fetcher, upstream, sleeper) -> SyncEngine:
    fetchers = FetcherRegistry()
    fetchers.register(stub_fetcher)
    return SyncEngine(
        session_factory=session_factory,
        fetchers=fetchers,
        cache_backend=memory_cache,
        clock=frozen_clock,
        scheduler_backend="inline",
        http_client_factory=upstream.client_factory,
        sleep=sleeper,
    )


@pytest.fixture
def make_integration(sync_engine) -> Callable[..., IntegrationDefinition]:
    """Register a definition; defaults describe an organization-shared stub pull integration."""
    counter = {"n": 0}

    def _create(**overrides: Any) -> IntegrationDefinition:
        counter["n"] += 1
        payload: Dict[str, Any] = {
            "widget_type": "weather",
            "name": f"Stub integration {counter['n']}",
            "mode": "pull",
            "fetcher": "stub",
            "pull_interval_seconds": 300,
            "discriminator_type": "organization",
            "credential_schema": {"auth_type": "none"},
        }
        payload.update(overrides)
        return sync_engine.registry.create(payload)

    return _create


@pytest.fixture
def make_widget(session_factory) -> Callable[..., WidgetInstance]:
    def _create(
        widget_type: str = "weather",
        options: Optional[Dict[str, Any]] = None,
        organization_id: Optional[uuid.UUID] = None,
    ) -> WidgetInstance:
        instance = WidgetInstance(
            organization_id=organization_id or uuid.uuid4(),
            widget_type=widget_type,
            options=options or {},
        )
        with session_factory() as session:
            session.add(instance)
            session.commit()
            session.refresh(instance)
        return instance

    return _create
