"""
HTTP fixtures.

The application is driven in-process through TestClient without entering
the lifespan, so the engine built by the shared ``sync_engine`` fixture is
installed on app.state and nothing is scheduled in the background.
"""
import pytest
from fastapi.testclient import TestClient

from app.main import app


@pytest.fixture
def client(sync_engine):
    app.state.sync_engine = sync_engine
    try:
        yield TestClient(app)
    finally:
        del app.state.sync_engine


@pytest.fixture
def api():
    """Prefix helper for versioned routes."""
    from app.core.config import settings

    return lambda path: f"{settings.api_v1_prefix}{path}"
