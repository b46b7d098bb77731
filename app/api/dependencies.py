"""
Shared API dependencies.
"""
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from app.integrations.engine import SyncEngine
from app.middleware.request_logging import request_id_ctx


def get_request_id() -> str:
    """
    Dependency to get the current request ID from context.

    Returns:
        The current request ID, or 'unknown' if not in a request context.
    """
    return request_id_ctx.get()


def get_sync_engine(request: Request) -> SyncEngine:
    """Return the engine created by the application lifespan."""
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine is not running",
        )
    return engine


EngineDep = Annotated[SyncEngine, Depends(get_sync_engine)]
RequestId = Annotated[str, Depends(get_request_id)]
