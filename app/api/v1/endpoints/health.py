"""
Health check endpoint.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session, text

from app.core.config import settings
from app.core.database import get_session
from app.core.logging_config import log_error

router = APIRouter(tags=["health"])


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get(
    "/health",
    response_model=Dict[str, Any],
    responses={
        500: {"description": "Internal server error"},
    }
)
async def health_check(request: Request, session: Annotated[Session, Depends(get_session)]):
    """
    Health check with database and scheduler status.

    Returns degraded status if the database is unreachable or the sync engine
    is not running.
    """
    try:
        db_status = "connected"
        try:
            session.exec(text("SELECT 1")).first()
        except Exception as e:
            db_status = f"disconnected: {str(e)}"

        engine = getattr(request.app.state, "sync_engine", None)
        scheduler: Dict[str, Any] = {"status": "stopped"}
        if engine is not None and engine.started:
            scheduler = {
                "status": "running",
                "backend": engine.scheduler.backend,
                "pending": engine.scheduler.pending,
            }

        healthy = db_status == "connected" and scheduler["status"] == "running"
        return {
            "status": "healthy" if healthy else "degraded",
            "timestamp": _utc_now_iso(),
            "service": settings.app_name,
            "version": settings.app_version,
            "database": db_status,
            "scheduler": scheduler,
        }
    except Exception as e:
        log_error(e, request_id=None)
        raise HTTPException(status_code=500, detail="Health check failed")
