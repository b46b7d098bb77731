"""
Widget data endpoints used by dashboard renderers.
"""
import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Response, status

from app.api.dependencies import EngineDep
from app.integrations.data_api import NotFound, NotModified
from app.integrations.schemas import RefreshResponse, WidgetDataResponse

router = APIRouter(prefix="/widget-instances", tags=["widget-data"])


@router.get(
    "/{widget_instance_id}/data",
    response_model=WidgetDataResponse,
    responses={
        304: {"description": "Client already holds the current version"},
        404: {"description": "Widget instance unknown or no data cached yet"},
        422: {"description": "Widget options do not match the integration's config schema"},
    }
)
async def get_widget_data(
    widget_instance_id: uuid.UUID,
    engine: EngineDep,
    version: Optional[int] = Query(None, description="Version the client already holds"),
    integration_id: Optional[uuid.UUID] = Query(None, description="Pick one of several integrations for the widget type"),
):
    """
    Return the cached payload for a widget instance.

    Never waits on a third party: stale entries are queued for refresh and the
    last good payload is returned. On a cold cache a poll is queued and 404 is
    returned until data exists.
    """
    result = engine.data_api.read_widget_data(widget_instance_id, version, integration_id)
    if isinstance(result, NotModified):
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers={"ETag": f'"{result.version}"'})
    if isinstance(result, NotFound):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No data available yet" if result.enqueued else "No data available",
        )
    return WidgetDataResponse(
        data=result.data,
        version=result.version,
        fetched_at=result.fetched_at,
        status=result.status,
    )


@router.post(
    "/{widget_instance_id}/refresh",
    response_model=RefreshResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        400: {"description": "Integration is push-only"},
        404: {"description": "Widget instance or integration not found"},
    }
)
async def refresh_widget_data(
    widget_instance_id: uuid.UUID,
    engine: EngineDep,
    integration_id: Optional[uuid.UUID] = Query(None),
):
    """Queue an immediate poll. Requests inside the debounce window are dropped."""
    integration, discriminator, enqueued = engine.data_api.request_refresh(widget_instance_id, integration_id)
    return RefreshResponse(enqueued=enqueued, integration_id=integration.id, discriminator=discriminator.key)
