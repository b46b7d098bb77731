"""
Inbound webhook endpoint for push integrations.
"""
import uuid

from fastapi import APIRouter, Request, status

from app.api.dependencies import EngineDep, RequestId
from app.core.config import settings
from app.core.rate_limiting import integration_key, limiter
from app.integrations.schemas import WebhookResponse

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/integrations/{integration_id}/{widget_instance_id}",
    response_model=WebhookResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {"description": "Integration is not a push integration"},
        401: {"description": "Webhook authentication failed"},
        404: {"description": "Integration or widget instance not found"},
        422: {"description": "Body is not valid JSON or fails the payload mapping"},
        429: {"description": "Too many webhook calls for this integration"},
    }
)
@limiter.limit(settings.webhook_rate_limit, key_func=integration_key)
async def receive_webhook(
    request: Request,
    integration_id: uuid.UUID,
    widget_instance_id: uuid.UUID,
    engine: EngineDep,
    request_id: RequestId,
):
    """
    Accept a payload pushed by a third party.

    The raw body is authenticated before it is parsed. Accepted payloads
    replace the widget's cache entry and bump its version.
    """
    body = await request.body()
    client_ip = request.client.host if request.client else None
    entry = engine.webhooks.receive(
        integration_id,
        widget_instance_id,
        body,
        request.headers,
        client_ip=client_ip,
        request_id=request_id,
    )
    return WebhookResponse(success=True, version=entry.version, received_at=entry.fetched_at)
