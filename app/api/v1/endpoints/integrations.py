"""
Operator endpoints for integration definitions, credentials and health.
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Response, status

from app.api.dependencies import EngineDep
from app.core.logging_config import log_info
from app.integrations import service
from app.integrations.fetchers.base import FetchOk
from app.integrations.schemas import (
    CacheEntryHealth,
    CredentialResponse,
    CredentialStoreRequest,
    IntegrationActiveUpdate,
    IntegrationCreate,
    IntegrationResponse,
    OAuthAuthorizeResponse,
    OAuthCallbackResponse,
    TestFetchRequest,
    TestFetchResponse,
)

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.post(
    "",
    response_model=IntegrationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"description": "An integration with this name exists for the widget type"},
        422: {"description": "Invalid schema or mode-specific fields"},
    }
)
async def create_integration(payload: IntegrationCreate, engine: EngineDep):
    """Register an integration definition."""
    return engine.registry.create(payload)


@router.get("", response_model=List[IntegrationResponse])
async def list_integrations(
    engine: EngineDep,
    widget_type: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
):
    return engine.registry.list(widget_type=widget_type, active=active)


@router.get(
    "/oauth/callback",
    response_model=OAuthCallbackResponse,
    responses={
        400: {"description": "Invalid or expired state, or the code was rejected"},
    }
)
async def oauth_callback(
    engine: EngineDep,
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
):
    """Complete an OAuth connect flow and store the issued tokens."""
    credential = await service.complete_oauth(engine, code, state)
    return OAuthCallbackResponse(
        success=True,
        integration_id=credential.integration_id,
        credential=CredentialResponse.model_validate(credential),
    )


@router.get(
    "/{integration_id}",
    response_model=IntegrationResponse,
    responses={404: {"description": "Integration not found"}}
)
async def get_integration(integration_id: uuid.UUID, engine: EngineDep):
    return engine.registry.get(integration_id)


@router.patch(
    "/{integration_id}/active",
    response_model=IntegrationResponse,
    responses={404: {"description": "Integration not found"}}
)
async def set_integration_active(integration_id: uuid.UUID, payload: IntegrationActiveUpdate, engine: EngineDep):
    """Activate or deactivate an integration. Inactive integrations are never polled."""
    return engine.registry.set_active(integration_id, payload.is_active)


@router.api_route(
    "/{integration_id}/credentials",
    methods=["POST", "PUT"],
    response_model=CredentialResponse,
    responses={
        400: {"description": "Scope does not match the integration's credential scope"},
        404: {"description": "Integration not found"},
        422: {"description": "Credentials do not match the credential schema"},
    }
)
async def store_credentials(integration_id: uuid.UUID, payload: CredentialStoreRequest, engine: EngineDep):
    """
    Store or replace credentials for one organization or widget instance.

    Values are validated against the credential schema and encrypted before
    they reach the database. The response carries metadata only.
    """
    integration = engine.registry.get(integration_id)
    credential = engine.vault.store_credentials(
        integration,
        payload.credentials,
        organization_id=payload.organization_id,
        widget_instance_id=payload.widget_instance_id,
    )
    return CredentialResponse.model_validate(credential)


@router.delete(
    "/{integration_id}/credentials",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "No credential stored for this scope"}}
)
async def delete_credentials(
    integration_id: uuid.UUID,
    engine: EngineDep,
    organization_id: Optional[uuid.UUID] = Query(None),
    widget_instance_id: Optional[uuid.UUID] = Query(None),
):
    if not engine.vault.delete_credentials(integration_id, organization_id, widget_instance_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Credential not found")
    log_info("Credential deleted via API", integration_id=str(integration_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{integration_id}/test",
    response_model=TestFetchResponse,
    responses={
        400: {"description": "Integration is push-only"},
        404: {"description": "Integration not found"},
        422: {"description": "Credentials or options do not match their schemas"},
    }
)
async def test_integration(integration_id: uuid.UUID, payload: TestFetchRequest, engine: EngineDep):
    """Run the fetcher once with the given values. Nothing is persisted."""
    result = await service.test_fetch(engine, integration_id, payload.credentials, payload.options)
    if isinstance(result, FetchOk):
        return TestFetchResponse(success=True, data=result.data)
    return TestFetchResponse(success=False, error=result.reason, retryable=result.retryable)


@router.get(
    "/{integration_id}/entries",
    response_model=List[CacheEntryHealth],
    responses={404: {"description": "Integration not found"}}
)
async def list_cache_entries(integration_id: uuid.UUID, engine: EngineDep):
    """Status, version and refresh time of every cache entry. Payloads are not included."""
    engine.registry.get(integration_id)
    return engine.cache_store.list_for_integration(integration_id)


@router.get(
    "/{integration_id}/oauth/authorize",
    response_model=OAuthAuthorizeResponse,
    responses={
        400: {"description": "No OAuth configuration or no stored client"},
        404: {"description": "Integration not found"},
    }
)
async def oauth_authorize(
    integration_id: uuid.UUID,
    engine: EngineDep,
    redirect_uri: str = Query(..., min_length=1),
    organization_id: Optional[uuid.UUID] = Query(None),
    widget_instance_id: Optional[uuid.UUID] = Query(None),
):
    """Start an OAuth connect flow for one organization or widget instance."""
    if (organization_id is None) == (widget_instance_id is None):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Exactly one of organization_id or widget_instance_id is required",
        )
    return service.start_oauth(
        engine,
        integration_id,
        redirect_uri,
        organization_id=organization_id,
        widget_instance_id=widget_instance_id,
    )
