"""
Pydantic schemas for integration API requests and responses.

Request Schemas:
- IntegrationCreate: Register an integration definition (operator)
- IntegrationActiveUpdate: Toggle is_active
- CredentialStoreRequest: Store credentials for an organization or a widget instance
- TestFetchRequest: Run a fetcher once without persisting anything

Response Schemas:
- IntegrationResponse: Definition as stored
- CredentialResponse: Non-sensitive credential metadata
- WidgetDataResponse: Cached payload for one consumer
- WebhookResponse: Result of an accepted webhook
- CacheEntryHealth: Operator health view of one cache entry

Design Principles:
- Never expose ciphertext or plaintext credentials in responses
- Only non-sensitive credential metadata leaves the vault
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.enums import (
    CredentialScope,
    DataStatus,
    DiscriminatorType,
    IntegrationMode,
)


# ================================================================================
# REQUEST SCHEMAS
# ================================================================================

class IntegrationCreate(BaseModel):
    """
    Request to register an integration definition.

    Examples:
        Shared RSS feed, one cache entry per feed URL:
            {
                "widget_type": "rss",
                "name": "RSS Feed",
                "mode": "pull",
                "fetcher": "rss",
                "pull_interval_seconds": 900,
                "discriminator_type": "widget_option",
                "discriminator_keys": ["feed_url"],
                "config_schema": {"feed_url": {"type": "url", "required": true},
                                  "max_items": {"type": "number", "default": 10}}
            }
    """
    widget_type: str = Field(..., min_length=1, max_length=100, description="Widget type served by this integration")
    name: str = Field(..., min_length=1, max_length=100, description="Name, unique per widget type")
    description: Optional[str] = Field(default=None, max_length=2000)

    mode: IntegrationMode = Field(..., description="pull (scheduled fetch) or push (webhook)")
    credential_scope: CredentialScope = Field(default=CredentialScope.ORGANIZATION)
    discriminator_type: DiscriminatorType = Field(default=DiscriminatorType.ORGANIZATION)
    discriminator_keys: List[str] = Field(default_factory=list)

    credential_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"auth_type": "none"},
        description="{auth_type, fields, oauth2?}"
    )
    config_schema: Dict[str, Any] = Field(default_factory=dict, description="{name: FieldSpec}")

    fetcher: Optional[str] = Field(default=None, description="Registered fetcher name (pull only)")
    pull_endpoint: Optional[str] = Field(default=None, max_length=1024)
    pull_interval_seconds: Optional[int] = Field(default=None, description="Refresh cadence (pull only)")
    pull_config: Dict[str, Any] = Field(default_factory=dict)

    push_path: Optional[str] = Field(default=None, max_length=255)
    push_config: Dict[str, Any] = Field(default_factory=dict)

    is_active: bool = True

    @field_validator('widget_type', 'name')
    @classmethod
    def strip_names(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class IntegrationActiveUpdate(BaseModel):
    is_active: bool


class CredentialStoreRequest(BaseModel):
    """
    Store credentials for exactly one scope.

    Fields:
        credentials: Values matching the integration's credential_schema
        organization_id: Owner for organization-scoped credentials
        widget_instance_id: Owner for widget-scoped credentials
    """
    credentials: Dict[str, Any] = Field(..., description="Credential values (encrypted at rest)")
    organization_id: Optional[uuid.UUID] = None
    widget_instance_id: Optional[uuid.UUID] = None


class TestFetchRequest(BaseModel):
    credentials: Dict[str, Any] = Field(default_factory=dict)
    options: Dict[str, Any] = Field(default_factory=dict)


# ================================================================================
# RESPONSE SCHEMAS
# ================================================================================

class IntegrationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    widget_type: str
    name: str
    description: Optional[str] = None
    mode: IntegrationMode
    credential_scope: CredentialScope
    discriminator_type: DiscriminatorType
    discriminator_keys: List[str] = Field(default_factory=list)
    credential_schema: Dict[str, Any] = Field(default_factory=dict)
    config_schema: Dict[str, Any] = Field(default_factory=dict)
    fetcher: Optional[str] = None
    pull_endpoint: Optional[str] = None
    pull_interval_seconds: Optional[int] = None
    pull_config: Dict[str, Any] = Field(default_factory=dict)
    push_path: Optional[str] = None
    push_config: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool
    created_at: datetime
    updated_at: datetime


class CredentialResponse(BaseModel):
    """Never contains secret values."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    integration_id: uuid.UUID
    organization_id: Optional[uuid.UUID] = None
    widget_instance_id: Optional[uuid.UUID] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="credential_metadata")
    validated_at: Optional[datetime] = None
    is_valid: bool


class WidgetDataResponse(BaseModel):
    data: Dict[str, Any]
    version: int
    fetched_at: Optional[datetime] = None
    status: DataStatus


class WebhookResponse(BaseModel):
    success: bool = True
    version: int
    received_at: datetime


class RefreshResponse(BaseModel):
    enqueued: bool
    integration_id: uuid.UUID
    discriminator: str


class TestFetchResponse(BaseModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    retryable: Optional[bool] = None


class CacheEntryHealth(BaseModel):
    """Operator view of one cache entry; no payload."""
    model_config = ConfigDict(from_attributes=True)

    discriminator_key: str
    status: DataStatus
    error_message: Optional[str] = None
    version: int
    fetched_at: Optional[datetime] = None
    refresh_at: Optional[datetime] = None
    organization_id: Optional[uuid.UUID] = None
    widget_instance_id: Optional[uuid.UUID] = None


class OAuthAuthorizeResponse(BaseModel):
    authorization_url: str
    state: str


class OAuthCallbackResponse(BaseModel):
    success: bool
    integration_id: uuid.UUID
    credential: CredentialResponse

