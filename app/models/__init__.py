"""
Database models.
"""
from .base import BaseModel, TimestampMixin
from .enums import (
    AuthType,
    CredentialScope,
    DataStatus,
    DiscriminatorType,
    IntegrationMode,
    WebhookAuthMethod,
)
from .integration import IntegrationDefinition
from .widget_instance import WidgetInstance
from .credential import IntegrationCredential
from .cache_entry import IntegrationData

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AuthType",
    "CredentialScope",
    "DataStatus",
    "DiscriminatorType",
    "IntegrationMode",
    "WebhookAuthMethod",
    "IntegrationDefinition",
    "WidgetInstance",
    "IntegrationCredential",
    "IntegrationData",
]
