"""
Encrypted integration credentials.

Each credential belongs to exactly one scope: an organization or a single
widget instance. Plaintext is encrypted with the owning organization's key
(see app/core/encryption.py) and never stored. ``credential_metadata`` holds
only non-sensitive values such as ``expires_at`` and display hints.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint
from sqlmodel import CheckConstraint, Field, Index

from app.models.base import BaseModel, json_column


class IntegrationCredential(BaseModel, table=True):
    """
    Security:
        - encrypted_credentials is a Fernet token (AES-128-CBC + HMAC-SHA256)
        - Changing SECRET_KEY invalidates stored credentials unless the old
          secret stays in PREVIOUS_SECRET_KEYS until they are rotated
        - Never expose encrypted_credentials in API responses
    """
    __tablename__ = "integration_credential"

    integration_id: uuid.UUID = Field(
        sa_column=Column(
            ForeignKey("widget_integration.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    organization_id: Optional[uuid.UUID] = Field(default=None, nullable=True)
    widget_instance_id: Optional[uuid.UUID] = Field(
        default=None,
        sa_column=Column(
            ForeignKey("widget_instance.id", ondelete="CASCADE"),
            nullable=True,
        ),
    )

    # Stored as text to accommodate variable-length ciphertext
    encrypted_credentials: str = Field(sa_column=Column(Text, nullable=False))
    credential_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column(nullable=False))

    validated_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    is_valid: bool = Field(default=True)

    __table_args__ = (
        # Exactly one owning scope
        CheckConstraint(
            "(organization_id IS NULL) <> (widget_instance_id IS NULL)",
            name="check_credential_single_scope",
        ),
        UniqueConstraint("integration_id", "organization_id", name="uq_credential_integration_org"),
        UniqueConstraint("integration_id", "widget_instance_id", name="uq_credential_integration_widget"),
        Index("idx_credential_widget_instance", "widget_instance_id"),
    )
