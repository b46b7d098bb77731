"""
Cached integration payloads.

One row per (integration, discriminator). ``version`` starts at 1 on the first
successful write and increases by exactly one on every successful write after
that. Failed fetches never clear ``data``.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlmodel import CheckConstraint, Field, Index

from app.models.base import BaseModel, json_column
from app.models.enums import DataStatus


class IntegrationData(BaseModel, table=True):
    """
    Fields:
        discriminator_key: "org-<uuid>", "widget-<uuid>" or "opt-<sha256>"
        data: Last good payload
        version: Monotonic write counter used for conditional reads
        fetched_at: When data was last written successfully
        refresh_at: When a PULL entry becomes stale (null for PUSH)
        status/error_message: Outcome of the most recent write
        organization_id/widget_instance_id/fetch_options: enough context to
            re-poll a stale entry without the request that created it
    """
    __tablename__ = "integration_data"

    integration_id: uuid.UUID = Field(
        sa_column=Column(
            ForeignKey("widget_integration.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    discriminator_key: str = Field(sa_column=Column(String(100), nullable=False))

    data: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column(nullable=False))
    version: int = Field(default=1, nullable=False)
    fetched_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    refresh_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True, index=True),
    )
    status: DataStatus = Field(
        default=DataStatus.SUCCESS,
        sa_column=Column(String(10), nullable=False),
    )
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    organization_id: Optional[uuid.UUID] = Field(default=None, nullable=True)
    widget_instance_id: Optional[uuid.UUID] = Field(default=None, nullable=True)
    fetch_options: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column(nullable=False))

    __table_args__ = (
        UniqueConstraint("integration_id", "discriminator_key", name="uq_integration_data_discriminator"),
        Index("idx_integration_data_integration", "integration_id"),
        CheckConstraint("version >= 1", name="check_version_positive"),
        CheckConstraint("status IN ('success', 'error')", name="check_data_status"),
    )
