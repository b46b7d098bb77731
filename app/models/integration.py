"""
Integration definition model.

An IntegrationDefinition declares how one widget type obtains data from an
external service: whether the data is pulled on a schedule or pushed via
webhook, who owns the credential, how widely a fetched payload is shared,
and the schemas credentials and options must satisfy.

Definitions are created by an operator and are immutable afterwards except
for ``is_active``.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, String, Text, UniqueConstraint
from sqlmodel import CheckConstraint, Field, Index

from app.models.base import BaseModel, json_column
from app.models.enums import CredentialScope, DiscriminatorType, IntegrationMode


class IntegrationDefinition(BaseModel, table=True):
    """
    Widget-type scoped integration configuration.

    Fields:
        widget_type: Widget type this integration serves (e.g. "weather")
        name: Operator-facing name, unique per widget type
        mode: PULL (fetched on a schedule) or PUSH (received via webhook)
        credential_scope: organization (shared) or widget (one instance)
        discriminator_type: organization, widget or widget_option
        discriminator_keys: Option names hashed for widget_option sharing
        credential_schema: {"auth_type": ..., "fields": {...}, "oauth2": {...}}
        config_schema: {name: FieldSpec} for widget options
        fetcher: Registered fetcher name (PULL only)
        pull_endpoint: URL template for the json_api fetcher
        pull_interval_seconds: Refresh cadence for PULL entries
        pull_config: headers, mapping and serve_limits
        push_path: Logical webhook path (PUSH only)
        push_config: auth_method, header names, allowed_ips, mapping/transform
        is_active: Inactive integrations are never polled and reject webhooks
    """
    __tablename__ = "widget_integration"

    widget_type: str = Field(sa_column=Column(String(100), nullable=False, index=True))
    name: str = Field(sa_column=Column(String(100), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    mode: IntegrationMode = Field(sa_column=Column(String(10), nullable=False))
    credential_scope: CredentialScope = Field(
        default=CredentialScope.ORGANIZATION,
        sa_column=Column(String(20), nullable=False),
    )
    discriminator_type: DiscriminatorType = Field(
        default=DiscriminatorType.ORGANIZATION,
        sa_column=Column(String(20), nullable=False),
    )
    discriminator_keys: List[str] = Field(default_factory=list, sa_column=json_column(nullable=False))

    credential_schema: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column(nullable=False))
    config_schema: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column(nullable=False))

    fetcher: Optional[str] = Field(default=None, sa_column=Column(String(50), nullable=True))
    pull_endpoint: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    pull_interval_seconds: Optional[int] = Field(default=None)
    pull_config: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column(nullable=False))

    push_path: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    push_config: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column(nullable=False))

    is_active: bool = Field(default=True)

    __table_args__ = (
        UniqueConstraint("widget_type", "name", name="uq_widget_integration_type_name"),
        Index("idx_widget_integration_active_type", "is_active", "widget_type"),
        CheckConstraint("mode IN ('pull', 'push')", name="check_integration_mode"),
        CheckConstraint(
            "pull_interval_seconds IS NULL OR pull_interval_seconds > 0",
            name="check_pull_interval_positive",
        ),
    )

    @property
    def is_pull(self) -> bool:
        return self.mode == IntegrationMode.PULL

    @property
    def is_push(self) -> bool:
        return self.mode == IntegrationMode.PUSH

    @property
    def auth_type(self) -> str:
        return (self.credential_schema or {}).get("auth_type", "none")

    @property
    def oauth2_config(self) -> Dict[str, Any]:
        return (self.credential_schema or {}).get("oauth2") or {}
