"""
Widget instance model.

Rows are written by the dashboard. The sync engine only reads them to resolve
the owning organization, widget-scoped credentials and discriminator options.
"""
import uuid
from typing import Any, Dict

from sqlalchemy import Column, String
from sqlmodel import Field, Index

from app.models.base import BaseModel, json_column


class WidgetInstance(BaseModel, table=True):
    __tablename__ = "widget_instance"

    organization_id: uuid.UUID = Field(nullable=False, index=True)
    widget_type: str = Field(sa_column=Column(String(100), nullable=False))
    options: Dict[str, Any] = Field(default_factory=dict, sa_column=json_column(nullable=False))

    __table_args__ = (
        Index("idx_widget_instance_org_type", "organization_id", "widget_type"),
    )
