"""
Base model shared by all tables.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from app.core.time_utils import utc_now

JSONType = JSONB().with_variant(JSON, "sqlite")


class TimestampMixin(SQLModel):
    """Created/updated timestamps stored as timezone-aware UTC."""
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )

    def touch(self, now: Optional[datetime] = None) -> None:
        self.updated_at = now or utc_now()


class BaseModel(TimestampMixin):
    """Base model with a UUID primary key."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)


def json_column(nullable: bool = True) -> Column:
    """JSON column (JSONB on PostgreSQL, JSON on SQLite)."""
    return Column(JSONType, nullable=nullable)
