"""Tenant ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, String, Text, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from actiongate.db.base import Base
from actiongate.db.types import UTCDateTime, utcnow


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(Text, nullable=False)
    timezone = Column(String(length=64), nullable=False, server_default=sa_text("'UTC'"), default="UTC")
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
