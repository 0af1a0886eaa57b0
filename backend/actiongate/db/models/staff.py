"""Staff ORM model (backs the default role lookup)."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID

from actiongate.db.base import Base
from actiongate.db.types import UTCDateTime, utcnow


class Staff(Base):
    __tablename__ = "staff"
    __table_args__ = (Index("ix_staff_tenant_id", "tenant_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    role = Column(String(length=32), nullable=False)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
