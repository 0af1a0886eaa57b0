"""Autonomy policy ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from actiongate.db.base import Base
from actiongate.db.types import JSONBCompat, UTCDateTime, utcnow


class AutonomyConfig(Base):
    __tablename__ = "autonomy_configs"
    # One row per (tenant, action type); action_type "*" is the tenant-wide default.
    __table_args__ = (UniqueConstraint("tenant_id", "action_type", name="uq_autonomy_configs_tenant_type"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    action_type = Column(String(length=64), nullable=False)
    autonomy_level = Column(String(length=16), nullable=False)
    constraints = Column(JSONBCompat, nullable=False, default=dict)
    required_role = Column(String(length=32), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)
