"""Action history (audit ledger) ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID

from actiongate.db.base import Base
from actiongate.db.types import JSONBCompat, UTCDateTime, utcnow


class ActionHistory(Base):
    __tablename__ = "action_history"
    __table_args__ = (
        Index("ix_action_history_tenant_created", "tenant_id", "created_at"),
        Index("ix_action_history_entity", "entity_type", "entity_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    actor_type = Column(String(length=16), nullable=False)
    actor_id = Column(UUID(as_uuid=True), nullable=True)
    actor_name = Column(Text, nullable=True)
    action = Column(String(length=64), nullable=False)
    entity_type = Column(String(length=32), nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False)
    description = Column(Text, nullable=False)
    diff = Column(JSONBCompat, nullable=True)
    metadata_json = Column("metadata", JSONBCompat, nullable=False, default=dict)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
