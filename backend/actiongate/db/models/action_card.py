"""Action card ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from actiongate.db.base import Base
from actiongate.db.types import JSONBCompat, UTCDateTime, utcnow


class ActionCard(Base):
    __tablename__ = "action_cards"
    __table_args__ = (
        Index("ix_action_cards_tenant_status", "tenant_id", "status"),
        Index("ix_action_cards_status_expires_at", "status", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    action_type = Column(String(length=64), nullable=False)
    category = Column(String(length=64), nullable=True)
    priority = Column(Integer, nullable=False, server_default=sa_text("50"), default=50)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    suggested_action = Column(Text, nullable=True)
    status = Column(String(length=16), nullable=False)
    autonomy_level = Column(String(length=16), nullable=False)
    action_payload = Column(JSONBCompat, nullable=False, default=dict)
    # Column named "metadata" but attribute renamed to avoid Base.metadata collisions.
    metadata_json = Column("metadata", JSONBCompat, nullable=False, default=dict)
    dispatch_state = Column(String(length=16), nullable=True)
    external_ref = Column(Text, nullable=True)
    last_dispatch_error = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, server_default=sa_text("1"), default=1)
    expires_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    resolved_at = Column(UTCDateTime(), nullable=True)
    resolved_by = Column(UUID(as_uuid=True), nullable=True)
