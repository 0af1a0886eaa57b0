"""Agent feedback ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from actiongate.db.base import Base
from actiongate.db.types import UTCDateTime, utcnow


class AgentFeedback(Base):
    __tablename__ = "agent_feedback"
    __table_args__ = (
        UniqueConstraint("action_card_id", name="uq_agent_feedback_action_card_id"),
        Index("ix_agent_feedback_tenant_type", "tenant_id", "action_type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    action_card_id = Column(UUID(as_uuid=True), ForeignKey("action_cards.id", ondelete="CASCADE"), nullable=False)
    action_type = Column(String(length=64), nullable=False)
    rating = Column(String(length=16), nullable=False)
    comment = Column(Text, nullable=True)
    staff_id = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)
