"""Per-day rate counter ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, Date, ForeignKey, Integer, String, UniqueConstraint, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from actiongate.db.base import Base
from actiongate.db.types import UTCDateTime, utcnow


class RateCounter(Base):
    __tablename__ = "rate_counters"
    __table_args__ = (
        UniqueConstraint("tenant_id", "action_type", "day", name="uq_rate_counters_tenant_type_day"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    action_type = Column(String(length=64), nullable=False)
    day = Column(Date, nullable=False)
    count = Column(Integer, nullable=False, server_default=sa_text("0"), default=0)
    # Fixed when the row is first created from the tenant's timezone.
    window_start = Column(UTCDateTime(), nullable=False)
    window_end = Column(UTCDateTime(), nullable=False)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
