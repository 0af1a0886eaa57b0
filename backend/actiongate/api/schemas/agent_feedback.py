"""Schemas for agent feedback endpoints."""
from __future__ import annotations

from typing import Dict, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class FeedbackRequest(BaseModel):
    rating: Literal["HELPFUL", "NOT_HELPFUL"]
    comment: Optional[str] = Field(default=None, max_length=1000)
    staff_id: Optional[UUID] = None
    tenant_id: Optional[UUID] = None


class FeedbackResponse(BaseModel):
    id: UUID
    action_card_id: UUID
    action_type: str
    rating: Literal["HELPFUL", "NOT_HELPFUL"]
    comment: Optional[str]
    created: bool
    request_id: str


class TypeStatsPayload(BaseModel):
    total: int
    helpful: int
    not_helpful: int
    helpful_rate: int


class FeedbackStatsResponse(BaseModel):
    tenant_id: UUID
    total: int
    helpful: int
    not_helpful: int
    helpful_rate: int
    by_type: Dict[str, TypeStatsPayload]
    request_id: str
