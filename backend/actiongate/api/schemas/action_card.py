"""Schemas for action card endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class ProposalRequest(BaseModel):
    tenant_id: UUID
    action_type: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=300)
    description: str = Field(..., min_length=1, max_length=4000)
    suggested_action: Optional[str] = Field(default=None, max_length=1000)
    payload: Dict[str, Any] = Field(default_factory=dict)
    category: Optional[str] = Field(default=None, max_length=64)
    priority: int = Field(default=50, ge=0, le=100)
    expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("action_type", "title", "description")
    @classmethod
    def strip_required_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned


class ActionCardPayload(BaseModel):
    id: UUID
    tenant_id: UUID
    action_type: str
    category: Optional[str]
    priority: int
    title: str
    description: str
    suggested_action: Optional[str]
    status: Literal["PENDING", "APPROVED", "DISMISSED", "EXECUTED", "EXPIRED"]
    autonomy_level: str
    payload: Dict[str, Any]
    dispatch_state: Optional[str]
    external_ref: Optional[str]
    last_dispatch_error: Optional[str]
    expires_at: Optional[datetime]
    created_at: datetime
    resolved_at: Optional[datetime]
    resolved_by: Optional[UUID]


class ProposalResponse(BaseModel):
    outcome: Literal["suppressed", "created", "auto_executed", "auto_failed", "rate_limited"]
    suppressed: bool
    card: Optional[ActionCardPayload] = None
    request_id: str


class CardDecisionRequest(BaseModel):
    actor_id: UUID
    actor_name: Optional[str] = Field(default=None, max_length=200)
    tenant_id: Optional[UUID] = None
    reason: Optional[str] = Field(default=None, max_length=500)


class ActionCardResponse(BaseModel):
    card: ActionCardPayload
    request_id: str


class ActionCardListResponse(BaseModel):
    tenant_id: UUID
    items: List[ActionCardPayload]
    total: int
    page: int
    page_size: int
    request_id: str
