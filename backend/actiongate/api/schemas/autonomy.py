"""Schemas for autonomy policy endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

LevelLiteral = Literal["OFF", "ASSISTED", "AUTO"]
RoleLiteral = Literal["AGENT", "SERVICE_PROVIDER", "ADMIN", "SUPER_ADMIN"]


class AutonomyConfigPayload(BaseModel):
    action_type: str
    autonomy_level: LevelLiteral
    constraints: Dict[str, Any]
    required_role: Optional[RoleLiteral]
    updated_at: Optional[datetime]


class AutonomyListResponse(BaseModel):
    tenant_id: UUID
    configs: List[AutonomyConfigPayload]
    request_id: str


class ResolvedPolicyResponse(BaseModel):
    tenant_id: UUID
    action_type: str
    autonomy_level: LevelLiteral
    constraints: Dict[str, Any]
    required_role: Optional[RoleLiteral]
    source: Literal["specific", "wildcard", "default"]
    request_id: str


class AutonomyUpdateRequest(BaseModel):
    tenant_id: UUID
    autonomy_level: LevelLiteral
    constraints: Dict[str, Any] = Field(default_factory=dict)
    required_role: Optional[RoleLiteral] = None
    actor_id: Optional[UUID] = None
    actor_name: Optional[str] = Field(default=None, max_length=200)


class AutonomyUpdateResponse(BaseModel):
    tenant_id: UUID
    config: AutonomyConfigPayload
    request_id: str
