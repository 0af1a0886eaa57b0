"""Schemas for the audit ledger endpoints."""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class ActionHistoryItem(BaseModel):
    id: UUID
    created_at: str
    actor_type: str
    actor_id: Optional[UUID] = None
    actor_name: Optional[str] = None
    action: str
    entity_type: str
    entity_id: UUID
    description: str
    diff: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any]


class ActionHistoryListResponse(BaseModel):
    tenant_id: UUID
    items: List[ActionHistoryItem]
    next_cursor: Optional[str]
    request_id: str
