"""Audit ledger endpoints."""
from __future__ import annotations

from datetime import datetime
from time import perf_counter
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from actiongate.api.schemas.action_history import ActionHistoryItem, ActionHistoryListResponse
from actiongate.db.deps import get_db
from actiongate.db.models.action_history import ActionHistory
from actiongate.observability.metrics import log_metric
from actiongate.observability.tracing import trace
from actiongate.services import action_history_service
from actiongate.services.action_history_service import HistoryFilters
from actiongate.services.tenant_service import require_tenant

router = APIRouter()


def history_filters(
    actor_type: Optional[str] = Query(None),
    actor_id: Optional[UUID] = Query(None),
    action: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[UUID] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
) -> HistoryFilters:
    return HistoryFilters(
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )


@router.get("/action-history", response_model=ActionHistoryListResponse, tags=["action-history"])
def list_action_history(
    request: Request,
    tenant_id: UUID = Query(..., description="Tenant ID"),
    limit: int = Query(50, ge=1, le=100),
    cursor: str | None = Query(None),
    filters: HistoryFilters = Depends(history_filters),
    db: Session = Depends(get_db),
) -> ActionHistoryListResponse:
    request_id = getattr(request.state, "request_id", None)
    metadata = {"limit": limit, "cursor": bool(cursor), "action": filters.action, "request_id": request_id}
    start = perf_counter()
    with trace("http.action_history.list", metadata=metadata, tenant_id=str(tenant_id), request_id=request_id):
        require_tenant(db, tenant_id)
        try:
            page = action_history_service.list_history(db, tenant_id, filters, limit=limit, cursor=cursor)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cursor")

    latency_ms = (perf_counter() - start) * 1000
    log_metric("action_history.list.count", len(page.items), metadata={"tenant_id": str(tenant_id)})
    log_metric("action_history.list.latency_ms", latency_ms, metadata={"tenant_id": str(tenant_id)})

    return ActionHistoryListResponse(
        tenant_id=tenant_id,
        items=[_serialize_entry(entry) for entry in page.items],
        next_cursor=page.next_cursor,
        request_id=request_id or "",
    )


@router.get("/action-history/export", tags=["action-history"])
def export_action_history(
    request: Request,
    tenant_id: UUID = Query(..., description="Tenant ID"),
    filters: HistoryFilters = Depends(history_filters),
    db: Session = Depends(get_db),
) -> Response:
    request_id = getattr(request.state, "request_id", None)
    with trace("http.action_history.export", metadata={"action": filters.action}, tenant_id=str(tenant_id), request_id=request_id):
        require_tenant(db, tenant_id)
        body = action_history_service.export_csv(db, tenant_id, filters)

    log_metric("action_history.export.success", 1, metadata={"tenant_id": str(tenant_id)})
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="action-history.csv"'},
    )


def _serialize_entry(entry: ActionHistory) -> ActionHistoryItem:
    return ActionHistoryItem(
        id=entry.id,
        created_at=entry.created_at.isoformat() if entry.created_at else "",
        actor_type=entry.actor_type,
        actor_id=entry.actor_id,
        actor_name=entry.actor_name,
        action=entry.action,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        description=entry.description,
        diff=entry.diff if isinstance(entry.diff, dict) else None,
        metadata=_ensure_dict(entry.metadata_json),
    )


def _ensure_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}
