"""Action card endpoints: proposal intake, review queue and decisions."""
from __future__ import annotations

from time import perf_counter
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from actiongate.api.schemas.action_card import (
    ActionCardListResponse,
    ActionCardPayload,
    ActionCardResponse,
    CardDecisionRequest,
    ProposalRequest,
    ProposalResponse,
)
from actiongate.db.deps import get_db
from actiongate.db.models.action_card import ActionCard
from actiongate.enums import CardStatus
from actiongate.observability.metrics import log_metric
from actiongate.observability.tracing import trace
from actiongate.services import action_card_service

router = APIRouter()


@router.post(
    "/action-cards",
    response_model=ProposalResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["action-cards"],
)
def propose_action(
    payload: ProposalRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ProposalResponse:
    """Submit an agent proposal; the tenant's autonomy policy decides what happens to it."""
    request_id = getattr(request.state, "request_id", None)
    metadata = {
        "route": "/action-cards",
        "tenant_id": str(payload.tenant_id),
        "action_type": payload.action_type,
        "request_id": request_id,
    }
    start = perf_counter()
    with trace("http.action_cards.propose", metadata=metadata, tenant_id=str(payload.tenant_id), request_id=request_id):
        outcome = action_card_service.propose(
            db,
            payload.tenant_id,
            payload.action_type,
            payload.title,
            payload.description,
            payload.suggested_action,
            payload.payload,
            category=payload.category,
            priority=payload.priority,
            expires_at=payload.expires_at,
            metadata={**payload.metadata, "request_id": request_id} if request_id else payload.metadata,
        )

    latency_ms = (perf_counter() - start) * 1000
    log_metric("action_cards.propose.latency_ms", latency_ms, metadata={"outcome": outcome.reason})

    return ProposalResponse(
        outcome=outcome.reason,
        suppressed=outcome.suppressed,
        card=serialize_card(outcome.card) if outcome.card else None,
        request_id=request_id or "",
    )


@router.get("/action-cards", response_model=ActionCardListResponse, tags=["action-cards"])
def list_action_cards(
    request: Request,
    tenant_id: UUID = Query(..., description="Tenant ID"),
    status_filter: Optional[str] = Query(
        CardStatus.PENDING.value,
        alias="status",
        description="Card status; pass 'all' for every status",
    ),
    action_type: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
) -> ActionCardListResponse:
    request_id = getattr(request.state, "request_id", None)
    effective_status = None if (status_filter or "").lower() == "all" else status_filter
    metadata = {"status": effective_status, "action_type": action_type, "page": page}
    with trace("http.action_cards.list", metadata=metadata, tenant_id=str(tenant_id), request_id=request_id):
        result = action_card_service.list_cards(
            db,
            tenant_id,
            status=effective_status,
            action_type=action_type,
            category=category,
            page=page,
            page_size=page_size,
        )

    log_metric("action_cards.list.count", len(result.items), metadata={"tenant_id": str(tenant_id)})
    return ActionCardListResponse(
        tenant_id=tenant_id,
        items=[serialize_card(card) for card in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        request_id=request_id or "",
    )


@router.get("/action-cards/{card_id}", response_model=ActionCardResponse, tags=["action-cards"])
def get_action_card(
    card_id: UUID,
    request: Request,
    tenant_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db),
) -> ActionCardResponse:
    request_id = getattr(request.state, "request_id", None)
    card = action_card_service.get_card(db, card_id, tenant_id)
    return ActionCardResponse(card=serialize_card(card), request_id=request_id or "")


@router.post("/action-cards/{card_id}/approve", response_model=ActionCardResponse, tags=["action-cards"])
def approve_action_card(
    card_id: UUID,
    payload: CardDecisionRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ActionCardResponse:
    return _decide(
        "approve",
        card_id,
        payload,
        request,
        lambda: action_card_service.approve(
            db,
            card_id,
            payload.actor_id,
            actor_name=payload.actor_name,
            tenant_id=payload.tenant_id,
        ),
    )


@router.post("/action-cards/{card_id}/dismiss", response_model=ActionCardResponse, tags=["action-cards"])
def dismiss_action_card(
    card_id: UUID,
    payload: CardDecisionRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ActionCardResponse:
    return _decide(
        "dismiss",
        card_id,
        payload,
        request,
        lambda: action_card_service.dismiss(
            db,
            card_id,
            payload.actor_id,
            actor_name=payload.actor_name,
            tenant_id=payload.tenant_id,
        ),
    )


@router.post("/action-cards/{card_id}/retry", response_model=ActionCardResponse, tags=["action-cards"])
def retry_action_card(
    card_id: UUID,
    payload: CardDecisionRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ActionCardResponse:
    return _decide(
        "retry",
        card_id,
        payload,
        request,
        lambda: action_card_service.retry_dispatch(
            db,
            card_id,
            payload.actor_id,
            actor_name=payload.actor_name,
            tenant_id=payload.tenant_id,
        ),
    )


@router.post("/action-cards/{card_id}/reset-dispatch", response_model=ActionCardResponse, tags=["action-cards"])
def reset_action_card_dispatch(
    card_id: UUID,
    payload: CardDecisionRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ActionCardResponse:
    """Operator recovery for a card stuck in flight; makes it retryable."""
    return _decide(
        "reset_dispatch",
        card_id,
        payload,
        request,
        lambda: action_card_service.reset_stuck_dispatch(
            db,
            card_id,
            payload.actor_id,
            actor_name=payload.actor_name,
            tenant_id=payload.tenant_id,
            reason=payload.reason,
        ),
    )


def _decide(decision: str, card_id: UUID, payload: CardDecisionRequest, request: Request, action) -> ActionCardResponse:
    request_id = getattr(request.state, "request_id", None)
    base_metadata: Dict[str, Any] = {
        "route": f"/action-cards/{card_id}/{decision}",
        "card_id": str(card_id),
        "actor_id": str(payload.actor_id),
        "request_id": request_id,
    }
    start = perf_counter()
    success = False
    try:
        with trace(
            f"http.action_cards.{decision}",
            metadata=base_metadata,
            tenant_id=str(payload.tenant_id) if payload.tenant_id else None,
            request_id=request_id,
        ):
            card = action()
            success = True
    finally:
        latency_ms = (perf_counter() - start) * 1000
        log_metric(f"action_cards.{decision}.success", 1 if success else 0, metadata={"card_id": str(card_id)})
        log_metric(f"action_cards.{decision}.latency_ms", latency_ms, metadata={"card_id": str(card_id)})

    return ActionCardResponse(card=serialize_card(card), request_id=request_id or "")


def serialize_card(card: ActionCard) -> ActionCardPayload:
    return ActionCardPayload(
        id=card.id,
        tenant_id=card.tenant_id,
        action_type=card.action_type,
        category=card.category,
        priority=card.priority,
        title=card.title,
        description=card.description,
        suggested_action=card.suggested_action,
        status=card.status,
        autonomy_level=card.autonomy_level,
        payload=card.action_payload if isinstance(card.action_payload, dict) else {},
        dispatch_state=card.dispatch_state,
        external_ref=card.external_ref,
        last_dispatch_error=card.last_dispatch_error,
        expires_at=card.expires_at,
        created_at=card.created_at,
        resolved_at=card.resolved_at,
        resolved_by=card.resolved_by,
    )
