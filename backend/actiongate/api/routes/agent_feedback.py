"""Staff feedback on agent proposals."""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from actiongate.api.schemas.agent_feedback import (
    FeedbackRequest,
    FeedbackResponse,
    FeedbackStatsResponse,
    TypeStatsPayload,
)
from actiongate.db.deps import get_db
from actiongate.observability.tracing import trace
from actiongate.services import feedback_service

router = APIRouter()


@router.post(
    "/action-cards/{card_id}/feedback",
    response_model=FeedbackResponse,
    tags=["agent-feedback"],
)
def submit_feedback(
    card_id: UUID,
    payload: FeedbackRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> FeedbackResponse:
    """Rate a resolved card. The first rating sticks; resubmitting may only update the comment."""
    request_id = getattr(request.state, "request_id", None)
    with trace(
        "http.agent_feedback.submit",
        metadata={"card_id": str(card_id), "rating": payload.rating},
        tenant_id=str(payload.tenant_id) if payload.tenant_id else None,
        request_id=request_id,
    ):
        outcome = feedback_service.rate(
            db,
            card_id,
            payload.rating,
            payload.comment,
            staff_id=payload.staff_id,
            tenant_id=payload.tenant_id,
        )

    response.status_code = status.HTTP_201_CREATED if outcome.created else status.HTTP_200_OK
    feedback = outcome.feedback
    return FeedbackResponse(
        id=feedback.id,
        action_card_id=feedback.action_card_id,
        action_type=feedback.action_type,
        rating=feedback.rating,
        comment=feedback.comment,
        created=outcome.created,
        request_id=request_id or "",
    )


@router.get("/agent-feedback/stats", response_model=FeedbackStatsResponse, tags=["agent-feedback"])
def feedback_stats(
    request: Request,
    tenant_id: UUID = Query(..., description="Tenant ID"),
    action_type: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
) -> FeedbackStatsResponse:
    request_id = getattr(request.state, "request_id", None)
    with trace("http.agent_feedback.stats", metadata={"action_type": action_type}, tenant_id=str(tenant_id), request_id=request_id):
        result = feedback_service.stats(db, tenant_id, action_type, date_from=date_from, date_to=date_to)

    return FeedbackStatsResponse(
        tenant_id=tenant_id,
        total=result.total,
        helpful=result.helpful,
        not_helpful=result.not_helpful,
        helpful_rate=result.helpful_rate,
        by_type={
            name: TypeStatsPayload(
                total=bucket.total,
                helpful=bucket.helpful,
                not_helpful=bucket.not_helpful,
                helpful_rate=bucket.helpful_rate,
            )
            for name, bucket in result.by_type.items()
        },
        request_id=request_id or "",
    )
