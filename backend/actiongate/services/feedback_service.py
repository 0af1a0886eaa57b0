"""Staff ratings of resolved action cards and per-type quality stats."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import desc, update
from sqlalchemy.orm import Session

from actiongate.db.models.agent_feedback import AgentFeedback
from actiongate.db.types import utcnow
from actiongate.db.upsert import insert_ignore
from actiongate.enums import CardStatus, Rating
from actiongate.errors import CardNotResolved
from actiongate.observability.metrics import log_metric
from actiongate.services.action_card_service import get_card
from actiongate.services.tenant_service import require_tenant

logger = logging.getLogger(__name__)


@dataclass
class FeedbackOutcome:
    feedback: AgentFeedback
    created: bool


@dataclass
class TypeStats:
    total: int = 0
    helpful: int = 0
    not_helpful: int = 0
    helpful_rate: int = 0


@dataclass
class FeedbackStats:
    total: int
    helpful: int
    not_helpful: int
    helpful_rate: int
    by_type: Dict[str, TypeStats] = field(default_factory=dict)


def rate(
    db: Session,
    card_id: UUID,
    rating: Rating | str,
    comment: str | None = None,
    *,
    staff_id: UUID | None = None,
    tenant_id: UUID | None = None,
) -> FeedbackOutcome:
    """Record a rating for a resolved card.

    The first rating is kept; later submissions only replace the comment
    when one is given.
    """
    rating_value = Rating(rating)
    card = get_card(db, card_id, tenant_id)
    if card.status == CardStatus.PENDING.value:
        raise CardNotResolved()

    cleaned_comment = comment.strip() if comment and comment.strip() else None
    try:
        created = insert_ignore(
            db,
            AgentFeedback,
            values={
                "id": uuid4(),
                "tenant_id": card.tenant_id,
                "action_card_id": card.id,
                "action_type": card.action_type,
                "rating": rating_value.value,
                "comment": cleaned_comment,
                "staff_id": staff_id,
            },
            conflict_columns=["action_card_id"],
        )
        if not created and cleaned_comment is not None:
            db.execute(
                update(AgentFeedback)
                .where(AgentFeedback.action_card_id == card.id)
                .values(comment=cleaned_comment, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    feedback = (
        db.query(AgentFeedback)
        .filter(AgentFeedback.action_card_id == card_id)
        .populate_existing()
        .one()
    )
    if created:
        logger.info("Feedback submitted: card=%s staff=%s rating=%s", card_id, staff_id, rating_value.value)
        log_metric("feedback.submitted", 1, metadata={"action_type": feedback.action_type, "rating": rating_value.value})
    elif feedback.rating != rating_value.value:
        logger.info("Ignoring rating change for card %s; first rating %s is kept", card_id, feedback.rating)
    return FeedbackOutcome(feedback=feedback, created=created)


def feedback_for_card(db: Session, tenant_id: UUID, card_id: UUID) -> List[AgentFeedback]:
    return (
        db.query(AgentFeedback)
        .filter(AgentFeedback.tenant_id == tenant_id, AgentFeedback.action_card_id == card_id)
        .order_by(desc(AgentFeedback.created_at))
        .all()
    )


def stats(
    db: Session,
    tenant_id: UUID,
    type_filter: str | None = None,
    *,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> FeedbackStats:
    require_tenant(db, tenant_id)
    query = db.query(AgentFeedback.action_type, AgentFeedback.rating).filter(AgentFeedback.tenant_id == tenant_id)
    if type_filter:
        query = query.filter(AgentFeedback.action_type == type_filter)
    if date_from:
        query = query.filter(AgentFeedback.created_at >= date_from)
    if date_to:
        query = query.filter(AgentFeedback.created_at <= date_to)

    by_type: Dict[str, TypeStats] = {}
    helpful = 0
    not_helpful = 0
    for action_type, rating_value in query.all():
        bucket = by_type.setdefault(action_type, TypeStats())
        bucket.total += 1
        if rating_value == Rating.HELPFUL.value:
            bucket.helpful += 1
            helpful += 1
        else:
            bucket.not_helpful += 1
            not_helpful += 1

    for bucket in by_type.values():
        bucket.helpful_rate = helpful_rate(bucket.helpful, bucket.total)

    total = helpful + not_helpful
    return FeedbackStats(
        total=total,
        helpful=helpful,
        not_helpful=not_helpful,
        helpful_rate=helpful_rate(helpful, total),
        by_type=dict(sorted(by_type.items())),
    )


def helpful_rate(helpful: int, total: int) -> int:
    """Percentage of helpful ratings, rounded half up; 0 when nothing is rated."""
    if total <= 0:
        return 0
    return (helpful * 200 + total) // (2 * total)
