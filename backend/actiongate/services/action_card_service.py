"""Action card lifecycle: proposal intake, approval, dismissal, retry and expiry.

Every transition out of a source state is a single conditional UPDATE on the
card row (``WHERE id = :id AND status = :expected``); the row count decides
which of several concurrent callers wins, and the losers get AlreadyResolved.
The ledger entry describing a transition is committed in the same
transaction. Dispatch always runs outside an open write transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from time import perf_counter
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import desc, update
from sqlalchemy.orm import Session

from actiongate.core.config import settings
from actiongate.db.models.action_card import ActionCard
from actiongate.db.models.tenant import Tenant
from actiongate.db.types import as_utc, utcnow
from actiongate.enums import (
    WILDCARD_ACTION_TYPE,
    ActorType,
    AutonomyLevel,
    CardStatus,
    DispatchState,
    EntityType,
    HistoryAction,
)
from actiongate.errors import (
    AlreadyResolved,
    CapacityExceeded,
    CardNotFound,
    DispatchError,
    ExpiryNotReached,
    Forbidden,
    InvalidPolicy,
)
from actiongate.observability.metrics import log_metric
from actiongate.observability.tracing import trace
from actiongate.services import action_history_service, autonomy_service, rate_tracker
from actiongate.services.autonomy_service import ResolvedPolicy
from actiongate.services.dispatch.base import Dispatcher, DispatchRequest, DispatchResult
from actiongate.services.dispatch.factory import get_dispatcher
from actiongate.services.tenant_service import RoleLookup, StaffRoleLookup, require_tenant

logger = logging.getLogger(__name__)

_UNSET = object()


@dataclass
class ProposalOutcome:
    card: Optional[ActionCard]
    suppressed: bool
    reason: str


@dataclass
class CardPage:
    items: List[ActionCard]
    total: int
    page: int
    page_size: int


def propose(
    db: Session,
    tenant_id: UUID,
    action_type: str,
    title: str,
    description: str,
    suggested_action: str | None = None,
    payload: Dict[str, Any] | None = None,
    *,
    category: str | None = None,
    priority: int = 50,
    expires_at: datetime | None = None,
    metadata: Dict[str, Any] | None = None,
    dispatcher: Dispatcher | None = None,
    now: datetime | None = None,
) -> ProposalOutcome:
    """Gate a proposal through the tenant's autonomy policy.

    OFF writes a suppression entry and creates nothing. ASSISTED creates a
    PENDING card. AUTO reserves daily capacity and dispatches; the card is
    only written once the outcome is known, as EXECUTED on success or as
    PENDING when capacity is exhausted or the dispatch failed.
    """
    action_type = autonomy_service.validate_action_type(action_type)
    if action_type == WILDCARD_ACTION_TYPE:
        raise InvalidPolicy(f"{WILDCARD_ACTION_TYPE!r} is reserved for tenant-wide policies")
    now = as_utc(now) if now else utcnow()
    with trace(
        "action_card.propose",
        metadata={"action_type": action_type, "category": category},
        tenant_id=str(tenant_id),
    ) as span:
        tenant = require_tenant(db, tenant_id)
        policy = autonomy_service.resolve(db, tenant_id, action_type)
        card = ActionCard(
            id=uuid4(),
            tenant_id=tenant_id,
            action_type=action_type,
            category=category,
            priority=priority,
            title=title,
            description=description,
            suggested_action=suggested_action,
            status=CardStatus.PENDING.value,
            autonomy_level=policy.level.value,
            action_payload=dict(payload or {}),
            metadata_json=dict(metadata or {}),
            expires_at=as_utc(expires_at) if expires_at else now + timedelta(hours=settings.card_ttl_hours),
            created_at=now,
        )

        if policy.level is AutonomyLevel.OFF:
            outcome = _suppress(db, card, policy)
        elif policy.level is AutonomyLevel.AUTO:
            outcome = _propose_auto(db, tenant, card, policy, dispatcher or get_dispatcher(), now)
        else:
            outcome = _persist_new_card(db, card, reason="created")

        if span:
            span.update(metadata={"outcome": outcome.reason, "policy_source": policy.source})

    log_metric("action_card.proposed", 1, metadata={"action_type": action_type, "outcome": outcome.reason})
    logger.info("Proposal %s for tenant %s -> %s", action_type, tenant_id, outcome.reason)
    return outcome


def approve(
    db: Session,
    card_id: UUID,
    actor_id: UUID,
    *,
    actor_name: str | None = None,
    tenant_id: UUID | None = None,
    role_lookup: RoleLookup | None = None,
    dispatcher: Dispatcher | None = None,
) -> ActionCard:
    """Approve a PENDING card and dispatch it.

    The role requirement is re-resolved now, not taken from creation time.
    A failed dispatch leaves the card APPROVED with dispatch state ``failed``.
    """
    with trace("action_card.approve", metadata={"card_id": str(card_id)}, tenant_id=_str(tenant_id)):
        card = get_card(db, card_id, tenant_id)
        if card.status != CardStatus.PENDING.value:
            raise AlreadyResolved(card.id, card.status)

        policy = autonomy_service.resolve(db, card.tenant_id, card.action_type)
        _check_role(role_lookup or StaffRoleLookup(db, card.tenant_id), actor_id, policy)

        _transition(
            db,
            card,
            expected_status=CardStatus.PENDING,
            values={
                "status": CardStatus.APPROVED.value,
                "resolved_at": utcnow(),
                "resolved_by": actor_id,
                "dispatch_state": DispatchState.IN_FLIGHT.value,
            },
            entry={
                "actor_type": ActorType.STAFF,
                "actor_id": actor_id,
                "actor_name": actor_name,
                "action": HistoryAction.CARD_APPROVED,
                "description": f'Action card "{card.title}" approved',
                "diff": _status_diff(CardStatus.PENDING, CardStatus.APPROVED),
            },
        )
        return _dispatch_approved(db, card, dispatcher or get_dispatcher())


def retry_dispatch(
    db: Session,
    card_id: UUID,
    actor_id: UUID,
    *,
    actor_name: str | None = None,
    tenant_id: UUID | None = None,
    role_lookup: RoleLookup | None = None,
    dispatcher: Dispatcher | None = None,
) -> ActionCard:
    """Dispatch an APPROVED card again after its previous dispatch failed."""
    with trace("action_card.retry", metadata={"card_id": str(card_id)}, tenant_id=_str(tenant_id)):
        card = get_card(db, card_id, tenant_id)
        if card.status != CardStatus.APPROVED.value or card.dispatch_state != DispatchState.FAILED.value:
            raise AlreadyResolved(card.id, card.status)

        policy = autonomy_service.resolve(db, card.tenant_id, card.action_type)
        _check_role(role_lookup or StaffRoleLookup(db, card.tenant_id), actor_id, policy)

        _transition(
            db,
            card,
            expected_status=CardStatus.APPROVED,
            expected_dispatch_state=DispatchState.FAILED,
            values={"dispatch_state": DispatchState.IN_FLIGHT.value},
            entry={
                "actor_type": ActorType.STAFF,
                "actor_id": actor_id,
                "actor_name": actor_name,
                "action": HistoryAction.DISPATCH_RETRIED,
                "description": f'Dispatch retried for action card "{card.title}"',
            },
        )
        return _dispatch_approved(db, card, dispatcher or get_dispatcher())


def reset_stuck_dispatch(
    db: Session,
    card_id: UUID,
    actor_id: UUID,
    *,
    actor_name: str | None = None,
    tenant_id: UUID | None = None,
    reason: str | None = None,
    role_lookup: RoleLookup | None = None,
) -> ActionCard:
    """Mark an APPROVED card stuck ``in_flight`` as failed so it can be retried.

    A card is left in flight when the process died during dispatch or the
    outcome could not be recorded. The operator must first confirm with the
    downstream system that the action did not happen; nothing here can tell.
    """
    with trace("action_card.reset_dispatch", metadata={"card_id": str(card_id)}, tenant_id=_str(tenant_id)):
        card = get_card(db, card_id, tenant_id)
        if card.status != CardStatus.APPROVED.value or card.dispatch_state != DispatchState.IN_FLIGHT.value:
            raise AlreadyResolved(card.id, card.status)

        policy = autonomy_service.resolve(db, card.tenant_id, card.action_type)
        _check_role(role_lookup or StaffRoleLookup(db, card.tenant_id), actor_id, policy)

        message = reason or "Dispatch outcome unknown; reset by operator"
        _transition(
            db,
            card,
            expected_status=CardStatus.APPROVED,
            expected_dispatch_state=DispatchState.IN_FLIGHT,
            values={"dispatch_state": DispatchState.FAILED.value, "last_dispatch_error": message},
            entry={
                "actor_type": ActorType.STAFF,
                "actor_id": actor_id,
                "actor_name": actor_name,
                "action": HistoryAction.DISPATCH_RESET,
                "description": f'Stuck dispatch reset for action card "{card.title}": {message}',
            },
        )
    logger.warning("Dispatch for card %s reset from in_flight by %s", card.id, actor_id)
    return card


def dismiss(
    db: Session,
    card_id: UUID,
    actor_id: UUID,
    *,
    actor_name: str | None = None,
    tenant_id: UUID | None = None,
) -> ActionCard:
    with trace("action_card.dismiss", metadata={"card_id": str(card_id)}, tenant_id=_str(tenant_id)):
        card = get_card(db, card_id, tenant_id)
        if card.status != CardStatus.PENDING.value:
            raise AlreadyResolved(card.id, card.status)

        _transition(
            db,
            card,
            expected_status=CardStatus.PENDING,
            values={
                "status": CardStatus.DISMISSED.value,
                "resolved_at": utcnow(),
                "resolved_by": actor_id,
            },
            entry={
                "actor_type": ActorType.STAFF,
                "actor_id": actor_id,
                "actor_name": actor_name,
                "action": HistoryAction.CARD_DISMISSED,
                "description": f'Action card "{card.title}" dismissed',
                "diff": _status_diff(CardStatus.PENDING, CardStatus.DISMISSED),
            },
        )
    log_metric("action_card.dismissed", 1, metadata={"action_type": card.action_type})
    return card


def expire(db: Session, card_id: UUID, *, now: datetime | None = None) -> ActionCard:
    """Move a stale PENDING card to EXPIRED."""
    now = as_utc(now) if now else utcnow()
    card = get_card(db, card_id)
    if card.status != CardStatus.PENDING.value:
        raise AlreadyResolved(card.id, card.status)
    deadline = _expiry_deadline(card)
    if now < deadline:
        raise ExpiryNotReached(f"Action card {card.id} expires at {deadline.isoformat()}")

    _transition(
        db,
        card,
        expected_status=CardStatus.PENDING,
        values={"status": CardStatus.EXPIRED.value, "resolved_at": now},
        entry={
            "actor_type": ActorType.SYSTEM,
            "action": HistoryAction.CARD_EXPIRED,
            "description": f'Action card "{card.title}" expired',
            "diff": _status_diff(CardStatus.PENDING, CardStatus.EXPIRED),
        },
    )
    return card


def expire_stale(db: Session, *, now: datetime | None = None, limit: int | None = None) -> int:
    """Expire every PENDING card past its window; returns how many were expired."""
    now = as_utc(now) if now else utcnow()
    rows = (
        db.query(ActionCard.id)
        .filter(ActionCard.status == CardStatus.PENDING.value, ActionCard.expires_at <= now)
        .order_by(ActionCard.expires_at)
        .limit(limit or settings.expiry_sweep_batch)
        .all()
    )
    expired = 0
    for (card_id,) in rows:
        try:
            expire(db, card_id, now=now)
        except (AlreadyResolved, ExpiryNotReached):
            logger.debug("Card %s resolved before expiry sweep reached it", card_id)
            continue
        expired += 1
    if expired:
        logger.info("Expired %s action card(s)", expired)
        log_metric("action_card.expired", expired)
    return expired


def get_card(db: Session, card_id: UUID, tenant_id: UUID | None = None) -> ActionCard:
    card = db.get(ActionCard, card_id)
    if not card or (tenant_id is not None and card.tenant_id != tenant_id):
        raise CardNotFound(card_id)
    return card


def list_pending(db: Session, tenant_id: UUID) -> List[ActionCard]:
    require_tenant(db, tenant_id)
    return (
        db.query(ActionCard)
        .filter(ActionCard.tenant_id == tenant_id, ActionCard.status == CardStatus.PENDING.value)
        .order_by(desc(ActionCard.priority), desc(ActionCard.created_at))
        .all()
    )


def list_cards(
    db: Session,
    tenant_id: UUID,
    *,
    status: str | None = None,
    action_type: str | None = None,
    category: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> CardPage:
    require_tenant(db, tenant_id)
    page = max(1, page)
    page_size = min(100, max(1, page_size))
    query = db.query(ActionCard).filter(ActionCard.tenant_id == tenant_id)
    if status:
        query = query.filter(ActionCard.status == status)
    if action_type:
        query = query.filter(ActionCard.action_type == action_type)
    if category:
        query = query.filter(ActionCard.category == category)
    total = query.count()
    items = (
        query.order_by(desc(ActionCard.priority), desc(ActionCard.created_at))
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return CardPage(items=items, total=total, page=page, page_size=page_size)


def pending_count(db: Session, tenant_id: UUID) -> int:
    return (
        db.query(ActionCard)
        .filter(ActionCard.tenant_id == tenant_id, ActionCard.status == CardStatus.PENDING.value)
        .count()
    )


def _suppress(db: Session, card: ActionCard, policy: ResolvedPolicy) -> ProposalOutcome:
    try:
        action_history_service.append(
            db,
            tenant_id=card.tenant_id,
            actor_type=ActorType.AI,
            action=HistoryAction.PROPOSAL_SUPPRESSED,
            entity_type=EntityType.PROPOSAL,
            entity_id=card.id,
            description=f'Proposal "{card.title}" suppressed: autonomy is OFF for {card.action_type}',
            metadata={"action_type": card.action_type, "title": card.title, "policy_source": policy.source},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ProposalOutcome(card=None, suppressed=True, reason="suppressed")


def _propose_auto(
    db: Session,
    tenant: Tenant,
    card: ActionCard,
    policy: ResolvedPolicy,
    dispatcher: Dispatcher,
    now: datetime,
) -> ProposalOutcome:
    day = rate_tracker.day_key_for(tenant.timezone, now)
    try:
        rate_tracker.reserve(db, tenant.id, card.action_type, day, policy.max_per_day, tz_name=tenant.timezone)
    except CapacityExceeded as exc:
        return _persist_new_card(
            db,
            card,
            reason="rate_limited",
            follow_up=(
                HistoryAction.RATE_LIMIT_EXCEEDED,
                f'Rate limit exceeded, downgraded to pending: {exc.message}',
            ),
        )

    try:
        result = _call_dispatcher(dispatcher, card)
    except DispatchError as exc:
        card.last_dispatch_error = exc.message
        return _persist_new_card(
            db,
            card,
            reason="auto_failed",
            follow_up=(
                HistoryAction.AUTO_EXECUTION_FAILED,
                f"Auto-execution failed, downgraded to pending: {exc.message}",
            ),
            stage=lambda: rate_tracker.release(db, tenant.id, card.action_type, day),
        )

    card.status = CardStatus.EXECUTED.value
    card.resolved_at = utcnow()
    card.dispatch_state = DispatchState.SUCCEEDED.value
    card.external_ref = result.external_ref
    return _persist_new_card(
        db,
        card,
        reason="auto_executed",
        follow_up=(HistoryAction.CARD_AUTO_EXECUTED, f'Action card "{card.title}" executed automatically'),
    )


def _persist_new_card(
    db: Session,
    card: ActionCard,
    *,
    reason: str,
    follow_up: tuple[HistoryAction, str] | None = None,
    stage: Callable[[], None] | None = None,
) -> ProposalOutcome:
    try:
        db.add(card)
        db.flush()
        _append(db, card, actor_type=ActorType.AI, action=HistoryAction.CARD_CREATED,
                description=f'Action card "{card.title}" created')
        if follow_up:
            action, description = follow_up
            _append(db, card, actor_type=ActorType.AI, action=action, description=description)
        if stage:
            stage()
        db.commit()
    except Exception:
        db.rollback()
        if card.status == CardStatus.EXECUTED.value:
            logger.exception("Card %s was dispatched but could not be recorded", card.id)
        raise
    db.refresh(card)
    return ProposalOutcome(card=card, suppressed=False, reason=reason)


def _dispatch_approved(db: Session, card: ActionCard, dispatcher: Dispatcher) -> ActionCard:
    try:
        result = _call_dispatcher(dispatcher, card)
    except DispatchError as exc:
        _transition(
            db,
            card,
            expected_status=CardStatus.APPROVED,
            expected_dispatch_state=DispatchState.IN_FLIGHT,
            values={"dispatch_state": DispatchState.FAILED.value, "last_dispatch_error": exc.message},
            entry={
                "actor_type": ActorType.SYSTEM,
                "action": HistoryAction.DISPATCH_FAILED,
                "description": f'Dispatch failed for action card "{card.title}": {exc.message}',
            },
        )
        logger.warning("Dispatch failed for approved card %s: %s", card.id, exc.message)
        return card

    tenant = require_tenant(db, card.tenant_id)
    day = rate_tracker.day_key_for(tenant.timezone, utcnow())
    _transition(
        db,
        card,
        expected_status=CardStatus.APPROVED,
        expected_dispatch_state=DispatchState.IN_FLIGHT,
        values={
            "status": CardStatus.EXECUTED.value,
            "dispatch_state": DispatchState.SUCCEEDED.value,
            "external_ref": result.external_ref,
            "last_dispatch_error": None,
        },
        entry={
            "actor_type": ActorType.SYSTEM,
            "action": HistoryAction.CARD_EXECUTED,
            "description": f'Action card "{card.title}" executed',
            "diff": _status_diff(CardStatus.APPROVED, CardStatus.EXECUTED),
            "metadata": {"external_ref": result.external_ref},
        },
        stage=lambda: rate_tracker.record_usage(
            db, tenant.id, card.action_type, day, tz_name=tenant.timezone
        ),
    )
    return card


def _transition(
    db: Session,
    card: ActionCard,
    *,
    expected_status: CardStatus,
    values: Dict[str, Any],
    entry: Dict[str, Any],
    expected_dispatch_state: Any = _UNSET,
    stage: Callable[[], None] | None = None,
) -> None:
    """Compare-and-set the card row, stage its ledger entry, commit both."""
    card_id = card.id
    stmt = update(ActionCard).where(ActionCard.id == card_id, ActionCard.status == expected_status.value)
    if expected_dispatch_state is not _UNSET:
        stmt = stmt.where(ActionCard.dispatch_state == expected_dispatch_state.value)
    stmt = stmt.values(**values, version=ActionCard.version + 1).execution_options(synchronize_session=False)

    try:
        result = db.execute(stmt)
        if result.rowcount != 1:
            db.rollback()
            current = db.query(ActionCard.status).filter(ActionCard.id == card_id).scalar()
            log_metric("action_card.transition.conflict", 1, metadata={"expected": expected_status.value})
            raise AlreadyResolved(card_id, current)
        _append(db, card, **entry)
        if stage:
            stage()
        db.commit()
    except AlreadyResolved:
        raise
    except Exception:
        db.rollback()
        raise
    db.refresh(card)


def _append(db: Session, card: ActionCard, **entry: Any) -> None:
    action_history_service.append(
        db,
        tenant_id=card.tenant_id,
        entity_type=EntityType.ACTION_CARD,
        entity_id=card.id,
        **entry,
    )


def _call_dispatcher(dispatcher: Dispatcher, card: ActionCard) -> DispatchResult:
    request = DispatchRequest(
        card_id=card.id,
        tenant_id=card.tenant_id,
        action_type=card.action_type,
        payload=dict(card.action_payload or {}),
    )
    metadata = {"card_id": str(card.id), "action_type": card.action_type}
    start = perf_counter()
    try:
        with trace("action_card.dispatch", metadata=metadata, tenant_id=str(card.tenant_id)):
            result = dispatcher.dispatch(request)
    except DispatchError:
        log_metric("action_card.dispatch.failed", 1, metadata=metadata)
        raise
    except Exception as exc:
        logger.exception("Dispatcher raised unexpectedly for card %s", card.id)
        log_metric("action_card.dispatch.failed", 1, metadata=metadata)
        raise DispatchError(f"Unexpected dispatcher failure: {exc}") from exc
    log_metric("action_card.dispatch.latency_ms", (perf_counter() - start) * 1000, metadata=metadata)
    return result


def _check_role(role_lookup: RoleLookup, actor_id: UUID, policy: ResolvedPolicy) -> None:
    if policy.required_role is None:
        return
    role = role_lookup.role_of(actor_id)
    if role is None or not role.satisfies(policy.required_role):
        raise Forbidden(f"Approving requires role {policy.required_role.value} or higher")


def _expiry_deadline(card: ActionCard) -> datetime:
    if card.expires_at:
        return as_utc(card.expires_at)
    return as_utc(card.created_at) + timedelta(hours=settings.card_ttl_hours)


def _status_diff(before: CardStatus, after: CardStatus) -> Dict[str, Any]:
    return {"before": {"status": before.value}, "after": {"status": after.value}}


def _str(value: UUID | None) -> str | None:
    return str(value) if value else None
