from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from conftest import RecordingDispatcher

from actiongate.db.models.action_card import ActionCard
from actiongate.db.models.action_history import ActionHistory
from actiongate.db.models.rate_counter import RateCounter
from actiongate.enums import CardStatus, DispatchState, Role
from actiongate.errors import (
    AlreadyResolved,
    CardNotFound,
    ExpiryNotReached,
    Forbidden,
    InvalidPolicy,
    TenantNotFound,
)
from actiongate.services import action_card_service, action_history_service, autonomy_service, rate_tracker
from actiongate.services.dispatch.base import Dispatcher
from actiongate.services.tenant_service import add_staff, create_tenant

NOW = datetime(2025, 6, 2, 15, 0, tzinfo=timezone.utc)


def _propose(db, tenant, dispatcher, **overrides):
    params = {
        "action_type": "send_reminder",
        "title": "Remind Mrs. Alvarez about her 3pm visit",
        "description": "Visit was rescheduled twice this week.",
        "suggested_action": "Send SMS reminder",
        "payload": {"channel": "sms"},
        "dispatcher": dispatcher,
        "now": NOW,
    }
    params.update(overrides)
    return action_card_service.propose(db, tenant.id, **params)


def _actions_for(db, tenant, card_id):
    entries = action_history_service.history_for_entity(db, tenant.id, "ACTION_CARD", card_id)
    return [entry.action for entry in reversed(entries)]


def test_off_policy_suppresses_without_creating_card(db, tenant, dispatcher) -> None:
    autonomy_service.set_policy(db, tenant.id, "send_reminder", "OFF")

    outcome = _propose(db, tenant, dispatcher)

    assert outcome.suppressed is True
    assert outcome.card is None
    assert outcome.reason == "suppressed"
    assert db.query(ActionCard).count() == 0
    assert dispatcher.calls == 0
    suppressed = db.query(ActionHistory).filter(ActionHistory.action == "PROPOSAL_SUPPRESSED").one()
    assert suppressed.entity_type == "PROPOSAL"
    assert suppressed.actor_type == "AI"
    assert suppressed.metadata_json["action_type"] == "send_reminder"


def test_assisted_policy_creates_pending_card(db, tenant, dispatcher) -> None:
    outcome = _propose(db, tenant, dispatcher, category="scheduling", priority=80)

    card = outcome.card
    assert outcome.reason == "created"
    assert card.status == CardStatus.PENDING.value
    assert card.autonomy_level == "ASSISTED"
    assert card.category == "scheduling"
    assert card.priority == 80
    assert card.action_payload == {"channel": "sms"}
    assert card.expires_at == NOW + timedelta(hours=72)
    assert dispatcher.calls == 0
    assert _actions_for(db, tenant, card.id) == ["CARD_CREATED"]
    assert action_card_service.pending_count(db, tenant.id) == 1


def test_propose_unknown_tenant_raises(db, dispatcher) -> None:
    with pytest.raises(TenantNotFound):
        action_card_service.propose(db, uuid4(), "send_reminder", "t", "d", dispatcher=dispatcher)


def test_auto_with_daily_limit_downgrades_after_first(db, tenant, dispatcher) -> None:
    autonomy_service.set_policy(db, tenant.id, "send_reminder", "AUTO", {"maxPerDay": 1})

    first = _propose(db, tenant, dispatcher)
    second = _propose(db, tenant, dispatcher)

    assert first.reason == "auto_executed"
    assert first.card.status == CardStatus.EXECUTED.value
    assert first.card.dispatch_state == DispatchState.SUCCEEDED.value
    assert first.card.external_ref == f"ext-{first.card.id}"
    assert dispatcher.requests[0].card_id == first.card.id
    assert _actions_for(db, tenant, first.card.id) == ["CARD_CREATED", "CARD_AUTO_EXECUTED"]

    assert second.reason == "rate_limited"
    assert second.card.status == CardStatus.PENDING.value
    assert _actions_for(db, tenant, second.card.id) == ["CARD_CREATED", "RATE_LIMIT_EXCEEDED"]
    assert dispatcher.calls == 1

    day = rate_tracker.day_key_for(tenant.timezone, NOW)
    assert rate_tracker.current_count(db, tenant.id, "send_reminder", day) == 1


def test_auto_dispatch_failure_releases_capacity_and_downgrades(db, tenant) -> None:
    autonomy_service.set_policy(db, tenant.id, "send_reminder", "AUTO", {"maxPerDay": 1})
    failing = RecordingDispatcher(fail_with="SMS gateway timeout")

    outcome = _propose(db, tenant, failing)

    assert outcome.reason == "auto_failed"
    assert outcome.card.status == CardStatus.PENDING.value
    assert outcome.card.last_dispatch_error == "SMS gateway timeout"
    assert _actions_for(db, tenant, outcome.card.id) == ["CARD_CREATED", "AUTO_EXECUTION_FAILED"]
    day = rate_tracker.day_key_for(tenant.timezone, NOW)
    assert rate_tracker.current_count(db, tenant.id, "send_reminder", day) == 0

    retry = _propose(db, tenant, RecordingDispatcher())
    assert retry.reason == "auto_executed"


def test_auto_ignores_required_role(db, tenant, dispatcher) -> None:
    autonomy_service.set_policy(db, tenant.id, "send_reminder", "AUTO", required_role="SUPER_ADMIN")

    outcome = _propose(db, tenant, dispatcher)

    assert outcome.reason == "auto_executed"


def test_unexpected_dispatcher_exception_is_treated_as_failure(db, tenant) -> None:
    class ExplodingDispatcher(Dispatcher):
        def dispatch(self, request):
            raise RuntimeError("connection reset")

    autonomy_service.set_policy(db, tenant.id, "send_reminder", "AUTO")
    outcome = _propose(db, tenant, ExplodingDispatcher())

    assert outcome.reason == "auto_failed"
    assert "connection reset" in outcome.card.last_dispatch_error


def test_approve_executes_and_records_usage(db, tenant, staff, dispatcher) -> None:
    card = _propose(db, tenant, dispatcher).card
    approver = staff[Role.AGENT]

    approved = action_card_service.approve(db, card.id, approver.id, actor_name=approver.name, dispatcher=dispatcher)

    assert approved.status == CardStatus.EXECUTED.value
    assert approved.dispatch_state == DispatchState.SUCCEEDED.value
    assert approved.resolved_by == approver.id
    assert approved.resolved_at is not None
    assert approved.external_ref == f"ext-{card.id}"
    assert approved.version == 3
    assert dispatcher.calls == 1
    assert _actions_for(db, tenant, card.id) == ["CARD_CREATED", "CARD_APPROVED", "CARD_EXECUTED"]

    approval = db.query(ActionHistory).filter(ActionHistory.action == "CARD_APPROVED").one()
    assert approval.actor_id == approver.id
    assert approval.actor_name == approver.name
    assert approval.diff == {"before": {"status": "PENDING"}, "after": {"status": "APPROVED"}}

    day = rate_tracker.day_key_for(tenant.timezone, datetime.now(timezone.utc))
    assert rate_tracker.current_count(db, tenant.id, "send_reminder", day) == 1


def test_approve_failure_leaves_card_approved_then_retry_executes(db, tenant, staff) -> None:
    failing = RecordingDispatcher(fail_with="provider unavailable")
    card = _propose(db, tenant, failing).card
    approver = staff[Role.ADMIN]

    approved = action_card_service.approve(db, card.id, approver.id, dispatcher=failing)

    assert approved.status == CardStatus.APPROVED.value
    assert approved.dispatch_state == DispatchState.FAILED.value
    assert approved.last_dispatch_error == "provider unavailable"
    assert _actions_for(db, tenant, card.id) == ["CARD_CREATED", "CARD_APPROVED", "DISPATCH_FAILED"]

    with pytest.raises(AlreadyResolved):
        action_card_service.approve(db, card.id, approver.id, dispatcher=failing)
    with pytest.raises(AlreadyResolved):
        action_card_service.dismiss(db, card.id, approver.id)

    healthy = RecordingDispatcher()
    retried = action_card_service.retry_dispatch(db, card.id, approver.id, dispatcher=healthy)

    assert retried.status == CardStatus.EXECUTED.value
    assert retried.dispatch_state == DispatchState.SUCCEEDED.value
    assert retried.last_dispatch_error is None
    assert healthy.calls == 1
    assert _actions_for(db, tenant, card.id) == [
        "CARD_CREATED",
        "CARD_APPROVED",
        "DISPATCH_FAILED",
        "DISPATCH_RETRIED",
        "CARD_EXECUTED",
    ]

    with pytest.raises(AlreadyResolved):
        action_card_service.retry_dispatch(db, card.id, approver.id, dispatcher=healthy)
    assert healthy.calls == 1


def test_retry_requires_failed_dispatch(db, tenant, staff, dispatcher) -> None:
    card = _propose(db, tenant, dispatcher).card

    with pytest.raises(AlreadyResolved):
        action_card_service.retry_dispatch(db, card.id, staff[Role.ADMIN].id, dispatcher=dispatcher)
    assert dispatcher.calls == 0


def test_required_role_is_enforced_at_approval(db, tenant, staff, dispatcher) -> None:
    autonomy_service.set_policy(db, tenant.id, "send_reminder", "ASSISTED", required_role="ADMIN")
    card = _propose(db, tenant, dispatcher).card

    with pytest.raises(Forbidden):
        action_card_service.approve(db, card.id, staff[Role.AGENT].id, dispatcher=dispatcher)
    with pytest.raises(Forbidden):
        action_card_service.approve(db, card.id, uuid4(), dispatcher=dispatcher)

    assert action_card_service.get_card(db, card.id).status == CardStatus.PENDING.value
    assert dispatcher.calls == 0

    approved = action_card_service.approve(db, card.id, staff[Role.ADMIN].id, dispatcher=dispatcher)
    assert approved.status == CardStatus.EXECUTED.value


def test_role_requirement_is_read_at_approval_time(db, tenant, staff, dispatcher) -> None:
    card = _propose(db, tenant, dispatcher).card
    autonomy_service.set_policy(db, tenant.id, "send_reminder", "ASSISTED", required_role="SUPER_ADMIN")

    with pytest.raises(Forbidden):
        action_card_service.approve(db, card.id, staff[Role.ADMIN].id, dispatcher=dispatcher)


def test_custom_role_lookup_is_used(db, tenant, dispatcher) -> None:
    class FixedRoles:
        def role_of(self, actor_id):
            return Role.SUPER_ADMIN

    autonomy_service.set_policy(db, tenant.id, "send_reminder", "ASSISTED", required_role="ADMIN")
    card = _propose(db, tenant, dispatcher).card

    approved = action_card_service.approve(db, card.id, uuid4(), role_lookup=FixedRoles(), dispatcher=dispatcher)
    assert approved.status == CardStatus.EXECUTED.value


def test_dismiss_resolves_without_dispatch(db, tenant, staff, dispatcher) -> None:
    card = _propose(db, tenant, dispatcher).card
    actor = staff[Role.AGENT]

    dismissed = action_card_service.dismiss(db, card.id, actor.id, actor_name=actor.name)

    assert dismissed.status == CardStatus.DISMISSED.value
    assert dismissed.resolved_by == actor.id
    assert dismissed.dispatch_state is None
    assert dispatcher.calls == 0
    assert _actions_for(db, tenant, card.id) == ["CARD_CREATED", "CARD_DISMISSED"]

    with pytest.raises(AlreadyResolved) as excinfo:
        action_card_service.approve(db, card.id, actor.id, dispatcher=dispatcher)
    assert excinfo.value.message.startswith("This item was already handled")
    assert dispatcher.calls == 0


def test_expire_then_late_approval_fails(db, tenant, staff, dispatcher) -> None:
    card = _propose(db, tenant, dispatcher, expires_at=NOW + timedelta(hours=1)).card

    with pytest.raises(ExpiryNotReached):
        action_card_service.expire(db, card.id, now=NOW + timedelta(minutes=30))

    expired = action_card_service.expire(db, card.id, now=NOW + timedelta(hours=2))
    assert expired.status == CardStatus.EXPIRED.value
    assert expired.resolved_by is None

    with pytest.raises(AlreadyResolved):
        action_card_service.approve(db, card.id, staff[Role.ADMIN].id, dispatcher=dispatcher)
    assert dispatcher.calls == 0

    expiry = db.query(ActionHistory).filter(ActionHistory.action == "CARD_EXPIRED").one()
    assert expiry.actor_type == "SYSTEM"
    assert expiry.entity_id == card.id


def test_expire_stale_sweeps_only_overdue_pending_cards(db, tenant, staff, dispatcher) -> None:
    overdue = _propose(db, tenant, dispatcher, expires_at=NOW + timedelta(hours=1)).card
    fresh = _propose(db, tenant, dispatcher, expires_at=NOW + timedelta(days=2)).card
    resolved = _propose(db, tenant, dispatcher, expires_at=NOW + timedelta(hours=1)).card
    action_card_service.dismiss(db, resolved.id, staff[Role.AGENT].id)

    expired = action_card_service.expire_stale(db, now=NOW + timedelta(hours=3))

    assert expired == 1
    assert action_card_service.get_card(db, overdue.id).status == CardStatus.EXPIRED.value
    assert action_card_service.get_card(db, fresh.id).status == CardStatus.PENDING.value
    assert action_card_service.get_card(db, resolved.id).status == CardStatus.DISMISSED.value


def test_every_terminal_state_has_matching_audit_entry(db, tenant, staff, dispatcher) -> None:
    autonomy_service.set_policy(db, tenant.id, "alert_family", "AUTO")
    auto_card = _propose(db, tenant, dispatcher, action_type="alert_family").card
    approved = _propose(db, tenant, dispatcher).card
    dismissed = _propose(db, tenant, dispatcher).card
    expiring = _propose(db, tenant, dispatcher, expires_at=NOW + timedelta(minutes=5)).card

    action_card_service.approve(db, approved.id, staff[Role.AGENT].id, dispatcher=dispatcher)
    action_card_service.dismiss(db, dismissed.id, staff[Role.AGENT].id)
    action_card_service.expire(db, expiring.id, now=NOW + timedelta(hours=1))

    expected = {
        auto_card.id: "CARD_AUTO_EXECUTED",
        approved.id: "CARD_EXECUTED",
        dismissed.id: "CARD_DISMISSED",
        expiring.id: "CARD_EXPIRED",
    }
    for card_id, action in expected.items():
        assert action in _actions_for(db, tenant, card_id)


def test_get_card_scopes_by_tenant(db, tenant, dispatcher) -> None:
    card = _propose(db, tenant, dispatcher).card

    assert action_card_service.get_card(db, card.id, tenant.id).id == card.id
    with pytest.raises(CardNotFound):
        action_card_service.get_card(db, card.id, uuid4())
    with pytest.raises(CardNotFound):
        action_card_service.get_card(db, uuid4())


def test_list_cards_filters_and_orders_by_priority(db, tenant, staff, dispatcher) -> None:
    low = _propose(db, tenant, dispatcher, priority=10, category="billing").card
    high = _propose(db, tenant, dispatcher, priority=90, category="scheduling").card
    done = _propose(db, tenant, dispatcher, priority=50, category="scheduling").card
    action_card_service.dismiss(db, done.id, staff[Role.AGENT].id)

    pending = action_card_service.list_pending(db, tenant.id)
    assert [card.id for card in pending] == [high.id, low.id]

    page = action_card_service.list_cards(db, tenant.id, category="scheduling")
    assert page.total == 2
    assert {card.id for card in page.items} == {high.id, done.id}

    dismissed = action_card_service.list_cards(db, tenant.id, status="DISMISSED")
    assert [card.id for card in dismissed.items] == [done.id]

    second_page = action_card_service.list_cards(db, tenant.id, page=2, page_size=2)
    assert second_page.total == 3
    assert [card.id for card in second_page.items] == [low.id]


def test_admin_of_another_tenant_cannot_approve(db, tenant, dispatcher) -> None:
    other = create_tenant(db, "Hillcrest Care")
    outsider = add_staff(db, other.id, "Quinn", Role.ADMIN)
    autonomy_service.set_policy(db, tenant.id, "refund", "ASSISTED", required_role="ADMIN")
    card = _propose(db, tenant, dispatcher, action_type="refund").card

    with pytest.raises(Forbidden):
        action_card_service.approve(db, card.id, outsider.id, tenant_id=tenant.id, dispatcher=dispatcher)

    assert action_card_service.get_card(db, card.id).status == CardStatus.PENDING.value
    assert dispatcher.calls == 0


@pytest.mark.parametrize("decision", ["approve", "dismiss"])
def test_failed_audit_write_aborts_transition(db, tenant, staff, dispatcher, monkeypatch, decision) -> None:
    card = _propose(db, tenant, dispatcher).card
    version = card.version
    entries_before = db.query(ActionHistory).count()

    def broken_append(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(action_history_service, "append", broken_append)
    with pytest.raises(RuntimeError):
        if decision == "approve":
            action_card_service.approve(db, card.id, staff[Role.ADMIN].id, dispatcher=dispatcher)
        else:
            action_card_service.dismiss(db, card.id, staff[Role.ADMIN].id)
    monkeypatch.undo()

    db.expire_all()
    stored = action_card_service.get_card(db, card.id)
    assert stored.status == CardStatus.PENDING.value
    assert stored.version == version
    assert stored.dispatch_state is None
    assert stored.resolved_by is None
    assert dispatcher.calls == 0
    assert db.query(ActionHistory).count() == entries_before
    assert db.query(RateCounter).count() == 0


@pytest.mark.parametrize("action_type", ["", "   ", "x" * 65, "*"])
def test_propose_rejects_invalid_action_type(db, tenant, dispatcher, action_type) -> None:
    with pytest.raises(InvalidPolicy):
        _propose(db, tenant, dispatcher, action_type=action_type)

    assert db.query(ActionCard).count() == 0
    assert db.query(ActionHistory).count() == 0


def _broken_usage(*args, **kwargs):
    raise RuntimeError("counter table locked")


def test_stuck_dispatch_can_be_reset_and_retried(db, tenant, staff, dispatcher, monkeypatch) -> None:
    card = _propose(db, tenant, dispatcher).card
    admin = staff[Role.ADMIN]

    monkeypatch.setattr(rate_tracker, "record_usage", _broken_usage)
    with pytest.raises(RuntimeError):
        action_card_service.approve(db, card.id, admin.id, dispatcher=dispatcher)
    monkeypatch.undo()

    db.expire_all()
    stuck = action_card_service.get_card(db, card.id)
    assert stuck.status == CardStatus.APPROVED.value
    assert stuck.dispatch_state == DispatchState.IN_FLIGHT.value
    with pytest.raises(AlreadyResolved):
        action_card_service.retry_dispatch(db, card.id, admin.id, dispatcher=dispatcher)

    reset = action_card_service.reset_stuck_dispatch(
        db, card.id, admin.id, actor_name=admin.name, reason="Gateway shows no delivery"
    )
    assert reset.dispatch_state == DispatchState.FAILED.value
    assert reset.last_dispatch_error == "Gateway shows no delivery"
    with pytest.raises(AlreadyResolved):
        action_card_service.reset_stuck_dispatch(db, card.id, admin.id)

    retried = action_card_service.retry_dispatch(db, card.id, admin.id, dispatcher=dispatcher)
    assert retried.status == CardStatus.EXECUTED.value
    assert dispatcher.calls == 2
    assert _actions_for(db, tenant, card.id) == [
        "CARD_CREATED",
        "CARD_APPROVED",
        "DISPATCH_RESET",
        "DISPATCH_RETRIED",
        "CARD_EXECUTED",
    ]


def test_reset_dispatch_enforces_required_role(db, tenant, staff, dispatcher, monkeypatch) -> None:
    autonomy_service.set_policy(db, tenant.id, "send_reminder", "ASSISTED", required_role="ADMIN")
    card = _propose(db, tenant, dispatcher).card
    monkeypatch.setattr(rate_tracker, "record_usage", _broken_usage)
    with pytest.raises(RuntimeError):
        action_card_service.approve(db, card.id, staff[Role.ADMIN].id, dispatcher=dispatcher)
    monkeypatch.undo()

    with pytest.raises(Forbidden):
        action_card_service.reset_stuck_dispatch(db, card.id, staff[Role.AGENT].id)
