"""
test_approval_service.py — Tests for the upgrade request lifecycle

Covers: rule routing (auto-approve / approver / admin), hold placement
and release, role and self-approval checks, deny reasons, cancel,
fulfillment at actual cost, illegal transitions, expiry, escalation,
the approval queue and scheduler ticks.

Called by: pytest
Depends on: abi/services/approval_service.py, abi/scheduler.py,
            abi/services/credit_ledger.py
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from abi.errors import ConflictError, ForbiddenError, InvariantViolation, ValidationError
from abi.models import CreditHold
from abi.scheduler import run_tick
from abi.services import approval_service as svc
from abi.services import credit_ledger

COMPANY = "acme-co"


def _submitted(db, user, credits, title="Analyst call"):
    request = svc.create_request(
        db, user, request_type="analyst_call", title=title, estimated_credits=credits
    )
    return svc.submit_request(db, request, user)


def _events(request):
    return [e.event_type for e in request.events]


def _balance(db):
    return credit_ledger.get_balance(db, COMPANY)


# ── Routing ──────────────────────────────────────────────────────────


def test_small_request_is_auto_approved(db_session, member_user, credit_account):
    request = _submitted(db_session, member_user, 400)
    assert request.status == "approved"
    assert _events(request) == ["created", "approved"]
    assert request.events[-1].actor_id is None
    assert _balance(db_session).reserved_credits == 400


def test_mid_request_routes_to_approver(db_session, member_user, credit_account):
    request = _submitted(db_session, member_user, 1500)
    assert request.status == "pending"
    assert request.required_role == "approver"
    assert request.expires_at - request.submitted_at == timedelta(hours=48)


def test_large_request_routes_to_admin(db_session, member_user, credit_account):
    request = _submitted(db_session, member_user, 3000)
    assert request.required_role == "admin"
    assert request.expires_at - request.submitted_at == timedelta(hours=24)
    balance = _balance(db_session)
    assert (balance.reserved_credits, balance.available_credits) == (3000, 7000)


def test_rule_boundaries(db_session):
    assert svc.match_rule(db_session, 500).auto_approve is True
    assert svc.match_rule(db_session, 501).approver_role == "approver"
    assert svc.match_rule(db_session, 2000).approver_role == "approver"
    assert svc.match_rule(db_session, 2001).approver_role == "admin"


def test_submit_without_credits_stays_draft(db_session, member_user, credit_account):
    request = svc.create_request(
        db_session, member_user, request_type="deep_research", title="Too big", estimated_credits=20000
    )
    with pytest.raises(ConflictError):
        svc.submit_request(db_session, request, member_user)
    db_session.rollback()
    assert svc.get_request(db_session, request.id).status == "draft"


def test_only_requester_submits(db_session, member_user, approver_user, credit_account):
    request = svc.create_request(
        db_session, member_user, request_type="custom", title="X", estimated_credits=100
    )
    with pytest.raises(ForbiddenError):
        svc.submit_request(db_session, request, approver_user)


# ── Decisions ────────────────────────────────────────────────────────


def test_deny_releases_hold(db_session, member_user, admin_user, credit_account):
    request = _submitted(db_session, member_user, 3000)
    svc.deny(db_session, request, admin_user, "Budget freeze")
    assert request.status == "denied"
    assert request.denial_reason == "Budget freeze"
    assert _events(request) == ["created", "submitted", "denied"]
    assert _balance(db_session).available_credits == 10000


def test_deny_requires_reason(db_session, member_user, admin_user, credit_account):
    request = _submitted(db_session, member_user, 3000)
    with pytest.raises(ValidationError):
        svc.deny(db_session, request, admin_user, "   ")


def test_approver_cannot_decide_admin_requests(db_session, member_user, approver_user, admin_user, credit_account):
    request = _submitted(db_session, member_user, 3000)
    with pytest.raises(ForbiddenError):
        svc.approve(db_session, request, approver_user)
    svc.approve(db_session, request, admin_user, "ok")
    assert request.status == "approved"
    assert request.approver_id == admin_user.id


def test_self_approval_is_forbidden(db_session, approver_user, credit_account):
    request = _submitted(db_session, approver_user, 1500)
    with pytest.raises(ForbiddenError):
        svc.approve(db_session, request, approver_user)


def test_members_cannot_decide(db_session, member_user, approver_user, credit_account):
    request = _submitted(db_session, approver_user, 1500)
    with pytest.raises(ForbiddenError):
        svc.approve(db_session, request, member_user)


def test_other_company_cannot_decide(db_session, member_user, outsider_user, credit_account):
    outsider_user.role = "admin"
    db_session.commit()
    request = _submitted(db_session, member_user, 1500)
    with pytest.raises(ForbiddenError):
        svc.approve(db_session, request, outsider_user)


def test_terminal_states_reject_transitions(db_session, member_user, admin_user, credit_account):
    request = _submitted(db_session, member_user, 3000)
    svc.deny(db_session, request, admin_user, "No")
    with pytest.raises(ConflictError):
        svc.approve(db_session, request, admin_user)
    with pytest.raises(ConflictError):
        svc.cancel(db_session, request, member_user)
    with pytest.raises(ConflictError):
        svc.fulfill(db_session, request, admin_user, 100)


# ── Cancel & fulfill ─────────────────────────────────────────────────


def test_cancel_pending_releases_hold(db_session, member_user, approver_user, credit_account):
    request = _submitted(db_session, member_user, 1500)
    with pytest.raises(ForbiddenError):
        svc.cancel(db_session, request, approver_user)
    svc.cancel(db_session, request, member_user, "Not needed")
    assert request.status == "cancelled"
    assert _balance(db_session).available_credits == 10000


def test_cancel_draft_has_no_hold(db_session, member_user, credit_account):
    request = svc.create_request(
        db_session, member_user, request_type="custom", title="Draft", estimated_credits=100
    )
    svc.cancel(db_session, request, member_user)
    assert _events(request) == ["created", "cancelled"]


def test_fulfill_converts_hold_at_actual_cost(db_session, member_user, admin_user, credit_account):
    request = _submitted(db_session, member_user, 3000)
    svc.approve(db_session, request, admin_user)
    with pytest.raises(ForbiddenError):
        svc.fulfill(db_session, request, member_user, 2500)
    svc.fulfill(db_session, request, admin_user, 2500)
    assert request.status == "fulfilled"
    assert request.actual_credits == 2500
    assert _events(request) == ["created", "submitted", "approved", "fulfilled"]
    balance = _balance(db_session)
    assert (balance.available_credits, balance.reserved_credits) == (7500, 0)


def test_system_fulfillment(db_session, member_user, credit_account):
    request = _submitted(db_session, member_user, 400)
    svc.fulfill(db_session, request, None, 400)
    assert request.events[-1].actor_id is None
    assert _balance(db_session).available_credits == 9600


# ── Expiry & escalation ──────────────────────────────────────────────


def test_expired_request_releases_hold(db_session, member_user, admin_user, credit_account):
    request = _submitted(db_session, member_user, 3000)
    after = request.expires_at + timedelta(seconds=1)
    with pytest.raises(ConflictError, match="expired"):
        svc.approve(db_session, request, admin_user, now=after)

    assert svc.process_expirations(db_session, now=after) == 1
    assert request.status == "expired"
    hold = db_session.execute(
        select(CreditHold).where(CreditHold.reference_id == request.hold_reference_id)
    ).scalar_one()
    assert hold.status == "expired"
    assert _balance(db_session).available_credits == 10000


def test_escalation_adds_one_event(db_session, member_user, credit_account):
    request = _submitted(db_session, member_user, 3000)
    soon = request.expires_at - timedelta(hours=2)
    assert svc.process_escalations(db_session, now=soon) == 1
    assert svc.process_escalations(db_session, now=soon) == 0
    assert request.status == "pending"
    assert _events(request)[-1] == "escalated"


def test_scheduler_tick_runs_both_sweeps(db_session, member_user, credit_account):
    escalating = _submitted(db_session, member_user, 3000, "Escalates")
    expiring = _submitted(db_session, member_user, 1500, "Expires")
    now = expiring.expires_at + timedelta(seconds=1)
    escalating.expires_at = now + timedelta(hours=1)
    db_session.commit()

    assert run_tick(db_session, now=now) == {"expired": 1, "escalated": 1}
    assert expiring.status == "expired"
    assert escalating.escalated_at is not None


def test_events_are_immutable(db_session, member_user, credit_account):
    request = _submitted(db_session, member_user, 400)
    request.events[0].note = "rewritten"
    with pytest.raises(InvariantViolation):
        db_session.flush()
    db_session.rollback()


# ── Reads ────────────────────────────────────────────────────────────


def test_approval_queue_by_role(db_session, member_user, approver_user, admin_user, credit_account):
    small = _submitted(db_session, member_user, 1500, "Small")
    big = _submitted(db_session, member_user, 3000, "Big")
    own = _submitted(db_session, approver_user, 1000, "Own")

    assert [r.id for r in svc.get_approval_queue(db_session, approver_user)] == [small.id]
    assert {r.id for r in svc.get_approval_queue(db_session, admin_user)} == {small.id, big.id, own.id}
    assert svc.get_approval_queue(db_session, member_user) == []


def test_list_requests_filters(db_session, member_user, approver_user, credit_account):
    _submitted(db_session, member_user, 400, "Mine")
    _submitted(db_session, approver_user, 1500, "Theirs")
    mine = svc.list_requests(db_session, COMPANY, requester_id=member_user.id)
    assert [r.title for r in mine] == ["Mine"]
    pending = svc.list_requests(db_session, COMPANY, status="pending")
    assert [r.title for r in pending] == ["Theirs"]
