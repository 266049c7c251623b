"""
approval_service.py — Upgrade request lifecycle with credit holds

States: draft → pending → approved | denied | cancelled | expired, and
approved → fulfilled. Submitting at or under the auto-approve threshold
skips pending.

Business Rules:
- Routing rules (approval_rules table, seeded from settings):
  ≤ auto_approve_threshold → auto-approve;
  ≤ approver_limit → approver role, 48 h to decide;
  above → admin role, 24 h to decide
- submit reserves estimated credits against the company account; the hold
  stays until fulfillment converts it, or deny/cancel/expire releases it
- approve/deny: approver or admin (admin only when the rule says so),
  never the requester; deny needs a non-empty reason
- cancel: requester only, before approval
- fulfill: admin or system, after approval; converts the hold at actual cost
- Every transition appends exactly one ApprovalEvent; escalation adds an
  "escalated" event without changing state
- Illegal transitions raise ConflictError

Called by: routers/requests.py, scheduler.py
Depends on: services/credit_ledger.py, models/approvals.py
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from ..database import utcnow
from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..models import ApprovalEvent, ApprovalRule, UpgradeRequest, User
from . import credit_ledger

log = logging.getLogger("abi.approvals")

TRANSITIONS: dict[str, set[str]] = {
    "draft": {"pending", "approved", "cancelled"},
    "pending": {"approved", "denied", "cancelled", "expired"},
    "approved": {"fulfilled"},
    "denied": set(),
    "cancelled": set(),
    "expired": set(),
    "fulfilled": set(),
}
TERMINAL = frozenset(s for s, nxt in TRANSITIONS.items() if not nxt)
DECIDER_ROLES = {"approver", "admin"}
FULFILLER_ROLES = {"admin", "system"}


@dataclass(frozen=True)
class RuleMatch:
    name: str
    auto_approve: bool
    approver_role: str | None
    ttl_hours: int | None


# ── Rules ────────────────────────────────────────────────────────────


def default_rules() -> list[ApprovalRule]:
    threshold = settings.auto_approve_threshold
    return [
        ApprovalRule(name="Auto-approve", min_credits=0, max_credits=threshold, auto_approve=True, priority=30),
        ApprovalRule(
            name="Approver",
            min_credits=threshold + 1,
            max_credits=settings.approver_limit,
            approver_role="approver",
            ttl_hours=settings.approval_ttl_hours,
            priority=20,
        ),
        ApprovalRule(
            name="Admin",
            min_credits=settings.approver_limit + 1,
            approver_role="admin",
            ttl_hours=settings.admin_approval_ttl_hours,
            priority=10,
        ),
    ]


def ensure_default_rules(db: Session) -> None:
    if db.execute(select(ApprovalRule.id).limit(1)).first() is None:
        db.add_all(default_rules())
        db.flush()
        log.info("Seeded default approval rules")


def match_rule(db: Session, credits: int) -> RuleMatch:
    ensure_default_rules(db)
    rules = db.execute(
        select(ApprovalRule).where(ApprovalRule.is_active.is_(True)).order_by(ApprovalRule.priority.desc())
    ).scalars().all()
    for rule in rules:
        if credits >= rule.min_credits and (rule.max_credits is None or credits <= rule.max_credits):
            return RuleMatch(rule.name, bool(rule.auto_approve), rule.approver_role, rule.ttl_hours)
    # No rule covers the amount: most restrictive route
    return RuleMatch("Admin", False, "admin", settings.admin_approval_ttl_hours)


# ── Helpers ──────────────────────────────────────────────────────────


def _hold_ref(request: UpgradeRequest) -> str:
    return f"request-{request.id}"


def _transition(
    db: Session,
    request: UpgradeRequest,
    to_status: str,
    event_type: str,
    actor: User | None,
    note: str | None = None,
) -> ApprovalEvent:
    from_status = request.status
    if to_status not in TRANSITIONS.get(from_status, set()):
        raise ConflictError(f"Request {request.id} cannot go from {from_status} to {to_status}")
    request.status = to_status
    event = ApprovalEvent(
        request_id=request.id,
        event_type=event_type,
        actor_id=actor.id if actor else None,
        from_status=from_status,
        to_status=to_status,
        note=note,
    )
    request.events.append(event)
    return event


def _can_decide(request: UpgradeRequest, user: User) -> bool:
    if user.role not in DECIDER_ROLES or user.id == request.requester_id:
        return False
    if user.company_id != request.company_id:
        return False
    return request.required_role != "admin" or user.role == "admin"


# ── Lifecycle ────────────────────────────────────────────────────────


def create_request(
    db: Session,
    requester: User,
    *,
    request_type: str,
    title: str,
    estimated_credits: int,
    description: str | None = None,
    context: dict | None = None,
) -> UpgradeRequest:
    if estimated_credits <= 0:
        raise ValidationError("Estimated credits must be positive")
    if not requester.company_id:
        raise ValidationError("Requester has no company account")
    request = UpgradeRequest(
        requester_id=requester.id,
        company_id=requester.company_id,
        request_type=request_type,
        title=title,
        description=description,
        context=context,
        estimated_credits=estimated_credits,
        status="draft",
    )
    db.add(request)
    db.flush()
    request.events.append(ApprovalEvent(request_id=request.id, event_type="created", actor_id=requester.id, to_status="draft"))
    db.commit()
    log.info("Request %s created by user %s (%d credits)", request.id, requester.id, estimated_credits)
    return request


def submit_request(db: Session, request: UpgradeRequest, actor: User, now: datetime | None = None) -> UpgradeRequest:
    if actor.id != request.requester_id:
        raise ForbiddenError("Only the requester can submit a request")
    if request.status != "draft":
        raise ConflictError(f"Request {request.id} is already {request.status}")

    now = now or utcnow()
    rule = match_rule(db, request.estimated_credits)
    account = credit_ledger.get_account(db, request.company_id)
    ref = _hold_ref(request)
    credit_ledger.reserve(db, account, request.estimated_credits, ref, description=f"Request: {request.title}")

    request.hold_reference_id = ref
    request.submitted_at = now
    if rule.auto_approve:
        request.decided_at = now
        _transition(db, request, "approved", "approved", None, note="Auto-approved under threshold")
        log.info("Request %s auto-approved (%d credits)", request.id, request.estimated_credits)
    else:
        request.required_role = rule.approver_role
        request.expires_at = now + timedelta(hours=rule.ttl_hours or settings.approval_ttl_hours)
        _transition(db, request, "pending", "submitted", actor)
        log.info("Request %s pending %s approval until %s", request.id, rule.approver_role, request.expires_at)
    db.commit()
    return request


def approve(db: Session, request: UpgradeRequest, approver: User, note: str | None = None, now: datetime | None = None) -> UpgradeRequest:
    if not _can_decide(request, approver):
        raise ForbiddenError("You cannot approve this request")
    now = now or utcnow()
    if request.status == "pending" and request.expires_at and now >= request.expires_at:
        raise ConflictError(f"Request {request.id} has expired")
    if request.status != "pending":
        raise ConflictError(f"Request {request.id} is {request.status}")
    request.approver_id = approver.id
    request.approval_note = note
    request.decided_at = now
    _transition(db, request, "approved", "approved", approver, note)
    db.commit()
    log.info("Request %s approved by user %s", request.id, approver.id)
    return request


def deny(db: Session, request: UpgradeRequest, approver: User, reason: str | None) -> UpgradeRequest:
    if not reason or not reason.strip():
        raise ValidationError("A reason is required to deny a request")
    if not _can_decide(request, approver):
        raise ForbiddenError("You cannot deny this request")
    if request.status != "pending":
        raise ConflictError(f"Request {request.id} is {request.status}")
    if request.hold_reference_id:
        credit_ledger.release_hold(db, request.hold_reference_id)
    request.approver_id = approver.id
    request.denial_reason = reason.strip()
    request.decided_at = utcnow()
    _transition(db, request, "denied", "denied", approver, reason.strip())
    db.commit()
    log.info("Request %s denied by user %s", request.id, approver.id)
    return request


def cancel(db: Session, request: UpgradeRequest, actor: User, reason: str | None = None) -> UpgradeRequest:
    if actor.id != request.requester_id:
        raise ForbiddenError("Only the requester can cancel a request")
    if request.status not in ("draft", "pending"):
        raise ConflictError(f"Request {request.id} is {request.status} and cannot be cancelled")
    if request.status == "pending" and request.hold_reference_id:
        credit_ledger.release_hold(db, request.hold_reference_id)
    _transition(db, request, "cancelled", "cancelled", actor, reason)
    db.commit()
    log.info("Request %s cancelled by requester", request.id)
    return request


def fulfill(db: Session, request: UpgradeRequest, actor: User | None, actual_credits: int) -> UpgradeRequest:
    if actor is not None and actor.role not in FULFILLER_ROLES:
        raise ForbiddenError("Only admins or the system can fulfill requests")
    if request.status != "approved":
        raise ConflictError(f"Request {request.id} is {request.status}")
    credit_ledger.convert_hold(
        db, request.hold_reference_id or _hold_ref(request), actual_credits,
        created_by=str(actor.id) if actor else "system",
    )
    request.actual_credits = actual_credits
    request.fulfilled_at = utcnow()
    _transition(db, request, "fulfilled", "fulfilled", actor, f"Actual cost {actual_credits} credits")
    db.commit()
    log.info("Request %s fulfilled at %d credits", request.id, actual_credits)
    return request


# ── Background transitions ───────────────────────────────────────────


def process_expirations(db: Session, now: datetime | None = None) -> int:
    now = now or utcnow()
    due = db.execute(
        select(UpgradeRequest).where(UpgradeRequest.status == "pending", UpgradeRequest.expires_at <= now)
    ).scalars().all()
    for request in due:
        if request.hold_reference_id:
            credit_ledger.release_hold(db, request.hold_reference_id, status="expired")
        _transition(db, request, "expired", "expired", None, "No decision before the deadline")
        log.info("Request %s expired", request.id)
    if due:
        db.commit()
    return len(due)


def process_escalations(db: Session, now: datetime | None = None) -> int:
    now = now or utcnow()
    window = timedelta(hours=settings.escalation_window_hours)
    pending = db.execute(
        select(UpgradeRequest).where(
            UpgradeRequest.status == "pending",
            UpgradeRequest.escalated_at.is_(None),
            UpgradeRequest.expires_at > now,
            UpgradeRequest.expires_at <= now + window,
        )
    ).scalars().all()
    for request in pending:
        request.escalated_at = now
        request.events.append(ApprovalEvent(
            request_id=request.id,
            event_type="escalated",
            from_status="pending",
            to_status="pending",
            note=f"Decision due by {request.expires_at.isoformat()}",
        ))
        log.warning("Request %s escalated, expires %s", request.id, request.expires_at)
    if pending:
        db.commit()
    return len(pending)


# ── Reads ────────────────────────────────────────────────────────────


def get_request(db: Session, request_id: int) -> UpgradeRequest:
    request = db.get(UpgradeRequest, request_id)
    if request is None:
        raise NotFoundError(f"Request {request_id} not found")
    return request


def list_requests(
    db: Session,
    company_id: str,
    *,
    requester_id: int | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[UpgradeRequest]:
    query = select(UpgradeRequest).where(UpgradeRequest.company_id == company_id)
    if requester_id is not None:
        query = query.where(UpgradeRequest.requester_id == requester_id)
    if status:
        query = query.where(UpgradeRequest.status == status)
    query = query.order_by(UpgradeRequest.created_at.desc(), UpgradeRequest.id.desc()).limit(limit).offset(offset)
    return list(db.execute(query).scalars().all())


def get_approval_queue(db: Session, user: User) -> list[UpgradeRequest]:
    if user.role not in DECIDER_ROLES:
        return []
    pending = db.execute(
        select(UpgradeRequest)
        .where(UpgradeRequest.company_id == user.company_id, UpgradeRequest.status == "pending")
        .order_by(UpgradeRequest.expires_at.asc())
    ).scalars().all()
    return [r for r in pending if _can_decide(r, user)]
