"""
routers/requests.py — Upgrade requests and approvals

Business Rules:
- Requests are visible only inside the caller's company; other ids 404
- Members list their own requests; approvers and admins see the company's
- ?queue=true lists what the caller may decide right now
- PATCH {action} drives submit / approve / deny / cancel
- Fulfillment is admin-only and converts the hold at the actual cost

Called by: main.py (router mount)
Depends on: services/approval_service.py
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_admin, require_company, verify_csrf
from ..errors import NotFoundError
from ..models import UpgradeRequest, User
from ..schemas.requests import FulfillBody, RequestAction, RequestStatus, UpgradeRequestCreate, UpgradeRequestOut
from ..services import approval_service

router = APIRouter(prefix="/api/requests", tags=["requests"])


def _out(request: UpgradeRequest, with_events: bool = False) -> dict:
    out = UpgradeRequestOut.model_validate(request)
    if not with_events:
        out.events = None
    return out.model_dump(by_alias=True, exclude_none=True)


def _load(db: Session, user: User, request_id: int) -> UpgradeRequest:
    request = approval_service.get_request(db, request_id)
    if request.company_id != user.company_id:
        raise NotFoundError(f"Request {request_id} not found")
    return request


@router.get("")
async def list_requests(
    status: RequestStatus | None = None,
    queue: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(require_company),
    db: Session = Depends(get_db),
):
    if queue:
        items = approval_service.get_approval_queue(db, user)
    else:
        requester_id = None if user.role in approval_service.DECIDER_ROLES else user.id
        items = approval_service.list_requests(
            db, user.company_id, requester_id=requester_id, status=status, limit=limit, offset=offset
        )
    return {"requests": [_out(r) for r in items], "count": len(items)}


@router.post("", status_code=201, dependencies=[Depends(verify_csrf)])
async def create_request(
    payload: UpgradeRequestCreate,
    user: User = Depends(require_company),
    db: Session = Depends(get_db),
):
    request = approval_service.create_request(
        db,
        user,
        request_type=payload.request_type,
        title=payload.title,
        estimated_credits=payload.estimated_credits,
        description=payload.description,
        context=payload.context,
    )
    if payload.submit:
        request = approval_service.submit_request(db, request, user)
    return _out(request, with_events=True)


@router.get("/{request_id}")
async def get_request(request_id: int, user: User = Depends(require_company), db: Session = Depends(get_db)):
    return _out(_load(db, user, request_id), with_events=True)


@router.patch("/{request_id}", dependencies=[Depends(verify_csrf)])
async def act_on_request(
    request_id: int,
    payload: RequestAction,
    user: User = Depends(require_company),
    db: Session = Depends(get_db),
):
    request = _load(db, user, request_id)
    if payload.action == "submit":
        request = approval_service.submit_request(db, request, user)
    elif payload.action == "approve":
        request = approval_service.approve(db, request, user, payload.note)
    elif payload.action == "deny":
        request = approval_service.deny(db, request, user, payload.reason)
    else:
        request = approval_service.cancel(db, request, user, payload.reason)
    return _out(request, with_events=True)


@router.post("/{request_id}/fulfill", dependencies=[Depends(verify_csrf)])
async def fulfill_request(
    request_id: int,
    payload: FulfillBody,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    request = _load(db, user, request_id)
    return _out(approval_service.fulfill(db, request, user, payload.actual_credits), with_events=True)
