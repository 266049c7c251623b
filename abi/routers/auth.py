"""
routers/auth.py — Sessions, registration, email verification, invites

Business Rules:
- Every mutating call passes the CSRF double-submit check; GET /auth/csrf
  issues the cookie the browser echoes back in X-CSRF-Token
- login / register / verify-email / invite validation use the fixed-window
  presets (5, 3, 3, 5 per minute per IP)
- Invite validation failures wait 100-300 ms before answering
- Login and registration set abi_session and rotate abi_csrf
- GET /auth/session always answers 200; it also issues the signed
  abi_visitor cookie when missing or tampered

Called by: main.py (router mount)
Depends on: dependencies, services/auth_service.py, services/security.py
"""

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import client_ip, get_user, rate_limit, require_admin, verify_csrf
from ..errors import ValidationError
from ..models import User
from ..schemas.auth import (
    InviteCreateRequest,
    InviteValidateRequest,
    LoginRequest,
    RegisterRequest,
    UserOut,
    VerifyEmailRequest,
)
from ..services import auth_service
from ..services.security import (
    SESSION_COOKIE,
    VISITOR_COOKIE,
    add_timing_noise,
    clear_auth_cookies,
    generate_csrf_token,
    generate_visitor_id,
    set_csrf_cookie,
    set_session_cookie,
    set_visitor_cookie,
    verify_visitor_id,
)

log = logging.getLogger("abi.auth")

router = APIRouter(tags=["auth"])


def _start_session(db: Session, user: User, request: Request, response: Response) -> dict:
    session = auth_service.create_session(
        db, user, ip_address=client_ip(request), user_agent=request.headers.get("user-agent")
    )
    set_session_cookie(response, session.token)
    csrf = generate_csrf_token()
    set_csrf_cookie(response, csrf)
    return {"user": UserOut.model_validate(user).wire(), "csrfToken": csrf}


@router.get("/auth/csrf")
async def issue_csrf(response: Response):
    token = generate_csrf_token()
    set_csrf_cookie(response, token)
    return {"csrfToken": token}


@router.post(
    "/auth/login",
    dependencies=[Depends(verify_csrf), Depends(rate_limit("login"))],
)
async def login(payload: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    user = auth_service.authenticate(db, payload.username, payload.password)
    log.info("User %s logged in", user.username)
    return _start_session(db, user, request, response)


@router.post(
    "/auth/register",
    status_code=201,
    dependencies=[Depends(verify_csrf), Depends(rate_limit("register"))],
)
async def register(payload: RegisterRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    try:
        user = auth_service.register_user(
            db,
            username=payload.username,
            email=payload.email,
            password=payload.password,
            name=payload.name,
            invite_code=payload.invite_code,
        )
    except ValidationError as e:
        if "invite" in e.message.lower():
            await add_timing_noise()
        raise
    return _start_session(db, user, request, response)


@router.post(
    "/auth/verify-email",
    dependencies=[Depends(verify_csrf), Depends(rate_limit("verify_email"))],
)
async def verify_email(payload: VerifyEmailRequest, db: Session = Depends(get_db)):
    user = auth_service.verify_email(db, payload.token)
    return {"verified": True, "user": UserOut.model_validate(user).wire()}


@router.post("/auth/logout", dependencies=[Depends(verify_csrf)])
async def logout(request: Request, response: Response, db: Session = Depends(get_db)):
    auth_service.revoke_session(db, request.cookies.get(SESSION_COOKIE))
    clear_auth_cookies(response)
    return {"ok": True}


@router.get("/auth/session")
async def session_status(request: Request, response: Response, db: Session = Depends(get_db)):
    if verify_visitor_id(request.cookies.get(VISITOR_COOKIE)) is None:
        set_visitor_cookie(response, generate_visitor_id())
    user = get_user(request, db)
    if user is None:
        return {"authenticated": False, "user": None}
    return {"authenticated": True, "user": UserOut.model_validate(user).wire()}


# ── Invites ──────────────────────────────────────────────────────────


@router.post(
    "/invites/validate",
    dependencies=[Depends(verify_csrf), Depends(rate_limit("invite_validate"))],
)
async def validate_invite(payload: InviteValidateRequest, db: Session = Depends(get_db)):
    try:
        invite = auth_service.validate_invite(db, payload.code, payload.email)
    except ValidationError:
        await add_timing_noise()
        raise
    return {"valid": True, "role": invite.role, "emailRestricted": bool(invite.email)}


@router.post("/invites", status_code=201, dependencies=[Depends(verify_csrf)])
async def create_invite(
    payload: InviteCreateRequest,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    invite = auth_service.create_invite(
        db,
        user,
        email=payload.email,
        role=payload.role,
        max_uses=payload.max_uses,
        expires_days=payload.expires_days,
    )
    return {
        "code": invite.code,
        "role": invite.role,
        "maxUses": invite.max_uses,
        "expiresAt": invite.expires_at.isoformat() if invite.expires_at else None,
    }
