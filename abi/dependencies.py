"""
dependencies.py — Shared FastAPI Dependencies

Reusable dependency functions for authentication, authorization, CSRF
and the per-endpoint auth rate limits. All routers import from here
instead of defining their own auth logic.

Business Rules:
- get_user returns None if not logged in (non-throwing)
- require_user raises 401 if no live session, 403 if deactivated
- require_company raises 403 for users without a company account
- require_admin raises 403 unless role is admin
- verify_csrf enforces the double-submit token on unsafe methods only
- rate_limit(preset) raises 429 with reset_at once the window is spent

Called by: all routers
Depends on: database, services/auth_service.py, services/security.py, store.py
"""

import logging

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .database import get_db
from .errors import AuthError, ForbiddenError, RateLimited
from .models import User
from .services import auth_service
from .services.security import (
    CSRF_COOKIE,
    CSRF_HEADER,
    RATE_LIMITS,
    SESSION_COOKIE,
    check_rate_limit,
    get_rate_limit_key,
    requires_csrf,
    validate_csrf_token,
)
from .store import get_store

log = logging.getLogger("abi.auth")


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# ── Authentication ────────────────────────────────────────────────────


def get_user(request: Request, db: Session) -> User | None:
    """Return current user from the session cookie, or None if not logged in."""
    return auth_service.get_session_user(db, request.cookies.get(SESSION_COOKIE))


def optional_user(request: Request, db: Session = Depends(get_db)) -> User | None:
    return get_user(request, db)


def require_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Dependency: raises 401 if no authenticated user, 403 if deactivated."""
    user = get_user(request, db)
    if not user:
        raise AuthError("Not authenticated")
    if not getattr(user, "is_active", True):
        raise ForbiddenError("Account deactivated")
    return user


def require_company(user: User = Depends(require_user)) -> User:
    if not user.company_id:
        raise ForbiddenError("No company account for this user")
    return user


def require_admin(user: User = Depends(require_user)) -> User:
    if user.role != "admin":
        raise ForbiddenError("Admin access required")
    return user


# ── CSRF ──────────────────────────────────────────────────────────────


def verify_csrf(request: Request) -> None:
    """Dependency: double-submit check on POST/PATCH/PUT/DELETE."""
    if not requires_csrf(request.method):
        return
    header = request.headers.get(CSRF_HEADER)
    cookie = request.cookies.get(CSRF_COOKIE)
    if not validate_csrf_token(header, cookie):
        log.warning("CSRF check failed for %s %s", request.method, request.url.path)
        raise ForbiddenError("Invalid CSRF token")


# ── Rate limits ───────────────────────────────────────────────────────


def rate_limit(preset: str):
    """Dependency factory for the fixed-window auth presets."""
    config = RATE_LIMITS[preset]

    def _check(request: Request) -> None:
        key = get_rate_limit_key(client_ip(request), preset)
        result = check_rate_limit(get_store(), key, config)
        if not result.allowed:
            raise RateLimited(
                "Too many attempts. Please try again later.",
                reset_at=result.reset_at_datetime,
            )

    return _check
