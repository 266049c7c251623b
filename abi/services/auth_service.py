"""
auth_service.py — Registration, login, sessions, email verification, invites

Business Rules:
- Registration requires a valid invite code (unless INVITE_REQUIRED=false);
  the invite decides the new user's company and role
- Reserved usernames and common passwords are rejected with ValidationError
- Invites: 8 chars of A-Z/2-9, optional single-email restriction, max_uses,
  optional expiry; use_count is incremented with a guarded UPDATE
- Sessions live 30 days; revoked or expired sessions resolve to no user
- Login failures never say which half was wrong

Called by: routers/auth.py, dependencies.py
Depends on: models/auth.py, services/security.py
"""

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from ..config import settings
from ..database import utcnow
from ..errors import AuthError, ForbiddenError, ValidationError
from ..models import Invite, User, UserSession
from .security import generate_session_token, hash_password, verify_password

log = logging.getLogger("abi.auth")

RESERVED_USERNAMES = frozenset({
    "admin", "administrator", "mod", "moderator", "system", "support", "help",
    "info", "contact", "api", "www", "mail", "email", "root", "null",
    "undefined", "anonymous", "guest", "user", "abi", "abiplus", "abi_plus",
    "community", "settings", "profile", "account",
})
COMMON_PASSWORDS = frozenset({
    "password", "password123", "12345678", "123456789", "qwerty123",
    "letmein", "welcome", "admin123", "iloveyou", "sunshine",
})

INVITE_CODE_LENGTH = 8
INVITE_CODE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_ROLES = ("member", "approver", "admin")
INVALID_LOGIN = "Invalid username or password"


# ── Validation ───────────────────────────────────────────────────────


def validate_username(username: str) -> None:
    if username.lower() in RESERVED_USERNAMES:
        raise ValidationError("This username is reserved")


def validate_password(password: str) -> None:
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if password.lower() in COMMON_PASSWORDS:
        raise ValidationError("This password is too common")


def normalize_invite_code(code: str) -> str:
    return (code or "").strip().upper()


def is_valid_invite_code_format(code: str) -> bool:
    code = normalize_invite_code(code)
    return len(code) == INVITE_CODE_LENGTH and code.isalnum() and code.isascii()


# ── Invites ──────────────────────────────────────────────────────────


def generate_invite_code() -> str:
    return "".join(secrets.choice(INVITE_CODE_CHARS) for _ in range(INVITE_CODE_LENGTH))


def _invite_problem(invite: Invite, email: str | None, now: datetime) -> str | None:
    if not invite.is_active:
        return "Invalid invite code"
    if invite.expires_at and now >= invite.expires_at:
        return "This invite has expired"
    if (invite.use_count or 0) >= (invite.max_uses or 1):
        return "This invite has already been used"
    if invite.email:
        if not email:
            return "Email is required for this invite"
        if invite.email.lower() != email.lower():
            return "This invite is for a different email address"
    return None


def validate_invite(db: Session, code: str, email: str | None = None, now: datetime | None = None) -> Invite:
    """Look up a usable invite or raise ValidationError."""
    now = now or utcnow()
    code = normalize_invite_code(code)
    if not code:
        raise ValidationError("Invite code is required")
    if not is_valid_invite_code_format(code):
        raise ValidationError("Invalid invite code format")

    invite = db.query(Invite).filter(Invite.code == code).first()
    if invite is None:
        raise ValidationError("Invalid invite code")
    problem = _invite_problem(invite, email, now)
    if problem:
        raise ValidationError(problem)
    return invite


def create_invite(
    db: Session,
    creator: User,
    *,
    email: str | None = None,
    role: str = "member",
    max_uses: int = 1,
    expires_days: int | None = 7,
) -> Invite:
    if creator.role not in ("admin", "system"):
        raise ForbiddenError("Admin access required")
    if role not in INVITE_ROLES:
        raise ValidationError(f"Unknown role: {role}")

    invite = Invite(
        code=generate_invite_code(),
        email=email.strip().lower() if email else None,
        company_id=creator.company_id,
        role=role,
        created_by_id=creator.id,
        max_uses=max(1, max_uses),
        expires_at=utcnow() + timedelta(days=expires_days) if expires_days else None,
    )
    db.add(invite)
    db.commit()
    log.info("Invite %s created by %s (role=%s)", invite.code, creator.username, role)
    return invite


def _consume_invite(db: Session, invite: Invite) -> None:
    result = db.execute(
        update(Invite)
        .where(Invite.id == invite.id, Invite.use_count < Invite.max_uses)
        .values(use_count=Invite.use_count + 1)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ValidationError("This invite has already been used")


# ── Registration & login ─────────────────────────────────────────────


def register_user(
    db: Session,
    *,
    username: str,
    email: str,
    password: str,
    name: str | None = None,
    invite_code: str | None = None,
) -> User:
    email = email.strip().lower()
    validate_username(username)
    validate_password(password)

    invite = None
    if settings.invite_required or invite_code:
        invite = validate_invite(db, invite_code or "", email)

    if db.query(User).filter(func.lower(User.username) == username.lower()).first():
        raise ValidationError("Username is already taken")
    if db.query(User).filter(User.email == email).first():
        raise ValidationError("Email already registered")

    if invite is not None:
        _consume_invite(db, invite)

    user = User(
        username=username,
        email=email,
        name=name,
        password_hash=hash_password(password),
        role=invite.role if invite else "member",
        company_id=invite.company_id if invite else None,
        email_verification_token=secrets.token_urlsafe(32),
    )
    db.add(user)
    db.commit()
    log.info("Registered user %s (company=%s)", user.username, user.company_id)
    return user


def authenticate(db: Session, login: str, password: str) -> User:
    """Resolve username or email + password to an active user."""
    login = login.strip()
    user = (
        db.query(User)
        .filter(or_(func.lower(User.username) == login.lower(), User.email == login.lower()))
        .first()
    )
    if user is None or not verify_password(password, user.password_hash):
        raise AuthError(INVALID_LOGIN)
    if not user.is_active:
        raise ForbiddenError("Account deactivated")
    user.last_login_at = utcnow()
    db.commit()
    return user


def verify_email(db: Session, token: str) -> User:
    user = db.query(User).filter(User.email_verification_token == token).first()
    if user is None:
        raise ValidationError("Invalid or expired verification link")
    user.email_verified = True
    user.email_verification_token = None
    db.commit()
    return user


# ── Sessions ─────────────────────────────────────────────────────────


def create_session(
    db: Session,
    user: User,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> UserSession:
    now = now or utcnow()
    session = UserSession(
        user_id=user.id,
        token=generate_session_token(),
        ip_address=ip_address,
        user_agent=(user_agent or "")[:255] or None,
        created_at=now,
        expires_at=now + timedelta(days=settings.session_days),
    )
    db.add(session)
    db.commit()
    return session


def get_session_user(db: Session, token: str | None, now: datetime | None = None) -> User | None:
    if not token:
        return None
    now = now or utcnow()
    session = db.query(UserSession).filter(UserSession.token == token).first()
    if session is None or session.revoked_at is not None or session.expires_at <= now:
        return None
    user = session.user
    if user is None or not user.is_active:
        return None
    return user


def revoke_session(db: Session, token: str | None) -> bool:
    if not token:
        return False
    session = db.query(UserSession).filter(UserSession.token == token).first()
    if session is None or session.revoked_at is not None:
        return False
    session.revoked_at = utcnow()
    db.commit()
    return True
