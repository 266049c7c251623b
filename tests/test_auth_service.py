"""
test_auth_service.py — Tests for registration, login, sessions and invites

Covers: invite creation rules and validation failures, invite-gated
registration, reserved usernames and weak passwords, login by username or
email, deactivated accounts, email verification, session expiry and
revocation.

Called by: pytest
Depends on: abi/services/auth_service.py
"""

from datetime import timedelta

import pytest

from abi.database import utcnow
from abi.errors import AuthError, ForbiddenError, ValidationError
from abi.services import auth_service as svc

PASSWORD = "correct-horse-9"


def _register(db, invite, username="newbie", email="newbie@acme.example", password="sturdy-pass-1"):
    return svc.register_user(
        db, username=username, email=email, password=password, invite_code=invite.code
    )


# ── Invites ──────────────────────────────────────────────────────────


def test_admin_creates_invite(db_session, admin_user):
    invite = svc.create_invite(db_session, admin_user, role="approver")
    assert len(invite.code) == 8
    assert set(invite.code) <= set(svc.INVITE_CODE_CHARS)
    assert invite.company_id == admin_user.company_id
    assert invite.expires_at > utcnow()


def test_only_admins_create_invites(db_session, admin_user, member_user):
    with pytest.raises(ForbiddenError):
        svc.create_invite(db_session, member_user)
    with pytest.raises(ValidationError):
        svc.create_invite(db_session, admin_user, role="owner")


def test_invite_code_validation(db_session):
    with pytest.raises(ValidationError, match="required"):
        svc.validate_invite(db_session, "  ")
    with pytest.raises(ValidationError, match="format"):
        svc.validate_invite(db_session, "abc")
    with pytest.raises(ValidationError, match="Invalid invite code"):
        svc.validate_invite(db_session, "ZZZZZZZZ")


def test_invite_lookup_is_case_insensitive(db_session, admin_user):
    invite = svc.create_invite(db_session, admin_user)
    assert svc.validate_invite(db_session, f" {invite.code.lower()} ").id == invite.id


def test_expired_invite(db_session, admin_user):
    invite = svc.create_invite(db_session, admin_user, expires_days=1)
    with pytest.raises(ValidationError, match="expired"):
        svc.validate_invite(db_session, invite.code, now=utcnow() + timedelta(days=2))


def test_email_restricted_invite(db_session, admin_user):
    invite = svc.create_invite(db_session, admin_user, email="Buyer@Acme.example")
    with pytest.raises(ValidationError, match="Email is required"):
        svc.validate_invite(db_session, invite.code)
    with pytest.raises(ValidationError, match="different email"):
        svc.validate_invite(db_session, invite.code, "other@acme.example")
    assert svc.validate_invite(db_session, invite.code, "buyer@acme.example").id == invite.id


# ── Registration ─────────────────────────────────────────────────────


def test_register_takes_company_and_role_from_invite(db_session, admin_user):
    invite = svc.create_invite(db_session, admin_user, role="approver")
    user = _register(db_session, invite, email="NewBie@Acme.example")
    assert user.email == "newbie@acme.example"
    assert (user.company_id, user.role) == (admin_user.company_id, "approver")
    assert user.email_verified is False
    assert user.email_verification_token


def test_single_use_invite_is_consumed(db_session, admin_user):
    invite = svc.create_invite(db_session, admin_user)
    _register(db_session, invite)
    with pytest.raises(ValidationError, match="already been used"):
        _register(db_session, invite, username="second", email="second@acme.example")


def test_registration_requires_invite(db_session):
    with pytest.raises(ValidationError, match="required"):
        svc.register_user(db_session, username="newbie", email="n@acme.example", password="sturdy-pass-1")


def test_reserved_username_and_weak_passwords(db_session, admin_user):
    invite = svc.create_invite(db_session, admin_user)
    with pytest.raises(ValidationError, match="reserved"):
        _register(db_session, invite, username="Admin")
    with pytest.raises(ValidationError, match="at least 8"):
        _register(db_session, invite, password="short")
    with pytest.raises(ValidationError, match="too common"):
        _register(db_session, invite, password="Password123")


def test_duplicate_username_or_email(db_session, admin_user, member_user):
    invite = svc.create_invite(db_session, admin_user, max_uses=5)
    with pytest.raises(ValidationError, match="taken"):
        _register(db_session, invite, username="MIRA")
    with pytest.raises(ValidationError, match="already registered"):
        _register(db_session, invite, email=member_user.email)


# ── Login & verification ─────────────────────────────────────────────


def test_login_by_username_or_email(db_session, member_user):
    assert svc.authenticate(db_session, "Mira", PASSWORD).id == member_user.id
    assert svc.authenticate(db_session, member_user.email.upper(), PASSWORD).id == member_user.id
    assert member_user.last_login_at is not None


def test_login_failures_do_not_say_which_half(db_session, member_user):
    with pytest.raises(AuthError) as wrong_password:
        svc.authenticate(db_session, "mira", "nope-nope-nope")
    with pytest.raises(AuthError) as unknown_user:
        svc.authenticate(db_session, "nobody", PASSWORD)
    assert wrong_password.value.message == unknown_user.value.message == svc.INVALID_LOGIN


def test_deactivated_user_cannot_log_in(db_session, member_user):
    member_user.is_active = False
    db_session.commit()
    with pytest.raises(ForbiddenError):
        svc.authenticate(db_session, "mira", PASSWORD)


def test_verify_email_consumes_token(db_session, admin_user):
    user = _register(db_session, svc.create_invite(db_session, admin_user))
    token = user.email_verification_token
    assert svc.verify_email(db_session, token).email_verified is True
    with pytest.raises(ValidationError):
        svc.verify_email(db_session, token)


# ── Sessions ─────────────────────────────────────────────────────────


def test_session_lifecycle(db_session, member_user):
    session = svc.create_session(db_session, member_user, ip_address="10.0.0.1", user_agent="pytest")
    assert len(session.token) == 64
    assert session.expires_at - session.created_at == timedelta(days=30)
    assert svc.get_session_user(db_session, session.token).id == member_user.id

    assert svc.revoke_session(db_session, session.token) is True
    assert svc.revoke_session(db_session, session.token) is False
    assert svc.get_session_user(db_session, session.token) is None


def test_expired_or_unknown_session(db_session, member_user):
    session = svc.create_session(db_session, member_user)
    later = session.expires_at + timedelta(seconds=1)
    assert svc.get_session_user(db_session, session.token, now=later) is None
    assert svc.get_session_user(db_session, "f" * 64) is None
    assert svc.get_session_user(db_session, None) is None


def test_inactive_user_session_resolves_to_nobody(db_session, member_user):
    session = svc.create_session(db_session, member_user)
    member_user.is_active = False
    db_session.commit()
    assert svc.get_session_user(db_session, session.token) is None
