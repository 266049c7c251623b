"""
test_security.py — Tests for password hashing, tokens, CSRF and rate limiting

Covers: PBKDF2 hash format and verification, cost bounds, session and CSRF
token shape, double-submit comparison, signed visitor ids, and the
fixed-window rate limiter against a controllable clock.

Called by: pytest
Depends on: abi/services/security.py, abi/store.py
"""

import pytest

from abi.services.security import (
    RATE_LIMITS,
    RateLimitConfig,
    check_rate_limit,
    generate_csrf_token,
    generate_session_token,
    generate_visitor_id,
    get_rate_limit_key,
    hash_password,
    requires_csrf,
    sign_visitor_id,
    validate_csrf_token,
    verify_password,
    verify_visitor_id,
)
from abi.store import MemoryStore


class Clock:
    def __init__(self, t=1_000.0):
        self.t = t

    def __call__(self):
        return self.t


# ── Passwords ────────────────────────────────────────────────────────


def test_hash_format_and_verify():
    stored = hash_password("correct-horse-9", cost=4)
    scheme, cost, salt, digest = stored.split("$")
    assert (scheme, cost) == ("pbkdf2_sha256", "4")
    assert salt and digest
    assert verify_password("correct-horse-9", stored)
    assert not verify_password("wrong-horse-9", stored)


def test_hashes_are_salted():
    assert hash_password("same-password", cost=4) != hash_password("same-password", cost=4)


def test_verify_rejects_garbage():
    assert not verify_password("x", None)
    assert not verify_password("", hash_password("abc12345", cost=4))
    assert not verify_password("x", "not-a-hash")
    assert not verify_password("x", "bcrypt$4$aaaa$bbbb")


def test_cost_bounds():
    with pytest.raises(ValueError):
        hash_password("pw", cost=3)
    with pytest.raises(ValueError):
        hash_password("pw", cost=21)


# ── Tokens & CSRF ────────────────────────────────────────────────────


def test_token_shapes():
    for token in (generate_session_token(), generate_csrf_token()):
        assert len(token) == 64
        int(token, 16)
    assert generate_session_token() != generate_session_token()


def test_csrf_double_submit():
    token = generate_csrf_token()
    assert validate_csrf_token(token, token)
    assert not validate_csrf_token(token, generate_csrf_token())
    assert not validate_csrf_token(token, token[:-1])
    assert not validate_csrf_token(None, token)
    assert not validate_csrf_token(token, "")


def test_requires_csrf_only_for_unsafe_methods():
    assert not requires_csrf("get")
    assert not requires_csrf("OPTIONS")
    assert requires_csrf("POST")
    assert requires_csrf("delete")


def test_visitor_id_signing():
    visitor = generate_visitor_id()
    signed = sign_visitor_id(visitor, "s3cret")
    assert verify_visitor_id(signed, "s3cret") == visitor
    assert verify_visitor_id(signed, "other") is None
    assert verify_visitor_id(signed[:-1] + ("0" if signed[-1] != "0" else "1"), "s3cret") is None
    assert verify_visitor_id("no-dot", "s3cret") is None
    assert verify_visitor_id(None) is None


# ── Rate limiting ────────────────────────────────────────────────────


def test_fourth_register_attempt_is_limited():
    clock = Clock()
    store = MemoryStore(clock)
    key = get_rate_limit_key("10.0.0.1", "register")
    config = RATE_LIMITS["register"]

    results = [check_rate_limit(store, key, config, now=clock.t) for _ in range(3)]
    assert [r.remaining for r in results] == [2, 1, 0]
    assert all(r.allowed for r in results)

    blocked = check_rate_limit(store, key, config, now=clock.t)
    assert blocked.allowed is False
    assert blocked.remaining == 0
    assert blocked.reset_at == clock.t + 60
    assert blocked.reset_at_datetime.timestamp() == clock.t + 60


def test_window_starts_with_first_request():
    clock = Clock()
    store = MemoryStore(clock)
    config = RateLimitConfig(2, 60)
    first = check_rate_limit(store, "ip:login", config, now=clock.t)

    clock.t += 30
    second = check_rate_limit(store, "ip:login", config, now=clock.t)
    assert second.reset_at == first.reset_at

    clock.t += 31
    fresh = check_rate_limit(store, "ip:login", config, now=clock.t)
    assert fresh.allowed is True
    assert fresh.remaining == 1
    assert fresh.reset_at == clock.t + 60


def test_limits_are_per_key():
    clock = Clock()
    store = MemoryStore(clock)
    config = RateLimitConfig(1, 60)
    assert check_rate_limit(store, "a:login", config, now=clock.t).allowed
    assert not check_rate_limit(store, "a:login", config, now=clock.t).allowed
    assert check_rate_limit(store, "b:login", config, now=clock.t).allowed
