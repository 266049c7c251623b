"""
security.py — Passwords, tokens, CSRF, signed cookies, rate limiting

Business Rules:
- Passwords: PBKDF2-HMAC-SHA256 with a random 16-byte salt; iterations
  scale with 2**cost (default cost 10). Stored as
  pbkdf2_sha256$<cost>$<salt>$<hash> so the cost can be raised later
- Session tokens: 32 random bytes as 64 hex chars
- CSRF: double-submit cookie, constant-time compare, only for unsafe methods;
  any missing token or length mismatch fails
- Visitor cookie: "<uuid>.<hmac_sha256(secret, uuid)[:16]>"
- Rate limiter: fixed window per ip:endpoint counted in the shared Store;
  the window starts with the first request
- Timing noise: uniform 100-300 ms delay before equivocal answers

Called by: routers/auth.py, services/auth_service.py, dependencies.py
Depends on: cryptography, store.py
"""

import asyncio
import base64
import hashlib
import hmac
import logging
import random
import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from starlette.responses import Response

from ..config import settings
from ..store import Store

log = logging.getLogger("abi.security")

SESSION_COOKIE = "abi_session"
CSRF_COOKIE = "abi_csrf"
VISITOR_COOKIE = "abi_visitor"
CSRF_HEADER = "X-CSRF-Token"

HASH_SCHEME = "pbkdf2_sha256"
ITERATIONS_PER_UNIT = 200
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


# ── Passwords ────────────────────────────────────────────────────────


def _kdf(salt: bytes, cost: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=ITERATIONS_PER_UNIT * (2**cost),
    )


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def hash_password(password: str, cost: int | None = None) -> str:
    cost = settings.password_hash_cost if cost is None else cost
    if not 4 <= cost <= 20:
        raise ValueError("Hash cost must be between 4 and 20")
    salt = secrets.token_bytes(16)
    digest = _kdf(salt, cost).derive(password.encode())
    return f"{HASH_SCHEME}${cost}${_b64(salt)}${_b64(digest)}"


def verify_password(password: str, stored: str | None) -> bool:
    if not password or not stored:
        return False
    try:
        scheme, cost, salt, digest = stored.split("$")
        if scheme != HASH_SCHEME:
            return False
        _kdf(_unb64(salt), int(cost)).verify(password.encode(), _unb64(digest))
        return True
    except (InvalidKey, ValueError):
        return False


# ── Tokens & CSRF ────────────────────────────────────────────────────


def generate_session_token() -> str:
    return secrets.token_hex(32)


def generate_csrf_token() -> str:
    return secrets.token_hex(32)


def validate_csrf_token(header_token: str | None, cookie_token: str | None) -> bool:
    if not header_token or not cookie_token:
        return False
    if len(header_token) != len(cookie_token):
        return False
    return hmac.compare_digest(header_token.encode(), cookie_token.encode())


def requires_csrf(method: str) -> bool:
    return method.upper() not in SAFE_METHODS


# ── Signed visitor id ────────────────────────────────────────────────


def _visitor_signature(visitor_id: str, secret: str) -> str:
    return hmac.new(secret.encode(), visitor_id.encode(), hashlib.sha256).hexdigest()[:16]


def generate_visitor_id() -> str:
    return str(uuid.uuid4())


def sign_visitor_id(visitor_id: str, secret: str | None = None) -> str:
    secret = secret or settings.visitor_cookie_secret or settings.secret_key
    return f"{visitor_id}.{_visitor_signature(visitor_id, secret)}"


def verify_visitor_id(signed: str | None, secret: str | None = None) -> str | None:
    if not signed or "." not in signed:
        return None
    visitor_id, _, signature = signed.rpartition(".")
    if not visitor_id or not signature:
        return None
    secret = secret or settings.visitor_cookie_secret or settings.secret_key
    expected = _visitor_signature(visitor_id, secret)
    if len(signature) != len(expected):
        return None
    return visitor_id if hmac.compare_digest(signature, expected) else None


# ── Rate limiting ────────────────────────────────────────────────────


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds

    @property
    def reset_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc)


RATE_LIMITS = {
    "login": RateLimitConfig(5, 60),
    "register": RateLimitConfig(3, 60),
    "invite_validate": RateLimitConfig(5, 60),
    "waitlist": RateLimitConfig(3, 60),
    "verify_email": RateLimitConfig(3, 60),
}


def get_rate_limit_key(ip: str, endpoint: str) -> str:
    return f"{ip}:{endpoint}"


def check_rate_limit(store: Store, key: str, config: RateLimitConfig, now: float | None = None) -> RateLimitResult:
    now = time.time() if now is None else now
    count = store.incr(f"rl:{key}", ttl_seconds=config.window_seconds)
    reset_key = f"rl:{key}:reset"
    reset_at = store.get(reset_key)
    if count == 1 or reset_at is None:
        reset_at = now + config.window_seconds
        store.set_with_ttl(reset_key, reset_at, config.window_seconds)

    if count > config.max_requests:
        log.warning("Rate limit hit for %s", key)
        return RateLimitResult(False, 0, float(reset_at))
    return RateLimitResult(True, config.max_requests - count, float(reset_at))


async def add_timing_noise(min_ms: int = 100, max_ms: int = 300) -> None:
    await asyncio.sleep(random.uniform(min_ms, max_ms) / 1000)


# ── Cookies ──────────────────────────────────────────────────────────


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_days * 86400,
        httponly=True,
        secure=settings.cookie_secure or settings.is_production,
        samesite="lax",
        path="/",
    )


def set_csrf_cookie(response: Response, token: str) -> None:
    # Readable by the browser so it can echo it in the header
    response.set_cookie(
        CSRF_COOKIE,
        token,
        max_age=settings.session_days * 86400,
        httponly=False,
        secure=settings.cookie_secure or settings.is_production,
        samesite="lax",
        path="/",
    )


def set_visitor_cookie(response: Response, visitor_id: str) -> None:
    response.set_cookie(
        VISITOR_COOKIE,
        sign_visitor_id(visitor_id),
        max_age=365 * 86400,
        httponly=True,
        secure=settings.cookie_secure or settings.is_production,
        samesite="lax",
        path="/",
    )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")
