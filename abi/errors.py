"""
errors.py — Domain error hierarchy

Services raise these; the exception handlers in main.py turn them into
ErrorResponse bodies with the matching HTTP status.

Business Rules:
- ValidationError → 400 (malformed input, reserved username, bad invite,
  duplicate interest, over-cap)
- AuthError → 401, ForbiddenError → 403 (CSRF, signature, role)
- RateLimited → 429 with reset_at
- ConflictError → 409 (terminal request state, converted hold, insufficient credits)
- UpstreamUnavailable is recovered locally; never surfaced from /chat
- InvariantViolation aborts the write and is logged at ERROR

Called by: services/*, routers/*, main.py
"""

from datetime import datetime


class AbiError(Exception):
    status_code = 500

    def __init__(self, message: str, *, detail: list | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(AbiError):
    status_code = 400


class AuthError(AbiError):
    status_code = 401


class ForbiddenError(AuthError):
    status_code = 403


class NotFoundError(AbiError):
    status_code = 404


class ConflictError(AbiError):
    status_code = 409


class RateLimited(AbiError):
    status_code = 429

    def __init__(self, message: str = "Too many requests", *, reset_at: datetime | None = None):
        super().__init__(message)
        self.reset_at = reset_at


class UpstreamUnavailable(AbiError):
    status_code = 502


class InvariantViolation(AbiError):
    """A write would break a ledger invariant. The transaction is aborted."""

    status_code = 500
