"""
schemas/errors.py — The one error body every Abi endpoint returns

Keys stay snake_case (unlike the camelCase API models) so clients can
branch on `status_code` and show `reset_at` from the auth throttles.

Called by: main.py exception handlers
"""

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    error: str = Field(description="Human-readable message, safe to show")
    status_code: int
    request_id: str = Field("", description="Matches the X-Request-ID header and log lines")
    detail: list | None = Field(None, description="Field errors for 400 validation failures")
    reset_at: str | None = Field(None, description="ISO time the rate-limit window reopens (429 only)")
