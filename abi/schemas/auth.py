"""
schemas/auth.py — Login, registration and invite bodies

Business Rules:
- username: 3-30 chars of letters, digits, underscore, dash
- password: at least 8 chars
- invite code is upper-cased and stripped before lookup

Called by: routers/auth.py
Depends on: pydantic
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator

from .base import CamelModel

_USERNAME = re.compile(r"^[A-Za-z0-9_-]{3,30}$")


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=256)


class RegisterRequest(BaseModel):
    username: str
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8, max_length=256)
    name: str | None = None
    invite_code: str = Field("", alias="inviteCode")

    model_config = {"populate_by_name": True}

    @field_validator("username")
    @classmethod
    def username_shape(cls, v: str) -> str:
        v = v.strip()
        if not _USERNAME.match(v):
            raise ValueError("Username must be 3-30 letters, digits, _ or -")
        return v

    @field_validator("email")
    @classmethod
    def email_shape(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Invalid email address")
        return v

    @field_validator("invite_code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)


class InviteValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    email: str | None = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class InviteCreateRequest(BaseModel):
    email: str | None = None
    role: str = "member"
    max_uses: int = Field(1, ge=1, le=100, alias="maxUses")
    expires_days: int | None = Field(7, ge=1, le=90, alias="expiresDays")

    model_config = {"populate_by_name": True}


class UserOut(CamelModel):
    id: int
    username: str
    email: str
    name: str | None = None
    role: str
    company_id: str | None = None
    email_verified: bool = False

    model_config = {"from_attributes": True}
