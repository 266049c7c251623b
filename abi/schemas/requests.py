"""
schemas/requests.py — Upgrade request bodies and views

Business Rules:
- estimated_credits must be positive
- PATCH action is one of submit | approve | deny | cancel
- deny requires a non-empty reason (checked again in approval_service)

Called by: routers/requests.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .base import CamelModel

RequestType = Literal["analyst_call", "deep_research", "report_upgrade", "expert_session", "custom"]
RequestStatus = Literal["draft", "pending", "approved", "denied", "cancelled", "expired", "fulfilled"]


class UpgradeRequestCreate(BaseModel):
    request_type: RequestType = Field("custom", alias="type")
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    context: dict | None = None
    estimated_credits: int = Field(..., gt=0, alias="estimatedCredits")
    submit: bool = True

    model_config = {"populate_by_name": True}

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v


class RequestAction(BaseModel):
    action: Literal["submit", "approve", "deny", "cancel"]
    note: str | None = None
    reason: str | None = None


class FulfillBody(BaseModel):
    actual_credits: int = Field(..., ge=0, alias="actualCredits")

    model_config = {"populate_by_name": True}


class ApprovalEventOut(CamelModel):
    id: int
    event_type: str
    actor_id: int | None = None
    from_status: str | None = None
    to_status: str | None = None
    note: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class UpgradeRequestOut(CamelModel):
    id: int
    requester_id: int
    approver_id: int | None = None
    request_type: str = Field(serialization_alias="type")
    title: str
    description: str | None = None
    context: dict | None = None
    estimated_credits: int
    actual_credits: int | None = None
    status: RequestStatus
    required_role: str | None = None
    approval_note: str | None = None
    denial_reason: str | None = None
    created_at: datetime | None = None
    submitted_at: datetime | None = None
    expires_at: datetime | None = None
    escalated_at: datetime | None = None
    events: list[ApprovalEventOut] | None = None

    model_config = {"from_attributes": True}
