"""
schemas/interests.py — Interest bodies and views

Called by: routers/interests.py, services/interest_service.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .base import CamelModel

InterestSource = Literal["manual", "chat_inferred", "onboarding", "imported"]
CoverageLevel = Literal["decision_grade", "partial", "available", "web_only"]


class InterestCoverage(CamelModel):
    level: CoverageLevel
    matched_category_id: str | None = None
    matched_category_name: str | None = None
    gap_reason: str | None = None


class InterestCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=200)
    region: str | None = None
    grade: str | None = None
    source: InterestSource = "manual"
    conversation_id: str | None = Field(None, alias="conversationId")

    model_config = {"populate_by_name": True}

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Interest text is required")
        return v


class InterestUpdate(BaseModel):
    text: str | None = Field(None, min_length=1, max_length=200)
    region: str | None = None
    grade: str | None = None


class InterestOut(CamelModel):
    id: int
    text: str
    canonical_key: str | None = None
    source: str = "manual"
    region: str | None = None
    grade: str | None = None
    coverage: InterestCoverage | None = None
    saved_at: datetime | None = None
    conversation_id: str | None = None

    model_config = {"from_attributes": True}
