"""
schemas/chat.py — Chat request, citations and evidence streams

Business Rules:
- Citation ids match ^[BW]\\d+$; B = internal (proprietary), W = web
- The evidence pool is ordered and unique by id
- The response envelope itself stays a plain dict: every upstream reply
  is treated as untyped and normalized by services/response_validator.py

Called by: routers/chat.py, services/hybrid_fetcher.py,
           services/hybrid_synthesizer.py, services/internal_intel.py
Depends on: pydantic
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .base import CamelModel

CITATION_ID_PATTERN = r"^[BW]\d+$"


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"] = "user"
    content: str = ""


class ChatRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=4000)
    history: list[ChatMessage] = Field(default_factory=list, max_length=50)
    web_enabled: bool | None = Field(None, alias="webEnabled")

    model_config = {"populate_by_name": True}

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("query must not be blank")
        return v


class Citation(CamelModel):
    id: str = Field(..., pattern=CITATION_ID_PATTERN)
    type: Literal["beroe", "web"] = "beroe"
    name: str
    url: str | None = None
    snippet: str | None = None
    category: str | None = None
    report_id: str | None = None


class InternalSource(CamelModel):
    name: str
    type: str = "beroe"
    summary: str | None = None
    category: str | None = None
    report_id: str | None = None
    citation_id: str | None = None


class WebSource(CamelModel):
    name: str
    url: str = ""
    domain: str = ""
    snippet: str | None = None
    citation_id: str | None = None


class BeroeResult(CamelModel):
    content: str = ""
    sources: list[InternalSource] = Field(default_factory=list)
    insight: str | None = None
    from_model: bool = False


class WebResult(CamelModel):
    content: str = ""
    sources: list[WebSource] = Field(default_factory=list)
    raw_citations: list[str] = Field(default_factory=list)


class HybridData(CamelModel):
    beroe: BeroeResult
    web: WebResult | None = None
    evidence_pool: list[Citation] = Field(default_factory=list)


class HybridResponse(CamelModel):
    content: str
    agreement_level: Literal["high", "medium", "low"] = "high"
    key_insight: str | None = None
    beroe_claims_count: int = 0
    web_claims_count: int = 0
    used_fallback: bool = False
    repaired: bool = False
    stripped_citations: list[str] = Field(default_factory=list)
