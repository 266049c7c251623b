"""
schemas/suppliers.py — Supplier, portfolio and risk-change models

Shapes returned by the supplier-intelligence source and consumed by the
evidence fetcher and widget transformers.

Business Rules:
- level is consistent with score for scored suppliers (see
  supplier_service.risk_level_from_score); unrated implies no score
- Portfolio distribution sums to total_suppliers
- RiskChange.direction == "worsened" iff current_score > previous_score

Called by: services/supplier_source.py, services/evidence_fetcher.py,
           services/widget_transformers.py
Depends on: pydantic
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator

from .base import CamelModel

RiskLevel = Literal["high", "medium-high", "medium", "low", "unrated"]
Trend = Literal["worsening", "stable", "improving"]


class RiskFactor(CamelModel):
    id: str = ""
    name: str
    tier: Literal["freely-displayable", "conditionally-displayable", "restricted"] = "freely-displayable"
    weight: float = 0
    score: float | None = None
    rating: str | None = None


class RiskScore(CamelModel):
    score: float | None = None
    previous_score: float | None = None
    level: RiskLevel = "unrated"
    trend: Trend = "stable"
    last_updated: str | None = None
    factors: list[RiskFactor] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unrated_has_no_score(self):
        if self.level == "unrated":
            self.score = None
        return self


class Location(CamelModel):
    city: str = ""
    country: str = ""
    region: str = ""


class Supplier(CamelModel):
    id: str
    name: str
    category: str = ""
    industry: str = ""
    location: Location = Field(default_factory=Location)
    spend: float = 0
    spend_formatted: str = ""
    criticality: str | None = None
    is_followed: bool = True
    srs: RiskScore | None = None

    @property
    def score(self) -> float | None:
        return self.srs.score if self.srs else None

    @property
    def level(self) -> str:
        return self.srs.level if self.srs else "unrated"

    @property
    def trend(self) -> str:
        return self.srs.trend if self.srs else "stable"

    @property
    def region(self) -> str:
        return self.location.region

    @property
    def country(self) -> str:
        return self.location.country


class RiskChange(CamelModel):
    supplier_id: str
    supplier_name: str = ""
    previous_score: float
    previous_level: RiskLevel | None = None
    current_score: float
    current_level: RiskLevel | None = None
    direction: Literal["worsened", "improved"] | None = None
    change_date: str = ""

    @model_validator(mode="after")
    def _direction_matches_scores(self):
        self.direction = "worsened" if self.current_score > self.previous_score else "improved"
        return self


class RiskDistribution(CamelModel):
    high: int = 0
    medium_high: int = 0
    medium: int = 0
    low: int = 0
    unrated: int = 0

    def total(self) -> int:
        return self.high + self.medium_high + self.medium + self.low + self.unrated


class Portfolio(CamelModel):
    total_suppliers: int = 0
    total_spend: float = 0
    total_spend_formatted: str = "$0"
    distribution: RiskDistribution = Field(default_factory=RiskDistribution)
    # Summed spend per risk level ("high", "medium-high", ..., "unrated")
    spend_by_level: dict[str, float] = Field(default_factory=dict)
    recent_changes: list[RiskChange] = Field(default_factory=list)
