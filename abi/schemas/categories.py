"""
schemas/categories.py — Managed category catalog entries

A managed category is a taxonomy node a tenant can activate to unlock
proprietary coverage (market report, price index, supplier data, news
alerts, cost model).
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from .base import CamelModel


class Analyst(CamelModel):
    id: str = ""
    name: str = ""
    title: str | None = None


class ManagedCategory(CamelModel):
    id: str
    name: str
    slug: str = ""
    domain: str = ""
    keywords: list[str] = Field(default_factory=list)
    is_activated: bool = False
    client_count: int = 0
    has_market_report: bool = False
    has_price_index: bool = False
    has_supplier_data: bool = False
    has_news_alerts: bool = False
    has_cost_model: bool = False
    lead_analyst: Analyst = Field(default_factory=Analyst)
    update_frequency: Literal["daily", "weekly", "bi-weekly", "monthly"] = "monthly"


class CategoryMatch(CamelModel):
    category: ManagedCategory
    is_activated: bool
    score: float
