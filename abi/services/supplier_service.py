"""
supplier_service.py — Pure helpers over supplier lists

Filtering, lookup, portfolio aggregation and spend formatting used by the
evidence fetcher, the portfolio endpoint and the widget transformers. No
I/O: callers pass in the supplier list from services/supplier_source.py.

Business Rules:
- Risk bands: >= 75 high, >= 60 medium-high, >= 40 medium, > 0 low,
  anything else unrated
- Spend formats as $X.XB / $X.XM / $XK / $X
- Name lookup matches either direction of substring (case-insensitive)
- High-risk means level high or medium-high
- Alternative match score: base 70, +15 same category, +5 same region,
  +5 same country, +5 lower risk score, capped at 98

Called by: services/evidence_fetcher.py, services/widget_transformers.py,
           routers/suppliers.py
Depends on: schemas/suppliers.py
"""

from __future__ import annotations

from ..schemas.suppliers import Portfolio, RiskChange, RiskDistribution, Supplier

RISK_LEVELS = ("high", "medium-high", "medium", "low", "unrated")
HIGH_RISK_LEVELS = ("high", "medium-high")
MATCH_SCORE_CAP = 98


def risk_level_from_score(score: float | None) -> str:
    if score is None or score <= 0:
        return "unrated"
    if score >= 75:
        return "high"
    if score >= 60:
        return "medium-high"
    if score >= 40:
        return "medium"
    return "low"


def format_spend(spend: float | None) -> str:
    spend = spend or 0
    if spend >= 1_000_000_000:
        return f"${spend / 1_000_000_000:.1f}B"
    if spend >= 1_000_000:
        return f"${spend / 1_000_000:.1f}M"
    if spend >= 1_000:
        return f"${spend / 1_000:.0f}K"
    return f"${spend:g}"


def summarize_portfolio(suppliers: list[Supplier], changes: list[RiskChange] | None = None) -> Portfolio:
    """Aggregate a supplier list into totals and a level distribution."""
    dist = RiskDistribution()
    spend = {level: 0.0 for level in RISK_LEVELS}
    for s in suppliers:
        level = s.level
        spend[level if level in spend else "unrated"] += s.spend or 0
        if level == "high":
            dist.high += 1
        elif level == "medium-high":
            dist.medium_high += 1
        elif level == "medium":
            dist.medium += 1
        elif level == "low":
            dist.low += 1
        else:
            dist.unrated += 1

    total_spend = sum(s.spend or 0 for s in suppliers)
    return Portfolio(
        total_suppliers=len(suppliers),
        total_spend=total_spend,
        total_spend_formatted=format_spend(total_spend),
        distribution=dist,
        spend_by_level=spend,
        recent_changes=list(changes or [])[:5],
    )


def filter_suppliers(
    suppliers: list[Supplier],
    *,
    risk_level: str | list[str] | None = None,
    region: str | None = None,
    category: str | None = None,
    min_spend: float | None = None,
    max_spend: float | None = None,
    search: str | None = None,
) -> list[Supplier]:
    levels = [risk_level] if isinstance(risk_level, str) else (risk_level or [])
    out = []
    for s in suppliers:
        if levels and s.level not in levels:
            continue
        if region and s.region != region:
            continue
        if category and category.lower() not in s.category.lower():
            continue
        if min_spend and s.spend < min_spend:
            continue
        if max_spend and s.spend > max_spend:
            continue
        if search:
            haystack = f"{s.name} {s.category} {s.country}".lower()
            if search.lower() not in haystack:
                continue
        out.append(s)
    return out


def get_supplier_by_name(suppliers: list[Supplier], name: str | None) -> Supplier | None:
    if not name:
        return None
    needle = name.lower().strip()
    for s in suppliers:
        hay = s.name.lower()
        if needle in hay or hay in needle:
            return s
    return None


def find_supplier_in_text(suppliers: list[Supplier], text: str) -> Supplier | None:
    """First supplier whose full name appears in free text."""
    lowered = text.lower()
    return next((s for s in suppliers if s.name.lower() in lowered), None)


def search_suppliers(suppliers: list[Supplier], query: str, limit: int = 10) -> list[Supplier]:
    q = query.lower().strip()
    if not q:
        return []
    hits = [
        s for s in suppliers
        if q in s.name.lower() or q in s.category.lower() or q in s.country.lower()
    ]
    return hits[:limit]


def high_risk_suppliers(suppliers: list[Supplier]) -> list[Supplier]:
    return [s for s in suppliers if s.level in HIGH_RISK_LEVELS]


def unrated_suppliers(suppliers: list[Supplier]) -> list[Supplier]:
    return [s for s in suppliers if not s.score or s.level == "unrated"]


def alternative_match_score(current: Supplier, alternative: Supplier) -> int:
    score = 70
    if current.category == alternative.category:
        score += 15
    if current.region == alternative.region:
        score += 5
    if current.country == alternative.country:
        score += 5
    alt_score = alternative.score if alternative.score is not None else 100
    cur_score = current.score if current.score is not None else 0
    if alt_score < cur_score:
        score += 5
    return min(score, MATCH_SCORE_CAP)
