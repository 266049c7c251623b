"""
widget_transformers.py — Domain objects → widget payloads

Pure mappers from suppliers, portfolios and risk changes to the data block
of each widget kind. Missing fields fall back to neutral defaults so every
function is total.

Business Rules:
- Alert severity: critical if any worsening delta > 10, warning on any
  worsening, else info
- Distribution carries {count, spend, percent} per level; percent is
  rounded and 0 when the portfolio is empty
- Comparison shows at most 4 suppliers; alternatives at most 3, each with
  a matchScore capped at 98
- build_widget returns None when the route has no widget or the data
  needed for it is missing

Called by: services/chat_service.py, routers/suppliers.py
Depends on: services/supplier_service.py, services/evidence_fetcher.py
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

from ..schemas.suppliers import Portfolio, RiskChange, Supplier
from .evidence_fetcher import FetchedData
from .supplier_service import alternative_match_score, format_spend
from .widget_router import WidgetRoute

LEVELS = ("high", "medium-high", "medium", "low", "unrated")
_LEVEL_KEYS = {
    "high": "high",
    "medium-high": "mediumHigh",
    "medium": "medium",
    "low": "low",
    "unrated": "unrated",
}

WIDGET_TITLES = {
    "risk_distribution": "Portfolio Risk Distribution",
    "supplier_table": "Suppliers",
    "supplier_risk_card": "Supplier Risk Profile",
    "alert_card": "Risk Changes",
    "comparison_table": "Supplier Comparison",
    "alternatives_preview": "Alternative Suppliers",
    "events_feed": "Recent Events",
    "spend_exposure": "Spend Exposure by Risk Level",
    "category_breakdown": "Risk by Category",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _spend_str(s: Supplier) -> str:
    return s.spend_formatted or format_spend(s.spend)


def _impact(rating: str | None) -> str:
    if not rating:
        return "neutral"
    lower = rating.lower()
    if lower in ("high", "critical"):
        return "negative"
    if lower in ("low", "good"):
        return "positive"
    return "neutral"


# ── Suppliers ────────────────────────────────────────────────────────


def supplier_to_risk_card(supplier: Supplier) -> dict:
    srs = supplier.srs
    card = {
        "supplierId": supplier.id,
        "supplierName": supplier.name,
        "riskScore": supplier.score or 0,
        "riskLevel": supplier.level,
        "trend": supplier.trend,
        "category": supplier.category,
        "location": {
            "city": supplier.location.city,
            "country": supplier.location.country,
            "region": supplier.location.region,
        },
        "spend": supplier.spend or 0,
        "spendFormatted": _spend_str(supplier),
        "lastUpdated": (srs.last_updated if srs else None) or _now_iso(),
    }
    if srs and srs.factors:
        # Only freely displayable factors may appear in chat
        visible = [f for f in srs.factors if f.tier == "freely-displayable"]
        card["keyFactors"] = [{"name": f.name, "impact": _impact(f.rating)} for f in visible[:4]]
    return card


def suppliers_to_table(suppliers: list[Supplier], filters: dict | None = None) -> dict:
    table = {
        "suppliers": [
            {
                "id": s.id,
                "name": s.name,
                "riskScore": s.score or 0,
                "riskLevel": s.level,
                "trend": s.trend,
                "category": s.category,
                "country": s.country,
                "spend": _spend_str(s),
            }
            for s in suppliers
        ],
        "totalCount": len(suppliers),
    }
    if filters:
        table["filters"] = {k: v for k, v in filters.items() if v is not None}
    return table


def _strengths(s: Supplier) -> list[str]:
    out = []
    if s.level == "low":
        out.append("Low Risk")
    if s.trend == "improving":
        out.append("Improving Trend")
    if s.srs:
        out.extend(f.name for f in s.srs.factors if f.rating in ("Low", "Good"))
    if not out:
        if s.region:
            out.append(f"{s.region} based")
        out.append("Established supplier")
    return out[:3]


def _weaknesses(s: Supplier) -> list[str]:
    out = []
    if s.level in ("high", "medium-high"):
        out.append("Elevated Risk")
    if s.trend == "worsening":
        out.append("Worsening Trend")
    if s.srs:
        out.extend(f.name for f in s.srs.factors if f.rating in ("High", "Critical"))
    return (out or ["Limited data"])[:3]


def comparison_recommendation(suppliers: list[Supplier]) -> str:
    if not suppliers:
        return ""
    best = min(suppliers, key=lambda s: s.score if s.score is not None else 100)
    if best.level == "low":
        return f"{best.name} has the lowest risk profile and is recommended."
    if best.level == "medium":
        return f"{best.name} shows moderate risk. Consider additional due diligence."
    return "All suppliers show elevated risk. Consider risk mitigation strategies."


def suppliers_to_comparison(suppliers: list[Supplier], recommendation: str | None = None) -> dict:
    shown = suppliers[:4]
    return {
        "suppliers": [
            {
                "id": s.id,
                "name": s.name,
                "riskScore": s.score or 0,
                "riskLevel": s.level,
                "category": s.category,
                "location": s.country,
                "spend": _spend_str(s),
                "trend": s.trend,
                "strengths": _strengths(s),
                "weaknesses": _weaknesses(s),
            }
            for s in shown
        ],
        "comparisonDimensions": ["riskScore", "spend", "location", "category"],
        "recommendation": recommendation or comparison_recommendation(shown),
    }


def suppliers_to_alternatives(current: Supplier, alternatives: list[Supplier]) -> dict:
    return {
        "currentSupplier": current.name,
        "currentScore": current.score if current.score is not None else 50,
        "alternatives": [
            {
                "id": a.id,
                "name": a.name,
                "score": a.score if a.score is not None else 50,
                "level": a.level,
                "category": a.category,
                "matchScore": alternative_match_score(current, a),
            }
            for a in alternatives
            if a.id != current.id
        ][:3],
    }


def suppliers_to_category_breakdown(suppliers: list[Supplier]) -> dict:
    groups: dict[str, list[Supplier]] = defaultdict(list)
    for s in suppliers:
        groups[s.category or "Uncategorized"].append(s)

    rows = []
    for name, members in groups.items():
        scored = [m.score for m in members if m.score is not None]
        spend = sum(m.spend or 0 for m in members)
        rows.append({
            "name": name,
            "supplierCount": len(members),
            "spend": spend,
            "spendFormatted": format_spend(spend),
            "highRiskCount": sum(1 for m in members if m.level in ("high", "medium-high")),
            "averageScore": round(sum(scored) / len(scored)) if scored else None,
        })
    rows.sort(key=lambda r: r["spend"], reverse=True)
    return {"categories": rows, "totalCategories": len(rows)}


# ── Risk changes ─────────────────────────────────────────────────────


def _delta(c: RiskChange) -> float:
    return c.current_score - c.previous_score


def risk_changes_to_alert(changes: list[RiskChange]) -> dict:
    worsened = [c for c in changes if c.direction == "worsened"]
    critical = any(_delta(c) > 10 for c in worsened)
    n = len(changes)
    return {
        "alertType": "risk_increase" if worsened else "risk_decrease",
        "severity": "critical" if critical else "warning" if worsened else "info",
        "title": f"{n} supplier{'s' if n != 1 else ''} with risk changes",
        "affectedSuppliers": [
            {
                "name": c.supplier_name or c.supplier_id,
                "previousScore": c.previous_score,
                "currentScore": c.current_score,
                "change": f"{'+' if _delta(c) > 0 else ''}{_delta(c):g}",
            }
            for c in changes[:5]
        ],
        "timestamp": _now_iso(),
        "actionRequired": bool(worsened),
        "suggestedAction": (
            "Review affected suppliers and consider risk mitigation strategies."
            if worsened
            else "Risk improvements detected. Consider updating your risk assessment."
        ),
    }


def risk_changes_to_events(changes: list[RiskChange]) -> list[dict]:
    events = []
    for c in changes:
        verb = "increased" if c.direction == "worsened" else "decreased"
        events.append({
            "id": f"evt-{c.supplier_id}-{c.change_date or 'recent'}",
            "type": "risk_change",
            "title": f"{c.supplier_name or c.supplier_id} risk {verb}",
            "description": f"Score moved from {c.previous_score:g} to {c.current_score:g}.",
            "date": c.change_date,
            "impact": "negative" if c.direction == "worsened" else "positive",
        })
    return events


def extract_events(data: Any) -> list:
    """Unwrap an events list from a list, {events: [...]} or a double-wrapped payload."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and "events" in data:
        inner = data["events"]
        if isinstance(inner, dict) and "events" in inner:
            return inner["events"] or []
        return inner or []
    return []


# ── Portfolio ────────────────────────────────────────────────────────


def _spend_by_level(portfolio: Portfolio, suppliers: list[Supplier] | None) -> dict[str, float]:
    """Whole-portfolio spend per level; summed from the slice when the portfolio lacks it."""
    totals = {level: 0.0 for level in LEVELS}
    if portfolio.spend_by_level:
        for level, amount in portfolio.spend_by_level.items():
            totals[level if level in totals else "unrated"] += amount
        return totals
    for s in suppliers or []:
        totals[s.level if s.level in totals else "unrated"] += s.spend or 0
    return totals


def _level_counts(portfolio: Portfolio) -> dict[str, int]:
    dist = portfolio.distribution
    return {
        "high": dist.high,
        "medium-high": dist.medium_high,
        "medium": dist.medium,
        "low": dist.low,
        "unrated": dist.unrated,
    }


def portfolio_to_distribution(portfolio: Portfolio, suppliers: list[Supplier] | None = None) -> dict:
    total = portfolio.total_suppliers
    counts = _level_counts(portfolio)
    spend = _spend_by_level(portfolio, suppliers)
    return {
        "totalSuppliers": total,
        "totalSpend": portfolio.total_spend,
        "totalSpendFormatted": portfolio.total_spend_formatted or format_spend(portfolio.total_spend),
        "distribution": {
            _LEVEL_KEYS[level]: {
                "count": counts[level],
                "spend": spend[level],
                "percent": round(counts[level] / total * 100) if total > 0 else 0,
            }
            for level in LEVELS
        },
    }


def portfolio_to_spend_exposure(portfolio: Portfolio, suppliers: list[Supplier] | None = None) -> dict:
    suppliers = suppliers or []
    spend = _spend_by_level(portfolio, suppliers)
    counts = _level_counts(portfolio)
    total = portfolio.total_spend or sum(spend.values())
    by_level = []
    for level in LEVELS:
        count = counts[level] or sum(1 for s in suppliers if s.level == level)
        by_level.append({
            "level": level,
            "spend": spend[level],
            "spendFormatted": format_spend(spend[level]),
            "supplierCount": count,
            "percent": round(spend[level] / total * 100) if total > 0 else 0,
        })
    top = sorted(
        (s for s in suppliers if s.level in ("high", "medium-high")),
        key=lambda s: s.spend or 0,
        reverse=True,
    )[:5]
    return {
        "totalSpend": total,
        "totalSpendFormatted": format_spend(total),
        "byRiskLevel": by_level,
        "topExposures": [
            {"id": s.id, "name": s.name, "level": s.level, "spend": _spend_str(s)} for s in top
        ],
    }


# ── Route → widget ───────────────────────────────────────────────────


def _widget_data(kind: str, data: FetchedData, filters: dict | None) -> dict | None:
    suppliers = data.suppliers or []

    if kind == "risk_distribution":
        return portfolio_to_distribution(data.portfolio or Portfolio(), suppliers)
    if kind == "supplier_table":
        return suppliers_to_table(suppliers, filters)
    if kind == "supplier_risk_card":
        target = data.target_supplier or (suppliers[0] if suppliers else None)
        return supplier_to_risk_card(target) if target else None
    if kind == "alert_card":
        return risk_changes_to_alert(data.risk_changes) if data.risk_changes else None
    if kind == "comparison_table":
        return suppliers_to_comparison(suppliers) if len(suppliers) >= 2 else None
    if kind == "alternatives_preview":
        if data.target_supplier is None:
            return None
        return suppliers_to_alternatives(data.target_supplier, suppliers)
    if kind == "events_feed":
        return {"events": risk_changes_to_events(data.risk_changes or [])}
    if kind == "spend_exposure":
        return portfolio_to_spend_exposure(data.portfolio or Portfolio(), suppliers)
    if kind == "category_breakdown":
        return suppliers_to_category_breakdown(suppliers)
    return None


def build_widget(route: WidgetRoute, data: FetchedData, filters: dict | None = None) -> dict | None:
    if route.widget_type == "none" or route.requires_handoff:
        return None
    payload = _widget_data(route.widget_type, data, filters)
    if payload is None:
        return None
    return {
        "type": route.widget_type,
        "title": WIDGET_TITLES.get(route.widget_type, ""),
        "data": payload,
    }
