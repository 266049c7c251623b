"""
source_confidence.py — How much of an answer rests on proprietary data

Business Rules:
- high: managed category with ≥ 2 Beroe sources, or ≥ 3 Beroe sources
- medium: 1-2 Beroe sources; suggest expanding to web
- web_only: no Beroe sources but web sources present
- low: no sources at all; suggest expanding to web
- Only sources of type "beroe" count (not partner data sources)

Called by: services/hybrid_fetcher.py, services/response_validator.py
Depends on: services/category_catalog.py (matches_any_category)
"""

from .category_catalog import matches_any_category

LABELS = {
    "high": "Decision Grade",
    "medium": "Partial Coverage",
    "web_only": "Web Research",
    "low": "Limited Data",
}


def _beroe_count(internal: list) -> int:
    count = 0
    for s in internal:
        kind = s.get("type") if isinstance(s, dict) else getattr(s, "type", None)
        if kind == "beroe":
            count += 1
    return count


def compute_source_confidence(
    internal: list,
    web_count: int,
    category: str | None = None,
    managed_categories: list[str] | None = None,
) -> dict:
    beroe = _beroe_count(internal)
    managed = bool(category) and matches_any_category(category, managed_categories or [])

    if managed and beroe >= 2:
        level, reason, expand = "high", "Comprehensive Beroe coverage for this category", False
    elif beroe >= 3:
        level, reason, expand = "high", "Strong Beroe data coverage", False
    elif beroe >= 1:
        level, reason, expand = "medium", "Partial Beroe data available", True
    elif web_count > 0:
        level, reason, expand = "web_only", "Response based on web research", False
        managed = False
    else:
        level, reason, expand = "low", "Limited source data available", True
        managed = False

    return {
        "level": level,
        "label": LABELS[level],
        "reason": reason,
        "isManagedCategory": managed,
        "categoryName": category,
        "beroeSourceCount": beroe,
        "webSourceCount": web_count,
        "showExpandToWeb": expand,
    }
