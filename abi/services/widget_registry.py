"""
widget_registry.py — Registry-driven widget selection

Loads widget definitions (type, intents, sub-intents, priority, required
data) from a JSON file so the intent → widget mapping can be reused
outside the fixed router table.

Business Rules:
- An entry listing the sub-intent wins outright
- Otherwise the highest-priority entry with no sub-intent restriction
- Otherwise the static table route from widget_router
- "supplier" and "suppliers" both mean the supplier lookup is required
- Missing or invalid registry file leaves the registry empty (table wins)

Called by: services/chat_service.py (when registry routing is requested)
Depends on: abi/data/widget_registry.json, services/widget_router.py
"""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger

from .widget_router import WIDGET_TYPES, WidgetRoute, get_widget_route

_REGISTRY_PATH = Path(__file__).resolve().parent.parent / "data" / "widget_registry.json"

_registry: list[dict] = []


def _load_from_file(path: Path) -> list[dict]:
    if not path.exists():
        logger.warning(f"Widget registry not found at {path}, using router table only")
        return []
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        logger.error(f"Failed to parse widget registry: {exc}")
        return []

    entries = []
    for entry in raw.get("widgets", []):
        if entry.get("type") not in WIDGET_TYPES:
            logger.warning(f"Skipping registry entry with unknown widget type: {entry.get('id')}")
            continue
        entries.append(entry)
    return entries


def load_widget_registry(path: Path | None = None) -> None:
    """Load (or reload) the registry into memory."""
    global _registry
    _registry = _load_from_file(path or _REGISTRY_PATH)
    logger.info(f"Widget registry loaded: {len(_registry)} entries")


def get_registry() -> list[dict]:
    return _registry


def widgets_for_intent(category: str) -> list[dict]:
    return [w for w in _registry if category in w.get("intents", [])]


def _route_from_entry(entry: dict, category: str) -> WidgetRoute:
    required = entry.get("requiredData", [])
    return WidgetRoute(
        widget_type=entry["type"],
        artifact_type=entry.get("artifactType") or "none",
        requires_suppliers="suppliers" in required or "supplier" in required,
        requires_portfolio="portfolio" in required,
        requires_risk_changes="riskChanges" in required,
        requires_handoff=category == "restricted_query",
    )


def get_widget_route_from_registry(category: str, sub_intent: str | None = None) -> WidgetRoute:
    widgets = widgets_for_intent(category)
    if not widgets:
        return get_widget_route(category, sub_intent)

    if sub_intent and sub_intent != "none":
        for w in widgets:
            if sub_intent in w.get("subIntents", []):
                return _route_from_entry(w, category)

    unrestricted = [w for w in widgets if not w.get("subIntents")]
    if unrestricted:
        best = max(unrestricted, key=lambda w: w.get("priority", 0))
        return _route_from_entry(best, category)

    return get_widget_route(category, sub_intent)


# Auto-load on import
load_widget_registry()
