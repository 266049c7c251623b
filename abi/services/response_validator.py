"""
response_validator.py — Canonical response envelope: validate and repair

Every reply that leaves /chat goes through validate_and_repair, whatever
produced it (synthesizer, internal-only path, handoff, local fallback).
Upstream payloads are treated as untyped dicts.

Business Rules:
- Required: id, acknowledgement (non-empty), narrative (string), provider
  in {gemini, perplexity, hybrid, local}
- widget, when present, has a known type and the data keys for that type
- suggestions, when present, is a list; sources, when present, has web
  and internal lists
- Every [B#]/[W#] token in the narrative refers to a source in the
  envelope; repair strips tokens that do not
- Repair fills id (resp-<ms>-<rand>), acknowledgement and suggestions from
  per-intent tables, narrative from content or a placeholder, provider
  defaults to local
- validate_and_repair is idempotent: a repaired envelope validates clean

Called by: services/chat_service.py
Depends on: services/source_confidence.py, services/widget_router.py
"""

from __future__ import annotations

import random
import re
import string
import time
from typing import Any

from ..schemas.intents import DetectedIntent
from ..utils import extract_domain
from .source_confidence import compute_source_confidence
from .widget_router import WIDGET_TYPES

MAX_SUGGESTIONS = 3
PROVIDERS = ("gemini", "perplexity", "hybrid", "local")
NARRATIVE_PLACEHOLDER = "I found relevant information for your query."
DEFAULT_ACKNOWLEDGEMENT = "Here's what I found."

_CITATION = re.compile(r"\[([BW]\d+)\]")

ACKNOWLEDGEMENTS = {
    "portfolio_overview": "Here's your portfolio overview.",
    "filtered_discovery": "I found these suppliers for you.",
    "supplier_deep_dive": "Here's the supplier profile.",
    "trend_detection": "Here are the recent changes.",
    "explanation_why": "Let me explain.",
    "action_trigger": "Here are your options.",
    "comparison": "Here's the comparison.",
    "setup_config": "I can help with that.",
    "reporting_export": "Generating your report.",
    "market_context": "Here's the market context.",
    "restricted_query": "I can help with some of that.",
    "general": DEFAULT_ACKNOWLEDGEMENT,
}

SUGGESTIONS = {
    "portfolio_overview": [
        ("po-1", "Show high-risk suppliers", "search"),
        ("po-2", "What changed recently?", "alert"),
        ("po-3", "Break down by category", "chart"),
    ],
    "filtered_discovery": [
        ("fd-1", "Compare these suppliers", "compare"),
        ("fd-2", "Find alternatives", "search"),
        ("fd-3", "Export this list", "document"),
    ],
    "supplier_deep_dive": [
        ("sd-1", "Why this risk level?", "lightbulb"),
        ("sd-2", "Show risk history", "chart"),
        ("sd-3", "Find alternatives", "search"),
    ],
    "trend_detection": [
        ("td-1", "Why did this change?", "lightbulb"),
        ("td-2", "Show affected suppliers", "search"),
        ("td-3", "Set up alerts", "alert"),
    ],
    "market_context": [
        ("mc-1", "How does this affect my portfolio?", "chart"),
        ("mc-2", "Show exposed suppliers", "search"),
        ("mc-3", "What should I do?", "lightbulb"),
    ],
}
DEFAULT_SUGGESTIONS = [
    ("def-1", "Tell me more", "message"),
    ("def-2", "Show related data", "chart"),
    ("def-3", "What should I do next?", "lightbulb"),
]

# Keys each widget payload must carry
WIDGET_DATA_KEYS: dict[str, tuple[str, ...]] = {
    "risk_distribution": ("totalSuppliers", "distribution"),
    "supplier_table": ("suppliers", "totalCount"),
    "supplier_risk_card": ("supplierId", "supplierName", "riskLevel"),
    "alert_card": ("severity", "affectedSuppliers"),
    "comparison_table": ("suppliers", "comparisonDimensions"),
    "alternatives_preview": ("currentSupplier", "alternatives"),
    "events_feed": ("events",),
    "spend_exposure": ("totalSpend", "byRiskLevel"),
    "category_breakdown": ("categories",),
    "none": (),
}


def generate_response_id() -> str:
    rand = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"resp-{int(time.time() * 1000)}-{rand}"


def _category_of(intent: Any) -> str | None:
    if isinstance(intent, DetectedIntent):
        return intent.category
    if isinstance(intent, dict):
        return intent.get("category")
    return None


def default_acknowledgement(intent: Any = None) -> str:
    return ACKNOWLEDGEMENTS.get(_category_of(intent) or "", DEFAULT_ACKNOWLEDGEMENT)


def default_suggestions(intent: Any = None) -> list[dict]:
    rows = SUGGESTIONS.get(_category_of(intent) or "", DEFAULT_SUGGESTIONS)
    return [{"id": sid, "text": text, "icon": icon} for sid, text, icon in rows]


# ── Sources ──────────────────────────────────────────────────────────


def source_citation_ids(sources: Any) -> set[str]:
    """Citation ids a sources block can back; positional when unstamped."""
    if not isinstance(sources, dict):
        return set()
    ids = set()
    for prefix, key in (("B", "internal"), ("W", "web")):
        for i, s in enumerate(sources.get(key) or [], start=1):
            cid = s.get("citationId") if isinstance(s, dict) else None
            ids.add(cid or f"{prefix}{i}")
    return ids


def normalize_sources(
    raw: Any,
    category: str | None = None,
    managed_categories: list[str] | None = None,
) -> dict | None:
    """Canonical {web, internal, totalWebCount, totalInternalCount, confidence?}."""
    if isinstance(raw, dict) and "web" in raw and "internal" in raw:
        web = list(raw.get("web") or [])
        internal = list(raw.get("internal") or [])
        result = {
            "web": web,
            "internal": internal,
            "totalWebCount": raw.get("totalWebCount") or len(web),
            "totalInternalCount": raw.get("totalInternalCount") or len(internal),
        }
        if raw.get("citations"):
            result["citations"] = raw["citations"]
        if raw.get("confidence"):
            result["confidence"] = raw["confidence"]
    elif isinstance(raw, list):
        web, internal = [], []
        for s in raw:
            if not isinstance(s, dict):
                continue
            name = s.get("title") or s.get("name") or "Source"
            if "url" in s:
                web.append({"name": name, "url": s["url"], "domain": extract_domain(s["url"])})
            elif "type" in s:
                internal.append({"name": name, "type": s["type"]})
        if not web and not internal:
            return None
        result = {
            "web": web,
            "internal": internal,
            "totalWebCount": len(web),
            "totalInternalCount": len(internal),
        }
    else:
        return None

    if "confidence" not in result and category is not None and managed_categories is not None:
        result["confidence"] = compute_source_confidence(
            result["internal"], len(result["web"]), category, managed_categories
        )
    return result


def strip_unbacked_citations(narrative: str, sources: Any) -> str:
    valid = source_citation_ids(sources)
    cleaned = _CITATION.sub(lambda m: m.group(0) if m.group(1) in valid else "", narrative)
    if cleaned != narrative:
        cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
        cleaned = re.sub(r" +([.,;:!?])", r"\1", cleaned).strip()
    return cleaned


# ── Validation ───────────────────────────────────────────────────────


def _widget_errors(widget: Any) -> list[str]:
    if not isinstance(widget, dict):
        return ["invalid widget"]
    kind = widget.get("type")
    if not isinstance(kind, str):
        return ["widget missing type"]
    if kind not in WIDGET_TYPES:
        return [f"unknown widget type: {kind}"]
    data = widget.get("data")
    required = WIDGET_DATA_KEYS.get(kind, ())
    if required and not isinstance(data, dict):
        return [f"widget {kind} missing data"]
    missing = [k for k in required if k not in data]
    if missing:
        return [f"widget {kind} data missing {', '.join(missing)}"]
    return []


def validate_response(obj: Any) -> tuple[bool, list[str]]:
    if not isinstance(obj, dict):
        return False, ["response is not an object"]

    errors = []
    if not isinstance(obj.get("id"), str) or not obj.get("id"):
        errors.append("missing id")
    if not isinstance(obj.get("acknowledgement"), str) or not obj.get("acknowledgement"):
        errors.append("missing acknowledgement")
    if not isinstance(obj.get("narrative"), str):
        errors.append("missing narrative")
    if obj.get("provider") not in PROVIDERS:
        errors.append("invalid provider")
    if "widget" in obj and obj["widget"] is not None:
        errors.extend(_widget_errors(obj["widget"]))
    if "suggestions" in obj and not isinstance(obj["suggestions"], list):
        errors.append("suggestions must be an array")

    sources = obj.get("sources")
    if sources is not None and (
        not isinstance(sources, dict)
        or not isinstance(sources.get("web"), list)
        or not isinstance(sources.get("internal"), list)
    ):
        errors.append("invalid sources format")

    if isinstance(obj.get("narrative"), str):
        valid_ids = source_citation_ids(sources)
        unknown = sorted({cid for cid in _CITATION.findall(obj["narrative"]) if cid not in valid_ids})
        if unknown:
            errors.append(f"unbacked citations: {', '.join(unknown)}")

    return not errors, errors


# ── Repair ───────────────────────────────────────────────────────────


def _repair_suggestions(raw: Any, intent: Any) -> list[dict]:
    if not isinstance(raw, list) or not raw:
        return default_suggestions(intent)
    out = []
    for i, s in enumerate(raw[:MAX_SUGGESTIONS]):
        if isinstance(s, dict):
            item = {
                "id": s["id"] if isinstance(s.get("id"), str) else f"sug-{i}",
                "text": s["text"] if isinstance(s.get("text"), str) else str(s.get("text") or ""),
            }
            if isinstance(s.get("icon"), str):
                item["icon"] = s["icon"]
            out.append(item)
        else:
            out.append({"id": f"sug-{i}", "text": str(s)})
    return out


def repair_response(
    obj: Any,
    intent: Any = None,
    category: str | None = None,
    managed_categories: list[str] | None = None,
) -> dict:
    r = obj if isinstance(obj, dict) else {}

    if isinstance(r.get("narrative"), str) and r["narrative"]:
        narrative = r["narrative"]
    elif isinstance(r.get("content"), str) and r["content"]:
        narrative = r["content"]
    else:
        narrative = NARRATIVE_PLACEHOLDER

    sources = normalize_sources(r.get("sources"), category, managed_categories) or normalize_sources(
        {"web": [], "internal": []}, category, managed_categories
    )
    narrative = strip_unbacked_citations(narrative, sources) or NARRATIVE_PLACEHOLDER

    repaired: dict[str, Any] = {
        "id": r["id"] if isinstance(r.get("id"), str) and r["id"] else generate_response_id(),
        "acknowledgement": (
            r["acknowledgement"]
            if isinstance(r.get("acknowledgement"), str) and r["acknowledgement"]
            else default_acknowledgement(intent)
        ),
        "narrative": narrative,
        "provider": r["provider"] if r.get("provider") in PROVIDERS else "local",
        "suggestions": _repair_suggestions(r.get("suggestions"), intent),
        "sources": sources,
    }

    widget = r.get("widget")
    if widget is not None and not _widget_errors(widget):
        repaired["widget"] = widget

    insight = r.get("insight")
    if isinstance(insight, str) and insight:
        repaired["insight"] = insight
    elif isinstance(insight, dict) and isinstance(insight.get("headline"), str):
        repaired["insight"] = insight

    for key in ("handoff", "metadata"):
        if isinstance(r.get(key), dict):
            repaired[key] = r[key]

    if isinstance(r.get("intent"), dict):
        repaired["intent"] = r["intent"]
    elif isinstance(intent, DetectedIntent):
        repaired["intent"] = intent.wire()
    elif isinstance(intent, dict):
        repaired["intent"] = intent

    return repaired


def validate_and_repair(
    obj: Any,
    intent: Any = None,
    category: str | None = None,
    managed_categories: list[str] | None = None,
) -> tuple[dict, dict]:
    """Return (response, {valid, repaired, errors}); a valid input is returned unchanged."""
    valid, errors = validate_response(obj)
    if valid:
        return obj, {"valid": True, "repaired": False, "errors": []}
    repaired = repair_response(obj, intent, category, managed_categories)
    return repaired, {"valid": False, "repaired": True, "errors": errors}
