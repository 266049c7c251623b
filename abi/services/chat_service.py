"""
chat_service.py — One chat turn, query in, response envelope out

Pipeline: classify → route → (handoff) → fetch evidence → internal and
web streams → synthesize → widget → sources with confidence → validate
and repair.

Business Rules:
- Handoff intents short-circuit before any data fetch: fixed explanation,
  reason and link label, no widget
- The web stream runs when the turn asks for it (webEnabled) or the
  intent requires research, and only if the research model is configured
- provider: hybrid when web evidence was synthesized, gemini when the
  internal narrative came from the model, otherwise local
- Downstream failures never surface: any exception yields a local
  deterministic envelope

Called by: routers/chat.py
Depends on: services/intent_classifier.py, services/widget_registry.py,
            services/evidence_fetcher.py, services/hybrid_fetcher.py,
            services/hybrid_synthesizer.py, services/widget_transformers.py,
            services/response_validator.py
"""

from __future__ import annotations

import logging

from ..schemas.chat import ChatMessage
from ..schemas.intents import DetectedIntent
from ..utils import research_client
from .category_catalog import activated_category_names
from .evidence_fetcher import FetchedData, fetch_data_for_intent
from .hybrid_fetcher import build_hybrid_sources, fetch_hybrid_data
from .hybrid_synthesizer import SynthesizeOptions, synthesize
from .intent_classifier import classify_intent
from .internal_intel import fallback_narrative
from .response_validator import (
    default_acknowledgement,
    default_suggestions,
    generate_response_id,
    validate_and_repair,
)
from .widget_registry import get_widget_route_from_registry
from .widget_transformers import build_widget

log = logging.getLogger("abi.chat")

HANDOFF_CONTENT = (
    "This supplier's risk score is calculated from multiple weighted factors including "
    "financial health, operational metrics, and compliance indicators.\n\n"
    "To see the full breakdown of contributing factors and scores, you'll need to view the "
    "detailed risk profile in the dashboard, as some data comes from partners with viewing "
    "restrictions."
)
HANDOFF_SUGGESTIONS = [
    {"id": "1", "text": "Find alternatives", "icon": "search"},
    {"id": "2", "text": "Compare with others", "icon": "compare"},
    {"id": "3", "text": "View risk history", "icon": "chart"},
]


def _empty_sources() -> dict:
    return {"web": [], "internal": [], "totalWebCount": 0, "totalInternalCount": 0}


def _topic(intent: DetectedIntent) -> str | None:
    entities = intent.extracted_entities
    return entities.commodity or entities.category


def _filters(intent: DetectedIntent) -> dict | None:
    entities = intent.extracted_entities
    filters = {"riskLevel": entities.risk_level, "region": entities.region}
    filters = {k: v for k, v in filters.items() if v}
    return filters or None


def handoff_envelope(intent: DetectedIntent) -> dict:
    envelope = {
        "id": generate_response_id(),
        "acknowledgement": default_acknowledgement(intent),
        "narrative": HANDOFF_CONTENT,
        "provider": "local",
        "suggestions": [dict(s) for s in HANDOFF_SUGGESTIONS],
        "sources": _empty_sources(),
        "intent": intent.wire(),
        "handoff": {
            "required": True,
            "reason": intent.handoff_reason or "Detailed factor scores require dashboard access.",
            "linkText": intent.handoff_link_text or "View Full Risk Profile in Dashboard",
        },
    }
    response, _ = validate_and_repair(envelope, intent)
    return response


def local_fallback_envelope(intent: DetectedIntent, data: FetchedData | None = None) -> dict:
    envelope = {
        "id": generate_response_id(),
        "acknowledgement": default_acknowledgement(intent),
        "narrative": fallback_narrative(intent, data or FetchedData()),
        "provider": "local",
        "suggestions": default_suggestions(intent),
        "sources": _empty_sources(),
        "intent": intent.wire(),
    }
    response, _ = validate_and_repair(envelope, intent)
    return response


async def _run_pipeline(
    query: str,
    history: list[ChatMessage] | None,
    intent: DetectedIntent,
    web_enabled: bool | None,
) -> dict:
    route = get_widget_route_from_registry(intent.category, intent.sub_intent)
    log.info("Intent %s/%s → widget %s", intent.category, intent.sub_intent, route.widget_type)

    if route.requires_handoff or intent.requires_handoff:
        return handoff_envelope(intent)

    data = await fetch_data_for_intent(intent, query, route)
    if data.degraded:
        log.warning("Answering %s from a degraded portfolio", intent.category)

    wants_web = web_enabled if web_enabled is not None else intent.requires_research
    use_web = bool(wants_web) and research_client.is_configured()

    hybrid = await fetch_hybrid_data(query, intent, data, web_enabled=use_web, history=history)
    managed = activated_category_names()
    synthesized = await synthesize(hybrid, intent, SynthesizeOptions(managed_categories=managed))

    has_web = hybrid.web is not None and bool(hybrid.web.sources)
    if has_web:
        provider = "local" if synthesized.used_fallback else "hybrid"
    else:
        provider = "gemini" if hybrid.beroe.from_model else "local"

    topic = _topic(intent)
    envelope = {
        "id": generate_response_id(),
        "acknowledgement": default_acknowledgement(intent),
        "narrative": synthesized.content,
        "provider": provider,
        "suggestions": default_suggestions(intent),
        "sources": build_hybrid_sources(hybrid.beroe, hybrid.web, topic, managed),
        "intent": intent.wire(),
        "metadata": {
            "agreementLevel": synthesized.agreement_level,
            "beroeClaimsCount": synthesized.beroe_claims_count,
            "webClaimsCount": synthesized.web_claims_count,
            "usedFallback": synthesized.used_fallback,
        },
    }
    if synthesized.key_insight:
        envelope["insight"] = synthesized.key_insight

    widget = build_widget(route, data, _filters(intent))
    if widget is not None:
        envelope["widget"] = widget

    response, validation = validate_and_repair(envelope, intent, topic, managed)
    if validation["repaired"]:
        log.warning("Response repaired: %s", validation["errors"])
    return response


async def handle_chat(
    query: str, history: list[ChatMessage] | None = None, *, web_enabled: bool | None = None
) -> dict:
    """Answer one chat turn. Never raises for downstream failure."""
    intent = classify_intent(query)
    try:
        return await _run_pipeline(query, history, intent, web_enabled)
    except Exception as e:
        log.error("Chat pipeline failed for %s, using local fallback: %s", intent.category, e)
        return local_fallback_envelope(intent)
