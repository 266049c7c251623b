"""
intent_classifier.py — Rule-based query intent classification

Maps a free-text chat query to a DetectedIntent: category, sub-intent,
extracted entities and the handoff / research / discovery flags.

Business Rules:
- Categories are tried in a fixed priority order, specific intents first,
  portfolio_overview last; the first matching pattern wins
- portfolio_overview is skipped for market/price/inflation-sounding
  queries unless a risk-signal word is also present
- Confidence is 0.85 on a pattern match, 0.5 on the general fallback
- Research is auto-triggered by RESEARCH_TRIGGERS or research sub-intents,
  except when price/commodity patterns match (internal data preferred)
- restricted_query always carries a handoff reason and link label
- Pure function: no I/O, no state

Called by: services/chat_service.py, services/evidence_fetcher.py
Depends on: schemas/intents.py
"""

import re

from ..schemas.intents import DetectedIntent, ExtractedEntities

_I = re.IGNORECASE

HANDOFF_REASON = "Detailed factor scores require dashboard access due to partner data restrictions."
HANDOFF_LINK_TEXT = "View Full Risk Profile in Dashboard"


# ── Patterns (priority order) ────────────────────────────────────────

INTENT_PATTERNS: list[tuple[str, list[re.Pattern]]] = [
    ("restricted_query", [
        re.compile(r"breakdown.*score", _I),
        re.compile(r"factor.*(score|detail|breakdown)", _I),
        re.compile(r"show.*individual.*factor", _I),
        re.compile(r"specific.*(score|rating)", _I),
        re.compile(r"(financial|cyber\w*|sanctions?)\s+(score|rating|health)", _I),
    ]),
    ("explanation_why", [
        re.compile(r"why.*(high|low|medium|risk|score|unrated|rated|rating)", _I),
        re.compile(r"what('?s| is) (driving|causing)", _I),
        re.compile(r"explain.*(score|risk)", _I),
        re.compile(r"how.*(calculated|computed)", _I),
        re.compile(r"what.*factors", _I),
    ]),
    ("action_trigger", [
        re.compile(r"find\s+(an?\s+)?alternative", _I),
        re.compile(r"alternatives?\s+(for|to)\b", _I),
        re.compile(r"what.*(should|can) i do", _I),
        re.compile(r"help me.*(mitigate|reduce)", _I),
        re.compile(r"create.*(plan|workflow)", _I),
    ]),
    ("comparison", [
        re.compile(r"\bcompare\b(?!.*\b(peer|benchmark|market|industry)\b)", _I),
        re.compile(r"\bversus\b|\bvs\b\.?", _I),
        re.compile(r"which.*(safer|better|riskier)", _I),
        re.compile(r"side by side", _I),
        re.compile(r"rank.*(supplier|by)", _I),
    ]),
    ("supplier_deep_dive", [
        re.compile(r"tell me about", _I),
        re.compile(r"what('?s| is) the.*(score|risk).*(for|of)", _I),
        re.compile(r"show me.*detail", _I),
        re.compile(r"(view|see|look at).*supplier", _I),
        re.compile(r"profile (for|of)", _I),
    ]),
    ("trend_detection", [
        re.compile(r"what.*changed", _I),
        re.compile(r"recent.*change", _I),
        re.compile(r"moved.*(to|from)", _I),
        re.compile(r"\btrend(s|ing)?\b(?!.*\b(market|industry|price|inflation)\b)", _I),
        re.compile(r"worsening|improving", _I),
        re.compile(r"this (week|month)", _I),
        re.compile(r"any.*alert", _I),
    ]),
    ("market_context", [
        re.compile(r"what('?s| is) happening.*(market|industry|sector)", _I),
        re.compile(r"any news", _I),
        re.compile(r"market.*(event|condition|trend|outlook)", _I),
        re.compile(r"industry.*(trend|outlook|risk)", _I),
        re.compile(r"is this normal", _I),
        re.compile(r"how.*(compare|benchmark)", _I),
        re.compile(r"geopolitical", _I),
        re.compile(r"supply chain.*(disruption|issue)", _I),
        # Inflation-aware variants
        re.compile(r"\binflation\b", _I),
        re.compile(r"(price|cost)s?.*(change|movement|update|trend|outlook|forecast|increase|decrease)", _I),
        re.compile(r"commodit(y|ies).*(price|cost|market)", _I),
        re.compile(r"what('?s| is| has).*(driving|behind).*(price|cost)", _I),
    ]),
    ("setup_config", [
        re.compile(r"set.?up.*alert", _I),
        re.compile(r"add.*supplier", _I),
        re.compile(r"\bconfigure\b", _I),
        re.compile(r"\bimport\b", _I),
        re.compile(r"\b(un)?follow\b", _I),
    ]),
    ("reporting_export", [
        re.compile(r"\bexport\b", _I),
        re.compile(r"\bdownload\b", _I),
        re.compile(r"generate.*(report|summary)", _I),
        re.compile(r"create.*presentation", _I),
        re.compile(r"summarize.*for", _I),
    ]),
    ("filtered_discovery", [
        re.compile(r"show.*(supplier|high|medium|low)", _I),
        re.compile(r"which supplier", _I),
        re.compile(r"list.*(supplier|high|risk)", _I),
        re.compile(r"filter.*by", _I),
        re.compile(r"supplier.*\b(in|with|from)\b", _I),
        re.compile(r"(high|medium|low).risk.supplier", _I),
    ]),
    ("portfolio_overview", [
        re.compile(r"risk (exposure|overview|summary|posture)", _I),
        re.compile(r"how.*(risk|portfolio)", _I),
        re.compile(r"show.*(my|me).*(risk|portfolio)", _I),
        re.compile(r"what('?s| is) my.*risk", _I),
        re.compile(r"how many.*(supplier|high risk)", _I),
    ]),
]

RESEARCH_TRIGGERS = [
    re.compile(p, _I)
    for p in (
        r"what('?s| is) happening",
        r"any news",
        r"in the news",
        r"market.*(event|condition|trend|outlook)",
        r"industry.*(trend|outlook|risk|average|normal)",
        r"is this normal",
        r"how.*(compare|benchmark).*peer",
        r"geopolitical",
        r"supply chain.*(disruption|issue)",
        r"what.*(might|could|will).*change",
        r"forecast|predict|projection",
        r"regulatory|compliance.*news",
        r"what.*(others|peers|companies) do",
        r"best practice",
    )
]

# Price / commodity questions are answered from internal indices first
PRICE_PATTERNS = [
    re.compile(r"\b(price|prices|pricing|inflation|commodit(y|ies))\b", _I),
    re.compile(r"\bcost (increase|decrease|index|model)\b", _I),
]

_MARKET_WORDS = re.compile(
    r"\b(market|markets|price|prices|pricing|inflation|commodit(y|ies)|costs?|tariffs?)\b", _I
)
_RISK_WORDS = re.compile(r"\b(risk|risks|risky|score|scores|srs|rating|rated|unrated)\b", _I)

RESEARCH_SUB_INTENTS = {"benchmark", "news_events", "industry_context", "projections", "strategic_advice"}

COMMODITIES = [
    "steel", "aluminum", "aluminium", "copper", "nickel", "zinc", "lithium",
    "corrugated", "packaging", "resin", "polyethylene", "polypropylene", "plastics",
    "natural gas", "crude oil", "diesel", "electricity", "cotton", "pulp", "paper",
    "semiconductors", "freight", "cocoa", "coffee", "sugar", "wheat",
]

REGION_PATTERNS = [
    ("North America", re.compile(r"north america|\busa\b|\bu\.s\.|united states|canada|mexico", _I)),
    ("Europe", re.compile(r"europe|\beu\b|\buk\b|germany|france|belgium|italy|spain|netherlands", _I)),
    ("Asia Pacific", re.compile(r"\basia\b|apac|china|japan|india|singapore|thailand|vietnam|korea", _I)),
    ("Latin America", re.compile(r"latin america|south america|brazil|chile|argentina|colombia", _I)),
    ("Middle East", re.compile(r"middle east|\buae\b|saudi|qatar|israel", _I)),
    ("Africa", re.compile(r"\bafrica\b|nigeria|kenya|egypt|morocco", _I)),
]

_RISK_LEVEL = re.compile(r"\b(high|medium-high|medium|low)[\s-]*risk", _I)
_ACTION = re.compile(r"\b(find|create|export|download|compare|follow|unfollow|set.?up)\b", _I)
_SUPPLIER_NAME = [
    re.compile(r"alternatives?\s+(?:for|to)\s+(.+)", _I),
    re.compile(r"tell me about\s+(.+)", _I),
    re.compile(r"(?:profile|score|risk)\s+(?:for|of)\s+(.+)", _I),
]
_CATEGORY = re.compile(r"\b(?:in|for)\s+(?:the\s+)?([a-z][a-z &/-]{1,40}?)\s+category\b", _I)
_TIME_PERIOD = re.compile(
    r"\b(this|last|past|previous)\s+(week|month|quarter|year)\b|\bpast\s+\d+\s+days\b|\bytd\b", _I
)


# ── Entity extraction ────────────────────────────────────────────────


def _clean_name(raw: str) -> str | None:
    name = re.split(r"[?!]|\.(?:\s|$)", raw, maxsplit=1)[0]
    name = re.sub(r"^(the|our|my)\s+", "", name.strip(), flags=_I)
    name = re.sub(r"'s$", "", name).strip(" ,.")
    return name or None


def extract_entities(query: str) -> ExtractedEntities:
    entities = ExtractedEntities()

    m = _RISK_LEVEL.search(query)
    if m:
        entities.risk_level = m.group(1).lower()

    for region, pattern in REGION_PATTERNS:
        if pattern.search(query):
            entities.region = region
            break

    m = _ACTION.search(query)
    if m:
        entities.action = m.group(1).lower()

    for pattern in _SUPPLIER_NAME:
        m = pattern.search(query)
        if m:
            entities.supplier_name = _clean_name(m.group(1))
            break

    lowered = query.lower()
    for commodity in COMMODITIES:
        if re.search(rf"\b{re.escape(commodity)}\b", lowered):
            entities.commodity = commodity
            break

    m = _CATEGORY.search(query)
    if m:
        entities.category = m.group(1).strip()

    m = _TIME_PERIOD.search(query)
    if m:
        entities.time_period = m.group(0).lower()

    return entities


# ── Sub-intent & flags ───────────────────────────────────────────────


def detect_sub_intent(query: str, category: str) -> str:
    q = query.lower()

    if category == "portfolio_overview":
        if re.search(r"spend|dollar|exposure", q):
            return "spend_weighted"
        if re.search(r"by.*(category|region|location)", q):
            return "by_dimension"
        if re.search(r"compare.*peer|benchmark|normal", q):
            return "benchmark"
        return "overall_summary"

    if category == "supplier_deep_dive":
        if re.search(r"news|event|happening", q):
            return "news_events"
        if re.search(r"industry|market|sector", q):
            return "industry_context"
        if re.search(r"history|historical|over time", q):
            return "historical"
        if "score" in q:
            return "score_inquiry"
        return "supplier_overview"

    if category == "trend_detection":
        if re.search(r"why.*change", q):
            return "why_changed"
        if re.search(r"might|could|will|predict|forecast", q):
            return "projections"
        if re.search(r"worsen|improv", q):
            return "change_direction"
        return "recent_changes"

    if category == "action_trigger":
        if "alternative" in q:
            return "find_alternatives"
        if re.search(r"plan|strategy", q):
            return "mitigation_plan"
        if re.search(r"explain|present|stakeholder", q):
            return "communication_help"
        return "none"

    if category == "market_context":
        if re.search(r"best practice|strateg|negotiat|should (we|i)", q):
            return "strategic_advice"
        if any(p.search(q) for p in PRICE_PATTERNS):
            return "price_movement"
        if re.search(r"news|event|happening", q):
            return "news_events"
        return "none"

    return "none"


_RESPONSE_TYPES = {
    "portfolio_overview": "widget",
    "filtered_discovery": "table",
    "supplier_deep_dive": "widget",
    "trend_detection": "alert",
    "comparison": "table",
    "restricted_query": "handoff",
}

_ARTIFACT_TYPES = {
    "portfolio_overview": "portfolio_dashboard",
    "filtered_discovery": "supplier_table",
    "supplier_deep_dive": "supplier_detail",
    "trend_detection": "supplier_table",
    "explanation_why": "supplier_detail",
    "comparison": "comparison",
    "restricted_query": "supplier_detail",
}


def is_price_query(query: str) -> bool:
    return any(p.search(query) for p in PRICE_PATTERNS)


def should_trigger_research(query: str) -> bool:
    return any(p.search(query) for p in RESEARCH_TRIGGERS)


def is_restricted_query(query: str) -> bool:
    """True when the query asks for partner-sourced factor detail."""
    return any(p.search(query) for p in INTENT_PATTERNS[0][1])


def _portfolio_guard(query: str) -> bool:
    """portfolio_overview is allowed unless the query sounds market-only."""
    return not (_MARKET_WORDS.search(query) and not _RISK_WORDS.search(query))


def _match_category(query: str) -> str | None:
    for category, patterns in INTENT_PATTERNS:
        if category == "portfolio_overview" and not _portfolio_guard(query):
            continue
        if any(p.search(query) for p in patterns):
            return category
    return None


# ── Classifier ───────────────────────────────────────────────────────


def classify_intent(query: str) -> DetectedIntent:
    """Classify a chat query. Deterministic and side-effect free."""
    normalized = (query or "").strip()
    entities = extract_entities(normalized)
    research_triggered = should_trigger_research(normalized)
    price_query = is_price_query(normalized)

    category = _match_category(normalized)
    if category is None:
        return DetectedIntent(
            category="general",
            sub_intent="none",
            confidence=0.5,
            response_type="summary",
            artifact_type="none",
            extracted_entities=entities,
            requires_research=research_triggered and not price_query,
        )

    sub_intent = detect_sub_intent(normalized, category)
    needs_research = (
        research_triggered
        or sub_intent in RESEARCH_SUB_INTENTS
        or category == "market_context"
    ) and not price_query
    needs_discovery = sub_intent == "find_alternatives" or bool(
        re.search(r"find.*(supplier|alternative|option)", normalized, _I)
    )
    handoff = category == "restricted_query"

    return DetectedIntent(
        category=category,
        sub_intent=sub_intent,
        confidence=0.85,
        response_type=_RESPONSE_TYPES.get(category, "summary"),
        artifact_type=_ARTIFACT_TYPES.get(category, "none"),
        extracted_entities=entities,
        requires_handoff=handoff,
        requires_research=needs_research,
        requires_discovery=needs_discovery,
        handoff_reason=HANDOFF_REASON if handoff else None,
        handoff_link_text=HANDOFF_LINK_TEXT if handoff else None,
    )


# ── Entry-point suggestions ──────────────────────────────────────────

ENTRY_POINT_SUGGESTIONS = [
    {"id": "1", "text": "Show my risk overview", "icon": "chart", "intent": "portfolio_overview"},
    {"id": "2", "text": "Any risk changes recently?", "icon": "alert", "intent": "trend_detection"},
    {"id": "3", "text": "Which suppliers are high risk?", "icon": "search", "intent": "filtered_discovery"},
]

POST_OVERVIEW_SUGGESTIONS = [
    {"id": "1", "text": "Show high-risk suppliers", "icon": "search", "intent": "filtered_discovery"},
    {"id": "2", "text": "Why are suppliers unrated?", "icon": "lightbulb", "intent": "explanation_why"},
    {"id": "3", "text": "Set up risk alerts", "icon": "alert", "intent": "setup_config"},
]


def get_intent_suggestions(intent: DetectedIntent | None) -> list[dict]:
    if intent is not None and intent.category == "portfolio_overview":
        return [dict(s) for s in POST_OVERVIEW_SUGGESTIONS]
    return [dict(s) for s in ENTRY_POINT_SUGGESTIONS]
