"""
internal_intel.py — Internal (proprietary) evidence stream

Turns the fetched data slice into a BeroeResult: a list of internal
sources (portfolio analytics, risk intelligence, risk-change alerts,
supplier profile, managed-category report) and a narrative tagged with
[B#] markers in pool order.

Business Rules:
- The narrative comes from the fast model given only the data context;
  without a model reply the per-intent deterministic narrative is used
- Any citation markers the model invents are stripped before tagging
- Sentence i is tagged with the i-th internal source; the last sentence
  carries any sources still untagged
- A managed-category report source is added only for categories that
  publish a market report

Called by: services/hybrid_fetcher.py
Depends on: services/evidence_fetcher.py (FetchedData), utils/gemini_client.py,
            services/category_matcher.py, services/category_catalog.py
"""

from __future__ import annotations

import logging
import re

from ..config import settings
from ..prompts import DATA_RESTRICTIONS, INTERNAL_NARRATIVE_PROMPT, PERSONA
from ..schemas.chat import BeroeResult, InternalSource
from ..schemas.intents import DetectedIntent
from ..utils.gemini_client import gemini_generate
from .category_catalog import get_activated_ids, get_catalog
from .category_matcher import match_category
from .evidence_fetcher import FetchedData

log = logging.getLogger("abi.internal")

_ANY_CITATION = re.compile(r"\s*\[[BW]\d+\]")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


# ── Data context ─────────────────────────────────────────────────────


def build_data_context(intent: DetectedIntent, data: FetchedData, query: str) -> str:
    parts = [f'User Query: "{query}"']

    if data.portfolio is not None:
        p = data.portfolio
        d = p.distribution
        parts.append(
            "Portfolio Summary:\n"
            f"- Total Suppliers: {p.total_suppliers}\n"
            f"- Total Spend: {p.total_spend_formatted}\n"
            f"- High Risk: {d.high}\n"
            f"- Medium-High: {d.medium_high}\n"
            f"- Medium: {d.medium}\n"
            f"- Low: {d.low}\n"
            f"- Unrated: {d.unrated}"
        )

    if data.target_supplier is not None:
        s = data.target_supplier
        parts.append(
            "Target Supplier:\n"
            f"- Name: {s.name}\n"
            f"- Risk Score: {s.score if s.score is not None else 'Unrated'} ({s.level})\n"
            f"- Trend: {s.trend}\n"
            f"- Category: {s.category}\n"
            f"- Spend: {s.spend_formatted}\n"
            f"- Location: {s.country or s.region or 'Unknown'}"
        )

    if data.suppliers:
        rows = "\n".join(
            f"- {s.name}: Score {s.score if s.score is not None else 'N/A'} ({s.level}), "
            f"{s.category}, {s.spend_formatted}"
            for s in data.suppliers[:10]
        )
        parts.append(f"Relevant Suppliers ({len(data.suppliers)} total):\n{rows}")

    if data.risk_changes:
        rows = "\n".join(
            f"- {c.supplier_name or c.supplier_id}: {c.previous_score:g} → {c.current_score:g} ({c.direction})"
            for c in data.risk_changes
        )
        parts.append(f"Recent Risk Changes:\n{rows}")

    return "\n\n".join(parts)


# ── Deterministic narrative ──────────────────────────────────────────


def fallback_narrative(intent: DetectedIntent, data: FetchedData) -> str:
    category = intent.category
    suppliers = data.suppliers or []

    if category == "portfolio_overview":
        if data.portfolio is None:
            return "Here is your portfolio overview."
        p = data.portfolio
        d = p.distribution
        if d.unrated > 2:
            lead = (
                f"You're monitoring {p.total_suppliers} suppliers. "
                f"The {d.unrated} unrated suppliers may need risk assessment."
            )
        else:
            lead = f"You're monitoring {p.total_suppliers} suppliers with {p.total_spend_formatted} total spend."
        return (
            f"{lead} {d.high} are high risk, {d.medium_high} medium-high, "
            f"{d.medium} medium and {d.low} low risk."
        )

    if category == "filtered_discovery":
        if not suppliers:
            return "No suppliers found matching your criteria."
        names = ", ".join(s.name for s in suppliers[:3])
        return f"Found {len(suppliers)} supplier(s) matching your criteria. The first results are {names}."

    if category == "supplier_deep_dive":
        s = data.target_supplier
        if s is None:
            return "I could not find that supplier in your portfolio."
        score = f" with a risk score of {s.score:g}" if s.score is not None else ""
        return f"{s.name} is currently {s.level} risk{score}. The trend is {s.trend}."

    if category == "action_trigger":
        if data.target_supplier is not None and suppliers:
            return f"Found {len(suppliers)} potential alternative(s) to {data.target_supplier.name}."
        if suppliers:
            return f"Here are {len(suppliers)} high-risk suppliers that may need alternatives."
        return "No matching suppliers found."

    if category == "explanation_why":
        if suppliers and all(s.level == "unrated" for s in suppliers):
            return (
                f"You have {len(suppliers)} unrated suppliers. "
                "These typically lack risk assessments from our intelligence partners."
            )
        if suppliers:
            return (
                f"{len(suppliers)} suppliers are currently high or medium-high risk. "
                "Risk scores combine multiple weighted factors; the dashboard shows the full breakdown."
            )
        return "Let me explain that for you."

    if category == "trend_detection":
        changes = data.risk_changes or []
        if not changes:
            return "No recent risk changes detected."
        worsened = sum(1 for c in changes if c.direction == "worsened")
        return (
            f"{len(changes)} supplier(s) had risk changes recently. "
            f"{worsened} worsened and {len(changes) - worsened} improved."
        )

    if category == "comparison":
        if len(suppliers) < 2:
            return "I need at least two suppliers to compare."
        return f"Comparing {len(suppliers[:4])} suppliers on risk score, trend and spend."

    return "Here is what I found."


# ── Sources ──────────────────────────────────────────────────────────


def build_internal_sources(intent: DetectedIntent, data: FetchedData, query: str) -> list[InternalSource]:
    sources: list[InternalSource] = []

    if data.portfolio is not None:
        p = data.portfolio
        sources.append(InternalSource(
            name="Portfolio Analytics",
            summary=(
                f"{p.total_suppliers} suppliers, {p.total_spend_formatted} spend; "
                f"{p.distribution.high} high, {p.distribution.unrated} unrated."
            ),
            category="Portfolio Management",
            report_id="beroe-portfolio",
        ))

    if data.target_supplier is not None:
        s = data.target_supplier
        sources.append(InternalSource(
            name=f"{s.name} Supplier Profile",
            summary=f"{s.name}: {s.level} risk, {s.trend} trend, {s.category}, {s.spend_formatted} spend.",
            category=s.category or None,
            report_id=f"beroe-supplier-{s.id}",
        ))
    elif data.suppliers:
        sources.append(InternalSource(
            name="Beroe Risk Intelligence",
            summary=f"Risk assessment covering {len(data.suppliers)} relevant supplier(s).",
            category="Risk Analytics",
            report_id="beroe-risk",
        ))

    if data.risk_changes:
        sources.append(InternalSource(
            name="Risk Change Alerts",
            summary=f"{len(data.risk_changes)} recent risk score change(s) across monitored suppliers.",
            category="Alerts & Monitoring",
            report_id="beroe-alerts",
        ))

    topic = intent.extracted_entities.commodity or intent.extracted_entities.category
    match = match_category(topic or query, list(get_catalog()), get_activated_ids())
    if match is not None and match.category.has_market_report:
        cat = match.category
        sources.append(InternalSource(
            name=f"{cat.name} Market Report",
            summary=f"{cat.domain} category intelligence, updated {cat.update_frequency}.",
            category=cat.name,
            report_id=f"beroe-{cat.slug or cat.id}",
        ))

    return sources


def tag_with_citations(text: str, citation_ids: list[str]) -> str:
    text = _ANY_CITATION.sub("", text or "").strip()
    if not text or not citation_ids:
        return text
    sentences = [s for s in _SENTENCE_BREAK.split(text) if s]
    tagged = []
    for i, sentence in enumerate(sentences):
        if i < len(citation_ids):
            sentence = f"{sentence} [{citation_ids[i]}]"
        tagged.append(sentence)
    leftover = citation_ids[len(sentences):]
    if leftover:
        tagged[-1] += " " + " ".join(f"[{cid}]" for cid in leftover)
    return " ".join(tagged)


def _insight(intent: DetectedIntent, data: FetchedData) -> str | None:
    if data.portfolio is not None and data.portfolio.total_suppliers:
        d = data.portfolio.distribution
        return f"{d.high + d.medium_high} of {data.portfolio.total_suppliers} suppliers are high or medium-high risk"
    if data.target_supplier is not None:
        return f"{data.target_supplier.name} is {data.target_supplier.level} risk"
    if data.risk_changes:
        return f"{len(data.risk_changes)} recent risk change(s)"
    return None


async def build_internal_result(
    intent: DetectedIntent, data: FetchedData, query: str, *, use_model: bool = True
) -> BeroeResult:
    sources = build_internal_sources(intent, data, query)

    narrative = None
    if use_model:
        prompt = INTERNAL_NARRATIVE_PROMPT.format(
            persona=PERSONA,
            restrictions=DATA_RESTRICTIONS,
            context=build_data_context(intent, data, query),
        )
        narrative = await gemini_generate(
            prompt,
            temperature=0.7,
            top_p=0.95,
            top_k=40,
            max_tokens=1500,
            json_mode=False,
            timeout=settings.internal_timeout_seconds,
        )
    from_model = bool(narrative and narrative.strip())
    if not from_model:
        narrative = fallback_narrative(intent, data)

    # Pool order is B1..Bn in source order
    ids = [f"B{i}" for i in range(1, len(sources) + 1)]
    content = tag_with_citations(narrative, ids)
    log.debug("Internal stream for %s: %d sources, %d chars", intent.category, len(sources), len(content))
    return BeroeResult(content=content, sources=sources, insight=_insight(intent, data), from_model=from_model)
