"""
hybrid_synthesizer.py — Merge internal and web evidence into one cited narrative

Combines the internal stream ([B#] citations) and the web stream ([W#])
into a single narrative through the fast model in JSON mode, then enforces
citation discipline on whatever comes back.

Business Rules:
- No web sources → Beroe-only reply: content passes through, with [B1]
  appended when no B citation appears and one is available
- Synthesis call: temperature 0.3, topP 0.8, topK 40, 2048 tokens, JSON
  mode, 20 s deadline; replies whose content is under 100 chars get one
  repair call (10 s deadline)
- Guardrails, in order:
  1. length: narrative under 400 chars → deterministic fallback
  2. coverage: at least min(2, available B) and min(1, available W)
     citations; else append a Supporting Evidence paragraph, and if that
     is still short → deterministic fallback
  3. validity: citation tokens not in the evidence pool are stripped
- Short-but-present model content goes to the deterministic fallback; the
  raw internal content is used only when the fallback produced nothing,
  and "Analysis based on available data." only when both are empty
- Never raises to the caller

Called by: services/chat_service.py
Depends on: utils/gemini_client.py, utils/json_parse.py, prompts.py
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from ..config import settings
from ..prompts import REPAIR_PROMPT, SYNTHESIS_PROMPT
from ..schemas.chat import Citation, HybridData, HybridResponse
from ..schemas.intents import DetectedIntent
from ..utils.gemini_client import gemini_generate
from ..utils.json_parse import parse_json_response

log = logging.getLogger("abi.synth")

__all__ = [
    "augment_citations",
    "count_citations",
    "deterministic_synthesis",
    "parse_json_response",
    "split_into_sentences",
    "synthesize",
    "validate_citations",
]

MIN_CONTENT_LENGTH = 400
MIN_BEROE_CITATIONS = 2
MIN_WEB_CITATIONS = 1
REPAIR_THRESHOLD = 100
LAST_RESORT = "Analysis based on available data."

_CITATION = re.compile(r"\[([BW]\d+)\]")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")

# Appended in order until the deterministic narrative reaches the minimum length
_PADDING = [
    "For procurement teams, the practical next step is to review exposure by supplier "
    "and category and to confirm contract terms with the most affected suppliers before "
    "committing new volume.",
    "Tracking these indicators over the coming weeks will show whether the current picture "
    "holds, and the underlying reports and supplier profiles remain available for a deeper "
    "review of individual positions.",
    "Where the evidence is thin, treat these conclusions as directional and validate them "
    "with category specialists before acting on them in negotiations or sourcing decisions.",
]


@dataclass
class SynthesizeOptions:
    managed_categories: list[str] = field(default_factory=list)
    model_enabled: bool = True


# ── Citation helpers ─────────────────────────────────────────────────


def count_citations(text: str, prefix: str) -> int:
    return len(re.findall(rf"\[{re.escape(prefix)}\d+\]", text or ""))


def validate_citations(text: str, valid_ids: set[str]) -> tuple[str, list[str]]:
    """Strip citation tokens whose id is not in valid_ids."""
    unknown: list[str] = []

    def _keep(m: re.Match) -> str:
        if m.group(1) in valid_ids:
            return m.group(0)
        unknown.append(m.group(1))
        return ""

    cleaned = _CITATION.sub(_keep, text or "")
    if unknown:
        cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
        cleaned = re.sub(r" +([.,;:!?])", r"\1", cleaned)
    return cleaned, unknown


def split_into_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_BREAK.split(text or "") if len(s.strip()) > 15]


def _pool_ids(pool: list[Citation], prefix: str) -> list[str]:
    return [c.id for c in pool if c.id.startswith(prefix)]


def format_evidence_pool(pool: list[Citation]) -> str:
    if not pool:
        return "No citations available."
    lines = []
    for c in pool:
        parts = [f"[{c.id}] {c.name}"]
        if c.snippet:
            parts.append(f'"{c.snippet}"')
        if c.category:
            parts.append(f"({c.category})")
        lines.append(" - ".join(parts))
    return "\n".join(lines)


def augment_citations(content: str, pool: list[Citation]) -> str:
    """Append a Supporting Evidence paragraph citing unused pool entries."""
    used = set(_CITATION.findall(content or ""))
    unused_b = [c.id for c in pool if c.id.startswith("B") and c.id not in used]
    unused_w = [c.id for c in pool if c.id.startswith("W") and c.id not in used]

    parts = []
    if unused_b:
        refs = " ".join(f"[{cid}]" for cid in unused_b[:3])
        parts.append(f"Additional Beroe intelligence {refs} supports this analysis.")
    if unused_w:
        refs = " ".join(f"[{cid}]" for cid in unused_w[:3])
        parts.append(f"Market research {refs} provides further context.")
    if not parts:
        return content
    return f"{content}\n\n**Supporting Evidence:**\n" + " ".join(parts)


# ── Deterministic fallback ───────────────────────────────────────────


def deterministic_synthesis(data: HybridData) -> str:
    """Four-section narrative built only from the evidence at hand."""
    beroe_ids = _pool_ids(data.evidence_pool, "B")
    web_ids = _pool_ids(data.evidence_pool, "W")
    sections: list[str] = []

    beroe_content = data.beroe.content or ""
    if beroe_content.strip():
        # Internal content already carries its own markers; re-tag cleanly
        plain = _CITATION.sub("", beroe_content)
        sentences = split_into_sentences(plain)[:3]
        opening = []
        for i, sentence in enumerate(sentences):
            opening.append(f"{sentence} [{beroe_ids[i]}]" if i < len(beroe_ids) else sentence)
        if opening:
            sections.append(" ".join(opening))

    web = data.web
    if web is not None and web.content and web.content.strip():
        web_sentences = split_into_sentences(_CITATION.sub("", web.content))[:3]
        para = "Market research provides additional context."
        for i, sentence in enumerate(web_sentences):
            para += f" {sentence} [{web_ids[i % len(web_ids)]}]" if web_ids else f" {sentence}"
        sections.append(para)

    drivers = []
    for c in data.evidence_pool[:6]:
        if c.snippet and len(c.snippet) > 20:
            snippet = c.snippet if len(c.snippet) <= 100 else c.snippet[:100] + "..."
            drivers.append(f"• {snippet} [{c.id}]")
    if len(drivers) < 2:
        if beroe_ids:
            drivers.append(f"• Pricing intelligence based on Beroe market analysis [{beroe_ids[0]}]")
        if web_ids:
            drivers.append(f"• Industry trends corroborated by external research [{web_ids[0]}]")
    if drivers:
        sections.append("**Key Drivers:**\n" + "\n".join(drivers))

    last_b = " ".join(f"[{cid}]" for cid in beroe_ids[-2:])
    last_w = " ".join(f"[{cid}]" for cid in web_ids[-2:])
    if beroe_ids and web_ids:
        conclusion = (
            f"This analysis draws from Beroe's proprietary intelligence {last_b} and external "
            f"market data {last_w}, providing a comprehensive view for procurement decision-making."
        )
    elif beroe_ids:
        refs = " ".join(f"[{cid}]" for cid in beroe_ids)
        conclusion = (
            f"This analysis draws from Beroe's proprietary market intelligence {refs}, "
            "offering decision-grade insights for procurement planning."
        )
    elif web_ids:
        refs = " ".join(f"[{cid}]" for cid in web_ids)
        conclusion = f"This analysis draws from external market research {refs}, providing current market context."
    else:
        conclusion = "This analysis provides an overview of current market conditions."
    sections.append(conclusion)

    result = "\n\n".join(sections)
    if len(result) < MIN_CONTENT_LENGTH and beroe_content:
        result += "\n\n" + _CITATION.sub("", beroe_content)[:300].strip()
    for extra in _PADDING:
        if len(result) >= MIN_CONTENT_LENGTH:
            break
        result += "\n\n" + extra
    return result


# ── Model calls ──────────────────────────────────────────────────────


async def _repair(malformed: str) -> dict:
    text = await gemini_generate(
        REPAIR_PROMPT.format(text=malformed[:2000]),
        temperature=0.1,
        top_p=None,
        top_k=None,
        max_tokens=2048,
        json_mode=True,
        timeout=settings.repair_timeout_seconds,
    )
    if text is None:
        log.warning("Repair pass failed; keeping raw model text")
        return {"content": malformed, "repaired": True}
    parsed = parse_json_response(text)
    parsed["repaired"] = True
    return parsed


async def call_synthesis_model(prompt: str) -> dict | None:
    text = await gemini_generate(
        prompt,
        temperature=0.3,
        top_p=0.8,
        top_k=40,
        max_tokens=2048,
        json_mode=True,
        timeout=settings.synthesis_timeout_seconds,
    )
    if text is None:
        return None
    parsed = parse_json_response(text)
    if len(parsed.get("content") or "") < REPAIR_THRESHOLD:
        log.warning("Weak synthesis content (%d chars), attempting repair", len(parsed.get("content") or ""))
        return await _repair(text)
    return parsed


# ── Synthesis ────────────────────────────────────────────────────────


def _agreement(content: str, has_web: bool) -> str:
    b = count_citations(content, "B")
    w = count_citations(content, "W")
    if not has_web or w == 0:
        return "high"
    if b > 0:
        return "high" if b >= w else "medium"
    if w > b * 2:
        return "low"
    return "medium"


def _finish(
    content: str,
    data: HybridData,
    *,
    agreement: str | None,
    key_insight: str | None,
    used_fallback: bool,
    repaired: bool = False,
    stripped: list[str] | None = None,
) -> HybridResponse:
    validated, unknown = _strip_unknown(content, data)
    unknown = list(dict.fromkeys((stripped or []) + unknown))
    has_web = data.web is not None and bool(data.web.sources)
    if agreement not in ("high", "medium", "low"):
        agreement = _agreement(validated, has_web)
    return HybridResponse(
        content=validated,
        agreement_level=agreement,
        key_insight=key_insight,
        beroe_claims_count=count_citations(validated, "B"),
        web_claims_count=count_citations(validated, "W"),
        used_fallback=used_fallback,
        repaired=repaired,
        stripped_citations=unknown,
    )


def _strip_unknown(content: str, data: HybridData) -> tuple[str, list[str]]:
    validated, unknown = validate_citations(content, {c.id for c in data.evidence_pool})
    if unknown:
        log.warning("Removed unknown citations: %s", unknown)
    return validated, unknown


def beroe_only_response(data: HybridData) -> HybridResponse:
    content = data.beroe.content or ""
    if not content.strip():
        content = LAST_RESORT
    b_ids = _pool_ids(data.evidence_pool, "B")
    if b_ids and count_citations(content, "B") == 0:
        content = f"{content} [{b_ids[0]}]"
    return _finish(content, data, agreement="high", key_insight=data.beroe.insight, used_fallback=False)


async def _synthesize(data: HybridData, options: SynthesizeOptions) -> HybridResponse:
    if data.web is None or not data.web.sources:
        return beroe_only_response(data)

    available_b = len(_pool_ids(data.evidence_pool, "B"))
    available_w = len(_pool_ids(data.evidence_pool, "W"))
    need_b = min(MIN_BEROE_CITATIONS, available_b)
    need_w = min(MIN_WEB_CITATIONS, available_w)

    prompt = SYNTHESIS_PROMPT.format(
        beroe_content=data.beroe.content or "No Beroe data available.",
        web_content=data.web.content or "No web data available.",
        evidence_pool=format_evidence_pool(data.evidence_pool),
    )
    log.info("Synthesizing with %d Beroe and %d web citations", available_b, available_w)

    reply = await call_synthesis_model(prompt) if options.model_enabled else None
    agreement = None
    key_insight = data.beroe.insight
    repaired = False
    used_fallback = False
    stripped: list[str] = []

    if reply is None:
        content = deterministic_synthesis(data)
        used_fallback = True
    else:
        content = reply.get("content") or ""
        agreement = (reply.get("agreementLevel") or "").lower() or None
        key_insight = reply.get("keyInsight") or key_insight
        repaired = bool(reply.get("repaired"))
        # Coverage is judged on ids that survive validation
        content, stripped = _strip_unknown(content, data)

        if len(content) < MIN_CONTENT_LENGTH:
            log.warning("Synthesis too short (%d < %d), using fallback", len(content), MIN_CONTENT_LENGTH)
            content = deterministic_synthesis(data)
            used_fallback = True
        elif count_citations(content, "B") < need_b or count_citations(content, "W") < need_w:
            content = augment_citations(content, data.evidence_pool)
            if count_citations(content, "B") < need_b or count_citations(content, "W") < need_w:
                log.warning("Citation augmentation insufficient, using fallback")
                content = deterministic_synthesis(data)
                used_fallback = True

    if used_fallback:
        agreement = None

    if not content.strip():
        content = data.beroe.content or LAST_RESORT

    return _finish(
        content,
        data,
        agreement=agreement,
        key_insight=key_insight,
        used_fallback=used_fallback,
        repaired=repaired,
        stripped=stripped,
    )


async def synthesize(
    data: HybridData, intent: DetectedIntent, options: SynthesizeOptions | None = None
) -> HybridResponse:
    """Synthesize a cited narrative. Never raises."""
    options = options or SynthesizeOptions()
    try:
        result = await _synthesize(data, options)
    except Exception as e:
        log.error("Synthesis failed for %s, using fallback: %s", intent.category, e)
        content = deterministic_synthesis(data) or data.beroe.content or LAST_RESORT
        result = _finish(content, data, agreement=None, key_insight=None, used_fallback=True)
    log.info(
        "Synthesis done: %d chars, B=%d W=%d, fallback=%s",
        len(result.content),
        result.beroe_claims_count,
        result.web_claims_count,
        result.used_fallback,
    )
    return result
