"""
hybrid_fetcher.py — Run the internal and web streams, number the evidence

Business Rules:
- Internal and web fetches run concurrently; the web stream only when
  research is enabled for the turn and the research model is configured
- Evidence pool: internal sources numbered B1.., then web sources W1..;
  ids are unique and stable for the turn
- Each source is stamped with its citation id for later lookup
- A failed stream degrades to an empty result, never an exception

Called by: services/chat_service.py
Depends on: services/internal_intel.py, utils/research_client.py,
            services/source_confidence.py
"""

from __future__ import annotations

import asyncio
import logging

from ..schemas.chat import BeroeResult, ChatMessage, Citation, HybridData, WebResult
from ..schemas.intents import DetectedIntent
from ..utils import extract_domain
from ..utils import research_client
from .evidence_fetcher import FetchedData
from .internal_intel import build_internal_result
from .source_confidence import compute_source_confidence

log = logging.getLogger("abi.hybrid")

__all__ = [
    "build_evidence_pool",
    "build_hybrid_sources",
    "extract_domain",
    "fetch_hybrid_data",
]


async def _fetch_web(query: str, history: list[ChatMessage] | None) -> WebResult | None:
    return await research_client.research(query, history)


async def fetch_hybrid_data(
    query: str,
    intent: DetectedIntent,
    data: FetchedData,
    *,
    web_enabled: bool = False,
    history: list[ChatMessage] | None = None,
) -> HybridData:
    tasks = [build_internal_result(intent, data, query)]
    if web_enabled and research_client.is_configured():
        tasks.append(_fetch_web(query, history))
    results = await asyncio.gather(*tasks, return_exceptions=True)
    beroe = results[0]
    web = results[1] if len(results) > 1 else None

    if isinstance(beroe, BaseException):
        log.error("Internal stream failed: %s", beroe)
        beroe = BeroeResult(content="")
    if isinstance(web, BaseException):
        log.warning("Web stream failed: %s", web)
        web = None

    pool = build_evidence_pool(beroe, web)
    log.info(
        "Hybrid fetch: %d internal, %d web sources",
        len(beroe.sources),
        len(web.sources) if web else 0,
    )
    return HybridData(beroe=beroe, web=web, evidence_pool=pool)


def build_evidence_pool(beroe: BeroeResult, web: WebResult | None) -> list[Citation]:
    pool: list[Citation] = []
    seen: set[str] = set()

    for i, source in enumerate(beroe.sources, start=1):
        cid = f"B{i}"
        source.citation_id = cid
        if cid in seen:
            continue
        seen.add(cid)
        pool.append(Citation(
            id=cid,
            type="beroe",
            name=source.name,
            snippet=source.summary,
            category=source.category,
            report_id=source.report_id,
        ))

    if web is not None:
        for i, source in enumerate(web.sources, start=1):
            cid = f"W{i}"
            source.citation_id = cid
            if cid in seen:
                continue
            seen.add(cid)
            pool.append(Citation(
                id=cid,
                type="web",
                name=source.name,
                snippet=source.snippet,
                url=source.url,
            ))

    return pool


def build_hybrid_sources(
    beroe: BeroeResult,
    web: WebResult | None,
    category: str | None = None,
    managed_categories: list[str] | None = None,
) -> dict:
    """Canonical sources block {web, internal, totalWebCount, totalInternalCount, confidence}."""
    internal = [s.wire() for s in beroe.sources]
    web_sources = [s.wire() for s in web.sources] if web else []
    return {
        "web": web_sources,
        "internal": internal,
        "totalWebCount": len(web_sources),
        "totalInternalCount": len(internal),
        "confidence": compute_source_confidence(internal, len(web_sources), category, managed_categories),
    }
