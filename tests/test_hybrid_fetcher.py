"""
test_hybrid_fetcher.py — Tests for the dual-stream fetch and source confidence

Covers: B#/W# evidence numbering, citation-id stamping, the web stream
gate (toggle + configured key), web failure degradation, the canonical
sources block and the confidence levels.

Called by: pytest
Depends on: abi/services/hybrid_fetcher.py, abi/services/source_confidence.py
"""

from unittest.mock import AsyncMock, patch

import pytest

from abi.schemas.chat import BeroeResult, InternalSource, WebResult, WebSource
from abi.services.evidence_fetcher import FetchedData
from abi.services.hybrid_fetcher import build_evidence_pool, build_hybrid_sources, fetch_hybrid_data
from abi.services.intent_classifier import classify_intent
from abi.services.source_confidence import compute_source_confidence
from abi.services.supplier_service import summarize_portfolio


def _web(n=2):
    return WebResult(
        content="Web says things.",
        sources=[WebSource(name=f"Site {i}", url=f"https://site{i}.example/a", domain=f"site{i}.example")
                 for i in range(1, n + 1)],
    )


def _beroe(n=2):
    return BeroeResult(content="Internal.", sources=[InternalSource(name=f"Report {i}") for i in range(1, n + 1)])


def test_pool_numbers_internal_then_web():
    beroe, web = _beroe(3), _web(2)
    pool = build_evidence_pool(beroe, web)
    assert [c.id for c in pool] == ["B1", "B2", "B3", "W1", "W2"]
    assert [c.type for c in pool] == ["beroe"] * 3 + ["web"] * 2
    assert [s.citation_id for s in beroe.sources] == ["B1", "B2", "B3"]
    assert web.sources[1].citation_id == "W2"
    assert pool[3].url == "https://site1.example/a"


def test_pool_without_web():
    assert [c.id for c in build_evidence_pool(_beroe(1), None)] == ["B1"]


async def test_web_stream_skipped_when_unconfigured(overview_portfolio):
    intent = classify_intent("show my risk overview")
    data = FetchedData(portfolio=summarize_portfolio(overview_portfolio))
    research = AsyncMock()
    with patch("abi.utils.research_client.research", research):
        hybrid = await fetch_hybrid_data("show my risk overview", intent, data, web_enabled=True)
    research.assert_not_awaited()
    assert hybrid.web is None
    assert [c.id for c in hybrid.evidence_pool] == ["B1"]


async def test_web_stream_runs_when_enabled_and_configured(overview_portfolio):
    intent = classify_intent("show my risk overview")
    data = FetchedData(portfolio=summarize_portfolio(overview_portfolio))
    with patch("abi.utils.research_client.is_configured", return_value=True), \
         patch("abi.utils.research_client.research", AsyncMock(return_value=_web(2))):
        hybrid = await fetch_hybrid_data("show my risk overview", intent, data, web_enabled=True)
    assert [c.id for c in hybrid.evidence_pool] == ["B1", "W1", "W2"]


async def test_web_toggle_off_skips_configured_research(overview_portfolio):
    research = AsyncMock(return_value=_web(2))
    with patch("abi.utils.research_client.is_configured", return_value=True), \
         patch("abi.utils.research_client.research", research):
        hybrid = await fetch_hybrid_data(
            "show my risk overview", classify_intent("show my risk overview"),
            FetchedData(portfolio=summarize_portfolio(overview_portfolio)), web_enabled=False,
        )
    research.assert_not_awaited()
    assert hybrid.web is None


async def test_web_failure_degrades_to_internal_only(overview_portfolio):
    with patch("abi.utils.research_client.is_configured", return_value=True), \
         patch("abi.utils.research_client.research", AsyncMock(side_effect=RuntimeError("timeout"))):
        hybrid = await fetch_hybrid_data(
            "show my risk overview", classify_intent("show my risk overview"),
            FetchedData(portfolio=summarize_portfolio(overview_portfolio)), web_enabled=True,
        )
    assert hybrid.web is None
    assert hybrid.beroe.content


def test_hybrid_sources_block():
    beroe, web = _beroe(2), _web(1)
    build_evidence_pool(beroe, web)
    block = build_hybrid_sources(beroe, web, "steel", ["Steel"])
    assert block["totalInternalCount"] == 2
    assert block["totalWebCount"] == 1
    assert block["internal"][0]["citationId"] == "B1"
    assert block["confidence"]["level"] == "high"
    assert block["confidence"]["isManagedCategory"] is True


# ── Source confidence ────────────────────────────────────────────────


@pytest.mark.parametrize(
    "beroe,web,category,managed,level,expand",
    [
        (2, 0, "carbon steel prices", ["Steel"], "high", False),
        (3, 0, None, [], "high", False),
        (2, 1, "copper", ["Steel"], "medium", True),
        (1, 0, None, [], "medium", True),
        (0, 2, "steel", ["Steel"], "web_only", False),
        (0, 0, None, [], "low", True),
    ],
)
def test_confidence_levels(beroe, web, category, managed, level, expand):
    internal = [{"type": "beroe"}] * beroe
    confidence = compute_source_confidence(internal, web, category, managed)
    assert confidence["level"] == level
    assert confidence["showExpandToWeb"] is expand
    assert confidence["beroeSourceCount"] == beroe


def test_confidence_ignores_partner_sources_and_clears_managed_flag():
    confidence = compute_source_confidence([{"type": "partner"}] * 3, 1, "steel", ["Steel"])
    assert confidence["level"] == "web_only"
    assert confidence["label"] == "Web Research"
    assert confidence["isManagedCategory"] is False


def test_confidence_counts_model_sources():
    confidence = compute_source_confidence([InternalSource(name="A"), InternalSource(name="B")], 0)
    assert confidence["level"] == "medium"
