"""
test_internal_intel.py — Tests for the internal evidence stream

Covers: source list order, managed-category report source, citation
tagging by sentence, deterministic narratives per intent, the data
context handed to the model and the model/fallback switch.

Called by: pytest
Depends on: abi/services/internal_intel.py
"""

from unittest.mock import AsyncMock, patch

from abi.schemas.intents import DetectedIntent, ExtractedEntities
from abi.schemas.suppliers import RiskChange
from abi.services.evidence_fetcher import FetchedData
from abi.services.intent_classifier import classify_intent
from abi.services.internal_intel import (
    build_data_context,
    build_internal_result,
    build_internal_sources,
    fallback_narrative,
    tag_with_citations,
)
from abi.services.supplier_service import summarize_portfolio


def _overview(suppliers):
    return FetchedData(portfolio=summarize_portfolio(suppliers))


# ── Citation tagging ─────────────────────────────────────────────────


def test_tag_one_source_per_sentence():
    assert tag_with_citations("One. Two. Three.", ["B1", "B2"]) == "One. [B1] Two. [B2] Three."


def test_tag_leftover_sources_go_on_last_sentence():
    assert tag_with_citations("One. Two.", ["B1", "B2", "B3", "B4"]) == "One. [B1] Two. [B2] [B3] [B4]"


def test_tag_strips_invented_markers():
    assert tag_with_citations("Claim [W3]. Other [B9].", ["B1"]) == "Claim. [B1] Other."
    assert tag_with_citations("No sources here.", []) == "No sources here."


# ── Sources ──────────────────────────────────────────────────────────


def test_source_order_and_market_report(supplier_factory):
    acme = supplier_factory("sup-acme", "Acme Corp", "medium-high", score=72, category="Metals")
    data = FetchedData(
        portfolio=summarize_portfolio([acme]),
        suppliers=[acme],
        target_supplier=acme,
        risk_changes=[RiskChange(supplier_id="sup-acme", previous_score=60, current_score=72)],
    )
    intent = DetectedIntent(category="supplier_deep_dive", extracted_entities=ExtractedEntities(commodity="steel"))
    names = [s.name for s in build_internal_sources(intent, data, "acme steel exposure")]
    assert names == ["Portfolio Analytics", "Acme Corp Supplier Profile", "Risk Change Alerts", "Steel Market Report"]


def test_supplier_list_without_target_uses_risk_intelligence(overview_portfolio):
    data = FetchedData(suppliers=overview_portfolio[:3])
    sources = build_internal_sources(classify_intent("show high-risk suppliers"), data, "show high-risk suppliers")
    assert [s.name for s in sources] == ["Beroe Risk Intelligence"]
    assert all(s.type == "beroe" for s in sources)


# ── Narratives ───────────────────────────────────────────────────────


def test_overview_narrative_mentions_unrated(overview_portfolio):
    text = fallback_narrative(classify_intent("show my risk overview"), _overview(overview_portfolio))
    assert text.startswith("You're monitoring 25 suppliers.")
    assert "5 unrated suppliers" in text
    assert "3 are high risk" in text


def test_unrated_explanation_narrative(unrated_portfolio):
    unrated = [s for s in unrated_portfolio if s.level == "unrated"]
    text = fallback_narrative(classify_intent("why are 10 suppliers unrated?"), FetchedData(suppliers=unrated))
    assert text.startswith("You have 10 unrated suppliers.")


def test_deep_dive_narrative_handles_missing_target():
    text = fallback_narrative(classify_intent("tell me about Nobody Ltd"), FetchedData())
    assert text == "I could not find that supplier in your portfolio."


def test_trend_narrative_counts_direction():
    changes = [
        RiskChange(supplier_id="a", previous_score=40, current_score=55),
        RiskChange(supplier_id="b", previous_score=70, current_score=60),
    ]
    text = fallback_narrative(classify_intent("what changed this week?"), FetchedData(risk_changes=changes))
    assert text == "2 supplier(s) had risk changes recently. 1 worsened and 1 improved."


def test_data_context_lists_portfolio_and_suppliers(electronics_portfolio):
    data = FetchedData(
        portfolio=summarize_portfolio(electronics_portfolio),
        suppliers=electronics_portfolio,
        target_supplier=electronics_portfolio[0],
    )
    context = build_data_context(classify_intent("tell me about Acme Corp"), data, "tell me about Acme Corp")
    assert 'User Query: "tell me about Acme Corp"' in context
    assert "- Total Suppliers: 5" in context
    assert "- Name: Acme Corp" in context
    assert "Relevant Suppliers (5 total):" in context


# ── Result ───────────────────────────────────────────────────────────


async def test_result_without_model_uses_fallback(overview_portfolio):
    intent = classify_intent("show my risk overview")
    result = await build_internal_result(intent, _overview(overview_portfolio), "show my risk overview", use_model=False)
    assert result.from_model is False
    assert result.content.startswith("You're monitoring 25 suppliers. [B1]")
    assert result.insight == "5 of 25 suppliers are high or medium-high risk"


async def test_result_uses_model_narrative(overview_portfolio):
    intent = classify_intent("show my risk overview")
    model = AsyncMock(return_value="Exposure is concentrated [W2]. Five suppliers need attention.")
    with patch("abi.services.internal_intel.gemini_generate", model):
        result = await build_internal_result(intent, _overview(overview_portfolio), "show my risk overview")
    assert result.from_model is True
    assert result.content == "Exposure is concentrated. [B1] Five suppliers need attention."
    prompt = model.call_args.args[0]
    assert "Total Suppliers: 25" in prompt


async def test_blank_model_reply_falls_back(overview_portfolio):
    intent = classify_intent("show my risk overview")
    with patch("abi.services.internal_intel.gemini_generate", AsyncMock(return_value="   ")):
        result = await build_internal_result(intent, _overview(overview_portfolio), "show my risk overview")
    assert result.from_model is False
    assert "25 suppliers" in result.content
