"""
test_evidence_fetcher.py — Tests for intent-driven data loading

Covers: per-category supplier slices (filters, deep dive target,
alternatives, unrated explanation, comparison, trend join), the
5-minute portfolio cache in the Store and the degraded path when the
supplier source is down.

Called by: pytest
Depends on: abi/services/evidence_fetcher.py, conftest portfolios
"""

from abi.schemas.suppliers import RiskChange
from abi.services.evidence_fetcher import (
    CACHE_KEY,
    clear_portfolio_cache,
    fetch_data_for_intent,
    load_portfolio_bundle,
)
from abi.services.intent_classifier import classify_intent
from abi.services.supplier_source import SupplierSource, set_supplier_source


class _DownSource(SupplierSource):
    def __init__(self):
        self.calls = 0

    async def list_suppliers(self):
        self.calls += 1
        raise RuntimeError("connection refused")

    async def list_risk_changes(self, limit=10):
        return []


async def _fetch(query):
    return await fetch_data_for_intent(classify_intent(query), query)


# ── Slices per category ──────────────────────────────────────────────


async def test_portfolio_overview_loads_portfolio_only(overview_portfolio):
    data = await _fetch("show my risk overview")
    assert data.portfolio.total_suppliers == 25
    assert data.portfolio.distribution.total() == 25
    assert data.suppliers is None
    assert data.degraded is False


async def test_filtered_discovery_applies_level_and_region(overview_portfolio):
    data = await _fetch("show high-risk suppliers in Europe")
    assert len(data.suppliers) == 3
    assert all(s.level == "high" for s in data.suppliers)
    assert data.portfolio is None


async def test_deep_dive_sets_target(electronics_portfolio):
    data = await _fetch("tell me about Nordic Circuits")
    assert data.target_supplier.id == "sup-nord"
    assert [s.id for s in data.suppliers] == ["sup-nord"]


async def test_deep_dive_unknown_supplier_has_no_slice(electronics_portfolio):
    data = await _fetch("tell me about Nonexistent Holdings")
    assert data.target_supplier is None
    assert data.suppliers is None


async def test_alternatives_are_lower_scored_same_category_peers(electronics_portfolio):
    data = await _fetch("find alternatives for Acme Corp")
    assert data.target_supplier.id == "sup-acme"
    assert [s.id for s in data.suppliers] == ["sup-nord", "sup-volt"]


async def test_alternatives_fall_back_to_peers_when_none_lower(supplier_factory, supplier_source):
    supplier_source([
        supplier_factory("a", "Lowrisk Labs", "low", score=20, category="Chemicals"),
        supplier_factory("b", "Polymer Partners", "medium", score=45, category="Chemicals"),
    ])
    data = await _fetch("find alternatives for Lowrisk Labs")
    assert [s.id for s in data.suppliers] == ["b"]


async def test_alternatives_without_target_list_high_risk(overview_portfolio):
    data = await _fetch("find alternatives for my riskiest suppliers")
    assert data.target_supplier is None
    assert {s.level for s in data.suppliers} == {"high", "medium-high"}
    assert len(data.suppliers) == 5


async def test_unrated_explanation_returns_all_unrated(unrated_portfolio):
    data = await _fetch("why are 10 suppliers unrated?")
    assert len(data.suppliers) == 10
    assert all(s.level == "unrated" for s in data.suppliers)
    assert data.portfolio.distribution.unrated == 10


async def test_comparison_uses_named_suppliers(electronics_portfolio):
    data = await _fetch("compare Acme Corp vs Nordic Circuits")
    assert {s.id for s in data.suppliers} == {"sup-acme", "sup-nord"}


async def test_trend_joins_suppliers_to_changes(overview_portfolio, supplier_source):
    change = RiskChange(supplier_id="sup-004", supplier_name="Medium-High Supplier 4",
                        previous_score=52, current_score=66)
    supplier_source(overview_portfolio, [change])
    data = await _fetch("what changed this week?")
    assert [c.supplier_id for c in data.risk_changes] == ["sup-004"]
    assert [s.id for s in data.suppliers] == ["sup-004"]
    assert data.risk_changes[0].direction == "worsened"


async def test_general_query_loads_nothing():
    source = _DownSource()
    set_supplier_source(source)
    data = await _fetch("hello there")
    assert data.is_empty()
    assert source.calls == 0


# ── Cache and degradation ────────────────────────────────────────────


async def test_bundle_is_cached_in_store(overview_portfolio, supplier_source, memory_store):
    first = await load_portfolio_bundle()
    assert memory_store.get(CACHE_KEY) is not None

    supplier_source([])
    cached = await load_portfolio_bundle()
    assert len(cached.suppliers) == len(first.suppliers) == 25

    fresh = await load_portfolio_bundle(force=True)
    assert fresh.suppliers == []


async def test_clear_cache_forces_reload(overview_portfolio, supplier_source):
    await load_portfolio_bundle()
    supplier_source(overview_portfolio[:2])
    clear_portfolio_cache()
    bundle = await load_portfolio_bundle()
    assert len(bundle.suppliers) == 2


async def test_source_failure_degrades_to_zeroed_portfolio(memory_store):
    set_supplier_source(_DownSource())
    data = await _fetch("show my risk overview")
    assert data.degraded is True
    assert data.portfolio.total_suppliers == 0
    assert data.portfolio.total_spend_formatted == "$0"
    assert memory_store.get(CACHE_KEY) is None
