"""
test_routers_suppliers.py — Tests for the portfolio data endpoint

Covers: each action (summary, portfolio, search, filter, changes), the
missing search query and the degraded answer when the source is down.

Called by: pytest
Depends on: routers/suppliers.py, conftest portfolios
"""

from abi.schemas.suppliers import RiskChange
from abi.services.supplier_source import SupplierSource, set_supplier_source

URL = "/api/suppliers/portfolio"


class _DownSource(SupplierSource):
    async def list_suppliers(self):
        raise RuntimeError("connection refused")

    async def list_risk_changes(self, limit=10):
        return []


def test_summary_without_action(anon_client, overview_portfolio):
    body = anon_client.get(URL).json()
    assert body["portfolio"]["totalSuppliers"] == 25
    assert body["portfolio"]["distribution"]["unrated"] == 5
    assert "degraded" not in body


def test_portfolio_action(anon_client, overview_portfolio):
    body = anon_client.get(URL, params={"action": "portfolio"}).json()
    assert len(body["suppliers"]) == 25
    assert {s["srs"]["level"] for s in body["highRiskSuppliers"]} == {"high", "medium-high"}
    assert len(body["highRiskSuppliers"]) == 5
    assert body["riskChanges"] == []


def test_search(anon_client, overview_portfolio):
    exact = anon_client.get(URL, params={"action": "search", "query": "High Supplier 1"}).json()
    assert exact["found"] is True
    assert exact["supplier"]["id"] == "sup-001"

    fuzzy = anon_client.get(URL, params={"action": "search", "query": "Components"}).json()
    assert fuzzy["found"] is True
    assert len(fuzzy["suppliers"]) == 5

    missing = anon_client.get(URL, params={"action": "search"})
    assert missing.status_code == 400
    assert missing.json()["error"] == "Query parameter required"


def test_filter_by_levels(anon_client, overview_portfolio):
    body = anon_client.get(URL, params={"action": "filter", "riskLevel": "high,low"}).json()
    assert body["count"] == 8


def test_changes(anon_client, overview_portfolio, supplier_source):
    change = RiskChange(supplier_id="sup-004", supplier_name="Medium-High Supplier 4",
                        previous_score=52, current_score=66)
    supplier_source(overview_portfolio, [change])
    body = anon_client.get(URL, params={"action": "changes"}).json()
    assert [c["supplierId"] for c in body["riskChanges"]] == ["sup-004"]


def test_source_outage_is_degraded(anon_client):
    set_supplier_source(_DownSource())
    body = anon_client.get(URL).json()
    assert body["degraded"] is True
    assert body["portfolio"]["totalSuppliers"] == 0
