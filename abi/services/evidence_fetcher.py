"""
evidence_fetcher.py — Load the data slice an intent needs

Given a DetectedIntent, asks the widget router which data sets are
required and assembles them from the supplier-intelligence source.

Business Rules:
- Portfolio when the route requires it (and always for "why … unrated")
- Supplier slice specialised by category:
  filtered_discovery → risk-level / region filters
  supplier_deep_dive → target by extracted name, else name found in query
  action_trigger/find_alternatives → same category, strictly lower score;
    fallback same category minus the target; no target → high-risk list
  explanation_why → all unrated when the query says "unrated", else high-risk
  comparison → suppliers named in the query when ≥ 2, else the first three
  portfolio_overview → the whole portfolio (spend exposure, breakdowns)
  otherwise → the first ten
- Risk changes when required; suppliers joined to them by id when no
  slice was chosen
- Source data cached 5 minutes in the shared Store
- Source failure → zeroed portfolio and empty lists (never raises)

Called by: services/chat_service.py, routers/suppliers.py
Depends on: services/supplier_source.py, services/supplier_service.py,
            services/widget_router.py, store.py
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..config import settings
from ..schemas.intents import DetectedIntent
from ..schemas.suppliers import Portfolio, RiskChange, Supplier
from ..store import get_store
from . import supplier_service as svc
from .supplier_source import get_supplier_source
from .widget_router import WidgetRoute, get_widget_route

log = logging.getLogger("abi.fetcher")

CACHE_KEY = "portfolio:bundle"


@dataclass
class PortfolioBundle:
    suppliers: list[Supplier] = field(default_factory=list)
    risk_changes: list[RiskChange] = field(default_factory=list)
    degraded: bool = False

    @property
    def portfolio(self) -> Portfolio:
        return svc.summarize_portfolio(self.suppliers, self.risk_changes)


@dataclass
class FetchedData:
    portfolio: Portfolio | None = None
    suppliers: list[Supplier] | None = None
    risk_changes: list[RiskChange] | None = None
    target_supplier: Supplier | None = None
    degraded: bool = False

    def is_empty(self) -> bool:
        return (
            self.portfolio is None
            and not self.suppliers
            and not self.risk_changes
            and self.target_supplier is None
        )


def zeroed_portfolio() -> Portfolio:
    return Portfolio()


async def load_portfolio_bundle(force: bool = False) -> PortfolioBundle:
    """Suppliers + recent changes, cached in the Store for the configured TTL."""
    store = get_store()
    if not force:
        cached = store.get(CACHE_KEY)
        if cached:
            return PortfolioBundle(
                suppliers=[Supplier.model_validate(s) for s in cached.get("suppliers", [])],
                risk_changes=[RiskChange.model_validate(c) for c in cached.get("riskChanges", [])],
            )

    source = get_supplier_source()
    try:
        suppliers = await source.list_suppliers()
        changes = await source.list_risk_changes(10)
    except Exception as e:
        log.warning("Supplier source unavailable, using zeroed portfolio: %s", e)
        return PortfolioBundle(degraded=True)

    store.set_with_ttl(
        CACHE_KEY,
        {
            "suppliers": [s.model_dump(by_alias=True) for s in suppliers],
            "riskChanges": [c.model_dump(by_alias=True) for c in changes],
        },
        settings.portfolio_cache_ttl_seconds,
    )
    return PortfolioBundle(suppliers=suppliers, risk_changes=changes)


def clear_portfolio_cache() -> None:
    get_store().delete(CACHE_KEY)


def _select_alternatives(
    intent: DetectedIntent, query: str, suppliers: list[Supplier], data: FetchedData
) -> list[Supplier]:
    name = intent.extracted_entities.supplier_name
    target = svc.get_supplier_by_name(suppliers, name) if name else svc.find_supplier_in_text(suppliers, query)
    if target is None:
        return svc.high_risk_suppliers(suppliers)

    data.target_supplier = target
    target_score = target.score or 0
    peers = [s for s in suppliers if s.id != target.id and s.category == target.category]
    lower = [s for s in peers if (s.score if s.score else 100) < target_score]
    return lower or peers


def _select_suppliers(
    intent: DetectedIntent, query: str, suppliers: list[Supplier], data: FetchedData, bundle: PortfolioBundle
) -> list[Supplier] | None:
    category = intent.category
    entities = intent.extracted_entities
    lowered = query.lower()

    if category == "filtered_discovery":
        return svc.filter_suppliers(suppliers, risk_level=entities.risk_level, region=entities.region)

    if category == "supplier_deep_dive":
        if entities.supplier_name:
            target = svc.get_supplier_by_name(suppliers, entities.supplier_name)
        else:
            target = svc.find_supplier_in_text(suppliers, query)
        if target is None:
            return None
        data.target_supplier = target
        return [target]

    if category == "action_trigger":
        if intent.sub_intent == "find_alternatives":
            return _select_alternatives(intent, query, suppliers, data)
        return svc.high_risk_suppliers(suppliers)

    if category == "explanation_why":
        if "unrated" in lowered:
            data.portfolio = bundle.portfolio
            return svc.unrated_suppliers(suppliers)
        return svc.high_risk_suppliers(suppliers)

    if category == "comparison":
        mentioned = [s for s in suppliers if s.name.lower() in lowered]
        return mentioned if len(mentioned) >= 2 else suppliers[:3]

    if category == "trend_detection":
        # Joined from the risk changes below
        return None

    if category == "portfolio_overview":
        return list(suppliers)

    return suppliers[:10]


async def fetch_data_for_intent(
    intent: DetectedIntent, query: str, route: WidgetRoute | None = None
) -> FetchedData:
    route = route or get_widget_route(intent.category, intent.sub_intent)
    data = FetchedData()
    if not (route.requires_portfolio or route.requires_suppliers or route.requires_risk_changes):
        return data

    bundle = await load_portfolio_bundle()
    data.degraded = bundle.degraded

    if route.requires_portfolio:
        data.portfolio = bundle.portfolio

    if route.requires_suppliers:
        data.suppliers = _select_suppliers(intent, query, bundle.suppliers, data, bundle)

    if route.requires_risk_changes:
        data.risk_changes = list(bundle.risk_changes)
        if data.suppliers is None:
            by_id = {s.id: s for s in bundle.suppliers}
            data.suppliers = [by_id[c.supplier_id] for c in data.risk_changes if c.supplier_id in by_id]

    log.debug(
        "Fetched for %s: portfolio=%s suppliers=%d target=%s changes=%d",
        intent.category,
        data.portfolio is not None,
        len(data.suppliers or []),
        data.target_supplier.name if data.target_supplier else None,
        len(data.risk_changes or []),
    )
    return data
