"""
routers/suppliers.py — Portfolio data for the dashboard and widgets

GET /api/suppliers/portfolio?action=portfolio|search|filter|changes

Business Rules:
- portfolio: summary, all suppliers, the high-risk subset, recent changes
- search: exact name match first, else up to 5 fuzzy hits; query required
- filter: riskLevel (comma-separated), region, category
- changes: the 10 most recent score changes
- no action: summary only
- A source outage answers with the zeroed portfolio and degraded=true

Called by: main.py (router mount)
Depends on: services/evidence_fetcher.py, services/supplier_service.py
"""

from fastapi import APIRouter, Request

from ..config import settings
from ..errors import ValidationError
from ..rate_limit import limiter
from ..services import supplier_service as svc
from ..services.evidence_fetcher import load_portfolio_bundle

router = APIRouter(prefix="/api/suppliers", tags=["suppliers"])


def _dump(items) -> list[dict]:
    return [i.wire() for i in items]


@router.get("/portfolio")
@limiter.limit(settings.rate_limit_default)
async def portfolio(
    request: Request,
    action: str | None = None,
    query: str | None = None,
    riskLevel: str | None = None,
    region: str | None = None,
    category: str | None = None,
):
    bundle = await load_portfolio_bundle()
    suppliers = bundle.suppliers
    meta = {"degraded": True} if bundle.degraded else {}

    if action == "portfolio":
        return {
            "portfolio": bundle.portfolio.wire(),
            "suppliers": _dump(suppliers),
            "highRiskSuppliers": _dump(svc.high_risk_suppliers(suppliers)),
            "riskChanges": _dump(bundle.risk_changes),
            **meta,
        }

    if action == "search":
        if not query or not query.strip():
            raise ValidationError("Query parameter required")
        exact = svc.get_supplier_by_name(suppliers, query)
        if exact is not None:
            return {"supplier": exact.wire(), "found": True, **meta}
        hits = svc.search_suppliers(suppliers, query, limit=5)
        return {"suppliers": _dump(hits), "found": bool(hits), **meta}

    if action == "filter":
        levels = [lv.strip() for lv in riskLevel.split(",") if lv.strip()] if riskLevel else None
        matched = svc.filter_suppliers(suppliers, risk_level=levels, region=region, category=category)
        return {"suppliers": _dump(matched), "count": len(matched), **meta}

    if action == "changes":
        return {"riskChanges": _dump(bundle.risk_changes[:10]), **meta}

    return {"portfolio": bundle.portfolio.wire(), **meta}
