"""
widget_router.py — Deterministic intent → widget routing

Maps (IntentCategory, SubIntent) to the widget embedded in the reply, the
artifact panel that accompanies it, and the data sets the evidence
fetcher must load. The model never chooses the widget.

Business Rules:
- Sub-intent overrides are merged over the base route for the category
- restricted_query routes to no widget and requires a handoff
- Unknown categories fall back to the general route

Called by: services/evidence_fetcher.py, services/chat_service.py
Depends on: nothing (pure table)
"""

from dataclasses import dataclass, replace

WIDGET_TYPES = frozenset({
    "risk_distribution",
    "supplier_table",
    "supplier_risk_card",
    "alert_card",
    "comparison_table",
    "alternatives_preview",
    "events_feed",
    "spend_exposure",
    "category_breakdown",
    "none",
})


@dataclass(frozen=True)
class WidgetRoute:
    widget_type: str
    artifact_type: str
    requires_suppliers: bool = False
    requires_portfolio: bool = False
    requires_risk_changes: bool = False
    requires_handoff: bool = False

    def wire(self) -> dict:
        return {
            "widgetType": self.widget_type,
            "artifactType": self.artifact_type,
            "requiresSuppliers": self.requires_suppliers,
            "requiresPortfolio": self.requires_portfolio,
            "requiresRiskChanges": self.requires_risk_changes,
            "requiresHandoff": self.requires_handoff,
        }


INTENT_WIDGET_MAP: dict[str, WidgetRoute] = {
    "portfolio_overview": WidgetRoute("risk_distribution", "portfolio_dashboard", requires_portfolio=True),
    "filtered_discovery": WidgetRoute("supplier_table", "supplier_table", requires_suppliers=True),
    "supplier_deep_dive": WidgetRoute("supplier_risk_card", "supplier_detail", requires_suppliers=True),
    "trend_detection": WidgetRoute(
        "alert_card", "trend_analysis", requires_suppliers=True, requires_risk_changes=True
    ),
    "comparison": WidgetRoute("comparison_table", "supplier_comparison", requires_suppliers=True),
    "action_trigger": WidgetRoute("supplier_table", "supplier_alternatives", requires_suppliers=True),
    "explanation_why": WidgetRoute(
        "supplier_table", "factor_breakdown", requires_suppliers=True, requires_portfolio=True
    ),
    "market_context": WidgetRoute("none", "news_events"),
    "setup_config": WidgetRoute("none", "alert_config"),
    "reporting_export": WidgetRoute("none", "export_builder"),
    "restricted_query": WidgetRoute("none", "supplier_detail", requires_handoff=True),
    "general": WidgetRoute("none", "portfolio_dashboard"),
}

# Overrides replace only the fields they name
SUBINTENT_OVERRIDES: dict[str, dict] = {
    "find_alternatives": {
        "widget_type": "alternatives_preview",
        "artifact_type": "supplier_alternatives",
        "requires_suppliers": True,
    },
    "news_events": {"widget_type": "events_feed", "artifact_type": "none"},
    "spend_weighted": {
        "widget_type": "spend_exposure",
        "artifact_type": "portfolio_dashboard",
        "requires_portfolio": True,
        "requires_suppliers": True,
    },
    "by_dimension": {
        "widget_type": "category_breakdown",
        "artifact_type": "portfolio_dashboard",
        "requires_portfolio": True,
        "requires_suppliers": True,
    },
}


def get_widget_route(category: str, sub_intent: str | None = None) -> WidgetRoute:
    base = INTENT_WIDGET_MAP.get(category, INTENT_WIDGET_MAP["general"])
    override = SUBINTENT_OVERRIDES.get(sub_intent or "")
    if override:
        return replace(base, **override)
    return base


def requires_data(route: WidgetRoute) -> bool:
    return route.requires_suppliers or route.requires_portfolio or route.requires_risk_changes
