"""
schemas/intents.py — Detected intent model

Output of services/intent_classifier.py; drives the widget router, the
evidence fetcher and the response repairer.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator

from .base import CamelModel

IntentCategory = Literal[
    "portfolio_overview",
    "filtered_discovery",
    "supplier_deep_dive",
    "trend_detection",
    "explanation_why",
    "action_trigger",
    "comparison",
    "setup_config",
    "reporting_export",
    "market_context",
    "restricted_query",
    "general",
]

SubIntent = Literal[
    "overall_summary",
    "spend_weighted",
    "by_dimension",
    "benchmark",
    "supplier_overview",
    "news_events",
    "industry_context",
    "historical",
    "score_inquiry",
    "recent_changes",
    "change_direction",
    "why_changed",
    "projections",
    "find_alternatives",
    "mitigation_plan",
    "communication_help",
    "strategic_advice",
    "price_movement",
    "none",
]

ResponseType = Literal["widget", "table", "summary", "alert", "handoff"]
ArtifactType = Literal[
    "portfolio_dashboard", "supplier_table", "supplier_detail", "comparison", "none"
]


class ExtractedEntities(CamelModel):
    risk_level: str | None = None
    region: str | None = None
    supplier_name: str | None = None
    commodity: str | None = None
    category: str | None = None
    action: str | None = None
    time_period: str | None = None


class DetectedIntent(CamelModel):
    category: IntentCategory = "general"
    sub_intent: SubIntent = "none"
    confidence: float = Field(0.5, ge=0, le=1)
    response_type: ResponseType = "summary"
    artifact_type: ArtifactType = "none"
    extracted_entities: ExtractedEntities = Field(default_factory=ExtractedEntities)
    requires_handoff: bool = False
    requires_research: bool = False
    requires_discovery: bool = False
    handoff_reason: str | None = None
    handoff_link_text: str | None = None

    @model_validator(mode="after")
    def _handoff_has_reason(self):
        if self.requires_handoff and not self.handoff_reason:
            raise ValueError("handoff intents must carry a reason")
        return self
