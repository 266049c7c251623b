"""Managed category catalog — loaded once from JSON, with a small built-in set.

The catalog file is a JSON array of ManagedCategory objects (camelCase
keys). Without one, a handful of representative categories are served so
coverage and matching still work in development.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path

from ..config import settings
from ..schemas.categories import ManagedCategory

log = logging.getLogger("abi.catalog")

_BUILTIN = [
    {
        "id": "cat-steel", "name": "Steel", "slug": "steel", "domain": "Metals",
        "keywords": ["hot rolled coil", "hrc", "rebar", "stainless", "flat steel"],
        "clientCount": 412, "hasMarketReport": True, "hasPriceIndex": True,
        "hasSupplierData": True, "hasNewsAlerts": True, "hasCostModel": True,
        "leadAnalyst": {"id": "an-1", "name": "Metals Desk"}, "updateFrequency": "weekly",
    },
    {
        "id": "cat-aluminum", "name": "Aluminum", "slug": "aluminum", "domain": "Metals",
        "keywords": ["aluminium", "primary aluminum", "extrusion"],
        "clientCount": 287, "hasMarketReport": True, "hasPriceIndex": True,
        "hasSupplierData": True, "leadAnalyst": {"id": "an-1", "name": "Metals Desk"},
        "updateFrequency": "weekly",
    },
    {
        "id": "cat-corrugated", "name": "Corrugated Boxes", "slug": "corrugated-boxes",
        "domain": "Packaging", "keywords": ["corrugated", "packaging", "containerboard", "cardboard"],
        "clientCount": 355, "hasMarketReport": True, "hasPriceIndex": True,
        "hasCostModel": True, "leadAnalyst": {"id": "an-2", "name": "Packaging Desk"},
        "updateFrequency": "monthly",
    },
    {
        "id": "cat-resin", "name": "Polyethylene Resin", "slug": "polyethylene-resin",
        "domain": "Chemicals", "keywords": ["resin", "pe", "hdpe", "ldpe", "plastics"],
        "clientCount": 198, "hasMarketReport": True, "hasPriceIndex": True,
        "leadAnalyst": {"id": "an-3", "name": "Chemicals Desk"}, "updateFrequency": "bi-weekly",
    },
    {
        "id": "cat-freight", "name": "Ocean Freight", "slug": "ocean-freight",
        "domain": "Logistics", "keywords": ["freight", "container shipping", "logistics"],
        "clientCount": 240, "hasMarketReport": True, "hasNewsAlerts": True,
        "leadAnalyst": {"id": "an-4", "name": "Logistics Desk"}, "updateFrequency": "weekly",
    },
    {
        "id": "cat-semis", "name": "Semiconductors", "slug": "semiconductors",
        "domain": "Electronics", "keywords": ["chips", "microcontrollers", "electronics", "ic"],
        "clientCount": 301, "hasMarketReport": True, "hasSupplierData": True,
        "hasNewsAlerts": True, "leadAnalyst": {"id": "an-5", "name": "Electronics Desk"},
        "updateFrequency": "weekly",
    },
]


def _load(path: str) -> list[ManagedCategory]:
    if path:
        p = Path(path)
        try:
            raw = json.loads(p.read_text())
            log.info("Loaded %d managed categories from %s", len(raw), p)
            return [ManagedCategory.model_validate(c) for c in raw]
        except (OSError, ValueError) as e:
            log.warning("Category catalog unreadable (%s), using built-ins: %s", p, e)
    return [ManagedCategory.model_validate(c) for c in _BUILTIN]


@lru_cache
def get_catalog() -> tuple[ManagedCategory, ...]:
    return tuple(_load(settings.category_catalog_path))


def get_activated_ids() -> frozenset[str]:
    return frozenset(settings.activated_ids)


def get_category(category_id: str) -> ManagedCategory | None:
    return next((c for c in get_catalog() if c.id == category_id), None)


def activated_category_names() -> list[str]:
    ids = get_activated_ids()
    return [c.name for c in get_catalog() if c.id in ids or c.is_activated]


_MIN_WORD = 3


def matches_any_category(detected: str, managed_names: list[str]) -> bool:
    """Conservative name match: "carbon steel prices" matches "Steel (HRC)".

    Exact name, name before any parenthesis, a prefix of the detected text,
    or every significant (3+ char) word of the managed base present as a
    whole word in the detected text.
    """
    detected = (detected or "").lower().strip()
    if not detected or not managed_names:
        return False
    detected_words = {w for w in detected.split() if len(w) >= _MIN_WORD}

    for managed in managed_names:
        managed = managed.lower().strip()
        base = managed.split("(")[0].strip()
        if not base:
            continue
        if detected in (managed, base) or detected.startswith(base):
            return True
        base_words = [w for w in base.split() if len(w) >= _MIN_WORD]
        if base_words and all(w in detected_words for w in base_words):
            return True
    return False
