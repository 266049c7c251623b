"""
category_matcher.py — Fuzzy match free text to a managed category

Token-overlap matcher used by the interests service (coverage) and the
internal evidence stream (category reports).

Business Rules:
- score = min(recall*0.6 + precision*0.4 + boost, 1.0)
  recall = shared / |query tokens|, precision = shared / max(sizes)
- boost is +0.1 per region or grade token found in the category tokens
- Candidates with recall < 0.4 are pruned; empty input matches nothing
- Within 0.05 of the best score, an activated category wins; at equal
  activation the higher client_count wins
- Category token sets are memoised (name + keywords are immutable)

Called by: services/interest_service.py, services/internal_intel.py
Depends on: schemas/categories.py
"""

import re
from functools import lru_cache

from ..schemas.categories import CategoryMatch, ManagedCategory

RECALL_FLOOR = 0.4
TIE_WINDOW = 0.05
TOKEN_BOOST = 0.1

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def tokenize(text: str | None) -> set[str]:
    """Lowercase, strip non-alphanumerics, split on whitespace."""
    if not text:
        return set()
    return {t for t in _NON_ALNUM.sub(" ", text.lower()).split() if t}


@lru_cache(maxsize=2048)
def _tokens_for(name: str, keywords: tuple[str, ...]) -> frozenset[str]:
    tokens = tokenize(name)
    for kw in keywords:
        tokens |= tokenize(kw)
    return frozenset(tokens)


def category_tokens(category: ManagedCategory) -> frozenset[str]:
    return _tokens_for(category.name, tuple(category.keywords))


def _shared(a, b) -> int:
    return sum(1 for t in a if t in b)


def _better(candidate: CategoryMatch, best: CategoryMatch) -> bool:
    if abs(candidate.score - best.score) < TIE_WINDOW:
        if candidate.is_activated != best.is_activated:
            return candidate.is_activated
        if candidate.category.client_count != best.category.client_count:
            return candidate.category.client_count > best.category.client_count
    return candidate.score > best.score


def score_category(
    text_tokens: set[str],
    category: ManagedCategory,
    region: str | None = None,
    grade: str | None = None,
) -> tuple[float, float]:
    """Return (recall, score) for one category."""
    cat_tokens = category_tokens(category)
    if not text_tokens or not cat_tokens:
        return 0.0, 0.0

    shared = _shared(text_tokens, cat_tokens)
    recall = shared / len(text_tokens)
    precision = shared / max(len(text_tokens), len(cat_tokens))

    boost = 0.0
    for extra in (region, grade):
        for t in tokenize(extra):
            if t in cat_tokens:
                boost += TOKEN_BOOST

    return recall, min(recall * 0.6 + precision * 0.4 + boost, 1.0)


def match_category(
    text: str,
    catalog: list[ManagedCategory],
    activated_ids: set[str] | frozenset[str] = frozenset(),
    *,
    region: str | None = None,
    grade: str | None = None,
) -> CategoryMatch | None:
    """Best catalog match for text, or None."""
    text_tokens = tokenize(text)
    if not text_tokens:
        return None

    best: CategoryMatch | None = None
    for category in catalog:
        recall, score = score_category(text_tokens, category, region, grade)
        if recall < RECALL_FLOOR or score <= 0:
            continue
        activated = category.id in activated_ids or category.is_activated
        candidate = CategoryMatch(category=category, is_activated=activated, score=score)
        if best is None or _better(candidate, best):
            best = candidate

    return best
