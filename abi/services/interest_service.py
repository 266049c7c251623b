"""
interest_service.py — Topics a user follows, deduplicated and coverage-graded

Business Rules:
- canonical_key = sorted, pipe-joined, lowercased tokens of text + region + grade
  ("Steel EU" and "EU Steel" share "eu|steel")
- A new interest is a duplicate when its key equals an existing key or
  ≥80% of the tokens in the smaller key set are shared
- At most 10 interests per user
- Coverage via the category matcher: no match → web_only; activated match →
  decision_grade, or partial when a grade was given and the match is weak
  (< 0.7); catalog-only match → available
- Legacy rows (NULL canonical_key) are backfilled on read
- Chat answers can suggest an interest: commodity keyword in the query,
  optional region/grade; greetings and short answers suggest nothing

Called by: routers/interests.py, routers/chat.py
Depends on: models/interests.py, services/category_matcher.py,
            services/category_catalog.py
"""

import logging
import re

from sqlalchemy.orm import Session

from ..database import utcnow
from ..errors import NotFoundError, ValidationError
from ..models import Interest, User
from ..schemas.interests import InterestCoverage
from .category_catalog import get_activated_ids, get_catalog
from .category_matcher import match_category

log = logging.getLogger("abi.interests")

MAX_INTERESTS = 10
DUPLICATE_OVERLAP = 0.8
GRADE_MATCH_FLOOR = 0.7
MIN_RESPONSE_LENGTH = 100

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_SEPARATORS = re.compile(r"\s*[-–—,/|]+\s*")

# ── Key & text helpers ───────────────────────────────────────────────


def _words(text: str | None) -> list[str]:
    if not text:
        return []
    return [t for t in _NON_ALNUM.sub(" ", text.lower()).split() if t]


def tokens(text: str, region: str | None = None, grade: str | None = None) -> set[str]:
    return set(_words(text)) | set(_words(region)) | set(_words(grade))


def canonical_key(text: str, region: str | None = None, grade: str | None = None) -> str:
    return "|".join(sorted(tokens(text, region, grade)))


def clean_topic_text(text: str, region: str | None = None, grade: str | None = None) -> str:
    """Drop region/grade words already carried by their own fields."""
    cleaned = text
    for extra in (region, grade):
        if extra:
            cleaned = re.sub(rf"\b{re.escape(extra)}\b", "", cleaned, flags=re.IGNORECASE)
    cleaned = _SEPARATORS.sub(" ", cleaned)
    cleaned = re.sub(r"\s{2,}", " ", cleaned).strip()
    return cleaned or text.strip()


def _key_of(interest: Interest) -> str:
    return interest.canonical_key or canonical_key(interest.text, interest.region, interest.grade)


def is_duplicate(existing: list[Interest], text: str, region: str | None = None, grade: str | None = None) -> bool:
    candidate = canonical_key(text, region, grade)
    candidate_tokens = set(candidate.split("|")) - {""}

    for interest in existing:
        key = _key_of(interest)
        if key == candidate:
            return True
        existing_tokens = set(key.split("|")) - {""}
        smaller, larger = sorted((candidate_tokens, existing_tokens), key=len)
        if not smaller:
            continue
        shared = sum(1 for t in smaller if t in larger)
        if shared / len(smaller) >= DUPLICATE_OVERLAP:
            return True
    return False


# ── Coverage ─────────────────────────────────────────────────────────


def compute_coverage(text: str, region: str | None = None, grade: str | None = None) -> InterestCoverage:
    match = match_category(text, list(get_catalog()), get_activated_ids(), region=region, grade=grade)
    if match is None:
        return InterestCoverage(level="web_only", gap_reason="No Beroe coverage; using web sources")

    category = match.category
    if match.is_activated:
        if grade and match.score < GRADE_MATCH_FLOOR:
            return InterestCoverage(
                level="partial",
                matched_category_id=category.id,
                matched_category_name=category.name,
                gap_reason="Grade-level data not available; using category-level",
            )
        return InterestCoverage(
            level="decision_grade",
            matched_category_id=category.id,
            matched_category_name=category.name,
        )

    return InterestCoverage(
        level="available",
        matched_category_id=category.id,
        matched_category_name=category.name,
        gap_reason=f"{category.name} is available in the Beroe catalog but not activated",
    )


# ── CRUD ─────────────────────────────────────────────────────────────


def list_interests(db: Session, user: User) -> list[Interest]:
    normalize_legacy_interests(db, user)
    return (
        db.query(Interest)
        .filter(Interest.user_id == user.id)
        .order_by(Interest.saved_at, Interest.id)
        .all()
    )


def get_interest(db: Session, user: User, interest_id: int) -> Interest:
    interest = db.query(Interest).filter(Interest.id == interest_id, Interest.user_id == user.id).first()
    if interest is None:
        raise NotFoundError("Interest not found")
    return interest


def add_interest(
    db: Session,
    user: User,
    text: str,
    *,
    region: str | None = None,
    grade: str | None = None,
    source: str = "manual",
    conversation_id: str | None = None,
) -> Interest:
    region = (region or "").strip() or None
    grade = (grade or "").strip() or None
    text = clean_topic_text(text, region, grade)
    if not text:
        raise ValidationError("Interest text is required")

    existing = db.query(Interest).filter(Interest.user_id == user.id).all()
    if len(existing) >= MAX_INTERESTS:
        raise ValidationError(f"Maximum of {MAX_INTERESTS} interests reached")
    if is_duplicate(existing, text, region, grade):
        raise ValidationError(f'Interest "{text}" already exists')

    interest = Interest(
        user_id=user.id,
        text=text,
        canonical_key=canonical_key(text, region, grade),
        source=source,
        region=region,
        grade=grade,
        coverage=compute_coverage(text, region, grade).wire(),
        conversation_id=conversation_id,
        saved_at=utcnow(),
    )
    db.add(interest)
    db.commit()
    log.info("Interest '%s' saved for user %s (%s)", interest.canonical_key, user.id, source)
    return interest


def update_interest(
    db: Session,
    user: User,
    interest_id: int,
    *,
    text: str | None = None,
    region: str | None = None,
    grade: str | None = None,
) -> Interest:
    interest = get_interest(db, user, interest_id)
    new_region = interest.region if region is None else (region.strip() or None)
    new_grade = interest.grade if grade is None else (grade.strip() or None)
    new_text = clean_topic_text(text if text is not None else interest.text, new_region, new_grade)

    others = (
        db.query(Interest)
        .filter(Interest.user_id == user.id, Interest.id != interest.id)
        .all()
    )
    if is_duplicate(others, new_text, new_region, new_grade):
        raise ValidationError(f'Interest "{new_text}" already exists')

    interest.text = new_text
    interest.region = new_region
    interest.grade = new_grade
    interest.canonical_key = canonical_key(new_text, new_region, new_grade)
    interest.coverage = compute_coverage(new_text, new_region, new_grade).wire()
    db.commit()
    return interest


def delete_interest(db: Session, user: User, interest_id: int) -> None:
    interest = get_interest(db, user, interest_id)
    db.delete(interest)
    db.commit()


def normalize_legacy_interests(db: Session, user: User | None = None) -> int:
    """Backfill canonical_key and coverage on rows saved before either existed."""
    q = db.query(Interest).filter(Interest.canonical_key.is_(None))
    if user is not None:
        q = q.filter(Interest.user_id == user.id)
    rows = q.all()
    for interest in rows:
        interest.canonical_key = canonical_key(interest.text, interest.region, interest.grade)
        if not interest.coverage:
            interest.coverage = compute_coverage(interest.text, interest.region, interest.grade).wire()
    if rows:
        db.commit()
        log.info("Backfilled %d legacy interests", len(rows))
    return len(rows)


def import_legacy_interests(db: Session, user: User, raw: list) -> list[Interest]:
    """Turn a legacy list of plain strings into interest rows, skipping duplicates."""
    added = []
    for item in raw or []:
        if not isinstance(item, str) or not item.strip():
            continue
        try:
            added.append(add_interest(db, user, item, source="imported"))
        except ValidationError as e:
            log.info("Skipped legacy interest '%s': %s", item, e.message)
    return added


# ── Interest suggestion from chat ────────────────────────────────────

_GREETINGS = (
    re.compile(r"^(hi|hello|hey|good morning|good afternoon|good evening)", re.I),
    re.compile(r"^(sure|of course|certainly|i'd be happy to)", re.I),
    re.compile(r"^(how can i help|what can i do for you)", re.I),
)

COMMODITY_KEYWORDS = (
    # metals
    "steel", "aluminum", "aluminium", "copper", "zinc", "nickel", "titanium",
    "cobalt", "lithium", "rare earth",
    # packaging
    "corrugated", "packaging", "cardboard", "paper", "pulp", "plastic", "resin",
    "polyethylene", "polypropylene",
    # energy
    "crude oil", "natural gas", "petroleum", "diesel", "gasoline", "lng", "coal",
    # agriculture
    "wheat", "corn", "soybean", "cotton", "sugar", "coffee", "cocoa", "palm oil", "rubber",
    # chemicals
    "caustic soda", "ethylene", "propylene", "methanol", "ammonia", "sulfuric acid",
    # electronics
    "semiconductor", "chip", "pcb", "display", "battery", "capacitor",
    # logistics
    "freight", "shipping", "logistics", "container", "trucking", "warehousing",
)
_COMMODITY = re.compile(r"\b(" + "|".join(re.escape(k) for k in COMMODITY_KEYWORDS) + r")\b", re.I)
_REGION = re.compile(
    r"\b(Europe|Asia Pacific|Asia|North America|South America|Africa|Middle East|APAC|EMEA|LATAM|global)\b",
    re.I,
)
_GRADE = re.compile(r"\b(HRC|CRC|HDG|rebar|billet|scrap|prime|secondary|virgin|recycled)\b", re.I)


def extract_interest_context(query: str, response_text: str) -> dict | None:
    """Suggest {text, region?, grade?} to follow from one chat turn, or None."""
    if not query or not response_text:
        return None
    answer = response_text.strip()
    if any(p.match(answer) for p in _GREETINGS):
        return None
    if len(answer) < MIN_RESPONSE_LENGTH:
        return None

    m = _COMMODITY.search(query)
    if not m:
        return None

    word = m.group(1)
    context = {"text": word[0].upper() + word[1:]}
    region = _REGION.search(query)
    if region:
        context["region"] = region.group(1)
    grade = _GRADE.search(query)
    if grade:
        context["grade"] = grade.group(1).upper()
    return context
