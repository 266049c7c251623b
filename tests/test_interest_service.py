"""
test_interest_service.py — Tests for followed topics

Covers: canonical keys, duplicate detection, the per-user cap, topic text
cleanup, coverage levels against the built-in catalog, updates, legacy
backfill and import, and interest suggestion from chat turns.

Called by: pytest
Depends on: abi/services/interest_service.py, abi/services/category_matcher.py
"""

from unittest.mock import patch

import pytest

from abi.errors import NotFoundError, ValidationError
from abi.models import Interest
from abi.services import interest_service as svc

LONG_ANSWER = "Steel prices in Europe firmed this month as mills announced further output cuts. " * 2


@pytest.fixture()
def steel_activated():
    with patch("abi.services.interest_service.get_activated_ids", return_value=frozenset({"cat-steel"})):
        yield


# ── Keys & duplicates ────────────────────────────────────────────────


def test_canonical_key_is_order_free():
    assert svc.canonical_key("Steel EU") == svc.canonical_key("EU Steel") == "eu|steel"
    assert svc.canonical_key("Steel", region="Europe", grade="HRC") == "europe|hrc|steel"


def test_clean_topic_text_drops_region_and_grade():
    assert svc.clean_topic_text("Steel - Europe", region="Europe") == "Steel"
    assert svc.clean_topic_text("HRC steel", grade="HRC") == "steel"
    assert svc.clean_topic_text("Europe", region="Europe") == "Europe"


def test_duplicates_by_key_or_overlap(db_session, member_user):
    svc.add_interest(db_session, member_user, "Steel EU")
    with pytest.raises(ValidationError, match="already exists"):
        svc.add_interest(db_session, member_user, "EU steel")
    existing = svc.list_interests(db_session, member_user)
    assert svc.is_duplicate(existing, "steel eu prices") is True
    assert svc.is_duplicate(existing, "copper prices") is False


def test_cap_of_ten(db_session, member_user):
    words = ["Copper", "Zinc", "Nickel", "Cobalt", "Lithium", "Coffee", "Cocoa", "Sugar", "Cotton", "Wheat"]
    for w in words:
        svc.add_interest(db_session, member_user, w)
    with pytest.raises(ValidationError, match="Maximum of 10"):
        svc.add_interest(db_session, member_user, "Rubber")


def test_caps_and_duplicates_are_per_user(db_session, member_user, approver_user):
    svc.add_interest(db_session, member_user, "Steel")
    assert svc.add_interest(db_session, approver_user, "Steel").user_id == approver_user.id


# ── Coverage ─────────────────────────────────────────────────────────


def test_activated_match_is_decision_grade(steel_activated):
    coverage = svc.compute_coverage("Steel")
    assert coverage.level == "decision_grade"
    assert coverage.matched_category_id == "cat-steel"
    assert svc.compute_coverage("Steel", grade="HRC").level == "decision_grade"


def test_weak_grade_match_is_partial(steel_activated):
    coverage = svc.compute_coverage("Steel", grade="galvanized")
    assert coverage.level == "partial"
    assert "Grade-level" in coverage.gap_reason


def test_catalog_only_match_is_available(steel_activated):
    coverage = svc.compute_coverage("Aluminum")
    assert coverage.level == "available"
    assert coverage.matched_category_name == "Aluminum"


def test_unknown_topic_is_web_only():
    assert svc.compute_coverage("quantum widgets").level == "web_only"


def test_saved_interest_carries_coverage(db_session, member_user, steel_activated):
    interest = svc.add_interest(db_session, member_user, "Steel", region="Europe", source="chat_inferred")
    assert interest.coverage["level"] == "decision_grade"
    assert interest.coverage["matchedCategoryId"] == "cat-steel"
    assert interest.source == "chat_inferred"


# ── Update / delete ──────────────────────────────────────────────────


def test_update_recomputes_key_and_coverage(db_session, member_user):
    interest = svc.add_interest(db_session, member_user, "quantum widgets")
    updated = svc.update_interest(db_session, member_user, interest.id, text="Steel", grade="HRC")
    assert updated.canonical_key == "hrc|steel"
    assert updated.coverage["level"] == "available"


def test_update_rejects_collision(db_session, member_user):
    svc.add_interest(db_session, member_user, "Steel")
    copper = svc.add_interest(db_session, member_user, "Copper")
    with pytest.raises(ValidationError):
        svc.update_interest(db_session, member_user, copper.id, text="steel")


def test_other_users_interests_are_invisible(db_session, member_user, approver_user):
    interest = svc.add_interest(db_session, member_user, "Steel")
    with pytest.raises(NotFoundError):
        svc.delete_interest(db_session, approver_user, interest.id)
    svc.delete_interest(db_session, member_user, interest.id)
    assert svc.list_interests(db_session, member_user) == []


# ── Legacy rows ──────────────────────────────────────────────────────


def test_legacy_rows_are_backfilled_on_read(db_session, member_user):
    db_session.add(Interest(user_id=member_user.id, text="Corrugated Boxes", canonical_key=None))
    db_session.commit()
    [interest] = svc.list_interests(db_session, member_user)
    assert interest.canonical_key == "boxes|corrugated"
    assert interest.coverage["level"] == "available"
    assert svc.normalize_legacy_interests(db_session) == 0


def test_import_legacy_list_skips_duplicates(db_session, member_user):
    added = svc.import_legacy_interests(db_session, member_user, ["Steel", "steel", "", 42, "Copper"])
    assert [i.text for i in added] == ["Steel", "Copper"]
    assert all(i.source == "imported" for i in added)


# ── Suggestions from chat ────────────────────────────────────────────


def test_extract_interest_context():
    context = svc.extract_interest_context("What's the outlook for HRC steel in Europe?", LONG_ANSWER)
    assert context == {"text": "Steel", "region": "Europe", "grade": "HRC"}


def test_no_suggestion_for_greetings_short_answers_or_no_commodity():
    assert svc.extract_interest_context("steel prices", "Hello! " + LONG_ANSWER) is None
    assert svc.extract_interest_context("steel prices", "Prices rose.") is None
    assert svc.extract_interest_context("show my risk overview", LONG_ANSWER) is None
    assert svc.extract_interest_context("", LONG_ANSWER) is None
