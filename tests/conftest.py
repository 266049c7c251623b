"""
conftest.py — Shared Test Fixtures for Abi

Provides an in-memory SQLite database, a fresh in-memory Store per test,
the supplier-source swap, FastAPI TestClient with auth overrides and the
CSRF double-submit pair preset, and factory fixtures for users and the
company credit account.

Business Rules:
- All tests run against isolated in-memory DB (no prod data risk)
- Model keys are blanked so no test reaches a real model API
- Auth is overridden so router tests don't need a login round-trip
- Each test function gets a fresh DB, Store and supplier source

Called by: all test files via pytest autodiscovery
Depends on: abi.models (Base), abi.database (get_db), abi.dependencies
"""

import os
os.environ["TESTING"] = "1"  # Must be set before importing abi modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PASSWORD_HASH_COST"] = "4"
os.environ["GEMINI_API_KEY"] = ""
os.environ["PERPLEXITY_API_KEY"] = ""
os.environ["SUPPLIER_API_URL"] = ""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from abi.models import Base, CreditAccount, User
from abi.schemas.suppliers import Location, RiskChange, RiskScore, Supplier
from abi.services import credit_ledger
from abi.services.security import CSRF_COOKIE, CSRF_HEADER, hash_password
from abi.services.supplier_source import StaticSupplierSource, set_supplier_source
from abi.store import MemoryStore, set_store

COMPANY = "acme-co"
PASSWORD = "correct-horse-9"
CSRF_TOKEN = "a" * 64

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default — turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def memory_store():
    """Fresh Store per test: empty portfolio cache, zeroed rate-limit counters."""
    store = MemoryStore()
    set_store(store)
    yield store
    set_store(None)


@pytest.fixture(autouse=True)
def _reset_supplier_source():
    yield
    set_supplier_source(None)


@pytest.fixture(autouse=True)
def _no_timing_noise():
    with patch("abi.routers.auth.add_timing_noise", new_callable=AsyncMock):
        yield


def _make_user(db: Session, username: str, role: str, company_id: str | None = COMPANY) -> User:
    user = User(
        username=username,
        email=f"{username}@acme.example",
        name=username.title(),
        password_hash=hash_password(PASSWORD),
        role=role,
        company_id=company_id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def member_user(db_session: Session) -> User:
    """A standard member of the test company."""
    return _make_user(db_session, "mira", "member")


@pytest.fixture()
def approver_user(db_session: Session) -> User:
    return _make_user(db_session, "paula", "approver")


@pytest.fixture()
def admin_user(db_session: Session) -> User:
    """An admin-role user for privileged operations."""
    return _make_user(db_session, "ada", "admin")


@pytest.fixture()
def outsider_user(db_session: Session) -> User:
    """A member of a different company."""
    return _make_user(db_session, "otto", "member", company_id="other-co")


@pytest.fixture()
def credit_account(db_session: Session) -> CreditAccount:
    """Company account with 10,000 plan credits and no bonus."""
    account = credit_ledger.create_account(
        db_session, COMPANY, "starter", total_credits=10000, bonus_credits=0
    )
    db_session.commit()
    return account


def _prime_csrf(c: TestClient) -> None:
    c.cookies.set(CSRF_COOKIE, CSRF_TOKEN)
    c.headers[CSRF_HEADER] = CSRF_TOKEN


@pytest.fixture()
def anon_client(db_session: Session):
    """TestClient with only the DB overridden; auth goes through real cookies."""
    from abi.database import get_db
    from abi.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    with TestClient(app) as c:
        _prime_csrf(c)
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db_session: Session, member_user: User):
    """TestClient with require_user overridden to return member_user."""
    from abi.database import get_db
    from abi.dependencies import require_user
    from abi.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[require_user] = lambda: member_user
    with TestClient(app) as c:
        _prime_csrf(c)
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def as_user():
    """Switch the authenticated user for the running client."""
    from abi.dependencies import require_user
    from abi.main import app

    def _switch(user: User) -> None:
        app.dependency_overrides[require_user] = lambda: user

    return _switch


# ── Supplier portfolios ──────────────────────────────────────────────

_LEVEL_SCORES = {"high": 80, "medium-high": 65, "medium": 50, "low": 30, "unrated": None}


def make_supplier(
    sid: str,
    name: str,
    level: str,
    *,
    score: float | None = None,
    category: str = "Components",
    region: str = "Europe",
    country: str = "Germany",
    spend: float = 1_000_000,
) -> Supplier:
    if score is None:
        score = _LEVEL_SCORES[level]
    return Supplier(
        id=sid,
        name=name,
        category=category,
        location=Location(city="", country=country, region=region),
        spend=spend,
        srs=RiskScore(score=score, level=level),
    )


def build_portfolio(counts: dict[str, int]) -> list[Supplier]:
    """Suppliers named "<Level> Supplier N" with the given per-level counts."""
    suppliers = []
    n = 0
    for level, count in counts.items():
        for _ in range(count):
            n += 1
            suppliers.append(make_supplier(f"sup-{n:03d}", f"{level.title()} Supplier {n}", level))
    return suppliers


def use_suppliers(suppliers: list[Supplier], changes: list[RiskChange] | None = None) -> StaticSupplierSource:
    source = StaticSupplierSource(suppliers, changes)
    set_supplier_source(source)
    return source


@pytest.fixture()
def overview_portfolio() -> list[Supplier]:
    """25 suppliers: 3 high, 2 medium-high, 10 medium, 5 low, 5 unrated."""
    suppliers = build_portfolio({"high": 3, "medium-high": 2, "medium": 10, "low": 5, "unrated": 5})
    use_suppliers(suppliers)
    return suppliers


@pytest.fixture()
def unrated_portfolio() -> list[Supplier]:
    """25 suppliers, 10 of them unrated."""
    suppliers = build_portfolio({"high": 2, "medium-high": 3, "medium": 6, "low": 4, "unrated": 10})
    use_suppliers(suppliers)
    return suppliers


@pytest.fixture()
def electronics_portfolio() -> list[Supplier]:
    """Acme Corp (Electronics, 72) with two lower-risk electronics peers."""
    suppliers = [
        make_supplier("sup-acme", "Acme Corp", "medium-high", score=72, category="Electronics",
                      region="North America", country="USA"),
        make_supplier("sup-nord", "Nordic Circuits", "medium", score=41, category="Electronics"),
        make_supplier("sup-volt", "Voltline Components", "low", score=28, category="Electronics",
                      region="North America", country="USA"),
        make_supplier("sup-steel", "Steelworks GmbH", "medium", score=55, category="Metals"),
        make_supplier("sup-pack", "Andes Packaging", "high", score=81, category="Packaging",
                      region="Latin America", country="Chile"),
    ]
    use_suppliers(suppliers)
    return suppliers


@pytest.fixture()
def supplier_factory():
    """make_supplier(sid, name, level, **fields) for ad-hoc portfolios."""
    return make_supplier


@pytest.fixture()
def supplier_source():
    """use_suppliers(suppliers, changes=None) swaps in a static source."""
    return use_suppliers
