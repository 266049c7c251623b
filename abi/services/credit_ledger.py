"""
credit_ledger.py — Append-only credit ledger with holds

Every balance change is a new LedgerEntry; nothing is ever updated or
deleted. Holds earmark credits for pending requests without spending them.

Business Rules:
- available = total + bonus + Σcredits − Σdebits − Σactive holds, never < 0
- Writes for one account are serialized: the account row is locked
  (SELECT … FOR UPDATE) and its version column is checked on update
- reserve: one hold per reference id; repeating the same amount returns
  the existing hold, any other amount is a conflict
- convert_hold: debits the full hold as hold_conversion and refunds the
  unused part; repeating with the same amount is a no-op, a different
  amount or a released hold is a conflict
- release_hold: no-op when already released
- direct_spend is idempotent per idempotency key
- Insufficient credits → ConflictError before any write; a write that
  would still leave available < 0 → InvariantViolation and rollback

Callers commit. Functions here only flush.

Called by: services/approval_service.py, routers/credits.py, scheduler.py
Depends on: models/credits.py, schemas/credits.py
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..database import utcnow
from ..errors import ConflictError, InvariantViolation, NotFoundError, ValidationError
from ..models import CreditAccount, CreditHold, LedgerEntry
from ..schemas.credits import AccountBalance, LedgerEntryOut, TransactionPage

log = logging.getLogger("abi.ledger")

# base, bonus, rollover percent of unused credits at renewal
TIERS = {
    "starter": {"base": 25000, "bonus": 0, "rollover_pct": 0},
    "professional": {"base": 50000, "bonus": 2500, "rollover_pct": 10},
    "business": {"base": 75000, "bonus": 5000, "rollover_pct": 20},
    "enterprise": {"base": 100000, "bonus": 10000, "rollover_pct": 25},
}


# ── Accounts ─────────────────────────────────────────────────────────


def get_account(db: Session, company_id: str) -> CreditAccount:
    account = db.execute(
        select(CreditAccount).where(CreditAccount.company_id == company_id)
    ).scalar_one_or_none()
    if account is None:
        raise NotFoundError(f"No credit account for company {company_id}")
    return account


def create_account(
    db: Session,
    company_id: str,
    tier: str = "starter",
    *,
    total_credits: int | None = None,
    bonus_credits: int | None = None,
    term_days: int = 365,
) -> CreditAccount:
    if tier not in TIERS:
        raise ValidationError(f"Unknown subscription tier: {tier}")
    plan = TIERS[tier]
    account = CreditAccount(
        company_id=company_id,
        subscription_tier=tier,
        total_credits=plan["base"] if total_credits is None else total_credits,
        bonus_credits=plan["bonus"] if bonus_credits is None else bonus_credits,
        subscription_end=utcnow() + timedelta(days=term_days),
    )
    db.add(account)
    db.flush()
    log.info("Credit account created for %s (%s)", company_id, tier)
    return account


def _lock(db: Session, account_id: int) -> CreditAccount:
    return db.execute(
        select(CreditAccount).where(CreditAccount.id == account_id).with_for_update()
    ).scalar_one()


def _flush(db: Session) -> None:
    try:
        db.flush()
    except StaleDataError as e:
        db.rollback()
        raise ConflictError("Credit account changed concurrently, retry") from e


# ── Balance ──────────────────────────────────────────────────────────


def _sums(db: Session, account_id: int) -> tuple[int, int, int]:
    rows = db.execute(
        select(LedgerEntry.entry_type, func.coalesce(func.sum(LedgerEntry.amount), 0))
        .where(LedgerEntry.account_id == account_id)
        .group_by(LedgerEntry.entry_type)
    ).all()
    totals = {entry_type: int(total) for entry_type, total in rows}
    reserved = db.execute(
        select(func.coalesce(func.sum(CreditHold.amount), 0)).where(
            CreditHold.account_id == account_id, CreditHold.status == "active"
        )
    ).scalar_one()
    return totals.get("credit", 0), totals.get("debit", 0), int(reserved)


def _available(db: Session, account: CreditAccount) -> int:
    credits, debits, reserved = _sums(db, account.id)
    return account.total_credits + account.bonus_credits + credits - debits - reserved


def compute_balance(db: Session, account: CreditAccount, now: datetime | None = None) -> AccountBalance:
    credits, debits, reserved = _sums(db, account.id)
    available = account.total_credits + account.bonus_credits + credits - debits - reserved
    if available < 0:
        log.error("Account %s has negative available balance %d", account.id, available)
        raise InvariantViolation(f"Account {account.id} available balance is negative")
    days = None
    if account.subscription_end is not None:
        days = max(0, (account.subscription_end - (now or utcnow())).days)
    return AccountBalance(
        account_id=account.id,
        company_id=account.company_id,
        total_credits=account.total_credits,
        bonus_credits=account.bonus_credits,
        ledger_credits=credits,
        ledger_debits=debits,
        reserved_credits=reserved,
        available_credits=available,
        subscription_tier=account.subscription_tier,
        subscription_end=account.subscription_end,
        days_remaining=days,
    )


def get_balance(db: Session, company_id: str) -> AccountBalance:
    return compute_balance(db, get_account(db, company_id))


# ── Writes ───────────────────────────────────────────────────────────


def _require_available(db: Session, account: CreditAccount, amount: int) -> None:
    available = _available(db, account)
    if amount > available:
        raise ConflictError(f"Insufficient credits: {amount} requested, {available} available")


def _check_invariant(db: Session, account: CreditAccount) -> None:
    available = _available(db, account)
    if available < 0:
        log.error("Ledger write would leave account %s at %d; aborting", account.id, available)
        db.rollback()
        raise InvariantViolation("Ledger write would make available credits negative")


def _append(
    db: Session,
    account: CreditAccount,
    entry_type: str,
    transaction_type: str,
    amount: int,
    *,
    description: str | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
    created_by: str = "system",
) -> LedgerEntry:
    if amount <= 0:
        raise ValidationError("Ledger amounts must be positive")
    entry = LedgerEntry(
        account_id=account.id,
        amount=amount,
        entry_type=entry_type,
        transaction_type=transaction_type,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
        created_by=created_by,
    )
    db.add(entry)
    # Touching the account bumps its version in the same flush
    account.updated_at = utcnow()
    return entry


def _find_by_key(db: Session, account_id: int, key: str) -> LedgerEntry | None:
    return db.execute(
        select(LedgerEntry).where(
            LedgerEntry.account_id == account_id, LedgerEntry.idempotency_key == key
        )
    ).scalar_one_or_none()


def allocate(
    db: Session, account: CreditAccount, amount: int, description: str = "Credit top-up", *, created_by: str = "system"
) -> LedgerEntry:
    account = _lock(db, account.id)
    entry = _append(db, account, "credit", "allocation", amount, description=description, created_by=created_by)
    _flush(db)
    log.info("Allocated %d credits to account %s", amount, account.id)
    return entry


def reserve(
    db: Session, account: CreditAccount, amount: int, reference_id: str, description: str | None = None
) -> CreditHold:
    if amount <= 0:
        raise ValidationError("Hold amount must be positive")
    account = _lock(db, account.id)

    existing = db.execute(
        select(CreditHold).where(CreditHold.reference_id == reference_id)
    ).scalar_one_or_none()
    if existing is not None:
        if existing.status == "active" and existing.amount == amount and existing.account_id == account.id:
            return existing
        raise ConflictError(f"Reference {reference_id} already has a hold")

    _require_available(db, account, amount)
    hold = CreditHold(account_id=account.id, reference_id=reference_id, amount=amount, description=description)
    db.add(hold)
    account.updated_at = utcnow()
    _flush(db)
    _check_invariant(db, account)
    log.info("Reserved %d credits on account %s for %s", amount, account.id, reference_id)
    return hold


def _get_hold(db: Session, reference_id: str) -> CreditHold:
    hold = db.execute(select(CreditHold).where(CreditHold.reference_id == reference_id)).scalar_one_or_none()
    if hold is None:
        raise NotFoundError(f"No hold for reference {reference_id}")
    return hold


def convert_hold(db: Session, reference_id: str, actual_amount: int, *, created_by: str = "system") -> CreditHold:
    hold = _get_hold(db, reference_id)
    account = _lock(db, hold.account_id)
    db.refresh(hold)

    if hold.status == "converted":
        if hold.converted_amount == actual_amount:
            return hold
        raise ConflictError(f"Hold {reference_id} was already converted for {hold.converted_amount}")
    if hold.status != "active":
        raise ConflictError(f"Hold {reference_id} is {hold.status} and cannot be converted")
    if actual_amount < 0 or actual_amount > hold.amount:
        raise ValidationError(f"Actual amount must be between 0 and the held {hold.amount}")

    hold.status = "converted"
    hold.converted_amount = actual_amount
    hold.resolved_at = utcnow()
    _append(
        db,
        account,
        "debit",
        "hold_conversion",
        hold.amount,
        description=hold.description or "Hold converted",
        reference_type="hold",
        reference_id=reference_id,
        created_by=created_by,
    )
    refund = hold.amount - actual_amount
    if refund > 0:
        _append(
            db,
            account,
            "credit",
            "refund",
            refund,
            description=f"Unused portion of hold {reference_id}",
            reference_type="hold",
            reference_id=reference_id,
            created_by=created_by,
        )
    _flush(db)
    _check_invariant(db, account)
    log.info("Converted hold %s: %d spent, %d refunded", reference_id, actual_amount, refund)
    return hold


def release_hold(db: Session, reference_id: str, status: str = "released") -> CreditHold:
    hold = _get_hold(db, reference_id)
    account = _lock(db, hold.account_id)
    db.refresh(hold)
    if hold.status in ("released", "expired"):
        return hold
    if hold.status == "converted":
        raise ConflictError(f"Hold {reference_id} was already converted")
    hold.status = status
    hold.resolved_at = utcnow()
    account.updated_at = utcnow()
    _flush(db)
    log.info("Released hold %s (%d credits)", reference_id, hold.amount)
    return hold


def direct_spend(
    db: Session,
    account: CreditAccount,
    amount: int,
    description: str,
    idempotency_key: str,
    *,
    reference_type: str | None = None,
    reference_id: str | None = None,
    created_by: str = "system",
) -> LedgerEntry:
    account = _lock(db, account.id)
    existing = _find_by_key(db, account.id, idempotency_key)
    if existing is not None:
        return existing
    _require_available(db, account, amount)
    entry = _append(
        db,
        account,
        "debit",
        "spend",
        amount,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
        created_by=created_by,
    )
    _flush(db)
    _check_invariant(db, account)
    return entry


def adjust(db: Session, account: CreditAccount, amount: int, description: str, *, created_by: str = "admin") -> LedgerEntry:
    """Signed manual adjustment: positive credits, negative debits."""
    if amount == 0:
        raise ValidationError("Adjustment amount must be non-zero")
    if not description or not description.strip():
        raise ValidationError("Adjustments require a description")
    account = _lock(db, account.id)
    if amount < 0:
        _require_available(db, account, -amount)
    entry = _append(
        db,
        account,
        "credit" if amount > 0 else "debit",
        "adjustment",
        abs(amount),
        description=description,
        reference_type="admin",
        created_by=created_by,
    )
    _flush(db)
    _check_invariant(db, account)
    log.info("Adjusted account %s by %+d: %s", account.id, amount, description)
    return entry


def expire_credits(db: Session, account: CreditAccount, now: datetime | None = None) -> LedgerEntry | None:
    """Expire whatever is still available once the term has ended."""
    now = now or utcnow()
    account = _lock(db, account.id)
    if account.subscription_end is None or now < account.subscription_end:
        return None
    key = f"expiry:{account.subscription_end.date().isoformat()}"
    if _find_by_key(db, account.id, key) is not None:
        return None
    available = _available(db, account)
    if available <= 0:
        return None
    entry = _append(
        db,
        account,
        "debit",
        "expiry",
        available,
        description="Unused credits expired at term end",
        reference_type="subscription",
        idempotency_key=key,
    )
    _flush(db)
    log.info("Expired %d credits on account %s", available, account.id)
    return entry


def rollover(db: Session, account: CreditAccount, new_term_end: datetime) -> list[LedgerEntry]:
    """Renew the term: expire unused credits, carry the tier's share, allocate the new term."""
    account = _lock(db, account.id)
    key = f"rollover:{new_term_end.date().isoformat()}"
    if _find_by_key(db, account.id, key) is not None:
        return []

    plan = TIERS.get(account.subscription_tier, TIERS["starter"])
    available = _available(db, account)
    carry = available * plan["rollover_pct"] // 100
    entries = []
    if available > 0:
        entries.append(_append(
            db, account, "debit", "expiry", available,
            description="Unused credits expired at renewal", reference_type="subscription",
        ))
    if carry > 0:
        entries.append(_append(
            db, account, "credit", "rollover", carry,
            description=f"{plan['rollover_pct']}% of unused credits carried over", reference_type="subscription",
        ))
    entries.append(_append(
        db, account, "credit", "allocation", account.total_credits + account.bonus_credits,
        description="New term allocation", reference_type="subscription", idempotency_key=key,
    ))
    account.subscription_end = new_term_end
    _flush(db)
    _check_invariant(db, account)
    log.info("Rolled over account %s: %d unused, %d carried", account.id, available, carry)
    return entries


# ── Reads ────────────────────────────────────────────────────────────


def get_transactions(db: Session, account: CreditAccount, limit: int = 20, offset: int = 0) -> TransactionPage:
    limit = max(1, min(limit, 100))
    offset = max(0, offset)
    total = db.execute(
        select(func.count(LedgerEntry.id)).where(LedgerEntry.account_id == account.id)
    ).scalar_one()
    rows = db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.account_id == account.id)
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        .limit(limit)
        .offset(offset)
    ).scalars().all()
    return TransactionPage(
        transactions=[LedgerEntryOut.model_validate(r) for r in rows],
        total=total,
        has_more=offset + len(rows) < total,
    )
