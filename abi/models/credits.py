"""Credit models — accounts, the append-only ledger, holds.

Balances are never stored. available = total + bonus + ledger credits
− ledger debits − active holds, aggregated in services/credit_ledger.py.
LedgerEntry rows are immutable once flushed.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import relationship

from ..database import UTCDateTime, utcnow
from ..errors import InvariantViolation
from .base import Base


class CreditAccount(Base):
    __tablename__ = "credit_accounts"
    id = Column(Integer, primary_key=True)
    company_id = Column(String(64), unique=True, nullable=False, index=True)
    subscription_tier = Column(String(20), default="starter")  # starter | professional | business | enterprise
    total_credits = Column(Integer, default=0, nullable=False)  # plan allocation for the term
    bonus_credits = Column(Integer, default=0, nullable=False)
    subscription_end = Column(UTCDateTime)
    # Bumped on every ledger write; the per-account serialization point
    version = Column(Integer, default=0, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    entries = relationship("LedgerEntry", back_populates="account", order_by="LedgerEntry.id")
    holds = relationship("CreditHold", back_populates="account")

    __mapper_args__ = {"version_id_col": version}


class LedgerEntry(Base):
    __tablename__ = "credit_ledger"
    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("credit_accounts.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    entry_type = Column(String(10), nullable=False)  # credit | debit
    # allocation | spend | hold_conversion | refund | adjustment | expiry | rollover
    transaction_type = Column(String(20), nullable=False)
    description = Column(Text)
    reference_type = Column(String(30))  # upgrade_request | hold | manual
    reference_id = Column(String(64))
    idempotency_key = Column(String(128))
    created_at = Column(UTCDateTime, default=utcnow)
    created_by = Column(String(64), default="system")

    account = relationship("CreditAccount", back_populates="entries")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_amount_positive"),
        CheckConstraint("entry_type IN ('credit', 'debit')", name="ck_ledger_entry_type"),
        Index("ix_ledger_account_created", "account_id", "created_at"),
        Index("ix_ledger_reference", "reference_type", "reference_id"),
        UniqueConstraint("account_id", "idempotency_key", name="uq_ledger_idempotency"),
    )


class CreditHold(Base):
    __tablename__ = "credit_holds"
    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("credit_accounts.id"), nullable=False, index=True)
    reference_id = Column(String(64), unique=True, nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(String(20), default="active", nullable=False)  # active | converted | released
    converted_amount = Column(Integer)
    description = Column(Text)
    created_at = Column(UTCDateTime, default=utcnow)
    resolved_at = Column(UTCDateTime)

    account = relationship("CreditAccount", back_populates="holds")

    __table_args__ = (CheckConstraint("amount > 0", name="ck_hold_amount_positive"),)


@event.listens_for(LedgerEntry, "before_update")
def _ledger_is_append_only(mapper, connection, target):
    raise InvariantViolation(f"Ledger entry {target.id} is immutable")


@event.listens_for(LedgerEntry, "before_delete")
def _ledger_rows_are_kept(mapper, connection, target):
    raise InvariantViolation(f"Ledger entry {target.id} cannot be deleted")
