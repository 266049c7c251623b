"""
schemas/credits.py — Credit balance and ledger transaction views

Business Rules:
- available_credits = total + bonus + ledger_credits − ledger_debits − reserved
- available_credits and reserved_credits are never negative

Called by: services/credit_ledger.py, routers/credits.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from .base import CamelModel


class AccountBalance(CamelModel):
    account_id: int
    company_id: str
    total_credits: int = 0
    bonus_credits: int = 0
    ledger_credits: int = 0
    ledger_debits: int = 0
    reserved_credits: int = Field(0, ge=0)
    available_credits: int = Field(0, ge=0)
    subscription_tier: str = "starter"
    subscription_end: datetime | None = None
    days_remaining: int | None = None


class LedgerEntryOut(CamelModel):
    id: int
    amount: int
    entry_type: str
    transaction_type: str
    description: str | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    created_at: datetime | None = None
    created_by: str | None = None

    model_config = {"from_attributes": True}


class TransactionPage(CamelModel):
    transactions: list[LedgerEntryOut] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False


class SpendRequest(BaseModel):
    amount: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=500)
    idempotency_key: str = Field(..., min_length=1, max_length=128, alias="idempotencyKey")
    reference_type: Literal["request", "subscription", "admin", "system"] | None = Field(None, alias="referenceType")
    reference_id: str | None = Field(None, alias="referenceId")

    model_config = {"populate_by_name": True}


class AdjustRequest(BaseModel):
    company_id: str = Field(..., alias="companyId")
    amount: int
    description: str = Field(..., min_length=1, max_length=500)

    model_config = {"populate_by_name": True}
