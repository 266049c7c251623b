"""
routers/credits.py — Company credit balance and ledger

Business Rules:
- Balance and transactions are scoped to the caller's company
- Direct spend needs an idempotency key; a repeated key returns the
  original entry instead of debiting twice
- Adjustments are admin-only and may target any company

Called by: main.py (router mount)
Depends on: services/credit_ledger.py
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_admin, require_company, verify_csrf
from ..models import User
from ..schemas.credits import AdjustRequest, LedgerEntryOut, SpendRequest
from ..services import credit_ledger

router = APIRouter(prefix="/api/credits", tags=["credits"])


@router.get("/balance")
async def balance(user: User = Depends(require_company), db: Session = Depends(get_db)):
    return credit_ledger.get_balance(db, user.company_id).wire()


@router.get("/transactions")
async def transactions(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(require_company),
    db: Session = Depends(get_db),
):
    account = credit_ledger.get_account(db, user.company_id)
    return credit_ledger.get_transactions(db, account, limit=limit, offset=offset).wire()


@router.post("/spend", status_code=201, dependencies=[Depends(verify_csrf)])
async def spend(payload: SpendRequest, user: User = Depends(require_company), db: Session = Depends(get_db)):
    account = credit_ledger.get_account(db, user.company_id)
    entry = credit_ledger.direct_spend(
        db,
        account,
        payload.amount,
        payload.description,
        payload.idempotency_key,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        created_by=str(user.id),
    )
    db.commit()
    return {
        "entry": LedgerEntryOut.model_validate(entry).wire(),
        "balance": credit_ledger.compute_balance(db, account).wire(),
    }


@router.post("/adjust", status_code=201, dependencies=[Depends(verify_csrf)])
async def adjust(payload: AdjustRequest, user: User = Depends(require_admin), db: Session = Depends(get_db)):
    account = credit_ledger.get_account(db, payload.company_id)
    entry = credit_ledger.adjust(db, account, payload.amount, payload.description, created_by=str(user.id))
    db.commit()
    return LedgerEntryOut.model_validate(entry).wire()
