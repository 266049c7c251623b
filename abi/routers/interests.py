"""
routers/interests.py — The caller's followed topics

Business Rules:
- Scoped to the signed-in user; other users' ids 404
- Duplicate or over-cap adds → 400 with a stable message
- Coverage is recomputed on every add and edit

Called by: main.py (router mount)
Depends on: services/interest_service.py
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_user, verify_csrf
from ..models import Interest, User
from ..schemas.interests import InterestCreate, InterestOut, InterestUpdate
from ..services import interest_service

router = APIRouter(prefix="/api/interests", tags=["interests"])


def _out(interest: Interest) -> dict:
    return InterestOut.model_validate(interest).wire()


@router.get("")
async def list_interests(user: User = Depends(require_user), db: Session = Depends(get_db)):
    items = interest_service.list_interests(db, user)
    return {"interests": [_out(i) for i in items], "max": interest_service.MAX_INTERESTS}


@router.post("", status_code=201, dependencies=[Depends(verify_csrf)])
async def add_interest(payload: InterestCreate, user: User = Depends(require_user), db: Session = Depends(get_db)):
    interest = interest_service.add_interest(
        db,
        user,
        payload.text,
        region=payload.region,
        grade=payload.grade,
        source=payload.source,
        conversation_id=payload.conversation_id,
    )
    return _out(interest)


@router.patch("/{interest_id}", dependencies=[Depends(verify_csrf)])
async def update_interest(
    interest_id: int,
    payload: InterestUpdate,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    interest = interest_service.update_interest(
        db, user, interest_id, text=payload.text, region=payload.region, grade=payload.grade
    )
    return _out(interest)


@router.delete("/{interest_id}", dependencies=[Depends(verify_csrf)])
async def delete_interest(interest_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)):
    interest_service.delete_interest(db, user, interest_id)
    return {"ok": True}
