"""
routers/chat.py — The conversational endpoint

Business Rules:
- POST /chat answers one turn; downstream failures still return 200 with
  provider "local"
- Malformed bodies → 400 through the validation handler
- Per-IP limit from CHAT_RATE_LIMIT
- Signed-in callers get a suggestedInterest when the turn names a
  commodity they do not already follow

Called by: main.py (router mount)
Depends on: services/chat_service.py, services/interest_service.py
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..dependencies import optional_user
from ..models import Interest, User
from ..rate_limit import limiter
from ..schemas.chat import ChatRequest
from ..services import interest_service
from ..services.chat_service import handle_chat

router = APIRouter(tags=["chat"])


def _suggest_interest(db: Session, user: User, query: str, narrative: str) -> dict | None:
    context = interest_service.extract_interest_context(query, narrative)
    if not context:
        return None
    existing = db.query(Interest).filter(Interest.user_id == user.id).all()
    if len(existing) >= interest_service.MAX_INTERESTS:
        return None
    if interest_service.is_duplicate(existing, context["text"], context.get("region"), context.get("grade")):
        return None
    return {**context, "source": "chat_inferred"}


@router.post("/chat")
@limiter.limit(settings.chat_rate_limit)
async def chat(
    payload: ChatRequest,
    request: Request,
    user: User | None = Depends(optional_user),
    db: Session = Depends(get_db),
):
    response = await handle_chat(payload.query, payload.history, web_enabled=payload.web_enabled)
    if user is not None:
        suggestion = _suggest_interest(db, user, payload.query, response.get("narrative", ""))
        if suggestion:
            response["suggestedInterest"] = suggestion
    return response
