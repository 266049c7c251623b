"""Interest model — topics a user follows, with managed-category coverage."""

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String

from ..database import UTCDateTime, utcnow
from .base import Base


class Interest(Base):
    __tablename__ = "interests"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    text = Column(String(200), nullable=False)
    canonical_key = Column(String(300))  # NULL only on legacy rows
    source = Column(String(20), default="manual")  # manual | chat_inferred | onboarding | imported
    region = Column(String(50))
    grade = Column(String(50))
    coverage = Column(JSON)  # {level, matchedCategory?, reason?}
    conversation_id = Column(String(64))
    saved_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (Index("ix_interests_user_key", "user_id", "canonical_key"),)
