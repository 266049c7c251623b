"""Auth models — users, sessions, invites."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from ..database import UTCDateTime, utcnow
from .base import Base


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255))
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default="member")  # member | approver | admin | system
    company_id = Column(String(64), index=True)
    is_active = Column(Boolean, default=True)
    email_verified = Column(Boolean, default=False)
    email_verification_token = Column(String(64), index=True)
    last_login_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow)

    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")


class UserSession(Base):
    __tablename__ = "user_sessions"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    ip_address = Column(String(64))
    user_agent = Column(String(255))
    created_at = Column(UTCDateTime, default=utcnow)
    expires_at = Column(UTCDateTime, nullable=False)
    revoked_at = Column(UTCDateTime)

    user = relationship("User", back_populates="sessions")


class Invite(Base):
    __tablename__ = "invites"
    id = Column(Integer, primary_key=True)
    code = Column(String(32), unique=True, nullable=False, index=True)
    email = Column(String(255))  # optional: restrict to one address
    company_id = Column(String(64))
    role = Column(String(20), default="member")
    created_by_id = Column(Integer, ForeignKey("users.id"))
    max_uses = Column(Integer, default=1)
    use_count = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    expires_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow)
