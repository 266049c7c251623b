"""Approval models — upgrade requests, their event log, routing rules."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text, event
from sqlalchemy.orm import relationship

from ..database import UTCDateTime, utcnow
from ..errors import InvariantViolation
from .base import Base


class UpgradeRequest(Base):
    __tablename__ = "upgrade_requests"
    id = Column(Integer, primary_key=True)
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    approver_id = Column(Integer, ForeignKey("users.id"))
    company_id = Column(String(64), nullable=False, index=True)
    # analyst_call | deep_research | report_upgrade | expert_session | custom
    request_type = Column(String(30), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    context = Column(JSON)
    estimated_credits = Column(Integer, nullable=False)
    actual_credits = Column(Integer)
    # draft | pending | approved | denied | cancelled | expired | fulfilled
    status = Column(String(20), default="draft", nullable=False)
    required_role = Column(String(20))  # approver | admin, from the matching rule
    hold_reference_id = Column(String(64))
    approval_note = Column(Text)
    denial_reason = Column(Text)
    created_at = Column(UTCDateTime, default=utcnow)
    submitted_at = Column(UTCDateTime)
    expires_at = Column(UTCDateTime)
    escalated_at = Column(UTCDateTime)
    decided_at = Column(UTCDateTime)
    fulfilled_at = Column(UTCDateTime)

    requester = relationship("User", foreign_keys=[requester_id])
    approver = relationship("User", foreign_keys=[approver_id])
    events = relationship(
        "ApprovalEvent", back_populates="request", order_by="ApprovalEvent.id", cascade="all"
    )

    __table_args__ = (Index("ix_requests_status_expires", "status", "expires_at"),)


class ApprovalEvent(Base):
    __tablename__ = "approval_events"
    id = Column(Integer, primary_key=True)
    request_id = Column(Integer, ForeignKey("upgrade_requests.id"), nullable=False, index=True)
    # created | submitted | approved | denied | cancelled | expired | escalated | fulfilled
    event_type = Column(String(20), nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id"))  # NULL = system
    from_status = Column(String(20))
    to_status = Column(String(20))
    note = Column(Text)
    created_at = Column(UTCDateTime, default=utcnow)

    request = relationship("UpgradeRequest", back_populates="events")


class ApprovalRule(Base):
    __tablename__ = "approval_rules"
    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    min_credits = Column(Integer, default=0, nullable=False)
    max_credits = Column(Integer)  # NULL = no upper bound
    auto_approve = Column(Boolean, default=False)
    approver_role = Column(String(20))  # approver | admin
    ttl_hours = Column(Integer)
    priority = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)


@event.listens_for(ApprovalEvent, "before_update")
def _events_are_immutable(mapper, connection, target):
    raise InvariantViolation(f"Approval event {target.id} is immutable")
