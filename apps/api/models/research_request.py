"""Research request model for asynchronous market intelligence jobs."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, String, DateTime, Integer, JSON

from database import Base


RESEARCH_STATUS_PENDING = "pending"
RESEARCH_STATUS_PROCESSING = "processing"
RESEARCH_STATUS_COMPLETED = "completed"
RESEARCH_STATUS_FAILED = "failed"

TERMINAL_STATUSES = (RESEARCH_STATUS_COMPLETED, RESEARCH_STATUS_FAILED)

ALLOWED_TRANSITIONS = {
    RESEARCH_STATUS_PENDING: (RESEARCH_STATUS_PROCESSING,),
    RESEARCH_STATUS_PROCESSING: (RESEARCH_STATUS_COMPLETED, RESEARCH_STATUS_FAILED),
    RESEARCH_STATUS_COMPLETED: (),
    RESEARCH_STATUS_FAILED: (),
}


def can_transition(current: str, target: str) -> bool:
    """Return True when ``current -> target`` is a valid lifecycle move."""
    return target in ALLOWED_TRANSITIONS.get(current, ())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResearchRequest(Base):
    """User-submitted competitor analysis job."""

    __tablename__ = "research_requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    client_id = Column(String, nullable=True, index=True)
    platform = Column(String, nullable=False)  # youtube, instagram, tiktok
    timeframe_days = Column(Integer, nullable=False)  # 30, 60, 90
    competitors = Column(JSON, nullable=False)
    status = Column(String, nullable=False, default=RESEARCH_STATUS_PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    heartbeat_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
