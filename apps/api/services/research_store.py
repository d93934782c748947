"""Research request persistence and lifecycle transitions.

The request row is the only contended resource. It changes only through
conditional updates keyed on the current status, so two workers racing on
the same request cannot both claim it, and a terminal row never regresses.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, or_, and_, update
from sqlalchemy.future import select

from database import async_session_maker
from models.research_request import (
    RESEARCH_STATUS_COMPLETED,
    RESEARCH_STATUS_FAILED,
    RESEARCH_STATUS_PENDING,
    RESEARCH_STATUS_PROCESSING,
    ResearchRequest,
    can_transition,
)
from models.research_result import ResearchResult
from services.research_schemas import ResearchReport

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_CHARS = 1000
STALLED_CLAIM_MESSAGE = "Research processing was interrupted (claim timed out). Submit the request again."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def create_research_request(
    *,
    user_id: str,
    platform: str,
    timeframe_days: int,
    competitors: List[Dict[str, Any]],
    client_id: Optional[str] = None,
) -> ResearchRequest:
    """Persist a new pending request."""
    async with async_session_maker() as db:
        request = ResearchRequest(
            user_id=user_id,
            platform=platform,
            timeframe_days=timeframe_days,
            competitors=competitors,
            client_id=client_id,
            status=RESEARCH_STATUS_PENDING,
            attempts=0,
        )
        db.add(request)
        await db.commit()
        await db.refresh(request)
        return request


async def get_research_request(request_id: str) -> Optional[ResearchRequest]:
    async with async_session_maker() as db:
        result = await db.execute(select(ResearchRequest).where(ResearchRequest.id == request_id))
        return result.scalar_one_or_none()


async def get_research_result(request_id: str) -> Optional[ResearchResult]:
    async with async_session_maker() as db:
        result = await db.execute(select(ResearchResult).where(ResearchResult.request_id == request_id))
        return result.scalar_one_or_none()


async def fetch_next_pending_request() -> Optional[ResearchRequest]:
    """Oldest pending request, or None when the queue is empty."""
    async with async_session_maker() as db:
        result = await db.execute(
            select(ResearchRequest)
            .where(ResearchRequest.status == RESEARCH_STATUS_PENDING)
            .order_by(ResearchRequest.created_at.asc(), ResearchRequest.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()


async def _conditional_transition(
    request_id: str,
    expected_status: str,
    target_status: str,
    values: Dict[str, Any],
) -> bool:
    if not can_transition(expected_status, target_status):
        raise ValueError(f"Invalid research status transition {expected_status} -> {target_status}")
    async with async_session_maker() as db:
        result = await db.execute(
            update(ResearchRequest)
            .where(
                ResearchRequest.id == request_id,
                ResearchRequest.status == expected_status,
            )
            .values(status=target_status, **values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1


async def try_claim_request(request_id: str, expected_status: str = RESEARCH_STATUS_PENDING) -> bool:
    """Atomically move a request to processing.

    Returns False when another invocation already claimed it or it is no
    longer in ``expected_status``.
    """
    now = _utcnow()
    claimed = await _conditional_transition(
        request_id,
        expected_status,
        RESEARCH_STATUS_PROCESSING,
        {
            "started_at": now,
            "heartbeat_at": now,
            "error_message": None,
            "attempts": ResearchRequest.attempts + 1,
        },
    )
    if claimed:
        logger.info("Claimed research request %s", request_id)
    return claimed


async def touch_heartbeat(request_id: str) -> bool:
    """Record progress for a claimed request so the watchdog leaves it alone."""
    async with async_session_maker() as db:
        result = await db.execute(
            update(ResearchRequest)
            .where(
                ResearchRequest.id == request_id,
                ResearchRequest.status == RESEARCH_STATUS_PROCESSING,
            )
            .values(heartbeat_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1


async def _write_result(db, request_id: str, report: ResearchReport) -> ResearchResult:
    await db.execute(delete(ResearchResult).where(ResearchResult.request_id == request_id))
    row = ResearchResult(request_id=request_id, **report.to_result_columns())
    db.add(row)
    return row


async def replace_result(request_id: str, report: ResearchReport) -> ResearchResult:
    """Delete any previous result for the request and insert the new one.

    Both statements share one transaction, so a re-run never leaves fields
    from an earlier attempt merged into the new report.
    """
    async with async_session_maker() as db:
        row = await _write_result(db, request_id, report)
        await db.commit()
        await db.refresh(row)
        return row


async def complete_with_result(request_id: str, report: ResearchReport) -> bool:
    """Store the report and move the request to completed in one transaction.

    Returns False and writes nothing when the request already left
    ``processing`` (for example the watchdog failed an expired claim).
    """
    async with async_session_maker() as db:
        result = await db.execute(
            update(ResearchRequest)
            .where(
                ResearchRequest.id == request_id,
                ResearchRequest.status == RESEARCH_STATUS_PROCESSING,
            )
            .values(status=RESEARCH_STATUS_COMPLETED, completed_at=_utcnow(), error_message=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            logger.warning("Research request %s left processing before its result was stored", request_id)
            return False
        await _write_result(db, request_id, report)
        await db.commit()
        return True


async def mark_completed(request_id: str) -> bool:
    return await _conditional_transition(
        request_id,
        RESEARCH_STATUS_PROCESSING,
        RESEARCH_STATUS_COMPLETED,
        {"completed_at": _utcnow(), "error_message": None},
    )


async def mark_failed(request_id: str, error_message: str) -> bool:
    return await _conditional_transition(
        request_id,
        RESEARCH_STATUS_PROCESSING,
        RESEARCH_STATUS_FAILED,
        {
            "completed_at": _utcnow(),
            "error_message": (error_message or "Unknown error")[:MAX_ERROR_MESSAGE_CHARS],
        },
    )


async def recover_stalled_requests(timeout_minutes: int) -> int:
    """Fail processing requests whose claim has gone quiet past the timeout."""
    cutoff = _utcnow() - timedelta(minutes=max(timeout_minutes, 1))
    last_seen = func.coalesce(ResearchRequest.heartbeat_at, ResearchRequest.started_at)
    async with async_session_maker() as db:
        result = await db.execute(
            update(ResearchRequest)
            .where(
                ResearchRequest.status == RESEARCH_STATUS_PROCESSING,
                or_(
                    last_seen < cutoff,
                    and_(ResearchRequest.heartbeat_at.is_(None), ResearchRequest.started_at.is_(None)),
                ),
            )
            .values(
                status=RESEARCH_STATUS_FAILED,
                error_message=STALLED_CLAIM_MESSAGE,
                completed_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount or 0


async def list_research_requests(user_id: str, limit: Optional[int] = None) -> List[ResearchRequest]:
    """Requests of a user, newest first."""
    async with async_session_maker() as db:
        query = (
            select(ResearchRequest)
            .where(ResearchRequest.user_id == user_id)
            .order_by(ResearchRequest.created_at.desc(), ResearchRequest.id.desc())
        )
        if limit:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())
