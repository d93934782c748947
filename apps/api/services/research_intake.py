"""Validation and persistence for new market intelligence requests."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from pydantic import BaseModel

from config import require_youtube_api_key, settings
from services.research_enrichment import enrich_competitors, snapshot_payloads
from services.research_queue import enqueue_research_worker_cycle
from services.research_store import create_research_request
from services.session_token import TokenConfigurationError, decode_access_token

logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS = ("youtube", "instagram", "tiktok")
ALLOWED_TIMEFRAMES = (30, 60, 90)
MIN_COMPETITORS = 1
MAX_COMPETITORS = 5
MAX_COMPETITOR_URL_LENGTH = 2000

COMPETITOR_URL_PATTERN = re.compile(
    r"^https://"
    r"(?:[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+[A-Za-z]{2,}"
    r"(?::\d{1,5})?"
    r"(?:/[^\s]*)?$"
)


class ResearchRequestCreate(BaseModel):
    """Raw intake body; field checks happen in ``validate_intake`` so they map to 400s."""

    platform: Any = None
    timeframe_days: Any = None
    competitors: Any = None
    access_token: Any = None
    client_id: Any = None


class ValidatedIntake(BaseModel):
    platform: str
    timeframe_days: int
    competitors: List[str]
    client_id: Optional[str] = None


def is_valid_competitor_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    url = value.strip()
    if not url or len(url) > MAX_COMPETITOR_URL_LENGTH:
        return False
    return COMPETITOR_URL_PATTERN.match(url) is not None


def validate_platform(value: Any) -> str:
    if not isinstance(value, str) or value.strip().lower() not in SUPPORTED_PLATFORMS:
        raise HTTPException(
            status_code=400,
            detail=f"platform must be one of: {', '.join(SUPPORTED_PLATFORMS)}",
        )
    return value.strip().lower()


def validate_timeframe(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value not in ALLOWED_TIMEFRAMES:
        raise HTTPException(
            status_code=400,
            detail=f"timeframe_days must be one of: {', '.join(str(days) for days in ALLOWED_TIMEFRAMES)}",
        )
    return value


def validate_competitors(value: Any) -> List[str]:
    if not isinstance(value, list) or not (MIN_COMPETITORS <= len(value) <= MAX_COMPETITORS):
        raise HTTPException(
            status_code=400,
            detail=f"competitors must be a list of {MIN_COMPETITORS} to {MAX_COMPETITORS} URLs",
        )
    for index, url in enumerate(value):
        if not is_valid_competitor_url(url):
            raise HTTPException(
                status_code=400,
                detail=f"competitors[{index}] must be a valid https:// URL",
            )
    return [url.strip() for url in value]


def validate_client_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail="client_id must be a string")
    return value.strip() or None


def validate_intake(payload: ResearchRequestCreate) -> ValidatedIntake:
    """Check every intake field, raising a 400 that names the first bad one."""
    return ValidatedIntake(
        platform=validate_platform(payload.platform),
        timeframe_days=validate_timeframe(payload.timeframe_days),
        competitors=validate_competitors(payload.competitors),
        client_id=validate_client_id(payload.client_id),
    )


def resolve_token(body_token: Any, bearer_token: Optional[str]) -> str:
    token = body_token if isinstance(body_token, str) and body_token.strip() else bearer_token
    if not token or not str(token).strip():
        raise HTTPException(status_code=401, detail="Missing access token.")
    return str(token).strip()


def resolve_user_id(token: str) -> str:
    """Map an access token to the user id it was issued for."""
    try:
        payload = decode_access_token(token)
    except TokenConfigurationError as exc:
        logger.error("Research intake misconfigured: %s", exc)
        raise HTTPException(status_code=500, detail="Server configuration error.") from exc
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return str(payload["sub"]).strip()


async def _competitor_entries(platform: str, urls: List[str]) -> List[Dict[str, Any]]:
    if not settings.RESEARCH_ENRICH_AT_INTAKE:
        return [{"url": url} for url in urls]

    if platform == "youtube":
        try:
            require_youtube_api_key()
        except ValueError as exc:
            logger.error("Research intake misconfigured: %s", exc)
            raise HTTPException(status_code=500, detail="Server configuration error.") from exc

    return snapshot_payloads(await enrich_competitors(platform, urls))


def trigger_worker(request_id: str) -> bool:
    """Best-effort wake-up of one worker cycle; the request stays pending on failure."""
    try:
        enqueue_research_worker_cycle(request_id)
        return True
    except Exception as exc:
        logger.warning("Could not enqueue research worker for request %s: %s", request_id, exc)
        return False


async def submit_research_request(
    payload: ResearchRequestCreate,
    bearer_token: Optional[str] = None,
) -> str:
    """Authenticate, validate and persist an intake payload, returning the request id."""
    user_id = resolve_user_id(resolve_token(payload.access_token, bearer_token))
    intake = validate_intake(payload)
    competitors = await _competitor_entries(intake.platform, intake.competitors)

    try:
        request = await create_research_request(
            user_id=user_id,
            platform=intake.platform,
            timeframe_days=intake.timeframe_days,
            competitors=competitors,
            client_id=intake.client_id,
        )
    except Exception as exc:
        logger.exception("Could not persist research request for user %s", user_id)
        raise HTTPException(status_code=500, detail="Could not create research request.") from exc

    logger.info("Created research request %s (%s, %s competitors)", request.id, intake.platform, len(competitors))
    trigger_worker(request.id)
    return request.id
