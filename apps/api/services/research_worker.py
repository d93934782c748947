"""Market intelligence worker: one dequeue-claim-process cycle per invocation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import require_openai_api_key, settings
from database import engine
from models.research_request import ResearchRequest
from services.llm_client import ResearchLLMClient
from services.research_enrichment import (
    attach_transcripts,
    enrich_competitors,
    has_any_signal,
    top_videos,
)
from services.research_prompts import (
    build_general_strategy_prompt,
    build_market_overview_prompt,
    build_video_deep_dive_prompt,
)
from services.research_schemas import ResearchReport
from services.research_store import (
    complete_with_result,
    fetch_next_pending_request,
    mark_failed,
    touch_heartbeat,
    try_claim_request,
)

logger = logging.getLogger(__name__)

NO_PENDING_MESSAGE = "No pending requests"
NOTHING_TO_CLAIM_MESSAGE = "Nothing to claim"
OK_MESSAGE = "OK"


@dataclass(frozen=True)
class WorkerCycleResult:
    status_code: int
    message: str
    request_id: Optional[str] = None


def _expect_object(value: Any, label: str) -> Dict[str, Any]:
    if isinstance(value, list) and len(value) == 1 and isinstance(value[0], dict):
        value = value[0]
    if not isinstance(value, dict):
        raise ValueError(f"{label} response must be a JSON object, got {type(value).__name__}")
    return value


def _expect_array(value: Any) -> List[Any]:
    if isinstance(value, dict):
        for key in ("videos", "video_analyses", "items"):
            if isinstance(value.get(key), list):
                return value[key]
        return [value]
    if not isinstance(value, list):
        raise ValueError(f"Video analysis response must be a JSON array, got {type(value).__name__}")
    return value


async def execute_research_request(
    request: ResearchRequest,
    llm: ResearchLLMClient,
) -> ResearchReport:
    """Enrich, prompt and decode a claimed request into a validated report."""
    platform = request.platform
    competitors = await enrich_competitors(platform, request.competitors or [])
    signal = has_any_signal(competitors)
    if not signal:
        logger.warning("No competitor yielded data for request %s; using placeholder narrative", request.id)
    await touch_heartbeat(request.id)

    overview = _expect_object(
        await llm.complete_and_parse(
            build_market_overview_prompt(platform, request.timeframe_days, competitors, has_signal=signal),
            settings.LLM_MAX_TOKENS,
        ),
        "Market overview",
    )
    await touch_heartbeat(request.id)

    strategy = _expect_object(
        await llm.complete_and_parse(
            build_general_strategy_prompt(platform, request.timeframe_days, competitors, has_signal=signal),
            settings.LLM_MAX_TOKENS,
        ),
        "General strategy",
    )
    await touch_heartbeat(request.id)

    videos = await attach_transcripts(platform, top_videos(competitors))
    video_prompt = build_video_deep_dive_prompt(platform, videos)
    video_analyses: Optional[List[Any]] = None
    if video_prompt is not None:
        video_analyses = _expect_array(
            await llm.complete_and_parse(video_prompt, settings.LLM_VIDEO_MAX_TOKENS)
        )
        await touch_heartbeat(request.id)

    return ResearchReport.model_validate({
        **overview,
        **strategy,
        "video_analyses": video_analyses,
    })


async def run_research_cycle(llm: Optional[ResearchLLMClient] = None) -> WorkerCycleResult:
    """Attempt exactly one dequeue-claim-process cycle."""
    try:
        require_openai_api_key()
    except ValueError as exc:
        logger.error("Research worker misconfigured: %s", exc)
        return WorkerCycleResult(status_code=500, message=str(exc))

    request = await fetch_next_pending_request()
    if request is None:
        return WorkerCycleResult(status_code=200, message=NO_PENDING_MESSAGE)

    if not await try_claim_request(request.id):
        logger.info("Research request %s was claimed by another worker", request.id)
        return WorkerCycleResult(status_code=200, message=NOTHING_TO_CLAIM_MESSAGE, request_id=request.id)

    try:
        client = llm or ResearchLLMClient()
        report = await execute_research_request(request, client)
        if not await complete_with_result(request.id, report):
            raise RuntimeError("Research request left processing before completion (claim expired)")
        logger.info("Research request %s completed", request.id)
        return WorkerCycleResult(status_code=200, message=OK_MESSAGE, request_id=request.id)
    except Exception as exc:
        logger.exception("Research request %s failed: %s", request.id, exc)
        message = str(exc) or exc.__class__.__name__
        try:
            await mark_failed(request.id, message)
        except Exception as finalize_exc:
            logger.error("Could not mark research request %s as failed: %s", request.id, finalize_exc)
        return WorkerCycleResult(status_code=500, message=message, request_id=request.id)


async def _run_cycle_and_release() -> WorkerCycleResult:
    try:
        return await run_research_cycle()
    finally:
        # Pooled connections are bound to this job's event loop.
        await engine.dispose()


def process_research_cycle_job() -> Dict[str, Any]:
    """RQ worker entrypoint for one research cycle."""
    result = asyncio.run(_run_cycle_and_release())
    return {"status_code": result.status_code, "message": result.message, "request_id": result.request_id}
