import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import update
from sqlalchemy.future import select

from ingestion.youtube import YouTubeClient
from models.research_request import ResearchRequest
from models.research_result import ResearchResult
from services.llm_client import ResearchLLMClient
from services.research_schemas import CompetitorVideo, EnrichedCompetitor, ResearchReport
from services.research_store import (
    STALLED_CLAIM_MESSAGE,
    complete_with_result,
    create_research_request,
    fetch_next_pending_request,
    get_research_request,
    mark_completed,
    mark_failed,
    recover_stalled_requests,
    replace_result,
    try_claim_request,
)
from services.research_worker import (
    NO_PENDING_MESSAGE,
    NOTHING_TO_CLAIM_MESSAGE,
    OK_MESSAGE,
    process_research_cycle_job,
    run_research_cycle,
)


def _pattern(index: int) -> dict:
    return {"pattern": f"Patrón {index}", "description": "Se repite en varios canales"}


OVERVIEW = {
    "executive_summary": "Mercado competido con formatos tutoriales.",
    "dominant_patterns": [_pattern(index) for index in range(7)],
    "saturation_level": "Alta",
    "market_gaps": [{"gap": "Casos reales", "description": "Nadie muestra resultados"}],
    "strategic_opportunities": "no es una lista",
}
STRATEGY = {
    "hook_frameworks": [{"framework": "Pregunta directa", "description": "Abre con una duda"}],
    "positioning_analysis": "Todos se posicionan como expertos.",
    "market_sophistication_level": "Nivel 4",
    "recommended_content_angles": [],
    "storytelling_structures": [{"structure": "Problema y solución", "description": "Lineal"}],
}
VIDEO_ANALYSES = [
    {
        "creator": "Example Channel",
        "video_url": "https://www.youtube.com/watch?v=vidB",
        "title": "Video B",
        "views": "3000",
        "duration": "PT45S",
        "hook_type": "pregunta",
        "hook_analysis": "Plantea el problema en 2 segundos",
        "structure_breakdown": ["Problema", "Demostración", "Resultado"],
        "retention_mechanisms": "1. Cortes rápidos",
        "replicable_elements": "1. Texto en pantalla",
        "funnel_role": "awareness",
        "distribution_analysis": "Shorts",
        "video_analysis": "• Gancho: pregunta directa",
    }
]


class FakeResearchLLM:
    """Answers each prompt kind with a canned payload."""

    def __init__(self):
        self.calls = []

    async def complete_and_parse(self, prompt: str, max_tokens: int):
        self.calls.append((prompt, max_tokens))
        if "JSON ARRAY" in prompt:
            return VIDEO_ANALYSES
        if '"dominant_patterns"' in prompt:
            return OVERVIEW
        if '"hook_frameworks"' in prompt:
            return STRATEGY
        raise AssertionError("unexpected prompt")


def _snapshot(url: str) -> EnrichedCompetitor:
    return EnrichedCompetitor(
        platform="youtube",
        source_url=url,
        channel_id="UC_EXAMPLE",
        name="Example Channel",
        bio="Tutoriales de marketing",
        followers=5400,
        avg_views=2000,
        posts_count=2,
        videos=[
            CompetitorVideo(
                creator="Example Channel",
                video_id="vidA",
                title="Video A",
                video_url="https://www.youtube.com/watch?v=vidA",
                views=1000,
            ),
            CompetitorVideo(
                creator="Example Channel",
                video_id="vidB",
                title="Video B",
                video_url="https://www.youtube.com/watch?v=vidB",
                views=3000,
            ),
        ],
    )


@pytest.fixture
def mock_collectors():
    youtube = MagicMock(spec=YouTubeClient)
    youtube.build_competitor_snapshot.side_effect = _snapshot
    with (
        patch("services.research_enrichment._get_youtube_client", return_value=youtube),
        patch("services.research_enrichment.fetch_transcript", new=AsyncMock(return_value="hola a todos")),
    ):
        yield youtube


async def _new_request(**overrides) -> ResearchRequest:
    values = {
        "user_id": "user-1",
        "platform": "youtube",
        "timeframe_days": 30,
        "competitors": [{"url": "https://youtube.com/@example"}],
    }
    values.update(overrides)
    return await create_research_request(**values)


async def _results_for(session_maker, request_id: str):
    async with session_maker() as session:
        result = await session.execute(select(ResearchResult).where(ResearchResult.request_id == request_id))
        return result.scalars().all()


@pytest.mark.asyncio
async def test_oldest_pending_request_is_dequeued_first(session_maker):
    first = await _new_request()
    await _new_request(user_id="user-2")

    pending = await fetch_next_pending_request()

    assert pending.id == first.id


@pytest.mark.asyncio
async def test_only_one_concurrent_claim_succeeds(session_maker):
    request = await _new_request()

    outcomes = await asyncio.gather(*[try_claim_request(request.id) for _ in range(4)])

    assert outcomes.count(True) == 1
    stored = await get_research_request(request.id)
    assert stored.status == "processing"
    assert stored.attempts == 1
    assert stored.started_at is not None


@pytest.mark.asyncio
async def test_terminal_requests_never_regress(session_maker):
    request = await _new_request()
    assert await try_claim_request(request.id)
    assert await mark_completed(request.id)

    assert not await mark_failed(request.id, "late failure")
    assert not await try_claim_request(request.id)
    with pytest.raises(ValueError):
        await try_claim_request(request.id, expected_status="completed")

    stored = await get_research_request(request.id)
    assert stored.status == "completed"
    assert stored.error_message is None


@pytest.mark.asyncio
async def test_replace_result_keeps_a_single_row(session_maker):
    request = await _new_request()

    await replace_result(request.id, ResearchReport(executive_summary="primero", market_gaps=["a", "b"]))
    await replace_result(request.id, ResearchReport(executive_summary="segundo"))

    rows = await _results_for(session_maker, request.id)
    assert len(rows) == 1
    assert rows[0].resumen_ejecutivo == "segundo"
    assert rows[0].brechas_de_mercado == []


@pytest.mark.asyncio
async def test_stalled_claims_are_failed(session_maker):
    stalled = await _new_request()
    active = await _new_request(user_id="user-2")
    assert await try_claim_request(stalled.id)
    assert await try_claim_request(active.id)

    long_ago = datetime.now(timezone.utc) - timedelta(hours=2)
    async with session_maker() as session:
        await session.execute(
            update(ResearchRequest)
            .where(ResearchRequest.id == stalled.id)
            .values(started_at=long_ago, heartbeat_at=long_ago)
        )
        await session.commit()

    assert await recover_stalled_requests(30) == 1

    stalled_row = await get_research_request(stalled.id)
    active_row = await get_research_request(active.id)
    assert stalled_row.status == "failed"
    assert stalled_row.error_message == STALLED_CLAIM_MESSAGE
    assert active_row.status == "processing"


@pytest.mark.asyncio
async def test_cycle_without_pending_requests(session_maker):
    result = await run_research_cycle(llm=FakeResearchLLM())
    assert result.status_code == 200
    assert result.message == NO_PENDING_MESSAGE


@pytest.mark.asyncio
async def test_cycle_reports_lost_claim(session_maker):
    request = await _new_request()
    with patch("services.research_worker.try_claim_request", new=AsyncMock(return_value=False)):
        result = await run_research_cycle(llm=FakeResearchLLM())

    assert result.message == NOTHING_TO_CLAIM_MESSAGE
    assert (await get_research_request(request.id)).status == "pending"


@pytest.mark.asyncio
async def test_cycle_completes_request_with_coerced_report(session_maker, mock_collectors):
    request = await _new_request()
    llm = FakeResearchLLM()

    result = await run_research_cycle(llm=llm)

    assert result.status_code == 200
    assert result.message == OK_MESSAGE
    assert result.request_id == request.id

    stored = await get_research_request(request.id)
    assert stored.status == "completed"
    assert stored.completed_at is not None

    rows = await _results_for(session_maker, request.id)
    assert len(rows) == 1
    row = rows[0]
    assert isinstance(row.patrones_dominantes, list)
    assert len(row.patrones_dominantes) == 5
    assert row.oportunidades_estrategicas == []
    assert row.frameworks_de_ganchos[0]["framework"] == "Pregunta directa"
    assert row.nivel_de_saturacion == "Alta"
    assert row.analisis_por_video[0]["views"] == 3000
    assert row.analisis_por_video[0]["structure_breakdown"].startswith("1. Problema")

    video_prompt = next(prompt for prompt, _ in llm.calls if "JSON ARRAY" in prompt)
    assert video_prompt.index("vidB") < video_prompt.index("vidA")
    assert "hola a todos" in video_prompt


@pytest.mark.asyncio
async def test_cycle_skips_video_prompt_without_videos(session_maker):
    youtube = MagicMock(spec=YouTubeClient)
    youtube.build_competitor_snapshot.return_value = EnrichedCompetitor(
        platform="youtube", source_url="https://youtube.com/@empty"
    )
    request = await _new_request(competitors=[{"url": "https://youtube.com/@empty"}])
    llm = FakeResearchLLM()

    with patch("services.research_enrichment._get_youtube_client", return_value=youtube):
        result = await run_research_cycle(llm=llm)

    assert result.message == OK_MESSAGE
    assert len(llm.calls) == 2
    rows = await _results_for(session_maker, request.id)
    assert rows[0].analisis_por_video is None


@pytest.mark.asyncio
async def test_repeated_truncation_fails_the_request(session_maker, mock_collectors):
    request = await _new_request()
    truncated = SimpleNamespace(
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(content='{"executive_summary": "El mercado'),
                finish_reason="length",
            )
        ]
    )
    openai_client = MagicMock()
    openai_client.chat.completions.create.return_value = truncated

    result = await run_research_cycle(llm=ResearchLLMClient(client=openai_client))

    assert result.status_code == 500
    assert "incomplete" in result.message
    assert openai_client.chat.completions.create.call_count == 2

    stored = await get_research_request(request.id)
    assert stored.status == "failed"
    assert stored.error_message == result.message
    assert await _results_for(session_maker, request.id) == []


@pytest.mark.asyncio
async def test_missing_llm_key_fails_fast_without_claiming(session_maker):
    request = await _new_request()
    with patch("services.research_worker.settings.OPENAI_API_KEY", ""):
        result = await run_research_cycle()

    assert result.status_code == 500
    assert "OPENAI_API_KEY" in result.message
    assert (await get_research_request(request.id)).status == "pending"


def test_rq_entrypoint_runs_one_cycle():
    with patch("services.research_worker.run_research_cycle", new=AsyncMock(
        return_value=SimpleNamespace(status_code=200, message=NO_PENDING_MESSAGE, request_id=None)
    )):
        assert process_research_cycle_job() == {
            "status_code": 200,
            "message": NO_PENDING_MESSAGE,
            "request_id": None,
        }


@pytest.mark.asyncio
async def test_complete_with_result_requires_the_claim(session_maker):
    request = await _new_request()
    assert await try_claim_request(request.id)
    assert await mark_failed(request.id, "claim timed out")

    assert not await complete_with_result(request.id, ResearchReport(executive_summary="tarde"))

    stored = await get_research_request(request.id)
    assert stored.status == "failed"
    assert await _results_for(session_maker, request.id) == []


@pytest.mark.asyncio
async def test_expired_claim_mid_cycle_leaves_no_result(session_maker, mock_collectors):
    request = await _new_request()

    class ExpiringLLM(FakeResearchLLM):
        async def complete_and_parse(self, prompt: str, max_tokens: int):
            if "JSON ARRAY" in prompt:
                async with session_maker() as session:
                    await session.execute(
                        update(ResearchRequest)
                        .where(ResearchRequest.id == request.id)
                        .values(status="failed", error_message=STALLED_CLAIM_MESSAGE)
                    )
                    await session.commit()
            return await super().complete_and_parse(prompt, max_tokens)

    result = await run_research_cycle(llm=ExpiringLLM())

    assert result.status_code == 500
    assert "claim expired" in result.message
    stored = await get_research_request(request.id)
    assert stored.status == "failed"
    assert stored.error_message == STALLED_CLAIM_MESSAGE
    assert await _results_for(session_maker, request.id) == []
