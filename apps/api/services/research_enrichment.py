"""Competitor enrichment: turn competitor references into metrics snapshots."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from config import require_youtube_api_key, settings
from ingestion.instagram import fetch_instagram_profile
from ingestion.youtube import YouTubeClient, create_youtube_client_with_api_key, fetch_transcript
from services.research_schemas import CompetitorVideo, EnrichedCompetitor

logger = logging.getLogger(__name__)

TOP_VIDEO_LIMIT = 3


def _get_youtube_client() -> YouTubeClient:
    return create_youtube_client_with_api_key(require_youtube_api_key())


def _entry_url(entry: Any) -> str:
    if isinstance(entry, str):
        return entry.strip()
    if isinstance(entry, dict):
        return str(entry.get("source_url") or entry.get("url") or entry.get("channel_url") or "").strip()
    return ""


def _stored_snapshot(entry: Any, platform: str) -> Optional[EnrichedCompetitor]:
    """Reuse a snapshot persisted at intake time instead of refetching it."""
    if not isinstance(entry, dict) or "videos" not in entry:
        return None
    payload = dict(entry)
    payload.setdefault("platform", platform)
    payload.setdefault("source_url", _entry_url(entry))
    return EnrichedCompetitor.model_validate(payload)


async def enrich_competitor(
    platform: str,
    url: str,
    youtube_client: Optional[YouTubeClient] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> EnrichedCompetitor:
    """Enrich a single competitor URL.

    Collector failures degrade to an empty snapshot; only configuration
    errors (a missing API key) propagate.
    """
    if platform == "youtube":
        client = youtube_client or _get_youtube_client()
        try:
            return await asyncio.to_thread(client.build_competitor_snapshot, url)
        except Exception as exc:
            logger.warning("YouTube enrichment failed for %s: %s", url, exc)
            return EnrichedCompetitor(platform="youtube", source_url=url)

    if platform == "instagram":
        return await fetch_instagram_profile(url, timeout=settings.HTTP_TIMEOUT_SECONDS, client=http_client)

    logger.warning("No collector for platform %s; using an empty snapshot for %s", platform, url)
    return EnrichedCompetitor(platform=platform, source_url=url)


async def enrich_competitors(platform: str, entries: Iterable[Any]) -> List[EnrichedCompetitor]:
    """Enrich every competitor entry concurrently, keeping input order."""
    entries = list(entries)
    pending_urls = [
        _entry_url(entry) for entry in entries if _stored_snapshot(entry, platform) is None
    ]

    youtube_client: Optional[YouTubeClient] = None
    if platform == "youtube" and pending_urls:
        youtube_client = _get_youtube_client()

    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, follow_redirects=True) as http_client:
        async def _one(entry: Any) -> EnrichedCompetitor:
            stored = _stored_snapshot(entry, platform)
            if stored is not None:
                return stored
            return await enrich_competitor(
                platform,
                _entry_url(entry),
                youtube_client=youtube_client,
                http_client=http_client,
            )

        return list(await asyncio.gather(*[_one(entry) for entry in entries]))


def has_any_signal(competitors: Iterable[EnrichedCompetitor]) -> bool:
    """True when at least one competitor yielded real data."""
    return any(competitor.has_signal() for competitor in competitors)


def top_videos(competitors: Iterable[EnrichedCompetitor], limit: int = TOP_VIDEO_LIMIT) -> List[CompetitorVideo]:
    """Top items by views across all competitors.

    Ties break on creator then URL so the selection is stable regardless of
    the order enrichment finished in.
    """
    videos: List[CompetitorVideo] = []
    for competitor in competitors:
        for video in competitor.videos:
            if not video.creator:
                video = video.model_copy(update={"creator": competitor.name})
            videos.append(video)
    videos.sort(key=lambda video: (-video.views, video.creator, video.video_url))
    return videos[:limit]


async def attach_transcripts(platform: str, videos: List[CompetitorVideo]) -> List[CompetitorVideo]:
    """Fill in transcripts for the selected YouTube videos."""
    if platform != "youtube" or not videos:
        return videos

    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as http_client:
        async def _transcript(video: CompetitorVideo) -> str:
            if video.transcript:
                return video.transcript
            return await fetch_transcript(video.video_id, client=http_client)

        transcripts = await asyncio.gather(*[_transcript(video) for video in videos])
    return [
        video.model_copy(update={"transcript": transcript or None})
        for video, transcript in zip(videos, transcripts)
    ]


def snapshot_payloads(competitors: Iterable[EnrichedCompetitor]) -> List[Dict[str, Any]]:
    """JSON-ready snapshots for storage on the request row."""
    return [competitor.model_dump() for competitor in competitors]
