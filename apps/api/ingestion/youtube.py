"""
YouTube Data API client for fetching competitor channel and video data.
"""

import html
import logging
import re
from typing import Optional, List, Dict, Any

import httpx
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from services.research_schemas import CompetitorVideo, EnrichedCompetitor

logger = logging.getLogger(__name__)

RECENT_VIDEO_LIMIT = 10
TRANSCRIPT_MAX_CHARS = 8000
TIMEDTEXT_URL = "https://video.google.com/timedtext"
THUMBNAIL_PREFERENCE = ("maxres", "high", "medium", "default")

_CHANNEL_ID_PATTERN = re.compile(r"(?:youtube\.com/)?channel/(UC[\w-]{22})")
_HANDLE_PATTERNS = [
    re.compile(r"youtube\.com/@([\w.-]+)"),  # Handle URL
    re.compile(r"youtube\.com/c/([\w.-]+)"),  # Custom URL
    re.compile(r"youtube\.com/user/([\w.-]+)"),  # Username URL
    re.compile(r"^@([\w.-]+)$"),  # Handle only
]


def select_thumbnail(thumbnails: Dict[str, Any]) -> Optional[str]:
    """Pick the best available thumbnail: maxres, high, medium, then default."""
    for size in THUMBNAIL_PREFERENCE:
        url = (thumbnails or {}).get(size, {}).get("url")
        if url:
            return url
    return None


def _strip_timedtext_markup(payload: str) -> str:
    text = re.sub(r"<[^>]+>", " ", payload or "")
    text = html.unescape(html.unescape(text))
    return re.sub(r"\s+", " ", text).strip()


class YouTubeClient:
    """Client for interacting with YouTube Data API v3."""

    def __init__(self, api_key: str):
        """
        Initialize YouTube client.

        Args:
            api_key: API key for public data access
        """
        if not api_key:
            raise ValueError("YOUTUBE_API_KEY is not configured")
        self.youtube = build("youtube", "v3", developerKey=api_key, cache_discovery=False)

    def resolve_channel_identifier(self, identifier: str) -> Optional[str]:
        """
        Resolve a competitor reference to a canonical channel ID.

        Supports:
        - Channel ID (UC...)
        - Channel URL (youtube.com/channel/UC...)
        - Handle (@username or youtube.com/@username)
        - Custom URL (youtube.com/c/...)
        - Username (youtube.com/user/...)
        """
        identifier = (identifier or "").strip()
        if not identifier:
            return None

        # Already a channel ID
        if identifier.startswith("UC") and len(identifier) == 24:
            return identifier

        match = _CHANNEL_ID_PATTERN.search(identifier)
        if match:
            return match.group(1)

        for pattern in _HANDLE_PATTERNS:
            match = pattern.search(identifier)
            if match:
                return self._search_channel(match.group(1))

        return None

    def _search_channel(self, handle: str) -> Optional[str]:
        """Look a handle up directly, falling back to a channel search."""
        handle = handle.lstrip("@")
        try:
            response = self.youtube.channels().list(
                part="id",
                forHandle=handle
            ).execute()

            if response.get("items"):
                return response["items"][0]["id"]

            response = self.youtube.search().list(
                part="snippet",
                q=handle,
                type="channel",
                maxResults=1
            ).execute()

            if response.get("items"):
                return response["items"][0]["snippet"]["channelId"]

            return None
        except HttpError as e:
            logger.warning("Channel lookup failed for handle %s: %s", handle, e)
            return None

    def get_channel_info(self, channel_id: str) -> Optional[Dict[str, Any]]:
        """
        Get channel metadata.

        Returns:
            Dict with: id, title, description, custom_url, subscriber_count,
                       video_count, view_count, uploads_playlist_id
        """
        try:
            response = self.youtube.channels().list(
                part="snippet,statistics,contentDetails",
                id=channel_id
            ).execute()

            if not response.get("items"):
                return None

            item = response["items"][0]
            snippet = item.get("snippet", {})
            stats = item.get("statistics", {})

            return {
                "id": item["id"],
                "title": snippet.get("title", ""),
                "description": snippet.get("description", ""),
                "custom_url": snippet.get("customUrl", ""),
                "subscriber_count": int(stats.get("subscriberCount", 0)),
                "video_count": int(stats.get("videoCount", 0)),
                "view_count": int(stats.get("viewCount", 0)),
                "uploads_playlist_id": item.get("contentDetails", {}).get("relatedPlaylists", {}).get("uploads"),
            }
        except HttpError as e:
            logger.warning("Error fetching channel %s: %s", channel_id, e)
            return None

    def get_channel_videos(
        self,
        channel_id: str,
        uploads_playlist_id: Optional[str] = None,
        max_results: int = RECENT_VIDEO_LIMIT,
    ) -> List[Dict[str, Any]]:
        """
        Get the most recent uploads of a channel.

        Returns:
            List of video dicts with: id, title, published_at, thumbnail_url
        """
        try:
            if not uploads_playlist_id:
                channel_info = self.get_channel_info(channel_id)
                if not channel_info:
                    return []
                uploads_playlist_id = channel_info.get("uploads_playlist_id")
            if not uploads_playlist_id:
                return []

            response = self.youtube.playlistItems().list(
                part="snippet,contentDetails",
                playlistId=uploads_playlist_id,
                maxResults=min(50, max_results),
            ).execute()

            videos = []
            for item in response.get("items", []):
                snippet = item.get("snippet", {})
                video_id = item.get("contentDetails", {}).get("videoId") or snippet.get("resourceId", {}).get("videoId")
                if not video_id:
                    continue
                videos.append({
                    "id": video_id,
                    "title": snippet.get("title", ""),
                    "published_at": snippet.get("publishedAt", ""),
                    "thumbnail_url": select_thumbnail(snippet.get("thumbnails", {})),
                })
            return videos[:max_results]
        except HttpError as e:
            logger.warning("Error fetching videos for channel %s: %s", channel_id, e)
            return []

    def get_video_details(self, video_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """
        Get statistics and content details for videos.

        Args:
            video_ids: List of video IDs (max 50 per call)

        Returns:
            Dict mapping video_id to: view_count, like_count, comment_count,
                                      duration (raw ISO 8601 string)
        """
        result = {}

        # Process in batches of 50
        for i in range(0, len(video_ids), 50):
            batch = video_ids[i:i + 50]

            try:
                response = self.youtube.videos().list(
                    part="statistics,contentDetails",
                    id=",".join(batch)
                ).execute()

                for item in response.get("items", []):
                    stats = item.get("statistics", {})
                    content = item.get("contentDetails", {})
                    result[item["id"]] = {
                        "view_count": int(stats.get("viewCount", 0)),
                        "like_count": int(stats.get("likeCount", 0)),
                        "comment_count": int(stats.get("commentCount", 0)),
                        "duration": content.get("duration"),
                    }
            except HttpError as e:
                logger.warning("Error fetching video details: %s", e)

        return result

    def build_competitor_snapshot(self, url: str) -> EnrichedCompetitor:
        """Turn a competitor URL into a channel snapshot with its last 10 videos.

        Unresolvable channels and API errors yield an empty snapshot.
        """
        channel_id = self.resolve_channel_identifier(url)
        if not channel_id:
            logger.warning("Could not resolve YouTube channel for %s", url)
            return EnrichedCompetitor(platform="youtube", source_url=url)

        channel = self.get_channel_info(channel_id) or {}
        channel_name = channel.get("title", "")
        uploads = self.get_channel_videos(channel_id, uploads_playlist_id=channel.get("uploads_playlist_id"))
        details = self.get_video_details([video["id"] for video in uploads]) if uploads else {}

        videos = []
        for video in uploads:
            stats = details.get(video["id"], {})
            videos.append(CompetitorVideo(
                creator=channel_name,
                video_id=video["id"],
                title=video.get("title", ""),
                video_url=f"https://www.youtube.com/watch?v={video['id']}",
                thumbnail_url=video.get("thumbnail_url"),
                views=stats.get("view_count", 0),
                likes=stats.get("like_count", 0),
                comments=stats.get("comment_count", 0),
                duration=stats.get("duration"),
            ))

        avg_views = round(sum(video.views for video in videos) / len(videos)) if videos else 0

        return EnrichedCompetitor(
            platform="youtube",
            source_url=url,
            channel_id=channel_id,
            channel_url=f"https://www.youtube.com/channel/{channel_id}",
            name=channel_name,
            bio=channel.get("description", ""),
            followers=channel.get("subscriber_count", 0),
            avg_views=avg_views,
            posts_count=channel.get("video_count", 0),
            videos=videos,
        )


async def fetch_transcript(
    video_id: str,
    languages: tuple = ("es", "en"),
    timeout: float = 15.0,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Fetch a plain-text transcript from the public timed-text endpoint.

    Markup is stripped and the text is cut to TRANSCRIPT_MAX_CHARS. Any
    failure returns an empty string.
    """
    if not video_id:
        return ""

    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=timeout)
    try:
        for lang in languages:
            try:
                response = await http.get(TIMEDTEXT_URL, params={"lang": lang, "v": video_id})
            except httpx.HTTPError as e:
                logger.warning("Transcript fetch failed for %s (%s): %s", video_id, lang, e)
                return ""
            if response.status_code != 200:
                continue
            text = _strip_timedtext_markup(response.text)
            if text:
                return text[:TRANSCRIPT_MAX_CHARS]
        return ""
    finally:
        if owns_client:
            await http.aclose()


def create_youtube_client_with_api_key(api_key: str) -> YouTubeClient:
    """Create a YouTube client using an API key."""
    return YouTubeClient(api_key=api_key)
