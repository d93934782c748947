"""
Public Instagram profile scraper.

Instagram exposes no unauthenticated metrics API, so the profile page's meta
description is the only signal: follower count, post count and bio. Post
shortcodes are harvested from permalinks embedded in the page. Likes,
comments and views are not available this way and stay at zero.
"""

import html
import logging
import re
from typing import List, Optional

import httpx

from services.research_schemas import CompetitorVideo, EnrichedCompetitor

logger = logging.getLogger(__name__)

MAX_PROFILE_POSTS = 9
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

_META_DESCRIPTION_PATTERNS = [
    re.compile(r'<meta[^>]+property="og:description"[^>]+content="([^"]*)"', re.IGNORECASE),
    re.compile(r'<meta[^>]+name="description"[^>]+content="([^"]*)"', re.IGNORECASE),
    re.compile(r'<meta[^>]+content="([^"]*)"[^>]+(?:name|property)="(?:og:)?description"', re.IGNORECASE),
]
_FOLLOWERS_PATTERN = re.compile(r"([\d.,]+\s*[KkMm]?)\s+(?:Followers|seguidores)", re.IGNORECASE)
_POSTS_PATTERN = re.compile(r"([\d.,]+\s*[KkMm]?)\s+(?:Posts|publicaciones)", re.IGNORECASE)
_BIO_PATTERN = re.compile(r"(?:on Instagram|en Instagram)\s*:\s*[\"“](.*)[\"”]\s*$", re.IGNORECASE | re.DOTALL)
_POST_PERMALINK_PATTERN = re.compile(r"/(?:p|reel)/([A-Za-z0-9_-]{5,})/?")
_HANDLE_PATTERN = re.compile(r"instagram\.com/([A-Za-z0-9._]+)/?")


def extract_handle(url: str) -> Optional[str]:
    """Return the profile handle of an instagram.com URL or a bare @handle."""
    text = (url or "").strip()
    if text.startswith("@"):
        return text[1:] or None
    match = _HANDLE_PATTERN.search(text)
    if not match:
        return None
    handle = match.group(1)
    if handle.lower() in {"p", "reel", "reels", "explore", "stories"}:
        return None
    return handle


def parse_compact_count(value: str) -> int:
    """Parse counts like ``1,234``, ``12.5K`` or ``3M``."""
    text = (value or "").strip().replace(" ", "")
    if not text:
        return 0
    multiplier = 1
    suffix = text[-1].lower()
    if suffix == "k":
        multiplier, text = 1_000, text[:-1]
    elif suffix == "m":
        multiplier, text = 1_000_000, text[:-1]
    if multiplier == 1:
        digits = re.sub(r"[^\d]", "", text)
        return int(digits) if digits else 0
    try:
        return int(float(text.replace(",", ".")) * multiplier)
    except ValueError:
        return 0


def _meta_description(page: str) -> str:
    for pattern in _META_DESCRIPTION_PATTERNS:
        match = pattern.search(page)
        if match:
            return html.unescape(match.group(1))
    return ""


def extract_post_codes(page: str, limit: int = MAX_PROFILE_POSTS) -> List[str]:
    """Unique post shortcodes in page order, capped at ``limit``."""
    codes: List[str] = []
    for match in _POST_PERMALINK_PATTERN.finditer(page or ""):
        code = match.group(1)
        if code not in codes:
            codes.append(code)
        if len(codes) >= limit:
            break
    return codes


def parse_profile_page(page: str, url: str, handle: str) -> EnrichedCompetitor:
    """Build a snapshot from profile HTML."""
    description = _meta_description(page)

    followers_match = _FOLLOWERS_PATTERN.search(description)
    posts_match = _POSTS_PATTERN.search(description)
    bio_match = _BIO_PATTERN.search(description)

    posts = [
        CompetitorVideo(
            creator=handle,
            video_id=code,
            video_url=f"https://www.instagram.com/p/{code}/",
        )
        for code in extract_post_codes(page)
    ]

    return EnrichedCompetitor(
        platform="instagram",
        source_url=url,
        channel_id=handle,
        channel_url=f"https://www.instagram.com/{handle}/",
        name=handle,
        bio=bio_match.group(1).strip() if bio_match else "",
        followers=parse_compact_count(followers_match.group(1)) if followers_match else 0,
        posts_count=parse_compact_count(posts_match.group(1)) if posts_match else 0,
        videos=posts,
    )


async def fetch_instagram_profile(
    url: str,
    timeout: float = 15.0,
    client: Optional[httpx.AsyncClient] = None,
) -> EnrichedCompetitor:
    """
    Scrape a public Instagram profile.

    Never raises: blocked, missing or unreachable profiles degrade to a
    zeroed snapshot.
    """
    handle = extract_handle(url)
    if not handle:
        logger.warning("Could not extract Instagram handle from %s", url)
        return EnrichedCompetitor(platform="instagram", source_url=url)

    empty = EnrichedCompetitor(
        platform="instagram",
        source_url=url,
        channel_id=handle,
        channel_url=f"https://www.instagram.com/{handle}/",
        name=handle,
    )

    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    try:
        response = await http.get(
            f"https://www.instagram.com/{handle}/",
            headers={"User-Agent": BROWSER_USER_AGENT, "Accept-Language": "en-US,en;q=0.9"},
        )
        if response.status_code != 200:
            logger.warning("Instagram profile %s returned HTTP %s", handle, response.status_code)
            return empty
        return parse_profile_page(response.text, url, handle)
    except httpx.HTTPError as e:
        logger.warning("Instagram profile fetch failed for %s: %s", handle, e)
        return empty
    finally:
        if owns_client:
            await http.aclose()
