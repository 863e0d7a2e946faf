import asyncio
import logging
import re
from typing import Optional

import requests

from app import config
from app.errors import UpstreamServiceError
from app.schemas import VideoSuggestion

logger = logging.getLogger(__name__)

YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"
EDUCATION_CATEGORY_ID = "27"
EDUCATIONAL_INDICATORS = (
    "explained", "tutorial", "lesson", "course", "learn",
    "education", "academy", "university", "school",
    "crash course", "khan academy", "ted-ed", "mit",
)
_DURATION_RE = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


def parse_duration(duration: str) -> str:
    """ISO 8601 duration (PT1M30S) to a clock string (1:30)."""
    match = _DURATION_RE.fullmatch(duration or "")
    if not match:
        return "0:00"
    hours, minutes, seconds = (int(g or 0) for g in match.groups())
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def format_view_count(views: int) -> str:
    if views >= 1_000_000:
        return f"{views / 1_000_000:.1f}M"
    if views >= 1_000:
        return f"{views / 1_000:.1f}K"
    return str(views)


def remove_duplicates(videos: list[VideoSuggestion]) -> list[VideoSuggestion]:
    seen = set()
    unique = []
    for v in videos:
        if v.video_id in seen:
            continue
        seen.add(v.video_id)
        unique.append(v)
    return unique


def _by_views(videos: list[VideoSuggestion]) -> list[VideoSuggestion]:
    return sorted(videos, key=lambda v: v.views, reverse=True)


class YouTubeService:
    """Video-suggestion collaborator backed by the YouTube Data API v3."""

    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None, timeout: float = 10.0):
        self.api_key = api_key if api_key is not None else config.YOUTUBE_API_KEY
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get(self, resource: str, params: dict) -> dict:
        if not self.api_key:
            raise UpstreamServiceError("YOUTUBE_API_KEY is not configured")
        try:
            resp = self.session.get(
                f"{YOUTUBE_API_URL}/{resource}",
                params={**params, "key": self.api_key},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            logger.error("YouTube API error on %s: %s", resource, e)
            raise UpstreamServiceError("Failed to search YouTube videos") from e

    @staticmethod
    def _thumbnail(snippet: dict) -> str:
        thumbs = snippet.get("thumbnails") or {}
        for size in ("medium", "high", "default"):
            url = (thumbs.get(size) or {}).get("url")
            if url:
                return url
        return ""

    def _search_videos_sync(self, query: str, max_results: int) -> list[VideoSuggestion]:
        search = self._get("search", {
            "part": "id,snippet",
            "q": query,
            "type": "video",
            "maxResults": max_results,
            "order": "relevance",
            "safeSearch": "moderate",
        })
        items = [i for i in search.get("items", []) if (i.get("id") or {}).get("videoId")]
        if not items:
            return []
        video_ids = [i["id"]["videoId"] for i in items]
        stats = self._get("videos", {"part": "statistics,contentDetails", "id": ",".join(video_ids)})
        stats_by_id = {s.get("id"): s for s in stats.get("items", [])}

        videos = []
        for item in items:
            snippet = item.get("snippet") or {}
            detail = stats_by_id.get(item["id"]["videoId"], {})
            statistics = detail.get("statistics") or {}
            views = int(statistics.get("viewCount") or 0)
            videos.append(VideoSuggestion(
                title=snippet.get("title", ""),
                video_id=item["id"]["videoId"],
                thumbnail=self._thumbnail(snippet),
                channel_title=snippet.get("channelTitle", ""),
                published_at=snippet.get("publishedAt"),
                description=snippet.get("description", ""),
                views=views,
                formatted_views=format_view_count(views),
                likes=int(statistics.get("likeCount") or 0),
                duration=parse_duration((detail.get("contentDetails") or {}).get("duration") or "PT0S"),
            ))
        return _by_views(videos)

    async def search_videos(self, query: str, max_results: int = 10) -> list[VideoSuggestion]:
        # requests is blocking; keep it off the event loop
        return await asyncio.to_thread(self._search_videos_sync, query, max_results)

    async def get_related_videos(self, key_topics: list[str]) -> list[VideoSuggestion]:
        all_videos: list[VideoSuggestion] = []
        for topic in key_topics[:3]:
            all_videos.extend(await self.search_videos(f"{topic} tutorial explanation", 5))
        return _by_views(remove_duplicates(all_videos))[:12]

    async def search_educational_videos(self, search_term: str) -> list[VideoSuggestion]:
        phrasings = [
            f"{search_term} explained",
            f"{search_term} tutorial",
            f"{search_term} lesson",
            f"{search_term} crash course",
            f"learn {search_term}",
        ]
        all_videos: list[VideoSuggestion] = []
        for phrasing in phrasings:
            all_videos.extend(await self.search_videos(phrasing, 3))

        educational = [
            v for v in all_videos
            if any(ind in v.title.lower() or ind in v.channel_title.lower() for ind in EDUCATIONAL_INDICATORS)
        ]
        return _by_views(remove_duplicates(educational))[:10]

    def _trending_sync(self) -> list[VideoSuggestion]:
        data = self._get("videos", {
            "part": "id,snippet,statistics",
            "chart": "mostPopular",
            "regionCode": "US",
            "videoCategoryId": EDUCATION_CATEGORY_ID,
            "maxResults": 10,
        })
        videos = []
        for item in data.get("items", []):
            snippet = item.get("snippet") or {}
            statistics = item.get("statistics") or {}
            views = int(statistics.get("viewCount") or 0)
            videos.append(VideoSuggestion(
                title=snippet.get("title", ""),
                video_id=item.get("id", ""),
                thumbnail=self._thumbnail(snippet),
                channel_title=snippet.get("channelTitle", ""),
                views=views,
                formatted_views=format_view_count(views),
                likes=int(statistics.get("likeCount") or 0),
            ))
        return videos

    async def get_trending_educational_videos(self) -> list[VideoSuggestion]:
        return await asyncio.to_thread(self._trending_sync)
