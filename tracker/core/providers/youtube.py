"""YouTube post provider (YouTube Data API v3)."""

from typing import Optional

from tracker.config import settings
from tracker.core.classifier import Platform
from tracker.core.errors import ProviderRejected, UnresolvableIdentifier, UnsupportedPlatform
from tracker.core.providers.base import PostMetrics, PostProvider, ShapeAdapter, apply_adapters, to_int
from tracker.utils.job_logger import DebugTrace

YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3/videos"

STATISTICS_SHAPES = [
    ShapeAdapter(
        "statistics",
        "items.0.statistics",
        {
            "views": ("viewCount",),
            "likes": ("likeCount",),
            "comments": ("commentCount",),
        },
        required=("views",),
    ),
]


class YouTubePostProvider(PostProvider):
    """Reads view/like/comment counts for a video. YouTube exposes no share count."""

    platform = Platform.YOUTUBE

    def __init__(self, http, api_key: Optional[str] = None):
        super().__init__(http)
        self.api_key = api_key if api_key is not None else settings.youtube_api_key

    async def fetch_metrics(self, external_id: str, url: Optional[str], trace: DebugTrace) -> PostMetrics:
        if not self.api_key:
            raise UnsupportedPlatform("YouTube scraping requires YOUTUBE_API_KEY to be configured")

        trace.log("youtube_statistics", {"video_id": external_id})
        try:
            data = await self.http.get_json(
                YOUTUBE_API_URL,
                params={"part": "statistics", "id": external_id, "key": self.api_key}
            )
        except ProviderRejected as exc:
            raise UnresolvableIdentifier(
                f"YouTube rejected the statistics request (HTTP {exc.status_code})"
            ) from exc

        shape, record = apply_adapters(STATISTICS_SHAPES, data)
        if record is None:
            raise UnresolvableIdentifier(f"YouTube video {external_id} not found")

        trace.log("youtube_metrics_parsed", {"shape": shape})
        return PostMetrics(
            views=to_int(record["views"]),
            likes=to_int(record.get("likes")),
            comments=to_int(record.get("comments")),
            shares=0,
        )
