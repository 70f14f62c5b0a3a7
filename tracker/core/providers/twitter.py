"""Twitter/X post provider."""

from typing import Dict, Optional

from tracker.config import settings
from tracker.core.classifier import Platform
from tracker.core.errors import ProviderRejected, UnresolvableIdentifier
from tracker.core.providers.base import (
    PostMetrics,
    PostProvider,
    ShapeAdapter,
    apply_adapters,
    first_present,
    to_int,
)
from tracker.utils.job_logger import DebugTrace
from tracker.utils.validators import normalize_handle, parse_timestamp

METRIC_FIELDS = {
    "views": ("impression_count", "impressionCount", "view_count", "viewCount", "views"),
    "likes": ("like_count", "likeCount", "favorite_count", "favoriteCount", "likes"),
    "comments": ("reply_count", "replyCount", "comment_count", "comments"),
    "shares": ("retweet_count", "retweetCount", "share_count", "retweets", "shares"),
}

# public_metrics first, then any flat tweet object
TWEET_SHAPES = [
    ShapeAdapter(name, root, METRIC_FIELDS, required=("likes",))
    for name, root in (
        ("data_public_metrics", "data.public_metrics"),
        ("data_publicMetrics", "data.publicMetrics"),
        ("tweet_public_metrics", "tweet.public_metrics"),
        ("result_public_metrics", "result.public_metrics"),
        ("tweet_data_public_metrics", "tweetData.public_metrics"),
        ("public_metrics", "public_metrics"),
        ("data_metrics", "data.metrics"),
        ("data", "data"),
        ("tweet", "tweet"),
        ("result", "result"),
        ("legacy", "data.legacy"),
        ("flat", ""),
    )
]

VIEW_FALLBACK_ALIASES = ("data.views.count", "views.count", "data.view_count", "view_count")
OWNER_ALIASES = ("data.author.username", "includes.users.0.username", "tweet.user.screen_name", "user.screen_name")
CREATED_ALIASES = ("data.created_at", "tweet.created_at", "created_at")


class TwitterPostProvider(PostProvider):
    """Scrapes tweet engagement by tweet id."""

    platform = Platform.TWITTER

    def __init__(self, http, host: Optional[str] = None):
        super().__init__(http)
        self.host = host or settings.twitter_api_host

    def _headers(self) -> Dict[str, str]:
        return {"x-rapidapi-key": settings.rapidapi_key, "x-rapidapi-host": self.host}

    async def fetch_metrics(self, external_id: str, url: Optional[str], trace: DebugTrace) -> PostMetrics:
        trace.log("twitter_tweet", {"pid": external_id})
        try:
            data = await self.http.get_json(
                f"https://{self.host}/tweet-v2",
                params={"pid": external_id},
                headers=self._headers()
            )
        except ProviderRejected as exc:
            raise UnresolvableIdentifier(
                f"Tweet {external_id} was rejected by the provider (HTTP {exc.status_code})"
            ) from exc

        shape, record = apply_adapters(TWEET_SHAPES, data)
        if record is None:
            raise UnresolvableIdentifier(f"Twitter response for tweet {external_id} missing tweet data")

        trace.log("twitter_metrics_parsed", {"shape": shape})
        views = record.get("views")
        if views is None or isinstance(views, dict):
            views = first_present(data, VIEW_FALLBACK_ALIASES)

        created = first_present(data, CREATED_ALIASES)
        posted_at = parse_timestamp(created) if created else None

        return PostMetrics(
            views=to_int(views),
            likes=to_int(record.get("likes")),
            comments=to_int(record.get("comments")),
            shares=to_int(record.get("shares")),
            owner_handle=normalize_handle(first_present(data, OWNER_ALIASES)),
            posted_at=posted_at,
        )
