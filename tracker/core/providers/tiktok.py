"""TikTok sound and post providers (RapidAPI TikTok data APIs)."""

from typing import Any, Dict, Optional

from tracker.config import settings
from tracker.core.classifier import Platform
from tracker.core.errors import ProviderRejected, UnresolvableIdentifier
from tracker.core.providers.base import (
    NORMALIZED_OBSERVATION_FIELDS,
    PostMetrics,
    PostProvider,
    ShapeAdapter,
    SoundMetadata,
    SoundProvider,
    apply_adapters,
    dig,
    first_present,
    to_int,
)
from tracker.utils.job_logger import DebugTrace
from tracker.utils.validators import normalize_handle, parse_timestamp

MUSIC_FIELDS = {
    "key": ("id", "mid", "id_str"),
    "title": ("title", "musicName", "song_name"),
    "artist": ("author", "authorName", "owner_handle", "ownerNickname"),
}

# Video info responses: the music object moves between API versions
VIDEO_MUSIC_SHAPES = [
    ShapeAdapter("aweme_detail", "aweme_detail.music", MUSIC_FIELDS, required=("key",)),
    ShapeAdapter("aweme_detail_info", "aweme_detail.music_info", MUSIC_FIELDS, required=("key",)),
    ShapeAdapter("item_struct", "itemInfo.itemStruct.music", MUSIC_FIELDS, required=("key",)),
    ShapeAdapter("data_music", "data.music", MUSIC_FIELDS, required=("key",)),
    ShapeAdapter("data_music_info", "data.music_info", MUSIC_FIELDS, required=("key",)),
    ShapeAdapter("music", "music", MUSIC_FIELDS, required=("key",)),
    ShapeAdapter("music_info", "music_info", MUSIC_FIELDS, required=("key",)),
]

# Music info responses, used to back-fill title/artist
MUSIC_INFO_SHAPES = [
    ShapeAdapter("data_music", "data.music", MUSIC_FIELDS, required=("title",)),
    ShapeAdapter("music_info", "musicInfo.music", MUSIC_FIELDS, required=("title",)),
    ShapeAdapter("music", "music", MUSIC_FIELDS, required=("title",)),
    ShapeAdapter("data", "data", MUSIC_FIELDS, required=("title",)),
    ShapeAdapter("flat", "", MUSIC_FIELDS, required=("title",)),
]

OBSERVATION_SHAPES = [
    ShapeAdapter(
        "apify_video",
        "",
        {
            "id": ("id", "video_id", "aweme_id"),
            "handle": ("authorMeta.name", "authorMeta.uniqueId", "author.uniqueId", "author.unique_id"),
            "name": ("authorMeta.nickName", "author.nickname"),
            "views": ("playCount", "stats.playCount", "statistics.play_count"),
            "likes": ("diggCount", "stats.diggCount", "statistics.digg_count"),
            "comments": ("commentCount", "stats.commentCount", "statistics.comment_count"),
            "shares": ("shareCount", "stats.shareCount", "statistics.share_count"),
            "posted_at": ("createTime", "createTimeISO", "create_time"),
            "region": ("authorMeta.region", "author.region", "region"),
            "url": ("webVideoUrl", "share_url"),
        },
        required=("id", "views"),
    ),
    ShapeAdapter("normalized", "", NORMALIZED_OBSERVATION_FIELDS, required=("id",)),
]

METRIC_FIELDS = {
    "views": ("playCount", "play_count", "viewCount", "view_count", "views"),
    "likes": ("diggCount", "digg_count", "likeCount", "like_count", "likes"),
    "comments": ("commentCount", "comment_count", "comments"),
    "shares": ("shareCount", "share_count", "shares"),
}

POST_METRIC_SHAPES = [
    ShapeAdapter(name, root, METRIC_FIELDS, required=("views",))
    for name, root in (
        ("item_struct_statistics", "data.itemInfo.itemStruct.statistics"),
        ("item_struct_stats", "data.itemInfo.itemStruct.stats"),
        ("data_item_statistics", "data.item.statistics"),
        ("data_video_statistics", "data.video.statistics"),
        ("aweme_detail_statistics", "aweme_detail.statistics"),
        ("data_aweme_detail_statistics", "data.aweme_detail.statistics"),
        ("data_statistics", "data.statistics"),
        ("data_stats", "data.stats"),
        ("statistics", "statistics"),
        ("stats", "stats"),
        ("data", "data"),
        ("flat", ""),
    )
]

POST_OWNER_ALIASES = (
    "data.itemInfo.itemStruct.author.uniqueId",
    "aweme_detail.author.unique_id",
    "data.aweme_detail.author.unique_id",
    "data.author.unique_id",
    "data.author.uniqueId",
    "author.unique_id",
)
POST_CREATED_ALIASES = (
    "data.itemInfo.itemStruct.createTime",
    "aweme_detail.create_time",
    "data.aweme_detail.create_time",
    "data.create_time",
    "create_time",
)


def _rapidapi_headers(host: str) -> Dict[str, str]:
    return {"x-rapidapi-key": settings.rapidapi_key, "x-rapidapi-host": host}


class TikTokSoundProvider(SoundProvider):
    """Resolves TikTok music ids; indexing runs on the orchestrator."""

    platform = Platform.TIKTOK
    observation_shapes = OBSERVATION_SHAPES

    def __init__(self, http, host: Optional[str] = None):
        super().__init__(http)
        self.host = host or settings.tiktok_api_host

    async def resolve_precursor(self, precursor: str, trace: DebugTrace) -> SoundMetadata:
        url = f"https://{self.host}/video/info"
        trace.log("tiktok_video_lookup", {"video_id": precursor})
        try:
            data = await self.http.get_json(
                url, params={"video_id": precursor}, headers=_rapidapi_headers(self.host)
            )
        except ProviderRejected as exc:
            trace.log("tiktok_video_lookup_rejected", {"status": exc.status_code})
            raise UnresolvableIdentifier(
                f"TikTok video {precursor} could not be looked up (HTTP {exc.status_code})",
                details={"video_id": precursor}
            ) from exc

        shape, record = apply_adapters(VIDEO_MUSIC_SHAPES, data)
        if record is None:
            trace.log("tiktok_music_missing", {"keys": sorted(data)[:20] if isinstance(data, dict) else None})
            raise UnresolvableIdentifier(
                f"No sound found on TikTok video {precursor}",
                details={"video_id": precursor}
            )

        key = str(record["key"])
        trace.log("tiktok_music_resolved", {"shape": shape, "music_id": key})
        return SoundMetadata(
            canonical_key=key,
            title=record.get("title"),
            artist=record.get("artist"),
            page_url=self.page_url(key),
        )

    async def fetch_metadata(self, canonical_key: str, trace: DebugTrace) -> Optional[SoundMetadata]:
        url = f"https://{self.host}/music/info"
        data = await self.http.get_json(
            url, params={"music_id": canonical_key}, headers=_rapidapi_headers(self.host)
        )
        shape, record = apply_adapters(MUSIC_INFO_SHAPES, data)
        if record is None:
            trace.log("tiktok_music_info_empty", {"music_id": canonical_key})
            return None
        trace.log("tiktok_music_info", {"shape": shape})
        return SoundMetadata(
            canonical_key=canonical_key,
            title=record.get("title"),
            artist=record.get("artist"),
        )

    def page_url(self, canonical_key: str) -> str:
        return f"https://www.tiktok.com/music/original-sound-{canonical_key}"

    def actor_input(self, page_url: str, canonical_key: str, max_items: int) -> Dict[str, Any]:
        return {
            "musics": [page_url],
            "startUrls": [{"url": page_url}],
            "maxItems": max_items,
            "resultsPerPage": max_items,
        }

    def parse_metadata_from_row(self, row: Any) -> Optional[SoundMetadata]:
        title = dig(row, "musicMeta.musicName")
        if not title:
            return None
        return SoundMetadata(
            canonical_key=str(dig(row, "musicMeta.musicId") or ""),
            title=title,
            artist=dig(row, "musicMeta.musicAuthor"),
        )


class TikTokPostProvider(PostProvider):
    """Scrapes a TikTok video's statistics by video id."""

    platform = Platform.TIKTOK

    def __init__(self, http, host: Optional[str] = None):
        super().__init__(http)
        self.host = host or settings.tiktok_post_api_host

    async def fetch_metrics(self, external_id: str, url: Optional[str], trace: DebugTrace) -> PostMetrics:
        trace.log("tiktok_video_detail", {"aweme_id": external_id})
        try:
            data = await self.http.get_json(
                f"https://{self.host}/video/detail",
                params={"aweme_id": external_id},
                headers=_rapidapi_headers(self.host)
            )
        except ProviderRejected as exc:
            raise UnresolvableIdentifier(
                f"TikTok video {external_id} was rejected by the provider (HTTP {exc.status_code})"
            ) from exc

        status_msg = str(dig(data, "status_msg") or dig(data, "statusMsg") or "")
        if "cross_border_violation" in status_msg:
            raise UnresolvableIdentifier("TikTok provider blocked this request (cross_border_violation)")

        shape, record = apply_adapters(POST_METRIC_SHAPES, data)
        if record is None:
            raise UnresolvableIdentifier(f"TikTok response for video {external_id} had no statistics")

        trace.log("tiktok_metrics_parsed", {"shape": shape})
        owner = first_present(data, POST_OWNER_ALIASES)
        created = first_present(data, POST_CREATED_ALIASES)

        return PostMetrics(
            views=to_int(record["views"]),
            likes=to_int(record.get("likes")),
            comments=to_int(record.get("comments")),
            shares=to_int(record.get("shares")),
            owner_handle=normalize_handle(owner),
            posted_at=parse_timestamp(created),
        )

