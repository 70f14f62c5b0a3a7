"""Instagram sound and post providers."""

from typing import Any, Dict, List, Optional

import structlog

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
    find_list,
    first_present,
    to_int,
)
from tracker.utils.job_logger import DebugTrace
from tracker.utils.validators import normalize_handle, parse_timestamp

logger = structlog.get_logger()


LICENSED_MUSIC_FIELDS = {
    "key": ("music_canonical_id", "music_info.music_asset_info.audio_cluster_id",
            "music_info.music_asset_info.audio_asset_id"),
    "title": ("music_info.music_asset_info.title", "music_info.song_name"),
    "artist": ("music_info.music_asset_info.display_artist", "music_info.artist_name"),
}

ORIGINAL_AUDIO_FIELDS = {
    "key": ("audio.id", "audio_asset_id"),
    "title": ("audio.title", "original_audio_title"),
    "artist": ("user.username", "ig_artist.username", "owner.username"),
}

CLIPS_ORIGINAL_FIELDS = {
    "key": ("audio_asset_id", "audio_id"),
    "title": ("original_audio_title",),
    "artist": ("ig_artist.username",),
}

# Media info responses: licensed track first, then original audio
MEDIA_AUDIO_SHAPES = [
    ShapeAdapter("items_music_metadata", "items.0.music_metadata", LICENSED_MUSIC_FIELDS, required=("key",)),
    ShapeAdapter("music_metadata", "music_metadata", LICENSED_MUSIC_FIELDS, required=("key",)),
    ShapeAdapter("data_music_metadata", "data.music_metadata", LICENSED_MUSIC_FIELDS, required=("key",)),
    ShapeAdapter("items_clips_music", "items.0.clips_metadata.music_info.music_asset_info",
                 {"key": ("audio_cluster_id", "audio_asset_id"), "title": ("title",),
                  "artist": ("display_artist",)}, required=("key",)),
    ShapeAdapter("items_clips_original", "items.0.clips_metadata.original_sound_info",
                 CLIPS_ORIGINAL_FIELDS, required=("key",), defaults={"title": "Original Audio"}),
    ShapeAdapter("items_original_audio", "items.0", ORIGINAL_AUDIO_FIELDS,
                 required=("key",), defaults={"title": "Original Audio"}),
    ShapeAdapter("data_original_audio", "data", ORIGINAL_AUDIO_FIELDS,
                 required=("key",), defaults={"title": "Original Audio"}),
    ShapeAdapter("original_audio", "", ORIGINAL_AUDIO_FIELDS,
                 required=("key",), defaults={"title": "Original Audio"}),
]

OBSERVATION_SHAPES = [
    ShapeAdapter(
        "apify_reel",
        "",
        {
            "id": ("shortCode", "code", "shortcode", "id", "pk"),
            "handle": ("ownerUsername", "owner.username", "user.username"),
            "name": ("ownerFullName", "owner.full_name", "user.full_name"),
            "views": ("videoViewCount", "videoPlayCount", "video_view_count", "play_count",
                      "viewCount", "view_count", "playCount"),
            "likes": ("likesCount", "like_count", "likeCount"),
            "comments": ("commentsCount", "comment_count", "commentCount"),
            "shares": ("sharesCount", "share_count", "reshare_count"),
            "posted_at": ("timestamp", "taken_at"),
            "region": ("region", "locationCountry"),
            "url": ("url", "permalink"),
        },
        required=("id",),
    ),
    ShapeAdapter("media_node", "media", {
        "id": ("code", "pk", "id"),
        "handle": ("user.username", "owner.username"),
        "views": ("play_count", "view_count", "video_view_count"),
        "likes": ("like_count",),
        "comments": ("comment_count",),
        "shares": ("reshare_count",),
        "posted_at": ("taken_at",),
    }, required=("id",)),
    ShapeAdapter("normalized", "", NORMALIZED_OBSERVATION_FIELDS, required=("id",)),
]

POST_METRIC_FIELDS = {
    "views": ("video_view_count", "video_play_count", "play_count", "ig_play_count",
              "view_count", "videoViewCount", "playCount"),
    "likes": ("edge_media_preview_like.count", "like_count", "likesCount", "likes"),
    "comments": ("edge_media_to_comment.count", "comment_count", "commentsCount", "comments"),
    "shares": ("share_count", "reshare_count", "shares"),
    "owner": ("owner.username", "user.username", "ownerUsername"),
    "posted_at": ("taken_at_timestamp", "taken_at", "timestamp"),
}

POST_METRIC_SHAPES = [
    ShapeAdapter(name, root, POST_METRIC_FIELDS, required=("likes",))
    for name, root in (
        ("data", "data"),
        ("items", "items.0"),
        ("graphql", "graphql.shortcode_media"),
        ("flat", ""),
    )
]

OBSERVATION_LIST_PATHS = ("items", "data.items", "reels", "data.reels", "data")


def _rapidapi_headers(host: str) -> Dict[str, str]:
    return {"x-rapidapi-key": settings.rapidapi_key, "x-rapidapi-host": host}


class InstagramSoundProvider(SoundProvider):
    """Resolves Instagram audio ids and indexes their reels inline."""

    platform = Platform.INSTAGRAM
    observation_shapes = OBSERVATION_SHAPES

    def __init__(self, http, host: Optional[str] = None):
        super().__init__(http)
        self.host = host or settings.instagram_audio_api_host

    async def resolve_precursor(self, precursor: str, trace: DebugTrace) -> SoundMetadata:
        trace.log("instagram_media_lookup", {"shortcode": precursor})
        try:
            data = await self.http.get_json(
                f"https://{self.host}/media/info",
                params={"shortcode": precursor},
                headers=_rapidapi_headers(self.host)
            )
        except ProviderRejected as exc:
            raise UnresolvableIdentifier(
                f"Instagram post {precursor} could not be looked up (HTTP {exc.status_code})",
                details={"shortcode": precursor}
            ) from exc

        shape, record = apply_adapters(MEDIA_AUDIO_SHAPES, data)
        if record is None:
            trace.log("instagram_audio_missing", {"shortcode": precursor})
            raise UnresolvableIdentifier(
                f"No audio found on Instagram post {precursor}",
                details={"shortcode": precursor}
            )

        key = str(record["key"])
        trace.log("instagram_audio_resolved", {"shape": shape, "audio_id": key})
        return SoundMetadata(
            canonical_key=key,
            title=record.get("title"),
            artist=record.get("artist"),
            page_url=self.page_url(key),
        )

    def page_url(self, canonical_key: str) -> str:
        return f"https://www.instagram.com/reels/audio/{canonical_key}/"

    def actor_input(self, page_url: str, canonical_key: str, max_items: int) -> Dict[str, Any]:
        return {
            "directUrls": [page_url],
            "startUrls": [{"url": page_url}],
            "resultsLimit": max_items,
            "maxItems": max_items,
        }

    async def list_observations(
        self, canonical_key: str, limit: int, trace: DebugTrace
    ) -> List[Dict[str, Any]]:
        """
        Fetch reels using an audio track.

        Tries the audio reels endpoint first and falls back to the clips
        endpoint when it fails or comes back empty.
        """
        endpoints = [
            ("audio_reels", f"https://{self.host}/audio/reels", {"audio_id": canonical_key}),
            ("music_clips", f"https://{self.host}/music/clips", {"id": canonical_key}),
        ]
        last_error = None
        for name, url, params in endpoints:
            try:
                data = await self.http.get_json(url, params=params, headers=_rapidapi_headers(self.host))
            except ProviderRejected as exc:
                trace.log(f"instagram_{name}_rejected", {"status": exc.status_code})
                last_error = exc
                continue

            rows = find_list(data, OBSERVATION_LIST_PATHS)
            trace.log(f"instagram_{name}", {"count": len(rows)})
            if rows:
                return rows[:limit]

        if last_error is not None:
            raise UnresolvableIdentifier(
                f"Instagram audio {canonical_key} could not be indexed (HTTP {last_error.status_code})"
            ) from last_error
        logger.info("Instagram audio has no reels", audio_id=canonical_key)
        return []

    def parse_observation(self, row: Any):
        observation = super().parse_observation(row)
        if observation is not None and not observation.video_url:
            observation.video_url = f"https://www.instagram.com/reel/{observation.external_video_id}/"
        return observation

    def parse_metadata_from_row(self, row: Any) -> Optional[SoundMetadata]:
        _, record = apply_adapters(MEDIA_AUDIO_SHAPES, {"items": [row]})
        if record is None or record.get("title") is None:
            return None
        return SoundMetadata(
            canonical_key=str(record["key"]),
            title=record.get("title"),
            artist=record.get("artist"),
        )


class InstagramPostProvider(PostProvider):
    """Scrapes an Instagram post or reel by shortcode."""

    platform = Platform.INSTAGRAM

    def __init__(self, http, host: Optional[str] = None):
        super().__init__(http)
        self.host = host or settings.instagram_api_host

    async def fetch_metrics(self, external_id: str, url: Optional[str], trace: DebugTrace) -> PostMetrics:
        trace.log("instagram_media_data", {"shortcode": external_id})
        try:
            data = await self.http.get_json(
                f"https://{self.host}/get_media_data_v2.php",
                params={"media_code": external_id},
                headers=_rapidapi_headers(self.host)
            )
        except ProviderRejected as exc:
            raise UnresolvableIdentifier(
                f"Instagram post {external_id} was rejected by the provider (HTTP {exc.status_code})"
            ) from exc

        shape, record = apply_adapters(POST_METRIC_SHAPES, data)
        if record is None:
            raise UnresolvableIdentifier(f"Instagram response for post {external_id} had no metrics")

        trace.log("instagram_metrics_parsed", {"shape": shape})
        return PostMetrics(
            views=to_int(record.get("views")),
            likes=to_int(record.get("likes")),
            comments=to_int(record.get("comments")),
            shares=to_int(record.get("shares")),
            owner_handle=normalize_handle(first_present(record, ("owner",))),
            posted_at=parse_timestamp(record.get("posted_at")),
        )
