"""Per-platform provider adapters"""

from typing import Dict, Type

from tracker.core.classifier import Platform
from tracker.core.errors import UnsupportedPlatform
from tracker.core.http_client import RetryingClient
from tracker.core.providers.base import (
    ObservationRecord,
    PostMetrics,
    PostProvider,
    ShapeAdapter,
    SoundMetadata,
    SoundProvider,
)
from tracker.core.providers.instagram import InstagramPostProvider, InstagramSoundProvider
from tracker.core.providers.tiktok import TikTokPostProvider, TikTokSoundProvider
from tracker.core.providers.twitter import TwitterPostProvider
from tracker.core.providers.youtube import YouTubePostProvider

SOUND_PROVIDERS: Dict[Platform, Type[SoundProvider]] = {
    Platform.TIKTOK: TikTokSoundProvider,
    Platform.INSTAGRAM: InstagramSoundProvider,
}

# Facebook has no provider; its posts are tracked manually
POST_PROVIDERS: Dict[Platform, Type[PostProvider]] = {
    Platform.TIKTOK: TikTokPostProvider,
    Platform.INSTAGRAM: InstagramPostProvider,
    Platform.YOUTUBE: YouTubePostProvider,
    Platform.TWITTER: TwitterPostProvider,
}


def get_sound_provider(platform, http: RetryingClient) -> SoundProvider:
    platform = Platform(platform)
    provider_cls = SOUND_PROVIDERS.get(platform)
    if provider_cls is None:
        raise UnsupportedPlatform(f"{platform.value.title()} sound resolution is not supported")
    return provider_cls(http)


def get_post_provider(platform, http: RetryingClient) -> PostProvider:
    platform = Platform(platform)
    provider_cls = POST_PROVIDERS.get(platform)
    if provider_cls is None:
        raise UnsupportedPlatform(
            f"{platform.value.title()} posts cannot be scraped automatically; track them manually"
        )
    return provider_cls(http)


def has_post_provider(platform) -> bool:
    return Platform(platform) in POST_PROVIDERS


__all__ = [
    "ObservationRecord",
    "PostMetrics",
    "PostProvider",
    "ShapeAdapter",
    "SoundMetadata",
    "SoundProvider",
    "SOUND_PROVIDERS",
    "POST_PROVIDERS",
    "get_sound_provider",
    "get_post_provider",
    "has_post_provider",
]
