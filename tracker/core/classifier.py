"""
URL classification and identifier extraction.

``classify`` is a pure function: it performs no I/O and never raises. Every
input yields either a ``Classification`` or a ``ClassificationError``.
"""

import enum
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Type, Union
from urllib.parse import urlsplit

from tracker.core.errors import TrackingError, UnresolvableIdentifier, UnsupportedPlatform
from tracker.utils.validators import normalize_handle, normalize_url


class Platform(str, enum.Enum):
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"
    YOUTUBE = "youtube"
    TWITTER = "twitter"
    FACEBOOK = "facebook"


class EntityKind(str, enum.Enum):
    SOUND = "sound"
    POST = "post"


class IdentifierKind(str, enum.Enum):
    DIRECT = "direct"
    INDIRECT = "indirect"


# Checked in order; first domain match wins
PLATFORM_DOMAINS: List[Tuple[Platform, Tuple[str, ...]]] = [
    (Platform.TIKTOK, ("tiktok.com",)),
    (Platform.INSTAGRAM, ("instagram.com", "instagr.am")),
    (Platform.YOUTUBE, ("youtube.com", "youtu.be")),
    (Platform.TWITTER, ("twitter.com", "x.com")),
    (Platform.FACEBOOK, ("facebook.com", "fb.com", "fb.watch")),
]

INSTAGRAM_RESERVED_PATHS = {
    "p", "reel", "reels", "tv", "stories", "story", "share", "explore",
    "direct", "accounts", "about", "legal", "privacy", "terms", "audio",
}


@dataclass(frozen=True)
class PatternRule:
    """One identifier extraction rule: a regex applied to part of the URL."""
    name: str
    pattern: "re.Pattern"
    identifier_kind: IdentifierKind = IdentifierKind.DIRECT
    target: str = "path"
    hosts: Tuple[str, ...] = ()

    def match(self, host: str, path: str, query: str) -> Optional[str]:
        if self.hosts and not any(_host_matches(host, h) for h in self.hosts):
            return None
        subject = query if self.target == "query" else path
        found = self.pattern.search(subject)
        return found.group(1) if found else None


def _rule(name, pattern, kind=IdentifierKind.DIRECT, target="path", hosts=()):
    return PatternRule(name, re.compile(pattern), kind, target, tuple(hosts))


SOUND_RULES: Dict[Platform, List[PatternRule]] = {
    Platform.TIKTOK: [
        _rule("music_slug", r"/music/[^/?#]*-(\d{6,})"),
        _rule("music_id", r"/music/(\d{6,})"),
        _rule("video", r"/video/(\d+)", IdentifierKind.INDIRECT),
        _rule("short_video", r"^/v/(\d+)", IdentifierKind.INDIRECT),
    ],
    Platform.INSTAGRAM: [
        _rule("reels_audio", r"/reels/audio/(\d+)"),
        _rule("audio", r"/audio/(\d+)"),
        _rule("reel", r"/(?:reel|reels|p)/([A-Za-z0-9_-]+)", IdentifierKind.INDIRECT),
    ],
}

POST_RULES: Dict[Platform, List[PatternRule]] = {
    Platform.TIKTOK: [
        _rule("video", r"/video/(\d+)"),
        _rule("photo", r"/photo/(\d+)"),
        _rule("short_link", r"^/([A-Za-z0-9]+)/?$", IdentifierKind.INDIRECT,
              hosts=("vm.tiktok.com", "vt.tiktok.com")),
        _rule("share_link", r"^/t/([A-Za-z0-9]+)", IdentifierKind.INDIRECT),
    ],
    Platform.INSTAGRAM: [
        _rule("media", r"^/(?:p|reel|reels|tv)/([A-Za-z0-9_-]+)"),
        _rule("profile_media", r"^/[A-Za-z0-9._]+/(?:p|reel|tv)/([A-Za-z0-9_-]+)"),
    ],
    Platform.YOUTUBE: [
        _rule("short_host", r"^/([A-Za-z0-9_-]{11})", hosts=("youtu.be",)),
        _rule("watch", r"(?:^|&)v=([A-Za-z0-9_-]{11})", target="query"),
        _rule("path_id", r"^/(?:shorts|embed|v|live)/([A-Za-z0-9_-]{11})"),
    ],
    Platform.TWITTER: [
        _rule("status", r"/status(?:es)?/(\d+)"),
    ],
    Platform.FACEBOOK: [
        _rule("post", r"/posts/([A-Za-z0-9]+)"),
        _rule("video", r"/videos/(\d+)"),
        _rule("reel", r"^/reel/(\d+)"),
        _rule("fbid", r"(?:^|&)(?:story_)?fbid=(\d+)", target="query"),
    ],
}

OWNER_PATTERNS: Dict[Platform, "re.Pattern"] = {
    Platform.TIKTOK: re.compile(r"/@([^/?#]+)"),
    Platform.INSTAGRAM: re.compile(r"^/([A-Za-z0-9._]+)/(?:p|reel|tv)/"),
    Platform.YOUTUBE: re.compile(r"^/@([^/?#]+)"),
    Platform.TWITTER: re.compile(r"^/([A-Za-z0-9_]{1,15})/status"),
    Platform.FACEBOOK: re.compile(r"^/([A-Za-z0-9.]+)/(?:posts|videos)/"),
}


@dataclass(frozen=True)
class Classification:
    platform: Platform
    entity: EntityKind
    identifier_kind: IdentifierKind
    raw_identifier: str
    url: str
    rule: str
    owner_handle: Optional[str] = None
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class ClassificationError:
    error: Type[TrackingError]
    message: str
    url: str
    platform: Optional[Platform] = None
    ok: bool = field(default=False, init=False)

    def to_exception(self) -> TrackingError:
        details = {"url": self.url}
        if self.platform:
            details["platform"] = self.platform.value
        return self.error(self.message, details=details)


ClassifyResult = Union[Classification, ClassificationError]


def _host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def detect_platform(host: str) -> Optional[Platform]:
    host = host.lower().rstrip(".")
    for platform, domains in PLATFORM_DOMAINS:
        if any(_host_matches(host, d) for d in domains):
            return platform
    return None


def _owner_handle(platform: Platform, path: str) -> Optional[str]:
    pattern = OWNER_PATTERNS.get(platform)
    if pattern is None:
        return None
    found = pattern.search(path)
    if not found:
        return None
    handle = found.group(1)
    if platform == Platform.INSTAGRAM and handle.lower() in INSTAGRAM_RESERVED_PATHS:
        return None
    return normalize_handle(handle)


def _is_instagram_profile(path: str) -> bool:
    found = re.match(r"^/([A-Za-z0-9._]+)/?$", path)
    return bool(found) and found.group(1).lower() not in INSTAGRAM_RESERVED_PATHS


def classify(url, entity: EntityKind = EntityKind.SOUND) -> ClassifyResult:
    """
    Classify a URL into platform + identifier.

    Args:
        url: Raw URL as submitted by the user (may lack a scheme)
        entity: Whether the URL should identify a sound or a post

    Returns:
        Classification on success, ClassificationError otherwise
    """
    entity = EntityKind(entity)
    normalized = normalize_url(url)
    if not normalized:
        return ClassificationError(UnsupportedPlatform, "No URL provided", str(url or ""))

    try:
        parts = urlsplit(normalized)
        host = (parts.hostname or "").lower()
    except ValueError:
        return ClassificationError(UnsupportedPlatform, "Malformed URL", normalized)

    platform = detect_platform(host)
    if platform is None:
        return ClassificationError(
            UnsupportedPlatform,
            f"Unsupported platform for host '{host or normalized}'",
            normalized
        )

    rules = (SOUND_RULES if entity == EntityKind.SOUND else POST_RULES).get(platform)
    if rules is None:
        return ClassificationError(
            UnsupportedPlatform,
            f"{platform.value.title()} {entity.value} resolution is not supported",
            normalized,
            platform
        )

    path = parts.path or "/"
    query = parts.query or ""
    for rule in rules:
        identifier = rule.match(host, path, query)
        if identifier:
            return Classification(
                platform=platform,
                entity=entity,
                identifier_kind=rule.identifier_kind,
                raw_identifier=identifier,
                url=normalized,
                rule=rule.name,
                owner_handle=_owner_handle(platform, path),
            )

    if platform == Platform.INSTAGRAM and entity == EntityKind.POST and _is_instagram_profile(path):
        message = "This looks like a profile link. Paste a post or reel link instead"
    else:
        message = f"Could not extract a {platform.value} {entity.value} identifier from URL"
    return ClassificationError(UnresolvableIdentifier, message, normalized, platform)
