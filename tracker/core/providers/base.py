"""Base provider classes and defensive response parsing helpers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from tracker.core.classifier import Platform
from tracker.core.errors import UnsupportedPlatform
from tracker.core.http_client import RetryingClient
from tracker.utils.job_logger import DebugTrace
from tracker.utils.validators import normalize_handle, parse_timestamp


def dig(data: Any, path: str) -> Any:
    """Follow a dotted path through dicts and lists ("items.0.music")."""
    node = data
    if not path:
        return node
    for part in path.split("."):
        if isinstance(node, Mapping):
            node = node.get(part)
        elif isinstance(node, (list, tuple)) and part.isdigit():
            index = int(part)
            node = node[index] if index < len(node) else None
        else:
            return None
        if node is None:
            return None
    return node


def first_present(data: Any, aliases: Iterable[str]) -> Any:
    """Return the first alias whose value is neither None nor empty string."""
    for alias in aliases:
        value = dig(data, alias)
        if value is not None and value != "":
            return value
    return None


def to_int(value: Any) -> int:
    """Coerce a provider count ("1,234", 12.0, None) into a non-negative int."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = value.replace(",", "").strip()
        if not value:
            return 0
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return 0
    return max(number, 0)


def engagement_rate(views: int, likes: int, comments: int, shares: int) -> float:
    """(likes + comments + shares) / views * 100, rounded to 2 decimals."""
    if views <= 0:
        return 0.0
    return round((likes + comments + shares) / views * 100, 2)


@dataclass(frozen=True)
class ShapeAdapter:
    """
    One known response shape.

    ``root`` points at the sub-object holding the fields; ``fields`` maps
    each output field to an ordered alias list tried against that root.
    The adapter yields a record only if every ``required`` field is found.
    """
    name: str
    root: str
    fields: Mapping[str, Sequence[str]]
    required: Tuple[str, ...] = ()
    defaults: Mapping[str, Any] = field(default_factory=dict)

    def extract(self, data: Any) -> Optional[Dict[str, Any]]:
        node = dig(data, self.root)
        if not isinstance(node, Mapping):
            return None
        record = {name: first_present(node, aliases) for name, aliases in self.fields.items()}
        if any(record.get(name) is None for name in self.required):
            return None
        for name, value in self.defaults.items():
            if record.get(name) is None:
                record[name] = value
        return record


def apply_adapters(
    adapters: Sequence[ShapeAdapter], data: Any
) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
    """Return (adapter name, record) for the first adapter that matches."""
    for adapter in adapters:
        record = adapter.extract(data)
        if record is not None:
            return adapter.name, record
    return None, None


def find_list(data: Any, paths: Sequence[str]) -> List[Any]:
    for path in paths:
        value = dig(data, path)
        if isinstance(value, list):
            return value
    return []


@dataclass
class SoundMetadata:
    canonical_key: str
    title: Optional[str] = None
    artist: Optional[str] = None
    page_url: Optional[str] = None


@dataclass
class PostMetrics:
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    owner_handle: Optional[str] = None
    posted_at: Optional[datetime] = None

    @property
    def engagement_rate(self) -> float:
        return engagement_rate(self.views, self.likes, self.comments, self.shares)


@dataclass
class ObservationRecord:
    """One child content row (a video using a sound)."""
    external_video_id: str
    creator_handle: Optional[str] = None
    creator_name: Optional[str] = None
    video_url: Optional[str] = None
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    posted_at: Optional[datetime] = None
    region: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def engagement_rate(self) -> float:
        return engagement_rate(self.views, self.likes, self.comments, self.shares)


# Aliases shared by every platform for rows already in normalized form
NORMALIZED_OBSERVATION_FIELDS = {
    "id": ("externalVideoId", "external_video_id", "videoId", "video_id", "id"),
    "handle": ("ownerHandle", "owner_handle", "creatorHandle", "creator_handle"),
    "views": ("views", "viewCount", "view_count"),
    "likes": ("likes", "likeCount", "like_count"),
    "comments": ("comments", "commentCount", "comment_count"),
    "shares": ("shares", "shareCount", "share_count"),
    "posted_at": ("postedAt", "posted_at", "createTime", "timestamp"),
    "region": ("region", "country"),
    "url": ("url", "videoUrl", "video_url"),
}


def build_observation(record: Dict[str, Any], raw: Dict[str, Any]) -> Optional[ObservationRecord]:
    external_id = record.get("id")
    if external_id is None or str(external_id).strip() == "":
        return None
    region = record.get("region")
    if not (isinstance(region, str) and len(region.strip()) == 2):
        region = None
    return ObservationRecord(
        external_video_id=str(external_id),
        creator_handle=normalize_handle(record.get("handle")),
        creator_name=record.get("name"),
        video_url=record.get("url"),
        views=to_int(record.get("views")),
        likes=to_int(record.get("likes")),
        comments=to_int(record.get("comments")),
        shares=to_int(record.get("shares")),
        posted_at=parse_timestamp(record.get("posted_at")),
        region=region.strip().upper() if region else None,
        raw=raw,
    )


class SoundProvider(ABC):
    """Resolves sounds on one platform and parses their child rows."""

    platform: Platform
    observation_shapes: Sequence[ShapeAdapter] = ()

    def __init__(self, http: RetryingClient):
        self.http = http

    @abstractmethod
    async def resolve_precursor(self, precursor: str, trace: DebugTrace) -> SoundMetadata:
        """Dereference a post/video identifier into the sound it uses."""
        pass

    async def fetch_metadata(self, canonical_key: str, trace: DebugTrace) -> Optional[SoundMetadata]:
        """Best-effort lookup of title/artist for a direct sound id."""
        return None

    @abstractmethod
    def page_url(self, canonical_key: str) -> str:
        pass

    def actor_input(self, page_url: str, canonical_key: str, max_items: int) -> Dict[str, Any]:
        """Orchestrator run input for an asynchronous index job."""
        return {"startUrls": [{"url": page_url}], "maxItems": max_items}

    async def list_observations(
        self, canonical_key: str, limit: int, trace: DebugTrace
    ) -> List[Dict[str, Any]]:
        """Fetch child rows inline (platforms indexed without the orchestrator)."""
        raise UnsupportedPlatform(
            f"{self.platform.value.title()} sounds can only be indexed through the orchestrator"
        )

    def parse_observation(self, row: Any) -> Optional[ObservationRecord]:
        if not isinstance(row, Mapping):
            return None
        _, record = apply_adapters(self.observation_shapes, row)
        if record is None:
            return None
        return build_observation(record, dict(row))

    def parse_metadata_from_row(self, row: Any) -> Optional[SoundMetadata]:
        """Sound title/artist carried on a result row, if any."""
        return None


class PostProvider(ABC):
    """Scrapes current metrics for a single post."""

    platform: Platform

    def __init__(self, http: RetryingClient):
        self.http = http

    @abstractmethod
    async def fetch_metrics(self, external_id: str, url: Optional[str], trace: DebugTrace) -> PostMetrics:
        pass
