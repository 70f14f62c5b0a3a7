"""Canonical entity resolution and deduplicating upsert."""

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.core.classifier import (
    Classification,
    EntityKind,
    IdentifierKind,
    Platform,
    classify,
)
from tracker.core.database import dialect_insert
from tracker.core.errors import ProviderRejected, TrackingError, UnresolvableIdentifier
from tracker.core.http_client import RetryingClient
from tracker.core.providers import get_sound_provider, has_post_provider
from tracker.models.campaign_item import CampaignItem
from tracker.models.tracked_item import ItemStatus, TrackedItem
from tracker.utils.job_logger import DebugTrace, record_transition
from tracker.utils.validators import utcnow

logger = structlog.get_logger()

DEFAULT_SOUND_TITLE = "Unknown Sound"
DEFAULT_SOUND_ARTIST = "Unknown Artist"


@dataclass
class CanonicalIdentity:
    """Resolved identity plus descriptive metadata for one entity."""
    platform: Platform
    kind: EntityKind
    canonical_key: str
    source_url: str
    page_url: Optional[str] = None
    title: Optional[str] = None
    artist: Optional[str] = None
    owner_handle: Optional[str] = None

    @property
    def needs_metadata(self) -> bool:
        return self.kind == EntityKind.SOUND and not self.title

    def refresh_values(self) -> Dict[str, Any]:
        """Non-identity fields refreshed when a known entity is re-submitted."""
        values = {
            "source_url": self.source_url,
            "page_url": self.page_url,
            "title": self.title,
            "artist": self.artist,
            "owner_handle": self.owner_handle,
        }
        return {key: value for key, value in values.items() if value is not None}


class CanonicalEntityResolver:
    """
    Turns a classification into a single deduplicated TrackedItem row.

    Resolution of indirect identifiers (a video that uses a sound, a short
    link) needs one provider lookup; direct identifiers are used as-is.
    """

    def __init__(self, session: AsyncSession, http: RetryingClient):
        self.session = session
        self.http = http

    async def resolve(self, classification: Classification, trace: DebugTrace) -> CanonicalIdentity:
        trace.log("classified", {
            "platform": classification.platform.value,
            "entity": classification.entity.value,
            "identifier_kind": classification.identifier_kind.value,
            "rule": classification.rule,
            "raw_identifier": classification.raw_identifier,
        })

        if classification.entity == EntityKind.SOUND:
            return await self._resolve_sound(classification, trace)
        return await self._resolve_post(classification, trace)

    async def _resolve_sound(self, classification: Classification, trace: DebugTrace) -> CanonicalIdentity:
        provider = get_sound_provider(classification.platform, self.http)

        if classification.identifier_kind == IdentifierKind.INDIRECT:
            metadata = await provider.resolve_precursor(classification.raw_identifier, trace)
            page_url = metadata.page_url or provider.page_url(metadata.canonical_key)
        else:
            metadata = None
            page_url = classification.url

        canonical_key = metadata.canonical_key if metadata else classification.raw_identifier
        return CanonicalIdentity(
            platform=classification.platform,
            kind=EntityKind.SOUND,
            canonical_key=canonical_key,
            source_url=classification.url,
            page_url=page_url,
            title=metadata.title if metadata else None,
            artist=metadata.artist if metadata else None,
        )

    async def _resolve_post(self, classification: Classification, trace: DebugTrace) -> CanonicalIdentity:
        if classification.identifier_kind == IdentifierKind.INDIRECT:
            classification = await self._expand_short_link(classification, trace)

        return CanonicalIdentity(
            platform=classification.platform,
            kind=EntityKind.POST,
            canonical_key=classification.raw_identifier,
            source_url=classification.url,
            page_url=classification.url,
            owner_handle=classification.owner_handle,
        )

    async def _expand_short_link(self, classification: Classification, trace: DebugTrace) -> Classification:
        """Follow a share link's redirects and classify the landing URL."""
        try:
            response = await self.http.request("GET", classification.url, follow_redirects=True)
        except ProviderRejected as exc:
            raise UnresolvableIdentifier(
                f"Short link could not be expanded (HTTP {exc.status_code})",
                details={"url": classification.url}
            ) from exc

        final_url = str(response.url)
        trace.log("short_link_expanded", {"from": classification.url, "to": final_url})
        expanded = classify(final_url, EntityKind.POST)
        if not expanded.ok or expanded.identifier_kind != IdentifierKind.DIRECT:
            raise UnresolvableIdentifier(
                "Short link did not lead to a post",
                details={"url": classification.url, "expanded_url": final_url}
            )
        return expanded

    async def upsert(self, identity: CanonicalIdentity) -> TrackedItem:
        """
        Insert the entity if it is new; otherwise return the existing row.

        The (platform, canonical_key) unique index arbitrates concurrent
        inserts: the loser's INSERT becomes a no-op.
        """
        if identity.kind == EntityKind.POST and not has_post_provider(identity.platform):
            initial_status = ItemStatus.MANUAL.value
        else:
            initial_status = ItemStatus.PENDING.value

        now = utcnow()
        item_id = uuid.uuid4()
        stmt = dialect_insert(self.session, TrackedItem).values(
            id=item_id,
            kind=identity.kind.value,
            platform=identity.platform.value,
            canonical_key=identity.canonical_key,
            owner_handle=identity.owner_handle,
            title=identity.title,
            artist=identity.artist,
            source_url=identity.source_url,
            page_url=identity.page_url,
            status=initial_status,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["platform", "canonical_key"])

        result = await self.session.execute(stmt)
        created = result.rowcount == 1
        if created:
            await record_transition(self.session, item_id, "resolver", None, initial_status, "created")
        await self.session.commit()

        item = (
            await self.session.execute(
                select(TrackedItem)
                .where(
                    TrackedItem.platform == identity.platform.value,
                    TrackedItem.canonical_key == identity.canonical_key,
                )
                .execution_options(populate_existing=True)
            )
        ).scalar_one()

        if item.kind != identity.kind.value:
            raise UnresolvableIdentifier(
                f"{identity.platform.value} id {identity.canonical_key} is already tracked as a {item.kind}",
                details={"item_id": str(item.id)}
            )

        logger.info(
            "Entity upserted",
            item_id=str(item.id),
            platform=item.platform,
            canonical_key=item.canonical_key,
            created=created
        )
        return item

    async def backfill_metadata(self, item: TrackedItem, trace: DebugTrace) -> TrackedItem:
        """
        Fill in a sound's title/artist with a second lookup.

        Best effort: a failed lookup is recorded in the trace and the run
        continues with default labels.
        """
        if item.kind != EntityKind.SOUND.value or item.title:
            return item

        provider = get_sound_provider(item.platform, self.http)
        metadata = None
        try:
            metadata = await provider.fetch_metadata(item.canonical_key, trace)
        except TrackingError as exc:
            trace.log("metadata_backfill_failed", {"error": exc.code, "detail": exc.message})
            logger.warning("Metadata backfill failed", item_id=str(item.id), error=exc.message)

        title = (metadata.title if metadata else None) or DEFAULT_SOUND_TITLE
        artist = (metadata.artist if metadata else None) or item.artist or DEFAULT_SOUND_ARTIST
        item.title = title
        item.artist = artist
        await self.session.commit()
        return item

    async def link_campaign(self, item_id: uuid.UUID, campaign_id: str) -> None:
        stmt = dialect_insert(self.session, CampaignItem).values(
            campaign_id=campaign_id,
            item_id=item_id,
            created_at=utcnow(),
        ).on_conflict_do_nothing(index_elements=["campaign_id", "item_id"])
        await self.session.execute(stmt)
        await self.session.commit()
