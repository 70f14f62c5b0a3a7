"""Child observation storage and index finalization."""

import uuid
from typing import Any, Iterable, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.core.database import dialect_insert
from tracker.core.geo import calculate_geo_distribution
from tracker.core.lifecycle import JobLifecycleManager, MetricsSnapshot
from tracker.core.providers.base import ObservationRecord, SoundProvider, engagement_rate
from tracker.core.resolver import DEFAULT_SOUND_TITLE
from tracker.models.child_observation import ChildObservation
from tracker.models.tracked_item import TrackedItem
from tracker.utils.job_logger import DebugTrace
from tracker.utils.validators import utcnow

logger = structlog.get_logger()

# asyncpg allows at most 32767 bind parameters per statement
UPSERT_BATCH_SIZE = 500

UPDATABLE_COLUMNS = (
    "video_url",
    "creator_handle",
    "creator_name",
    "views",
    "likes",
    "comments",
    "shares",
    "engagement_rate",
    "region",
    "posted_at",
    "correlation_handle",
    "raw_data",
    "observed_at",
)


class ObservationStore:
    """Idempotent bulk writes of ChildObservation rows."""

    def __init__(self, session: AsyncSession, batch_size: int = UPSERT_BATCH_SIZE):
        self.session = session
        self.batch_size = batch_size

    async def upsert(
        self,
        parent: TrackedItem,
        records: Iterable[ObservationRecord],
        correlation_handle: Optional[str] = None
    ) -> int:
        """
        Upsert rows keyed by (parent_id, external_video_id). Does not commit.

        Returns the number of distinct rows written.
        """
        # Last row wins when a payload repeats a video id
        unique = {record.external_video_id: record for record in records}
        if not unique:
            return 0

        now = utcnow()
        rows = [
            {
                "id": uuid.uuid4(),
                "parent_id": parent.id,
                "platform": parent.platform,
                "external_video_id": record.external_video_id,
                "video_url": record.video_url,
                "creator_handle": record.creator_handle,
                "creator_name": record.creator_name,
                "views": record.views,
                "likes": record.likes,
                "comments": record.comments,
                "shares": record.shares,
                "engagement_rate": record.engagement_rate,
                "region": record.region,
                "posted_at": record.posted_at,
                "correlation_handle": correlation_handle,
                "raw_data": record.raw,
                "first_seen_at": now,
                "observed_at": now,
            }
            for record in unique.values()
        ]

        for start in range(0, len(rows), self.batch_size):
            stmt = dialect_insert(self.session, ChildObservation).values(rows[start:start + self.batch_size])
            stmt = stmt.on_conflict_do_update(
                index_elements=["parent_id", "external_video_id"],
                set_={column: getattr(stmt.excluded, column) for column in UPDATABLE_COLUMNS},
            )
            await self.session.execute(stmt)
        return len(rows)

    async def summarize(self, parent_id: uuid.UUID):
        """Aggregate metrics, row count and geo distribution for a parent."""
        totals = (
            await self.session.execute(
                select(
                    func.count(ChildObservation.id),
                    func.coalesce(func.sum(ChildObservation.views), 0),
                    func.coalesce(func.sum(ChildObservation.likes), 0),
                    func.coalesce(func.sum(ChildObservation.comments), 0),
                    func.coalesce(func.sum(ChildObservation.shares), 0),
                ).where(ChildObservation.parent_id == parent_id)
            )
        ).one()
        count, views, likes, comments, shares = (int(value or 0) for value in totals)

        regions = (
            await self.session.execute(
                select(ChildObservation.region).where(
                    ChildObservation.parent_id == parent_id,
                    ChildObservation.region.is_not(None),
                )
            )
        ).scalars().all()

        snapshot = MetricsSnapshot(
            views=views,
            likes=likes,
            comments=comments,
            shares=shares,
            engagement_rate=engagement_rate(views, likes, comments, shares),
        )
        return snapshot, count, calculate_geo_distribution(regions)


async def finalize_index(
    session: AsyncSession,
    item: TrackedItem,
    provider: SoundProvider,
    rows: List[Any],
    *,
    component: str,
    trace: Optional[DebugTrace] = None,
    correlation_handle: Optional[str] = None
) -> TrackedItem:
    """
    Load an index job's result rows and mark the sound active.

    Observations, aggregates and the ``indexing -> active`` transition
    commit together. If the transition is rejected (the item was reset or
    already finished) the whole unit rolls back and the error propagates.
    """
    records = [record for record in (provider.parse_observation(row) for row in rows) if record]
    skipped = len(rows) - len(records)

    item_id = item.id
    store = ObservationStore(session)
    try:
        written = await store.upsert(item, records, correlation_handle)
        await session.flush()
        snapshot, count, geo = await store.summarize(item_id)

        values = {"observation_count": count, "geo_distribution": geo}
        if not item.title or item.title == DEFAULT_SOUND_TITLE:
            for row in rows[:5]:
                metadata = provider.parse_metadata_from_row(row)
                if metadata and metadata.title:
                    values["title"] = metadata.title
                    if metadata.artist:
                        values["artist"] = metadata.artist
                    break

        if trace is not None:
            trace.log("observations_loaded", {"rows": len(rows), "written": written, "skipped": skipped})
            values["debug_trace"] = trace.to_list()

        lifecycle = JobLifecycleManager(session, component=component)
        completed = await lifecycle.complete(
            item_id,
            snapshot,
            reason=f"indexed {written} observations",
            values=values,
            commit=False,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Sound index finalized",
        item_id=str(item_id),
        observations=count,
        written=written,
        skipped=skipped,
        views=snapshot.views
    )
    return completed
