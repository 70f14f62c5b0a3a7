"""Adaptive polling controller for clients watching tracked items.

Polling speed follows what the watched items are doing:

* ACTIVE: an item is indexing/scraping, or a scrape request is in flight
* RECENT: nothing is running but a mutation happened within the window
* IDLE: otherwise; still polls to pick up webhook-driven completions and
  to spot stuck jobs

All state lives on a ``PollingSession`` whose lifetime is tied to the view
watching the items: ``start()`` when it becomes visible, ``stop()`` when it
goes away.
"""

import asyncio
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

import httpx
import structlog

from tracker.client.api_client import TrackerAPIClient, TrackerAPIError
from tracker.config import Settings, settings as default_settings
from tracker.utils.validators import parse_timestamp, utcnow

logger = structlog.get_logger()

IN_FLIGHT_STATUSES = {"indexing", "scraping"}
TERMINAL_STATUSES = {"active", "scraped", "failed"}

StatusCallback = Callable[[str, Dict[str, Any]], Any]


class PollTier(str, enum.Enum):
    ACTIVE = "active"
    RECENT = "recent"
    IDLE = "idle"


@dataclass
class PollingConfig:
    active_interval: float = 2.0
    recent_interval: float = 5.0
    idle_interval: float = 30.0
    recent_window: float = 60.0
    stuck_timeout: float = 600.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PollingConfig":
        return cls(
            active_interval=settings.poll_active_seconds,
            recent_interval=settings.poll_recent_seconds,
            idle_interval=settings.poll_idle_seconds,
            recent_window=settings.poll_recent_window_seconds,
            stuck_timeout=settings.stuck_job_timeout_seconds,
        )

    def interval_for(self, tier: PollTier) -> float:
        return {
            PollTier.ACTIVE: self.active_interval,
            PollTier.RECENT: self.recent_interval,
            PollTier.IDLE: self.idle_interval,
        }[tier]


class PollingSession:
    """
    Polls the status of a set of tracked items.

    Args:
        client: Tracking API client
        item_ids: Items to watch initially
        config: Tier intervals and stuck-job timeout
        clock: Returns the current UTC time; injectable for tests
        on_update: Called with (item_id, snapshot) after every successful read
        on_complete: Called once per run when an item reaches a terminal
            status; re-armed when the item goes back in flight
    """

    def __init__(
        self,
        client: TrackerAPIClient,
        item_ids: Iterable[str] = (),
        config: Optional[PollingConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        on_update: Optional[StatusCallback] = None,
        on_complete: Optional[StatusCallback] = None
    ):
        self.client = client
        self.config = config or PollingConfig.from_settings(default_settings)
        self._clock = clock
        self._on_update = on_update
        self._on_complete = on_complete

        self._snapshots: Dict[str, Optional[Dict[str, Any]]] = {str(i): None for i in item_ids}
        self._notified: Set[str] = set()
        self._last_mutation: Optional[datetime] = None
        self._pending_mutations = 0
        self._task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    @property
    def snapshots(self) -> Dict[str, Optional[Dict[str, Any]]]:
        return dict(self._snapshots)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def watch(self, item_id: str) -> None:
        self._snapshots.setdefault(str(item_id), None)
        self._wakeup.set()

    def unwatch(self, item_id: str) -> None:
        self._snapshots.pop(str(item_id), None)
        self._notified.discard(str(item_id))

    def note_mutation(self) -> None:
        """Record a user-triggered change; speeds polling up right away."""
        self._last_mutation = self._clock()
        self._wakeup.set()

    async def _mutate(self, request: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
        """Await a mutating request; the session stays in the active tier while it runs."""
        self._pending_mutations += 1
        self.note_mutation()
        try:
            return await request
        finally:
            self._pending_mutations -= 1
            self.note_mutation()

    async def trigger_scrape(self, item_id: str) -> Dict[str, Any]:
        """Request a re-scrape of one item."""
        return await self._mutate(self.client.rescrape(str(item_id)))

    async def trigger_campaign_scrape(self, campaign_id: str) -> Dict[str, Any]:
        """Request a re-scrape of every post in a campaign."""
        return await self._mutate(self.client.scrape_campaign(campaign_id))

    def has_in_flight(self) -> bool:
        return any(
            snapshot is not None and snapshot.get("status") in IN_FLIGHT_STATUSES
            for snapshot in self._snapshots.values()
        )

    def current_tier(self) -> PollTier:
        if self._pending_mutations or self.has_in_flight():
            return PollTier.ACTIVE
        if self._last_mutation is not None:
            elapsed = (self._clock() - self._last_mutation).total_seconds()
            if elapsed < self.config.recent_window:
                return PollTier.RECENT
        return PollTier.IDLE

    def next_interval(self) -> float:
        return self.config.interval_for(self.current_tier())

    def is_stuck(self, snapshot: Dict[str, Any], now: datetime) -> bool:
        if snapshot.get("status") not in IN_FLIGHT_STATUSES:
            return False
        updated_at = parse_timestamp(snapshot.get("updated_at"))
        if updated_at is None:
            return False
        return (now - updated_at).total_seconds() > self.config.stuck_timeout

    async def tick(self) -> Dict[str, Optional[Dict[str, Any]]]:
        """Poll every watched item once, resetting any stuck job."""
        now = self._clock()
        for item_id in list(self._snapshots):
            try:
                snapshot = await self.client.get_status(item_id)
            except (httpx.HTTPError, TrackerAPIError) as exc:
                logger.warning("Status poll failed", item_id=item_id, error=str(exc))
                continue

            if self.is_stuck(snapshot, now):
                snapshot = await self._reset_stuck(item_id, snapshot)

            # Unwatched while we were waiting on the API
            if item_id not in self._snapshots:
                continue

            previous = self._snapshots[item_id]
            self._snapshots[item_id] = snapshot
            self._notify(item_id, previous, snapshot)

        return self.snapshots

    async def _reset_stuck(self, item_id: str, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        logger.warning(
            "Stuck job detected, resetting",
            item_id=item_id,
            status=snapshot.get("status"),
            updated_at=snapshot.get("updated_at")
        )
        try:
            reset = await self.client.reset(item_id)
        except (httpx.HTTPError, TrackerAPIError) as exc:
            # A 409 means the run finished first; the next tick shows it
            logger.info("Stuck job reset rejected", item_id=item_id, error=str(exc))
            return snapshot

        self.note_mutation()
        return reset

    def _notify(
        self,
        item_id: str,
        previous: Optional[Dict[str, Any]],
        snapshot: Dict[str, Any]
    ) -> None:
        status = snapshot.get("status")

        if self._on_update:
            self._call(self._on_update, item_id, snapshot)

        if status in IN_FLIGHT_STATUSES:
            self._notified.discard(item_id)
        elif status in TERMINAL_STATUSES and item_id not in self._notified:
            self._notified.add(item_id)
            # Items already finished when we started watching are not news
            if previous is not None and self._on_complete:
                self._call(self._on_complete, item_id, snapshot)

    def _call(self, callback: StatusCallback, item_id: str, snapshot: Dict[str, Any]) -> None:
        try:
            callback(item_id, snapshot)
        except Exception:
            # A broken view must not stop stuck-job recovery
            logger.exception("Polling callback failed", item_id=item_id, status=snapshot.get("status"))

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Cancel the loop; no timer outlives the session."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Polling tick failed")
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.next_interval())
            except asyncio.TimeoutError:
                pass
