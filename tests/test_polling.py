"""Tests for the client-side adaptive polling controller"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from tracker.client.api_client import TrackerAPIError
from tracker.client.polling import PollingConfig, PollingSession, PollTier

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeClient:
    """Serves queued status snapshots per item and records resets."""

    def __init__(self):
        self.statuses = {}
        self.resets = []
        self.rescrapes = []
        self.fail_with = None
        self.on_rescrape = None
        self.polled = asyncio.Event()

    def set(self, item_id, status, updated_at=T0):
        self.statuses[item_id] = {
            "tracked_item_id": item_id,
            "status": status,
            "updated_at": updated_at.isoformat(),
        }

    async def get_status(self, item_id):
        self.polled.set()
        if self.fail_with is not None:
            raise self.fail_with
        return dict(self.statuses[item_id])

    async def reset(self, item_id, reason="stuck job reset"):
        self.resets.append(item_id)
        self.set(item_id, "pending")
        return dict(self.statuses[item_id])

    async def rescrape(self, item_id):
        self.rescrapes.append(item_id)
        if self.on_rescrape:
            self.on_rescrape()
        self.set(item_id, "scraping")
        return dict(self.statuses[item_id])

    async def scrape_campaign(self, campaign_id):
        self.rescrapes.append(campaign_id)
        if self.on_rescrape:
            self.on_rescrape()
        return {"campaign_id": campaign_id, "due": 0, "refreshed": 0, "failed": 0, "skipped": 0}


CONFIG = PollingConfig(
    active_interval=2, recent_interval=5, idle_interval=30, recent_window=60, stuck_timeout=600
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    return FakeClient()


def make_session(client, clock, item_ids=("a",), **kwargs):
    return PollingSession(client, item_ids, config=CONFIG, clock=clock, **kwargs)


class TestTiers:

    def test_idle_when_nothing_happens(self, client, clock):
        session = make_session(client, clock)

        assert session.current_tier() == PollTier.IDLE
        assert session.next_interval() == 30

    @pytest.mark.asyncio
    async def test_in_flight_item_is_active(self, client, clock):
        client.set("a", "indexing")
        session = make_session(client, clock)

        await session.tick()

        assert session.current_tier() == PollTier.ACTIVE
        assert session.next_interval() == 2

    def test_recent_window_after_mutation(self, client, clock):
        session = make_session(client, clock)
        session.note_mutation()

        clock.advance(59)
        assert session.current_tier() == PollTier.RECENT
        assert session.next_interval() == 5

        clock.advance(1)
        assert session.current_tier() == PollTier.IDLE

    @pytest.mark.asyncio
    async def test_active_while_scrape_request_runs(self, client, clock):
        session = make_session(client, clock)
        seen = []
        client.on_rescrape = lambda: seen.append(session.current_tier())

        await session.trigger_scrape("a")

        assert seen == [PollTier.ACTIVE]
        assert client.rescrapes == ["a"]
        assert session.current_tier() == PollTier.RECENT

    @pytest.mark.asyncio
    async def test_active_while_campaign_scrape_runs(self, client, clock):
        session = make_session(client, clock)
        seen = []
        client.on_rescrape = lambda: seen.append(session.current_tier())

        summary = await session.trigger_campaign_scrape("launch")

        assert summary["campaign_id"] == "launch"
        assert seen == [PollTier.ACTIVE]
        assert session.current_tier() == PollTier.RECENT

    def test_config_from_settings(self, test_settings):
        config = PollingConfig.from_settings(test_settings)

        assert config.interval_for(PollTier.ACTIVE) == test_settings.poll_active_seconds
        assert config.stuck_timeout == test_settings.stuck_job_timeout_seconds


class TestStuckJobs:

    @pytest.mark.asyncio
    async def test_not_stuck_at_exactly_the_timeout(self, client, clock):
        client.set("a", "indexing", updated_at=T0 - timedelta(seconds=600))
        session = make_session(client, clock)

        await session.tick()

        assert client.resets == []
        assert session.snapshots["a"]["status"] == "indexing"

    @pytest.mark.asyncio
    async def test_reset_just_after_the_timeout(self, client, clock):
        client.set("a", "scraping", updated_at=T0 - timedelta(seconds=601))
        session = make_session(client, clock)

        await session.tick()

        assert client.resets == ["a"]
        assert session.snapshots["a"]["status"] == "pending"
        assert session.current_tier() == PollTier.RECENT

    @pytest.mark.asyncio
    async def test_finished_items_are_never_reset(self, client, clock):
        client.set("a", "failed", updated_at=T0 - timedelta(days=3))
        session = make_session(client, clock)

        await session.tick()

        assert client.resets == []

    @pytest.mark.asyncio
    async def test_rejected_reset_keeps_snapshot(self, client, clock):
        client.set("a", "indexing", updated_at=T0 - timedelta(hours=1))

        async def conflict(item_id, reason="stuck job reset"):
            raise TrackerAPIError(409, {"error": "invalid_transition", "retryable": False})

        client.reset = conflict
        session = make_session(client, clock)

        await session.tick()

        assert session.snapshots["a"]["status"] == "indexing"


class TestNotifications:

    @pytest.mark.asyncio
    async def test_completion_fires_once_per_run(self, client, clock):
        completed = []
        updates = []
        session = make_session(
            client, clock,
            on_update=lambda item_id, snap: updates.append(snap["status"]),
            on_complete=lambda item_id, snap: completed.append((item_id, snap["status"])),
        )

        client.set("a", "indexing")
        await session.tick()
        client.set("a", "active")
        await session.tick()
        await session.tick()

        assert completed == [("a", "active")]
        assert updates == ["indexing", "active", "active"]

        client.set("a", "indexing")
        await session.tick()
        client.set("a", "failed")
        await session.tick()

        assert completed == [("a", "active"), ("a", "failed")]

    @pytest.mark.asyncio
    async def test_already_finished_items_are_silent(self, client, clock):
        completed = []
        client.set("a", "scraped")
        session = make_session(client, clock, on_complete=lambda *args: completed.append(args))

        await session.tick()

        assert completed == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        httpx.ConnectError("down"),
        TrackerAPIError(502, {"error": "upstream_unavailable"}),
    ])
    async def test_poll_errors_are_tolerated(self, client, clock, error):
        client.set("a", "indexing")
        session = make_session(client, clock)
        await session.tick()

        client.fail_with = error
        snapshots = await session.tick()

        assert snapshots["a"]["status"] == "indexing"

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_polling(self, client, clock):
        completed = []

        def broken_view(item_id, snap):
            raise RuntimeError("view gone")

        client.set("a", "indexing")
        client.set("b", "indexing")
        session = make_session(
            client, clock, item_ids=("a", "b"),
            on_update=broken_view,
            on_complete=lambda item_id, snap: completed.append(item_id),
        )

        await session.tick()
        client.set("a", "active")
        client.set("b", "failed")
        snapshots = await session.tick()

        assert snapshots["a"]["status"] == "active"
        assert snapshots["b"]["status"] == "failed"
        assert completed == ["a", "b"]

    @pytest.mark.asyncio
    async def test_watch_and_unwatch(self, client, clock):
        client.set("a", "active")
        client.set("b", "scraping")
        session = make_session(client, clock)

        session.watch("b")
        await session.tick()
        assert session.current_tier() == PollTier.ACTIVE

        session.unwatch("b")
        assert set(session.snapshots) == {"a"}
        assert session.current_tier() == PollTier.IDLE


class TestLoop:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, client, clock):
        client.set("a", "active")
        session = make_session(client, clock)

        session.start()
        assert session.is_running
        await asyncio.wait_for(client.polled.wait(), timeout=1)

        await session.stop()
        assert not session.is_running

    @pytest.mark.asyncio
    async def test_context_manager_stops_loop(self, client, clock):
        client.set("a", "active")

        async with make_session(client, clock) as session:
            await asyncio.wait_for(client.polled.wait(), timeout=1)
            assert session.is_running

        assert not session.is_running

    @pytest.mark.asyncio
    async def test_stop_without_start(self, client, clock):
        await make_session(client, clock).stop()

    @pytest.mark.asyncio
    async def test_loop_survives_callback_errors(self, client, clock):
        called = asyncio.Event()

        def broken_view(item_id, snap):
            called.set()
            raise RuntimeError("view gone")

        client.set("a", "indexing")
        session = make_session(client, clock, on_update=broken_view)

        session.start()
        await asyncio.wait_for(called.wait(), timeout=1)
        await asyncio.sleep(0)

        assert session.is_running
        await session.stop()
        assert not session.is_running
