"""Tests for webhook-driven index completion"""

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select

from tracker.core.errors import UpstreamUnavailable, WebhookUnmatched
from tracker.core.lifecycle import JobLifecycleManager
from tracker.core.observations import ObservationStore
from tracker.core.providers.base import ObservationRecord
from tracker.core.resolver import DEFAULT_SOUND_TITLE
from tracker.core.webhook import FAILED, RUNNING, SUCCEEDED, WebhookCompletionHandler, WebhookEvent
from tracker.models.child_observation import ChildObservation
from tracker.models.tracked_item import TrackedItem

RUN_ID = "run_abc"


def video_row(index, region="US", views=1000, likes=100):
    return {
        "id": f"73000000000000{index:05d}",
        "playCount": views,
        "diggCount": likes,
        "commentCount": 10,
        "shareCount": 5,
        "createTime": 1700000000 + index,
        "webVideoUrl": f"https://www.tiktok.com/@creator{index}/video/73000000000000{index:05d}",
        "authorMeta": {"name": f"Creator{index}", "nickName": f"Creator {index}", "region": region},
        "musicMeta": {"musicName": "Dance Track", "musicAuthor": "DJ Example", "musicId": "7212345678901234567"},
    }


async def observation_count(session, item_id):
    return (
        await session.execute(
            select(func.count(ChildObservation.id)).where(ChildObservation.parent_id == item_id)
        )
    ).scalar_one()


@pytest_asyncio.fixture
async def indexing_item(session):
    item = TrackedItem(
        kind="sound",
        platform="tiktok",
        canonical_key="7212345678901234567",
        title=DEFAULT_SOUND_TITLE,
        status="pending",
    )
    session.add(item)
    await session.commit()

    lifecycle = JobLifecycleManager(session)
    await lifecycle.start(item.id, reason="submitted")
    await lifecycle.attach_correlation(item.id, RUN_ID)
    return await lifecycle.get_item(item.id)


@pytest_asyncio.fixture
async def handler(session, http, test_settings):
    return WebhookCompletionHandler(session, http, test_settings)


class TestWebhookEvent:

    @pytest.mark.parametrize("kwargs,expected", [
        ({"status": "SUCCEEDED"}, SUCCEEDED),
        ({"event_type": "ACTOR.RUN.SUCCEEDED"}, SUCCEEDED),
        ({"items": []}, SUCCEEDED),
        ({"status": "FAILED"}, FAILED),
        ({"status": "TIMED-OUT"}, FAILED),
        ({"event_type": "ACTOR.RUN.ABORTED"}, FAILED),
        ({"status": "SUCCEEDED", "failure_reason": "partial"}, FAILED),
        ({"status": "RUNNING"}, RUNNING),
        ({}, RUNNING),
    ])
    def test_outcome(self, kwargs, expected):
        assert WebhookEvent(correlation_handle=RUN_ID, **kwargs).outcome == expected


class TestCompletion:

    @pytest.mark.asyncio
    async def test_inline_rows_complete_the_item(self, handler, indexing_item, session):
        rows = [video_row(i) for i in range(3)]

        result = await handler.handle(WebhookEvent(RUN_ID, status="SUCCEEDED", items=rows))

        assert result.outcome == SUCCEEDED
        assert result.observations == 3
        item = await JobLifecycleManager(session).get_item(indexing_item.id)
        assert item.status == "active"
        assert item.views == 3000
        assert item.likes == 300
        assert item.engagement_rate == round((300 + 30 + 15) / 3000 * 100, 2)
        assert item.observation_count == 3
        assert item.title == "Dance Track"
        assert item.artist == "DJ Example"

    @pytest.mark.asyncio
    async def test_replay_is_harmless(self, handler, indexing_item, session):
        item_id = indexing_item.id
        rows = [video_row(i) for i in range(3)]
        event = WebhookEvent(RUN_ID, status="SUCCEEDED", items=rows)

        await handler.handle(event)
        replay = await handler.handle(event)

        assert replay.outcome == "ignored"
        assert replay.status == "active"
        assert await observation_count(session, item_id) == 3
        item = await JobLifecycleManager(session).get_item(item_id)
        assert item.views == 3000

    @pytest.mark.asyncio
    async def test_duplicate_rows_in_one_payload(self, handler, indexing_item, session):
        rows = [video_row(1, views=10), video_row(1, views=20), video_row(2)]

        result = await handler.handle(WebhookEvent(RUN_ID, items=rows))

        assert result.observations == 2
        item = await JobLifecycleManager(session).get_item(indexing_item.id)
        assert item.views == 1020

    @pytest.mark.asyncio
    async def test_unparseable_rows_are_skipped(self, handler, indexing_item, session):
        rows = [video_row(1), {"unexpected": True}, "not a dict"]

        result = await handler.handle(WebhookEvent(RUN_ID, items=rows))

        assert result.outcome == SUCCEEDED
        assert await observation_count(session, indexing_item.id) == 1

    @pytest.mark.asyncio
    async def test_geo_distribution(self, handler, indexing_item, session):
        rows = [video_row(0, "US"), video_row(1, "US"), video_row(2, "us"), video_row(3, "BR")]

        await handler.handle(WebhookEvent(RUN_ID, items=rows))

        item = await JobLifecycleManager(session).get_item(indexing_item.id)
        assert item.geo_distribution == [
            {"country": "United States", "code": "US", "percent": 75},
            {"country": "Brazil", "code": "BR", "percent": 25},
        ]

    @pytest.mark.asyncio
    async def test_empty_result_completes_with_zero_metrics(self, handler, indexing_item, session):
        result = await handler.handle(WebhookEvent(RUN_ID, status="SUCCEEDED", items=[]))

        assert result.outcome == SUCCEEDED
        item = await JobLifecycleManager(session).get_item(indexing_item.id)
        assert item.status == "active"
        assert item.views == 0
        assert item.geo_distribution == []


class TestDatasetFetch:

    @pytest.mark.asyncio
    async def test_rows_are_fetched_from_dataset(self, handler, indexing_item, upstream, session):
        upstream.add("GET api.apify.com/v2/datasets/ds_1/items", [video_row(i) for i in range(4)])

        result = await handler.handle(WebhookEvent(RUN_ID, status="SUCCEEDED", dataset_id="ds_1"))

        assert result.observations == 4
        request = upstream.calls_to("/datasets/ds_1/items")[0]
        assert request.headers["Authorization"] == "Bearer apify-token"
        assert request.url.params["clean"] == "true"

    @pytest.mark.asyncio
    async def test_dataset_outage_leaves_item_indexing(self, handler, indexing_item, upstream, session):
        upstream.add("GET api.apify.com/v2/datasets/ds_1/items", httpx.Response(503))

        with pytest.raises(UpstreamUnavailable):
            await handler.handle(WebhookEvent(RUN_ID, status="SUCCEEDED", dataset_id="ds_1"))

        item = await JobLifecycleManager(session).get_item(indexing_item.id)
        assert item.status == "indexing"

    @pytest.mark.asyncio
    async def test_missing_dataset_fails_the_item(self, handler, indexing_item, upstream, session):
        upstream.add("GET api.apify.com/v2/datasets/ds_1/items", httpx.Response(404))

        result = await handler.handle(WebhookEvent(RUN_ID, status="SUCCEEDED", dataset_id="ds_1"))

        assert result.outcome == FAILED
        assert (await JobLifecycleManager(session).get_item(indexing_item.id)).status == "failed"


class TestOtherOutcomes:

    @pytest.mark.asyncio
    async def test_failed_run_fails_the_item(self, handler, indexing_item, session):
        result = await handler.handle(WebhookEvent(RUN_ID, status="FAILED"))

        assert result.outcome == FAILED
        item = await JobLifecycleManager(session).get_item(indexing_item.id)
        assert item.status == "failed"
        assert await observation_count(session, indexing_item.id) == 0
        assert item.debug_trace[-1]["step"] == "index_failed"

    @pytest.mark.asyncio
    async def test_failure_after_completion_is_ignored(self, handler, indexing_item, session):
        await handler.handle(WebhookEvent(RUN_ID, items=[video_row(1)]))

        result = await handler.handle(WebhookEvent(RUN_ID, status="FAILED"))

        assert result.outcome == "ignored"
        assert (await JobLifecycleManager(session).get_item(indexing_item.id)).status == "active"

    @pytest.mark.asyncio
    async def test_running_status_is_acknowledged(self, handler, indexing_item, session):
        result = await handler.handle(WebhookEvent(RUN_ID, status="RUNNING"))

        assert result.outcome == RUNNING
        assert (await JobLifecycleManager(session).get_item(indexing_item.id)).status == "indexing"

    @pytest.mark.asyncio
    async def test_unknown_handle(self, handler, indexing_item):
        with pytest.raises(WebhookUnmatched):
            await handler.handle(WebhookEvent("run_unknown", status="SUCCEEDED", items=[]))

    @pytest.mark.asyncio
    async def test_webhook_after_reset_is_unmatched(self, handler, indexing_item, session):
        await JobLifecycleManager(session).reset(indexing_item.id, reason="stuck")

        with pytest.raises(WebhookUnmatched):
            await handler.handle(WebhookEvent(RUN_ID, items=[video_row(1)]))

        assert await observation_count(session, indexing_item.id) == 0


class TestResultLimits:

    @pytest.mark.asyncio
    async def test_inline_rows_over_cap_are_truncated(self, session, http, test_settings, indexing_item):
        item_id = indexing_item.id
        settings = test_settings.model_copy(update={"index_max_items": 5})
        rows = [video_row(i) for i in range(8)]

        result = await WebhookCompletionHandler(session, http, settings).handle(WebhookEvent(RUN_ID, items=rows))

        assert result.outcome == SUCCEEDED
        assert result.observations == 5
        assert await observation_count(session, item_id) == 5
        item = await JobLifecycleManager(session).get_item(item_id)
        assert {"rows": 8, "cap": 5} in [step["data"] for step in item.debug_trace if step["step"] == "rows_truncated"]

    @pytest.mark.asyncio
    async def test_upsert_is_split_into_batches(self, session, indexing_item):
        item_id = indexing_item.id
        store = ObservationStore(session, batch_size=2)
        records = [ObservationRecord(external_video_id=str(i), views=10) for i in range(5)]

        assert await store.upsert(indexing_item, records) == 5
        await session.commit()

        assert await observation_count(session, item_id) == 5
        snapshot, count, geo = await store.summarize(item_id)
        assert (snapshot.views, count, geo) == (50, 5, [])
