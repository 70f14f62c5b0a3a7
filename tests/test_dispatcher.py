"""Tests for orchestrator job submission"""

import base64
import json

import httpx
import pytest
import pytest_asyncio

from tracker.core.dispatcher import AsyncJobDispatcher, normalize_actor_id
from tracker.core.errors import SubmissionFailed
from tracker.core.lifecycle import JobLifecycleManager
from tracker.models.tracked_item import TrackedItem
from tracker.utils.job_logger import DebugTrace

RUNS_PATH = "POST api.apify.com/v2/acts/clockworks~tiktok-sound-scraper/runs"


def run_response(run_id="run_abc", status="READY"):
    return httpx.Response(201, json={
        "data": {"id": run_id, "status": status, "defaultDatasetId": "ds_1"}
    })


def decoded_webhooks(request):
    return json.loads(base64.b64decode(request.url.params["webhooks"]))


@pytest_asyncio.fixture
async def indexing_item(session):
    item = TrackedItem(
        kind="sound",
        platform="tiktok",
        canonical_key="7212345678901234567",
        page_url="https://www.tiktok.com/music/original-sound-7212345678901234567",
        status="pending",
    )
    session.add(item)
    await session.commit()
    return await JobLifecycleManager(session).start(item.id, reason="submitted")


@pytest_asyncio.fixture
async def dispatcher(session, http, test_settings):
    return AsyncJobDispatcher(session, http, test_settings)


class TestDispatch:

    def test_actor_id_uses_tilde(self):
        assert normalize_actor_id("clockworks/tiktok-sound-scraper") == "clockworks~tiktok-sound-scraper"
        assert normalize_actor_id(" user~actor ") == "user~actor"

    @pytest.mark.asyncio
    async def test_submits_run_with_webhook(self, dispatcher, indexing_item, upstream, test_settings):
        upstream.add(RUNS_PATH, run_response())

        result = await dispatcher.dispatch(indexing_item, DebugTrace())

        assert result.correlation_handle == "run_abc"
        assert result.status == "queued"
        assert result.dataset_id == "ds_1"

        request = upstream.calls_to(RUNS_PATH)[0]
        assert request.headers["Authorization"] == "Bearer apify-token"

        body = json.loads(request.content)
        assert body["maxItems"] == test_settings.index_result_cap
        assert body["musics"] == [indexing_item.page_url]

        [webhook] = decoded_webhooks(request)
        assert webhook["requestUrl"] == "http://tracker.test/api/v1/webhooks/orchestrator"
        assert "ACTOR.RUN.SUCCEEDED" in webhook["eventTypes"]
        assert json.loads(webhook["headersTemplate"]) == {"X-Webhook-Secret": "test-secret"}

    @pytest.mark.asyncio
    async def test_correlation_handle_is_stored(self, dispatcher, indexing_item, upstream, session):
        upstream.add(RUNS_PATH, run_response(status="RUNNING"))

        result = await dispatcher.dispatch(indexing_item, DebugTrace())

        item = await JobLifecycleManager(session).get_item(indexing_item.id)
        assert result.status == "running"
        assert item.correlation_handle == "run_abc"
        assert item.status == "indexing"

    @pytest.mark.asyncio
    async def test_result_cap_is_clamped(self, session, http, indexing_item, upstream, test_settings):
        upstream.add(RUNS_PATH, run_response())
        test_settings.index_max_items = 5000

        await AsyncJobDispatcher(session, http, test_settings).dispatch(indexing_item, DebugTrace())

        body = json.loads(upstream.calls_to(RUNS_PATH)[0].content)
        assert body["maxItems"] == 1000

    @pytest.mark.asyncio
    async def test_rejected_submission_fails_the_item(self, dispatcher, indexing_item, upstream, session):
        upstream.add(RUNS_PATH, httpx.Response(400, json={"error": {"message": "invalid input"}}))
        trace = DebugTrace()

        with pytest.raises(SubmissionFailed) as exc_info:
            await dispatcher.dispatch(indexing_item, trace)

        assert exc_info.value.retryable is False
        item = await JobLifecycleManager(session).get_item(indexing_item.id)
        assert item.status == "failed"
        assert item.correlation_handle is None
        assert any(step["step"] == "dispatch_failed" for step in item.debug_trace)

    @pytest.mark.asyncio
    async def test_orchestrator_outage_is_retryable(self, dispatcher, indexing_item, upstream, session):
        upstream.add(RUNS_PATH, httpx.Response(502))

        with pytest.raises(SubmissionFailed) as exc_info:
            await dispatcher.dispatch(indexing_item, DebugTrace())

        assert exc_info.value.retryable is True
        assert len(upstream.calls_to(RUNS_PATH)) == 3
        assert (await JobLifecycleManager(session).get_item(indexing_item.id)).status == "failed"

    @pytest.mark.asyncio
    async def test_response_without_run_id(self, dispatcher, indexing_item, upstream, session):
        upstream.add(RUNS_PATH, httpx.Response(201, json={"data": {"status": "READY"}}))

        with pytest.raises(SubmissionFailed):
            await dispatcher.dispatch(indexing_item, DebugTrace())

        assert (await JobLifecycleManager(session).get_item(indexing_item.id)).status == "failed"

    @pytest.mark.asyncio
    async def test_item_reset_during_submission(self, dispatcher, indexing_item, upstream, session):
        lifecycle = JobLifecycleManager(session)
        upstream.add(RUNS_PATH, run_response())
        await lifecycle.reset(indexing_item.id, reason="stuck")

        result = await dispatcher.dispatch(indexing_item, DebugTrace())

        item = await lifecycle.get_item(indexing_item.id)
        assert result.correlation_handle == "run_abc"
        assert item.status == "pending"
        assert item.correlation_handle is None
