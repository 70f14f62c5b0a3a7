"""Shared fixtures: in-memory database, mocked upstreams, test settings"""

import os

# Must be set before tracker.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("WEBHOOK_SECRET", "test-secret")
os.environ.setdefault("APIFY_API_TOKEN", "apify-token")
os.environ.setdefault("RAPIDAPI_KEY", "rapid-key")
os.environ.setdefault("RETRY_BASE_DELAY_SECONDS", "0")

from typing import Any, Callable, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tracker import models  # noqa: F401
from tracker.config import Settings
from tracker.core.database import Base
from tracker.core.http_client import RetryingClient


async def no_sleep(seconds: float) -> None:
    return None


class MockUpstream:
    """
    Routes requests to canned responses and records every call.

    Handlers are matched by substring of ``METHOD url-path``; a handler is
    either an ``httpx.Response``, a JSON-able value (200) or a callable
    taking the request.
    """

    def __init__(self):
        self.routes: List[tuple] = []
        self.calls: List[httpx.Request] = []

    def add(self, pattern: str, handler: Any) -> "MockUpstream":
        self.routes.append((pattern, handler))
        return self

    def calls_to(self, pattern: str) -> List[httpx.Request]:
        return [r for r in self.calls if pattern in f"{r.method} {r.url.host}{r.url.path}"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = f"{request.method} {request.url.host}{request.url.path}"
        for pattern, handler in self.routes:
            if pattern in key:
                if callable(handler) and not isinstance(handler, httpx.Response):
                    handler = handler(request)
                if isinstance(handler, httpx.Response):
                    return handler
                return httpx.Response(200, json=handler)
        return httpx.Response(404, json={"message": f"no route for {key}"})


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        webhook_secret="test-secret",
        apify_api_token="apify-token",
        rapidapi_key="rapid-key",
        public_base_url="http://tracker.test",
        async_index_platforms=["tiktok"],
        retry_base_delay_seconds=0,
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def upstream() -> MockUpstream:
    return MockUpstream()


@pytest_asyncio.fixture
async def make_http():
    """Factory for RetryingClients backed by a MockTransport, no real sleeps."""
    created: List[RetryingClient] = []

    def _make(handler: Callable, max_attempts: int = 3, sleep: Optional[Callable] = None) -> RetryingClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
        http = RetryingClient(client=client, max_attempts=max_attempts, base_delay=1.0, sleep=sleep or no_sleep)
        created.append(http)
        return http

    yield _make

    for http in created:
        await http.client.aclose()


@pytest.fixture
def http(make_http, upstream) -> RetryingClient:
    return make_http(upstream)

