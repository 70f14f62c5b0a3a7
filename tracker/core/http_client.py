"""Retrying HTTP client shared by every outbound provider call."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tracker.config import settings
from tracker.core.errors import ProviderRejected, UpstreamUnavailable

logger = structlog.get_logger()


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class RetryableResponse(Exception):
    """Raised inside the retry loop for 5xx/429 responses."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


class RetryingClient:
    """
    httpx wrapper with bounded exponential backoff.

    Retries connection failures, timeouts, HTTP 5xx and HTTP 429. Attempt
    ``i`` (0-based) is followed by a ``base_delay * 2**i`` second wait.
    Any other 4xx raises ``ProviderRejected`` immediately. When attempts
    run out, ``UpstreamUnavailable`` carries the last status code and body.

    The client holds no per-request state and may be shared across
    concurrent callers. Backoff sleeps are plain ``asyncio.sleep`` calls, so
    cancelling the caller cancels the wait.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.base_delay = settings.retry_base_delay_seconds if base_delay is None else base_delay
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout or settings.http_timeout_seconds,
            follow_redirects=True
        )
        self._sleep = sleep

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._owns_client:
            await self.client.aclose()

    def _log_retry(self, retry_state: RetryCallState):
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Upstream call failed, retrying",
            attempt=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc)
        )

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, retrying transient failures."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2, min=0),
            retry=retry_if_exception_type((httpx.TransportError, RetryableResponse)),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    response = await self.client.request(method, url, **kwargs)
                    if is_retryable_status(response.status_code):
                        raise RetryableResponse(response)
        except RetryableResponse as exc:
            last = exc.response
            logger.error(
                "Upstream retries exhausted",
                url=_strip_query(url),
                status_code=last.status_code,
                attempts=self.max_attempts
            )
            raise UpstreamUnavailable(
                f"Provider returned HTTP {last.status_code} after {self.max_attempts} attempts",
                status_code=last.status_code,
                body=last.text
            ) from exc
        except httpx.TransportError as exc:
            logger.error(
                "Upstream unreachable",
                url=_strip_query(url),
                error=str(exc),
                attempts=self.max_attempts
            )
            raise UpstreamUnavailable(
                f"Provider unreachable after {self.max_attempts} attempts: {exc.__class__.__name__}"
            ) from exc

        if response.status_code >= 400:
            raise ProviderRejected(
                f"Provider rejected request with HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text
            )

        return response

    async def get_json(self, url: str, **kwargs) -> Any:
        response = await self.request("GET", url, **kwargs)
        return _decode_json(response)

    async def post_json(self, url: str, **kwargs) -> Any:
        response = await self.request("POST", url, **kwargs)
        return _decode_json(response)


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamUnavailable(
            "Provider returned a malformed JSON body",
            status_code=response.status_code,
            body=response.text[:400]
        ) from exc


def _strip_query(url: str) -> str:
    # Query strings may carry API keys
    return url.split("?", 1)[0]
