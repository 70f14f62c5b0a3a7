"""HTTP client for the tracking API"""

from typing import Optional, Dict, Any, List
import httpx
import structlog

logger = structlog.get_logger()


class TrackerAPIError(Exception):
    """Non-2xx answer from the tracking API"""

    def __init__(self, status_code: int, body: Dict[str, Any]):
        self.status_code = status_code
        self.body = body
        self.code = body.get("error") if isinstance(body, dict) else None
        self.retryable = bool(body.get("retryable")) if isinstance(body, dict) else False
        detail = body.get("detail") if isinstance(body, dict) else None
        super().__init__(detail or f"HTTP {status_code}")


class TrackerAPIClient:
    """Async wrapper for the /api/v1/tracking endpoints"""

    PREFIX = "/api/v1/tracking"

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._owns_client:
            await self.client.aclose()

    async def _call(self, method: str, path: str, **kwargs) -> Any:
        response = await self.client.request(method, f"{self.PREFIX}{path}", **kwargs)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"detail": response.text}
            raise TrackerAPIError(response.status_code, body)
        return response.json()

    async def submit(
        self,
        url: str,
        kind: str = "sound",
        campaign_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Submit a URL; returns tracked_item_id, platform and status"""
        payload = {"url": url, "kind": kind}
        if campaign_id:
            payload["campaignId"] = campaign_id
        return await self._call("POST", "/items", json=payload)

    async def rescrape(self, item_id: str) -> Dict[str, Any]:
        return await self._call("POST", f"/items/{item_id}/scrape")

    async def scrape_campaign(self, campaign_id: str) -> Dict[str, Any]:
        """Re-scrape every post of a campaign; returns due/refreshed/failed/skipped counts"""
        return await self._call("POST", f"/campaigns/{campaign_id}/scrape")

    async def get_status(self, item_id: str) -> Dict[str, Any]:
        return await self._call("GET", f"/items/{item_id}")

    async def reset(self, item_id: str, reason: str = "stuck job reset") -> Dict[str, Any]:
        return await self._call("POST", f"/items/{item_id}/reset", json={"reason": reason})

    async def get_transitions(self, item_id: str) -> List[Dict[str, Any]]:
        return await self._call("GET", f"/items/{item_id}/transitions")

    async def get_observations(
        self,
        item_id: str,
        sort: str = "views",
        limit: int = 50
    ) -> List[Dict[str, Any]]:
        return await self._call(
            "GET",
            f"/items/{item_id}/observations",
            params={"sort": sort, "limit": limit}
        )
