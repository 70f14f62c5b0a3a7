"""API dependencies."""

from hmac import compare_digest
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.config import Settings, get_settings
from tracker.core.database import get_db
from tracker.core.http_client import RetryingClient
from tracker.core.pipeline import TrackingService
from tracker.core.webhook import WebhookCompletionHandler


def get_http_client(request: Request) -> RetryingClient:
    """Shared upstream client created in the app lifespan."""
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="HTTP client not initialised",
        )
    return client


def get_tracking_service(
    db: AsyncSession = Depends(get_db),
    http: RetryingClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> TrackingService:
    return TrackingService(db, http, settings)


def get_webhook_handler(
    db: AsyncSession = Depends(get_db),
    http: RetryingClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> WebhookCompletionHandler:
    return WebhookCompletionHandler(db, http, settings)


def verify_webhook_secret(settings: Settings, *candidates: Optional[str]) -> None:
    """Accept the callback if any supplied secret matches the configured one."""
    if not settings.webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        )
    expected = settings.webhook_secret.encode("utf-8")
    for candidate in candidates:
        if candidate and compare_digest(candidate.encode("utf-8"), expected):
            return
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid webhook secret",
    )


async def require_webhook_secret(
    request: Request,
    x_webhook_secret: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Authenticate a callback before its payload is validated."""
    try:
        body = await request.json()
    except ValueError:
        body = None
    body_secret = body.get("secret") if isinstance(body, dict) else None
    verify_webhook_secret(settings, x_webhook_secret, body_secret if isinstance(body_secret, str) else None)
