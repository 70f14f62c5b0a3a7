from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import structlog
from typing import AsyncGenerator

from tracker.config import settings
from tracker.api import tracking, webhooks
from tracker.core.database import engine, Base
from tracker import models  # noqa: F401  registers every table on Base.metadata
from tracker.core.errors import (
    TrackingError,
    UnsupportedPlatform,
    UnresolvableIdentifier,
    UpstreamUnavailable,
    SubmissionFailed,
    JobAlreadyInFlight,
    InvalidTransition,
    ItemNotFound,
    WebhookUnmatched,
)
from tracker.core.http_client import RetryingClient

# Configure structured logging
logging.basicConfig(format="%(message)s", level=settings.log_level.upper())
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
)

logger = structlog.get_logger()

ERROR_STATUS = {
    UnsupportedPlatform: status.HTTP_422_UNPROCESSABLE_ENTITY,
    UnresolvableIdentifier: status.HTTP_422_UNPROCESSABLE_ENTITY,
    UpstreamUnavailable: status.HTTP_502_BAD_GATEWAY,
    SubmissionFailed: status.HTTP_502_BAD_GATEWAY,
    JobAlreadyInFlight: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
    ItemNotFound: status.HTTP_404_NOT_FOUND,
    WebhookUnmatched: status.HTTP_200_OK,
}


def status_for(exc: TrackingError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifecycle management"""
    logger.info("Starting Content Tracker API", env=settings.app_env)

    # Create database tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized")

    app.state.http_client = RetryingClient()

    yield

    await app.state.http_client.close()
    logger.info("Shutting down API")


# Initialize FastAPI app
app = FastAPI(
    title="Content Tracker API",
    description="Tracks social sounds and posts and the videos that use them",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [settings.public_base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TrackingError)
async def tracking_error_handler(request: Request, exc: TrackingError):
    code = status_for(exc)
    log = logger.warning if code >= 500 else logger.info
    log("Request failed", path=request.url.path, error=exc.code, detail=exc.message, status_code=code)
    return JSONResponse(status_code=code, content=exc.to_dict())


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An internal error occurred. Please try again later."}
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.app_env,
        "version": "1.0.0"
    }


# Include API routers
app.include_router(tracking.router, prefix="/api/v1/tracking", tags=["Tracking"])
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])


@app.get("/")
async def root():
    return {
        "message": "Content Tracker API",
        "docs": "/docs",
        "health": "/health"
    }
