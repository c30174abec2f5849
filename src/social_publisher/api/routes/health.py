"""Health check endpoints."""

import os

import redis
from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from social_publisher import __version__
from social_publisher.adapters.platforms import is_configured
from social_publisher.config import settings
from social_publisher.db.session import engine
from social_publisher.domain.enums import Platform
from social_publisher.logging import get_logger
from social_publisher.services import video_ingestion

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Liveness plus which platforms can currently be connected."""

    status: str
    version: str
    platforms: dict[str, bool]


class ReadinessResponse(BaseModel):
    """Status of the backing services."""

    ready: bool
    database: bool
    broker: bool
    media_storage: bool


def platform_availability() -> dict[str, bool]:
    """A platform is available when it is enabled and its OAuth app is configured."""
    return {p.value: settings.is_platform_enabled(p) and is_configured(p) for p in Platform}


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Basic health check with per-platform availability.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="healthy", version=__version__, platforms=platform_availability())


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Verify the database, the Celery broker and media storage.",
)
async def readiness_check() -> ReadinessResponse:
    """Readiness check; each failing dependency is logged and reported as false."""
    database_ok = False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError as e:
        logger.error("database_health_check_failed", error=str(e))

    broker_ok = False
    try:
        redis.from_url(settings.redis_url).ping()
        broker_ok = True
    except redis.RedisError as e:
        logger.error("broker_health_check_failed", error=str(e))

    root = video_ingestion.media_root()
    media_ok = root.is_dir() and os.access(root, os.W_OK)
    if not media_ok:
        logger.error("media_storage_health_check_failed", media_root=str(root))

    return ReadinessResponse(
        ready=database_ok and broker_ok and media_ok,
        database=database_ok,
        broker=broker_ok,
        media_storage=media_ok,
    )


@router.get(
    "/health/live",
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
)
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
