"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError

from social_publisher import __version__
from social_publisher.api.routes import accounts, analytics, calendar, connect, health, posts, videos
from social_publisher.config import settings
from social_publisher.db.session import init_db
from social_publisher.domain.errors import SocialPublisherError
from social_publisher.logging import get_logger, setup_logging

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger.info("application_starting", version=__version__)

    # Startup: verify database connection
    try:
        init_db()
        logger.info("database_connected")
    except SQLAlchemyError as e:
        # Health checks report the issue
        logger.error("database_connection_failed", error=str(e))

    yield

    logger.info("application_shutting_down")


# Create FastAPI app
app = FastAPI(
    title="Social Publisher",
    description="Connect social accounts, schedule and publish video posts, track their analytics",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SocialPublisherError)
async def domain_error_handler(request: Request, exc: SocialPublisherError) -> JSONResponse:
    """Render domain errors as ``{"success": false, "error": ...}``."""
    logger.info(
        "request_rejected",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(status_code=exc.http_status, content={"success": False, "error": str(exc)})


# Register routers
app.include_router(health.router)
app.include_router(connect.router, prefix="/api/v1")
app.include_router(accounts.router, prefix="/api/v1")
app.include_router(videos.router, prefix="/api/v1")
app.include_router(posts.router, prefix="/api/v1")
app.include_router(calendar.router, prefix="/api/v1")
app.include_router(analytics.router, prefix="/api/v1")

# Serve stored media when MEDIA_BASE_URL is a local path
if settings.media_base_url.startswith("/"):
    Path(settings.media_root).mkdir(parents=True, exist_ok=True)
    app.mount(
        settings.media_base_url.rstrip("/"),
        StaticFiles(directory=settings.media_root),
        name="media",
    )


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint pointing at the docs."""
    return {
        "name": "Social Publisher",
        "version": __version__,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "social_publisher.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
