"""Pytest configuration and fixtures."""

import os
import tempfile
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

# Set test environment before importing app modules
_test_dir = Path(tempfile.mkdtemp(prefix="social-publisher-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_test_dir / 'test.db'}"
os.environ["MEDIA_ROOT"] = str(_test_dir / "media")
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["ENCRYPTION_MASTER_KEY"] = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["YOUTUBE_CLIENT_ID"] = "yt-client"
os.environ["YOUTUBE_CLIENT_SECRET"] = "yt-secret"
os.environ["FACEBOOK_APP_ID"] = "fb-app"
os.environ["FACEBOOK_APP_SECRET"] = "fb-secret"
os.environ["INSTAGRAM_APP_ID"] = "ig-app"
os.environ["INSTAGRAM_APP_SECRET"] = "ig-secret"
os.environ["TIKTOK_CLIENT_KEY"] = "tt-key"
os.environ["TIKTOK_CLIENT_SECRET"] = "tt-secret"
os.environ["THREADS_APP_ID"] = "th-app"
os.environ["THREADS_APP_SECRET"] = "th-secret"

from social_publisher.adapters.platforms import (  # noqa: E402
    MetricsSnapshot,
    PlatformUser,
    PublishResult,
    RefreshedToken,
    TokenGrant,
)
from social_publisher.domain.enums import Platform, PostStatus  # noqa: E402
from social_publisher.domain.errors import OAuthExchangeError  # noqa: E402


class FakeAdapter:
    """In-memory adapter recording every call; behaviour is set per test."""

    long_lived_tokens = False

    def __init__(self, platform: Platform = Platform.YOUTUBE):
        self.platform = platform
        self.user = PlatformUser(id="UC-creator", username="creator", display_name="Creator")
        self.publish_error: Exception | None = None
        self.refresh_error: Exception | None = None
        self.metrics = MetricsSnapshot()
        self.account_metrics = MetricsSnapshot()
        self.account_periods: list[tuple[Any, Any]] = []
        self.published: list[tuple[Any, ...]] = []
        self.refreshed = 0

    def build_authorization_url(self, state: str) -> str:
        return f"https://auth.example.com/authorize?state={state}"

    def exchange_code_for_token(self, code: str) -> TokenGrant:
        if code == "bad-code":
            raise OAuthExchangeError("invalid_grant")
        return TokenGrant(
            access_token=f"access-{code}",
            refresh_token="refresh-1",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            scopes=["upload"],
            user=self.user,
        )

    def refresh_access_token(self, credentials: Any) -> RefreshedToken:
        self.refreshed += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return RefreshedToken(
            access_token="access-refreshed",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    async def publish(self, video: Path, metadata: Any, credentials: Any) -> PublishResult:
        self.published.append((video, metadata, credentials))
        if self.publish_error is not None:
            raise self.publish_error
        return PublishResult(remote_post_id="remote-1", url="https://example.com/posts/remote-1")

    async def fetch_post_metrics(self, remote_post_id: str, credentials: Any) -> MetricsSnapshot:
        return self.metrics

    async def fetch_account_metrics(self, credentials: Any, start: Any, end: Any) -> MetricsSnapshot:
        self.account_periods.append((start, end))
        return self.account_metrics


@pytest.fixture(scope="session", autouse=True)
def database() -> None:
    """Create the schema once per test run."""
    from social_publisher.db.session import create_all

    create_all()


@pytest.fixture(autouse=True)
def clean_database(database: None) -> Generator[None, None, None]:
    """Empty every table after each test."""
    yield
    from social_publisher.db.models import Base
    from social_publisher.db.session import engine

    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db_session() -> Generator[Any, None, None]:
    """A database session for calling services directly."""
    from social_publisher.db.session import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def test_client() -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    from social_publisher.main import app

    with TestClient(app) as client:
        yield client


@pytest.fixture
def client(test_client: TestClient) -> TestClient:
    """The shared test client with a clean cookie jar."""
    test_client.cookies.clear()
    return test_client


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    """Get a fake platform adapter."""
    return FakeAdapter()


@pytest.fixture
def enqueued(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, tuple, dict]]:
    """Capture Celery enqueues instead of sending them to a broker."""
    from social_publisher.jobs import analytics_tasks, publish_tasks

    calls: list[tuple[str, tuple, dict]] = []

    def recorder(name: str) -> Callable[..., SimpleNamespace]:
        def record(*args: Any, **kwargs: Any) -> SimpleNamespace:
            calls.append((name, args, kwargs))
            return SimpleNamespace(id=f"task-{len(calls)}")

        return record

    for task in (
        publish_tasks.publish_post_task,
        publish_tasks.run_scheduled_post_task,
        analytics_tasks.fetch_post_metrics_task,
        analytics_tasks.fetch_account_analytics_task,
    ):
        monkeypatch.setattr(task, "apply_async", recorder(f"{task.name}.apply_async"))
        monkeypatch.setattr(task, "delay", recorder(f"{task.name}.delay"))
    return calls


@pytest.fixture
def make_video() -> Callable[..., str]:
    """Write a small video file into media storage and return its relative path."""
    from social_publisher.services import video_ingestion

    def factory(content: bytes = b"\x00\x00\x00\x18ftypmp42") -> str:
        relative = f"social-media/videos/{uuid4().hex}.mp4"
        target = video_ingestion.absolute_path(relative)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return relative

    return factory


@pytest.fixture
def make_thumbnail() -> Callable[..., str]:
    """Write a small thumbnail file into media storage and return its relative path."""
    from social_publisher.services import video_ingestion

    def factory(content: bytes = b"jpeg") -> str:
        relative = f"social-media/videos/thumbnails/{uuid4().hex}.jpg"
        target = video_ingestion.absolute_path(relative)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return relative

    return factory


@pytest.fixture
def make_account(db_session: Any) -> Callable[..., Any]:
    """Create a connected account with encrypted credentials."""
    from sqlalchemy import select

    from social_publisher.db.models import AccountModel
    from social_publisher.services import token_store

    def factory(
        owner_id: str = "owner-1",
        platform: Platform = Platform.YOUTUBE,
        platform_user_id: str | None = None,
        is_default: bool | None = None,
        expires_in: timedelta | None = timedelta(hours=1),
        refresh_token: str | None = "refresh-1",
        display_name: str = "Creator",
    ) -> AccountModel:
        if is_default is None:
            # First live account of the owner on a platform is the default
            is_default = not db_session.execute(
                select(AccountModel.id).where(
                    AccountModel.owner_id == owner_id,
                    AccountModel.platform == platform.value,
                    AccountModel.deleted_at.is_(None),
                    AccountModel.is_default.is_(True),
                )
            ).first()
        account = AccountModel(
            owner_id=owner_id,
            platform=platform.value,
            platform_user_id=platform_user_id or uuid4().hex,
            display_name=display_name,
            is_default=is_default,
        )
        token_store.store_grant(
            account,
            TokenGrant(
                access_token="access-1",
                refresh_token=refresh_token,
                expires_at=datetime.now(timezone.utc) + expires_in if expires_in else None,
                scopes=["upload"],
                user=PlatformUser(id=account.platform_user_id),
            ),
        )
        db_session.add(account)
        db_session.commit()
        return account

    return factory


@pytest.fixture
def make_post(db_session: Any, make_video: Callable[..., str]) -> Callable[..., Any]:
    """Create a post in any state for an account."""
    from social_publisher.db.models import PostModel

    def factory(account: Any, status: PostStatus = PostStatus.DRAFT, **fields: Any) -> PostModel:
        values: dict[str, Any] = {
            "title": "Morning routine",
            "description": "How I start the day",
            "hashtags": ["morning", "routine"],
            "video_path": make_video(),
        }
        values.update(fields)
        post = PostModel(owner_id=account.owner_id, account_id=account.id, status=status, **values)
        db_session.add(post)
        db_session.commit()
        db_session.refresh(post)
        return post

    return factory
