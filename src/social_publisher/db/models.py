"""SQLAlchemy ORM models."""

from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID as PyUUID
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func, text

JSON_VARIANT = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC datetime on every backend.

    Backends without timezone support (SQLite) hand back naive values; they are
    stored as UTC and re-tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Accounts
# =============================================================================


class AccountModel(Base):
    """Connected platform identity (one per owner, platform and platform user)."""

    __tablename__ = "social_accounts"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    platform_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    nickname: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    encrypted_access_token: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted_refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    scopes: Mapped[list[str] | None] = mapped_column(JSON_VARIANT, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default="active", server_default="active", index=True
    )
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata_", JSON_VARIANT, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, onupdate=func.now())

    # Constraints
    __table_args__ = (
        UniqueConstraint("platform", "platform_user_id", name="uq_account_platform_user"),
        # At most one live default per owner and platform
        Index(
            "uq_account_default_per_owner_platform",
            "owner_id",
            "platform",
            unique=True,
            postgresql_where=text("is_default AND deleted_at IS NULL"),
            sqlite_where=text("is_default AND deleted_at IS NULL"),
        ),
    )

    # Relationships
    posts: Mapped[list["PostModel"]] = relationship("PostModel", back_populates="account")

    @property
    def label(self) -> str:
        """Human label: nickname, then display name, then username."""
        return self.nickname or self.display_name or self.username or "Unknown Account"

    @property
    def is_token_expired(self) -> bool:
        """Whether the access token expires within the next five minutes."""
        if self.token_expires_at is None:
            return False
        return self.token_expires_at <= datetime.now(timezone.utc) + timedelta(minutes=5)


class OAuthStateModel(Base):
    """Pending OAuth authorization attempt (single-use CSRF state)."""

    __tablename__ = "oauth_states"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())


# =============================================================================
# Posts and scheduling
# =============================================================================


class PostModel(Base):
    """Authored video post bound to one account."""

    __tablename__ = "social_posts"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    account_id: Mapped[PyUUID] = mapped_column(
        Uuid, ForeignKey("social_accounts.id", ondelete="CASCADE"), index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    hashtags: Mapped[list[str] | None] = mapped_column(JSON_VARIANT, nullable=True)
    video_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    thumbnail_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    video_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON_VARIANT, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default="draft", server_default="draft", index=True
    )
    scheduled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    published_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    remote_post_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    remote_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    publish_attempts: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, onupdate=func.now())

    # Relationships
    account: Mapped["AccountModel"] = relationship("AccountModel", back_populates="posts")
    scheduled_tasks: Mapped[list["ScheduledTaskModel"]] = relationship(
        "ScheduledTaskModel", back_populates="post", cascade="all, delete-orphan"
    )


class ScheduledTaskModel(Base):
    """Persistent due-at record for a scheduled publish."""

    __tablename__ = "scheduled_tasks"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    post_id: Mapped[PyUUID] = mapped_column(
        Uuid, ForeignKey("social_posts.id", ondelete="CASCADE"), index=True
    )
    due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default="pending", server_default="pending", index=True
    )
    celery_task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dispatched_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())

    # Relationships
    post: Mapped["PostModel"] = relationship("PostModel", back_populates="scheduled_tasks")


# =============================================================================
# Analytics
# =============================================================================


class MetricModel(Base):
    """Daily metric fact for an account or one of its posts."""

    __tablename__ = "social_metrics"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[PyUUID] = mapped_column(
        Uuid, ForeignKey("social_accounts.id", ondelete="CASCADE"), index=True
    )
    post_id: Mapped[PyUUID | None] = mapped_column(
        Uuid, ForeignKey("social_posts.id", ondelete="CASCADE"), nullable=True, index=True
    )
    metric_date: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)
    metric_type: Mapped[str] = mapped_column(String(20), nullable=False)
    views: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    likes: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    comments: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    shares: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    impressions: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    reach: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    engagement_rate: Mapped[float] = mapped_column(Float, default=0.0, server_default="0")
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata_", JSON_VARIANT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, onupdate=func.now())

    # Constraints
    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "post_id",
            "date",
            "metric_type",
            name="uq_metric_grain",
            postgresql_nulls_not_distinct=True,
        ),
    )
