"""Request and response models shared by several routers."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from social_publisher.db.models import AccountModel, PostModel
from social_publisher.services import video_ingestion


class ApiModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SuccessResponse(ApiModel):
    success: bool = True
    message: str | None = None


class AccountResponse(ApiModel):
    """Connected account as shown to its owner. Tokens are never exposed."""

    id: UUID
    platform: str
    platform_user_id: str
    username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    nickname: str | None = None
    label: str
    is_default: bool
    status: str
    status_reason: str | None = None
    token_expires_at: datetime | None = None
    is_token_expired: bool
    last_synced_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, account: AccountModel) -> "AccountResponse":
        return cls(
            id=account.id,
            platform=account.platform,
            platform_user_id=account.platform_user_id,
            username=account.username,
            display_name=account.display_name,
            avatar_url=account.avatar_url,
            nickname=account.nickname,
            label=account.label,
            is_default=account.is_default,
            status=account.status,
            status_reason=account.status_reason,
            token_expires_at=account.token_expires_at,
            is_token_expired=account.is_token_expired,
            last_synced_at=account.last_synced_at,
            created_at=account.created_at,
        )


class PostResponse(ApiModel):
    """Post with its publishing state."""

    id: UUID
    account_id: UUID
    platform: str
    account_label: str
    title: str
    description: str | None = None
    hashtags: list[str]
    video_path: str
    video_url: str
    thumbnail_path: str | None = None
    thumbnail_url: str | None = None
    video_metadata: dict[str, Any] | None = None
    status: str
    scheduled_at: datetime | None = None
    published_at: datetime | None = None
    remote_post_id: str | None = None
    remote_url: str | None = None
    failure_reason: str | None = None
    publish_attempts: int
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, post: PostModel) -> "PostResponse":
        return cls(
            id=post.id,
            account_id=post.account_id,
            platform=post.account.platform,
            account_label=post.account.label,
            title=post.title,
            description=post.description,
            hashtags=list(post.hashtags or []),
            video_path=post.video_path,
            video_url=video_ingestion.media_url(post.video_path),
            thumbnail_path=post.thumbnail_path,
            thumbnail_url=(
                video_ingestion.media_url(post.thumbnail_path) if post.thumbnail_path else None
            ),
            video_metadata=post.video_metadata,
            status=post.status,
            scheduled_at=post.scheduled_at,
            published_at=post.published_at,
            remote_post_id=post.remote_post_id,
            remote_url=post.remote_url,
            failure_reason=post.failure_reason,
            publish_attempts=post.publish_attempts,
            created_at=post.created_at,
        )
