"""Post authoring and the post state machine.

States::

    draft ──► scheduled ──► processing ──► published
      │                        ▲   │
      └────────────────────────┘   └──► failed ──► processing (retry)

Every transition is one conditional UPDATE guarded by the allowed source
states, so a duplicate dispatch of the same post loses the race cleanly and
nothing else changes.
"""

import re
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from social_publisher.db.models import AccountModel, PostModel, ScheduledTaskModel
from social_publisher.domain.enums import Platform, PostStatus, ScheduledTaskStatus
from social_publisher.domain.errors import (
    AccountNotFoundError,
    InvalidTransitionError,
    PostImmutableError,
    PostNotFoundError,
    PostValidationError,
    VideoValidationError,
)
from social_publisher.domain.platforms import PLATFORM_PROFILES, build_caption, calendar_color
from social_publisher.logging import get_logger
from social_publisher.services import video_ingestion

logger = get_logger(__name__)

MAX_TITLE_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 5000
MAX_HASHTAGS = 30
MAX_HASHTAG_LENGTH = 50
HASHTAG_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

# Source states from which each transition is legal
SCHEDULABLE = (PostStatus.DRAFT, PostStatus.SCHEDULED)
PUBLISHABLE = (PostStatus.DRAFT, PostStatus.SCHEDULED, PostStatus.FAILED)


# =============================================================================
# Validation
# =============================================================================


def normalize_hashtags(hashtags: Iterable[str] | None) -> list[str]:
    """Strip leading ``#`` and whitespace, drop blanks and duplicates, keep order.

    Raises:
        PostValidationError: If there are too many tags or a tag is malformed.
    """
    seen: set[str] = set()
    result: list[str] = []
    for raw in hashtags or []:
        tag = raw.strip().lstrip("#").strip()
        if not tag or tag.lower() in seen:
            continue
        if len(tag) > MAX_HASHTAG_LENGTH:
            raise PostValidationError(f"Hashtag too long (max {MAX_HASHTAG_LENGTH}): {tag}")
        if not HASHTAG_PATTERN.match(tag):
            raise PostValidationError(
                f"Hashtags may only contain letters, digits and underscores: {tag}"
            )
        seen.add(tag.lower())
        result.append(tag)

    if len(result) > MAX_HASHTAGS:
        raise PostValidationError(f"Too many hashtags ({len(result)}), max is {MAX_HASHTAGS}")
    return result


def validate_content(
    platform: str,
    title: str,
    description: str | None,
    hashtags: list[str],
) -> None:
    """Check post content against field and platform limits.

    Raises:
        PostValidationError: On the first violated limit.
    """
    if not title or not title.strip():
        raise PostValidationError("Title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise PostValidationError(f"Title too long (max {MAX_TITLE_LENGTH} characters)")
    if description and len(description) > MAX_DESCRIPTION_LENGTH:
        raise PostValidationError(
            f"Description too long (max {MAX_DESCRIPTION_LENGTH} characters)"
        )

    profile = PLATFORM_PROFILES[Platform(platform)]
    if len(hashtags) > profile.hashtag_limit:
        raise PostValidationError(
            f"{platform} allows at most {profile.hashtag_limit} hashtags, got {len(hashtags)}"
        )
    if profile.title_limit and len(title) > profile.title_limit:
        raise PostValidationError(
            f"{platform} titles are limited to {profile.title_limit} characters"
        )
    caption = build_caption(description, hashtags)
    if len(caption) > profile.caption_limit:
        raise PostValidationError(
            f"{platform} captions are limited to {profile.caption_limit} characters "
            f"(description plus hashtags is {len(caption)})"
        )


def validate_schedule_time(at: datetime) -> datetime:
    """Normalize a schedule timestamp to UTC and require it to be in the future.

    Raises:
        PostValidationError: If the timestamp is not in the future.
    """
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    at = at.astimezone(timezone.utc)
    if at <= datetime.now(timezone.utc):
        raise PostValidationError("Scheduled time must be in the future")
    return at


# =============================================================================
# CRUD
# =============================================================================


def get_post(session: Session, owner_id: str, post_id: UUID) -> PostModel:
    """Get one of the owner's live posts.

    Raises:
        PostNotFoundError: If missing, deleted or owned by someone else.
    """
    post = session.get(PostModel, post_id)
    if post is None or post.deleted_at is not None or post.owner_id != owner_id:
        raise PostNotFoundError(f"Post not found: {post_id}")
    return post


def list_posts(
    session: Session,
    owner_id: str,
    status: str | None = None,
    account_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[PostModel]:
    """List an owner's posts, newest first."""
    query = (
        select(PostModel)
        .options(selectinload(PostModel.account))
        .where(PostModel.owner_id == owner_id, PostModel.deleted_at.is_(None))
    )
    if status:
        query = query.where(PostModel.status == PostStatus(status))
    if account_id:
        query = query.where(PostModel.account_id == account_id)
    query = query.order_by(PostModel.created_at.desc()).limit(limit).offset(offset)
    return list(session.execute(query).scalars().all())


def _stored_media_path(path: str, directory: Path, kind: str) -> str:
    """Normalise a video or thumbnail path, which must point into its storage directory."""
    try:
        return video_ingestion.relative_media_path(path, directory)
    except VideoValidationError as e:
        raise PostValidationError(f"Invalid {kind} path: {path}") from e


def create_post(
    session: Session,
    owner_id: str,
    account_id: UUID,
    title: str,
    video_path: str,
    description: str | None = None,
    hashtags: list[str] | None = None,
    thumbnail_path: str | None = None,
    video_metadata: dict[str, Any] | None = None,
) -> PostModel:
    """Create a draft post for one of the owner's live accounts.

    Raises:
        AccountNotFoundError: If the account is not a live account of the owner.
        PostValidationError: If the content violates a limit or a media path
            points outside its storage directory.
    """
    account = session.get(AccountModel, account_id)
    if account is None or account.deleted_at is not None or account.owner_id != owner_id:
        raise AccountNotFoundError(f"Account not found: {account_id}")

    tags = normalize_hashtags(hashtags)
    validate_content(account.platform, title, description, tags)

    video_path = _stored_media_path(video_path, video_ingestion.VIDEO_DIR, "video")
    if thumbnail_path is not None:
        thumbnail_path = _stored_media_path(thumbnail_path, video_ingestion.THUMBNAIL_DIR, "thumbnail")
    if not video_ingestion.absolute_path(video_path).exists():
        raise PostValidationError(f"Video not found: {video_path}")

    post = PostModel(
        owner_id=owner_id,
        account_id=account.id,
        title=title.strip(),
        description=description,
        hashtags=tags,
        video_path=video_path,
        thumbnail_path=thumbnail_path,
        video_metadata=video_metadata,
        status=PostStatus.DRAFT,
    )
    session.add(post)
    session.commit()
    session.refresh(post)

    logger.info("post_created", post_id=str(post.id), account_id=str(account.id), platform=account.platform)
    return post


def update_post(
    session: Session,
    owner_id: str,
    post_id: UUID,
    title: str | None = None,
    description: str | None = None,
    hashtags: list[str] | None = None,
    thumbnail_path: str | None = None,
) -> PostModel:
    """Edit a post's content. Only fields that are passed change.

    Raises:
        PostImmutableError: If the post is already published.
        PostValidationError: If the edited content violates a limit.
    """
    post = get_post(session, owner_id, post_id)
    if post.status == PostStatus.PUBLISHED:
        raise PostImmutableError("Published posts cannot be edited")

    new_title = title if title is not None else post.title
    new_description = description if description is not None else post.description
    new_tags = normalize_hashtags(hashtags) if hashtags is not None else list(post.hashtags or [])
    validate_content(post.account.platform, new_title, new_description, new_tags)

    replaced_thumbnail = None
    if thumbnail_path is not None:
        thumbnail_path = _stored_media_path(thumbnail_path, video_ingestion.THUMBNAIL_DIR, "thumbnail")
    if thumbnail_path is not None and thumbnail_path != post.thumbnail_path:
        replaced_thumbnail = post.thumbnail_path
        post.thumbnail_path = thumbnail_path

    # Conditional write so a publish that started meanwhile wins
    result = session.execute(
        update(PostModel)
        .where(PostModel.id == post.id, PostModel.status != PostStatus.PUBLISHED)
        .values(
            title=new_title.strip(),
            description=new_description,
            hashtags=new_tags,
            thumbnail_path=post.thumbnail_path,
        )
    )
    if result.rowcount != 1:
        session.rollback()
        raise PostImmutableError("Published posts cannot be edited")
    session.commit()

    if replaced_thumbnail:
        video_ingestion.delete_files(replaced_thumbnail)

    session.refresh(post)
    logger.info("post_updated", post_id=str(post.id))
    return post


def delete_post(session: Session, owner_id: str, post_id: UUID) -> None:
    """Soft-delete a post, cancel its pending schedule and remove its media files."""
    post = get_post(session, owner_id, post_id)

    post.deleted_at = datetime.now(timezone.utc)
    cancel_pending_tasks(session, post.id)
    session.commit()

    removed = video_ingestion.delete_files(post.video_path, post.thumbnail_path)
    logger.info("post_deleted", post_id=str(post.id), status=post.status, files_removed=removed)


def cancel_pending_tasks(session: Session, post_id: UUID) -> int:
    """Cancel pending scheduled publishes of a post; caller commits."""
    return session.execute(
        update(ScheduledTaskModel)
        .where(
            ScheduledTaskModel.post_id == post_id,
            ScheduledTaskModel.status == ScheduledTaskStatus.PENDING,
        )
        .values(status=ScheduledTaskStatus.CANCELLED)
    ).rowcount


# =============================================================================
# State machine
# =============================================================================


def _transition(
    session: Session,
    post_id: UUID,
    allowed: Iterable[PostStatus],
    action: str,
    live_only: bool = True,
    **values: Any,
) -> PostModel:
    """Apply a guarded status change in a single UPDATE.

    Outcomes of an attempt already in flight (``live_only=False``) are recorded
    even if the post was deleted meanwhile.

    Raises:
        InvalidTransitionError: If the post is not in an allowed state (nothing is changed).
    """
    criteria = [PostModel.id == post_id, PostModel.status.in_(tuple(allowed))]
    if live_only:
        criteria.append(PostModel.deleted_at.is_(None))
    result = session.execute(update(PostModel).where(*criteria).values(**values))
    if result.rowcount != 1:
        session.rollback()
        current = session.get(PostModel, post_id, populate_existing=True)
        state = "deleted" if current is None or current.deleted_at else current.status
        raise InvalidTransitionError(f"Cannot {action} a post that is {state}")

    session.commit()
    logger.info("post_transition", post_id=str(post_id), action=action, status=values.get("status"))
    return session.get(PostModel, post_id, populate_existing=True)  # type: ignore[return-value]


def set_schedule(session: Session, post_id: UUID, at: datetime) -> PostModel:
    """Schedule (or reschedule) a draft for a future time."""
    at = validate_schedule_time(at)
    return _transition(
        session,
        post_id,
        SCHEDULABLE,
        "schedule",
        status=PostStatus.SCHEDULED,
        scheduled_at=at,
    )


def begin_publish(session: Session, post_id: UUID) -> PostModel:
    """Move a post into ``processing``; the only entry point to a publish attempt."""
    return _transition(
        session,
        post_id,
        PUBLISHABLE,
        "publish",
        status=PostStatus.PROCESSING,
        failure_reason=None,
        publish_attempts=0,
    )


def record_success(
    session: Session,
    post_id: UUID,
    remote_post_id: str,
    remote_url: str | None = None,
) -> PostModel:
    """Mark a processing post as published."""
    return _transition(
        session,
        post_id,
        (PostStatus.PROCESSING,),
        "complete",
        live_only=False,
        status=PostStatus.PUBLISHED,
        remote_post_id=remote_post_id,
        remote_url=remote_url,
        published_at=datetime.now(timezone.utc),
        failure_reason=None,
    )


def record_failure(session: Session, post_id: UUID, reason: str) -> PostModel:
    """Mark a processing post as failed. No automatic retry follows."""
    return _transition(
        session,
        post_id,
        (PostStatus.PROCESSING,),
        "fail",
        live_only=False,
        status=PostStatus.FAILED,
        failure_reason=reason,
    )


def record_retry(session: Session, post_id: UUID, reason: str) -> PostModel:
    """Count a retryable failed attempt while the post stays ``processing``."""
    return _transition(
        session,
        post_id,
        (PostStatus.PROCESSING,),
        "retry",
        live_only=False,
        publish_attempts=PostModel.publish_attempts + 1,
        failure_reason=reason,
    )


# =============================================================================
# Calendar
# =============================================================================


def list_calendar_events(
    session: Session,
    owner_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[dict[str, Any]]:
    """Scheduled posts in a time window, shaped for a calendar widget."""
    query = (
        select(PostModel)
        .options(selectinload(PostModel.account))
        .where(
            PostModel.owner_id == owner_id,
            PostModel.deleted_at.is_(None),
            PostModel.scheduled_at.is_not(None),
        )
    )
    if start is not None:
        query = query.where(PostModel.scheduled_at >= start)
    if end is not None:
        query = query.where(PostModel.scheduled_at <= end)

    events = []
    for post in session.execute(query.order_by(PostModel.scheduled_at)).scalars():
        account = post.account
        events.append(
            {
                "id": str(post.id),
                "title": post.title,
                "start": post.scheduled_at.isoformat() if post.scheduled_at else None,
                "color": calendar_color(account.platform),
                "platform": account.platform,
                "accountLabel": account.label,
                "status": post.status,
            }
        )
    return events
