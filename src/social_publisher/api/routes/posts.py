"""Post authoring and publishing endpoints.

Publishing never happens on the request path: these endpoints only move the
post through its state machine and enqueue the background task.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import Field

from social_publisher.api.deps import OwnerIdDep, SessionDep
from social_publisher.api.schemas import ApiModel, PostResponse, SuccessResponse
from social_publisher.domain.enums import PostStatus
from social_publisher.domain.errors import PostValidationError
from social_publisher.logging import get_logger
from social_publisher.services import posts, scheduler

router = APIRouter(prefix="/posts", tags=["Posts"])
logger = get_logger(__name__)


class CreatePostRequest(ApiModel):
    """Request to create a post, optionally scheduling or publishing it at once."""

    account_id: UUID
    title: str = Field(..., min_length=1, max_length=posts.MAX_TITLE_LENGTH)
    description: str | None = Field(default=None, max_length=posts.MAX_DESCRIPTION_LENGTH)
    hashtags: list[str] = Field(default_factory=list)
    video_path: str = Field(..., min_length=1)
    thumbnail_path: str | None = None
    video_metadata: dict[str, Any] | None = None
    scheduled_at: datetime | None = None
    publish_now: bool = False


class UpdatePostRequest(ApiModel):
    """Partial edit of a post's content."""

    title: str | None = Field(default=None, min_length=1, max_length=posts.MAX_TITLE_LENGTH)
    description: str | None = Field(default=None, max_length=posts.MAX_DESCRIPTION_LENGTH)
    hashtags: list[str] | None = None
    thumbnail_path: str | None = None


class ScheduleRequest(ApiModel):
    """Request to schedule a post."""

    scheduled_at: datetime


class PostListResponse(ApiModel):
    posts: list[PostResponse]
    total: int


@router.get("", response_model=PostListResponse, summary="List posts")
def list_posts(
    owner_id: OwnerIdDep,
    session: SessionDep,
    status_filter: PostStatus | None = Query(default=None, alias="status"),
    account_id: UUID | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> PostListResponse:
    rows = posts.list_posts(session, owner_id, status_filter, account_id, limit, offset)
    return PostListResponse(posts=[PostResponse.from_model(p) for p in rows], total=len(rows))


@router.post(
    "",
    response_model=PostResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create post",
    description="Create a draft post; schedule it or publish it immediately if asked.",
)
def create_post(request: CreatePostRequest, owner_id: OwnerIdDep, session: SessionDep) -> PostResponse:
    """Create a post.

    The schedule time is validated before anything is written, so a past
    ``scheduledAt`` leaves no orphan draft behind.
    """
    if request.publish_now and request.scheduled_at is not None:
        raise PostValidationError("Choose either publishNow or scheduledAt, not both")
    if request.scheduled_at is not None:
        posts.validate_schedule_time(request.scheduled_at)

    post = posts.create_post(
        session,
        owner_id,
        request.account_id,
        title=request.title,
        video_path=request.video_path,
        description=request.description,
        hashtags=request.hashtags,
        thumbnail_path=request.thumbnail_path,
        video_metadata=request.video_metadata,
    )

    if request.publish_now:
        post = scheduler.publish_now(session, owner_id, post.id)
    elif request.scheduled_at is not None:
        post = scheduler.schedule(session, owner_id, post.id, request.scheduled_at)

    return PostResponse.from_model(post)


@router.get("/{post_id}", response_model=PostResponse, summary="Get post")
def get_post(post_id: UUID, owner_id: OwnerIdDep, session: SessionDep) -> PostResponse:
    return PostResponse.from_model(posts.get_post(session, owner_id, post_id))


@router.put(
    "/{post_id}",
    response_model=PostResponse,
    summary="Edit post",
    description="Edit title, description, hashtags or thumbnail of an unpublished post.",
)
def update_post(
    post_id: UUID,
    request: UpdatePostRequest,
    owner_id: OwnerIdDep,
    session: SessionDep,
) -> PostResponse:
    post = posts.update_post(
        session,
        owner_id,
        post_id,
        title=request.title,
        description=request.description,
        hashtags=request.hashtags,
        thumbnail_path=request.thumbnail_path,
    )
    return PostResponse.from_model(post)


@router.delete(
    "/{post_id}",
    response_model=SuccessResponse,
    summary="Delete post",
    description="Delete a post and its stored media files.",
)
def delete_post(post_id: UUID, owner_id: OwnerIdDep, session: SessionDep) -> SuccessResponse:
    posts.delete_post(session, owner_id, post_id)
    return SuccessResponse(message="Post deleted")


@router.post(
    "/{post_id}/publish",
    response_model=PostResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Publish now",
    description="Start publishing a draft, scheduled or failed post.",
)
def publish_post(post_id: UUID, owner_id: OwnerIdDep, session: SessionDep) -> PostResponse:
    return PostResponse.from_model(scheduler.publish_now(session, owner_id, post_id))


@router.post(
    "/{post_id}/schedule",
    response_model=PostResponse,
    summary="Schedule post",
    description="Schedule or reschedule a post for a future time.",
)
def schedule_post(
    post_id: UUID,
    request: ScheduleRequest,
    owner_id: OwnerIdDep,
    session: SessionDep,
) -> PostResponse:
    return PostResponse.from_model(scheduler.schedule(session, owner_id, post_id, request.scheduled_at))
