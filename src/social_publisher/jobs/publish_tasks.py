"""Celery tasks for publishing posts.

Three entry points share one publish body:
- ``publish_post``: a post already moved to ``processing`` (publish now, retries)
- ``run_scheduled_post``: the timer for a scheduled post fired
- ``dispatch_due_posts``: beat sweep that claims overdue scheduled-task records

Every remote failure ends in a post state change with a readable reason; the
tasks never raise for platform errors.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import httpx
from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from social_publisher.adapters.platforms import PlatformAdapter, PublishMetadata, get_adapter
from social_publisher.config import get_settings
from social_publisher.db.models import PostModel, ScheduledTaskModel
from social_publisher.db.session import get_session_context
from social_publisher.domain.enums import PostStatus, ScheduledTaskStatus
from social_publisher.domain.errors import (
    EncryptionError,
    InvalidTransitionError,
    PublishError,
    VideoValidationError,
)
from social_publisher.domain.platforms import PLATFORM_PROFILES
from social_publisher.logging import get_logger
from social_publisher.services import accounts, posts, video_ingestion
from social_publisher.utils import run_async
from social_publisher.worker import celery_app

logger = get_logger(__name__)


@dataclass
class PublishOutcome:
    """What one publish attempt did to a post."""

    post_id: str
    status: str  # published, failed, retrying, skipped
    remote_post_id: str | None = None
    url: str | None = None
    error: str | None = None
    retry_in: int | None = None
    attempt: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def retry_delay(attempt: int) -> int:
    """Backoff before retry number ``attempt`` (1-based), capped by settings."""
    settings = get_settings()
    delay = settings.publish_retry_delay_seconds * 2 ** max(attempt - 1, 0)
    return min(delay, settings.publish_retry_backoff_max)


def build_publish_metadata(post: PostModel) -> PublishMetadata:
    """Adapter-facing content of a post."""
    profile = PLATFORM_PROFILES[post.account.platform]
    return PublishMetadata(
        title=post.title,
        description=post.description,
        hashtags=list(post.hashtags or []),
        thumbnail_path=(
            video_ingestion.absolute_path(post.thumbnail_path, video_ingestion.THUMBNAIL_DIR)
            if post.thumbnail_path
            else None
        ),
        video_url=(
            video_ingestion.public_media_url(post.video_path)
            if profile.requires_public_url
            else None
        ),
    )


def _handle_failure(session: Session, post: PostModel, error: PublishError) -> PublishOutcome:
    """Either count a retryable attempt and schedule another, or fail the post."""
    settings = get_settings()
    attempt = post.publish_attempts + 1
    reason = str(error)

    if error.retryable and attempt < settings.publish_max_retries:
        posts.record_retry(session, post.id, reason)
        delay = retry_delay(attempt)
        logger.warning(
            "publish_retry_scheduled",
            post_id=str(post.id),
            attempt=attempt,
            retry_in=delay,
            error=reason,
        )
        return PublishOutcome(
            post_id=str(post.id),
            status="retrying",
            error=reason,
            retry_in=delay,
            attempt=attempt,
        )

    if error.retryable:
        reason = f"{reason} (gave up after {attempt} attempts)"
    posts.record_failure(session, post.id, reason)
    logger.error("publish_failed", post_id=str(post.id), attempt=attempt, error=reason)
    return PublishOutcome(post_id=str(post.id), status="failed", error=reason, attempt=attempt)


def _fail_unexpected(session: Session, post_id: UUID, attempt: int, reason: str) -> PublishOutcome:
    """Fail a post after an error outside the platform error taxonomy."""
    session.rollback()
    posts.record_failure(session, post_id, reason)
    logger.error("publish_failed", post_id=str(post_id), attempt=attempt + 1, error=reason)
    return PublishOutcome(post_id=str(post_id), status="failed", error=reason, attempt=attempt + 1)


def fail_stale_processing(session: Session, older_than_seconds: int) -> int:
    """Fail posts stuck in ``processing`` whose worker died or whose retry was lost.

    A post waiting for a retry is touched by every attempt, so only posts with
    no progress for longer than the window are affected.

    Returns:
        Number of posts moved to ``failed``.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
    stale_ids = session.execute(
        select(PostModel.id).where(
            PostModel.status == PostStatus.PROCESSING,
            func.coalesce(PostModel.updated_at, PostModel.created_at) < cutoff,
        )
    ).scalars().all()

    failed = 0
    for post_id in stale_ids:
        try:
            posts.record_failure(
                session, post_id, "Publishing did not finish; please retry the post"
            )
        except InvalidTransitionError:
            # Finished between the select and the update
            continue
        failed += 1
    if failed:
        logger.warning("stale_publishes_failed", count=failed)
    return failed


def execute_publish(
    session: Session,
    post_id: UUID,
    attempt: int = 0,
    adapter: PlatformAdapter | None = None,
) -> PublishOutcome:
    """Publish a post that is in ``processing``.

    Redelivered or stale messages are skipped: the post must still be
    ``processing``, have no remote id and be on the attempt the message was
    issued for.

    Args:
        session: Database session.
        post_id: Post to publish.
        attempt: Attempt number the message was enqueued for.
        adapter: Optional adapter override.

    Returns:
        PublishOutcome describing the result.
    """
    post = session.get(PostModel, post_id, populate_existing=True)
    if (
        post is None
        or post.status != PostStatus.PROCESSING
        or post.remote_post_id
        or post.publish_attempts != attempt
    ):
        logger.info(
            "publish_skipped",
            post_id=str(post_id),
            status=post.status if post else None,
            attempt=attempt,
        )
        return PublishOutcome(post_id=str(post_id), status="skipped", attempt=attempt)

    account = post.account
    adapter = adapter or get_adapter(account.platform)
    logger.info(
        "publish_started",
        post_id=str(post.id),
        account_id=str(account.id),
        platform=account.platform,
        attempt=attempt,
    )

    try:
        credentials = accounts.resolve_credentials(session, account.id, adapter)
        result = run_async(
            adapter.publish(
                video_ingestion.absolute_path(post.video_path, video_ingestion.VIDEO_DIR),
                build_publish_metadata(post),
                credentials,
            )
        )
    except PublishError as e:
        return _handle_failure(session, post, e)
    except httpx.HTTPError as e:
        # Transport failure during the token refresh
        return _handle_failure(
            session, post, PublishError(f"{account.platform} request failed: {e}", retryable=True)
        )
    except (EncryptionError, VideoValidationError) as e:
        return _handle_failure(session, post, PublishError(str(e), retryable=False))
    except SoftTimeLimitExceeded:
        # The upload may have gone through, so a timeout is never retried
        return _fail_unexpected(
            session, post_id, attempt, "Publishing timed out before the platform confirmed the post"
        )
    except Exception as e:
        logger.exception("publish_crashed", post_id=str(post_id), error=str(e))
        return _fail_unexpected(
            session, post_id, attempt, f"Unexpected error while publishing: {e.__class__.__name__}: {e}"
        )

    posts.record_success(session, post.id, result.remote_post_id, result.url)
    logger.info(
        "publish_succeeded",
        post_id=str(post.id),
        platform=account.platform,
        remote_post_id=result.remote_post_id,
    )
    return PublishOutcome(
        post_id=str(post.id),
        status="published",
        remote_post_id=result.remote_post_id,
        url=result.url,
        attempt=attempt,
    )


def prepare_scheduled_run(
    session: Session,
    post_id: UUID,
    scheduled_task_id: UUID | None = None,
) -> bool:
    """Re-validate a scheduled post when its timer fires and move it to ``processing``.

    Returns:
        True if the post entered ``processing`` and should be published now.
    """
    if scheduled_task_id is not None:
        record = session.get(ScheduledTaskModel, scheduled_task_id)
        if record is None or record.status == ScheduledTaskStatus.CANCELLED:
            logger.info(
                "scheduled_run_cancelled",
                post_id=str(post_id),
                scheduled_task_id=str(scheduled_task_id),
            )
            return False
        if record.status == ScheduledTaskStatus.PENDING:
            record.status = ScheduledTaskStatus.DISPATCHED
            record.dispatched_at = datetime.now(timezone.utc)
            session.commit()

    post = session.get(PostModel, post_id, populate_existing=True)
    if post is None or post.deleted_at is not None or post.status != PostStatus.SCHEDULED:
        logger.info(
            "scheduled_run_noop",
            post_id=str(post_id),
            status=post.status if post else None,
            deleted=bool(post and post.deleted_at),
        )
        return False

    if post.account.deleted_at is not None:
        logger.info("scheduled_run_noop", post_id=str(post_id), reason="account_disconnected")
        return False

    try:
        posts.begin_publish(session, post.id)
    except InvalidTransitionError:
        # Another delivery of the same schedule won the race
        logger.info("scheduled_run_duplicate", post_id=str(post_id))
        return False
    return True


def claim_due_tasks(session: Session, now: datetime | None = None, limit: int = 100) -> list[ScheduledTaskModel]:
    """Claim pending scheduled-task records that are due.

    Each record is claimed with a conditional ``pending -> dispatched`` update
    so concurrent sweeps never claim the same record twice.
    """
    now = now or datetime.now(timezone.utc)
    candidates = session.execute(
        select(ScheduledTaskModel)
        .where(
            ScheduledTaskModel.status == ScheduledTaskStatus.PENDING,
            ScheduledTaskModel.due_at <= now,
        )
        .order_by(ScheduledTaskModel.due_at)
        .limit(limit)
    ).scalars().all()

    claimed = []
    for record in candidates:
        result = session.execute(
            update(ScheduledTaskModel)
            .where(
                ScheduledTaskModel.id == record.id,
                ScheduledTaskModel.status == ScheduledTaskStatus.PENDING,
            )
            .values(status=ScheduledTaskStatus.DISPATCHED, dispatched_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            claimed.append(record)
    session.commit()
    return claimed


# =============================================================================
# Tasks
# =============================================================================


def _enqueue_retry(outcome: PublishOutcome) -> None:
    if outcome.status == "retrying" and outcome.retry_in is not None:
        publish_post_task.apply_async(
            args=[outcome.post_id],
            kwargs={"attempt": outcome.attempt},
            countdown=outcome.retry_in,
        )


@celery_app.task(bind=True, name="publish_post")
def publish_post_task(self: Any, post_id: str, attempt: int = 0) -> dict[str, Any]:
    """Publish a post that is already ``processing``.

    Args:
        post_id: UUID of the post.
        attempt: Attempt number this message belongs to.

    Returns:
        PublishOutcome as a dict.
    """
    logger.info("publish_post_task_started", task_id=self.request.id, post_id=post_id, attempt=attempt)
    with get_session_context() as session:
        outcome = execute_publish(session, UUID(post_id), attempt=attempt)
    _enqueue_retry(outcome)
    return outcome.to_dict()


@celery_app.task(bind=True, name="run_scheduled_post")
def run_scheduled_post_task(
    self: Any,
    post_id: str,
    scheduled_task_id: str | None = None,
) -> dict[str, Any]:
    """Publish a scheduled post whose due time has come, if it is still scheduled."""
    logger.info(
        "run_scheduled_post_started",
        task_id=self.request.id,
        post_id=post_id,
        scheduled_task_id=scheduled_task_id,
    )
    with get_session_context() as session:
        ready = prepare_scheduled_run(
            session,
            UUID(post_id),
            UUID(scheduled_task_id) if scheduled_task_id else None,
        )
        if not ready:
            return PublishOutcome(post_id=post_id, status="skipped").to_dict()
        outcome = execute_publish(session, UUID(post_id))
    _enqueue_retry(outcome)
    return outcome.to_dict()


@celery_app.task(bind=True, name="dispatch_due_posts")
def dispatch_due_posts_task(self: Any) -> dict[str, Any]:
    """Beat sweep: hand every due scheduled post to ``run_scheduled_post``.

    The same sweep fails posts that have been stuck in ``processing``.
    """
    with get_session_context() as session:
        claimed = [(str(r.post_id), str(r.id)) for r in claim_due_tasks(session)]
        stale = fail_stale_processing(session, get_settings().publish_stale_after_seconds)

    for post_id, record_id in claimed:
        run_scheduled_post_task.delay(post_id, record_id)

    if claimed:
        logger.info("due_posts_dispatched", count=len(claimed))
    return {"dispatched": len(claimed), "stale_failed": stale}
