"""Publish intents: immediate or at a future time.

The request path only moves the post through the state machine and enqueues
work. Scheduled publishes are backed by a persistent ``ScheduledTaskModel``
record, so a lost timer message is still picked up by the beat sweep.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from social_publisher.db.models import PostModel, ScheduledTaskModel
from social_publisher.domain.enums import ScheduledTaskStatus
from social_publisher.domain.errors import PublishError
from social_publisher.jobs.publish_tasks import publish_post_task, run_scheduled_post_task
from social_publisher.logging import get_logger
from social_publisher.services import posts

logger = get_logger(__name__)


def publish_now(session: Session, owner_id: str, post_id: UUID) -> PostModel:
    """Move a post to ``processing`` and enqueue its publish task.

    Any pending schedule of the post is cancelled first.

    Raises:
        PostNotFoundError: If the post is not one of the owner's live posts.
        InvalidTransitionError: If the post is processing or already published.
        PublishError: If the publish task could not be queued; the post is failed.
    """
    post = posts.get_post(session, owner_id, post_id)
    posts.cancel_pending_tasks(session, post.id)
    post = posts.begin_publish(session, post.id)

    try:
        result = publish_post_task.apply_async(args=[str(post.id)], kwargs={"attempt": 0})
    except Exception as e:
        # Nothing will pick the post up, so it must not stay in processing
        logger.error("publish_enqueue_failed", post_id=str(post.id), error=str(e))
        posts.record_failure(session, post.id, "Could not queue the publish; please retry")
        raise PublishError("Could not queue the publish; please retry", retryable=True) from e

    logger.info("publish_enqueued", post_id=str(post.id), task_id=result.id)
    return post


def schedule(session: Session, owner_id: str, post_id: UUID, at: datetime) -> PostModel:
    """Schedule or reschedule a post.

    A previous pending schedule is cancelled; its timer still fires later but
    finds its record cancelled and does nothing.

    Args:
        session: Database session.
        owner_id: Owner of the post.
        post_id: Post to schedule.
        at: Publish time; naive values are taken as UTC.

    Returns:
        The scheduled post.

    Raises:
        PostValidationError: If ``at`` is not in the future.
        InvalidTransitionError: If the post is not a draft or already scheduled.
    """
    at = posts.validate_schedule_time(at)
    post = posts.get_post(session, owner_id, post_id)

    cancelled = posts.cancel_pending_tasks(session, post.id)
    post = posts.set_schedule(session, post.id, at)

    record = ScheduledTaskModel(post_id=post.id, due_at=at, status=ScheduledTaskStatus.PENDING)
    session.add(record)
    session.commit()

    result = run_scheduled_post_task.apply_async(args=[str(post.id), str(record.id)], eta=at)
    record.celery_task_id = result.id
    session.commit()

    logger.info(
        "publish_scheduled",
        post_id=str(post.id),
        due_at=at.isoformat(),
        scheduled_task_id=str(record.id),
        superseded=cancelled,
    )
    return post
