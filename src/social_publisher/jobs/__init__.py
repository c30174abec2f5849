"""Celery job definitions."""

from social_publisher.jobs.analytics_tasks import (
    fetch_post_metrics_task,
    fetch_recent_post_metrics_task,
    prune_metrics_task,
)
from social_publisher.jobs.publish_tasks import (
    dispatch_due_posts_task,
    publish_post_task,
    run_scheduled_post_task,
)
from social_publisher.jobs.token_tasks import refresh_expiring_tokens_task

__all__ = [
    # Publishing
    "publish_post_task",
    "run_scheduled_post_task",
    "dispatch_due_posts_task",
    # Token maintenance
    "refresh_expiring_tokens_task",
    # Analytics
    "fetch_post_metrics_task",
    "fetch_recent_post_metrics_task",
    "prune_metrics_task",
]
