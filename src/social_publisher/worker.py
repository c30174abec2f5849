"""Celery worker configuration."""

from typing import Any

from celery import Celery
from celery.signals import worker_process_shutdown

from social_publisher.config import settings
from social_publisher.logging import setup_logging
from social_publisher.utils import close_worker_loop

# Setup logging before anything else
setup_logging()

# Create Celery app
celery_app = Celery(
    "social_publisher",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_always_eager=settings.celery_task_always_eager,
    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=settings.publish_timeout_seconds * 2,
    task_soft_time_limit=int(settings.publish_timeout_seconds * 1.8),
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
    # Result backend
    result_expires=86400,  # 24 hours
    # Task routing
    task_routes={
        # Publishing
        "publish_post": {"queue": "publish"},
        "run_scheduled_post": {"queue": "publish"},
        "dispatch_due_posts": {"queue": "default"},
        # Token maintenance
        "refresh_expiring_tokens": {"queue": "default"},
        # Analytics
        "fetch_post_metrics": {"queue": "low"},
        "fetch_recent_post_metrics": {"queue": "low"},
        "fetch_account_analytics": {"queue": "low"},
        "fetch_all_account_analytics": {"queue": "low"},
        "prune_metrics": {"queue": "low"},
    },
    # Beat scheduler (for periodic tasks)
    beat_schedule={
        # Claim scheduled posts whose due time has passed
        "dispatch-due-posts": {
            "task": "dispatch_due_posts",
            "schedule": settings.scheduler_sweep_seconds,
            "options": {"queue": "default"},
        },
        # Refresh tokens expiring within the lookahead window - hourly
        "refresh-expiring-tokens-hourly": {
            "task": "refresh_expiring_tokens",
            "schedule": 3600.0,
            "options": {"queue": "default"},
        },
        # Metrics for recently published posts
        "fetch-recent-post-metrics": {
            "task": "fetch_recent_post_metrics",
            "schedule": settings.metrics_fetch_interval_seconds,
            "options": {"queue": "low"},
        },
        # Account insights for the previous day
        "fetch-account-analytics-daily": {
            "task": "fetch_all_account_analytics",
            "schedule": settings.account_metrics_interval_seconds,
            "options": {"queue": "low"},
        },
        # Metrics retention - daily
        "prune-metrics-daily": {
            "task": "prune_metrics",
            "schedule": 86400.0,
            "options": {"queue": "low"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(
    ["social_publisher.jobs"],
    related_name=None,
)


@worker_process_shutdown.connect
def _close_event_loop(**kwargs: Any) -> None:
    """Release the adapter event loop when a worker process exits."""
    close_worker_loop()
