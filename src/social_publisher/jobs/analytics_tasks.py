"""Celery tasks for metrics ingestion and retention."""

from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from social_publisher.adapters.platforms import PlatformAdapter, get_adapter
from social_publisher.config import get_settings
from social_publisher.db.models import AccountModel, PostModel
from social_publisher.db.session import get_session_context
from social_publisher.domain.enums import AccountStatus, PostStatus
from social_publisher.domain.errors import ReconnectRequiredError
from social_publisher.logging import get_logger
from social_publisher.services import accounts, analytics
from social_publisher.utils import run_async
from social_publisher.worker import celery_app

logger = get_logger(__name__)


def collect_post_metrics(
    session: Session,
    post_id: UUID,
    adapter: PlatformAdapter | None = None,
) -> dict[str, Any]:
    """Fetch a published post's counters from its platform and store today's row.

    Raises:
        httpx.HTTPError: On transport or API failures, so the task can retry.
    """
    post = session.get(PostModel, post_id)
    if post is None or post.status != PostStatus.PUBLISHED or not post.remote_post_id:
        return {"post_id": str(post_id), "status": "skipped", "reason": "not_published"}

    adapter = adapter or get_adapter(post.account.platform)
    try:
        credentials = accounts.resolve_credentials(session, post.account_id, adapter)
    except ReconnectRequiredError as e:
        logger.warning("metrics_fetch_skipped", post_id=str(post_id), reason=str(e))
        return {"post_id": str(post_id), "status": "skipped", "reason": "reconnect_required"}

    snapshot = run_async(adapter.fetch_post_metrics(post.remote_post_id, credentials))
    row = analytics.record_post_snapshot(session, post, snapshot)

    logger.info(
        "post_metrics_ingested",
        post_id=str(post_id),
        platform=post.account.platform,
        views=row.views,
        likes=row.likes,
    )
    return {"post_id": str(post_id), "status": "ingested", "views": row.views}


def collect_account_metrics(
    session: Session,
    account_id: UUID,
    start: date,
    end: date,
    adapter: PlatformAdapter | None = None,
) -> dict[str, Any]:
    """Fetch an account's insights for a period and store them as its account row.

    Raises:
        httpx.HTTPError: On transport or API failures, so the task can retry.
    """
    account = session.get(AccountModel, account_id)
    if account is None or account.deleted_at is not None:
        return {"account_id": str(account_id), "status": "skipped", "reason": "disconnected"}

    adapter = adapter or get_adapter(account.platform)
    try:
        credentials = accounts.resolve_credentials(session, account.id, adapter)
    except ReconnectRequiredError as e:
        logger.warning("account_metrics_skipped", account_id=str(account_id), reason=str(e))
        return {"account_id": str(account_id), "status": "skipped", "reason": "reconnect_required"}

    snapshot = run_async(adapter.fetch_account_metrics(credentials, start, end))
    row = analytics.record_account_snapshot(session, account, snapshot, start, end)

    logger.info(
        "account_metrics_ingested",
        account_id=str(account_id),
        platform=account.platform,
        period_start=start.isoformat(),
        period_end=end.isoformat(),
        impressions=row.impressions,
        followers=snapshot.extra.get("followers"),
    )
    return {"account_id": str(account_id), "status": "ingested", "impressions": row.impressions}


def live_account_ids(session: Session) -> list[UUID]:
    """Connected accounts whose credentials are usable."""
    return list(
        session.execute(
            select(AccountModel.id).where(
                AccountModel.deleted_at.is_(None),
                AccountModel.status == AccountStatus.ACTIVE,
            )
        ).scalars().all()
    )


def recent_published_post_ids(session: Session, lookback_days: int) -> list[UUID]:
    """Published posts of live accounts within the lookback window."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=lookback_days)
    return list(
        session.execute(
            select(PostModel.id)
            .join(AccountModel, AccountModel.id == PostModel.account_id)
            .where(
                PostModel.status == PostStatus.PUBLISHED,
                PostModel.remote_post_id.is_not(None),
                PostModel.published_at >= cutoff,
                AccountModel.deleted_at.is_(None),
            )
        ).scalars().all()
    )


@celery_app.task(
    bind=True,
    name="fetch_post_metrics",
    max_retries=3,
    default_retry_delay=120,
    autoretry_for=(httpx.HTTPError,),
)
def fetch_post_metrics_task(self: Any, post_id: str) -> dict[str, Any]:
    """Ingest the current metrics of one published post.

    Args:
        post_id: UUID of the post.

    Returns:
        Result dict with the ingestion status.
    """
    with get_session_context() as session:
        return collect_post_metrics(session, UUID(post_id))


@celery_app.task(bind=True, name="fetch_recent_post_metrics")
def fetch_recent_post_metrics_task(self: Any) -> dict[str, Any]:
    """Fan out metric fetches for recently published posts."""
    lookback = get_settings().metrics_lookback_days
    with get_session_context() as session:
        post_ids = recent_published_post_ids(session, lookback)

    for post_id in post_ids:
        fetch_post_metrics_task.delay(str(post_id))

    logger.info("recent_post_metrics_enqueued", task_id=self.request.id, count=len(post_ids))
    return {"success": True, "enqueued": len(post_ids)}


@celery_app.task(
    bind=True,
    name="fetch_account_analytics",
    max_retries=3,
    default_retry_delay=180,
    autoretry_for=(httpx.HTTPError,),
)
def fetch_account_analytics_task(
    self: Any,
    account_id: str,
    start: str | None = None,
    end: str | None = None,
) -> dict[str, Any]:
    """Ingest account-level insights for a period.

    Args:
        account_id: UUID of the account.
        start: First day (ISO date) of the period; defaults to ``end``.
        end: Last day (ISO date) of the period; defaults to yesterday (UTC).

    Returns:
        Result dict with the ingestion status.
    """
    end_date = date.fromisoformat(end) if end else datetime.now(timezone.utc).date() - timedelta(days=1)
    start_date = date.fromisoformat(start) if start else end_date
    with get_session_context() as session:
        return collect_account_metrics(session, UUID(account_id), start_date, end_date)


@celery_app.task(bind=True, name="fetch_all_account_analytics")
def fetch_all_account_analytics_task(self: Any) -> dict[str, Any]:
    """Fan out yesterday's account insights fetch for every live account."""
    with get_session_context() as session:
        account_ids = live_account_ids(session)

    for account_id in account_ids:
        fetch_account_analytics_task.delay(str(account_id))

    logger.info("account_metrics_enqueued", task_id=self.request.id, count=len(account_ids))
    return {"success": True, "enqueued": len(account_ids)}


@celery_app.task(bind=True, name="prune_metrics")
def prune_metrics_task(self: Any) -> dict[str, Any]:
    """Delete metric rows beyond the retention window."""
    with get_session_context() as session:
        deleted = analytics.prune(session, get_settings().metrics_retention_days)
    return {"success": True, "deleted": deleted}
