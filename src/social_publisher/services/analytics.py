"""Metric ingestion and rollups.

Metric rows are daily facts at the grain ``(account, post, date, type)``.
Post-level counters reported by the platforms are cumulative, so the row for a
given day holds the latest snapshot taken that day.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, func, select
from sqlalchemy.orm import Session

from social_publisher.adapters.platforms import MetricsSnapshot
from social_publisher.db.models import AccountModel, MetricModel, PostModel
from social_publisher.domain.enums import MetricType
from social_publisher.logging import get_logger
from social_publisher.services import accounts, posts

logger = get_logger(__name__)

MEASURES = ("views", "likes", "comments", "shares", "impressions", "reach")


@dataclass
class MetricInput:
    """One metric fact to upsert."""

    account_id: UUID
    metric_date: date
    metric_type: MetricType = MetricType.ACCOUNT
    post_id: UUID | None = None
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    impressions: int = 0
    reach: int = 0
    engagement_rate: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def engagement_rate(likes: int, comments: int, shares: int, base: int) -> float:
    """Interactions as a percentage of ``base``, with two decimals.

    Post rows use views as the base and account rows use impressions.
    """
    if base <= 0:
        return 0.0
    return round((likes + comments + shares) / base * 100, 2)


def _engagement_base(metric: MetricInput) -> int:
    return metric.views if metric.metric_type == MetricType.POST else metric.impressions


def ingest(session: Session, metric: MetricInput) -> MetricModel:
    """Upsert one metric row on its natural key.

    Returns:
        The inserted or updated row.
    """
    if metric.metric_type == MetricType.POST and metric.post_id is None:
        raise ValueError("Post metrics require a post_id")

    post_filter = (
        MetricModel.post_id.is_(None) if metric.post_id is None else MetricModel.post_id == metric.post_id
    )
    row = session.execute(
        select(MetricModel).where(
            MetricModel.account_id == metric.account_id,
            post_filter,
            MetricModel.metric_date == metric.metric_date,
            MetricModel.metric_type == metric.metric_type,
        )
    ).scalar_one_or_none()

    if row is None:
        row = MetricModel(
            account_id=metric.account_id,
            post_id=metric.post_id,
            metric_date=metric.metric_date,
            metric_type=metric.metric_type,
        )
        session.add(row)

    for name in MEASURES:
        setattr(row, name, getattr(metric, name))
    row.engagement_rate = (
        metric.engagement_rate
        if metric.engagement_rate is not None
        else engagement_rate(metric.likes, metric.comments, metric.shares, _engagement_base(metric))
    )
    if metric.metadata:
        row.metadata_ = {**(row.metadata_ or {}), **metric.metadata}

    session.commit()
    return row


def record_post_snapshot(
    session: Session,
    post: PostModel,
    snapshot: MetricsSnapshot,
    on_date: date | None = None,
) -> MetricModel:
    """Store a platform snapshot as the post's metric row for the day."""
    row = ingest(
        session,
        MetricInput(
            account_id=post.account_id,
            post_id=post.id,
            metric_type=MetricType.POST,
            metric_date=on_date or datetime.now(timezone.utc).date(),
            views=snapshot.views,
            likes=snapshot.likes,
            comments=snapshot.comments,
            shares=snapshot.shares,
            impressions=snapshot.impressions,
            reach=snapshot.reach,
            metadata=snapshot.extra,
        ),
    )
    post.account.last_synced_at = datetime.now(timezone.utc)
    session.commit()
    return row


def record_account_snapshot(
    session: Session,
    account: AccountModel,
    snapshot: MetricsSnapshot,
    start: date,
    end: date,
) -> MetricModel:
    """Store account insights for a period as the account row dated ``end``.

    The period bounds and platform extras such as the follower count are kept
    in the row metadata.
    """
    row = ingest(
        session,
        MetricInput(
            account_id=account.id,
            metric_type=MetricType.ACCOUNT,
            metric_date=end,
            views=snapshot.views,
            likes=snapshot.likes,
            comments=snapshot.comments,
            shares=snapshot.shares,
            impressions=snapshot.impressions,
            reach=snapshot.reach,
            metadata={
                **snapshot.extra,
                "period_start": start.isoformat(),
                "period_end": end.isoformat(),
            },
        ),
    )
    account.last_synced_at = datetime.now(timezone.utc)
    session.commit()
    return row


def prune(session: Session, retention_days: int) -> int:
    """Delete metric rows older than the retention window."""
    cutoff = datetime.now(timezone.utc).date() - timedelta(days=retention_days)
    deleted = session.execute(delete(MetricModel).where(MetricModel.metric_date < cutoff)).rowcount
    session.commit()
    logger.info("metrics_pruned", deleted=deleted, cutoff=cutoff.isoformat())
    return deleted


# =============================================================================
# Rollups
# =============================================================================


def _aggregates() -> list[Any]:
    columns = [func.coalesce(func.sum(getattr(MetricModel, name)), 0).label(name) for name in MEASURES]
    columns.append(func.coalesce(func.avg(MetricModel.engagement_rate), 0.0).label("engagement_rate"))
    return columns


def _as_totals(row: Any) -> dict[str, Any]:
    totals: dict[str, Any] = {name: int(getattr(row, name) or 0) for name in MEASURES}
    totals["engagement_rate"] = round(float(row.engagement_rate or 0.0), 2)
    return totals


def empty_totals() -> dict[str, Any]:
    totals: dict[str, Any] = dict.fromkeys(MEASURES, 0)
    totals["engagement_rate"] = 0.0
    return totals


def rollup(
    session: Session,
    account_ids: list[UUID],
    start: date,
    end: date,
    metric_type: MetricType | None = None,
) -> dict[str, Any]:
    """Aggregate metrics for a set of accounts over an inclusive date range.

    Counts are summed and the engagement rate is averaged. A range with no rows
    produces zero totals and empty breakdowns.

    Args:
        session: Database session.
        account_ids: Accounts to include.
        start: First day of the range.
        end: Last day of the range.
        metric_type: Restrict to account-level or post-level rows.

    Returns:
        Dict with ``totals``, ``per_platform`` and ``per_day``.
    """
    result: dict[str, Any] = {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "totals": empty_totals(),
        "per_platform": {},
        "per_day": [],
    }
    if not account_ids or start > end:
        return result

    criteria = [
        MetricModel.account_id.in_(account_ids),
        MetricModel.metric_date >= start,
        MetricModel.metric_date <= end,
    ]
    if metric_type is not None:
        criteria.append(MetricModel.metric_type == metric_type)

    totals = session.execute(select(*_aggregates()).where(*criteria)).one()
    result["totals"] = _as_totals(totals)

    by_platform = session.execute(
        select(AccountModel.platform, *_aggregates())
        .select_from(MetricModel)
        .join(AccountModel, AccountModel.id == MetricModel.account_id)
        .where(*criteria)
        .group_by(AccountModel.platform)
        .order_by(AccountModel.platform)
    ).all()
    result["per_platform"] = {row.platform: _as_totals(row) for row in by_platform}

    by_day = session.execute(
        select(MetricModel.metric_date, *_aggregates())
        .where(*criteria)
        .group_by(MetricModel.metric_date)
        .order_by(MetricModel.metric_date)
    ).all()
    result["per_day"] = [{"date": row.metric_date.isoformat(), **_as_totals(row)} for row in by_day]

    return result


def owner_rollup(session: Session, owner_id: str, start: date, end: date) -> dict[str, Any]:
    """Rollup over all of an owner's live accounts."""
    account_ids = [a.id for a in accounts.list_accounts(session, owner_id)]
    return rollup(session, account_ids, start, end)


def account_rollup(
    session: Session,
    owner_id: str,
    account_id: UUID,
    start: date,
    end: date,
) -> dict[str, Any]:
    """Rollup for one of the owner's accounts, with a little account context."""
    account = accounts.get_account(session, owner_id, account_id)
    result = rollup(session, [account.id], start, end)
    result["account"] = {
        "id": str(account.id),
        "platform": account.platform,
        "label": account.label,
        "last_synced_at": account.last_synced_at.isoformat() if account.last_synced_at else None,
    }
    return result


def post_analytics(session: Session, owner_id: str, post_id: UUID) -> dict[str, Any]:
    """Latest counters of a post, its history and how it compares to the account's posts.

    The comparison is the percentage difference against the average of the
    latest row of every post of the same account.
    """
    post = posts.get_post(session, owner_id, post_id)

    history = session.execute(
        select(MetricModel)
        .where(MetricModel.post_id == post.id, MetricModel.metric_type == MetricType.POST)
        .order_by(MetricModel.metric_date)
    ).scalars().all()
    latest = _as_totals(history[-1]) if history else empty_totals()

    latest_per_post = (
        select(MetricModel.post_id, func.max(MetricModel.metric_date).label("latest_date"))
        .where(
            MetricModel.account_id == post.account_id,
            MetricModel.metric_type == MetricType.POST,
        )
        .group_by(MetricModel.post_id)
        .subquery()
    )
    average_row = session.execute(
        select(
            *[func.avg(getattr(MetricModel, name)).label(name) for name in MEASURES],
            func.avg(MetricModel.engagement_rate).label("engagement_rate"),
        )
        .select_from(MetricModel)
        .join(
            latest_per_post,
            and_(
                MetricModel.post_id == latest_per_post.c.post_id,
                MetricModel.metric_date == latest_per_post.c.latest_date,
            ),
        )
        .where(MetricModel.metric_type == MetricType.POST)
    ).one()

    average = {name: round(float(getattr(average_row, name) or 0.0), 2) for name in MEASURES}
    average["engagement_rate"] = round(float(average_row.engagement_rate or 0.0), 2)

    comparison = {
        name: (round((latest[name] - average[name]) / average[name] * 100, 1) if average[name] else None)
        for name in average
    }

    return {
        "post": {
            "id": str(post.id),
            "title": post.title,
            "status": post.status,
            "platform": post.account.platform,
            "published_at": post.published_at.isoformat() if post.published_at else None,
            "remote_url": post.remote_url,
        },
        "latest": latest,
        "history": [{"date": row.metric_date.isoformat(), **_as_totals(row)} for row in history],
        "account_average": average,
        "comparison": comparison,
    }
