"""Tests for metric ingestion, rollups and metric tasks."""

from datetime import date, datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy import func, select

from social_publisher.adapters.platforms import MetricsSnapshot
from social_publisher.db.models import MetricModel
from social_publisher.domain.enums import MetricType, Platform, PostStatus
from social_publisher.jobs import analytics_tasks
from social_publisher.services import analytics, token_store
from social_publisher.services.analytics import MetricInput

TODAY = date(2026, 10, 19)


def published_post(make_account: Any, make_post: Any, account: Any = None, **fields: Any) -> Any:
    return make_post(
        account or make_account(),
        status=PostStatus.PUBLISHED,
        remote_post_id=fields.pop("remote_post_id", "remote-1"),
        published_at=fields.pop("published_at", datetime.now(timezone.utc) - timedelta(days=1)),
        **fields,
    )


class TestEngagementRate:
    """Tests for the engagement rate formula."""

    def test_rate_is_percentage_of_base(self) -> None:
        """Test interactions over the base count, as a percentage."""
        assert analytics.engagement_rate(likes=30, comments=15, shares=5, base=1000) == 5.0
        assert analytics.engagement_rate(likes=1, comments=0, shares=0, base=3) == 33.33

    def test_zero_base(self) -> None:
        """Test that an empty base yields a zero rate."""
        assert analytics.engagement_rate(likes=10, comments=1, shares=0, base=0) == 0.0

    def test_post_rows_use_views_and_account_rows_use_impressions(
        self, db_session: Any, make_account: Any, make_post: Any
    ) -> None:
        """Test that the rate base depends on the row type."""
        account = make_account()
        post = published_post(make_account, make_post, account)
        counters = {"views": 200, "impressions": 1000, "reach": 50, "likes": 8, "comments": 2}

        post_row = analytics.ingest(
            db_session,
            MetricInput(
                account_id=account.id,
                post_id=post.id,
                metric_type=MetricType.POST,
                metric_date=TODAY,
                **counters,
            ),
        )
        account_row = analytics.ingest(
            db_session, MetricInput(account_id=account.id, metric_date=TODAY, **counters)
        )

        assert post_row.engagement_rate == 5.0
        assert account_row.engagement_rate == 1.0


class TestIngest:
    """Tests for metric upserts."""

    def test_same_grain_updates_in_place(self, db_session: Any, make_account: Any) -> None:
        """Test that a second ingest of the same day replaces the values."""
        account = make_account()

        analytics.ingest(db_session, MetricInput(account_id=account.id, metric_date=TODAY, views=10))
        row = analytics.ingest(
            db_session,
            MetricInput(account_id=account.id, metric_date=TODAY, views=25, likes=5, impressions=100),
        )

        assert db_session.execute(select(func.count(MetricModel.id))).scalar_one() == 1
        assert row.views == 25
        assert row.engagement_rate == 5.0

    def test_distinct_grains_are_separate_rows(
        self, db_session: Any, make_account: Any, make_post: Any
    ) -> None:
        """Test that account and post rows of the same day do not collide."""
        account = make_account()
        post = published_post(make_account, make_post, account)

        analytics.ingest(db_session, MetricInput(account_id=account.id, metric_date=TODAY, views=1))
        analytics.ingest(
            db_session,
            MetricInput(
                account_id=account.id,
                post_id=post.id,
                metric_type=MetricType.POST,
                metric_date=TODAY,
                views=2,
            ),
        )

        assert db_session.execute(select(func.count(MetricModel.id))).scalar_one() == 2

    def test_post_metric_requires_post(self, db_session: Any, make_account: Any) -> None:
        """Test that post-level rows must reference a post."""
        account = make_account()

        with pytest.raises(ValueError, match="post_id"):
            analytics.ingest(
                db_session,
                MetricInput(account_id=account.id, metric_type=MetricType.POST, metric_date=TODAY),
            )

    def test_explicit_engagement_rate_kept(self, db_session: Any, make_account: Any) -> None:
        """Test that a platform-reported engagement rate is not recomputed."""
        account = make_account()

        row = analytics.ingest(
            db_session,
            MetricInput(account_id=account.id, metric_date=TODAY, likes=5, reach=100, engagement_rate=7.5),
        )

        assert row.engagement_rate == 7.5

    def test_prune_drops_old_rows(self, db_session: Any, make_account: Any) -> None:
        """Test the retention window."""
        account = make_account()
        today = datetime.now(timezone.utc).date()
        analytics.ingest(db_session, MetricInput(account_id=account.id, metric_date=today))
        analytics.ingest(
            db_session, MetricInput(account_id=account.id, metric_date=today - timedelta(days=100))
        )

        assert analytics.prune(db_session, retention_days=90) == 1
        assert db_session.execute(select(func.count(MetricModel.id))).scalar_one() == 1


class TestRollups:
    """Tests for aggregated analytics."""

    def test_empty_range_is_zero(self, db_session: Any, make_account: Any) -> None:
        """Test that a range without rows gives zero totals and empty breakdowns."""
        make_account()

        result = analytics.owner_rollup(db_session, "owner-1", TODAY - timedelta(days=7), TODAY)

        assert result["totals"] == {
            "views": 0,
            "likes": 0,
            "comments": 0,
            "shares": 0,
            "impressions": 0,
            "reach": 0,
            "engagement_rate": 0.0,
        }
        assert result["per_platform"] == {}
        assert result["per_day"] == []

    def test_owner_without_accounts(self, db_session: Any) -> None:
        """Test a rollup for an owner with nothing connected."""
        result = analytics.owner_rollup(db_session, "nobody", TODAY - timedelta(days=7), TODAY)

        assert result["totals"]["views"] == 0
        assert result["per_platform"] == {}

    def test_totals_per_platform_and_day(self, db_session: Any, make_account: Any) -> None:
        """Test sums per platform and per day, and averaged engagement."""
        youtube = make_account()
        tiktok = make_account(platform=Platform.TIKTOK)
        yesterday = TODAY - timedelta(days=1)
        analytics.ingest(
            db_session,
            MetricInput(account_id=youtube.id, metric_date=yesterday, views=100, likes=10, impressions=100),
        )
        analytics.ingest(
            db_session,
            MetricInput(account_id=youtube.id, metric_date=TODAY, views=50, likes=2, impressions=50),
        )
        analytics.ingest(
            db_session,
            MetricInput(account_id=tiktok.id, metric_date=TODAY, views=200, likes=20, impressions=200),
        )
        # Outside the range
        analytics.ingest(
            db_session,
            MetricInput(account_id=tiktok.id, metric_date=TODAY - timedelta(days=40), views=999),
        )

        result = analytics.owner_rollup(db_session, "owner-1", TODAY - timedelta(days=7), TODAY)

        assert result["totals"]["views"] == 350
        assert result["totals"]["likes"] == 32
        assert result["totals"]["engagement_rate"] == round((10.0 + 4.0 + 10.0) / 3, 2)
        assert result["per_platform"]["youtube"]["views"] == 150
        assert result["per_platform"]["tiktok"]["views"] == 200
        assert [d["date"] for d in result["per_day"]] == [yesterday.isoformat(), TODAY.isoformat()]
        assert result["per_day"][1]["views"] == 250

    def test_disconnected_accounts_excluded(self, db_session: Any, make_account: Any) -> None:
        """Test that the owner rollup covers live accounts only."""
        from social_publisher.services import accounts

        account = make_account()
        analytics.ingest(db_session, MetricInput(account_id=account.id, metric_date=TODAY, views=10))
        accounts.disconnect(db_session, "owner-1", account.id)

        result = analytics.owner_rollup(db_session, "owner-1", TODAY, TODAY)

        assert result["totals"]["views"] == 0

    def test_account_rollup_includes_account(self, db_session: Any, make_account: Any) -> None:
        """Test the single-account rollup."""
        account = make_account(display_name="Main channel")
        analytics.ingest(db_session, MetricInput(account_id=account.id, metric_date=TODAY, views=10))

        result = analytics.account_rollup(db_session, "owner-1", account.id, TODAY, TODAY)

        assert result["totals"]["views"] == 10
        assert result["account"]["label"] == "Main channel"
        assert result["account"]["platform"] == "youtube"

    def test_post_comparison_against_account_average(
        self, db_session: Any, make_account: Any, make_post: Any
    ) -> None:
        """Test latest counters, history and the comparison with sibling posts."""
        account = make_account()
        post = published_post(make_account, make_post, account)
        sibling = published_post(make_account, make_post, account, remote_post_id="remote-2")
        analytics.record_post_snapshot(db_session, post, MetricsSnapshot(views=100), on_date=TODAY - timedelta(days=1))
        analytics.record_post_snapshot(db_session, post, MetricsSnapshot(views=300, likes=30), on_date=TODAY)
        analytics.record_post_snapshot(db_session, sibling, MetricsSnapshot(views=100, likes=10), on_date=TODAY)

        result = analytics.post_analytics(db_session, "owner-1", post.id)

        assert result["latest"]["views"] == 300
        assert [h["views"] for h in result["history"]] == [100, 300]
        assert result["account_average"]["views"] == 200.0
        assert result["comparison"]["views"] == 50.0
        assert result["comparison"]["shares"] is None
        assert result["post"]["platform"] == "youtube"

    def test_post_without_metrics(self, db_session: Any, make_account: Any, make_post: Any) -> None:
        """Test analytics of a post that has no rows yet."""
        post = published_post(make_account, make_post)

        result = analytics.post_analytics(db_session, "owner-1", post.id)

        assert result["latest"]["views"] == 0
        assert result["history"] == []
        assert all(value is None for value in result["comparison"].values())


class TestMetricTasks:
    """Tests for metric collection."""

    def test_collect_stores_snapshot(
        self, db_session: Any, make_account: Any, make_post: Any, fake_adapter: Any
    ) -> None:
        """Test that a published post's counters become today's row."""
        account = make_account()
        post = published_post(make_account, make_post, account)
        fake_adapter.metrics = MetricsSnapshot(views=40, likes=4, reach=400)

        result = analytics_tasks.collect_post_metrics(db_session, post.id, adapter=fake_adapter)

        assert result["status"] == "ingested"
        row = db_session.execute(select(MetricModel)).scalar_one()
        assert row.views == 40
        assert row.metric_type == MetricType.POST
        assert row.engagement_rate == 10.0
        db_session.refresh(account)
        assert account.last_synced_at is not None

    def test_unpublished_post_skipped(
        self, db_session: Any, make_account: Any, make_post: Any, fake_adapter: Any
    ) -> None:
        """Test that drafts have nothing to collect."""
        post = make_post(make_account())

        result = analytics_tasks.collect_post_metrics(db_session, post.id, adapter=fake_adapter)

        assert result["status"] == "skipped"

    def test_flagged_account_skipped(
        self, db_session: Any, make_account: Any, make_post: Any, fake_adapter: Any
    ) -> None:
        """Test that accounts needing reconnection are skipped, not failed."""
        account = make_account()
        post = published_post(make_account, make_post, account)
        token_store.mark_error(account, "revoked")
        db_session.commit()

        result = analytics_tasks.collect_post_metrics(db_session, post.id, adapter=fake_adapter)

        assert result == {"post_id": str(post.id), "status": "skipped", "reason": "reconnect_required"}

    def test_recent_posts_fan_out(
        self, make_account: Any, make_post: Any, enqueued: list
    ) -> None:
        """Test that only recently published posts get a metrics fetch."""
        account = make_account()
        recent = published_post(make_account, make_post, account)
        published_post(
            make_account,
            make_post,
            account,
            remote_post_id="old",
            published_at=datetime.now(timezone.utc) - timedelta(days=120),
        )
        make_post(account)

        result = analytics_tasks.fetch_recent_post_metrics_task.apply().get()

        assert result == {"success": True, "enqueued": 1}
        assert enqueued == [("fetch_post_metrics.delay", (str(recent.id),), {})]


class TestAccountMetricTasks:
    """Tests for account-level insights collection."""

    def test_collect_stores_period_row(self, db_session: Any, make_account: Any, fake_adapter: Any) -> None:
        """Test that account insights become an account row dated at the period end."""
        account = make_account()
        fake_adapter.account_metrics = MetricsSnapshot(
            views=500, likes=30, comments=10, shares=10, impressions=1000, reach=800, extra={"followers": 1200}
        )

        result = analytics_tasks.collect_account_metrics(
            db_session, account.id, date(2026, 10, 1), date(2026, 10, 7), adapter=fake_adapter
        )

        assert result == {"account_id": str(account.id), "status": "ingested", "impressions": 1000}
        row = db_session.execute(select(MetricModel)).scalar_one()
        assert row.post_id is None
        assert row.metric_type == MetricType.ACCOUNT
        assert row.metric_date == date(2026, 10, 7)
        assert row.engagement_rate == 5.0
        assert row.metadata_ == {"followers": 1200, "period_start": "2026-10-01", "period_end": "2026-10-07"}
        db_session.refresh(account)
        assert account.last_synced_at is not None

    def test_daily_rows_roll_up(self, db_session: Any, make_account: Any, fake_adapter: Any) -> None:
        """Test that daily account rows add up in the account-level rollup."""
        account = make_account()
        for day, impressions in ((date(2026, 10, 5), 300), (date(2026, 10, 6), 700)):
            fake_adapter.account_metrics = MetricsSnapshot(impressions=impressions, likes=7)
            analytics_tasks.collect_account_metrics(db_session, account.id, day, day, adapter=fake_adapter)

        result = analytics.rollup(
            db_session, [account.id], date(2026, 10, 1), date(2026, 10, 7), metric_type=MetricType.ACCOUNT
        )

        assert result["totals"]["impressions"] == 1000
        assert result["totals"]["likes"] == 14
        assert [d["date"] for d in result["per_day"]] == ["2026-10-05", "2026-10-06"]

    def test_disconnected_account_skipped(self, db_session: Any, make_account: Any, fake_adapter: Any) -> None:
        """Test that disconnected accounts are not queried."""
        account = make_account()
        account.deleted_at = datetime.now(timezone.utc)
        db_session.commit()

        result = analytics_tasks.collect_account_metrics(
            db_session, account.id, TODAY, TODAY, adapter=fake_adapter
        )

        assert result["status"] == "skipped"
        assert fake_adapter.account_periods == []

    def test_task_defaults_to_yesterday(
        self, make_account: Any, fake_adapter: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that the task collects the previous UTC day when no period is given."""
        account = make_account()
        monkeypatch.setattr(analytics_tasks, "get_adapter", lambda platform: fake_adapter)

        result = analytics_tasks.fetch_account_analytics_task.apply(args=[str(account.id)]).get()

        yesterday = datetime.now(timezone.utc).date() - timedelta(days=1)
        assert result["status"] == "ingested"
        assert fake_adapter.account_periods == [(yesterday, yesterday)]

    def test_live_accounts_fan_out(self, db_session: Any, make_account: Any, enqueued: list) -> None:
        """Test that only active, connected accounts get an insights fetch."""
        active = make_account()
        flagged = make_account(platform=Platform.TIKTOK)
        token_store.mark_error(flagged, "revoked")
        gone = make_account(platform=Platform.FACEBOOK)
        gone.deleted_at = datetime.now(timezone.utc)
        db_session.commit()

        result = analytics_tasks.fetch_all_account_analytics_task.apply().get()

        assert result == {"success": True, "enqueued": 1}
        assert enqueued == [("fetch_account_analytics.delay", (str(active.id),), {})]
