"""Tests for the command-line interface."""

from datetime import datetime, timedelta, timezone
from typing import Any

from typer.testing import CliRunner

from social_publisher.cli import app
from social_publisher.domain.enums import PostStatus

runner = CliRunner()


def test_version() -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "Social Publisher v" in result.output


def test_accounts_list(make_account: Any) -> None:
    """Test the account table for an owner."""
    make_account(display_name="Travel")

    result = runner.invoke(app, ["accounts", "list", "--owner", "owner-1"])

    assert result.exit_code == 0
    assert "youtube" in result.output
    assert "Travel" in result.output


def test_accounts_list_unknown_platform() -> None:
    result = runner.invoke(app, ["accounts", "list", "--owner", "owner-1", "--platform", "vine"])

    assert result.exit_code == 1
    assert "Unsupported platform" in result.output


def test_posts_list_rejects_unknown_status() -> None:
    result = runner.invoke(app, ["posts", "list", "--owner", "owner-1", "--status", "lost"])

    assert result.exit_code == 1
    assert "Unknown status" in result.output


def test_posts_list_filters(make_account: Any, make_post: Any) -> None:
    """Test that only posts in the requested state are shown."""
    account = make_account()
    make_post(account, title="Sunrise", status=PostStatus.FAILED, failure_reason="quota")
    make_post(account, title="Sunset")

    result = runner.invoke(app, ["posts", "list", "--owner", "owner-1", "--status", "failed"])

    assert result.exit_code == 0
    assert "Sunrise" in result.output
    assert "Sunset" not in result.output


def test_scheduler_sweep(make_account: Any, make_post: Any, db_session: Any, enqueued: list) -> None:
    """Test that the sweep dispatches a due scheduled post."""
    from social_publisher.db.models import ScheduledTaskModel
    from social_publisher.domain.enums import ScheduledTaskStatus

    due = datetime.now(timezone.utc) - timedelta(minutes=1)
    post = make_post(make_account(), status=PostStatus.SCHEDULED, scheduled_at=due)
    db_session.add(ScheduledTaskModel(post_id=post.id, due_at=due, status=ScheduledTaskStatus.PENDING))
    db_session.commit()

    result = runner.invoke(app, ["scheduler", "sweep"])

    assert result.exit_code == 0
    assert "Dispatched 1 due post(s)" in result.output
    assert [call[0] for call in enqueued] == ["run_scheduled_post.delay"]


def test_metrics_prune() -> None:
    result = runner.invoke(app, ["metrics", "prune", "--days", "30"])

    assert result.exit_code == 0
    assert "Deleted 0 metric row(s)" in result.output


def test_metrics_accounts_queues_live_accounts(make_account: Any, enqueued: list) -> None:
    """Test that account insights are queued once per live account."""
    account = make_account()

    result = runner.invoke(app, ["metrics", "accounts", "--start", "2026-10-01", "--end", "2026-10-07"])

    assert result.exit_code == 0
    assert "Queued insights for 1 account(s)" in result.output
    assert enqueued == [
        ("fetch_account_analytics.delay", (str(account.id), "2026-10-01", "2026-10-07"), {}),
    ]


def test_metrics_accounts_rejects_inverted_range() -> None:
    result = runner.invoke(app, ["metrics", "accounts", "--start", "2026-10-07", "--end", "2026-10-01"])

    assert result.exit_code == 1
    assert "--start must not be after --end" in result.output
