"""Command-line interface using Typer."""

import subprocess
import sys
from typing import Optional

import httpx
import typer
from rich.console import Console
from rich.table import Table

from social_publisher import __version__
from social_publisher.config import settings
from social_publisher.logging import setup_logging

# Setup logging
setup_logging()

app = typer.Typer(
    name="social-publisher",
    help="Social Publisher - connect accounts, schedule and publish video posts",
    add_completion=False,
)

# Subcommand groups
accounts_app = typer.Typer(help="Connected account commands")
posts_app = typer.Typer(help="Post commands")
scheduler_app = typer.Typer(help="Scheduled publishing commands")
tokens_app = typer.Typer(help="OAuth token maintenance commands")
metrics_app = typer.Typer(help="Analytics commands")
app.add_typer(accounts_app, name="accounts")
app.add_typer(posts_app, name="posts")
app.add_typer(scheduler_app, name="scheduler")
app.add_typer(tokens_app, name="tokens")
app.add_typer(metrics_app, name="metrics")

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Social Publisher v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Social Publisher - publish video posts to YouTube, Facebook, Instagram, TikTok and Threads."""
    pass


@app.command()
def version() -> None:
    """Show the version."""
    console.print(f"Social Publisher v{__version__}")


@app.command()
def health() -> None:
    """Check the health of all services."""
    url = f"http://{settings.api_host}:{settings.api_port}/health/ready"

    try:
        response = httpx.get(url, timeout=10)
        data = response.json()
    except httpx.RequestError as e:
        console.print(f"[bold red]Cannot connect to API: {e}[/bold red]")
        console.print("[dim]Is the API server running?[/dim]")
        raise typer.Exit(code=1)

    table = Table(title="Service Health")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_row("Database", "✓" if data.get("database") else "✗")
    table.add_row("Broker", "✓" if data.get("broker") else "✗")
    table.add_row("Media storage", "✓" if data.get("media_storage") else "✗")
    console.print(table)

    if data.get("ready"):
        console.print("[bold green]All services healthy![/bold green]")
    else:
        console.print("[bold yellow]Some services unhealthy[/bold yellow]")
        raise typer.Exit(code=1)


@app.command()
def worker(
    queues: str = typer.Option("publish,default,low", "--queues", "-Q", help="Queues to consume"),
) -> None:
    """Start a Celery worker (for development)."""
    console.print("[bold blue]Starting Celery worker...[/bold blue]")
    subprocess.run(
        [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "social_publisher.worker",
            "worker",
            "--loglevel=info",
            "-Q",
            queues,
        ],
        check=True,
    )


@app.command()
def beat() -> None:
    """Start Celery beat (due-post sweep, token refresh, metrics)."""
    console.print("[bold blue]Starting Celery beat...[/bold blue]")
    subprocess.run(
        [sys.executable, "-m", "celery", "-A", "social_publisher.worker", "beat", "--loglevel=info"],
        check=True,
    )


# =============================================================================
# ACCOUNTS COMMANDS
# =============================================================================


@accounts_app.command("list")
def accounts_list(
    owner: str = typer.Option(..., "--owner", "-o", help="Owner ID"),
    platform: Optional[str] = typer.Option(None, "--platform", "-p", help="Filter by platform"),
) -> None:
    """List an owner's connected accounts."""
    from social_publisher.db.session import get_session_context
    from social_publisher.domain.errors import UnsupportedPlatformError
    from social_publisher.services import accounts

    with get_session_context() as session:
        try:
            rows = accounts.list_accounts(session, owner, platform)
        except UnsupportedPlatformError as e:
            console.print(f"[bold red]{e}[/bold red]")
            raise typer.Exit(code=1)

        if not rows:
            console.print("[dim]No connected accounts[/dim]")
            return

        table = Table(title=f"Accounts of {owner}")
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Platform", style="cyan")
        table.add_column("Label")
        table.add_column("Default")
        table.add_column("Status", style="green")
        table.add_column("Token expires")

        for account in rows:
            table.add_row(
                str(account.id)[:8] + "...",
                account.platform,
                account.label[:30],
                "★" if account.is_default else "",
                account.status if not account.status_reason else f"{account.status}: {account.status_reason[:30]}",
                account.token_expires_at.strftime("%Y-%m-%d %H:%M") if account.token_expires_at else "never",
            )

        console.print(table)


# =============================================================================
# POSTS COMMANDS
# =============================================================================


@posts_app.command("list")
def posts_list(
    owner: str = typer.Option(..., "--owner", "-o", help="Owner ID"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of posts to show"),
) -> None:
    """List an owner's recent posts."""
    from social_publisher.db.session import get_session_context
    from social_publisher.domain.enums import PostStatus
    from social_publisher.services import posts

    if status and status not in {s.value for s in PostStatus}:
        console.print(f"[bold red]Unknown status: {status}[/bold red]")
        raise typer.Exit(code=1)

    with get_session_context() as session:
        rows = posts.list_posts(session, owner, status=status, limit=limit)

        if not rows:
            console.print("[dim]No posts found[/dim]")
            return

        table = Table(title="Posts")
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Title", style="cyan")
        table.add_column("Platform")
        table.add_column("Status", style="green")
        table.add_column("Scheduled")
        table.add_column("Reason")

        for post in rows:
            table.add_row(
                str(post.id)[:8] + "...",
                post.title[:30],
                post.account.platform,
                post.status,
                post.scheduled_at.strftime("%Y-%m-%d %H:%M") if post.scheduled_at else "-",
                (post.failure_reason or "")[:40],
            )

        console.print(table)


# =============================================================================
# MAINTENANCE COMMANDS
# =============================================================================


@scheduler_app.command("sweep")
def scheduler_sweep() -> None:
    """Dispatch every scheduled post whose due time has passed."""
    from social_publisher.jobs.publish_tasks import dispatch_due_posts_task

    result = dispatch_due_posts_task.apply().get()
    console.print(f"[green]Dispatched {result['dispatched']} due post(s)[/green]")
    if result["stale_failed"]:
        console.print(f"[yellow]Failed {result['stale_failed']} stuck post(s)[/yellow]")


@tokens_app.command("refresh")
def tokens_refresh(
    lookahead: int = typer.Option(
        settings.token_refresh_lookahead_hours,
        "--lookahead",
        "-l",
        help="Refresh tokens expiring within this many hours",
    ),
) -> None:
    """Refresh OAuth tokens that are about to expire."""
    from social_publisher.db.session import get_session_context
    from social_publisher.jobs.token_tasks import refresh_expiring

    with get_session_context() as session:
        counts = refresh_expiring(session, lookahead)

    table = Table(title="Token Refresh")
    table.add_column("Outcome", style="cyan")
    table.add_column("Accounts")
    for outcome, count in counts.items():
        table.add_row(outcome, str(count))
    console.print(table)

    if counts["failed"]:
        raise typer.Exit(code=1)


@metrics_app.command("accounts")
def metrics_accounts(
    start: Optional[str] = typer.Option(None, "--start", help="First day (YYYY-MM-DD), defaults to --end"),
    end: Optional[str] = typer.Option(None, "--end", help="Last day (YYYY-MM-DD), defaults to yesterday"),
) -> None:
    """Queue account insights collection for every live account."""
    from datetime import date

    from social_publisher.db.session import get_session_context
    from social_publisher.jobs.analytics_tasks import fetch_account_analytics_task, live_account_ids

    try:
        bounds = [date.fromisoformat(value) for value in (start, end) if value]
    except ValueError as e:
        console.print(f"[bold red]Invalid date: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    if start and end and bounds[0] > bounds[1]:
        console.print("[bold red]--start must not be after --end[/bold red]")
        raise typer.Exit(code=1)

    with get_session_context() as session:
        account_ids = live_account_ids(session)

    for account_id in account_ids:
        fetch_account_analytics_task.delay(str(account_id), start, end)
    console.print(f"[green]Queued insights for {len(account_ids)} account(s)[/green]")


@metrics_app.command("prune")
def metrics_prune(
    days: int = typer.Option(settings.metrics_retention_days, "--days", "-d", help="Retention in days"),
) -> None:
    """Delete metric rows older than the retention window."""
    from social_publisher.db.session import get_session_context
    from social_publisher.services import analytics

    with get_session_context() as session:
        deleted = analytics.prune(session, days)
    console.print(f"[green]Deleted {deleted} metric row(s)[/green]")


if __name__ == "__main__":
    app()
