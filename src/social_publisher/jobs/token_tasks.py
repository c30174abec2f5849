"""Celery task keeping OAuth tokens fresh ahead of their expiry."""

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from social_publisher.adapters.platforms import get_adapter
from social_publisher.config import get_settings
from social_publisher.db.models import AccountModel
from social_publisher.db.session import get_session_context
from social_publisher.domain.enums import AccountStatus
from social_publisher.domain.errors import EncryptionError, TokenRefreshError
from social_publisher.logging import get_logger
from social_publisher.services import accounts
from social_publisher.worker import celery_app

logger = get_logger(__name__)


def refresh_expiring(session: Session, lookahead_hours: int) -> dict[str, int]:
    """Refresh every active account whose token expires within the lookahead window.

    Platforms with long-lived tokens are skipped. A rejected refresh marks the
    account ``error`` and is counted; it never aborts the sweep.

    Returns:
        Counts of refreshed, skipped and failed accounts.
    """
    horizon = datetime.now(timezone.utc) + timedelta(hours=lookahead_hours)
    expiring = session.execute(
        select(AccountModel).where(
            AccountModel.deleted_at.is_(None),
            AccountModel.status == AccountStatus.ACTIVE,
            AccountModel.token_expires_at.is_not(None),
            AccountModel.token_expires_at <= horizon,
        )
    ).scalars().all()

    counts = {"refreshed": 0, "skipped": 0, "failed": 0}
    for account in expiring:
        adapter = get_adapter(account.platform)
        if adapter.long_lived_tokens:
            counts["skipped"] += 1
            continue
        try:
            accounts.refresh_account(session, account, adapter)
            counts["refreshed"] += 1
        except TokenRefreshError:
            counts["failed"] += 1
        except (httpx.HTTPError, EncryptionError) as e:
            session.rollback()
            logger.warning(
                "token_refresh_deferred",
                account_id=str(account.id),
                platform=account.platform,
                error=str(e),
            )
            counts["failed"] += 1
    return counts


@celery_app.task(bind=True, name="refresh_expiring_tokens")
def refresh_expiring_tokens_task(self: Any) -> dict[str, Any]:
    """Hourly refresh of tokens that expire within the configured lookahead."""
    lookahead = get_settings().token_refresh_lookahead_hours
    logger.info("refresh_expiring_tokens_started", task_id=self.request.id, lookahead_hours=lookahead)

    with get_session_context() as session:
        counts = refresh_expiring(session, lookahead)

    logger.info("refresh_expiring_tokens_completed", **counts)
    return {"success": True, **counts}
