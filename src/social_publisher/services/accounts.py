"""Connected account management.

Handles the OAuth connection flow, default-account selection, disconnection
and token refresh for every platform. All functions take the owner explicitly;
nothing here reads an ambient user context.
"""

import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from social_publisher.adapters.platforms import (
    AccountCredentials,
    PlatformAdapter,
    TokenGrant,
    get_adapter,
    resolve_platform,
)
from social_publisher.config import get_settings
from social_publisher.db.models import (
    AccountModel,
    OAuthStateModel,
    PostModel,
    ScheduledTaskModel,
)
from social_publisher.domain.enums import AccountStatus, ScheduledTaskStatus
from social_publisher.domain.errors import (
    AccountConflictError,
    AccountNotFoundError,
    InvalidStateError,
    PlatformDisabledError,
    ReconnectRequiredError,
    TokenRefreshError,
)
from social_publisher.logging import get_logger
from social_publisher.services import token_store

logger = get_logger(__name__)

MAX_NICKNAME_LENGTH = 100


# =============================================================================
# OAuth connection flow
# =============================================================================


def begin_connection(
    session: Session,
    owner_id: str,
    platform: str,
    adapter: PlatformAdapter | None = None,
) -> tuple[str, str]:
    """Start an OAuth authorization attempt.

    Args:
        session: Database session.
        owner_id: Owner starting the connection.
        platform: Platform name.
        adapter: Optional adapter override.

    Returns:
        Tuple of (authorization URL, state token).

    Raises:
        UnsupportedPlatformError: If the platform is unknown.
        PlatformDisabledError: If the platform is switched off.
    """
    resolved = resolve_platform(platform)
    settings = get_settings()
    if not settings.is_platform_enabled(resolved):
        raise PlatformDisabledError(resolved)

    adapter = adapter or get_adapter(resolved)
    now = datetime.now(timezone.utc)
    state = secrets.token_urlsafe(32)

    session.execute(delete(OAuthStateModel).where(OAuthStateModel.expires_at < now))
    session.add(
        OAuthStateModel(
            token=state,
            owner_id=owner_id,
            platform=resolved.value,
            expires_at=now + timedelta(seconds=settings.oauth_state_ttl_seconds),
        )
    )
    session.commit()

    logger.info("oauth_connection_started", owner_id=owner_id, platform=resolved.value)
    return adapter.build_authorization_url(state), state


def consume_state(session: Session, owner_id: str, platform: str, state: str | None) -> None:
    """Consume a pending OAuth state exactly once.

    The conditional delete is the single point of truth: a replayed, expired,
    unknown or foreign state deletes nothing.

    Raises:
        InvalidStateError: If the state does not match a live pending attempt.
    """
    if not state:
        raise InvalidStateError("Missing OAuth state")

    result = session.execute(
        delete(OAuthStateModel).where(
            OAuthStateModel.token == state,
            OAuthStateModel.owner_id == owner_id,
            OAuthStateModel.platform == platform,
            OAuthStateModel.expires_at > datetime.now(timezone.utc),
        )
    )
    session.commit()

    if result.rowcount != 1:
        logger.warning("oauth_state_rejected", owner_id=owner_id, platform=platform)
        raise InvalidStateError("Invalid or expired OAuth state. Please try connecting again.")


def complete_connection(
    session: Session,
    owner_id: str,
    platform: str,
    returned_state: str | None,
    code: str,
    adapter: PlatformAdapter | None = None,
) -> AccountModel:
    """Finish an OAuth authorization attempt and upsert the account.

    Args:
        session: Database session.
        owner_id: Owner completing the connection.
        platform: Platform name from the callback URL.
        returned_state: State echoed back by the platform.
        code: Authorization code.
        adapter: Optional adapter override.

    Returns:
        The created or reconnected account.

    Raises:
        InvalidStateError: If the state is unknown, expired or already used.
        OAuthExchangeError: If the code exchange fails.
        AccountConflictError: If the platform identity belongs to another owner.
    """
    resolved = resolve_platform(platform)
    consume_state(session, owner_id, resolved.value, returned_state)

    adapter = adapter or get_adapter(resolved)
    grant = adapter.exchange_code_for_token(code)

    try:
        account, action = _save_connected_account(session, owner_id, resolved.value, grant, True)
    except IntegrityError:
        # A concurrent callback took the default slot first
        session.rollback()
        logger.info("account_default_taken", owner_id=owner_id, platform=resolved.value)
        account, action = _save_connected_account(session, owner_id, resolved.value, grant, False)
    session.refresh(account)

    logger.info(
        "account_connected",
        action=action,
        account_id=str(account.id),
        platform=resolved.value,
        owner_id=owner_id,
        is_default=account.is_default,
    )
    return account


def _has_live_default(session: Session, owner_id: str, platform: str) -> bool:
    return (
        session.execute(
            select(AccountModel.id).where(
                AccountModel.owner_id == owner_id,
                AccountModel.platform == platform,
                AccountModel.deleted_at.is_(None),
                AccountModel.is_default.is_(True),
            )
        ).first()
        is not None
    )


def _save_connected_account(
    session: Session,
    owner_id: str,
    platform: str,
    grant: TokenGrant,
    may_be_default: bool,
) -> tuple[AccountModel, str]:
    """Create or reconnect the account for a token grant and commit.

    A new or revived account becomes the default when it is the owner's only
    live one for the platform. The unique index on live defaults turns a lost
    race into an ``IntegrityError``.

    Raises:
        AccountConflictError: If the platform identity belongs to another owner.
        IntegrityError: If another account became the default concurrently.
    """
    user = grant.user
    existing = session.execute(
        select(AccountModel).where(
            AccountModel.platform == platform,
            AccountModel.platform_user_id == user.id,
        )
    ).scalar_one_or_none()

    if existing is not None and existing.owner_id != owner_id:
        logger.warning(
            "account_conflict",
            platform=platform,
            platform_user_id=user.id,
            owner_id=owner_id,
        )
        raise AccountConflictError(f"This {platform} account is already connected to another user")

    make_default = may_be_default and not _has_live_default(session, owner_id, platform)

    if existing is not None:
        account = existing
        if account.deleted_at is not None:
            account.deleted_at = None
            account.is_default = make_default
        action = "reconnected"
    else:
        account = AccountModel(
            owner_id=owner_id,
            platform=platform,
            platform_user_id=user.id,
            is_default=make_default,
        )
        session.add(account)
        action = "created"

    account.username = user.username
    account.display_name = user.display_name
    account.avatar_url = user.avatar_url
    account.metadata_ = {**(account.metadata_ or {}), **user.extra}
    token_store.store_grant(account, grant)

    session.commit()
    return account, action


# =============================================================================
# Queries
# =============================================================================


def list_accounts(
    session: Session,
    owner_id: str,
    platform: str | None = None,
) -> list[AccountModel]:
    """List an owner's live accounts, optionally for one platform."""
    query = select(AccountModel).where(
        AccountModel.owner_id == owner_id,
        AccountModel.deleted_at.is_(None),
    )
    if platform:
        query = query.where(AccountModel.platform == resolve_platform(platform).value)
    query = query.order_by(AccountModel.platform, AccountModel.created_at)
    return list(session.execute(query).scalars().all())


def get_account(session: Session, owner_id: str, account_id: UUID) -> AccountModel:
    """Get one of the owner's live accounts.

    Raises:
        AccountNotFoundError: If missing, disconnected or owned by someone else.
    """
    account = session.get(AccountModel, account_id)
    if account is None or account.deleted_at is not None or account.owner_id != owner_id:
        raise AccountNotFoundError(f"Account not found: {account_id}")
    return account


# =============================================================================
# Management
# =============================================================================


def set_default(session: Session, owner_id: str, account_id: UUID) -> AccountModel:
    """Make an account the owner's default for its platform.

    Sibling rows are locked before the flags are rewritten, so concurrent calls
    serialize and at most one default remains per (owner, platform).
    """
    account = get_account(session, owner_id, account_id)

    sibling_filter = (
        AccountModel.owner_id == owner_id,
        AccountModel.platform == account.platform,
        AccountModel.deleted_at.is_(None),
    )
    session.execute(select(AccountModel.id).where(*sibling_filter).with_for_update()).all()

    # Clear before set: the unique index on live defaults is checked per statement
    session.execute(
        update(AccountModel)
        .where(*sibling_filter, AccountModel.id != account.id, AccountModel.is_default.is_(True))
        .values(is_default=False)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        update(AccountModel)
        .where(AccountModel.id == account.id)
        .values(is_default=True)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    session.expire_all()

    logger.info("account_default_set", account_id=str(account.id), platform=account.platform)
    return account


def set_nickname(
    session: Session,
    owner_id: str,
    account_id: UUID,
    nickname: str | None,
) -> AccountModel:
    """Set or clear the user-chosen label of an account."""
    account = get_account(session, owner_id, account_id)
    cleaned = (nickname or "").strip()[:MAX_NICKNAME_LENGTH]
    account.nickname = cleaned or None
    session.commit()
    return account


def disconnect(session: Session, owner_id: str, account_id: UUID) -> None:
    """Soft-delete an account.

    Posts and metrics are kept. Pending scheduled publishes for the account's
    posts are cancelled, and if the account was the default another live
    sibling is promoted.
    """
    account = get_account(session, owner_id, account_id)
    was_default = account.is_default

    account.deleted_at = datetime.now(timezone.utc)
    account.is_default = False

    post_ids = select(PostModel.id).where(PostModel.account_id == account.id)
    cancelled = session.execute(
        update(ScheduledTaskModel)
        .where(
            ScheduledTaskModel.post_id.in_(post_ids),
            ScheduledTaskModel.status == ScheduledTaskStatus.PENDING,
        )
        .values(status=ScheduledTaskStatus.CANCELLED)
    ).rowcount

    # The old default is cleared before a sibling is promoted
    session.flush()

    promoted = None
    if was_default:
        promoted = session.execute(
            select(AccountModel)
            .where(
                AccountModel.owner_id == owner_id,
                AccountModel.platform == account.platform,
                AccountModel.deleted_at.is_(None),
                AccountModel.id != account.id,
            )
            .order_by(AccountModel.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if promoted is not None:
            promoted.is_default = True

    session.commit()

    logger.info(
        "account_disconnected",
        account_id=str(account.id),
        platform=account.platform,
        cancelled_tasks=cancelled,
        promoted_default=str(promoted.id) if promoted else None,
    )


# =============================================================================
# Token refresh
# =============================================================================


def refresh_account(
    session: Session,
    account: AccountModel,
    adapter: PlatformAdapter | None = None,
) -> AccountModel:
    """Refresh an account's access token through its adapter.

    Non-expiring tokens of long-lived platforms are left as they are.

    Raises:
        TokenRefreshError: If the platform rejects the refresh (account marked ``error``).
        httpx.HTTPError: On transient transport failures (account untouched).
    """
    adapter = adapter or get_adapter(account.platform)
    if adapter.long_lived_tokens and account.token_expires_at is None:
        logger.debug("token_refresh_skipped", account_id=str(account.id), reason="non_expiring")
        return account

    credentials = token_store.read_credentials(account)
    try:
        refreshed = adapter.refresh_access_token(credentials)
    except TokenRefreshError as e:
        token_store.mark_error(account, str(e))
        session.commit()
        logger.warning(
            "token_refresh_failed",
            account_id=str(account.id),
            platform=account.platform,
            error=str(e),
        )
        raise

    token_store.apply_refresh(account, refreshed)
    session.commit()

    logger.info(
        "token_refreshed",
        account_id=str(account.id),
        platform=account.platform,
        expires_at=refreshed.expires_at.isoformat() if refreshed.expires_at else None,
    )
    return account


def refresh(
    session: Session,
    owner_id: str,
    account_id: UUID,
    adapter: PlatformAdapter | None = None,
) -> AccountModel:
    """Refresh one of the owner's accounts on request.

    Raises:
        AccountNotFoundError: If the account is not one of the owner's live accounts.
        TokenRefreshError: If the platform rejects the refresh, or the token does
            not expire and can only be renewed by reconnecting.
    """
    account = get_account(session, owner_id, account_id)
    adapter = adapter or get_adapter(account.platform)
    if adapter.long_lived_tokens and account.token_expires_at is None:
        raise TokenRefreshError(
            f"{account.platform} tokens do not expire; reconnect the account to renew access"
        )
    return refresh_account(session, account, adapter)


def resolve_credentials(
    session: Session,
    account_id: UUID,
    adapter: PlatformAdapter | None = None,
) -> AccountCredentials:
    """Lock an account, refresh it if its token is about to expire, then read it.

    The row lock serializes refreshes of the same account across concurrent
    publish tasks, so the read always sees the refreshed token.

    Raises:
        ReconnectRequiredError: If the account is gone, flagged or its refresh is rejected.
    """
    account = session.execute(
        select(AccountModel)
        .where(AccountModel.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()

    if account is None or account.deleted_at is not None:
        raise ReconnectRequiredError("The account for this post was disconnected. Reconnect it and retry.")
    if account.status == AccountStatus.ERROR:
        raise ReconnectRequiredError(
            f"The {account.platform} account needs to be reconnected"
            + (f": {account.status_reason}" if account.status_reason else "")
        )

    margin = get_settings().token_refresh_margin_seconds
    if token_store.needs_refresh(account, margin):
        try:
            refresh_account(session, account, adapter)
        except TokenRefreshError as e:
            raise ReconnectRequiredError(
                f"The {account.platform} account needs to be reconnected: {e}"
            ) from e

    credentials = token_store.read_credentials(account)
    # Release the row lock before the long-running upload
    session.commit()
    return credentials
