"""Encrypted credential storage for connected accounts.

Access and refresh tokens are encrypted at rest with Fernet using the
ENCRYPTION_MASTER_KEY setting. Only this module reads or writes the
credential columns of ``AccountModel``.
"""

from datetime import datetime, timezone
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from social_publisher.adapters.platforms.base import (
    AccountCredentials,
    RefreshedToken,
    TokenGrant,
)
from social_publisher.config import get_settings
from social_publisher.db.models import AccountModel
from social_publisher.domain.enums import AccountStatus
from social_publisher.domain.errors import EncryptionError
from social_publisher.logging import get_logger

logger = get_logger(__name__)

# Module-level storage for the generated dev key (persists for process lifetime)
_generated_dev_key: str | None = None


def _get_master_key() -> bytes:
    """Get the master encryption key from settings.

    The key must be a valid 32-byte base64-encoded Fernet key. Outside
    production a random per-process key is generated when none is configured.
    """
    global _generated_dev_key

    settings = get_settings()
    key = settings.encryption_master_key

    if not key:
        if settings.environment.lower() in ("production", "prod"):
            raise EncryptionError(
                "ENCRYPTION_MASTER_KEY is required in production. Generate one with "
                "Fernet.generate_key() from the cryptography package."
            )

        if _generated_dev_key is None:
            _generated_dev_key = Fernet.generate_key().decode()
            logger.warning(
                "encryption_using_generated_key",
                hint="Set ENCRYPTION_MASTER_KEY in .env for token persistence across restarts",
            )
        key = _generated_dev_key

    return key.encode()


@lru_cache(maxsize=1)
def get_fernet() -> Fernet:
    """Get a cached Fernet instance with the master key."""
    try:
        return Fernet(_get_master_key())
    except ValueError as e:
        raise EncryptionError(f"Invalid ENCRYPTION_MASTER_KEY: {e}") from e


def encrypt_token(token: str) -> str:
    """Encrypt a token for storage.

    Raises:
        EncryptionError: If the token is empty.
    """
    if not token:
        raise EncryptionError("Cannot encrypt empty token")
    return get_fernet().encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored token.

    Raises:
        EncryptionError: If decryption fails (invalid key or corrupted data).
    """
    if not encrypted_token:
        raise EncryptionError("Cannot decrypt empty token")

    try:
        return get_fernet().decrypt(encrypted_token.encode()).decode()
    except InvalidToken as e:
        raise EncryptionError(
            "Failed to decrypt token: invalid key or corrupted data. "
            "This may happen if ENCRYPTION_MASTER_KEY changed."
        ) from e


def store_grant(account: AccountModel, grant: TokenGrant) -> None:
    """Write the credentials of a fresh authorization grant onto an account.

    A grant without a refresh token keeps the previously stored one, since
    some providers only issue it on first consent.
    """
    account.encrypted_access_token = encrypt_token(grant.access_token)
    if grant.refresh_token:
        account.encrypted_refresh_token = encrypt_token(grant.refresh_token)
    account.token_expires_at = grant.expires_at
    account.scopes = list(grant.scopes)
    account.status = AccountStatus.ACTIVE
    account.status_reason = None


def apply_refresh(account: AccountModel, refreshed: RefreshedToken) -> None:
    """Write refreshed credentials and mark the account active."""
    account.encrypted_access_token = encrypt_token(refreshed.access_token)
    if refreshed.refresh_token:
        account.encrypted_refresh_token = encrypt_token(refreshed.refresh_token)
    account.token_expires_at = refreshed.expires_at
    account.status = AccountStatus.ACTIVE
    account.status_reason = None


def mark_error(account: AccountModel, reason: str) -> None:
    """Flag an account whose credentials no longer work."""
    account.status = AccountStatus.ERROR
    account.status_reason = reason


def read_credentials(account: AccountModel) -> AccountCredentials:
    """Decrypt an account's credentials for an adapter call."""
    refresh_token = (
        decrypt_token(account.encrypted_refresh_token) if account.encrypted_refresh_token else None
    )
    return AccountCredentials(
        account_id=account.id,
        platform_user_id=account.platform_user_id,
        access_token=decrypt_token(account.encrypted_access_token),
        refresh_token=refresh_token,
        expires_at=account.token_expires_at,
        extra=dict(account.metadata_ or {}),
    )


def needs_refresh(account: AccountModel, margin_seconds: int) -> bool:
    """Whether the access token expires within ``margin_seconds``."""
    if account.token_expires_at is None:
        return False
    remaining = (account.token_expires_at - datetime.now(timezone.utc)).total_seconds()
    return remaining <= margin_seconds
