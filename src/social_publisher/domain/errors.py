"""Domain error taxonomy.

Every error carries the HTTP status it maps to so the API layer can render it
without a per-endpoint translation table.
"""


class SocialPublisherError(Exception):
    """Base class for all domain errors."""

    http_status: int = 400


class UnsupportedPlatformError(SocialPublisherError):
    """Raised when a platform name has no adapter."""

    http_status = 404

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"Unsupported platform: {platform}")


class PlatformDisabledError(SocialPublisherError):
    """Raised when a platform is switched off in configuration."""

    http_status = 403

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"{platform} integration is disabled")


class InvalidStateError(SocialPublisherError):
    """Raised when an OAuth callback carries an unknown, expired or replayed state."""

    http_status = 400


class OAuthExchangeError(SocialPublisherError):
    """Raised when an authorization code cannot be exchanged for tokens."""

    http_status = 400


class AccountConflictError(SocialPublisherError):
    """Raised when a platform identity is already connected to another owner."""

    http_status = 409


class AccountNotFoundError(SocialPublisherError):
    """Raised when an account does not exist, is disconnected or belongs to someone else."""

    http_status = 404


class TokenRefreshError(SocialPublisherError):
    """Raised when a platform rejects a token refresh. The account must be reconnected."""

    http_status = 400


class EncryptionError(SocialPublisherError):
    """Raised when token encryption or decryption fails."""

    http_status = 500


class PublishError(SocialPublisherError):
    """Raised when a platform publish call fails.

    Args:
        message: Human-readable reason, stored on the failed post.
        retryable: Whether the same request may succeed later (quota, rate limit, outage).
    """

    http_status = 502

    def __init__(self, message: str, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message)


class ReconnectRequiredError(PublishError):
    """Raised when publishing needs credentials the account no longer has."""

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class PostNotFoundError(SocialPublisherError):
    """Raised when a post does not exist or belongs to someone else."""

    http_status = 404


class InvalidTransitionError(SocialPublisherError):
    """Raised when a post state transition is not legal from its current state."""

    http_status = 409


class PostImmutableError(SocialPublisherError):
    """Raised when editing a published post."""

    http_status = 409


class PostValidationError(SocialPublisherError):
    """Raised when post content violates field or platform limits."""

    http_status = 422


class VideoValidationError(SocialPublisherError):
    """Raised when an uploaded video is rejected."""

    http_status = 422
