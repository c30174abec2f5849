"""Domain enums, errors and platform profiles."""

from social_publisher.domain.enums import (
    AccountStatus,
    MetricType,
    Platform,
    PostStatus,
    ScheduledTaskStatus,
)
from social_publisher.domain.errors import (
    AccountConflictError,
    InvalidStateError,
    OAuthExchangeError,
    PublishError,
    SocialPublisherError,
    TokenRefreshError,
    UnsupportedPlatformError,
)

__all__ = [
    "AccountConflictError",
    "AccountStatus",
    "InvalidStateError",
    "MetricType",
    "OAuthExchangeError",
    "Platform",
    "PostStatus",
    "PublishError",
    "ScheduledTaskStatus",
    "SocialPublisherError",
    "TokenRefreshError",
    "UnsupportedPlatformError",
]
