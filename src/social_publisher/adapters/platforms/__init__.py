"""Social platform adapters."""

from social_publisher.adapters.platforms.base import (
    AccountCredentials,
    MetricsSnapshot,
    OAuthAppConfig,
    PlatformAdapter,
    PlatformUser,
    PublishMetadata,
    PublishResult,
    RefreshedToken,
    TokenGrant,
)
from social_publisher.adapters.platforms.facebook import FacebookAdapter
from social_publisher.adapters.platforms.instagram import InstagramAdapter
from social_publisher.adapters.platforms.registry import (
    adapter_class,
    get_adapter,
    is_configured,
    resolve_platform,
)
from social_publisher.adapters.platforms.threads import ThreadsAdapter
from social_publisher.adapters.platforms.tiktok import TikTokAdapter
from social_publisher.adapters.platforms.youtube import YouTubeAdapter

__all__ = [
    # Base
    "AccountCredentials",
    "MetricsSnapshot",
    "OAuthAppConfig",
    "PlatformAdapter",
    "PlatformUser",
    "PublishMetadata",
    "PublishResult",
    "RefreshedToken",
    "TokenGrant",
    # Platforms
    "FacebookAdapter",
    "InstagramAdapter",
    "ThreadsAdapter",
    "TikTokAdapter",
    "YouTubeAdapter",
    # Registry
    "adapter_class",
    "get_adapter",
    "is_configured",
    "resolve_platform",
]
