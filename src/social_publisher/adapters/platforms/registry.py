"""Platform adapter registry.

Maps every ``Platform`` to its adapter class and the settings that hold its
OAuth app credentials. Lookup is total over ``Platform``; anything else fails
fast with ``UnsupportedPlatformError``.
"""

import httpx

from social_publisher.adapters.platforms.base import OAuthAppConfig, PlatformAdapter
from social_publisher.adapters.platforms.facebook import FacebookAdapter
from social_publisher.adapters.platforms.instagram import InstagramAdapter
from social_publisher.adapters.platforms.threads import ThreadsAdapter
from social_publisher.adapters.platforms.tiktok import TikTokAdapter
from social_publisher.adapters.platforms.youtube import YouTubeAdapter
from social_publisher.config import get_settings
from social_publisher.domain.enums import Platform
from social_publisher.domain.errors import UnsupportedPlatformError

# platform -> (adapter class, client id setting, client secret setting)
ADAPTERS: dict[Platform, tuple[type[PlatformAdapter], str, str]] = {
    Platform.YOUTUBE: (YouTubeAdapter, "youtube_client_id", "youtube_client_secret"),
    Platform.FACEBOOK: (FacebookAdapter, "facebook_app_id", "facebook_app_secret"),
    Platform.INSTAGRAM: (InstagramAdapter, "instagram_app_id", "instagram_app_secret"),
    Platform.TIKTOK: (TikTokAdapter, "tiktok_client_key", "tiktok_client_secret"),
    Platform.THREADS: (ThreadsAdapter, "threads_app_id", "threads_app_secret"),
}


def resolve_platform(name: str | Platform) -> Platform:
    """Parse a platform name.

    Raises:
        UnsupportedPlatformError: If the name is not one of the known platforms.
    """
    try:
        return Platform(name)
    except ValueError as e:
        raise UnsupportedPlatformError(str(name)) from e


def adapter_class(platform: str | Platform) -> type[PlatformAdapter]:
    """Adapter class for a platform, without building an instance."""
    return ADAPTERS[resolve_platform(platform)][0]


def get_adapter(
    platform: str | Platform,
    transport: httpx.BaseTransport | None = None,
) -> PlatformAdapter:
    """Build the adapter for a platform from configured OAuth app credentials.

    Args:
        platform: Platform name.
        transport: Optional httpx transport override.

    Returns:
        Configured PlatformAdapter.

    Raises:
        UnsupportedPlatformError: If the platform is unknown.
    """
    resolved = resolve_platform(platform)
    cls, id_field, secret_field = ADAPTERS[resolved]
    settings = get_settings()

    config = OAuthAppConfig(
        client_id=getattr(settings, id_field) or "",
        client_secret=getattr(settings, secret_field) or "",
        redirect_uri=settings.redirect_uri_for(resolved.value),
    )
    return cls(config, transport=transport, timeout=settings.publish_timeout_seconds)


def is_configured(platform: str | Platform) -> bool:
    """Whether OAuth app credentials are set for a platform."""
    _, id_field, secret_field = ADAPTERS[resolve_platform(platform)]
    settings = get_settings()
    return bool(getattr(settings, id_field) and getattr(settings, secret_field))
