"""Static per-platform content limits and presentation."""

from dataclasses import dataclass

from social_publisher.domain.enums import Platform

DEFAULT_CALENDAR_COLOR = "#6B7280"


@dataclass(frozen=True)
class PlatformProfile:
    """Content limits and calendar colour of one platform."""

    platform: Platform
    caption_limit: int
    hashtag_limit: int
    color: str
    title_limit: int | None = None
    requires_public_url: bool = False


PLATFORM_PROFILES: dict[Platform, PlatformProfile] = {
    Platform.YOUTUBE: PlatformProfile(
        platform=Platform.YOUTUBE,
        title_limit=100,
        caption_limit=5000,
        hashtag_limit=15,
        color="#FF0000",
    ),
    Platform.FACEBOOK: PlatformProfile(
        platform=Platform.FACEBOOK,
        caption_limit=63206,
        hashtag_limit=30,
        color="#1877F2",
    ),
    Platform.INSTAGRAM: PlatformProfile(
        platform=Platform.INSTAGRAM,
        caption_limit=2200,
        hashtag_limit=30,
        color="#E4405F",
        requires_public_url=True,
    ),
    Platform.TIKTOK: PlatformProfile(
        platform=Platform.TIKTOK,
        caption_limit=150,
        hashtag_limit=5,
        color="#000000",
    ),
    Platform.THREADS: PlatformProfile(
        platform=Platform.THREADS,
        caption_limit=500,
        hashtag_limit=30,
        color="#000000",
        requires_public_url=True,
    ),
}


def calendar_color(platform: str) -> str:
    """Calendar colour for a platform name, grey for anything unknown."""
    try:
        return PLATFORM_PROFILES[Platform(platform)].color
    except ValueError:
        return DEFAULT_CALENDAR_COLOR


def build_caption(description: str | None, hashtags: list[str] | None) -> str:
    """Join a description and hashtags the way every platform receives them.

    Hashtags are appended after a blank line as ``#tag`` tokens separated by spaces.
    """
    parts = []
    if description:
        parts.append(description.strip())
    if hashtags:
        parts.append(" ".join(f"#{tag}" for tag in hashtags))
    return "\n\n".join(parts)
