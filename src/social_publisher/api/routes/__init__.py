"""API route modules."""

from social_publisher.api.routes import (
    accounts,
    analytics,
    calendar,
    connect,
    health,
    posts,
    videos,
)

__all__ = ["accounts", "analytics", "calendar", "connect", "health", "posts", "videos"]
