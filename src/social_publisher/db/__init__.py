"""Database layer."""

from social_publisher.db.models import (
    AccountModel,
    Base,
    MetricModel,
    OAuthStateModel,
    PostModel,
    ScheduledTaskModel,
)
from social_publisher.db.session import get_session, get_session_context, init_db

__all__ = [
    "Base",
    "get_session",
    "get_session_context",
    "init_db",
    # Models
    "AccountModel",
    "MetricModel",
    "OAuthStateModel",
    "PostModel",
    "ScheduledTaskModel",
]
