"""Domain enumerations."""

from enum import StrEnum


class Platform(StrEnum):
    """Supported social platforms."""

    YOUTUBE = "youtube"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    THREADS = "threads"


class AccountStatus(StrEnum):
    """Credential health of a connected account."""

    ACTIVE = "active"
    ERROR = "error"


class PostStatus(StrEnum):
    """Lifecycle state of a post."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    PUBLISHED = "published"
    FAILED = "failed"


class MetricType(StrEnum):
    """Grain of a metric row."""

    ACCOUNT = "account"
    POST = "post"


class ScheduledTaskStatus(StrEnum):
    """State of a persisted due-at record."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    CANCELLED = "cancelled"
