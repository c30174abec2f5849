"""Base interface for social platform adapters.

Each platform implements the same capability set: build an OAuth authorization
URL, exchange an authorization code, refresh an access token, publish a video
and read back post and account metrics. OAuth calls are synchronous (they run on the
request path during the callback); publishing and metrics are async and are
driven from Celery tasks through ``run_async``.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any, ClassVar
from uuid import UUID

import httpx

from social_publisher.domain.enums import Platform
from social_publisher.domain.errors import OAuthExchangeError, PublishError, TokenRefreshError
from social_publisher.domain.platforms import PLATFORM_PROFILES, PlatformProfile, build_caption
from social_publisher.logging import get_logger

logger = get_logger(__name__)

UPLOAD_CHUNK_SIZE = 5 * 1024 * 1024


@dataclass
class OAuthAppConfig:
    """OAuth application credentials for one platform."""

    client_id: str
    client_secret: str
    redirect_uri: str


@dataclass
class PlatformUser:
    """Identity of the connected user, page or channel on the platform."""

    id: str
    username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenGrant:
    """Result of a successful authorization-code exchange."""

    access_token: str
    user: PlatformUser
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scopes: list[str] = field(default_factory=list)


@dataclass
class RefreshedToken:
    """Result of a successful token refresh.

    A ``None`` refresh token means the platform did not rotate it.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


@dataclass
class AccountCredentials:
    """Decrypted credentials handed to an adapter for one account."""

    platform_user_id: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    account_id: UUID | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class PublishMetadata:
    """Post content as sent to a platform."""

    title: str
    description: str | None = None
    hashtags: list[str] = field(default_factory=list)
    thumbnail_path: Path | None = None
    video_url: str | None = None  # Public URL, for platforms that fetch media themselves


@dataclass
class PublishResult:
    """Identifier and link of the remote post."""

    remote_post_id: str
    url: str | None = None
    raw: dict[str, Any] | None = None


@dataclass
class MetricsSnapshot:
    """Engagement counters for one remote post or for an account over a period."""

    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    impressions: int = 0
    reach: int = 0
    extra: dict[str, Any] = field(default_factory=dict)


class PlatformAdapter(ABC):
    """Abstract base class for platform adapters.

    Implementations:
    - YouTubeAdapter: Google OAuth + YouTube Data API resumable uploads
    - FacebookAdapter: Facebook Login, publishes to the first managed Page
    - InstagramAdapter: Facebook Login + Instagram Graph API Reels containers
    - TikTokAdapter: TikTok Login Kit + Content Posting API
    - ThreadsAdapter: Threads OAuth + Threads API video containers
    """

    #: OAuth scopes requested during authorization.
    scopes: ClassVar[list[str]] = []

    #: Tokens that are long-lived or non-expiring and skipped by periodic refresh.
    long_lived_tokens: ClassVar[bool] = False

    def __init__(
        self,
        config: OAuthAppConfig,
        transport: httpx.MockTransport | httpx.BaseTransport | None = None,
        timeout: float = 300.0,
        poll_interval: float = 5.0,
        max_poll_attempts: int = 60,
    ):
        """Initialize the adapter.

        Args:
            config: OAuth app credentials and redirect URI.
            transport: Optional httpx transport (tests inject ``httpx.MockTransport``).
            timeout: HTTP timeout for uploads in seconds.
            poll_interval: Seconds between media-processing status polls.
            max_poll_attempts: Polls before giving up on remote processing.
        """
        self.config = config
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self._transport = transport

    @property
    @abstractmethod
    def platform(self) -> Platform:
        """The platform this adapter talks to."""
        ...

    @property
    def profile(self) -> PlatformProfile:
        """Content limits for this platform."""
        return PLATFORM_PROFILES[self.platform]

    # -------------------------------------------------------------------------
    # Capability set
    # -------------------------------------------------------------------------

    @abstractmethod
    def build_authorization_url(self, state: str) -> str:
        """Build the URL the user is redirected to for consent.

        Args:
            state: Opaque single-use CSRF token echoed back on the callback.

        Returns:
            Absolute authorization URL.
        """
        ...

    @abstractmethod
    def exchange_code_for_token(self, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens and the platform identity.

        Raises:
            OAuthExchangeError: If the code is invalid, expired or the response is unusable.
        """
        ...

    @abstractmethod
    def refresh_access_token(self, credentials: AccountCredentials) -> RefreshedToken:
        """Obtain a fresh access token.

        Raises:
            TokenRefreshError: If the platform rejects the refresh; the account must reconnect.
            httpx.HTTPError: On transport failures or platform outages (transient).
        """
        ...

    async def publish(
        self,
        video: Path,
        metadata: PublishMetadata,
        credentials: AccountCredentials,
    ) -> PublishResult:
        """Publish a video and return the remote post identifier.

        Transport failures are reported as retryable ``PublishError``s.

        Raises:
            PublishError: With ``retryable`` set according to the failure.
        """
        if metadata.video_url is None and not video.exists():
            raise PublishError(f"Video file not found: {video}", retryable=False)

        try:
            async with self._async_client() as client:
                return await self._upload(client, video, metadata, credentials)
        except httpx.RequestError as e:
            raise PublishError(
                f"{self.platform} request failed: {e.__class__.__name__}: {e}",
                retryable=True,
            ) from e

    @abstractmethod
    async def _upload(
        self,
        client: httpx.AsyncClient,
        video: Path,
        metadata: PublishMetadata,
        credentials: AccountCredentials,
    ) -> PublishResult:
        """Platform-specific publishing flow."""
        ...

    async def fetch_post_metrics(
        self,
        remote_post_id: str,
        credentials: AccountCredentials,
    ) -> MetricsSnapshot:
        """Read engagement counters for a published post.

        Raises:
            httpx.HTTPError: On transport failures or non-2xx responses.
        """
        async with self._async_client() as client:
            return await self._fetch_metrics(client, remote_post_id, credentials)

    @abstractmethod
    async def _fetch_metrics(
        self,
        client: httpx.AsyncClient,
        remote_post_id: str,
        credentials: AccountCredentials,
    ) -> MetricsSnapshot:
        """Platform-specific metrics query."""
        ...

    async def fetch_account_metrics(
        self,
        credentials: AccountCredentials,
        start: date,
        end: date,
    ) -> MetricsSnapshot:
        """Read account-level counters summed over an inclusive date range.

        Values that are not sums over the period, like the follower count,
        are returned in ``extra``.

        Raises:
            httpx.HTTPError: On transport failures or non-2xx responses.
        """
        async with self._async_client() as client:
            return await self._fetch_account_metrics(client, credentials, start, end)

    @abstractmethod
    async def _fetch_account_metrics(
        self,
        client: httpx.AsyncClient,
        credentials: AccountCredentials,
        start: date,
        end: date,
    ) -> MetricsSnapshot:
        """Platform-specific account insights query."""
        ...

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    def _client(self) -> httpx.Client:
        """Short-timeout client for OAuth calls."""
        return httpx.Client(timeout=30, transport=self._transport)

    def _async_client(self) -> httpx.AsyncClient:
        """Long-timeout client for uploads."""
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    @staticmethod
    def _expires_at(expires_in: Any) -> datetime | None:
        """Absolute expiry from an ``expires_in`` seconds value."""
        if expires_in in (None, "", 0):
            return None
        return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))

    @staticmethod
    def _safe_json(response: httpx.Response) -> dict[str, Any] | None:
        """Parse a JSON object body, or None when the body is not JSON."""
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _error_message(data: dict[str, Any] | None, fallback: str) -> str:
        """Pull a readable message out of the various platform error envelopes."""
        if not data:
            return fallback
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("code") or fallback)
        if data.get("error_description"):
            return str(data["error_description"])
        if isinstance(error, str) and error:
            return error
        return fallback

    def _oauth_json(self, response: httpx.Response, context: str) -> dict[str, Any]:
        """Validate a token-endpoint response during a code exchange."""
        data = self._safe_json(response)
        if response.status_code != 200 or data is None:
            raise OAuthExchangeError(
                f"{context}: {self._error_message(data, response.text[:200])}"
            )
        if data.get("error") and not data.get("access_token"):
            raise OAuthExchangeError(f"{context}: {self._error_message(data, 'unknown error')}")
        return data

    def _refresh_json(self, response: httpx.Response) -> dict[str, Any]:
        """Validate a token-endpoint response during a refresh.

        Platform outages (5xx) propagate as ``httpx.HTTPStatusError`` so they are
        retried instead of flagging the account.
        """
        if response.status_code >= 500:
            response.raise_for_status()
        data = self._safe_json(response)
        if response.status_code != 200 or data is None or not data.get("access_token"):
            raise TokenRefreshError(
                f"{self.platform} token refresh failed: "
                f"{self._error_message(data, response.text[:200])}. Please reconnect the account."
            )
        return data

    def _is_retryable(self, response: httpx.Response, data: dict[str, Any] | None) -> bool:
        """Whether a failed publish response may succeed on a later attempt."""
        return response.status_code == 429 or response.status_code >= 500

    def _publish_json(self, response: httpx.Response, context: str) -> dict[str, Any]:
        """Validate a publish-flow response, raising a classified ``PublishError``."""
        data = self._safe_json(response)
        if response.status_code not in (200, 201):
            raise PublishError(
                f"{context}: {self._error_message(data, response.text[:200])}",
                retryable=self._is_retryable(response, data),
            )
        return data or {}

    def _caption(self, metadata: PublishMetadata) -> str:
        """Description plus hashtags, trimmed to the platform's limits."""
        hashtags = metadata.hashtags[: self.profile.hashtag_limit]
        return build_caption(metadata.description, hashtags)[: self.profile.caption_limit]

    @staticmethod
    async def _iter_file(path: Path, chunk_size: int = UPLOAD_CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Stream a file in chunks for async uploads."""
        with open(path, "rb") as f:
            while chunk := f.read(chunk_size):
                yield chunk

    async def _permalink(self, client: httpx.AsyncClient, url: str, token: str) -> str | None:
        """Look up the permalink of a post that already exists remotely.

        The post is live at this point, so a failed lookup must not fail the
        publish (a retry would post the video twice).
        """
        try:
            response = await client.get(url, params={"fields": "permalink", "access_token": token})
        except httpx.HTTPError as e:
            logger.warning("permalink_lookup_failed", platform=self.platform, error=str(e))
            return None
        return (self._safe_json(response) or {}).get("permalink")

    @staticmethod
    def _require_public_url(metadata: PublishMetadata, platform: Platform) -> str:
        """Public video URL for platforms that download media from a URL."""
        if not metadata.video_url:
            raise PublishError(
                f"{platform} requires a publicly reachable video URL; "
                "configure PUBLIC_MEDIA_BASE_URL",
                retryable=False,
            )
        return metadata.video_url


def parse_insights(payload: dict[str, Any]) -> dict[str, int]:
    """Flatten a Meta Graph insights response into ``{metric: value}``."""
    values: dict[str, int] = {}
    for item in payload.get("data", []):
        points = item.get("values") or []
        if points:
            values[item["name"]] = int(points[0].get("value") or 0)
        elif "total_value" in item:
            values[item["name"]] = int(item["total_value"].get("value") or 0)
    return values


def insight_series(payload: dict[str, Any]) -> dict[str, list[int]]:
    """Daily values per metric of a Meta Graph insights response, oldest first.

    Metrics reported as a single ``total_value`` become a one-item series.
    Breakdown values (dicts keyed by country, age and so on) are skipped.
    """
    series: dict[str, list[int]] = {}
    for item in payload.get("data", []):
        if item.get("values"):
            points = [point.get("value") for point in item["values"]]
            series[item["name"]] = [int(value) for value in points if isinstance(value, (int, float))]
        elif "total_value" in item:
            series[item["name"]] = [int(item["total_value"].get("value") or 0)]
    return series


def period_params(start: date, end: date) -> dict[str, int]:
    """``since``/``until`` Unix timestamps covering whole UTC days from start to end."""
    since = datetime.combine(start, time.min, tzinfo=timezone.utc)
    until = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return {"since": int(since.timestamp()), "until": int(until.timestamp())}
