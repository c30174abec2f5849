"""YouTube adapter using Google OAuth and the YouTube Data API v3.

Publishing uses the resumable upload protocol:
1. POST /upload/youtube/v3/videos?uploadType=resumable with the video resource
2. PUT the file bytes to the session URI returned in the Location header
"""

from datetime import date
from pathlib import Path
from typing import Any, ClassVar
from urllib.parse import urlencode

import httpx

from social_publisher.adapters.platforms.base import (
    AccountCredentials,
    MetricsSnapshot,
    PlatformAdapter,
    PlatformUser,
    PublishMetadata,
    PublishResult,
    RefreshedToken,
    TokenGrant,
)
from social_publisher.domain.enums import Platform
from social_publisher.domain.errors import OAuthExchangeError, PublishError, TokenRefreshError
from social_publisher.logging import get_logger

logger = get_logger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"
YOUTUBE_UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
YOUTUBE_THUMBNAIL_URL = "https://www.googleapis.com/upload/youtube/v3/thumbnails/set"
YOUTUBE_ANALYTICS_URL = "https://youtubeanalytics.googleapis.com/v2/reports"

CHANNEL_METRICS = (
    "views",
    "estimatedMinutesWatched",
    "subscribersGained",
    "subscribersLost",
    "likes",
    "comments",
    "shares",
)

CATEGORY_PEOPLE_AND_BLOGS = "22"

# Error reasons that clear up on their own (daily quota reset, rate windows, outages)
RETRYABLE_REASONS = frozenset(
    {"quotaExceeded", "rateLimitExceeded", "userRateLimitExceeded", "backendError"}
)


class YouTubeAdapter(PlatformAdapter):
    """YouTube channel adapter."""

    scopes: ClassVar[list[str]] = [
        "https://www.googleapis.com/auth/youtube.upload",
        "https://www.googleapis.com/auth/youtube.readonly",
        "https://www.googleapis.com/auth/yt-analytics.readonly",
    ]

    @property
    def platform(self) -> Platform:
        return Platform.YOUTUBE

    def build_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code_for_token(self, code: str) -> TokenGrant:
        with self._client() as client:
            response = client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.config.redirect_uri,
                },
            )
            data = self._oauth_json(response, "Google token exchange failed")
            access_token = data["access_token"]

            channel_response = client.get(
                f"{YOUTUBE_API_URL}/channels",
                params={"part": "snippet", "mine": "true"},
                headers={"Authorization": f"Bearer {access_token}"},
            )
            channel_data = self._oauth_json(channel_response, "Failed to fetch YouTube channel")

        items = channel_data.get("items") or []
        if not items:
            raise OAuthExchangeError("No YouTube channel found for this Google account")

        channel = items[0]
        snippet = channel.get("snippet", {})
        thumbnails = snippet.get("thumbnails", {})
        avatar = (thumbnails.get("default") or {}).get("url")

        logger.info("youtube_channel_connected", channel_id=channel["id"])

        return TokenGrant(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_at=self._expires_at(data.get("expires_in")),
            scopes=(data.get("scope") or " ".join(self.scopes)).split(),
            user=PlatformUser(
                id=channel["id"],
                username=snippet.get("customUrl") or snippet.get("title"),
                display_name=snippet.get("title"),
                avatar_url=avatar,
            ),
        )

    def refresh_access_token(self, credentials: AccountCredentials) -> RefreshedToken:
        if not credentials.refresh_token:
            raise TokenRefreshError("No refresh token stored. Please reconnect the account.")

        with self._client() as client:
            response = client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "refresh_token": credentials.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        data = self._refresh_json(response)

        # Google only returns a refresh token when it rotates one
        return RefreshedToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=self._expires_at(data.get("expires_in")),
        )

    def _build_video_resource(self, metadata: PublishMetadata) -> dict[str, Any]:
        """Video resource (snippet + status) for the upload session."""
        profile = self.profile
        snippet: dict[str, Any] = {
            "title": metadata.title[: profile.title_limit],
            "description": self._caption(metadata),
            "categoryId": CATEGORY_PEOPLE_AND_BLOGS,
        }
        if metadata.hashtags:
            snippet["tags"] = metadata.hashtags[: profile.hashtag_limit]

        return {
            "snippet": snippet,
            "status": {
                "privacyStatus": "public",
                "selfDeclaredMadeForKids": False,
            },
        }

    def _is_retryable(self, response: httpx.Response, data: dict[str, Any] | None) -> bool:
        if super()._is_retryable(response, data):
            return True
        error = (data or {}).get("error")
        if not isinstance(error, dict):
            return False
        reasons = {err.get("reason") for err in error.get("errors", []) if isinstance(err, dict)}
        return bool(reasons & RETRYABLE_REASONS)

    async def _upload(
        self,
        client: httpx.AsyncClient,
        video: Path,
        metadata: PublishMetadata,
        credentials: AccountCredentials,
    ) -> PublishResult:
        file_size = video.stat().st_size
        auth = {"Authorization": f"Bearer {credentials.access_token}"}

        init_response = await client.post(
            YOUTUBE_UPLOAD_URL,
            params={"uploadType": "resumable", "part": "snippet,status"},
            headers={
                **auth,
                "X-Upload-Content-Length": str(file_size),
                "X-Upload-Content-Type": "video/*",
            },
            json=self._build_video_resource(metadata),
        )
        self._publish_json(init_response, "Failed to initialize YouTube upload")

        upload_url = init_response.headers.get("Location")
        if not upload_url:
            raise PublishError("YouTube did not return an upload session URL", retryable=True)

        upload_response = await client.put(
            upload_url,
            headers={**auth, "Content-Type": "video/*", "Content-Length": str(file_size)},
            content=self._iter_file(video),
        )
        data = self._publish_json(upload_response, "YouTube upload failed")

        video_id = data.get("id")
        if not video_id:
            raise PublishError("YouTube upload response had no video id", retryable=False)

        if metadata.thumbnail_path and metadata.thumbnail_path.exists():
            try:
                await self._set_thumbnail(client, video_id, metadata.thumbnail_path, auth)
            except (httpx.HTTPError, OSError) as e:
                logger.warning("youtube_thumbnail_failed", video_id=video_id, error=str(e))

        logger.info("youtube_video_uploaded", video_id=video_id, size=file_size)
        return PublishResult(
            remote_post_id=video_id,
            url=f"https://www.youtube.com/watch?v={video_id}",
            raw=data,
        )

    async def _set_thumbnail(
        self,
        client: httpx.AsyncClient,
        video_id: str,
        thumbnail: Path,
        auth: dict[str, str],
    ) -> None:
        """Attach a custom thumbnail; the video is already live so failures only warn."""
        response = await client.post(
            YOUTUBE_THUMBNAIL_URL,
            params={"videoId": video_id},
            headers={**auth, "Content-Type": "image/jpeg"},
            content=thumbnail.read_bytes(),
        )
        if response.status_code != 200:
            logger.warning(
                "youtube_thumbnail_failed",
                video_id=video_id,
                status=response.status_code,
                error=self._error_message(self._safe_json(response), response.text[:200]),
            )

    async def _fetch_metrics(
        self,
        client: httpx.AsyncClient,
        remote_post_id: str,
        credentials: AccountCredentials,
    ) -> MetricsSnapshot:
        response = await client.get(
            f"{YOUTUBE_API_URL}/videos",
            params={"part": "statistics", "id": remote_post_id},
            headers={"Authorization": f"Bearer {credentials.access_token}"},
        )
        response.raise_for_status()

        items = response.json().get("items") or []
        stats = items[0].get("statistics", {}) if items else {}
        views = int(stats.get("viewCount", 0))
        return MetricsSnapshot(
            views=views,
            likes=int(stats.get("likeCount", 0)),
            comments=int(stats.get("commentCount", 0)),
            impressions=views,
            reach=views,
            extra={"favorites": int(stats.get("favoriteCount", 0))},
        )

    async def _fetch_account_metrics(
        self,
        client: httpx.AsyncClient,
        credentials: AccountCredentials,
        start: date,
        end: date,
    ) -> MetricsSnapshot:
        response = await client.get(
            YOUTUBE_ANALYTICS_URL,
            params={
                "ids": "channel==MINE",
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
                "metrics": ",".join(CHANNEL_METRICS),
                "dimensions": "day",
            },
            headers={"Authorization": f"Bearer {credentials.access_token}"},
        )
        response.raise_for_status()
        data = response.json()

        # Rows are [day, *metrics]; sum each metric column over the days
        columns = [header.get("name") for header in data.get("columnHeaders") or []]
        totals = dict.fromkeys(CHANNEL_METRICS, 0)
        for row in data.get("rows") or []:
            for name, value in zip(columns, row):
                if name in totals:
                    totals[name] += int(value or 0)

        return MetricsSnapshot(
            views=totals["views"],
            likes=totals["likes"],
            comments=totals["comments"],
            shares=totals["shares"],
            impressions=totals["views"],
            reach=totals["views"],
            extra={
                "watch_time_seconds": totals["estimatedMinutesWatched"] * 60,
                "subscribers_gained": totals["subscribersGained"],
                "subscribers_lost": totals["subscribersLost"],
            },
        )
