"""TikTok adapter using Login Kit and the Content Posting API.

Publishing Flow (direct post):
1. POST /v2/post/publish/video/init/ - Initialize with FILE_UPLOAD source info
2. PUT upload_url - Upload video chunks with Content-Range headers
3. POST /v2/post/publish/status/fetch/ - Poll until PUBLISH_COMPLETE
"""

import asyncio
from datetime import date
from pathlib import Path
from typing import Any, ClassVar
from urllib.parse import urlencode

import httpx

from social_publisher.adapters.platforms.base import (
    UPLOAD_CHUNK_SIZE,
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
from social_publisher.domain.platforms import build_caption
from social_publisher.logging import get_logger

logger = get_logger(__name__)

TIKTOK_AUTH_URL = "https://www.tiktok.com/v2/auth/authorize/"
TIKTOK_API_URL = "https://open.tiktokapis.com/v2"
TIKTOK_TOKEN_URL = f"{TIKTOK_API_URL}/oauth/token/"
TIKTOK_USER_INFO_URL = f"{TIKTOK_API_URL}/user/info/"
TIKTOK_POST_INIT_URL = f"{TIKTOK_API_URL}/post/publish/video/init/"
TIKTOK_POST_STATUS_URL = f"{TIKTOK_API_URL}/post/publish/status/fetch/"
TIKTOK_VIDEO_QUERY_URL = f"{TIKTOK_API_URL}/video/query/"

# Error codes TikTok documents as transient
RETRYABLE_CODES = frozenset({"rate_limit_exceeded", "spam_risk_too_many_pending_share", "internal_error"})


class TikTokAdapter(PlatformAdapter):
    """TikTok creator adapter."""

    scopes: ClassVar[list[str]] = [
        "user.info.basic",
        "video.upload",
        "video.publish",
        "video.list",
    ]

    @property
    def platform(self) -> Platform:
        return Platform.TIKTOK

    def build_authorization_url(self, state: str) -> str:
        params = {
            "client_key": self.config.client_id,
            "response_type": "code",
            "scope": ",".join(self.scopes),
            "redirect_uri": self.config.redirect_uri,
            "state": state,
        }
        return f"{TIKTOK_AUTH_URL}?{urlencode(params)}"

    def exchange_code_for_token(self, code: str) -> TokenGrant:
        with self._client() as client:
            response = client.post(
                TIKTOK_TOKEN_URL,
                data={
                    "client_key": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.config.redirect_uri,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            data = self._oauth_json(response, "TikTok token exchange failed")
            access_token = data["access_token"]

            user_response = client.get(
                TIKTOK_USER_INFO_URL,
                params={"fields": "open_id,union_id,avatar_url,display_name"},
                headers={"Authorization": f"Bearer {access_token}"},
            )
            user_data = self._oauth_json(user_response, "Failed to fetch TikTok user info")

        user = (user_data.get("data") or {}).get("user") or {}
        open_id = user.get("open_id") or data.get("open_id")
        if not open_id:
            raise OAuthExchangeError("TikTok did not return an open_id")

        logger.info("tiktok_account_connected", open_id=open_id)

        return TokenGrant(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_at=self._expires_at(data.get("expires_in")),
            scopes=(data.get("scope") or ",".join(self.scopes)).split(","),
            user=PlatformUser(
                id=open_id,
                username=user.get("display_name"),
                display_name=user.get("display_name"),
                avatar_url=user.get("avatar_url"),
                extra={"union_id": user.get("union_id")},
            ),
        )

    def refresh_access_token(self, credentials: AccountCredentials) -> RefreshedToken:
        if not credentials.refresh_token:
            raise TokenRefreshError("No refresh token stored. Please reconnect the account.")

        with self._client() as client:
            response = client.post(
                TIKTOK_TOKEN_URL,
                data={
                    "client_key": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": credentials.refresh_token,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        data = self._refresh_json(response)

        return RefreshedToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=self._expires_at(data.get("expires_in")),
        )

    def _post_title(self, metadata: PublishMetadata) -> str:
        """TikTok shows a single caption line: title plus a few hashtags."""
        hashtags = metadata.hashtags[: self.profile.hashtag_limit]
        return build_caption(metadata.title, hashtags)[: self.profile.caption_limit]

    def _is_retryable(self, response: httpx.Response, data: dict[str, Any] | None) -> bool:
        if super()._is_retryable(response, data):
            return True
        error = (data or {}).get("error")
        return isinstance(error, dict) and error.get("code") in RETRYABLE_CODES

    def _check_envelope(self, response: httpx.Response, context: str) -> dict[str, Any]:
        """TikTok wraps every response in ``{"data": ..., "error": {"code": "ok"}}``."""
        data = self._publish_json(response, context)
        error = data.get("error") or {}
        if error.get("code", "ok") != "ok":
            raise PublishError(
                f"{context}: {error.get('message') or error.get('code')}",
                retryable=error.get("code") in RETRYABLE_CODES,
            )
        return data.get("data") or {}

    async def _upload(
        self,
        client: httpx.AsyncClient,
        video: Path,
        metadata: PublishMetadata,
        credentials: AccountCredentials,
    ) -> PublishResult:
        auth = {"Authorization": f"Bearer {credentials.access_token}"}
        file_size = video.stat().st_size
        chunk_size = max(1, min(UPLOAD_CHUNK_SIZE, file_size))
        total_chunks = max(1, (file_size + chunk_size - 1) // chunk_size)

        init_response = await client.post(
            TIKTOK_POST_INIT_URL,
            headers={**auth, "Content-Type": "application/json; charset=UTF-8"},
            json={
                "post_info": {
                    "title": self._post_title(metadata),
                    "privacy_level": "PUBLIC_TO_EVERYONE",
                    "disable_duet": False,
                    "disable_comment": False,
                    "disable_stitch": False,
                },
                "source_info": {
                    "source": "FILE_UPLOAD",
                    "video_size": file_size,
                    "chunk_size": chunk_size,
                    "total_chunk_count": total_chunks,
                },
            },
        )
        init_data = self._check_envelope(init_response, "TikTok upload init failed")

        upload_url = init_data.get("upload_url")
        publish_id = init_data.get("publish_id")
        if not upload_url or not publish_id:
            raise PublishError("TikTok returned no upload URL or publish id", retryable=False)

        logger.info("tiktok_upload_initialized", publish_id=publish_id, chunks=total_chunks)

        with open(video, "rb") as f:
            for chunk_num in range(total_chunks):
                chunk = f.read(chunk_size)
                start = chunk_num * chunk_size
                end = start + len(chunk) - 1
                upload_response = await client.put(
                    upload_url,
                    headers={
                        "Content-Type": "video/mp4",
                        "Content-Range": f"bytes {start}-{end}/{file_size}",
                    },
                    content=chunk,
                )
                if upload_response.status_code not in (200, 201, 206):
                    raise PublishError(
                        f"TikTok chunk {chunk_num + 1}/{total_chunks} upload failed: "
                        f"HTTP {upload_response.status_code}",
                        retryable=self._is_retryable(upload_response, None),
                    )

        remote_id = await self._wait_for_publish(client, publish_id, auth)
        logger.info("tiktok_video_published", publish_id=publish_id, post_id=remote_id)
        return PublishResult(remote_post_id=remote_id, url=None)

    async def _wait_for_publish(
        self, client: httpx.AsyncClient, publish_id: str, auth: dict[str, str]
    ) -> str:
        """Poll the publish status; returns the public post id when TikTok exposes one.

        The upload is complete by now and TikTok publishes it on its own, so poll
        failures and a slow status fall back to the publish id instead of failing.
        """
        for attempt in range(self.max_poll_attempts):
            try:
                response = await client.post(
                    TIKTOK_POST_STATUS_URL,
                    headers={**auth, "Content-Type": "application/json; charset=UTF-8"},
                    json={"publish_id": publish_id},
                )
            except httpx.HTTPError as e:
                logger.warning("tiktok_status_poll_failed", publish_id=publish_id, error=str(e))
                await asyncio.sleep(self.poll_interval)
                continue
            data = self._safe_json(response) or {}
            status_data = data.get("data") or {}
            status = status_data.get("status")

            if status == "PUBLISH_COMPLETE":
                post_ids = status_data.get("publicaly_available_post_id") or []
                return str(post_ids[0]) if post_ids else publish_id
            if status == "FAILED":
                raise PublishError(
                    f"TikTok processing failed: {status_data.get('fail_reason', 'unknown')}",
                    retryable=False,
                )

            logger.debug("tiktok_publish_pending", publish_id=publish_id, status=status, attempt=attempt + 1)
            await asyncio.sleep(self.poll_interval)

        logger.warning("tiktok_status_unconfirmed", publish_id=publish_id)
        return publish_id

    async def _fetch_metrics(
        self,
        client: httpx.AsyncClient,
        remote_post_id: str,
        credentials: AccountCredentials,
    ) -> MetricsSnapshot:
        response = await client.post(
            TIKTOK_VIDEO_QUERY_URL,
            params={"fields": "id,view_count,like_count,comment_count,share_count"},
            headers={"Authorization": f"Bearer {credentials.access_token}"},
            json={"filters": {"video_ids": [remote_post_id]}},
        )
        response.raise_for_status()

        videos = (response.json().get("data") or {}).get("videos") or []
        video = videos[0] if videos else {}
        views = int(video.get("view_count", 0))
        return MetricsSnapshot(
            views=views,
            likes=int(video.get("like_count", 0)),
            comments=int(video.get("comment_count", 0)),
            shares=int(video.get("share_count", 0)),
            impressions=views,
            reach=views,
        )

    async def _fetch_account_metrics(
        self,
        client: httpx.AsyncClient,
        credentials: AccountCredentials,
        start: date,
        end: date,
    ) -> MetricsSnapshot:
        # The Content Posting API has no account insights; those need a Business account
        return MetricsSnapshot(extra={"followers": 0})
