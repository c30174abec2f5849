"""Instagram adapter using Facebook Login and the Instagram Graph API.

Publishing Flow:
1. POST /{ig-user-id}/media - Create a REELS container from a public video URL
2. GET /{container-id}?fields=status_code - Poll until FINISHED
3. POST /{ig-user-id}/media_publish - Publish the container
"""

import asyncio
from datetime import date
from pathlib import Path
from typing import ClassVar
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
    insight_series,
    parse_insights,
    period_params,
)
from social_publisher.domain.enums import Platform
from social_publisher.domain.errors import OAuthExchangeError, PublishError
from social_publisher.logging import get_logger

logger = get_logger(__name__)

GRAPH_API_VERSION = "v18.0"
FACEBOOK_DIALOG_URL = f"https://www.facebook.com/{GRAPH_API_VERSION}/dialog/oauth"
GRAPH_API_URL = f"https://graph.facebook.com/{GRAPH_API_VERSION}"

ACCOUNT_METRICS = ("impressions", "reach", "profile_views", "website_clicks", "follower_count")


class InstagramAdapter(PlatformAdapter):
    """Instagram business account adapter (Reels)."""

    scopes: ClassVar[list[str]] = [
        "instagram_basic",
        "instagram_content_publish",
        "instagram_manage_insights",
        "pages_show_list",
        "pages_read_engagement",
    ]
    long_lived_tokens: ClassVar[bool] = True

    @property
    def platform(self) -> Platform:
        return Platform.INSTAGRAM

    def build_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "state": state,
            "scope": ",".join(self.scopes),
            "response_type": "code",
        }
        return f"{FACEBOOK_DIALOG_URL}?{urlencode(params)}"

    def exchange_code_for_token(self, code: str) -> TokenGrant:
        with self._client() as client:
            response = client.get(
                f"{GRAPH_API_URL}/oauth/access_token",
                params={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "redirect_uri": self.config.redirect_uri,
                    "code": code,
                },
            )
            short_lived = self._oauth_json(response, "Instagram token exchange failed")

            access_token = short_lived["access_token"]
            expires_in = short_lived.get("expires_in")

            # Upgrade to a ~60 day token; keep the short-lived one if Meta refuses
            long_response = client.get(
                f"{GRAPH_API_URL}/oauth/access_token",
                params={
                    "grant_type": "fb_exchange_token",
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "fb_exchange_token": access_token,
                },
            )
            long_lived = self._safe_json(long_response)
            if long_response.status_code == 200 and long_lived and long_lived.get("access_token"):
                access_token = long_lived["access_token"]
                expires_in = long_lived.get("expires_in", expires_in)
            else:
                logger.warning("instagram_long_lived_exchange_failed", status=long_response.status_code)

            pages_response = client.get(
                f"{GRAPH_API_URL}/me/accounts",
                params={
                    "access_token": access_token,
                    "fields": "id,name,instagram_business_account"
                    "{id,username,name,profile_picture_url}",
                },
            )
            pages = self._oauth_json(pages_response, "Failed to list Facebook Pages").get("data") or []

        page = next((p for p in pages if p.get("instagram_business_account")), None)
        if page is None:
            raise OAuthExchangeError(
                "No Instagram business account found. Link an Instagram professional "
                "account to a Facebook Page you manage."
            )

        ig = page["instagram_business_account"]
        logger.info("instagram_account_connected", ig_user_id=ig["id"], page_id=page["id"])

        return TokenGrant(
            access_token=access_token,
            refresh_token=None,
            expires_at=self._expires_at(expires_in),
            scopes=list(self.scopes),
            user=PlatformUser(
                id=ig["id"],
                username=ig.get("username"),
                display_name=ig.get("name") or ig.get("username"),
                avatar_url=ig.get("profile_picture_url"),
                extra={"page_id": page["id"], "page_name": page.get("name")},
            ),
        )

    def refresh_access_token(self, credentials: AccountCredentials) -> RefreshedToken:
        # A still-valid long-lived token can be exchanged for a fresh one
        with self._client() as client:
            response = client.get(
                f"{GRAPH_API_URL}/oauth/access_token",
                params={
                    "grant_type": "fb_exchange_token",
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "fb_exchange_token": credentials.access_token,
                },
            )
        data = self._refresh_json(response)
        return RefreshedToken(
            access_token=data["access_token"],
            expires_at=self._expires_at(data.get("expires_in")),
        )

    async def _upload(
        self,
        client: httpx.AsyncClient,
        video: Path,
        metadata: PublishMetadata,
        credentials: AccountCredentials,
    ) -> PublishResult:
        video_url = self._require_public_url(metadata, self.platform)
        ig_user_id = credentials.platform_user_id
        token = credentials.access_token

        container_response = await client.post(
            f"{GRAPH_API_URL}/{ig_user_id}/media",
            params={
                "media_type": "REELS",
                "video_url": video_url,
                "caption": self._caption(metadata),
                "access_token": token,
            },
        )
        container_id = self._publish_json(
            container_response, "Failed to create Instagram media container"
        ).get("id")
        if not container_id:
            raise PublishError("Instagram returned no container id", retryable=False)

        logger.info("instagram_container_created", container_id=container_id)
        await self._wait_for_container(client, container_id, token)

        publish_response = await client.post(
            f"{GRAPH_API_URL}/{ig_user_id}/media_publish",
            params={"creation_id": container_id, "access_token": token},
        )
        media_id = self._publish_json(publish_response, "Instagram media_publish failed").get("id")
        if not media_id:
            raise PublishError("Instagram returned no media id", retryable=False)

        permalink = await self._permalink(client, f"{GRAPH_API_URL}/{media_id}", token)
        logger.info("instagram_reel_published", media_id=media_id)
        return PublishResult(remote_post_id=str(media_id), url=permalink)

    async def _wait_for_container(
        self, client: httpx.AsyncClient, container_id: str, token: str
    ) -> None:
        """Poll a media container until Instagram finishes processing it."""
        for attempt in range(self.max_poll_attempts):
            response = await client.get(
                f"{GRAPH_API_URL}/{container_id}",
                params={"fields": "status_code,status", "access_token": token},
            )
            data = self._safe_json(response) or {}
            status_code = data.get("status_code")

            if status_code == "FINISHED":
                return
            if status_code == "ERROR":
                raise PublishError(
                    f"Instagram media processing failed: {data.get('status')}",
                    retryable=False,
                )

            logger.debug("instagram_container_pending", container_id=container_id, attempt=attempt + 1)
            await asyncio.sleep(self.poll_interval)

        raise PublishError("Instagram media processing timed out", retryable=True)

    async def _fetch_metrics(
        self,
        client: httpx.AsyncClient,
        remote_post_id: str,
        credentials: AccountCredentials,
    ) -> MetricsSnapshot:
        response = await client.get(
            f"{GRAPH_API_URL}/{remote_post_id}/insights",
            params={
                "metric": "views,likes,comments,shares,reach",
                "access_token": credentials.access_token,
            },
        )
        response.raise_for_status()
        values = parse_insights(response.json())

        return MetricsSnapshot(
            views=values.get("views", 0),
            likes=values.get("likes", 0),
            comments=values.get("comments", 0),
            shares=values.get("shares", 0),
            impressions=values.get("views", 0),
            reach=values.get("reach", 0),
        )


    async def _fetch_account_metrics(
        self,
        client: httpx.AsyncClient,
        credentials: AccountCredentials,
        start: date,
        end: date,
    ) -> MetricsSnapshot:
        response = await client.get(
            f"{GRAPH_API_URL}/{credentials.platform_user_id}/insights",
            params={
                "metric": ",".join(ACCOUNT_METRICS),
                "period": "day",
                **period_params(start, end),
                "access_token": credentials.access_token,
            },
        )
        response.raise_for_status()
        series = insight_series(response.json())

        followers = series.get("follower_count") or [0]
        return MetricsSnapshot(
            impressions=sum(series.get("impressions", [])),
            reach=sum(series.get("reach", [])),
            extra={
                "followers": followers[-1],
                "profile_views": sum(series.get("profile_views", [])),
                "website_clicks": sum(series.get("website_clicks", [])),
            },
        )
