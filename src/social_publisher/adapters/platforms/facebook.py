"""Facebook Page adapter using Facebook Login and the Graph API.

The connected identity is the first Page the user manages; Page access tokens
derived from a user token do not expire, so they are never refreshed.
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
    insight_series,
    period_params,
)
from social_publisher.domain.enums import Platform
from social_publisher.domain.errors import OAuthExchangeError, PublishError, TokenRefreshError
from social_publisher.logging import get_logger

logger = get_logger(__name__)

GRAPH_API_VERSION = "v18.0"
FACEBOOK_DIALOG_URL = f"https://www.facebook.com/{GRAPH_API_VERSION}/dialog/oauth"
GRAPH_API_URL = f"https://graph.facebook.com/{GRAPH_API_VERSION}"
GRAPH_VIDEO_URL = f"https://graph-video.facebook.com/{GRAPH_API_VERSION}"

PAGE_METRICS = (
    "page_impressions",
    "page_impressions_unique",
    "page_engaged_users",
    "page_post_engagements",
    "page_fans",
    "page_video_views",
)


class FacebookAdapter(PlatformAdapter):
    """Facebook Page video adapter."""

    scopes: ClassVar[list[str]] = [
        "pages_show_list",
        "pages_read_engagement",
        "pages_manage_posts",
        "publish_video",
        "read_insights",
    ]
    long_lived_tokens: ClassVar[bool] = True

    @property
    def platform(self) -> Platform:
        return Platform.FACEBOOK

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
            user_token = self._oauth_json(response, "Facebook token exchange failed")["access_token"]

            pages_response = client.get(
                f"{GRAPH_API_URL}/me/accounts",
                params={
                    "access_token": user_token,
                    "fields": "id,name,access_token,picture",
                },
            )
            pages = self._oauth_json(pages_response, "Failed to list Facebook Pages").get("data") or []

        if not pages:
            raise OAuthExchangeError(
                "No Facebook Pages found. Publishing requires a Page you manage."
            )

        page = pages[0]
        picture = ((page.get("picture") or {}).get("data") or {}).get("url")

        logger.info("facebook_page_connected", page_id=page["id"], pages_available=len(pages))

        return TokenGrant(
            access_token=page["access_token"],
            refresh_token=None,
            expires_at=None,
            scopes=list(self.scopes),
            user=PlatformUser(
                id=page["id"],
                username=page.get("name"),
                display_name=page.get("name"),
                avatar_url=picture,
                extra={"page_count": len(pages)},
            ),
        )

    def refresh_access_token(self, credentials: AccountCredentials) -> RefreshedToken:
        raise TokenRefreshError(
            "Facebook Page tokens do not expire and cannot be refreshed; reconnect the account"
        )

    async def _upload(
        self,
        client: httpx.AsyncClient,
        video: Path,
        metadata: PublishMetadata,
        credentials: AccountCredentials,
    ) -> PublishResult:
        with open(video, "rb") as f:
            response = await client.post(
                f"{GRAPH_VIDEO_URL}/{credentials.platform_user_id}/videos",
                data={
                    "title": metadata.title,
                    "description": self._caption(metadata),
                    "access_token": credentials.access_token,
                },
                files={"source": (video.name, f, "video/mp4")},
            )
        data = self._publish_json(response, "Facebook video upload failed")

        video_id = data.get("id")
        if not video_id:
            raise PublishError("Facebook upload response had no video id", retryable=False)

        logger.info("facebook_video_uploaded", video_id=video_id)
        return PublishResult(
            remote_post_id=str(video_id),
            url=f"https://www.facebook.com/{credentials.platform_user_id}/videos/{video_id}",
            raw=data,
        )

    async def _fetch_metrics(
        self,
        client: httpx.AsyncClient,
        remote_post_id: str,
        credentials: AccountCredentials,
    ) -> MetricsSnapshot:
        response = await client.get(
            f"{GRAPH_API_URL}/{remote_post_id}",
            params={
                "fields": "views,likes.summary(true),comments.summary(true)",
                "access_token": credentials.access_token,
            },
        )
        response.raise_for_status()
        data: dict[str, Any] = response.json()

        views = int(data.get("views", 0))
        return MetricsSnapshot(
            views=views,
            likes=_summary_count(data, "likes"),
            comments=_summary_count(data, "comments"),
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
        response = await client.get(
            f"{GRAPH_API_URL}/{credentials.platform_user_id}/insights",
            params={
                "metric": ",".join(PAGE_METRICS),
                **period_params(start, end),
                "access_token": credentials.access_token,
            },
        )
        response.raise_for_status()
        series = insight_series(response.json())

        def total(name: str) -> int:
            return sum(series.get(name, []))

        fans = series.get("page_fans") or [0]
        return MetricsSnapshot(
            views=total("page_video_views"),
            impressions=total("page_impressions"),
            reach=total("page_impressions_unique"),
            extra={
                "followers": fans[-1],
                "engaged_users": total("page_engaged_users"),
                "engagements": total("page_post_engagements"),
            },
        )



def _summary_count(data: dict[str, Any], edge: str) -> int:
    """Total count from a Graph API ``edge.summary(true)`` field."""
    return int(((data.get(edge) or {}).get("summary") or {}).get("total_count", 0))
