"""Threads adapter using Threads OAuth and the Threads Graph API.

Publishing mirrors Instagram: create a VIDEO container from a public URL, poll
its status, then call threads_publish.
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
from social_publisher.domain.errors import PublishError
from social_publisher.logging import get_logger

logger = get_logger(__name__)

THREADS_AUTH_URL = "https://threads.net/oauth/authorize"
THREADS_GRAPH_URL = "https://graph.threads.net"
THREADS_API_URL = f"{THREADS_GRAPH_URL}/v1.0"

PROFILE_METRICS = ("views", "likes", "replies", "reposts", "quotes", "followers_count")


class ThreadsAdapter(PlatformAdapter):
    """Threads profile adapter."""

    scopes: ClassVar[list[str]] = [
        "threads_basic",
        "threads_content_publish",
        "threads_manage_insights",
    ]

    @property
    def platform(self) -> Platform:
        return Platform.THREADS

    def build_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": ",".join(self.scopes),
            "response_type": "code",
            "state": state,
        }
        return f"{THREADS_AUTH_URL}?{urlencode(params)}"

    def exchange_code_for_token(self, code: str) -> TokenGrant:
        with self._client() as client:
            response = client.post(
                f"{THREADS_GRAPH_URL}/oauth/access_token",
                data={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.config.redirect_uri,
                    "code": code,
                },
            )
            short_lived = self._oauth_json(response, "Threads token exchange failed")

            long_response = client.get(
                f"{THREADS_GRAPH_URL}/access_token",
                params={
                    "grant_type": "th_exchange_token",
                    "client_secret": self.config.client_secret,
                    "access_token": short_lived["access_token"],
                },
            )
            data = self._oauth_json(long_response, "Threads long-lived token exchange failed")
            access_token = data["access_token"]

            profile_response = client.get(
                f"{THREADS_API_URL}/me",
                params={
                    "fields": "id,username,name,threads_profile_picture_url",
                    "access_token": access_token,
                },
            )
            profile = self._oauth_json(profile_response, "Failed to fetch Threads profile")

        user_id = str(profile.get("id") or short_lived.get("user_id"))
        logger.info("threads_account_connected", user_id=user_id)

        return TokenGrant(
            access_token=access_token,
            # Long-lived Threads tokens refresh themselves, so the token is its own refresh token
            refresh_token=access_token,
            expires_at=self._expires_at(data.get("expires_in")),
            scopes=list(self.scopes),
            user=PlatformUser(
                id=user_id,
                username=profile.get("username"),
                display_name=profile.get("name") or profile.get("username"),
                avatar_url=profile.get("threads_profile_picture_url"),
            ),
        )

    def refresh_access_token(self, credentials: AccountCredentials) -> RefreshedToken:
        with self._client() as client:
            response = client.get(
                f"{THREADS_GRAPH_URL}/refresh_access_token",
                params={
                    "grant_type": "th_refresh_token",
                    "access_token": credentials.refresh_token or credentials.access_token,
                },
            )
        data = self._refresh_json(response)
        return RefreshedToken(
            access_token=data["access_token"],
            refresh_token=data["access_token"],
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
        user_id = credentials.platform_user_id
        token = credentials.access_token

        container_response = await client.post(
            f"{THREADS_API_URL}/{user_id}/threads",
            params={
                "media_type": "VIDEO",
                "video_url": video_url,
                "text": self._caption(metadata),
                "access_token": token,
            },
        )
        container_id = self._publish_json(
            container_response, "Failed to create Threads container"
        ).get("id")
        if not container_id:
            raise PublishError("Threads returned no container id", retryable=False)

        await self._wait_for_container(client, container_id, token)

        publish_response = await client.post(
            f"{THREADS_API_URL}/{user_id}/threads_publish",
            params={"creation_id": container_id, "access_token": token},
        )
        media_id = self._publish_json(publish_response, "Threads publish failed").get("id")
        if not media_id:
            raise PublishError("Threads returned no media id", retryable=False)

        permalink = await self._permalink(client, f"{THREADS_API_URL}/{media_id}", token)

        logger.info("threads_post_published", media_id=media_id)
        return PublishResult(remote_post_id=str(media_id), url=permalink)

    async def _wait_for_container(
        self, client: httpx.AsyncClient, container_id: str, token: str
    ) -> None:
        for _ in range(self.max_poll_attempts):
            response = await client.get(
                f"{THREADS_API_URL}/{container_id}",
                params={"fields": "status,error_message", "access_token": token},
            )
            data = self._safe_json(response) or {}
            status = data.get("status")

            if status in ("FINISHED", "PUBLISHED"):
                return
            if status in ("ERROR", "EXPIRED"):
                raise PublishError(
                    f"Threads media processing failed: {data.get('error_message') or status}",
                    retryable=False,
                )
            await asyncio.sleep(self.poll_interval)

        raise PublishError("Threads media processing timed out", retryable=True)

    async def _fetch_metrics(
        self,
        client: httpx.AsyncClient,
        remote_post_id: str,
        credentials: AccountCredentials,
    ) -> MetricsSnapshot:
        response = await client.get(
            f"{THREADS_API_URL}/{remote_post_id}/insights",
            params={
                "metric": "views,likes,replies,reposts,quotes",
                "access_token": credentials.access_token,
            },
        )
        response.raise_for_status()
        values = parse_insights(response.json())

        views = values.get("views", 0)
        return MetricsSnapshot(
            views=views,
            likes=values.get("likes", 0),
            comments=values.get("replies", 0),
            shares=values.get("reposts", 0) + values.get("quotes", 0),
            impressions=views,
            reach=views,
            extra={"quotes": values.get("quotes", 0)},
        )

    async def _fetch_account_metrics(
        self,
        client: httpx.AsyncClient,
        credentials: AccountCredentials,
        start: date,
        end: date,
    ) -> MetricsSnapshot:
        response = await client.get(
            f"{THREADS_API_URL}/{credentials.platform_user_id}/threads_insights",
            params={
                "metric": ",".join(PROFILE_METRICS),
                **period_params(start, end),
                "access_token": credentials.access_token,
            },
        )
        if response.is_client_error:
            # Profile insights need an eligible account; report an empty period instead
            logger.warning(
                "threads_profile_insights_unavailable",
                status=response.status_code,
                error=self._error_message(self._safe_json(response), response.text[:200]),
            )
            return MetricsSnapshot(extra={"followers": 0})
        response.raise_for_status()
        series = insight_series(response.json())

        def total(name: str) -> int:
            return sum(series.get(name, []))

        followers = series.get("followers_count") or [0]
        views = total("views")
        return MetricsSnapshot(
            views=views,
            likes=total("likes"),
            comments=total("replies"),
            shares=total("reposts") + total("quotes"),
            impressions=views,
            reach=views,
            extra={"followers": followers[-1], "quotes": total("quotes")},
        )
