"""Tests for the social platform adapters against mocked HTTP APIs."""

import json
from collections.abc import Callable
from datetime import date, datetime, timezone
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from social_publisher.adapters.platforms import (
    AccountCredentials,
    FacebookAdapter,
    InstagramAdapter,
    PublishMetadata,
    TikTokAdapter,
    YouTubeAdapter,
    adapter_class,
    get_adapter,
    resolve_platform,
)
from social_publisher.domain.enums import Platform
from social_publisher.domain.errors import (
    OAuthExchangeError,
    PublishError,
    TokenRefreshError,
    UnsupportedPlatformError,
)

Handler = Callable[[httpx.Request], httpx.Response]

# Whole UTC days 2026-10-01 and 2026-10-02
PERIOD_SINCE = int(datetime(2026, 10, 1, tzinfo=timezone.utc).timestamp())
PERIOD_UNTIL = int(datetime(2026, 10, 3, tzinfo=timezone.utc).timestamp())


def adapter_for(platform: str, handler: Handler, requests: list[httpx.Request] | None = None):
    """Build a configured adapter whose HTTP calls go to ``handler``."""

    def recording(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    adapter = get_adapter(platform, transport=httpx.MockTransport(recording))
    adapter.poll_interval = 0
    return adapter


def credentials(**overrides: object) -> AccountCredentials:
    values: dict = {"platform_user_id": "user-1", "access_token": "access", "refresh_token": "refresh"}
    values.update(overrides)
    return AccountCredentials(**values)


def insight(name: str, *values: int) -> dict:
    """One metric of a Meta Graph insights response with a value per day."""
    return {"name": name, "period": "day", "values": [{"value": value} for value in values]}


@pytest.fixture
def video_file(tmp_path: Path) -> Path:
    """A small video file on disk."""
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64)
    return path


class TestRegistry:
    """Tests for adapter lookup."""

    def test_every_platform_has_an_adapter(self) -> None:
        """Test that lookup is total over the platform enum."""
        for platform in Platform:
            adapter = get_adapter(platform)
            assert adapter.platform == platform

    def test_config_comes_from_settings(self) -> None:
        """Test that client credentials and redirect URI come from configuration."""
        adapter = get_adapter("tiktok")

        assert isinstance(adapter, TikTokAdapter)
        assert adapter.config.client_id == "tt-key"
        assert adapter.config.client_secret == "tt-secret"
        assert adapter.config.redirect_uri == "http://localhost:8000/api/v1/connect/tiktok/callback"

    def test_unknown_platform(self) -> None:
        """Test that unknown platform names fail fast."""
        with pytest.raises(UnsupportedPlatformError, match="vine"):
            resolve_platform("vine")
        with pytest.raises(UnsupportedPlatformError):
            adapter_class("vine")


class TestYouTubeAdapter:
    """Tests for YouTube OAuth and uploads."""

    def test_authorization_url(self) -> None:
        """Test the Google consent URL."""
        url = get_adapter("youtube").build_authorization_url("state-123")

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert parsed.netloc == "accounts.google.com"
        assert params["client_id"] == ["yt-client"]
        assert params["state"] == ["state-123"]
        assert params["access_type"] == ["offline"]
        assert "https://www.googleapis.com/auth/youtube.upload" in params["scope"][0]

    def test_exchange_code(self) -> None:
        """Test exchanging a code for tokens and the channel identity."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "oauth2.googleapis.com":
                return httpx.Response(
                    200,
                    json={
                        "access_token": "ya29.token",
                        "refresh_token": "1//refresh",
                        "expires_in": 3599,
                        "scope": "scope-a scope-b",
                    },
                )
            assert request.url.path == "/youtube/v3/channels"
            assert request.headers["Authorization"] == "Bearer ya29.token"
            return httpx.Response(
                200,
                json={
                    "items": [
                        {
                            "id": "UC123",
                            "snippet": {
                                "title": "My Channel",
                                "customUrl": "@mychannel",
                                "thumbnails": {"default": {"url": "https://yt.example/avatar.jpg"}},
                            },
                        }
                    ]
                },
            )

        grant = adapter_for("youtube", handler).exchange_code_for_token("auth-code")

        assert grant.access_token == "ya29.token"
        assert grant.refresh_token == "1//refresh"
        assert grant.expires_at is not None
        assert grant.scopes == ["scope-a", "scope-b"]
        assert grant.user.id == "UC123"
        assert grant.user.username == "@mychannel"
        assert grant.user.display_name == "My Channel"
        assert grant.user.avatar_url == "https://yt.example/avatar.jpg"

    def test_exchange_without_channel(self) -> None:
        """Test a Google account that has no YouTube channel."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "oauth2.googleapis.com":
                return httpx.Response(200, json={"access_token": "ya29.token"})
            return httpx.Response(200, json={"items": []})

        with pytest.raises(OAuthExchangeError, match="No YouTube channel"):
            adapter_for("youtube", handler).exchange_code_for_token("auth-code")

    def test_exchange_rejected_code(self) -> None:
        """Test an invalid authorization code."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Bad Request"})

        with pytest.raises(OAuthExchangeError, match="Bad Request"):
            adapter_for("youtube", handler).exchange_code_for_token("expired-code")

    def test_refresh(self) -> None:
        """Test a successful refresh that does not rotate the refresh token."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "ya29.new", "expires_in": 3599})

        refreshed = adapter_for("youtube", handler, requests).refresh_access_token(credentials())

        assert refreshed.access_token == "ya29.new"
        assert refreshed.refresh_token is None
        assert refreshed.expires_at is not None
        body = parse_qs(requests[0].content.decode())
        assert body["grant_type"] == ["refresh_token"]
        assert body["refresh_token"] == ["refresh"]

    def test_refresh_rejected(self) -> None:
        """Test that a revoked refresh token raises TokenRefreshError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Token has been revoked."})

        with pytest.raises(TokenRefreshError, match="revoked"):
            adapter_for("youtube", handler).refresh_access_token(credentials())

    def test_refresh_outage_is_transient(self) -> None:
        """Test that a provider outage surfaces as an HTTP error, not a rejection."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        with pytest.raises(httpx.HTTPStatusError):
            adapter_for("youtube", handler).refresh_access_token(credentials())

    def test_refresh_without_refresh_token(self) -> None:
        """Test that an account without a refresh token must reconnect."""
        with pytest.raises(TokenRefreshError, match="No refresh token"):
            get_adapter("youtube").refresh_access_token(credentials(refresh_token=None))

    @pytest.mark.asyncio
    async def test_publish(self, video_file: Path) -> None:
        """Test the resumable upload flow."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, headers={"Location": "https://upload.example/session-1"})
            assert str(request.url) == "https://upload.example/session-1"
            return httpx.Response(200, json={"id": "vid-1"})

        adapter = adapter_for("youtube", handler, requests)
        metadata = PublishMetadata(title="My video", description="Watch this", hashtags=["travel", "vlog"])

        result = await adapter.publish(video_file, metadata, credentials())

        assert result.remote_post_id == "vid-1"
        assert result.url == "https://www.youtube.com/watch?v=vid-1"
        resource = json.loads(requests[0].content)
        assert resource["snippet"]["title"] == "My video"
        assert resource["snippet"]["description"] == "Watch this\n\n#travel #vlog"
        assert resource["snippet"]["tags"] == ["travel", "vlog"]
        assert resource["status"]["privacyStatus"] == "public"
        assert requests[1].content == video_file.read_bytes()

    @pytest.mark.asyncio
    async def test_quota_error_is_retryable(self, video_file: Path) -> None:
        """Test that quota exhaustion is classified as retryable."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                403,
                json={
                    "error": {
                        "code": 403,
                        "message": "The request cannot be completed because you have exceeded your quota.",
                        "errors": [{"reason": "quotaExceeded"}],
                    }
                },
            )

        with pytest.raises(PublishError, match="exceeded your quota") as exc_info:
            await adapter_for("youtube", handler).publish(video_file, PublishMetadata(title="T"), credentials())

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_invalid_request_is_permanent(self, video_file: Path) -> None:
        """Test that a rejected video is not retried."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={"error": {"message": "Invalid title", "errors": [{"reason": "invalidTitle"}]}},
            )

        with pytest.raises(PublishError) as exc_info:
            await adapter_for("youtube", handler).publish(video_file, PublishMetadata(title="T"), credentials())

        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_network_error_is_retryable(self, video_file: Path) -> None:
        """Test that transport failures are retryable."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PublishError, match="request failed") as exc_info:
            await adapter_for("youtube", handler).publish(video_file, PublishMetadata(title="T"), credentials())

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_missing_video_is_permanent(self, tmp_path: Path) -> None:
        """Test that a missing file fails without any HTTP call."""
        with pytest.raises(PublishError, match="not found") as exc_info:
            await get_adapter("youtube").publish(tmp_path / "gone.mp4", PublishMetadata(title="T"), credentials())

        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_thumbnail_failure_keeps_published_video(self, video_file: Path, tmp_path: Path) -> None:
        """Test that a thumbnail error after the upload does not fail the publish."""
        thumbnail = tmp_path / "cover.jpg"
        thumbnail.write_bytes(b"jpeg")
        uploads: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/thumbnails/set"):
                raise httpx.ConnectError("connection reset", request=request)
            if request.method == "POST":
                return httpx.Response(200, headers={"Location": "https://upload.example/session-1"})
            uploads.append(request)
            return httpx.Response(200, json={"id": "vid-1"})

        metadata = PublishMetadata(title="T", thumbnail_path=thumbnail)

        result = await adapter_for("youtube", handler).publish(video_file, metadata, credentials())

        assert result.remote_post_id == "vid-1"
        assert len(uploads) == 1

    @pytest.mark.asyncio
    async def test_fetch_metrics(self) -> None:
        """Test reading video statistics."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["id"] == "vid-1"
            return httpx.Response(
                200,
                json={"items": [{"statistics": {"viewCount": "1500", "likeCount": "120", "commentCount": "8"}}]},
            )

        snapshot = await adapter_for("youtube", handler).fetch_post_metrics("vid-1", credentials())

        assert snapshot.views == 1500
        assert snapshot.likes == 120
        assert snapshot.comments == 8
        assert snapshot.reach == 1500


    @pytest.mark.asyncio
    async def test_fetch_account_metrics_sums_days(self) -> None:
        """Test that channel analytics rows are summed over the period."""
        headers = ["day", "views", "estimatedMinutesWatched", "subscribersGained", "subscribersLost"]
        headers += ["likes", "comments", "shares"]

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.host == "youtubeanalytics.googleapis.com"
            assert request.url.params["ids"] == "channel==MINE"
            assert request.url.params["startDate"] == "2026-10-01"
            assert request.url.params["endDate"] == "2026-10-02"
            assert request.url.params["dimensions"] == "day"
            return httpx.Response(
                200,
                json={
                    "columnHeaders": [{"name": name} for name in headers],
                    "rows": [
                        ["2026-10-01", 100, 30, 5, 1, 10, 2, 1],
                        ["2026-10-02", 50, 10, 2, 0, 5, 1, 0],
                    ],
                },
            )

        snapshot = await adapter_for("youtube", handler).fetch_account_metrics(
            credentials(), date(2026, 10, 1), date(2026, 10, 2)
        )

        assert snapshot.views == 150
        assert snapshot.likes == 15
        assert snapshot.comments == 3
        assert snapshot.shares == 1
        assert snapshot.impressions == 150
        assert snapshot.extra == {"watch_time_seconds": 2400, "subscribers_gained": 7, "subscribers_lost": 1}

    @pytest.mark.asyncio
    async def test_fetch_account_metrics_without_rows(self) -> None:
        """Test a channel with no activity in the period."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"columnHeaders": [{"name": "day"}, {"name": "views"}]})

        snapshot = await adapter_for("youtube", handler).fetch_account_metrics(
            credentials(), date(2026, 10, 1), date(2026, 10, 1)
        )

        assert snapshot.views == 0
        assert snapshot.extra["subscribers_gained"] == 0


class TestFacebookAdapter:
    """Tests for Facebook Page connections."""

    def test_long_lived_tokens(self) -> None:
        """Test that Page tokens are flagged as long-lived."""
        assert FacebookAdapter.long_lived_tokens is True
        assert YouTubeAdapter.long_lived_tokens is False

    def test_exchange_uses_first_page(self) -> None:
        """Test that the connected identity is the first managed Page."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/oauth/access_token"):
                return httpx.Response(200, json={"access_token": "user-token"})
            assert request.url.path.endswith("/me/accounts")
            assert request.url.params["access_token"] == "user-token"
            return httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "id": "page-1",
                            "name": "My Page",
                            "access_token": "page-token",
                            "picture": {"data": {"url": "https://fb.example/p.jpg"}},
                        },
                        {"id": "page-2", "name": "Other", "access_token": "other-token"},
                    ]
                },
            )

        grant = adapter_for("facebook", handler).exchange_code_for_token("code")

        assert grant.access_token == "page-token"
        assert grant.refresh_token is None
        assert grant.expires_at is None
        assert grant.user.id == "page-1"
        assert grant.user.avatar_url == "https://fb.example/p.jpg"
        assert grant.user.extra == {"page_count": 2}

    def test_exchange_without_pages(self) -> None:
        """Test a user who manages no Pages."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/oauth/access_token"):
                return httpx.Response(200, json={"access_token": "user-token"})
            return httpx.Response(200, json={"data": []})

        with pytest.raises(OAuthExchangeError, match="No Facebook Pages"):
            adapter_for("facebook", handler).exchange_code_for_token("code")

    def test_refresh_not_supported(self) -> None:
        """Test that Page tokens cannot be refreshed."""
        with pytest.raises(TokenRefreshError, match="reconnect"):
            get_adapter("facebook").refresh_access_token(credentials())

    @pytest.mark.asyncio
    async def test_fetch_page_insights(self) -> None:
        """Test that Page insights are summed and the fan count is the latest value."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/page-1/insights")
            assert request.url.params["since"] == str(PERIOD_SINCE)
            assert request.url.params["until"] == str(PERIOD_UNTIL)
            assert "page_fans" in request.url.params["metric"]
            data = [
                insight("page_impressions", 100, 200),
                insight("page_impressions_unique", 60, 90),
                insight("page_engaged_users", 5, 6),
                insight("page_post_engagements", 7, 8),
                insight("page_fans", 1000, 1010),
                insight("page_video_views", 40, 10),
            ]
            return httpx.Response(200, json={"data": data})

        snapshot = await adapter_for("facebook", handler).fetch_account_metrics(
            credentials(platform_user_id="page-1"), date(2026, 10, 1), date(2026, 10, 2)
        )

        assert snapshot.impressions == 300
        assert snapshot.reach == 150
        assert snapshot.views == 50
        assert snapshot.extra == {"followers": 1010, "engaged_users": 11, "engagements": 15}

    @pytest.mark.asyncio
    async def test_fetch_page_insights_error_raises(self) -> None:
        """Test that an insights API failure surfaces for the task to retry."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": {"message": "Service unavailable"}})

        with pytest.raises(httpx.HTTPStatusError):
            await adapter_for("facebook", handler).fetch_account_metrics(
                credentials(platform_user_id="page-1"), date(2026, 10, 1), date(2026, 10, 2)
            )


class TestInstagramAdapter:
    """Tests for Instagram Reels publishing."""

    @pytest.mark.asyncio
    async def test_requires_public_video_url(self, video_file: Path) -> None:
        """Test that publishing without a public URL fails permanently."""
        adapter = get_adapter("instagram")

        with pytest.raises(PublishError, match="PUBLIC_MEDIA_BASE_URL") as exc_info:
            await adapter.publish(video_file, PublishMetadata(title="T"), credentials())

        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_publish_container_flow(self, video_file: Path) -> None:
        """Test container creation, polling and publish."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/ig-1/media"):
                return httpx.Response(200, json={"id": "container-1"})
            if path.endswith("/container-1"):
                return httpx.Response(200, json={"status_code": "FINISHED"})
            if path.endswith("/ig-1/media_publish"):
                return httpx.Response(200, json={"id": "media-1"})
            if path.endswith("/media-1"):
                return httpx.Response(200, json={"permalink": "https://www.instagram.com/reel/abc/"})
            return httpx.Response(404)

        adapter = adapter_for("instagram", handler, requests)
        metadata = PublishMetadata(
            title="T",
            description="Sunset",
            hashtags=["beach"],
            video_url="https://cdn.example.com/clip.mp4",
        )

        result = await adapter.publish(video_file, metadata, credentials(platform_user_id="ig-1"))

        assert result.remote_post_id == "media-1"
        assert result.url == "https://www.instagram.com/reel/abc/"
        assert requests[0].url.params["media_type"] == "REELS"
        assert requests[0].url.params["video_url"] == "https://cdn.example.com/clip.mp4"
        assert requests[0].url.params["caption"] == "Sunset\n\n#beach"

    @pytest.mark.asyncio
    async def test_permalink_failure_keeps_published_reel(self, video_file: Path) -> None:
        """Test that a failed permalink lookup after media_publish still reports success."""
        publishes: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/ig-1/media"):
                return httpx.Response(200, json={"id": "container-1"})
            if path.endswith("/container-1"):
                return httpx.Response(200, json={"status_code": "FINISHED"})
            if path.endswith("/ig-1/media_publish"):
                publishes.append(request)
                return httpx.Response(200, json={"id": "media-1"})
            raise httpx.ReadTimeout("timed out", request=request)

        metadata = PublishMetadata(title="T", video_url="https://cdn.example.com/clip.mp4")

        result = await adapter_for("instagram", handler).publish(
            video_file, metadata, credentials(platform_user_id="ig-1")
        )

        assert result.remote_post_id == "media-1"
        assert result.url is None
        assert len(publishes) == 1

    @pytest.mark.asyncio
    async def test_processing_error_is_permanent(self, video_file: Path) -> None:
        """Test that a container processing error fails without retry."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"id": "container-1"})
            return httpx.Response(200, json={"status_code": "ERROR", "status": "Unsupported format"})

        metadata = PublishMetadata(title="T", video_url="https://cdn.example.com/clip.mp4")

        with pytest.raises(PublishError, match="Unsupported format") as exc_info:
            await adapter_for("instagram", handler).publish(
                video_file, metadata, credentials(platform_user_id="ig-1")
            )

        assert exc_info.value.retryable is False
        assert isinstance(get_adapter("instagram"), InstagramAdapter)

    @pytest.mark.asyncio
    async def test_fetch_account_insights(self) -> None:
        """Test daily account insights for an Instagram professional account."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/ig-1/insights")
            assert request.url.params["period"] == "day"
            assert request.url.params["since"] == str(PERIOD_SINCE)
            data = [
                insight("impressions", 400, 600),
                insight("reach", 300, 350),
                insight("profile_views", 12, 8),
                insight("website_clicks", 1, 2),
                insight("follower_count", 3, 4),
            ]
            return httpx.Response(200, json={"data": data})

        snapshot = await adapter_for("instagram", handler).fetch_account_metrics(
            credentials(platform_user_id="ig-1"), date(2026, 10, 1), date(2026, 10, 2)
        )

        assert snapshot.impressions == 1000
        assert snapshot.reach == 650
        assert snapshot.extra == {"followers": 4, "profile_views": 20, "website_clicks": 3}


class TestTikTokAdapter:
    """Tests for TikTok direct posting."""

    def test_authorization_url_uses_client_key(self) -> None:
        """Test that TikTok gets client_key rather than client_id."""
        params = parse_qs(urlparse(get_adapter("tiktok").build_authorization_url("s")).query)

        assert params["client_key"] == ["tt-key"]
        assert "client_id" not in params
        assert "video.publish" in params["scope"][0]

    @pytest.mark.asyncio
    async def test_publish(self, video_file: Path) -> None:
        """Test init, chunk upload and status polling."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/post/publish/video/init/"):
                return httpx.Response(
                    200,
                    json={
                        "data": {"upload_url": "https://upload.tiktok.example/u1", "publish_id": "pub-1"},
                        "error": {"code": "ok"},
                    },
                )
            if request.method == "PUT":
                return httpx.Response(201)
            return httpx.Response(
                200,
                json={"data": {"status": "PUBLISH_COMPLETE", "publicaly_available_post_id": [7321]}},
            )

        adapter = adapter_for("tiktok", handler, requests)

        result = await adapter.publish(
            video_file, PublishMetadata(title="Dance", hashtags=["fyp"]), credentials()
        )

        assert result.remote_post_id == "7321"
        init = json.loads(requests[0].content)
        assert init["post_info"]["title"] == "Dance\n\n#fyp"
        assert init["source_info"]["video_size"] == video_file.stat().st_size
        size = video_file.stat().st_size
        assert requests[1].headers["Content-Range"] == f"bytes 0-{size - 1}/{size}"

    @pytest.mark.asyncio
    async def test_status_poll_failure_keeps_uploaded_video(self, video_file: Path) -> None:
        """Test that status polling errors after the upload do not trigger a second upload."""
        uploads: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/post/publish/video/init/"):
                return httpx.Response(
                    200,
                    json={"data": {"upload_url": "https://upload.tiktok.example/u1", "publish_id": "pub-1"}},
                )
            if request.method == "PUT":
                uploads.append(request)
                return httpx.Response(201)
            raise httpx.ConnectError("connection reset", request=request)

        adapter = adapter_for("tiktok", handler)
        adapter.max_poll_attempts = 2

        result = await adapter.publish(video_file, PublishMetadata(title="T"), credentials())

        assert result.remote_post_id == "pub-1"
        assert len(uploads) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable(self, video_file: Path) -> None:
        """Test that TikTok rate limiting is retryable."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                429, json={"error": {"code": "rate_limit_exceeded", "message": "Too many requests"}}
            )

        with pytest.raises(PublishError) as exc_info:
            await adapter_for("tiktok", handler).publish(video_file, PublishMetadata(title="T"), credentials())

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_account_metrics_are_empty(self) -> None:
        """Test that TikTok accounts report no insights and make no request."""
        requests: list[httpx.Request] = []

        adapter = adapter_for("tiktok", lambda request: httpx.Response(500), requests)

        snapshot = await adapter.fetch_account_metrics(credentials(), date(2026, 10, 1), date(2026, 10, 2))

        assert snapshot.impressions == 0
        assert snapshot.extra == {"followers": 0}
        assert requests == []


class TestThreadsAdapter:
    """Tests for Threads video posts."""

    @pytest.mark.asyncio
    async def test_permalink_failure_keeps_published_post(self, video_file: Path) -> None:
        """Test that a failed permalink lookup after threads_publish still reports success."""
        publishes: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/th-1/threads"):
                return httpx.Response(200, json={"id": "container-1"})
            if path.endswith("/container-1"):
                return httpx.Response(200, json={"status": "FINISHED"})
            if path.endswith("/th-1/threads_publish"):
                publishes.append(request)
                return httpx.Response(200, json={"id": "thread-1"})
            raise httpx.ConnectError("connection reset", request=request)

        metadata = PublishMetadata(
            title="T", description="Morning run", video_url="https://cdn.example.com/clip.mp4"
        )

        result = await adapter_for("threads", handler).publish(
            video_file, metadata, credentials(platform_user_id="th-1")
        )

        assert result.remote_post_id == "thread-1"
        assert result.url is None
        assert len(publishes) == 1

    @pytest.mark.asyncio
    async def test_fetch_metrics(self) -> None:
        """Test reading post insights, with quotes counted as shares."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/thread-1/insights")
            data = [
                insight("views", 900),
                insight("likes", 40),
                insight("replies", 6),
                insight("reposts", 3),
                insight("quotes", 2),
            ]
            return httpx.Response(200, json={"data": data})

        snapshot = await adapter_for("threads", handler).fetch_post_metrics("thread-1", credentials())

        assert snapshot.views == 900
        assert snapshot.comments == 6
        assert snapshot.shares == 5
        assert snapshot.extra == {"quotes": 2}

    @pytest.mark.asyncio
    async def test_fetch_profile_insights(self) -> None:
        """Test profile insights, with the follower count given as a total value."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/th-1/threads_insights")
            assert request.url.params["until"] == str(PERIOD_UNTIL)
            data = [
                insight("views", 500, 700),
                insight("likes", 20, 30),
                insight("replies", 4, 6),
                insight("reposts", 1, 2),
                insight("quotes", 1, 0),
                {"name": "followers_count", "total_value": {"value": 321}},
            ]
            return httpx.Response(200, json={"data": data})

        snapshot = await adapter_for("threads", handler).fetch_account_metrics(
            credentials(platform_user_id="th-1"), date(2026, 10, 1), date(2026, 10, 2)
        )

        assert snapshot.views == 1200
        assert snapshot.likes == 50
        assert snapshot.comments == 10
        assert snapshot.shares == 4
        assert snapshot.impressions == 1200
        assert snapshot.extra == {"followers": 321, "quotes": 1}

    @pytest.mark.asyncio
    async def test_profile_insights_unavailable(self) -> None:
        """Test that an account without insights access reports an empty period."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "Insights not available"}})

        snapshot = await adapter_for("threads", handler).fetch_account_metrics(
            credentials(platform_user_id="th-1"), date(2026, 10, 1), date(2026, 10, 2)
        )

        assert snapshot.views == 0
        assert snapshot.extra == {"followers": 0}
