"""Tests for log event redaction."""

from social_publisher.logging import REDACTED, redact_secrets


def test_credentials_are_redacted() -> None:
    """Test that token values never reach the renderer."""
    event = redact_secrets(
        None,
        "info",
        {
            "event": "token_refreshed",
            "account_id": "a-1",
            "access_token": "ya29.secret",
            "refresh_token": None,
            "params": {"client_secret": "s3cret", "grant_type": "refresh_token"},
        },
    )

    assert event["access_token"] == REDACTED
    assert event["refresh_token"] is None
    assert event["params"] == {"client_secret": REDACTED, "grant_type": "refresh_token"}
    assert event["account_id"] == "a-1"
    assert event["event"] == "token_refreshed"
