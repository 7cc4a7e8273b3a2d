"""
Unit tests for structured logging processors.
"""

from shared.logging.structured_logger import add_app_context, redact_secrets


class TestLogProcessors:
    """Test the custom structlog processors"""

    def test_tokens_are_redacted(self):
        event = redact_secrets(None, "info", {
            "event": "token_refreshed",
            "access_token": "ya29.secret",
            "refresh_token": "1//secret",
            "user_id": "u1",
        })

        assert event["access_token"] == "***REDACTED***"
        assert event["refresh_token"] == "***REDACTED***"
        assert event["user_id"] == "u1"

    def test_app_context_does_not_override_event_keys(self):
        event = add_app_context(None, "info", {"event": "x", "environment": "test"})

        assert event["app"] == "formtosheets-api"
        assert event["environment"] == "test"
