"""
Shared fixtures for unit and contract tests.

No database or Google access is needed: repositories and the Google client
are replaced with mocks.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from api.src.config import Settings
from api.src.dependencies import limiter
from api.src.models.google import GoogleTokens


@pytest.fixture(autouse=True)
def disable_rate_limits():
    """Rate limiting is covered by slowapi itself."""
    previous = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = previous


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="development",
        google_client_id="client-id.apps.googleusercontent.com",
        google_client_secret="client-secret",
        supabase_jwt_secret="test-supabase-jwt-secret-with-32-plus-chars",
        resend_api_key=None,
        sheet_retry_max_attempts=3,
        sheet_retry_base_delay=1.0,
        sheet_retry_max_delay=10.0,
    )


@pytest.fixture
def google_tokens() -> GoogleTokens:
    return GoogleTokens(access_token="access-1", refresh_token="refresh-1")


@pytest.fixture
def passthrough_auth() -> Mock:
    """GoogleAuthService stand-in that runs operations with a fixed token."""

    async def with_connection(connection, operation):
        return await operation("access-1")

    async def with_user_tokens(user_id, tokens, operation):
        return await operation(tokens.access_token)

    auth = Mock()
    auth.call_with_connection = AsyncMock(side_effect=with_connection)
    auth.call_with_user_tokens = AsyncMock(side_effect=with_user_tokens)
    auth.get_user_tokens = AsyncMock(
        return_value=GoogleTokens(access_token="access-1", refresh_token="refresh-1")
    )
    return auth
