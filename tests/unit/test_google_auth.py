"""
Unit tests for Google OAuth token refresh and persistence.

Tests cover:
- Expiry buffer detection
- Refresh through google-auth credentials
- Persistence of refreshed user and connection tokens
- Deactivation of connections whose refresh token is rejected
- Single refresh-and-retry on 401 for tokens without a known expiry
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch
from uuid import uuid4

import pytest
from google.auth.exceptions import RefreshError

from api.src.models.google import GoogleTokens, UserGoogleTokens
from api.src.services.google_auth import RECONNECT_MESSAGE, GoogleAuthService
from api.src.utils.error_handler import GoogleAPIError, GoogleConfigurationError, TokenRefreshError
from tests.factories import make_connection

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def token_repo():
    return AsyncMock()


@pytest.fixture
def connection_repo():
    return AsyncMock()


@pytest.fixture
def auth(settings, token_repo, connection_repo):
    return GoogleAuthService(settings, token_repo, connection_repo)


def refreshed_tokens() -> GoogleTokens:
    return GoogleTokens(
        access_token="access-2",
        refresh_token="refresh-1",
        expires_at=NOW + timedelta(hours=1),
    )


class TestNeedsRefresh:
    """Test the 60 second refresh buffer"""

    def test_inside_buffer(self):
        tokens = GoogleTokens(access_token="a", expires_at=NOW + timedelta(seconds=30))
        assert tokens.needs_refresh(60, now=NOW)

    def test_outside_buffer(self):
        tokens = GoogleTokens(access_token="a", expires_at=NOW + timedelta(seconds=120))
        assert not tokens.needs_refresh(60, now=NOW)

    def test_unknown_expiry(self):
        assert not GoogleTokens(access_token="a").needs_refresh(60, now=NOW)

    def test_naive_expiry_treated_as_utc(self):
        tokens = GoogleTokens(access_token="a", expires_at=datetime(2024, 5, 1, 12, 0, 30))
        assert tokens.needs_refresh(60, now=NOW)


class TestRefreshTokens:
    """Test the google-auth exchange"""

    @pytest.mark.asyncio
    async def test_keeps_old_refresh_token(self, auth):
        credentials = Mock()
        credentials.token = "access-2"
        credentials.refresh_token = None
        credentials.expiry = datetime(2024, 5, 1, 13, 0, 0)

        with patch("api.src.services.google_auth.Credentials", return_value=credentials) as factory:
            result = await auth.refresh_tokens(GoogleTokens(access_token="a", refresh_token="keep-me"))

        assert result.access_token == "access-2"
        assert result.refresh_token == "keep-me"
        assert result.expires_at == datetime(2024, 5, 1, 13, 0, 0, tzinfo=timezone.utc)
        credentials.refresh.assert_called_once()
        assert factory.call_args.kwargs["client_id"] == "client-id.apps.googleusercontent.com"

    @pytest.mark.asyncio
    async def test_google_rejection_becomes_token_refresh_error(self, auth):
        with patch.object(auth, "_refresh_sync", side_effect=RefreshError("invalid_grant")):
            with pytest.raises(TokenRefreshError):
                await auth.refresh_tokens(GoogleTokens(access_token="a", refresh_token="r"))

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self, auth):
        with pytest.raises(TokenRefreshError):
            await auth.refresh_tokens(GoogleTokens(access_token="a"))

    @pytest.mark.asyncio
    async def test_missing_client_credentials(self, settings, token_repo, connection_repo):
        settings.google_client_id = None
        service = GoogleAuthService(settings, token_repo, connection_repo)

        with pytest.raises(GoogleConfigurationError):
            await service.refresh_tokens(GoogleTokens(access_token="a", refresh_token="r"))


class TestUserTokens:
    """Test user token lookup and persistence"""

    @pytest.mark.asyncio
    async def test_expiring_tokens_are_refreshed_and_stored(self, auth, token_repo):
        user_id = uuid4()
        token_repo.get_tokens.return_value = UserGoogleTokens(
            user_id=user_id,
            access_token="access-1",
            refresh_token="refresh-1",
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=10),
        )

        with patch.object(auth, "refresh_tokens", AsyncMock(return_value=refreshed_tokens())):
            tokens = await auth.get_user_tokens(user_id)

        assert tokens.access_token == "access-2"
        token_repo.update_tokens.assert_awaited_once_with(user_id, refreshed_tokens())

    @pytest.mark.asyncio
    async def test_valid_tokens_are_used_as_is(self, auth, token_repo):
        user_id = uuid4()
        token_repo.get_tokens.return_value = UserGoogleTokens(
            user_id=user_id,
            access_token="access-1",
            refresh_token="refresh-1",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

        with patch.object(auth, "refresh_tokens", AsyncMock()) as refresh:
            tokens = await auth.get_user_tokens(user_id)

        assert tokens.access_token == "access-1"
        refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_stored_tokens(self, auth, token_repo):
        token_repo.get_tokens.return_value = None
        assert await auth.get_user_tokens(uuid4()) is None

    @pytest.mark.asyncio
    async def test_unauthorized_call_is_retried_once_after_refresh(self, auth, token_repo):
        operation = AsyncMock(side_effect=[GoogleAPIError(401, "Invalid Credentials"), "ok"])

        with patch.object(auth, "refresh_tokens", AsyncMock(return_value=refreshed_tokens())):
            result = await auth.call_with_user_tokens(
                uuid4(), GoogleTokens(access_token="access-1", refresh_token="refresh-1"), operation
            )

        assert result == "ok"
        assert [c.args[0] for c in operation.await_args_list] == ["access-1", "access-2"]

    @pytest.mark.asyncio
    async def test_unauthorized_with_known_expiry_is_not_retried(self, auth):
        operation = AsyncMock(side_effect=GoogleAPIError(401, "Invalid Credentials"))
        tokens = GoogleTokens(
            access_token="access-1",
            refresh_token="refresh-1",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

        with pytest.raises(GoogleAPIError):
            await auth.call_with_user_tokens(uuid4(), tokens, operation)

        operation.assert_awaited_once()


class TestConnectionTokens:
    """Test sheet connection token refresh"""

    @pytest.mark.asyncio
    async def test_refresh_updates_connections_by_old_access_token(self, auth, connection_repo):
        connection = make_connection()

        with patch.object(auth, "refresh_tokens", AsyncMock(return_value=refreshed_tokens())):
            tokens = await auth.refresh_connection_tokens(connection)

        assert tokens.access_token == "access-2"
        connection_repo.update_tokens.assert_awaited_once_with("access-1", refreshed_tokens())

    @pytest.mark.asyncio
    async def test_rejected_refresh_deactivates_connections(self, auth, connection_repo):
        connection = make_connection(refresh_token="revoked")

        with patch.object(auth, "refresh_tokens", AsyncMock(side_effect=TokenRefreshError("invalid_grant"))):
            with pytest.raises(TokenRefreshError, match=RECONNECT_MESSAGE):
                await auth.refresh_connection_tokens(connection)

        connection_repo.deactivate_by_refresh_token.assert_awaited_once_with("revoked")
        connection_repo.update_tokens.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refreshed_tokens_are_reused_by_later_calls(self, auth, connection_repo):
        connection = make_connection(expires_at=datetime.now(timezone.utc) - timedelta(minutes=5))
        fresh = GoogleTokens(
            access_token="access-2",
            refresh_token="refresh-1",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )
        refresh = AsyncMock(return_value=fresh)
        operation = AsyncMock(return_value="ok")

        with patch.object(auth, "refresh_tokens", refresh):
            await auth.call_with_connection(connection, operation)
            await auth.call_with_connection(connection, operation)

        refresh.assert_awaited_once()
        connection_repo.update_tokens.assert_awaited_once_with("access-1", fresh)
        assert [c.args[0] for c in operation.await_args_list] == ["access-2", "access-2"]
        assert connection.access_token == "access-2"
        assert connection.expires_at == fresh.expires_at
