"""
Google OAuth token lifecycle.

Stored access tokens are refreshed shortly before they expire and the new
tokens are written back: per user in user_google_tokens, per spreadsheet in
sheet_connections. Refreshing itself goes through google-auth, which is
synchronous and therefore runs in a worker thread.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import structlog
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from api.src.config import Settings
from api.src.models.google import GoogleTokens, ensure_utc
from api.src.models.sheets import SheetConnection
from api.src.repositories.google_token_repo import GoogleTokenRepository
from api.src.repositories.sheet_connection_repo import SheetConnectionRepository
from api.src.utils.error_handler import (
    GoogleAPIError,
    GoogleConfigurationError,
    TokenRefreshError,
)
from shared.metrics import SubmissionMetrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RECONNECT_MESSAGE = "Failed to refresh access token. Please reconnect."


class GoogleAuthService:
    """Refreshes and persists Google OAuth tokens."""

    def __init__(
        self,
        settings: Settings,
        token_repo: GoogleTokenRepository,
        connection_repo: SheetConnectionRepository,
        metrics: Optional[SubmissionMetrics] = None,
    ):
        self.settings = settings
        self.token_repo = token_repo
        self.connection_repo = connection_repo
        self.metrics = metrics

    def _record_refresh(self, owner: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.token_refreshes.labels(owner=owner, outcome=outcome).inc()

    def _refresh_sync(self, tokens: GoogleTokens) -> GoogleTokens:
        credentials = Credentials(
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_uri=self.settings.google_token_uri,
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
        )
        credentials.refresh(Request())

        return GoogleTokens(
            access_token=credentials.token,
            # Google only returns a new refresh token on re-consent
            refresh_token=credentials.refresh_token or tokens.refresh_token,
            expires_at=ensure_utc(credentials.expiry),
        )

    async def refresh_tokens(self, tokens: GoogleTokens) -> GoogleTokens:
        """
        Exchange a refresh token for a new access token.

        Args:
            tokens: Current tokens

        Returns:
            Refreshed tokens

        Raises:
            GoogleConfigurationError: OAuth client credentials are not configured
            TokenRefreshError: Google rejected the refresh
        """
        if not self.settings.google_oauth_configured:
            raise GoogleConfigurationError("Google OAuth client credentials are not configured")

        if not tokens.refresh_token:
            raise TokenRefreshError("No refresh token available")

        try:
            refreshed = await asyncio.to_thread(self._refresh_sync, tokens)
        except GoogleAuthError as e:
            logger.warning("google_token_refresh_failed", error=str(e))
            raise TokenRefreshError(str(e)) from e

        logger.info(
            "google_token_refreshed",
            expires_at=refreshed.expires_at.isoformat() if refreshed.expires_at else None,
        )
        return refreshed

    # ------------------------------------------------------------------
    # User tokens
    # ------------------------------------------------------------------

    async def refresh_user_tokens(self, user_id: UUID, tokens: GoogleTokens) -> GoogleTokens:
        """Refresh a user's tokens and store the result."""
        try:
            refreshed = await self.refresh_tokens(tokens)
        except (TokenRefreshError, GoogleConfigurationError):
            self._record_refresh("user", "failure")
            raise

        await self.token_repo.update_tokens(user_id, refreshed)
        self._record_refresh("user", "success")
        return refreshed

    async def get_user_tokens(self, user_id: UUID) -> Optional[GoogleTokens]:
        """
        Stored tokens of a user, refreshed first when they are about to expire.

        Args:
            user_id: User ID

        Returns:
            Usable tokens or None when the user never connected Google
        """
        stored = await self.token_repo.get_tokens(user_id)
        if stored is None:
            return None

        tokens = GoogleTokens(
            access_token=stored.access_token,
            refresh_token=stored.refresh_token,
            expires_at=stored.expires_at,
        )

        if tokens.needs_refresh(self.settings.google_token_refresh_buffer):
            logger.info("google_user_token_expiring", user_id=str(user_id))
            tokens = await self.refresh_user_tokens(user_id, tokens)

        return tokens

    async def call_with_user_tokens(
        self,
        user_id: UUID,
        tokens: GoogleTokens,
        operation: Callable[[str], Awaitable[T]],
    ) -> T:
        """
        Run a Google call with a user's access token.

        When the token's expiry is unknown and Google answers 401, the
        tokens are refreshed once and the call is repeated.
        """
        try:
            return await operation(tokens.access_token)
        except GoogleAPIError as e:
            if e.status != 401 or tokens.expires_at is not None or not tokens.refresh_token:
                raise
            logger.info("google_unauthorized_retrying", user_id=str(user_id))

        refreshed = await self.refresh_user_tokens(user_id, tokens)
        return await operation(refreshed.access_token)

    # ------------------------------------------------------------------
    # Sheet connection tokens
    # ------------------------------------------------------------------

    async def refresh_connection_tokens(self, connection: SheetConnection) -> GoogleTokens:
        """
        Refresh the tokens of a sheet connection.

        Every connection sharing the old access token gets the new tokens.
        When Google rejects the refresh, connections using the refresh token
        are deactivated.

        Raises:
            TokenRefreshError: The user has to reconnect Google
        """
        tokens = connection.tokens
        try:
            refreshed = await self.refresh_tokens(tokens)
        except TokenRefreshError as e:
            self._record_refresh("connection", "failure")
            if tokens.refresh_token:
                await self.connection_repo.deactivate_by_refresh_token(tokens.refresh_token)
            logger.error(
                "sheet_connection_refresh_failed",
                connection_id=str(connection.id),
                error=str(e),
            )
            raise TokenRefreshError(RECONNECT_MESSAGE) from e
        except GoogleConfigurationError:
            self._record_refresh("connection", "failure")
            raise

        await self.connection_repo.update_tokens(tokens.access_token, refreshed)
        self._record_refresh("connection", "success")

        # Later calls with this connection must see the stored tokens
        connection.access_token = refreshed.access_token
        connection.refresh_token = refreshed.refresh_token
        connection.expires_at = refreshed.expires_at
        return refreshed

    async def get_connection_tokens(self, connection: SheetConnection) -> GoogleTokens:
        """Tokens of a connection, refreshed first when they are about to expire."""
        tokens = connection.tokens
        if tokens.needs_refresh(self.settings.google_token_refresh_buffer):
            logger.info("sheet_connection_token_expiring", connection_id=str(connection.id))
            tokens = await self.refresh_connection_tokens(connection)
        return tokens

    async def call_with_connection(
        self,
        connection: SheetConnection,
        operation: Callable[[str], Awaitable[T]],
    ) -> T:
        """Run a Google call with a connection's token; see call_with_user_tokens."""
        tokens = await self.get_connection_tokens(connection)
        try:
            return await operation(tokens.access_token)
        except GoogleAPIError as e:
            if e.status != 401 or tokens.expires_at is not None or not tokens.refresh_token:
                raise
            logger.info("google_unauthorized_retrying", connection_id=str(connection.id))

        refreshed = await self.refresh_connection_tokens(connection)
        return await operation(refreshed.access_token)
