"""
Repository for the Google OAuth tokens stored per user.
"""

import asyncpg
import structlog
from typing import Optional
from uuid import UUID

from api.src.models.google import GoogleTokens, UserGoogleTokens

logger = structlog.get_logger(__name__)


class GoogleTokenRepository:
    """Repository for user_google_tokens table operations."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_tokens(self, user_id: UUID) -> Optional[UserGoogleTokens]:
        """
        Get the stored tokens of a user.

        Args:
            user_id: User ID

        Returns:
            Tokens or None when the user never connected Google
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT user_id, access_token, refresh_token, expires_at, updated_at
                    FROM user_google_tokens
                    WHERE user_id = $1
                    """,
                    user_id
                )

                if not row or not row["access_token"]:
                    logger.debug("google_tokens_not_found", user_id=str(user_id))
                    return None

                return UserGoogleTokens.model_validate(dict(row))

        except Exception as e:
            logger.error("google_tokens_get_failed", error=str(e), user_id=str(user_id))
            raise

    async def update_tokens(self, user_id: UUID, tokens: GoogleTokens) -> None:
        """
        Store refreshed tokens for a user.

        Args:
            user_id: User ID
            tokens: Refreshed tokens
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE user_google_tokens
                    SET access_token = $2, refresh_token = $3, expires_at = $4,
                        updated_at = NOW()
                    WHERE user_id = $1
                    """,
                    user_id,
                    tokens.access_token,
                    tokens.refresh_token,
                    tokens.expires_at
                )
                logger.info("google_tokens_updated", user_id=str(user_id))

        except Exception as e:
            logger.error("google_tokens_update_failed", error=str(e), user_id=str(user_id))
            raise
