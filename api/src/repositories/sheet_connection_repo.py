"""
Sheet connection repository for database operations.

Stores the Google Sheet a user (or form) writes to together with the OAuth
tokens for it, and keeps those tokens current after a refresh.
"""

import asyncpg
import structlog
from typing import List, Optional
from uuid import UUID

from api.src.models.google import GoogleTokens
from api.src.models.sheets import SheetConnection

logger = structlog.get_logger(__name__)

CONNECTION_COLUMNS = """
    id, user_id, form_id, sheet_id, sheet_name, sheet_url, is_active,
    access_token, refresh_token, expires_at, last_synced, created_at, updated_at
"""


class SheetConnectionRepository:
    """Repository for sheet_connections table operations."""

    def __init__(self, pool: asyncpg.Pool):
        """
        Initialize sheet connection repository.

        Args:
            pool: asyncpg connection pool
        """
        self.pool = pool

    async def get_connection(
        self,
        connection_id: UUID,
        active_only: bool = False
    ) -> Optional[SheetConnection]:
        """
        Get a sheet connection by ID.

        Args:
            connection_id: Connection ID
            active_only: Ignore connections marked inactive

        Returns:
            Connection or None if not found
        """
        query = f"SELECT {CONNECTION_COLUMNS} FROM sheet_connections WHERE id = $1"
        if active_only:
            query += " AND is_active = TRUE"

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, connection_id)

                if not row:
                    logger.debug("sheet_connection_not_found", connection_id=str(connection_id))
                    return None

                return SheetConnection.model_validate(dict(row))

        except Exception as e:
            logger.error(
                "sheet_connection_get_failed",
                error=str(e),
                connection_id=str(connection_id)
            )
            raise

    async def get_by_sheet(self, user_id: UUID, sheet_id: str) -> Optional[SheetConnection]:
        """
        Get the connection of a user to a spreadsheet.

        Args:
            user_id: Owner ID
            sheet_id: Google spreadsheet ID

        Returns:
            Connection or None if not found
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    SELECT {CONNECTION_COLUMNS}
                    FROM sheet_connections
                    WHERE user_id = $1 AND sheet_id = $2
                    """,
                    user_id,
                    sheet_id
                )
                return SheetConnection.model_validate(dict(row)) if row else None

        except Exception as e:
            logger.error("sheet_connection_lookup_failed", error=str(e), sheet_id=sheet_id)
            raise

    async def create_connection(
        self,
        user_id: UUID,
        sheet_id: str,
        sheet_name: str,
        sheet_url: str,
        tokens: GoogleTokens,
        form_id: Optional[UUID] = None,
    ) -> SheetConnection:
        """
        Store a new sheet connection.

        A user can connect the same spreadsheet only once; a duplicate
        returns the existing connection.

        Args:
            user_id: Owner ID
            sheet_id: Google spreadsheet ID
            sheet_name: Spreadsheet title
            sheet_url: Spreadsheet URL
            tokens: OAuth tokens for the spreadsheet
            form_id: Form the connection belongs to

        Returns:
            Stored connection
        """
        try:
            async with self.pool.acquire() as conn:
                try:
                    row = await conn.fetchrow(
                        f"""
                        INSERT INTO sheet_connections (
                            user_id, form_id, sheet_id, sheet_name, sheet_url,
                            access_token, refresh_token, expires_at, is_active,
                            created_at, updated_at
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, TRUE, NOW(), NOW())
                        RETURNING {CONNECTION_COLUMNS}
                        """,
                        user_id,
                        form_id,
                        sheet_id,
                        sheet_name,
                        sheet_url,
                        tokens.access_token,
                        tokens.refresh_token,
                        tokens.expires_at
                    )
                except asyncpg.UniqueViolationError:
                    logger.info(
                        "sheet_connection_already_exists",
                        user_id=str(user_id),
                        sheet_id=sheet_id
                    )
                    existing = await self.get_by_sheet(user_id, sheet_id)
                    if existing is None:
                        raise
                    return existing

                logger.info(
                    "sheet_connection_created",
                    connection_id=str(row["id"]),
                    user_id=str(user_id),
                    sheet_id=sheet_id
                )
                return SheetConnection.model_validate(dict(row))

        except Exception as e:
            logger.error("sheet_connection_create_failed", error=str(e), user_id=str(user_id))
            raise

    async def list_for_user(self, user_id: UUID) -> List[SheetConnection]:
        """
        List a user's connections, newest first.

        Args:
            user_id: Owner ID

        Returns:
            Connections
        """
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {CONNECTION_COLUMNS}
                    FROM sheet_connections
                    WHERE user_id = $1
                    ORDER BY created_at DESC
                    """,
                    user_id
                )
                return [SheetConnection.model_validate(dict(row)) for row in rows]

        except Exception as e:
            logger.error("sheet_connection_list_failed", error=str(e), user_id=str(user_id))
            raise

    async def delete_connection(self, connection_id: UUID, user_id: UUID) -> bool:
        """
        Delete a connection owned by the user.

        Args:
            connection_id: Connection ID
            user_id: Owner ID

        Returns:
            True if deleted, False if not found
        """
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    "DELETE FROM sheet_connections WHERE id = $1 AND user_id = $2",
                    connection_id,
                    user_id
                )
                deleted = result.split()[-1] != "0"

                if deleted:
                    logger.info("sheet_connection_deleted", connection_id=str(connection_id))

                return deleted

        except Exception as e:
            logger.error(
                "sheet_connection_delete_failed",
                error=str(e),
                connection_id=str(connection_id)
            )
            raise

    async def update_tokens(self, old_access_token: str, tokens: GoogleTokens) -> int:
        """
        Replace the tokens of every connection using an access token.

        Args:
            old_access_token: Access token that was refreshed
            tokens: Refreshed tokens

        Returns:
            Number of connections updated
        """
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    """
                    UPDATE sheet_connections
                    SET access_token = $2, refresh_token = $3, expires_at = $4,
                        updated_at = NOW()
                    WHERE access_token = $1
                    """,
                    old_access_token,
                    tokens.access_token,
                    tokens.refresh_token,
                    tokens.expires_at
                )
                updated = int(result.split()[-1])
                logger.info("sheet_connection_tokens_updated", connections=updated)
                return updated

        except Exception as e:
            logger.error("sheet_connection_token_update_failed", error=str(e))
            raise

    async def deactivate_by_refresh_token(self, refresh_token: str) -> int:
        """
        Mark every connection using a refresh token inactive.

        Args:
            refresh_token: Refresh token Google rejected

        Returns:
            Number of connections deactivated
        """
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    """
                    UPDATE sheet_connections
                    SET is_active = FALSE, updated_at = NOW()
                    WHERE refresh_token = $1
                    """,
                    refresh_token
                )
                deactivated = int(result.split()[-1])
                logger.warning("sheet_connections_deactivated", connections=deactivated)
                return deactivated

        except Exception as e:
            logger.error("sheet_connection_deactivate_failed", error=str(e))
            raise

    async def touch_last_synced(self, connection_id: UUID) -> None:
        """
        Record that the connection's headers were just synced.

        Args:
            connection_id: Connection ID
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE sheet_connections
                    SET last_synced = NOW(), updated_at = NOW()
                    WHERE id = $1
                    """,
                    connection_id
                )

        except Exception as e:
            logger.error(
                "sheet_connection_touch_failed",
                error=str(e),
                connection_id=str(connection_id)
            )
            raise
