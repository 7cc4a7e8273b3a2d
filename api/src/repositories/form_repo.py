"""
Form repository for database operations.

Reads form configuration for the intake endpoints and creates draft forms
for the create-with-sheet flow. Uses asyncpg against the Supabase database.
"""

import asyncpg
import structlog
from typing import Any, Dict, List, Optional
from uuid import UUID

from api.src.models.forms import FormRecord, FormStatus

logger = structlog.get_logger(__name__)

FORM_COLUMNS = """
    id, user_id, title, description, status, form_data,
    default_sheet_connection_id, created_at
"""


class FormRepository:
    """Repository for forms table operations."""

    def __init__(self, pool: asyncpg.Pool):
        """
        Initialize form repository.

        Args:
            pool: asyncpg connection pool
        """
        self.pool = pool

    @staticmethod
    def _to_record(row: asyncpg.Record) -> FormRecord:
        data = dict(row)
        data["form_data"] = data.get("form_data") or {}
        data["title"] = data.get("title") or ""
        data["status"] = data.get("status") or FormStatus.DRAFT
        return FormRecord.model_validate(data)

    async def get_form(self, form_id: UUID) -> Optional[FormRecord]:
        """
        Get a form by ID.

        Args:
            form_id: Form ID

        Returns:
            Form or None if not found
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    SELECT {FORM_COLUMNS}
                    FROM forms
                    WHERE id = $1
                    """,
                    form_id
                )

                if not row:
                    logger.debug("form_not_found", form_id=str(form_id))
                    return None

                return self._to_record(row)

        except Exception as e:
            logger.error("form_get_failed", error=str(e), form_id=str(form_id))
            raise

    async def list_forms_for_connection(self, connection_id: UUID) -> List[FormRecord]:
        """
        List forms whose default sheet connection is the given connection.

        Args:
            connection_id: Sheet connection ID

        Returns:
            Forms using the connection
        """
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {FORM_COLUMNS}
                    FROM forms
                    WHERE default_sheet_connection_id = $1
                    ORDER BY created_at
                    """,
                    connection_id
                )
                return [self._to_record(row) for row in rows]

        except Exception as e:
            logger.error(
                "forms_for_connection_failed",
                error=str(e),
                connection_id=str(connection_id)
            )
            raise

    async def create_form(
        self,
        user_id: UUID,
        title: str,
        description: str = "",
        fields: Optional[List[Dict[str, Any]]] = None,
    ) -> FormRecord:
        """
        Create a draft form.

        Args:
            user_id: Owner ID
            title: Form title
            description: Form description
            fields: Builder field definitions

        Returns:
            Created form
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO forms (user_id, title, description, status, form_data)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING {FORM_COLUMNS}
                    """,
                    user_id,
                    title,
                    description,
                    FormStatus.DRAFT,
                    {"fields": fields or []}
                )

                logger.info("form_created", form_id=str(row["id"]), user_id=str(user_id))
                return self._to_record(row)

        except Exception as e:
            logger.error("form_create_failed", error=str(e), user_id=str(user_id))
            raise

    async def delete_form(self, form_id: UUID) -> bool:
        """
        Delete a form.

        Args:
            form_id: Form ID

        Returns:
            True if deleted, False if not found
        """
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute("DELETE FROM forms WHERE id = $1", form_id)
                deleted = result.split()[-1] != "0"

                if deleted:
                    logger.info("form_deleted", form_id=str(form_id))

                return deleted

        except Exception as e:
            logger.error("form_delete_failed", error=str(e), form_id=str(form_id))
            raise

    async def link_sheet_connection(self, form_id: UUID, connection_id: UUID) -> None:
        """
        Set the default sheet connection of a form.

        Args:
            form_id: Form ID
            connection_id: Sheet connection ID
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE forms
                    SET default_sheet_connection_id = $2
                    WHERE id = $1
                    """,
                    form_id,
                    connection_id
                )
                logger.info(
                    "form_linked_to_sheet",
                    form_id=str(form_id),
                    connection_id=str(connection_id)
                )

        except Exception as e:
            logger.error("form_link_failed", error=str(e), form_id=str(form_id))
            raise
