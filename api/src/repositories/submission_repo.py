"""
Submission repository for database operations.

Persists raw submissions and records fan-out outcomes and sheet sync
state on the form_submissions row.
"""

import asyncpg
import structlog
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from api.src.models.submissions import SubmissionRecord

logger = structlog.get_logger(__name__)

SUBMISSION_COLUMNS = """
    id, form_id, user_id, submission_data, submitted_at, processing_status,
    sheet_connection_id, synced_to_sheet, sheet_row_number, sync_error,
    retry_count, last_retry_at, google_sheet_written, drive_files_uploaded,
    calendar_event_created, email_sent
"""

# Columns the service is allowed to change after insert
UPDATABLE_COLUMNS = frozenset({
    "processing_status",
    "synced_to_sheet",
    "sheet_row_number",
    "sync_error",
    "retry_count",
    "google_sheet_written",
    "drive_files_uploaded",
    "calendar_event_created",
    "email_sent",
})


class SubmissionRepository:
    """Repository for form_submissions table operations."""

    def __init__(self, pool: asyncpg.Pool):
        """
        Initialize submission repository.

        Args:
            pool: asyncpg connection pool
        """
        self.pool = pool

    async def create_submission(
        self,
        form_id: UUID,
        submission_data: Dict[str, Any],
        user_id: Optional[UUID] = None,
        sheet_connection_id: Optional[UUID] = None,
        processing_status: Optional[str] = None,
    ) -> SubmissionRecord:
        """
        Insert a raw submission.

        Args:
            form_id: Form ID
            submission_data: Submitted values keyed by field ID
            user_id: Form owner ID
            sheet_connection_id: Sheet connection the row should sync to
            processing_status: Initial processing status

        Returns:
            Created submission
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO form_submissions (
                        form_id, user_id, submission_data, sheet_connection_id,
                        processing_status, submitted_at
                    )
                    VALUES ($1, $2, $3, $4, $5, NOW())
                    RETURNING {SUBMISSION_COLUMNS}
                    """,
                    form_id,
                    user_id,
                    submission_data,
                    sheet_connection_id,
                    processing_status
                )

                logger.info(
                    "submission_persisted",
                    submission_id=str(row["id"]),
                    form_id=str(form_id)
                )

                return SubmissionRecord.model_validate(dict(row))

        except Exception as e:
            logger.error("submission_create_failed", error=str(e), form_id=str(form_id))
            raise

    async def update_submission(self, submission_id: UUID, **fields: Any) -> bool:
        """
        Update selected columns of a submission.

        Args:
            submission_id: Submission ID
            **fields: Column values; unknown columns raise ValueError

        Returns:
            True if a row was updated
        """
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update submission columns: {sorted(unknown)}")

        if not fields:
            return False

        updates = []
        params: List[Any] = []
        param_count = 1

        for column, value in fields.items():
            updates.append(f"{column} = ${param_count}")
            params.append(value)
            param_count += 1

        params.append(submission_id)

        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    f"""
                    UPDATE form_submissions
                    SET {', '.join(updates)}
                    WHERE id = ${param_count}
                    """,
                    *params
                )
                return result.split()[-1] != "0"

        except Exception as e:
            logger.error(
                "submission_update_failed",
                error=str(e),
                submission_id=str(submission_id),
                columns=sorted(fields)
            )
            raise

    async def record_sync_attempt(
        self,
        submission_id: UUID,
        error: str,
        retry_count: int
    ) -> None:
        """
        Record a failed sheet write attempt.

        Args:
            submission_id: Submission ID
            error: Error message of the attempt
            retry_count: Number of attempts made so far
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE form_submissions
                    SET sync_error = $2, retry_count = $3, last_retry_at = NOW()
                    WHERE id = $1
                    """,
                    submission_id,
                    error,
                    retry_count
                )

        except Exception as e:
            logger.error(
                "submission_sync_attempt_record_failed",
                error=str(e),
                submission_id=str(submission_id)
            )
            raise

    async def mark_synced(self, submission_id: UUID, row_number: Optional[int]) -> None:
        """
        Mark a submission as written to its sheet.

        Args:
            submission_id: Submission ID
            row_number: Sheet row the submission landed in
        """
        await self.update_submission(
            submission_id,
            synced_to_sheet=True,
            google_sheet_written=True,
            sheet_row_number=row_number,
            sync_error=None,
        )

    async def list_for_form(
        self,
        form_id: UUID,
        limit: int,
        offset: int
    ) -> Tuple[List[SubmissionRecord], int]:
        """
        List submissions of a form, newest first.

        Args:
            form_id: Form ID
            limit: Page size
            offset: Rows to skip

        Returns:
            Tuple of (submissions, total count)
        """
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT s.id, s.form_id, s.user_id, s.submission_data, s.submitted_at,
                           s.processing_status, s.sheet_connection_id, s.synced_to_sheet,
                           s.sheet_row_number, s.sync_error, s.retry_count, s.last_retry_at,
                           s.google_sheet_written, s.drive_files_uploaded,
                           s.calendar_event_created, s.email_sent,
                           c.sheet_name, c.sheet_url
                    FROM form_submissions s
                    LEFT JOIN sheet_connections c ON c.id = s.sheet_connection_id
                    WHERE s.form_id = $1
                    ORDER BY s.submitted_at DESC
                    LIMIT $2 OFFSET $3
                    """,
                    form_id,
                    limit,
                    offset
                )

                total = await conn.fetchval(
                    "SELECT COUNT(*) FROM form_submissions WHERE form_id = $1",
                    form_id
                )

                return [SubmissionRecord.model_validate(dict(row)) for row in rows], total or 0

        except Exception as e:
            logger.error("submission_list_failed", error=str(e), form_id=str(form_id))
            raise

    async def list_all_for_form(self, form_id: UUID) -> List[SubmissionRecord]:
        """
        All submissions of a form, newest first (CSV export).

        Args:
            form_id: Form ID

        Returns:
            Submissions
        """
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {SUBMISSION_COLUMNS}
                    FROM form_submissions
                    WHERE form_id = $1
                    ORDER BY submitted_at DESC
                    """,
                    form_id
                )
                return [SubmissionRecord.model_validate(dict(row)) for row in rows]

        except Exception as e:
            logger.error("submission_export_query_failed", error=str(e), form_id=str(form_id))
            raise
