"""
Integration repository for database operations.

Reads per-form integration settings through the database RPC functions and
writes the delivery logs of the e-mail, calendar and Drive integrations.
"""

import asyncpg
import structlog
from datetime import datetime
from typing import List, Optional, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel

from api.src.models.integrations import CalendarSettings, EmailSettings, FileSettings

logger = structlog.get_logger(__name__)

SettingsT = TypeVar("SettingsT", bound=BaseModel)

# RPC function name -> settings model
SETTINGS_FUNCTIONS = {
    EmailSettings: "get_form_email_settings",
    CalendarSettings: "get_form_calendar_settings",
    FileSettings: "get_form_file_settings",
}


class IntegrationRepository:
    """Repository for integration settings and delivery logs."""

    def __init__(self, pool: asyncpg.Pool):
        """
        Initialize integration repository.

        Args:
            pool: asyncpg connection pool
        """
        self.pool = pool

    async def _get_settings(self, model: Type[SettingsT], form_id: UUID) -> Optional[SettingsT]:
        function = SETTINGS_FUNCTIONS[model]
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(f"SELECT * FROM {function}($1)", form_id)

                if not row:
                    logger.debug("integration_settings_not_found", function=function, form_id=str(form_id))
                    return None

                return model.model_validate(dict(row))

        except Exception as e:
            logger.error(
                "integration_settings_failed",
                error=str(e),
                function=function,
                form_id=str(form_id)
            )
            raise

    async def get_email_settings(self, form_id: UUID) -> Optional[EmailSettings]:
        return await self._get_settings(EmailSettings, form_id)

    async def get_calendar_settings(self, form_id: UUID) -> Optional[CalendarSettings]:
        return await self._get_settings(CalendarSettings, form_id)

    async def get_file_settings(self, form_id: UUID) -> Optional[FileSettings]:
        return await self._get_settings(FileSettings, form_id)

    async def log_email(
        self,
        form_id: UUID,
        submission_id: UUID,
        recipient_emails: List[str],
        subject: str,
        email_content: str,
        status: str,
        error_message: Optional[str] = None,
        sent_at: Optional[datetime] = None,
    ) -> None:
        """
        Record one e-mail notification attempt.

        Args:
            form_id: Form ID
            submission_id: Submission ID
            recipient_emails: Recipients
            subject: Rendered subject
            email_content: Rendered HTML body
            status: "sent" or "failed"
            error_message: Provider error
            sent_at: Send time for delivered messages
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO email_notifications_log (
                        form_id, submission_id, recipient_emails, subject,
                        email_content, status, error_message, sent_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    """,
                    form_id,
                    submission_id,
                    recipient_emails,
                    subject,
                    email_content,
                    status,
                    error_message,
                    sent_at
                )

        except Exception as e:
            logger.error("email_log_failed", error=str(e), submission_id=str(submission_id))
            raise

    async def log_calendar_event(
        self,
        form_id: UUID,
        submission_id: UUID,
        calendar_id: str,
        event_title: str,
        event_description: str,
        event_start: datetime,
        event_end: datetime,
        attendee_emails: List[str],
        status: str,
        google_event_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """
        Record one calendar event creation attempt.

        Args:
            form_id: Form ID
            submission_id: Submission ID
            calendar_id: Target calendar
            event_title: Rendered title
            event_description: Rendered description
            event_start: Event start
            event_end: Event end
            attendee_emails: Invited attendees
            status: "created" or "failed"
            google_event_id: ID of the created event
            error_message: Google error
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO calendar_events_log (
                        form_id, submission_id, google_event_id, calendar_id,
                        event_title, event_description, event_start, event_end,
                        attendee_emails, status, error_message
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                    """,
                    form_id,
                    submission_id,
                    google_event_id,
                    calendar_id,
                    event_title,
                    event_description,
                    event_start,
                    event_end,
                    attendee_emails,
                    status,
                    error_message
                )

        except Exception as e:
            logger.error("calendar_log_failed", error=str(e), submission_id=str(submission_id))
            raise

    async def start_file_upload(
        self,
        form_id: UUID,
        submission_id: UUID,
        original_filename: str,
        original_size_bytes: int,
        mime_type: str,
        field_name: str,
    ) -> UUID:
        """
        Record that a file upload started.

        Returns:
            ID of the log row
        """
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(
                    """
                    INSERT INTO uploaded_files_log (
                        form_id, submission_id, original_filename, original_size_bytes,
                        mime_type, field_name, status, upload_started_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, 'uploading', NOW())
                    RETURNING id
                    """,
                    form_id,
                    submission_id,
                    original_filename,
                    original_size_bytes,
                    mime_type,
                    field_name
                )

        except Exception as e:
            logger.error("file_log_start_failed", error=str(e), submission_id=str(submission_id))
            raise

    async def complete_file_upload(
        self,
        log_id: UUID,
        drive_file_id: str,
        drive_folder_id: Optional[str],
        drive_file_name: str,
        drive_folder_path: str,
        drive_file_url: Optional[str],
    ) -> None:
        """Record a finished file upload."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE uploaded_files_log
                    SET google_drive_file_id = $2, google_drive_folder_id = $3,
                        drive_file_name = $4, drive_folder_path = $5, drive_file_url = $6,
                        status = 'uploaded', upload_completed_at = NOW()
                    WHERE id = $1
                    """,
                    log_id,
                    drive_file_id,
                    drive_folder_id,
                    drive_file_name,
                    drive_folder_path,
                    drive_file_url
                )

        except Exception as e:
            logger.error("file_log_complete_failed", error=str(e), log_id=str(log_id))
            raise

    async def fail_file_upload(self, log_id: UUID, error_message: str) -> None:
        """Record a failed file upload."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE uploaded_files_log
                    SET status = 'failed', error_message = $2
                    WHERE id = $1
                    """,
                    log_id,
                    error_message
                )

        except Exception as e:
            logger.error("file_log_fail_failed", error=str(e), log_id=str(log_id))
            raise
