"""
Submission pipeline.

Every intake flow persists the raw submission first; that is the only step
whose failure the caller sees. Google Sheets, Drive, Calendar and e-mail
are attempted afterwards, one branch at a time. A failing branch is logged
and recorded on the submission row and never stops the other branches.
"""

import asyncio
import base64
import binascii
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional
from uuid import UUID

import structlog

from api.src.config import Settings
from api.src.models.forms import FormRecord
from api.src.models.google import GoogleTokens
from api.src.models.integrations import IntegrationResult
from api.src.models.sheets import SheetConnection, SheetWriteResult
from api.src.models.submissions import (
    FanoutOutcome,
    FanoutReport,
    IncomingFile,
    ProcessingStatus,
    SubmissionResult,
    UserSettings,
)
from api.src.repositories.form_repo import FormRepository
from api.src.repositories.sheet_connection_repo import SheetConnectionRepository
from api.src.repositories.submission_repo import SubmissionRepository
from api.src.services.calendar_service import CalendarService
from api.src.services.drive_service import DriveService
from api.src.services.email_service import EmailService
from api.src.services.google_auth import GoogleAuthService
from api.src.services.google_client import GoogleAPIClient
from api.src.services.sheets_service import SheetsService, format_cell
from api.src.utils.error_handler import (
    RetryConfig,
    classify_error,
    is_retryable,
    retry_with_backoff,
)
from shared.metrics import SubmissionMetrics

logger = structlog.get_logger(__name__)

USER_SHEET_RANGE = "Sheet1!A:Z"

SHEET = "sheet"
DRIVE = "drive"
CALENDAR = "calendar"
EMAIL = "email"


class SubmissionError(Exception):
    """An intake request that cannot be accepted."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class SubmissionService:
    """Runs the three submission intake flows and lists submissions."""

    def __init__(
        self,
        settings: Settings,
        form_repo: FormRepository,
        submission_repo: SubmissionRepository,
        connection_repo: SheetConnectionRepository,
        auth: GoogleAuthService,
        client: GoogleAPIClient,
        sheets: SheetsService,
        drive: DriveService,
        calendar: CalendarService,
        email: EmailService,
        metrics: Optional[SubmissionMetrics] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.form_repo = form_repo
        self.submission_repo = submission_repo
        self.connection_repo = connection_repo
        self.auth = auth
        self.client = client
        self.sheets = sheets
        self.drive = drive
        self.calendar = calendar
        self.email = email
        self.metrics = metrics
        self.sleep = sleep
        self.retry_config = RetryConfig(
            max_attempts=settings.sheet_retry_max_attempts,
            initial_delay=settings.sheet_retry_base_delay,
            max_delay=settings.sheet_retry_max_delay,
        )

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _get_form(self, form_id: UUID) -> FormRecord:
        form = await self.form_repo.get_form(form_id)
        if form is None:
            raise SubmissionError(404, "Form not found")
        return form

    async def _persist(
        self,
        intake: str,
        form: FormRecord,
        form_data: Dict[str, Any],
        failure_message: str,
        **columns: Any,
    ):
        if self.metrics:
            self.metrics.submissions_received.labels(intake=intake).inc()

        try:
            submission = await self.submission_repo.create_submission(
                form.id, form_data, user_id=form.user_id, **columns
            )
        except Exception as e:
            logger.error(
                "submission_persist_failed",
                intake=intake,
                form_id=str(form.id),
                error=str(e),
                exc_info=True,
            )
            if self.metrics:
                self.metrics.submissions_persisted.labels(intake=intake, status="failure").inc()
            raise SubmissionError(500, failure_message) from e

        if self.metrics:
            self.metrics.submissions_persisted.labels(intake=intake, status="success").inc()
        return submission

    async def _run_branch(
        self,
        report: FanoutReport,
        integration: str,
        operation: Callable[[], Awaitable[Any]],
    ) -> FanoutOutcome:
        """
        Run one fan-out branch and record its outcome.

        IntegrationResult values are taken as they are; any other return
        value means success. Exceptions are logged and become a failed
        outcome.
        """
        outcome = FanoutOutcome(integration=integration, attempted=True)
        started = time.perf_counter()

        try:
            result = await operation()
            if isinstance(result, IntegrationResult):
                outcome.attempted = result.performed
                outcome.success = result.success
                outcome.error = result.error
                if result.external_id:
                    outcome.details["external_id"] = result.external_id
                if result.uploaded_files:
                    outcome.details["uploaded_files"] = [f.to_dict() for f in result.uploaded_files]
            else:
                outcome.success = True
        except Exception as e:
            outcome.success = False
            outcome.error = str(e) or type(e).__name__
            logger.error(
                "fanout_branch_failed",
                integration=integration,
                error_type=type(e).__name__,
                error=outcome.error,
                exc_info=True,
            )

        if outcome.failed and outcome.error:
            logger.warning("fanout_branch_unsuccessful", integration=integration, error=outcome.error)

        if self.metrics:
            if not outcome.attempted:
                label = "skipped"
            else:
                label = "success" if outcome.success else "failure"
            self.metrics.fanout_attempts.labels(integration=integration, outcome=label).inc()
            self.metrics.fanout_duration.labels(integration=integration).observe(
                time.perf_counter() - started
            )

        return report.add(outcome)

    async def _record_fanout(self, submission_id: UUID, **columns: Any) -> None:
        # The submission is already stored; a failed bookkeeping update is only logged
        try:
            await self.submission_repo.update_submission(submission_id, **columns)
        except Exception as e:
            logger.error(
                "fanout_record_failed",
                submission_id=str(submission_id),
                error=str(e),
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # POST /api/submit
    # ------------------------------------------------------------------

    async def submit_published_form(
        self,
        form_id: UUID,
        form_data: Dict[str, Any],
        files: Optional[List[IncomingFile]] = None,
    ) -> SubmissionResult:
        """
        Accept a submission of a published form.

        Drive uploads (when files were sent), the e-mail notification and
        the calendar event run after the submission is stored, using the
        form owner's Google account.

        Raises:
            SubmissionError: Unknown form, unpublished form, or storage failure
        """
        form = await self._get_form(form_id)
        if not form.is_published:
            raise SubmissionError(400, "Form is not published")

        submission = await self._persist(
            "submit",
            form,
            form_data,
            "Failed to save submission",
            processing_status=ProcessingStatus.PENDING,
        )
        logger.info("submission_received", submission_id=str(submission.id), files=len(files or []))

        report = FanoutReport()

        if files:
            await self._run_branch(report, DRIVE, lambda: self.drive.process_file_uploads(
                form_id=form.id,
                submission_id=submission.id,
                data=form_data,
                form_title=form.title,
                files=files,
                owner_id=form.user_id,
            ))

        await self._run_branch(report, EMAIL, lambda: self.email.send_submission_notification(
            form_id=form.id,
            submission_id=submission.id,
            data=form_data,
            form_title=form.title,
        ))

        await self._run_branch(report, CALENDAR, lambda: self.calendar.create_event_from_submission(
            form_id=form.id,
            submission_id=submission.id,
            data=form_data,
            owner_id=form.user_id,
            form_title=form.title,
        ))

        await self._record_fanout(
            submission.id,
            drive_files_uploaded=report.succeeded(DRIVE),
            email_sent=report.succeeded(EMAIL),
            calendar_event_created=report.succeeded(CALENDAR),
            sync_error=report.error_summary,
            processing_status=report.processing_status,
        )

        logger.info(
            "submission_processed",
            submission_id=str(submission.id),
            processing_status=report.processing_status,
        )

        return SubmissionResult(
            submission_id=submission.id,
            message="Form submitted successfully",
            report=report,
        )

    # ------------------------------------------------------------------
    # POST /api/forms/submit
    # ------------------------------------------------------------------

    async def _owner_tokens(self, owner_id: UUID) -> Optional[GoogleTokens]:
        try:
            return await self.auth.get_user_tokens(owner_id)
        except Exception as e:
            logger.warning("owner_tokens_unavailable", user_id=str(owner_id), error=str(e))
            return None

    async def _append_user_sheet_row(
        self,
        owner_id: UUID,
        tokens: GoogleTokens,
        spreadsheet_id: str,
        form: FormRecord,
        form_data: Mapping[str, Any],
    ) -> None:
        values = [format_cell(form_data.get(field.id, "")) for field in form.fields]
        await self.auth.call_with_user_tokens(
            owner_id,
            tokens,
            lambda token: self.client.append_values(
                token, spreadsheet_id, USER_SHEET_RANGE, [values], "USER_ENTERED"
            ),
        )

    async def _upload_inline_files(
        self,
        owner_id: UUID,
        tokens: GoogleTokens,
        folder_id: str,
        files: List[Any],
    ) -> int:
        uploaded = 0
        for entry in files:
            if not isinstance(entry, dict) or not entry.get("name") or entry.get("data") is None:
                raise ValueError("Invalid file entry in form data")
            try:
                content = base64.b64decode(entry["data"], validate=True)
            except (binascii.Error, TypeError) as e:
                raise ValueError(f"Invalid base64 data for file {entry['name']}") from e

            await self.auth.call_with_user_tokens(
                owner_id,
                tokens,
                lambda token: self.client.upload_file(
                    token,
                    entry["name"],
                    content,
                    entry.get("type") or "application/octet-stream",
                    folder_id,
                ),
            )
            uploaded += 1
        return uploaded

    async def _create_appointment(
        self,
        owner_id: UUID,
        tokens: GoogleTokens,
        calendar_id: str,
        form: FormRecord,
        form_data: Mapping[str, Any],
    ) -> Dict[str, Any]:
        created = await self.auth.call_with_user_tokens(
            owner_id,
            tokens,
            lambda token: self.calendar.create_appointment_event(
                token, calendar_id, form.title, form_data
            ),
        )
        if created is None:
            raise ValueError("Could not parse appointmentDate")
        return created

    async def submit_with_user_settings(
        self,
        form_id: UUID,
        form_data: Dict[str, Any],
        user_settings: Optional[UserSettings] = None,
    ) -> SubmissionResult:
        """
        Accept a submission and sync it to the Google targets chosen by the
        client: a spreadsheet, a Drive folder for inline base64 files and a
        calendar for the appointment.

        Raises:
            SubmissionError: Unknown form or storage failure
        """
        form = await self._get_form(form_id)
        submission = await self._persist(
            "user_settings", form, form_data, "Failed to process form submission"
        )

        tokens = await self._owner_tokens(form.user_id)
        if tokens is None:
            logger.info("submission_stored_without_google", submission_id=str(submission.id))
            return SubmissionResult(
                submission_id=submission.id,
                message="Form submitted successfully",
            )

        targets = user_settings or UserSettings()
        report = FanoutReport()
        owner_id = form.user_id

        if targets.selected_spreadsheet:
            await self._run_branch(report, SHEET, lambda: self._append_user_sheet_row(
                owner_id, tokens, targets.selected_spreadsheet, form, form_data
            ))

        inline_files = form_data.get("files")
        if targets.selected_folder and isinstance(inline_files, list) and inline_files:
            await self._run_branch(report, DRIVE, lambda: self._upload_inline_files(
                owner_id, tokens, targets.selected_folder, inline_files
            ))

        if targets.selected_calendar and form_data.get("appointmentDate"):
            await self._run_branch(report, CALENDAR, lambda: self._create_appointment(
                owner_id, tokens, targets.selected_calendar, form, form_data
            ))

        synced = {
            "sheet": report.succeeded(SHEET),
            "drive": report.succeeded(DRIVE),
            "calendar": report.succeeded(CALENDAR),
        }

        await self._record_fanout(
            submission.id,
            google_sheet_written=synced["sheet"],
            drive_files_uploaded=synced["drive"],
            calendar_event_created=synced["calendar"],
            sync_error=report.error_summary,
            processing_status=report.processing_status,
        )

        return SubmissionResult(
            submission_id=submission.id,
            message="Form submitted successfully and data synced to Google services",
            synced=synced,
            report=report,
        )

    # ------------------------------------------------------------------
    # POST /api/forms/{form_id}/submit
    # ------------------------------------------------------------------

    async def write_with_retry(
        self,
        connection: SheetConnection,
        submission_id: UUID,
        form_data: Mapping[str, Any],
        field_mappings: Mapping[str, str],
    ) -> SheetWriteResult:
        """
        Write a submission to its sheet, retrying transient failures.

        Each failed attempt is recorded on the submission row. Permanent
        failures stop at once.
        """
        async def record_attempt(attempt: int, error: BaseException) -> None:
            try:
                await self.submission_repo.record_sync_attempt(
                    submission_id, str(error) or type(error).__name__, attempt + 1
                )
            except Exception as e:
                logger.error(
                    "sync_attempt_record_failed",
                    submission_id=str(submission_id),
                    error=str(e),
                )

        def count_retry(attempt: int, error: BaseException, delay: float) -> None:
            if self.metrics:
                self.metrics.sheet_write_retries.labels(
                    error_category=classify_error(error).value
                ).inc()

        @retry_with_backoff(
            self.retry_config,
            on_retry=count_retry,
            on_failure=record_attempt,
            sleep=self.sleep,
        )
        async def attempt() -> Optional[int]:
            if field_mappings:
                await self.sheets.sync_headers(connection, list(field_mappings.values()))
            return await self.sheets.write_submission(connection, form_data, field_mappings)

        try:
            row_number = await attempt()
        except Exception as e:
            retryable = is_retryable(e)
            message = str(e) or type(e).__name__
            if retryable:
                message = f"Failed after {self.retry_config.max_attempts} attempts: {message}"
            return SheetWriteResult(success=False, error=message, retryable=retryable)

        return SheetWriteResult(success=True, row_number=row_number)

    async def submit_to_default_sheet(
        self,
        form_id: UUID,
        form_data: Dict[str, Any],
        field_mappings: Optional[Dict[str, str]] = None,
    ) -> SubmissionResult:
        """
        Accept a submission and append it to the form's default sheet.

        Returns 207 in the result when the submission is stored but the
        sheet write failed.

        Raises:
            SubmissionError: Unknown form or storage failure
        """
        form = await self._get_form(form_id)
        mappings = field_mappings or {}

        submission = await self._persist(
            "default_sheet",
            form,
            form_data,
            "Failed to save submission",
            sheet_connection_id=form.default_sheet_connection_id,
        )

        if not form.default_sheet_connection_id:
            return SubmissionResult(
                submission_id=submission.id,
                message="Submission saved successfully. No Google Sheet connected.",
                synced=False,
            )

        try:
            connection = await self.connection_repo.get_connection(
                form.default_sheet_connection_id, active_only=True
            )
        except Exception as e:
            logger.error("sheet_connection_lookup_failed", error=str(e), form_id=str(form.id))
            connection = None

        if connection is None:
            await self._record_fanout(
                submission.id, sync_error="Sheet connection not found or inactive"
            )
            return SubmissionResult(
                submission_id=submission.id,
                message=(
                    "Submission saved but could not sync to Google Sheets. "
                    "Sheet connection not found."
                ),
                synced=False,
                error="Sheet connection not found",
            )

        result = await self.write_with_retry(connection, submission.id, form_data, mappings)
        report = FanoutReport()
        report.add(FanoutOutcome(
            integration=SHEET,
            attempted=True,
            success=result.success,
            error=result.error,
        ))

        if self.metrics:
            self.metrics.fanout_attempts.labels(
                integration=SHEET, outcome="success" if result.success else "failure"
            ).inc()

        if result.success:
            await self._mark_synced(submission.id, result.row_number)
            return SubmissionResult(
                submission_id=submission.id,
                message="Submission saved and synced to Google Sheets successfully!",
                synced=True,
                row_number=result.row_number,
                report=report,
            )

        logger.warning(
            "submission_sheet_sync_failed",
            submission_id=str(submission.id),
            error=result.error,
        )
        return SubmissionResult(
            submission_id=submission.id,
            message="Submission saved but failed to sync to Google Sheets.",
            status_code=207,
            synced=False,
            error=result.error,
            report=report,
        )

    async def _mark_synced(self, submission_id: UUID, row_number: Optional[int]) -> None:
        try:
            await self.submission_repo.mark_synced(submission_id, row_number)
        except Exception as e:
            logger.error("submission_mark_synced_failed", submission_id=str(submission_id), error=str(e))

    # ------------------------------------------------------------------
    # GET /api/forms/{form_id}/submit
    # ------------------------------------------------------------------

    async def list_submissions(self, form_id: UUID, limit: int, offset: int) -> Dict[str, Any]:
        """
        A page of a form's submissions, newest first.

        Raises:
            SubmissionError: Unknown form
        """
        await self._get_form(form_id)
        submissions, total = await self.submission_repo.list_for_form(form_id, limit, offset)
        return {
            "submissions": [submission.model_dump(mode="json") for submission in submissions],
            "total": total,
            "limit": limit,
            "offset": offset,
        }
