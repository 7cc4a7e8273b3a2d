"""
Submission models.

Covers the form_submissions row, the request bodies of the three intake
endpoints, and the outcome records the fan-out produces.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ProcessingStatus:
    """Values of form_submissions.processing_status."""
    PENDING = "pending"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"


class SubmissionRecord(BaseModel):
    """Row of the form_submissions table."""

    id: UUID
    form_id: UUID
    user_id: Optional[UUID] = None
    submission_data: Dict[str, Any] = Field(default_factory=dict)
    submitted_at: Optional[datetime] = None
    processing_status: Optional[str] = None
    sheet_connection_id: Optional[UUID] = None
    synced_to_sheet: Optional[bool] = None
    sheet_row_number: Optional[int] = None
    sync_error: Optional[str] = None
    retry_count: Optional[int] = None
    last_retry_at: Optional[datetime] = None
    google_sheet_written: Optional[bool] = None
    drive_files_uploaded: Optional[bool] = None
    calendar_event_created: Optional[bool] = None
    email_sent: Optional[bool] = None
    sheet_name: Optional[str] = None
    sheet_url: Optional[str] = None


# ============================================================================
# Request Schemas
# ============================================================================


class UserSettings(BaseModel):
    """Per-submission Google targets chosen in the builder."""

    selected_spreadsheet: Optional[str] = Field(default=None, alias="selectedSpreadsheet")
    selected_folder: Optional[str] = Field(default=None, alias="selectedFolder")
    selected_calendar: Optional[str] = Field(default=None, alias="selectedCalendar")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserSettingsSubmitRequest(BaseModel):
    """Body of POST /api/forms/submit."""

    form_id: Optional[str] = Field(default=None, alias="formId")
    form_data: Optional[Dict[str, Any]] = Field(default=None, alias="formData")
    user_settings: Optional[UserSettings] = Field(default=None, alias="userSettings")

    model_config = ConfigDict(populate_by_name=True)


class DefaultSheetSubmitRequest(BaseModel):
    """Body of POST /api/forms/{form_id}/submit."""

    form_data: Dict[str, Any] = Field(default_factory=dict, alias="formData")
    field_mappings: Dict[str, str] = Field(default_factory=dict, alias="fieldMappings")

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Pipeline Values
# ============================================================================


@dataclass
class IncomingFile:
    """A file received with a submission, already read into memory."""

    field_name: str
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class FanoutOutcome:
    """Result of a single best-effort integration branch."""

    integration: str
    attempted: bool = False
    success: bool = False
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.attempted and not self.success


@dataclass
class FanoutReport:
    """Collected outcomes of one submission's fan-out."""

    outcomes: List[FanoutOutcome] = field(default_factory=list)

    def add(self, outcome: FanoutOutcome) -> FanoutOutcome:
        self.outcomes.append(outcome)
        return outcome

    def get(self, integration: str) -> Optional[FanoutOutcome]:
        for outcome in self.outcomes:
            if outcome.integration == integration:
                return outcome
        return None

    def succeeded(self, integration: str) -> bool:
        outcome = self.get(integration)
        return bool(outcome and outcome.attempted and outcome.success)

    @property
    def errors(self) -> List[str]:
        return [
            f"{outcome.integration}: {outcome.error}"
            for outcome in self.outcomes
            if outcome.failed and outcome.error
        ]

    @property
    def error_summary(self) -> Optional[str]:
        errors = self.errors
        return "; ".join(errors) if errors else None

    @property
    def processing_status(self) -> str:
        if any(outcome.failed for outcome in self.outcomes):
            return ProcessingStatus.COMPLETED_WITH_ERRORS
        return ProcessingStatus.COMPLETED


@dataclass
class SubmissionResult:
    """What an intake flow returns to its router."""

    submission_id: UUID
    message: str
    status_code: int = 200
    synced: Any = None
    row_number: Optional[int] = None
    error: Optional[str] = None
    report: Optional[FanoutReport] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": True,
            "message": self.message,
            "submissionId": str(self.submission_id),
        }
        if self.synced is not None:
            body["synced"] = self.synced
        if self.row_number is not None:
            body["rowNumber"] = self.row_number
        if self.error is not None:
            body["error"] = self.error
        return body
