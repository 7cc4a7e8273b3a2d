"""
Per-form integration settings returned by the database RPC functions
(get_form_email_settings, get_form_calendar_settings,
get_form_file_settings) and the records the integrations produce.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class EmailSettings(BaseModel):
    """Row of get_form_email_settings."""

    is_enabled: bool = False
    form_title: str = ""
    recipient_emails: List[str] = Field(default_factory=list)
    subject_template: Optional[str] = None
    email_template: Optional[str] = None
    include_submission_data: bool = True

    @field_validator("recipient_emails", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return v or []


class CalendarSettings(BaseModel):
    """Row of get_form_calendar_settings."""

    is_enabled: bool = False
    form_title: str = ""
    calendar_id: Optional[str] = None
    date_field_name: Optional[str] = None
    time_field_name: Optional[str] = None
    timezone: str = "UTC"
    duration_minutes: int = 60
    event_title_template: str = "{{form_title}}"
    event_description_template: str = ""
    add_attendees: bool = False
    attendee_email_field: Optional[str] = None
    send_notifications: bool = False

    @field_validator("timezone", "event_title_template", "event_description_template", mode="before")
    @classmethod
    def keep_default_on_null(cls, v: Any, info) -> Any:
        if v is None:
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def default_duration(cls, v: Any) -> Any:
        return v or 60


class FileSettings(BaseModel):
    """Row of get_form_file_settings."""

    is_enabled: bool = False
    form_title: str = ""
    base_folder_id: Optional[str] = None
    create_subfolders: bool = False
    folder_structure_template: Optional[str] = None
    organize_by_date: bool = False
    date_format: Optional[str] = None
    file_naming_template: Optional[str] = None
    file_permissions: str = "private"
    share_with_submitter: bool = False
    submitter_permission: str = "reader"

    @field_validator("file_permissions", "submitter_permission", mode="before")
    @classmethod
    def keep_default_on_null(cls, v: Any, info) -> Any:
        if v is None:
            return cls.model_fields[info.field_name].default
        return v


@dataclass
class UploadedFile:
    """A file stored in Google Drive for a submission."""

    field_name: str
    original_name: str
    drive_file_id: str
    drive_url: Optional[str] = None
    folder_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fieldName": self.field_name,
            "originalName": self.original_name,
            "driveFileId": self.drive_file_id,
            "driveUrl": self.drive_url,
            "folderPath": self.folder_path,
        }


@dataclass
class IntegrationResult:
    """
    Result of one integration call.

    ``performed`` is False when the integration is switched off for the form,
    which counts as success without any external call.
    """

    success: bool
    performed: bool = True
    error: Optional[str] = None
    external_id: Optional[str] = None
    uploaded_files: List[UploadedFile] = field(default_factory=list)

    @classmethod
    def disabled(cls) -> "IntegrationResult":
        return cls(success=True, performed=False)

    @classmethod
    def failure(cls, error: str) -> "IntegrationResult":
        return cls(success=False, error=error)
