"""Builders for records used across tests."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from api.src.models.forms import FormRecord, FormStatus
from api.src.models.sheets import SheetConnection
from api.src.models.submissions import SubmissionRecord


def make_form(
    status: str = FormStatus.PUBLISHED,
    fields: Optional[List[Dict[str, Any]]] = None,
    default_sheet_connection_id: Optional[UUID] = None,
    title: str = "Contact Us",
    user_id: Optional[UUID] = None,
) -> FormRecord:
    if fields is None:
        fields = [
            {"id": "name", "label": "Name", "type": "text"},
            {"id": "sep", "label": "", "type": "divider"},
            {"id": "email", "label": "Email", "type": "email"},
        ]
    return FormRecord(
        id=uuid4(),
        user_id=user_id or uuid4(),
        title=title,
        status=status,
        form_data={"fields": fields},
        default_sheet_connection_id=default_sheet_connection_id,
        created_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


def make_submission(form: FormRecord, data: Optional[Dict[str, Any]] = None) -> SubmissionRecord:
    return SubmissionRecord(
        id=uuid4(),
        form_id=form.id,
        user_id=form.user_id,
        submission_data=data or {},
        submitted_at=datetime(2024, 5, 2, 9, 30, tzinfo=timezone.utc),
    )


def make_connection(
    user_id: Optional[UUID] = None,
    expires_at: Optional[datetime] = None,
    refresh_token: Optional[str] = "refresh-1",
) -> SheetConnection:
    return SheetConnection(
        id=uuid4(),
        user_id=user_id or uuid4(),
        sheet_id="sheet-abc",
        sheet_name="Leads",
        sheet_url="https://docs.google.com/spreadsheets/d/sheet-abc/edit",
        access_token="access-1",
        refresh_token=refresh_token,
        expires_at=expires_at,
    )
