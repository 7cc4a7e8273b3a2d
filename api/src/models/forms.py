"""
Form models.

Forms are owned by the builder UI; this service only reads their
configuration (title, status, field list) and creates draft forms for the
create-with-sheet flow.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Field types that only affect layout and never become sheet columns
LAYOUT_FIELD_TYPES = frozenset({"divider", "header"})


class FormStatus:
    """Values of forms.status."""
    DRAFT = "draft"
    PUBLISHED = "published"


class FormField(BaseModel):
    """A single field of a form definition."""

    id: str
    label: Optional[str] = None
    type: Optional[str] = None
    column_name: Optional[str] = Field(default=None, alias="columnName")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @property
    def is_layout(self) -> bool:
        return self.type in LAYOUT_FIELD_TYPES

    @property
    def display_name(self) -> str:
        """Column title used for exports: label, then column name, then id."""
        return self.label or self.column_name or self.id


class FormRecord(BaseModel):
    """Row of the forms table."""

    id: UUID
    user_id: UUID
    title: str = ""
    description: Optional[str] = None
    status: str = FormStatus.DRAFT
    form_data: Dict[str, Any] = Field(default_factory=dict)
    default_sheet_connection_id: Optional[UUID] = None
    created_at: Optional[datetime] = None

    @property
    def is_published(self) -> bool:
        return self.status == FormStatus.PUBLISHED

    @property
    def fields(self) -> List[FormField]:
        """Parsed field list from form_data; malformed entries are skipped."""
        raw_fields = (self.form_data or {}).get("fields") or []
        parsed = []
        for raw in raw_fields:
            if isinstance(raw, dict) and raw.get("id") is not None:
                parsed.append(FormField.model_validate({**raw, "id": str(raw["id"])}))
        return parsed


def collect_sheet_headers(forms: List[FormRecord]) -> List[str]:
    """
    Unique field labels across forms, in first-seen order.

    Layout fields and fields without a label are skipped.
    """
    headers: List[str] = []
    seen = set()
    for form in forms:
        for field in form.fields:
            if field.is_layout or not field.label:
                continue
            if field.label not in seen:
                seen.add(field.label)
                headers.append(field.label)
    return headers


# ============================================================================
# Request / Response Schemas
# ============================================================================


class GoogleTokenPair(BaseModel):
    """Tokens handed over by the client after the Google consent flow."""

    access_token: Optional[str] = Field(default=None, alias="accessToken")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def complete(self) -> bool:
        return bool(self.access_token and self.refresh_token)


class CreateFormRequest(BaseModel):
    """Body of POST /api/forms/create."""

    title: Optional[str] = None
    description: str = ""
    fields: List[Dict[str, Any]] = Field(default_factory=list)
    google_tokens: Optional[GoogleTokenPair] = Field(default=None, alias="googleTokens")

    model_config = ConfigDict(populate_by_name=True)


class ExportCsvRequest(BaseModel):
    """Body of POST /api/export-csv."""

    form_id: Optional[UUID] = Field(default=None, alias="formId")

    model_config = ConfigDict(populate_by_name=True)
