"""
Sheet connection models.

A sheet connection links a user (and optionally a form) to one Google
Sheet together with the OAuth tokens used to write to it.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from api.src.models.google import GoogleTokens

SUBMISSIONS_TAB = "Form Submissions"
TIMESTAMP_HEADER = "Timestamp"


class SheetConnection(BaseModel):
    """Row of the sheet_connections table."""

    id: UUID
    user_id: UUID
    form_id: Optional[UUID] = None
    sheet_id: str
    sheet_name: str = ""
    sheet_url: str = ""
    is_active: bool = True
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_synced: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def tokens(self) -> GoogleTokens:
        return GoogleTokens(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """Serializable view without OAuth tokens."""
        return self.model_dump(mode="json", exclude={"access_token", "refresh_token"})


@dataclass
class SheetWriteResult:
    """Outcome of appending one submission row."""

    success: bool
    row_number: Optional[int] = None
    error: Optional[str] = None
    retryable: bool = False


# ============================================================================
# Request Schemas
# ============================================================================


class SyncHeadersRequest(BaseModel):
    """Body of POST /api/sheets/sync-headers."""

    connection_id: Optional[UUID] = Field(default=None, alias="connectionId")

    model_config = ConfigDict(populate_by_name=True)


class CreateSheetRequest(BaseModel):
    """Body of POST /api/sheets/create."""

    sheet_name: Optional[str] = Field(default=None, alias="sheetName")
    access_token: Optional[str] = Field(default=None, alias="accessToken")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)


class ConnectSheetRequest(BaseModel):
    """Body of POST /api/sheets/connect."""

    sheet_url: str = Field(..., alias="sheetUrl", min_length=1)
    access_token: str = Field(..., alias="accessToken", min_length=1)
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)
