"""
Google account models: stored OAuth tokens, the authenticated user, and
small request bodies of the Google helper endpoints.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps from the database as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class GoogleTokens(BaseModel):
    """OAuth tokens of one Google account."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def needs_refresh(self, buffer_seconds: int = 60, now: Optional[datetime] = None) -> bool:
        """
        True when the expiry is known and falls inside the refresh buffer.

        Tokens without a stored expiry are used as they are; a 401 from
        Google triggers the refresh instead.
        """
        expires_at = ensure_utc(self.expires_at)
        if expires_at is None:
            return False
        now = now or utcnow()
        return now >= expires_at - timedelta(seconds=buffer_seconds)


class UserGoogleTokens(GoogleTokens):
    """Row of the user_google_tokens table."""

    user_id: UUID
    updated_at: Optional[datetime] = None


class CurrentUser(BaseModel):
    """User resolved from a Supabase access token."""

    id: UUID
    email: Optional[str] = None
    role: Optional[str] = None


class CreateFolderRequest(BaseModel):
    """Body of POST /api/google/folders."""

    name: Optional[str] = None
    parent_id: Optional[str] = Field(default=None, alias="parentId")

    model_config = ConfigDict(populate_by_name=True)


class CreateSpreadsheetRequest(BaseModel):
    """Body of POST /api/google/spreadsheets."""

    name: Optional[str] = None
