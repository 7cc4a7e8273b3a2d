"""
Google account router.

Lets the builder browse the connected Google account: spreadsheets,
Drive folders and calendars, plus an explicit token refresh. Calls use the
tokens stored in user_google_tokens for the authenticated user.
"""

from typing import Any, Awaitable, Callable, Dict, TypeVar

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from api.src.dependencies import (
    get_calendar_service,
    get_current_user,
    get_drive_service,
    get_google_auth_service,
)
from api.src.models.google import CreateFolderRequest, CreateSpreadsheetRequest, CurrentUser, GoogleTokens
from api.src.models.responses import ErrorResponse
from api.src.services.calendar_service import CalendarService
from api.src.services.drive_service import DriveService
from api.src.services.google_auth import GoogleAuthService

logger = structlog.get_logger(__name__)

T = TypeVar("T")

NOT_CONNECTED_MESSAGE = "Google account not connected"

router = APIRouter(
    prefix="/google",
    tags=["Google"],
    responses={
        400: {"model": ErrorResponse, "description": "Google Account Not Connected"},
        401: {"model": ErrorResponse, "description": "Unauthorized"},
    }
)


async def _require_tokens(auth: GoogleAuthService, user: CurrentUser) -> GoogleTokens:
    tokens = await auth.get_user_tokens(user.id)
    if tokens is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NOT_CONNECTED_MESSAGE)
    return tokens


async def _call_google(
    auth: GoogleAuthService,
    user: CurrentUser,
    operation: Callable[[str], Awaitable[T]],
    failure_message: str,
    event: str,
) -> T:
    """Run a Google call for the user, mapping any failure to a 500."""
    try:
        tokens = await _require_tokens(auth, user)
        return await auth.call_with_user_tokens(user.id, tokens, operation)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(event, user_id=str(user.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=failure_message
        )


@router.get("/spreadsheets", summary="List spreadsheets")
async def list_spreadsheets(
    current_user: CurrentUser = Depends(get_current_user),
    auth: GoogleAuthService = Depends(get_google_auth_service),
    drive: DriveService = Depends(get_drive_service),
) -> Dict[str, Any]:
    spreadsheets = await _call_google(
        auth, current_user, drive.list_spreadsheets,
        "Failed to fetch spreadsheets", "google_spreadsheets_fetch_failed",
    )
    return {"success": True, "spreadsheets": spreadsheets}


@router.post("/spreadsheets", summary="Create a spreadsheet")
async def create_spreadsheet(
    body: CreateSpreadsheetRequest,
    current_user: CurrentUser = Depends(get_current_user),
    auth: GoogleAuthService = Depends(get_google_auth_service),
    drive: DriveService = Depends(get_drive_service),
) -> Dict[str, Any]:
    if not body.name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")

    spreadsheet = await _call_google(
        auth, current_user, lambda token: drive.create_spreadsheet(token, body.name),
        "Failed to create spreadsheet", "google_spreadsheet_create_failed",
    )
    return {"success": True, "spreadsheet": spreadsheet}


@router.get("/folders", summary="List Drive folders")
async def list_folders(
    current_user: CurrentUser = Depends(get_current_user),
    auth: GoogleAuthService = Depends(get_google_auth_service),
    drive: DriveService = Depends(get_drive_service),
) -> Dict[str, Any]:
    folders = await _call_google(
        auth, current_user, drive.list_folders,
        "Failed to fetch folders", "google_folders_fetch_failed",
    )
    return {"success": True, "folders": folders}


@router.post("/folders", summary="Create a Drive folder")
async def create_folder(
    body: CreateFolderRequest,
    current_user: CurrentUser = Depends(get_current_user),
    auth: GoogleAuthService = Depends(get_google_auth_service),
    drive: DriveService = Depends(get_drive_service),
) -> Dict[str, Any]:
    if not body.name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")

    folder = await _call_google(
        auth, current_user,
        lambda token: drive.create_folder(token, body.name, body.parent_id),
        "Failed to create folder", "google_folder_create_failed",
    )
    return {"success": True, "folder": folder}


@router.get("/calendars", summary="List calendars")
async def list_calendars(
    current_user: CurrentUser = Depends(get_current_user),
    auth: GoogleAuthService = Depends(get_google_auth_service),
    calendar: CalendarService = Depends(get_calendar_service),
) -> Dict[str, Any]:
    calendars = await _call_google(
        auth, current_user, calendar.list_calendars,
        "Failed to fetch calendars", "google_calendars_fetch_failed",
    )
    return {"success": True, "calendars": calendars}


@router.post("/refresh-tokens", summary="Refresh stored Google tokens")
async def refresh_tokens(
    current_user: CurrentUser = Depends(get_current_user),
    auth: GoogleAuthService = Depends(get_google_auth_service),
) -> Dict[str, Any]:
    try:
        stored = await auth.token_repo.get_tokens(current_user.id)
        if stored is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NOT_CONNECTED_MESSAGE)

        await auth.refresh_user_tokens(current_user.id, stored)
    except HTTPException:
        raise
    except Exception as e:
        logger.error("google_token_refresh_request_failed", user_id=str(current_user.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to refresh tokens"
        )

    return {"success": True, "message": "Tokens refreshed successfully"}
