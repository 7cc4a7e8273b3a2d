"""
Sheet connection router.

Provides endpoints for:
- Creating a new spreadsheet and connecting it
- Connecting an existing spreadsheet by URL
- Listing and deleting connections
- Syncing a sheet's header row with the forms writing to it

All endpoints require a Supabase access token.
"""

from typing import Any, Dict
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from api.src.dependencies import (
    get_current_user,
    get_form_repository,
    get_sheet_connection_repository,
    get_sheets_service,
)
from api.src.models.forms import collect_sheet_headers
from api.src.models.google import CurrentUser, GoogleTokens
from api.src.models.responses import ErrorResponse
from api.src.models.sheets import ConnectSheetRequest, CreateSheetRequest, SyncHeadersRequest
from api.src.repositories.form_repo import FormRepository
from api.src.repositories.sheet_connection_repo import SheetConnectionRepository
from api.src.services.sheets_service import SheetsService

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/sheets",
    tags=["Sheets"],
    responses={
        401: {"model": ErrorResponse, "description": "Unauthorized"},
    }
)


@router.post(
    "/create",
    summary="Create and connect a new spreadsheet",
)
async def create_sheet(
    body: CreateSheetRequest,
    current_user: CurrentUser = Depends(get_current_user),
    sheets: SheetsService = Depends(get_sheets_service),
) -> Dict[str, Any]:
    if not body.sheet_name or not body.access_token or not body.refresh_token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Sheet name, access token, and refresh token are required"
        )

    tokens = GoogleTokens(access_token=body.access_token, refresh_token=body.refresh_token)

    try:
        connection = await sheets.create_sheet(current_user.id, body.sheet_name, tokens)
    except Exception as e:
        logger.error("sheet_create_failed", user_id=str(current_user.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create Google Sheet - check your Google Sheets permissions "
                   "and try reconnecting your account"
        )

    return {
        "success": True,
        "sheetId": connection.sheet_id,
        "sheetUrl": connection.sheet_url,
        "connection": connection.to_public_dict(),
    }


@router.post(
    "/connect",
    summary="Connect an existing spreadsheet",
)
async def connect_sheet(
    body: ConnectSheetRequest,
    current_user: CurrentUser = Depends(get_current_user),
    sheets: SheetsService = Depends(get_sheets_service),
) -> Dict[str, Any]:
    tokens = GoogleTokens(access_token=body.access_token, refresh_token=body.refresh_token)

    try:
        connection = await sheets.connect_existing_sheet(current_user.id, body.sheet_url, tokens)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error("sheet_connect_failed", user_id=str(current_user.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Failed to connect to Google Sheet. Please check the URL and permissions."
        )

    return {"success": True, "connection": connection.to_public_dict()}


@router.get(
    "",
    summary="List sheet connections",
)
async def list_sheets(
    current_user: CurrentUser = Depends(get_current_user),
    sheets: SheetsService = Depends(get_sheets_service),
) -> Dict[str, Any]:
    connections = await sheets.list_connections(current_user.id)
    return {"success": True, "connections": connections}


@router.delete(
    "/{connection_id}",
    summary="Delete a sheet connection",
)
async def delete_sheet(
    connection_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    sheets: SheetsService = Depends(get_sheets_service),
) -> Dict[str, Any]:
    deleted = await sheets.delete_connection(connection_id, current_user.id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sheet connection not found")
    return {"success": True}


async def _sync_connection_headers(
    connection_id: UUID,
    current_user: CurrentUser,
    sheets: SheetsService,
    form_repo: FormRepository,
    connection_repo: SheetConnectionRepository,
) -> Dict[str, Any]:
    connection = await connection_repo.get_connection(connection_id)
    if connection is None or connection.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sheet connection not found")

    try:
        forms = await form_repo.list_forms_for_connection(connection_id)
    except Exception as e:
        logger.error("sheet_forms_fetch_failed", connection_id=str(connection_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch forms"
        )

    headers = collect_sheet_headers(forms)

    try:
        await sheets.sync_headers(connection, headers)
    except Exception as e:
        logger.error("sheet_header_sync_failed", connection_id=str(connection_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to sync headers with Google Sheet"
        )

    return {
        "success": True,
        "message": "Headers synced successfully",
        "headerCount": len(headers),
    }


@router.post(
    "/sync-headers",
    summary="Sync sheet headers (connection in body)",
)
async def sync_headers(
    body: SyncHeadersRequest,
    current_user: CurrentUser = Depends(get_current_user),
    sheets: SheetsService = Depends(get_sheets_service),
    form_repo: FormRepository = Depends(get_form_repository),
    connection_repo: SheetConnectionRepository = Depends(get_sheet_connection_repository),
) -> Dict[str, Any]:
    if body.connection_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Connection ID is required"
        )
    return await _sync_connection_headers(
        body.connection_id, current_user, sheets, form_repo, connection_repo
    )


@router.post(
    "/{connection_id}/sync-headers",
    summary="Sync sheet headers",
)
async def sync_connection_headers(
    connection_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    sheets: SheetsService = Depends(get_sheets_service),
    form_repo: FormRepository = Depends(get_form_repository),
    connection_repo: SheetConnectionRepository = Depends(get_sheet_connection_repository),
) -> Dict[str, Any]:
    """
    Add every label used by the connection's forms to the sheet's header row.

    Existing columns keep their position; new labels are appended.
    """
    return await _sync_connection_headers(
        connection_id, current_user, sheets, form_repo, connection_repo
    )
