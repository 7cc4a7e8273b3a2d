"""
Form router.

Provides endpoints for:
- Creating a draft form together with its submissions spreadsheet
- Exporting a form's submissions as CSV

All endpoints require a Supabase access token.
"""

from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from api.src.dependencies import (
    get_current_user,
    get_form_repository,
    get_sheets_service,
    get_submission_repository,
)
from api.src.models.forms import CreateFormRequest, ExportCsvRequest
from api.src.models.google import CurrentUser, GoogleTokens
from api.src.models.responses import ErrorResponse
from api.src.models.sheets import TIMESTAMP_HEADER
from api.src.repositories.form_repo import FormRepository
from api.src.repositories.submission_repo import SubmissionRepository
from api.src.services.export_service import build_submissions_csv, export_filename
from api.src.services.sheets_service import SheetsService

logger = structlog.get_logger(__name__)

router = APIRouter(
    tags=["Forms"],
    responses={
        401: {"model": ErrorResponse, "description": "Unauthorized"},
    }
)


@router.post(
    "/forms/create",
    summary="Create a form with a submissions spreadsheet",
)
async def create_form(
    body: CreateFormRequest,
    current_user: CurrentUser = Depends(get_current_user),
    form_repo: FormRepository = Depends(get_form_repository),
    sheets: SheetsService = Depends(get_sheets_service),
) -> Dict[str, Any]:
    """
    Insert a draft form and create "<title> - Submissions" for it.

    The form is removed again when the spreadsheet cannot be created.
    """
    if not body.title or body.google_tokens is None or not body.google_tokens.complete:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Title and Google tokens are required"
        )

    try:
        form = await form_repo.create_form(
            current_user.id, body.title, body.description, body.fields
        )
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create form"
        )

    headers = [TIMESTAMP_HEADER] + [str(field.get("label") or "") for field in body.fields]
    tokens = GoogleTokens(
        access_token=body.google_tokens.access_token,
        refresh_token=body.google_tokens.refresh_token,
    )

    try:
        connection = await sheets.create_sheet(
            current_user.id,
            f"{body.title} - Submissions",
            tokens,
            headers=headers,
            form_id=form.id,
        )
    except Exception as e:
        logger.error("form_sheet_create_failed", form_id=str(form.id), error=str(e))
        await form_repo.delete_form(form.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create Google Sheet"
        )

    try:
        await form_repo.link_sheet_connection(form.id, connection.id)
    except Exception as e:
        logger.warning("form_sheet_link_failed", form_id=str(form.id), error=str(e))

    return {
        "success": True,
        "form": form.model_dump(mode="json"),
        "sheet": {"id": connection.sheet_id, "url": connection.sheet_url},
    }


@router.post(
    "/export-csv",
    summary="Export form submissions as CSV",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}}}},
)
async def export_csv(
    body: ExportCsvRequest,
    current_user: CurrentUser = Depends(get_current_user),
    form_repo: FormRepository = Depends(get_form_repository),
    submission_repo: SubmissionRepository = Depends(get_submission_repository),
) -> Response:
    if body.form_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing formId")

    form = await form_repo.get_form(body.form_id)
    if form is None or form.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Form not found")

    try:
        submissions = await submission_repo.list_all_for_form(form.id)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch submissions"
        )

    content = build_submissions_csv(form, submissions)
    logger.info(
        "submissions_exported",
        form_id=str(form.id),
        user_id=str(current_user.id),
        rows=len(submissions),
    )

    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(form)}"'},
    )
