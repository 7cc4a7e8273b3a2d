"""
Submission intake router.

Provides the public endpoints forms post to:
- POST /api/submit: published forms, JSON or multipart with files
- POST /api/forms/submit: sync to the Google targets chosen by the client
- POST /api/forms/{form_id}/submit: append to the form's default sheet
- GET /api/forms/{form_id}/submit: paginated submission listing

Intake endpoints are rate limited per client IP.
"""

import json
from typing import Any, Dict, List, Tuple
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from api.src.dependencies import get_submission_service, limiter, submission_rate_limit
from api.src.models.responses import ErrorResponse
from api.src.models.submissions import (
    DefaultSheetSubmitRequest,
    IncomingFile,
    SubmissionResult,
    UserSettingsSubmitRequest,
)
from api.src.services.submission_service import SubmissionError, SubmissionService

logger = structlog.get_logger(__name__)

router = APIRouter(
    tags=["Submissions"],
    responses={
        400: {"model": ErrorResponse, "description": "Bad Request"},
        404: {"model": ErrorResponse, "description": "Form Not Found"},
        500: {"model": ErrorResponse, "description": "Submission Not Stored"},
    }
)


def _to_response(result: SubmissionResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.to_response())


def _raise_for(error: SubmissionError) -> None:
    raise HTTPException(status_code=error.status_code, detail=error.message)


async def _read_multipart(request: Request) -> Tuple[Dict[str, Any], List[IncomingFile]]:
    form = await request.form()

    raw = form.get("formData")
    if not raw or not isinstance(raw, str):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Form data is required")

    try:
        payload = json.loads(raw)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid form data format"
        )

    files: List[IncomingFile] = []
    for key, value in form.multi_items():
        if isinstance(value, UploadFile) and value.filename:
            content = await value.read()
            if content:
                files.append(IncomingFile(
                    field_name=key,
                    filename=value.filename,
                    content=content,
                    content_type=value.content_type or "application/octet-stream",
                ))

    return payload, files


async def _read_json(request: Request) -> Dict[str, Any]:
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid form data format"
        )


@router.post(
    "/submit",
    summary="Submit a published form",
)
@limiter.limit(submission_rate_limit)
async def submit_form(
    request: Request,
    service: SubmissionService = Depends(get_submission_service),
):
    """
    Store a submission of a published form and run its integrations.

    **Request Body:** JSON ``{formId, formData}`` or multipart/form-data with
    a ``formData`` part holding that object as JSON, plus file parts keyed
    by field name.
    """
    content_type = request.headers.get("content-type", "")

    files: List[IncomingFile] = []
    if "multipart/form-data" in content_type:
        payload, files = await _read_multipart(request)
    else:
        payload = await _read_json(request)

    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid form data format")

    raw_form_id = payload.get("formId")
    form_data = payload.get("formData")

    if not raw_form_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="formId is required")
    if form_data is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Form data is required")
    if not isinstance(form_data, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid form data format")

    try:
        form_id = UUID(str(raw_form_id))
    except ValueError:
        # Unknown IDs and malformed IDs look the same to the caller
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Form not found")

    try:
        result = await service.submit_published_form(form_id, form_data, files)
    except SubmissionError as e:
        _raise_for(e)

    return _to_response(result)


@router.post(
    "/forms/submit",
    summary="Submit a form and sync it to chosen Google targets",
)
@limiter.limit(submission_rate_limit)
async def submit_with_user_settings(
    request: Request,
    body: UserSettingsSubmitRequest,
    service: SubmissionService = Depends(get_submission_service),
):
    """
    Store a submission, then write it to the selected spreadsheet, upload
    inline files to the selected folder and book the appointment in the
    selected calendar.
    """
    if body.form_id is None or body.form_data is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Form ID and data are required"
        )

    try:
        form_id = UUID(body.form_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Form not found")

    try:
        result = await service.submit_with_user_settings(
            form_id, body.form_data, body.user_settings
        )
    except SubmissionError as e:
        _raise_for(e)

    return _to_response(result)


@router.post(
    "/forms/{form_id}/submit",
    summary="Submit a form to its default sheet",
    responses={207: {"description": "Stored, but the sheet write failed"}},
)
@limiter.limit(submission_rate_limit)
async def submit_to_default_sheet(
    request: Request,
    form_id: UUID,
    body: DefaultSheetSubmitRequest,
    service: SubmissionService = Depends(get_submission_service),
):
    """
    Store a submission and append it to the form's default sheet.

    **Responses:** 200 when stored (and synced, if a sheet is connected),
    207 when stored but the sheet write failed after retries.
    """
    try:
        result = await service.submit_to_default_sheet(
            form_id, body.form_data, body.field_mappings
        )
    except SubmissionError as e:
        _raise_for(e)

    return _to_response(result)


@router.get(
    "/forms/{form_id}/submit",
    summary="List form submissions",
)
async def list_submissions(
    form_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: SubmissionService = Depends(get_submission_service),
) -> Dict[str, Any]:
    """Submissions of a form, newest first."""
    try:
        return await service.list_submissions(form_id, limit, offset)
    except SubmissionError as e:
        _raise_for(e)
    except Exception as e:
        logger.error("submission_list_error", form_id=str(form_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch submissions"
        )
