"""
File upload router.

POST /api/upload stores the files of an existing submission in the form
owner's Google Drive, using the form's file settings.
"""

import json
from typing import Any, Dict, List
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.datastructures import UploadFile

from api.src.dependencies import get_drive_service, get_form_repository, limiter, submission_rate_limit
from api.src.models.responses import ErrorResponse
from api.src.models.submissions import IncomingFile
from api.src.repositories.form_repo import FormRepository
from api.src.services.drive_service import DriveService

logger = structlog.get_logger(__name__)

REQUIRED_PARTS = ("formId", "submissionId", "submissionData", "formTitle")

router = APIRouter(
    tags=["Uploads"],
    responses={
        400: {"model": ErrorResponse, "description": "Bad Request"},
        500: {"model": ErrorResponse, "description": "Upload Failed"},
    }
)


@router.post(
    "/upload",
    summary="Upload submission files to Google Drive",
)
@limiter.limit(submission_rate_limit)
async def upload_files(
    request: Request,
    drive: DriveService = Depends(get_drive_service),
    form_repo: FormRepository = Depends(get_form_repository),
) -> Dict[str, Any]:
    """
    **Request Body:** multipart/form-data with ``formId``, ``submissionId``,
    ``submissionData`` (JSON), ``formTitle`` and one part per file, named
    after the form field it belongs to.
    """
    form = await request.form()

    values = {name: form.get(name) for name in REQUIRED_PARTS}
    if not all(isinstance(value, str) and value for value in values.values()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required parameters")

    try:
        form_id = UUID(values["formId"])
        submission_id = UUID(values["submissionId"])
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required parameters")

    try:
        submission_data = json.loads(values["submissionData"])
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid submission data format")
    if not isinstance(submission_data, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid submission data format")

    files: List[IncomingFile] = []
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            content = await value.read()
            if content:
                files.append(IncomingFile(
                    field_name=key,
                    filename=value.filename or key,
                    content=content,
                    content_type=value.content_type or "application/octet-stream",
                ))

    if not files:
        return {"success": True, "message": "No files to upload", "uploadedFiles": []}

    record = await form_repo.get_form(form_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Form not found")

    result = await drive.process_file_uploads(
        form_id,
        submission_id,
        submission_data,
        values["formTitle"],
        files,
        record.user_id,
    )

    if not result.success:
        logger.error(
            "file_upload_request_failed",
            form_id=str(form_id),
            submission_id=str(submission_id),
            error=result.error,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=result.error or "File upload failed"
        )

    return {
        "success": True,
        "uploadedFiles": [uploaded.to_dict() for uploaded in result.uploaded_files],
        "message": f"Successfully uploaded {len(files)} file(s)",
    }
