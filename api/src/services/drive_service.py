"""
Google Drive file handling for submissions.

Uploaded files are stored under a folder path rendered from the form's file
settings, named from the file naming template, shared according to the
configured permissions and tracked in uploaded_files_log.
"""

import os
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

import structlog

from api.src.models.google import utcnow
from api.src.models.integrations import FileSettings, IntegrationResult, UploadedFile
from api.src.models.submissions import IncomingFile
from api.src.repositories.integration_repo import IntegrationRepository
from api.src.services.google_auth import GoogleAuthService
from api.src.services.google_client import (
    FOLDER_MIME_TYPE,
    SPREADSHEET_MIME_TYPE,
    GoogleAPIClient,
)
from api.src.services.templating import format_value, interpolate
from api.src.utils.error_handler import GoogleAPIError

logger = structlog.get_logger(__name__)

DEFAULT_DATE_FORMAT = "YYYY-MM-DD"
DEFAULT_FOLDER_TEMPLATE = "{{form_title}}"


def format_date(moment: datetime, date_format: Optional[str] = None) -> str:
    """Render a date with YYYY, MM and DD tokens."""
    pattern = date_format or DEFAULT_DATE_FORMAT
    return (
        pattern.replace("YYYY", f"{moment.year:04d}")
        .replace("MM", f"{moment.month:02d}")
        .replace("DD", f"{moment.day:02d}")
    )


def _path_safe(value: Any) -> str:
    return format_value(value).replace("/", "-").replace("\\", "-")


def _safe_data(data: Mapping[str, Any]) -> Dict[str, str]:
    return {key: _path_safe(value) for key, value in data.items()}


def render_folder_path(
    settings: FileSettings,
    form_title: str,
    data: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> str:
    """
    Folder path for a submission's files, segments separated by "/".

    Rendered values never introduce extra path segments.
    """
    now = now or utcnow()
    date_str = format_date(now, settings.date_format)
    template = settings.folder_structure_template or DEFAULT_FOLDER_TEMPLATE

    path = interpolate(
        template,
        _path_safe(form_title),
        _safe_data(data),
        extra={"date": date_str.replace("/", "-")},
    ).strip("/")

    if settings.organize_by_date:
        path = f"{path}/{date_str}" if path else date_str

    return path


def render_file_name(
    template: Optional[str],
    original_filename: str,
    form_title: str,
    data: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> str:
    """Drive file name from the naming template; keeps the original extension."""
    if not template:
        return original_filename

    now = now or utcnow()
    stem, extension = os.path.splitext(original_filename)
    extension = extension.lstrip(".")

    name = interpolate(
        template,
        _path_safe(form_title),
        _safe_data(data),
        extra={
            "original_filename": _path_safe(original_filename),
            "original_name": _path_safe(stem),
            "extension": extension,
            "timestamp": now.strftime("%Y%m%d-%H%M%S"),
            "date": format_date(now).replace("/", "-"),
        },
    ).strip()

    if not name:
        return original_filename

    if extension and not os.path.splitext(name)[1]:
        name = f"{name}.{extension}"

    return name


def _escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveService:
    """Uploads submission files to Google Drive."""

    def __init__(
        self,
        client: GoogleAPIClient,
        auth: GoogleAuthService,
        integration_repo: IntegrationRepository,
    ):
        self.client = client
        self.auth = auth
        self.integration_repo = integration_repo

    async def get_or_create_folder_structure(
        self,
        access_token: str,
        path: str,
        base_folder_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Walk a "/" separated path, reusing existing folders.

        Args:
            access_token: Google access token
            path: Folder path
            base_folder_id: Folder the path starts in (Drive root when None)

        Returns:
            ID of the innermost folder
        """
        parent_id = base_folder_id

        for segment in (part.strip() for part in path.split("/")):
            if not segment:
                continue

            query = (
                f"name='{_escape_query(segment)}' and mimeType='{FOLDER_MIME_TYPE}' "
                "and trashed=false"
            )
            if parent_id:
                query += f" and '{_escape_query(parent_id)}' in parents"

            existing = await self.client.list_files(access_token, query, fields="files(id,name)")
            if existing:
                parent_id = existing[0]["id"]
                continue

            created = await self.client.create_folder(access_token, segment, parent_id)
            parent_id = created["id"]
            logger.info("drive_folder_created", folder_id=parent_id, name=segment)

        return parent_id

    async def set_file_permissions(
        self,
        access_token: str,
        file_id: str,
        mode: str,
        user_email: Optional[str] = None,
        role: str = "reader",
    ) -> None:
        """
        Share an uploaded file.

        A link share that fails raises; a failed grant to the submitter is
        only logged.
        """
        if mode == "anyone_with_link":
            await self.client.create_permission(
                access_token, file_id, {"role": "reader", "type": "anyone"}
            )

        if user_email:
            try:
                await self.client.create_permission(
                    access_token,
                    file_id,
                    {"role": role, "type": "user", "emailAddress": user_email},
                )
            except GoogleAPIError as e:
                logger.warning(
                    "drive_user_permission_failed",
                    file_id=file_id,
                    status=e.status,
                    error=e.message,
                )

    async def upload_file(
        self,
        access_token: str,
        file: IncomingFile,
        name: str,
        folder_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self.client.upload_file(
            access_token, name, file.content, file.content_type, folder_id
        )

    async def process_file_uploads(
        self,
        form_id: UUID,
        submission_id: UUID,
        data: Mapping[str, Any],
        form_title: str,
        files: List[IncomingFile],
        owner_id: UUID,
    ) -> IntegrationResult:
        """
        Upload a submission's files according to the form's file settings.

        A file that fails is logged and marked failed; the remaining files
        are still processed.

        Returns:
            IntegrationResult with the uploaded files
        """
        settings = await self.integration_repo.get_file_settings(form_id)
        if settings is None:
            return IntegrationResult.failure("File settings not found")

        if not settings.is_enabled:
            return IntegrationResult.disabled()

        tokens = await self.auth.get_user_tokens(owner_id)
        if tokens is None:
            return IntegrationResult.failure("Google access token not available")

        token = tokens.access_token
        title = settings.form_title or form_title
        uploaded: List[UploadedFile] = []
        failures: List[str] = []

        submitter_email = None
        if settings.share_with_submitter:
            submitter_email = data.get("email") or data.get("email_address") or None
            if not isinstance(submitter_email, str):
                submitter_email = None

        for file in files:
            log_id = await self._start_log(form_id, submission_id, file)
            try:
                folder_path = render_folder_path(settings, title, data)
                folder_id = settings.base_folder_id
                if settings.create_subfolders and folder_path:
                    folder_id = await self.get_or_create_folder_structure(
                        token, folder_path, settings.base_folder_id
                    )

                drive_name = render_file_name(
                    settings.file_naming_template, file.filename, title, data
                )
                result = await self.upload_file(token, file, drive_name, folder_id)

                await self.set_file_permissions(
                    token,
                    result["id"],
                    settings.file_permissions,
                    submitter_email,
                    settings.submitter_permission,
                )

                uploaded.append(UploadedFile(
                    field_name=file.field_name,
                    original_name=file.filename,
                    drive_file_id=result["id"],
                    drive_url=result.get("webViewLink"),
                    folder_path=folder_path,
                ))
                logger.info(
                    "drive_file_uploaded",
                    submission_id=str(submission_id),
                    field_name=file.field_name,
                    file_id=result["id"],
                )

                if log_id is not None:
                    await self._mark_uploaded(
                        log_id, result, folder_id, drive_name, folder_path or "/"
                    )

            except Exception as e:
                failures.append(file.filename)
                logger.error(
                    "drive_file_upload_failed",
                    submission_id=str(submission_id),
                    filename=file.filename,
                    error=str(e),
                    exc_info=True,
                )
                if log_id is not None:
                    await self._mark_failed(log_id, str(e))

        if failures:
            return IntegrationResult(
                success=False,
                error=f"{len(failures)} of {len(files)} files failed to upload",
                uploaded_files=uploaded,
            )

        return IntegrationResult(success=True, uploaded_files=uploaded)

    async def _start_log(
        self, form_id: UUID, submission_id: UUID, file: IncomingFile
    ) -> Optional[UUID]:
        try:
            return await self.integration_repo.start_file_upload(
                form_id=form_id,
                submission_id=submission_id,
                original_filename=file.filename,
                original_size_bytes=file.size,
                mime_type=file.content_type,
                field_name=file.field_name,
            )
        except Exception as e:
            logger.error("drive_file_log_insert_failed", filename=file.filename, error=str(e))
            return None

    async def _mark_uploaded(
        self,
        log_id: UUID,
        result: Dict[str, Any],
        folder_id: Optional[str],
        drive_name: str,
        folder_path: str,
    ) -> None:
        # The file is already in Drive; a failed log update must not undo that
        try:
            await self.integration_repo.complete_file_upload(
                log_id=log_id,
                drive_file_id=result["id"],
                drive_folder_id=folder_id,
                drive_file_name=drive_name,
                drive_folder_path=folder_path,
                drive_file_url=result.get("webViewLink"),
            )
        except Exception as e:
            logger.error("drive_file_log_update_failed", log_id=str(log_id), error=str(e))

    async def _mark_failed(self, log_id: UUID, error: str) -> None:
        try:
            await self.integration_repo.fail_file_upload(log_id, error)
        except Exception as e:
            logger.error("drive_file_log_update_failed", log_id=str(log_id), error=str(e))

    # ------------------------------------------------------------------
    # Account browsing
    # ------------------------------------------------------------------

    async def list_spreadsheets(self, access_token: str) -> List[Dict[str, Any]]:
        files = await self.client.list_files(
            access_token,
            query=f"mimeType='{SPREADSHEET_MIME_TYPE}' and trashed=false",
            fields="files(id,name,createdTime,modifiedTime)",
            order_by="modifiedTime desc",
            page_size=50,
        )
        return [
            {
                "id": item.get("id"),
                "name": item.get("name"),
                "createdTime": item.get("createdTime"),
                "modifiedTime": item.get("modifiedTime"),
            }
            for item in files
        ]

    async def list_folders(self, access_token: str) -> List[Dict[str, Any]]:
        files = await self.client.list_files(
            access_token,
            query=f"mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
            fields="files(id,name,parents)",
            order_by="name",
            page_size=100,
        )
        return [
            {"id": item.get("id"), "name": item.get("name"), "parents": item.get("parents") or []}
            for item in files
        ]

    async def create_folder(
        self,
        access_token: str,
        name: str,
        parent_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        folder = await self.client.create_folder(access_token, name, parent_id)
        logger.info("drive_folder_created", folder_id=folder.get("id"), name=name)
        return folder

    async def create_spreadsheet(self, access_token: str, name: str) -> Dict[str, Any]:
        created = await self.client.create_spreadsheet(access_token, name)
        spreadsheet_id = created.get("spreadsheetId")
        logger.info("spreadsheet_created", sheet_id=spreadsheet_id, name=name)
        return {
            "id": spreadsheet_id,
            "name": (created.get("properties") or {}).get("title", name),
            "url": created.get("spreadsheetUrl"),
        }
