"""
Thin async client for the Google Sheets, Drive and Calendar REST APIs.

Every call takes the OAuth access token to use; token refresh is handled by
GoogleAuthService. Non-2xx responses raise GoogleAPIError.
"""

import json
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp
import structlog

from api.src.utils.error_handler import GoogleAPIError

logger = structlog.get_logger(__name__)

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3/files"
CALENDAR_API = "https://www.googleapis.com/calendar/v3"

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"


def _quote_path(segment: str) -> str:
    return quote(segment, safe="")


class GoogleAPIClient:
    """aiohttp based Google REST client sharing one ClientSession."""

    def __init__(self, session: aiohttp.ClientSession, timeout: float = 30.0):
        """
        Initialize the client.

        Args:
            session: Shared aiohttp session
            timeout: Total timeout of a single request in seconds
        """
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def _request(
        self,
        method: str,
        url: str,
        access_token: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        data: Any = None,
    ) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_token}"}

        async with self.session.request(
            method,
            url,
            params=params,
            json=json_body,
            data=data,
            headers=headers,
            timeout=self.timeout,
        ) as response:
            if response.status >= 400:
                raise await self._error_from_response(response)

            if response.status == 204:
                return {}

            body = await response.text()
            return json.loads(body) if body else {}

    @staticmethod
    async def _error_from_response(response: aiohttp.ClientResponse) -> GoogleAPIError:
        text = await response.text()
        try:
            payload = json.loads(text) if text else {}
        except ValueError:
            payload = {}

        message = None
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            message = error.get("message")
        elif isinstance(error, str):
            message = payload.get("error_description") or error

        if not message:
            message = f"HTTP {response.status}: {response.reason}"

        logger.warning(
            "google_api_error",
            status=response.status,
            url=str(response.url.with_query(None)),
            message=message,
        )
        return GoogleAPIError(response.status, message, payload if isinstance(payload, dict) else None)

    # ------------------------------------------------------------------
    # Sheets v4
    # ------------------------------------------------------------------

    async def create_spreadsheet(
        self,
        access_token: str,
        title: str,
        sheet_title: Optional[str] = None,
        row_count: int = 1000,
        column_count: int = 26,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"properties": {"title": title}}
        if sheet_title:
            body["sheets"] = [
                {
                    "properties": {
                        "title": sheet_title,
                        "gridProperties": {
                            "rowCount": row_count,
                            "columnCount": column_count,
                        },
                    }
                }
            ]
        return await self._request("POST", SHEETS_API, access_token, json_body=body)

    async def get_spreadsheet(
        self,
        access_token: str,
        spreadsheet_id: str,
        fields: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {"fields": fields} if fields else None
        return await self._request(
            "GET", f"{SHEETS_API}/{_quote_path(spreadsheet_id)}", access_token, params=params
        )

    async def get_values(self, access_token: str, spreadsheet_id: str, range_: str) -> List[List[Any]]:
        result = await self._request(
            "GET",
            f"{SHEETS_API}/{_quote_path(spreadsheet_id)}/values/{_quote_path(range_)}",
            access_token,
        )
        return result.get("values") or []

    async def update_values(
        self,
        access_token: str,
        spreadsheet_id: str,
        range_: str,
        values: List[List[Any]],
        value_input_option: str = "RAW",
    ) -> Dict[str, Any]:
        return await self._request(
            "PUT",
            f"{SHEETS_API}/{_quote_path(spreadsheet_id)}/values/{_quote_path(range_)}",
            access_token,
            params={"valueInputOption": value_input_option},
            json_body={"values": values},
        )

    async def append_values(
        self,
        access_token: str,
        spreadsheet_id: str,
        range_: str,
        values: List[List[Any]],
        value_input_option: str = "RAW",
        insert_data_option: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {"valueInputOption": value_input_option}
        if insert_data_option:
            params["insertDataOption"] = insert_data_option
        return await self._request(
            "POST",
            f"{SHEETS_API}/{_quote_path(spreadsheet_id)}/values/{_quote_path(range_)}:append",
            access_token,
            params=params,
            json_body={"values": values},
        )

    # ------------------------------------------------------------------
    # Drive v3
    # ------------------------------------------------------------------

    async def list_files(
        self,
        access_token: str,
        query: str,
        fields: str = "files(id,name)",
        order_by: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"q": query, "fields": fields}
        if order_by:
            params["orderBy"] = order_by
        if page_size:
            params["pageSize"] = str(page_size)
        result = await self._request("GET", f"{DRIVE_API}/files", access_token, params=params)
        return result.get("files") or []

    async def create_folder(
        self,
        access_token: str,
        name: str,
        parent_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            body["parents"] = [parent_id]
        return await self._request(
            "POST",
            f"{DRIVE_API}/files",
            access_token,
            params={"fields": "id,name,parents"},
            json_body=body,
        )

    async def upload_file(
        self,
        access_token: str,
        name: str,
        content: bytes,
        mime_type: str,
        folder_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Multipart upload: JSON metadata part followed by the file bytes."""
        metadata: Dict[str, Any] = {"name": name}
        if folder_id:
            metadata["parents"] = [folder_id]

        with aiohttp.MultipartWriter("related") as writer:
            writer.append_json(metadata)
            writer.append(content, {"Content-Type": mime_type or "application/octet-stream"})

            return await self._request(
                "POST",
                DRIVE_UPLOAD_API,
                access_token,
                params={
                    "uploadType": "multipart",
                    "fields": "id,name,webViewLink,webContentLink",
                },
                data=writer,
            )

    async def create_permission(
        self,
        access_token: str,
        file_id: str,
        permission: Dict[str, Any],
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"{DRIVE_API}/files/{_quote_path(file_id)}/permissions",
            access_token,
            json_body=permission,
        )

    # ------------------------------------------------------------------
    # Calendar v3
    # ------------------------------------------------------------------

    async def list_calendars(self, access_token: str) -> List[Dict[str, Any]]:
        result = await self._request("GET", f"{CALENDAR_API}/users/me/calendarList", access_token)
        return result.get("items") or []

    async def insert_event(
        self,
        access_token: str,
        calendar_id: str,
        event: Dict[str, Any],
        send_updates: bool = False,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"{CALENDAR_API}/calendars/{_quote_path(calendar_id)}/events",
            access_token,
            params={"sendUpdates": "all" if send_updates else "none"},
            json_body=event,
        )
