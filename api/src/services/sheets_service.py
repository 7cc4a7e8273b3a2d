"""
Google Sheets operations for sheet connections.

Submissions land in the "Form Submissions" tab. Row 1 holds the headers;
each submission becomes one appended row whose cells follow header order.
"""

import json
import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

import structlog

from api.src.models.google import GoogleTokens, utcnow
from api.src.models.sheets import SUBMISSIONS_TAB, TIMESTAMP_HEADER, SheetConnection
from api.src.repositories.sheet_connection_repo import SheetConnectionRepository
from api.src.services.google_auth import GoogleAuthService
from api.src.services.google_client import SPREADSHEET_MIME_TYPE, GoogleAPIClient
from api.src.utils.error_handler import SheetSyncError

logger = structlog.get_logger(__name__)

SHEET_ID_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
ROW_NUMBER_PATTERN = re.compile(r"![A-Z]+(\d+)")

HEADER_RANGE = f"'{SUBMISSIONS_TAB}'!1:1"
HEADER_WRITE_RANGE = f"'{SUBMISSIONS_TAB}'!A1"
APPEND_RANGE = f"'{SUBMISSIONS_TAB}'!A:Z"

NO_HEADERS_MESSAGE = "No headers found in sheet. Please sync headers first."


def spreadsheet_url(sheet_id: str) -> str:
    return f"https://docs.google.com/spreadsheets/d/{sheet_id}/edit"


def extract_sheet_id(sheet_url: str) -> str:
    """
    Spreadsheet ID from a Google Sheets URL.

    Raises:
        ValueError: The URL does not contain a spreadsheet ID
    """
    match = SHEET_ID_PATTERN.search(sheet_url or "")
    if not match:
        raise ValueError("Invalid Google Sheets URL")
    return match.group(1)


def merge_headers(existing: List[str], new_headers: List[str]) -> List[str]:
    """
    Keep existing columns in place, append unseen headers once, and make
    sure the Timestamp column exists (first when it has to be added).
    """
    merged = list(existing)
    for header in new_headers:
        if header and header not in merged:
            merged.append(header)
    if TIMESTAMP_HEADER not in merged:
        merged.insert(0, TIMESTAMP_HEADER)
    return merged


def format_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join("" if item is None else str(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value)
    return value


def format_timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_row(
    headers: List[str],
    submission_data: Mapping[str, Any],
    field_mappings: Mapping[str, str],
    timestamp: Optional[datetime] = None,
) -> List[Any]:
    """
    Cells of one submission in header order.

    Args:
        headers: Current header row
        submission_data: Submitted values keyed by field ID
        field_mappings: Field ID -> header label
        timestamp: Value of the Timestamp column (now when omitted)

    Returns:
        Row values
    """
    label_to_field = {label: field_id for field_id, label in field_mappings.items()}
    moment = format_timestamp(timestamp or utcnow())

    row: List[Any] = []
    for header in headers:
        if header == TIMESTAMP_HEADER:
            row.append(moment)
        elif header in label_to_field:
            row.append(format_cell(submission_data.get(label_to_field[header])))
        else:
            row.append("")
    return row


def parse_row_number(updated_range: Optional[str]) -> Optional[int]:
    """Row number from an updatedRange such as 'Form Submissions'!A7:D7."""
    if not updated_range:
        return None
    match = ROW_NUMBER_PATTERN.search(updated_range)
    return int(match.group(1)) if match else None


class SheetsService:
    """Header management, row writes and connection setup for Google Sheets."""

    def __init__(
        self,
        client: GoogleAPIClient,
        auth: GoogleAuthService,
        connection_repo: SheetConnectionRepository,
    ):
        self.client = client
        self.auth = auth
        self.connection_repo = connection_repo

    async def get_sheet_headers(self, connection: SheetConnection) -> List[str]:
        """Row 1 of the submissions tab; empty when the sheet has no headers."""
        values = await self.auth.call_with_connection(
            connection,
            lambda token: self.client.get_values(token, connection.sheet_id, HEADER_RANGE),
        )
        if not values:
            return []
        return [str(value) for value in values[0]]

    async def sync_headers(self, connection: SheetConnection, form_headers: List[str]) -> List[str]:
        """
        Make sure every form header is a column of the sheet.

        Args:
            connection: Target sheet connection
            form_headers: Labels the forms need

        Returns:
            The merged header row
        """
        existing = await self.get_sheet_headers(connection)
        merged = merge_headers(existing, form_headers)

        if merged != existing:
            await self.auth.call_with_connection(
                connection,
                lambda token: self.client.update_values(
                    token, connection.sheet_id, HEADER_WRITE_RANGE, [merged], "RAW"
                ),
            )
            logger.info(
                "sheet_headers_synced",
                connection_id=str(connection.id),
                added=len(merged) - len(existing),
                header_count=len(merged),
            )
        else:
            logger.debug("sheet_headers_unchanged", connection_id=str(connection.id))

        await self.connection_repo.touch_last_synced(connection.id)
        return merged

    async def write_submission(
        self,
        connection: SheetConnection,
        submission_data: Mapping[str, Any],
        field_mappings: Optional[Mapping[str, str]] = None,
    ) -> Optional[int]:
        """
        Append one submission row.

        Missing mapped headers are added first.

        Returns:
            Row number of the appended row, when Google reports it

        Raises:
            SheetSyncError: The sheet has no headers
            GoogleAPIError: Google rejected a call
        """
        mappings = dict(field_mappings or {})
        headers = await self.get_sheet_headers(connection)

        missing = [label for label in mappings.values() if label not in headers]
        if missing:
            headers = await self.sync_headers(connection, list(mappings.values()))

        if not headers:
            raise SheetSyncError(NO_HEADERS_MESSAGE)

        row = build_row(headers, submission_data, mappings)
        result = await self.auth.call_with_connection(
            connection,
            lambda token: self.client.append_values(
                token, connection.sheet_id, APPEND_RANGE, [row], "RAW", "INSERT_ROWS"
            ),
        )

        row_number = parse_row_number((result.get("updates") or {}).get("updatedRange"))
        logger.info(
            "sheet_row_appended",
            connection_id=str(connection.id),
            row_number=row_number,
        )
        return row_number

    async def create_sheet(
        self,
        user_id: UUID,
        sheet_name: str,
        tokens: GoogleTokens,
        headers: Optional[List[str]] = None,
        form_id: Optional[UUID] = None,
    ) -> SheetConnection:
        """
        Create a spreadsheet with a submissions tab and store the connection.

        Args:
            user_id: Owner ID
            sheet_name: Spreadsheet title
            tokens: Tokens from the client's Google consent
            headers: Header row to write
            form_id: Form the connection belongs to

        Returns:
            Stored connection
        """
        token = tokens.access_token

        # Fails fast when the token lacks Drive access
        await self.client.list_files(
            token,
            query=f"mimeType='{SPREADSHEET_MIME_TYPE}'",
            fields="files(id)",
            page_size=1,
        )

        created = await self.client.create_spreadsheet(
            token,
            sheet_name,
            SUBMISSIONS_TAB,
            row_count=1000,
            column_count=len(headers) if headers else 26,
        )
        sheet_id = created["spreadsheetId"]
        sheet_url = created.get("spreadsheetUrl") or spreadsheet_url(sheet_id)

        if headers:
            await self.client.update_values(token, sheet_id, HEADER_WRITE_RANGE, [headers], "RAW")

        logger.info("spreadsheet_created", user_id=str(user_id), sheet_id=sheet_id)

        return await self.connection_repo.create_connection(
            user_id=user_id,
            sheet_id=sheet_id,
            sheet_name=sheet_name,
            sheet_url=sheet_url,
            tokens=tokens,
            form_id=form_id,
        )

    async def connect_existing_sheet(
        self,
        user_id: UUID,
        sheet_url: str,
        tokens: GoogleTokens,
    ) -> SheetConnection:
        """
        Store a connection to a spreadsheet the user already has.

        Raises:
            ValueError: The URL is not a Google Sheets URL
            GoogleAPIError: The spreadsheet cannot be read with the tokens
        """
        sheet_id = extract_sheet_id(sheet_url)

        metadata = await self.client.get_spreadsheet(
            tokens.access_token, sheet_id, fields="properties.title"
        )
        title = (metadata.get("properties") or {}).get("title") or "Unknown Sheet"

        return await self.connection_repo.create_connection(
            user_id=user_id,
            sheet_id=sheet_id,
            sheet_name=title,
            sheet_url=sheet_url,
            tokens=tokens,
        )

    async def list_connections(self, user_id: UUID) -> List[Dict[str, Any]]:
        connections = await self.connection_repo.list_for_user(user_id)
        return [connection.to_public_dict() for connection in connections]

    async def delete_connection(self, connection_id: UUID, user_id: UUID) -> bool:
        return await self.connection_repo.delete_connection(connection_id, user_id)
