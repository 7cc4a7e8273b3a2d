"""
Contract tests for sheet connection endpoints.

Tests verify:
- Supabase access token validation
- Create/connect/list/delete responses
- Header sync ownership checks and error bodies
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from api.src.dependencies import (
    get_form_repository,
    get_sheet_connection_repository,
    get_sheets_service,
)
from tests.factories import make_connection, make_form


@pytest.fixture
def sheets(override):
    return override(get_sheets_service, AsyncMock())


@pytest.fixture
def form_repo(override):
    return override(get_form_repository, AsyncMock())


@pytest.fixture
def connection_repo(override):
    return override(get_sheet_connection_repository, AsyncMock())


# ============================================================================
# AUTHENTICATION
# ============================================================================


class TestAuthenticationContract:
    """Bearer token handling shared by authenticated routes"""

    def test_missing_token(self, client, sheets):
        response = client.get("/api/sheets")

        assert response.status_code == 401
        assert response.json() == {"error": "Missing authentication credentials"}
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_token_signed_with_other_secret(self, client, sheets, access_token):
        token = access_token(secret="some-other-secret-that-is-long-enough!!")

        response = client.get("/api/sheets", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid authentication token"}

    def test_expired_token(self, client, sheets, access_token):
        token = access_token(expires_in=-60)

        response = client.get("/api/sheets", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_valid_token(self, client, sheets, access_token):
        user_id = uuid4()
        sheets.list_connections.return_value = []

        response = client.get(
            "/api/sheets", headers={"Authorization": f"Bearer {access_token(subject=user_id)}"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "connections": []}
        sheets.list_connections.assert_awaited_once_with(user_id)


# ============================================================================
# CONNECTIONS
# ============================================================================


class TestSheetConnectionContract:
    """Contract tests for /api/sheets create, connect, list and delete"""

    def test_create(self, client, current_user, sheets):
        connection = make_connection(user_id=current_user.id)
        sheets.create_sheet.return_value = connection

        response = client.post("/api/sheets/create", json={
            "sheetName": "Leads", "accessToken": "a", "refreshToken": "r",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["sheetId"] == "sheet-abc"
        assert body["sheetUrl"] == connection.sheet_url
        assert "access_token" not in body["connection"]
        assert "refresh_token" not in body["connection"]

    def test_create_requires_tokens(self, client, current_user, sheets):
        response = client.post("/api/sheets/create", json={"sheetName": "Leads", "accessToken": "a"})

        assert response.status_code == 400
        assert response.json() == {"error": "Sheet name, access token, and refresh token are required"}

    def test_create_google_failure(self, client, current_user, sheets):
        sheets.create_sheet.side_effect = RuntimeError("403")

        response = client.post("/api/sheets/create", json={
            "sheetName": "Leads", "accessToken": "a", "refreshToken": "r",
        })

        assert response.status_code == 500
        assert response.json()["error"].startswith("Failed to create Google Sheet")

    def test_connect_invalid_url(self, client, current_user, sheets):
        sheets.connect_existing_sheet.side_effect = ValueError("Invalid Google Sheets URL")

        response = client.post("/api/sheets/connect", json={
            "sheetUrl": "https://example.com", "accessToken": "a",
        })

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid Google Sheets URL"}

    def test_connect_google_failure(self, client, current_user, sheets):
        sheets.connect_existing_sheet.side_effect = RuntimeError("404")

        response = client.post("/api/sheets/connect", json={
            "sheetUrl": "https://docs.google.com/spreadsheets/d/abc/edit", "accessToken": "a",
        })

        assert response.status_code == 400
        assert response.json() == {
            "error": "Failed to connect to Google Sheet. Please check the URL and permissions."
        }

    def test_delete_unknown(self, client, current_user, sheets):
        sheets.delete_connection.return_value = False

        response = client.delete(f"/api/sheets/{uuid4()}")

        assert response.status_code == 404
        assert response.json() == {"error": "Sheet connection not found"}

    def test_delete(self, client, current_user, sheets):
        connection_id = uuid4()
        sheets.delete_connection.return_value = True

        response = client.delete(f"/api/sheets/{connection_id}")

        assert response.status_code == 200
        sheets.delete_connection.assert_awaited_once_with(connection_id, current_user.id)


# ============================================================================
# HEADER SYNC
# ============================================================================


class TestSyncHeadersContract:
    """Contract tests for sheet header sync"""

    def test_sync(self, client, current_user, sheets, form_repo, connection_repo):
        connection = make_connection(user_id=current_user.id)
        connection_repo.get_connection.return_value = connection
        form_repo.list_forms_for_connection.return_value = [make_form()]

        response = client.post(f"/api/sheets/{connection.id}/sync-headers")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Headers synced successfully",
            "headerCount": 2,
        }
        sheets.sync_headers.assert_awaited_once_with(connection, ["Name", "Email"])

    def test_sync_with_connection_in_body(self, client, current_user, sheets, form_repo, connection_repo):
        connection = make_connection(user_id=current_user.id)
        connection_repo.get_connection.return_value = connection
        form_repo.list_forms_for_connection.return_value = []

        response = client.post("/api/sheets/sync-headers", json={"connectionId": str(connection.id)})

        assert response.status_code == 200
        assert response.json()["headerCount"] == 0

    def test_body_requires_connection(self, client, current_user, sheets, form_repo, connection_repo):
        response = client.post("/api/sheets/sync-headers", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Connection ID is required"}

    def test_other_users_connection(self, client, current_user, sheets, form_repo, connection_repo):
        connection_repo.get_connection.return_value = make_connection(user_id=uuid4())

        response = client.post(f"/api/sheets/{uuid4()}/sync-headers")

        assert response.status_code == 404
        sheets.sync_headers.assert_not_awaited()

    def test_google_failure(self, client, current_user, sheets, form_repo, connection_repo):
        connection_repo.get_connection.return_value = make_connection(user_id=current_user.id)
        form_repo.list_forms_for_connection.return_value = [make_form()]
        sheets.sync_headers.side_effect = RuntimeError("quota")

        response = client.post(f"/api/sheets/{uuid4()}/sync-headers")

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to sync headers with Google Sheet"}
