"""
Contract tests for form creation, CSV export and file upload endpoints.
"""

import json
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from api.src.dependencies import (
    get_drive_service,
    get_form_repository,
    get_sheets_service,
    get_submission_repository,
)
from api.src.models.forms import FormStatus
from api.src.models.integrations import IntegrationResult, UploadedFile
from tests.factories import make_connection, make_form, make_submission


@pytest.fixture
def form_repo(override):
    return override(get_form_repository, AsyncMock())


@pytest.fixture
def sheets(override):
    return override(get_sheets_service, AsyncMock())


@pytest.fixture
def submission_repo(override):
    return override(get_submission_repository, AsyncMock())


@pytest.fixture
def drive(override):
    return override(get_drive_service, AsyncMock())


CREATE_BODY = {
    "title": "Contact",
    "description": "Say hi",
    "fields": [{"id": "name", "label": "Name"}, {"id": "email", "label": "Email"}],
    "googleTokens": {"accessToken": "a", "refreshToken": "r"},
}


# ============================================================================
# POST /api/forms/create
# ============================================================================


class TestCreateFormContract:
    """Contract tests for POST /api/forms/create"""

    def test_creates_form_and_sheet(self, client, current_user, form_repo, sheets):
        form = make_form(status=FormStatus.DRAFT, title="Contact", user_id=current_user.id)
        connection = make_connection(user_id=current_user.id)
        form_repo.create_form.return_value = form
        sheets.create_sheet.return_value = connection

        response = client.post("/api/forms/create", json=CREATE_BODY)

        assert response.status_code == 200
        body = response.json()
        assert body["form"]["id"] == str(form.id)
        assert body["sheet"] == {"id": connection.sheet_id, "url": connection.sheet_url}

        call = sheets.create_sheet.await_args
        assert call.args[1] == "Contact - Submissions"
        assert call.kwargs["headers"] == ["Timestamp", "Name", "Email"]
        assert call.kwargs["form_id"] == form.id
        form_repo.link_sheet_connection.assert_awaited_once_with(form.id, connection.id)

    def test_requires_title_and_tokens(self, client, current_user, form_repo, sheets):
        response = client.post("/api/forms/create", json={"title": "Contact"})

        assert response.status_code == 400
        assert response.json() == {"error": "Title and Google tokens are required"}
        form_repo.create_form.assert_not_awaited()

    def test_sheet_failure_removes_form(self, client, current_user, form_repo, sheets):
        form = make_form(status=FormStatus.DRAFT, user_id=current_user.id)
        form_repo.create_form.return_value = form
        sheets.create_sheet.side_effect = RuntimeError("403")

        response = client.post("/api/forms/create", json=CREATE_BODY)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to create Google Sheet"}
        form_repo.delete_form.assert_awaited_once_with(form.id)

    def test_link_failure_is_not_fatal(self, client, current_user, form_repo, sheets):
        form_repo.create_form.return_value = make_form(user_id=current_user.id)
        sheets.create_sheet.return_value = make_connection(user_id=current_user.id)
        form_repo.link_sheet_connection.side_effect = RuntimeError("db down")

        response = client.post("/api/forms/create", json=CREATE_BODY)

        assert response.status_code == 200


# ============================================================================
# POST /api/export-csv
# ============================================================================


class TestExportCsvContract:
    """Contract tests for POST /api/export-csv"""

    def test_export(self, client, current_user, form_repo, submission_repo):
        form = make_form(user_id=current_user.id)
        form_repo.get_form.return_value = form
        submission_repo.list_all_for_form.return_value = [make_submission(form, {"name": "Ada"})]

        response = client.post("/api/export-csv", json={"formId": str(form.id)})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert f'filename="form-{form.id}-submissions.csv"' in response.headers["content-disposition"]
        lines = response.text.splitlines()
        assert lines[0] == "Submitted At,Name,Email"
        assert lines[1].endswith(",Ada,")

    def test_missing_form_id(self, client, current_user, form_repo, submission_repo):
        response = client.post("/api/export-csv", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing formId"}

    def test_other_users_form(self, client, current_user, form_repo, submission_repo):
        form_repo.get_form.return_value = make_form(user_id=uuid4())

        response = client.post("/api/export-csv", json={"formId": str(uuid4())})

        assert response.status_code == 404
        submission_repo.list_all_for_form.assert_not_awaited()

    def test_storage_failure(self, client, current_user, form_repo, submission_repo):
        form_repo.get_form.return_value = make_form(user_id=current_user.id)
        submission_repo.list_all_for_form.side_effect = RuntimeError("db down")

        response = client.post("/api/export-csv", json={"formId": str(uuid4())})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch submissions"}


# ============================================================================
# POST /api/upload
# ============================================================================


def upload_parts(form_id, submission_id, submission_data="{}"):
    return {
        "formId": str(form_id),
        "submissionId": str(submission_id),
        "submissionData": submission_data,
        "formTitle": "Contact",
    }


class TestUploadContract:
    """Contract tests for POST /api/upload"""

    def test_uploads_with_owner_account(self, client, form_repo, drive):
        form = make_form()
        submission_id = uuid4()
        form_repo.get_form.return_value = form
        drive.process_file_uploads.return_value = IntegrationResult(
            success=True,
            uploaded_files=[UploadedFile(field_name="cv", original_name="cv.pdf", drive_file_id="d1")],
        )

        response = client.post(
            "/api/upload",
            data=upload_parts(form.id, submission_id, json.dumps({"name": "Ada"})),
            files={"cv": ("cv.pdf", b"%PDF", "application/pdf")},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Successfully uploaded 1 file(s)"
        assert body["uploadedFiles"][0]["driveFileId"] == "d1"
        args = drive.process_file_uploads.await_args.args
        assert args[0] == form.id
        assert args[1] == submission_id
        assert args[2] == {"name": "Ada"}
        assert args[5] == form.user_id

    def test_no_files(self, client, form_repo, drive):
        response = client.post(
            "/api/upload",
            data=upload_parts(uuid4(), uuid4()),
            files={"cv": ("cv.pdf", b"", "application/pdf")},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "No files to upload", "uploadedFiles": []}
        drive.process_file_uploads.assert_not_awaited()

    def test_missing_parts(self, client, form_repo, drive):
        parts = upload_parts(uuid4(), uuid4())
        del parts["formTitle"]

        response = client.post("/api/upload", data=parts, files={"cv": ("cv.pdf", b"x", "application/pdf")})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required parameters"}

    def test_invalid_submission_data(self, client, form_repo, drive):
        response = client.post(
            "/api/upload",
            data=upload_parts(uuid4(), uuid4(), "{oops"),
            files={"cv": ("cv.pdf", b"x", "application/pdf")},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid submission data format"}

    def test_drive_failure(self, client, form_repo, drive):
        form_repo.get_form.return_value = make_form()
        drive.process_file_uploads.return_value = IntegrationResult.failure("File uploads are disabled")

        response = client.post(
            "/api/upload",
            data=upload_parts(uuid4(), uuid4()),
            files={"cv": ("cv.pdf", b"x", "application/pdf")},
        )

        assert response.status_code == 500
        assert response.json() == {"error": "File uploads are disabled"}
