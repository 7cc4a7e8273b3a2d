"""
Contract tests for the submission intake endpoints.

Tests verify:
- Request validation and error bodies ({"error": ...})
- Status codes: 200, 207 partial success, 400, 404, 500
- Response keys returned to forms
"""

import json
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from api.src.dependencies import get_submission_service
from api.src.models.submissions import SubmissionResult
from api.src.services.submission_service import SubmissionError


@pytest.fixture
def service(override):
    return override(get_submission_service, AsyncMock())


# ============================================================================
# POST /api/submit
# ============================================================================


class TestSubmitEndpointContract:
    """Contract tests for POST /api/submit"""

    def test_json_submission(self, client, service):
        form_id = uuid4()
        submission_id = uuid4()
        service.submit_published_form.return_value = SubmissionResult(
            submission_id=submission_id, message="Form submitted successfully"
        )

        response = client.post("/api/submit", json={"formId": str(form_id), "formData": {"name": "Ada"}})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Form submitted successfully",
            "submissionId": str(submission_id),
        }
        service.submit_published_form.assert_awaited_once_with(form_id, {"name": "Ada"}, [])

    def test_multipart_submission_with_files(self, client, service):
        form_id = uuid4()
        service.submit_published_form.return_value = SubmissionResult(
            submission_id=uuid4(), message="Form submitted successfully"
        )

        response = client.post(
            "/api/submit",
            data={"formData": json.dumps({"formId": str(form_id), "formData": {"name": "Ada"}})},
            files={
                "resume": ("cv.pdf", b"%PDF-1.4", "application/pdf"),
                "empty": ("blank.txt", b"", "text/plain"),
            },
        )

        assert response.status_code == 200
        files = service.submit_published_form.await_args.args[2]
        assert [(f.field_name, f.filename, f.content_type) for f in files] == [
            ("resume", "cv.pdf", "application/pdf")
        ]

    @pytest.mark.parametrize("body,message", [
        ({"formData": {"a": 1}}, "formId is required"),
        ({"formId": str(uuid4())}, "Form data is required"),
        ({"formId": str(uuid4()), "formData": "text"}, "Invalid form data format"),
    ])
    def test_rejects_incomplete_body(self, client, service, body, message):
        response = client.post("/api/submit", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": message}
        service.submit_published_form.assert_not_awaited()

    def test_multipart_without_form_data(self, client, service):
        response = client.post("/api/submit", files={"f": ("a.txt", b"x", "text/plain")})

        assert response.status_code == 400
        assert response.json() == {"error": "Form data is required"}

    def test_multipart_with_malformed_form_data(self, client, service):
        response = client.post(
            "/api/submit",
            data={"formData": "{not json"},
            files={"f": ("a.txt", b"x", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid form data format"}

    def test_malformed_form_id_is_not_found(self, client, service):
        response = client.post("/api/submit", json={"formId": "nope", "formData": {}})

        assert response.status_code == 404
        assert response.json() == {"error": "Form not found"}

    @pytest.mark.parametrize("status,message", [
        (404, "Form not found"),
        (400, "Form is not published"),
        (500, "Failed to save submission"),
    ])
    def test_service_errors(self, client, service, status, message):
        service.submit_published_form.side_effect = SubmissionError(status, message)

        response = client.post("/api/submit", json={"formId": str(uuid4()), "formData": {}})

        assert response.status_code == status
        assert response.json() == {"error": message}


# ============================================================================
# POST /api/forms/submit
# ============================================================================


class TestUserSettingsSubmitContract:
    """Contract tests for POST /api/forms/submit"""

    def test_synced_targets(self, client, service):
        form_id = uuid4()
        service.submit_with_user_settings.return_value = SubmissionResult(
            submission_id=uuid4(),
            message="Form submitted successfully and data synced to Google services",
            synced={"sheet": True, "drive": False, "calendar": False},
        )

        response = client.post("/api/forms/submit", json={
            "formId": str(form_id),
            "formData": {"name": "Ada"},
            "userSettings": {"selectedSpreadsheet": "s1"},
        })

        assert response.status_code == 200
        assert response.json()["synced"] == {"sheet": True, "drive": False, "calendar": False}
        args = service.submit_with_user_settings.await_args.args
        assert args[0] == form_id
        assert args[2].selected_spreadsheet == "s1"

    def test_requires_form_id_and_data(self, client, service):
        response = client.post("/api/forms/submit", json={"formId": str(uuid4())})

        assert response.status_code == 400
        assert response.json() == {"error": "Form ID and data are required"}

    def test_malformed_form_id_is_not_found(self, client, service):
        response = client.post("/api/forms/submit", json={
            "formId": "not-a-uuid",
            "formData": {"name": "Ada"},
        })

        assert response.status_code == 404
        assert response.json() == {"error": "Form not found"}
        service.submit_with_user_settings.assert_not_awaited()


# ============================================================================
# /api/forms/{form_id}/submit
# ============================================================================


class TestDefaultSheetSubmitContract:
    """Contract tests for POST and GET /api/forms/{form_id}/submit"""

    def test_synced(self, client, service):
        form_id = uuid4()
        service.submit_to_default_sheet.return_value = SubmissionResult(
            submission_id=uuid4(),
            message="Submission saved and synced to Google Sheets successfully!",
            synced=True,
            row_number=4,
        )

        response = client.post(
            f"/api/forms/{form_id}/submit",
            json={"formData": {"f1": "Ada"}, "fieldMappings": {"f1": "Name"}},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["synced"] is True
        assert body["rowNumber"] == 4
        service.submit_to_default_sheet.assert_awaited_once_with(
            form_id, {"f1": "Ada"}, {"f1": "Name"}
        )

    def test_partial_success(self, client, service):
        service.submit_to_default_sheet.return_value = SubmissionResult(
            submission_id=uuid4(),
            message="Submission saved but failed to sync to Google Sheets.",
            status_code=207,
            synced=False,
            error="Failed after 3 attempts: Backend Error",
        )

        response = client.post(f"/api/forms/{uuid4()}/submit", json={"formData": {}})

        assert response.status_code == 207
        body = response.json()
        assert body["success"] is True
        assert body["synced"] is False
        assert body["error"] == "Failed after 3 attempts: Backend Error"

    def test_invalid_form_id(self, client, service):
        response = client.post("/api/forms/not-a-uuid/submit", json={"formData": {}})

        assert response.status_code == 400
        assert "error" in response.json()

    def test_list_submissions(self, client, service):
        form_id = uuid4()
        service.list_submissions.return_value = {
            "submissions": [], "total": 0, "limit": 10, "offset": 20,
        }

        response = client.get(f"/api/forms/{form_id}/submit", params={"limit": 10, "offset": 20})

        assert response.status_code == 200
        assert response.json()["offset"] == 20
        service.list_submissions.assert_awaited_once_with(form_id, 10, 20)

    def test_list_rejects_out_of_range_limit(self, client, service):
        response = client.get(f"/api/forms/{uuid4()}/submit", params={"limit": 0})

        assert response.status_code == 400
        service.list_submissions.assert_not_awaited()

    def test_list_storage_failure(self, client, service):
        service.list_submissions.side_effect = RuntimeError("db down")

        response = client.get(f"/api/forms/{uuid4()}/submit")

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch submissions"}
