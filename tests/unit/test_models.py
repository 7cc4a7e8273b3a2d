"""
Unit tests for form and submission models.
"""

from api.src.models.forms import collect_sheet_headers
from api.src.models.submissions import FanoutOutcome, FanoutReport, ProcessingStatus, SubmissionResult
from tests.factories import make_form


class TestFormFields:
    """Test parsing of form_data fields"""

    def test_malformed_entries_are_skipped(self):
        form = make_form(fields=[{"id": 1, "label": "One"}, {"label": "no id"}, "junk"])
        assert [field.id for field in form.fields] == ["1"]

    def test_collect_sheet_headers(self):
        first = make_form(fields=[
            {"id": "a", "label": "Name", "type": "text"},
            {"id": "d", "label": "Divider", "type": "divider"},
            {"id": "b", "label": "", "type": "text"},
        ])
        second = make_form(fields=[
            {"id": "c", "label": "Email", "type": "email"},
            {"id": "e", "label": "Name", "type": "text"},
        ])

        assert collect_sheet_headers([first, second]) == ["Name", "Email"]


class TestFanoutReport:
    """Test outcome bookkeeping"""

    def test_success_requires_an_attempt(self):
        report = FanoutReport()
        report.add(FanoutOutcome(integration="email"))
        report.add(FanoutOutcome(integration="drive", attempted=True, success=True))

        assert not report.succeeded("email")
        assert report.succeeded("drive")
        assert not report.succeeded("calendar")
        assert report.processing_status == ProcessingStatus.COMPLETED
        assert report.error_summary is None

    def test_failures_are_joined(self):
        report = FanoutReport()
        report.add(FanoutOutcome(integration="drive", attempted=True, error="quota"))
        report.add(FanoutOutcome(integration="calendar", attempted=True, error="no date"))

        assert report.processing_status == ProcessingStatus.COMPLETED_WITH_ERRORS
        assert report.error_summary == "drive: quota; calendar: no date"


class TestSubmissionResult:
    """Test the response body"""

    def test_optional_keys_only_when_set(self):
        result = SubmissionResult(submission_id="00000000-0000-0000-0000-000000000001", message="ok")
        assert result.to_response() == {
            "success": True,
            "message": "ok",
            "submissionId": "00000000-0000-0000-0000-000000000001",
        }

    def test_partial_sync_body(self):
        result = SubmissionResult(
            submission_id="id", message="m", status_code=207, synced=False, error="boom"
        )
        body = result.to_response()
        assert body["synced"] is False
        assert body["error"] == "boom"
        assert "rowNumber" not in body
