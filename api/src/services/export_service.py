"""CSV export of a form's submissions."""

import csv
import io
from typing import List

from api.src.models.forms import FormRecord
from api.src.models.submissions import SubmissionRecord
from api.src.services.templating import format_value

SUBMITTED_AT_HEADER = "Submitted At"


def export_filename(form: FormRecord) -> str:
    return f"form-{form.id}-submissions.csv"


def build_submissions_csv(form: FormRecord, submissions: List[SubmissionRecord]) -> str:
    """
    One row per submission, in the order given.

    Columns are the submission time followed by every non-layout field,
    titled by label, column name or ID.
    """
    fields = [field for field in form.fields if not field.is_layout]

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow([SUBMITTED_AT_HEADER] + [field.display_name for field in fields])

    for submission in submissions:
        data = submission.submission_data or {}
        submitted_at = submission.submitted_at.isoformat() if submission.submitted_at else ""
        writer.writerow([submitted_at] + [format_value(data.get(field.id)) for field in fields])

    return buffer.getvalue()
