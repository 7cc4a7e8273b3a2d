"""
E-mail notifications for new submissions, delivered through Resend.
"""

import asyncio
import html
import re
import time
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional
from uuid import UUID

import aiohttp
import structlog

from api.src.config import Settings
from api.src.models.google import utcnow
from api.src.models.integrations import IntegrationResult
from api.src.repositories.integration_repo import IntegrationRepository
from api.src.services.templating import format_value, interpolate
from api.src.utils.error_handler import EmailDeliveryError

logger = structlog.get_logger(__name__)

DEFAULT_SUBJECT_TEMPLATE = "New submission from {{form_title}}"

DEFAULT_EMAIL_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 30px; border-radius: 10px 10px 0 0; text-align: center;">
    <h1 style="margin: 0; font-size: 24px;">New Form Submission</h1>
    <p style="margin: 10px 0 0 0; opacity: 0.9;">{{form_title}}</p>
  </div>
  <div style="background: #f8f9fa; padding: 30px; border-radius: 0 0 10px 10px; border: 1px solid #e9ecef;">
    <p style="font-size: 16px; color: #333; margin-bottom: 20px;">
      You have received a new submission from your form "<strong>{{form_title}}</strong>".
    </p>
    {{submission_section}}
    <div style="margin-top: 30px; padding-top: 20px; border-top: 1px solid #e9ecef; text-align: center;">
      <p style="color: #666; font-size: 14px; margin: 0;">This email was sent automatically by FormToSheets</p>
    </div>
  </div>
</div>
"""

SUBMISSION_SECTION = """
<div style="background: white; padding: 20px; border-radius: 8px; border-left: 4px solid #667eea;">
  <h3 style="margin-top: 0; color: #333;">Submission Details:</h3>
  <table style="width: 100%; border-collapse: collapse;">
    {{submission_table}}
  </table>
</div>
"""

TABLE_ROW = (
    '<tr><td style="padding: 10px; border-bottom: 1px solid #e9ecef; font-weight: bold; '
    'color: #555; width: 30%;">{label}</td>'
    '<td style="padding: 10px; border-bottom: 1px solid #e9ecef; color: #333;">{value}</td></tr>'
)

TAG_PATTERN = re.compile(r"<[^>]*>")
WHITESPACE_PATTERN = re.compile(r"\s+")


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


def submission_table(data: Mapping[str, Any]) -> str:
    """HTML table rows, one per submitted key."""
    rows = []
    for key, value in data.items():
        label = key[:1].upper() + key[1:]
        rows.append(TABLE_ROW.format(
            label=html.escape(label),
            value=html.escape(format_value(value)),
        ))
    return "\n".join(rows)


def html_to_text(body: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", TAG_PATTERN.sub("", body)).strip()


def render_notification(
    form_title: str,
    data: Mapping[str, Any],
    custom_template: Optional[str] = None,
    include_submission_data: bool = True,
    subject_template: Optional[str] = None,
) -> RenderedEmail:
    """
    Build subject, HTML body and text body of a submission notification.

    Submitted values are HTML-escaped in the body; the subject uses them as
    plain text.
    """
    if custom_template:
        template = custom_template
    else:
        section = SUBMISSION_SECTION if include_submission_data else ""
        template = DEFAULT_EMAIL_TEMPLATE.replace("{{submission_section}}", section)

    escaped = {key: html.escape(format_value(value)) for key, value in data.items()}
    extra = {}
    if include_submission_data:
        extra["submission_table"] = submission_table(data)

    body = interpolate(template, html.escape(form_title or ""), escaped, extra=extra)
    subject = interpolate(subject_template or DEFAULT_SUBJECT_TEMPLATE, form_title, data)

    return RenderedEmail(subject=subject, html=body, text=html_to_text(body))


class EmailService:
    """Sends submission notifications and records each attempt."""

    def __init__(
        self,
        settings: Settings,
        session: aiohttp.ClientSession,
        integration_repo: IntegrationRepository,
    ):
        self.settings = settings
        self.session = session
        self.integration_repo = integration_repo

    async def send_email(self, to: List[str], subject: str, html_body: str, text_body: str) -> str:
        """
        Send one message.

        Returns:
            Provider message ID

        Raises:
            EmailDeliveryError: The message was not accepted
        """
        if not self.settings.resend_api_key:
            if self.settings.is_development:
                message_id = f"mock_{int(time.time() * 1000)}"
                logger.info(
                    "email_mock_sent",
                    recipients=len(to),
                    subject=subject,
                    message_id=message_id,
                )
                return message_id
            raise EmailDeliveryError("Email service not configured")

        payload = {
            "from": self.settings.email_from,
            "to": to,
            "subject": subject,
            "html": html_body,
            "text": text_body,
        }
        headers = {"Authorization": f"Bearer {self.settings.resend_api_key}"}

        async with self.session.post(
            self.settings.resend_api_url,
            json=payload,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.settings.google_request_timeout),
        ) as response:
            result = await response.json(content_type=None)
            if response.status >= 400:
                message = result.get("message") if isinstance(result, dict) else None
                raise EmailDeliveryError(message or "Email sending failed")
            return (result or {}).get("id", "")

    async def send_submission_notification(
        self,
        form_id: UUID,
        submission_id: UUID,
        data: Mapping[str, Any],
        form_title: str = "",
    ) -> IntegrationResult:
        """
        Notify the form's recipients about a submission.

        Returns:
            IntegrationResult; disabled notifications count as success
        """
        settings = await self.integration_repo.get_email_settings(form_id)
        if settings is None:
            return IntegrationResult.failure("Email settings not found")

        if not settings.is_enabled:
            return IntegrationResult.disabled()

        if not settings.recipient_emails:
            return IntegrationResult.failure("No recipients configured")

        title = settings.form_title or form_title
        rendered = render_notification(
            title,
            data,
            custom_template=settings.email_template,
            include_submission_data=settings.include_submission_data,
            subject_template=settings.subject_template,
        )

        try:
            message_id = await self.send_email(
                settings.recipient_emails, rendered.subject, rendered.html, rendered.text
            )
            result = IntegrationResult(success=True, external_id=message_id)
            logger.info(
                "email_notification_sent",
                submission_id=str(submission_id),
                message_id=message_id,
            )
        except (EmailDeliveryError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            result = IntegrationResult.failure(str(e) or "Email sending failed")
            logger.warning(
                "email_notification_failed",
                submission_id=str(submission_id),
                error=result.error,
            )

        try:
            await self.integration_repo.log_email(
                form_id=form_id,
                submission_id=submission_id,
                recipient_emails=settings.recipient_emails,
                subject=rendered.subject,
                email_content=rendered.html,
                status="sent" if result.success else "failed",
                error_message=result.error,
                sent_at=utcnow() if result.success else None,
            )
        except Exception as e:
            logger.error("email_log_failed", submission_id=str(submission_id), error=str(e))

        return result
