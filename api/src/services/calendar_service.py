"""
Google Calendar events created from submissions.
"""

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import aiohttp
import structlog

from api.src.models.integrations import CalendarSettings, IntegrationResult
from api.src.repositories.integration_repo import IntegrationRepository
from api.src.services.google_auth import GoogleAuthService
from api.src.services.google_client import GoogleAPIClient
from api.src.services.templating import interpolate
from api.src.utils.error_handler import IntegrationError

logger = structlog.get_logger(__name__)

DEFAULT_START_TIME = time(9, 0, 0)
APPOINTMENT_DURATION = timedelta(hours=1)


def _parse_date_value(value: Any) -> Optional[Tuple[date, Optional[time]]]:
    if isinstance(value, datetime):
        return value.date(), value.timetz() if value.tzinfo else value.time()
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if len(text) == 10:
        try:
            return date.fromisoformat(text), None
        except ValueError:
            return None

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed.date(), parsed.timetz() if parsed.tzinfo else parsed.time()


def _parse_time_value(value: Any) -> Optional[time]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    for fmt in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def parse_form_datetime(
    data: Mapping[str, Any],
    date_field: str,
    time_field: Optional[str] = None,
) -> Optional[Tuple[datetime, datetime]]:
    """
    Start and one-hour end of an appointment from submission values.

    The date field may hold a date or a full ISO datetime. A separate time
    field (HH:MM or HH:MM:SS) wins over the time of the date value; with
    neither, the appointment starts at 09:00.

    Returns:
        (start, end) or None when the values cannot be parsed
    """
    parsed_date = _parse_date_value(data.get(date_field))
    if parsed_date is None:
        return None

    day, time_of_day = parsed_date

    if time_field and data.get(time_field) not in (None, ""):
        time_of_day = _parse_time_value(data.get(time_field))
        if time_of_day is None:
            return None

    start = datetime.combine(day, time_of_day or DEFAULT_START_TIME)
    return start, start + APPOINTMENT_DURATION


def _event_time(moment: datetime, tz_name: str) -> Dict[str, str]:
    # Wall-clock time in the calendar's time zone
    if moment.tzinfo is not None:
        try:
            moment = moment.astimezone(ZoneInfo(tz_name))
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("calendar_timezone_unknown", timezone=tz_name)
    return {"dateTime": moment.replace(tzinfo=None).isoformat(), "timeZone": tz_name}


def build_event(
    settings: CalendarSettings,
    form_title: str,
    data: Mapping[str, Any],
    start: datetime,
) -> Dict[str, Any]:
    """Calendar API event body for a submission."""
    end = start + timedelta(minutes=settings.duration_minutes or 60)

    event: Dict[str, Any] = {
        "summary": interpolate(settings.event_title_template, form_title, data),
        "description": interpolate(settings.event_description_template, form_title, data),
        "start": _event_time(start, settings.timezone),
        "end": _event_time(end, settings.timezone),
    }

    if settings.add_attendees and settings.attendee_email_field:
        attendee = data.get(settings.attendee_email_field)
        if isinstance(attendee, str) and attendee:
            event["attendees"] = [{"email": attendee}]

    return event


def build_appointment_event(form_title: str, data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """
    One-hour UTC event for a submission carrying appointmentDate.

    Returns:
        Event body or None when appointmentDate is not an ISO date/datetime
    """
    parsed = _parse_date_value(data.get("appointmentDate"))
    if parsed is None:
        return None

    day, time_of_day = parsed
    start = datetime.combine(day, time_of_day or time(0, 0))
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    start = start.astimezone(timezone.utc)
    end = start + APPOINTMENT_DURATION

    description = "\n".join(f"{key}: {value}" for key, value in data.items())
    event: Dict[str, Any] = {
        "summary": f"Form Submission: {form_title}",
        "description": description,
        "start": {"dateTime": start.isoformat().replace("+00:00", "Z"), "timeZone": "UTC"},
        "end": {"dateTime": end.isoformat().replace("+00:00", "Z"), "timeZone": "UTC"},
    }

    email = data.get("email")
    if isinstance(email, str) and email:
        event["attendees"] = [{"email": email}]

    return event


class CalendarService:
    """Creates Google Calendar events for submissions."""

    def __init__(
        self,
        client: GoogleAPIClient,
        auth: GoogleAuthService,
        integration_repo: IntegrationRepository,
    ):
        self.client = client
        self.auth = auth
        self.integration_repo = integration_repo

    async def create_event_from_submission(
        self,
        form_id: UUID,
        submission_id: UUID,
        data: Mapping[str, Any],
        owner_id: UUID,
        form_title: str = "",
    ) -> IntegrationResult:
        """
        Create the event configured in the form's calendar settings.

        Every attempt that reaches the Calendar API is written to
        calendar_events_log.
        """
        settings = await self.integration_repo.get_calendar_settings(form_id)
        if settings is None:
            return IntegrationResult.failure("Calendar settings not found")

        if not settings.is_enabled:
            return IntegrationResult.disabled()

        if not settings.calendar_id or not settings.date_field_name:
            return IntegrationResult.failure("Calendar ID or date field not configured")

        parsed = parse_form_datetime(data, settings.date_field_name, settings.time_field_name)
        if parsed is None:
            return IntegrationResult.failure("Could not parse date/time from submission")

        tokens = await self.auth.get_user_tokens(owner_id)
        if tokens is None:
            return IntegrationResult.failure("Google access token not available")

        title = settings.form_title or form_title
        start = parsed[0]
        event = build_event(settings, title, data, start)
        end = start + timedelta(minutes=settings.duration_minutes or 60)
        attendees: List[str] = [a["email"] for a in event.get("attendees", [])]

        try:
            created = await self.auth.call_with_user_tokens(
                owner_id,
                tokens,
                lambda token: self.client.insert_event(
                    token, settings.calendar_id, event, settings.send_notifications
                ),
            )
            result = IntegrationResult(success=True, external_id=created.get("id"))
            logger.info(
                "calendar_event_created",
                submission_id=str(submission_id),
                event_id=result.external_id,
            )
        except (IntegrationError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            result = IntegrationResult.failure(str(e) or type(e).__name__)
            logger.warning(
                "calendar_event_failed",
                submission_id=str(submission_id),
                error=result.error,
            )

        try:
            await self.integration_repo.log_calendar_event(
                form_id=form_id,
                submission_id=submission_id,
                calendar_id=settings.calendar_id,
                event_title=event["summary"],
                event_description=event["description"],
                event_start=start,
                event_end=end,
                attendee_emails=attendees,
                status="created" if result.success else "failed",
                google_event_id=result.external_id,
                error_message=result.error,
            )
        except Exception as e:
            logger.error("calendar_event_log_failed", submission_id=str(submission_id), error=str(e))

        return result

    async def create_appointment_event(
        self,
        access_token: str,
        calendar_id: str,
        form_title: str,
        data: Mapping[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Insert the appointmentDate event; None when there is no usable date."""
        event = build_appointment_event(form_title, data)
        if event is None:
            return None
        return await self.client.insert_event(access_token, calendar_id, event)

    async def list_calendars(self, access_token: str) -> List[Dict[str, Any]]:
        items = await self.client.list_calendars(access_token)
        return [
            {
                "id": item.get("id"),
                "name": item.get("summary"),
                "description": item.get("description"),
                "primary": bool(item.get("primary", False)),
            }
            for item in items
        ]
