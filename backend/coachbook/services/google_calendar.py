"""
backend/coachbook/services/google_calendar.py

Google Calendar integration for the coaching calendar.

Handles:
- Service account authentication
- Busy-time listing per calendar source (events API)
- Booking event create/delete on the bookings calendar
"""

import base64
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import Settings, split_patterns
from ..errors import CalendarNotConfiguredError

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
]

# Transport-level failures that mean "the calendar did not answer"
CALENDAR_ERRORS = (HttpError, GoogleAuthError, OSError, httplib2.HttpLib2Error)


@dataclass
class SourceBusy:
    """Result of querying one calendar source."""
    busy: list[tuple[datetime, datetime]] = field(default_factory=list)
    free: list[tuple[datetime, datetime]] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class CreatedEvent:
    event_id: str
    html_link: Optional[str] = None


class EventClassifier:
    """Decides whether a calendar event blocks time, frees time or is noise."""

    def __init__(
        self,
        timezone: str,
        ignored_patterns: Iterable[str] = (),
        free_patterns: Iterable[str] = (),
    ):
        self.tz = ZoneInfo(timezone)
        self.ignored = [re.compile(p, re.IGNORECASE) for p in ignored_patterns]
        self.free = [re.compile(p, re.IGNORECASE) for p in free_patterns]

    def is_ignored(self, title: Optional[str]) -> bool:
        if not title:
            return False
        return any(p.search(title.strip()) for p in self.ignored)

    def is_free_override(self, title: Optional[str]) -> bool:
        if not title:
            return False
        return any(p.search(title.strip()) for p in self.free)

    def parse_bound(self, value: dict) -> Optional[datetime]:
        """Parse an event start/end ({dateTime} or all-day {date})."""
        if not value:
            return None
        if value.get("dateTime"):
            parsed = datetime.fromisoformat(value["dateTime"])
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=ZoneInfo(value.get("timeZone") or self.tz.key))
            return parsed
        if value.get("date"):
            return datetime.combine(date.fromisoformat(value["date"]), time.min).replace(tzinfo=self.tz)
        return None

    def classify(self, events: Iterable[dict], result: SourceBusy) -> SourceBusy:
        for event in events:
            if event.get("status") == "cancelled":
                continue

            start = self.parse_bound(event.get("start") or {})
            end = self.parse_bound(event.get("end") or {})
            if not start or not end:
                continue

            title = event.get("summary")

            # "<name> is free" marks time as available, overriding busy events
            if self.is_free_override(title):
                result.free.append((start, end))
                continue

            if event.get("transparency") == "transparent":
                continue

            if self.is_ignored(title):
                continue

            result.busy.append((start, end))
        return result


def _decode_service_account_key(raw: str) -> dict:
    """Service account key is stored base64-encoded; plain JSON also accepted."""
    raw = raw.strip()
    if raw.startswith("{"):
        return json.loads(raw)
    return json.loads(base64.b64decode(raw).decode())


class GoogleCalendarGateway:
    """Thin wrapper over the Calendar v3 API used by the booking core."""

    def __init__(
        self,
        service_account_info: dict,
        bookings_calendar_id: str,
        timezone: str,
        classifier: EventClassifier,
        timeout: float = 10.0,
        service_factory=None,
    ):
        self.service_account_info = service_account_info
        self.bookings_calendar_id = bookings_calendar_id
        self.timezone = timezone
        self.classifier = classifier
        self.timeout = timeout
        self._service_factory = service_factory or self._build_service

    @classmethod
    def from_settings(cls, settings: Settings) -> "GoogleCalendarGateway":
        if not settings.calendar_configured:
            raise CalendarNotConfiguredError()
        classifier = EventClassifier(
            settings.business_timezone,
            split_patterns(settings.ignored_event_patterns),
            split_patterns(settings.free_override_patterns),
        )
        return cls(
            service_account_info=_decode_service_account_key(settings.google_service_account_key),
            bookings_calendar_id=settings.google_bookings_calendar_id.strip(),
            timezone=settings.business_timezone,
            classifier=classifier,
            timeout=settings.google_timeout_seconds,
        )

    def _build_service(self):
        """Build Google Calendar API service client.

        Built per call: the underlying httplib2 connection is not thread-safe.
        """
        credentials = service_account.Credentials.from_service_account_info(
            self.service_account_info, scopes=SCOPES
        )
        http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=self.timeout))
        return build("calendar", "v3", http=http, cache_discovery=False)

    # ── Read ─────────────────────────────────────────────────────────────

    def list_busy(
        self,
        source_ids: list[str],
        time_min: datetime,
        time_max: datetime,
    ) -> dict[str, SourceBusy]:
        """
        Query every source for events in [time_min, time_max).

        A failing source does not abort the others; its SourceBusy carries
        the error instead.
        """
        results: dict[str, SourceBusy] = {}
        service = None

        for calendar_id in source_ids:
            try:
                if service is None:
                    service = self._service_factory()
                events = self._list_events(service, calendar_id, time_min, time_max)
                results[calendar_id] = self.classifier.classify(events, SourceBusy())
            except CALENDAR_ERRORS as e:
                logger.warning(f"Error querying calendar {calendar_id}: {e}")
                results[calendar_id] = SourceBusy(error=str(e) or e.__class__.__name__)

        return results

    def _list_events(self, service, calendar_id: str, time_min: datetime, time_max: datetime) -> list[dict]:
        events: list[dict] = []
        page_token = None
        while True:
            response = service.events().list(
                calendarId=calendar_id,
                timeMin=time_min.isoformat(),
                timeMax=time_max.isoformat(),
                singleEvents=True,  # expand recurring events
                orderBy="startTime",
                maxResults=500,
                pageToken=page_token,
            ).execute()
            events.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                return events

    # ── Write ────────────────────────────────────────────────────────────

    def create_event(
        self,
        event_id: str,
        start: datetime,
        end: datetime,
        summary: str,
        description: str = "",
        location: Optional[str] = None,
    ) -> CreatedEvent:
        """
        Create the booking event with a caller-chosen id.

        Google rejects a second insert of the same id with 409, which is how
        a retry after a timed-out insert is recognised as already done.

        Raises:
            HttpError / OSError: If the event could not be created
        """
        service = self._service_factory()

        event = {
            "id": event_id,
            "summary": summary,
            "description": description,
            "start": {
                "dateTime": start.isoformat(),
                "timeZone": self.timezone,
            },
            "end": {
                "dateTime": end.isoformat(),
                "timeZone": self.timezone,
            },
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
        }
        if location:
            event["location"] = location

        try:
            created = service.events().insert(
                calendarId=self.bookings_calendar_id,
                body=event,
            ).execute()
        except HttpError as e:
            if e.resp.status == 409:
                logger.info(f"Calendar event {event_id} already exists, reusing it")
                existing = service.events().get(
                    calendarId=self.bookings_calendar_id,
                    eventId=event_id,
                ).execute()
                return CreatedEvent(event_id=existing.get("id", event_id), html_link=existing.get("htmlLink"))
            logger.error(f"Failed to create calendar event: {e}")
            raise

        logger.info(f"Created Google Calendar event: {created.get('id')}")
        return CreatedEvent(event_id=created.get("id", event_id), html_link=created.get("htmlLink"))

    def delete_event(self, event_id: str) -> bool:
        """
        Delete a booking event.

        Returns:
            True if the event is gone (deleted now or already missing)
        """
        service = self._service_factory()

        try:
            service.events().delete(
                calendarId=self.bookings_calendar_id,
                eventId=event_id,
                sendUpdates="all",
            ).execute()
            logger.info(f"Deleted Google Calendar event: {event_id}")
            return True
        except HttpError as e:
            if e.resp.status in (404, 410):
                logger.warning(f"Calendar event not found: {event_id}")
                return True
            logger.error(f"Failed to delete calendar event: {e}")
            raise


def event_id_for_booking(booking_id: str) -> str:
    """Google event ids use base32hex (0-9, a-v); a hex uuid qualifies."""
    return f"cb{booking_id.replace('-', '').lower()}"
