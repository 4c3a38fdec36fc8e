"""
Calendar sync service
Mirrors bookings into the host's Google Calendar and reads its free/busy data
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from dateutil import parser
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agency_scheduler.core import config
from agency_scheduler.models.booking import Booking
from agency_scheduler.models.calendar_connection import CalendarConnection
from agency_scheduler.services.google_calendar import (
    CalendarConnectionMissingError,
    GoogleCalendarClient,
    GoogleCalendarError,
    refresh_access_token,
    utcnow,
)

logger = logging.getLogger(__name__)

GOOGLE_MEET_SENTINEL = "google_meet"
REMINDER_OVERRIDES = [
    {"method": "email", "minutes": 24 * 60},
    {"method": "popup", "minutes": 60},
]


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime


def resolve_time_zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or config.CALENDAR_DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r, using %s", name, config.CALENDAR_DEFAULT_TIMEZONE)
        return ZoneInfo(config.CALENDAR_DEFAULT_TIMEZONE)


def to_rfc3339(value: datetime, zone: ZoneInfo) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=zone)
    return value.isoformat()


def to_local(value: str, zone: ZoneInfo) -> datetime:
    parsed = parser.isoparse(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(zone).replace(tzinfo=None)
    return parsed


class CalendarSyncService:
    """Remote calendar adapter for one database session.

    ``get_free_busy`` raises on any failure; the mutating operations never
    raise for provider or database problems and return ``None``/``False`` instead.
    """

    def __init__(
        self,
        db: Session,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.http_client = http_client
        self.clock = clock

    def get_connection(self, user_id: int) -> Optional[CalendarConnection]:
        return self.db.query(CalendarConnection).filter(CalendarConnection.user_id == user_id).first()

    def _ensure_fresh_token(self, connection: CalendarConnection) -> str:
        if connection.expires_at < self.clock():
            logger.info("Calendar token for user %s expired, refreshing", connection.user_id)
            tokens = refresh_access_token(connection.refresh_token, self.http_client)
            connection.access_token = tokens.access_token
            connection.expires_at = tokens.expires_at
            if tokens.refresh_token:
                connection.refresh_token = tokens.refresh_token
            self.db.commit()
        return connection.access_token

    def _client_for(self, connection: CalendarConnection) -> GoogleCalendarClient:
        return GoogleCalendarClient(self._ensure_fresh_token(connection), self.http_client)

    def get_free_busy(self, user_id: int, time_min: datetime, time_max: datetime) -> list[BusyInterval]:
        connection = self.get_connection(user_id)
        if connection is None:
            raise CalendarConnectionMissingError("No calendar connection found")

        zone = resolve_time_zone(connection.time_zone)
        client = self._client_for(connection)
        periods = client.query_free_busy(
            connection.calendar_id,
            to_rfc3339(time_min, zone),
            to_rfc3339(time_max, zone),
        )

        busy: list[BusyInterval] = []
        for period in periods:
            if period.get("start") and period.get("end"):
                busy.append(BusyInterval(start=to_local(period["start"], zone), end=to_local(period["end"], zone)))
        return busy

    def build_event(self, booking: Booking, time_zone: str) -> dict[str, Any]:
        attendees = [
            {"email": attendee.get("email"), "displayName": attendee.get("name")}
            for attendee in (booking.attendees or [])
        ]
        if booking.client is not None and booking.client.email:
            attendees.append({"email": booking.client.email, "displayName": booking.client.name})

        event: dict[str, Any] = {
            "summary": booking.title,
            "start": {"dateTime": booking.start_time.isoformat(), "timeZone": time_zone},
            "end": {"dateTime": booking.end_time.isoformat(), "timeZone": time_zone},
        }
        if booking.description:
            event["description"] = booking.description
        if booking.location:
            event["location"] = booking.location
        if attendees:
            event["attendees"] = attendees
        return event

    def _sync_connection(self, user_id: int) -> Optional[CalendarConnection]:
        connection = self.get_connection(user_id)
        if connection is None or not connection.sync_enabled:
            logger.info("Calendar not connected or sync disabled for user %s", user_id)
            return None
        return connection

    def create_event(self, booking: Booking, user_id: int) -> Optional[str]:
        """
        Create the Google event for a booking.
        Returns the event id, or None when sync is off or the call fails.
        """
        try:
            connection = self._sync_connection(user_id)
            if connection is None:
                return None

            client = self._client_for(connection)
            zone = resolve_time_zone(connection.time_zone)
            event = self.build_event(booking, zone.key)
            event["reminders"] = {"useDefault": False, "overrides": REMINDER_OVERRIDES}

            with_conference = booking.meeting_url == GOOGLE_MEET_SENTINEL
            if with_conference:
                event["conferenceData"] = {
                    "createRequest": {
                        "requestId": str(booking.id),
                        "conferenceSolutionKey": {"type": "hangoutsMeet"},
                    }
                }

            created = client.insert_event(connection.calendar_id, event, with_conference=with_conference)
        except (GoogleCalendarError, SQLAlchemyError):
            self.db.rollback()
            logger.exception("Failed to create calendar event for booking %s", booking.id)
            return None

        event_id = created.get("id") or None
        hangout_link = created.get("hangoutLink")
        if with_conference and hangout_link:
            try:
                booking.meeting_url = hangout_link
                self.db.commit()
            except SQLAlchemyError:
                self.db.rollback()
                logger.exception("Failed to store meeting link for booking %s", booking.id)

        logger.info("Calendar event %s created for booking %s", event_id, booking.id)
        return event_id

    def update_event(self, booking: Booking, event_id: str, user_id: int) -> bool:
        try:
            connection = self._sync_connection(user_id)
            if connection is None:
                return False

            client = self._client_for(connection)
            zone = resolve_time_zone(connection.time_zone)
            client.update_event(connection.calendar_id, event_id, self.build_event(booking, zone.key))
        except (GoogleCalendarError, SQLAlchemyError):
            self.db.rollback()
            logger.exception("Failed to update calendar event %s", event_id)
            return False

        logger.info("Calendar event %s updated for booking %s", event_id, booking.id)
        return True

    def delete_event(self, event_id: str, user_id: int) -> bool:
        try:
            connection = self._sync_connection(user_id)
            if connection is None:
                return False

            client = self._client_for(connection)
            client.delete_event(connection.calendar_id, event_id)
        except (GoogleCalendarError, SQLAlchemyError):
            self.db.rollback()
            logger.exception("Failed to delete calendar event %s", event_id)
            return False

        logger.info("Calendar event %s deleted", event_id)
        return True
