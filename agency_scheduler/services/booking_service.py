"""
Booking service
Availability checks, slot generation and the booking lifecycle
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Query, Session, joinedload

from agency_scheduler.models.activity_log import ActivityLog
from agency_scheduler.models.availability_rule import AvailabilityRule
from agency_scheduler.models.booking import Booking, BookingStatus
from agency_scheduler.models.calendar_connection import CalendarConnection
from agency_scheduler.models.client import Client
from agency_scheduler.models.service import Service
from agency_scheduler.models.user import User
from agency_scheduler.services.calendar_sync import BusyInterval, CalendarSyncService, resolve_time_zone

logger = logging.getLogger(__name__)

SLOT_STEP_MINUTES = 30
DEFAULT_SLOT_DURATION_MINUTES = 60
BOOKING_ENTITY_TYPE = "booking"


class BookingError(Exception):
    pass


class BookingConflictError(BookingError):
    pass


class BookingNotFoundError(BookingError):
    pass


class BookingReferenceError(BookingError):
    """The booking points at a host, client or service that does not exist."""


class InvalidTimeRangeError(BookingError, ValueError):
    pass


def to_wall_clock(value: datetime, zone: Optional[ZoneInfo] = None) -> datetime:
    """Offset-aware instants become naive wall-clock times in ``zone``; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(zone or resolve_time_zone(None)).replace(tzinfo=None)


class Attendee(BaseModel):
    name: str
    email: str


class CreateBookingInput(BaseModel):
    """Times may be naive host wall-clock or offset-aware; the engine normalizes them."""

    title: str
    client_id: int
    host_id: int
    start_time: datetime
    end_time: datetime
    service_id: int | None = None
    description: str | None = None
    location: str | None = None
    meeting_url: str | None = None
    notes: str | None = None
    attendees: list[Attendee] | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Title is required.')
        return normalized


class UpdateBookingInput(BaseModel):
    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    meeting_url: str | None = None
    notes: str | None = None
    attendees: list[Attendee] | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Title cannot be blank.')
        return normalized


class SlotCandidate(BaseModel):
    time: str
    date: datetime
    available: bool


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


def day_of_week(value: date) -> int:
    """Sunday-based day index used by availability rules."""
    return (value.weekday() + 1) % 7


def duration_minutes(start_time: datetime, end_time: datetime) -> int:
    return int((end_time - start_time).total_seconds() // 60)


def parse_rule_time(value: str, on: date) -> datetime:
    return datetime.combine(on, datetime.strptime(value, '%H:%M').time())


def format_slot_label(value: datetime) -> str:
    return value.strftime('%I:%M %p').lstrip('0')


def host_now(zone: ZoneInfo) -> datetime:
    """Current wall-clock time in ``zone``, comparable with stored booking times."""
    return datetime.now(zone).replace(tzinfo=None)


class BookingService:
    def __init__(
        self,
        db: Session,
        calendar_sync: Optional[CalendarSyncService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.calendar_sync = calendar_sync
        self.clock = clock

    def host_time_zone(self, host_id: int) -> ZoneInfo:
        """Zone of the host's calendar connection, or the configured default."""
        time_zone = self.db.query(CalendarConnection.time_zone).filter(
            CalendarConnection.user_id == host_id,
        ).scalar()
        return resolve_time_zone(time_zone)

    def _now(self, zone: ZoneInfo) -> datetime:
        if self.clock is not None:
            return self.clock()
        return host_now(zone)

    def _host_window(self, host_id: int, start_time: datetime, end_time: datetime) -> tuple[datetime, datetime]:
        if start_time.tzinfo is None and end_time.tzinfo is None:
            return start_time, end_time
        zone = self.host_time_zone(host_id)
        return to_wall_clock(start_time, zone), to_wall_clock(end_time, zone)

    def _ensure_references(self, data: CreateBookingInput) -> None:
        if self.db.query(User.id).filter(User.id == data.host_id).first() is None:
            raise BookingReferenceError('Host not found')
        if self.db.query(Client.id).filter(Client.id == data.client_id).first() is None:
            raise BookingReferenceError('Client not found')
        if data.service_id is not None and self.db.query(Service.id).filter(Service.id == data.service_id).first() is None:
            raise BookingReferenceError('Service not found')

    def _with_relations(self, query: Query) -> Query:
        return query.options(
            joinedload(Booking.client),
            joinedload(Booking.host),
            joinedload(Booking.service),
            joinedload(Booking.creator),
        )

    def _overlapping_bookings(
        self,
        host_id: int,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: int | None = None,
    ) -> Query:
        query = self.db.query(Booking).filter(
            Booking.host_id == host_id,
            Booking.status != BookingStatus.CANCELLED.value,
            Booking.start_time < end_time,
            Booking.end_time > start_time,
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query

    def _lock_host(self, host_id: int) -> None:
        # Serializes booking writes per host until the next commit/rollback
        self.db.query(User.id).filter(User.id == host_id).with_for_update().first()

    def _busy_intervals(self, host_id: int, time_min: datetime, time_max: datetime) -> list[BusyInterval]:
        if self.calendar_sync is None:
            return []
        try:
            return self.calendar_sync.get_free_busy(host_id, time_min, time_max)
        except Exception:
            logger.warning('Calendar free/busy lookup failed for host %s; treating as free', host_id, exc_info=True)
            return []

    def check_availability(
        self,
        host_id: int,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: int | None = None,
    ) -> bool:
        start_time, end_time = self._host_window(host_id, start_time, end_time)
        if start_time >= end_time:
            raise InvalidTimeRangeError('End time must be after start time.')

        if self._overlapping_bookings(host_id, start_time, end_time, exclude_booking_id).count() > 0:
            return False

        for busy in self._busy_intervals(host_id, start_time, end_time):
            if intervals_overlap(start_time, end_time, busy.start, busy.end):
                return False

        return True

    def get_available_slots(
        self,
        host_id: int,
        on: date,
        duration: int = DEFAULT_SLOT_DURATION_MINUTES,
    ) -> list[SlotCandidate]:
        if duration <= 0:
            raise ValueError('Duration must be a positive number of minutes.')
        if isinstance(on, datetime):
            on = on.date()

        rules = self.db.query(AvailabilityRule).filter(
            AvailabilityRule.user_id == host_id,
            AvailabilityRule.day_of_week == day_of_week(on),
            AvailabilityRule.is_active.is_(True),
        ).order_by(AvailabilityRule.start_time.asc(), AvailabilityRule.id.asc()).all()

        if not rules:
            return []

        day_start = datetime.combine(on, time.min)
        day_end = datetime.combine(on, time.max)

        bookings = self.db.query(Booking).filter(
            Booking.host_id == host_id,
            Booking.start_time >= day_start,
            Booking.start_time <= day_end,
            Booking.status != BookingStatus.CANCELLED.value,
        ).order_by(Booking.start_time.asc()).all()

        busy_intervals = self._busy_intervals(host_id, day_start, day_end)
        now = self._now(self.host_time_zone(host_id))
        step = timedelta(minutes=SLOT_STEP_MINUTES)
        length = timedelta(minutes=duration)

        slots: list[SlotCandidate] = []
        for rule in rules:
            rule_start = parse_rule_time(rule.start_time, on)
            rule_end = parse_rule_time(rule.end_time, on)

            current = rule_start
            while current < rule_end:
                slot_end = current + length
                if slot_end <= rule_end:
                    has_conflict = any(
                        intervals_overlap(current, slot_end, booking.start_time, booking.end_time)
                        for booking in bookings
                    )
                    has_calendar_conflict = any(
                        intervals_overlap(current, slot_end, busy.start, busy.end)
                        for busy in busy_intervals
                    )
                    slots.append(
                        SlotCandidate(
                            time=format_slot_label(current),
                            date=current,
                            available=current > now and not has_conflict and not has_calendar_conflict,
                        )
                    )
                current += step

        return slots

    def _log_activity(
        self,
        user_id: int,
        booking: Booking,
        action: str,
        details: dict[str, Any],
    ) -> None:
        self.db.add(
            ActivityLog(
                user_id=user_id,
                entity_type=BOOKING_ENTITY_TYPE,
                entity_id=str(booking.id),
                client_id=booking.client_id,
                action=action,
                details=details,
            )
        )

    def create_booking(self, data: CreateBookingInput, created_by: int) -> Booking:
        self._ensure_references(data)
        start_time, end_time = self._host_window(data.host_id, data.start_time, data.end_time)

        if not self.check_availability(data.host_id, start_time, end_time):
            raise BookingConflictError('Time slot not available')

        self._lock_host(data.host_id)
        if self._overlapping_bookings(data.host_id, start_time, end_time).count() > 0:
            self.db.rollback()
            raise BookingConflictError('Time slot not available')

        attendees = data.attendees or []
        booking = Booking(
            title=data.title,
            description=data.description,
            location=data.location,
            meeting_url=data.meeting_url,
            notes=data.notes,
            client_id=data.client_id,
            service_id=data.service_id,
            host_id=data.host_id,
            created_by=created_by,
            start_time=start_time,
            end_time=end_time,
            duration=duration_minutes(start_time, end_time),
            status=BookingStatus.CONFIRMED.value,
            attendees=[attendee.model_dump() for attendee in attendees],
        )
        self.db.add(booking)
        self.db.flush()

        self._log_activity(
            created_by,
            booking,
            'created',
            {
                'title': booking.title,
                'startTime': booking.start_time.isoformat(),
                'endTime': booking.end_time.isoformat(),
                'hostId': booking.host_id,
            },
        )
        self.db.commit()

        if self.calendar_sync is not None:
            try:
                google_event_id = self.calendar_sync.create_event(booking, booking.host_id)
                if google_event_id:
                    booking.google_event_id = google_event_id
                    self.db.commit()
            except Exception:
                logger.exception('Calendar sync failed for booking %s', booking.id)
                self.db.rollback()

        return self.get_booking(booking.id)

    def update_booking(self, booking_id: int, data: UpdateBookingInput, updated_by: int) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if booking is None:
            raise BookingNotFoundError('Booking not found')

        changes = data.model_dump(exclude_unset=True)
        details: dict[str, Any] = data.model_dump(mode='json', exclude_unset=True)
        if changes.get('title') is None:
            changes.pop('title', None)
        if 'attendees' in changes and changes['attendees'] is None:
            changes['attendees'] = []

        if changes.get('start_time') is not None or changes.get('end_time') is not None:
            zone = self.host_time_zone(booking.host_id)
            start_time = to_wall_clock(data.start_time, zone) if data.start_time else booking.start_time
            end_time = to_wall_clock(data.end_time, zone) if data.end_time else booking.end_time

            if not self.check_availability(booking.host_id, start_time, end_time, exclude_booking_id=booking.id):
                raise BookingConflictError('New time slot not available')

            self._lock_host(booking.host_id)
            if self._overlapping_bookings(booking.host_id, start_time, end_time, booking.id).count() > 0:
                self.db.rollback()
                raise BookingConflictError('New time slot not available')

            changes['start_time'] = start_time
            changes['end_time'] = end_time
            changes['duration'] = duration_minutes(start_time, end_time)
            for field in ('start_time', 'end_time'):
                if field in details:
                    details[field] = changes[field].isoformat()
            details['duration'] = changes['duration']
        else:
            changes.pop('start_time', None)
            changes.pop('end_time', None)

        for field, value in changes.items():
            setattr(booking, field, value)

        self._log_activity(updated_by, booking, 'updated', {'changes': details})
        self.db.commit()

        if booking.google_event_id and self.calendar_sync is not None:
            try:
                self.calendar_sync.update_event(booking, booking.google_event_id, booking.host_id)
            except Exception:
                logger.exception('Failed to update calendar event for booking %s', booking.id)
                self.db.rollback()

        return self.get_booking(booking.id)

    def cancel_booking(self, booking_id: int, reason: str, cancelled_by: int) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if booking is None:
            raise BookingNotFoundError('Booking not found')

        if booking.status == BookingStatus.CANCELLED.value:
            return self.get_booking(booking.id)

        booking.status = BookingStatus.CANCELLED.value
        booking.cancel_reason = reason
        self._log_activity(cancelled_by, booking, 'cancelled', {'reason': reason})
        self.db.commit()

        if booking.google_event_id and self.calendar_sync is not None:
            try:
                self.calendar_sync.delete_event(booking.google_event_id, booking.host_id)
            except Exception:
                logger.exception('Failed to delete calendar event for booking %s', booking.id)
                self.db.rollback()

        return self.get_booking(booking.id)

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        return self._with_relations(self.db.query(Booking)).filter(Booking.id == booking_id).first()

    def list_bookings(
        self,
        host_id: int | None = None,
        client_id: int | None = None,
        status: BookingStatus | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> list[Booking]:
        zone = self.host_time_zone(host_id) if host_id is not None else resolve_time_zone(None)
        query = self._with_relations(self.db.query(Booking))

        if host_id is not None:
            query = query.filter(Booking.host_id == host_id)
        if client_id is not None:
            query = query.filter(Booking.client_id == client_id)
        if status is not None:
            query = query.filter(Booking.status == BookingStatus(status).value)
        if start_date is not None:
            query = query.filter(Booking.start_time >= to_wall_clock(start_date, zone))
        if end_date is not None:
            query = query.filter(Booking.end_time <= to_wall_clock(end_date, zone))

        return query.order_by(Booking.start_time.asc()).all()
