from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from agency_scheduler.auth.dependencies import get_current_user, require_roles
from agency_scheduler.database import ensure_booking_schema, get_db
from agency_scheduler.models.booking import BookingStatus
from agency_scheduler.models.user import BOOKING_MANAGER_ROLES, CLIENT_ROLE, User
from agency_scheduler.services.booking_service import (
    DEFAULT_SLOT_DURATION_MINUTES,
    BookingConflictError,
    BookingNotFoundError,
    BookingReferenceError,
    BookingService,
    CreateBookingInput,
    InvalidTimeRangeError,
    SlotCandidate,
    UpdateBookingInput,
)
from agency_scheduler.services.calendar_sync import CalendarSyncService

router = APIRouter(tags=['bookings'])

MIN_SLOT_DURATION_MINUTES = 15
MAX_SLOT_DURATION_MINUTES = 480
DEFAULT_CANCEL_REASON = 'Cancelled by user'
DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


class UserSummary(BaseModel):
    id: int
    email: str | None = None
    name: str | None = None

    class Config:
        from_attributes = True


class ClientSummary(BaseModel):
    id: int
    name: str
    email: str | None = None

    class Config:
        from_attributes = True


class ServiceSummary(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class BookingResponse(BaseModel):
    id: int
    title: str
    description: str | None = None
    location: str | None = None
    meeting_url: str | None = None
    notes: str | None = None
    client_id: int
    service_id: int | None = None
    host_id: int
    created_by: int
    start_time: datetime
    end_time: datetime
    duration: int
    status: BookingStatus
    attendees: list[dict[str, str]]
    google_event_id: str | None = None
    cancel_reason: str | None = None
    client: ClientSummary | None = None
    host: UserSummary | None = None
    service: ServiceSummary | None = None
    creator: UserSummary | None = None

    class Config:
        from_attributes = True


class AvailabilityCheckRequest(BaseModel):
    host_id: int
    start_time: datetime
    end_time: datetime


class AvailabilityCheckResponse(BaseModel):
    available: bool
    host_id: int
    start_time: datetime
    end_time: datetime


class SlotsResponse(BaseModel):
    slots: list[SlotCandidate]
    date: date
    duration: int
    host_id: int


def build_booking_service(db: Session) -> BookingService:
    return BookingService(db, CalendarSyncService(db))


def ensure_database_ready() -> None:
    try:
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def invalid_reference(db: Session, detail: str) -> HTTPException:
    db.rollback()
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def database_unavailable(db: Session) -> HTTPException:
    db.rollback()
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


@router.get('', response_model=list[BookingResponse])
def list_bookings(
    host_id: int | None = Query(default=None),
    client_id: int | None = Query(default=None),
    booking_status: BookingStatus | None = Query(default=None, alias='status'),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role == CLIENT_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Clients cannot access bookings yet.',
        )

    if current_user.role not in BOOKING_MANAGER_ROLES:
        host_id = current_user.id

    ensure_database_ready()

    try:
        return build_booking_service(db).list_bookings(
            host_id=host_id,
            client_id=client_id,
            status=booking_status,
            start_date=start_date,
            end_date=end_date,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: CreateBookingInput,
    current_user: User = Depends(require_roles(*BOOKING_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return build_booking_service(db).create_booking(data, created_by=current_user.id)
    except BookingConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except InvalidTimeRangeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except BookingReferenceError as exc:
        raise invalid_reference(db, str(exc)) from exc
    except IntegrityError as exc:
        raise invalid_reference(db, 'Booking references an unknown host, client or service.') from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/availability', response_model=AvailabilityCheckResponse)
def check_availability(
    data: AvailabilityCheckRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        available = build_booking_service(db).check_availability(data.host_id, data.start_time, data.end_time)
    except InvalidTimeRangeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return AvailabilityCheckResponse(
        available=available,
        host_id=data.host_id,
        start_time=data.start_time,
        end_time=data.end_time,
    )


@router.get('/slots', response_model=SlotsResponse)
def list_available_slots(
    host_id: int = Query(...),
    on: date = Query(..., alias='date'),
    duration: int = Query(default=DEFAULT_SLOT_DURATION_MINUTES),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user

    if duration < MIN_SLOT_DURATION_MINUTES or duration > MAX_SLOT_DURATION_MINUTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f'Invalid duration. Must be between {MIN_SLOT_DURATION_MINUTES} '
                f'and {MAX_SLOT_DURATION_MINUTES} minutes.'
            ),
        )

    ensure_database_ready()

    try:
        slots = build_booking_service(db).get_available_slots(host_id, on, duration)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return SlotsResponse(slots=slots, date=on, duration=duration, host_id=host_id)


@router.get('/{booking_id}', response_model=BookingResponse)
def get_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = build_booking_service(db).get_booking(booking_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Booking not found.')

    can_access = (
        current_user.role in BOOKING_MANAGER_ROLES
        or booking.host_id == current_user.id
        or booking.created_by == current_user.id
    )
    if not can_access:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')

    return booking


@router.put('/{booking_id}', response_model=BookingResponse)
def update_booking(
    booking_id: int,
    data: UpdateBookingInput,
    current_user: User = Depends(require_roles(*BOOKING_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return build_booking_service(db).update_booking(booking_id, data, updated_by=current_user.id)
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Booking not found.') from exc
    except BookingConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except InvalidTimeRangeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except IntegrityError as exc:
        raise invalid_reference(db, 'Booking references an unknown host, client or service.') from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.delete('/{booking_id}', response_model=BookingResponse)
def cancel_booking(
    booking_id: int,
    reason: str | None = Query(default=None),
    current_user: User = Depends(require_roles(*BOOKING_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return build_booking_service(db).cancel_booking(
            booking_id,
            (reason or '').strip() or DEFAULT_CANCEL_REASON,
            cancelled_by=current_user.id,
        )
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Booking not found.') from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc
