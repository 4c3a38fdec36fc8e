from datetime import date, datetime

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError

from agency_scheduler.models.availability_rule import AvailabilityRule
from agency_scheduler.models.booking import BookingStatus
from agency_scheduler.routes import booking_routes
from agency_scheduler.routes.booking_routes import (
    AvailabilityCheckRequest,
    BookingResponse,
    cancel_booking,
    check_availability,
    create_booking,
    get_booking,
    list_available_slots,
    list_bookings,
    update_booking,
)
from agency_scheduler.services.booking_service import BookingService, CreateBookingInput, UpdateBookingInput


@pytest.fixture(autouse=True)
def offline_booking_service(monkeypatch):
    monkeypatch.setattr('agency_scheduler.routes.booking_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr(
        booking_routes,
        'build_booking_service',
        lambda db: BookingService(db, clock=lambda: datetime(2024, 1, 1, 8, 0)),
    )


def new_booking(people, start: datetime, end: datetime, **overrides) -> CreateBookingInput:
    values = {
        'title': 'Design review',
        'client_id': people.client.id,
        'host_id': people.host.id,
        'start_time': start,
        'end_time': end,
    }
    values.update(overrides)
    return CreateBookingInput(**values)


def list_for(user, db, **filters):
    arguments = {
        'host_id': None,
        'client_id': None,
        'booking_status': None,
        'start_date': None,
        'end_date': None,
    }
    arguments.update(filters)
    return list_bookings(current_user=user, db=db, **arguments)


def test_create_booking_returns_serializable_booking(scheduling_db, people) -> None:
    booking = create_booking(
        data=new_booking(people, datetime(2024, 1, 10, 13, 15), datetime(2024, 1, 10, 14, 45)),
        current_user=people.admin,
        db=scheduling_db,
    )

    response = BookingResponse.model_validate(booking)
    assert response.duration == 90
    assert response.status == BookingStatus.CONFIRMED
    assert response.client.name == 'Acme Corp'
    assert response.host.id == people.host.id
    assert response.creator.id == people.admin.id


def test_create_booking_accepts_offset_aware_times(scheduling_db, people) -> None:
    data = CreateBookingInput(
        title='Design review',
        client_id=people.client.id,
        host_id=people.host.id,
        start_time='2024-01-10T19:00:00Z',
        end_time='2024-01-10T20:00:00Z',
    )

    booking = create_booking(data=data, current_user=people.admin, db=scheduling_db)

    assert booking.start_time == datetime(2024, 1, 10, 14, 0)
    assert booking.end_time == datetime(2024, 1, 10, 15, 0)


def test_create_booking_returns_conflict_for_overlap(scheduling_db, people) -> None:
    create_booking(
        data=new_booking(people, datetime(2024, 1, 10, 14, 0), datetime(2024, 1, 10, 15, 0)),
        current_user=people.admin,
        db=scheduling_db,
    )

    with pytest.raises(HTTPException) as exception_info:
        create_booking(
            data=new_booking(people, datetime(2024, 1, 10, 14, 30), datetime(2024, 1, 10, 14, 45)),
            current_user=people.admin,
            db=scheduling_db,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Time slot not available'


def test_create_booking_rejects_inverted_window_with_bad_request(scheduling_db, people) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_booking(
            data=new_booking(people, datetime(2024, 1, 10, 15, 0), datetime(2024, 1, 10, 14, 0)),
            current_user=people.admin,
            db=scheduling_db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'End time must be after start time.'


def test_create_booking_rejects_unknown_client(scheduling_db, people) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_booking(
            data=new_booking(people, datetime(2024, 1, 10, 14, 0), datetime(2024, 1, 10, 15, 0), client_id=999),
            current_user=people.admin,
            db=scheduling_db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Client not found'


def test_create_booking_maps_integrity_errors_to_bad_request(monkeypatch, scheduling_db, people) -> None:
    class RejectingService:
        def create_booking(self, data, created_by):
            raise IntegrityError('INSERT INTO bookings', {}, Exception('foreign key constraint failed'))

    monkeypatch.setattr(booking_routes, 'build_booking_service', lambda db: RejectingService())

    with pytest.raises(HTTPException) as exception_info:
        create_booking(
            data=new_booking(people, datetime(2024, 1, 10, 14, 0), datetime(2024, 1, 10, 15, 0)),
            current_user=people.admin,
            db=scheduling_db,
        )

    assert exception_info.value.status_code == 400


def test_list_bookings_rejects_client_users(scheduling_db, people) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_for(people.portal_user, scheduling_db)

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail == 'Clients cannot access bookings yet.'


def test_list_bookings_scopes_team_members_to_their_own_bookings(scheduling_db, people) -> None:
    mine = create_booking(
        data=new_booking(people, datetime(2024, 1, 10, 9, 0), datetime(2024, 1, 10, 10, 0)),
        current_user=people.admin,
        db=scheduling_db,
    )
    create_booking(
        data=new_booking(
            people,
            datetime(2024, 1, 10, 9, 0),
            datetime(2024, 1, 10, 10, 0),
            host_id=people.other_host.id,
        ),
        current_user=people.admin,
        db=scheduling_db,
    )

    own = list_for(people.host, scheduling_db, host_id=people.other_host.id)
    everything = list_for(people.admin, scheduling_db)

    assert [booking.id for booking in own] == [mine.id]
    assert len(everything) == 2


def test_check_availability_route_reports_result(scheduling_db, people) -> None:
    create_booking(
        data=new_booking(people, datetime(2024, 1, 10, 14, 0), datetime(2024, 1, 10, 15, 0)),
        current_user=people.admin,
        db=scheduling_db,
    )

    busy = check_availability(
        data=AvailabilityCheckRequest(
            host_id=people.host.id,
            start_time=datetime(2024, 1, 10, 14, 30),
            end_time=datetime(2024, 1, 10, 14, 45),
        ),
        current_user=people.host,
        db=scheduling_db,
    )
    free = check_availability(
        data=AvailabilityCheckRequest(
            host_id=people.host.id,
            start_time=datetime(2024, 1, 10, 15, 0),
            end_time=datetime(2024, 1, 10, 15, 30),
        ),
        current_user=people.host,
        db=scheduling_db,
    )

    assert busy.available is False
    assert free.available is True


def test_check_availability_route_rejects_inverted_window(scheduling_db, people) -> None:
    with pytest.raises(HTTPException) as exception_info:
        check_availability(
            data=AvailabilityCheckRequest(
                host_id=people.host.id,
                start_time=datetime(2024, 1, 10, 15, 0),
                end_time=datetime(2024, 1, 10, 14, 0),
            ),
            current_user=people.host,
            db=scheduling_db,
        )

    assert exception_info.value.status_code == 400


@pytest.mark.parametrize('duration', [0, 14, 481])
def test_list_available_slots_rejects_out_of_range_duration(scheduling_db, people, duration: int) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_available_slots(
            host_id=people.host.id,
            on=date(2024, 1, 10),
            duration=duration,
            current_user=people.host,
            db=scheduling_db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Invalid duration. Must be between 15 and 480 minutes.'


def test_list_available_slots_returns_slot_grid(scheduling_db, people) -> None:
    scheduling_db.add(
        AvailabilityRule(user_id=people.host.id, day_of_week=3, start_time='09:00', end_time='11:00', is_active=True)
    )
    scheduling_db.commit()

    response = list_available_slots(
        host_id=people.host.id,
        on=date(2024, 1, 10),
        duration=60,
        current_user=people.host,
        db=scheduling_db,
    )

    assert response.date == date(2024, 1, 10)
    assert response.duration == 60
    assert [slot.time for slot in response.slots] == ['9:00 AM', '9:30 AM', '10:00 AM']


def test_get_booking_enforces_access(scheduling_db, people) -> None:
    booking = create_booking(
        data=new_booking(people, datetime(2024, 1, 10, 9, 0), datetime(2024, 1, 10, 10, 0)),
        current_user=people.admin,
        db=scheduling_db,
    )

    assert get_booking(booking_id=booking.id, current_user=people.host, db=scheduling_db).id == booking.id

    with pytest.raises(HTTPException) as forbidden:
        get_booking(booking_id=booking.id, current_user=people.other_host, db=scheduling_db)
    with pytest.raises(HTTPException) as missing:
        get_booking(booking_id=999, current_user=people.admin, db=scheduling_db)

    assert forbidden.value.status_code == 403
    assert missing.value.status_code == 404
    assert missing.value.detail == 'Booking not found.'


def test_update_booking_maps_service_errors(scheduling_db, people) -> None:
    first = create_booking(
        data=new_booking(people, datetime(2024, 1, 10, 9, 0), datetime(2024, 1, 10, 10, 0)),
        current_user=people.admin,
        db=scheduling_db,
    )
    create_booking(
        data=new_booking(people, datetime(2024, 1, 10, 11, 0), datetime(2024, 1, 10, 12, 0)),
        current_user=people.admin,
        db=scheduling_db,
    )

    with pytest.raises(HTTPException) as conflict:
        update_booking(
            booking_id=first.id,
            data=UpdateBookingInput(start_time=datetime(2024, 1, 10, 11, 30), end_time=datetime(2024, 1, 10, 12, 30)),
            current_user=people.admin,
            db=scheduling_db,
        )
    with pytest.raises(HTTPException) as missing:
        update_booking(
            booking_id=999,
            data=UpdateBookingInput(title='Ghost'),
            current_user=people.admin,
            db=scheduling_db,
        )
    with pytest.raises(HTTPException) as inverted:
        update_booking(
            booking_id=first.id,
            data=UpdateBookingInput(start_time=datetime(2024, 1, 10, 10, 30)),
            current_user=people.admin,
            db=scheduling_db,
        )

    assert conflict.value.status_code == 409
    assert conflict.value.detail == 'New time slot not available'
    assert missing.value.status_code == 404
    assert inverted.value.status_code == 400


def test_cancel_booking_uses_default_reason(scheduling_db, people) -> None:
    booking = create_booking(
        data=new_booking(people, datetime(2024, 1, 10, 9, 0), datetime(2024, 1, 10, 10, 0)),
        current_user=people.admin,
        db=scheduling_db,
    )

    cancelled = cancel_booking(booking_id=booking.id, reason='   ', current_user=people.admin, db=scheduling_db)

    assert cancelled.status == BookingStatus.CANCELLED.value
    assert cancelled.cancel_reason == 'Cancelled by user'

    with pytest.raises(HTTPException) as exception_info:
        cancel_booking(booking_id=999, reason=None, current_user=people.admin, db=scheduling_db)

    assert exception_info.value.status_code == 404
