import pytest
from fastapi import HTTPException

from agency_scheduler.models.availability_rule import AvailabilityRule
from agency_scheduler.routes.availability_routes import (
    ReplaceAvailabilityRequest,
    get_availability,
    update_availability,
)


def test_get_availability_defaults_to_current_user(scheduling_db, people) -> None:
    scheduling_db.add(AvailabilityRule(user_id=people.host.id, day_of_week=1, start_time='09:00', end_time='17:00'))
    scheduling_db.add(AvailabilityRule(user_id=people.other_host.id, day_of_week=1, start_time='10:00', end_time='12:00'))
    scheduling_db.commit()

    rules = get_availability(user_id=None, current_user=people.host, db=scheduling_db)

    assert [(rule.user_id, rule.start_time) for rule in rules] == [(people.host.id, '09:00')]


def test_get_availability_blocks_team_members_from_other_hosts(scheduling_db, people) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_availability(user_id=people.other_host.id, current_user=people.host, db=scheduling_db)

    assert exception_info.value.status_code == 403
    assert get_availability(user_id=people.other_host.id, current_user=people.admin, db=scheduling_db) == []


def test_update_availability_replaces_rules_for_target_host(scheduling_db, people) -> None:
    request = ReplaceAvailabilityRequest(
        user_id=people.host.id,
        slots=[
            {'day_of_week': 3, 'start_time': '09:00', 'end_time': '11:00'},
            {'day_of_week': 5, 'start_time': '13:00', 'end_time': '16:00', 'is_active': False},
        ],
    )

    rules = update_availability(data=request, current_user=people.admin, db=scheduling_db)

    assert [(rule.user_id, rule.day_of_week, rule.is_active) for rule in rules] == [
        (people.host.id, 3, True),
        (people.host.id, 5, False),
    ]
