"""Weekly availability rules for booking hosts."""

import logging
from datetime import datetime

from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.orm import Session

from agency_scheduler.models.activity_log import ActivityLog
from agency_scheduler.models.availability_rule import AvailabilityRule

logger = logging.getLogger(__name__)

RULE_TIME_FORMAT = '%H:%M'


class AvailabilityRuleInput(BaseModel):
    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool = True

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if value < 0 or value > 6:
            raise ValueError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_clock_time(cls, value: str) -> str:
        normalized = value.strip()
        try:
            parsed = datetime.strptime(normalized, RULE_TIME_FORMAT)
        except ValueError as exc:
            raise ValueError('Times must use the HH:MM 24-hour format.') from exc
        return parsed.strftime(RULE_TIME_FORMAT)

    @model_validator(mode='after')
    def validate_window(self) -> 'AvailabilityRuleInput':
        if self.start_time >= self.end_time:
            raise ValueError('Availability end time must be after its start time.')
        return self


def list_rules(db: Session, user_id: int) -> list[AvailabilityRule]:
    return db.query(AvailabilityRule).filter(
        AvailabilityRule.user_id == user_id,
    ).order_by(AvailabilityRule.day_of_week.asc(), AvailabilityRule.start_time.asc()).all()


def replace_rules(
    db: Session,
    user_id: int,
    rules: list[AvailabilityRuleInput],
    updated_by: int,
) -> list[AvailabilityRule]:
    """Swap a host's whole rule set. Existing bookings are left untouched."""
    db.query(AvailabilityRule).filter(AvailabilityRule.user_id == user_id).delete(synchronize_session=False)

    for rule in rules:
        db.add(
            AvailabilityRule(
                user_id=user_id,
                day_of_week=rule.day_of_week,
                start_time=rule.start_time,
                end_time=rule.end_time,
                is_active=rule.is_active,
            )
        )

    db.add(
        ActivityLog(
            user_id=updated_by,
            entity_type='availability',
            entity_id=str(user_id),
            action='updated',
            details={'slots': len(rules)},
        )
    )
    db.commit()
    logger.info('Replaced availability for user %s with %d rules', user_id, len(rules))

    return list_rules(db, user_id)
