from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agency_scheduler.auth.dependencies import get_current_user, require_roles
from agency_scheduler.database import get_db
from agency_scheduler.models.user import BOOKING_MANAGER_ROLES, User
from agency_scheduler.services.availability_service import AvailabilityRuleInput, list_rules, replace_rules

router = APIRouter(tags=['availability'])

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


class AvailabilityRuleResponse(BaseModel):
    id: int
    user_id: int
    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool

    class Config:
        from_attributes = True


class ReplaceAvailabilityRequest(BaseModel):
    user_id: int | None = None
    slots: list[AvailabilityRuleInput]


@router.get('', response_model=list[AvailabilityRuleResponse])
def get_availability(
    user_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_user_id = user_id or current_user.id
    if target_user_id != current_user.id and current_user.role not in BOOKING_MANAGER_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')

    try:
        return list_rules(db, target_user_id)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.put('', response_model=list[AvailabilityRuleResponse])
def update_availability(
    data: ReplaceAvailabilityRequest,
    current_user: User = Depends(require_roles(*BOOKING_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        return replace_rules(db, data.user_id or current_user.id, data.slots, updated_by=current_user.id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
