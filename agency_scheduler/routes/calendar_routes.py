"""
Calendar connection routes
OAuth connect/callback, connection status, settings and disconnect
"""
import logging
from datetime import datetime
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agency_scheduler.auth import jwt_handler
from agency_scheduler.auth.dependencies import require_roles
from agency_scheduler.core import config
from agency_scheduler.database import ensure_calendar_schema, get_db
from agency_scheduler.models.activity_log import ActivityLog
from agency_scheduler.models.calendar_connection import CalendarConnection
from agency_scheduler.models.user import BOOKING_MANAGER_ROLES, User
from agency_scheduler.services.google_calendar import (
    GoogleCalendarError,
    build_auth_url,
    exchange_code,
    fetch_account_email,
    utcnow,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=['calendar'])

CONNECTION_ENTITY_TYPE = 'calendar_connection'
DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


class CalendarStatusResponse(BaseModel):
    connected: bool
    email: str | None = None
    sync_enabled: bool | None = None
    provider: str | None = None
    time_zone: str | None = None
    connected_at: datetime | None = None
    is_expired: bool | None = None


class CalendarSettingsRequest(BaseModel):
    sync_enabled: bool | None = None
    time_zone: str | None = None

    @field_validator('time_zone')
    @classmethod
    def validate_time_zone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError('Unknown time zone.') from exc
        return normalized


def frontend_redirect(**params: str) -> RedirectResponse:
    parsed = urlparse(config.FRONTEND_CALENDAR_URL)
    query = dict(parse_qsl(parsed.query))
    query.update(params)
    return RedirectResponse(url=urlunparse(parsed._replace(query=urlencode(query))))


def get_connection(db: Session, user_id: int) -> CalendarConnection | None:
    return db.query(CalendarConnection).filter(CalendarConnection.user_id == user_id).first()


def status_for(connection: CalendarConnection | None) -> CalendarStatusResponse:
    if connection is None:
        return CalendarStatusResponse(connected=False)

    return CalendarStatusResponse(
        connected=True,
        email=connection.email,
        sync_enabled=connection.sync_enabled,
        provider=connection.provider,
        time_zone=connection.time_zone or config.CALENDAR_DEFAULT_TIMEZONE,
        connected_at=connection.created_at,
        is_expired=connection.expires_at < utcnow(),
    )


@router.get('/connect')
def connect_calendar(current_user: User = Depends(require_roles(*BOOKING_MANAGER_ROLES))):
    if not config.GOOGLE_CLIENT_ID or not config.GOOGLE_CLIENT_SECRET:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail='Google Calendar not configured')

    logger.info('Google Calendar OAuth initiated for user %s', current_user.id)
    return {'auth_url': build_auth_url(jwt_handler.create_oauth_state(current_user.id))}


@router.get('/callback')
def calendar_oauth_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    if error:
        return frontend_redirect(error='access_denied')
    if not code or not state:
        return frontend_redirect(error='missing_params')

    try:
        user_id = jwt_handler.read_oauth_state(state)
    except jwt.InvalidTokenError:
        return frontend_redirect(error='unauthorized')

    try:
        tokens = exchange_code(code)
        if not tokens.refresh_token:
            raise GoogleCalendarError('Missing refresh token from Google')
        email = fetch_account_email(tokens.access_token)
    except GoogleCalendarError:
        logger.exception('Google Calendar OAuth callback failed for user %s', user_id)
        return frontend_redirect(error='auth_failed')

    try:
        ensure_calendar_schema()
        connection = get_connection(db, user_id)
        if connection is None:
            connection = CalendarConnection(user_id=user_id, provider='google', calendar_id='primary')
            db.add(connection)
        connection.access_token = tokens.access_token
        connection.refresh_token = tokens.refresh_token
        connection.expires_at = tokens.expires_at
        connection.email = email
        connection.sync_enabled = True

        db.add(
            ActivityLog(
                user_id=user_id,
                entity_type=CONNECTION_ENTITY_TYPE,
                entity_id=str(user_id),
                action='connected',
                details={'email': email, 'provider': 'google'},
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to store calendar connection for user %s', user_id)
        return frontend_redirect(error='auth_failed')

    logger.info('Google Calendar connected for user %s (%s)', user_id, email)
    return frontend_redirect(connected='true')


@router.get('/status', response_model=CalendarStatusResponse)
def calendar_status(
    current_user: User = Depends(require_roles(*BOOKING_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        return status_for(get_connection(db, current_user.id))
    except SQLAlchemyError:
        logger.warning('Calendar connection lookup failed; reporting not connected', exc_info=True)
        return CalendarStatusResponse(connected=False)


@router.put('/settings', response_model=CalendarStatusResponse)
def update_calendar_settings(
    data: CalendarSettingsRequest,
    current_user: User = Depends(require_roles(*BOOKING_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        connection = get_connection(db, current_user.id)
        if connection is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Calendar not connected.')

        if data.sync_enabled is not None:
            connection.sync_enabled = data.sync_enabled
        if data.time_zone is not None:
            connection.time_zone = data.time_zone
        db.commit()

        return status_for(connection)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.post('/disconnect')
def disconnect_calendar(
    current_user: User = Depends(require_roles(*BOOKING_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        connection = get_connection(db, current_user.id)
        if connection is None:
            return {'success': True}

        db.delete(connection)
        db.add(
            ActivityLog(
                user_id=current_user.id,
                entity_type=CONNECTION_ENTITY_TYPE,
                entity_id=str(current_user.id),
                action='disconnected',
                details={'provider': connection.provider},
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    logger.info('Google Calendar disconnected for user %s', current_user.id)
    return {'success': True}
