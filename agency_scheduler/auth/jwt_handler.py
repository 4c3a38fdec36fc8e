from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from agency_scheduler.core import config

OAUTH_STATE_PURPOSE = "calendar_oauth"


def create_access_token(subject: str, expires_minutes: int | None = None, **claims: Any) -> str:
    issued_at = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES)
    payload = {"sub": subject, "iat": issued_at, "exp": issued_at + lifetime, **claims}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])


def create_oauth_state(user_id: int) -> str:
    """Signed, short-lived state value binding an OAuth round trip to a user."""
    return create_access_token(
        str(user_id),
        expires_minutes=config.OAUTH_STATE_EXPIRES_MINUTES,
        purpose=OAUTH_STATE_PURPOSE,
    )


def read_oauth_state(state: str) -> int:
    payload = decode_access_token(state)
    subject = str(payload.get("sub", ""))
    if payload.get("purpose") != OAUTH_STATE_PURPOSE or not subject.isdigit():
        raise jwt.InvalidTokenError("Token is not a calendar OAuth state")
    return int(subject)
