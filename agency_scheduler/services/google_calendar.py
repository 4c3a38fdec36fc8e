"""
Google Calendar client
Wraps the OAuth token endpoint and the Calendar v3 REST API with httpx
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import quote, urlencode

import httpx

from agency_scheduler.core import config

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 - OAuth endpoint URL
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
GOOGLE_CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
]

# Attendees receive provider-native invite/update/cancel emails
SEND_UPDATES = "all"


class GoogleCalendarError(Exception):
    """Any failure talking to Google: transport, timeout or non-2xx response."""


class TokenRefreshError(GoogleCalendarError):
    pass


class CalendarConnectionMissingError(GoogleCalendarError):
    pass


@dataclass
class OAuthTokens:
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _send(method: str, url: str, http_client: Optional[httpx.Client] = None, **kwargs) -> httpx.Response:
    try:
        if http_client is not None:
            return http_client.request(method, url, **kwargs)
        with httpx.Client(timeout=config.CALENDAR_REQUEST_TIMEOUT_SECONDS) as client:
            return client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise GoogleCalendarError(f"{method} {url} failed: {exc}") from exc


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as exc:
        raise GoogleCalendarError(f"Non-JSON response ({response.status_code}) from {response.request.url}") from exc
    if not isinstance(body, dict):
        raise GoogleCalendarError(f"Unexpected response body from {response.request.url}")
    return body


def build_auth_url(state: str) -> str:
    """Consent screen URL; ``prompt=consent`` forces Google to hand out a refresh token."""
    query = urlencode(
        {
            "client_id": config.GOOGLE_CLIENT_ID,
            "redirect_uri": config.GOOGLE_REDIRECT_URI,
            "response_type": "code",
            "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
    )
    return f"{GOOGLE_AUTH_URL}?{query}"


def _request_tokens(data: dict[str, str], http_client: Optional[httpx.Client] = None) -> OAuthTokens:
    response = _send("POST", GOOGLE_TOKEN_URL, http_client, data=data)
    if response.status_code != 200:
        raise TokenRefreshError(f"Token request failed ({response.status_code}): {response.text}")

    try:
        tokens = _json(response)
    except GoogleCalendarError as exc:
        raise TokenRefreshError(str(exc)) from exc
    access_token = tokens.get("access_token")
    expires_in = tokens.get("expires_in")
    if not access_token or not expires_in:
        raise TokenRefreshError("Token response is missing access_token or expires_in")

    return OAuthTokens(
        access_token=access_token,
        expires_at=utcnow() + timedelta(seconds=int(expires_in)),
        refresh_token=tokens.get("refresh_token"),
    )


def exchange_code(code: str, http_client: Optional[httpx.Client] = None) -> OAuthTokens:
    return _request_tokens(
        {
            "client_id": config.GOOGLE_CLIENT_ID,
            "client_secret": config.GOOGLE_CLIENT_SECRET,
            "redirect_uri": config.GOOGLE_REDIRECT_URI,
            "code": code,
            "grant_type": "authorization_code",
        },
        http_client,
    )


def refresh_access_token(refresh_token: str, http_client: Optional[httpx.Client] = None) -> OAuthTokens:
    return _request_tokens(
        {
            "client_id": config.GOOGLE_CLIENT_ID,
            "client_secret": config.GOOGLE_CLIENT_SECRET,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        },
        http_client,
    )


def fetch_account_email(access_token: str, http_client: Optional[httpx.Client] = None) -> str:
    response = _send(
        "GET",
        GOOGLE_USERINFO_URL,
        http_client,
        headers={"Authorization": f"Bearer {access_token}"},
    )
    if response.status_code != 200:
        raise GoogleCalendarError(f"Userinfo request failed ({response.status_code}): {response.text}")

    email = _json(response).get("email")
    if not email:
        raise GoogleCalendarError("Unable to get account email")
    return email


class GoogleCalendarClient:
    """Calendar v3 calls for one access token."""

    def __init__(self, access_token: str, http_client: Optional[httpx.Client] = None):
        self.access_token = access_token
        self.http_client = http_client

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        response = _send(method, f"{GOOGLE_CALENDAR_API}{path}", self.http_client, headers=headers, **kwargs)
        if response.status_code >= 400:
            raise GoogleCalendarError(f"{method} {path} returned {response.status_code}: {response.text}")
        return response

    def query_free_busy(self, calendar_id: str, time_min: str, time_max: str) -> list[dict[str, str]]:
        response = self._request(
            "POST",
            "/freeBusy",
            json={"timeMin": time_min, "timeMax": time_max, "items": [{"id": calendar_id}]},
        )
        calendars = _json(response).get("calendars") or {}
        return (calendars.get(calendar_id) or {}).get("busy") or []

    def insert_event(self, calendar_id: str, event: dict[str, Any], with_conference: bool = False) -> dict[str, Any]:
        params: dict[str, Any] = {"sendUpdates": SEND_UPDATES}
        if with_conference:
            params["conferenceDataVersion"] = 1
        response = self._request("POST", f"/calendars/{quote(calendar_id, safe='')}/events", params=params, json=event)
        return _json(response)

    def update_event(self, calendar_id: str, event_id: str, event: dict[str, Any]) -> dict[str, Any]:
        response = self._request(
            "PUT",
            f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}",
            params={"sendUpdates": SEND_UPDATES},
            json=event,
        )
        return _json(response)

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        self._request(
            "DELETE",
            f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}",
            params={"sendUpdates": SEND_UPDATES},
        )
