"""
Google Calendar Sync
====================

OAuth consent (with an HMAC-signed state parameter), refresh-token storage in
the `google_auth` table, and event insert/list on the user's primary
calendar.

Author: EduGenie Team
"""

import base64
import hashlib
import hmac
import json
import re
import time
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from config import config
from database import service_client, user_client

SCOPES = ["https://www.googleapis.com/auth/calendar.events"]
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
STATE_MAX_AGE_MS = 30 * 60 * 1000

DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}$")
REQUIRED_EVENT_FIELDS = ("summary", "start", "end", "timeZone")

# Deprecated IANA names still sent by some browsers
TIMEZONE_ALIASES = {
    "Asia/Calcutta": "Asia/Kolkata",
}


class StateError(ValueError):
    pass


class CalendarNotConnected(RuntimeError):
    pass


# ============================================================================
# OAUTH STATE
# ============================================================================

def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _signature(encoded: str, secret: str) -> str:
    return _b64url(hmac.new(secret.encode("utf-8"), encoded.encode("ascii"), hashlib.sha256).digest())


def sign_state(payload: dict, secret: Optional[str] = None) -> str:
    """Encode a payload as `<base64url json>.<base64url hmac>`"""
    secret = secret or config.require("GOOGLE_OAUTH_STATE_SECRET")
    encoded = _b64url(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{encoded}.{_signature(encoded, secret)}"


def verify_state(state: str, secret: Optional[str] = None, now_ms: Optional[float] = None) -> dict:
    """
    Check signature and age of an OAuth state

    Raises:
        StateError: Bad format, bad signature or expired
    """
    secret = secret or config.require("GOOGLE_OAUTH_STATE_SECRET")
    encoded, _, signature = (state or "").partition(".")
    if not encoded or not signature:
        raise StateError("Invalid state format")

    if not hmac.compare_digest(_signature(encoded, secret), signature):
        raise StateError("Invalid state signature")

    try:
        payload = json.loads(_b64url_decode(encoded))
    except ValueError as e:
        raise StateError("Invalid state payload") from e

    ts = payload.get("ts") or 0
    now_ms = time.time() * 1000 if now_ms is None else now_ms
    if not ts or now_ms - ts > STATE_MAX_AGE_MS:
        raise StateError("State expired")
    return payload


# ============================================================================
# OAUTH FLOW
# ============================================================================

def _flow() -> Flow:
    client_config = {
        "web": {
            "client_id": config.require("GOOGLE_CLIENT_ID"),
            "client_secret": config.require("GOOGLE_CLIENT_SECRET"),
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
            "redirect_uris": [config.require("GOOGLE_REDIRECT_URI")],
        }
    }
    # The callback builds a fresh Flow, so no PKCE verifier can be carried over
    return Flow.from_client_config(
        client_config,
        scopes=SCOPES,
        redirect_uri=config.GOOGLE_REDIRECT_URI,
        autogenerate_code_verifier=False,
    )


def authorization_url(user_id: str, next_path: str = "/", current_view: str = "dashboard") -> str:
    state = sign_state({
        "userId": user_id,
        "nextPath": next_path or "/",
        "currentView": current_view or "dashboard",
        "ts": int(time.time() * 1000),
    })
    url, _ = _flow().authorization_url(access_type="offline", prompt="consent", state=state)
    return url


def exchange_code(code: str) -> Credentials:
    flow = _flow()
    flow.fetch_token(code=code)
    return flow.credentials


def store_tokens(user_id: str, credentials: Credentials):
    expiry = credentials.expiry.replace(tzinfo=timezone.utc).isoformat() if credentials.expiry else None
    service_client().table("google_auth").upsert({
        "user_id": user_id,
        "access_token": credentials.token,
        "refresh_token": credentials.refresh_token,
        "scope": " ".join(credentials.scopes or SCOPES),
        "token_type": "Bearer",
        "expiry_date": expiry,
    }).execute()


def redirect_after_connect(payload: dict) -> str:
    next_path = payload.get("nextPath") or "/"
    if not next_path.startswith("/"):
        next_path = "/"
    view = payload.get("currentView") or "dashboard"
    return f"{config.APP_URL.rstrip('/')}{next_path}?google=connected&view={view}"


# ============================================================================
# CALENDAR
# ============================================================================

def is_connected(access_token: str, user_id: str) -> bool:
    result = (
        user_client(access_token)
        .table("google_auth")
        .select("user_id")
        .eq("user_id", user_id)
        .execute()
    )
    return bool(result.data)


def refresh_token_for(user_id: str) -> str:
    result = (
        service_client()
        .table("google_auth")
        .select("refresh_token")
        .eq("user_id", user_id)
        .execute()
    )
    row = result.data[0] if result.data else None
    if not row or not row.get("refresh_token"):
        raise CalendarNotConnected("Google Calendar not connected")
    return row["refresh_token"]


def calendar_service(refresh_token: str):
    credentials = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=TOKEN_URI,
        client_id=config.require("GOOGLE_CLIENT_ID"),
        client_secret=config.require("GOOGLE_CLIENT_SECRET"),
        scopes=SCOPES,
    )
    return build("calendar", "v3", credentials=credentials, cache_discovery=False)


def missing_event_fields(event: Optional[dict]) -> list:
    event = event or {}
    return [field for field in REQUIRED_EVENT_FIELDS if not event.get(field)]


def normalize_time_zone(name: str) -> str:
    return TIMEZONE_ALIASES.get(name, name)


def build_event_body(event: dict) -> dict:
    """
    Calendar API body for an event in the user's zone

    Raises:
        ValueError: start/end are not YYYY-MM-DDTHH:MM:SS
    """
    if not DATETIME_RE.match(event["start"]) or not DATETIME_RE.match(event["end"]):
        raise ValueError("Invalid datetime format. Expected YYYY-MM-DDTHH:MM:SS")

    tz = normalize_time_zone(event["timeZone"])
    return {
        "summary": event["summary"],
        "description": event.get("description") or "",
        "start": {"dateTime": event["start"], "timeZone": tz},
        "end": {"dateTime": event["end"], "timeZone": tz},
        "reminders": {
            "useDefault": False,
            "overrides": [{"method": "popup", "minutes": 1}],
        },
    }


def insert_event(service, body: dict) -> str:
    created = service.events().insert(calendarId="primary", body=body).execute()
    event_id = created.get("id")
    if not event_id:
        raise RuntimeError("Event created but no ID returned")
    print(f"[calendar] Event created: {event_id}")
    return event_id


def day_bounds(day: str, time_zone: Optional[str] = None) -> tuple:
    """RFC 3339 start/end of a calendar day in the given zone (UTC by default)"""
    the_day = date.fromisoformat(day[:10])
    tz = timezone.utc
    if time_zone:
        try:
            tz = ZoneInfo(normalize_time_zone(time_zone))
        except (ZoneInfoNotFoundError, ValueError):
            print(f"[calendar] Unknown time zone '{time_zone}', using UTC")
    start = datetime.combine(the_day, dt_time.min, tzinfo=tz)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return start.isoformat(), end.isoformat()


def list_events(service, day: str, time_zone: Optional[str] = None) -> list:
    time_min, time_max = day_bounds(day, time_zone)
    response = service.events().list(
        calendarId="primary",
        timeMin=time_min,
        timeMax=time_max,
        singleEvents=True,
        orderBy="startTime",
    ).execute()

    return [{
        "id": item.get("id"),
        "title": item.get("summary") or "Untitled",
        "startTime": (item.get("start") or {}).get("dateTime") or (item.get("start") or {}).get("date"),
        "endTime": (item.get("end") or {}).get("dateTime") or (item.get("end") or {}).get("date"),
        "description": item.get("description"),
    } for item in response.get("items", [])]
