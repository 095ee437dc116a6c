"""
Google Calendar Integration

Mirrors couple events to each member's primary Google calendar and
imports their Google events back.

DESIGN DECISION: A failed mirror never blocks the local event. sync_event()
degrades to a pre-filled "render" link the user can open themselves.

Access tokens are never stored. Each call exchanges the member's stored
refresh token for a fresh access token (refresh-token grant via google-auth).
"""

import asyncio
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union
from urllib.parse import urlencode

import requests
import structlog
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import AuthorizedSession, Request
from google.oauth2.credentials import Credentials
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from gossip_couple.config import get_settings
from gossip_couple.config.settings import GoogleCalendarSettings
from gossip_couple.models.drafts import EventDraft
from gossip_couple.models.entities import Assignee, CalendarEvent
from gossip_couple.services.repository.interface import CoupleRepository, Table

logger = structlog.get_logger(__name__)


RENDER_URL = "https://calendar.google.com/calendar/render?action=TEMPLATE"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
UNTITLED_EVENT = "Sem Título"


class CalendarError(Exception):
    """Base exception for calendar integration failures."""
    pass


class CalendarNotConnectedError(CalendarError):
    """The member has not linked a Google calendar."""
    pass


class TokenRefreshError(CalendarError):
    """The stored refresh token could not be exchanged for an access token."""
    pass


class CalendarSyncResult(BaseModel):
    synced: bool
    link: str
    google_event_id: Optional[str] = None


def _compact_time(iso_string: str) -> str:
    # 2024-05-01T10:00:00.000Z -> 20240501T100000Z
    return re.sub(r"-|:|\.\d{3}", "", iso_string)


def build_calendar_link(
    event: Union[EventDraft, CalendarEvent],
    couple_name: str = "",
    member_names: tuple[str, str] = ("Partner 1", "Partner 2"),
) -> str:
    """Pre-filled Google Calendar render URL for an event."""
    if event.assignee == Assignee.USER1:
        responsible = member_names[0]
    elif event.assignee == Assignee.USER2:
        responsible = member_names[1]
    else:
        responsible = "Both"

    details = event.description or ""
    details += "\n\n--- Gossip Couple Details ---"
    details += f"\nType: {event.type.value.upper()}"
    details += f"\nResponsible: {responsible}"
    if event.value:
        details += f"\nValue: ${event.value}"
    if event.linked_goal_id:
        details += f"\nLinked Goal ID: {event.linked_goal_id}"

    params = {
        "text": event.title,
        "dates": f"{_compact_time(event.start)}/{_compact_time(event.end)}",
        "details": details,
        "location": couple_name or "Home",
    }
    return f"{RENDER_URL}&{urlencode(params)}"


class GoogleCalendarService:
    """
    Calendar link, create, import and OAuth code exchange.

    Args:
        repository: service-role repository (reads user_integrations)
        session_factory: builds an authorized HTTP session from a refresh
            token; defaults to google-auth's AuthorizedSession
        http: session used for the OAuth code exchange
    """

    def __init__(
        self,
        repository: CoupleRepository,
        settings: Optional[GoogleCalendarSettings] = None,
        session_factory: Optional[Callable[[str], Any]] = None,
        http: Optional[requests.Session] = None,
    ):
        self._repository = repository
        self._settings = settings or get_settings().google_calendar
        self._session_factory = session_factory or self._authorized_session
        self._http = http or requests.Session()

    @property
    def _events_url(self) -> str:
        return f"{self._settings.calendar_api_base}/calendars/primary/events"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(TokenRefreshError),
        reraise=True,
    )
    def _authorized_session(self, refresh_token: str) -> AuthorizedSession:
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self._settings.token_uri,
            client_id=self._settings.client_id,
            client_secret=self._settings.client_secret,
            scopes=[CALENDAR_SCOPE],
        )
        try:
            credentials.refresh(Request())
        except RefreshError as e:
            raise TokenRefreshError(f"Failed to refresh Google token: {e}")
        return AuthorizedSession(credentials)

    async def _session_for(self, user_id: str) -> Any:
        row = await self._repository.select_one(Table.USER_INTEGRATIONS, {"user_id": user_id})
        refresh_token = (row or {}).get("google_refresh_token")
        if not refresh_token:
            raise CalendarNotConnectedError("No calendar connection")
        return await asyncio.to_thread(self._session_factory, refresh_token)

    async def exchange_code(self, user_id: str, code: str, redirect_uri: str) -> bool:
        """
        Trade an OAuth authorization code for tokens and store the refresh token.

        Returns True when a refresh token was stored. Google omits it on
        re-consent without prompt=consent.
        """
        response = await asyncio.to_thread(
            self._http.post,
            self._settings.token_uri,
            data={
                "code": code,
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            timeout=30,
        )
        tokens = response.json()
        if tokens.get("error"):
            raise CalendarError(tokens.get("error_description") or "Failed to exchange token")

        refresh_token = tokens.get("refresh_token")
        if not refresh_token:
            logger.info("oauth_exchange_without_refresh_token", user_id=user_id)
            return False

        await self._repository.upsert(
            Table.USER_INTEGRATIONS,
            {
                "user_id": user_id,
                "google_refresh_token": refresh_token,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="user_id",
        )
        return True

    async def create_event(
        self,
        user_id: str,
        event: Union[EventDraft, CalendarEvent],
    ) -> CalendarSyncResult:
        """
        Create the event on the member's primary calendar.

        Raises:
            CalendarNotConnectedError, TokenRefreshError, CalendarError
        """
        session = await self._session_for(user_id)
        body = {
            "summary": event.title,
            "description": event.description or "Event created by Gossip Couple",
            "start": {"dateTime": event.start},
            "end": {"dateTime": event.end},
        }
        response = await asyncio.to_thread(session.post, self._events_url, json=body, timeout=30)
        data = response.json()
        if not response.ok:
            message = (data.get("error") or {}).get("message") or "Failed to create event"
            raise CalendarError(message)
        return CalendarSyncResult(
            synced=True,
            link=data.get("htmlLink", ""),
            google_event_id=data.get("id"),
        )

    async def sync_event(
        self,
        user_id: Optional[str],
        event: Union[EventDraft, CalendarEvent],
        couple_name: str = "",
    ) -> CalendarSyncResult:
        """Mirror an event, falling back to a render link on any failure."""
        if user_id:
            try:
                return await self.create_event(user_id, event)
            except Exception as e:
                logger.warning("calendar_sync_failed", user_id=user_id, error=str(e))
        return CalendarSyncResult(synced=False, link=build_calendar_link(event, couple_name))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _list_events(self, session: Any, time_min: str, time_max: str) -> list[dict]:
        response = session.get(
            self._events_url,
            params={"timeMin": time_min, "timeMax": time_max, "singleEvents": "true"},
            timeout=30,
        )
        data = response.json()
        if not response.ok:
            raise CalendarError((data.get("error") or {}).get("message") or "Failed to fetch Google events")
        return data.get("items") or []

    async def import_events(self, user_id: str, couple_id: Optional[str] = None) -> int:
        """
        Import the member's Google events into the couple's events table.

        Events are upserted by google_event_id. Returns how many were written.
        """
        if couple_id is None:
            profile = await self._repository.select_one(Table.PROFILES, {"id": user_id})
            couple_id = (profile or {}).get("couple_id")
            if not couple_id:
                raise CalendarError("Profile or Couple not found")

        session = await self._session_for(user_id)
        now = datetime.now(timezone.utc)
        time_min = (now - timedelta(days=self._settings.import_past_days)).isoformat()
        time_max = (now + timedelta(days=self._settings.import_future_days)).isoformat()
        items = await asyncio.to_thread(self._list_events, session, time_min, time_max)

        count = 0
        for item in items:
            start_info = item.get("start") or {}
            start = start_info.get("dateTime") or start_info.get("date")
            if not start:
                continue
            end_info = item.get("end") or {}
            end = end_info.get("dateTime") or end_info.get("date") or start

            payload = {
                "couple_id": couple_id,
                "title": item.get("summary") or UNTITLED_EVENT,
                "start_time": start,
                "end_time": end,
                "type": "social",
                "google_event_id": item.get("id"),
                "assignee_id": None,
            }
            existing = await self._repository.select_one(
                Table.EVENTS, {"couple_id": couple_id, "google_event_id": item.get("id")}
            )
            if existing:
                await self._repository.update(Table.EVENTS, {"id": existing["id"]}, payload)
            else:
                await self._repository.insert(Table.EVENTS, payload)
            count += 1

        logger.info("calendar_imported", user_id=user_id, couple_id=couple_id, count=count)
        return count
