"""Google Calendar provider implementation.

Room calendars are Google Workspace resource calendars; the room address
is the resource calendar id.  Uses a Google Cloud service account (with
optional domain-wide delegation) to interact with the Calendar API v3.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from functools import partial
from typing import Any, Optional

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from conference_room.errors import AccessDeniedError

from .base import BUSY, CONFIDENTIAL, FREE, NORMAL, PRIVATE, Attendee, CalendarEvent, CalendarProvider

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

_ACCESS_DENIED_STATUSES = {403, 404}


class GoogleCalendarProvider(CalendarProvider):
    """CalendarProvider backed by Google Calendar API v3."""

    def __init__(
        self,
        service_account_path: str | None = None,
        impersonate_user: str | None = None,
    ) -> None:
        sa_path = service_account_path or os.environ.get(
            "GOOGLE_SERVICE_ACCOUNT_JSON", ""
        )
        if not sa_path:
            raise ValueError(
                "Google service account JSON path must be provided via "
                "constructor argument or GOOGLE_SERVICE_ACCOUNT_JSON env var."
            )
        credentials = Credentials.from_service_account_file(sa_path, scopes=SCOPES)
        if impersonate_user:
            credentials = credentials.with_subject(impersonate_user)
        self._credentials = credentials
        self._service = build(
            "calendar", "v3", credentials=self._credentials, cache_discovery=False
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        """Run a synchronous Google API call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, partial(func, *args, **kwargs)
        )

    async def _execute(self, request, room_address: str) -> Any:
        """Execute a request, translating missing/forbidden calendars."""
        try:
            return await self._run_in_executor(request.execute)
        except HttpError as exc:
            if exc.resp.status in _ACCESS_DENIED_STATUSES:
                logger.debug(
                    "Access denied (%s) for calendar %s", exc.resp.status, room_address
                )
                raise AccessDeniedError(
                    "Calendar not found or access denied"
                ) from exc
            raise

    @staticmethod
    def _to_rfc3339(dt: datetime) -> str:
        """Convert a datetime to an RFC 3339 string with timezone."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat()

    @staticmethod
    def _parse_time(value: dict) -> tuple[datetime, bool]:
        """Parse an event start/end; returns (instant, is_all_day)."""
        if "dateTime" in value:
            return datetime.fromisoformat(value["dateTime"]), False
        return datetime.fromisoformat(value["date"]).replace(tzinfo=timezone.utc), True

    @staticmethod
    def _attendee(data: dict) -> Attendee:
        address = data.get("email")
        return Attendee(
            name=data.get("displayName") or address or "",
            address=address,
            is_mailbox=bool(address),
        )

    @classmethod
    def _to_event(cls, item: dict) -> CalendarEvent:
        start, all_day = cls._parse_time(item["start"])
        end, _ = cls._parse_time(item["end"])

        required: list[Attendee] = []
        optional: list[Attendee] = []
        for data in item.get("attendees", []):
            if data.get("resource"):
                continue  # the room itself
            (optional if data.get("optional") else required).append(cls._attendee(data))

        visibility = item.get("visibility", "default")
        sensitivity = {"private": PRIVATE, "confidential": CONFIDENTIAL}.get(visibility, NORMAL)

        return CalendarEvent(
            id=item["id"],
            subject=item.get("summary"),
            start=start,
            end=end,
            organizer=cls._attendee(item.get("organizer", {})),
            sensitivity=sensitivity,
            required_attendees=required,
            optional_attendees=optional,
            is_all_day=all_day,
            free_busy_status=FREE if item.get("transparency") == "transparent" else BUSY,
            location=item.get("location", ""),
        )

    # ------------------------------------------------------------------
    # CalendarProvider interface
    # ------------------------------------------------------------------

    async def find_upcoming_events(
        self, room_address: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        """List single (expanded) events overlapping the window, oldest first."""
        events: list[CalendarEvent] = []
        page_token: Optional[str] = None

        while True:
            response = await self._execute(
                self._service.events().list(
                    calendarId=room_address,
                    timeMin=self._to_rfc3339(start),
                    timeMax=self._to_rfc3339(end),
                    singleEvents=True,
                    orderBy="startTime",
                    pageToken=page_token,
                ),
                room_address,
            )
            for item in response.get("items", []):
                if item.get("status") == "cancelled":
                    continue
                events.append(self._to_event(item))
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.debug("Got %d events for %s", len(events), room_address)
        return events

    async def get_event(self, room_address: str, event_id: str) -> CalendarEvent:
        item = await self._execute(
            self._service.events().get(calendarId=room_address, eventId=event_id),
            room_address,
        )
        return self._to_event(item)

    async def rewrite_event_end(
        self, room_address: str, event_id: str, new_end: datetime
    ) -> CalendarEvent:
        """Patch the event's end time; attendees are not notified."""
        item = await self._execute(
            self._service.events().patch(
                calendarId=room_address,
                eventId=event_id,
                body={"end": {"dateTime": self._to_rfc3339(new_end)}},
                sendUpdates="none",
            ),
            room_address,
        )
        logger.info("Moved end of event %s on %s to %s", event_id, room_address, new_end)
        return self._to_event(item)

    async def create_event(
        self,
        room_address: str,
        start: datetime,
        end: datetime,
        title: str,
        body: str = "",
    ) -> str:
        """Insert an event into the room's calendar without sending invitations."""
        event_body: dict[str, Any] = {
            "summary": title,
            "start": {"dateTime": self._to_rfc3339(start)},
            "end": {"dateTime": self._to_rfc3339(end)},
        }
        if body:
            event_body["description"] = body

        result = await self._execute(
            self._service.events().insert(
                calendarId=room_address,
                body=event_body,
                sendUpdates="none",
            ),
            room_address,
        )

        logger.info("Created event %s on calendar %s", result["id"], room_address)
        return result["id"]

    async def resolve_room_identity(self, room_address: str) -> Optional[str]:
        try:
            result = await self._execute(
                self._service.calendars().get(calendarId=room_address),
                room_address,
            )
        except AccessDeniedError:
            return None
        return result.get("summary") or room_address
