"""In-process CalendarProvider for local development and tests."""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import datetime
from typing import Optional

from conference_room.calendar_providers.base import Attendee, CalendarEvent, CalendarProvider
from conference_room.errors import AccessDeniedError

logger = logging.getLogger(__name__)


class InMemoryCalendarProvider(CalendarProvider):
    """Room calendars held in a dict; unknown rooms behave as access denied."""

    def __init__(self, rooms: dict[str, str] | None = None) -> None:
        # room address -> display name
        self._rooms: dict[str, str] = dict(rooms or {})
        self._events: dict[str, dict[str, CalendarEvent]] = {r: {} for r in self._rooms}

    def add_event(self, room_address: str, event: CalendarEvent) -> None:
        self._calendar(room_address)[event.id] = event

    def _calendar(self, room_address: str) -> dict[str, CalendarEvent]:
        if room_address not in self._rooms:
            raise AccessDeniedError("Calendar not found or access denied")
        return self._events[room_address]

    async def find_upcoming_events(
        self, room_address: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        events = [e for e in self._calendar(room_address).values() if e.start < end and e.end > start]
        return sorted(events, key=lambda e: e.start)

    async def get_event(self, room_address: str, event_id: str) -> CalendarEvent:
        try:
            return self._calendar(room_address)[event_id]
        except KeyError:
            raise AccessDeniedError(f"Event {event_id} not found") from None

    async def rewrite_event_end(
        self, room_address: str, event_id: str, new_end: datetime
    ) -> CalendarEvent:
        event = dataclasses.replace(await self.get_event(room_address, event_id), end=new_end)
        self._events[room_address][event_id] = event
        logger.info("Moved end of event %s on %s to %s", event_id, room_address, new_end)
        return event

    async def create_event(
        self,
        room_address: str,
        start: datetime,
        end: datetime,
        title: str,
        body: str = "",
    ) -> str:
        calendar = self._calendar(room_address)
        event = CalendarEvent(
            id=uuid.uuid4().hex,
            subject=title,
            start=start,
            end=end,
            organizer=Attendee(name=self._rooms[room_address], address=room_address),
            location=self._rooms[room_address],
        )
        calendar[event.id] = event
        logger.info("Created event %s on %s", event.id, room_address)
        return event.id

    async def resolve_room_identity(self, room_address: str) -> Optional[str]:
        return self._rooms.get(room_address)
