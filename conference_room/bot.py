"""Conversation router: intent dispatch on top of the criteria sessions.

A message either answers the conversation's pending criteria prompt or
starts something new, chosen by the NLU top intent:

  findRoom    -> SearchCriteria session, then list the free rooms
  bookRoom    -> BookingCriteria session, then create the calendar event
  checkRoom   -> StatusCriteria session, then report free/busy
  setBuilding / setFloor / clearFloor -> conversation preferences
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from conference_room.calendar_providers.base import CalendarProvider
from conference_room.criteria_session import (
    CriteriaSession,
    CriteriaState,
    CriteriaTurn,
    get_session,
    register_session,
    unregister_session,
)
from conference_room.errors import AccessDeniedError
from conference_room.models.criteria import (
    BookingCriteria,
    OfficeOptions,
    RoomBaseCriteria,
    SearchCriteria,
    StatusCriteria,
)
from conference_room.models.meeting import Meeting
from conference_room.models.room import RoomRecord
from conference_room.nlu import BUILDING, FLOOR, NluResult, NluService
from conference_room.repositories import RoomRepository
from conference_room.room_service import ConferenceRoomService

log = logging.getLogger("conference_room.bot")

ACCESS_DENIED_NOTICE = "Sorry, I don't have access to that room's calendar."
BOOKING_TITLE = "Booked via conference room bot"
UNKNOWN_ROOM_NOTICE = "Sorry, I don't know that room."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_time(value: datetime, criteria: RoomBaseCriteria) -> str:
    return value.astimezone(criteria.timezone()).strftime("%I:%M %p").lstrip("0")


def _overlaps(meeting: Meeting, start: datetime, end: datetime) -> bool:
    if meeting.is_cancelled or meeting.is_ended_early:
        return False
    return meeting.start < end and meeting.end > start


def _occupies(meeting: Meeting, at: datetime) -> bool:
    if meeting.is_cancelled or meeting.is_ended_early:
        return False
    return meeting.start <= at < meeting.end


@dataclass
class ConversationPreferences:
    office: Optional[OfficeOptions] = None
    floor: Optional[str] = None


class RoomBot:
    def __init__(
        self,
        nlu: NluService,
        room_service: ConferenceRoomService,
        calendar_provider: CalendarProvider,
        room_repository: RoomRepository,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._nlu = nlu
        self._room_service = room_service
        self._calendar = calendar_provider
        self._rooms = room_repository
        self._clock = clock
        self._preferences: dict[str, ConversationPreferences] = {}

    def preferences(self, conversation_id: str) -> ConversationPreferences:
        return self._preferences.setdefault(conversation_id, ConversationPreferences())

    async def handle_message(self, conversation_id: str, text: str) -> list[str]:
        """Process one user message and return the replies to send back."""
        session = get_session(conversation_id)
        if session is not None:
            turn = await session.handle_utterance(text)
            return await self._after_turn(conversation_id, session, turn)

        result = await self._nlu.query(text)
        log.info("Conversation %s intent=%s", conversation_id, result.intent)
        now = self._clock()

        if result.intent == "findRoom":
            criteria = SearchCriteria.parse_criteria(
                result, now, default_office=self.preferences(conversation_id).office,
            )
            return await self._start_session(conversation_id, criteria)
        if result.intent == "bookRoom":
            return await self._start_session(conversation_id, BookingCriteria.parse_criteria(result, now))
        if result.intent == "checkRoom":
            return await self._start_session(conversation_id, StatusCriteria.parse_criteria(result, now))
        if result.intent == "setBuilding":
            return self._set_building(conversation_id, result)
        if result.intent == "setFloor":
            return self._set_floor(conversation_id, result)
        if result.intent == "clearFloor":
            self.preferences(conversation_id).floor = None
            return ["Preferred floor cleared."]

        return [f"Sorry, I don't know what you meant.  You said: {text}"]

    # ── Sessions ─────────────────────────────────────────────────

    async def _start_session(self, conversation_id: str, criteria: RoomBaseCriteria) -> list[str]:
        session = CriteriaSession(criteria, self._nlu, clock=self._clock)
        register_session(conversation_id, session)
        return await self._after_turn(conversation_id, session, session.start())

    async def _after_turn(self, conversation_id: str, session: CriteriaSession, turn: CriteriaTurn) -> list[str]:
        if not turn.done:
            return turn.messages

        unregister_session(conversation_id)
        if turn.state is not CriteriaState.COMPLETE:
            return turn.messages

        try:
            return turn.messages + await self._act(conversation_id, session.result)
        except AccessDeniedError as exc:
            log.warning("Conversation %s: %s", conversation_id, exc)
            return turn.messages + [ACCESS_DENIED_NOTICE]

    async def _act(self, conversation_id: str, criteria: RoomBaseCriteria) -> list[str]:
        if isinstance(criteria, StatusCriteria):
            return await self._check_room(criteria)
        if isinstance(criteria, BookingCriteria):
            return await self._book_room(criteria)
        if isinstance(criteria, SearchCriteria):
            return await self._find_rooms(conversation_id, criteria)
        raise TypeError(f"No action for {type(criteria).__name__}")

    # ── Actions ──────────────────────────────────────────────────

    async def _check_room(self, criteria: StatusCriteria) -> list[str]:
        status = await self._room_service.get_status(criteria.room)
        at = criteria.start_time
        busy = next((m for m in status.near_term_meetings if _occupies(m, at)), None)
        when = _format_time(at, criteria)
        if busy is None:
            return [f"{criteria.room} is free at {when}."]
        until = _format_time(busy.end, criteria)
        return [f"{criteria.room} is busy at {when} ({busy.subject or 'private meeting'} until {until})."]

    async def _book_room(self, criteria: BookingCriteria) -> list[str]:
        room = await self._resolve_room(criteria.room)
        if room is None:
            return [UNKNOWN_ROOM_NOTICE]

        meetings = await self._room_service.get_upcoming_appointments_for_room(room.room_address)
        clash = next((m for m in meetings if _overlaps(m, criteria.start_time, criteria.end_time)), None)
        if clash is not None:
            return [
                f"Sorry, {criteria.room} is busy from {_format_time(clash.start, criteria)} "
                f"to {_format_time(clash.end, criteria)}."
            ]

        event_id = await self._calendar.create_event(
            room.room_address, criteria.start_time, criteria.end_time, BOOKING_TITLE,
        )
        self._room_service.room_changed(room.room_address)
        log.info("Booked %s on %s", event_id, room.room_address)
        return [
            f"Booked {criteria.room} from {_format_time(criteria.start_time, criteria)} "
            f"to {_format_time(criteria.end_time, criteria)}."
        ]

    async def _resolve_room(self, text: str) -> Optional[RoomRecord]:
        """Match a spoken room against the directory by address or display name."""
        wanted = text.strip().lower()
        rooms = await self._rooms.get_rooms()
        return next(
            (
                r for org_rooms in rooms.values() for r in org_rooms
                if wanted in (r.room_address.lower(), r.name.lower())
            ),
            None,
        )

    async def _find_rooms(self, conversation_id: str, criteria: SearchCriteria) -> list[str]:
        rooms = await self._rooms.get_rooms_for_office(criteria.office)
        floor = self.preferences(conversation_id).floor
        if floor:
            rooms.sort(key=lambda r: r.floor != floor)

        schedules = await asyncio.gather(
            *(self._room_service.get_upcoming_appointments_for_room(r.room_address) for r in rooms),
            return_exceptions=True,
        )
        free = []
        for room, meetings in zip(rooms, schedules):
            if isinstance(meetings, AccessDeniedError):
                log.info("Skipping %s: %s", room.room_address, meetings)
                continue
            if isinstance(meetings, BaseException):
                raise meetings
            if not any(_overlaps(m, criteria.start_time, criteria.end_time) for m in meetings):
                free.append(room.name or room.room_address)

        window = f"{_format_time(criteria.start_time, criteria)} to {_format_time(criteria.end_time, criteria)}"
        office = criteria.office.value.replace("_", " ")
        if not free:
            return [f"Sorry, no rooms in {office} are free from {window}."]
        return [f"Rooms free in {office} from {window}: " + ", ".join(free)]

    # ── Preferences ──────────────────────────────────────────────

    def _set_building(self, conversation_id: str, result: NluResult) -> list[str]:
        office = OfficeOptions.parse(result.first_entity_text(BUILDING))
        if office is None:
            return ["Sorry, I don't know that office."]
        self.preferences(conversation_id).office = office
        return ["Building set."]

    def _set_floor(self, conversation_id: str, result: NluResult) -> list[str]:
        floor = result.first_entity_text(FLOOR)
        if not floor:
            return ["Sorry, I didn't catch which floor."]
        self.preferences(conversation_id).floor = floor
        return ["Preferred floor set."]
