"""Tests for the conversation router (intent dispatch + criteria sessions)."""

import os
import sys
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from conference_room.bot import ACCESS_DENIED_NOTICE, UNKNOWN_ROOM_NOTICE, RoomBot
from conference_room.broadcast import RoomUpdateBroadcaster
from conference_room.cache import MeetingCacheService
from conference_room.calendar_providers.base import Attendee, CalendarEvent
from conference_room.calendar_providers.memory import InMemoryCalendarProvider
from conference_room.change_notifications import ChangeNotificationService
from conference_room.config import Settings
from conference_room.criteria_session import get_session
from conference_room.messaging import LoggingMessagingService, StaticSmsAddressLookupService
from conference_room.models.criteria import OfficeOptions
from conference_room.models.room import RoomRecord
from conference_room.nlu import BUILDING, DURATION, FLOOR, ROOM, TIME, TIME_RANGE, NluEntity, NluResult, NluService
from conference_room.repositories import InMemoryMeetingRepository, InMemoryRoomRepository
from conference_room.room_service import ConferenceRoomService
from conference_room.security import InMemorySecurityRepository, SignatureService

CHICAGO = ZoneInfo("America/Chicago")
DENVER = ZoneInfo("America/Denver")
NOW = datetime(2026, 3, 16, 14, 0, tzinfo=timezone.utc)  # 9:00 in Chicago
BOARDROOM = "boardroom@rightpoint.com"


def _time(text, value):
    return NluEntity(type=TIME, entity=text, resolution={"values": [{"value": value}]})


class FakeNlu(NluService):
    RESULTS = {
        "is the boardroom free at 2pm": NluResult(
            intent="checkRoom",
            entities=[NluEntity(type=ROOM, entity=BOARDROOM), _time("2pm", "14:00:00")],
        ),
        "is the attic free at 2pm": NluResult(
            intent="checkRoom",
            entities=[NluEntity(type=ROOM, entity="attic@rightpoint.com"), _time("2pm", "14:00:00")],
        ),
        "book a room": NluResult(intent="bookRoom"),
        "find a room in denver from 2 to 3": NluResult(
            intent="findRoom",
            entities=[
                NluEntity(type=BUILDING, entity="denver"),
                NluEntity(type=TIME_RANGE, resolution={"values": [{"start": "14:00:00", "end": "15:00:00"}]}),
            ],
        ),
        "find a room": NluResult(intent="findRoom"),
        "i work in denver": NluResult(intent="setBuilding", entities=[NluEntity(type=BUILDING, entity="Denver")]),
        "i work on mars": NluResult(intent="setBuilding", entities=[NluEntity(type=BUILDING, entity="Mars")]),
        "i sit on floor 3": NluResult(intent="setFloor", entities=[NluEntity(type=FLOOR, entity="3")]),
        "forget my floor": NluResult(intent="clearFloor"),
        "2pm": NluResult(entities=[_time("2pm", "14:00:00")]),
        "30 minutes": NluResult(entities=[NluEntity(type=DURATION, resolution={"values": [{"value": "1800"}]})]),
        "2 to 3": NluResult(entities=[
            NluEntity(type=TIME_RANGE, resolution={"values": [{"start": "14:00:00", "end": "15:00:00"}]}),
        ]),
    }

    async def query(self, text):
        result = self.RESULTS.get(text, NluResult())
        return result.model_copy(update={"query": text})


def _room(room_id, office, floor=None, name=""):
    return RoomRecord(
        organization_id="org1",
        room_id=room_id,
        room_address=f"{room_id}@rightpoint.com",
        name=name or room_id.title(),
        office=office,
        floor=floor,
    )


@pytest.fixture
def env():
    calendar = InMemoryCalendarProvider({
        BOARDROOM: "Boardroom",
        "rockies@rightpoint.com": "Rockies",
        "plains@rightpoint.com": "Plains",
        "summit@rightpoint.com": "Summit",
    })
    rooms = InMemoryRoomRepository([
        _room("rockies", OfficeOptions.DENVER, floor="2"),
        _room("plains", OfficeOptions.DENVER, floor="3"),
        _room("summit", OfficeOptions.DENVER, floor="3"),
        _room("boardroom", OfficeOptions.CHICAGO),
    ])
    broadcaster = RoomUpdateBroadcaster()
    cache = MeetingCacheService()
    messaging = LoggingMessagingService()
    room_service = ConferenceRoomService(
        calendar_provider=calendar,
        meeting_repository=InMemoryMeetingRepository(),
        security_repository=InMemorySecurityRepository(),
        broadcaster=broadcaster,
        meeting_cache=cache,
        change_notifications=ChangeNotificationService(cache, broadcaster),
        signature_service=SignatureService("sig-key"),
        instant_messaging=messaging,
        sms_messaging=messaging,
        sms_address_lookup=StaticSmsAddressLookupService(),
        email_service=messaging,
        clock=lambda: NOW,
        config=Settings(default_timezone="America/Chicago"),
    )
    bot = RoomBot(FakeNlu(), room_service, calendar, rooms, clock=lambda: NOW)
    return SimpleNamespace(bot=bot, calendar=calendar, conversation=uuid.uuid4().hex)


def _event(event_id, start, end):
    return CalendarEvent(
        id=event_id, subject="Planning", start=start, end=end,
        organizer=Attendee("Pat", "pat@rightpoint.com"),
    )


class TestCheckRoom:
    async def test_free(self, env):
        replies = await env.bot.handle_message(env.conversation, "is the boardroom free at 2pm")
        assert replies == [f"{BOARDROOM} is free at 2:00 PM."]

    async def test_busy(self, env):
        env.calendar.add_event(BOARDROOM, _event(
            "evt-1", datetime(2026, 3, 16, 14, 0, tzinfo=CHICAGO), datetime(2026, 3, 16, 15, 0, tzinfo=CHICAGO),
        ))

        replies = await env.bot.handle_message(env.conversation, "is the boardroom free at 2pm")

        assert replies == [f"{BOARDROOM} is busy at 2:00 PM (Planning until 3:00 PM)."]

    async def test_unknown_room_gets_notice(self, env):
        replies = await env.bot.handle_message(env.conversation, "is the attic free at 2pm")

        assert replies == [ACCESS_DENIED_NOTICE]
        assert get_session(env.conversation) is None


class TestBookRoom:
    async def test_multi_turn_booking(self, env):
        conv = env.conversation

        assert await env.bot.handle_message(conv, "book a room") == ["For what room?"]
        assert await env.bot.handle_message(conv, BOARDROOM) == ["Starting when?"]
        assert await env.bot.handle_message(conv, "2pm") == ["Ending when?"]
        replies = await env.bot.handle_message(conv, "30 minutes")

        assert replies == [f"Booked {BOARDROOM} from 2:00 PM to 2:30 PM."]
        assert get_session(conv) is None
        start = datetime(2026, 3, 16, 14, 0, tzinfo=CHICAGO)
        events = await env.calendar.find_upcoming_events(BOARDROOM, start, start + timedelta(hours=1))
        assert [(e.start, e.end) for e in events] == [(start, start + timedelta(minutes=30))]

    async def test_books_by_display_name(self, env):
        conv = env.conversation
        await env.bot.handle_message(conv, "book a room")
        await env.bot.handle_message(conv, "Boardroom")
        await env.bot.handle_message(conv, "2pm")

        replies = await env.bot.handle_message(conv, "30 minutes")

        assert replies == ["Booked Boardroom from 2:00 PM to 2:30 PM."]
        start = datetime(2026, 3, 16, 14, 0, tzinfo=CHICAGO)
        assert len(await env.calendar.find_upcoming_events(BOARDROOM, start, start + timedelta(hours=1))) == 1

    async def test_busy_room_is_not_booked(self, env):
        start = datetime(2026, 3, 16, 14, 0, tzinfo=CHICAGO)
        env.calendar.add_event(BOARDROOM, _event("evt-1", start, start + timedelta(hours=1)))
        conv = env.conversation
        await env.bot.handle_message(conv, "book a room")
        await env.bot.handle_message(conv, BOARDROOM)
        await env.bot.handle_message(conv, "2pm")

        replies = await env.bot.handle_message(conv, "30 minutes")

        assert replies == [f"Sorry, {BOARDROOM} is busy from 2:00 PM to 3:00 PM."]
        events = await env.calendar.find_upcoming_events(BOARDROOM, start, start + timedelta(hours=1))
        assert [e.id for e in events] == ["evt-1"]

    async def test_unknown_room_is_not_booked(self, env):
        conv = env.conversation
        await env.bot.handle_message(conv, "book a room")
        await env.bot.handle_message(conv, "Attic")
        await env.bot.handle_message(conv, "2pm")

        assert await env.bot.handle_message(conv, "30 minutes") == [UNKNOWN_ROOM_NOTICE]

    async def test_booking_shows_in_later_status(self, env):
        conv = env.conversation
        await env.bot.handle_message(conv, "book a room")
        await env.bot.handle_message(conv, BOARDROOM)
        await env.bot.handle_message(conv, "2pm")
        await env.bot.handle_message(conv, "30 minutes")

        replies = await env.bot.handle_message(conv, "is the boardroom free at 2pm")

        assert replies[0].startswith(f"{BOARDROOM} is busy at 2:00 PM")

    async def test_cancel_mid_flow(self, env):
        conv = env.conversation
        await env.bot.handle_message(conv, "book a room")
        await env.bot.handle_message(conv, BOARDROOM)

        assert await env.bot.handle_message(conv, "cancel") == []
        assert get_session(conv) is None

        # the next message is a fresh request again
        assert await env.bot.handle_message(conv, "book a room") == ["For what room?"]

    async def test_not_understood_start(self, env):
        conv = env.conversation
        await env.bot.handle_message(conv, "book a room")
        await env.bot.handle_message(conv, BOARDROOM)

        replies = await env.bot.handle_message(conv, "whenever")

        assert replies == ["Sorry, I couldn't understand that start time."]
        assert get_session(conv) is None


class TestFindRoom:
    async def test_lists_free_rooms(self, env):
        env.calendar.add_event("plains@rightpoint.com", _event(
            "evt-1", datetime(2026, 3, 16, 14, 30, tzinfo=DENVER), datetime(2026, 3, 16, 15, 30, tzinfo=DENVER),
        ))

        replies = await env.bot.handle_message(env.conversation, "find a room in denver from 2 to 3")

        assert replies == ["Rooms free in Denver from 2:00 PM to 3:00 PM: Rockies, Summit"]

    async def test_preferred_floor_listed_first(self, env):
        conv = env.conversation
        assert await env.bot.handle_message(conv, "i sit on floor 3") == ["Preferred floor set."]

        replies = await env.bot.handle_message(conv, "find a room in denver from 2 to 3")

        assert replies == ["Rooms free in Denver from 2:00 PM to 3:00 PM: Plains, Summit, Rockies"]

    async def test_nothing_free(self, env):
        for room_id in ("rockies", "plains", "summit"):
            env.calendar.add_event(f"{room_id}@rightpoint.com", _event(
                f"evt-{room_id}",
                datetime(2026, 3, 16, 13, 0, tzinfo=DENVER),
                datetime(2026, 3, 16, 17, 0, tzinfo=DENVER),
            ))

        replies = await env.bot.handle_message(env.conversation, "find a room in denver from 2 to 3")

        assert replies == ["Sorry, no rooms in Denver are free from 2:00 PM to 3:00 PM."]

    async def test_asks_for_office_without_preference(self, env):
        assert await env.bot.handle_message(env.conversation, "find a room") == ["In which office?"]

    async def test_uses_preferred_office(self, env):
        conv = env.conversation
        assert await env.bot.handle_message(conv, "i work in denver") == ["Building set."]

        assert await env.bot.handle_message(conv, "find a room") == ["Starting when?"]
        replies = await env.bot.handle_message(conv, "2 to 3")

        assert replies == ["Rooms free in Denver from 2:00 PM to 3:00 PM: Rockies, Plains, Summit"]


class TestPreferencesAndFallback:
    async def test_unknown_building(self, env):
        assert await env.bot.handle_message(env.conversation, "i work on mars") == ["Sorry, I don't know that office."]
        assert env.bot.preferences(env.conversation).office is None

    async def test_clear_floor(self, env):
        conv = env.conversation
        await env.bot.handle_message(conv, "i sit on floor 3")

        assert await env.bot.handle_message(conv, "forget my floor") == ["Preferred floor cleared."]
        assert env.bot.preferences(conv).floor is None

    async def test_none_intent(self, env):
        replies = await env.bot.handle_message(env.conversation, "sing me a song")
        assert replies == ["Sorry, I don't know what you meant.  You said: sing me a song"]
