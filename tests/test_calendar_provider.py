"""Tests for CalendarProvider ABC, GoogleCalendarProvider and the in-memory provider."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from googleapiclient.errors import HttpError

from conference_room.calendar_providers.base import (
    BUSY,
    FREE,
    NORMAL,
    PRIVATE,
    Attendee,
    CalendarEvent,
    CalendarProvider,
)
from conference_room.calendar_providers.memory import InMemoryCalendarProvider
from conference_room.errors import AccessDeniedError

ROOM = "boardroom@resource.calendar.google.com"


def _http_error(status):
    return HttpError(MagicMock(status=status, reason="error"), b"{}")


# ── Dataclass / ABC contract tests ──────────────────────────────────


class TestDataclasses:
    def test_calendar_event_defaults(self):
        now = datetime.now(tz=timezone.utc)
        event = CalendarEvent(id="e1", subject="Test", start=now, end=now + timedelta(minutes=30))
        assert event.sensitivity == NORMAL
        assert event.free_busy_status == BUSY
        assert event.attendees == []
        assert not event.is_all_day

    def test_attendees_combines_required_and_optional(self):
        now = datetime.now(tz=timezone.utc)
        event = CalendarEvent(
            id="e1", subject="Test", start=now, end=now,
            required_attendees=[Attendee("A", "a@x.com")],
            optional_attendees=[Attendee("B", "b@x.com")],
        )
        assert [a.name for a in event.attendees] == ["A", "B"]


class TestCalendarProviderABC:
    def test_cannot_instantiate(self):
        """CalendarProvider is abstract and cannot be instantiated directly."""
        with pytest.raises(TypeError):
            CalendarProvider()


# ── GoogleCalendarProvider tests (mocked API) ──────────────────────


class TestGoogleCalendarProvider:
    @pytest.fixture
    def mock_provider(self):
        """Create a GoogleCalendarProvider with mocked Google APIs."""
        with patch(
            "conference_room.calendar_providers.google.Credentials"
        ) as mock_creds, patch(
            "conference_room.calendar_providers.google.build"
        ) as mock_build:
            mock_creds.from_service_account_file.return_value = MagicMock()

            from conference_room.calendar_providers.google import GoogleCalendarProvider

            provider = GoogleCalendarProvider(service_account_path="/fake/path.json")
            provider._service = mock_build.return_value
            return provider

    def test_requires_service_account(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SERVICE_ACCOUNT_JSON", raising=False)
        from conference_room.calendar_providers.google import GoogleCalendarProvider

        with pytest.raises(ValueError):
            GoogleCalendarProvider()

    @pytest.mark.asyncio
    async def test_find_upcoming_events_maps_items(self, mock_provider):
        mock_provider._service.events.return_value.list.return_value.execute.return_value = {
            "items": [
                {
                    "id": "evt_1",
                    "summary": "Planning",
                    "start": {"dateTime": "2026-03-16T10:00:00+00:00"},
                    "end": {"dateTime": "2026-03-16T11:00:00+00:00"},
                    "organizer": {"email": "pat@rightpoint.com", "displayName": "Pat"},
                    "visibility": "private",
                    "transparency": "transparent",
                    "location": "Boardroom",
                    "attendees": [
                        {"email": ROOM, "resource": True},
                        {"email": "sam@rightpoint.com", "displayName": "Sam"},
                        {"email": "ext@example.com", "optional": True},
                    ],
                },
                {
                    "id": "evt_2",
                    "status": "cancelled",
                    "start": {"dateTime": "2026-03-16T12:00:00+00:00"},
                    "end": {"dateTime": "2026-03-16T13:00:00+00:00"},
                },
            ]
        }

        start = datetime(2026, 3, 16, tzinfo=timezone.utc)
        events = await mock_provider.find_upcoming_events(ROOM, start, start + timedelta(days=2))

        assert len(events) == 1
        event = events[0]
        assert event.id == "evt_1"
        assert event.start == datetime(2026, 3, 16, 10, 0, tzinfo=timezone.utc)
        assert event.organizer.name == "Pat"
        assert event.sensitivity == PRIVATE
        assert event.free_busy_status == FREE
        assert [a.address for a in event.required_attendees] == ["sam@rightpoint.com"]
        assert [a.address for a in event.optional_attendees] == ["ext@example.com"]

        kwargs = mock_provider._service.events.return_value.list.call_args.kwargs
        assert kwargs["calendarId"] == ROOM
        assert kwargs["singleEvents"] is True

    @pytest.mark.asyncio
    async def test_find_upcoming_events_follows_pages(self, mock_provider):
        item = {
            "start": {"dateTime": "2026-03-16T10:00:00+00:00"},
            "end": {"dateTime": "2026-03-16T11:00:00+00:00"},
        }
        mock_provider._service.events.return_value.list.return_value.execute.side_effect = [
            {"items": [dict(item, id="a")], "nextPageToken": "page-2"},
            {"items": [dict(item, id="b")]},
        ]

        start = datetime(2026, 3, 16, tzinfo=timezone.utc)
        events = await mock_provider.find_upcoming_events(ROOM, start, start + timedelta(days=2))

        assert [e.id for e in events] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_all_day_event(self, mock_provider):
        mock_provider._service.events.return_value.get.return_value.execute.return_value = {
            "id": "evt_1",
            "summary": "Offsite",
            "start": {"date": "2026-03-16"},
            "end": {"date": "2026-03-17"},
        }

        event = await mock_provider.get_event(ROOM, "evt_1")

        assert event.is_all_day
        assert event.end - event.start == timedelta(days=1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [403, 404])
    async def test_missing_calendar_is_access_denied(self, mock_provider, status):
        mock_provider._service.events.return_value.list.return_value.execute.side_effect = _http_error(status)

        start = datetime(2026, 3, 16, tzinfo=timezone.utc)
        with pytest.raises(AccessDeniedError):
            await mock_provider.find_upcoming_events(ROOM, start, start + timedelta(days=2))

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, mock_provider):
        mock_provider._service.events.return_value.get.return_value.execute.side_effect = _http_error(500)

        with pytest.raises(HttpError):
            await mock_provider.get_event(ROOM, "evt_1")

    @pytest.mark.asyncio
    async def test_rewrite_event_end(self, mock_provider):
        """rewrite_event_end should patch only the end, without notifications."""
        mock_provider._service.events.return_value.patch.return_value.execute.return_value = {
            "id": "evt_1",
            "summary": "Planning",
            "start": {"dateTime": "2026-03-16T10:00:00+00:00"},
            "end": {"dateTime": "2026-03-16T10:30:00+00:00"},
        }

        new_end = datetime(2026, 3, 16, 10, 30, tzinfo=timezone.utc)
        event = await mock_provider.rewrite_event_end(ROOM, "evt_1", new_end)

        assert event.end == new_end
        kwargs = mock_provider._service.events.return_value.patch.call_args.kwargs
        assert kwargs["body"] == {"end": {"dateTime": "2026-03-16T10:30:00+00:00"}}
        assert kwargs["sendUpdates"] == "none"

    @pytest.mark.asyncio
    async def test_create_event(self, mock_provider):
        """create_event should call events().insert() and return the event id."""
        mock_provider._service.events.return_value.insert.return_value.execute.return_value = {
            "id": "evt_123",
            "status": "confirmed",
        }

        now = datetime(2026, 3, 16, 14, 0, tzinfo=timezone.utc)
        event_id = await mock_provider.create_event(ROOM, now, now + timedelta(minutes=30), "Walk-up", "notes")

        assert event_id == "evt_123"
        body = mock_provider._service.events.return_value.insert.call_args.kwargs["body"]
        assert body["summary"] == "Walk-up"
        assert body["description"] == "notes"

    @pytest.mark.asyncio
    async def test_resolve_room_identity(self, mock_provider):
        mock_provider._service.calendars.return_value.get.return_value.execute.return_value = {
            "summary": "Boardroom (12)",
        }
        assert await mock_provider.resolve_room_identity(ROOM) == "Boardroom (12)"

    @pytest.mark.asyncio
    async def test_resolve_unknown_room(self, mock_provider):
        mock_provider._service.calendars.return_value.get.return_value.execute.side_effect = _http_error(404)
        assert await mock_provider.resolve_room_identity(ROOM) is None


# ── InMemoryCalendarProvider ───────────────────────────────────────


class TestInMemoryCalendarProvider:
    async def test_unknown_room_is_access_denied(self):
        provider = InMemoryCalendarProvider()
        now = datetime.now(tz=timezone.utc)

        with pytest.raises(AccessDeniedError):
            await provider.find_upcoming_events(ROOM, now, now)
        assert await provider.resolve_room_identity(ROOM) is None

    async def test_create_and_find(self):
        provider = InMemoryCalendarProvider({ROOM: "Boardroom"})
        start = datetime(2026, 3, 16, 10, 0, tzinfo=timezone.utc)

        event_id = await provider.create_event(ROOM, start, start + timedelta(hours=1), "Walk-up")
        events = await provider.find_upcoming_events(ROOM, start - timedelta(hours=1), start + timedelta(days=1))

        assert [e.id for e in events] == [event_id]
        assert events[0].location == "Boardroom"

    async def test_window_excludes_non_overlapping(self):
        provider = InMemoryCalendarProvider({ROOM: "Boardroom"})
        start = datetime(2026, 3, 16, 10, 0, tzinfo=timezone.utc)
        await provider.create_event(ROOM, start, start + timedelta(hours=1), "Walk-up")

        events = await provider.find_upcoming_events(ROOM, start + timedelta(hours=1), start + timedelta(hours=2))

        assert events == []

    async def test_rewrite_end(self):
        provider = InMemoryCalendarProvider({ROOM: "Boardroom"})
        start = datetime(2026, 3, 16, 10, 0, tzinfo=timezone.utc)
        event_id = await provider.create_event(ROOM, start, start + timedelta(hours=1), "Walk-up")

        event = await provider.rewrite_event_end(ROOM, event_id, start + timedelta(minutes=15))

        assert event.end == start + timedelta(minutes=15)
        assert (await provider.get_event(ROOM, event_id)).end == event.end

    async def test_missing_event(self):
        provider = InMemoryCalendarProvider({ROOM: "Boardroom"})
        with pytest.raises(AccessDeniedError):
            await provider.get_event(ROOM, "nope")
