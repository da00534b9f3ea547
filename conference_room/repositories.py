"""Repository interfaces plus in-memory implementations.

The storage engine is someone else's problem; the engine only needs the
fields below.  The in-memory implementations back the default app
wiring and the tests.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Iterable, Optional

from conference_room.models.criteria import OfficeOptions
from conference_room.models.meeting import MeetingInfo
from conference_room.models.room import OrganizationCalendarConfig, RoomRecord

log = logging.getLogger("conference_room.repositories")


class MeetingRepository(ABC):
    """Side table of lifecycle flags keyed by calendar event id."""

    @abstractmethod
    async def get_meeting_info(self, event_ids: Iterable[str]) -> list[MeetingInfo]:
        """Known flags for ``event_ids``; unknown ids are simply absent."""

    @abstractmethod
    async def start_meeting(self, event_id: str) -> None: ...

    @abstractmethod
    async def cancel_meeting(self, event_id: str) -> None: ...

    @abstractmethod
    async def end_meeting(self, event_id: str) -> None: ...


class InMemoryMeetingRepository(MeetingRepository):
    def __init__(self) -> None:
        self._meetings: dict[str, MeetingInfo] = {}

    def _get(self, event_id: str) -> MeetingInfo:
        return self._meetings.setdefault(event_id, MeetingInfo(id=event_id))

    async def get_meeting_info(self, event_ids: Iterable[str]) -> list[MeetingInfo]:
        return [self._meetings[i].model_copy() for i in event_ids if i in self._meetings]

    async def start_meeting(self, event_id: str) -> None:
        self._get(event_id).is_started = True

    async def cancel_meeting(self, event_id: str) -> None:
        self._get(event_id).is_cancelled = True

    async def end_meeting(self, event_id: str) -> None:
        self._get(event_id).is_ended_early = True


class RoomRepository(ABC):
    """Managed rooms, grouped by organization."""

    @abstractmethod
    async def get_rooms(self) -> dict[str, list[RoomRecord]]:
        """All rooms keyed by organization id."""

    @abstractmethod
    async def get_rooms_for_office(self, office: OfficeOptions) -> list[RoomRecord]: ...

    @abstractmethod
    async def save_subscription_id(self, room: RoomRecord, subscription_id: str) -> None: ...


class InMemoryRoomRepository(RoomRepository):
    def __init__(self, rooms: Iterable[RoomRecord] = ()) -> None:
        self._rooms: dict[tuple[str, str], RoomRecord] = {}
        for room in rooms:
            self.add(room)

    def add(self, room: RoomRecord) -> None:
        self._rooms[(room.organization_id, room.room_id)] = room

    def get(self, organization_id: str, room_id: str) -> Optional[RoomRecord]:
        return self._rooms.get((organization_id, room_id))

    async def get_rooms(self) -> dict[str, list[RoomRecord]]:
        grouped: dict[str, list[RoomRecord]] = defaultdict(list)
        for room in self._rooms.values():
            grouped[room.organization_id].append(room.model_copy())
        return dict(grouped)

    async def get_rooms_for_office(self, office: OfficeOptions) -> list[RoomRecord]:
        return [r.model_copy() for r in self._rooms.values() if r.office == office]

    async def save_subscription_id(self, room: RoomRecord, subscription_id: str) -> None:
        stored = self._rooms[(room.organization_id, room.room_id)]
        stored.subscription_id = subscription_id
        room.subscription_id = subscription_id


class OrganizationConfigRepository(ABC):
    @abstractmethod
    async def get_calendar_config(self, organization_id: str) -> Optional[OrganizationCalendarConfig]:
        """Calendar application credentials, or None if never configured."""


class InMemoryOrganizationConfigRepository(OrganizationConfigRepository):
    def __init__(self, configs: dict[str, OrganizationCalendarConfig] | None = None) -> None:
        self._configs = dict(configs or {})

    async def get_calendar_config(self, organization_id: str) -> Optional[OrganizationCalendarConfig]:
        return self._configs.get(organization_id)
